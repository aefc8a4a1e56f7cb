# src/devtaskr/store/sqlite_store.py

from __future__ import annotations

import asyncio
import contextlib
import logging
import sqlite3
import uuid
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any

from ..core.errors import RemoteError
from ..core.ports import ChangeCallback, ChangeEvent, ChangeType, Join, Row, Subscription
from ..tasks.task_models import Profile, profile_from_row, to_iso, utc_now
from .change_feed import ChangeFeedHub

logger = logging.getLogger(__name__)

# table -> column -> declaration (used for CREATE and for migrations)
SCHEMA: dict[str, dict[str, str]] = {
    "profiles": {
        "id": "TEXT PRIMARY KEY",
        "name": "TEXT NOT NULL DEFAULT ''",
        "avatar_url": "TEXT",
        "email": "TEXT",
        "created_at": "TEXT NOT NULL DEFAULT ''",
    },
    "tasks": {
        "id": "TEXT PRIMARY KEY",
        "title": "TEXT NOT NULL",
        "description": "TEXT NOT NULL DEFAULT ''",
        "due_date": "TEXT NOT NULL",
        "priority": "TEXT NOT NULL DEFAULT 'medium' CHECK (priority IN ('low','medium','high','urgent'))",
        "status": "TEXT NOT NULL DEFAULT 'todo' CHECK (status IN ('todo','in-progress','completed'))",
        "assigned_to": "TEXT",
        "created_by": "TEXT NOT NULL",
        "created_at": "TEXT NOT NULL",
        "updated_at": "TEXT NOT NULL",
    },
    "notifications": {
        "id": "TEXT PRIMARY KEY",
        "task_id": "TEXT NOT NULL",
        "recipient_email": "TEXT NOT NULL",
        "sent_at": "TEXT NOT NULL",
        "status": "TEXT NOT NULL DEFAULT 'pending' CHECK (status IN ('pending','sent','failed'))",
        "message": "TEXT",
    },
}

# Columns the store assigns itself; caller-supplied values are ignored.
SERVER_ASSIGNED: dict[str, tuple[str, ...]] = {
    "profiles": ("created_at",),
    "tasks": ("id", "created_at", "updated_at"),
    "notifications": ("id",),
}

# Columns an update may never change.
IMMUTABLE: dict[str, tuple[str, ...]] = {
    "profiles": ("id", "created_at"),
    "tasks": ("id", "created_by", "created_at", "updated_at"),
    "notifications": ("id", "task_id"),
}

INDEXES = (
    "CREATE INDEX IF NOT EXISTS idx_tasks_created ON tasks(created_at)",
    "CREATE INDEX IF NOT EXISTS idx_tasks_assigned ON tasks(assigned_to)",
    "CREATE INDEX IF NOT EXISTS idx_profiles_email ON profiles(email)",
    "CREATE INDEX IF NOT EXISTS idx_notifications_task ON notifications(task_id)",
)


class SQLiteRemoteStore:
    """
    Local authoritative store backed by SQLite, with an in-process change feed.

    The schema is intentionally simple and migration-safe:
    - create tables if missing
    - use PRAGMA table_info to detect missing columns
    - add columns with ALTER TABLE only when needed

    Thread-safety:
    - each call opens its own SQLite connection and runs in a worker thread
    - change events are published back on the event loop, after the write committed
    """

    def __init__(self, db_path: str | Path = "devtaskr.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._hub = ChangeFeedHub()
        self._ensure_schema()
        try:
            total = self.count_rows("tasks")
        except Exception:
            total = -1
        logger.info("SQLiteRemoteStore ready db=%s tasks=%s", self._db_path, total)

    async def aclose(self) -> None:
        """Compatibility hook for shutdown (no persistent connections to close)."""
        return

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        with contextlib.suppress(Exception):
            conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            for table, cols in SCHEMA.items():
                decl = ",\n    ".join(f"{name} {spec}" for name, spec in cols.items())
                cur.execute(f"CREATE TABLE IF NOT EXISTS {table} (\n    {decl}\n)")

                # Migrations (safe): add missing columns. CHECK/PRIMARY KEY only apply to new tables.
                cur.execute(f"PRAGMA table_info({table})")
                existing = {row["name"] for row in cur.fetchall()}
                for name, spec in cols.items():
                    if name in existing:
                        continue
                    plain = spec.split(" CHECK ")[0].replace("PRIMARY KEY", "").strip()
                    if "NOT NULL" in plain and "DEFAULT" not in plain:
                        plain += " DEFAULT ''"
                    cur.execute(f"ALTER TABLE {table} ADD COLUMN {name} {plain}")
                    logger.info("SQLiteRemoteStore migration: added column %s.%s", table, name)

            for stmt in INDEXES:
                cur.execute(stmt)
            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _columns(table: str) -> dict[str, str]:
        cols = SCHEMA.get(table)
        if cols is None:
            raise RemoteError(f"Unknown table: {table}", status_code=404)
        return cols

    def _check_columns(self, table: str, names: Sequence[str]) -> None:
        cols = self._columns(table)
        unknown = [n for n in names if n not in cols]
        if unknown:
            raise RemoteError(f"Unknown column(s) for {table}: {', '.join(unknown)}", status_code=400)

    @staticmethod
    def _now() -> str:
        return to_iso(utc_now())

    # ---- sync implementations (run in worker threads) ----

    def count_rows(self, table: str) -> int:
        self._columns(table)
        conn = self._get_conn()
        try:
            (n,) = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()
            return int(n)
        finally:
            conn.close()

    def _select_sync(
            self,
            table: str,
            filters: Mapping[str, Any] | None,
            columns: Sequence[str] | None,
            join: Join | None,
            order_by: str | None,
            descending: bool,
    ) -> list[Row]:
        cols = list(columns) if columns else list(self._columns(table))
        self._check_columns(table, cols)
        where = dict(filters or {})
        self._check_columns(table, list(where))
        if order_by:
            self._check_columns(table, [order_by])

        select_parts = [f"t.{c}" for c in cols]
        join_sql = ""
        if join is not None:
            self._check_columns(table, [join.column])
            self._check_columns(join.table, list(join.columns))
            select_parts += [f"j.{c} AS __j_{c}" for c in join.columns]
            join_sql = f" LEFT JOIN {join.table} j ON j.id = t.{join.column}"
            if join.column not in cols:
                select_parts.append(f"t.{join.column} AS __fk")

        sql = f"SELECT {', '.join(select_parts)} FROM {table} t{join_sql}"
        params: list[Any] = []
        if where:
            sql += " WHERE " + " AND ".join(f"t.{k} = ?" for k in where)
            params.extend(where.values())
        if order_by:
            sql += f" ORDER BY t.{order_by} {'DESC' if descending else 'ASC'}"

        conn = self._get_conn()
        try:
            rows = conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise RemoteError(f"select {table} failed: {e}") from e
        finally:
            conn.close()

        out: list[Row] = []
        for r in rows:
            item: Row = {c: r[c] for c in cols}
            if join is not None:
                embedded = {c: r[f"__j_{c}"] for c in join.columns}
                fk = item.get(join.column, r["__fk"] if "__fk" in r.keys() else None)
                # Unmatched foreign key: keep the raw id so callers still know the assignee.
                item[join.column] = embedded if any(v is not None for v in embedded.values()) else fk
            out.append(item)
        return out

    def _insert_sync(self, table: str, record: Mapping[str, Any]) -> Row:
        cols = self._columns(table)
        data = {k: v for k, v in record.items() if k not in SERVER_ASSIGNED.get(table, ())}
        self._check_columns(table, list(data))

        now = self._now()
        if "id" not in data or not data["id"]:
            data["id"] = str(uuid.uuid4())
        for stamp in ("created_at", "updated_at", "sent_at"):
            if stamp in cols and not data.get(stamp):
                data[stamp] = now

        names = list(data)
        sql = f"INSERT INTO {table}({', '.join(names)}) VALUES ({', '.join('?' for _ in names)})"
        conn = self._get_conn()
        try:
            conn.execute(sql, [data[n] for n in names])
            conn.commit()
            row = conn.execute(f"SELECT * FROM {table} WHERE id = ?", (data["id"],)).fetchone()
        except sqlite3.Error as e:
            raise RemoteError(f"insert into {table} failed: {e}") from e
        finally:
            conn.close()
        logger.debug("Inserted %s id=%s", table, data["id"])
        return dict(row)

    def _update_sync(self, table: str, row_id: str, record: Mapping[str, Any]) -> Row:
        cols = self._columns(table)
        data = {k: v for k, v in record.items() if k not in IMMUTABLE.get(table, ())}
        self._check_columns(table, list(data))

        conn = self._get_conn()
        try:
            prev = conn.execute(f"SELECT * FROM {table} WHERE id = ?", (row_id,)).fetchone()
            if prev is None:
                raise RemoteError(f"No {table} row with id {row_id}", status_code=404)

            if "updated_at" in cols:
                # Never move updated_at backwards, even if the clock does.
                data["updated_at"] = max(self._now(), str(prev["updated_at"] or ""))

            if data:
                assignments = ", ".join(f"{k} = ?" for k in data)
                conn.execute(f"UPDATE {table} SET {assignments} WHERE id = ?", [*data.values(), row_id])
                conn.commit()
            row = conn.execute(f"SELECT * FROM {table} WHERE id = ?", (row_id,)).fetchone()
        except sqlite3.Error as e:
            raise RemoteError(f"update {table} failed: {e}") from e
        finally:
            conn.close()
        logger.debug("Updated %s id=%s fields=%s", table, row_id, ",".join(data))
        return dict(row)

    def _delete_sync(self, table: str, row_id: str) -> bool:
        self._columns(table)
        conn = self._get_conn()
        try:
            cur = conn.execute(f"DELETE FROM {table} WHERE id = ?", (row_id,))
            conn.commit()
            return cur.rowcount > 0
        except sqlite3.Error as e:
            raise RemoteError(f"delete from {table} failed: {e}") from e
        finally:
            conn.close()

    # ---- RemoteStore port ----

    async def select(
            self,
            table: str,
            *,
            filters: Mapping[str, Any] | None = None,
            columns: Sequence[str] | None = None,
            join: Join | None = None,
            order_by: str | None = None,
            descending: bool = False,
    ) -> list[Row]:
        return await asyncio.to_thread(self._select_sync, table, filters, columns, join, order_by, descending)

    async def insert(self, table: str, record: Mapping[str, Any]) -> Row:
        row = await asyncio.to_thread(self._insert_sync, table, dict(record))
        self._hub.publish(ChangeEvent(table=table, type=ChangeType.INSERT, row_id=str(row["id"]), record=row))
        return row

    async def update(self, table: str, row_id: str, record: Mapping[str, Any]) -> Row:
        row = await asyncio.to_thread(self._update_sync, table, row_id, dict(record))
        self._hub.publish(ChangeEvent(table=table, type=ChangeType.UPDATE, row_id=row_id, record=row))
        return row

    async def delete(self, table: str, row_id: str) -> None:
        removed = await asyncio.to_thread(self._delete_sync, table, row_id)
        if removed:
            self._hub.publish(ChangeEvent(table=table, type=ChangeType.DELETE, row_id=row_id))

    async def subscribe(
            self,
            table: str,
            events: frozenset[ChangeType],
            callback: ChangeCallback,
    ) -> Subscription:
        self._columns(table)
        return self._hub.add(table, events, callback)

    async def unsubscribe(self, subscription: Subscription) -> None:
        self._hub.remove(subscription)

    def subscriber_count(self, table: str | None = None) -> int:
        return self._hub.count(table)

    # ---- profiles (used by LocalAuthProvider and the CLI) ----

    async def add_profile(
            self,
            *,
            name: str,
            email: str | None = None,
            profile_id: str | None = None,
            avatar_url: str | None = None,
    ) -> Profile:
        row = await self.insert(
            "profiles",
            {
                "id": profile_id or str(uuid.uuid4()),
                "name": name.strip(),
                "email": email.strip().lower() if email else None,
                "avatar_url": avatar_url,
            },
        )
        return profile_from_row(row)

    async def get_profile_by_email(self, email: str) -> Profile | None:
        if not email:
            return None
        rows = await self.select("profiles", filters={"email": email.strip().lower()})
        return profile_from_row(rows[0]) if rows else None

    async def list_profiles(self) -> list[Profile]:
        rows = await self.select("profiles", order_by="name")
        return [profile_from_row(r) for r in rows]
