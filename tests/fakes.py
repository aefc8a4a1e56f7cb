# tests/fakes.py

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from devtaskr.core.errors import RemoteError
from devtaskr.core.ports import (
    ChangeCallback,
    ChangeEvent,
    ChangeType,
    DispatchResult,
    Join,
    Notice,
    Row,
    Subscription,
)
from devtaskr.store.change_feed import ChangeFeedHub
from devtaskr.tasks.task_models import to_iso

BASE_TIME = datetime(2026, 1, 5, 9, 0, tzinfo=UTC)


class FakeRemoteStore:
    """
    In-memory RemoteStore used by engine tests.

    - Records every call as (op, table) for "zero calls" assertions
    - `fail[op]` makes the next call of that op raise the given exception
    - `select_gates` hold the next select() calls until each Event is set;
      the snapshot is taken before waiting, like a query whose response is slow
    - `subscribe_gate` holds subscribe() until it is set, like a slow realtime handshake
    - writes do NOT publish change events; tests publish explicitly via `push()`
    """

    def __init__(self) -> None:
        self.tables: dict[str, dict[str, Row]] = {"tasks": {}, "profiles": {}, "notifications": {}}
        self.calls: list[tuple[str, str]] = []
        self.fail: dict[str, Exception] = {}
        self.select_gates: list[asyncio.Event] = []
        self.subscribe_gate: asyncio.Event | None = None
        self.hub = ChangeFeedHub()
        self._clock = 0

    # ---- helpers for tests ----

    def add_profile(self, profile_id: str, name: str, email: str | None = None) -> None:
        self.tables["profiles"][profile_id] = {"id": profile_id, "name": name, "avatar_url": None, "email": email}

    def put_task(self, **row: Any) -> Row:
        stamp = self._stamp()
        data = {
            "description": "",
            "due_date": to_iso(BASE_TIME + timedelta(days=7)),
            "priority": "medium",
            "status": "todo",
            "assigned_to": None,
            "created_by": "u1",
            "created_at": stamp,
            "updated_at": stamp,
            **row,
        }
        self.tables["tasks"][data["id"]] = data
        return dict(data)

    def push(self, table: str, type_: ChangeType, row_id: str) -> None:
        self.hub.publish(ChangeEvent(table=table, type=type_, row_id=row_id))

    def ops(self, op: str | None = None) -> list[tuple[str, str]]:
        return [c for c in self.calls if op is None or c[0] == op]

    def _stamp(self) -> str:
        # Strictly increasing, so created_at ordering is deterministic.
        self._clock += 1
        return to_iso(BASE_TIME + timedelta(seconds=self._clock))

    def _enter(self, op: str, table: str) -> None:
        self.calls.append((op, table))
        err = self.fail.pop(op, None)
        if err is not None:
            raise err

    def _joined(self, row: Row, join: Join | None) -> Row:
        item = dict(row)
        if join is not None:
            target = self.tables.get(join.table, {}).get(row.get(join.column) or "")
            if target is not None:
                item[join.column] = {c: target.get(c) for c in join.columns}
        return item

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
        self._enter("select", table)
        rows = [
            self._joined(r, join)
            for r in self.tables[table].values()
            if all(r.get(k) == v for k, v in (filters or {}).items())
        ]
        if columns:
            keep = set(columns) | ({join.column} if join else set())
            rows = [{k: v for k, v in r.items() if k in keep} for r in rows]
        if order_by:
            rows.sort(key=lambda r: r.get(order_by) or "", reverse=descending)

        if self.select_gates:
            gate = self.select_gates.pop(0)
            await gate.wait()
        else:
            await asyncio.sleep(0)
        return rows

    async def insert(self, table: str, record: Mapping[str, Any]) -> Row:
        self._enter("insert", table)
        stamp = self._stamp()
        row = {"id": str(uuid.uuid4()), **dict(record)}
        if table == "tasks":
            row.update(created_at=stamp, updated_at=stamp)
        if table == "notifications":
            row.setdefault("sent_at", stamp)
        self.tables[table][row["id"]] = row
        return dict(row)

    async def update(self, table: str, row_id: str, record: Mapping[str, Any]) -> Row:
        self._enter("update", table)
        row = self.tables[table].get(row_id)
        if row is None:
            raise RemoteError(f"No {table} row with id {row_id}", status_code=404)
        row.update(record)
        if table == "tasks":
            row["updated_at"] = self._stamp()
        return dict(row)

    async def delete(self, table: str, row_id: str) -> None:
        self._enter("delete", table)
        self.tables[table].pop(row_id, None)

    async def subscribe(
            self,
            table: str,
            events: frozenset[ChangeType],
            callback: ChangeCallback,
    ) -> Subscription:
        self._enter("subscribe", table)
        if self.subscribe_gate is not None:
            await self.subscribe_gate.wait()
        return self.hub.add(table, events, callback)

    async def unsubscribe(self, subscription: Subscription) -> None:
        self.calls.append(("unsubscribe", subscription.table))
        self.hub.remove(subscription)


@dataclass(slots=True)
class FakeDispatcher:
    """Records invocations; answers with `result` (or raises `raises`)."""

    result: DispatchResult = field(default_factory=lambda: DispatchResult(success=True))
    raises: Exception | None = None
    calls: list[tuple[str, str | None]] = field(default_factory=list)

    async def invoke(self, task_id: str, message: str | None = None) -> DispatchResult:
        self.calls.append((task_id, message))
        if self.raises is not None:
            raise self.raises
        return self.result


@dataclass(slots=True)
class SentMail:
    to: str
    subject: str
    html: str
    text: str


@dataclass(slots=True)
class FakeMailer:
    sent: list[SentMail] = field(default_factory=list)
    raises: Exception | None = None

    async def send(self, *, to: str, subject: str, html: str, text: str) -> None:
        if self.raises is not None:
            raise self.raises
        self.sent.append(SentMail(to=to, subject=subject, html=html, text=text))


@dataclass(slots=True)
class NoticeLog:
    """NoticeSink that keeps every notice for assertions."""

    notices: list[Notice] = field(default_factory=list)

    def __call__(self, notice: Notice) -> None:
        self.notices.append(notice)

    def titles(self) -> list[str]:
        return [n.title for n in self.notices]
