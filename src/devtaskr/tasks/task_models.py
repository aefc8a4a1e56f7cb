# src/devtaskr/tasks/task_models.py

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from ..core.errors import ValidationError
from ..core.ports import Row


class TaskStatus(StrEnum):
    """Board column a task lives in."""

    TODO = "todo"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"

    @classmethod
    def parse(cls, raw: Any) -> TaskStatus:
        try:
            return cls(str(raw).strip().lower())
        except ValueError:
            raise ValidationError(f"Unknown status: {raw!r}") from None

    @classmethod
    def from_db(cls, raw: str | None) -> TaskStatus:
        if not raw:
            return cls.TODO
        try:
            return cls(raw)
        except ValueError:
            return cls.TODO


class Priority(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"

    @classmethod
    def parse(cls, raw: Any) -> Priority:
        try:
            return cls(str(raw).strip().lower())
        except ValueError:
            raise ValidationError(f"Unknown priority: {raw!r}") from None

    @classmethod
    def from_db(cls, raw: str | None) -> Priority:
        if not raw:
            return cls.MEDIUM
        try:
            return cls(raw)
        except ValueError:
            return cls.MEDIUM


class NotificationStatus(StrEnum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


# ---- date codec ----


def to_iso(value: datetime) -> str:
    """
    Serialize a timestamp for the store: UTC, millisecond precision, trailing Z.

    Naive datetimes are taken as UTC.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    value = value.astimezone(UTC)
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_iso(raw: Any) -> datetime:
    """Parse a store timestamp back into an aware UTC datetime."""
    if isinstance(raw, datetime):
        value = raw
    else:
        s = str(raw or "").strip()
        if not s:
            raise ValueError("empty timestamp")
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        value = datetime.fromisoformat(s)
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def utc_now() -> datetime:
    return datetime.now(UTC)


# ---- entities ----


@dataclass(slots=True, frozen=True)
class Task:
    id: str
    title: str
    description: str
    due_date: datetime
    priority: Priority
    status: TaskStatus
    assigned_to: str | None
    created_by: str
    created_at: datetime
    updated_at: datetime

    assignee_name: str | None = None


@dataclass(slots=True, frozen=True)
class Profile:
    id: str
    name: str
    avatar_url: str | None = None
    email: str | None = None


@dataclass(slots=True, frozen=True)
class NotificationRecord:
    task_id: str
    recipient_email: str
    status: NotificationStatus
    message: str | None
    sent_at: datetime
    id: str | None = None


# ---- mutation inputs ----


@dataclass(slots=True)
class TaskDraft:
    """Fields a caller supplies for a new task. id/timestamps/created_by are never part of it."""

    title: str
    assigned_to: str
    due_date: datetime
    description: str = ""
    priority: Priority = Priority.MEDIUM
    status: TaskStatus = TaskStatus.TODO

    def validate(self) -> None:
        if not (self.title or "").strip():
            raise ValidationError("Title is required.")
        if not (self.assigned_to or "").strip():
            raise ValidationError("Assignee is required.")
        if not isinstance(self.due_date, datetime):
            raise ValidationError("Due date is required.")
        self.due_date = parse_iso(self.due_date)
        self.priority = Priority.parse(self.priority)
        self.status = TaskStatus.parse(self.status)

    def to_row(self, *, created_by: str) -> Row:
        return {
            "title": self.title.strip(),
            "description": self.description or "",
            "due_date": to_iso(self.due_date),
            "priority": Priority(self.priority).value,
            "status": TaskStatus(self.status).value,
            "assigned_to": self.assigned_to.strip(),
            "created_by": created_by,
        }


@dataclass(slots=True)
class TaskPatch:
    """
    Partial update. A field left as None is absent: it is neither sent
    to the store nor merged locally.
    """

    title: str | None = None
    description: str | None = None
    due_date: datetime | None = None
    priority: Priority | None = None
    status: TaskStatus | None = None
    assigned_to: str | None = None

    def is_empty(self) -> bool:
        return not self.present()

    def present(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for name in ("title", "description", "due_date", "priority", "status", "assigned_to"):
            value = getattr(self, name)
            if value is not None:
                out[name] = value
        return out

    def validate(self) -> None:
        if self.is_empty():
            raise ValidationError("Nothing to update.")
        if self.title is not None and not self.title.strip():
            raise ValidationError("Title is required.")
        if self.assigned_to is not None and not self.assigned_to.strip():
            raise ValidationError("Assignee is required.")
        if self.due_date is not None:
            if not isinstance(self.due_date, datetime):
                raise ValidationError("Due date must be a date.")
            self.due_date = parse_iso(self.due_date)
        if self.priority is not None:
            self.priority = Priority.parse(self.priority)
        if self.status is not None:
            self.status = TaskStatus.parse(self.status)

    def to_row(self) -> Row:
        row: Row = {}
        for name, value in self.present().items():
            if name == "due_date":
                row["due_date"] = to_iso(value)
            elif name == "title":
                row["title"] = value.strip()
            elif isinstance(value, StrEnum):
                row[name] = value.value
            else:
                row[name] = value
        return row

    @property
    def completes(self) -> bool:
        return self.status == TaskStatus.COMPLETED


# ---- boundary mapping ----


def _assignee_from_row(raw: Any) -> tuple[str | None, str | None]:
    # Joined rows embed the profile; plain rows carry just the id.
    if isinstance(raw, dict):
        aid = raw.get("id")
        name = raw.get("name")
        return (str(aid) if aid else None), (str(name) if name else None)
    if raw:
        return str(raw), None
    return None, None


def task_from_row(row: Row) -> Task:
    assigned_to, assignee_name = _assignee_from_row(row.get("assigned_to"))
    return Task(
        id=str(row["id"]),
        title=str(row.get("title") or ""),
        description=str(row.get("description") or ""),
        due_date=parse_iso(row["due_date"]),
        priority=Priority.from_db(row.get("priority")),
        status=TaskStatus.from_db(row.get("status")),
        assigned_to=assigned_to,
        created_by=str(row.get("created_by") or ""),
        created_at=parse_iso(row["created_at"]),
        updated_at=parse_iso(row["updated_at"]),
        assignee_name=assignee_name,
    )


def task_to_row(task: Task) -> Row:
    return {
        "id": task.id,
        "title": task.title,
        "description": task.description,
        "due_date": to_iso(task.due_date),
        "priority": task.priority.value,
        "status": task.status.value,
        "assigned_to": task.assigned_to,
        "created_by": task.created_by,
        "created_at": to_iso(task.created_at),
        "updated_at": to_iso(task.updated_at),
    }


def merge_patch(task: Task, patch: TaskPatch, updated_at: datetime) -> Task:
    """Overlay the present fields of `patch` on `task`. id and created_by never change."""
    fields = patch.present()
    if "title" in fields:
        fields["title"] = fields["title"].strip()
    if "assigned_to" in fields and fields["assigned_to"] != task.assigned_to:
        # Name belonged to the previous assignee; the next refetch fills it in.
        fields["assignee_name"] = None
    return replace(task, **fields, updated_at=max(updated_at, task.updated_at))


def profile_from_row(row: Row) -> Profile:
    return Profile(
        id=str(row["id"]),
        name=str(row.get("name") or ""),
        avatar_url=row.get("avatar_url"),
        email=row.get("email"),
    )


def notification_from_row(row: Row) -> NotificationRecord:
    try:
        status = NotificationStatus(row.get("status") or "pending")
    except ValueError:
        status = NotificationStatus.PENDING
    return NotificationRecord(
        id=str(row["id"]) if row.get("id") else None,
        task_id=str(row["task_id"]),
        recipient_email=str(row.get("recipient_email") or ""),
        status=status,
        message=row.get("message"),
        sent_at=parse_iso(row.get("sent_at") or to_iso(utc_now())),
    )
