# src/devtaskr/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The sync engine depends on Protocols instead of concrete backends.
This keeps the store/notification/auth providers swappable and makes testing easier.
"""

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Protocol

Row = dict[str, Any]


class ChangeType(StrEnum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


ALL_CHANGES: frozenset[ChangeType] = frozenset(ChangeType)


@dataclass(slots=True, frozen=True)
class ChangeEvent:
    """One row-level change observed on a table, from any origin."""

    table: str
    type: ChangeType
    row_id: str
    record: Row | None = None


ChangeCallback = Callable[[ChangeEvent], None]


@dataclass(slots=True, frozen=True)
class Join:
    """
    Embed the row of `table` referenced by `column` in place of the foreign key.
    The joined value is a dict restricted to `columns` (or None when unmatched).
    """

    column: str
    table: str
    columns: tuple[str, ...] = ("id",)


@dataclass(slots=True, eq=False)
class Subscription:
    """Handle returned by RemoteStore.subscribe; pass it back to unsubscribe."""

    table: str
    events: frozenset[ChangeType]
    callback: ChangeCallback
    active: bool = True
    extra: dict[str, Any] = field(default_factory=dict)


class RemoteStore(Protocol):
    """Authoritative backend: tasks, profiles and notifications. Raises RemoteError."""

    async def select(
            self,
            table: str,
            *,
            filters: Mapping[str, Any] | None = None,
            columns: Sequence[str] | None = None,
            join: Join | None = None,
            order_by: str | None = None,
            descending: bool = False,
    ) -> list[Row]: ...

    async def insert(self, table: str, record: Mapping[str, Any]) -> Row: ...

    async def update(self, table: str, row_id: str, record: Mapping[str, Any]) -> Row: ...

    async def delete(self, table: str, row_id: str) -> None: ...

    async def subscribe(
            self,
            table: str,
            events: frozenset[ChangeType],
            callback: ChangeCallback,
    ) -> Subscription: ...

    async def unsubscribe(self, subscription: Subscription) -> None: ...


@dataclass(slots=True, frozen=True)
class DispatchResult:
    success: bool
    error: str | None = None


class NotificationDispatcher(Protocol):
    """One-shot completion notification. Best-effort; the caller never retries."""

    async def invoke(self, task_id: str, message: str | None = None) -> DispatchResult: ...


class Mailer(Protocol):
    async def send(self, *, to: str, subject: str, html: str, text: str) -> None: ...


class AuthProvider(Protocol):
    async def sign_in(self, email: str, password: str = "") -> Any: ...
    async def sign_up(self, email: str, password: str = "", name: str = "") -> Any: ...
    async def sign_out(self) -> None: ...


class NoticeLevel(StrEnum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass(slots=True, frozen=True)
class Notice:
    """User-visible message for the presentation layer (toast-style)."""

    level: NoticeLevel
    title: str
    text: str


NoticeSink = Callable[[Notice], None]
