# src/devtaskr/core/session.py

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(slots=True, frozen=True)
class UserIdentity:
    id: str
    email: str | None = None
    name: str | None = None
    access_token: str | None = field(default=None, repr=False, compare=False)


@dataclass(slots=True)
class Session:
    """
    Explicit auth context held by the sync engine.

    Nothing reads a process-wide "current user": whoever owns the session
    (the CLI after sign-in, a test) sets `user` and calls engine.initialize().
    """

    user: UserIdentity | None = None

    @property
    def user_id(self) -> str | None:
        return self.user.id if self.user is not None else None

    @property
    def signed_in(self) -> bool:
        return self.user is not None
