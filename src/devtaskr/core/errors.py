# src/devtaskr/core/errors.py

from __future__ import annotations


class TaskSyncError(Exception):
    """Base error. `message` is always safe to show to a user."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class ValidationError(TaskSyncError):
    """Input rejected before any network call (empty title, missing assignee, ...)."""


class AuthorizationError(TaskSyncError):
    """A mutation was attempted without a signed-in user."""


class RemoteError(TaskSyncError):
    """The remote store (or auth endpoint) rejected a request."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class NotificationError(TaskSyncError):
    """Completion notification could not be delivered. Never fatal for the update."""


class ConfigError(TaskSyncError):
    """A selected backend is missing required settings."""


def friendly_error_message(err: BaseException, default: str = "Something went wrong.") -> str:
    if isinstance(err, TaskSyncError):
        return err.message or default
    msg = str(err).strip()
    return msg or default
