# src/devtaskr/tasks/task_sync.py

from __future__ import annotations

"""
Task synchronization engine.

Owns the in-memory task collection and mediates every mutation:
- mutations go to the remote store first, then patch the local collection
  from the store's response (no flicker while the authoritative refetch runs),
- every change-feed event (from any origin) schedules a full refetch,
- a status change to "completed" fires one best-effort manager notification.

Consistency model: last completed write wins. Refetch results are idempotent
snapshots, so overlapping refetches need no lock and no sequence guard; a
refetch that started earlier but completes later simply replaces the newer
snapshot until the next change event.
"""

import asyncio
import contextlib
import logging
from collections.abc import Iterable
from datetime import datetime

from ..core.errors import AuthorizationError, NotificationError, TaskSyncError, ValidationError
from ..core.ports import (
    ALL_CHANGES,
    ChangeEvent,
    DispatchResult,
    Join,
    Notice,
    NoticeLevel,
    NoticeSink,
    NotificationDispatcher,
    RemoteStore,
    Row,
    Subscription,
)
from ..core.session import Session, UserIdentity
from .task_models import Task, TaskDraft, TaskPatch, TaskStatus, merge_patch, parse_iso, task_from_row

logger = logging.getLogger(__name__)

TASKS_TABLE = "tasks"
ASSIGNEE_JOIN = Join(column="assigned_to", table="profiles", columns=("id", "name", "avatar_url"))
DEFAULT_COMPLETION_MESSAGE = "Task has been completed successfully."


class TaskSyncEngine:
    def __init__(
            self,
            store: RemoteStore,
            dispatcher: NotificationDispatcher,
            *,
            session: Session | None = None,
            notify: NoticeSink | None = None,
            table: str = TASKS_TABLE,
    ) -> None:
        self._store = store
        self._dispatcher = dispatcher
        self._notify = notify
        self._table = table

        self.session = session if session is not None else Session()
        self.last_error: TaskSyncError | None = None
        self.last_warning: TaskSyncError | None = None

        self._tasks: list[Task] = []
        self._refetches_in_flight = 0
        self._subscription: Subscription | None = None
        self._subscribed_user_id: str | None = None
        self._generation = 0
        self._ready: asyncio.Future[None] | None = None
        self._scheduled: set[asyncio.Task[bool]] = set()

    # ---- read side ----

    @property
    def tasks(self) -> tuple[Task, ...]:
        """Current collection, newest first. Read-only for callers."""
        return tuple(self._tasks)

    @property
    def loading(self) -> bool:
        return self._refetches_in_flight > 0

    @property
    def subscribed(self) -> bool:
        return self._subscription is not None

    def get(self, task_id: str) -> Task | None:
        for task in self._tasks:
            if task.id == task_id:
                return task
        return None

    # ---- lifecycle ----

    async def initialize(self, user: UserIdentity | None) -> None:
        """
        React to sign-in / sign-out.

        Same user again -> no-op (keeps the single subscription); a call that
                           overlaps a pending setup for that user waits for it.
        Another user    -> release the old subscription, start over.
        None            -> release the subscription, clear the collection.
        """
        if user is not None and user.id == self._subscribed_user_id:
            # Token refresh etc.: keep the subscription, pick up the new identity object.
            self.session.user = user
            if self._ready is not None:
                await asyncio.shield(self._ready)
            return

        # Everything below the first await must already describe the new session,
        # so overlapping calls see it.
        previous = self._detach_subscription()
        generation = self._generation
        self.session.user = user
        self._tasks = []
        self._subscribed_user_id = user.id if user is not None else None
        ready = asyncio.get_running_loop().create_future() if user is not None else None
        self._ready = ready

        try:
            await self._unsubscribe(previous)
            if user is None:
                logger.info("Signed out: task collection cleared")
                return
            if generation != self._generation:
                return

            logger.info("Signed in user=%s: subscribing to %s", user.id, self._table)
            try:
                sub = await self._store.subscribe(self._table, ALL_CHANGES, self._on_change)
            except Exception as e:
                logger.exception("subscribe failed table=%s", self._table)
                if generation == self._generation:
                    # Not subscribed: let the next initialize for this user try again.
                    self._subscribed_user_id = None
                self._fail("Live updates are unavailable", e)
            else:
                if generation != self._generation:
                    logger.debug("Releasing subscription for superseded user=%s", user.id)
                    await self._unsubscribe(sub)
                    return
                self._subscription = sub

            await self.refetch()
        finally:
            if ready is not None and not ready.done():
                ready.set_result(None)
            if self._ready is ready:
                self._ready = None

    async def close(self) -> None:
        """Release the change-feed subscription and let scheduled refetches finish."""
        await self._release_subscription()
        await self.wait_idle()

    async def __aenter__(self) -> TaskSyncEngine:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def wait_idle(self) -> None:
        """Wait until every feed-triggered refetch scheduled so far has completed."""
        while self._scheduled:
            await asyncio.gather(*list(self._scheduled), return_exceptions=True)

    def _detach_subscription(self) -> Subscription | None:
        """Invalidate any setup in flight and hand back the current subscription."""
        self._generation += 1
        self._subscribed_user_id = None
        sub, self._subscription = self._subscription, None
        return sub

    async def _release_subscription(self) -> None:
        await self._unsubscribe(self._detach_subscription())

    async def _unsubscribe(self, sub: Subscription | None) -> None:
        if sub is None:
            return
        try:
            await self._store.unsubscribe(sub)
            logger.debug("Unsubscribed from %s", sub.table)
        except Exception:
            logger.exception("unsubscribe failed table=%s", sub.table)

    def _on_change(self, event: ChangeEvent) -> None:
        if self._subscription is None:
            return
        logger.debug("Change feed: %s %s id=%s -> refetch", event.table, event.type.value, event.row_id)
        task = asyncio.get_running_loop().create_task(self.refetch())
        self._scheduled.add(task)
        task.add_done_callback(self._scheduled.discard)

    # ---- reconciliation ----

    async def refetch(self) -> bool:
        """
        Replace the collection with a fresh snapshot from the store.

        On failure the previous collection is kept and an error notice is emitted.
        """
        user_id = self.session.user_id
        if user_id is None:
            return False

        self._refetches_in_flight += 1
        try:
            rows = await self._store.select(
                self._table,
                join=ASSIGNEE_JOIN,
                order_by="created_at",
                descending=True,
            )
            if self.session.user_id != user_id:
                logger.debug("Dropping refetch result for signed-out user=%s", user_id)
                return False
            self.reconcile_from_store(rows)
            logger.debug("Refetched %d tasks", len(self._tasks))
            return True
        except Exception as e:
            logger.warning("Task refetch failed: %s", e, exc_info=not isinstance(e, TaskSyncError))
            self._fail("Failed to fetch tasks", e)
            return False
        finally:
            self._refetches_in_flight -= 1

    def reconcile_from_store(self, rows: Iterable[Row]) -> None:
        """Authoritative path: rebuild the whole collection from store rows."""
        tasks = [task_from_row(r) for r in rows]
        tasks.sort(key=lambda t: t.created_at, reverse=True)
        self._tasks = tasks

    def apply_local_patch(self, task_id: str, patch: TaskPatch, updated_at: datetime) -> Task | None:
        """
        Optimistic path: merge a successful partial update into the local snapshot.
        Returns the merged task, or None when the task is not held locally.
        """
        for i, task in enumerate(self._tasks):
            if task.id == task_id:
                merged = merge_patch(task, patch, updated_at)
                self._tasks = [*self._tasks[:i], merged, *self._tasks[i + 1:]]
                return merged
        return None

    # ---- mutations ----

    async def create(self, draft: TaskDraft) -> Task | None:
        try:
            draft.validate()
            user_id = self._require_user("create tasks")
            row = await self._store.insert(self._table, draft.to_row(created_by=user_id))
            task = task_from_row(row)
        except Exception as e:
            self._log_failure("create", e)
            self._fail("Failed to create task", e)
            return None

        # A feed-triggered refetch may have picked the row up already.
        self._tasks = [task, *(t for t in self._tasks if t.id != task.id)]
        logger.info("Task created id=%s status=%s", task.id, task.status.value)
        self._emit(NoticeLevel.INFO, "Task created", "Your task has been created successfully")
        return task

    async def update(self, task_id: str, patch: TaskPatch, *, message: str | None = None) -> bool:
        try:
            patch.validate()
            self._require_user("update tasks")
            row = await self._store.update(self._table, task_id, patch.to_row())
            updated_at = parse_iso(row["updated_at"])
        except Exception as e:
            self._log_failure("update", e, task_id=task_id)
            self._fail("Failed to update task", e)
            return False

        if self.apply_local_patch(task_id, patch, updated_at) is None:
            logger.debug("Updated task %s is not held locally; next refetch reconciles", task_id)
        logger.info("Task updated id=%s fields=%s", task_id, ",".join(patch.present()))
        self._emit(NoticeLevel.INFO, "Task updated", "Your task has been updated successfully")

        if patch.completes:
            await self.send_completion_notification(task_id, message)
        return True

    async def update_status(self, task_id: str, status: TaskStatus | str, *, message: str | None = None) -> bool:
        return await self.update(task_id, TaskPatch(status=status), message=message)  # type: ignore[arg-type]

    async def delete(self, task_id: str) -> bool:
        try:
            self._require_user("delete tasks")
            await self._store.delete(self._table, task_id)
        except Exception as e:
            self._log_failure("delete", e, task_id=task_id)
            self._fail("Failed to delete task", e)
            return False

        self._tasks = [t for t in self._tasks if t.id != task_id]
        logger.info("Task deleted id=%s", task_id)
        self._emit(NoticeLevel.INFO, "Task deleted", "Your task has been deleted successfully")
        return True

    # ---- notification ----

    async def send_completion_notification(self, task_id: str, message: str | None = None) -> bool:
        """
        Ask the dispatcher to email the manager. One attempt, no retry.
        Failure is reported as a warning and never undoes the update.
        """
        text = message or DEFAULT_COMPLETION_MESSAGE
        logger.info("Sending completion notification task_id=%s", task_id)
        try:
            result = await self._dispatcher.invoke(task_id, text)
        except Exception as e:
            logger.exception("Notification dispatcher crashed task_id=%s", task_id)
            result = DispatchResult(success=False, error=str(e) or e.__class__.__name__)

        if result.success:
            self._emit(NoticeLevel.INFO, "Notification sent", "An email notification has been sent to the manager")
            return True

        logger.warning("Completion notification failed task_id=%s: %s", task_id, result.error)
        self.last_warning = NotificationError(result.error or "Failed to send email notification")
        self._emit(NoticeLevel.WARNING, "Warning", "Task updated but failed to send email notification")
        return False

    # ---- helpers ----

    def _require_user(self, action: str) -> str:
        user_id = self.session.user_id
        if user_id is None:
            raise AuthorizationError(f"You must be logged in to {action}")
        return user_id

    @staticmethod
    def _log_failure(op: str, err: Exception, task_id: str | None = None) -> None:
        if isinstance(err, (ValidationError, AuthorizationError)):
            logger.info("Task %s rejected: %s", op, err)
        elif isinstance(err, TaskSyncError):
            logger.warning("Task %s failed task_id=%s: %s", op, task_id, err)
        else:
            logger.exception("Task %s crashed task_id=%s", op, task_id)

    def _fail(self, fallback: str, err: Exception) -> None:
        if isinstance(err, TaskSyncError):
            self.last_error = err
        else:
            self.last_error = TaskSyncError(str(err).strip() or fallback)
        self._emit(NoticeLevel.ERROR, "Error", self.last_error.message or fallback)

    def _emit(self, level: NoticeLevel, title: str, text: str) -> None:
        if self._notify is None:
            return
        with contextlib.suppress(Exception):
            self._notify(Notice(level=level, title=title, text=text))
