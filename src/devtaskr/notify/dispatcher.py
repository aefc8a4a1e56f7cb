# src/devtaskr/notify/dispatcher.py

from __future__ import annotations

"""
Completion notification dispatchers.

- FunctionNotificationDispatcher: invokes the hosted serverless function
  (which emails the manager and logs the attempt itself).
- EmailNotificationDispatcher: does the same work in-process against any
  RemoteStore + Mailer (used with the local SQLite backend).
- NullNotificationDispatcher: notifications switched off.

Every dispatcher makes at most one attempt per invoke() and reports the
outcome as a DispatchResult instead of raising.
"""

import logging

import httpx

from ..core.ports import DispatchResult, Join, Mailer, RemoteStore
from ..store.rest_store import error_message, make_timeout
from ..tasks.task_models import NotificationStatus, task_from_row, utc_now
from ..tasks.task_sync import DEFAULT_COMPLETION_MESSAGE, TASKS_TABLE
from .email import render_completion_email

logger = logging.getLogger(__name__)

NOTIFICATIONS_TABLE = "notifications"
DEFAULT_FUNCTION_NAME = "send-task-notification"


class FunctionNotificationDispatcher:
    def __init__(
            self,
            base_url: str,
            api_key: str,
            *,
            function_name: str = DEFAULT_FUNCTION_NAME,
            access_token: str | None = None,
            client: httpx.AsyncClient | None = None,
            timeout_seconds: float = 15.0,
    ) -> None:
        self._url = f"{base_url.rstrip('/')}/functions/v1/{function_name}"
        self._api_key = api_key
        self._access_token = access_token
        self._client = client or httpx.AsyncClient(timeout=make_timeout(timeout_seconds))
        self._owns_client = client is None

    def set_access_token(self, token: str | None) -> None:
        self._access_token = token

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def invoke(self, task_id: str, message: str | None = None) -> DispatchResult:
        payload = {"taskId": task_id, "message": message or DEFAULT_COMPLETION_MESSAGE}
        headers = {
            "apikey": self._api_key,
            "Authorization": f"Bearer {self._access_token or self._api_key}",
        }
        logger.info("Invoking notification function task_id=%s", task_id)
        try:
            resp = await self._client.post(self._url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            logger.warning("Notification function unreachable: %s", e.__class__.__name__)
            return DispatchResult(success=False, error=f"Notification service unreachable ({e.__class__.__name__})")

        if resp.status_code >= 400:
            return DispatchResult(success=False, error=error_message(resp))

        try:
            body = resp.json() if resp.content else {}
        except ValueError:
            body = {}
        if isinstance(body, dict) and body.get("error"):
            return DispatchResult(success=False, error=str(body["error"]))
        return DispatchResult(success=True)


class EmailNotificationDispatcher:
    def __init__(self, store: RemoteStore, mailer: Mailer, *, manager_email: str) -> None:
        self._store = store
        self._mailer = mailer
        self._manager_email = manager_email

    async def invoke(self, task_id: str, message: str | None = None) -> DispatchResult:
        if not task_id:
            return DispatchResult(success=False, error="Task ID is required")
        text = message or DEFAULT_COMPLETION_MESSAGE

        try:
            rows = await self._store.select(
                TASKS_TABLE,
                filters={"id": task_id},
                join=Join(column="assigned_to", table="profiles", columns=("id", "name")),
            )
            task = task_from_row(rows[0]) if rows else None
        except Exception:
            logger.exception("Error fetching task for notification task_id=%s", task_id)
            task = None
        if task is None:
            return DispatchResult(success=False, error="Error fetching task data")

        subject, html_body, text_body = render_completion_email(
            title=task.title,
            completed_by=task.assignee_name,
            description=task.description,
            message=text,
            completed_on=utc_now().date(),
        )

        try:
            await self._mailer.send(to=self._manager_email, subject=subject, html=html_body, text=text_body)
        except Exception as e:
            logger.exception("Error sending completion email task_id=%s", task_id)
            await self._record(task_id, NotificationStatus.FAILED, str(e) or e.__class__.__name__)
            return DispatchResult(success=False, error="Failed to send email notification")

        await self._record(task_id, NotificationStatus.SENT, text)
        logger.info("Completion email sent task_id=%s to=%s", task_id, self._manager_email)
        return DispatchResult(success=True)

    async def _record(self, task_id: str, status: NotificationStatus, message: str) -> None:
        try:
            await self._store.insert(
                NOTIFICATIONS_TABLE,
                {
                    "task_id": task_id,
                    "recipient_email": self._manager_email,
                    "status": status.value,
                    "message": message,
                },
            )
        except Exception:
            # The email outcome stands even if the log row is lost.
            logger.exception("Error logging notification task_id=%s status=%s", task_id, status.value)


class NullNotificationDispatcher:
    async def invoke(self, task_id: str, message: str | None = None) -> DispatchResult:
        logger.info("Notifications are disabled; skipping task_id=%s", task_id)
        return DispatchResult(success=False, error="Notifications are disabled")
