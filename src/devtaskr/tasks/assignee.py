# src/devtaskr/tasks/assignee.py

from __future__ import annotations

import logging

from ..core.ports import RemoteStore
from .task_models import Task

logger = logging.getLogger(__name__)

PROFILES_TABLE = "profiles"
UNKNOWN_ASSIGNEE = "Unknown"


class AssigneeResolver:
    """
    Lazy assignee-name lookup for tasks whose name was not filled by the refetch join
    (typically a task just created locally, before the next refetch).

    A successful lookup is cached per (task, assignee) pair and never repeated;
    reassigning a task looks the new assignee up again. Failed or empty
    lookups are not cached, so a later render may try again. The engine's
    collection is never touched.
    """

    def __init__(self, store: RemoteStore, *, table: str = PROFILES_TABLE) -> None:
        self._store = store
        self._table = table
        self._names: dict[tuple[str, str], str] = {}

    def cached(self, task: Task) -> str | None:
        if not task.assigned_to:
            return None
        return self._names.get((task.id, task.assigned_to))

    async def resolve(self, task: Task) -> str | None:
        if task.assignee_name:
            return task.assignee_name
        if not task.assigned_to:
            return None

        key = (task.id, task.assigned_to)
        hit = self._names.get(key)
        if hit is not None:
            return hit

        try:
            rows = await self._store.select(self._table, filters={"id": task.assigned_to}, columns=("name",))
        except Exception:
            logger.debug("Assignee lookup failed task_id=%s assignee=%s", task.id, task.assigned_to, exc_info=True)
            return None

        name = str(rows[0].get("name") or "").strip() if rows else ""
        if not name:
            return None
        self._names[key] = name
        return name

    async def display_name(self, task: Task) -> str:
        return (await self.resolve(task)) or UNKNOWN_ASSIGNEE
