# src/devtaskr/tasks/board.py

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime

from .task_models import Task, TaskStatus, utc_now

STATUS_LABELS: dict[TaskStatus, str] = {
    TaskStatus.TODO: "To Do",
    TaskStatus.IN_PROGRESS: "In Progress",
    TaskStatus.COMPLETED: "Completed",
}

EMPTY_COLUMN_TEXT: dict[TaskStatus, str] = {
    TaskStatus.TODO: "No tasks to do yet",
    TaskStatus.IN_PROGRESS: "No tasks in progress",
    TaskStatus.COMPLETED: "No completed tasks yet",
}


def status_label(status: TaskStatus) -> str:
    return STATUS_LABELS.get(status, STATUS_LABELS[TaskStatus.TODO])


def group_by_status(tasks: Iterable[Task]) -> dict[TaskStatus, list[Task]]:
    """Split the collection into the three board columns, keeping collection order."""
    columns: dict[TaskStatus, list[Task]] = {status: [] for status in STATUS_LABELS}
    for task in tasks:
        columns[task.status].append(task)
    return columns


def is_overdue(task: Task, now: datetime | None = None) -> bool:
    now = now or utc_now()
    return task.due_date < now and task.status != TaskStatus.COMPLETED
