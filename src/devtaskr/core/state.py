# src/devtaskr/core/state.py

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..tasks.assignee import AssigneeResolver
from ..tasks.task_sync import TaskSyncEngine
from .ports import AuthProvider, NotificationDispatcher, RemoteStore


@dataclass
class AppState:
    # Store Settings on the state for easy access in command handlers.
    settings: Any

    store: RemoteStore
    dispatcher: NotificationDispatcher
    auth: AuthProvider
    engine: TaskSyncEngine
    assignees: AssigneeResolver
