# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from devtaskr.core.session import UserIdentity
from devtaskr.core.state import AppState
from devtaskr.store.auth import LocalAuthProvider
from devtaskr.store.sqlite_store import SQLiteRemoteStore
from devtaskr.tasks.assignee import AssigneeResolver
from devtaskr.tasks.task_sync import TaskSyncEngine

from .fakes import FakeDispatcher, FakeRemoteStore, NoticeLog


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with AppState and the CLI handlers.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated from the developer's .env.
    """
    return SimpleNamespace(
        app_name="DevTaskr",
        backend="local",
        notification_mode="email",
        data_dir=tmp_path,
        store_db_path=tmp_path / "devtaskr.sqlite3",
    )


@pytest.fixture()
def user() -> UserIdentity:
    return UserIdentity(id="u1", email="ann@example.com", name="Ann")


@pytest.fixture()
def store() -> FakeRemoteStore:
    s = FakeRemoteStore()
    s.add_profile("u1", "Ann", "ann@example.com")
    s.add_profile("u2", "Bob", "bob@example.com")
    return s


@pytest.fixture()
def dispatcher() -> FakeDispatcher:
    return FakeDispatcher()


@pytest.fixture()
def notices() -> NoticeLog:
    return NoticeLog()


@pytest.fixture()
def engine(store: FakeRemoteStore, dispatcher: FakeDispatcher, notices: NoticeLog) -> TaskSyncEngine:
    """Engine over the in-memory fake store. Not signed in yet: call initialize(user)."""
    return TaskSyncEngine(store, dispatcher, notify=notices)


@pytest.fixture()
def sqlite_store(tmp_path: Path) -> SQLiteRemoteStore:
    return SQLiteRemoteStore(tmp_path / "store.sqlite3")


@pytest.fixture()
def state(settings: SimpleNamespace, notices: NoticeLog) -> AppState:
    """
    AppState wired like the local backend, with a fake dispatcher.

    NOTE: We keep the real SQLite store here because the CLI flows
    (sign-up, board, edits) are part of what we want to test end to end.
    """
    local = SQLiteRemoteStore(settings.store_db_path)
    dispatcher = FakeDispatcher()
    return AppState(
        settings=settings,
        store=local,
        dispatcher=dispatcher,
        auth=LocalAuthProvider(local),
        engine=TaskSyncEngine(local, dispatcher, notify=notices),
        assignees=AssigneeResolver(local),
    )
