# src/devtaskr/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires the selected backend (store + auth) and notification dispatcher
  into a TaskSyncEngine held by AppState,
- forwards sign-in / sign-out to the engine and releases everything on shutdown.
"""

from __future__ import annotations

import contextlib
import logging

from ..config import get_settings
from ..core.errors import ConfigError
from ..core.ports import AuthProvider, NoticeSink, NotificationDispatcher, RemoteStore
from ..core.session import UserIdentity
from ..core.state import AppState
from ..notify.dispatcher import (
    EmailNotificationDispatcher,
    FunctionNotificationDispatcher,
    NullNotificationDispatcher,
)
from ..notify.email import SendGridMailer
from ..store.auth import LocalAuthProvider, PasswordAuthProvider
from ..store.rest_store import RestRemoteStore
from ..store.sqlite_store import SQLiteRemoteStore
from ..tasks.assignee import AssigneeResolver
from ..tasks.task_sync import TaskSyncEngine

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.store_db_path.parent.mkdir(parents=True, exist_ok=True)


def _build_backend(settings) -> tuple[RemoteStore, AuthProvider]:
    if settings.backend == "supabase":
        if not settings.supabase_url or not settings.supabase_anon_key:
            raise ConfigError(
                "Hosted backend is not configured. Set DEVTASKR_SUPABASE_URL and DEVTASKR_SUPABASE_ANON_KEY."
            )
        store = RestRemoteStore(
            settings.supabase_url,
            settings.supabase_anon_key,
            timeout_seconds=settings.http_timeout_seconds,
            poll_interval_seconds=settings.change_poll_seconds,
        )
        auth = PasswordAuthProvider(
            settings.supabase_url,
            settings.supabase_anon_key,
            timeout_seconds=settings.http_timeout_seconds,
        )
        return store, auth

    local = SQLiteRemoteStore(settings.store_db_path)
    return local, LocalAuthProvider(local)


def _build_dispatcher(settings, store: RemoteStore) -> NotificationDispatcher:
    mode = settings.notification_mode
    try:
        if mode == "function":
            if not settings.supabase_url or not settings.supabase_anon_key:
                raise ConfigError("Notification function needs DEVTASKR_SUPABASE_URL and DEVTASKR_SUPABASE_ANON_KEY.")
            return FunctionNotificationDispatcher(
                settings.supabase_url,
                settings.supabase_anon_key,
                function_name=settings.notification_function,
                timeout_seconds=settings.http_timeout_seconds,
            )
        if mode == "email":
            if not settings.manager_email:
                raise ConfigError("Manager email is not set. Set DEVTASKR_MANAGER_EMAIL in your .env.")
            mailer = SendGridMailer(settings.sendgrid_api_key or "", settings.sender_email)
            return EmailNotificationDispatcher(store, mailer, manager_email=settings.manager_email)
    except ConfigError as e:
        # Tasks still work; completions just report a notification warning.
        logger.warning("Completion notifications disabled: %s", e)
    return NullNotificationDispatcher()


def create_initial_state(*, settings=None, notify: NoticeSink | None = None) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    store, auth = _build_backend(settings)
    dispatcher = _build_dispatcher(settings, store)
    engine = TaskSyncEngine(store, dispatcher, notify=notify)

    logger.info(
        "Backend=%s notifications=%s (%s)",
        settings.backend,
        settings.notification_mode,
        dispatcher.__class__.__name__,
    )
    return AppState(
        settings=settings,
        store=store,
        dispatcher=dispatcher,
        auth=auth,
        engine=engine,
        assignees=AssigneeResolver(store),
    )


async def apply_identity(state: AppState, user: UserIdentity | None) -> None:
    """Hand the (new) identity to token-aware clients, then to the engine."""
    token = user.access_token if user is not None else None
    for client in (state.store, state.dispatcher):
        set_token = getattr(client, "set_access_token", None)
        if callable(set_token):
            set_token(token)
    await state.engine.initialize(user)


async def shutdown(state: AppState) -> None:
    """Best-effort shutdown (no exceptions should escape)."""
    try:
        await state.engine.close()
    except Exception:
        logger.exception("Engine close failed.")

    seen: set[int] = set()
    for res in (state.store, state.dispatcher, state.auth):
        if id(res) in seen:
            continue
        seen.add(id(res))
        aclose = getattr(res, "aclose", None)
        if callable(aclose):
            with contextlib.suppress(Exception):
                await aclose()
