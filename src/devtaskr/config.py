# src/devtaskr/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app.
- No secrets required at import time; a backend checks its own settings when it is built.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

ENV_PREFIX = "DEVTASKR"

BACKENDS = ("local", "supabase")
NOTIFICATION_MODES = ("function", "email", "off")


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _first_env(*names: str, default: str | None = None) -> str | None:
    for n in names:
        v = os.getenv(n)
        if v is not None and v.strip() != "":
            return v
    return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


def _env_choice(name: str, choices: tuple[str, ...], default: str) -> str:
    raw = _env(name, default).strip().lower()
    return raw if raw in choices else default


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str

    # ---- Backend selection ----
    backend: str
    notification_mode: str

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    store_db_path: Path

    # ---- Hosted backend ----
    supabase_url: str
    supabase_anon_key: str
    notification_function: str

    # ---- Email ----
    manager_email: str
    sender_email: str
    sendgrid_api_key: str | None

    # ---- Tuning ----
    change_poll_seconds: float
    http_timeout_seconds: float

    @staticmethod
    def from_env() -> "Settings":
        app_name = _env(_k("APP_NAME"), "DevTaskr")
        log_level = _env(_k("LOG_LEVEL"), "INFO")

        backend = _env_choice(_k("BACKEND"), BACKENDS, "local")
        # Hosted backend has its own function that mails; locally we send mail in-process.
        notification_mode = _env_choice(
            _k("NOTIFICATION_MODE"),
            NOTIFICATION_MODES,
            "function" if backend == "supabase" else "email",
        )

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/devtaskr"))
        store_db_path = _env_path(_k("STORE_DB_PATH"), data_dir / "devtaskr.sqlite3")

        supabase_url = (_first_env(_k("SUPABASE_URL"), "SUPABASE_URL", default="") or "").strip()
        supabase_anon_key = (_first_env(_k("SUPABASE_ANON_KEY"), "SUPABASE_ANON_KEY", default="") or "").strip()
        notification_function = _env(_k("NOTIFICATION_FUNCTION"), "send-task-notification")

        manager_email = (_first_env(_k("MANAGER_EMAIL"), "MANAGER_EMAIL", default="") or "").strip()
        sender_email = _env(_k("SENDER_EMAIL"), "").strip()
        sendgrid_api_key = _first_env(_k("SENDGRID_API_KEY"), "SENDGRID_API_KEY", default=None)

        change_poll_seconds = _env_float(_k("CHANGE_POLL_SECONDS"), 5.0)
        http_timeout_seconds = _env_float(_k("HTTP_TIMEOUT_SECONDS"), 10.0)

        return Settings(
            app_name=app_name,
            log_level=log_level,
            backend=backend,
            notification_mode=notification_mode,
            data_dir=data_dir,
            store_db_path=store_db_path,
            supabase_url=supabase_url,
            supabase_anon_key=supabase_anon_key,
            notification_function=notification_function,
            manager_email=manager_email,
            sender_email=sender_email,
            sendgrid_api_key=sendgrid_api_key,
            change_poll_seconds=change_poll_seconds,
            http_timeout_seconds=http_timeout_seconds,
        )


_SETTINGS: Settings | None = None


def get_settings() -> Settings:
    """Load .env (without overriding real env vars) and build Settings once."""
    global _SETTINGS
    if _SETTINGS is None:
        load_dotenv(override=False)
        _SETTINGS = Settings.from_env()
    return _SETTINGS
