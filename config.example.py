# config.example.py

"""
Documentation-only module (safe to commit).

The real configuration is loaded from environment variables (optionally via a local .env file).
Do NOT commit real secrets. Keep them in .env (local, gitignored).

This file exists to make the repo self-documenting even without opening .env.
Unprefixed SUPABASE_URL / SUPABASE_ANON_KEY / SENDGRID_API_KEY / MANAGER_EMAIL
are accepted as fallbacks for the prefixed names.
"""

ENV_VARS = {
    # App / logging
    "DEVTASKR_APP_NAME": "App display name (default: DevTaskr).",
    "DEVTASKR_LOG_LEVEL": "Console logging level (default: INFO). The log file always gets DEBUG.",
    # Switches
    "DEVTASKR_BACKEND": "local (SQLite, no passwords) or supabase (hosted REST + auth). Default: local.",
    "DEVTASKR_NOTIFICATION_MODE": (
        "function (hosted send-task-notification), email (SendGrid in-process) or off. "
        "Default: function for supabase, email for local."
    ),
    # Paths (gitignored)
    "DEVTASKR_DATA_DIR": "Local data directory for the log file and the SQLite store (default: .local/devtaskr).",
    "DEVTASKR_STORE_DB_PATH": "SQLite store path (default: <data_dir>/devtaskr.sqlite3).",
    # Hosted backend
    "DEVTASKR_SUPABASE_URL": "Project URL, e.g. https://<ref>.supabase.co (required for backend=supabase).",
    "DEVTASKR_SUPABASE_ANON_KEY": "Project anon key (required for backend=supabase).",
    "DEVTASKR_NOTIFICATION_FUNCTION": "Serverless function name (default: send-task-notification).",
    # Email (notification_mode=email)
    "DEVTASKR_MANAGER_EMAIL": "Who receives task-completed emails.",
    "DEVTASKR_SENDER_EMAIL": "Verified SendGrid sender address.",
    "DEVTASKR_SENDGRID_API_KEY": "SendGrid API key.",
    # Tuning
    "DEVTASKR_CHANGE_POLL_SECONDS": "Change-feed poll interval for the hosted backend (default: 5).",
    "DEVTASKR_HTTP_TIMEOUT_SECONDS": "Read timeout for HTTP calls (default: 10).",
}
