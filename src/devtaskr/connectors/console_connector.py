# src/devtaskr/connectors/console_connector.py

from __future__ import annotations

import asyncio
import logging
import sys
from datetime import datetime

from ..cli.commands import registry as command_registry
from ..core.ports import Notice, NoticeLevel
from ..core.state import AppState

logger = logging.getLogger(__name__)

PROMPT = ">>> "

_LEVEL_TAGS = {
    NoticeLevel.INFO: "",
    NoticeLevel.WARNING: "[!] ",
    NoticeLevel.ERROR: "[x] ",
}


def _ts_local() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _rewrite_prev_line(line: str) -> None:
    """
    Replace the last terminal line with `line`.
    Best-effort: if not a TTY, just print a new line.
    """
    try:
        if sys.stdout.isatty():
            sys.stdout.write("\033[1A\033[2K\r")
            sys.stdout.write(line + "\n")
            sys.stdout.flush()
        else:
            print(line)
    except OSError:
        print(line)


def _print_ts(text: str) -> None:
    print(f"[{_ts_local()}] {text}", flush=True)


def print_notice(notice: Notice) -> None:
    """NoticeSink for the console: one timestamped line per toast."""
    tag = _LEVEL_TAGS.get(notice.level, "")
    _print_ts(f"{tag}{notice.title}: {notice.text}")


async def run_console_loop(state: AppState) -> None:
    logger.info("Console connector started (backend=%s).", getattr(state.settings, "backend", "?"))
    _print_ts("[CONSOLE] Use /signup or /login, then /board. Use /help for commands, /exit to quit.\n")

    while True:
        try:
            # input() blocks; keep the loop free for change-feed refetches.
            user_input = (await asyncio.to_thread(input, PROMPT)).strip()
            _rewrite_prev_line(f"[{_ts_local()}] {PROMPT}{user_input}")
        except EOFError:
            logger.info("Console EOF received, exiting.")
            break
        except KeyboardInterrupt:
            logger.info("Console KeyboardInterrupt, exiting.")
            print()
            break

        if not user_input:
            continue

        if user_input.lower() in ("/exit", "/quit"):
            logger.info("Console exit command received.")
            break

        try:
            reply = await command_registry.handle(state, user_input, emit=_print_ts)
        except Exception:
            logger.exception("Command handler crashed.")
            reply = "Internal error while handling a command."

        if reply is None:
            reply = "Commands start with '/'. Use /help to list them."
        _print_ts(reply)

    logger.info("Console connector finished.")
