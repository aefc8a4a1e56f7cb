# src/devtaskr/cli/commands.py

from __future__ import annotations

import logging
import shlex
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime

from ..core.errors import TaskSyncError, ValidationError, friendly_error_message
from ..core.state import AppState
from ..tasks.board import EMPTY_COLUMN_TEXT, group_by_status, is_overdue, status_label
from ..tasks.task_models import Priority, Task, TaskDraft, TaskPatch, TaskStatus
from .bootstrap import apply_identity

CommandEmitter = Callable[[str], None]
CommandHandler = Callable[[AppState, list[str], CommandEmitter | None], Awaitable[str]]

logger = logging.getLogger(__name__)

SHORT_ID = 8


class CommandRegistry:
    """Simple slash-command registry used by the console (/help, /board, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    async def handle(self, state: AppState, line: str, emit: CommandEmitter | None = None) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.
        """
        if not line.startswith("/"):
            return None

        try:
            parts = shlex.split(line[1:])
        except ValueError as e:
            return f"Could not parse command: {e}"
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        try:
            return await handler(state, args, emit)
        except TaskSyncError as e:
            return friendly_error_message(e)

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


# ---- argument helpers ----


def _kv_args(args: list[str]) -> tuple[dict[str, str], list[str]]:
    """Split `key=value` pairs from positional words."""
    kv: dict[str, str] = {}
    rest: list[str] = []
    for a in args:
        key, sep, value = a.partition("=")
        if sep and key:
            kv[key.strip().lower()] = value
        else:
            rest.append(a)
    return kv, rest


def parse_due(raw: str) -> datetime:
    try:
        value = datetime.fromisoformat(raw.strip())
    except ValueError:
        raise ValidationError(f"Bad date {raw!r}; use YYYY-MM-DD or an ISO timestamp.") from None
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def find_task(state: AppState, ref: str) -> Task:
    ref = ref.strip()
    matches = [t for t in state.engine.tasks if t.id == ref or t.id.startswith(ref)]
    if not matches:
        raise ValidationError(f"No task matches {ref!r}. Use /board to list tasks.")
    if len(matches) > 1:
        raise ValidationError(f"{ref!r} matches {len(matches)} tasks; use more characters.")
    return matches[0]


async def resolve_assignee(state: AppState, ref: str) -> str:
    """'me', a profile id, or a profile name -> profile id."""
    ref = ref.strip()
    if ref.lower() == "me":
        user_id = state.engine.session.user_id
        if user_id is None:
            raise ValidationError("Log in first to assign tasks to yourself.")
        return user_id
    try:
        profiles = await state.store.select("profiles", columns=("id", "name"))
    except TaskSyncError:
        logger.debug("Profile lookup failed; using %r as an id", ref, exc_info=True)
        return ref
    for p in profiles:
        if str(p.get("id")) == ref or str(p.get("name") or "").casefold() == ref.casefold():
            return str(p["id"])
    return ref


async def _format_task(state: AppState, task: Task) -> str:
    who = await state.assignees.display_name(task)
    due = task.due_date.strftime("%b %d")
    flag = " [OVERDUE]" if is_overdue(task) else ""
    return f"  [{task.id[:SHORT_ID]}] ({task.priority.value}) {task.title} - {who}, due {due}{flag}"


def _require_signed_in(state: AppState) -> None:
    if not state.engine.session.signed_in:
        raise ValidationError("You are not logged in. Use /login or /signup.")


# ---- handlers ----


async def cmd_help(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    return registry.build_help()


async def cmd_status(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    engine = state.engine
    user = engine.session.user
    who = f"{user.name or user.email or user.id} ({user.id})" if user else "signed out"
    return (
        "Status:\n"
        f"  Backend: {getattr(state.settings, 'backend', '?')}\n"
        f"  Notifications: {state.dispatcher.__class__.__name__}\n"
        f"  User: {who}\n"
        f"  Tasks: {len(engine.tasks)} (loading={'yes' if engine.loading else 'no'}, "
        f"live={'yes' if engine.subscribed else 'no'})"
    )


async def cmd_signup(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    """/signup <email> [password] [name...]"""
    if not args:
        return "Usage: /signup <email> [password] [name...]"
    email = args[0]
    password = args[1] if len(args) > 1 else ""
    name = " ".join(args[2:])
    user = await state.auth.sign_up(email, password, name)
    if getattr(state.settings, "backend", "local") == "supabase" and not user.access_token:
        return "Account created. Confirm your email, then /login."
    await apply_identity(state, user)
    return f"Welcome, {user.name or user.email}. {len(state.engine.tasks)} tasks loaded."


async def cmd_login(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    """/login <email> [password]"""
    if not args:
        return "Usage: /login <email> [password]"
    user = await state.auth.sign_in(args[0], args[1] if len(args) > 1 else "")
    await apply_identity(state, user)
    return f"Logged in as {user.name or user.email}. {len(state.engine.tasks)} tasks loaded."


async def cmd_logout(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    if not state.engine.session.signed_in:
        return "Already logged out."
    await state.auth.sign_out()
    await apply_identity(state, None)
    return "Logged out."


async def cmd_board(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    _require_signed_in(state)
    columns = group_by_status(state.engine.tasks)
    lines: list[str] = []
    for status, tasks in columns.items():
        lines.append(f"{status_label(status)} ({len(tasks)})")
        if not tasks:
            lines.append(f"  {EMPTY_COLUMN_TEXT[status]}")
        for task in tasks:
            lines.append(await _format_task(state, task))
        lines.append("")
    return "\n".join(lines).rstrip()


async def cmd_add(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    """/add title="..." to=<me|name|id> due=YYYY-MM-DD [priority=..] [status=..] [desc="..."]"""
    kv, rest = _kv_args(args)
    title = kv.get("title") or " ".join(rest)
    if "due" not in kv:
        return 'Usage: /add title="..." to=<me|name|id> due=YYYY-MM-DD [priority=low|medium|high|urgent] [desc="..."]'
    assignee = await resolve_assignee(state, kv.get("to", "me"))
    draft = TaskDraft(
        title=title,
        assigned_to=assignee,
        due_date=parse_due(kv["due"]),
        description=kv.get("desc", ""),
        priority=Priority.parse(kv.get("priority", "medium")),
        status=TaskStatus.parse(kv.get("status", "todo")),
    )
    task = await state.engine.create(draft)
    if task is None:
        return f"Task not created: {friendly_error_message(state.engine.last_error or TaskSyncError(''))}"
    return f"Created [{task.id[:SHORT_ID]}] {task.title}"


async def cmd_edit(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    """/edit <task> [title=..] [desc=..] [due=..] [priority=..] [status=..] [to=..]"""
    kv, rest = _kv_args(args)
    if not rest:
        return "Usage: /edit <task> [title=..] [desc=..] [due=..] [priority=..] [status=..] [to=..]"
    task = find_task(state, rest[0])
    patch = TaskPatch(
        title=kv.get("title"),
        description=kv.get("desc"),
        due_date=parse_due(kv["due"]) if "due" in kv else None,
        priority=Priority.parse(kv["priority"]) if "priority" in kv else None,
        status=TaskStatus.parse(kv["status"]) if "status" in kv else None,
        assigned_to=await resolve_assignee(state, kv["to"]) if "to" in kv else None,
    )
    ok = await state.engine.update(task.id, patch)
    return f"Updated [{task.id[:SHORT_ID]}]" if ok else "Task not updated."


async def cmd_move(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    """/move <task> <todo|in-progress|completed>"""
    if len(args) < 2:
        return "Usage: /move <task> <todo|in-progress|completed>"
    task = find_task(state, args[0])
    status = TaskStatus.parse(args[1])
    ok = await state.engine.update_status(task.id, status)
    return f"[{task.id[:SHORT_ID]}] -> {status_label(status)}" if ok else "Status not changed."


async def cmd_done(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    """/done <task> [message...]"""
    if not args:
        return "Usage: /done <task> [message...]"
    task = find_task(state, args[0])
    message = " ".join(args[1:]) or None
    ok = await state.engine.update_status(task.id, TaskStatus.COMPLETED, message=message)
    return f"[{task.id[:SHORT_ID]}] completed." if ok else "Status not changed."


async def cmd_rm(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    if not args:
        return "Usage: /rm <task>"
    task = find_task(state, args[0])
    ok = await state.engine.delete(task.id)
    return f"Deleted [{task.id[:SHORT_ID]}] {task.title}" if ok else "Task not deleted."


async def cmd_refresh(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    _require_signed_in(state)
    ok = await state.engine.refetch()
    return f"{len(state.engine.tasks)} tasks loaded." if ok else "Refresh failed; showing the last loaded tasks."


async def cmd_who(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    rows = await state.store.select("profiles", columns=("id", "name"), order_by="name")
    if not rows:
        return "No profiles yet. Use /signup."
    return "\n".join(["Team:"] + [f"  {r.get('name') or '?'} ({r['id']})" for r in rows])


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("status", cmd_status, help_text="Show backend, user and sync state.")
registry.register("signup", cmd_signup, help_text="Create an account: /signup <email> [password] [name].")
registry.register("login", cmd_login, help_text="Sign in: /login <email> [password].")
registry.register("logout", cmd_logout, help_text="Sign out and clear the board.")
registry.register("board", cmd_board, help_text="Show the board (To Do / In Progress / Completed).", aliases=["ls"])
registry.register("add", cmd_add, help_text='New task: /add title="..." to=me due=YYYY-MM-DD [priority=..].')
registry.register("edit", cmd_edit, help_text="Edit fields: /edit <task> title=.. due=.. priority=.. to=..")
registry.register("move", cmd_move, help_text="Change status: /move <task> <todo|in-progress|completed>.")
registry.register("done", cmd_done, help_text="Complete a task and notify the manager: /done <task> [message].")
registry.register("rm", cmd_rm, help_text="Delete a task: /rm <task>.", aliases=["delete"])
registry.register("refresh", cmd_refresh, help_text="Reload all tasks from the store.")
registry.register("who", cmd_who, help_text="List team profiles (for to=...).")
