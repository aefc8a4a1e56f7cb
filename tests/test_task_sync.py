# tests/test_task_sync.py

from __future__ import annotations

import asyncio
from datetime import UTC, datetime

import pytest

from devtaskr.core.errors import AuthorizationError, NotificationError, RemoteError, ValidationError
from devtaskr.core.ports import ChangeType, DispatchResult, NoticeLevel
from devtaskr.core.session import UserIdentity
from devtaskr.tasks.task_models import Priority, TaskDraft, TaskPatch, TaskStatus, parse_iso
from devtaskr.tasks.board import is_overdue
from devtaskr.tasks.task_sync import DEFAULT_COMPLETION_MESSAGE


def _draft(**overrides) -> TaskDraft:
    data = dict(
        title="Write docs",
        assigned_to="u2",
        due_date=datetime(2026, 3, 1, 17, 0, tzinfo=UTC),
        description="API reference",
        priority=Priority.HIGH,
    )
    data.update(overrides)
    return TaskDraft(**data)


async def _board_with_a_and_b(engine, store, user) -> None:
    store.put_task(id="A", title="Task A", status="todo", assigned_to="u1")
    store.put_task(id="B", title="Task B", status="in-progress", assigned_to="u2")
    await engine.initialize(user)


def _ids(engine) -> list[str]:
    return [t.id for t in engine.tasks]


# ---- create ----


@pytest.mark.asyncio
async def test_create_then_refetch_yields_exactly_one_matching_task(engine, store, user) -> None:
    await engine.initialize(user)

    created = await engine.create(_draft(title="  Write docs  "))
    assert created is not None
    assert _ids(engine) == [created.id]

    assert await engine.refetch() is True
    matching = [t for t in engine.tasks if t.title == "Write docs"]
    assert len(matching) == 1

    task = matching[0]
    assert task.id == created.id
    assert task.description == "API reference"
    assert task.priority is Priority.HIGH
    assert task.status is TaskStatus.TODO
    assert task.assigned_to == "u2"
    assert task.assignee_name == "Bob"
    assert task.created_by == "u1"
    assert task.due_date == datetime(2026, 3, 1, 17, 0, tzinfo=UTC)


@pytest.mark.asyncio
async def test_create_with_empty_title_makes_no_store_calls(engine, store, user, notices) -> None:
    await engine.initialize(user)
    before = engine.tasks
    store.calls.clear()

    assert await engine.create(_draft(title="   ")) is None

    assert store.calls == []
    assert engine.tasks == before
    assert isinstance(engine.last_error, ValidationError)
    assert notices.notices[-1].level is NoticeLevel.ERROR
    assert notices.notices[-1].title == "Error"


@pytest.mark.asyncio
async def test_create_without_user_fails_authorization_with_no_store_calls(engine, store) -> None:
    assert await engine.create(_draft()) is None

    assert store.calls == []
    assert engine.tasks == ()
    assert isinstance(engine.last_error, AuthorizationError)
    assert "logged in" in engine.last_error.message


@pytest.mark.asyncio
async def test_update_and_delete_without_user_make_no_store_calls(engine, store) -> None:
    assert await engine.update("A", TaskPatch(title="X")) is False
    assert await engine.delete("A") is False
    assert store.calls == []
    assert isinstance(engine.last_error, AuthorizationError)


@pytest.mark.asyncio
async def test_create_emits_success_notice(engine, user, notices) -> None:
    await engine.initialize(user)
    await engine.create(_draft())
    assert notices.notices[-1].title == "Task created"
    assert notices.notices[-1].text == "Your task has been created successfully"


@pytest.mark.asyncio
async def test_create_store_failure_leaves_collection_unchanged(engine, store, user) -> None:
    await engine.initialize(user)
    store.fail["insert"] = RemoteError("insert rejected", status_code=403)

    assert await engine.create(_draft()) is None
    assert engine.tasks == ()
    assert engine.last_error.message == "insert rejected"


@pytest.mark.asyncio
async def test_create_does_not_duplicate_a_task_already_refetched(engine, store, user) -> None:
    await engine.initialize(user)
    original_insert = store.insert

    async def insert_then_refetch(table, record):
        row = await original_insert(table, record)
        # The feed-triggered refetch lands before the insert response.
        await engine.refetch()
        return row

    store.insert = insert_then_refetch
    created = await engine.create(_draft())

    assert _ids(engine) == [created.id]


# ---- update / completion notification ----


@pytest.mark.asyncio
async def test_complete_status_notifies_once_and_leaves_other_tasks(engine, store, user, dispatcher) -> None:
    await _board_with_a_and_b(engine, store, user)
    b_before = engine.get("B")

    assert await engine.update_status("A", "completed") is True

    assert engine.get("A").status is TaskStatus.COMPLETED
    assert dispatcher.calls == [("A", DEFAULT_COMPLETION_MESSAGE)]
    assert engine.get("B") == b_before


@pytest.mark.parametrize(
    "result, raises",
    [
        (DispatchResult(success=True), None),
        (DispatchResult(success=False, error="smtp down"), None),
        (DispatchResult(success=True), RuntimeError("dispatcher crashed")),
    ],
)
@pytest.mark.asyncio
async def test_completion_invokes_dispatcher_exactly_once_regardless_of_outcome(
        engine, store, user, dispatcher, result, raises
) -> None:
    await _board_with_a_and_b(engine, store, user)
    dispatcher.result = result
    dispatcher.raises = raises

    assert await engine.update("A", TaskPatch(status=TaskStatus.COMPLETED)) is True

    assert [c[0] for c in dispatcher.calls] == ["A"]
    assert engine.get("A").status is TaskStatus.COMPLETED


@pytest.mark.asyncio
async def test_failed_notification_is_a_warning_not_an_error(engine, store, user, dispatcher, notices) -> None:
    await _board_with_a_and_b(engine, store, user)
    dispatcher.result = DispatchResult(success=False, error="smtp down")

    assert await engine.update_status("A", TaskStatus.COMPLETED) is True

    assert isinstance(engine.last_warning, NotificationError)
    assert engine.last_error is None
    assert notices.titles()[-2:] == ["Task updated", "Warning"]
    assert notices.notices[-1].text == "Task updated but failed to send email notification"


@pytest.mark.asyncio
async def test_successful_notification_emits_notice(engine, store, user, notices) -> None:
    await _board_with_a_and_b(engine, store, user)
    await engine.update_status("A", TaskStatus.COMPLETED)
    assert notices.notices[-1].title == "Notification sent"


@pytest.mark.asyncio
async def test_completion_message_is_forwarded(engine, store, user, dispatcher) -> None:
    await _board_with_a_and_b(engine, store, user)
    await engine.update_status("A", TaskStatus.COMPLETED, message="Shipped in v2")
    assert dispatcher.calls == [("A", "Shipped in v2")]


@pytest.mark.asyncio
async def test_title_update_does_not_notify(engine, store, user, dispatcher) -> None:
    await _board_with_a_and_b(engine, store, user)

    assert await engine.update("A", TaskPatch(title="X")) is True

    assert dispatcher.calls == []
    assert engine.get("A").title == "X"
    assert engine.get("A").status is TaskStatus.TODO


@pytest.mark.asyncio
async def test_empty_patch_is_rejected_before_the_store(engine, store, user) -> None:
    await _board_with_a_and_b(engine, store, user)
    store.calls.clear()

    assert await engine.update("A", TaskPatch()) is False
    assert store.calls == []
    assert isinstance(engine.last_error, ValidationError)


@pytest.mark.asyncio
async def test_failed_completion_update_does_not_notify_or_patch(engine, store, user, dispatcher) -> None:
    await _board_with_a_and_b(engine, store, user)
    store.fail["update"] = RemoteError("row level security", status_code=403)

    assert await engine.update_status("A", TaskStatus.COMPLETED) is False

    assert dispatcher.calls == []
    assert engine.get("A").status is TaskStatus.TODO
    assert engine.last_error.message == "row level security"


@pytest.mark.asyncio
async def test_update_takes_updated_at_from_store_response(engine, store, user) -> None:
    await _board_with_a_and_b(engine, store, user)
    before = engine.get("A").updated_at

    await engine.update("A", TaskPatch(priority=Priority.URGENT))

    after = engine.get("A")
    assert after.priority is Priority.URGENT
    assert after.updated_at > before
    assert after.updated_at == parse_iso(store.tables["tasks"]["A"]["updated_at"])


@pytest.mark.asyncio
async def test_update_with_naive_due_date_stores_utc(engine, store, user) -> None:
    await _board_with_a_and_b(engine, store, user)

    assert await engine.update("A", TaskPatch(due_date=datetime(2020, 1, 1))) is True

    task = engine.get("A")
    assert task.due_date == datetime(2020, 1, 1, tzinfo=UTC)
    assert task.due_date.tzinfo is not None
    assert is_overdue(task)


# ---- delete ----


@pytest.mark.asyncio
async def test_delete_then_refetch_has_no_such_task(engine, store, user, notices) -> None:
    await _board_with_a_and_b(engine, store, user)

    assert await engine.delete("A") is True
    assert "A" not in _ids(engine)
    assert notices.notices[-1].title == "Task deleted"

    await engine.refetch()
    assert "A" not in _ids(engine)
    assert _ids(engine) == ["B"]


# ---- reconciliation ----


@pytest.mark.asyncio
async def test_refetch_orders_newest_first(engine, store, user) -> None:
    await _board_with_a_and_b(engine, store, user)
    store.put_task(id="C", title="Task C")
    await engine.refetch()
    assert _ids(engine) == ["C", "B", "A"]


@pytest.mark.asyncio
async def test_refetch_failure_keeps_previous_collection(engine, store, user, notices) -> None:
    await _board_with_a_and_b(engine, store, user)
    before = engine.tasks
    store.fail["select"] = RemoteError("store unavailable", status_code=503)

    assert await engine.refetch() is False

    assert engine.tasks == before
    assert engine.last_error.message == "store unavailable"
    assert notices.notices[-1].level is NoticeLevel.ERROR
    assert not engine.loading


@pytest.mark.asyncio
async def test_reconcile_wins_over_earlier_local_patch(engine, store, user) -> None:
    await _board_with_a_and_b(engine, store, user)

    await engine.update("A", TaskPatch(title="Local title"))
    # Someone else renamed it after our write.
    store.tables["tasks"]["A"]["title"] = "Remote title"
    await engine.refetch()

    assert engine.get("A").title == "Remote title"


@pytest.mark.asyncio
async def test_apply_local_patch_unknown_task_returns_none(engine, store, user) -> None:
    await _board_with_a_and_b(engine, store, user)
    before = engine.tasks
    assert engine.apply_local_patch("nope", TaskPatch(title="X"), datetime.now(UTC)) is None
    assert engine.tasks == before


@pytest.mark.asyncio
async def test_overlapping_refetches_last_completed_wins(engine, store, user) -> None:
    """
    Two refetches overlap; the one that started first completes last.
    The collection reflects the last COMPLETED refetch, even though its
    snapshot is older. This is accepted behavior: no sequence guard.
    """
    await _board_with_a_and_b(engine, store, user)

    slow = asyncio.Event()
    store.select_gates.append(slow)
    first = asyncio.create_task(engine.refetch())
    await asyncio.sleep(0)  # first has taken its snapshot and is parked
    assert engine.loading

    store.put_task(id="C", title="Task C")
    assert await engine.refetch() is True
    assert _ids(engine) == ["C", "B", "A"]
    assert engine.loading

    slow.set()
    assert await first is True

    assert _ids(engine) == ["B", "A"]
    assert not engine.loading

    # The next change event reconciles again.
    store.push("tasks", ChangeType.INSERT, "C")
    await engine.wait_idle()
    assert _ids(engine) == ["C", "B", "A"]


@pytest.mark.asyncio
async def test_overlapping_refetches_in_order_keep_newest(engine, store, user) -> None:
    await _board_with_a_and_b(engine, store, user)

    gate = asyncio.Event()
    store.select_gates.append(gate)
    first = asyncio.create_task(engine.refetch())
    await asyncio.sleep(0)

    gate.set()
    await first
    store.put_task(id="C", title="Task C")
    await engine.refetch()

    assert _ids(engine) == ["C", "B", "A"]


# ---- change feed / lifecycle ----


@pytest.mark.asyncio
async def test_change_event_triggers_refetch(engine, store, user) -> None:
    await engine.initialize(user)
    assert engine.tasks == ()

    store.put_task(id="N", title="Pushed by someone else")
    store.push("tasks", ChangeType.INSERT, "N")
    await engine.wait_idle()

    assert _ids(engine) == ["N"]


@pytest.mark.asyncio
async def test_every_change_type_triggers_a_refetch(engine, store, user) -> None:
    await _board_with_a_and_b(engine, store, user)
    selects = len(store.ops("select"))

    for kind in ChangeType:
        store.push("tasks", kind, "A")
    await engine.wait_idle()

    assert len(store.ops("select")) == selects + 3


@pytest.mark.asyncio
async def test_initialize_same_user_is_idempotent(engine, store, user) -> None:
    await engine.initialize(user)
    await engine.initialize(user)
    await engine.initialize(UserIdentity(id=user.id, email=user.email, access_token="refreshed"))

    assert len(store.ops("subscribe")) == 1
    assert store.hub.count("tasks") == 1
    assert engine.session.user.access_token == "refreshed"


@pytest.mark.asyncio
async def test_overlapping_initialize_for_one_user_subscribes_once(engine, store, user) -> None:
    store.put_task(id="A", title="Task A")
    store.subscribe_gate = asyncio.Event()

    first = asyncio.create_task(engine.initialize(user))
    second = asyncio.create_task(engine.initialize(user))
    await asyncio.sleep(0)
    assert not second.done()

    store.subscribe_gate.set()
    await asyncio.gather(first, second)

    assert len(store.ops("subscribe")) == 1
    assert store.hub.count("tasks") == 1
    assert _ids(engine) == ["A"]

    await engine.initialize(None)
    assert store.hub.count("tasks") == 0


@pytest.mark.asyncio
async def test_sign_out_while_subscribing_leaves_no_subscription(engine, store, user) -> None:
    store.put_task(id="A", title="Task A")
    store.subscribe_gate = asyncio.Event()

    pending = asyncio.create_task(engine.initialize(user))
    await asyncio.sleep(0)
    await engine.initialize(None)

    store.subscribe_gate.set()
    await pending

    assert store.hub.count("tasks") == 0
    assert not engine.subscribed
    assert engine.tasks == ()
    assert engine.session.user is None


@pytest.mark.asyncio
async def test_user_switch_while_subscribing_keeps_one_subscription(engine, store, user) -> None:
    store.subscribe_gate = asyncio.Event()

    pending = asyncio.create_task(engine.initialize(user))
    await asyncio.sleep(0)
    switched = asyncio.create_task(engine.initialize(UserIdentity(id="u2", name="Bob")))
    await asyncio.sleep(0)

    store.subscribe_gate.set()
    await asyncio.gather(pending, switched)

    assert store.hub.count("tasks") == 1
    assert engine.subscribed
    assert engine.session.user_id == "u2"


@pytest.mark.asyncio
async def test_initialize_other_user_replaces_subscription(engine, store, user) -> None:
    await _board_with_a_and_b(engine, store, user)

    await engine.initialize(UserIdentity(id="u2", name="Bob"))

    assert len(store.ops("subscribe")) == 2
    assert len(store.ops("unsubscribe")) == 1
    assert store.hub.count("tasks") == 1
    assert engine.session.user_id == "u2"


@pytest.mark.asyncio
async def test_sign_out_releases_subscription_and_clears(engine, store, user) -> None:
    await _board_with_a_and_b(engine, store, user)
    assert engine.subscribed

    await engine.initialize(None)

    assert engine.tasks == ()
    assert not engine.subscribed
    assert store.hub.count("tasks") == 0

    # Events after sign-out are ignored.
    store.push("tasks", ChangeType.UPDATE, "A")
    await engine.wait_idle()
    assert engine.tasks == ()


@pytest.mark.asyncio
async def test_refetch_in_flight_during_sign_out_is_dropped(engine, store, user) -> None:
    await _board_with_a_and_b(engine, store, user)

    gate = asyncio.Event()
    store.select_gates.append(gate)
    pending = asyncio.create_task(engine.refetch())
    await asyncio.sleep(0)

    await engine.initialize(None)
    gate.set()

    assert await pending is False
    assert engine.tasks == ()


@pytest.mark.asyncio
async def test_subscribe_failure_still_loads_tasks(engine, store, user) -> None:
    store.put_task(id="A", title="Task A")
    store.fail["subscribe"] = RemoteError("realtime unavailable")

    await engine.initialize(user)

    assert not engine.subscribed
    assert _ids(engine) == ["A"]
    assert engine.last_error.message == "realtime unavailable"


@pytest.mark.asyncio
async def test_close_releases_subscription(engine, store, user) -> None:
    async with engine:
        await engine.initialize(user)
        assert store.hub.count("tasks") == 1
    assert store.hub.count("tasks") == 0
