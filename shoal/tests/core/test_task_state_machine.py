"""Tests for task and plan state machine guard clauses.

Verifies that task transitions are properly validated, that invalid
transitions raise StateError without touching the task, and that plan
counters follow every transition.
"""

from datetime import UTC, datetime

import pytest

from shoal.core.errors import EmptyPlanError, StateError, ValidationError
from shoal.core.models import (
    SHIPMENT_TARGET,
    BlockReason,
    Collection,
    FishKind,
    FishRef,
    GeneralTask,
    PlanStatus,
    TaskStatus,
    TransferPayload,
    TransferPlan,
    TransferTask,
    UnblockAction,
    WriteBatch,
)

NOW = datetime(2024, 3, 1, 9, 0, 0, tzinfo=UTC)
LATER = datetime(2024, 3, 1, 10, 0, 0, tzinfo=UTC)


@pytest.fixture
def transfer() -> TransferPayload:
    """Create a sample transfer payload."""
    return TransferPayload(
        fish=FishRef(id="lot-1", kind=FishKind.CATALOG),
        quantity=5,
        source_aquarium_id="aq-1",
        target_aquarium_id="aq-2",
    )


@pytest.fixture
def task(transfer: TransferPayload) -> TransferTask:
    """Create a pending transfer task."""
    return TransferTask(
        id="task-1",
        plan_id="plan-1",
        farm_id="farm-1",
        transfer=transfer,
        order=0,
        created_at=NOW,
        updated_at=NOW,
    )


@pytest.fixture
def plan() -> TransferPlan:
    """Create an empty plan in PLANNING status."""
    return TransferPlan(
        id="plan-1",
        farm_id="farm-1",
        name="Spring rotation",
        created_by="maria",
        created_at=NOW,
        updated_at=NOW,
    )


# ============================================================================
# Transfer payload validation
# ============================================================================


@pytest.mark.parametrize("quantity", [0, -3, 2.5, True])
def test_payload_rejects_invalid_quantity(quantity: object) -> None:
    """Quantity must be a positive integer."""
    with pytest.raises(ValidationError, match="positive integer"):
        TransferPayload(
            fish=FishRef(id="lot-1"),
            quantity=quantity,  # type: ignore[arg-type]
            source_aquarium_id="aq-1",
            target_aquarium_id="aq-2",
        )


def test_payload_rejects_identical_source_and_target() -> None:
    """Moving fish to the aquarium they are in is refused."""
    with pytest.raises(ValidationError, match="cannot be the same"):
        TransferPayload(
            fish=FishRef(id="lot-1"),
            quantity=1,
            source_aquarium_id="aq-1",
            target_aquarium_id="aq-1",
        )


def test_payload_rejects_missing_aquariums() -> None:
    """Source and target are required."""
    with pytest.raises(ValidationError, match="source aquarium"):
        TransferPayload(
            fish=FishRef(id="lot-1"), quantity=1, source_aquarium_id="", target_aquarium_id="aq-2"
        )
    with pytest.raises(ValidationError, match="target aquarium"):
        TransferPayload(
            fish=FishRef(id="lot-1"), quantity=1, source_aquarium_id="aq-1", target_aquarium_id=""
        )


def test_payload_detects_shipment() -> None:
    """The shipment sentinel marks fish leaving the farm."""
    payload = TransferPayload(
        fish=FishRef(id="lot-1"),
        quantity=1,
        source_aquarium_id="aq-1",
        target_aquarium_id=SHIPMENT_TARGET,
    )
    assert payload.is_shipment


def test_fish_ref_requires_id() -> None:
    """A blank fish reference is invalid."""
    with pytest.raises(ValidationError):
        FishRef(id="  ")


# ============================================================================
# block / unblock
# ============================================================================


def test_block_sets_reason_and_notes(task: TransferTask) -> None:
    """Blocking records an enumerated reason."""
    task.block("temperature", "Water at 31C", LATER)

    assert task.status == TaskStatus.BLOCKED
    assert task.block_reason == BlockReason.TEMPERATURE
    assert task.block_notes == "Water at 31C"
    assert task.updated_at == LATER


def test_block_rejects_unknown_reason(task: TransferTask) -> None:
    """Only the enumerated causes are accepted."""
    with pytest.raises(ValidationError, match="Invalid block reason"):
        task.block("bored", "", LATER)
    assert task.status == TaskStatus.PENDING


def test_block_from_blocked_raises(task: TransferTask) -> None:
    """A blocked task cannot be blocked again."""
    task.block(BlockReason.LEAK, "", NOW)
    with pytest.raises(StateError, match="Cannot block while status is 'blocked'"):
        task.block(BlockReason.SIZE, "", LATER)
    assert task.block_reason == BlockReason.LEAK


def test_unblock_continue_clears_block(task: TransferTask) -> None:
    """Continue returns the task to pending and clears reason and notes."""
    task.block(BlockReason.SIZE, "Too big for the net", NOW)

    action = task.unblock("continue", LATER)

    assert action == UnblockAction.CONTINUE
    assert task.status == TaskStatus.PENDING
    assert task.block_reason is None
    assert task.block_notes is None


def test_unblock_cancel_is_terminal(task: TransferTask) -> None:
    """Cancel abandons the task for good."""
    task.block(BlockReason.OTHER, "", NOW)
    task.unblock(UnblockAction.CANCEL, LATER)

    assert task.status == TaskStatus.CANCELLED
    with pytest.raises(StateError):
        task.ensure_completable()
    with pytest.raises(StateError):
        task.block(BlockReason.OTHER, "", LATER)


def test_unblock_pending_task_raises(task: TransferTask) -> None:
    """Only blocked tasks can be unblocked."""
    with pytest.raises(StateError, match="pending") as exc:
        task.unblock("continue", LATER)
    assert (exc.value.attempted, exc.value.actual) == ("unblock (continue)", "pending")


def test_unblock_rejects_unknown_action(task: TransferTask) -> None:
    """The manager must choose continue or cancel."""
    task.block(BlockReason.OTHER, "", NOW)
    with pytest.raises(ValidationError, match="continue"):
        task.unblock("retry", LATER)
    assert task.status == TaskStatus.BLOCKED


# ============================================================================
# completion
# ============================================================================


def test_mark_executed_completes_task(task: TransferTask) -> None:
    """Execution stamps executed_at and completes the task."""
    task.mark_executed(LATER)

    assert task.status == TaskStatus.COMPLETED
    assert task.executed_at == LATER


def test_completed_task_cannot_complete_again(task: TransferTask) -> None:
    """Completion happens at most once."""
    task.mark_executed(NOW)
    with pytest.raises(StateError, match="already completed"):
        task.mark_executed(LATER)
    assert task.executed_at == NOW


def test_blocked_task_requires_manager(task: TransferTask) -> None:
    """The blocked error tells the caller a manager must unblock first."""
    task.block(BlockReason.LEAK, "", NOW)
    with pytest.raises(StateError, match="manager must unblock") as exc:
        task.ensure_completable()
    assert (exc.value.attempted, exc.value.actual) == ("complete", "blocked")


def test_block_completed_task_names_states(task: TransferTask) -> None:
    """Errors name the attempted transition and the status it was refused in."""
    task.mark_executed(NOW)
    with pytest.raises(StateError) as exc:
        task.block(BlockReason.LEAK, "", LATER)
    assert exc.value.attempted == "block"
    assert exc.value.actual == "completed"
    assert task.block_reason is None


def test_withdraw_cancels_open_task(task: TransferTask) -> None:
    """Cancelling a plan withdraws its open tasks."""
    task.withdraw(LATER)
    assert task.status == TaskStatus.CANCELLED
    with pytest.raises(StateError):
        task.withdraw(LATER)


def test_general_task_requires_title() -> None:
    """Checklist tasks need a title."""
    with pytest.raises(ValidationError, match="title"):
        GeneralTask(
            id="t-1", farm_id="farm-1", title=" ", created_by="ana",
            created_at=NOW, updated_at=NOW,
        )


def test_general_task_type_follows_payload(transfer: TransferPayload) -> None:
    """A task carrying a transfer is a transfer task."""
    plain = GeneralTask(
        id="t-1", farm_id="farm-1", title="Clean filters", created_by="ana",
        created_at=NOW, updated_at=NOW,
    )
    moving = GeneralTask(
        id="t-2", farm_id="farm-1", title="Move tetras", created_by="ana",
        created_at=NOW, updated_at=NOW, transfer=transfer,
    )
    assert plain.task_type == "general"
    assert moving.task_type == "transfer"


# ============================================================================
# plan counters
# ============================================================================


def test_record_task_added_returns_order(plan: TransferPlan) -> None:
    """Each added task takes the next order slot."""
    assert plan.record_task_added(NOW) == 0
    assert plan.record_task_added(NOW) == 1
    assert plan.task_count == 2


def test_removed_task_order_is_not_reused(plan: TransferPlan) -> None:
    """Order slots keep increasing after a task is removed."""
    for _ in range(3):
        plan.record_task_added(NOW)
    plan.record_task_removed(TaskStatus.PENDING, LATER)

    assert plan.record_task_added(LATER) == 3
    assert plan.task_count == 3


def test_finalize_empty_plan_raises(plan: TransferPlan) -> None:
    """A plan without tasks cannot be finalized."""
    with pytest.raises(EmptyPlanError):
        plan.finalize(NOW)
    assert plan.status == PlanStatus.PLANNING


def test_finalize_twice_raises(plan: TransferPlan) -> None:
    """Only PLANNING plans can be finalized."""
    plan.record_task_added(NOW)
    plan.finalize(NOW)
    assert plan.status == PlanStatus.READY
    with pytest.raises(StateError):
        plan.finalize(LATER)


def test_record_completion_moves_plan_forward(plan: TransferPlan) -> None:
    """The plan completes once every active task is done."""
    plan.record_task_added(NOW)
    plan.record_task_added(NOW)

    plan.record_completion(NOW)
    assert plan.status == PlanStatus.IN_PROGRESS

    plan.record_completion(LATER)
    assert plan.status == PlanStatus.COMPLETED
    assert plan.completed_task_count == 2


def test_cancelled_tasks_leave_completion_denominator(plan: TransferPlan) -> None:
    """A cancelled task no longer holds the plan open."""
    plan.record_task_added(NOW)
    plan.record_task_added(NOW)
    plan.finalize(NOW)
    plan.record_completion(NOW)

    plan.record_block(NOW)
    assert plan.blocked_task_count == 1
    plan.record_unblock(UnblockAction.CANCEL, LATER)

    assert plan.blocked_task_count == 0
    assert plan.cancelled_task_count == 1
    assert plan.status == PlanStatus.COMPLETED


def test_all_tasks_cancelled_cancels_plan(plan: TransferPlan) -> None:
    """A ready plan whose only task is cancelled is cancelled too."""
    plan.record_task_added(NOW)
    plan.finalize(NOW)
    plan.record_block(NOW)
    plan.record_unblock(UnblockAction.CANCEL, LATER)

    assert plan.status == PlanStatus.CANCELLED


def test_unblock_continue_restores_blocked_count(plan: TransferPlan) -> None:
    """Continue undoes the block counter only."""
    plan.record_task_added(NOW)
    plan.record_block(NOW)
    plan.record_unblock(UnblockAction.CONTINUE, LATER)

    assert plan.blocked_task_count == 0
    assert plan.cancelled_task_count == 0


def test_closed_plan_refuses_new_tasks(plan: TransferPlan) -> None:
    """Completed and cancelled plans are closed."""
    plan.cancel(0, NOW)
    with pytest.raises(StateError, match="add a task"):
        plan.record_task_added(LATER)


def test_recount_repairs_drift(plan: TransferPlan, task: TransferTask) -> None:
    """Counters are rebuilt from the tasks themselves."""
    plan.status = PlanStatus.READY
    plan.task_count = 4
    plan.blocked_task_count = 2
    task.mark_executed(NOW)

    assert plan.recount([task], LATER) is True
    assert plan.task_count == 1
    assert plan.completed_task_count == 1
    assert plan.blocked_task_count == 0
    assert plan.status == PlanStatus.COMPLETED
    assert plan.recount([task], LATER) is False


def test_negative_counter_rejected() -> None:
    """Counters can never be negative."""
    with pytest.raises(ValueError, match="task_count"):
        TransferPlan(
            id="p", farm_id="f", name="n", created_by="c",
            created_at=NOW, updated_at=NOW, task_count=-1,
        )


# ============================================================================
# write batches
# ============================================================================


def test_write_batch_records_expected_versions(plan: TransferPlan, task: TransferTask) -> None:
    """Creates expect absence; updates and deletes expect the read version."""
    plan.version = 3
    task.version = 2
    batch = WriteBatch()
    batch.create(TransferPlan(
        id="plan-2", farm_id="f", name="n", created_by="c", created_at=NOW, updated_at=NOW,
    ))
    batch.update(plan)
    batch.delete(task)

    ops = batch.ops
    assert len(batch) == 3
    assert [op.expected_version for op in ops] == [0, 3, 2]
    assert ops[1].collection == Collection.PLANS
    assert ops[2].is_delete
