"""Transfer plan service: implements TransferPlanPort.

Orchestrates plans and their relocation tasks. Every status change is
committed in one batch together with the plan counters it affects and,
for execution, with the inventory writes staged by the relocation
executor. A batch either lands completely or not at all.
"""

import logging
import uuid
from collections.abc import Mapping, Sequence
from dataclasses import replace
from datetime import UTC, datetime

from .errors import NotFoundError, StateError
from .executor import RelocationExecutor, recompute_occupancy
from .models import (
    TERMINAL_TASK_STATUSES,
    AddTaskOutcome,
    AquariumProjection,
    BlockReason,
    OccupancyRepairResult,
    PlanStatus,
    TaskWarning,
    TransferExecutionResult,
    TransferPayload,
    TransferPlan,
    TransferTask,
    UnblockAction,
    WriteBatch,
)
from .ports import FarmStorePort, TransferPlanPort
from .projection import OccupancyProjector
from .validator import ConflictValidator

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(UTC)


class TransferPlanService(TransferPlanPort):
    """Core implementation of TransferPlanPort.

    Coordinates the plan store, the occupancy projector, the conflict
    validator and the relocation executor for one farm.
    All state changes are logged for audit trails.
    """

    def __init__(
        self,
        store: FarmStorePort,
        farm_id: str,
        projector: OccupancyProjector | None = None,
        validator: ConflictValidator | None = None,
        executor: RelocationExecutor | None = None,
    ):
        """Initialize the transfer plan service.

        Args:
            store: FarmStorePort implementation for reads and batch commits.
            farm_id: Farm whose plans this service manages.
            projector: OccupancyProjector (default instance if omitted).
            validator: ConflictValidator (default instance if omitted).
            executor: RelocationExecutor bound to the same store.
        """
        self.store = store
        self.farm_id = farm_id
        self.projector = projector or OccupancyProjector()
        self.validator = validator or ConflictValidator()
        self.executor = executor or RelocationExecutor(store)

    # ------------------------------------------------------------------
    # Plans
    # ------------------------------------------------------------------

    async def create_transfer_plan(
        self, name: str, created_by: str, notes: str = ""
    ) -> TransferPlan:
        """Create an empty plan in PLANNING status.

        Args:
            name: Display name. Blank names get a dated default.
            created_by: Operator creating the plan.
            notes: Free-form notes.

        Returns:
            The persisted plan with all counters at zero.
        """
        now = _utc_now()
        plan = TransferPlan(
            id=str(uuid.uuid4()),
            farm_id=self.farm_id,
            name=name.strip() or f"Transfer plan {now:%Y-%m-%d}",
            created_by=created_by or "unknown",
            created_at=now,
            updated_at=now,
            notes=notes,
        )
        batch = WriteBatch()
        batch.create(plan)
        await self.store.commit(batch)

        logger.info(
            f"Transfer plan {plan.id} created",
            extra={"plan_id": plan.id, "farm_id": self.farm_id, "created_by": plan.created_by},
        )
        return plan

    async def get_transfer_plan(self, plan_id: str) -> TransferPlan:
        return await self._load_plan(plan_id)

    async def get_transfer_plans(
        self, status: PlanStatus | None = None
    ) -> Sequence[TransferPlan]:
        plans = await self.store.list_plans(self.farm_id, status=status)
        logger.debug(
            "Listed transfer plans" + (f" with status={status.value}" if status else ""),
            extra={"count": len(plans)},
        )
        return plans

    async def finalize_transfer_plan(self, plan_id: str) -> TransferPlan:
        """Mark a plan ready for execution.

        Raises:
            NotFoundError: If the plan doesn't exist.
            EmptyPlanError: If the plan has no tasks.
            StateError: If the plan is past PLANNING.
        """
        plan = await self._load_plan(plan_id)
        plan.finalize(_utc_now())

        batch = WriteBatch()
        batch.update(plan)
        await self.store.commit(batch)

        logger.info(
            f"Transfer plan {plan_id} finalized",
            extra={"plan_id": plan_id, "task_count": plan.task_count},
        )
        return plan

    async def cancel_transfer_plan(self, plan_id: str) -> TransferPlan:
        """Cancel every open task and close the plan in one batch.

        Raises:
            NotFoundError: If the plan doesn't exist.
            StateError: If the plan is already completed or cancelled.
        """
        plan = await self._load_plan(plan_id)
        if plan.is_closed:
            raise StateError("cancel", plan.status.value)

        tasks = await self.store.list_transfer_tasks(plan_id)
        now = _utc_now()
        batch = WriteBatch()
        withdrawn = 0
        for task in tasks:
            if task.status in TERMINAL_TASK_STATUSES:
                continue
            task.withdraw(now)
            batch.update(task)
            withdrawn += 1

        plan.cancel(withdrawn, now)
        batch.update(plan)
        await self.store.commit(batch)

        logger.info(
            f"Transfer plan {plan_id} cancelled",
            extra={"plan_id": plan_id, "tasks_cancelled": withdrawn},
        )
        return plan

    async def delete_transfer_plan(self, plan_id: str) -> int:
        """Delete the plan and every task it owns in one batch.

        Returns:
            Number of tasks deleted with the plan.

        Raises:
            NotFoundError: If the plan doesn't exist.
        """
        plan = await self._load_plan(plan_id)
        tasks = await self.store.list_transfer_tasks(plan_id)

        batch = WriteBatch()
        for task in tasks:
            batch.delete(task)
        batch.delete(plan)
        await self.store.commit(batch)

        logger.info(
            f"Transfer plan {plan_id} deleted",
            extra={"plan_id": plan_id, "tasks_deleted": len(tasks)},
        )
        return len(tasks)

    async def reconcile_plan_counters(self, plan_id: str) -> TransferPlan:
        """Recompute counters and status from the task collection.

        Persists the plan only when it drifted from its tasks.
        """
        plan = await self._load_plan(plan_id)
        tasks = await self.store.list_transfer_tasks(plan_id)
        before = (plan.task_count, plan.completed_task_count, plan.blocked_task_count)

        if plan.recount(tasks, _utc_now()):
            batch = WriteBatch()
            batch.update(plan)
            await self.store.commit(batch)
            logger.warning(
                f"Transfer plan {plan_id} counters drifted and were repaired",
                extra={
                    "plan_id": plan_id,
                    "before": before,
                    "after": (
                        plan.task_count,
                        plan.completed_task_count,
                        plan.blocked_task_count,
                    ),
                },
            )
        return plan

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    async def add_transfer_task(
        self,
        plan_id: str,
        transfer: TransferPayload,
        notes: str = "",
        acknowledge_warnings: bool = False,
    ) -> AddTaskOutcome:
        """Validate and append a relocation task to a plan.

        The fish reference is tagged with its inventory kind here, once,
        and carried on the task. Conflict warnings are advisory: they hold
        the task back only until the caller acknowledges them.

        Args:
            plan_id: Plan receiving the task.
            transfer: The proposed relocation.
            notes: Free-form task notes.
            acknowledge_warnings: Persist the task even if warnings exist.

        Returns:
            AddTaskOutcome with the persisted task, or with task=None and
            the warnings awaiting confirmation.

        Raises:
            NotFoundError: If the plan, fish or an aquarium doesn't exist.
            ValidationError: If the fish is not in the source aquarium or
                the quantity exceeds what it holds.
            StateError: If the plan is completed or cancelled.
        """
        plan = await self._load_plan(plan_id)
        if plan.is_closed:
            raise StateError("add a task", plan.status.value)

        prepared = await self.executor.prepare(transfer)
        warnings = await self._collect_warnings(plan_id, prepared)

        if warnings and not acknowledge_warnings:
            logger.warning(
                f"Transfer task for plan {plan_id} held for confirmation",
                extra={
                    "plan_id": plan_id,
                    "warnings": [w.type.value for w in warnings],
                },
            )
            return AddTaskOutcome(task=None, warnings=tuple(warnings))

        now = _utc_now()
        order = plan.record_task_added(now)
        task = TransferTask(
            id=str(uuid.uuid4()),
            plan_id=plan_id,
            farm_id=self.farm_id,
            transfer=prepared,
            order=order,
            created_at=now,
            updated_at=now,
            notes=notes,
        )
        batch = WriteBatch()
        batch.create(task)
        batch.update(plan)
        await self.store.commit(batch)

        logger.info(
            f"Transfer task {task.id} added to plan {plan_id}",
            extra={
                "plan_id": plan_id,
                "task_id": task.id,
                "fish_id": prepared.fish.id,
                "quantity": prepared.quantity,
                "overridden_warnings": [w.type.value for w in warnings],
            },
        )
        return AddTaskOutcome(task=task, warnings=tuple(warnings))

    async def get_transfer_tasks(self, plan_id: str) -> Sequence[TransferTask]:
        tasks = await self.store.list_transfer_tasks(plan_id)
        logger.debug(
            f"Listed tasks for transfer plan {plan_id}",
            extra={"plan_id": plan_id, "count": len(tasks)},
        )
        return tasks

    async def validate_task_warnings(
        self, plan_id: str, transfer: TransferPayload
    ) -> list[TaskWarning]:
        await self._load_plan(plan_id)
        return await self._collect_warnings(plan_id, transfer)

    async def project_occupancy(self, plan_id: str) -> Mapping[str, AquariumProjection]:
        await self._load_plan(plan_id)
        tasks = await self.store.list_transfer_tasks(plan_id)
        return self.projector.project(tasks)

    async def execute_transfer_task(self, task_id: str) -> TransferExecutionResult:
        """Relocate the task's fish and complete it in one atomic batch.

        The status gate is checked before anything is read or staged, so a
        completed, cancelled or blocked task fails fast with no side effects.

        Raises:
            NotFoundError: If the task, plan, fish or an aquarium is missing.
            StateError: If the task cannot be executed from its status.
            ValidationError: If the fish no longer holds enough fish or has
                left the source aquarium.
            ConcurrentModificationError: If any touched document changed
                between read and commit; nothing is written.
        """
        task = await self._load_task(task_id)
        task.ensure_completable()
        plan = await self._load_plan(task.plan_id)

        batch = WriteBatch()
        relocation = await self.executor.stage(task.transfer, batch)
        if relocation.fish != task.transfer.fish:
            task.transfer = replace(task.transfer, fish=relocation.fish)

        now = _utc_now()
        task.mark_executed(now)
        plan.record_completion(now)
        batch.update(task)
        batch.update(plan)
        await self.store.commit(batch)

        logger.info(
            f"Transfer task {task_id} executed",
            extra={
                "task_id": task_id,
                "plan_id": plan.id,
                "transferred": relocation.transferred,
                "shipment": relocation.is_shipment,
                "plan_status": plan.status.value,
            },
        )
        return TransferExecutionResult(task=task, plan=plan, relocation=relocation)

    async def block_transfer_task(
        self, task_id: str, reason: BlockReason | str, notes: str = ""
    ) -> TransferTask:
        """Operator reports an issue; the task waits for a manager.

        Raises:
            ValidationError: If the reason is not an enumerated cause.
            StateError: If the task is not pending.
        """
        task = await self._load_task(task_id)
        plan = await self._load_plan(task.plan_id)

        now = _utc_now()
        task.block(reason, notes, now)
        plan.record_block(now)

        batch = WriteBatch()
        batch.update(task)
        batch.update(plan)
        await self.store.commit(batch)

        logger.info(
            f"Transfer task {task_id} blocked",
            extra={
                "task_id": task_id,
                "plan_id": plan.id,
                "reason": task.block_reason.value if task.block_reason else None,
                "notes": notes,
            },
        )
        return task

    async def unblock_transfer_task(
        self, task_id: str, action: UnblockAction | str
    ) -> TransferTask:
        """Manager resolves a block by continuing or cancelling the task.

        Raises:
            ValidationError: If the action is not "continue" or "cancel".
            StateError: If the task is not blocked.
        """
        task = await self._load_task(task_id)
        plan = await self._load_plan(task.plan_id)

        now = _utc_now()
        parsed = task.unblock(action, now)
        plan.record_unblock(parsed, now)

        batch = WriteBatch()
        batch.update(task)
        batch.update(plan)
        await self.store.commit(batch)

        logger.info(
            f"Transfer task {task_id} unblocked ({parsed.value})",
            extra={"task_id": task_id, "plan_id": plan.id, "action": parsed.value},
        )
        return task

    async def remove_transfer_task(self, task_id: str) -> None:
        """Delete a not-yet-completed task and adjust the plan counters.

        Raises:
            StateError: If the task was already completed.
        """
        task = await self._load_task(task_id)
        plan = await self._load_plan(task.plan_id)
        plan.record_task_removed(task.status, _utc_now())

        batch = WriteBatch()
        batch.delete(task)
        batch.update(plan)
        await self.store.commit(batch)

        logger.info(
            f"Transfer task {task_id} removed from plan {plan.id}",
            extra={"task_id": task_id, "plan_id": plan.id},
        )

    # ------------------------------------------------------------------
    # Occupancy maintenance
    # ------------------------------------------------------------------

    async def repair_aquarium_occupancy(
        self, aquarium_ids: Sequence[str] | None = None
    ) -> OccupancyRepairResult:
        """Recompute total_fish/status from the live inventory.

        Only aquariums whose stored occupancy drifted are written.

        Args:
            aquarium_ids: Aquariums to check. All aquariums if None.

        Raises:
            NotFoundError: If a requested aquarium doesn't exist.
        """
        if aquarium_ids is None:
            aquariums = await self.store.list_aquariums()
        else:
            aquariums = []
            for aquarium_id in aquarium_ids:
                aquarium = await self.store.get_aquarium(aquarium_id)
                if aquarium is None:
                    raise NotFoundError("Aquarium", aquarium_id)
                aquariums.append(aquarium)

        batch = WriteBatch()
        repaired: list[str] = []
        for aquarium in aquariums:
            holdings = await self.executor.current_holdings(aquarium.id)
            if recompute_occupancy(aquarium, holdings.values()):
                batch.update(aquarium)
                repaired.append(aquarium.id)

        if len(batch):
            await self.store.commit(batch)

        logger.info(
            f"Checked occupancy of {len(aquariums)} aquariums, repaired {len(repaired)}",
            extra={"repaired": repaired},
        )
        return OccupancyRepairResult(checked=len(aquariums), repaired=tuple(repaired))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _collect_warnings(
        self, plan_id: str, transfer: TransferPayload
    ) -> list[TaskWarning]:
        tasks = await self.store.list_transfer_tasks(plan_id)
        projection = self.projector.project(tasks)

        target_holds_fish = False
        if not transfer.is_shipment and not transfer.allow_mixing:
            holdings = await self.executor.current_holdings(transfer.target_aquarium_id)
            target_holds_fish = any(quantity > 0 for quantity in holdings.values())

        return self.validator.validate(transfer, projection, target_holds_fish)

    async def _load_plan(self, plan_id: str) -> TransferPlan:
        plan = await self.store.get_plan(plan_id)
        if plan is None:
            raise NotFoundError("Transfer plan", plan_id)
        return plan

    async def _load_task(self, task_id: str) -> TransferTask:
        task = await self.store.get_transfer_task(task_id)
        if task is None:
            raise NotFoundError("Transfer task", task_id)
        return task
