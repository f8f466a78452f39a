"""Port interfaces for the Shoal transfer engine.

These abstract base classes define the boundaries between core
domain logic and external adapters. Implementations live in the
adapters/ package.

Port Interface Categories:

1. **Driven Ports** (core calls out to adapters)
   - AquariumRegistryPort: Read aquarium records
   - FishInventoryPort: Read catalog lots and reception instances
   - TransferStorePort: Read plans, transfer tasks and general tasks
   - FarmStorePort: All of the above plus atomic batch commits

2. **Driving Ports** (adapters/external systems call into core)
   - TransferPlanPort: Plan, validate and execute multi-step relocations
   - TaskPort: Free-form checklist tasks with optional relocation payloads
"""

from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence

from .models import (
    AddTaskOutcome,
    Aquarium,
    AquariumProjection,
    BlockReason,
    CatalogLot,
    GeneralTask,
    OccupancyRepairResult,
    PlanStatus,
    ReceptionInstance,
    TaskCompletionResult,
    TaskStatus,
    TaskWarning,
    TransferExecutionResult,
    TransferPayload,
    TransferPlan,
    TransferTask,
    UnblockAction,
    WriteBatch,
)


# ============================================================================
# DRIVEN PORTS (Core calls out to adapters)
# ============================================================================


class AquariumRegistryPort(ABC):
    """Port for reading aquarium records.

    Aquarium creation and editing belong to an external collaborator; the
    core only reads aquariums and writes back occupancy through batches.
    """

    @abstractmethod
    async def get_aquarium(self, aquarium_id: str) -> Aquarium | None:
        """Retrieve an aquarium by ID.

        Returns:
            Aquarium if found, None otherwise.

        Raises:
            Exception: If the store is unavailable.
        """

    @abstractmethod
    async def list_aquariums(self) -> list[Aquarium]:
        """Retrieve every aquarium of the farm, ordered by number."""


class FishInventoryPort(ABC):
    """Port for reading the two fish inventories.

    Catalog lots are locally owned and splittable. Reception instances come
    from external shipments and carry exactly one aquarium assignment.
    Lookups by aquarium must be served by an index, not a full scan.
    """

    @abstractmethod
    async def get_lot(self, lot_id: str) -> CatalogLot | None:
        """Retrieve a catalog lot by ID.

        Returns:
            CatalogLot if found, None otherwise.

        Raises:
            PermissionError: If the caller may not read the record.
            Exception: If the store is unavailable.
        """

    @abstractmethod
    async def get_instance(self, instance_id: str) -> ReceptionInstance | None:
        """Retrieve a reception instance by ID.

        Returns:
            ReceptionInstance if found, None otherwise.
        """

    @abstractmethod
    async def list_lots(self, aquarium_id: str | None = None) -> list[CatalogLot]:
        """List catalog lots, optionally only those assigned to one aquarium."""

    @abstractmethod
    async def list_instances(
        self, aquarium_id: str | None = None
    ) -> list[ReceptionInstance]:
        """List reception instances, optionally only those in one aquarium."""


class TransferStorePort(ABC):
    """Port for reading transfer plans and tasks."""

    @abstractmethod
    async def get_plan(self, plan_id: str) -> TransferPlan | None:
        """Retrieve a transfer plan by ID, or None."""

    @abstractmethod
    async def list_plans(
        self, farm_id: str, status: PlanStatus | None = None
    ) -> list[TransferPlan]:
        """List a farm's plans, newest first, optionally filtered by status."""

    @abstractmethod
    async def get_transfer_task(self, task_id: str) -> TransferTask | None:
        """Retrieve a transfer task by ID, or None."""

    @abstractmethod
    async def list_transfer_tasks(self, plan_id: str) -> list[TransferTask]:
        """List a plan's tasks in ascending ``order``."""

    @abstractmethod
    async def get_general_task(self, task_id: str) -> GeneralTask | None:
        """Retrieve a general task by ID, or None."""

    @abstractmethod
    async def list_general_tasks(
        self, farm_id: str, status: TaskStatus | None = None
    ) -> list[GeneralTask]:
        """List a farm's general tasks, newest first, optionally by status."""


class FarmStorePort(AquariumRegistryPort, FishInventoryPort, TransferStorePort):
    """The document store backing the whole engine.

    Implementations must handle:
    - Atomic multi-document commits (all writes or none)
    - Per-document optimistic version checks at commit time
    - Bumping each written document's version and reflecting it on the
      committed objects
    """

    @abstractmethod
    async def commit(self, batch: WriteBatch) -> None:
        """Apply every write in the batch atomically.

        Each write is conditional on its expected version: 0 means the
        document must not exist yet, any other value must equal the stored
        version.

        Raises:
            ConcurrentModificationError: If any precondition fails. Nothing
                is written in that case.
            Exception: If the store is unavailable.
        """

    async def close(self) -> None:
        """Release any resources held by the store."""


# ============================================================================
# DRIVING PORTS (External systems call into core)
# ============================================================================


class TransferPlanPort(ABC):
    """Port for planning and executing multi-step fish relocations.

    Called by the presentation layer. Every operation is a bounded
    request/response call; business-rule failures surface as ShoalError
    subclasses and are never retried automatically.
    """

    @abstractmethod
    async def create_transfer_plan(
        self, name: str, created_by: str, notes: str = ""
    ) -> TransferPlan:
        """Create an empty plan in PLANNING status."""

    @abstractmethod
    async def get_transfer_plan(self, plan_id: str) -> TransferPlan:
        """Retrieve a plan.

        Raises:
            NotFoundError: If the plan doesn't exist.
        """

    @abstractmethod
    async def get_transfer_plans(
        self, status: PlanStatus | None = None
    ) -> Sequence[TransferPlan]:
        """List the farm's plans, newest first."""

    @abstractmethod
    async def add_transfer_task(
        self,
        plan_id: str,
        transfer: TransferPayload,
        notes: str = "",
        acknowledge_warnings: bool = False,
    ) -> AddTaskOutcome:
        """Validate and append a relocation task to a plan.

        Warnings do not block the task, but unless acknowledged the task is
        not persisted and the outcome carries the warnings for confirmation.

        Raises:
            NotFoundError: If the plan, fish or an aquarium doesn't exist.
            ValidationError: If the fish is not in the source aquarium or
                the quantity exceeds what the fish record holds.
            StateError: If the plan is completed or cancelled.
        """

    @abstractmethod
    async def get_transfer_tasks(self, plan_id: str) -> Sequence[TransferTask]:
        """List a plan's tasks in advisory order."""

    @abstractmethod
    async def validate_task_warnings(
        self, plan_id: str, transfer: TransferPayload
    ) -> list[TaskWarning]:
        """Compute advisory warnings for a proposed task without adding it.

        Only the plan is loaded. Fish and aquarium ids are not resolved, so
        an unknown aquarium yields no warnings rather than NotFoundError;
        add_transfer_task checks them.

        Raises:
            NotFoundError: If the plan doesn't exist.
        """

    @abstractmethod
    async def project_occupancy(self, plan_id: str) -> Mapping[str, AquariumProjection]:
        """Project per-aquarium net flow across the plan's open tasks."""

    @abstractmethod
    async def execute_transfer_task(self, task_id: str) -> TransferExecutionResult:
        """Relocate the fish and complete the task in one atomic batch.

        Raises:
            StateError: If the task is completed, cancelled or blocked.
            ValidationError: If the fish record no longer holds enough fish.
            ConcurrentModificationError: If a touched document changed
                between read and commit.
        """

    @abstractmethod
    async def block_transfer_task(
        self, task_id: str, reason: BlockReason | str, notes: str = ""
    ) -> TransferTask:
        """Operator reports an issue; the task waits for a manager."""

    @abstractmethod
    async def unblock_transfer_task(
        self, task_id: str, action: UnblockAction | str
    ) -> TransferTask:
        """Manager resolves a block by continuing or cancelling the task."""

    @abstractmethod
    async def remove_transfer_task(self, task_id: str) -> None:
        """Delete a task that has not been completed and fix the counters."""

    @abstractmethod
    async def finalize_transfer_plan(self, plan_id: str) -> TransferPlan:
        """Mark a plan ready for execution.

        Raises:
            EmptyPlanError: If the plan has no tasks.
        """

    @abstractmethod
    async def cancel_transfer_plan(self, plan_id: str) -> TransferPlan:
        """Cancel every open task and close the plan."""

    @abstractmethod
    async def delete_transfer_plan(self, plan_id: str) -> int:
        """Delete the plan and all its tasks atomically.

        Returns:
            Number of tasks deleted with the plan.
        """

    @abstractmethod
    async def reconcile_plan_counters(self, plan_id: str) -> TransferPlan:
        """Recompute a plan's counters from its tasks, persisting any drift."""

    @abstractmethod
    async def repair_aquarium_occupancy(
        self, aquarium_ids: Sequence[str] | None = None
    ) -> OccupancyRepairResult:
        """Recompute total_fish/status for aquariums from the live inventory."""


class TaskPort(ABC):
    """Port for general checklist tasks.

    Shares the block/unblock protocol with transfer tasks. A task carrying
    a transfer payload relocates fish when completed.
    """

    @abstractmethod
    async def create_task(
        self,
        title: str,
        created_by: str,
        notes: str = "",
        transfer: TransferPayload | None = None,
    ) -> GeneralTask:
        """Create a pending task, optionally with a relocation payload."""

    @abstractmethod
    async def create_transfer_task(
        self, transfer: TransferPayload, created_by: str, notes: str = ""
    ) -> GeneralTask:
        """Create a titled task whose completion relocates fish."""

    @abstractmethod
    async def get_task(self, task_id: str) -> GeneralTask:
        """Retrieve a task.

        Raises:
            NotFoundError: If the task doesn't exist.
        """

    @abstractmethod
    async def get_tasks(self, status: TaskStatus | None = None) -> Sequence[GeneralTask]:
        """List the farm's tasks, newest first."""

    @abstractmethod
    async def complete_task(self, task_id: str) -> TaskCompletionResult:
        """Complete a task, relocating fish first if it carries a payload."""

    @abstractmethod
    async def block_task(
        self, task_id: str, reason: BlockReason | str, notes: str = ""
    ) -> GeneralTask:
        """Report an issue on a task."""

    @abstractmethod
    async def unblock_task(
        self, task_id: str, action: UnblockAction | str
    ) -> GeneralTask:
        """Continue or cancel a blocked task."""

    @abstractmethod
    async def delete_task(self, task_id: str) -> None:
        """Delete a task."""
