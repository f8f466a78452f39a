"""Domain models for the Shoal transfer engine.

All models in this module use only Python standard library types,
ensuring zero external dependencies in the core domain.

Documents (aquariums, fish records, plans, tasks) are mutable dataclasses
carrying a ``version`` stamp that the store bumps on every committed write.
Value objects (fish references, transfer payloads, projections, warnings,
results) are frozen.
"""

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import ClassVar, Literal, TypeAlias

from .errors import EmptyPlanError, StateError, ValidationError

# Target value meaning "the fish leave the farm" rather than "move to an aquarium".
SHIPMENT_TARGET = "SHIPMENT"


class Collection(Enum):
    """Document collections in the farm store."""

    AQUARIUMS = "aquariums"
    LOTS = "farm_fish"
    INSTANCES = "fish_instances"
    PLANS = "transfer_plans"
    TRANSFER_TASKS = "transfer_tasks"
    TASKS = "tasks"


class AquariumStatus(Enum):
    """Occupancy status of an aquarium.

    Only EMPTY and OCCUPIED are derived from the fish count; the other
    statuses are set by operators and are never overridden by occupancy
    recomputation.
    """

    EMPTY = "empty"
    OCCUPIED = "occupied"
    IN_TRANSFER = "in-transfer"
    MAINTENANCE = "maintenance"


class FishKind(Enum):
    """Which inventory a fish reference points into."""

    CATALOG = "catalog"
    RECEPTION = "reception"


class PlanStatus(Enum):
    """Lifecycle states for a transfer plan.

    - PLANNING: tasks are being added
    - READY: finalized, waiting for execution
    - IN_PROGRESS: at least one task executed
    - COMPLETED: every non-cancelled task executed
    - CANCELLED: abandoned, every open task cancelled
    """

    PLANNING = "planning"
    READY = "ready"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TaskStatus(Enum):
    """Lifecycle states for transfer tasks and general tasks.

    General tasks never use IN_PROGRESS.
    """

    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    BLOCKED = "blocked"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class BlockReason(Enum):
    """Causes an operator may report when blocking a task."""

    TEMPERATURE = "temperature"
    SIZE = "size"
    LEAK = "leak"
    OTHER = "other"

    @classmethod
    def parse(cls, value: "BlockReason | str") -> "BlockReason":
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError as e:
            allowed = ", ".join(r.value for r in cls)
            raise ValidationError(
                f"Invalid block reason {value!r}; expected one of: {allowed}"
            ) from e


class UnblockAction(Enum):
    """Manager decisions for a blocked task."""

    CONTINUE = "continue"
    CANCEL = "cancel"

    @classmethod
    def parse(cls, value: "UnblockAction | str") -> "UnblockAction":
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError as e:
            raise ValidationError(
                f'Invalid unblock action {value!r}; use "continue" or "cancel"'
            ) from e


ACTIVE_TASK_STATUSES = frozenset({TaskStatus.PENDING, TaskStatus.IN_PROGRESS})
TERMINAL_TASK_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.CANCELLED})


# ============================================================================
# Inventory documents (owned by external collaborators)
# ============================================================================


@dataclass
class Aquarium:
    """An aquarium as seen by the registry."""

    COLLECTION: ClassVar[Collection] = Collection.AQUARIUMS

    id: str
    number: str
    farm_id: str = ""
    room: str = ""
    volume: float = 0.0
    status: AquariumStatus = AquariumStatus.EMPTY
    total_fish: int = 0
    version: int = 0


@dataclass
class CatalogLot:
    """Locally owned fish. Splittable and freely reassignable."""

    COLLECTION: ClassVar[Collection] = Collection.LOTS
    KIND: ClassVar[FishKind] = FishKind.CATALOG

    id: str
    quantity: int
    aquarium_id: str | None = None
    farm_id: str = ""
    common_name: str = ""
    scientific_name: str = ""
    size: str = ""
    version: int = 0

    @property
    def held_quantity(self) -> int:
        return self.quantity

    @held_quantity.setter
    def held_quantity(self, value: int) -> None:
        self.quantity = value


@dataclass
class ReceptionInstance:
    """Fish admitted from an external shipment. Never split."""

    COLLECTION: ClassVar[Collection] = Collection.INSTANCES
    KIND: ClassVar[FishKind] = FishKind.RECEPTION

    id: str
    current_quantity: int
    aquarium_id: str | None = None
    farm_id: str = ""
    common_name: str = ""
    scientific_name: str = ""
    size: str = ""
    version: int = 0

    @property
    def held_quantity(self) -> int:
        return self.current_quantity

    @held_quantity.setter
    def held_quantity(self, value: int) -> None:
        self.current_quantity = value


FishRecord: TypeAlias = CatalogLot | ReceptionInstance


# ============================================================================
# Transfer value objects
# ============================================================================


@dataclass(frozen=True)
class FishRef:
    """Tagged reference to a fish record.

    ``kind`` is None only for legacy references that were never resolved;
    those are probed at execution time.
    """

    id: str
    kind: FishKind | None = None

    def __post_init__(self) -> None:
        if not self.id or not self.id.strip():
            raise ValidationError("fish reference id must be a non-empty string")


@dataclass(frozen=True)
class TransferPayload:
    """What to move, how many, from where and to where.

    Shared verbatim by transfer tasks and general tasks that opt into
    relocation side effects.
    """

    fish: FishRef
    quantity: int
    source_aquarium_id: str
    target_aquarium_id: str
    fish_name: str = ""
    scientific_name: str = ""
    size: str = ""
    source_aquarium_number: str = ""
    source_room: str = ""
    target_aquarium_number: str = ""
    target_room: str = ""
    allow_mixing: bool = False

    def __post_init__(self) -> None:
        """Validate transfer invariants on creation."""
        if (
            isinstance(self.quantity, bool)
            or not isinstance(self.quantity, int)
            or self.quantity <= 0
        ):
            raise ValidationError(
                f"quantity must be a positive integer, got {self.quantity!r}"
            )
        if not self.source_aquarium_id:
            raise ValidationError("source aquarium is required")
        if not self.target_aquarium_id:
            raise ValidationError("target aquarium is required")
        if self.source_aquarium_id == self.target_aquarium_id:
            raise ValidationError("source and target aquarium cannot be the same")

    @property
    def is_shipment(self) -> bool:
        return self.target_aquarium_id == SHIPMENT_TARGET


# ============================================================================
# Task state machine
# ============================================================================


class BlockProtocol:
    """Block/unblock escalation shared by transfer tasks and general tasks.

    State transitions:
    - PENDING/IN_PROGRESS → BLOCKED (block, operator reports an issue)
    - BLOCKED → PENDING (unblock "continue", manager approves)
    - BLOCKED → CANCELLED (unblock "cancel", manager abandons)
    - PENDING/IN_PROGRESS/BLOCKED → CANCELLED (withdraw, plan cancelled)
    - PENDING/IN_PROGRESS → COMPLETED (completion)
    - COMPLETED, CANCELLED: terminal

    Guards raise StateError before touching any field, so a rejected
    transition leaves the task unchanged.
    """

    status: TaskStatus
    block_reason: BlockReason | None
    block_notes: str | None
    updated_at: datetime

    def ensure_completable(self) -> None:
        """Raise StateError unless the task may be completed right now."""
        if self.status == TaskStatus.COMPLETED:
            raise StateError("complete", self.status.value, "task already completed")
        if self.status == TaskStatus.BLOCKED:
            raise StateError(
                "complete",
                self.status.value,
                "task is blocked; a manager must unblock it first",
            )
        if self.status not in ACTIVE_TASK_STATUSES:
            raise StateError("complete", self.status.value)

    def block(
        self, reason: BlockReason | str, notes: str | None, now: datetime
    ) -> None:
        """Transition to BLOCKED with an enumerated reason."""
        parsed = BlockReason.parse(reason)
        if self.status not in ACTIVE_TASK_STATUSES:
            raise StateError("block", self.status.value)
        self.status = TaskStatus.BLOCKED
        self.block_reason = parsed
        self.block_notes = notes or ""
        self.updated_at = now

    def unblock(self, action: UnblockAction | str, now: datetime) -> UnblockAction:
        """Resolve a block by continuing or cancelling the task."""
        parsed = UnblockAction.parse(action)
        if self.status != TaskStatus.BLOCKED:
            raise StateError(f"unblock ({parsed.value})", self.status.value)
        if parsed == UnblockAction.CONTINUE:
            self.status = TaskStatus.PENDING
            self.block_reason = None
            self.block_notes = None
        else:
            self.status = TaskStatus.CANCELLED
        self.updated_at = now
        return parsed

    def withdraw(self, now: datetime) -> None:
        """Cancel an open or blocked task because its plan was cancelled."""
        if self.status in TERMINAL_TASK_STATUSES:
            raise StateError("cancel", self.status.value)
        self.status = TaskStatus.CANCELLED
        self.updated_at = now


@dataclass
class TransferTask(BlockProtocol):
    """A unit of work inside a transfer plan."""

    COLLECTION: ClassVar[Collection] = Collection.TRANSFER_TASKS

    id: str
    plan_id: str
    farm_id: str
    transfer: TransferPayload
    order: int
    created_at: datetime
    updated_at: datetime
    status: TaskStatus = TaskStatus.PENDING
    block_reason: BlockReason | None = None
    block_notes: str | None = None
    notes: str = ""
    executed_at: datetime | None = None
    version: int = 0

    def mark_executed(self, now: datetime) -> None:
        """Transition to COMPLETED after the relocation has been staged."""
        self.ensure_completable()
        self.status = TaskStatus.COMPLETED
        self.executed_at = now
        self.updated_at = now


@dataclass
class GeneralTask(BlockProtocol):
    """A free-form checklist item, optionally carrying a relocation."""

    COLLECTION: ClassVar[Collection] = Collection.TASKS

    id: str
    farm_id: str
    title: str
    created_by: str
    created_at: datetime
    updated_at: datetime
    notes: str = ""
    status: TaskStatus = TaskStatus.PENDING
    block_reason: BlockReason | None = None
    block_notes: str | None = None
    transfer: TransferPayload | None = None
    completed_at: datetime | None = None
    version: int = 0

    def __post_init__(self) -> None:
        if not self.title or not self.title.strip():
            raise ValidationError("task title is required")
        if self.status == TaskStatus.IN_PROGRESS:
            raise ValueError("general tasks have no in-progress status")

    @property
    def task_type(self) -> Literal["general", "transfer"]:
        return "transfer" if self.transfer is not None else "general"

    def mark_completed(self, now: datetime) -> None:
        self.ensure_completable()
        self.status = TaskStatus.COMPLETED
        self.completed_at = now
        self.updated_at = now


@dataclass
class TransferPlan:
    """A named, ordered collection of relocation tasks for one farm.

    Counters are maintained by the record_* methods, which the services
    call on the same in-memory plan they commit alongside the task change.
    Cancelled tasks stay in task_count but are excluded from the completion
    denominator (see active_task_count).
    """

    COLLECTION: ClassVar[Collection] = Collection.PLANS

    id: str
    farm_id: str
    name: str
    created_by: str
    created_at: datetime
    updated_at: datetime
    status: PlanStatus = PlanStatus.PLANNING
    task_count: int = 0
    completed_task_count: int = 0
    blocked_task_count: int = 0
    cancelled_task_count: int = 0
    next_order: int = 0
    notes: str = ""
    version: int = 0

    def __post_init__(self) -> None:
        """Validate counter invariants on creation or deserialization."""
        for name in (
            "task_count",
            "completed_task_count",
            "blocked_task_count",
            "cancelled_task_count",
            "next_order",
        ):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be >= 0, got {getattr(self, name)}")

    @property
    def active_task_count(self) -> int:
        """Tasks that still count toward completion."""
        return self.task_count - self.cancelled_task_count

    @property
    def is_closed(self) -> bool:
        return self.status in {PlanStatus.COMPLETED, PlanStatus.CANCELLED}

    def record_task_added(self, now: datetime) -> int:
        """Count a new task and return the order slot it takes."""
        if self.is_closed:
            raise StateError("add a task", self.status.value)
        order = self.next_order
        self.next_order += 1
        self.task_count += 1
        self.updated_at = now
        return order

    def record_task_removed(self, task_status: TaskStatus, now: datetime) -> None:
        if task_status == TaskStatus.COMPLETED:
            raise StateError("remove a task", task_status.value, "completed tasks are permanent")
        self.task_count = max(0, self.task_count - 1)
        if task_status == TaskStatus.BLOCKED:
            self.blocked_task_count = max(0, self.blocked_task_count - 1)
        elif task_status == TaskStatus.CANCELLED:
            self.cancelled_task_count = max(0, self.cancelled_task_count - 1)
        self.updated_at = now
        self._settle()

    def record_completion(self, now: datetime) -> None:
        self.completed_task_count += 1
        if self.completed_task_count >= self.active_task_count:
            self.status = PlanStatus.COMPLETED
        else:
            self.status = PlanStatus.IN_PROGRESS
        self.updated_at = now

    def record_block(self, now: datetime) -> None:
        self.blocked_task_count += 1
        self.updated_at = now

    def record_unblock(self, action: UnblockAction, now: datetime) -> None:
        self.blocked_task_count = max(0, self.blocked_task_count - 1)
        if action == UnblockAction.CANCEL:
            self.cancelled_task_count += 1
            self._settle()
        self.updated_at = now

    def finalize(self, now: datetime) -> None:
        if self.status != PlanStatus.PLANNING:
            raise StateError("finalize", self.status.value)
        if self.task_count == 0:
            raise EmptyPlanError(self.id)
        self.status = PlanStatus.READY
        self.updated_at = now

    def cancel(self, withdrawn: int, now: datetime) -> None:
        """Close the plan after ``withdrawn`` open tasks were cancelled."""
        if self.is_closed:
            raise StateError("cancel", self.status.value)
        self.status = PlanStatus.CANCELLED
        self.cancelled_task_count += withdrawn
        self.blocked_task_count = 0
        self.updated_at = now

    def recount(self, tasks: Iterable[TransferTask], now: datetime) -> bool:
        """Recompute counters from the task collection.

        Returns:
            True if any counter or the status changed.
        """
        before = (
            self.task_count,
            self.completed_task_count,
            self.blocked_task_count,
            self.cancelled_task_count,
            self.next_order,
            self.status,
        )
        tasks = list(tasks)
        statuses = [t.status for t in tasks]
        self.next_order = max([self.next_order, *(t.order + 1 for t in tasks)])
        self.task_count = len(statuses)
        self.completed_task_count = statuses.count(TaskStatus.COMPLETED)
        self.blocked_task_count = statuses.count(TaskStatus.BLOCKED)
        self.cancelled_task_count = statuses.count(TaskStatus.CANCELLED)
        if self.status in {PlanStatus.READY, PlanStatus.IN_PROGRESS, PlanStatus.COMPLETED}:
            if self.task_count > 0 and self.active_task_count == 0:
                self.status = PlanStatus.CANCELLED
            elif 0 < self.active_task_count <= self.completed_task_count:
                self.status = PlanStatus.COMPLETED
            elif self.completed_task_count > 0:
                self.status = PlanStatus.IN_PROGRESS
            else:
                self.status = PlanStatus.READY
        after = (
            self.task_count,
            self.completed_task_count,
            self.blocked_task_count,
            self.cancelled_task_count,
            self.next_order,
            self.status,
        )
        if after != before:
            self.updated_at = now
            return True
        return False

    def _settle(self) -> None:
        """Close an executing plan once nothing is left to do."""
        if self.status not in {PlanStatus.READY, PlanStatus.IN_PROGRESS}:
            return
        if self.active_task_count == 0:
            if self.task_count > 0:
                self.status = PlanStatus.CANCELLED
        elif self.completed_task_count >= self.active_task_count:
            self.status = PlanStatus.COMPLETED


Document: TypeAlias = (
    Aquarium | CatalogLot | ReceptionInstance | TransferPlan | TransferTask | GeneralTask
)


# ============================================================================
# Projection, warnings and results
# ============================================================================


@dataclass(frozen=True)
class AquariumProjection:
    """Speculative net flow for one aquarium across a plan's open tasks."""

    aquarium_id: str
    pending_removals: int = 0
    pending_additions: int = 0

    @property
    def will_be_empty(self) -> bool:
        # Conservative: any pending removal counts, whatever stock remains.
        return self.pending_removals > 0

    @property
    def will_be_occupied(self) -> bool:
        return self.pending_additions > 0

    def to_dict(self) -> dict[str, object]:
        return {
            "aquarium_id": self.aquarium_id,
            "pending_removals": self.pending_removals,
            "pending_additions": self.pending_additions,
            "will_be_empty": self.will_be_empty,
            "will_be_occupied": self.will_be_occupied,
        }


class WarningType(Enum):
    """Advisory conflicts detected before a task is added."""

    TARGET_HAS_PENDING_REMOVALS = "target_has_pending_removals"
    SOURCE_HAS_PENDING_ADDITIONS = "source_has_pending_additions"
    TARGET_OCCUPIED = "target_occupied"


@dataclass(frozen=True)
class TaskWarning:
    """An overridable warning. Never fatal."""

    type: WarningType
    message: str
    severity: Literal["warning"] = "warning"
    allow_override: bool = True


@dataclass(frozen=True)
class AddTaskOutcome:
    """Result of adding a transfer task.

    ``task`` is None when warnings were raised and not acknowledged; the
    caller must confirm and resubmit with acknowledge_warnings=True.
    """

    task: TransferTask | None
    warnings: tuple[TaskWarning, ...] = ()

    @property
    def accepted(self) -> bool:
        return self.task is not None

    @property
    def needs_confirmation(self) -> bool:
        return self.task is None and bool(self.warnings)


@dataclass(frozen=True)
class RelocationResult:
    """What the relocation executor staged for one transfer."""

    fish: FishRef
    transferred: int
    source_aquarium_id: str
    target_aquarium_id: str
    is_shipment: bool
    remaining_in_source: int
    source_record_deleted: bool = False
    split_lot_id: str | None = None


@dataclass(frozen=True)
class TransferExecutionResult:
    task: TransferTask
    plan: TransferPlan
    relocation: RelocationResult


@dataclass(frozen=True)
class TaskCompletionResult:
    task: GeneralTask
    relocation: RelocationResult | None = None


@dataclass(frozen=True)
class OccupancyRepairResult:
    checked: int
    repaired: tuple[str, ...] = field(default_factory=tuple)


# ============================================================================
# Atomic write batches
# ============================================================================


@dataclass(frozen=True)
class WriteOp:
    """A single document write inside a batch.

    ``document`` is None for deletes. ``expected_version`` is the version
    the document must have at commit time: 0 means it must not exist yet.
    """

    collection: Collection
    doc_id: str
    document: Document | None
    expected_version: int

    @property
    def is_delete(self) -> bool:
        return self.document is None


class WriteBatch:
    """An all-or-nothing set of document writes.

    Every write is conditional on the version the document was read at,
    so a batch doubles as an optimistic-concurrency transaction.
    """

    def __init__(self) -> None:
        self._ops: list[WriteOp] = []

    def create(self, document: Document) -> None:
        self._ops.append(WriteOp(document.COLLECTION, document.id, document, 0))

    def update(self, document: Document) -> None:
        self._ops.append(
            WriteOp(document.COLLECTION, document.id, document, document.version)
        )

    def delete(self, document: Document) -> None:
        self._ops.append(
            WriteOp(document.COLLECTION, document.id, None, document.version)
        )

    @property
    def ops(self) -> tuple[WriteOp, ...]:
        return tuple(self._ops)

    def __len__(self) -> int:
        return len(self._ops)

    def __iter__(self) -> Iterator[WriteOp]:
        return iter(self._ops)


__all__ = [
    "ACTIVE_TASK_STATUSES",
    "AddTaskOutcome",
    "Aquarium",
    "AquariumProjection",
    "AquariumStatus",
    "BlockProtocol",
    "BlockReason",
    "CatalogLot",
    "Collection",
    "Document",
    "FishKind",
    "FishRecord",
    "FishRef",
    "GeneralTask",
    "OccupancyRepairResult",
    "PlanStatus",
    "ReceptionInstance",
    "RelocationResult",
    "SHIPMENT_TARGET",
    "TERMINAL_TASK_STATUSES",
    "TaskCompletionResult",
    "TaskStatus",
    "TaskWarning",
    "TransferExecutionResult",
    "TransferPayload",
    "TransferPlan",
    "TransferTask",
    "UnblockAction",
    "WarningType",
    "WriteBatch",
    "WriteOp",
]
