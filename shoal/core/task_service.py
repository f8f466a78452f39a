"""Task service: implements TaskPort for the farm's checklist.

General tasks are free-form to-do items. A task may carry a transfer
payload, in which case completing it relocates fish with the same rules
a transfer plan uses. The relocation writes and the completion are
committed together.
"""

import logging
import uuid
from collections.abc import Sequence
from datetime import UTC, datetime

from .errors import NotFoundError
from .executor import RelocationExecutor
from .models import (
    BlockReason,
    GeneralTask,
    TaskCompletionResult,
    TaskStatus,
    TransferPayload,
    UnblockAction,
    WriteBatch,
)
from .ports import FarmStorePort, TaskPort

logger = logging.getLogger(__name__)


class TaskService(TaskPort):
    """Core implementation of TaskPort.

    All operations are logged for audit trails.
    """

    def __init__(
        self,
        store: FarmStorePort,
        farm_id: str,
        executor: RelocationExecutor | None = None,
    ):
        """Initialize the task service.

        Args:
            store: FarmStorePort implementation for reads and batch commits.
            farm_id: Farm whose tasks this service manages.
            executor: RelocationExecutor for tasks carrying a transfer.
        """
        self.store = store
        self.farm_id = farm_id
        self.executor = executor or RelocationExecutor(store)

    async def create_task(
        self,
        title: str,
        created_by: str,
        notes: str = "",
        transfer: TransferPayload | None = None,
    ) -> GeneralTask:
        """Create a pending task.

        When a transfer is attached it is validated against live inventory
        and its fish reference is tagged before the task is stored.

        Raises:
            ValidationError: If the title is blank or the transfer is invalid.
            NotFoundError: If the transfer's fish or an aquarium is missing.
        """
        if transfer is not None:
            transfer = await self.executor.prepare(transfer)

        now = datetime.now(UTC)
        task = GeneralTask(
            id=str(uuid.uuid4()),
            farm_id=self.farm_id,
            title=title,
            created_by=created_by or "unknown",
            created_at=now,
            updated_at=now,
            notes=notes,
            transfer=transfer,
        )
        batch = WriteBatch()
        batch.create(task)
        await self.store.commit(batch)

        logger.info(
            f"Task {task.id} created ({task.task_type})",
            extra={"task_id": task.id, "farm_id": self.farm_id, "title": task.title},
        )
        return task

    async def create_transfer_task(
        self, transfer: TransferPayload, created_by: str, notes: str = ""
    ) -> GeneralTask:
        """Create a task titled after the fish it will relocate."""
        prepared = await self.executor.prepare(transfer)
        destination = (
            "shipment"
            if prepared.is_shipment
            else f"aquarium {prepared.target_aquarium_number}"
        )
        title = (
            f"Transfer {prepared.quantity} {prepared.fish_name or prepared.fish.id} "
            f"from aquarium {prepared.source_aquarium_number} to {destination}"
        )
        return await self.create_task(title, created_by, notes=notes, transfer=prepared)

    async def get_task(self, task_id: str) -> GeneralTask:
        return await self._load_task(task_id)

    async def get_tasks(self, status: TaskStatus | None = None) -> Sequence[GeneralTask]:
        return await self.store.list_general_tasks(self.farm_id, status=status)

    async def complete_task(self, task_id: str) -> TaskCompletionResult:
        """Complete a task, relocating fish first if it carries a payload.

        Raises:
            NotFoundError: If the task doesn't exist.
            StateError: If the task is completed, cancelled or blocked.
            ValidationError: If the relocation is no longer possible.
            ConcurrentModificationError: If a touched document changed
                between read and commit.
        """
        task = await self._load_task(task_id)
        task.ensure_completable()

        batch = WriteBatch()
        relocation = None
        if task.transfer is not None:
            relocation = await self.executor.stage(task.transfer, batch)

        task.mark_completed(datetime.now(UTC))
        batch.update(task)
        await self.store.commit(batch)

        logger.info(
            f"Task {task_id} completed",
            extra={
                "task_id": task_id,
                "transferred": relocation.transferred if relocation else 0,
            },
        )
        return TaskCompletionResult(task=task, relocation=relocation)

    async def block_task(
        self, task_id: str, reason: BlockReason | str, notes: str = ""
    ) -> GeneralTask:
        task = await self._load_task(task_id)
        task.block(reason, notes, datetime.now(UTC))
        await self._save(task)

        logger.info(
            f"Task {task_id} blocked",
            extra={"task_id": task_id, "reason": task.block_reason.value, "notes": notes},
        )
        return task

    async def unblock_task(
        self, task_id: str, action: UnblockAction | str
    ) -> GeneralTask:
        task = await self._load_task(task_id)
        parsed = task.unblock(action, datetime.now(UTC))
        await self._save(task)

        logger.info(
            f"Task {task_id} unblocked ({parsed.value})",
            extra={"task_id": task_id, "action": parsed.value},
        )
        return task

    async def delete_task(self, task_id: str) -> None:
        """Delete a task. Completed relocations are not undone."""
        task = await self._load_task(task_id)
        batch = WriteBatch()
        batch.delete(task)
        await self.store.commit(batch)

        logger.info(f"Task {task_id} deleted", extra={"task_id": task_id})

    async def _save(self, task: GeneralTask) -> None:
        batch = WriteBatch()
        batch.update(task)
        await self.store.commit(batch)

    async def _load_task(self, task_id: str) -> GeneralTask:
        task = await self.store.get_general_task(task_id)
        if task is None:
            raise NotFoundError("Task", task_id)
        return task
