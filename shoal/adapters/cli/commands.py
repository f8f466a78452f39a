"""CLI command implementations for Shoal operators and managers.

Provides human-initiated actions through the command-line interface.

This adapter maps CLI commands (plans, transfer tasks, checklist tasks) to
TransferPlanPort and TaskPort operations. It handles CLI-specific argument
parsing, result formatting and error reporting.
"""

import json
import logging
from dataclasses import asdict
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as ArgumentError

from shoal.core.errors import ShoalError
from shoal.core.models import FishKind, FishRef, PlanStatus, TaskStatus, TransferPayload
from shoal.core.ports import TaskPort, TransferPlanPort

logger = logging.getLogger(__name__)


class TransferArgs(BaseModel):
    """JSON arguments describing a relocation."""

    model_config = ConfigDict(extra="forbid")

    fish_id: str = Field(min_length=1)
    fish_kind: FishKind | None = None
    quantity: int = Field(gt=0, strict=True)
    source_aquarium_id: str = Field(min_length=1)
    target_aquarium_id: str = Field(min_length=1)
    allow_mixing: bool = False

    def to_payload(self) -> TransferPayload:
        return TransferPayload(
            fish=FishRef(id=self.fish_id, kind=self.fish_kind),
            quantity=self.quantity,
            source_aquarium_id=self.source_aquarium_id,
            target_aquarium_id=self.target_aquarium_id,
            allow_mixing=self.allow_mixing,
        )


def to_json_data(value: Any) -> Any:
    """Convert domain objects into JSON-compatible structures."""
    if hasattr(value, "__dataclass_fields__"):
        return to_json_data(asdict(value))
    if isinstance(value, dict):
        return {str(k): to_json_data(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_json_data(v) for v in value]
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class CLICommandHandler:
    """Handles CLI commands by delegating to TransferPlanPort and TaskPort.

    Every method returns a dictionary with a "status" of "success" or
    "error". Business-rule failures become error results; store failures
    propagate.
    """

    def __init__(self, plans: TransferPlanPort, tasks: TaskPort, operator: str = "operator"):
        """Initialize the CLI command handler.

        Args:
            plans: TransferPlanPort implementation for plan commands.
            tasks: TaskPort implementation for checklist commands.
            operator: Name recorded as creator of new plans and tasks.
        """
        self.plans = plans
        self.tasks = tasks
        self.operator = operator

    @staticmethod
    def _error(operation: str, e: Exception, **fields: Any) -> dict[str, Any]:
        logger.error(f"Command {operation} failed: {e}")
        return {"status": "error", "operation": operation, **fields, "message": str(e)}

    # ------------------------------------------------------------------
    # Transfer plans
    # ------------------------------------------------------------------

    async def create_plan(self, name: str, notes: str = "") -> dict[str, Any]:
        """Create an empty transfer plan.

        Returns:
            Dictionary with status, the new plan and a message.
        """
        try:
            plan = await self.plans.create_transfer_plan(name, self.operator, notes)
        except ShoalError as e:
            return self._error("create_plan", e)
        return {
            "status": "success",
            "operation": "create_plan",
            "plan": to_json_data(plan),
            "message": f"Transfer plan {plan.id} created",
        }

    async def list_plans(self, status: str | None = None) -> dict[str, Any]:
        try:
            parsed = PlanStatus(status) if status else None
        except ValueError as e:
            return self._error("list_plans", e)
        plans = await self.plans.get_transfer_plans(parsed)
        return {
            "status": "success",
            "operation": "list_plans",
            "count": len(plans),
            "plans": to_json_data(list(plans)),
        }

    async def show_plan(self, plan_id: str) -> dict[str, Any]:
        """Plan details with its tasks and projected occupancy."""
        try:
            plan = await self.plans.get_transfer_plan(plan_id)
            tasks = await self.plans.get_transfer_tasks(plan_id)
            projection = await self.plans.project_occupancy(plan_id)
        except ShoalError as e:
            return self._error("show_plan", e, plan_id=plan_id)
        return {
            "status": "success",
            "operation": "show_plan",
            "plan": to_json_data(plan),
            "tasks": to_json_data(list(tasks)),
            "projection": {aq_id: p.to_dict() for aq_id, p in projection.items()},
        }

    async def add_task(
        self,
        plan_id: str,
        transfer: dict[str, Any],
        notes: str = "",
        acknowledge_warnings: bool = False,
    ) -> dict[str, Any]:
        """Add a transfer task to a plan.

        Without acknowledge_warnings, conflicting tasks come back with
        status "needs_confirmation" and the warnings to show the operator.
        """
        try:
            payload = TransferArgs.model_validate(transfer).to_payload()
            outcome = await self.plans.add_transfer_task(
                plan_id, payload, notes, acknowledge_warnings
            )
        except (ShoalError, ArgumentError) as e:
            return self._error("add_task", e, plan_id=plan_id)

        warnings = to_json_data(list(outcome.warnings))
        if not outcome.accepted:
            return {
                "status": "needs_confirmation",
                "operation": "add_task",
                "plan_id": plan_id,
                "warnings": warnings,
                "message": "Resubmit with acknowledge_warnings=true to add the task",
            }
        return {
            "status": "success",
            "operation": "add_task",
            "plan_id": plan_id,
            "task": to_json_data(outcome.task),
            "warnings": warnings,
            "message": f"Transfer task {outcome.task.id} added",
        }

    async def check_task(self, plan_id: str, transfer: dict[str, Any]) -> dict[str, Any]:
        try:
            payload = TransferArgs.model_validate(transfer).to_payload()
            warnings = await self.plans.validate_task_warnings(plan_id, payload)
        except (ShoalError, ArgumentError) as e:
            return self._error("check_task", e, plan_id=plan_id)
        return {
            "status": "success",
            "operation": "check_task",
            "plan_id": plan_id,
            "warnings": to_json_data(warnings),
        }

    async def execute_task(self, task_id: str) -> dict[str, Any]:
        try:
            result = await self.plans.execute_transfer_task(task_id)
        except ShoalError as e:
            return self._error("execute_task", e, task_id=task_id)
        return {
            "status": "success",
            "operation": "execute_task",
            "task_id": task_id,
            "plan_status": result.plan.status.value,
            "relocation": to_json_data(result.relocation),
            "message": f"Moved {result.relocation.transferred} fish",
        }

    async def block_task(self, task_id: str, reason: str, notes: str = "") -> dict[str, Any]:
        try:
            task = await self.plans.block_transfer_task(task_id, reason, notes)
        except ShoalError as e:
            return self._error("block_task", e, task_id=task_id)
        return {
            "status": "success",
            "operation": "block_task",
            "task": to_json_data(task),
            "message": f"Transfer task {task_id} blocked ({reason})",
        }

    async def unblock_task(self, task_id: str, action: str) -> dict[str, Any]:
        try:
            task = await self.plans.unblock_transfer_task(task_id, action)
        except ShoalError as e:
            return self._error("unblock_task", e, task_id=task_id)
        return {
            "status": "success",
            "operation": "unblock_task",
            "task": to_json_data(task),
            "message": f"Transfer task {task_id} is now {task.status.value}",
        }

    async def remove_task(self, task_id: str) -> dict[str, Any]:
        try:
            await self.plans.remove_transfer_task(task_id)
        except ShoalError as e:
            return self._error("remove_task", e, task_id=task_id)
        return {
            "status": "success",
            "operation": "remove_task",
            "task_id": task_id,
            "message": f"Transfer task {task_id} removed",
        }

    async def finalize_plan(self, plan_id: str) -> dict[str, Any]:
        try:
            plan = await self.plans.finalize_transfer_plan(plan_id)
        except ShoalError as e:
            return self._error("finalize_plan", e, plan_id=plan_id)
        return {
            "status": "success",
            "operation": "finalize_plan",
            "plan": to_json_data(plan),
            "message": f"Transfer plan {plan_id} is ready",
        }

    async def cancel_plan(self, plan_id: str) -> dict[str, Any]:
        try:
            plan = await self.plans.cancel_transfer_plan(plan_id)
        except ShoalError as e:
            return self._error("cancel_plan", e, plan_id=plan_id)
        return {
            "status": "success",
            "operation": "cancel_plan",
            "plan": to_json_data(plan),
            "message": f"Transfer plan {plan_id} cancelled",
        }

    async def delete_plan(self, plan_id: str) -> dict[str, Any]:
        try:
            deleted = await self.plans.delete_transfer_plan(plan_id)
        except ShoalError as e:
            return self._error("delete_plan", e, plan_id=plan_id)
        return {
            "status": "success",
            "operation": "delete_plan",
            "plan_id": plan_id,
            "tasks_deleted": deleted,
            "message": f"Transfer plan {plan_id} and {deleted} tasks deleted",
        }

    async def reconcile_plan(self, plan_id: str) -> dict[str, Any]:
        try:
            plan = await self.plans.reconcile_plan_counters(plan_id)
        except ShoalError as e:
            return self._error("reconcile_plan", e, plan_id=plan_id)
        return {"status": "success", "operation": "reconcile_plan", "plan": to_json_data(plan)}

    async def repair_occupancy(self, aquarium_ids: list[str] | None = None) -> dict[str, Any]:
        try:
            result = await self.plans.repair_aquarium_occupancy(aquarium_ids)
        except ShoalError as e:
            return self._error("repair_occupancy", e)
        return {
            "status": "success",
            "operation": "repair_occupancy",
            "checked": result.checked,
            "repaired": list(result.repaired),
        }

    # ------------------------------------------------------------------
    # Checklist tasks
    # ------------------------------------------------------------------

    async def create_task(
        self, title: str = "", notes: str = "", transfer: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        try:
            payload = TransferArgs.model_validate(transfer).to_payload() if transfer else None
            if payload is not None and not title:
                task = await self.tasks.create_transfer_task(payload, self.operator, notes)
            else:
                task = await self.tasks.create_task(title, self.operator, notes, payload)
        except (ShoalError, ArgumentError) as e:
            return self._error("create_task", e)
        return {
            "status": "success",
            "operation": "create_task",
            "task": to_json_data(task),
            "message": f"Task {task.id} created",
        }

    async def list_tasks(self, status: str | None = None) -> dict[str, Any]:
        try:
            parsed = TaskStatus(status) if status else None
        except ValueError as e:
            return self._error("list_tasks", e)
        tasks = await self.tasks.get_tasks(parsed)
        return {
            "status": "success",
            "operation": "list_tasks",
            "count": len(tasks),
            "tasks": to_json_data(list(tasks)),
        }

    async def complete_task(self, task_id: str) -> dict[str, Any]:
        try:
            result = await self.tasks.complete_task(task_id)
        except ShoalError as e:
            return self._error("complete_task", e, task_id=task_id)
        response = {
            "status": "success",
            "operation": "complete_task",
            "task": to_json_data(result.task),
            "message": f"Task {task_id} completed",
        }
        if result.relocation is not None:
            response["relocation"] = to_json_data(result.relocation)
        return response

    async def block_checklist_task(
        self, task_id: str, reason: str, notes: str = ""
    ) -> dict[str, Any]:
        try:
            task = await self.tasks.block_task(task_id, reason, notes)
        except ShoalError as e:
            return self._error("block_checklist_task", e, task_id=task_id)
        return {
            "status": "success",
            "operation": "block_checklist_task",
            "task": to_json_data(task),
        }

    async def unblock_checklist_task(self, task_id: str, action: str) -> dict[str, Any]:
        try:
            task = await self.tasks.unblock_task(task_id, action)
        except ShoalError as e:
            return self._error("unblock_checklist_task", e, task_id=task_id)
        return {
            "status": "success",
            "operation": "unblock_checklist_task",
            "task": to_json_data(task),
        }

    async def delete_task(self, task_id: str) -> dict[str, Any]:
        try:
            await self.tasks.delete_task(task_id)
        except ShoalError as e:
            return self._error("delete_task", e, task_id=task_id)
        return {
            "status": "success",
            "operation": "delete_task",
            "task_id": task_id,
            "message": f"Task {task_id} deleted",
        }


COMMANDS = {
    "create_plan": ("create_plan", ["name"], ["notes"]),
    "list_plans": ("list_plans", [], ["status"]),
    "show_plan": ("show_plan", ["plan_id"], []),
    "add_task": ("add_task", ["plan_id", "transfer"], ["notes", "acknowledge_warnings"]),
    "check_task": ("check_task", ["plan_id", "transfer"], []),
    "execute": ("execute_task", ["task_id"], []),
    "block": ("block_task", ["task_id", "reason"], ["notes"]),
    "unblock": ("unblock_task", ["task_id", "action"], []),
    "remove_task": ("remove_task", ["task_id"], []),
    "finalize": ("finalize_plan", ["plan_id"], []),
    "cancel_plan": ("cancel_plan", ["plan_id"], []),
    "delete_plan": ("delete_plan", ["plan_id"], []),
    "reconcile": ("reconcile_plan", ["plan_id"], []),
    "repair_occupancy": ("repair_occupancy", [], ["aquarium_ids"]),
    "create_task": ("create_task", [], ["title", "notes", "transfer"]),
    "list_tasks": ("list_tasks", [], ["status"]),
    "complete_task": ("complete_task", ["task_id"], []),
    "block_checklist_task": ("block_checklist_task", ["task_id", "reason"], ["notes"]),
    "unblock_checklist_task": ("unblock_checklist_task", ["task_id", "action"], []),
    "delete_task": ("delete_task", ["task_id"], []),
}


async def run_command(
    handler: CLICommandHandler,
    command: str,
    args: dict[str, Any],
) -> dict[str, Any]:
    """Run a CLI command.

    Entry point for executing CLI commands. Maps command names to handler methods.

    Args:
        handler: CLICommandHandler bound to the services.
        command: Command name (see COMMANDS).
        args: Dictionary of command arguments.

    Returns:
        Dictionary with command result.

    Raises:
        ValueError: If the command is not recognized or a required
            argument is missing.
    """
    if command not in COMMANDS:
        raise ValueError(f"Unknown command: {command}")

    method_name, required, optional = COMMANDS[command]
    missing = [name for name in required if name not in args]
    if missing:
        raise ValueError(f"Missing argument(s) for {command}: {', '.join(missing)}")

    kwargs = {name: args[name] for name in required + optional if name in args}
    return await getattr(handler, method_name)(**kwargs)


def format_result(result: dict[str, Any]) -> str:
    """Render a command result for the terminal."""
    return json.dumps(result, indent=2, sort_keys=True)
