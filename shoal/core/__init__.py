"""Core domain logic for the Shoal transfer engine.

This package contains zero external dependencies and represents
the pure business logic of the application. Persistence and the
command shell are handled by the adapters package.
"""

from .errors import (
    ConcurrentModificationError,
    EmptyPlanError,
    NotFoundError,
    ShoalError,
    StateError,
    ValidationError,
)
from .models import (
    SHIPMENT_TARGET,
    Aquarium,
    AquariumStatus,
    BlockReason,
    CatalogLot,
    FishKind,
    FishRef,
    GeneralTask,
    PlanStatus,
    ReceptionInstance,
    TaskStatus,
    TransferPayload,
    TransferPlan,
    TransferTask,
    UnblockAction,
)
from .task_service import TaskService
from .transfer_service import TransferPlanService

__all__ = [
    "SHIPMENT_TARGET",
    "Aquarium",
    "AquariumStatus",
    "BlockReason",
    "CatalogLot",
    "ConcurrentModificationError",
    "EmptyPlanError",
    "FishKind",
    "FishRef",
    "GeneralTask",
    "NotFoundError",
    "PlanStatus",
    "ReceptionInstance",
    "ShoalError",
    "StateError",
    "TaskService",
    "TaskStatus",
    "TransferPayload",
    "TransferPlan",
    "TransferPlanService",
    "TransferTask",
    "UnblockAction",
    "ValidationError",
]
