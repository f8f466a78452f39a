"""Conflict rules for proposed transfer tasks.

This module implements the advisory checks run before a task joins a
plan. Every warning is overridable: operators may intentionally
consolidate animals, so the validator asks for a second confirmation
instead of refusing.
"""

from collections.abc import Mapping

from .models import AquariumProjection, TaskWarning, TransferPayload, WarningType


class ConflictValidator:
    """Turns a projection plus live occupancy into warnings.

    Pure decision logic, no side effects.
    """

    def validate(
        self,
        transfer: TransferPayload,
        projection: Mapping[str, AquariumProjection],
        target_holds_fish: bool,
    ) -> list[TaskWarning]:
        """Check a proposed transfer against the plan and the live tank.

        Args:
            transfer: The proposed relocation.
            projection: Occupancy projection of the plan's open tasks.
            target_holds_fish: Whether the target aquarium currently holds
                any fish record with quantity > 0. Ignored for shipments.

        Returns:
            Warnings in a stable order; empty when nothing conflicts.
        """
        warnings: list[TaskWarning] = []
        target_label = transfer.target_aquarium_number or transfer.target_aquarium_id
        source_label = transfer.source_aquarium_number or transfer.source_aquarium_id

        if not transfer.is_shipment:
            target = projection.get(transfer.target_aquarium_id)
            if target is not None and target.will_be_empty:
                warnings.append(
                    TaskWarning(
                        type=WarningType.TARGET_HAS_PENDING_REMOVALS,
                        message=(
                            f"Aquarium {target_label} is planned to be emptied. "
                            "Add fish to it anyway?"
                        ),
                    )
                )

        source = projection.get(transfer.source_aquarium_id)
        if source is not None and source.will_be_occupied:
            warnings.append(
                TaskWarning(
                    type=WarningType.SOURCE_HAS_PENDING_ADDITIONS,
                    message=(
                        f"Aquarium {source_label} is already planned to receive fish. "
                        "Remove fish from it anyway?"
                    ),
                )
            )

        if not transfer.is_shipment and not transfer.allow_mixing and target_holds_fish:
            warnings.append(
                TaskWarning(
                    type=WarningType.TARGET_OCCUPIED,
                    message=(
                        f"Aquarium {target_label} is currently occupied. "
                        "Mix the fish?"
                    ),
                )
            )

        return warnings
