"""Virtual occupancy projection for transfer plans.

Sums the net flow each open task of a plan will cause, per aquarium.
This is a plain summation, not a temporal simulation: task order is
ignored and no stock levels are consulted.
"""

from collections.abc import Iterable

from .models import (
    ACTIVE_TASK_STATUSES,
    AquariumProjection,
    TransferTask,
)


class OccupancyProjector:
    """Computes speculative aquarium occupancy from pending tasks.

    Pure computation, no side effects.
    """

    def project(
        self, tasks: Iterable[TransferTask]
    ) -> dict[str, AquariumProjection]:
        """Project pending removals and additions per aquarium.

        Only PENDING and IN_PROGRESS tasks contribute. Shipment targets are
        not aquariums and receive no additions.

        Args:
            tasks: Tasks of a single plan, in any order.

        Returns:
            Mapping of aquarium ID to its projection. Aquariums no open task
            touches are absent.
        """
        removals: dict[str, int] = {}
        additions: dict[str, int] = {}

        for task in tasks:
            if task.status not in ACTIVE_TASK_STATUSES:
                continue
            transfer = task.transfer
            removals[transfer.source_aquarium_id] = (
                removals.get(transfer.source_aquarium_id, 0) + transfer.quantity
            )
            if not transfer.is_shipment:
                additions[transfer.target_aquarium_id] = (
                    additions.get(transfer.target_aquarium_id, 0) + transfer.quantity
                )

        return {
            aquarium_id: AquariumProjection(
                aquarium_id=aquarium_id,
                pending_removals=removals.get(aquarium_id, 0),
                pending_additions=additions.get(aquarium_id, 0),
            )
            for aquarium_id in sorted(removals.keys() | additions.keys())
        }
