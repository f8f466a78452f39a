"""Relocation executor: stages the inventory mutations behind a transfer.

The executor never commits. It reads the fish record and the touched
aquariums, applies the mutation rules in memory, and adds every write to
the caller's WriteBatch with the version it was read at. The caller adds
its own task/plan writes and commits once, so either the whole relocation
lands or nothing does.

Mutation rules by destination:
- Shipment: reduce the record's quantity, deleting it when nothing remains.
- Reception instance: reassign the whole instance (instances never split).
- Catalog lot, full quantity: reassign the lot.
- Catalog lot, partial quantity: shrink the lot and create a new lot at
  the destination holding exactly the transferred amount.
"""

import logging
import uuid
from collections.abc import Iterable
from dataclasses import replace

from .errors import NotFoundError, ValidationError
from .models import (
    Aquarium,
    AquariumStatus,
    CatalogLot,
    FishKind,
    FishRecord,
    FishRef,
    ReceptionInstance,
    RelocationResult,
    TransferPayload,
    WriteBatch,
)
from .ports import FarmStorePort

logger = logging.getLogger(__name__)

HoldingKey = tuple[FishKind, str]


def recompute_occupancy(aquarium: Aquarium, quantities: Iterable[int]) -> bool:
    """Set total_fish and the derived empty/occupied status.

    Statuses other than EMPTY/OCCUPIED (maintenance, in-transfer) are left
    alone; only the count changes for those aquariums.

    Returns:
        True if the aquarium changed.
    """
    total = sum(q for q in quantities if q > 0)
    status = aquarium.status
    if status in {AquariumStatus.EMPTY, AquariumStatus.OCCUPIED}:
        status = AquariumStatus.OCCUPIED if total > 0 else AquariumStatus.EMPTY

    changed = total != aquarium.total_fish or status != aquarium.status
    aquarium.total_fish = total
    aquarium.status = status
    return changed


class RelocationExecutor:
    """Resolves fish references and stages relocation writes."""

    def __init__(self, store: FarmStorePort):
        """Initialize the executor.

        Args:
            store: FarmStorePort used for every read.
        """
        self.store = store

    async def resolve(self, ref: FishRef) -> tuple[FishRef, FishRecord]:
        """Load the record behind a fish reference.

        Tagged references go straight to their inventory. Untagged legacy
        references probe the catalog first and fall back to reception
        instances when the catalog has no such record or refuses access.

        Returns:
            The tagged reference and the loaded record.

        Raises:
            NotFoundError: If neither inventory holds the record.
        """
        record: FishRecord | None
        if ref.kind == FishKind.CATALOG:
            record = await self.store.get_lot(ref.id)
        elif ref.kind == FishKind.RECEPTION:
            record = await self.store.get_instance(ref.id)
        else:
            try:
                record = await self.store.get_lot(ref.id)
            except PermissionError as e:
                logger.debug(f"Catalog lookup for fish {ref.id} denied ({e}); trying reception")
                record = None
            if record is None:
                record = await self.store.get_instance(ref.id)

        if record is None:
            raise NotFoundError("Fish", ref.id)
        return FishRef(id=ref.id, kind=record.KIND), record

    async def prepare(self, transfer: TransferPayload) -> TransferPayload:
        """Validate a proposed transfer against live state and tag its fish.

        Runs when a task is created so the fish kind is resolved once and
        carried on the task. Blank display fields are filled from the fish
        record and the aquariums.

        Raises:
            NotFoundError: If the fish or an aquarium doesn't exist.
            ValidationError: If the fish is not in the source aquarium or
                holds fewer fish than requested.
        """
        ref, fish = await self.resolve(transfer.fish)
        if fish.aquarium_id != transfer.source_aquarium_id:
            raise ValidationError(
                f"Fish {fish.id} is not in source aquarium {transfer.source_aquarium_id}"
            )
        if fish.held_quantity < transfer.quantity:
            raise ValidationError(
                f"Quantity {transfer.quantity} exceeds the {fish.held_quantity} "
                f"fish available in {fish.id}"
            )

        source = await self._load_aquarium(transfer.source_aquarium_id)
        if transfer.is_shipment:
            target_number, target_room = transfer.target_aquarium_number or "shipment", ""
        else:
            target = await self._load_aquarium(transfer.target_aquarium_id)
            target_number = transfer.target_aquarium_number or target.number
            target_room = transfer.target_room or target.room

        return replace(
            transfer,
            fish=ref,
            fish_name=transfer.fish_name or fish.common_name,
            scientific_name=transfer.scientific_name or fish.scientific_name,
            size=transfer.size or fish.size,
            source_aquarium_number=transfer.source_aquarium_number or source.number,
            source_room=transfer.source_room or source.room,
            target_aquarium_number=target_number,
            target_room=target_room,
        )

    async def current_holdings(self, aquarium_id: str) -> dict[HoldingKey, int]:
        """Quantities of every fish record currently assigned to an aquarium."""
        holdings: dict[HoldingKey, int] = {}
        for lot in await self.store.list_lots(aquarium_id=aquarium_id):
            holdings[(FishKind.CATALOG, lot.id)] = lot.quantity
        for instance in await self.store.list_instances(aquarium_id=aquarium_id):
            holdings[(FishKind.RECEPTION, instance.id)] = instance.current_quantity
        return holdings

    async def stage(self, transfer: TransferPayload, batch: WriteBatch) -> RelocationResult:
        """Stage the writes that carry out a transfer.

        Args:
            transfer: The relocation to perform.
            batch: Batch that receives the fish and aquarium writes.

        Returns:
            RelocationResult describing what will happen on commit.

        Raises:
            NotFoundError: If the fish or an aquarium doesn't exist.
            ValidationError: If the fish is no longer in the source aquarium
                or holds fewer fish than requested.
        """
        ref, fish = await self.resolve(transfer.fish)
        available = fish.held_quantity

        if fish.aquarium_id != transfer.source_aquarium_id:
            raise ValidationError(
                f"Fish {fish.id} is not in source aquarium {transfer.source_aquarium_id}"
            )
        if available < transfer.quantity:
            raise ValidationError(
                f"Not enough fish in {fish.id} "
                f"(available: {available}, requested: {transfer.quantity})"
            )

        source = await self._load_aquarium(transfer.source_aquarium_id)
        aquariums = [source]
        target: Aquarium | None = None
        if not transfer.is_shipment:
            target = await self._load_aquarium(transfer.target_aquarium_id)
            aquariums.append(target)

        holdings = {aq.id: await self.current_holdings(aq.id) for aq in aquariums}
        key: HoldingKey = (fish.KIND, fish.id)
        source_holdings = holdings[source.id]

        transferred = transfer.quantity
        remaining = available - transfer.quantity
        deleted = False
        split_lot_id: str | None = None

        if target is None:
            if remaining <= 0:
                batch.delete(fish)
                source_holdings.pop(key, None)
                deleted = True
                remaining = 0
            else:
                fish.held_quantity = remaining
                batch.update(fish)
                source_holdings[key] = remaining

        elif isinstance(fish, ReceptionInstance) or remaining == 0:
            if isinstance(fish, ReceptionInstance) and remaining > 0:
                logger.warning(
                    f"Reception instance {fish.id} cannot be split; moving all "
                    f"{available} fish instead of {transfer.quantity}",
                    extra={"fish_id": fish.id, "requested": transfer.quantity},
                )
            fish.aquarium_id = target.id
            batch.update(fish)
            source_holdings.pop(key, None)
            holdings[target.id][key] = available
            transferred = available
            remaining = 0

        else:
            fish.quantity = remaining
            batch.update(fish)
            source_holdings[key] = remaining
            split = self._split_lot(fish, transfer.quantity, target.id)
            batch.create(split)
            holdings[target.id][(FishKind.CATALOG, split.id)] = split.quantity
            split_lot_id = split.id

        for aquarium in aquariums:
            recompute_occupancy(aquarium, holdings[aquarium.id].values())
            batch.update(aquarium)

        logger.debug(
            f"Staged relocation of {transferred} fish from {ref.kind.value} record {ref.id}",
            extra={
                "fish_id": ref.id,
                "source": transfer.source_aquarium_id,
                "target": transfer.target_aquarium_id,
                "split_lot_id": split_lot_id,
            },
        )

        return RelocationResult(
            fish=ref,
            transferred=transferred,
            source_aquarium_id=transfer.source_aquarium_id,
            target_aquarium_id=transfer.target_aquarium_id,
            is_shipment=transfer.is_shipment,
            remaining_in_source=remaining,
            source_record_deleted=deleted,
            split_lot_id=split_lot_id,
        )

    async def _load_aquarium(self, aquarium_id: str) -> Aquarium:
        aquarium = await self.store.get_aquarium(aquarium_id)
        if aquarium is None:
            raise NotFoundError("Aquarium", aquarium_id)
        return aquarium

    @staticmethod
    def _split_lot(lot: CatalogLot, quantity: int, aquarium_id: str) -> CatalogLot:
        return CatalogLot(
            id=str(uuid.uuid4()),
            quantity=quantity,
            aquarium_id=aquarium_id,
            farm_id=lot.farm_id,
            common_name=lot.common_name,
            scientific_name=lot.scientific_name,
            size=lot.size,
        )
