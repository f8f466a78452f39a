"""Integration tests for the SQLite farm store."""

import tempfile
from collections.abc import AsyncIterator
from datetime import UTC, datetime
from pathlib import Path

import pytest

from shoal.adapters.store.sqlite import SQLiteFarmStore
from shoal.core.errors import ConcurrentModificationError
from shoal.core.models import (
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
    WriteBatch,
)
from shoal.core.transfer_service import TransferPlanService

NOW = datetime(2024, 3, 1, 9, 0, 0, tzinfo=UTC)


@pytest.fixture
async def store() -> AsyncIterator[SQLiteFarmStore]:
    """Create a SQLite store on a temporary database."""
    with tempfile.TemporaryDirectory() as tmpdir:
        store = SQLiteFarmStore(str(Path(tmpdir) / "farm.db"))
        yield store
        await store.close()


async def seed(store: SQLiteFarmStore, *documents) -> None:
    batch = WriteBatch()
    for document in documents:
        batch.create(document)
    await store.commit(batch)


def make_plan(plan_id: str, created_at: datetime = NOW) -> TransferPlan:
    return TransferPlan(
        id=plan_id,
        farm_id="farm-1",
        name=f"Plan {plan_id}",
        created_by="maria",
        created_at=created_at,
        updated_at=created_at,
    )


def make_task(task_id: str, plan_id: str, order: int) -> TransferTask:
    return TransferTask(
        id=task_id,
        plan_id=plan_id,
        farm_id="farm-1",
        transfer=TransferPayload(
            fish=FishRef(id="lot-1", kind=FishKind.CATALOG),
            quantity=3,
            source_aquarium_id="aq-1",
            target_aquarium_id=SHIPMENT_TARGET,
            fish_name="Neon tetra",
        ),
        order=order,
        created_at=NOW,
        updated_at=NOW,
    )


@pytest.mark.asyncio
async def test_commit_creates_and_bumps_versions(store: SQLiteFarmStore) -> None:
    """Created documents come back at version 1."""
    aquarium = Aquarium(id="aq-1", number="1", room="B", volume=120.0)
    await seed(store, aquarium)

    assert aquarium.version == 1
    loaded = await store.get_aquarium("aq-1")
    assert loaded == aquarium


@pytest.mark.asyncio
async def test_round_trips_every_document_kind(store: SQLiteFarmStore) -> None:
    """Documents survive serialization with enums, dates and payloads intact."""
    task = make_task("t-1", "p-1", 0)
    task.block(BlockReason.TEMPERATURE, "hot", NOW)
    general = GeneralTask(
        id="g-1",
        farm_id="farm-1",
        title="Feed",
        created_by="ana",
        created_at=NOW,
        updated_at=NOW,
        transfer=task.transfer,
    )
    lot = CatalogLot(id="lot-1", quantity=10, aquarium_id="aq-1", common_name="Neon tetra")
    instance = ReceptionInstance(id="inst-1", current_quantity=4, aquarium_id="aq-1")
    await seed(store, make_plan("p-1"), task, general, lot, instance)

    assert await store.get_transfer_task("t-1") == task
    assert await store.get_general_task("g-1") == general
    assert await store.get_lot("lot-1") == lot
    assert await store.get_instance("inst-1") == instance
    assert (await store.get_plan("p-1")).status == PlanStatus.PLANNING


@pytest.mark.asyncio
async def test_missing_documents_return_none(store: SQLiteFarmStore) -> None:
    """Lookups of unknown ids return None."""
    assert await store.get_plan("nope") is None
    assert await store.get_lot("nope") is None


@pytest.mark.asyncio
async def test_lookups_by_aquarium(store: SQLiteFarmStore) -> None:
    """Fish are listed per aquarium."""
    await seed(
        store,
        CatalogLot(id="lot-1", quantity=10, aquarium_id="aq-1"),
        CatalogLot(id="lot-2", quantity=3, aquarium_id="aq-2"),
        ReceptionInstance(id="inst-1", current_quantity=4, aquarium_id="aq-1"),
    )

    assert [lot.id for lot in await store.list_lots(aquarium_id="aq-1")] == ["lot-1"]
    assert [i.id for i in await store.list_instances(aquarium_id="aq-1")] == ["inst-1"]
    assert len(await store.list_lots()) == 2


@pytest.mark.asyncio
async def test_transfer_tasks_listed_in_order(store: SQLiteFarmStore) -> None:
    """Tasks of a plan come back by ascending order."""
    await seed(
        store,
        make_task("t-c", "p-1", 2),
        make_task("t-a", "p-1", 0),
        make_task("t-b", "p-1", 1),
        make_task("t-x", "p-2", 0),
    )

    tasks = await store.list_transfer_tasks("p-1")

    assert [t.id for t in tasks] == ["t-a", "t-b", "t-c"]


@pytest.mark.asyncio
async def test_list_plans_newest_first_with_status(store: SQLiteFarmStore) -> None:
    """Plans are newest first and filterable by status."""
    old = make_plan("p-old", datetime(2024, 1, 1, tzinfo=UTC))
    new = make_plan("p-new", datetime(2024, 2, 1, tzinfo=UTC))
    new.status = PlanStatus.READY
    await seed(store, old, new)

    assert [p.id for p in await store.list_plans("farm-1")] == ["p-new", "p-old"]
    assert [p.id for p in await store.list_plans("farm-1", PlanStatus.READY)] == ["p-new"]
    assert await store.list_plans("farm-2") == []


@pytest.mark.asyncio
async def test_aquariums_sorted_by_number(store: SQLiteFarmStore) -> None:
    """Aquarium numbers sort numerically."""
    await seed(
        store,
        Aquarium(id="a", number="10"),
        Aquarium(id="b", number="2"),
        Aquarium(id="c", number="1"),
    )

    assert [a.number for a in await store.list_aquariums()] == ["1", "2", "10"]


@pytest.mark.asyncio
async def test_stale_version_rolls_back_whole_batch(store: SQLiteFarmStore) -> None:
    """A single stale write aborts every write in the batch."""
    aquarium = Aquarium(id="aq-1", number="1")
    lot = CatalogLot(id="lot-1", quantity=10, aquarium_id="aq-1")
    await seed(store, aquarium, lot)

    stale = await store.get_lot("lot-1")
    fresh = await store.get_lot("lot-1")
    fresh.quantity = 8
    batch = WriteBatch()
    batch.update(fresh)
    await store.commit(batch)

    aquarium.total_fish = 99
    stale.quantity = 1
    batch = WriteBatch()
    batch.update(aquarium)
    batch.update(stale)
    with pytest.raises(ConcurrentModificationError, match="farm_fish/lot-1"):
        await store.commit(batch)

    assert (await store.get_aquarium("aq-1")).total_fish == 0
    assert (await store.get_lot("lot-1")).quantity == 8


@pytest.mark.asyncio
async def test_create_existing_document_conflicts(store: SQLiteFarmStore) -> None:
    """Creates require the document to be absent."""
    await seed(store, Aquarium(id="aq-1", number="1"))

    with pytest.raises(ConcurrentModificationError):
        await seed(store, Aquarium(id="aq-1", number="1"))


@pytest.mark.asyncio
async def test_delete_removes_document(store: SQLiteFarmStore) -> None:
    """Deletes are version checked and remove the row."""
    lot = CatalogLot(id="lot-1", quantity=10, aquarium_id="aq-1")
    await seed(store, lot)

    batch = WriteBatch()
    batch.delete(lot)
    await store.commit(batch)

    assert await store.get_lot("lot-1") is None


@pytest.mark.asyncio
async def test_service_runs_against_sqlite(store: SQLiteFarmStore) -> None:
    """A full plan executes end to end against the SQLite store."""
    await seed(
        store,
        Aquarium(id="aq-1", number="1", status=AquariumStatus.OCCUPIED, total_fish=10),
        Aquarium(id="aq-2", number="2"),
        CatalogLot(id="lot-1", quantity=10, aquarium_id="aq-1", common_name="Neon tetra"),
    )
    service = TransferPlanService(store, farm_id="farm-1")
    plan = await service.create_transfer_plan("Split tetras", "maria")
    outcome = await service.add_transfer_task(
        plan.id,
        TransferPayload(
            fish=FishRef(id="lot-1"),
            quantity=4,
            source_aquarium_id="aq-1",
            target_aquarium_id="aq-2",
        ),
    )
    await service.finalize_transfer_plan(plan.id)

    result = await service.execute_transfer_task(outcome.task.id)

    assert result.plan.status == PlanStatus.COMPLETED
    assert (await store.get_transfer_task(outcome.task.id)).status == TaskStatus.COMPLETED
    assert (await store.get_lot("lot-1")).quantity == 6
    split = await store.get_lot(result.relocation.split_lot_id)
    assert split.quantity == 4 and split.aquarium_id == "aq-2"
    assert (await store.get_aquarium("aq-2")).status == AquariumStatus.OCCUPIED
    assert (await store.get_plan(plan.id)).version == 4
