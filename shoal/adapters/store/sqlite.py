"""SQLite farm store adapter.

Implements FarmStorePort using SQLite with aiosqlite for async access.
Every document lives in one table keyed by (collection, id), with its
body stored as JSON and the fields the engine filters on (aquarium,
plan, farm, status) lifted into indexed columns. Batches commit inside
a single transaction with per-document version checks.
"""

import asyncio
import json
import logging
from dataclasses import asdict
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

import aiosqlite

from shoal.core.errors import ConcurrentModificationError
from shoal.core.models import (
    Aquarium,
    AquariumStatus,
    BlockReason,
    CatalogLot,
    Collection,
    Document,
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
from shoal.core.ports import FarmStorePort

logger = logging.getLogger(__name__)


class SQLiteFarmStore(FarmStorePort):
    """SQLite-backed document store with connection pooling and async access."""

    def __init__(self, db_path: str, pool_size: int = 5):
        """Initialize SQLite store with connection pooling.

        Args:
            db_path: Path to SQLite database file.
            pool_size: Number of connections to maintain in the pool.
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._pool: list[aiosqlite.Connection] = []
        self._pool_lock = asyncio.Lock()
        self._commit_lock = asyncio.Lock()
        self._pool_size = pool_size
        self._schema_initialized = False

    async def _get_connection(self) -> aiosqlite.Connection:
        """Get a connection from the pool or create a new one."""
        async with self._pool_lock:
            if self._pool:
                return self._pool.pop()
        conn = await aiosqlite.connect(str(self.db_path))
        await conn.execute("PRAGMA journal_mode = WAL")
        return conn

    async def _return_connection(self, conn: aiosqlite.Connection) -> None:
        """Return a connection to the pool."""
        async with self._pool_lock:
            if len(self._pool) < self._pool_size:
                self._pool.append(conn)
                return
        await conn.close()

    async def close(self) -> None:
        """Close all pooled connections."""
        async with self._pool_lock:
            for conn in self._pool:
                await conn.close()
            self._pool.clear()

    async def _init_schema(self) -> None:
        """Initialize database schema on first use.

        Only runs once per instance. Subsequent calls are no-ops.
        """
        if self._schema_initialized:
            return
        async with self._commit_lock:
            if self._schema_initialized:
                return

            conn = await self._get_connection()
            try:
                await conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS documents (
                        collection TEXT NOT NULL,
                        id TEXT NOT NULL,
                        version INTEGER NOT NULL,
                        farm_id TEXT,
                        aquarium_id TEXT,
                        plan_id TEXT,
                        status TEXT,
                        sort_key TEXT,
                        body TEXT NOT NULL,
                        PRIMARY KEY (collection, id)
                    )
                    """
                )
                await conn.execute(
                    "CREATE INDEX IF NOT EXISTS idx_aquarium "
                    "ON documents(collection, aquarium_id)"
                )
                await conn.execute(
                    "CREATE INDEX IF NOT EXISTS idx_plan ON documents(collection, plan_id)"
                )
                await conn.execute(
                    "CREATE INDEX IF NOT EXISTS idx_farm_status "
                    "ON documents(collection, farm_id, status)"
                )
                await conn.commit()
                self._schema_initialized = True
            finally:
                await self._return_connection(conn)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def _fetch_one(self, collection: Collection, doc_id: str) -> Document | None:
        await self._init_schema()

        conn = await self._get_connection()
        try:
            cursor = await conn.execute(
                "SELECT version, body FROM documents WHERE collection = ? AND id = ?",
                (collection.value, doc_id),
            )
            row = await cursor.fetchone()
            if row is None:
                return None
            return self._row_to_document(collection, row)
        finally:
            await self._return_connection(conn)

    async def _fetch_many(
        self, collection: Collection, where: str = "", params: tuple[Any, ...] = (),
        order_by: str = "sort_key",
    ) -> list[Any]:
        await self._init_schema()

        query = "SELECT version, body FROM documents WHERE collection = ?"
        if where:
            query += f" AND {where}"
        query += f" ORDER BY {order_by}"

        conn = await self._get_connection()
        try:
            cursor = await conn.execute(query, (collection.value, *params))
            rows = await cursor.fetchall()
            return [self._row_to_document(collection, row) for row in rows]
        finally:
            await self._return_connection(conn)

    async def get_aquarium(self, aquarium_id: str) -> Aquarium | None:
        return await self._fetch_one(Collection.AQUARIUMS, aquarium_id)

    async def list_aquariums(self) -> list[Aquarium]:
        return await self._fetch_many(Collection.AQUARIUMS)

    async def get_lot(self, lot_id: str) -> CatalogLot | None:
        return await self._fetch_one(Collection.LOTS, lot_id)

    async def get_instance(self, instance_id: str) -> ReceptionInstance | None:
        return await self._fetch_one(Collection.INSTANCES, instance_id)

    async def list_lots(self, aquarium_id: str | None = None) -> list[CatalogLot]:
        if aquarium_id is None:
            return await self._fetch_many(Collection.LOTS, order_by="id")
        return await self._fetch_many(
            Collection.LOTS, "aquarium_id = ?", (aquarium_id,), order_by="id"
        )

    async def list_instances(
        self, aquarium_id: str | None = None
    ) -> list[ReceptionInstance]:
        if aquarium_id is None:
            return await self._fetch_many(Collection.INSTANCES, order_by="id")
        return await self._fetch_many(
            Collection.INSTANCES, "aquarium_id = ?", (aquarium_id,), order_by="id"
        )

    async def get_plan(self, plan_id: str) -> TransferPlan | None:
        return await self._fetch_one(Collection.PLANS, plan_id)

    async def list_plans(
        self, farm_id: str, status: PlanStatus | None = None
    ) -> list[TransferPlan]:
        where, params = "farm_id = ?", (farm_id,)
        if status is not None:
            where, params = "farm_id = ? AND status = ?", (farm_id, status.value)
        return await self._fetch_many(
            Collection.PLANS, where, params, order_by="sort_key DESC"
        )

    async def get_transfer_task(self, task_id: str) -> TransferTask | None:
        return await self._fetch_one(Collection.TRANSFER_TASKS, task_id)

    async def list_transfer_tasks(self, plan_id: str) -> list[TransferTask]:
        return await self._fetch_many(
            Collection.TRANSFER_TASKS, "plan_id = ?", (plan_id,)
        )

    async def get_general_task(self, task_id: str) -> GeneralTask | None:
        return await self._fetch_one(Collection.TASKS, task_id)

    async def list_general_tasks(
        self, farm_id: str, status: TaskStatus | None = None
    ) -> list[GeneralTask]:
        where, params = "farm_id = ?", (farm_id,)
        if status is not None:
            where, params = "farm_id = ? AND status = ?", (farm_id, status.value)
        return await self._fetch_many(
            Collection.TASKS, where, params, order_by="sort_key DESC"
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def commit(self, batch: WriteBatch) -> None:
        """Apply every write in one transaction, checking versions first.

        Raises:
            ConcurrentModificationError: If a document's stored version does
                not match the version the batch expects. The transaction is
                rolled back and nothing is written.
        """
        if not len(batch):
            return
        await self._init_schema()

        async with self._commit_lock:
            conn = await self._get_connection()
            try:
                await conn.execute("BEGIN IMMEDIATE")
                try:
                    for op in batch:
                        cursor = await conn.execute(
                            "SELECT version FROM documents WHERE collection = ? AND id = ?",
                            (op.collection.value, op.doc_id),
                        )
                        row = await cursor.fetchone()
                        stored = row[0] if row else None
                        expected = op.expected_version or None
                        if stored != expected:
                            raise ConcurrentModificationError(
                                op.collection.value, op.doc_id, op.expected_version, stored
                            )

                        if op.is_delete:
                            await conn.execute(
                                "DELETE FROM documents WHERE collection = ? AND id = ?",
                                (op.collection.value, op.doc_id),
                            )
                        else:
                            await conn.execute(
                                """
                                INSERT OR REPLACE INTO documents
                                (collection, id, version, farm_id, aquarium_id,
                                 plan_id, status, sort_key, body)
                                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                                """,
                                (
                                    op.collection.value,
                                    op.doc_id,
                                    op.expected_version + 1,
                                    *self._index_columns(op.document),
                                    self._serialize(op.document),
                                ),
                            )
                except BaseException:
                    await conn.rollback()
                    raise
                await conn.commit()
            finally:
                await self._return_connection(conn)

        for op in batch:
            if op.document is not None:
                op.document.version = op.expected_version + 1

        logger.debug(
            f"Committed batch of {len(batch)} writes",
            extra={"docs": [f"{op.collection.value}/{op.doc_id}" for op in batch]},
        )

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    @staticmethod
    def _index_columns(document: Document) -> tuple[Any, ...]:
        """Values for (farm_id, aquarium_id, plan_id, status, sort_key)."""
        farm_id = getattr(document, "farm_id", None)
        aquarium_id = getattr(document, "aquarium_id", None)
        plan_id = getattr(document, "plan_id", None)
        status = getattr(document, "status", None)
        if isinstance(document, Aquarium):
            # Numbers like "2" and "10" sort numerically before falling back to text.
            sort_key = f"{document.number:>12}"
        elif isinstance(document, TransferTask):
            sort_key = f"{document.order:012d}"
        elif isinstance(document, (TransferPlan, GeneralTask)):
            sort_key = document.created_at.isoformat()
        else:
            sort_key = document.id
        return (
            farm_id,
            aquarium_id,
            plan_id,
            status.value if isinstance(status, Enum) else None,
            sort_key,
        )

    @staticmethod
    def _serialize(document: Document) -> str:
        """Serialize a document body to JSON. The version lives in its own column."""
        data = asdict(document)
        data.pop("version", None)
        return json.dumps(data, default=_json_default, sort_keys=True)

    def _row_to_document(self, collection: Collection, row: tuple[Any, ...]) -> Any:
        """Convert a database row to a domain document.

        Raises:
            ValueError: If the row is malformed or contains invalid data.
        """
        try:
            version, body = row
            data = json.loads(body)
            data["version"] = version
            return _DECODERS[collection](data)
        except ValueError as e:
            logger.error(f"Failed to parse {collection.value} row: {e}")
            raise
        except (KeyError, TypeError) as e:
            logger.error(f"Unexpected error parsing {collection.value} row: {e}")
            raise ValueError(f"Row parsing failed: {e}") from e


def _json_default(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _parse_datetime(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _decode_transfer(data: dict[str, Any] | None) -> TransferPayload | None:
    if data is None:
        return None
    fish = data.pop("fish")
    kind = fish.get("kind")
    return TransferPayload(
        fish=FishRef(id=fish["id"], kind=FishKind(kind) if kind else None),
        **data,
    )


def _decode_aquarium(data: dict[str, Any]) -> Aquarium:
    data["status"] = AquariumStatus(data["status"])
    return Aquarium(**data)


def _decode_plan(data: dict[str, Any]) -> TransferPlan:
    data["status"] = PlanStatus(data["status"])
    data["created_at"] = _parse_datetime(data["created_at"])
    data["updated_at"] = _parse_datetime(data["updated_at"])
    return TransferPlan(**data)


def _decode_task_fields(data: dict[str, Any]) -> dict[str, Any]:
    data["status"] = TaskStatus(data["status"])
    reason = data.get("block_reason")
    data["block_reason"] = BlockReason(reason) if reason else None
    data["transfer"] = _decode_transfer(data.get("transfer"))
    data["created_at"] = _parse_datetime(data["created_at"])
    data["updated_at"] = _parse_datetime(data["updated_at"])
    return data


def _decode_transfer_task(data: dict[str, Any]) -> TransferTask:
    data = _decode_task_fields(data)
    data["executed_at"] = _parse_datetime(data.get("executed_at"))
    return TransferTask(**data)


def _decode_general_task(data: dict[str, Any]) -> GeneralTask:
    data = _decode_task_fields(data)
    data["completed_at"] = _parse_datetime(data.get("completed_at"))
    return GeneralTask(**data)


_DECODERS = {
    Collection.AQUARIUMS: _decode_aquarium,
    Collection.LOTS: lambda data: CatalogLot(**data),
    Collection.INSTANCES: lambda data: ReceptionInstance(**data),
    Collection.PLANS: _decode_plan,
    Collection.TRANSFER_TASKS: _decode_transfer_task,
    Collection.TASKS: _decode_general_task,
}
