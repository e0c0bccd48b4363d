"""Entity repositories — idempotent storage for synced QuickBooks records."""

import logging
from dataclasses import dataclass
from typing import Any, Optional, Sequence

from sqlalchemy import select, func, delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from qbo_sync.database import upsert_insert, utcnow
from qbo_sync.models.customer import Customer
from qbo_sync.models.invoice import Invoice

logger = logging.getLogger(__name__)

# Keeps multi-row VALUES under SQLite's bound-parameter limit
UPSERT_CHUNK_SIZE = 500


@dataclass
class EntityRecord:
    """Tagged record: the few fields we index on plus the untouched remote payload."""
    id: str
    realm_id: str
    raw_data: dict[str, Any]
    last_updated_time: Optional[str] = None
    customer_id: Optional[str] = None


class EntityRepository:
    """Keyed table of raw entity payloads. Subclasses set ``model``."""

    model = None
    entity_label = "entity"

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    def _to_row(self, record: EntityRecord) -> dict[str, Any]:
        return {
            "id": record.id,
            "realm_id": record.realm_id,
            "last_updated_time": record.last_updated_time,
            "raw_data": record.raw_data,
        }

    def _update_columns(self) -> list[str]:
        return ["realm_id", "last_updated_time", "raw_data", "updated_at"]

    async def batch_upsert(self, records: Sequence[EntityRecord]) -> int:
        """Insert or update all records in one transaction. Last write wins by id."""
        if not records:
            return 0

        # A repeated id inside one batch keeps its last occurrence
        deduped: dict[str, EntityRecord] = {}
        for record in records:
            deduped[record.id] = record

        now = utcnow()
        rows = []
        for record in deduped.values():
            row = self._to_row(record)
            row["created_at"] = now
            row["updated_at"] = now
            rows.append(row)

        async with self._session_factory() as db:
            try:
                for start in range(0, len(rows), UPSERT_CHUNK_SIZE):
                    chunk = rows[start:start + UPSERT_CHUNK_SIZE]
                    stmt = upsert_insert(db, self.model).values(chunk)
                    stmt = stmt.on_conflict_do_update(
                        index_elements=["id"],
                        set_={col: stmt.excluded[col] for col in self._update_columns()},
                    )
                    await db.execute(stmt)
                await db.commit()
            except Exception:
                await db.rollback()
                raise

        logger.info(f"Batch upserted {len(rows)} {self.entity_label} records")
        return len(rows)

    async def find_by_id(self, entity_id: str):
        async with self._session_factory() as db:
            return await db.get(self.model, entity_id)

    async def find_by_realm_id(self, realm_id: str, limit: Optional[int] = None) -> list:
        query = (
            select(self.model)
            .where(self.model.realm_id == realm_id)
            .order_by(self.model.updated_at.desc())
        )
        if limit:
            query = query.limit(limit)
        async with self._session_factory() as db:
            result = await db.execute(query)
            return list(result.scalars().all())

    async def count_by_realm_id(self, realm_id: str) -> int:
        async with self._session_factory() as db:
            result = await db.execute(
                select(func.count(self.model.id)).where(self.model.realm_id == realm_id)
            )
            return result.scalar() or 0

    async def delete(self, entity_id: str) -> None:
        async with self._session_factory() as db:
            await db.execute(delete(self.model).where(self.model.id == entity_id))
            await db.commit()
        logger.debug(f"{self.entity_label.capitalize()} deleted: {entity_id}")

    async def delete_by_realm_id(self, realm_id: str) -> int:
        async with self._session_factory() as db:
            result = await db.execute(delete(self.model).where(self.model.realm_id == realm_id))
            await db.commit()
        logger.info(f"Deleted {result.rowcount} {self.entity_label} records for realm: {realm_id}")
        return result.rowcount


class CustomerRepository(EntityRepository):
    model = Customer
    entity_label = "customer"


class InvoiceRepository(EntityRepository):
    model = Invoice
    entity_label = "invoice"

    def _to_row(self, record: EntityRecord) -> dict[str, Any]:
        row = super()._to_row(record)
        row["customer_id"] = record.customer_id
        return row

    def _update_columns(self) -> list[str]:
        return super()._update_columns() + ["customer_id"]

    async def find_by_customer_id(
        self, customer_id: str, limit: Optional[int] = None, realm_id: Optional[str] = None
    ) -> list[Invoice]:
        query = select(Invoice).where(Invoice.customer_id == customer_id)
        if realm_id:
            query = query.where(Invoice.realm_id == realm_id)
        query = query.order_by(Invoice.updated_at.desc())
        if limit:
            query = query.limit(limit)
        async with self._session_factory() as db:
            result = await db.execute(query)
            return list(result.scalars().all())

    async def count_by_customer_id(self, customer_id: str, realm_id: Optional[str] = None) -> int:
        query = select(func.count(Invoice.id)).where(Invoice.customer_id == customer_id)
        if realm_id:
            query = query.where(Invoice.realm_id == realm_id)
        async with self._session_factory() as db:
            result = await db.execute(query)
            return result.scalar() or 0
