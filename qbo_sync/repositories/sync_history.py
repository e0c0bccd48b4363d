"""Sync history log — audit trail of sync cycles. Never used for control flow."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select, func, delete, case
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from qbo_sync.database import utcnow
from qbo_sync.models.enums import ObjectType, SyncHistoryStatus
from qbo_sync.models.sync_history import SyncHistory

logger = logging.getLogger(__name__)


@dataclass
class SyncHistorySummary:
    object_type: str
    total_syncs: int
    successful_syncs: int
    failed_syncs: int
    total_records_synced: int
    last_sync_time: Optional[datetime]
    last_sync_status: Optional[str]


class SyncHistoryLog:
    """Append-only writes plus read-only queries over sync_history."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def create(
        self,
        realm_id: str,
        object_type: ObjectType,
        status: SyncHistoryStatus,
        started_at: datetime,
        completed_at: datetime,
        records_synced: int = 0,
        records_failed: int = 0,
        cursor_before: Optional[str] = None,
        cursor_after: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> int:
        """Append one record and return its id."""
        record = SyncHistory(
            realm_id=realm_id,
            object_type=object_type.value,
            status=status.value,
            records_synced=records_synced,
            records_failed=records_failed,
            duration_ms=int((completed_at - started_at).total_seconds() * 1000),
            cursor_before=cursor_before,
            cursor_after=cursor_after,
            error_message=error_message,
            started_at=started_at,
            completed_at=completed_at,
            created_at=utcnow(),
        )
        async with self._session_factory() as db:
            db.add(record)
            await db.commit()

        logger.debug(f"Sync history record created: {record.id}")
        return record.id

    async def find_by_realm_and_type(
        self, realm_id: str, object_type: ObjectType, limit: int = 50
    ) -> list[SyncHistory]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(SyncHistory)
                .where(
                    SyncHistory.realm_id == realm_id,
                    SyncHistory.object_type == object_type.value,
                )
                .order_by(SyncHistory.started_at.desc(), SyncHistory.id.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def find_by_realm_id(self, realm_id: str, limit: int = 100) -> list[SyncHistory]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(SyncHistory)
                .where(SyncHistory.realm_id == realm_id)
                .order_by(SyncHistory.started_at.desc(), SyncHistory.id.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def find_most_recent(self, realm_id: str, object_type: ObjectType) -> Optional[SyncHistory]:
        records = await self.find_by_realm_and_type(realm_id, object_type, limit=1)
        return records[0] if records else None

    async def get_summary(self, realm_id: str) -> list[SyncHistorySummary]:
        """Per-object-type totals for a realm."""
        query = (
            select(
                SyncHistory.object_type,
                func.count(SyncHistory.id),
                func.sum(case((SyncHistory.status == SyncHistoryStatus.SUCCESS.value, 1), else_=0)),
                func.sum(case((SyncHistory.status == SyncHistoryStatus.FAILURE.value, 1), else_=0)),
                func.sum(SyncHistory.records_synced),
            )
            .where(SyncHistory.realm_id == realm_id)
            .group_by(SyncHistory.object_type)
            .order_by(SyncHistory.object_type)
        )
        async with self._session_factory() as db:
            rows = (await db.execute(query)).all()

        summaries = []
        for object_type, total, ok, failed, records in rows:
            latest = await self.find_most_recent(realm_id, ObjectType(object_type))
            summaries.append(
                SyncHistorySummary(
                    object_type=object_type,
                    total_syncs=total,
                    successful_syncs=ok or 0,
                    failed_syncs=failed or 0,
                    total_records_synced=records or 0,
                    last_sync_time=latest.started_at if latest else None,
                    last_sync_status=latest.status if latest else None,
                )
            )
        return summaries

    async def count(self, realm_id: Optional[str] = None, object_type: Optional[ObjectType] = None) -> int:
        query = select(func.count(SyncHistory.id))
        if realm_id:
            query = query.where(SyncHistory.realm_id == realm_id)
        if object_type:
            query = query.where(SyncHistory.object_type == object_type.value)
        async with self._session_factory() as db:
            return (await db.execute(query)).scalar() or 0

    async def delete_older_than(self, days: int) -> int:
        """Operator-triggered pruning (``qbo-sync-history --prune-days``).

        The only deletion the ledger allows. Nothing in the sync path calls it.
        """
        cutoff = utcnow() - timedelta(days=days)
        async with self._session_factory() as db:
            result = await db.execute(delete(SyncHistory).where(SyncHistory.started_at < cutoff))
            await db.commit()
        logger.info(f"Deleted {result.rowcount} sync history records older than {days} days")
        return result.rowcount
