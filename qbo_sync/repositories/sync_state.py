"""Sync state store — one row per (realm, object type)."""

import logging
from typing import Any, Optional

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from qbo_sync.database import upsert_insert, utcnow
from qbo_sync.models.enums import ObjectType, SyncStatus
from qbo_sync.models.sync_state import SyncState

logger = logging.getLogger(__name__)


class SyncStateStore:
    """Upsert-only access to the sync_state table.

    Writers for different object types never touch the same row. Two writers
    for the same (realm, type) would race and the last one wins; the engine's
    busy flag keeps that from happening.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get(self, realm_id: str, object_type: ObjectType) -> SyncState:
        """Current state, or a transient pending default if no row exists yet."""
        async with self._session_factory() as db:
            result = await db.execute(
                select(SyncState).where(
                    SyncState.realm_id == realm_id,
                    SyncState.object_type == object_type.value,
                )
            )
            state = result.scalar_one_or_none()

        if state is None:
            return SyncState(
                realm_id=realm_id,
                object_type=object_type.value,
                status=SyncStatus.PENDING.value,
                cursor=None,
            )
        return state

    async def get_all(self, realm_id: str) -> list[SyncState]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(SyncState)
                .where(SyncState.realm_id == realm_id)
                .order_by(SyncState.object_type)
            )
            return list(result.scalars().all())

    async def mark_in_progress(self, realm_id: str, object_type: ObjectType) -> None:
        now = utcnow()
        await self._upsert(
            realm_id,
            object_type,
            status=SyncStatus.IN_PROGRESS.value,
            last_sync_attempt=now,
        )
        logger.debug(f"Sync marked as in_progress: {object_type.value} for realm {realm_id}")

    async def mark_success(self, realm_id: str, object_type: ObjectType, cursor: Optional[str]) -> None:
        now = utcnow()
        await self._upsert(
            realm_id,
            object_type,
            status=SyncStatus.SUCCESS.value,
            last_sync_success=now,
            cursor=cursor,
            error_message=None,
        )
        logger.info(f"Sync marked as success: {object_type.value} for realm {realm_id}")

    async def mark_failure(self, realm_id: str, object_type: ObjectType, error_message: str) -> None:
        await self._upsert(
            realm_id,
            object_type,
            status=SyncStatus.FAILURE.value,
            error_message=error_message,
        )
        logger.warning(
            f"Sync marked as failure: {object_type.value} for realm {realm_id} - {error_message}"
        )

    async def reset(self, realm_id: str, object_type: ObjectType) -> None:
        """Clear cursor and error so the next cycle does a full sync."""
        await self._upsert(
            realm_id,
            object_type,
            status=SyncStatus.PENDING.value,
            cursor=None,
            error_message=None,
        )
        logger.info(f"Sync state reset for {object_type.value} in realm {realm_id}")

    async def delete(self, realm_id: str, object_type: ObjectType) -> None:
        async with self._session_factory() as db:
            await db.execute(
                delete(SyncState).where(
                    SyncState.realm_id == realm_id,
                    SyncState.object_type == object_type.value,
                )
            )
            await db.commit()
        logger.info(f"Sync state deleted for {object_type.value} in realm {realm_id}")

    async def delete_by_realm(self, realm_id: str) -> int:
        async with self._session_factory() as db:
            result = await db.execute(delete(SyncState).where(SyncState.realm_id == realm_id))
            await db.commit()
        logger.info(f"Deleted {result.rowcount} sync states for realm: {realm_id}")
        return result.rowcount

    async def _upsert(self, realm_id: str, object_type: ObjectType, **fields: Any) -> None:
        """Create-or-update the row, touching only ``fields`` on conflict."""
        now = utcnow()
        values = {
            "realm_id": realm_id,
            "object_type": object_type.value,
            "created_at": now,
            "updated_at": now,
            **fields,
        }
        async with self._session_factory() as db:
            stmt = upsert_insert(db, SyncState).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=["realm_id", "object_type"],
                set_={**{name: stmt.excluded[name] for name in fields}, "updated_at": stmt.excluded.updated_at},
            )
            await db.execute(stmt)
            await db.commit()
