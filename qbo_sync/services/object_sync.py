"""Object sync engine — one incremental sync cycle for one QuickBooks object type.

A cycle reads the type's cursor, asks QuickBooks for everything modified
after it (one page, ordered by modification time), upserts the page and
moves the cursor to the newest modification time it actually stored.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Protocol

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from qbo_sync.config import Settings, settings as default_settings
from qbo_sync.database import utcnow
from qbo_sync.models.enums import ObjectType, SyncHistoryStatus
from qbo_sync.repositories.entities import (
    CustomerRepository,
    EntityRecord,
    EntityRepository,
    InvoiceRepository,
)
from qbo_sync.repositories.sync_history import SyncHistoryLog
from qbo_sync.repositories.sync_state import SyncStateStore

logger = logging.getLogger(__name__)


class QueryClient(Protocol):
    async def query(self, realm_id: str, query_string: str) -> dict[str, Any]: ...


@dataclass
class SyncResult:
    synced: int = 0
    errors: int = 0
    # True when the call was refused because a cycle for this type was already running
    skipped: bool = False


def _customer_ref(record: dict[str, Any]) -> Optional[str]:
    ref = record.get("CustomerRef")
    if isinstance(ref, dict):
        value = ref.get("value")
        return str(value) if value is not None else None
    return None


@dataclass(frozen=True)
class EntitySpec:
    """What varies between object types."""
    object_type: ObjectType
    entity_name: str
    repository_class: type[EntityRepository]
    foreign_ref: Optional[Callable[[dict[str, Any]], Optional[str]]] = None


ENTITY_SPECS: dict[ObjectType, EntitySpec] = {
    ObjectType.CUSTOMER: EntitySpec(ObjectType.CUSTOMER, "Customer", CustomerRepository),
    ObjectType.INVOICE: EntitySpec(ObjectType.INVOICE, "Invoice", InvoiceRepository, _customer_ref),
}


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse a QuickBooks ISO-8601 timestamp; naive values are taken as UTC."""
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.warning(f"Ignoring unparseable timestamp: {value!r}")
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(value: datetime) -> str:
    """UTC ISO-8601 with a ``Z`` suffix, e.g. ``2024-03-01T10:30:00Z``."""
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def last_updated_time(record: dict[str, Any]) -> Optional[str]:
    meta = record.get("MetaData") or {}
    return meta.get("LastUpdatedTime")


def build_query(entity_name: str, cursor: Optional[str], max_results: int) -> str:
    where = f" WHERE Metadata.LastUpdatedTime > '{cursor}'" if cursor else ""
    return (
        f"SELECT * FROM {entity_name}{where} "
        f"ORDERBY Metadata.LastUpdatedTime MAXRESULTS {max_results}"
    )


def next_cursor(records: list[dict[str, Any]], cursor_before: Optional[str], max_results: int) -> Optional[str]:
    """Cursor to store after persisting ``records``.

    Records without a LastUpdatedTime do not count. If none have one the
    cursor stays where it was. The result is never older than
    ``cursor_before``.

    A full page may have been cut in the middle of a run of records sharing
    the newest timestamp. In that case the cursor stops just below that
    timestamp so the run is fetched again in full next cycle, unless the
    whole page shares it (then we have to move past it to make progress).
    The cost is that every full page re-fetches at least its newest record
    on the following cycle, and the cursor only reaches the true maximum
    once a page comes back short of ``max_results``.
    """
    stamps = set()
    for record in records:
        parsed = parse_timestamp(last_updated_time(record))
        if parsed is not None:
            stamps.add(parsed)

    if not stamps:
        return cursor_before

    ordered = sorted(stamps)
    candidate = ordered[-1]
    if len(records) >= max_results and len(ordered) > 1:
        candidate = ordered[-2]

    before = parse_timestamp(cursor_before)
    if before is not None and candidate <= before:
        return cursor_before
    return format_timestamp(candidate)


class ObjectSyncEngine:
    """Runs sync cycles for one (realm, object type)."""

    def __init__(
        self,
        spec: EntitySpec,
        realm_id: str,
        client: QueryClient,
        repository: EntityRepository,
        state_store: SyncStateStore,
        history: SyncHistoryLog,
        max_results: int = 1000,
    ):
        self.spec = spec
        self.realm_id = realm_id
        self._client = client
        self._repository = repository
        self._state = state_store
        self._history = history
        self._max_results = max_results
        self._busy = False

    @property
    def object_type(self) -> ObjectType:
        return self.spec.object_type

    @property
    def is_syncing(self) -> bool:
        return self._busy

    @property
    def repository(self) -> EntityRepository:
        return self._repository

    def _to_record(self, raw: dict[str, Any]) -> Optional[EntityRecord]:
        entity_id = raw.get("Id")
        if entity_id is None:
            logger.warning(f"Skipping {self.spec.entity_name} without Id")
            return None
        return EntityRecord(
            id=str(entity_id),
            realm_id=self.realm_id,
            raw_data=raw,
            last_updated_time=last_updated_time(raw),
            customer_id=self.spec.foreign_ref(raw) if self.spec.foreign_ref else None,
        )

    async def sync(self) -> SyncResult:
        """Run one cycle. Never raises; failures come back as ``errors=1``."""
        if self._busy:
            logger.warning(
                f"{self.spec.entity_name} sync already running for realm {self.realm_id}, skipping"
            )
            return SyncResult(skipped=True)

        self._busy = True
        try:
            return await self._run_cycle()
        finally:
            self._busy = False

    async def _run_cycle(self) -> SyncResult:
        object_type = self.spec.object_type
        logger.info(f"Starting {object_type.value} sync for realm: {self.realm_id}")

        started_at = utcnow()
        cursor_before: Optional[str] = None

        try:
            await self._state.mark_in_progress(self.realm_id, object_type)

            state = await self._state.get(self.realm_id, object_type)
            cursor_before = state.cursor

            query = build_query(self.spec.entity_name, cursor_before, self._max_results)
            logger.debug(f"Executing {object_type.value} query: {query}")

            response = await self._client.query(self.realm_id, query)
            raw_records = response.get(self.spec.entity_name) or []
            logger.info(f"Fetched {len(raw_records)} {object_type.value} records from QuickBooks")

            if not raw_records:
                # Keep the old cursor; None would mean "never synced"
                await self._state.mark_success(self.realm_id, object_type, cursor_before)
                await self._history.create(
                    realm_id=self.realm_id,
                    object_type=object_type,
                    status=SyncHistoryStatus.SUCCESS,
                    started_at=started_at,
                    completed_at=utcnow(),
                    records_synced=0,
                    cursor_before=cursor_before,
                    cursor_after=cursor_before,
                )
                return SyncResult()

            records = [r for r in (self._to_record(raw) for raw in raw_records) if r is not None]
            synced = await self._repository.batch_upsert(records)

            cursor_after = next_cursor(raw_records, cursor_before, self._max_results)
            if cursor_after == cursor_before:
                logger.warning(
                    f"{object_type.value} cursor not advanced for realm {self.realm_id} "
                    f"(no usable LastUpdatedTime in batch)"
                )
            logger.debug(f"New cursor for {object_type.value}: {cursor_after}")

            await self._state.mark_success(self.realm_id, object_type, cursor_after)
            await self._history.create(
                realm_id=self.realm_id,
                object_type=object_type,
                status=SyncHistoryStatus.SUCCESS,
                started_at=started_at,
                completed_at=utcnow(),
                records_synced=synced,
                cursor_before=cursor_before,
                cursor_after=cursor_after,
            )

            logger.info(f"{object_type.value.capitalize()} sync completed: {synced} records synced")
            return SyncResult(synced=synced)

        except Exception as e:
            error_message = str(e) or type(e).__name__
            logger.error(f"{object_type.value.capitalize()} sync failed: {error_message}")
            await self._record_failure(started_at, cursor_before, error_message)
            return SyncResult(errors=1)

    async def _record_failure(self, started_at: datetime, cursor_before: Optional[str], error_message: str):
        object_type = self.spec.object_type
        try:
            await self._state.mark_failure(self.realm_id, object_type, error_message)
        except Exception as e:
            logger.error(f"Could not mark {object_type.value} sync as failed: {e}")

        try:
            await self._history.create(
                realm_id=self.realm_id,
                object_type=object_type,
                status=SyncHistoryStatus.FAILURE,
                started_at=started_at,
                completed_at=utcnow(),
                records_synced=0,
                records_failed=1,
                cursor_before=cursor_before,
                cursor_after=cursor_before,
                error_message=error_message,
            )
        except Exception as e:
            logger.error(f"Could not record {object_type.value} sync history: {e}")

    async def get_stats(self) -> dict:
        count = await self._repository.count_by_realm_id(self.realm_id)
        state = await self._state.get(self.realm_id, self.spec.object_type)
        return {
            "object_type": self.spec.object_type.value,
            "total_records": count,
            "status": state.status,
            "cursor": state.cursor,
            "last_sync_success": state.last_sync_success,
        }

    async def reset(self) -> None:
        """Forget the cursor so the next cycle does a full sync."""
        logger.warning(f"Resetting {self.spec.object_type.value} sync state for realm: {self.realm_id}")
        await self._state.reset(self.realm_id, self.spec.object_type)


def build_sync_engine(
    object_type: ObjectType,
    realm_id: str,
    client: QueryClient,
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings = default_settings,
) -> ObjectSyncEngine:
    spec = ENTITY_SPECS[object_type]
    return ObjectSyncEngine(
        spec=spec,
        realm_id=realm_id,
        client=client,
        repository=spec.repository_class(session_factory),
        state_store=SyncStateStore(session_factory),
        history=SyncHistoryLog(session_factory),
        max_results=settings.qb_max_results,
    )
