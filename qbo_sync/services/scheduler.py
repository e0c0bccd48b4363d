"""Sync scheduler — runs every object type's engine on a fixed interval."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from qbo_sync.config import Settings, settings as default_settings
from qbo_sync.models.enums import ObjectType
from qbo_sync.repositories.sync_state import SyncStateStore
from qbo_sync.repositories.token_store import TokenStore
from qbo_sync.services.object_sync import ObjectSyncEngine, QueryClient, SyncResult, build_sync_engine

logger = logging.getLogger(__name__)

EngineFactory = Callable[[ObjectType, str], ObjectSyncEngine]


@dataclass
class CycleSummary:
    realm_id: str
    total_synced: int = 0
    total_errors: int = 0
    results: dict[str, SyncResult] = field(default_factory=dict)


class SyncScheduler:
    """Triggers one cycle at startup and then one every interval.

    Engines for the same cycle run concurrently; each one's outcome is
    captured separately so an outage in one type never touches the others.
    The loop awaits a whole cycle before sleeping, so cycles for the same
    type never overlap.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        client: QueryClient,
        settings: Settings = default_settings,
        object_types: Optional[list[ObjectType]] = None,
        engine_factory: Optional[EngineFactory] = None,
    ):
        self._settings = settings
        self._client = client
        self._session_factory = session_factory
        self._tokens = TokenStore(session_factory)
        self._states = SyncStateStore(session_factory)
        self._object_types = object_types or list(ObjectType)
        self._engine_factory = engine_factory or self._default_engine
        self._engines: dict[tuple[str, ObjectType], ObjectSyncEngine] = {}
        self._task: Optional[asyncio.Task] = None
        self._stop = asyncio.Event()
        self._cycle_running = False

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def cycle_running(self) -> bool:
        return self._cycle_running

    @property
    def interval_seconds(self) -> float:
        return self._settings.sync_interval_minutes * 60

    def _default_engine(self, object_type: ObjectType, realm_id: str) -> ObjectSyncEngine:
        return build_sync_engine(object_type, realm_id, self._client, self._session_factory, self._settings)

    def engine_for(self, realm_id: str, object_type: ObjectType) -> ObjectSyncEngine:
        """Cached engine per (realm, type), so its busy flag spans cycles and manual runs."""
        key = (realm_id, object_type)
        if key not in self._engines:
            self._engines[key] = self._engine_factory(object_type, realm_id)
        return self._engines[key]

    async def resolve_realm_id(self) -> Optional[str]:
        return await self._tokens.get_active_realm_id()

    async def run_cycle(self) -> Optional[CycleSummary]:
        """Sync every object type once for the active realm."""
        logger.info("=== Starting sync cycle ===")

        realm_id = await self.resolve_realm_id()
        if not realm_id:
            logger.warning("No active realm found. Please run bootstrap first.")
            logger.info("Steps:")
            logger.info("  1. Get an authorization code from https://developer.intuit.com/app/developer/playground")
            logger.info("  2. Set QB_AUTHORIZATION_CODE and QB_REALM_ID in .env")
            logger.info("  3. Run: qbo-sync-bootstrap")
            return None

        logger.info(f"Syncing data for realm: {realm_id}")
        engines = [self.engine_for(realm_id, t) for t in self._object_types]

        self._cycle_running = True
        try:
            outcomes = await asyncio.gather(*(e.sync() for e in engines), return_exceptions=True)
        finally:
            self._cycle_running = False

        summary = CycleSummary(realm_id=realm_id)
        for engine, outcome in zip(engines, outcomes):
            name = engine.object_type.value
            if isinstance(outcome, BaseException):
                if isinstance(outcome, asyncio.CancelledError):
                    raise outcome
                logger.error(f"{name} sync threw unexpected error: {outcome!r}")
                outcome = SyncResult(errors=1)
            summary.results[name] = outcome
            summary.total_synced += outcome.synced
            summary.total_errors += outcome.errors

            try:
                total = await engine.repository.count_by_realm_id(realm_id)
                logger.info(f"{name.capitalize()} stats: {total} total in DB")
            except Exception as e:
                logger.error(f"Could not count {name} records: {e}")

        logger.info("=== Sync cycle completed ===")
        logger.info(f"Total records synced: {summary.total_synced}")
        logger.info(f"Total errors: {summary.total_errors}")

        await self._log_states(realm_id)
        return summary

    async def _log_states(self, realm_id: str):
        try:
            states = await self._states.get_all(realm_id)
        except Exception as e:
            logger.error(f"Could not read sync states: {e}")
            return

        logger.info("Current sync states:")
        for state in states:
            cursor = f" (cursor: {state.cursor})" if state.cursor else ""
            logger.info(f"  - {state.object_type}: {state.status}{cursor}")

    async def _run_forever(self):
        while not self._stop.is_set():
            try:
                await self.run_cycle()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Sync cycle failed with unexpected error: {e}")

            logger.info(f"Next sync in {self._settings.sync_interval_minutes} minutes")
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass

    def start(self) -> asyncio.Task:
        """Run a cycle now and then on every interval, in a background task."""
        if self.is_running:
            return self._task
        self._stop.clear()
        self._task = asyncio.create_task(self._run_forever(), name="qbo-sync-scheduler")
        logger.info(f"Sync scheduler started (every {self._settings.sync_interval_minutes} min)")
        return self._task

    async def stop(self, timeout: Optional[float] = None) -> bool:
        """Stop scheduling and wait up to ``timeout`` for an in-flight cycle.

        Returns False if the cycle had to be cancelled; its state rows may
        then be left ``in_progress`` until the next run overwrites them.
        """
        if timeout is None:
            timeout = self._settings.shutdown_timeout_seconds
        self._stop.set()
        if self._task is None:
            return True

        task, self._task = self._task, None
        try:
            await asyncio.wait_for(asyncio.shield(task), timeout=timeout)
            logger.info("Sync scheduler stopped")
            return True
        except asyncio.TimeoutError:
            logger.warning(f"Sync cycle did not finish within {timeout}s, cancelling")
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            return False
