"""Tests for the sync scheduler."""

import asyncio
from datetime import timedelta

from conftest import REALM_ID, qb_record, ts

from qbo_sync.database import utcnow
from qbo_sync.errors import QuickBooksAPIError
from qbo_sync.models.enums import ObjectType, SyncHistoryStatus
from qbo_sync.services.object_sync import SyncResult
from qbo_sync.services.scheduler import SyncScheduler


class _CountingRepository:
    def __init__(self, total: int = 0) -> None:
        self.total = total

    async def count_by_realm_id(self, realm_id: str) -> int:
        return self.total


class _EngineDouble:
    def __init__(self, object_type: ObjectType, outcome=None, block: asyncio.Event = None) -> None:
        self.object_type = object_type
        self.repository = _CountingRepository()
        self.outcome = outcome if outcome is not None else SyncResult(synced=1)
        self.block = block
        self.calls = 0
        self.started = asyncio.Event()

    async def sync(self) -> SyncResult:
        self.calls += 1
        self.started.set()
        if self.block is not None:
            await self.block.wait()
        if isinstance(self.outcome, BaseException):
            raise self.outcome
        return self.outcome


def _scheduler(session_factory, settings, engines: dict):
    return SyncScheduler(
        session_factory,
        client=None,
        settings=settings,
        engine_factory=lambda object_type, realm_id: engines[object_type],
    )


class TestRunCycle:
    async def test_no_realm_returns_none(self, session_factory, test_settings):
        engines = {t: _EngineDouble(t) for t in ObjectType}
        scheduler = _scheduler(session_factory, test_settings, engines)

        assert await scheduler.run_cycle() is None
        assert all(e.calls == 0 for e in engines.values())

    async def test_aggregates_results(self, session_factory, test_settings, authorized_realm):
        engines = {
            ObjectType.CUSTOMER: _EngineDouble(ObjectType.CUSTOMER, SyncResult(synced=3)),
            ObjectType.INVOICE: _EngineDouble(ObjectType.INVOICE, SyncResult(synced=2)),
        }
        summary = await _scheduler(session_factory, test_settings, engines).run_cycle()

        assert summary.realm_id == REALM_ID
        assert summary.total_synced == 5
        assert summary.total_errors == 0
        assert summary.results["customer"].synced == 3

    async def test_one_engine_raising_does_not_affect_the_other(
        self, session_factory, test_settings, authorized_realm
    ):
        engines = {
            ObjectType.CUSTOMER: _EngineDouble(ObjectType.CUSTOMER, RuntimeError("unexpected")),
            ObjectType.INVOICE: _EngineDouble(ObjectType.INVOICE, SyncResult(synced=4)),
        }
        summary = await _scheduler(session_factory, test_settings, engines).run_cycle()

        assert summary.results["customer"] == SyncResult(errors=1)
        assert summary.results["invoice"] == SyncResult(synced=4)
        assert summary.total_errors == 1

    async def test_engines_run_concurrently(self, session_factory, test_settings, authorized_realm):
        gate = asyncio.Event()
        engines = {t: _EngineDouble(t, block=gate) for t in ObjectType}
        scheduler = _scheduler(session_factory, test_settings, engines)

        cycle = asyncio.create_task(scheduler.run_cycle())
        await asyncio.wait_for(
            asyncio.gather(*(e.started.wait() for e in engines.values())), timeout=1
        )
        assert scheduler.cycle_running

        gate.set()
        summary = await cycle
        assert summary.total_synced == 2
        assert not scheduler.cycle_running

    async def test_real_engines_isolate_remote_outage(
        self, session_factory, test_settings, authorized_realm, fake_quickbooks, state_store
    ):
        fake_quickbooks.add("Customer", qb_record("1", ts(1)), qb_record("2", ts(2)))
        fake_quickbooks.fail_with["Invoice"] = QuickBooksAPIError(429, "Too Many Requests")
        scheduler = SyncScheduler(session_factory, fake_quickbooks, settings=test_settings)

        summary = await scheduler.run_cycle()

        assert summary.total_synced == 2
        assert summary.total_errors == 1
        states = {s.object_type: s for s in await state_store.get_all(REALM_ID)}
        assert states["customer"].status == "success"
        assert states["customer"].cursor == ts(2)
        assert states["invoice"].status == "failure"

    async def test_cycle_never_deletes_history(
        self, session_factory, test_settings, authorized_realm, fake_quickbooks, history_log
    ):
        old = utcnow() - timedelta(days=200)
        old_id = await history_log.create(
            realm_id=REALM_ID,
            object_type=ObjectType.CUSTOMER,
            status=SyncHistoryStatus.SUCCESS,
            started_at=old,
            completed_at=old + timedelta(seconds=2),
            records_synced=7,
        )
        fake_quickbooks.add("Customer", qb_record("1", ts(1)))
        scheduler = SyncScheduler(session_factory, fake_quickbooks, settings=test_settings)

        await scheduler.run_cycle()

        records = await history_log.find_by_realm_id(REALM_ID, 10)
        assert len(records) == 3
        assert any(r.id == old_id and r.records_synced == 7 for r in records)

    async def test_engines_are_cached_per_realm_and_type(self, session_factory, test_settings, fake_quickbooks):
        scheduler = SyncScheduler(session_factory, fake_quickbooks, settings=test_settings)

        first = scheduler.engine_for(REALM_ID, ObjectType.CUSTOMER)

        assert scheduler.engine_for(REALM_ID, ObjectType.CUSTOMER) is first
        assert scheduler.engine_for(REALM_ID, ObjectType.INVOICE) is not first
        assert scheduler.engine_for("other", ObjectType.CUSTOMER) is not first


class TestStartStop:
    async def test_start_runs_first_cycle_immediately(self, session_factory, test_settings, authorized_realm):
        engines = {t: _EngineDouble(t) for t in ObjectType}
        scheduler = _scheduler(session_factory, test_settings, engines)

        scheduler.start()
        await asyncio.wait_for(engines[ObjectType.INVOICE].started.wait(), timeout=1)
        assert scheduler.is_running

        assert await scheduler.stop(timeout=1) is True
        assert not scheduler.is_running
        # Interval is minutes long, so only the startup cycle ran
        assert engines[ObjectType.CUSTOMER].calls == 1

    async def test_stop_waits_for_in_flight_cycle(self, session_factory, test_settings, authorized_realm):
        gate = asyncio.Event()
        engines = {t: _EngineDouble(t, block=gate) for t in ObjectType}
        scheduler = _scheduler(session_factory, test_settings, engines)

        scheduler.start()
        await asyncio.wait_for(engines[ObjectType.CUSTOMER].started.wait(), timeout=1)

        stopping = asyncio.create_task(scheduler.stop(timeout=5))
        await asyncio.sleep(0)
        assert not stopping.done()

        gate.set()
        assert await stopping is True

    async def test_stop_cancels_after_timeout(self, session_factory, test_settings, authorized_realm):
        never = asyncio.Event()
        engines = {t: _EngineDouble(t, block=never) for t in ObjectType}
        scheduler = _scheduler(session_factory, test_settings, engines)

        task = scheduler.start()
        await asyncio.wait_for(engines[ObjectType.CUSTOMER].started.wait(), timeout=1)

        assert await scheduler.stop(timeout=0.05) is False
        assert task.cancelled()

    async def test_stop_without_start(self, session_factory, test_settings):
        scheduler = _scheduler(session_factory, test_settings, {})
        assert await scheduler.stop(timeout=0.1) is True
