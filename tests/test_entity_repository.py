"""Tests for customer/invoice repositories."""

from conftest import REALM_ID, qb_record, ts

from qbo_sync.repositories.entities import CustomerRepository, EntityRecord, InvoiceRepository


def _customer(entity_id: str, name: str, minute: int = 0) -> EntityRecord:
    raw = qb_record(entity_id, ts(minute), DisplayName=name)
    return EntityRecord(id=entity_id, realm_id=REALM_ID, raw_data=raw, last_updated_time=ts(minute))


class TestCustomerRepository:
    async def test_batch_upsert_is_idempotent(self, session_factory):
        repo = CustomerRepository(session_factory)
        batch = [_customer("1", "Amy's Bird Sanctuary"), _customer("2", "Bill's Windsurf Shop")]

        assert await repo.batch_upsert(batch) == 2
        assert await repo.batch_upsert(batch) == 2

        assert await repo.count_by_realm_id(REALM_ID) == 2
        stored = await repo.find_by_id("1")
        assert stored.raw_data["DisplayName"] == "Amy's Bird Sanctuary"
        assert stored.last_updated_time == ts(0)

    async def test_later_batch_overwrites_fields(self, session_factory):
        repo = CustomerRepository(session_factory)
        await repo.batch_upsert([_customer("1", "Old Name", minute=0)])
        await repo.batch_upsert([_customer("1", "New Name", minute=5)])

        stored = await repo.find_by_id("1")
        assert await repo.count_by_realm_id(REALM_ID) == 1
        assert stored.raw_data["DisplayName"] == "New Name"
        assert stored.last_updated_time == ts(5)

    async def test_duplicate_id_in_batch_keeps_last(self, session_factory):
        repo = CustomerRepository(session_factory)
        count = await repo.batch_upsert([_customer("1", "First"), _customer("1", "Second")])

        assert count == 1
        assert (await repo.find_by_id("1")).raw_data["DisplayName"] == "Second"

    async def test_large_batch_spans_chunks(self, session_factory):
        repo = CustomerRepository(session_factory)
        batch = [_customer(str(i), f"Customer {i}") for i in range(1200)]

        assert await repo.batch_upsert(batch) == 1200
        assert await repo.count_by_realm_id(REALM_ID) == 1200

    async def test_empty_batch(self, session_factory):
        assert await CustomerRepository(session_factory).batch_upsert([]) == 0

    async def test_find_and_delete(self, session_factory):
        repo = CustomerRepository(session_factory)
        await repo.batch_upsert([_customer("1", "A"), _customer("2", "B")])

        assert {c.id for c in await repo.find_by_realm_id(REALM_ID)} == {"1", "2"}
        assert len(await repo.find_by_realm_id(REALM_ID, limit=1)) == 1

        await repo.delete("1")
        assert await repo.find_by_id("1") is None
        assert await repo.delete_by_realm_id(REALM_ID) == 1
        assert await repo.count_by_realm_id(REALM_ID) == 0


class TestInvoiceRepository:
    async def test_customer_reference_is_indexed(self, session_factory):
        repo = InvoiceRepository(session_factory)
        await repo.batch_upsert([
            EntityRecord(id="130", realm_id=REALM_ID, raw_data={"Id": "130"}, customer_id="1"),
            EntityRecord(id="131", realm_id=REALM_ID, raw_data={"Id": "131"}, customer_id="1"),
            EntityRecord(id="132", realm_id=REALM_ID, raw_data={"Id": "132"}, customer_id=None),
        ])

        assert await repo.count_by_customer_id("1") == 2
        assert {i.id for i in await repo.find_by_customer_id("1")} == {"130", "131"}
        assert (await repo.find_by_id("132")).customer_id is None

    async def test_customer_reference_updates_on_upsert(self, session_factory):
        repo = InvoiceRepository(session_factory)
        await repo.batch_upsert([EntityRecord(id="130", realm_id=REALM_ID, raw_data={}, customer_id="1")])
        await repo.batch_upsert([EntityRecord(id="130", realm_id=REALM_ID, raw_data={}, customer_id="2")])

        assert (await repo.find_by_id("130")).customer_id == "2"
        assert await repo.count_by_customer_id("1") == 0

    async def test_customer_lookup_filters_by_realm(self, session_factory):
        repo = InvoiceRepository(session_factory)
        await repo.batch_upsert([
            EntityRecord(id="130", realm_id=REALM_ID, raw_data={}, customer_id="1"),
            EntityRecord(id="140", realm_id="other-realm", raw_data={}, customer_id="1"),
        ])

        assert await repo.count_by_customer_id("1") == 2
        assert await repo.count_by_customer_id("1", realm_id=REALM_ID) == 1
        assert [i.id for i in await repo.find_by_customer_id("1", realm_id="other-realm")] == ["140"]
