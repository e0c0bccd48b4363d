"""Pytest configuration and fixtures."""

from __future__ import annotations

import atexit
import os
import re
import tempfile
from datetime import timedelta
from typing import Any, Optional

import pytest

# Point the module-level engine at a throwaway file before qbo_sync is imported
_temp_db = tempfile.NamedTemporaryFile(suffix=".db", delete=False)
_temp_db_path = _temp_db.name
_temp_db.close()
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_temp_db_path}"


def _cleanup_test_db() -> None:
    for suffix in ("", "-wal", "-shm"):
        try:
            os.unlink(_temp_db_path + suffix)
        except OSError:
            pass


atexit.register(_cleanup_test_db)

from qbo_sync.config import Settings  # noqa: E402
from qbo_sync.database import create_engine, create_session_factory, init_db, utcnow  # noqa: E402
from qbo_sync.repositories.sync_history import SyncHistoryLog  # noqa: E402
from qbo_sync.repositories.sync_state import SyncStateStore  # noqa: E402
from qbo_sync.repositories.token_store import TokenStore  # noqa: E402
from qbo_sync.services.object_sync import parse_timestamp  # noqa: E402

REALM_ID = "9130350000000000"

_QUERY_RE = re.compile(
    r"SELECT \* FROM (?P<entity>\w+)"
    r"(?: WHERE Metadata\.LastUpdatedTime > '(?P<cursor>[^']+)')?"
    r" ORDERBY Metadata\.LastUpdatedTime MAXRESULTS (?P<cap>\d+)"
)


def ts(minute: int) -> str:
    """UTC timestamp string N minutes after a fixed origin."""
    return f"2024-03-01T10:{minute:02d}:00Z"


def qb_record(entity_id: str, updated: Optional[str], **fields: Any) -> dict[str, Any]:
    record: dict[str, Any] = {"Id": entity_id, "SyncToken": "0", **fields}
    if updated is not None:
        record["MetaData"] = {"CreateTime": updated, "LastUpdatedTime": updated}
    return record


class FakeQuickBooks:
    """In-memory stand-in for the query endpoint.

    Honours the cursor filter, ordering and MAXRESULTS of the queries the
    engine builds. Records keep insertion order among equal timestamps.
    """

    def __init__(self) -> None:
        self.entities: dict[str, list[dict[str, Any]]] = {"Customer": [], "Invoice": []}
        self.queries: list[str] = []
        self.fail_with: dict[str, Exception] = {}

    def add(self, entity_name: str, *records: dict[str, Any]) -> None:
        by_id = {r["Id"]: r for r in self.entities[entity_name]}
        for record in records:
            by_id[record["Id"]] = record
        self.entities[entity_name] = list(by_id.values())

    async def query(self, realm_id: str, query_string: str) -> dict[str, Any]:
        self.queries.append(query_string)
        match = _QUERY_RE.fullmatch(query_string)
        assert match, f"unexpected query: {query_string}"

        entity = match["entity"]
        if entity in self.fail_with:
            raise self.fail_with[entity]

        records = [r for r in self.entities[entity] if "MetaData" in r]
        if match["cursor"]:
            cursor = parse_timestamp(match["cursor"])
            records = [r for r in records if parse_timestamp(r["MetaData"]["LastUpdatedTime"]) > cursor]
        records.sort(key=lambda r: parse_timestamp(r["MetaData"]["LastUpdatedTime"]))
        page = records[: int(match["cap"])]

        # QuickBooks omits the entity key entirely when nothing matches
        return {entity: page, "startPosition": 1, "maxResults": len(page)} if page else {}


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        _env_file=None,
        qb_client_id="test-client-id",
        qb_client_secret="test-client-secret",
        qb_environment="sandbox",
        database_url=os.environ["DATABASE_URL"],
        sync_interval_minutes=5,
    )


@pytest.fixture
async def db_engine(tmp_path):
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'qbo_sync_test.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return create_session_factory(db_engine)


@pytest.fixture
def token_store(session_factory) -> TokenStore:
    return TokenStore(session_factory)


@pytest.fixture
def state_store(session_factory) -> SyncStateStore:
    return SyncStateStore(session_factory)


@pytest.fixture
def history_log(session_factory) -> SyncHistoryLog:
    return SyncHistoryLog(session_factory)


@pytest.fixture
def fake_quickbooks() -> FakeQuickBooks:
    return FakeQuickBooks()


@pytest.fixture
async def authorized_realm(token_store) -> str:
    await token_store.save(
        realm_id=REALM_ID,
        access_token="access-1",
        refresh_token="refresh-1",
        expires_at=utcnow() + timedelta(hours=1),
    )
    return REALM_ID
