"""Tests for the authenticated QuickBooks client (httpx.MockTransport)."""

import asyncio
import json
from datetime import timedelta
from urllib.parse import parse_qs

import httpx
import pytest
from conftest import REALM_ID

from qbo_sync.database import utcnow
from qbo_sync.errors import AuthorizationRequiredError, QuickBooksAPIError, TokenRefreshError
from qbo_sync.quickbooks.client import QuickBooksClient


class _QuickBooksDouble:
    """Serves the token endpoint and the company query endpoint."""

    def __init__(self, settings) -> None:
        self.settings = settings
        self.refresh_calls: list[dict[str, list[str]]] = []
        self.api_auth_headers: list[str] = []
        self.refresh_status = 200
        self.api_status = 200
        self.counter = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        if str(request.url) == self.settings.qb_token_url:
            form = parse_qs(request.content.decode())
            self.refresh_calls.append(form)
            if self.refresh_status != 200:
                return httpx.Response(self.refresh_status, json={"error": "invalid_grant"})
            self.counter += 1
            return httpx.Response(
                200,
                json={
                    "access_token": f"access-{self.counter + 1}",
                    "refresh_token": f"refresh-{self.counter + 1}",
                    "expires_in": 3600,
                    "x_refresh_token_expires_in": 8726400,
                    "token_type": "bearer",
                },
            )

        assert request.url.path == f"/v3/company/{REALM_ID}/query"
        self.api_auth_headers.append(request.headers["Authorization"])
        if self.api_status != 200:
            return httpx.Response(self.api_status, text="Service Unavailable")
        return httpx.Response(
            200,
            json={
                "QueryResponse": {"Customer": [{"Id": "1"}], "startPosition": 1, "maxResults": 1},
                "time": "2024-03-01T10:00:00.000-08:00",
            },
        )


@pytest.fixture
def quickbooks(test_settings):
    return _QuickBooksDouble(test_settings)


@pytest.fixture
async def http_client(quickbooks):
    async with httpx.AsyncClient(transport=httpx.MockTransport(quickbooks.handler)) as client:
        yield client


@pytest.fixture
def client(http_client, token_store, test_settings):
    return QuickBooksClient(http_client, token_store, settings=test_settings)


async def _store_token(token_store, expires_in: timedelta):
    await token_store.save(
        realm_id=REALM_ID,
        access_token="access-1",
        refresh_token="refresh-1",
        expires_at=utcnow() + expires_in,
    )


class TestQuickBooksClient:
    async def test_valid_token_is_used_without_refresh(self, client, quickbooks, token_store):
        await _store_token(token_store, timedelta(hours=1))

        response = await client.query(REALM_ID, "SELECT * FROM Customer MAXRESULTS 1")

        assert response["Customer"] == [{"Id": "1"}]
        assert quickbooks.refresh_calls == []
        assert quickbooks.api_auth_headers == ["Bearer access-1"]

    async def test_token_inside_buffer_is_refreshed_and_rotation_persisted(
        self, client, quickbooks, token_store
    ):
        # Still valid for 2 minutes, but inside the 5 minute buffer
        await _store_token(token_store, timedelta(minutes=2))

        await client.query(REALM_ID, "SELECT * FROM Customer MAXRESULTS 1")

        assert len(quickbooks.refresh_calls) == 1
        assert quickbooks.refresh_calls[0]["grant_type"] == ["refresh_token"]
        assert quickbooks.refresh_calls[0]["refresh_token"] == ["refresh-1"]
        assert quickbooks.api_auth_headers == ["Bearer access-2"]

        stored = await token_store.get(REALM_ID)
        assert stored.access_token == "access-2"
        assert stored.refresh_token == "refresh-2"
        assert stored.expires_at > utcnow() + timedelta(minutes=55)
        assert stored.refresh_token_expires_at is not None

        # Next call uses the persisted token, no second refresh
        await client.query(REALM_ID, "SELECT * FROM Customer MAXRESULTS 1")
        assert len(quickbooks.refresh_calls) == 1
        assert quickbooks.api_auth_headers[-1] == "Bearer access-2"

    async def test_concurrent_callers_share_one_refresh(self, client, quickbooks, token_store):
        await _store_token(token_store, timedelta(seconds=-10))

        tokens = await asyncio.gather(*(client.get_access_token(REALM_ID) for _ in range(5)))

        assert len(quickbooks.refresh_calls) == 1
        assert set(tokens) == {"access-2"}
        assert (await token_store.get(REALM_ID)).refresh_token == "refresh-2"

    async def test_missing_token_requires_authorization(self, client, quickbooks):
        with pytest.raises(AuthorizationRequiredError):
            await client.query(REALM_ID, "SELECT * FROM Customer MAXRESULTS 1")
        assert quickbooks.api_auth_headers == []

    async def test_rejected_refresh_keeps_old_tokens(self, client, quickbooks, token_store):
        await _store_token(token_store, timedelta(seconds=-10))
        quickbooks.refresh_status = 400

        with pytest.raises(TokenRefreshError):
            await client.query(REALM_ID, "SELECT * FROM Customer MAXRESULTS 1")

        stored = await token_store.get(REALM_ID)
        assert stored.refresh_token == "refresh-1"
        assert quickbooks.api_auth_headers == []

    async def test_http_error_becomes_api_error(self, client, quickbooks, token_store):
        await _store_token(token_store, timedelta(hours=1))
        quickbooks.api_status = 503

        with pytest.raises(QuickBooksAPIError) as exc_info:
            await client.query(REALM_ID, "SELECT * FROM Customer MAXRESULTS 1")

        assert exc_info.value.status_code == 503
        assert "Service Unavailable" in str(exc_info.value)

    async def test_transport_error_becomes_api_error(self, token_store, test_settings):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("timed out", request=request)

        await _store_token(token_store, timedelta(hours=1))
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
            client = QuickBooksClient(http_client, token_store, settings=test_settings)
            with pytest.raises(QuickBooksAPIError) as exc_info:
                await client.query(REALM_ID, "SELECT * FROM Customer MAXRESULTS 1")

        assert exc_info.value.status_code is None

    async def test_query_is_sent_as_parameter(self, token_store, test_settings):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, content=json.dumps({"QueryResponse": {}}))

        await _store_token(token_store, timedelta(hours=1))
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
            client = QuickBooksClient(http_client, token_store, settings=test_settings)
            assert await client.query(REALM_ID, "SELECT * FROM Invoice MAXRESULTS 5") == {}

        request = seen[0]
        assert request.url.host == "sandbox-quickbooks.api.intuit.com"
        assert request.url.params["query"] == "SELECT * FROM Invoice MAXRESULTS 5"
        assert request.headers["Accept"] == "application/json"
