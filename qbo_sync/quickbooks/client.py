"""QuickBooks API client with transparent, single-flight token refresh."""

import asyncio
import logging
from datetime import timedelta
from functools import partial
from typing import Any, Awaitable, Callable, Optional

import httpx

from qbo_sync.config import Settings, settings as default_settings
from qbo_sync.database import utcnow
from qbo_sync.errors import AuthorizationRequiredError, QuickBooksAPIError, TokenRefreshError
from qbo_sync.models.token import Token
from qbo_sync.quickbooks.oauth import OAuthTokens, refresh_access_token
from qbo_sync.repositories.token_store import TokenStore

logger = logging.getLogger(__name__)

Refresher = Callable[[str], Awaitable[OAuthTokens]]


class QuickBooksClient:
    """Authenticated access to the QuickBooks Accounting API.

    Every call first makes sure the realm's access token is valid for at least
    the refresh buffer. Concurrent callers that find the token expiring share
    one refresh: they queue on a per-realm lock and re-read the token store
    once they hold it, so only the first one actually hits the token endpoint.
    A second refresh with the already-rotated refresh token would fail and
    strand the realm.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        token_store: TokenStore,
        refresher: Optional[Refresher] = None,
        settings: Settings = default_settings,
    ):
        self._http = http_client
        self._tokens = token_store
        self._refresher = refresher or partial(refresh_access_token, http_client, settings=settings)
        self._settings = settings
        self._refresh_buffer = timedelta(seconds=settings.token_refresh_buffer_seconds)
        self._refresh_locks: dict[str, asyncio.Lock] = {}

    def _company_url(self, realm_id: str) -> str:
        return f"{self._settings.qb_base_url}/v3/company/{realm_id}"

    def _is_expiring(self, token: Token) -> bool:
        return utcnow() >= token.expires_at - self._refresh_buffer

    async def _load_token(self, realm_id: str) -> Token:
        token = await self._tokens.get(realm_id)
        if token is None:
            raise AuthorizationRequiredError(
                f"No tokens found for realm {realm_id}. Please authorize the app first."
            )
        return token

    async def get_access_token(self, realm_id: str) -> str:
        """A valid access token for the realm, refreshing it if needed."""
        token = await self._load_token(realm_id)
        if not self._is_expiring(token):
            return token.access_token

        lock = self._refresh_locks.setdefault(realm_id, asyncio.Lock())
        async with lock:
            # Someone else may have refreshed while we waited
            token = await self._load_token(realm_id)
            if not self._is_expiring(token):
                return token.access_token

            logger.info(f"Access token expired for realm {realm_id}, refreshing...")
            try:
                refreshed = await self._refresher(token.refresh_token)
            except TokenRefreshError as e:
                logger.error(f"Token refresh failed for realm {realm_id}: {e}")
                raise TokenRefreshError(
                    f"Token refresh failed. Please re-authorize the app. Error: {e}"
                ) from e

            # Persist the rotated pair before anything uses the new access token
            now = utcnow()
            await self._tokens.update(
                realm_id,
                access_token=refreshed.access_token,
                refresh_token=refreshed.refresh_token,
                expires_at=refreshed.expires_at(now),
                refresh_token_expires_at=refreshed.refresh_token_expires_at(now),
            )
            logger.info(f"Token refreshed successfully for realm {realm_id}")
            return refreshed.access_token

    async def get(self, realm_id: str, endpoint: str, params: Optional[dict] = None) -> dict[str, Any]:
        """Authenticated GET against the company's API."""
        access_token = await self.get_access_token(realm_id)
        url = f"{self._company_url(realm_id)}{endpoint}"

        try:
            response = await self._http.get(
                url,
                params=params,
                headers={
                    "Authorization": f"Bearer {access_token}",
                    "Accept": "application/json",
                },
                timeout=self._settings.http_timeout_seconds,
            )
            response.raise_for_status()
            return response.json()

        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.error(
                f"QuickBooks API error [GET {endpoint}]: {status} - {e.response.text[:500]}"
            )
            if status == 401:
                logger.error("Authentication failed. Token may be invalid or expired.")
            elif status == 429:
                logger.error("Rate limit exceeded. Please slow down API requests.")
            raise QuickBooksAPIError(status, e.response.text[:200]) from e
        except httpx.RequestError as e:
            logger.error(f"QuickBooks API request failed [GET {endpoint}]: {e}")
            raise QuickBooksAPIError(None, str(e) or type(e).__name__) from e

    async def query(self, realm_id: str, query_string: str) -> dict[str, Any]:
        """Run a QuickBooks query and return the ``QueryResponse`` object.

        Entities are listed under their type name, e.g.
        ``(await client.query(realm, "SELECT * FROM Customer"))["Customer"]``.
        """
        logger.debug(f"Executing query: {query_string}")
        data = await self.get(realm_id, "/query", params={"query": query_string})
        return data.get("QueryResponse") or {}

    async def get_by_id(self, realm_id: str, entity_type: str, entity_id: str) -> dict[str, Any]:
        logger.debug(f"Fetching {entity_type} with ID: {entity_id}")
        data = await self.get(realm_id, f"/{entity_type.lower()}/{entity_id}")
        return data.get(entity_type, data)

    async def get_company_info(self, realm_id: str) -> dict[str, Any]:
        data = await self.get(realm_id, f"/companyinfo/{realm_id}")
        return data.get("CompanyInfo", data)
