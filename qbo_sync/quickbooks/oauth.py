"""Intuit OAuth2 helpers — authorization URL, code exchange, refresh, revoke.

All token endpoint calls authenticate with HTTP Basic auth of the app's
client id and secret. QuickBooks rotates the refresh token on every refresh:
the one passed in is dead the moment the call succeeds, so callers must
persist the returned pair before doing anything else.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional
from urllib.parse import urlencode

import httpx

from qbo_sync.config import Settings, settings as default_settings
from qbo_sync.database import utcnow
from qbo_sync.errors import TokenExchangeError, TokenRefreshError

logger = logging.getLogger(__name__)

QUICKBOOKS_ACCOUNTING_SCOPE = "com.intuit.quickbooks.accounting"


@dataclass
class OAuthTokens:
    """Token endpoint response."""
    access_token: str
    refresh_token: str
    expires_in: int
    refresh_token_expires_in: Optional[int] = None
    token_type: str = "bearer"

    @classmethod
    def from_response(cls, data: dict) -> "OAuthTokens":
        return cls(
            access_token=data["access_token"],
            refresh_token=data["refresh_token"],
            expires_in=int(data["expires_in"]),
            refresh_token_expires_in=(
                int(data["x_refresh_token_expires_in"])
                if data.get("x_refresh_token_expires_in") is not None
                else None
            ),
            token_type=data.get("token_type", "bearer"),
        )

    def expires_at(self, now: Optional[datetime] = None) -> datetime:
        return (now or utcnow()) + timedelta(seconds=self.expires_in)

    def refresh_token_expires_at(self, now: Optional[datetime] = None) -> Optional[datetime]:
        if self.refresh_token_expires_in is None:
            return None
        return (now or utcnow()) + timedelta(seconds=self.refresh_token_expires_in)


def get_authorization_url(state: str = "default", settings: Settings = default_settings) -> str:
    """URL the user visits to grant access and obtain an authorization code."""
    params = {
        "client_id": settings.qb_client_id,
        "redirect_uri": settings.qb_redirect_uri,
        "response_type": "code",
        "scope": QUICKBOOKS_ACCOUNTING_SCOPE,
        "state": state,
    }
    return f"{settings.qb_auth_url}?{urlencode(params)}"


def _error_detail(response: httpx.Response) -> str:
    try:
        data = response.json()
        return data.get("error_description") or data.get("error") or response.text[:200]
    except ValueError:
        return response.text[:200]


async def _post_token_endpoint(http_client: httpx.AsyncClient, form: dict, settings: Settings) -> OAuthTokens:
    response = await http_client.post(
        settings.qb_token_url,
        data=form,
        auth=(settings.qb_client_id, settings.qb_client_secret),
        headers={"Accept": "application/json"},
        timeout=settings.http_timeout_seconds,
    )
    response.raise_for_status()
    return OAuthTokens.from_response(response.json())


async def exchange_code_for_tokens(
    http_client: httpx.AsyncClient,
    code: str,
    realm_id: str,
    settings: Settings = default_settings,
) -> OAuthTokens:
    """Exchange a one-time authorization code for the first token pair."""
    logger.info(f"Exchanging authorization code for tokens (realm: {realm_id})")

    try:
        tokens = await _post_token_endpoint(
            http_client,
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": settings.qb_redirect_uri,
            },
            settings,
        )
    except httpx.HTTPStatusError as e:
        detail = _error_detail(e.response)
        logger.error(f"Failed to exchange code for tokens: {e.response.status_code} - {detail}")
        raise TokenExchangeError(f"OAuth token exchange failed: {detail}") from e
    except (httpx.HTTPError, KeyError, ValueError) as e:
        logger.error(f"Failed to exchange code for tokens: {e}")
        raise TokenExchangeError(f"OAuth token exchange failed: {e}") from e

    logger.info("Successfully exchanged code for tokens")
    return tokens


async def refresh_access_token(
    http_client: httpx.AsyncClient,
    refresh_token: str,
    settings: Settings = default_settings,
) -> OAuthTokens:
    """Trade a refresh token for a new access/refresh pair."""
    logger.debug("Refreshing access token")

    try:
        tokens = await _post_token_endpoint(
            http_client,
            {"grant_type": "refresh_token", "refresh_token": refresh_token},
            settings,
        )
    except httpx.HTTPStatusError as e:
        detail = _error_detail(e.response)
        logger.error(f"Failed to refresh access token: {e.response.status_code} - {detail}")
        raise TokenRefreshError(f"Token refresh failed: {detail}") from e
    except (httpx.HTTPError, KeyError, ValueError) as e:
        logger.error(f"Failed to refresh access token: {e}")
        raise TokenRefreshError(f"Token refresh failed: {e}") from e

    logger.info("Successfully refreshed access token")
    return tokens


async def revoke_token(
    http_client: httpx.AsyncClient,
    token: str,
    settings: Settings = default_settings,
) -> None:
    """Revoke a refresh or access token (disconnects the app from the company)."""
    logger.info("Revoking token")

    try:
        response = await http_client.post(
            settings.qb_revoke_url,
            json={"token": token},
            auth=(settings.qb_client_id, settings.qb_client_secret),
            headers={"Accept": "application/json"},
            timeout=settings.http_timeout_seconds,
        )
        response.raise_for_status()
    except httpx.HTTPError as e:
        logger.error(f"Failed to revoke token: {e}")
        raise TokenExchangeError(f"Token revocation failed: {e}") from e

    logger.info("Token revoked successfully")
