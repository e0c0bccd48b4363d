from qbo_sync.quickbooks.client import QuickBooksClient
from qbo_sync.quickbooks.oauth import (
    OAuthTokens,
    get_authorization_url,
    exchange_code_for_tokens,
    refresh_access_token,
    revoke_token,
)

__all__ = [
    "QuickBooksClient",
    "OAuthTokens",
    "get_authorization_url",
    "exchange_code_for_tokens",
    "refresh_access_token",
    "revoke_token",
]
