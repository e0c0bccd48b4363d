"""Exception types raised across the sync service."""

from typing import Optional


class QBOSyncError(Exception):
    """Base class for all sync service errors."""


class ConfigError(QBOSyncError):
    """Required configuration is missing or invalid."""


class AuthorizationRequiredError(QBOSyncError):
    """The realm has no usable credentials and must be re-authorized out of band."""


class TokenRefreshError(AuthorizationRequiredError):
    """The refresh token was rejected (expired, revoked or already rotated)."""


class TokenExchangeError(QBOSyncError):
    """An authorization code could not be exchanged for tokens."""


class QuickBooksAPIError(QBOSyncError):
    """A QuickBooks API call failed. Treated as transient by the sync engine."""

    def __init__(self, status_code: Optional[int], detail: str):
        self.status_code = status_code
        self.detail = detail
        if status_code is None:
            super().__init__(f"QuickBooks API request failed: {detail}")
        else:
            super().__init__(f"QuickBooks API error {status_code}: {detail}")
