"""Application configuration via environment variables."""

import logging

from pydantic_settings import BaseSettings

from qbo_sync.errors import ConfigError


class Settings(BaseSettings):
    """QuickBooks sync settings."""

    # QuickBooks app credentials
    qb_client_id: str = ""
    qb_client_secret: str = ""
    qb_redirect_uri: str = "https://developer.intuit.com/v2/OAuth2Playground/RedirectUrl"
    qb_environment: str = "sandbox"
    qb_max_results: int = 1000

    # One-shot bootstrap values (authorization codes expire after 10 minutes)
    qb_authorization_code: str = ""
    qb_realm_id: str = ""

    @property
    def qb_base_url(self) -> str:
        if self.qb_environment == "production":
            return "https://quickbooks.api.intuit.com"
        return "https://sandbox-quickbooks.api.intuit.com"

    @property
    def qb_auth_url(self) -> str:
        return "https://appcenter.intuit.com/connect/oauth2"

    @property
    def qb_token_url(self) -> str:
        return "https://oauth.platform.intuit.com/oauth2/v1/tokens/bearer"

    @property
    def qb_revoke_url(self) -> str:
        return "https://developer.api.intuit.com/v2/oauth2/tokens/revoke"

    # Database
    database_url: str = "sqlite+aiosqlite:///./quickbooks.db"

    # Sync
    sync_interval_minutes: int = 5
    token_refresh_buffer_seconds: int = 300
    shutdown_timeout_seconds: float = 30.0
    http_timeout_seconds: float = 30.0

    # Logging
    log_level: str = "INFO"

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8400

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    def validate_required(self) -> None:
        """Raise ConfigError listing every missing credential."""
        errors = []
        if not self.qb_client_id:
            errors.append("QB_CLIENT_ID is required")
        if not self.qb_client_secret:
            errors.append("QB_CLIENT_SECRET is required")
        if errors:
            raise ConfigError("Configuration validation failed:\n" + "\n".join(errors))


settings = Settings()


def configure_logging(level: str = None):
    logging.basicConfig(
        level=(level or settings.log_level).upper(),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )
