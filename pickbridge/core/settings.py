from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database / security
    DATABASE_URL: str | None = None
    JWT_SECRET: str | None = None
    TOKEN_ENCRYPTION_KEY: str | None = None

    # Application URLs
    APP_BASE_URL: str = "http://localhost:8001"  # Default for development
    FRONTEND_URL: str | None = None

    # QuickBooks Online OAuth configuration
    QBO_CLIENT_ID: str | None = None
    QBO_CLIENT_SECRET: str | None = None
    QBO_REDIRECT_URI: str | None = None
    QBO_ENVIRONMENT: Literal["sandbox", "production"] = "sandbox"
    QBO_SCOPES: str = "com.intuit.quickbooks.accounting openid profile email"
    QBO_MINOR_VERSION: int = 75
    QBO_DEFAULT_TAX_CODE: str | None = None

    # Xero OAuth configuration
    XERO_CLIENT_ID: str | None = None
    XERO_CLIENT_SECRET: str | None = None
    XERO_REDIRECT_URI: str | None = None
    XERO_SCOPES: str = (
        "openid profile email offline_access accounting.transactions "
        "accounting.contacts.read accounting.settings.read"
    )

    # Provider HTTP calls
    HTTP_TIMEOUT_SECONDS: float = 30.0

    # Catalogue synchronization
    SYNC_PAGE_SIZE: int = 500
    SYNC_INTERVAL_MINUTES: int = 60
    SYNC_MAX_CONCURRENCY: int = 1
    SYNC_SCHEDULER_ENABLED: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
    )

    @property
    def jwt_secret(self) -> str | None:
        return self.JWT_SECRET


settings = Settings()
