"""
Application settings loaded from environment variables.

Uses pydantic-settings for validation and type safety.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    """
    Application settings.

    All values loaded from .env file or environment variables.
    Validation happens automatically on startup.
    """

    model_config = SettingsConfigDict(
        env_file=(".env", "../.env"),  # Check current dir, then parent
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"  # Ignore extra env vars
    )

    # ===================
    # SUPABASE
    # ===================
    supabase_url: str = Field(
        default="http://localhost:54321",
        description="Supabase project URL"
    )
    supabase_key: str = Field(
        default="",
        description="Supabase anon/public key"
    )
    supabase_service_key: Optional[str] = Field(
        None,
        description="Supabase service role key (for admin operations)"
    )

    # ===================
    # SHOPIFY
    # ===================
    shopify_api_version: str = Field(
        default="2024-10",
        description="Shopify Admin API version used for GraphQL calls"
    )
    shopify_webhook_secret: Optional[str] = Field(
        None,
        description="Shared secret for verifying webhook HMAC signatures"
    )

    # ===================
    # GOOGLE SHEETS
    # ===================
    google_client_id: str = Field(
        default="",
        description="Google OAuth client id"
    )
    google_client_secret: str = Field(
        default="",
        description="Google OAuth client secret"
    )
    google_redirect_uri: str = Field(
        default="http://localhost:8000/api/google-sheets/callback",
        description="OAuth callback URL registered with Google"
    )
    google_scopes: list[str] = Field(
        default=[
            "https://www.googleapis.com/auth/spreadsheets",
            "https://www.googleapis.com/auth/drive.readonly",
        ],
        description="OAuth scopes requested on connect"
    )

    # ===================
    # SECURITY
    # ===================
    encryption_key: str = Field(
        default="",
        description="Fernet key used to encrypt OAuth tokens at rest"
    )
    oauth_state_max_age_seconds: int = Field(
        default=600,
        ge=60,
        le=3600,
        description="How long an OAuth state token stays valid"
    )

    # ===================
    # CACHE / QUEUE
    # ===================
    cache_backend: str = Field(
        default="memory",
        pattern="^(memory|redis)$",
        description="Shared cache backend for progress, previews and flags"
    )
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis URL used by the redis cache backend"
    )
    celery_broker_url: str = Field(
        default="redis://localhost:6379/1",
        description="Celery broker URL"
    )
    celery_result_backend: str = Field(
        default="redis://localhost:6379/2",
        description="Celery result backend URL"
    )

    # ===================
    # TELEGRAM
    # ===================
    telegram_bot_token: Optional[str] = Field(
        None,
        description="Telegram bot token from @BotFather"
    )
    telegram_chat_id: Optional[str] = Field(
        None,
        description="Telegram chat ID for sync notifications"
    )
    telegram_language: str = Field(
        default="en",
        description="Language of Telegram sync messages (en or es)"
    )

    # ===================
    # SYNC TUNING
    # ===================
    sync_page_size: int = Field(
        default=250,
        ge=1,
        le=250,
        description="Products requested per GraphQL page (protocol cap is 250)"
    )
    sync_page_delay_seconds: float = Field(
        default=0.5,
        ge=0,
        le=10,
        description="Pause between catalog pages to respect rate limits"
    )
    sheets_rate_limit_pause_seconds: float = Field(
        default=5,
        ge=0,
        le=60,
        description="Pause before a Sheets request while the shop is rate limited"
    )
    sync_chunk_size: int = Field(
        default=100,
        ge=1,
        le=5000,
        description="Records accumulated before an export chunk is written"
    )
    sync_max_retries: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts per catalog API call"
    )
    sync_retry_delay_seconds: float = Field(
        default=2,
        ge=0,
        le=60,
        description="Base delay for catalog retry backoff"
    )
    sheet_write_batch_size: int = Field(
        default=1000,
        ge=1,
        le=10000,
        description="Maximum rows per Sheets write request"
    )
    sheet_read_page_size: int = Field(
        default=1000,
        ge=1,
        le=10000,
        description="Rows per Sheets read page during import"
    )
    webhook_debounce_seconds: int = Field(
        default=5,
        ge=0,
        le=300,
        description="Debounce window for inventory webhook bursts"
    )
    incremental_lookback_days: int = Field(
        default=30,
        ge=1,
        le=365,
        description="Lookback when no completed run exists for incremental sync"
    )

    # ===================
    # FORMATTING
    # ===================
    sync_date_format: str = Field(
        default="%Y-%m-%d %H:%M:%S",
        description="strftime format for date cells"
    )
    sync_timezone: str = Field(
        default="UTC",
        description="IANA timezone for date cells"
    )
    sync_currency: str = Field(
        default="USD",
        description="Shop currency code"
    )

    # ===================
    # APP SETTINGS
    # ===================
    environment: str = Field(
        default="development",
        pattern="^(development|staging|production)$",
        description="Application environment"
    )
    debug: bool = Field(
        default=True,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        description="Logging level"
    )
    api_host: str = Field(
        default="0.0.0.0",
        description="API host"
    )
    api_port: int = Field(
        default=8000,
        ge=1000,
        le=65535,
        description="API port"
    )

    # ===================
    # COMPUTED PROPERTIES
    # ===================
    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment == "production"

    @property
    def telegram_configured(self) -> bool:
        """Check if Telegram is properly configured."""
        return bool(self.telegram_bot_token and self.telegram_chat_id)

    @property
    def google_configured(self) -> bool:
        """Check if Google OAuth credentials are present."""
        return bool(self.google_client_id and self.google_client_secret)


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload.

    Returns:
        Settings: Application settings

    Raises:
        ValidationError: If env vars are invalid
    """
    return Settings()


# For convenient imports: from config.settings import settings
settings = get_settings()
