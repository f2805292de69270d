"""Configuration management for CropCare."""

from pathlib import Path

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from cropcare.exceptions import ConfigurationError


class Config(BaseSettings):
    """Application configuration."""

    supabase_url: str | None = Field(default=None, alias="CROPCARE_SUPABASE_URL", description="Backend project URL")
    supabase_anon_key: SecretStr | None = Field(
        default=None, alias="CROPCARE_SUPABASE_ANON_KEY", description="Publishable backend key"
    )
    access_token: SecretStr | None = Field(
        default=None, alias="CROPCARE_ACCESS_TOKEN", description="Signed-in user's access token"
    )
    user_id: str | None = Field(default=None, alias="CROPCARE_USER_ID", description="Signed-in user's id")
    language: str = Field(default="en", alias="CROPCARE_LANGUAGE", description="Preferred response language")
    data_dir: Path = Field(
        default_factory=lambda: Path.home() / ".cropcare",
        alias="CROPCARE_DATA_DIR",
        description="Directory for local durable storage",
    )

    # Local cache
    cache_ttl_days: float = Field(default=7, alias="CROPCARE_CACHE_TTL_DAYS")
    cache_sweep_interval: float = Field(default=3600, alias="CROPCARE_CACHE_SWEEP_INTERVAL")
    storage_size_limit: int = Field(default=50 * 1024 * 1024, alias="CROPCARE_STORAGE_SIZE_LIMIT")
    translation_cache_size: int = Field(default=500, alias="CROPCARE_TRANSLATION_CACHE_SIZE")

    # Sync
    cache_refresh_interval: float = Field(default=300, alias="CROPCARE_CACHE_REFRESH_INTERVAL")
    connectivity_check_interval: float = Field(default=15, alias="CROPCARE_CONNECTIVITY_CHECK_INTERVAL")
    max_sync_retries: int = Field(default=3, alias="CROPCARE_MAX_SYNC_RETRIES")

    # Images
    image_max_size_mb: float = Field(default=1.0, alias="CROPCARE_IMAGE_MAX_SIZE_MB")
    image_max_dimension: int = Field(default=1920, alias="CROPCARE_IMAGE_MAX_DIMENSION")
    signed_url_ttl: int = Field(default=3600, alias="CROPCARE_SIGNED_URL_TTL")

    # Chat
    delivery_sent_delay: float = Field(default=0.3, alias="CROPCARE_DELIVERY_SENT_DELAY")
    delivery_delivered_delay: float = Field(default=0.6, alias="CROPCARE_DELIVERY_DELIVERED_DELAY")

    request_timeout: float = Field(default=60, alias="CROPCARE_REQUEST_TIMEOUT")

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        populate_by_name=True,
    )

    @property
    def functions_url(self) -> str:
        """Base URL of the serverless functions."""
        return f"{self.require_url().rstrip('/')}/functions/v1"

    def require_url(self) -> str:
        if not self.supabase_url:
            raise ConfigurationError("CROPCARE_SUPABASE_URL is not configured")
        return self.supabase_url

    def require_anon_key(self) -> str:
        if not self.supabase_anon_key:
            raise ConfigurationError("CROPCARE_SUPABASE_ANON_KEY is not configured")
        return self.supabase_anon_key.get_secret_value()

    def bearer_token(self) -> str:
        """Token sent to the serverless functions (user session first, then the anon key)."""
        if self.access_token:
            return self.access_token.get_secret_value()
        return self.require_anon_key()


def load_config() -> Config:
    """Load configuration from environment and .env file."""
    return Config()
