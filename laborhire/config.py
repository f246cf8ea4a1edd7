"""Configuration settings for the laborhire client."""

from decimal import Decimal
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class ClientSettings(BaseSettings):
    """Client settings loaded from LABORHIRE_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="LABORHIRE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Supabase (public client; row-level security applies)
    supabase_url: str | None = None
    supabase_anon_key: str | None = None

    # Delay between a realtime change and the refetch it triggers. The wallet
    # waits longer so the server-side balance trigger has run.
    wallet_refresh_delay: float = 1.0
    history_refresh_delay: float = 0.5

    top_up_ceiling: Decimal = Decimal("1000000")
    signed_url_ttl: int = 3600

    log_level: str = "INFO"
    log_dir: str | None = None


@lru_cache
def get_settings() -> ClientSettings:
    """Get cached settings instance."""
    return ClientSettings()
