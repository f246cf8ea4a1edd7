"""Configuration settings for the LaborHire service."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # Supabase
    supabase_url: str
    supabase_service_role_key: str | None = None  # Bypasses row-level security
    supabase_secret_key: str | None = None  # Newer name for the same key
    supabase_anon_key: str | None = None

    # Supabase access tokens are signed with the project JWT secret
    supabase_jwt_secret: str  # Required - no default for security
    jwt_algorithm: str = "HS256"
    jwt_audience: str = "authenticated"

    # Rate limits, in slowapi notation
    admin_rate_limit: str = "10/minute"  # Per calling admin
    wallet_rate_limit: str = "60/minute"  # Per calling user
    # Peers allowed to set X-Forwarded-For (private ranges and localhost)
    trusted_proxy_cidrs: list[str] = [
        "10.0.0.0/8",
        "172.16.0.0/12",
        "192.168.0.0/16",
        "127.0.0.0/8",
        "::1/128",
    ]

    # App
    debug: bool = False
    # The reset function is called from the browser app on any origin
    cors_origins: list[str] = ["*"]
    cors_headers: list[str] = ["authorization", "x-client-info", "apikey", "content-type"]

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"  # Ignore extra env vars not in model


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
