"""Database utilities for Supabase integration.

The service talks to Supabase with the service-role key, so most queries
here bypass row-level security and callers check the admin role first.
Calls that must run as the caller, such as the reset audit RPC, go through
a per-request client from ``get_user_client``.
"""

from typing import Annotated

from fastapi import Depends

from supabase import Client, ClientOptions, create_client

from .config import Settings, get_settings
from .logging_config import get_logger

logger = get_logger("database")

_supabase_client: Client | None = None


def get_supabase_client(settings: Settings | None = None) -> Client:
    """Get cached Supabase client."""
    global _supabase_client
    if _supabase_client is None:
        if settings is None:
            settings = get_settings()
        api_key = settings.supabase_service_role_key or settings.supabase_secret_key
        if not api_key:
            raise ValueError("Either SUPABASE_SERVICE_ROLE_KEY or SUPABASE_SECRET_KEY must be set")
        _supabase_client = create_client(settings.supabase_url, api_key)
    return _supabase_client


def get_user_client(access_token: str, settings: Settings | None = None) -> Client:
    """A client that calls PostgREST as the token's user.

    Built per request and never cached. RPCs run with the caller's
    ``auth.uid()`` under row-level security, unlike the service-role client.
    """
    if settings is None:
        settings = get_settings()
    api_key = settings.supabase_anon_key or settings.supabase_service_role_key or settings.supabase_secret_key
    if not api_key:
        raise ValueError("SUPABASE_ANON_KEY must be set to call functions as the user")
    options = ClientOptions(headers={"Authorization": f"Bearer {access_token}"})
    return create_client(settings.supabase_url, api_key, options=options)


def get_db(settings: Annotated[Settings, Depends(get_settings)]) -> Client:
    """FastAPI dependency for Supabase client."""
    return get_supabase_client(settings)


# Type alias for dependency injection
Database = Annotated[Client, Depends(get_db)]


# =============================================================================
# Table Names
# =============================================================================

PROFILES_TABLE = "profiles"
ADMIN_PROFILES_TABLE = "admin_profiles"
WALLETS_TABLE = "wallets"


# =============================================================================
# Profiles
# =============================================================================


async def get_admin_profile(db: Client, user_id: str) -> dict | None:
    """Get the admin_profiles row for an auth user, or None if not an admin."""
    result = db.table(ADMIN_PROFILES_TABLE).select("admin_role").eq("user_id", user_id).limit(1).execute()
    return result.data[0] if result.data else None


async def get_profile(db: Client, profile_id: str) -> dict | None:
    """Get a profile by its id (not the auth user id)."""
    result = db.table(PROFILES_TABLE).select("id, user_id").eq("id", profile_id).limit(1).execute()
    return result.data[0] if result.data else None


async def get_profile_by_user(db: Client, user_id: str) -> dict | None:
    result = db.table(PROFILES_TABLE).select("id, user_id").eq("user_id", user_id).limit(1).execute()
    return result.data[0] if result.data else None


# =============================================================================
# Auth Admin
# =============================================================================


async def get_auth_user_email(db: Client, user_id: str) -> str | None:
    """Look up the email of an auth user. None if the user or email is missing."""
    try:
        response = db.auth.admin.get_user_by_id(user_id)
    except Exception as e:
        logger.warning(f"Auth user lookup failed | user_id={user_id} | error={e}")
        return None
    user = getattr(response, "user", None)
    return getattr(user, "email", None) or None


async def generate_recovery_link(db: Client, email: str) -> None:
    """Trigger a password-recovery email for the address.

    Raises whatever the auth admin API raises; the route maps it to a 500.
    """
    db.auth.admin.generate_link({"type": "recovery", "email": email})


async def log_password_reset(access_token: str, profile_id: str, reason: str) -> None:
    """Record the reset in the admin activity log. Failures are logged only.

    The RPC runs as the calling admin, through a client holding their access
    token: it checks the caller's role and stores their id on the log row.
    """
    try:
        get_user_client(access_token).rpc(
            "admin_reset_user_password",
            {"target_user_id": profile_id, "reset_reason": reason},
        ).execute()
    except Exception as e:
        logger.error(f"Failed to log password reset | target={profile_id} | error={e}")


# =============================================================================
# Wallets
# =============================================================================


async def get_or_create_wallet(db: Client, profile_id: str) -> dict | None:
    """Fetch the wallet for a profile, creating it if needed (idempotent RPC)."""
    result = db.rpc("get_or_create_wallet", {"profile_user_id": profile_id}).execute()
    data = result.data
    if isinstance(data, dict):
        return data
    return data[0] if data else None
