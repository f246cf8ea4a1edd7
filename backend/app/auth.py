"""Authentication for the LaborHire service.

Callers present the Supabase access token they got at sign-in. The token
is verified locally against the project JWT secret; ``sub`` is the auth
user id.
"""

from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from .config import Settings, get_settings

# Bearer token scheme; missing tokens are reported by get_current_user
security = HTTPBearer(auto_error=False)


def decode_token(token: str, settings: Settings) -> dict:
    """Decode and validate a Supabase access token."""
    try:
        return jwt.decode(
            token,
            settings.supabase_jwt_secret,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
        )
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )


class AuthUser:
    """The authenticated caller: auth user id, the token's email and role claims, and the token."""

    def __init__(
        self, user_id: str, email: str | None = None, role: str | None = None, token: str | None = None
    ):
        self.user_id = user_id
        self.email = email
        self.role = role
        self.token = token  # Raw access token, for calls made as the caller


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> AuthUser:
    """Get the current user from the bearer token."""
    if not credentials or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = decode_token(credentials.credentials, settings)
    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return AuthUser(
        user_id=user_id,
        email=payload.get("email"),
        role=payload.get("role"),
        token=credentials.credentials,
    )


# Type alias for dependency injection
CurrentUser = Annotated[AuthUser, Depends(get_current_user)]
