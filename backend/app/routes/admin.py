"""Admin functions called by the admin console.

``admin-reset-password`` sends a recovery email to another user. Only a
super admin may call it; the role is read with the service-role client so
row-level security on ``admin_profiles`` does not hide it. The audit RPC
runs as the calling admin so the log row carries their id.
"""

from fastapi import APIRouter, HTTPException, Request, status
from pydantic import BaseModel, ConfigDict, Field

from ..auth import CurrentUser
from ..database import (
    Database,
    generate_recovery_link,
    get_admin_profile,
    get_auth_user_email,
    get_profile,
    log_password_reset,
)
from ..logging_config import get_logger, log_admin_event
from ..rate_limit import admin_limit, limiter

logger = get_logger("admin")

router = APIRouter(prefix="/functions/v1", tags=["admin"])

SUPER_ADMIN = "super_admin"
DEFAULT_RESET_REASON = "Password reset by Super Admin"


# =============================================================================
# Models
# =============================================================================


class ResetPasswordRequest(BaseModel):
    """Body sent by the admin console. Field names match the browser client."""

    model_config = ConfigDict(populate_by_name=True)

    target_user_id: str = Field(..., alias="targetUserId", min_length=1)
    reset_reason: str | None = Field(None, alias="resetReason")


class ResetPasswordResponse(BaseModel):
    success: bool
    message: str


# =============================================================================
# Routes
# =============================================================================


@router.post("/admin-reset-password", response_model=ResetPasswordResponse)
@limiter.limit(admin_limit)
async def admin_reset_password(
    request: Request,
    body: ResetPasswordRequest,
    auth: CurrentUser,
    db: Database,
):
    """
    Send a password-recovery email to the user behind a profile.

    Steps: check the caller is a super admin, resolve the profile to its
    auth user and email, generate the recovery link, then log the action
    through the ``admin_reset_user_password`` RPC.
    """
    log_prefix = f"admin={auth.user_id} | target={body.target_user_id}"
    logger.info(f"POST /functions/v1/admin-reset-password | {log_prefix}")

    try:
        admin = await get_admin_profile(db, auth.user_id)
        if not admin or admin.get("admin_role") != SUPER_ADMIN:
            logger.warning(f"Reset refused, not a super admin | {log_prefix}")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient privileges - super admin required",
            )

        profile = await get_profile(db, body.target_user_id)
        if not profile:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Target user not found",
            )

        email = await get_auth_user_email(db, profile["user_id"])
        if not email:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Failed to get user email",
            )

        try:
            await generate_recovery_link(db, email)
        except Exception as e:
            logger.error(f"Password reset error | {log_prefix} | error={e}")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Failed to initiate password reset",
            )

        reason = body.reset_reason or DEFAULT_RESET_REASON
        await log_password_reset(auth.token, body.target_user_id, reason)
        log_admin_event("password_reset", auth.user_id, body.target_user_id, reason=reason)

        return ResetPasswordResponse(success=True, message="Password reset email sent successfully")

    except HTTPException:
        raise
    except Exception:
        logger.exception(f"Error in admin-reset-password | {log_prefix}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error",
        )
