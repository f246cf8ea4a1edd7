"""Wallet routes.

The wallet row is owned by the database: created on first read by the
``get_or_create_wallet`` RPC and moved only by the payment trigger.
"""

from datetime import datetime
from decimal import Decimal

from fastapi import APIRouter, HTTPException, Request, status
from pydantic import BaseModel

from ..auth import CurrentUser
from ..database import Database, get_or_create_wallet, get_profile_by_user
from ..logging_config import get_logger
from ..rate_limit import limiter, wallet_limit

logger = get_logger("wallets")
router = APIRouter(prefix="/wallets", tags=["wallets"])


class WalletResponse(BaseModel):
    """Wallet details response."""

    id: str
    user_id: str  # profile id
    balance: Decimal
    total_earned: Decimal
    total_spent: Decimal
    created_at: datetime | None = None
    updated_at: datetime | None = None


def _money(value) -> Decimal:
    return Decimal(str(value)) if value is not None else Decimal("0")


@router.get("/me", response_model=WalletResponse)
@limiter.limit(wallet_limit)
async def get_my_wallet(
    request: Request,
    auth: CurrentUser,
    db: Database,
):
    """Get the caller's wallet, creating it if the profile has none yet."""
    log_prefix = f"{auth.user_id}"
    logger.info(f"GET /wallets/me | {log_prefix}")

    profile = await get_profile_by_user(db, auth.user_id)
    if not profile:
        logger.warning(f"Profile not found | {log_prefix}")
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Profile not found",
        )

    wallet = await get_or_create_wallet(db, profile["id"])
    if not wallet:
        logger.warning(f"Wallet not found | {log_prefix}")
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Wallet not found",
        )

    return WalletResponse(
        id=wallet["id"],
        user_id=wallet["user_id"],
        balance=_money(wallet.get("balance")),
        total_earned=_money(wallet.get("total_earned")),
        total_spent=_money(wallet.get("total_spent")),
        created_at=wallet.get("created_at"),
        updated_at=wallet.get("updated_at"),
    )
