"""API routes."""

from .admin import router as admin_router
from .wallets import router as wallets_router

__all__ = [
    "admin_router",
    "wallets_router",
]
