"""Backend adapters: the protocol, filters, Supabase and in-memory implementations."""

from laborhire.platform.base import (
    NO_ROWS,
    UNIQUE_VIOLATION,
    AuthSession,
    AuthUser,
    Backend,
    BackendError,
    Binding,
    ChangeEvent,
    Filter,
    Subscription,
    and_,
    between,
    eq,
    in_,
    is_null,
    or_,
)
from laborhire.platform.memory import InMemoryBackend

__all__ = [
    "NO_ROWS",
    "UNIQUE_VIOLATION",
    "AuthSession",
    "AuthUser",
    "Backend",
    "BackendError",
    "Binding",
    "ChangeEvent",
    "Filter",
    "InMemoryBackend",
    "Subscription",
    "and_",
    "between",
    "eq",
    "in_",
    "is_null",
    "or_",
]
