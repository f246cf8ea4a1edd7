"""
Backend boundary for laborhire.

Everything the client does goes through the ``Backend`` protocol: table
CRUD, server RPCs, serverless functions, auth, storage buckets and realtime
change feeds. The backend is the only source of truth; the client holds
per-session copies.

Filters are plain values so the same query can run against Supabase
(rendered to PostgREST syntax) or the in-memory backend (evaluated against
a row dict).
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Tuple

# Postgres unique_violation, surfaced by PostgREST as the error code
UNIQUE_VIOLATION = "23505"
# PostgREST "no rows returned" for single-row selects
NO_ROWS = "PGRST116"


class BackendError(Exception):
    """Any failure reported by the backend (PostgREST, RPC, auth, storage)."""

    def __init__(self, message: str, code: Optional[str] = None, details: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details

    @property
    def is_unique_violation(self) -> bool:
        return self.code == UNIQUE_VIOLATION

    @property
    def is_no_rows(self) -> bool:
        return self.code == NO_ROWS

    def __repr__(self) -> str:
        return f"BackendError(code={self.code!r}, message={self.message!r})"


# =============================================================================
# Filters
# =============================================================================


def _render_value(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class Filter:
    """A row predicate that can also render itself for PostgREST."""

    def matches(self, row: Dict[str, Any]) -> bool:
        raise NotImplementedError

    def to_postgrest(self) -> str:
        raise NotImplementedError


@dataclass(frozen=True)
class Eq(Filter):
    column: str
    value: Any

    def matches(self, row: Dict[str, Any]) -> bool:
        return row.get(self.column) == self.value

    def to_postgrest(self) -> str:
        return f"{self.column}.eq.{_render_value(self.value)}"


@dataclass(frozen=True)
class IsNull(Filter):
    column: str

    def matches(self, row: Dict[str, Any]) -> bool:
        return row.get(self.column) is None

    def to_postgrest(self) -> str:
        return f"{self.column}.is.null"


@dataclass(frozen=True)
class In(Filter):
    column: str
    values: Tuple[Any, ...]

    def matches(self, row: Dict[str, Any]) -> bool:
        return row.get(self.column) in self.values

    def to_postgrest(self) -> str:
        return f"{self.column}.in.({','.join(_render_value(v) for v in self.values)})"


@dataclass(frozen=True)
class And(Filter):
    filters: Tuple[Filter, ...]

    def matches(self, row: Dict[str, Any]) -> bool:
        return all(f.matches(row) for f in self.filters)

    def to_postgrest(self) -> str:
        return f"and({','.join(_nested(f) for f in self.filters)})"


@dataclass(frozen=True)
class Or(Filter):
    filters: Tuple[Filter, ...]

    def matches(self, row: Dict[str, Any]) -> bool:
        return any(f.matches(row) for f in self.filters)

    def to_postgrest(self) -> str:
        # Top-level or() takes the bare list; nested ones need the wrapper
        return ",".join(_nested(f) for f in self.filters)


def _nested(f: Filter) -> str:
    if isinstance(f, Or):
        return f"or({f.to_postgrest()})"
    return f.to_postgrest()


def eq(column: str, value: Any) -> Eq:
    return Eq(column, value)


def is_null(column: str) -> IsNull:
    return IsNull(column)


def in_(column: str, values: Sequence[Any]) -> In:
    return In(column, tuple(values))


def and_(*filters: Filter) -> And:
    return And(tuple(filters))


def or_(*filters: Filter) -> Or:
    return Or(tuple(filters))


def between(column_a: str, column_b: str, first: str, second: str) -> Or:
    """Match rows whose two columns hold ``first`` and ``second`` in either order."""
    return or_(
        and_(eq(column_a, first), eq(column_b, second)),
        and_(eq(column_a, second), eq(column_b, first)),
    )


# =============================================================================
# Auth, realtime and storage values
# =============================================================================


@dataclass
class AuthUser:
    id: str
    email: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class AuthSession:
    access_token: str
    user: AuthUser
    refresh_token: Optional[str] = None
    expires_at: Optional[int] = None


# Auth event names as emitted by the auth client
SIGNED_IN = "SIGNED_IN"
SIGNED_OUT = "SIGNED_OUT"
TOKEN_REFRESHED = "TOKEN_REFRESHED"
USER_UPDATED = "USER_UPDATED"
INITIAL_SESSION = "INITIAL_SESSION"

AuthCallback = Callable[[str, Optional[AuthSession]], None]


@dataclass(frozen=True)
class Binding:
    """One postgres_changes binding on a realtime channel.

    ``event`` is INSERT, UPDATE, DELETE or ``*``. ``row_filter`` is the
    optional server-side filter (only ``eq`` is supported by the feed).
    """

    table: str
    event: str = "*"
    row_filter: Optional[Eq] = None

    def accepts(self, table: str, event_type: str, row: Dict[str, Any]) -> bool:
        if table != self.table:
            return False
        if self.event != "*" and self.event != event_type:
            return False
        if self.row_filter is not None and not self.row_filter.matches(row):
            return False
        return True

    def filter_string(self) -> Optional[str]:
        if self.row_filter is None:
            return None
        return f"{self.row_filter.column}=eq.{_render_value(self.row_filter.value)}"


@dataclass
class ChangeEvent:
    """A row change pushed by the realtime feed."""

    table: str
    event_type: str
    new: Dict[str, Any] = field(default_factory=dict)
    old: Dict[str, Any] = field(default_factory=dict)
    commit_timestamp: Optional[datetime] = None

    @property
    def record(self) -> Dict[str, Any]:
        """The row the change is about (old row for deletes)."""
        return self.new or self.old


ChangeCallback = Callable[[ChangeEvent], None]


@dataclass
class Subscription:
    """Handle for an open realtime channel."""

    channel: str
    bindings: List[Binding]
    handle: Any = None


# =============================================================================
# Protocol
# =============================================================================


class Backend(Protocol):
    """Protocol for backend-as-a-service adapters."""

    # Tables
    async def select(
        self,
        table: str,
        filters: Sequence[Filter] = (),
        *,
        columns: str = "*",
        order: Optional[str] = None,
        desc: bool = False,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Select rows matching every filter."""
        ...

    async def count(self, table: str, filters: Sequence[Filter] = ()) -> int:
        """Count rows matching every filter."""
        ...

    async def insert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a row and return it as stored."""
        ...

    async def update(
        self, table: str, values: Dict[str, Any], filters: Sequence[Filter]
    ) -> List[Dict[str, Any]]:
        """Update rows matching every filter and return them."""
        ...

    # Server logic
    async def rpc(self, function: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """Call a server-side SQL function."""
        ...

    async def invoke_function(self, name: str, body: Dict[str, Any]) -> Dict[str, Any]:
        """Invoke an HTTP serverless function as the current user."""
        ...

    # Auth
    async def sign_up(
        self, email: str, password: str, metadata: Dict[str, Any], redirect_to: Optional[str] = None
    ) -> Optional[AuthSession]:
        ...

    async def sign_in(self, email: str, password: str) -> AuthSession:
        ...

    async def sign_out(self) -> None:
        ...

    async def reset_password_for_email(self, email: str, redirect_to: Optional[str] = None) -> None:
        ...

    async def get_session(self) -> Optional[AuthSession]:
        ...

    def on_auth_state_change(self, callback: AuthCallback) -> Callable[[], None]:
        """Register an auth listener; returns an unsubscribe callable."""
        ...

    # Storage
    async def upload(self, bucket: str, path: str, data: bytes, content_type: Optional[str] = None) -> str:
        """Upload a file and return its storage path."""
        ...

    async def remove(self, bucket: str, paths: Sequence[str]) -> None:
        ...

    async def public_url(self, bucket: str, path: str) -> str:
        ...

    async def signed_url(self, bucket: str, path: str, expires_in: int) -> str:
        ...

    # Realtime
    async def subscribe(
        self, channel: str, bindings: Sequence[Binding], callback: ChangeCallback
    ) -> Subscription:
        ...

    async def unsubscribe(self, subscription: Subscription) -> None:
        ...
