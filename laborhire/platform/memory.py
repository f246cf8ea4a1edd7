"""
In-memory backend for testing and local development.

Tables are dicts of rows keyed by id. The pieces of server-side logic the
client depends on are emulated here: the unique constraints it maps to
conflict errors, the signup trigger that creates a profile, the wallet
trigger that applies completed payments (refusing any that would take the
payer below zero), the messaging trigger that bumps ``last_message_at``,
and the RPCs. A rejected write leaves the table unchanged. Realtime
changes are delivered synchronously to every matching binding.
"""

import copy
import inspect
import logging
import secrets
import uuid
from collections import deque
from datetime import timedelta
from decimal import Decimal
from typing import Any, Callable, Deque, Dict, List, Optional, Sequence, Tuple

import bcrypt

from laborhire.platform.base import (
    SIGNED_IN,
    SIGNED_OUT,
    UNIQUE_VIOLATION,
    AuthCallback,
    AuthSession,
    AuthUser,
    BackendError,
    Binding,
    ChangeCallback,
    ChangeEvent,
    Filter,
    Subscription,
)
from laborhire.types import (
    JobStatus,
    PaymentStatus,
    UserRole,
    UserStatus,
    VerificationStatus,
    to_decimal,
    utc_now,
)

logger = logging.getLogger(__name__)

PERMISSION_DENIED = "42501"
UNKNOWN_FUNCTION = "PGRST202"
RAISE_EXCEPTION = "P0001"

# (constraint name, columns). Rows with a NULL in any column never conflict.
UNIQUE_CONSTRAINTS: Dict[str, List[Tuple[str, Tuple[str, ...]]]] = {
    "applications": [("applications_job_id_worker_id_key", ("job_id", "worker_id"))],
    "payments": [("unique_job_worker_payment", ("job_id", "payer_id", "payee_id"))],
    "reviews": [
        ("reviews_reviewer_id_reviewee_id_job_id_key", ("reviewer_id", "reviewee_id", "job_id"))
    ],
    "wallets": [("wallets_user_id_key", ("user_id",))],
    "admin_profiles": [("admin_profiles_user_id_key", ("user_id",))],
    "platform_settings": [("platform_settings_setting_key_key", ("setting_key",))],
}

# Column defaults applied on insert
TABLE_DEFAULTS: Dict[str, Dict[str, Any]] = {
    "profiles": {
        "is_verified": False,
        "user_status": UserStatus.ACTIVE.value,
        "approval_status": "pending",
        "skills": [],
        "certification_urls": [],
        "deleted_at": None,
    },
    "jobs": {"status": JobStatus.OPEN.value, "required_skills": []},
    "applications": {"status": "pending"},
    "messages": {"is_read": False, "job_id": None},
    "conversations": {"job_id": None},
    "payments": {
        "payment_status": PaymentStatus.PENDING.value,
        "job_id": None,
        "payment_details": {},
        "completed_at": None,
    },
    "verification_requests": {"status": VerificationStatus.PENDING.value, "document_urls": []},
    "admin_profiles": {"permissions": {}},
}

# Tables whose insert time lives in a column other than created_at
CREATED_COLUMNS = {"applications": "applied_at", "verification_requests": "submitted_at"}

PUBLIC_BUCKETS = {"profile-photos"}


class InMemoryBackend:
    """``Backend`` implementation holding everything in process memory."""

    def __init__(self, base_url: str = "http://localhost:54321"):
        self.base_url = base_url.rstrip("/")
        self.tables: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.buckets: Dict[str, Dict[str, bytes]] = {}
        self.calls: List[Tuple[str, str]] = []
        self.password_resets: List[Dict[str, Any]] = []

        self._users: Dict[str, Dict[str, Any]] = {}  # auth user id -> record
        self._session: Optional[AuthSession] = None
        self._auth_listeners: List[AuthCallback] = []
        self._subscriptions: List[Tuple[Subscription, ChangeCallback]] = []
        self._functions: Dict[str, Callable[..., Any]] = {}
        self._failures: Deque[Tuple[str, Optional[str], BackendError]] = deque()
        self._analytics: Optional[Dict[str, Any]] = None
        self._last_timestamp = utc_now()

    # === Test helpers ===

    def fail_next(
        self, operation: str, target: Optional[str] = None, error: Optional[BackendError] = None
    ) -> None:
        """Make the next matching call raise.

        ``operation`` is a method name (select, insert, rpc, upload...).
        ``target`` narrows it to a table, function or bucket.
        """
        self._failures.append(
            (operation, target, error or BackendError(f"Injected {operation} failure", code="500"))
        )

    def register_function(self, name: str, handler: Callable[..., Any]) -> None:
        """Install a handler for ``invoke_function``: ``handler(body, user)``."""
        self._functions[name] = handler

    def rows(self, table: str) -> List[Dict[str, Any]]:
        return [copy.deepcopy(r) for r in self.tables.get(table, {}).values()]

    def seed(self, table: str, **values: Any) -> Dict[str, Any]:
        """Insert a row directly: no constraints, triggers or realtime."""
        row = self._with_defaults(table, values)
        self.tables.setdefault(table, {})[row["id"]] = row
        return copy.deepcopy(row)

    def create_user(
        self,
        email: str,
        password: str = "password123",
        full_name: str = "Test User",
        role: str = UserRole.WORKER.value,
        **profile_fields: Any,
    ) -> Tuple[AuthUser, Dict[str, Any]]:
        """Register an auth user and its profile without signing in."""
        user = self._create_auth_user(email, password, {"full_name": full_name, "role": role})
        profile = self._profile_for_user(user.id)
        if profile_fields:
            profile.update(profile_fields)
        return user, copy.deepcopy(profile)

    def emit_auth_event(self, event: str) -> None:
        """Deliver an auth event (e.g. TOKEN_REFRESHED) to every listener."""
        self._notify_auth(event)

    @property
    def current_user(self) -> Optional[AuthUser]:
        return self._session.user if self._session else None

    # === Internals ===

    def _record(self, operation: str, target: str) -> None:
        self.calls.append((operation, target))
        for i, (op, want, error) in enumerate(self._failures):
            if op == operation and (want is None or want == target):
                del self._failures[i]
                raise error

    def _timestamp(self) -> str:
        # Strictly increasing so ordering by time is deterministic
        now = utc_now()
        if now <= self._last_timestamp:
            now = self._last_timestamp + timedelta(microseconds=1)
        self._last_timestamp = now
        return now.isoformat()

    def _with_defaults(self, table: str, values: Dict[str, Any]) -> Dict[str, Any]:
        row = copy.deepcopy(TABLE_DEFAULTS.get(table, {}))
        row.update(copy.deepcopy(values))
        row.setdefault("id", str(uuid.uuid4()))
        row.setdefault(CREATED_COLUMNS.get(table, "created_at"), self._timestamp())
        if table == "conversations":
            row.setdefault("last_message_at", row.get("created_at"))
        return row

    def _check_unique(self, table: str, row: Dict[str, Any]) -> None:
        for name, columns in UNIQUE_CONSTRAINTS.get(table, []):
            key = tuple(row.get(c) for c in columns)
            if any(v is None for v in key):
                continue
            for other in self.tables.get(table, {}).values():
                if other["id"] != row["id"] and tuple(other.get(c) for c in columns) == key:
                    raise BackendError(
                        f'duplicate key value violates unique constraint "{name}"',
                        code=UNIQUE_VIOLATION,
                        details=f"Key ({', '.join(columns)}) already exists.",
                    )

    def _emit(self, table: str, event_type: str, new: Dict[str, Any], old: Dict[str, Any]) -> None:
        row = new or old
        event = ChangeEvent(
            table=table,
            event_type=event_type,
            new=copy.deepcopy(new),
            old=copy.deepcopy(old),
            commit_timestamp=utc_now(),
        )
        for subscription, callback in list(self._subscriptions):
            if any(b.accepts(table, event_type, row) for b in subscription.bindings):
                callback(copy.deepcopy(event))

    def _check_balance_floor(self, table: str, row: Dict[str, Any], old: Dict[str, Any]) -> None:
        if table != "payments" or row.get("payer_id") == row.get("payee_id"):
            return
        completing = row.get("payment_status") == PaymentStatus.COMPLETED.value
        if not completing or old.get("payment_status") == PaymentStatus.COMPLETED.value:
            return
        balance = Decimal("0")
        for wallet in self.tables.get("wallets", {}).values():
            if wallet["user_id"] == row["payer_id"]:
                balance = to_decimal(wallet["balance"])
        if to_decimal(row.get("amount")) > balance:
            raise BackendError(
                "Insufficient wallet balance",
                code=RAISE_EXCEPTION,
                details=f"Balance {balance} is below the payment amount {row.get('amount')}.",
            )

    def _insert_row(self, table: str, values: Dict[str, Any]) -> Dict[str, Any]:
        row = self._with_defaults(table, values)
        self._check_unique(table, row)
        self._check_balance_floor(table, row, {})
        self.tables.setdefault(table, {})[row["id"]] = row
        self._emit(table, "INSERT", row, {})
        self._after_write(table, row, {})
        return row

    def _update_row(self, table: str, row_id: str, values: Dict[str, Any]) -> Dict[str, Any]:
        old = self.tables[table][row_id]
        row = {**copy.deepcopy(old), **copy.deepcopy(values)}
        if "updated_at" in old or table in ("wallets", "profiles", "platform_settings"):
            row["updated_at"] = self._timestamp()
        self._check_unique(table, row)
        self._check_balance_floor(table, row, old)
        self.tables[table][row_id] = row
        self._emit(table, "UPDATE", row, old)
        self._after_write(table, row, old)
        return row

    def _after_write(self, table: str, row: Dict[str, Any], old: Dict[str, Any]) -> None:
        if table == "payments":
            was_completed = old.get("payment_status") == PaymentStatus.COMPLETED.value
            if row.get("payment_status") == PaymentStatus.COMPLETED.value and not was_completed:
                self._apply_payment(row)
        elif table == "messages" and not old:
            conversation = self.tables.get("conversations", {}).get(row.get("conversation_id"))
            if conversation is not None:
                self._update_row(
                    "conversations", conversation["id"], {"last_message_at": row["created_at"]}
                )

    def _wallet_for(self, profile_id: str) -> Dict[str, Any]:
        for wallet in self.tables.get("wallets", {}).values():
            if wallet["user_id"] == profile_id:
                return wallet
        return self._insert_row(
            "wallets",
            {"user_id": profile_id, "balance": "0", "total_earned": "0", "total_spent": "0"},
        )

    def _apply_payment(self, payment: Dict[str, Any]) -> None:
        amount = to_decimal(payment.get("amount"))
        if not payment.get("completed_at"):
            payment["completed_at"] = self._timestamp()

        def adjust(profile_id: str, balance: Decimal, earned: Decimal, spent: Decimal) -> None:
            wallet = self._wallet_for(profile_id)
            self._update_row(
                "wallets",
                wallet["id"],
                {
                    "balance": str(to_decimal(wallet["balance"]) + balance),
                    "total_earned": str(to_decimal(wallet["total_earned"]) + earned),
                    "total_spent": str(to_decimal(wallet["total_spent"]) + spent),
                },
            )

        if payment["payer_id"] == payment["payee_id"]:
            adjust(payment["payee_id"], amount, amount, Decimal("0"))
        else:
            adjust(payment["payer_id"], -amount, Decimal("0"), amount)
            adjust(payment["payee_id"], amount, amount, Decimal("0"))

    def _profile_for_user(self, user_id: str) -> Dict[str, Any]:
        for profile in self.tables.get("profiles", {}).values():
            if profile["user_id"] == user_id:
                return profile
        raise BackendError("JSON object requested, multiple (or no) rows returned", code="PGRST116")

    def _current_admin(self) -> Dict[str, Any]:
        user = self.current_user
        if user is not None:
            for admin in self.tables.get("admin_profiles", {}).values():
                if admin["user_id"] == user.id:
                    return admin
        raise BackendError("Access denied: admin privileges required", code=PERMISSION_DENIED)

    # === Tables ===

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
        self._record("select", table)
        rows = [r for r in self.tables.get(table, {}).values() if all(f.matches(r) for f in filters)]
        if order:
            present = [r for r in rows if r.get(order) is not None]
            missing = [r for r in rows if r.get(order) is None]
            present.sort(key=lambda r: r[order], reverse=desc)
            # Postgres puts NULLs first when descending
            rows = missing + present if desc else present + missing
        if limit is not None:
            rows = rows[:limit]
        if columns.strip() != "*":
            wanted = [c.strip() for c in columns.split(",")]
            rows = [{c: r.get(c) for c in wanted} for r in rows]
        return copy.deepcopy(rows)

    async def count(self, table: str, filters: Sequence[Filter] = ()) -> int:
        self._record("count", table)
        return sum(1 for r in self.tables.get(table, {}).values() if all(f.matches(r) for f in filters))

    async def insert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        self._record("insert", table)
        return copy.deepcopy(self._insert_row(table, row))

    async def update(
        self, table: str, values: Dict[str, Any], filters: Sequence[Filter]
    ) -> List[Dict[str, Any]]:
        self._record("update", table)
        matched = [r["id"] for r in self.tables.get(table, {}).values() if all(f.matches(r) for f in filters)]
        return [copy.deepcopy(self._update_row(table, row_id, values)) for row_id in matched]

    # === Server logic ===

    async def rpc(self, function: str, params: Optional[Dict[str, Any]] = None) -> Any:
        self._record("rpc", function)
        handler = getattr(self, f"_rpc_{function}", None)
        if handler is None:
            raise BackendError(f"Could not find the function public.{function}", code=UNKNOWN_FUNCTION)
        return handler(**(params or {}))

    def _rpc_get_or_create_wallet(self, profile_user_id: str) -> List[Dict[str, Any]]:
        return [copy.deepcopy(self._wallet_for(profile_user_id))]

    def _rpc_calculate_average_rating(self, user_profile_id: str) -> float:
        ratings = [r["rating"] for r in self.tables.get("reviews", {}).values() if r["reviewee_id"] == user_profile_id]
        if not ratings:
            return 0.0
        return round(sum(ratings) / len(ratings), 2)

    def _rpc_get_review_count(self, user_profile_id: str) -> int:
        return sum(1 for r in self.tables.get("reviews", {}).values() if r["reviewee_id"] == user_profile_id)

    def _rpc_log_activity(
        self, activity_type: str, description: str, metadata: Optional[Dict[str, Any]] = None
    ) -> str:
        user = self.current_user
        if user is None:
            raise BackendError("Not authenticated", code=PERMISSION_DENIED)
        row = self._insert_row(
            "activity_logs",
            {"user_id": user.id, "activity_type": activity_type, "description": description, "metadata": metadata},
        )
        return row["id"]

    def _rpc_log_admin_activity(
        self,
        action_type: str,
        description: str,
        target_type: Optional[str] = None,
        target_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        admin = self._current_admin()
        row = self._insert_row(
            "admin_activity_logs",
            {
                "admin_id": admin["id"],
                "action_type": action_type,
                "description": description,
                "target_type": target_type,
                "target_id": target_id,
                "metadata": metadata,
            },
        )
        return row["id"]

    def _rpc_soft_delete_user(self, target_user_id: str) -> None:
        self._current_admin()
        if target_user_id not in self.tables.get("profiles", {}):
            raise BackendError("User not found", code="P0002")
        self._update_row("profiles", target_user_id, {"deleted_at": self._timestamp()})
        self._rpc_log_admin_activity("user_deletion", "Soft deleted user", "profile", target_user_id)

    def _rpc_update_user_approval(
        self, target_user_id: str, new_status: str, reason: Optional[str] = None
    ) -> None:
        self._current_admin()
        if target_user_id not in self.tables.get("profiles", {}):
            raise BackendError("User not found", code="P0002")
        values: Dict[str, Any] = {"approval_status": new_status, "approval_reason": reason}
        if new_status == "approved":
            values["user_status"] = UserStatus.ACTIVE.value
        self._update_row("profiles", target_user_id, values)
        self._rpc_log_admin_activity(
            "user_approval", f"User {new_status}", "profile", target_user_id, {"reason": reason}
        )

    def _rpc_admin_reset_user_password(self, target_user_id: str, reset_reason: Optional[str] = None) -> str:
        # Runs as the calling admin, so the log row carries their id
        admin = self._current_admin()
        if admin.get("admin_role") != "super_admin":
            raise BackendError("Insufficient privileges - super admin required", code=PERMISSION_DENIED)
        return self._rpc_log_admin_activity(
            "password_reset", "Password reset initiated", "profile", target_user_id, {"reason": reset_reason}
        )

    def _compute_analytics(self) -> Dict[str, Any]:
        profiles = [p for p in self.tables.get("profiles", {}).values() if not p.get("deleted_at")]
        jobs = list(self.tables.get("jobs", {}).values())
        completed = [
            p
            for p in self.tables.get("payments", {}).values()
            if p.get("payment_status") == PaymentStatus.COMPLETED.value
        ]

        def by_status(status: str) -> int:
            return sum(1 for p in profiles if p.get("user_status") == status)

        return {
            "total_users": len(profiles),
            "total_workers": sum(1 for p in profiles if p.get("role") == UserRole.WORKER.value),
            "total_employers": sum(1 for p in profiles if p.get("role") == UserRole.EMPLOYER.value),
            "active_users": by_status(UserStatus.ACTIVE.value),
            "suspended_users": by_status(UserStatus.SUSPENDED.value),
            "banned_users": by_status(UserStatus.BANNED.value),
            "pending_approvals": sum(1 for p in profiles if p.get("approval_status") == "pending"),
            "total_jobs": len(jobs),
            "open_jobs": sum(1 for j in jobs if j.get("status") == JobStatus.OPEN.value),
            "total_applications": len(self.tables.get("applications", {})),
            "total_payments": len(completed),
            "total_revenue": float(
                sum((to_decimal(p["amount"]) for p in completed if p["payer_id"] != p["payee_id"]), Decimal("0"))
            ),
            "pending_verifications": sum(
                1
                for v in self.tables.get("verification_requests", {}).values()
                if v.get("status") == VerificationStatus.PENDING.value
            ),
            "last_updated": self._timestamp(),
        }

    def _rpc_get_platform_analytics(self) -> Dict[str, Any]:
        # Served from a snapshot, like the materialized view behind it
        self._current_admin()
        if self._analytics is None:
            self._analytics = self._compute_analytics()
        return copy.deepcopy(self._analytics)

    def _rpc_refresh_platform_analytics(self) -> None:
        self._current_admin()
        self._analytics = self._compute_analytics()

    async def invoke_function(self, name: str, body: Dict[str, Any]) -> Dict[str, Any]:
        self._record("invoke", name)
        handler = self._functions.get(name)
        if handler is None:
            raise BackendError(f"Function {name} not found", code="404")
        result = handler(body, self.current_user)
        if inspect.isawaitable(result):
            result = await result
        return result

    # === Auth ===

    def _create_auth_user(self, email: str, password: str, metadata: Dict[str, Any]) -> AuthUser:
        if any(u["email"] == email for u in self._users.values()):
            raise BackendError("User already registered", code="user_already_exists")
        user = AuthUser(id=str(uuid.uuid4()), email=email, metadata=dict(metadata))
        self._users[user.id] = {
            "email": email,
            "password_hash": bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=4)),
            "user": user,
        }
        # Signup trigger: every auth user gets a profile
        self._insert_row(
            "profiles",
            {
                "user_id": user.id,
                "full_name": metadata.get("full_name") or "",
                "role": metadata.get("role") or UserRole.WORKER.value,
                "phone": metadata.get("phone"),
            },
        )
        return user

    def _start_session(self, user: AuthUser) -> AuthSession:
        self._session = AuthSession(
            access_token=secrets.token_urlsafe(24),
            refresh_token=secrets.token_urlsafe(24),
            user=copy.deepcopy(user),
        )
        self._notify_auth(SIGNED_IN)
        return self._session

    def _notify_auth(self, event: str) -> None:
        session = copy.deepcopy(self._session)
        for listener in list(self._auth_listeners):
            listener(event, session)

    async def sign_up(
        self, email: str, password: str, metadata: Dict[str, Any], redirect_to: Optional[str] = None
    ) -> Optional[AuthSession]:
        self._record("sign_up", email)
        user = self._create_auth_user(email, password, metadata)
        return self._start_session(user)

    async def sign_in(self, email: str, password: str) -> AuthSession:
        self._record("sign_in", email)
        for record in self._users.values():
            if record["email"] == email and bcrypt.checkpw(password.encode("utf-8"), record["password_hash"]):
                return self._start_session(record["user"])
        raise BackendError("Invalid login credentials", code="invalid_credentials")

    async def sign_out(self) -> None:
        self._record("sign_out", "")
        self._session = None
        self._notify_auth(SIGNED_OUT)

    async def reset_password_for_email(self, email: str, redirect_to: Optional[str] = None) -> None:
        self._record("reset_password_for_email", email)
        self.password_resets.append({"email": email, "redirect_to": redirect_to})

    async def get_session(self) -> Optional[AuthSession]:
        return copy.deepcopy(self._session)

    def on_auth_state_change(self, callback: AuthCallback) -> Callable[[], None]:
        self._auth_listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._auth_listeners:
                self._auth_listeners.remove(callback)

        return unsubscribe

    # === Storage ===

    async def upload(
        self, bucket: str, path: str, data: bytes, content_type: Optional[str] = None
    ) -> str:
        self._record("upload", bucket)
        files = self.buckets.setdefault(bucket, {})
        if path in files:
            raise BackendError("The resource already exists", code="409")
        files[path] = bytes(data)
        return path

    async def remove(self, bucket: str, paths: Sequence[str]) -> None:
        self._record("remove", bucket)
        files = self.buckets.get(bucket, {})
        for path in paths:
            files.pop(path, None)

    async def public_url(self, bucket: str, path: str) -> str:
        return f"{self.base_url}/storage/v1/object/public/{bucket}/{path}"

    async def signed_url(self, bucket: str, path: str, expires_in: int) -> str:
        self._record("signed_url", bucket)
        if path not in self.buckets.get(bucket, {}):
            raise BackendError("Object not found", code="404")
        token = secrets.token_urlsafe(16)
        return f"{self.base_url}/storage/v1/object/sign/{bucket}/{path}?token={token}&expires_in={expires_in}"

    # === Realtime ===

    async def subscribe(
        self, channel: str, bindings: Sequence[Binding], callback: ChangeCallback
    ) -> Subscription:
        subscription = Subscription(channel=channel, bindings=list(bindings))
        self._subscriptions.append((subscription, callback))
        return subscription

    async def unsubscribe(self, subscription: Subscription) -> None:
        self._subscriptions = [(s, cb) for s, cb in self._subscriptions if s is not subscription]

    @property
    def channels(self) -> List[str]:
        return [s.channel for s, _ in self._subscriptions]
