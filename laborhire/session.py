"""
Session context: the signed-in user and their profile.

One ``SessionContext`` is created per client and handed to every feature
object. Its lifecycle is explicit: ``initialize`` registers the auth
listener and restores any existing session, auth events keep it current,
and ``teardown`` detaches it.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

from laborhire.errors import NotAuthenticatedError, PermissionDeniedError, ValidationError
from laborhire.platform.base import SIGNED_OUT, AuthSession, AuthUser, Backend, BackendError, eq
from laborhire.types import Profile, UserRole

logger = logging.getLogger(__name__)

# Columns only the server or an admin may change
PROTECTED_PROFILE_FIELDS = frozenset(
    {"id", "user_id", "role", "is_verified", "approval_status", "user_status", "deleted_at", "created_at"}
)


class SessionContext:
    """Current auth session plus the matching profile row."""

    def __init__(self, backend: Backend):
        self.backend = backend
        self.session: Optional[AuthSession] = None
        self.profile: Optional[Profile] = None
        self.initialized = False
        self._profile_row: Dict[str, Any] = {}
        self._profile_user_id: Optional[str] = None
        self._unsubscribe = None
        self._task: Optional[asyncio.Future] = None

    async def __aenter__(self) -> "SessionContext":
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.teardown()

    @property
    def user(self) -> Optional[AuthUser]:
        return self.session.user if self.session else None

    # === Lifecycle ===

    async def initialize(self) -> None:
        """Register the auth listener, then restore the stored session."""
        if self.initialized:
            return
        self._unsubscribe = self.backend.on_auth_state_change(self._on_auth_event)
        self._apply_session(await self.backend.get_session())
        await self.settle()
        self.initialized = True
        logger.info(f"Session initialized | signed_in={self.session is not None}")

    async def teardown(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._clear()
        self.initialized = False

    async def settle(self) -> None:
        """Wait for a pending profile load."""
        while self._task is not None and not self._task.done():
            await asyncio.gather(self._task, return_exceptions=True)

    def _on_auth_event(self, event: str, session: Optional[AuthSession]) -> None:
        logger.debug(f"Auth state changed | event={event} | has_session={session is not None}")
        if event == SIGNED_OUT:
            self._clear()
        else:
            self._apply_session(session)

    def _apply_session(self, session: Optional[AuthSession]) -> None:
        if session is None:
            self._clear()
            return
        self.session = session
        if session.user.id != self._profile_user_id:
            self._profile_user_id = session.user.id
            self.profile = None
            self._task = asyncio.ensure_future(self.load_profile())

    def _clear(self) -> None:
        self.session = None
        self.profile = None
        self._profile_row = {}
        self._profile_user_id = None

    async def load_profile(self) -> Optional[Profile]:
        """Fetch the profile row for the signed-in user.

        A missing row (the signup trigger has not run yet) or a backend
        error leaves ``profile`` empty; the caller decides whether to retry.
        """
        user = self.user
        if user is None:
            return None
        try:
            rows = await self.backend.select("profiles", [eq("user_id", user.id)], limit=1)
        except BackendError as e:
            logger.error(f"Error fetching profile | user_id={user.id} | error={e.message}")
            return None
        if not rows:
            logger.warning(f"Profile not found | user_id={user.id}")
            return None
        # Session may have changed while the query was in flight
        if self.user is None or self.user.id != user.id:
            return None
        self._profile_row = rows[0]
        self.profile = Profile.from_dict(rows[0])
        return self.profile

    # === Auth operations ===

    async def sign_up(
        self,
        email: str,
        password: str,
        full_name: str,
        role: str,
        phone: Optional[str] = None,
        redirect_to: Optional[str] = None,
    ) -> Optional[Profile]:
        """Register a worker or employer. The profile is created server-side."""
        if not email or not password or not full_name:
            raise ValidationError("Email, password and full name are required")
        if role not in (UserRole.WORKER.value, UserRole.EMPLOYER.value):
            raise ValidationError(f"Unknown role: {role}")
        session = await self.backend.sign_up(
            email,
            password,
            {"full_name": full_name, "role": role, "phone": phone},
            redirect_to=redirect_to,
        )
        logger.info(f"Signed up | email={email} | role={role}")
        if session is None:
            # Email confirmation pending
            return None
        self._apply_session(session)
        await self.settle()
        return self.profile

    async def sign_in(self, email: str, password: str) -> Optional[Profile]:
        if not email or not password:
            raise ValidationError("Email and password are required")
        session = await self.backend.sign_in(email, password)
        self._apply_session(session)
        await self.settle()
        logger.info(f"Signed in | user_id={session.user.id}")
        return self.profile

    async def sign_out(self) -> None:
        await self.backend.sign_out()
        self._clear()
        logger.info("Signed out")

    async def reset_password(self, email: str, redirect_to: Optional[str] = None) -> None:
        if not email:
            raise ValidationError("Email is required")
        await self.backend.reset_password_for_email(email, redirect_to=redirect_to)

    # === Profile ===

    def require_profile(self) -> Profile:
        if self.user is None or self.profile is None:
            raise NotAuthenticatedError("Sign in to continue")
        return self.profile

    async def update_profile(self, **changes: Any) -> Profile:
        """Update the owner's profile row and patch the local copy."""
        self.require_profile()
        protected = PROTECTED_PROFILE_FIELDS.intersection(changes)
        if protected:
            raise PermissionDeniedError(f"Cannot change {', '.join(sorted(protected))}")
        rows = await self.backend.update("profiles", changes, [eq("user_id", self.user.id)])
        self._profile_row = rows[0] if rows else {**self._profile_row, **changes}
        self.profile = Profile.from_dict(self._profile_row)
        return self.profile
