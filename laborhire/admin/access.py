"""Admin role lookup for the signed-in user."""

import logging
from typing import Optional

from laborhire.errors import PermissionDeniedError
from laborhire.platform.base import Backend, BackendError, eq
from laborhire.session import SessionContext
from laborhire.types import ADMIN_ROLE_LEVELS, AdminProfile, AdminRole

logger = logging.getLogger(__name__)


class AdminAccess:
    """Loads the ``admin_profiles`` row for the current user.

    No row means not an admin. Roles are ordered moderator < admin <
    super_admin and a higher role satisfies every lower requirement.
    """

    def __init__(self, backend: Backend, session: SessionContext):
        self.backend = backend
        self.session = session
        self.admin_profile: Optional[AdminProfile] = None
        self.loaded = False

    @property
    def is_admin(self) -> bool:
        return self.admin_profile is not None

    async def load(self) -> Optional[AdminProfile]:
        self.admin_profile = None
        user = self.session.user
        if user is None:
            self.loaded = True
            return None
        try:
            rows = await self.backend.select("admin_profiles", [eq("user_id", user.id)], limit=1)
        except BackendError as e:
            if not e.is_no_rows:
                logger.error(f"Error checking admin access | user_id={user.id} | error={e.message}")
            rows = []
        if rows:
            self.admin_profile = AdminProfile.from_dict(rows[0])
        self.loaded = True
        return self.admin_profile

    def has_role(self, required: str) -> bool:
        if self.admin_profile is None:
            return False
        required = required.value if isinstance(required, AdminRole) else required
        return self.admin_profile.level >= ADMIN_ROLE_LEVELS.get(required, 0)

    def require_role(self, required: str) -> AdminProfile:
        if not self.has_role(required):
            name = required.value if isinstance(required, AdminRole) else required
            raise PermissionDeniedError(f"Requires {name} access")
        return self.admin_profile
