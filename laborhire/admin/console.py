"""
Admin console operations.

Every operation checks the caller's admin role first. Moderation actions
are recorded through the ``log_admin_activity`` RPC; a failure to log is
reported in the client log and does not undo the action.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from laborhire.admin.access import AdminAccess
from laborhire.errors import AlreadyExistsError, NotFoundError, ValidationError
from laborhire.platform.base import Backend, BackendError, eq, in_, is_null
from laborhire.session import SessionContext
from laborhire.types import (
    AdminProfile,
    AdminRole,
    Profile,
    VerificationRequest,
    VerificationStatus,
    to_decimal,
    utc_now,
)

logger = logging.getLogger(__name__)

RESET_PASSWORD_FUNCTION = "admin-reset-password"

ANALYTICS_COUNTERS = (
    "total_users",
    "total_workers",
    "total_employers",
    "active_users",
    "suspended_users",
    "banned_users",
    "pending_approvals",
    "total_jobs",
    "open_jobs",
    "total_applications",
    "total_payments",
    "pending_verifications",
)


@dataclass
class VerificationEntry:
    request: VerificationRequest
    profile: Optional[Dict[str, Any]] = None


@dataclass
class PlatformAnalytics:
    counters: Dict[str, int]
    total_revenue: Any
    last_updated: str
    recent_activity: List[Dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any], recent_activity: List[Dict[str, Any]]) -> "PlatformAnalytics":
        return cls(
            counters={key: int(data.get(key) or 0) for key in ANALYTICS_COUNTERS},
            total_revenue=to_decimal(data.get("total_revenue")),
            last_updated=str(data.get("last_updated") or ""),
            recent_activity=recent_activity,
        )


class AdminConsole:
    def __init__(self, backend: Backend, session: SessionContext, access: Optional[AdminAccess] = None):
        self.backend = backend
        self.session = session
        self.access = access or AdminAccess(backend, session)

    async def _log(
        self,
        action_type: str,
        description: str,
        target_type: str,
        target_id: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        params: Dict[str, Any] = {
            "action_type": action_type,
            "description": description,
            "target_type": target_type,
            "target_id": target_id,
        }
        if metadata is not None:
            params["metadata"] = metadata
        try:
            await self.backend.rpc("log_admin_activity", params)
        except BackendError as e:
            logger.error(f"Failed to log admin activity | action={action_type} | error={e.message}")

    # === Users ===

    async def list_users(
        self, search: Optional[str] = None, role: Optional[str] = None, status: Optional[str] = None
    ) -> List[Profile]:
        self.access.require_role(AdminRole.MODERATOR)
        rows = await self.backend.select(
            "profiles", [is_null("deleted_at")], order="created_at", desc=True
        )
        users = [Profile.from_dict(r) for r in rows]
        if search:
            users = [u for u in users if search.lower() in u.full_name.lower()]
        if role:
            users = [u for u in users if u.role == role]
        if status:
            users = [u for u in users if u.user_status == status]
        return users

    async def list_admins(self) -> List[AdminProfile]:
        self.access.require_role(AdminRole.MODERATOR)
        return [AdminProfile.from_dict(r) for r in await self.backend.select("admin_profiles")]

    async def set_verified(self, profile_id: str, verified: bool) -> Profile:
        self.access.require_role(AdminRole.MODERATOR)
        rows = await self.backend.update("profiles", {"is_verified": verified}, [eq("id", profile_id)])
        if not rows:
            raise NotFoundError(f"Profile {profile_id} not found")
        await self._log(
            "user_verification",
            f"{'Verified' if verified else 'Unverified'} user profile",
            "profile",
            profile_id,
        )
        return Profile.from_dict(rows[0])

    async def create_admin_profile(self, user_id: str, admin_role: str) -> AdminProfile:
        creator = self.access.require_role(AdminRole.SUPER_ADMIN)
        try:
            role = AdminRole(admin_role)
        except ValueError:
            raise ValidationError(f"Unknown admin role: {admin_role}")
        try:
            row = await self.backend.insert(
                "admin_profiles",
                {"user_id": user_id, "admin_role": role.value, "created_by": creator.user_id},
            )
        except BackendError as e:
            if e.is_unique_violation:
                raise AlreadyExistsError("This user already has an admin profile.") from e
            raise
        await self._log("admin_creation", f"Created {role.value} admin profile", "admin_profile", user_id)
        return AdminProfile.from_dict(row)

    async def soft_delete_user(self, profile_id: str) -> None:
        self.access.require_role(AdminRole.ADMIN)
        await self.backend.rpc("soft_delete_user", {"target_user_id": profile_id})
        logger.info(f"User soft-deleted | profile_id={profile_id}")

    async def set_approval(self, profile_id: str, status: str, reason: Optional[str] = None) -> None:
        self.access.require_role(AdminRole.MODERATOR)
        if status not in ("approved", "rejected"):
            raise ValidationError(f"Invalid approval status: {status}")
        await self.backend.rpc(
            "update_user_approval",
            {"target_user_id": profile_id, "new_status": status, "reason": reason or None},
        )

    async def reset_password(self, profile_id: str, reason: Optional[str] = None) -> Dict[str, Any]:
        """Send a recovery email to the user through the server function."""
        self.access.require_role(AdminRole.SUPER_ADMIN)
        result = await self.backend.invoke_function(
            RESET_PASSWORD_FUNCTION, {"targetUserId": profile_id, "resetReason": reason or ""}
        )
        if result.get("error"):
            raise BackendError(str(result["error"]))
        logger.info(f"Password reset sent | profile_id={profile_id}")
        return result

    # === Verification ===

    async def verification_requests(self, status: Optional[str] = None) -> List[VerificationEntry]:
        self.access.require_role(AdminRole.MODERATOR)
        filters = [eq("status", status)] if status else []
        rows = await self.backend.select(
            "verification_requests", filters, order="submitted_at", desc=True
        )
        if not rows:
            return []
        profiles = await self.backend.select(
            "profiles",
            [in_("id", sorted({r["user_id"] for r in rows}))],
            columns="id,full_name,role,profile_photo_url",
        )
        by_id = {p["id"]: p for p in profiles}
        return [VerificationEntry(VerificationRequest.from_dict(r), by_id.get(r["user_id"])) for r in rows]

    async def review_verification(
        self,
        request_id: str,
        action: str,
        comments: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> VerificationRequest:
        """Approve or reject a request. Approval also marks the profile verified."""
        self.access.require_role(AdminRole.MODERATOR)
        if action not in (VerificationStatus.APPROVED.value, VerificationStatus.REJECTED.value):
            raise ValidationError(f"Invalid verification action: {action}")

        rows = await self.backend.update(
            "verification_requests",
            {
                "status": action,
                "reviewed_at": utc_now().isoformat(),
                "reviewer_comments": comments or None,
                "rejection_reason": reason or None,
            },
            [eq("id", request_id)],
        )
        if not rows:
            raise NotFoundError("Verification request not found")
        request = VerificationRequest.from_dict(rows[0])

        if action == VerificationStatus.APPROVED.value:
            try:
                await self.backend.update("profiles", {"is_verified": True}, [eq("id", request.user_id)])
            except BackendError as e:
                logger.error(
                    f"Error updating profile verification status | profile_id={request.user_id} | error={e.message}"
                )

        await self._log(
            "verification_review",
            f"{action} verification request with comments: {comments or reason or 'No comments'}",
            "verification_request",
            request_id,
        )
        return request

    # === Analytics ===

    async def recent_admin_activity(self, limit: int = 10) -> List[Dict[str, Any]]:
        self.access.require_role(AdminRole.MODERATOR)
        return await self.backend.select(
            "admin_activity_logs", order="created_at", desc=True, limit=limit
        )

    async def platform_analytics(self) -> PlatformAnalytics:
        self.access.require_role(AdminRole.MODERATOR)
        data = await self.backend.rpc("get_platform_analytics")
        if isinstance(data, list):
            data = data[0] if data else {}
        return PlatformAnalytics.from_dict(data or {}, await self.recent_admin_activity())

    async def refresh_analytics(self) -> PlatformAnalytics:
        """Rebuild the analytics snapshot, then read it."""
        self.access.require_role(AdminRole.MODERATOR)
        await self.backend.rpc("refresh_platform_analytics")
        return await self.platform_analytics()

    # === Settings ===

    async def platform_settings(self) -> Dict[str, Any]:
        self.access.require_role(AdminRole.ADMIN)
        rows = await self.backend.select("platform_settings", order="setting_key")
        return {r["setting_key"]: r["setting_value"] for r in rows}

    async def update_setting(self, key: str, value: Any, description: Optional[str] = None) -> Dict[str, Any]:
        admin = self.access.require_role(AdminRole.SUPER_ADMIN)
        values: Dict[str, Any] = {"setting_value": value, "updated_by": admin.user_id}
        if description is not None:
            values["description"] = description
        rows = await self.backend.update("platform_settings", values, [eq("setting_key", key)])
        row = rows[0] if rows else await self.backend.insert("platform_settings", {"setting_key": key, **values})
        await self._log("setting_update", f"Updated platform setting {key}", "platform_setting", key, {"value": value})
        return row
