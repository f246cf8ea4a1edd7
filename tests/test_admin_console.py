"""Tests for admin role checks and console operations."""

import pytest

from laborhire import LaborHire
from laborhire.errors import AlreadyExistsError, NotFoundError, PermissionDeniedError, ValidationError
from laborhire.platform import BackendError


async def _admin_with_role(backend, settings, role):
    user, _ = backend.create_user(f"{role}@example.com", full_name=f"{role} user", role="employer")
    backend.seed("admin_profiles", user_id=user.id, admin_role=role)
    app = LaborHire(backend, settings)
    await app.start()
    await app.session.sign_in(f"{role}@example.com", "password123")
    await app.admin_access.load()
    return app


class TestAdminAccess:
    @pytest.mark.asyncio
    async def test_non_admin(self, worker_app):
        assert await worker_app.admin_access.load() is None
        assert worker_app.admin_access.loaded
        assert not worker_app.admin_access.is_admin
        with pytest.raises(PermissionDeniedError, match="Requires moderator access"):
            await worker_app.admin.list_users()

    @pytest.mark.asyncio
    async def test_signed_out(self, backend):
        from laborhire.admin import AdminAccess
        from laborhire.session import SessionContext

        access = AdminAccess(backend, SessionContext(backend))
        assert await access.load() is None
        assert access.loaded

    @pytest.mark.asyncio
    async def test_lookup_error_means_not_admin(self, backend, admin_app):
        backend.fail_next("select", "admin_profiles")
        assert await admin_app.admin_access.load() is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "role,allowed",
        [
            ("moderator", {"moderator"}),
            ("admin", {"moderator", "admin"}),
            ("super_admin", {"moderator", "admin", "super_admin"}),
        ],
    )
    async def test_role_hierarchy(self, backend, settings, role, allowed):
        app = await _admin_with_role(backend, settings, role)
        try:
            for required in ("moderator", "admin", "super_admin"):
                assert app.admin_access.has_role(required) is (required in allowed)
        finally:
            await app.close()

    @pytest.mark.asyncio
    async def test_moderator_cannot_delete_or_reset(self, backend, settings, worker):
        app = await _admin_with_role(backend, settings, "moderator")
        try:
            with pytest.raises(PermissionDeniedError, match="Requires admin access"):
                await app.admin.soft_delete_user(worker["id"])
            with pytest.raises(PermissionDeniedError, match="Requires super_admin access"):
                await app.admin.reset_password(worker["id"])
        finally:
            await app.close()


class TestUsers:
    @pytest.mark.asyncio
    async def test_list_users_filters(self, admin_app, worker, employer):
        everyone = await admin_app.admin.list_users()
        assert {u.id for u in everyone} >= {worker["id"], employer["id"]}

        workers = await admin_app.admin.list_users(role="worker")
        assert [u.id for u in workers] == [worker["id"]]

        found = await admin_app.admin.list_users(search="sita")
        assert [u.id for u in found] == [employer["id"]]

    @pytest.mark.asyncio
    async def test_soft_deleted_users_hidden(self, backend, admin_app, worker):
        await admin_app.admin.soft_delete_user(worker["id"])

        assert worker["id"] not in {u.id for u in await admin_app.admin.list_users()}
        log = backend.rows("admin_activity_logs")
        assert [(r["action_type"], r["target_id"]) for r in log] == [("user_deletion", worker["id"])]

    @pytest.mark.asyncio
    async def test_set_verified_logs(self, backend, admin_app, worker):
        profile = await admin_app.admin.set_verified(worker["id"], False)

        assert profile.is_verified is False
        entry = backend.rows("admin_activity_logs")[0]
        assert entry["action_type"] == "user_verification"
        assert entry["description"] == "Unverified user profile"

    @pytest.mark.asyncio
    async def test_set_verified_unknown_profile(self, admin_app):
        with pytest.raises(NotFoundError):
            await admin_app.admin.set_verified("missing", True)

    @pytest.mark.asyncio
    async def test_log_failure_keeps_action(self, backend, admin_app, worker, caplog):
        backend.fail_next("rpc", "log_admin_activity")

        profile = await admin_app.admin.set_verified(worker["id"], True)

        assert profile.is_verified is True
        assert "Failed to log admin activity" in caplog.text

    @pytest.mark.asyncio
    async def test_set_approval(self, backend, admin_app, worker):
        await admin_app.admin.set_approval(worker["id"], "approved", "Documents checked")

        row = next(p for p in backend.rows("profiles") if p["id"] == worker["id"])
        assert row["approval_status"] == "approved"
        assert row["approval_reason"] == "Documents checked"

        with pytest.raises(ValidationError):
            await admin_app.admin.set_approval(worker["id"], "maybe")

    @pytest.mark.asyncio
    async def test_create_admin_profile(self, backend, admin_app, worker):
        created = await admin_app.admin.create_admin_profile(worker["user_id"], "moderator")

        assert created.admin_role == "moderator"
        assert {a.user_id for a in await admin_app.admin.list_admins()} >= {worker["user_id"]}

        with pytest.raises(AlreadyExistsError):
            await admin_app.admin.create_admin_profile(worker["user_id"], "admin")
        with pytest.raises(ValidationError, match="Unknown admin role"):
            await admin_app.admin.create_admin_profile(worker["user_id"], "owner")


class TestResetPassword:
    @pytest.mark.asyncio
    async def test_invokes_server_function(self, backend, admin_app, worker):
        received = []

        def handler(body, user):
            received.append((body, user.id))
            return {"success": True, "message": "Password reset email sent successfully"}

        backend.register_function("admin-reset-password", handler)

        result = await admin_app.admin.reset_password(worker["id"], "User asked")

        assert result["success"] is True
        assert received == [
            ({"targetUserId": worker["id"], "resetReason": "User asked"}, admin_app.session.user.id)
        ]

    @pytest.mark.asyncio
    async def test_error_body_raises(self, backend, admin_app, worker):
        backend.register_function("admin-reset-password", lambda body, user: {"error": "Target user not found"})

        with pytest.raises(BackendError, match="Target user not found"):
            await admin_app.admin.reset_password(worker["id"])


class TestVerificationReview:
    @pytest.mark.asyncio
    async def test_approve_marks_profile_verified(self, backend, admin_app):
        _, applicant = backend.create_user("new@example.com", full_name="Naya Worker")
        request = backend.seed(
            "verification_requests", user_id=applicant["id"], verification_type="identity", document_urls=["a"]
        )

        entries = await admin_app.admin.verification_requests(status="pending")
        assert [e.request.id for e in entries] == [request["id"]]
        assert entries[0].profile["full_name"] == "Naya Worker"

        reviewed = await admin_app.admin.review_verification(request["id"], "approved", comments="Looks fine")

        assert reviewed.status == "approved"
        assert reviewed.reviewer_comments == "Looks fine"
        profile = next(p for p in backend.rows("profiles") if p["id"] == applicant["id"])
        assert profile["is_verified"] is True
        assert backend.rows("admin_activity_logs")[0]["description"] == (
            "approved verification request with comments: Looks fine"
        )

    @pytest.mark.asyncio
    async def test_reject_leaves_profile(self, backend, admin_app):
        _, applicant = backend.create_user("new@example.com")
        request = backend.seed("verification_requests", user_id=applicant["id"], verification_type="skills")

        reviewed = await admin_app.admin.review_verification(request["id"], "rejected", reason="Blurry scan")

        assert reviewed.rejection_reason == "Blurry scan"
        profile = next(p for p in backend.rows("profiles") if p["id"] == applicant["id"])
        assert profile["is_verified"] is False

    @pytest.mark.asyncio
    async def test_invalid_action_and_missing_request(self, admin_app):
        with pytest.raises(ValidationError):
            await admin_app.admin.review_verification("r1", "pending")
        with pytest.raises(NotFoundError):
            await admin_app.admin.review_verification("missing", "approved")

    @pytest.mark.asyncio
    async def test_empty_queue(self, admin_app):
        assert await admin_app.admin.verification_requests() == []


class TestAnalyticsAndSettings:
    @pytest.mark.asyncio
    async def test_snapshot_and_refresh(self, backend, admin_app, worker, open_job):
        analytics = await admin_app.admin.platform_analytics()
        assert analytics.counters["total_workers"] == 1
        assert analytics.counters["open_jobs"] == 1

        backend.seed("jobs", employer_id="e", title="Another", status="open")
        assert (await admin_app.admin.platform_analytics()).counters["open_jobs"] == 1

        refreshed = await admin_app.admin.refresh_analytics()
        assert refreshed.counters["open_jobs"] == 2
        assert refreshed.last_updated

    @pytest.mark.asyncio
    async def test_settings_round_trip(self, backend, admin_app):
        await admin_app.admin.update_setting("max_jobs_per_employer", 20, description="Posting cap")
        await admin_app.admin.update_setting("max_jobs_per_employer", 25)

        assert await admin_app.admin.platform_settings() == {"max_jobs_per_employer": 25}
        assert len(backend.rows("platform_settings")) == 1
        actions = [r["action_type"] for r in await admin_app.admin.recent_admin_activity()]
        assert actions == ["setting_update", "setting_update"]
