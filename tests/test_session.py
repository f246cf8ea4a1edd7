"""Tests for the session context lifecycle and auth operations."""

import pytest

from laborhire.errors import NotAuthenticatedError, PermissionDeniedError, ValidationError
from laborhire.platform import BackendError
from laborhire.session import SessionContext


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_initialize_without_session(self, backend):
        session = SessionContext(backend)
        await session.initialize()

        assert session.initialized
        assert session.user is None
        with pytest.raises(NotAuthenticatedError):
            session.require_profile()

    @pytest.mark.asyncio
    async def test_restores_existing_session(self, backend, worker):
        await backend.sign_in("ram@example.com", "password123")

        async with SessionContext(backend) as session:
            assert session.profile.id == worker["id"]
            assert session.profile.full_name == "Ram Thapa"

    @pytest.mark.asyncio
    async def test_follows_auth_events(self, backend, worker, employer):
        async with SessionContext(backend) as session:
            await backend.sign_in("sita@example.com", "password123")
            await session.settle()
            assert session.profile.id == employer["id"]

            await backend.sign_out()
            assert session.user is None
            assert session.profile is None

    @pytest.mark.asyncio
    async def test_token_refresh_keeps_profile(self, backend, worker):
        async with SessionContext(backend) as session:
            await session.sign_in("ram@example.com", "password123")
            backend.calls.clear()

            backend.emit_auth_event("TOKEN_REFRESHED")
            await session.settle()

            assert session.profile.id == worker["id"]
            assert ("select", "profiles") not in backend.calls

    @pytest.mark.asyncio
    async def test_teardown_detaches(self, backend, worker):
        session = SessionContext(backend)
        await session.initialize()
        await session.teardown()

        await backend.sign_in("ram@example.com", "password123")

        assert session.user is None
        assert not session.initialized

    @pytest.mark.asyncio
    async def test_profile_error_leaves_profile_empty(self, backend, worker):
        async with SessionContext(backend) as session:
            backend.fail_next("select", "profiles")
            profile = await session.sign_in("ram@example.com", "password123")

            assert profile is None
            assert session.user is not None


class TestAuthOperations:
    @pytest.mark.asyncio
    async def test_sign_up_creates_profile(self, backend):
        async with SessionContext(backend) as session:
            profile = await session.sign_up(
                "hari@example.com", "secret123", "Hari Gurung", "employer", phone="9800000000"
            )

        assert profile.role == "employer"
        assert profile.full_name == "Hari Gurung"
        assert profile.phone == "9800000000"
        assert profile.is_verified is False

    @pytest.mark.asyncio
    async def test_sign_up_validation(self, backend):
        session = SessionContext(backend)
        with pytest.raises(ValidationError):
            await session.sign_up("", "x", "Name", "worker")
        with pytest.raises(ValidationError, match="Unknown role"):
            await session.sign_up("a@example.com", "x", "Name", "admin")
        assert backend.calls == []

    @pytest.mark.asyncio
    async def test_duplicate_email(self, backend, worker):
        session = SessionContext(backend)
        with pytest.raises(BackendError) as exc_info:
            await session.sign_up("ram@example.com", "x", "Ram Again", "worker")
        assert exc_info.value.code == "user_already_exists"

    @pytest.mark.asyncio
    async def test_wrong_password(self, backend, worker):
        session = SessionContext(backend)
        with pytest.raises(BackendError):
            await session.sign_in("ram@example.com", "wrong")

    @pytest.mark.asyncio
    async def test_reset_password(self, backend):
        session = SessionContext(backend)
        await session.reset_password("ram@example.com", redirect_to="https://app.example.com/reset")

        assert backend.password_resets == [
            {"email": "ram@example.com", "redirect_to": "https://app.example.com/reset"}
        ]


class TestUpdateProfile:
    @pytest.mark.asyncio
    async def test_update_own_profile(self, worker_app):
        profile = await worker_app.session.update_profile(bio="Ten years on site", skills=["Masonry"])

        assert profile.bio == "Ten years on site"
        assert profile.skills == ["Masonry"]

    @pytest.mark.asyncio
    async def test_protected_fields(self, backend, worker_app):
        backend.calls.clear()
        with pytest.raises(PermissionDeniedError, match="is_verified"):
            await worker_app.session.update_profile(is_verified=True, bio="x")
        assert backend.calls == []
