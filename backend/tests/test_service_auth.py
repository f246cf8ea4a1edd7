"""Tests for bearer-token verification and the database helpers behind it."""

import logging
from unittest.mock import MagicMock

import pytest


class TestTokenVerification:
    def test_wrong_audience(self, client, token_factory):
        token = token_factory(audience="anon")

        response = client.get("/wallets/me", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401
        assert response.json() == {"error": "Authentication required"}
        assert response.headers["www-authenticate"] == "Bearer"

    def test_expired(self, client, token_factory):
        token = token_factory(expires_in=-60)

        response = client.get("/wallets/me", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401

    def test_wrong_secret(self, client):
        from jose import jwt

        token = jwt.encode({"sub": "u1", "aud": "authenticated"}, "not-the-secret", algorithm="HS256")

        response = client.get("/wallets/me", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401

    def test_missing_subject(self, client, token_factory):
        token = token_factory(user_id="")

        response = client.get("/wallets/me", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401

    def test_decode_keeps_claims(self, token_factory):
        from app.auth import decode_token
        from app.config import get_settings

        payload = decode_token(token_factory(user_id="u1", email="ram@example.com"), get_settings())

        assert payload["sub"] == "u1"
        assert payload["email"] == "ram@example.com"


class TestAuthAdminHelpers:
    @pytest.mark.asyncio
    async def test_email_lookup(self):
        from app.database import get_auth_user_email

        db = MagicMock()
        db.auth.admin.get_user_by_id.return_value = MagicMock(user=MagicMock(email="ram@example.com"))

        assert await get_auth_user_email(db, "auth-1") == "ram@example.com"
        db.auth.admin.get_user_by_id.assert_called_once_with("auth-1")

    @pytest.mark.asyncio
    async def test_email_lookup_failure(self):
        from app.database import get_auth_user_email

        db = MagicMock()
        db.auth.admin.get_user_by_id.side_effect = RuntimeError("User not found")

        assert await get_auth_user_email(db, "auth-1") is None

    @pytest.mark.asyncio
    async def test_recovery_link(self):
        from app.database import generate_recovery_link

        db = MagicMock()
        await generate_recovery_link(db, "ram@example.com")

        db.auth.admin.generate_link.assert_called_once_with({"type": "recovery", "email": "ram@example.com"})

    @pytest.mark.asyncio
    async def test_reset_log_runs_as_caller(self, monkeypatch):
        from app.database import log_password_reset

        user_db = MagicMock()
        get_user_client = MagicMock(return_value=user_db)
        monkeypatch.setattr("app.database.get_user_client", get_user_client)

        await log_password_reset("caller-token", "profile-1", "Locked out")

        get_user_client.assert_called_once_with("caller-token")
        user_db.rpc.assert_called_once_with(
            "admin_reset_user_password", {"target_user_id": "profile-1", "reset_reason": "Locked out"}
        )

    @pytest.mark.asyncio
    async def test_log_failure_swallowed(self, monkeypatch, caplog):
        from app.database import log_password_reset

        user_db = MagicMock()
        user_db.rpc.return_value.execute.side_effect = RuntimeError("permission denied")
        monkeypatch.setattr("app.database.get_user_client", MagicMock(return_value=user_db))

        with caplog.at_level(logging.ERROR, logger="laborhire.service"):
            await log_password_reset("caller-token", "profile-1", "Locked out")

        assert "Failed to log password reset" in caplog.text

    def test_user_client_sends_caller_token(self, monkeypatch):
        from app.config import get_settings
        from app.database import get_user_client

        create_client = MagicMock()
        monkeypatch.setattr("app.database.create_client", create_client)
        settings = get_settings().model_copy(update={"supabase_anon_key": "anon-key"})

        get_user_client("caller-token", settings)

        url, key = create_client.call_args.args
        assert (url, key) == (settings.supabase_url, "anon-key")
        options = create_client.call_args.kwargs["options"]
        assert options.headers["Authorization"] == "Bearer caller-token"

    def test_user_client_is_not_cached(self, monkeypatch):
        from app.database import get_user_client

        create_client = MagicMock(side_effect=lambda *args, **kwargs: MagicMock())
        monkeypatch.setattr("app.database.create_client", create_client)

        assert get_user_client("token-a") is not get_user_client("token-b")
        assert create_client.call_count == 2
