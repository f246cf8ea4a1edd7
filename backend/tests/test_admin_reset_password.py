"""Tests for the admin-reset-password function."""

import logging
from unittest.mock import AsyncMock

import pytest

URL = "/functions/v1/admin-reset-password"


@pytest.fixture
def helpers(monkeypatch):
    """Patch the database helpers the route calls; defaults describe a successful reset."""
    mocks = {
        "get_admin_profile": AsyncMock(return_value={"admin_role": "super_admin"}),
        "get_profile": AsyncMock(return_value={"id": "profile-1", "user_id": "auth-user-1"}),
        "get_auth_user_email": AsyncMock(return_value="ram@example.com"),
        "generate_recovery_link": AsyncMock(return_value=None),
        "log_password_reset": AsyncMock(return_value=None),
    }
    for name, mock in mocks.items():
        monkeypatch.setattr(f"app.routes.admin.{name}", mock)
    return mocks


class TestAdminResetPassword:
    def test_success(self, client, auth_headers, helpers, mock_db):
        response = client.post(
            URL, json={"targetUserId": "profile-1", "resetReason": "Locked out"}, headers=auth_headers
        )

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "Password reset email sent successfully"}
        helpers["get_admin_profile"].assert_awaited_once_with(mock_db, "usr_TEST_ONLY_000000")
        helpers["get_auth_user_email"].assert_awaited_once_with(mock_db, "auth-user-1")
        helpers["generate_recovery_link"].assert_awaited_once_with(mock_db, "ram@example.com")
        caller_token = auth_headers["Authorization"].split()[1]
        helpers["log_password_reset"].assert_awaited_once_with(caller_token, "profile-1", "Locked out")

    def test_default_reason(self, client, auth_headers, helpers):
        response = client.post(URL, json={"targetUserId": "profile-1"}, headers=auth_headers)

        assert response.status_code == 200
        helpers["log_password_reset"].assert_awaited_once_with(
            auth_headers["Authorization"].split()[1], "profile-1", "Password reset by Super Admin"
        )

    def test_requires_token(self, client, helpers):
        response = client.post(URL, json={"targetUserId": "profile-1"})

        assert response.status_code == 401
        assert response.json() == {"error": "Authentication required"}
        helpers["get_admin_profile"].assert_not_awaited()

    @pytest.mark.parametrize("admin_profile", [None, {"admin_role": "admin"}, {"admin_role": "moderator"}])
    def test_requires_super_admin(self, client, auth_headers, helpers, admin_profile):
        helpers["get_admin_profile"].return_value = admin_profile

        response = client.post(URL, json={"targetUserId": "profile-1"}, headers=auth_headers)

        assert response.status_code == 403
        assert response.json() == {"error": "Insufficient privileges - super admin required"}
        helpers["get_profile"].assert_not_awaited()

    def test_unknown_target(self, client, auth_headers, helpers):
        helpers["get_profile"].return_value = None

        response = client.post(URL, json={"targetUserId": "nobody"}, headers=auth_headers)

        assert response.status_code == 404
        assert response.json() == {"error": "Target user not found"}

    def test_missing_email(self, client, auth_headers, helpers):
        helpers["get_auth_user_email"].return_value = None

        response = client.post(URL, json={"targetUserId": "profile-1"}, headers=auth_headers)

        assert response.status_code == 404
        assert response.json() == {"error": "Failed to get user email"}
        helpers["generate_recovery_link"].assert_not_awaited()

    def test_recovery_link_failure(self, client, auth_headers, helpers):
        helpers["generate_recovery_link"].side_effect = RuntimeError("SMTP not configured")

        response = client.post(URL, json={"targetUserId": "profile-1"}, headers=auth_headers)

        assert response.status_code == 500
        assert response.json() == {"error": "Failed to initiate password reset"}
        helpers["log_password_reset"].assert_not_awaited()

    def test_unexpected_error(self, client, auth_headers, helpers, caplog):
        helpers["get_profile"].side_effect = RuntimeError("connection reset")

        with caplog.at_level(logging.ERROR, logger="laborhire.service"):
            response = client.post(URL, json={"targetUserId": "profile-1"}, headers=auth_headers)

        assert response.status_code == 500
        assert response.json() == {"error": "Internal server error"}
        assert "Error in admin-reset-password" in caplog.text

    def test_missing_target_rejected(self, client, auth_headers, helpers):
        response = client.post(URL, json={"resetReason": "x"}, headers=auth_headers)

        assert response.status_code == 422
        helpers["get_admin_profile"].assert_not_awaited()

    def test_rate_limited(self, client, auth_headers, helpers):
        statuses = [
            client.post(URL, json={"targetUserId": "profile-1"}, headers=auth_headers).status_code
            for _ in range(11)
        ]

        assert statuses[:10] == [200] * 10
        assert statuses[10] == 429


class TestCors:
    def test_preflight_allows_any_origin(self, client):
        response = client.options(
            URL,
            headers={
                "Origin": "https://admin.example.com",
                "Access-Control-Request-Method": "POST",
                "Access-Control-Request-Headers": "authorization, x-client-info, apikey, content-type",
            },
        )

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "*"
        allowed = response.headers["access-control-allow-headers"].lower()
        for header in ("authorization", "x-client-info", "apikey", "content-type"):
            assert header in allowed
