"""Tests for the root and health endpoints."""

from unittest.mock import MagicMock


def test_root(client):
    response = client.get("/")

    assert response.status_code == 200
    assert response.json() == {"service": "laborhire-service", "version": "0.1.0", "status": "ok"}


def test_health_connected(client, monkeypatch):
    db = MagicMock()
    monkeypatch.setattr("app.database.get_supabase_client", lambda: db)

    response = client.get("/health")

    assert response.json() == {"status": "healthy", "database": "connected"}
    db.table.assert_called_once_with("profiles")


def test_health_degraded(client, monkeypatch):
    def broken():
        raise ValueError("Either SUPABASE_SERVICE_ROLE_KEY or SUPABASE_SECRET_KEY must be set")

    monkeypatch.setattr("app.database.get_supabase_client", broken)

    response = client.get("/health")
    data = response.json()

    assert data["status"] == "degraded"
    assert data["database"].startswith("error: Either SUPABASE_SERVICE_ROLE_KEY")


def test_unknown_route_uses_error_shape(client):
    response = client.get("/nope")

    assert response.status_code == 404
    assert response.json() == {"error": "Not Found"}
