"""Pytest configuration and fixtures for the service."""

import os
import secrets
import time
from unittest.mock import MagicMock

import pytest

# Generate a unique test secret for this test run to prevent token forgery
_TEST_JWT_SECRET = f"test-only-{secrets.token_urlsafe(32)}"

os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_ROLE_KEY", "test-service-key")
os.environ.setdefault("SUPABASE_JWT_SECRET", _TEST_JWT_SECRET)

from app.database import get_db  # noqa: E402
from app.main import app  # noqa: E402
from app.rate_limit import limiter  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from jose import jwt  # noqa: E402


def make_token(user_id="usr_TEST_ONLY_000000", audience="authenticated", expires_in=3600, **claims):
    """Sign a Supabase-style access token with the test secret."""
    from app.config import get_settings

    payload = {"sub": user_id, "aud": audience, "exp": int(time.time()) + expires_in, "role": "authenticated"}
    payload.update(claims)
    return jwt.encode(payload, get_settings().supabase_jwt_secret, algorithm="HS256")


@pytest.fixture
def token_factory():
    return make_token


@pytest.fixture
def auth_headers():
    """Create auth headers with a test token."""
    return {"Authorization": f"Bearer {make_token()}"}


@pytest.fixture
def mock_db():
    """Service-role client stand-in; route helpers are patched per test."""
    db = MagicMock()
    app.dependency_overrides[get_db] = lambda: db
    yield db
    app.dependency_overrides.pop(get_db, None)


@pytest.fixture
def client(mock_db):
    """Create a test client."""
    return TestClient(app)


@pytest.fixture(autouse=True)
def reset_rate_limits():
    limiter.reset()
    yield
    limiter.reset()
