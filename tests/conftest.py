"""
Pytest fixtures for laborhire tests.

Everything runs against ``InMemoryBackend``. The backend holds a single auth
session, so a test signs in one client at a time; the other party's actions
are written straight to the backend.
"""

import pytest
import pytest_asyncio

from laborhire import LaborHire
from laborhire.config import ClientSettings
from laborhire.platform import InMemoryBackend

PASSWORD = "password123"
WORKER_EMAIL = "ram@example.com"
EMPLOYER_EMAIL = "sita@example.com"
ADMIN_EMAIL = "admin@example.com"


@pytest.fixture
def backend():
    return InMemoryBackend()


@pytest.fixture
def settings():
    """Client settings with short refresh delays so tests don't sleep long."""
    return ClientSettings(
        wallet_refresh_delay=0.01,
        history_refresh_delay=0.01,
        _env_file=None,
    )


@pytest.fixture
def worker(backend):
    """A verified worker profile (dict)."""
    _, profile = backend.create_user(
        WORKER_EMAIL,
        PASSWORD,
        full_name="Ram Thapa",
        role="worker",
        is_verified=True,
        skills=["Plumbing", "Electrical"],
    )
    return profile


@pytest.fixture
def employer(backend):
    """A verified employer profile (dict)."""
    _, profile = backend.create_user(
        EMPLOYER_EMAIL,
        PASSWORD,
        full_name="Sita Sharma",
        role="employer",
        is_verified=True,
        company_name="Sharma Builders",
    )
    return profile


@pytest.fixture
def admin(backend):
    """A super admin: profile plus admin_profiles row."""
    user, profile = backend.create_user(ADMIN_EMAIL, PASSWORD, full_name="Asha Admin", role="employer")
    backend.seed("admin_profiles", user_id=user.id, admin_role="super_admin")
    return profile


async def _signed_in(backend, settings, email):
    app = LaborHire(backend, settings)
    await app.start()
    await app.session.sign_in(email, PASSWORD)
    return app


@pytest_asyncio.fixture
async def worker_app(backend, settings, worker):
    app = await _signed_in(backend, settings, WORKER_EMAIL)
    yield app
    await app.close()


@pytest_asyncio.fixture
async def employer_app(backend, settings, employer):
    app = await _signed_in(backend, settings, EMPLOYER_EMAIL)
    yield app
    await app.close()


@pytest_asyncio.fixture
async def admin_app(backend, settings, admin):
    app = await _signed_in(backend, settings, ADMIN_EMAIL)
    await app.admin_access.load()
    yield app
    await app.close()


@pytest.fixture
def open_job(backend, employer):
    """An open job posted by ``employer``."""
    return backend.seed(
        "jobs",
        employer_id=employer["id"],
        title="Fix kitchen plumbing",
        description="Replace the sink trap and two taps",
        location="Kathmandu",
        pay_rate="NPR 1,500/day",
        duration="1 day",
        required_skills=["Plumbing"],
        status="open",
    )
