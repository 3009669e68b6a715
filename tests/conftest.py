"""
Pytest fixtures for the Purehealth auth service.

This module provides:
1. Test settings (environment variables set before settings load)
2. Ceremony engine fixtures over in-memory repositories and ephemeral store
3. A software authenticator producing real WebAuthn responses
"""

import os
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

# Set environment variables BEFORE any imports that might load settings
os.environ.setdefault("PUREHEALTH_ENVIRONMENT", "testing")
os.environ.setdefault("PUREHEALTH_SECRET_KEY", "test-secret-key-for-testing-must-be-32-chars")
os.environ.setdefault("PUREHEALTH_CHALLENGE_STORE", "memory")
os.environ.setdefault("PUREHEALTH_WEBAUTHN_RP_ID", "localhost")
os.environ.setdefault("PUREHEALTH_WEBAUTHN_ALLOWED_RP_IDS", "localhost,127.0.0.1,clinic.example.com")
os.environ.setdefault(
    "PUREHEALTH_WEBAUTHN_ORIGIN", "http://localhost:3000,http://localhost:5173"
)

from purehealth_auth.config import get_settings  # noqa: E402
from purehealth_auth.core.ephemeral import MemoryEphemeralStore  # noqa: E402
from purehealth_auth.models.contracts.webauthn import RegistrationProfile  # noqa: E402
from purehealth_auth.models.enums import UserRole  # noqa: E402
from purehealth_auth.services.challenge_ledger import ChallengeLedger  # noqa: E402
from purehealth_auth.services.passkey_service import PasskeyService  # noqa: E402
from purehealth_auth.services.temp_registration import TemporaryRegistrationBuffer  # noqa: E402
from tests.fakes import FakeCredentialRepository, FakeUserRepository  # noqa: E402
from tests.helpers.software_authenticator import SoftwareAuthenticator  # noqa: E402

ORIGIN = "http://localhost:3000"


class FakeClock:
    """Controllable monotonic clock for the in-memory store."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ==================== MOCK FIXTURES ====================


@pytest.fixture
def mock_db():
    """Mock async database session."""
    db = AsyncMock()
    db.add = MagicMock()
    return db


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock) -> MemoryEphemeralStore:
    return MemoryEphemeralStore(clock=clock)


@pytest.fixture
def ledger(store) -> ChallengeLedger:
    return ChallengeLedger(store, ttl_seconds=300)


@pytest.fixture
def temp_registrations(store) -> TemporaryRegistrationBuffer:
    return TemporaryRegistrationBuffer(store, ttl_seconds=300)


@pytest.fixture
def users() -> FakeUserRepository:
    return FakeUserRepository()


@pytest.fixture
def credentials() -> FakeCredentialRepository:
    return FakeCredentialRepository()


@pytest.fixture
def passkey_service(mock_db, ledger, temp_registrations, users, credentials) -> PasskeyService:
    return PasskeyService(
        mock_db,
        ledger,
        temp_registrations,
        settings=get_settings(),
        users=users,
        credentials=credentials,
    )


@pytest.fixture
def authenticator() -> SoftwareAuthenticator:
    return SoftwareAuthenticator(origin=ORIGIN)


# ==================== TEST DATA FIXTURES ====================


@pytest.fixture
def sample_profile_data() -> dict[str, Any]:
    return {
        "email": "Maria.Santos@Purehealth.example",
        "first_name": "Maria",
        "middle_name": "Cruz",
        "last_name": "Santos",
        "role": "receptionist",
    }


@pytest.fixture
def sample_profile(sample_profile_data) -> RegistrationProfile:
    return RegistrationProfile.model_validate(sample_profile_data)


@pytest_asyncio.fixture
async def registered_user(passkey_service, authenticator, sample_profile):
    """A user created through the temporary registration ceremony."""
    temp_id, options = await passkey_service.generate_temp_registration_options(sample_profile)
    response = authenticator.make_credential(options)
    user, _ = await passkey_service.verify_temp_registration(temp_id, response)
    return user


@pytest.fixture
def admin_profile() -> RegistrationProfile:
    return RegistrationProfile(
        email="admin@purehealth.example",
        first_name="Ana",
        last_name="Reyes",
        role=UserRole.ADMIN,
    )


# ==================== MARKERS ====================


def pytest_configure(config):
    """Register custom pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests (fast, mocked dependencies)")
    config.addinivalue_line("markers", "integration: Integration tests (full application stack)")
