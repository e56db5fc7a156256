import os

import pytest
from cryptography.fernet import Fernet

# Modules read these at import time; set them before anything from grooming is imported.
os.environ.setdefault("ENV", "dev")
os.environ.setdefault("DATABASE_URL", "postgresql://localhost:5432/grooming_test")
os.environ.setdefault("PUBLIC_API_BASE_URL", "https://api.example.com")
os.environ.setdefault("PUBLIC_DASHBOARD_BASE_URL", "https://dashboard.example.com")
os.environ.setdefault("IDENTITY_PROVIDER_URL", "https://idp.example.com")
os.environ.setdefault("JWT_AUDIENCE", "https://api.example.com")
os.environ.setdefault("GOOGLE_CLIENT_ID", "test_client_id")
os.environ.setdefault("GOOGLE_CLIENT_SECRET", "test_client_secret")
os.environ.setdefault("OAUTH_STATE_SECRET", "test_state_secret_that_is_long_enough_for_hs256")
os.environ.setdefault("CALENDAR_TOKEN_ENCRYPTION_KEY", Fernet.generate_key().decode())

from grooming.app import env_loader  # noqa: E402, F401

from tests._factories import AppointmentFactory, ConnectionFactory  # noqa: E402


class AccidentalDatabaseAccessError(Exception):
    """Raised when a unit test accidentally tries to access the database."""

    pass


def _raise_db_access_error(*args, **kwargs):
    """Raise an error when DB access is attempted in unit tests."""
    raise AccidentalDatabaseAccessError(
        "Unit test attempted to connect to the database! "
        "Either mock the database call with @patch('grooming.db.<module>.get_db_cursor') "
        "or pass an in-memory repository from tests/_fakes."
    )


@pytest.fixture(autouse=True)
def prevent_db_access_in_unit_tests(request, monkeypatch):
    """Prevent accidental database access in unit tests.

    Patches psycopg.connect to raise a clear error if any code path reaches
    the real database without a mock or a fake repository.
    """
    markers = [marker.name for marker in request.node.iter_markers()]
    if "e2e" in markers or "integration" in markers:
        yield
        return

    monkeypatch.setattr("psycopg.connect", _raise_db_access_error)
    yield


@pytest.fixture(scope="session")
def appointment_factory() -> AppointmentFactory:
    return AppointmentFactory()


@pytest.fixture(scope="session")
def connection_factory() -> ConnectionFactory:
    return ConnectionFactory()
