from datetime import datetime, timezone
from typing import Iterator
from uuid import UUID

import pytest
from fastapi.testclient import TestClient

from grooming.app import oauth
from grooming.app.app import app as fastapi_app
from grooming.models.calendar import SyncSettings
from grooming.models.user import User, Role
from tests._fakes import build_world

TEST_USER_ID = UUID("00000000-0000-0000-0000-000000000001")
TEST_IDP_USER_ID = UUID("00000000-0000-0000-0000-000000000002")

_TOKEN_ROLES: dict[str, Role] = {"staff_token": "staff", "admin_token": "admin"}


def _create_test_user(role: Role) -> User:
    return User(
        id=TEST_USER_ID,
        idp_user_id=TEST_IDP_USER_ID,
        email=f"{role}@thepuppyday.com",
        username=role,
        role=role,
        created_at=datetime.now(timezone.utc),
        updated_at=datetime.now(timezone.utc),
    )


@pytest.fixture(autouse=True)
def _mock_oauth(monkeypatch):
    """Accept ``staff_token`` and ``admin_token`` as bearer tokens."""

    def mock_validate(token: str) -> dict[str, str] | None:
        role = _TOKEN_ROLES.get(token)
        if role is None:
            return None
        return {"sub": str(TEST_IDP_USER_ID), "username": role, "email": f"{role}@thepuppyday.com"}

    def mock_get_or_create_user(idp_user_id, email, username) -> User:
        return _create_test_user(role=username)

    monkeypatch.setattr(oauth, "validate_jwt_token", mock_validate)
    monkeypatch.setattr(oauth, "get_or_create_user", mock_get_or_create_user)


@pytest.fixture
def world(connection_factory, appointment_factory):
    """A connected sync engine over in-memory fakes."""
    return build_world(
        connection=connection_factory.make(),
        appointments=[appointment_factory.make()],
        settings=SyncSettings(sync_direction="bidirectional"),
    )


@pytest.fixture
def app(world):
    # The lifespan (which builds the real engine) never runs: TestClient is
    # not used as a context manager.
    fastapi_app.state.sync_engine = world.engine
    yield fastapi_app
    del fastapi_app.state.sync_engine


@pytest.fixture
def client(app) -> TestClient:
    """Unauthenticated test client."""
    return TestClient(app)


@pytest.fixture
def staff_client(app) -> Iterator[TestClient]:
    client = TestClient(app)
    client.headers["Authorization"] = "Bearer staff_token"
    yield client


@pytest.fixture
def admin_client(app) -> Iterator[TestClient]:
    client = TestClient(app)
    client.headers["Authorization"] = "Bearer admin_token"
    yield client
