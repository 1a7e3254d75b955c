"""Shared test fixtures and configuration for backend tests."""
from typing import Optional, Tuple

import pytest
from fastapi.testclient import TestClient

from app.config import AppConfig, IN_MEMORY_DATABASE
from app.main import create_app
from app.users.schemas import User, UserRole

TEST_PASSWORD = "correct-horse-battery-9"


@pytest.fixture
def test_config() -> AppConfig:
    """Config backed by an in-memory database and a fixed JWT secret."""
    config = AppConfig()
    config.database.path = IN_MEMORY_DATABASE
    config.secrets.jwt.secret_key = "test-secret-key"
    config.storage.public_url = "http://minio.test"
    return config


@pytest.fixture
def test_app(test_config):
    """A fresh application with its own database, registry and services."""
    app = create_app(test_config)
    yield app
    app.state.db.close()


@pytest.fixture
def api_client(test_app):
    """Provide a TestClient for the per-test application."""
    return TestClient(test_app)


@pytest.fixture
def make_user(test_app):
    """Factory creating a user of the given role and returning ``(user, token)``.

    Staff get a username; guests get an email and full name.
    """
    auth = test_app.state.auth_service
    counter = {"n": 0}

    def _make(
        role: UserRole,
        name: Optional[str] = None,
        full_name: Optional[str] = None,
    ) -> Tuple[User, str]:
        counter["n"] += 1
        if role == UserRole.GUEST:
            email = f"{name or 'guest'}{counter['n']}@example.com"
            token, user = auth.register_guest(email, TEST_PASSWORD, full_name or f"Guest {counter['n']}")
            return user, token
        username = name or f"{role.value}{counter['n']}"
        user = auth.create_staff(username, TEST_PASSWORD, role, full_name)
        return user, auth.issue_token(user)

    return _make
