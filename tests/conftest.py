"""
tests/conftest.py -- Shared test fixtures for the auth service.

This module provides:
  - FakeClock / RecordingNotifier: deterministic time and captured notifications
  - settings: a Settings instance with a fixed secret and bcrypt cost 4
  - services / session / user_admin: the real service graph over in-memory stores
  - sql_engine: a named shared-memory SQLite engine for store contract tests
  - api_client: TestClient whose lifespan installs the in-memory graph

bcrypt rounds are forced to 4 (the minimum) so the suite stays fast; the
cost factor does not change any behaviour under test.

The DEBUG env var is set before any project import so get_settings() can
auto-generate SECRET_KEY if something reaches for the singleton.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: Set DEBUG before any core/auth import.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app, install_services
from auth.memory_store import MemoryRefreshTokenStore, MemoryUserStore
from auth.models import Permission, RegisterUser, UserRole
from auth.store import create_store_engine
from auth.wiring import Services, assemble
from core.config import Settings

TEST_SECRET = "test-secret-key-0123456789abcdef0123456789"
PASSWORD = "correct-horse-battery"


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class RecordingNotifier:
    """Notifier double: records (message_type, data) instead of sending."""

    def __init__(self, fail: bool = False) -> None:
        self.sent: list[tuple[str, dict]] = []
        self.fail = fail

    def send(self, event: tuple[str, str], data: dict) -> None:
        if self.fail:
            raise RuntimeError("notification backend down")
        self.sent.append((event[0], data))

    def types(self) -> list[str]:
        return [t for t, _ in self.sent]


def make_settings(**overrides) -> Settings:
    values = {
        "debug": False,
        "secret_key": TEST_SECRET,
        "bcrypt_rounds": 4,
        "refresh_token_sweep_seconds": 0,
        "_env_file": None,
    }
    values.update(overrides)
    return Settings(**values)


def alice(**overrides) -> RegisterUser:
    values = {
        "organization_id": "org-1",
        "email": "alice@example.com",
        "password": PASSWORD,
        "name": "Alice Buyer",
        "role": UserRole.CLIENT_ADMIN,
        "permissions": frozenset({Permission.CREATE_REQUEST.value, Permission.MANAGE_USERS.value}),
    }
    values.update(overrides)
    return RegisterUser(**values)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def services(settings: Settings, notifier: RecordingNotifier, clock: FakeClock) -> Services:
    """Service graph over in-memory stores, with issuer and service sharing one FakeClock."""
    built = assemble(settings, MemoryUserStore(), MemoryRefreshTokenStore(), notifier)
    built.session._clock = clock
    built.session.issuer._clock = clock
    return built


@pytest.fixture
def session(services: Services):
    return services.session


@pytest.fixture
def user_admin(services: Services):
    return services.user_admin


@pytest.fixture
def sql_engine():
    """Named shared-memory SQLite engine, unique per test.

    Named URIs let every pooled connection see the same in-memory database;
    plain ':memory:' would hand each connection a blank schema.
    """
    url = f"sqlite:///file:test_auth_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"
    engine = create_store_engine(url)
    yield engine
    engine.dispose()


def _patch_lifespan(services: Services):
    """Return a lifespan that installs pre-built test services into app.state."""

    @asynccontextmanager
    async def test_lifespan(app):
        install_services(app, services)
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, Services], None, None]:
    """Yield (client, services) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so tests
    hit real route handlers and error mapping over isolated in-memory stores.
    Rate limiting is switched off so repeated logins across tests are not 429'd.
    """
    services = assemble(make_settings(), MemoryUserStore(), MemoryRefreshTokenStore(), RecordingNotifier())
    app.router.lifespan_context = _patch_lifespan(services)
    limiter.enabled = False

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, services

    limiter.enabled = True
