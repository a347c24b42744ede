"""
tests/conftest.py -- Shared test fixtures for Shopfront unit and integration tests.

This module provides:
  - settings: a Settings object built from keyword arguments (no .env, no env vars)
  - clock: a FakeClock the issuer and authenticator read "now" from
  - store: an isolated in-memory UserStore
  - hasher / verifier / issuer / authenticator: the auth components wired to the above
  - api_client: TestClient over the real app with a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker
thread. Each fixture instance gets its own uuid-suffixed name so tests never
share state.

bcrypt_rounds=4 is the bcrypt minimum; it keeps hashing fast in tests while
exercising the real library.
"""

from __future__ import annotations

import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from api.main import app, wire_auth
from auth.authenticator import TokenAuthenticator
from auth.credentials import CredentialVerifier
from auth.models import Role, User
from auth.passwords import PasswordHasher, apply_password
from auth.store import UserStore
from auth.tokens import TokenIssuer
from core.config import Settings

TEST_SECRET = "test-secret-key-that-is-at-least-32-characters"


class FakeClock:
    """Callable clock whose time only moves when a test says so."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class BrokenStore:
    """A UserRepository whose every call fails like an unreachable database."""

    def _fail(self, *args, **kwargs):
        raise OperationalError("SELECT 1", {}, Exception("database is unreachable"))

    find_user = save_user = add_token = remove_token = replace_token = trim_tokens = _fail


def make_settings(**overrides) -> Settings:
    values = {
        "secret_key": TEST_SECRET,
        "bcrypt_rounds": 4,
        "token_expire_seconds": 3600,
        "database_url": "sqlite:///:memory:",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def memory_db_url() -> str:
    return f"sqlite:///file:shopfront_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


# ---------------------------------------------------------------------------
# Component fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    s = UserStore(memory_db_url())
    yield s
    s.close()


@pytest.fixture
def hasher(settings: Settings) -> PasswordHasher:
    return PasswordHasher(rounds=settings.bcrypt_rounds)


@pytest.fixture
def verifier(store: UserStore, hasher: PasswordHasher) -> CredentialVerifier:
    return CredentialVerifier(store, hasher)


@pytest.fixture
def issuer(settings: Settings, store: UserStore, clock: FakeClock) -> TokenIssuer:
    return TokenIssuer(settings, store, clock=clock)


@pytest.fixture
def authenticator(settings: Settings, store: UserStore, clock: FakeClock) -> TokenAuthenticator:
    return TokenAuthenticator(settings, store, clock=clock)


@pytest.fixture
def make_user(store: UserStore, hasher: PasswordHasher):
    """Factory: make_user("alice1", "pass123", role=Role.ADMIN) -> saved User."""

    def _make(account: str = "alice1", password: str = "pass123", role: Role = Role.USER) -> User:
        user = apply_password(User(account=account, email=f"{account}@example.com", role=role), password, hasher)
        return store.save_user(user)

    return _make


# ---------------------------------------------------------------------------
# Integration fixture
# ---------------------------------------------------------------------------


def _patch_lifespan(settings: Settings, store: UserStore, clock: FakeClock):
    """Return a lifespan that wires the test store and clock into app.state."""

    @asynccontextmanager
    async def test_lifespan(app):
        wire_auth(app, settings, store, clock=clock)
        yield

    return test_lifespan


@pytest.fixture
def api_client(
    settings: Settings, store: UserStore, clock: FakeClock
) -> Generator[tuple[TestClient, FakeClock, UserStore], None, None]:
    """Yield (client, clock, store) over the real FastAPI app.

    Requests hit the real routes, dependencies and exception handlers; only
    the store (isolated in-memory DB) and the clock are swapped.
    """
    original = app.router.lifespan_context
    app.router.lifespan_context = _patch_lifespan(settings, store, clock)
    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, clock, store
    app.router.lifespan_context = original


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}
