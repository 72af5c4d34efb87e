"""
tests/conftest.py -- Shared fixtures for CredKeep unit and integration tests.

This module provides:
  - FakeClock: a settable, advanceable time source for services that take clock=
  - FakeMailer: records account emails instead of sending them
  - service-level fixtures (store, codec, hasher, api_keys, service, gate, admin)
    built over a throwaway SQLite file per test
  - make_account: factory for accounts with a known password
  - api_client: TestClient over the real app with a patched lifespan

Design: every store uses a SQLite FILE under tmp_path, not :memory:.
TestClient runs sync route handlers in a thread pool, and a plain :memory:
database is per-connection, so worker threads would see a blank schema.

The environment variables must be set before any core/auth/api import so
get_settings() runs in dev mode (auto-generated secrets) with cheap bcrypt.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: set before any core/auth/api import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app, build_services
from auth.activity import ActivityLog
from auth.admin import AccountAdmin
from auth.api_keys import ApiKeyManager
from auth.gate import AccessGate
from auth.models import Account
from auth.passwords import PasswordHasher
from auth.service import AuthService
from auth.store import AccountStore
from auth.tokens import TokenCodec
from core.config import get_settings

ACCESS_SECRET = "test-access-secret-0123456789abcdef"
REFRESH_SECRET = "test-refresh-secret-0123456789abcdef"
API_KEY_SECRET = "test-api-key-secret-0123456789abcdef"

DEFAULT_PASSWORD = "Passw0rd1"


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable clock. Starts at a fixed instant; tests move it explicitly."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeMailer:
    """Mailer double. Each sent message is (kind, to, name, token)."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str, str | None]] = []
        self.fail = False

    def _deliver(self, kind: str, to: str, name: str, token: str | None) -> None:
        if self.fail:
            raise ConnectionError("SMTP server unreachable")
        self.sent.append((kind, to, name, token))

    def send_verification(self, to: str, name: str, token: str) -> None:
        self._deliver("verification", to, name, token)

    def send_password_reset(self, to: str, name: str, token: str) -> None:
        self._deliver("password_reset", to, name, token)

    def send_password_changed(self, to: str, name: str) -> None:
        self._deliver("password_changed", to, name, None)

    def last_token(self, kind: str) -> str:
        for sent_kind, _to, _name, token in reversed(self.sent):
            if sent_kind == kind:
                return token
        raise AssertionError(f"no {kind} email was sent")


# ---------------------------------------------------------------------------
# Service-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def mailer() -> FakeMailer:
    return FakeMailer()


@pytest.fixture(scope="session")
def hasher() -> PasswordHasher:
    # rounds=4 is the bcrypt minimum; keeps the suite fast.
    return PasswordHasher(rounds=4)


@pytest.fixture
def store(tmp_path, clock) -> Generator[AccountStore, None, None]:
    s = AccountStore(f"sqlite:///{tmp_path / 'auth.db'}", clock=clock)
    yield s
    s.close()


@pytest.fixture
def activity(store, clock) -> ActivityLog:
    return ActivityLog(store.engine, clock=clock)


@pytest.fixture
def codec(clock) -> TokenCodec:
    return TokenCodec(ACCESS_SECRET, REFRESH_SECRET, access_ttl="15m", refresh_ttl="30d", clock=clock)


@pytest.fixture
def api_keys(store, clock) -> ApiKeyManager:
    return ApiKeyManager(store, secret=API_KEY_SECRET, environment="test", max_keys_per_account=3, clock=clock)


@pytest.fixture
def service(store, codec, hasher, mailer, activity, clock) -> AuthService:
    return AuthService(store, codec, hasher, mailer, activity, clock=clock)


@pytest.fixture
def gate(store, codec, api_keys) -> AccessGate:
    return AccessGate(store, codec, api_keys)


@pytest.fixture
def admin(store, activity) -> AccountAdmin:
    return AccountAdmin(store, activity)


@pytest.fixture
def make_account(store, hasher):
    """Factory: make_account(email, role=..., verified=...) -> Account with DEFAULT_PASSWORD."""

    def _make(
        email: str,
        name: str = "Test User",
        role: str = "user",
        verified: bool = False,
        password: str = DEFAULT_PASSWORD,
    ) -> Account:
        account_id = store.create_account(
            Account(
                name=name,
                email=email,
                role=role,
                password_digest=hasher.hash(password),
                is_email_verified=verified,
            )
        )
        return store.get_by_id(account_id)

    return _make


# ---------------------------------------------------------------------------
# API integration fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(store: AccountStore, mailer: FakeMailer):
    """Return a lifespan that wires a test store and mailer through build_services()."""

    @asynccontextmanager
    async def test_lifespan(app):
        build_services(app, store, get_settings(), mailer=mailer)
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(tmp_path_factory) -> Generator[tuple[TestClient, FakeMailer], None, None]:
    """Yield (client, mailer) for API integration tests.

    One isolated database per test module. Rate limiting is switched off;
    tests/test_rate_limits.py turns it back on for itself.
    """
    db_path = tmp_path_factory.mktemp("api") / "auth.db"
    store = AccountStore(f"sqlite:///{db_path}")
    mailer = FakeMailer()

    app.router.lifespan_context = _patch_lifespan(store, mailer)
    limiter.enabled = False

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, mailer

    limiter.enabled = True
    store.close()


@pytest.fixture(scope="module")
def register(api_client):
    """Factory: register(email, name=...) -> parsed AuthResponse JSON."""
    client, _ = api_client

    def _register(email: str, name: str = "Test User", password: str = DEFAULT_PASSWORD) -> dict:
        resp = client.post(
            "/api/v1/auth/register",
            json={"name": name, "email": email, "password": password, "confirm_password": password},
        )
        assert resp.status_code == 201, resp.text
        return resp.json()

    return _register


@pytest.fixture(scope="module")
def promote(api_client):
    """Factory: promote(account_id, role) changes a role directly in the store."""
    client, _ = api_client

    def _promote(account_id: int, role: str = "admin") -> None:
        client.app.state.store.update_account(account_id, role=role)

    return _promote
