"""
tests/conftest.py -- Shared test fixtures for Tourbook.

This module provides:
  - hasher / store / tokens / flows: isolated service objects for unit tests
  - RecordingNotifier: in-memory Notifier that records (and can fail) sends
  - shifted_clock(): build a clock that runs behind or ahead of real time
  - api: TestClient over the real FastAPI app with a patched lifespan

Design: the API fixture uses named shared-memory SQLite URIs (not plain
:memory:) because TestClient runs sync route handlers in a thread pool. Plain
:memory: DBs are per-connection and would present a blank schema to each
worker thread.

bcrypt runs at 4 rounds (the minimum) so the suite stays fast; the cost factor
does not change hashing semantics.

The DEBUG env var must be set before any api/core import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import os
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

# CRITICAL: Set DEBUG before any api/core import.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.flows import AuthFlows
from auth.models import Role, User
from auth.passwords import PasswordHasher
from auth.store import UserStore
from auth.tokens import ResetTokenService, SessionTokenService
from core.config import Settings
from mail.sender import MailDeliveryError

TEST_SECRET = "test-secret-key-0123456789abcdef0123456789abcdef"
NINETY_DAYS = 90 * 24 * 60 * 60
TEN_MINUTES = 10 * 60


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def shifted_clock(delta: timedelta) -> Callable[[], datetime]:
    """Return a clock that reports real UTC now shifted by delta."""
    return lambda: datetime.now(timezone.utc) + delta


@dataclass
class RecordingNotifier:
    """Notifier double. Set fail_welcome / fail_reset to simulate SMTP outages."""

    welcome: list[tuple[str, str]] = field(default_factory=list)
    resets: list[tuple[str, str]] = field(default_factory=list)
    fail_welcome: bool = False
    fail_reset: bool = False

    def send_welcome(self, recipient: User, url: str) -> None:
        if self.fail_welcome:
            raise MailDeliveryError("smtp unavailable")
        self.welcome.append((recipient.email, url))

    def send_password_reset(self, recipient: User, reset_url: str) -> None:
        if self.fail_reset:
            raise MailDeliveryError("smtp unavailable")
        self.resets.append((recipient.email, reset_url))

    def last_reset_token(self) -> str:
        return self.resets[-1][1].rsplit("/", 1)[1]


# ---------------------------------------------------------------------------
# Unit-test fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def hasher() -> PasswordHasher:
    return PasswordHasher(rounds=4)


@pytest.fixture
def store(hasher: PasswordHasher) -> Generator[UserStore, None, None]:
    s = UserStore("sqlite:///:memory:", hasher)
    yield s
    s.close()


@pytest.fixture
def session_tokens() -> SessionTokenService:
    return SessionTokenService(TEST_SECRET, NINETY_DAYS)


@pytest.fixture
def reset_tokens() -> ResetTokenService:
    return ResetTokenService(TEN_MINUTES)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def flows(
    store: UserStore,
    session_tokens: SessionTokenService,
    reset_tokens: ResetTokenService,
    notifier: RecordingNotifier,
) -> AuthFlows:
    return AuthFlows(store, session_tokens, reset_tokens, notifier)


@pytest.fixture
def make_user(store: UserStore) -> Callable[..., User]:
    """Create a user directly in the store. Password defaults to 'password123'."""

    def _make(email: str, role: Role = Role.user, password: str = "password123", name: str = "Test User") -> User:
        return store.create_user(User(name=name, email=email, role=role), password)

    return _make


# ---------------------------------------------------------------------------
# API integration fixture
# ---------------------------------------------------------------------------


@dataclass
class ApiHarness:
    client: TestClient
    store: UserStore
    notifier: RecordingNotifier
    session_tokens: SessionTokenService

    def create_user(self, email: str, role: Role = Role.user, password: str = "password123") -> User:
        return self.store.create_user(User(name="Api User", email=email, role=role), password)

    def token_for(self, user: User, clock_delta: timedelta = timedelta(0)) -> str:
        """Mint a session token for user as if issued clock_delta from now."""
        minted = SessionTokenService(TEST_SECRET, NINETY_DAYS, clock=shifted_clock(clock_delta))
        return minted.issue(user.id)


def _patch_lifespan(settings: Settings, store: UserStore, notifier: RecordingNotifier):
    """Return a lifespan that wires test services into app.state."""

    @asynccontextmanager
    async def test_lifespan(app):
        session_tokens = SessionTokenService(TEST_SECRET, settings.jwt_expire_seconds)
        app.state.settings = settings
        app.state.user_store = store
        app.state.session_tokens = session_tokens
        app.state.auth_flows = AuthFlows(store, session_tokens, ResetTokenService(TEN_MINUTES), notifier)
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api(request: pytest.FixtureRequest) -> Generator[ApiHarness, None, None]:
    """Yield an ApiHarness over the real app with isolated in-memory services.

    One database per test module; tests within a module must use distinct
    email addresses.
    """
    suffix = request.module.__name__.rsplit(".", 1)[-1]
    settings = Settings(debug=True, secret_key=TEST_SECRET, bcrypt_rounds=4)
    store = UserStore(
        f"sqlite:///file:test_auth_{suffix}?mode=memory&cache=shared&uri=true",
        PasswordHasher(rounds=settings.bcrypt_rounds),
    )
    notifier = RecordingNotifier()

    app.router.lifespan_context = _patch_lifespan(settings, store, notifier)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiHarness(
            client=client,
            store=store,
            notifier=notifier,
            session_tokens=app.state.session_tokens,
        )

    store.close()


@pytest.fixture(autouse=True)
def _reset_rate_limits() -> None:
    """Rate-limit counters are process-global; start every test from zero."""
    limiter.reset()
