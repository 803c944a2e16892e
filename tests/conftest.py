"""
tests/conftest.py -- Shared test fixtures for tokengate.

This module provides:
  - RecordingMailer / FakeClock: test doubles for mail delivery and time
  - user_store, refresh_store, mailer, service: unit-test fixtures over
    private in-memory SQLite databases
  - _make_test_stores() / _patch_lifespan(): wire isolated stores into
    app.state, bypassing the real startup
  - api_client: TestClient for HTTP integration tests

Design: the API fixtures use named shared-memory SQLite URIs (not plain
:memory:) because TestClient runs sync route handlers in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to
each worker thread. The named URI format shares one in-memory instance across
all connections in the same process.

The DEBUG env var must be set before any auth module import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import asyncio
import os
import re
import threading
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.errors import NotificationDeliveryFailed
from auth.mail import MailSender
from auth.models import NotificationEmail
from auth.refresh import RefreshTokenStore
from auth.service import AuthService
from auth.store import UserStore

ACTIVATION_BASE_URL = "http://localhost/api/v1/auth/accountVerification"
REFRESH_TTL_SECONDS = 7 * 24 * 60 * 60


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class RecordingMailer(MailSender):
    """MailSender that records messages instead of talking SMTP.

    Set fail=True to make every send() raise NotificationDeliveryFailed.
    """

    def __init__(self, fail: bool = False) -> None:
        super().__init__()
        self.fail = fail
        self.sent: list[NotificationEmail] = []
        self._lock = threading.Lock()

    def send(self, email: NotificationEmail) -> None:
        if self.fail:
            raise NotificationDeliveryFailed(f"SMTP down while sending to {email.recipient}")
        with self._lock:
            self.sent.append(email)

    def activation_token(self, recipient: str) -> str:
        """Return the token from the newest activation mail sent to `recipient`."""
        for email in reversed(self.sent):
            if email.recipient == recipient:
                match = re.search(re.escape(ACTIVATION_BASE_URL) + r"/(\S+)", email.body)
                assert match, f"No activation link in mail body: {email.body!r}"
                return match.group(1)
        raise AssertionError(f"No mail sent to {recipient}")


class FakeClock:
    """Callable clock for RefreshTokenStore; advance() moves time forward."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


# ---------------------------------------------------------------------------
# Unit-test fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def user_store() -> Generator[UserStore, None, None]:
    store = UserStore("sqlite:///:memory:")
    yield store
    store.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def refresh_store(clock: FakeClock) -> Generator[RefreshTokenStore, None, None]:
    store = RefreshTokenStore("sqlite:///:memory:", ttl_seconds=REFRESH_TTL_SECONDS, clock=clock)
    yield store
    store.close()


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture
def service(user_store: UserStore, refresh_store: RefreshTokenStore, mailer: RecordingMailer) -> AuthService:
    return AuthService(
        users=user_store,
        refresh_tokens=refresh_store,
        mailer=mailer,
        activation_base_url=ACTIVATION_BASE_URL,
    )


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _make_test_stores(db_suffix: str) -> tuple[UserStore, RefreshTokenStore]:
    """Create isolated named shared-memory SQLite stores for one test module.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state.
    """
    db_url = f"sqlite:///file:test_auth_{db_suffix}?mode=memory&cache=shared&uri=true"
    return UserStore(db_url), RefreshTokenStore(db_url, ttl_seconds=REFRESH_TTL_SECONDS)


def _patch_lifespan(service: AuthService):
    """Return an async context manager that replaces the real lifespan.

    The purge_task is a long-sleeping coroutine so shutdown has a real
    asyncio.Task to cancel.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = service.users
        app.state.refresh_store = service.refresh_tokens
        app.state.auth_service = service
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, RecordingMailer], None, None]:
    """Yield (client, mailer) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so tests
    hit real route handlers but use isolated in-memory stores. base_url is
    localhost so TrustedHostMiddleware accepts the requests.
    """
    user_store, refresh_store = _make_test_stores(request.module.__name__.replace(".", "_"))
    recording_mailer = RecordingMailer()
    auth_service = AuthService(
        users=user_store,
        refresh_tokens=refresh_store,
        mailer=recording_mailer,
        activation_base_url=ACTIVATION_BASE_URL,
    )

    app.router.lifespan_context = _patch_lifespan(auth_service)

    with TestClient(app, base_url="http://localhost", raise_server_exceptions=True) as client:
        yield client, recording_mailer

    refresh_store.close()
    user_store.close()
