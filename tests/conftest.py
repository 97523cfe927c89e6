"""
tests/conftest.py -- Shared test fixtures for Gatehouse unit and integration tests.

This module provides:
  - memory_db_url(): named shared-memory SQLite URL, unique per call
  - CapturingMailer: Mailer fake that records messages instead of sending
  - db / user_store / token_store / session_store / session_manager / workflow:
    function-scoped building blocks for unit tests
  - api_client: TestClient over the real app with a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker
thread. The named URI format (file:name?mode=memory&cache=shared&uri=true)
shares one in-memory instance across all connections in the same process.

The DEBUG env var must be set before any core/api import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

# CRITICAL: Set DEBUG before any core/api import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.main import app, attach_services
from auth.store import UserStore
from auth.verification import VerificationTokenStore
from auth.workflow import AuthWorkflow
from core.config import get_settings
from core.database import Database
from sessions.manager import SessionManager
from sessions.store import LocalSessionStore

TEST_SECRET = "test-secret-key-with-at-least-32-characters"


def memory_db_url(prefix: str = "test") -> str:
    """Unique named shared-memory SQLite URL. The DB lives until the engine is disposed."""
    return f"sqlite:///file:{prefix}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


@dataclass
class SentMessage:
    to: str
    subject: str
    body: str


@dataclass
class CapturingMailer:
    """Records every message. Set `fail_with` to make send() raise it."""

    sent: list[SentMessage] = field(default_factory=list)
    fail_with: Exception | None = None

    def send(self, to: str, subject: str, body: str) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append(SentMessage(to, subject, body))

    def last_token_for(self, email: str) -> str:
        """Hex token from the most recent message sent to *email*."""
        for msg in reversed(self.sent):
            if msg.to == email:
                return msg.body.rsplit(" ", 1)[-1]
        raise AssertionError(f"no message sent to {email}")


# ---------------------------------------------------------------------------
# Unit-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def db() -> Generator[Database, None, None]:
    database = Database(memory_db_url())
    yield database
    database.close()


@pytest.fixture()
def user_store(db: Database) -> UserStore:
    return UserStore(db)


@pytest.fixture()
def token_store(db: Database) -> VerificationTokenStore:
    return VerificationTokenStore(db, ttl_seconds=3600)


@pytest.fixture()
def session_store() -> Generator[LocalSessionStore, None, None]:
    store = LocalSessionStore(":memory:", ttl=3600)
    yield store
    store.close()


@pytest.fixture()
def session_manager(session_store: LocalSessionStore) -> SessionManager:
    return SessionManager(session_store, TEST_SECRET)


@pytest.fixture()
def mailer() -> CapturingMailer:
    return CapturingMailer()


@pytest.fixture()
def workflow(
    user_store: UserStore,
    token_store: VerificationTokenStore,
    session_manager: SessionManager,
    mailer: CapturingMailer,
) -> AuthWorkflow:
    return AuthWorkflow(user_store, token_store, session_manager, mailer)


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(db: Database, session_store: LocalSessionStore, mailer: CapturingMailer):
    """Return an async context manager that replaces the real lifespan.

    Wires isolated in-memory backends and the capturing mailer into app.state
    via the same attach_services() the real lifespan uses.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        attach_services(app, get_settings(), db, session_store, mailer)
        yield

    return test_lifespan


@dataclass
class ApiHarness:
    client: TestClient
    mailer: CapturingMailer

    def register(self, email: str, password: str) -> dict:
        """Invite + register through the HTTP API. Returns the created user JSON."""
        resp = self.client.post("/api/v1/invite", json={"email": email})
        assert resp.status_code == 200, resp.text
        token = self.mailer.last_token_for(email)
        resp = self.client.post(
            "/api/v1/register",
            json={"token": token, "email": email, "password": password},
        )
        assert resp.status_code == 200, resp.text
        return resp.json()["user"]

    def sign_in(self, email: str, password: str):
        return self.client.post("/api/v1/sign-in", json={"email": email, "password": password})


@pytest.fixture(scope="module")
def api_client() -> Generator[ApiHarness, None, None]:
    """Yield an ApiHarness for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real route handlers but use isolated in-memory stores. One
    database per test module; tests use distinct email addresses.

    base_url uses "localhost" so TrustedHostMiddleware accepts the requests.
    """
    db = Database(memory_db_url("api"))
    session_store = LocalSessionStore(":memory:", ttl=3600)
    mailer = CapturingMailer()

    app.router.lifespan_context = _patch_lifespan(db, session_store, mailer)

    with TestClient(app, base_url="http://localhost", raise_server_exceptions=False) as client:
        yield ApiHarness(client, mailer)

    session_store.close()
    db.close()
