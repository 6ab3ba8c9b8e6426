"""
tests/conftest.py -- Shared test fixtures for Forsetti.

This module provides:
  - user_store / content_store: isolated in-memory stores for unit tests
  - tokens / clock / clocked_tokens: token services, one with a movable clock
  - new_identity: factory that stores an identity with a given role
  - api: ApiHarness (TestClient plus the stores behind it) with a patched
    lifespan and a RecordingNotifier in place of SMTP

Design: Named shared-memory SQLite URIs (not plain :memory:) back the
api harness stores because TestClient runs route handlers in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to
each worker thread.

The DEBUG env var must be set before any project import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import itertools
import os
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

# CRITICAL: Set DEBUG before any project import.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.main import app, build_lookups
from auth.models import Identity
from auth.store import UserStore
from auth.tokens import TokenService, hash_password
from content.store import ContentStore
from notify.mailer import Mail

TEST_SECRET = "test-secret-key-that-is-at-least-32-characters"

_db_counter = itertools.count()


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


@dataclass
class RecordingNotifier:
    """Collects every Mail handed to it, in delivery order."""

    sent: list[Mail] = field(default_factory=list)

    def send(self, mail: Mail) -> None:
        self.sent.append(mail)

    def to(self, recipient: str) -> list[Mail]:
        return [m for m in self.sent if m.recipient == recipient]


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta


def make_identity(
    store: UserStore,
    email: str,
    password: str = "good-password",
    role: str = "user",
    **fields,
) -> Identity:
    """Create and return a stored identity with the given role type."""
    fields.setdefault("firstname", "Ada")
    fields.setdefault("lastname", "Lovelace")
    user_id = store.create_user(
        Identity(
            email=email,
            hashed_password=hash_password(password),
            role_id=store.get_role_by_type(role).id,
            **fields,
        )
    )
    return store.get_by_id(user_id)


# ---------------------------------------------------------------------------
# Unit-test collaborators
# ---------------------------------------------------------------------------


@pytest.fixture
def secret_key() -> str:
    return TEST_SECRET


@pytest.fixture
def user_store() -> Generator[UserStore, None, None]:
    store = UserStore("sqlite:///:memory:")
    yield store
    store.close()


@pytest.fixture
def content_store() -> Generator[ContentStore, None, None]:
    store = ContentStore("sqlite:///:memory:")
    yield store
    store.close()


@pytest.fixture
def tokens(secret_key: str) -> TokenService:
    return TokenService(secret_key)


@pytest.fixture
def clock() -> FakeClock:
    # Fractional seconds on purpose: exp must round up, not down.
    return FakeClock(datetime(2026, 1, 1, 12, 0, 0, 250000, tzinfo=timezone.utc))


@pytest.fixture
def clocked_tokens(secret_key: str, clock: FakeClock) -> TokenService:
    return TokenService(secret_key, clock=clock)


@pytest.fixture
def new_identity() -> Callable[..., Identity]:
    """make_identity(store, email, password=..., role=..., **fields)."""
    return make_identity


# ---------------------------------------------------------------------------
# Integration harness
# ---------------------------------------------------------------------------


@dataclass
class ApiHarness:
    client: TestClient
    users: UserStore
    content: ContentStore
    tokens: TokenService
    notifier: RecordingNotifier
    _emails: itertools.count = field(default_factory=itertools.count)

    def email(self, prefix: str = "user") -> str:
        """Unique address; tests in one module share the harness databases."""
        return f"{prefix}{next(self._emails)}@example.com"

    def user(self, role: str = "user", password: str = "good-password", **fields) -> tuple[Identity, dict[str, str]]:
        """Store a fresh identity and return it with its Authorization header."""
        identity = make_identity(self.users, self.email(role), password=password, role=role, **fields)
        return identity, {"Authorization": f"Bearer {self.tokens.issue_session(identity)}"}


def _patch_lifespan(users: UserStore, content: ContentStore, tokens: TokenService, notifier: RecordingNotifier):
    """Return an async context manager that replaces the real lifespan."""

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = users
        app.state.content = content
        app.state.tokens = tokens
        app.state.lookups = build_lookups(users, content)
        app.state.notifier = notifier
        app.state.images = MagicMock()
        app.state.oauth = MagicMock()
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api() -> Generator[ApiHarness, None, None]:
    """Yield an ApiHarness over isolated shared-memory stores, one per test module."""
    suffix = next(_db_counter)
    users = UserStore(f"sqlite:///file:test_auth_{suffix}?mode=memory&cache=shared&uri=true")
    content = ContentStore(f"sqlite:///file:test_content_{suffix}?mode=memory&cache=shared&uri=true")
    tokens = TokenService(TEST_SECRET)
    notifier = RecordingNotifier()

    app.router.lifespan_context = _patch_lifespan(users, content, tokens, notifier)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiHarness(client=client, users=users, content=content, tokens=tokens, notifier=notifier)

    users.close()
    content.close()
