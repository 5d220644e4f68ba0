"""
tests/conftest.py -- Shared test fixtures for tokenkeep.

This module provides:
  - make_core(): builds UserStore + WhitelistStore + TokenCodec + SessionManager
  - core: fresh in-memory session core per test (unit tests)
  - api_client: TestClient wired to an isolated in-memory core (integration tests)
  - new_email: factory fixture for collision-free addresses (module-scoped clients)

Design: Named shared-memory SQLite URIs (not plain :memory:) are used for the
API client because TestClient runs sync route handlers in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to each
worker thread. The named URI format (file:name?mode=memory&cache=shared&uri=true)
shares one in-memory instance across all connections in the same process.

bcrypt runs at cost 4 (the minimum) everywhere in tests; cost 12 would make
the suite take minutes without exercising anything different.

The DEBUG env var must be set before api.main is imported so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass

# CRITICAL: Set DEBUG before any api/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.session import SessionManager
from auth.store import UserStore, WhitelistStore
from auth.tokens import TokenCodec

TEST_SECRET = "test-secret-key-0123456789abcdef0123456789"
TEST_BCRYPT_ROUNDS = 4


@dataclass
class Core:
    users: UserStore
    whitelist: WhitelistStore
    codec: TokenCodec
    manager: SessionManager


def make_core(db_url: str = "sqlite:///:memory:", secret: str = TEST_SECRET) -> Core:
    users = UserStore(db_url)
    whitelist = WhitelistStore(users)
    codec = TokenCodec(secret)
    manager = SessionManager(users, whitelist, codec, bcrypt_rounds=TEST_BCRYPT_ROUNDS)
    return Core(users=users, whitelist=whitelist, codec=codec, manager=manager)


def _unique_email(prefix: str = "user") -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}@example.com"


@pytest.fixture
def new_email() -> Callable[..., str]:
    """Return a factory producing a fresh lower-case email on every call."""
    return _unique_email


@pytest.fixture
def core() -> Generator[Core, None, None]:
    """Fresh session core backed by a private in-memory database."""
    c = make_core()
    yield c
    c.users.close()


def _patch_lifespan(c: Core):
    """Return an async context manager that replaces the real lifespan.

    Wires the pre-built test core into app.state so TestClient routes use an
    isolated in-memory database and the test secret.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = c.users
        app.state.whitelist = c.whitelist
        app.state.codec = c.codec
        app.state.session_manager = c.manager
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, Core], None, None]:
    """Yield (client, core) for API integration tests.

    One client per test module. The database name is derived from the module
    so modules never see each other's rows; tests within a module must use
    new_email to stay independent.
    """
    db_name = request.module.__name__.replace(".", "_")
    c = make_core(f"sqlite:///file:{db_name}?mode=memory&cache=shared&uri=true")

    app.router.lifespan_context = _patch_lifespan(c)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, c

    c.users.close()
