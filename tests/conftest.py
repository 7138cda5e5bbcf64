"""
tests/conftest.py -- Shared test fixtures for KeyPortal.

This module provides:
  - store:          fresh in-memory CredentialStore per test (unit tests)
  - make_account:   factory that inserts an account with a known password
  - make_key:       factory that inserts an access key
  - api_client:     TestClient wired to an isolated shared-memory store
  - headers_for:    Bearer header for an account

Design: Named shared-memory SQLite URIs (not plain :memory:) are required for
the TestClient because route handlers run in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker
thread. The named URI format (file:name?mode=memory&cache=shared&uri=true)
shares one in-memory instance across all connections in the same process.

DEBUG must be set before any auth/core import so get_settings() can
auto-generate SECRET_KEY. ALLOWED_HOSTS must include the TestClient's host.
"""

from __future__ import annotations

import os

os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver"]')

from collections.abc import Callable, Generator
from contextlib import asynccontextmanager

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.models import AccessKey, Account
from auth.store import CredentialStore
from auth.tokens import create_access_token, hash_password

DEFAULT_PASSWORD = "correct-horse"

# Rate limits are per-IP and every TestClient request comes from the same
# address; switch them off so unrelated tests do not trip over each other.
limiter.enabled = False

# One bcrypt hash shared by all fixture accounts keeps the suite fast.
_DEFAULT_HASH = hash_password(DEFAULT_PASSWORD)


# ---------------------------------------------------------------------------
# Store fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[CredentialStore, None, None]:
    s = CredentialStore("sqlite:///:memory:")
    yield s
    s.close()


def _account_factory(s: CredentialStore) -> Callable[..., Account]:
    counter = {"n": 0}

    def make(username: str | None = None, **fields) -> Account:
        counter["n"] += 1
        username = username or f"user{counter['n']}"
        password = fields.pop("password", None)
        account = Account(
            username=username,
            email=fields.pop("email", f"{username}@example.com"),
            hashed_password=hash_password(password) if password else _DEFAULT_HASH,
            **fields,
        )
        account.id = s.create_account(account)
        created = s.get_account_by_id(account.id)
        assert created is not None
        return created

    return make


def _key_factory(s: CredentialStore) -> Callable[..., AccessKey]:
    counter = {"n": 0}

    def make(owner: Account | None = None, **fields) -> AccessKey:
        counter["n"] += 1
        key = AccessKey(
            key_value=fields.pop("key_value", f"TEST-{counter['n']:016X}-{counter['n']:016X}"),
            user_id=owner.id if owner is not None else None,
            **fields,
        )
        key_id = s.create_access_key(key)
        created = s.get_access_key_by_id(key_id)
        assert created is not None
        return created

    return make


@pytest.fixture
def make_account(store: CredentialStore) -> Callable[..., Account]:
    return _account_factory(store)


@pytest.fixture
def make_key(store: CredentialStore) -> Callable[..., AccessKey]:
    return _key_factory(store)


# ---------------------------------------------------------------------------
# API fixtures -- one TestClient per test module
# ---------------------------------------------------------------------------


def _patch_lifespan(store: CredentialStore):
    """Return a lifespan that installs the given store instead of opening the real database."""

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.store = store
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_store(request) -> Generator[CredentialStore, None, None]:
    name = request.module.__name__.replace(".", "_")
    s = CredentialStore(f"sqlite:///file:test_{name}?mode=memory&cache=shared&uri=true")
    yield s
    s.close()


@pytest.fixture(scope="module")
def api_client(api_store: CredentialStore) -> Generator[TestClient, None, None]:
    """TestClient on the real app with a patched lifespan and an isolated store."""
    app.router.lifespan_context = _patch_lifespan(api_store)
    with TestClient(app, raise_server_exceptions=True) as client:
        yield client


@pytest.fixture(scope="module")
def api_account(api_store: CredentialStore) -> Callable[..., Account]:
    return _account_factory(api_store)


@pytest.fixture(scope="module")
def api_key(api_store: CredentialStore) -> Callable[..., AccessKey]:
    return _key_factory(api_store)


@pytest.fixture(scope="module")
def admin(api_account: Callable[..., Account]) -> Account:
    return api_account("admin", is_admin=True)


def auth_headers(account: Account) -> dict[str, str]:
    token = create_access_token(account.id, account.username, account.is_admin, expire_seconds=3600)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture(scope="module")
def admin_headers(admin: Account) -> dict[str, str]:
    return auth_headers(admin)


@pytest.fixture(scope="session")
def headers_for() -> Callable[[Account], dict[str, str]]:
    return auth_headers
