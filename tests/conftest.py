"""
tests/conftest.py -- Shared test fixtures for TokenGate tests.

This module provides:
  - make_settings(): explicit Settings for tests (never reads .env)
  - make_store(): isolated named shared-memory SQLite PrincipalStore
  - store / service / client fixtures
  - register_user(): POST /api/auth/register helper

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker
thread. Each store gets a uuid-suffixed name so tests never share rows.

Settings are built with debug=False: in debug mode error responses carry the
internal reason as detail, which would make the "unknown email" and "wrong
password" responses differ.
"""

from __future__ import annotations

import uuid
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import SingletonThreadPool

from api.main import create_app
from auth.passwords import PasswordHasher
from auth.service import SessionService
from auth.store import PrincipalStore
from auth.tokens import TokenCodec
from core.config import Settings

TEST_SECRET = "test-secret-key-that-is-at-least-32-bytes-long"
PASSWORD = "Secret123!"


def make_settings(**overrides) -> Settings:
    values = {
        "secret_key": TEST_SECRET,
        "debug": False,
        "bcrypt_rounds": 10,
        "login_rate_limit": "1000/minute",
        "register_rate_limit": "1000/minute",
        "api_rate_limit": "10000/minute",
        "log_level": "WARNING",
        # TestClient sends Host: testserver.
        "allowed_hosts": ["testserver", "localhost"],
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def make_store() -> PrincipalStore:
    return PrincipalStore(
        f"sqlite:///file:tokengate_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true",
        poolclass=SingletonThreadPool,
    )


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def store() -> Generator[PrincipalStore, None, None]:
    s = make_store()
    yield s
    s.close()


@pytest.fixture
def codec() -> TokenCodec:
    return TokenCodec(TEST_SECRET)


@pytest.fixture
def service(store: PrincipalStore, codec: TokenCodec, settings: Settings) -> SessionService:
    config = settings.auth_config()
    return SessionService(store=store, hasher=PasswordHasher(config.bcrypt_rounds), codec=codec, config=config)


@pytest.fixture
def client(store: PrincipalStore, settings: Settings) -> Generator[TestClient, None, None]:
    """TestClient over the real app factory with an isolated store injected."""
    app = create_app(settings, store=store)
    with TestClient(app, raise_server_exceptions=True) as c:
        yield c


def register_user(
    client: TestClient,
    username: str = "alice",
    email: str = "a@x.com",
    password: str = PASSWORD,
    **extra,
):
    return client.post(
        "/api/auth/register",
        json={"username": username, "email": email, "password": password, **extra},
    )


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}
