"""Test configuration and fixtures."""

import os
import re
from collections.abc import AsyncGenerator, Callable, Generator
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import httpx
import pytest
from fastapi import FastAPI
from pydantic import SecretStr
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from tokenstore.api.v1.dependencies import get_token_store
from tokenstore.core.config import settings
from tokenstore.core.security import TokenHasher
from tokenstore.db.postgres import create_session_factory
from tokenstore.main import app
from tokenstore.models.base import Base
from tokenstore.schemas.token import AccessTokenRecord, AuthenticatedUser
from tokenstore.services.token import TokenStore

ADMIN_TOKEN = "test-admin-token"
TENANT_ID = 1
CONSUMER_KEY = "client-a"

# Set TEST_DATABASE_BACKEND=postgres to run the store tests against a
# PostgreSQL container instead of a local SQLite file.
BACKEND = os.getenv("TEST_DATABASE_BACKEND", "sqlite")

RecordFactory = Callable[..., AccessTokenRecord]


###########################
# Database fixtures
###########################

@pytest.fixture(scope="session")
def postgres_container() -> Generator[Any]:
    from testcontainers.postgres import PostgresContainer
    with PostgresContainer("postgres:17.3-alpine3.21") as postgres:
        yield postgres


@pytest.fixture(scope="function")
def database_url(request: pytest.FixtureRequest, tmp_path: Path) -> str:
    if BACKEND == "postgres":
        container = request.getfixturevalue("postgres_container")
        url = container.get_connection_url()
        return re.sub(r"^postgresql(?:\+psycopg2)?://", "postgresql+asyncpg://", url)
    return f"sqlite+aiosqlite:///{tmp_path / 'tokens.db'}"


@pytest.fixture(scope="function")
async def test_engine(database_url: str) -> AsyncGenerator[AsyncEngine]:
    """Create an engine with a fresh schema."""
    if database_url.startswith("sqlite"):
        engine = create_async_engine(database_url, connect_args={"timeout": 30})
    else:
        engine = create_async_engine(database_url, pool_pre_ping=True)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture(scope="function")
def async_session_maker(test_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(test_engine)


###########################
# Store fixtures
###########################

def _case_sensitive(tenant_id: int, user_store_domain: str) -> bool:
    return tenant_id != 2


@pytest.fixture(scope="function")
def store(async_session_maker: async_sessionmaker[AsyncSession]) -> TokenStore:
    """Store keeping tokens in plaintext; tenant 2 has case-insensitive usernames."""
    return TokenStore(
        async_session_maker,
        TokenHasher(enabled=False),
        is_case_sensitive=_case_sensitive,
        revoke_individually=False,
    )


@pytest.fixture(scope="function")
def hashed_store(async_session_maker: async_sessionmaker[AsyncSession]) -> TokenStore:
    """Store keeping sha256 digests of tokens."""
    return TokenStore(
        async_session_maker,
        TokenHasher(enabled=True, algorithm="sha256"),
        is_case_sensitive=_case_sensitive,
        revoke_individually=False,
    )


@pytest.fixture
def alice() -> AuthenticatedUser:
    return AuthenticatedUser(username="alice", user_store_domain="PRIMARY", tenant_id=TENANT_ID)


@pytest.fixture
def make_record(alice: AuthenticatedUser) -> RecordFactory:
    """Build token records with sensible defaults."""

    def factory(token_id: str, access_token: str | None = None, **overrides: Any) -> AccessTokenRecord:
        data: dict[str, Any] = {
            "token_id": token_id,
            "access_token": access_token or f"at-{token_id}",
            "refresh_token": f"rt-{token_id}",
            "consumer_key": CONSUMER_KEY,
            "authenticated_user": alice,
            "scopes": "read write",
            "grant_type": "authorization_code",
            "issued_time": datetime(2024, 1, 1, 12, 0, tzinfo=UTC),
            "validity_period_ms": 3_600_000,
            "refresh_token_validity_period_ms": 86_400_000,
        }
        data.update(overrides)
        return AccessTokenRecord(**data)

    return factory


###########################
# API fixtures
###########################

@pytest.fixture(scope="function")
def test_app(store: TokenStore, monkeypatch: pytest.MonkeyPatch) -> Generator[FastAPI]:
    """Admin application wired to the test store."""
    monkeypatch.setattr(settings, "ADMIN_API_TOKEN", SecretStr(ADMIN_TOKEN))
    app.dependency_overrides = {get_token_store: lambda: store}
    try:
        yield app
    finally:
        app.dependency_overrides = {}


@pytest.fixture(scope="function")
async def test_client(test_app: FastAPI) -> AsyncGenerator[httpx.AsyncClient]:
    """Create test client."""
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=test_app),
        base_url="http://test",
        headers={"Authorization": f"Bearer {ADMIN_TOKEN}"},
    ) as client:
        yield client
