"""
Shared test configuration and fixtures for the cloudmon test suite.

Provides persistence backends (JSON files, SQLite through aiosqlite, and an
optional PostgreSQL database), fake Redis clients, and encryption keys used
across the store, session and credential tests.
"""

import os
import uuid

import fakeredis.aioredis
import pytest
import pytest_asyncio
from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine

from net.cloudmon.crypto.cipher import SecretCipher
from net.cloudmon.store.file import FileBackend
from net.cloudmon.store.relational import RelationalBackend

# Test database configuration
TEST_DB_HOST = os.getenv("TEST_DB_HOST", "postgres")
TEST_DB_PORT = os.getenv("TEST_DB_PORT", "5432")
TEST_DB_USER = os.getenv("TEST_DB_USER", "postgres")
TEST_DB_PASSWORD = os.getenv("TEST_DB_PASSWORD", "password")

# Admin URL for database creation/deletion (connects to postgres database)
ADMIN_DATABASE_URL = f"postgresql+asyncpg://{TEST_DB_USER}:{TEST_DB_PASSWORD}@{TEST_DB_HOST}:{TEST_DB_PORT}/postgres"

TEST_KEY = "0123456789abcdef" * 4
OTHER_KEY = "fedcba9876543210" * 4


async def check_postgres_available():
    """Check if PostgreSQL is available for testing."""
    try:
        admin_engine = create_async_engine(ADMIN_DATABASE_URL, echo=False)
        async with admin_engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        await admin_engine.dispose()
        return True
    except Exception:
        return False


@pytest_asyncio.fixture(scope="function")
async def postgres_url():
    """Create and clean up a uniquely named PostgreSQL database."""
    if not await check_postgres_available():
        pytest.skip("PostgreSQL database not available for testing")

    unique_db_name = f"cloudmon_test_{uuid.uuid4().hex[:8]}"
    unique_db_url = (
        f"postgresql+asyncpg://{TEST_DB_USER}:{TEST_DB_PASSWORD}@"
        f"{TEST_DB_HOST}:{TEST_DB_PORT}/{unique_db_name}"
    )

    admin_engine = create_async_engine(
        ADMIN_DATABASE_URL, echo=False, isolation_level="AUTOCOMMIT"
    )

    try:
        async with admin_engine.connect() as conn:
            await conn.execute(text(f"CREATE DATABASE {unique_db_name}"))

        yield unique_db_url

    finally:
        async with admin_engine.connect() as conn:
            await conn.execute(
                text(f"DROP DATABASE IF EXISTS {unique_db_name} WITH (FORCE)")
            )
        await admin_engine.dispose()


@pytest.fixture
def file_backend(tmp_path):
    """FileBackend over a fresh data directory."""
    return FileBackend(tmp_path / "data")


@pytest_asyncio.fixture
async def sqlite_backend(tmp_path):
    """RelationalBackend over a SQLite file, schema created by connect()."""
    backend = await RelationalBackend.connect(
        f"sqlite+aiosqlite:///{tmp_path / 'cloudmon.db'}"
    )
    yield backend
    await backend.close()


@pytest_asyncio.fixture
async def postgres_backend(postgres_url):
    backend = await RelationalBackend.connect(postgres_url)
    yield backend
    await backend.close()


@pytest.fixture(params=["file_backend", "sqlite_backend", "postgres_backend"])
def backend(request):
    """Every PersistenceBackend implementation, for contract tests."""
    return request.getfixturevalue(request.param)


@pytest_asyncio.fixture
async def fake_redis_client():
    """Provide fake Redis client for unit tests."""
    client = fakeredis.aioredis.FakeRedis(decode_responses=False)
    yield client
    await client.flushall()
    await client.aclose()


@pytest.fixture
def cipher():
    return SecretCipher(TEST_KEY)


@pytest.fixture
def other_cipher():
    return SecretCipher(OTHER_KEY)
