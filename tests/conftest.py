"""
Pytest configuration and fixtures for secrethold tests.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import AsyncGenerator

import pytest
import asyncpg
from dotenv import load_dotenv

from secrethold import (
    InMemoryCache,
    InMemoryStorage,
    PostgresStorage,
    Secrethold,
)

# Low PBKDF2 cost keeps the suite fast; the default is covered in test_crypto.
TEST_ITERATIONS = 1_000


class FakeClock:
    """Manually advanced monotonic clock for cache expiry tests."""

    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms / 1000


@pytest.fixture
def master_key() -> bytes:
    """32 zero bytes. Test fixture only."""
    return bytes(32)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def memory_storage() -> InMemoryStorage:
    """Create an in-memory storage instance for testing."""
    return InMemoryStorage()


@pytest.fixture
def memory_cache(clock: FakeClock) -> InMemoryCache:
    """Create an in-memory cache driven by the fake clock."""
    return InMemoryCache(clock=clock)


@pytest.fixture
def secrethold(
    master_key: bytes, memory_storage: InMemoryStorage, memory_cache: InMemoryCache
) -> Secrethold:
    return Secrethold(
        master_key,
        storage=memory_storage,
        cache=memory_cache,
        iterations=TEST_ITERATIONS,
    )


@pytest.fixture
async def pg_pool() -> AsyncGenerator[asyncpg.Pool, None]:
    """Create a PostgreSQL connection pool for testing."""
    # Load environment from project root
    env_path = Path(__file__).parent.parent / ".env"
    load_dotenv(env_path)

    database_url = os.environ.get("DATABASE_URL")
    if not database_url:
        pytest.skip("DATABASE_URL not set, skipping PostgreSQL tests")

    pool = await asyncpg.create_pool(database_url)
    if pool is None:
        pytest.skip("Failed to create PostgreSQL connection pool")

    yield pool

    await pool.close()


@pytest.fixture
async def postgres_storage(pg_pool: asyncpg.Pool) -> PostgresStorage:
    """Create a PostgreSQL storage instance on a clean table."""
    storage = PostgresStorage(pg_pool, table="secrethold_envelopes_test")
    await storage.create_schema()
    await storage.truncate()
    return storage
