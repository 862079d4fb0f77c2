"""
Secrethold Benchmark CLI.

Usage:
    secrethold-benchmark

Or run directly:
    python -m secrethold.benchmark

Storage:
    Uses PostgreSQL when DATABASE_URL is set (environment or .env file),
    otherwise the in-memory storage.
"""

from __future__ import annotations

import asyncio
import os
import time
from dataclasses import dataclass
from typing import List, Optional

import asyncpg
from dotenv import load_dotenv

from secrethold.cache import InMemoryCache
from secrethold.crypto import PIN_TO_KEY_ITERATIONS, generate_random_bytes
from secrethold.errors import WrongPinError
from secrethold.postgres import PostgresStorage
from secrethold.service import Secrethold
from secrethold.storage import InMemoryStorage, SecretStorage


@dataclass
class BenchmarkResult:
    """Timings of one benchmark run, in seconds."""

    test_quantity: int
    set_duration: float
    cached_get_duration: float
    cold_get_duration: float
    change_pin_duration: float
    delete_duration: float
    wrong_pin_rejected: bool


def _rate(count: int, duration: float) -> str:
    return f"{count / duration:.2f}" if duration > 0 else "inf"


async def run_benchmark(
    test_quantity: int = 25,
    iterations: int = PIN_TO_KEY_ITERATIONS,
    database_url: Optional[str] = None,
) -> BenchmarkResult:
    """Run the secret lifecycle benchmark and print a report."""
    if test_quantity < 1:
        raise ValueError("test_quantity must be at least 1")
    print("=== Secrethold Benchmark ===\n")

    pool: Optional[asyncpg.Pool] = None
    storage: SecretStorage
    if database_url:
        pool = await asyncpg.create_pool(database_url)
        pg_storage = PostgresStorage(pool)
        await pg_storage.create_schema()
        truncate_start = time.perf_counter()
        await pg_storage.truncate()
        truncate_duration = (time.perf_counter() - truncate_start) * 1000
        print(f"[STARTUP] PostgreSQL storage, table truncated in {truncate_duration:.3f}ms")
        storage = pg_storage
    else:
        print("[STARTUP] In-memory storage (set DATABASE_URL for PostgreSQL)")
        storage = InMemoryStorage()

    cache = InMemoryCache()
    secrethold = Secrethold(
        generate_random_bytes(32),
        storage=storage,
        cache=cache,
        iterations=iterations,
    )
    print(f"Testing with {test_quantity} secrets, PBKDF2 iterations: {iterations}\n")

    ids: List[str] = [f"bench-{i}" for i in range(test_quantity)]
    pin = "123456abcdef"
    new_pin = "654321fedcba"
    secret = "Sensitive data protected by a PIN"

    try:
        print("=" * 70)
        print("                    BENCHMARK START")
        print("=" * 70 + "\n")

        # Demo 1: set_secret (derivation + double encryption + write-through)
        start = time.perf_counter()
        await asyncio.gather(*(secrethold.set_secret(i, secret, pin) for i in ids))
        set_duration = time.perf_counter() - start
        print(f"[OK] Stored {test_quantity} secrets")
        print(f"[PERF] set_secret: {set_duration * 1000:.3f}ms | Rate: {_rate(test_quantity, set_duration)} ops/sec\n")

        # Demo 2: get_secret served from cache
        start = time.perf_counter()
        for i in ids:
            await secrethold.get_secret(i, pin)
        cached_get_duration = time.perf_counter() - start
        print(f"[PERF] get_secret (cached): {cached_get_duration * 1000:.3f}ms | Rate: {_rate(test_quantity, cached_get_duration)} ops/sec")

        # Demo 3: get_secret after cache clean (storage read + decryption)
        await secrethold.clean_cache()
        start = time.perf_counter()
        values = await asyncio.gather(*(secrethold.get_secret(i, pin) for i in ids))
        cold_get_duration = time.perf_counter() - start
        if any(value != secret for value in values):
            raise RuntimeError("Decrypted secret mismatch")
        print(f"[PERF] get_secret (cold):   {cold_get_duration * 1000:.3f}ms | Rate: {_rate(test_quantity, cold_get_duration)} ops/sec\n")

        # Demo 4: PIN rotation
        start = time.perf_counter()
        await asyncio.gather(*(secrethold.change_pin(i, pin, new_pin) for i in ids))
        change_pin_duration = time.perf_counter() - start
        print(f"[OK] Rotated PIN for {test_quantity} secrets")
        print(f"[PERF] change_pin: {change_pin_duration * 1000:.3f}ms | Rate: {_rate(test_quantity, change_pin_duration)} ops/sec")

        wrong_pin_rejected = False
        try:
            await secrethold.get_secret(ids[0], pin)
        except WrongPinError:
            wrong_pin_rejected = True
        print(f"[{'OK' if wrong_pin_rejected else 'ERROR'}] Old PIN rejected after rotation\n")

        # Demo 5: delete
        start = time.perf_counter()
        await asyncio.gather(*(secrethold.delete_secret(i) for i in ids))
        delete_duration = time.perf_counter() - start
        print(f"[PERF] delete_secret: {delete_duration * 1000:.3f}ms | Rate: {_rate(test_quantity, delete_duration)} ops/sec\n")

        print("=" * 70)
        print("                    BENCHMARK COMPLETE")
        print("=" * 70 + "\n")
    finally:
        if pool is not None:
            await pool.close()

    return BenchmarkResult(
        test_quantity=test_quantity,
        set_duration=set_duration,
        cached_get_duration=cached_get_duration,
        cold_get_duration=cold_get_duration,
        change_pin_duration=change_pin_duration,
        delete_duration=delete_duration,
        wrong_pin_rejected=wrong_pin_rejected,
    )


def main() -> None:
    """CLI entry point for secrethold-benchmark command."""
    load_dotenv()

    try:
        user_input = input("Enter number of secrets to test (default: 25): ").strip()
        test_quantity = int(user_input) if user_input else 25
    except ValueError:
        test_quantity = 25

    asyncio.run(
        run_benchmark(
            test_quantity=test_quantity,
            database_url=os.environ.get("DATABASE_URL"),
        )
    )


if __name__ == "__main__":
    main()
