"""
Tests for the in-memory cache and storage backends.
"""

import pytest

from secrethold import InMemoryCache, InMemoryStorage, StorageError


class TestInMemoryCache:
    async def test_write_read(self, memory_cache):
        await memory_cache.write("1", "value")
        assert await memory_cache.read("1") == "value"
        assert await memory_cache.contains("1")

    async def test_missing(self, memory_cache):
        assert await memory_cache.read("missing") is None
        assert not await memory_cache.contains("missing")

    async def test_expiry(self, memory_cache, clock):
        await memory_cache.write("1", "value", ttl_ms=100)
        clock.advance(99)
        assert await memory_cache.contains("1")
        clock.advance(2)
        assert not await memory_cache.contains("1")
        assert await memory_cache.read("1") is None

    async def test_default_ttl(self, clock):
        cache = InMemoryCache(default_ttl_ms=50, clock=clock)
        await cache.write("1", "value")
        clock.advance(51)
        assert not await cache.contains("1")

    async def test_read_slides_expiry(self, memory_cache, clock):
        await memory_cache.write("1", "value", ttl_ms=100)
        clock.advance(80)
        assert await memory_cache.read("1") == "value"
        clock.advance(80)
        assert await memory_cache.contains("1")
        clock.advance(30)
        assert not await memory_cache.contains("1")

    async def test_contains_does_not_slide(self, memory_cache, clock):
        await memory_cache.write("1", "value", ttl_ms=100)
        clock.advance(80)
        assert await memory_cache.contains("1")
        clock.advance(30)
        assert not await memory_cache.contains("1")

    async def test_delete_and_clear(self, memory_cache):
        await memory_cache.write("1", "a")
        await memory_cache.write("2", "b")
        await memory_cache.delete("1")
        await memory_cache.delete("1")
        assert not await memory_cache.contains("1")
        await memory_cache.clear()
        assert len(memory_cache) == 0

    async def test_purge_expired(self, memory_cache, clock):
        await memory_cache.write("short", "a", ttl_ms=10)
        await memory_cache.write("long", "b", ttl_ms=1000)
        clock.advance(11)
        assert await memory_cache.purge_expired() == 1
        assert len(memory_cache) == 1

    async def test_negative_ttl(self, memory_cache):
        with pytest.raises(ValueError):
            await memory_cache.write("1", "a", ttl_ms=-1)


class TestInMemoryStorage:
    async def test_write_read_delete(self, memory_storage):
        await memory_storage.write(1, "data")
        assert await memory_storage.read(1) == "data"
        assert await memory_storage.read("1") == "data"
        await memory_storage.delete(1)
        assert await memory_storage.read(1) is None

    async def test_delete_missing(self, memory_storage):
        await memory_storage.delete("missing")
        assert await memory_storage.list_ids() == []

    async def test_large_int_ids(self, memory_storage):
        big = 2**80
        await memory_storage.write(big, "data")
        assert await memory_storage.list_ids() == [str(big)]

    async def test_transaction_commit(self, memory_storage):
        await memory_storage.write("gone", "old")
        tx = memory_storage.transaction()
        await memory_storage.write("1", "data", tx)
        await memory_storage.delete("gone", tx)
        assert await memory_storage.read("1") is None
        assert tx.pending == 2

        await tx.commit()
        assert await memory_storage.read("1") == "data"
        assert await memory_storage.read("gone") is None

    async def test_transaction_rollback(self, memory_storage):
        async with memory_storage.transaction() as tx:
            await memory_storage.write("1", "data", tx)
            await tx.rollback()
        assert await memory_storage.read("1") is None

    async def test_transaction_context_rolls_back_on_error(self, memory_storage):
        with pytest.raises(RuntimeError):
            async with memory_storage.transaction() as tx:
                await memory_storage.write("1", "data", tx)
                raise RuntimeError("boom")
        assert await memory_storage.read("1") is None

    async def test_closed_transaction(self, memory_storage):
        tx = memory_storage.transaction()
        await tx.commit()
        with pytest.raises(StorageError):
            await memory_storage.write("1", "data", tx)

    async def test_foreign_transaction(self, memory_storage):
        other = InMemoryStorage()
        with pytest.raises(StorageError):
            await memory_storage.write("1", "data", other.transaction())
