"""
Cache abstractions for decrypted secrets.

This module provides:
- SecretCache: Abstract interface for an ephemeral keyed store with expiry
- InMemoryCache: TTL map implementation
- CachedSecret: Value Secrethold stores, bound to the PIN that produced it

The cache holds CachedSecret values keyed by the textual form of the id.
"""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

DEFAULT_CACHE_TTL_MS: int = 600_000  # 10 minutes


@dataclass(frozen=True)
class CachedSecret:
    """Plaintext secret plus the MAC of the PIN that unlocked it."""

    secret: str = field(repr=False)
    pin_binding: bytes = field(repr=False)


class SecretCache(ABC):
    """Abstract cache interface. All methods are async."""

    @abstractmethod
    async def read(self, key: str) -> Optional[Any]:
        """Get a cached value, or None if absent or expired."""
        ...

    @abstractmethod
    async def write(self, key: str, value: Any, ttl_ms: Optional[int] = None) -> None:
        """Insert or replace a value with the given time to live."""
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove a value. Missing keys are not an error."""
        ...

    @abstractmethod
    async def contains(self, key: str) -> bool:
        """Whether an unexpired value is cached for the key."""
        ...

    @abstractmethod
    async def clear(self) -> None:
        """Remove every value."""
        ...


@dataclass
class CacheEntry:
    """Cached value with its expiry on the cache's clock."""

    value: Any
    ttl_ms: int
    expires_at: float


class InMemoryCache(SecretCache):
    """
    In-memory TTL cache.

    Expired entries are dropped when touched or by ``purge_expired``. A read
    hit slides the entry's expiry forward by its original TTL.

    Args:
        default_ttl_ms: TTL used when write() gets none
        clock: Monotonic seconds source, injectable for tests
    """

    def __init__(
        self,
        default_ttl_ms: int = DEFAULT_CACHE_TTL_MS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if default_ttl_ms < 0:
            raise ValueError("default_ttl_ms must be >= 0")
        self._default_ttl_ms = default_ttl_ms
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = asyncio.Lock()

    def _live(self, key: str) -> Optional[CacheEntry]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() >= entry.expires_at:
            del self._entries[key]
            return None
        return entry

    async def read(self, key: str) -> Optional[Any]:
        async with self._lock:
            entry = self._live(key)
            if entry is None:
                return None
            entry.expires_at = self._clock() + entry.ttl_ms / 1000
            return entry.value

    async def write(self, key: str, value: Any, ttl_ms: Optional[int] = None) -> None:
        ttl = self._default_ttl_ms if ttl_ms is None else ttl_ms
        if ttl < 0:
            raise ValueError("ttl_ms must be >= 0")
        async with self._lock:
            self._entries[key] = CacheEntry(
                value=value,
                ttl_ms=ttl,
                expires_at=self._clock() + ttl / 1000,
            )

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._entries.pop(key, None)

    async def contains(self, key: str) -> bool:
        async with self._lock:
            return self._live(key) is not None

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()

    async def purge_expired(self) -> int:
        """Drop expired entries, returning how many were removed."""
        async with self._lock:
            now = self._clock()
            stale = [k for k, e in self._entries.items() if now >= e.expires_at]
            for key in stale:
                del self._entries[key]
            return len(stale)

    def __len__(self) -> int:
        return len(self._entries)
