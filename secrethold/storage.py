"""
Storage abstractions for encrypted envelopes.

This module provides:
- SecretStorage: Abstract interface for durable envelope storage
- InMemoryStorage: Thread-safe in-memory implementation
- MemoryTransaction: Transaction handle understood by InMemoryStorage

Storage holds only the serialized envelope (EncryptedData), never plaintext.
The ``tx`` argument is opaque to the orchestrator and forwarded unchanged.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

from .errors import StorageError

# Identity of one secret slot; backends key on str(id).
SecretId = Any


class SecretStorage(ABC):
    """
    Abstract storage interface for encrypted envelopes.

    All methods are async to support both in-memory and database backends.
    """

    @abstractmethod
    async def read(self, secret_id: SecretId) -> Optional[str]:
        """Get the encrypted data for an id, or None if absent."""
        ...

    @abstractmethod
    async def write(self, secret_id: SecretId, encrypted_data: str, tx: Any = None) -> None:
        """Store (insert or replace) the encrypted data for an id."""
        ...

    @abstractmethod
    async def delete(self, secret_id: SecretId, tx: Any = None) -> None:
        """Delete the encrypted data for an id. Missing ids are not an error."""
        ...


class MemoryTransaction:
    """
    Staged writes and deletes for one InMemoryStorage.

    Nothing is visible to readers until ``commit``; ``rollback`` discards the
    staged operations. A transaction can be used as an async context manager,
    committing on success and rolling back on error.
    """

    def __init__(self, storage: InMemoryStorage) -> None:
        self._storage = storage
        self._operations: List[Tuple[str, Optional[str]]] = []
        self._closed = False

    @property
    def pending(self) -> int:
        return len(self._operations)

    def _stage(self, key: str, encrypted_data: Optional[str]) -> None:
        if self._closed:
            raise StorageError("Transaction already closed")
        self._operations.append((key, encrypted_data))

    async def commit(self) -> None:
        if self._closed:
            raise StorageError("Transaction already closed")
        self._closed = True
        await self._storage._apply(self._operations)
        self._operations = []

    async def rollback(self) -> None:
        self._closed = True
        self._operations = []

    async def __aenter__(self) -> MemoryTransaction:
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        if exc_type is None:
            await self.commit()
        else:
            await self.rollback()


class InMemoryStorage(SecretStorage):
    """
    Thread-safe in-memory storage implementation.

    Uses asyncio.Lock for safe concurrent access.
    """

    def __init__(self) -> None:
        self._envelopes: Dict[str, str] = {}
        self._lock = asyncio.Lock()

    def transaction(self) -> MemoryTransaction:
        """Open a transaction bound to this storage."""
        return MemoryTransaction(self)

    def _check_tx(self, tx: Any) -> Optional[MemoryTransaction]:
        if tx is None:
            return None
        if not isinstance(tx, MemoryTransaction) or tx._storage is not self:
            raise StorageError("Transaction does not belong to this storage")
        return tx

    async def read(self, secret_id: SecretId) -> Optional[str]:
        """Get the encrypted data for an id."""
        async with self._lock:
            return self._envelopes.get(str(secret_id))

    async def write(self, secret_id: SecretId, encrypted_data: str, tx: Any = None) -> None:
        """Store the encrypted data, or stage it on the transaction."""
        transaction = self._check_tx(tx)
        if transaction is not None:
            transaction._stage(str(secret_id), encrypted_data)
            return
        async with self._lock:
            self._envelopes[str(secret_id)] = encrypted_data

    async def delete(self, secret_id: SecretId, tx: Any = None) -> None:
        """Delete the encrypted data, or stage the delete on the transaction."""
        transaction = self._check_tx(tx)
        if transaction is not None:
            transaction._stage(str(secret_id), None)
            return
        async with self._lock:
            self._envelopes.pop(str(secret_id), None)

    async def list_ids(self) -> List[str]:
        """List all stored ids."""
        async with self._lock:
            return list(self._envelopes.keys())

    async def _apply(self, operations: List[Tuple[str, Optional[str]]]) -> None:
        async with self._lock:
            for key, encrypted_data in operations:
                if encrypted_data is None:
                    self._envelopes.pop(key, None)
                else:
                    self._envelopes[key] = encrypted_data
