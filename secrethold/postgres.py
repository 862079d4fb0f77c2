"""
PostgreSQL storage backend for encrypted envelopes.

This module provides:
- PostgresStorage: asyncpg-backed SecretStorage
- StoredEnvelope: Row returned by PostgresStorage.get_envelope

Architecture:
- **Database**: Stores only the serialized envelope (``pinSalt:iv:masterTag:pinTag:ciphertext``)
- **Memory**: Plaintext secrets and derived keys never reach the database

Transactions:
    Pass an asyncpg connection that has an open transaction as ``tx``; the
    statement then runs on that connection instead of a pooled one, so the
    caller decides when it commits.

    async with pool.acquire() as conn:
        async with conn.transaction():
            await secrethold.set_secret(user_id, secret, pin, tx=conn)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, List, Optional

import asyncpg

from .errors import StorageError
from .storage import SecretId, SecretStorage

DEFAULT_TABLE = "secrethold_envelopes"


@dataclass
class StoredEnvelope:
    """Stored envelope row."""

    secret_id: str
    encrypted_data: str
    created_at: datetime
    updated_at: Optional[datetime] = None


class PostgresStorage(SecretStorage):
    """
    PostgreSQL storage backend for encrypted envelopes.

    Table layout:
        id TEXT PRIMARY KEY, encrypted_data TEXT NOT NULL,
        created_at TIMESTAMPTZ, updated_at TIMESTAMPTZ
    """

    def __init__(self, pool: asyncpg.Pool, table: str = DEFAULT_TABLE) -> None:
        """
        Initialize PostgreSQL storage.

        Args:
            pool: asyncpg connection pool
            table: Table name (must be a plain SQL identifier)
        """
        if not table.replace("_", "").isalnum():
            raise StorageError(f"Invalid table name: {table}")
        self._pool = pool
        self._table = table

    @property
    def pool(self) -> asyncpg.Pool:
        """Get the connection pool."""
        return self._pool

    def _executor(self, tx: Any) -> Any:
        return self._pool if tx is None else tx

    async def create_schema(self) -> None:
        """Create the envelope table if it does not exist."""
        query = f"""
            CREATE TABLE IF NOT EXISTS {self._table} (
                id TEXT PRIMARY KEY,
                encrypted_data TEXT NOT NULL,
                created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
                updated_at TIMESTAMPTZ
            )
        """
        try:
            await self._pool.execute(query)
        except Exception as e:
            raise StorageError(f"Failed to create envelope table: {e}") from e

    async def read(self, secret_id: SecretId) -> Optional[str]:
        """
        Get the encrypted data for an id.

        Args:
            secret_id: Secret id (stored as its string form)

        Returns:
            Encrypted data if found, None otherwise
        """
        query = f"SELECT encrypted_data FROM {self._table} WHERE id = $1"
        try:
            return await self._pool.fetchval(query, str(secret_id))
        except Exception as e:
            raise StorageError(f"Failed to read envelope: {e}") from e

    async def get_envelope(self, secret_id: SecretId) -> Optional[StoredEnvelope]:
        """Get the full envelope row, including timestamps."""
        query = f"""
            SELECT id, encrypted_data, created_at, updated_at
            FROM {self._table} WHERE id = $1
        """
        try:
            row = await self._pool.fetchrow(query, str(secret_id))
        except Exception as e:
            raise StorageError(f"Failed to read envelope: {e}") from e
        if row is None:
            return None
        return self._row_to_stored_envelope(row)

    async def write(self, secret_id: SecretId, encrypted_data: str, tx: Any = None) -> None:
        """
        Insert or replace the encrypted data for an id.

        Args:
            secret_id: Secret id
            encrypted_data: Serialized envelope
            tx: Optional asyncpg connection with an open transaction
        """
        query = f"""
            INSERT INTO {self._table} (id, encrypted_data, created_at)
            VALUES ($1, $2, $3)
            ON CONFLICT (id) DO UPDATE
            SET encrypted_data = EXCLUDED.encrypted_data, updated_at = EXCLUDED.created_at
        """
        try:
            await self._executor(tx).execute(
                query,
                str(secret_id),
                encrypted_data,
                datetime.now(timezone.utc),
            )
        except Exception as e:
            raise StorageError(f"Failed to write envelope: {e}") from e

    async def delete(self, secret_id: SecretId, tx: Any = None) -> None:
        """
        Delete the encrypted data for an id (no-op when absent).

        Args:
            secret_id: Secret id
            tx: Optional asyncpg connection with an open transaction
        """
        query = f"DELETE FROM {self._table} WHERE id = $1"
        try:
            await self._executor(tx).execute(query, str(secret_id))
        except Exception as e:
            raise StorageError(f"Failed to delete envelope: {e}") from e

    async def list_ids(self) -> List[str]:
        """List all stored ids."""
        query = f"SELECT id FROM {self._table} ORDER BY id"
        try:
            rows = await self._pool.fetch(query)
        except Exception as e:
            raise StorageError(f"Failed to list envelopes: {e}") from e
        return [row["id"] for row in rows]

    async def truncate(self) -> None:
        """Remove every envelope."""
        try:
            await self._pool.execute(f"TRUNCATE TABLE {self._table}")
        except Exception as e:
            raise StorageError(f"Failed to truncate envelope table: {e}") from e

    @staticmethod
    def _row_to_stored_envelope(row: asyncpg.Record) -> StoredEnvelope:
        """Convert database row to StoredEnvelope."""
        return StoredEnvelope(
            secret_id=row["id"],
            encrypted_data=row["encrypted_data"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
