"""
PIN-protected secret service.

This module provides:
- Secrethold: get / set / change_pin / delete lifecycle over a cache and a storage

Read path (cache-aside):
1. Cache hit whose PIN binding matches -> return the (wrapped) cached plaintext;
   a hit with a different PIN falls through to storage
2. Miss -> storage read; absent -> None
3. Parse envelope, decrypt with the PIN, populate the cache, return

Write path (write-through):
- A fresh salt and IV for every encryption
- Storage write and cache write are issued concurrently; both are always
  attempted and any failure is raised afterwards

PIN rotation:
- Read storage (absent -> WrongIdError), decrypt with the old PIN
  (failure -> WrongPinError), re-encrypt with the new PIN under a new salt
  and IV, write storage + cache

Key derivation and both cipher passes are CPU-bound and run in an executor.
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import logging
from concurrent.futures import Executor
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar, Union

from .cache import DEFAULT_CACHE_TTL_MS, CachedSecret, SecretCache
from .cipher import AES_KEY_SIZES, decrypt_bytes, encrypt_bytes
from .codec import (
    DEFAULT_ENCRYPTED_DATA_ENCODING,
    DEFAULT_SECRET_ENCODING,
    Envelope,
    EnvelopeCodec,
    check_secret_encoding,
    decode_text,
    encode_text,
)
from .config import SecretholdConfig
from .crypto import (
    AES_256_KEY_SIZE,
    KEY_LENGTH,
    MIN_SALT_SIZE,
    NONCE_SIZE,
    PIN_TO_KEY_DIGEST,
    PIN_TO_KEY_ITERATIONS,
    SALT_SIZE,
    SecureKey,
    cache_binding_key,
    pin_binding,
    resolve_digest,
    verify_pin_binding,
)
from .errors import (
    AuthenticationError,
    CipherConfigError,
    ConfigError,
    KeyDerivationError,
    MalformedEnvelopeError,
    WrongIdError,
    WrongPinError,
)
from .storage import SecretId, SecretStorage

logger = logging.getLogger(__name__)

T = TypeVar("T")
SecretWrapper = Callable[[str], Union[Any, Awaitable[Any]]]

MIN_IV_SIZE = 8
MAX_IV_SIZE = 128


def _wipe(buffer: bytearray) -> None:
    """Zero a mutable buffer in place (best-effort)."""
    buffer[:] = bytes(len(buffer))


class Secrethold:
    """
    PIN-protected secret store.

    Each secret is sealed twice with AES-GCM: under a key derived from the
    user's PIN, then under the process-wide master key. The resulting envelope
    lives in ``storage``; the decrypted plaintext is kept in ``cache`` for
    ``cache_ttl_ms``, together with an HMAC of the PIN so a cached value is
    only returned to a caller presenting that same PIN.
    """

    def __init__(
        self,
        master_key: Union[bytes, bytearray, SecureKey],
        *,
        storage: SecretStorage,
        cache: SecretCache,
        iterations: int = PIN_TO_KEY_ITERATIONS,
        digest: str = PIN_TO_KEY_DIGEST,
        key_length: int = KEY_LENGTH,
        salt_length: int = SALT_SIZE,
        iv_length: int = NONCE_SIZE,
        encrypted_data_encoding: str = DEFAULT_ENCRYPTED_DATA_ENCODING,
        secret_encoding: str = DEFAULT_SECRET_ENCODING,
        cache_ttl_ms: int = DEFAULT_CACHE_TTL_MS,
        secret_wrapper: Optional[SecretWrapper] = None,
        executor: Optional[Executor] = None,
    ) -> None:
        """
        Initialize Secrethold.

        Args:
            master_key: 32-byte master key (copied; the caller keeps its own)
            storage: Durable envelope storage
            cache: Plaintext cache
            iterations: PBKDF2 iterations for the PIN key
            digest: PBKDF2 digest name
            key_length: PIN-derived key length (16, 24 or 32)
            salt_length: PIN salt length (>= 12)
            iv_length: AES-GCM IV length (8..128)
            encrypted_data_encoding: Envelope field encoding
            secret_encoding: Encoding of plaintext secret strings
            cache_ttl_ms: TTL for cached plaintext
            secret_wrapper: Transform applied to secrets returned by get_secret
            executor: Executor for CPU-bound crypto (default loop executor if None)

        Raises:
            ConfigError: On any invalid option
        """
        if isinstance(master_key, SecureKey):
            raw_master_key = master_key.as_bytes()
        elif isinstance(master_key, (bytes, bytearray)):
            raw_master_key = bytes(master_key)
        else:
            raise ConfigError("Master key must be bytes, bytearray or SecureKey")
        if len(raw_master_key) != AES_256_KEY_SIZE:
            raise ConfigError(
                f"Wrong master key provided. Master key size must be {AES_256_KEY_SIZE} bytes"
            )

        if not isinstance(storage, SecretStorage):
            raise ConfigError("storage must implement SecretStorage")
        if not isinstance(cache, SecretCache):
            raise ConfigError("cache must implement SecretCache")

        if not isinstance(iterations, int) or iterations < 1:
            raise ConfigError(f"iterations must be >= 1, got {iterations!r}")
        try:
            resolve_digest(digest)
        except KeyDerivationError as e:
            raise ConfigError(str(e)) from e
        if key_length not in AES_KEY_SIZES:
            raise ConfigError(f"key_length must be one of {AES_KEY_SIZES}, got {key_length!r}")
        if not isinstance(salt_length, int) or salt_length < MIN_SALT_SIZE:
            raise ConfigError(f"salt_length must be >= {MIN_SALT_SIZE}, got {salt_length!r}")
        if not isinstance(iv_length, int) or not MIN_IV_SIZE <= iv_length <= MAX_IV_SIZE:
            raise ConfigError(
                f"iv_length must be between {MIN_IV_SIZE} and {MAX_IV_SIZE}, got {iv_length!r}"
            )
        if not isinstance(cache_ttl_ms, int) or cache_ttl_ms < 0:
            raise ConfigError(f"cache_ttl_ms must be >= 0, got {cache_ttl_ms!r}")
        if secret_wrapper is not None and not callable(secret_wrapper):
            raise ConfigError("secret_wrapper must be callable")

        self._codec = EnvelopeCodec(encrypted_data_encoding)
        self._secret_encoding = check_secret_encoding(secret_encoding)

        self._master_key = SecureKey(raw_master_key)
        self._binding_key = cache_binding_key(self._master_key)
        self._storage = storage
        self._cache = cache
        self._cache_ttl_ms = cache_ttl_ms
        self._secret_wrapper = secret_wrapper
        self._executor = executor
        self._kdf_options: Dict[str, Any] = {
            "iterations": iterations,
            "key_length": key_length,
            "digest": digest,
        }
        self._salt_length = salt_length
        self._iv_length = iv_length

    @classmethod
    def from_config(
        cls,
        config: SecretholdConfig,
        *,
        storage: SecretStorage,
        cache: SecretCache,
        secret_wrapper: Optional[SecretWrapper] = None,
        executor: Optional[Executor] = None,
    ) -> Secrethold:
        """
        Create Secrethold from a SecretholdConfig.

        Args:
            config: Loaded options
            storage: Durable envelope storage
            cache: Plaintext cache
            secret_wrapper: Optional transform for get_secret results
            executor: Optional executor for crypto work

        Returns:
            Secrethold instance
        """
        return cls(
            config.master_key,
            storage=storage,
            cache=cache,
            iterations=config.iterations,
            digest=config.digest,
            key_length=config.key_length,
            salt_length=config.salt_length,
            iv_length=config.iv_length,
            encrypted_data_encoding=config.encrypted_data_encoding,
            secret_encoding=config.secret_encoding,
            cache_ttl_ms=config.cache_ttl_ms,
            secret_wrapper=secret_wrapper,
            executor=executor,
        )

    @property
    def codec(self) -> EnvelopeCodec:
        """Envelope codec used for storage values."""
        return self._codec

    @property
    def cache_ttl_ms(self) -> int:
        return self._cache_ttl_ms

    def __repr__(self) -> str:
        return (
            f"Secrethold(storage={type(self._storage).__name__}, "
            f"cache={type(self._cache).__name__}, master_key=[REDACTED])"
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def get_secret(self, secret_id: SecretId, pin: str) -> Optional[Any]:
        """
        Get a secret by id.

        Args:
            secret_id: Secret id
            pin: User PIN

        Returns:
            The (wrapped) secret, or None if nothing is stored for the id

        Raises:
            WrongPinError: If the PIN does not open the envelope
            MalformedEnvelopeError: If the stored envelope is corrupt
        """
        key = self._cache_key(secret_id)

        cached = await self._cache.read(key)
        if isinstance(cached, CachedSecret):
            if verify_pin_binding(self._binding_key, key, pin, cached.pin_binding):
                logger.debug("Cache hit for secret %s", key)
                return await self._wrap(cached.secret)
            logger.debug("Cached secret %s is bound to another PIN", key)
        else:
            logger.debug("Cache miss for secret %s", key)

        encrypted_data = await self._storage.read(secret_id)
        if encrypted_data is None:
            return None

        envelope = self._parse(key, encrypted_data)
        secret = await self._open(key, envelope, pin)
        await self._cache.write(key, self._cache_value(key, secret, pin), self._cache_ttl_ms)
        return await self._wrap(secret)

    async def set_secret(
        self,
        secret_id: SecretId,
        secret: Union[str, bytes, bytearray],
        pin: str,
        tx: Any = None,
    ) -> None:
        """
        Encrypt and store a secret, replacing any previous one.

        Args:
            secret_id: Secret id
            secret: Secret as text in ``secret_encoding``, or raw bytes
            pin: PIN protecting the secret
            tx: Opaque transaction handle forwarded to storage
        """
        key = self._cache_key(secret_id)
        plaintext = self._secret_bytes(secret)
        try:
            canonical = decode_text(plaintext, self._secret_encoding)
            encrypted_data = await self._seal(plaintext, pin)
        finally:
            _wipe(plaintext)

        await self._write_through(
            secret_id, key, encrypted_data, self._cache_value(key, canonical, pin), tx
        )
        logger.debug("Stored secret %s", key)

    async def change_pin(
        self,
        secret_id: SecretId,
        old_pin: str,
        new_pin: str,
        tx: Any = None,
    ) -> None:
        """
        Re-encrypt a stored secret under a new PIN.

        Args:
            secret_id: Secret id
            old_pin: Current PIN
            new_pin: Replacement PIN
            tx: Opaque transaction handle forwarded to storage

        Raises:
            WrongIdError: If nothing is stored for the id
            WrongPinError: If old_pin does not open the envelope
            MalformedEnvelopeError: If the stored envelope is corrupt
        """
        key = self._cache_key(secret_id)

        encrypted_data = await self._storage.read(secret_id)
        if encrypted_data is None:
            raise WrongIdError(f"Secrethold error: unknown id provided: {key}")

        envelope = self._parse(key, encrypted_data)
        secret = await self._open(key, envelope, old_pin)

        plaintext = bytearray(encode_text(secret, self._secret_encoding))
        try:
            new_encrypted_data = await self._seal(plaintext, new_pin)
        finally:
            _wipe(plaintext)

        await self._write_through(
            secret_id, key, new_encrypted_data, self._cache_value(key, secret, new_pin), tx
        )
        logger.debug("Changed PIN for secret %s", key)

    async def delete_secret(self, secret_id: SecretId, tx: Any = None) -> None:
        """
        Remove a secret from storage and cache. Unknown ids are not an error.

        Args:
            secret_id: Secret id
            tx: Opaque transaction handle forwarded to storage
        """
        key = self._cache_key(secret_id)
        results = await asyncio.gather(
            self._storage.delete(secret_id, tx),
            self._cache.delete(key),
            return_exceptions=True,
        )
        self._raise_first(results)
        logger.debug("Deleted secret %s", key)

    async def cached(self, secret_id: SecretId) -> bool:
        """Whether the secret's plaintext is currently cached. Never touches storage."""
        return await self._cache.contains(self._cache_key(secret_id))

    async def clean_cache(self) -> None:
        """Drop every cached plaintext."""
        await self._cache.clear()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _cache_key(secret_id: SecretId) -> str:
        return str(secret_id)

    def _cache_value(self, key: str, secret: str, pin: str) -> CachedSecret:
        return CachedSecret(secret=secret, pin_binding=pin_binding(self._binding_key, key, pin))

    def _secret_bytes(self, secret: Union[str, bytes, bytearray]) -> bytearray:
        if isinstance(secret, str):
            return bytearray(encode_text(secret, self._secret_encoding))
        if isinstance(secret, (bytes, bytearray)):
            return bytearray(secret)
        raise TypeError(f"Secret must be str or bytes, got {type(secret).__name__}")

    async def _run(self, func: Callable[..., T], *args: Any) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, functools.partial(func, *args))

    def _parse(self, key: str, encrypted_data: str) -> Envelope:
        try:
            return self._codec.parse(encrypted_data)
        except MalformedEnvelopeError:
            logger.warning("Malformed envelope stored for secret %s", key)
            raise

    async def _seal(self, plaintext: bytearray, pin: str) -> str:
        return await self._run(self._encrypt_sync, plaintext, pin)

    async def _open(self, key: str, envelope: Envelope, pin: str) -> str:
        try:
            return await self._run(self._decrypt_sync, envelope, pin)
        except (AuthenticationError, KeyDerivationError) as e:
            logger.warning("PIN verification failed for secret %s", key)
            raise WrongPinError(f"Secrethold error: wrong PIN for id {key}") from e
        except CipherConfigError as e:
            logger.warning("Malformed envelope stored for secret %s", key)
            raise MalformedEnvelopeError(f"Envelope for id {key} has invalid parameters") from e

    def _encrypt_sync(self, plaintext: bytearray, pin: str) -> str:
        envelope = encrypt_bytes(
            plaintext,
            self._master_key,
            pin,
            salt_length=self._salt_length,
            iv_length=self._iv_length,
            **self._kdf_options,
        )
        return self._codec.serialize(envelope)

    def _decrypt_sync(self, envelope: Envelope, pin: str) -> str:
        plaintext = decrypt_bytes(envelope, self._master_key, pin, **self._kdf_options)
        try:
            return decode_text(plaintext, self._secret_encoding)
        finally:
            _wipe(plaintext)

    async def _write_through(
        self,
        secret_id: SecretId,
        key: str,
        encrypted_data: str,
        cached: CachedSecret,
        tx: Any,
    ) -> None:
        results = await asyncio.gather(
            self._storage.write(secret_id, encrypted_data, tx),
            self._cache.write(key, cached, self._cache_ttl_ms),
            return_exceptions=True,
        )
        self._raise_first(results)

    @staticmethod
    def _raise_first(results: list) -> None:
        for result in results:
            if isinstance(result, BaseException):
                raise result

    async def _wrap(self, secret: str) -> Any:
        if self._secret_wrapper is None:
            return secret
        wrapped = self._secret_wrapper(secret)
        if inspect.isawaitable(wrapped):
            wrapped = await wrapped
        return wrapped
