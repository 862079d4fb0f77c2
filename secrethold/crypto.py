"""
Cryptographic primitives for PIN-protected secrets.

This module provides:
- SecureKey: Secure key wrapper with zeroization
- generate_random_bytes: CSPRNG helper for salts and IVs
- pin_to_key: PBKDF2 derivation of a symmetric key from a user PIN
- resolve_digest: Digest name to hash algorithm lookup
- pin_binding / verify_pin_binding: HMAC that ties a cached plaintext to its PIN
"""

from __future__ import annotations

import secrets
import unicodedata
from typing import Dict, Type

from cryptography.hazmat.primitives import hashes, hmac
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .errors import KeyDerivationError

# Cryptographic constants
AES_256_KEY_SIZE: int = 32  # 256 bits, required master key size
KEY_LENGTH: int = 32  # PIN-derived key length
NONCE_SIZE: int = 12  # 96 bits (standard for AES-GCM)
TAG_SIZE: int = 16  # 128 bits (authentication tag)
SALT_SIZE: int = 16
MIN_SALT_SIZE: int = 12
PIN_TO_KEY_ITERATIONS: int = 100_000
PIN_TO_KEY_DIGEST: str = "sha256"
CACHE_BINDING_CONTEXT: bytes = b"secrethold cache pin binding"

_DIGESTS: Dict[str, Type[hashes.HashAlgorithm]] = {
    "sha1": hashes.SHA1,
    "sha224": hashes.SHA224,
    "sha256": hashes.SHA256,
    "sha384": hashes.SHA384,
    "sha512": hashes.SHA512,
    "sha512_224": hashes.SHA512_224,
    "sha512_256": hashes.SHA512_256,
    "sha3_224": hashes.SHA3_224,
    "sha3_256": hashes.SHA3_256,
    "sha3_384": hashes.SHA3_384,
    "sha3_512": hashes.SHA3_512,
}


class SecureKey:
    """
    Secure key wrapper with explicit and automatic memory cleanup.

    Uses bytearray internally so the material can be zeroed in place.
    Note: Python may still hold copies elsewhere (e.g. inside cipher
    contexts), so this is best-effort zeroization.
    """

    __slots__ = ("_bytes",)

    def __init__(self, key_bytes: bytes | bytearray) -> None:
        """
        Create a SecureKey from raw bytes.

        Args:
            key_bytes: Raw key material
        """
        if not isinstance(key_bytes, (bytes, bytearray)):
            raise TypeError("Key must be bytes or bytearray")
        self._bytes = bytearray(key_bytes)

    @classmethod
    def generate(cls, length: int = AES_256_KEY_SIZE) -> SecureKey:
        """Generate a cryptographically secure random key."""
        return cls(secrets.token_bytes(length))

    def as_bytes(self) -> bytes:
        """Return key as immutable bytes."""
        return bytes(self._bytes)

    def zeroize(self) -> None:
        """Overwrite the key material with zeros."""
        for i in range(len(self._bytes)):
            self._bytes[i] = 0

    def __enter__(self) -> SecureKey:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.zeroize()

    def __len__(self) -> int:
        """Return key length in bytes."""
        return len(self._bytes)

    def __repr__(self) -> str:
        """Redacted representation to prevent accidental key disclosure."""
        return "SecureKey([REDACTED])"

    def __del__(self) -> None:
        if hasattr(self, "_bytes"):
            self.zeroize()


def generate_random_bytes(length: int) -> bytes:
    """
    Generate cryptographically secure random bytes.

    Args:
        length: Number of bytes to generate

    Returns:
        Random bytes of specified length
    """
    return secrets.token_bytes(length)


def resolve_digest(name: str) -> hashes.HashAlgorithm:
    """
    Map a digest name such as ``"sha256"`` or ``"SHA3-256"`` to a hash instance.

    Raises:
        KeyDerivationError: If the digest is not supported
    """
    if not isinstance(name, str):
        raise KeyDerivationError(f"Digest name must be a string, got {type(name).__name__}")
    algorithm = _DIGESTS.get(name.lower().replace("-", "_"))
    if algorithm is None:
        raise KeyDerivationError(f"Unsupported digest: {name}")
    return algorithm()


def pin_to_key(
    pin: str,
    salt: bytes,
    iterations: int = PIN_TO_KEY_ITERATIONS,
    key_length: int = KEY_LENGTH,
    digest: str = PIN_TO_KEY_DIGEST,
) -> SecureKey:
    """
    Derive a symmetric key from a PIN with PBKDF2-HMAC.

    The PIN is NFC-normalized first so that equivalent Unicode spellings
    derive the same key.

    Args:
        pin: User PIN (non-empty)
        salt: Random per-envelope salt
        iterations: PBKDF2 iteration count (>= 1)
        key_length: Output length in bytes (> 0)
        digest: Digest name, see resolve_digest

    Returns:
        Derived key as SecureKey

    Raises:
        KeyDerivationError: On invalid arguments or primitive failure
    """
    if not isinstance(pin, str) or not pin:
        raise KeyDerivationError("PIN must be a non-empty string")
    if not isinstance(iterations, int) or iterations < 1:
        raise KeyDerivationError(f"Iterations must be >= 1, got {iterations!r}")
    if not isinstance(key_length, int) or key_length <= 0:
        raise KeyDerivationError(f"Key length must be > 0, got {key_length!r}")

    algorithm = resolve_digest(digest)
    normalized = unicodedata.normalize("NFC", pin).encode("utf-8")

    try:
        kdf = PBKDF2HMAC(
            algorithm=algorithm,
            length=key_length,
            salt=bytes(salt),
            iterations=iterations,
        )
        return SecureKey(kdf.derive(normalized))
    except Exception as e:
        raise KeyDerivationError(f"Key derivation failed: {e}") from e


def hmac_sha256(key: bytes, data: bytes) -> bytes:
    """HMAC-SHA256 of ``data`` under ``key``."""
    h = hmac.HMAC(bytes(key), hashes.SHA256())
    h.update(data)
    return h.finalize()


def cache_binding_key(master_key: SecureKey) -> SecureKey:
    """Subkey of the master key used only to bind cache entries to a PIN."""
    return SecureKey(hmac_sha256(master_key.as_bytes(), CACHE_BINDING_CONTEXT))


def pin_binding(binding_key: SecureKey, secret_id: str, pin: str) -> bytes:
    """
    MAC tying a PIN to one secret id.

    Stored next to a cached plaintext so a cache hit can be checked against
    the PIN a caller presents, without keeping the PIN itself.

    Raises:
        KeyDerivationError: If the PIN is not a non-empty string
    """
    if not isinstance(pin, str) or not pin:
        raise KeyDerivationError("PIN must be a non-empty string")
    normalized = unicodedata.normalize("NFC", pin).encode("utf-8")
    return hmac_sha256(
        binding_key.as_bytes(),
        secret_id.encode("utf-8") + b"\x00" + normalized,
    )


def verify_pin_binding(
    binding_key: SecureKey, secret_id: str, pin: str, expected: bytes
) -> bool:
    """Constant-time check of a PIN against a stored binding."""
    try:
        actual = pin_binding(binding_key, secret_id, pin)
    except KeyDerivationError:
        return False
    return secrets.compare_digest(actual, bytes(expected))
