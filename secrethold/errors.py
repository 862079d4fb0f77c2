"""
Exception classes for secrethold operations.

Every error raised by the library derives from SecretholdError. Errors that
callers are expected to branch on carry a stable ``code`` (see ErrorCodes).
"""

from __future__ import annotations

from typing import Optional


class ErrorCodes:
    """Error codes surfaced to callers."""

    WRONG_PIN = "WRONG_PIN"
    WRONG_ID = "WRONG_ID"


class SecretholdError(Exception):
    """Base exception for all secrethold operations."""

    code: Optional[str] = None


class ConfigError(SecretholdError):
    """Invalid construction option (master key length, digest, encodings...)."""

    pass


class CryptoError(SecretholdError):
    """Cryptographic operation failed."""

    pass


class KeyDerivationError(CryptoError):
    """PIN-to-key derivation failed or was asked for an unsupported digest."""

    pass


class AuthenticationError(CryptoError):
    """An authentication tag did not verify (wrong PIN or tampered data)."""

    pass


class CipherConfigError(CryptoError):
    """Malformed key or IV length, or misuse of a cipher stage."""

    pass


class SerializationError(SecretholdError):
    """Serialization or deserialization error."""

    pass


class MalformedEnvelopeError(SerializationError):
    """Stored envelope does not have five decodable fields."""

    pass


class StorageError(SecretholdError):
    """Storage backend error (database, in-memory, etc.)."""

    pass


class WrongPinError(SecretholdError):
    """The supplied PIN does not open the stored envelope."""

    code = ErrorCodes.WRONG_PIN


class WrongIdError(SecretholdError):
    """No envelope is stored for the id being mutated."""

    code = ErrorCodes.WRONG_ID
