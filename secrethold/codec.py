"""
Envelope serialization.

This module provides:
- Envelope: The five byte fields needed to decrypt a secret later
- EnvelopeCodec: ``pinSalt:iv:masterTag:pinTag:ciphertext`` text form
- encode_text / decode_text: Text encodings for plaintext secrets
"""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass, fields
from typing import Callable, Dict, Tuple

from .errors import ConfigError, MalformedEnvelopeError, SerializationError

DELIMITER = ":"
FIELD_COUNT = 5

DEFAULT_ENCRYPTED_DATA_ENCODING = "base64url"
DEFAULT_SECRET_ENCODING = "utf8"


@dataclass(frozen=True)
class Envelope:
    """Persisted unit: everything needed to decrypt one secret."""

    pin_salt: bytes
    iv: bytes
    master_tag: bytes
    pin_tag: bytes
    ciphertext: bytes

    def __post_init__(self) -> None:
        for f in fields(self):
            if not isinstance(getattr(self, f.name), bytes):
                raise MalformedEnvelopeError(f"Envelope field {f.name} must be bytes")
        for name in ("pin_salt", "iv", "master_tag", "pin_tag"):
            if not getattr(self, name):
                raise MalformedEnvelopeError(f"Envelope field {name} is empty")

    def as_tuple(self) -> Tuple[bytes, bytes, bytes, bytes, bytes]:
        """Fields in wire order."""
        return (self.pin_salt, self.iv, self.master_tag, self.pin_tag, self.ciphertext)


def _b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64url_decode(text: str) -> bytes:
    if "+" in text or "/" in text:
        raise ValueError("standard base64 characters in base64url field")
    padded = text + "=" * (-len(text) % 4)
    return base64.b64decode(padded, altchars=b"-_", validate=True)


def _b64_encode(data: bytes) -> str:
    return base64.standard_b64encode(data).decode("ascii")


def _b64_decode(text: str) -> bytes:
    return base64.b64decode(text, validate=True)


def _hex_encode(data: bytes) -> str:
    return data.hex()


def _hex_decode(text: str) -> bytes:
    return bytes.fromhex(text)


_BINARY_ENCODINGS: Dict[str, Tuple[Callable[[bytes], str], Callable[[str], bytes]]] = {
    "base64url": (_b64url_encode, _b64url_decode),
    "base64": (_b64_encode, _b64_decode),
    "hex": (_hex_encode, _hex_decode),
}

_CHARSET_ENCODINGS: Dict[str, str] = {
    "utf8": "utf-8",
    "utf-8": "utf-8",
    "ascii": "ascii",
    "latin1": "latin-1",
    "latin-1": "latin-1",
}

SECRET_ENCODINGS = tuple(_CHARSET_ENCODINGS) + tuple(_BINARY_ENCODINGS)
ENCRYPTED_DATA_ENCODINGS = tuple(_BINARY_ENCODINGS)


def check_secret_encoding(encoding: str) -> str:
    """Validate a plaintext secret encoding name."""
    if encoding not in SECRET_ENCODINGS:
        raise ConfigError(
            f"Unsupported secret encoding: {encoding!r} (expected one of {', '.join(SECRET_ENCODINGS)})"
        )
    return encoding


def encode_text(value: str, encoding: str = DEFAULT_SECRET_ENCODING) -> bytes:
    """
    Turn a secret string into bytes.

    For ``utf8``/``ascii``/``latin1`` the string is encoded with that charset;
    for ``base64``/``base64url``/``hex`` the string is decoded from that
    representation.
    """
    check_secret_encoding(encoding)
    try:
        if encoding in _CHARSET_ENCODINGS:
            return value.encode(_CHARSET_ENCODINGS[encoding])
        return _BINARY_ENCODINGS[encoding][1](value)
    except (binascii.Error, ValueError) as e:
        raise SerializationError(f"Secret is not valid {encoding}") from e


def decode_text(data: bytes | bytearray, encoding: str = DEFAULT_SECRET_ENCODING) -> str:
    """Inverse of encode_text."""
    check_secret_encoding(encoding)
    try:
        if encoding in _CHARSET_ENCODINGS:
            return bytes(data).decode(_CHARSET_ENCODINGS[encoding])
        return _BINARY_ENCODINGS[encoding][0](bytes(data))
    except ValueError as e:
        raise SerializationError(f"Secret bytes are not valid {encoding}") from e


class EnvelopeCodec:
    """
    Serialize envelopes to a single colon-delimited text value.

    Field order is fixed: ``pinSalt:iv:masterTag:pinTag:ciphertext``. Each field
    is encoded independently; none of the supported alphabets contains ``:``.
    """

    def __init__(self, encoding: str = DEFAULT_ENCRYPTED_DATA_ENCODING) -> None:
        if encoding not in _BINARY_ENCODINGS:
            raise ConfigError(
                f"Unsupported encrypted data encoding: {encoding!r} "
                f"(expected one of {', '.join(ENCRYPTED_DATA_ENCODINGS)})"
            )
        self._encoding = encoding
        self._encode, self._decode = _BINARY_ENCODINGS[encoding]

    @property
    def encoding(self) -> str:
        return self._encoding

    def serialize(self, envelope: Envelope) -> str:
        """Encode an envelope as ``pinSalt:iv:masterTag:pinTag:ciphertext``."""
        return DELIMITER.join(self._encode(part) for part in envelope.as_tuple())

    def parse(self, encrypted_data: str) -> Envelope:
        """
        Decode the text form produced by serialize.

        Raises:
            MalformedEnvelopeError: Wrong field count or undecodable field
        """
        if not isinstance(encrypted_data, str):
            raise MalformedEnvelopeError(
                f"Encrypted data must be str, got {type(encrypted_data).__name__}"
            )

        parts = encrypted_data.split(DELIMITER)
        if len(parts) != FIELD_COUNT:
            raise MalformedEnvelopeError(
                f"Expected {FIELD_COUNT} envelope fields, got {len(parts)}"
            )

        decoded = []
        for name, part in zip(("pin_salt", "iv", "master_tag", "pin_tag", "ciphertext"), parts):
            try:
                decoded.append(self._decode(part))
            except (binascii.Error, ValueError) as e:
                raise MalformedEnvelopeError(
                    f"Envelope field {name} is not valid {self._encoding}"
                ) from e

        return Envelope(*decoded)
