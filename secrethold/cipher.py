"""
Streaming double AES-GCM layer.

This module provides:
- AeadStage: One authenticated AES-GCM context with an explicit finalize
- EncryptionPipeline / DecryptionPipeline: The PIN layer nested inside the master layer
- EncryptedStream: Lazily encrypted ciphertext chunks plus the envelope header
- encrypt_envelope / decrypt_envelope: Streaming entry points
- encrypt_bytes / decrypt_bytes: Buffered helpers for small in-memory secrets

Layering:
- Encrypt: plaintext -> PIN stage (PIN-derived key) -> master stage (master key)
- Decrypt: ciphertext -> master stage -> PIN stage
- Both stages share the IV; the keys differ. Each stage produces its own tag.

Decryption is fail-closed: both tags are verified over the whole ciphertext
before the first plaintext chunk is released, and the released plaintext is
decrypted from the same spooled bytes that were verified.
"""

from __future__ import annotations

import tempfile
from typing import BinaryIO, Callable, Iterable, Iterator, Optional, Tuple, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from .codec import Envelope
from .crypto import (
    KEY_LENGTH,
    MIN_SALT_SIZE,
    NONCE_SIZE,
    PIN_TO_KEY_DIGEST,
    PIN_TO_KEY_ITERATIONS,
    SALT_SIZE,
    TAG_SIZE,
    SecureKey,
    generate_random_bytes,
    pin_to_key,
)
from .errors import AuthenticationError, CipherConfigError

CHUNK_SIZE: int = 64 * 1024
SPOOL_MAX_SIZE: int = 1024 * 1024
AES_KEY_SIZES = (16, 24, 32)

BytesLike = Union[bytes, bytearray, memoryview]
ChunkSource = Union[BytesLike, Iterable[bytes], Callable[[], Iterable[bytes]]]
KeyMaterial = Union[SecureKey, bytes, bytearray]


def iter_chunks(source: ChunkSource, chunk_size: int = CHUNK_SIZE) -> Iterator[bytes]:
    """Yield byte chunks from a buffer, an iterable of chunks, or a chunk factory."""
    if isinstance(source, (bytes, bytearray, memoryview)):
        view = memoryview(source)
        for start in range(0, len(view), chunk_size):
            yield bytes(view[start : start + chunk_size])
        return

    if callable(source):
        source = source()

    for chunk in source:
        if chunk:
            yield bytes(chunk)


def _key_bytes(key: KeyMaterial) -> bytes:
    raw = key.as_bytes() if isinstance(key, SecureKey) else bytes(key)
    if len(raw) not in AES_KEY_SIZES:
        raise CipherConfigError(
            f"Invalid key size: expected one of {AES_KEY_SIZES}, got {len(raw)}"
        )
    return raw


def _check_tag_length(name: str, tag: bytes) -> None:
    if len(tag) != TAG_SIZE:
        raise CipherConfigError(
            f"Invalid {name} tag size: expected {TAG_SIZE}, got {len(tag)}"
        )


class AeadStage:
    """
    A single AES-GCM context.

    ``finalize`` must be called exactly once after the last ``update``. For an
    encrypting stage it returns the authentication tag; for a decrypting
    stage it verifies the supplied tag. GCM is a stream mode, so ``update``
    returns exactly as many bytes as it is given and finalize emits none.
    """

    def __init__(self, key: KeyMaterial, iv: bytes, *, encrypt: bool) -> None:
        try:
            cipher = Cipher(algorithms.AES(_key_bytes(key)), modes.GCM(bytes(iv)))
        except ValueError as e:
            raise CipherConfigError(f"Invalid cipher parameters: {e}") from e

        self._encrypt = encrypt
        self._ctx = cipher.encryptor() if encrypt else cipher.decryptor()
        self._finalized = False

    @property
    def finalized(self) -> bool:
        return self._finalized

    def update(self, chunk: bytes) -> bytes:
        if self._finalized:
            raise CipherConfigError("Cipher stage already finalized")
        return self._ctx.update(chunk)

    def finalize(self, tag: Optional[bytes] = None) -> bytes:
        """
        Close the stage.

        Args:
            tag: Expected tag (decrypting stages only)

        Returns:
            The authentication tag

        Raises:
            AuthenticationError: If a decrypting stage's tag does not verify
            CipherConfigError: If the stage was already finalized, or the tag
                is missing or not TAG_SIZE bytes
        """
        if self._finalized:
            raise CipherConfigError("Cipher stage already finalized")
        self._finalized = True

        if self._encrypt:
            self._ctx.finalize()
            return self._ctx.tag

        if tag is None:
            raise CipherConfigError("Decrypting stage needs a tag to finalize")
        _check_tag_length("authentication", tag)
        try:
            self._ctx.finalize_with_tag(bytes(tag))
        except InvalidTag:
            # Generic error to prevent oracle attacks
            raise AuthenticationError("Authentication failed") from None
        return bytes(tag)


class EncryptionPipeline:
    """PIN stage feeding the master stage."""

    def __init__(self, master_key: KeyMaterial, pin_key: KeyMaterial, iv: bytes) -> None:
        self._pin_stage = AeadStage(pin_key, iv, encrypt=True)
        self._master_stage = AeadStage(master_key, iv, encrypt=True)

    def update(self, chunk: bytes) -> bytes:
        return self._master_stage.update(self._pin_stage.update(chunk))

    def finalize(self) -> Tuple[bytes, bytes]:
        """Return ``(master_tag, pin_tag)``."""
        pin_tag = self._pin_stage.finalize()
        master_tag = self._master_stage.finalize()
        return master_tag, pin_tag


class DecryptionPipeline:
    """Master stage feeding the PIN stage."""

    def __init__(self, master_key: KeyMaterial, pin_key: KeyMaterial, iv: bytes) -> None:
        self._master_stage = AeadStage(master_key, iv, encrypt=False)
        self._pin_stage = AeadStage(pin_key, iv, encrypt=False)

    def update(self, chunk: bytes) -> bytes:
        return self._pin_stage.update(self._master_stage.update(chunk))

    def finalize(self, master_tag: bytes, pin_tag: bytes) -> None:
        """Verify both layers; either failing raises AuthenticationError."""
        failed = False
        for stage, tag in ((self._master_stage, master_tag), (self._pin_stage, pin_tag)):
            try:
                stage.finalize(tag)
            except AuthenticationError:
                failed = True
        if failed:
            raise AuthenticationError("Authentication failed")


class EncryptedStream:
    """
    Ciphertext produced lazily from a plaintext source.

    Iterate once to receive ciphertext chunks. The tags only exist after the
    source has been fully consumed, which is when the pipeline is finalized;
    a stream abandoned part-way can therefore never be turned into an
    envelope.
    """

    def __init__(
        self,
        source: ChunkSource,
        pipeline: EncryptionPipeline,
        pin_key: SecureKey,
        pin_salt: bytes,
        iv: bytes,
    ) -> None:
        self.pin_salt = pin_salt
        self.iv = iv
        self._source = source
        self._pipeline = pipeline
        self._pin_key = pin_key
        self._tags: Optional[Tuple[bytes, bytes]] = None
        self._started = False

    def __iter__(self) -> Iterator[bytes]:
        if self._started:
            raise CipherConfigError("Encrypted stream can only be consumed once")
        self._started = True
        return self._generate()

    def _generate(self) -> Iterator[bytes]:
        try:
            for chunk in iter_chunks(self._source):
                out = self._pipeline.update(chunk)
                if out:
                    yield out
            self._tags = self._pipeline.finalize()
        finally:
            self._pin_key.zeroize()

    @property
    def complete(self) -> bool:
        return self._tags is not None

    def _require_tags(self) -> Tuple[bytes, bytes]:
        if self._tags is None:
            raise CipherConfigError("Encrypted stream has not been fully consumed")
        return self._tags

    @property
    def master_tag(self) -> bytes:
        return self._require_tags()[0]

    @property
    def pin_tag(self) -> bytes:
        return self._require_tags()[1]

    def to_envelope(self, ciphertext: bytes) -> Envelope:
        """Combine the drained ciphertext with this stream's header fields."""
        master_tag, pin_tag = self._require_tags()
        return Envelope(
            pin_salt=self.pin_salt,
            iv=self.iv,
            master_tag=master_tag,
            pin_tag=pin_tag,
            ciphertext=bytes(ciphertext),
        )


def encrypt_envelope(
    plaintext_source: ChunkSource,
    master_key: KeyMaterial,
    pin: str,
    *,
    iterations: int = PIN_TO_KEY_ITERATIONS,
    key_length: int = KEY_LENGTH,
    digest: str = PIN_TO_KEY_DIGEST,
    salt_length: int = SALT_SIZE,
    iv_length: int = NONCE_SIZE,
) -> EncryptedStream:
    """
    Start encrypting a plaintext source under the master key and a PIN.

    A fresh salt and IV are drawn for every call.

    Returns:
        EncryptedStream carrying pin_salt and iv; tags after draining

    Raises:
        KeyDerivationError: If the PIN key cannot be derived
        CipherConfigError: On bad key, salt or IV lengths
    """
    if salt_length < MIN_SALT_SIZE:
        raise CipherConfigError(
            f"Salt length must be at least {MIN_SALT_SIZE} bytes, got {salt_length}"
        )

    pin_salt = generate_random_bytes(salt_length)
    iv = generate_random_bytes(iv_length)
    pin_key = pin_to_key(pin, pin_salt, iterations, key_length, digest)
    try:
        pipeline = EncryptionPipeline(master_key, pin_key, iv)
    except BaseException:
        pin_key.zeroize()
        raise
    return EncryptedStream(plaintext_source, pipeline, pin_key, pin_salt, iv)


def _read_spool(spool: BinaryIO) -> Iterator[bytes]:
    spool.seek(0)
    while True:
        chunk = spool.read(CHUNK_SIZE)
        if not chunk:
            return
        yield chunk


def decrypt_envelope(
    ciphertext_source: ChunkSource,
    master_key: KeyMaterial,
    pin: str,
    pin_salt: bytes,
    iv: bytes,
    master_tag: bytes,
    pin_tag: bytes,
    *,
    iterations: int = PIN_TO_KEY_ITERATIONS,
    key_length: int = KEY_LENGTH,
    digest: str = PIN_TO_KEY_DIGEST,
) -> Iterator[bytes]:
    """
    Verify and decrypt a ciphertext source.

    The source is read exactly once. While both layers are authenticated,
    the ciphertext is copied to a spool (memory up to SPOOL_MAX_SIZE, then a
    temporary file); plaintext is later decrypted from that spool only, so
    what is released is exactly what was verified.

    Raises:
        AuthenticationError: If either tag fails (wrong PIN or tampering)
        KeyDerivationError: If the PIN key cannot be derived
        CipherConfigError: On bad key, IV or tag lengths
    """
    _check_tag_length("master", master_tag)
    _check_tag_length("pin", pin_tag)

    spool = tempfile.SpooledTemporaryFile(max_size=SPOOL_MAX_SIZE)
    pin_key: Optional[SecureKey] = None
    try:
        pin_key = pin_to_key(pin, pin_salt, iterations, key_length, digest)
        verifier = DecryptionPipeline(master_key, pin_key, iv)
        for chunk in iter_chunks(ciphertext_source):
            spool.write(chunk)
            verifier.update(chunk)
        verifier.finalize(master_tag, pin_tag)
    except BaseException:
        if pin_key is not None:
            pin_key.zeroize()
        spool.close()
        raise

    return _release_plaintext(spool, master_key, pin_key, iv, master_tag, pin_tag)


def _release_plaintext(
    spool: BinaryIO,
    master_key: KeyMaterial,
    pin_key: SecureKey,
    iv: bytes,
    master_tag: bytes,
    pin_tag: bytes,
) -> Iterator[bytes]:
    try:
        pipeline = DecryptionPipeline(master_key, pin_key, iv)
        for chunk in _read_spool(spool):
            out = pipeline.update(chunk)
            if out:
                yield out
        pipeline.finalize(master_tag, pin_tag)
    finally:
        pin_key.zeroize()
        spool.close()


def encrypt_bytes(
    plaintext: BytesLike,
    master_key: KeyMaterial,
    pin: str,
    **options: int | str,
) -> Envelope:
    """Encrypt an in-memory secret and return the complete envelope."""
    stream = encrypt_envelope(plaintext, master_key, pin, **options)  # type: ignore[arg-type]
    ciphertext = b"".join(stream)
    return stream.to_envelope(ciphertext)


def decrypt_bytes(
    envelope: Envelope,
    master_key: KeyMaterial,
    pin: str,
    **options: int | str,
) -> bytearray:
    """
    Decrypt an envelope into a mutable buffer.

    The caller owns the returned bytearray and should zero it when done.
    """
    plaintext = bytearray()
    for chunk in decrypt_envelope(
        envelope.ciphertext,
        master_key,
        pin,
        envelope.pin_salt,
        envelope.iv,
        envelope.master_tag,
        envelope.pin_tag,
        **options,  # type: ignore[arg-type]
    ):
        plaintext += chunk
    return plaintext
