"""
Tests for the streaming double AES-GCM layer.
"""

import pytest
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from secrethold import (
    AuthenticationError,
    CipherConfigError,
    DecryptionPipeline,
    EncryptionPipeline,
    Envelope,
    decrypt_bytes,
    decrypt_envelope,
    encrypt_bytes,
    encrypt_envelope,
    pin_to_key,
)

MASTER_KEY = bytes(32)
PIN = "123456"
KDF = {"iterations": 1_000}


def _char_chunks(char: bytes, times: int):
    for _ in range(times):
        yield char


def _decrypt_all(envelope: Envelope, pin: str = PIN, master_key: bytes = MASTER_KEY) -> bytes:
    return bytes(decrypt_bytes(envelope, master_key, pin, **KDF))


class TestRoundTrip:
    @pytest.mark.parametrize(
        "plaintext",
        [b"", b"x", b"secret message", bytes(range(256)) * 1000],
    )
    def test_bytes_round_trip(self, plaintext):
        envelope = encrypt_bytes(plaintext, MASTER_KEY, PIN, **KDF)
        assert _decrypt_all(envelope) == plaintext

    def test_streaming_source(self):
        """A generator of small chunks encrypts and decrypts as a stream."""
        stream = encrypt_envelope(_char_chunks(b"A", 10_000), MASTER_KEY, PIN, **KDF)
        ciphertext_chunks = list(stream)
        ciphertext = b"".join(ciphertext_chunks)

        decrypted = decrypt_envelope(
            iter(ciphertext_chunks),
            MASTER_KEY,
            PIN,
            stream.pin_salt,
            stream.iv,
            stream.master_tag,
            stream.pin_tag,
            **KDF,
        )
        assert b"".join(decrypted) == b"A" * 10_000
        assert len(ciphertext) == 10_000

    def test_factory_source(self):
        envelope = encrypt_bytes(b"factory", MASTER_KEY, PIN, **KDF)
        decrypted = decrypt_envelope(
            lambda: [envelope.ciphertext[:3], envelope.ciphertext[3:]],
            MASTER_KEY,
            PIN,
            envelope.pin_salt,
            envelope.iv,
            envelope.master_tag,
            envelope.pin_tag,
            **KDF,
        )
        assert b"".join(decrypted) == b"factory"

    def test_fresh_salt_and_iv(self):
        first = encrypt_bytes(b"same", MASTER_KEY, PIN, **KDF)
        second = encrypt_bytes(b"same", MASTER_KEY, PIN, **KDF)
        assert first.pin_salt != second.pin_salt
        assert first.iv != second.iv
        assert first.ciphertext != second.ciphertext

    def test_header_lengths(self):
        envelope = encrypt_bytes(b"data", MASTER_KEY, PIN, salt_length=20, iv_length=16, **KDF)
        assert len(envelope.pin_salt) == 20
        assert len(envelope.iv) == 16
        assert len(envelope.master_tag) == 16
        assert len(envelope.pin_tag) == 16


class TestLayering:
    def test_master_layer_is_outer(self):
        """Peeling the master layer alone yields PIN-layer ciphertext, not plaintext."""
        plaintext = b"secret message"
        envelope = encrypt_bytes(plaintext, MASTER_KEY, PIN, **KDF)

        inner = AESGCM(MASTER_KEY).decrypt(
            envelope.iv, envelope.ciphertext + envelope.master_tag, None
        )
        assert inner != plaintext

        pin_key = pin_to_key(PIN, envelope.pin_salt, **KDF)
        recovered = AESGCM(pin_key.as_bytes()).decrypt(envelope.iv, inner + envelope.pin_tag, None)
        assert recovered == plaintext

    def test_pipelines_are_inverse(self):
        iv = b"\x07" * 12
        pin_key = b"\x01" * 32
        encryptor = EncryptionPipeline(MASTER_KEY, pin_key, iv)
        ciphertext = encryptor.update(b"hello ") + encryptor.update(b"world")
        master_tag, pin_tag = encryptor.finalize()

        decryptor = DecryptionPipeline(MASTER_KEY, pin_key, iv)
        plaintext = decryptor.update(ciphertext)
        decryptor.finalize(master_tag, pin_tag)
        assert plaintext == b"hello world"

    def test_decrypting_stage_requires_tag(self):
        decryptor = DecryptionPipeline(MASTER_KEY, b"\x01" * 32, b"\x00" * 12)
        with pytest.raises(CipherConfigError):
            decryptor.finalize(None, None)

    def test_finalize_only_once(self):
        pipeline = EncryptionPipeline(MASTER_KEY, b"\x01" * 32, b"\x00" * 12)
        pipeline.finalize()
        with pytest.raises(CipherConfigError):
            pipeline.finalize()
        with pytest.raises(CipherConfigError):
            pipeline.update(b"late")


class TestFailClosed:
    def test_wrong_pin(self):
        envelope = encrypt_bytes(b"secret", MASTER_KEY, PIN, **KDF)
        with pytest.raises(AuthenticationError):
            _decrypt_all(envelope, pin="654321")

    def test_wrong_master_key(self):
        envelope = encrypt_bytes(b"secret", MASTER_KEY, PIN, **KDF)
        with pytest.raises(AuthenticationError):
            _decrypt_all(envelope, master_key=b"\x01" * 32)

    @pytest.mark.parametrize("field", ["ciphertext", "master_tag", "pin_tag", "iv", "pin_salt"])
    def test_tampered_field(self, field):
        envelope = encrypt_bytes(b"secret message", MASTER_KEY, PIN, **KDF)
        value = bytearray(getattr(envelope, field))
        value[0] ^= 0x01
        tampered = Envelope(**{**envelope.__dict__, field: bytes(value)})
        with pytest.raises(AuthenticationError):
            _decrypt_all(tampered)

    def test_no_plaintext_released_before_verification(self):
        """The error is raised at call time, before any chunk can be consumed."""
        envelope = encrypt_bytes(b"A" * 200_000, MASTER_KEY, PIN, **KDF)
        ciphertext = bytearray(envelope.ciphertext)
        ciphertext[-1] ^= 0x01

        released = []
        with pytest.raises(AuthenticationError):
            for chunk in decrypt_envelope(
                bytes(ciphertext),
                MASTER_KEY,
                PIN,
                envelope.pin_salt,
                envelope.iv,
                envelope.master_tag,
                envelope.pin_tag,
                **KDF,
            ):
                released.append(chunk)
        assert released == []

    @pytest.mark.parametrize("field", ["master_tag", "pin_tag"])
    def test_wrong_tag_length_is_config_error(self, field):
        envelope = encrypt_bytes(b"secret", MASTER_KEY, PIN, **KDF)
        short = Envelope(**{**envelope.__dict__, field: getattr(envelope, field)[:8]})
        with pytest.raises(CipherConfigError):
            _decrypt_all(short)

    def test_factory_read_once(self):
        """Plaintext comes from the verified bytes even if the source changes later."""
        envelope = encrypt_bytes(b"A" * 1000, MASTER_KEY, PIN, **KDF)
        calls = []

        def factory():
            calls.append(1)
            data = bytearray(envelope.ciphertext)
            if len(calls) > 1:
                data[0] ^= 0x01
            return [bytes(data)]

        decrypted = decrypt_envelope(
            factory,
            MASTER_KEY,
            PIN,
            envelope.pin_salt,
            envelope.iv,
            envelope.master_tag,
            envelope.pin_tag,
            **KDF,
        )
        assert b"".join(decrypted) == b"A" * 1000
        assert len(calls) == 1

    def test_buffer_mutated_after_verification(self):
        envelope = encrypt_bytes(b"B" * 200_000, MASTER_KEY, PIN, **KDF)
        buffer = bytearray(envelope.ciphertext)
        decrypted = decrypt_envelope(
            buffer,
            MASTER_KEY,
            PIN,
            envelope.pin_salt,
            envelope.iv,
            envelope.master_tag,
            envelope.pin_tag,
            **KDF,
        )
        buffer[0] ^= 0x01
        assert b"".join(decrypted) == b"B" * 200_000


class TestAbortedStream:
    def test_tags_unavailable_until_drained(self):
        stream = encrypt_envelope(b"x" * 200_000, MASTER_KEY, PIN, **KDF)
        chunks = iter(stream)
        next(chunks)
        assert not stream.complete
        with pytest.raises(CipherConfigError):
            stream.master_tag
        with pytest.raises(CipherConfigError):
            stream.to_envelope(b"partial")

    def test_stream_consumed_once(self):
        stream = encrypt_envelope(b"data", MASTER_KEY, PIN, **KDF)
        list(stream)
        assert stream.complete
        with pytest.raises(CipherConfigError):
            iter(stream)


class TestConfigErrors:
    def test_bad_master_key_length(self):
        with pytest.raises(CipherConfigError):
            encrypt_bytes(b"data", b"short", PIN, **KDF)

    def test_bad_iv_length(self):
        with pytest.raises(CipherConfigError):
            encrypt_bytes(b"data", MASTER_KEY, PIN, iv_length=4, **KDF)

    def test_salt_too_short(self):
        with pytest.raises(CipherConfigError):
            encrypt_bytes(b"data", MASTER_KEY, PIN, salt_length=8, **KDF)
