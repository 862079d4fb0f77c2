"""
Secrethold

Keep a secret at rest behind a user PIN. A secret can only be recovered by
someone who knows the PIN, even with access to the storage backend and the
process-wide master key.

Quick Start
-----------
```python
import asyncio
import secrets
from secrethold import InMemoryCache, InMemoryStorage, Secrethold

async def main():
    secrethold = Secrethold(
        secrets.token_bytes(32),
        storage=InMemoryStorage(),
        cache=InMemoryCache(),
    )

    await secrethold.set_secret(1, "secret message", "123456abcdef")
    assert await secrethold.get_secret(1, "123456abcdef") == "secret message"

    await secrethold.change_pin(1, "123456abcdef", "new_pin")
    await secrethold.delete_secret(1)

asyncio.run(main())
```

Key Features
------------
- **Double AES-GCM**: PIN layer nested inside a master-key layer, one tag each
- **PBKDF2 PIN keys**: Fresh salt per envelope, configurable digest/iterations
- **Fail-closed streaming**: No plaintext before both tags verify
- **Cache-aside reads, write-through writes**: Pluggable cache and storage
- **PostgreSQL Storage**: asyncpg backend with transaction pass-through
- **Memory Security**: Best-effort zeroization of derived keys and buffers

Stored format: ``pinSalt:iv:masterTag:pinTag:ciphertext`` (base64url, no padding).
"""

__version__ = "0.1.0"

# =============================================================================
# Crypto Exports
# =============================================================================

from .crypto import (
    AES_256_KEY_SIZE,
    KEY_LENGTH,
    NONCE_SIZE,
    PIN_TO_KEY_DIGEST,
    PIN_TO_KEY_ITERATIONS,
    SALT_SIZE,
    TAG_SIZE,
    SecureKey,
    generate_random_bytes,
    pin_to_key,
)

from .cipher import (
    AeadStage,
    DecryptionPipeline,
    EncryptedStream,
    EncryptionPipeline,
    decrypt_bytes,
    decrypt_envelope,
    encrypt_bytes,
    encrypt_envelope,
)

from .codec import (
    Envelope,
    EnvelopeCodec,
    decode_text,
    encode_text,
)

# =============================================================================
# Error Exports
# =============================================================================

from .errors import (
    AuthenticationError,
    CipherConfigError,
    ConfigError,
    CryptoError,
    ErrorCodes,
    KeyDerivationError,
    MalformedEnvelopeError,
    SecretholdError,
    SerializationError,
    StorageError,
    WrongIdError,
    WrongPinError,
)

# =============================================================================
# Backend Exports
# =============================================================================

from .cache import CachedSecret, InMemoryCache, SecretCache
from .storage import InMemoryStorage, MemoryTransaction, SecretStorage
from .postgres import PostgresStorage, StoredEnvelope

# =============================================================================
# Service Exports (Primary API)
# =============================================================================

from .config import SecretholdConfig
from .service import Secrethold

# =============================================================================
# Public API
# =============================================================================

__all__ = [
    # Version
    "__version__",
    # Crypto
    "AES_256_KEY_SIZE",
    "KEY_LENGTH",
    "NONCE_SIZE",
    "PIN_TO_KEY_DIGEST",
    "PIN_TO_KEY_ITERATIONS",
    "SALT_SIZE",
    "TAG_SIZE",
    "SecureKey",
    "generate_random_bytes",
    "pin_to_key",
    # Cipher
    "AeadStage",
    "EncryptionPipeline",
    "DecryptionPipeline",
    "EncryptedStream",
    "encrypt_envelope",
    "decrypt_envelope",
    "encrypt_bytes",
    "decrypt_bytes",
    # Codec
    "Envelope",
    "EnvelopeCodec",
    "encode_text",
    "decode_text",
    # Errors
    "ErrorCodes",
    "SecretholdError",
    "ConfigError",
    "CryptoError",
    "KeyDerivationError",
    "AuthenticationError",
    "CipherConfigError",
    "SerializationError",
    "MalformedEnvelopeError",
    "StorageError",
    "WrongPinError",
    "WrongIdError",
    # Backends
    "SecretCache",
    "CachedSecret",
    "InMemoryCache",
    "SecretStorage",
    "InMemoryStorage",
    "MemoryTransaction",
    "PostgresStorage",
    "StoredEnvelope",
    # Service
    "SecretholdConfig",
    "Secrethold",
]
