"""
Construction options for Secrethold.

Options can be given directly or loaded from the environment (and an optional
.env file):

    SECRETHOLD_MASTER_KEY = <base64-encoded 32-byte key>   (required)
    SECRETHOLD_ITERATIONS, SECRETHOLD_DIGEST, SECRETHOLD_KEY_LENGTH,
    SECRETHOLD_SALT_LENGTH, SECRETHOLD_IV_LENGTH,
    SECRETHOLD_ENCRYPTED_DATA_ENCODING, SECRETHOLD_SECRET_ENCODING,
    SECRETHOLD_CACHE_TTL_MS

Security Note:
    Never log key material.
"""

from __future__ import annotations

import base64
import binascii
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional, Union

from dotenv import load_dotenv

from .cache import DEFAULT_CACHE_TTL_MS
from .codec import DEFAULT_ENCRYPTED_DATA_ENCODING, DEFAULT_SECRET_ENCODING
from .crypto import (
    KEY_LENGTH,
    NONCE_SIZE,
    PIN_TO_KEY_DIGEST,
    PIN_TO_KEY_ITERATIONS,
    SALT_SIZE,
)
from .errors import ConfigError

logger = logging.getLogger(__name__)

ENV_PREFIX = "SECRETHOLD_"


@dataclass
class SecretholdConfig:
    """Options recognized by Secrethold."""

    master_key: bytes = field(repr=False)
    iterations: int = PIN_TO_KEY_ITERATIONS
    digest: str = PIN_TO_KEY_DIGEST
    key_length: int = KEY_LENGTH
    salt_length: int = SALT_SIZE
    iv_length: int = NONCE_SIZE
    encrypted_data_encoding: str = DEFAULT_ENCRYPTED_DATA_ENCODING
    secret_encoding: str = DEFAULT_SECRET_ENCODING
    cache_ttl_ms: int = DEFAULT_CACHE_TTL_MS

    @classmethod
    def from_env(
        cls,
        env_file: Optional[Union[str, Path]] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> SecretholdConfig:
        """
        Build a config from environment variables.

        Args:
            env_file: Optional .env file loaded first (existing variables win)
            environ: Mapping to read instead of os.environ

        Raises:
            ConfigError: If the master key is missing or a value is invalid
        """
        if environ is None:
            load_dotenv(env_file)
            environ = os.environ

        raw_key = environ.get(f"{ENV_PREFIX}MASTER_KEY")
        if not raw_key:
            raise ConfigError(
                f"{ENV_PREFIX}MASTER_KEY must be set to a base64-encoded 32-byte key"
            )
        try:
            master_key = base64.b64decode(raw_key, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ConfigError(f"{ENV_PREFIX}MASTER_KEY is not valid base64") from e

        def _int(name: str, default: int) -> int:
            value = environ.get(f"{ENV_PREFIX}{name}")
            if value is None or value == "":
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigError(f"{ENV_PREFIX}{name} must be an integer, got {value!r}") from e

        def _str(name: str, default: str) -> str:
            return environ.get(f"{ENV_PREFIX}{name}") or default

        config = cls(
            master_key=master_key,
            iterations=_int("ITERATIONS", PIN_TO_KEY_ITERATIONS),
            digest=_str("DIGEST", PIN_TO_KEY_DIGEST),
            key_length=_int("KEY_LENGTH", KEY_LENGTH),
            salt_length=_int("SALT_LENGTH", SALT_SIZE),
            iv_length=_int("IV_LENGTH", NONCE_SIZE),
            encrypted_data_encoding=_str(
                "ENCRYPTED_DATA_ENCODING", DEFAULT_ENCRYPTED_DATA_ENCODING
            ),
            secret_encoding=_str("SECRET_ENCODING", DEFAULT_SECRET_ENCODING),
            cache_ttl_ms=_int("CACHE_TTL_MS", DEFAULT_CACHE_TTL_MS),
        )
        logger.debug(
            "Loaded secrethold config: iterations=%d digest=%s cache_ttl_ms=%d",
            config.iterations,
            config.digest,
            config.cache_ttl_ms,
        )
        return config
