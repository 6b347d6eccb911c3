"""Key derivation (PBKDF2-HMAC-SHA256 -> AES-256-GCM keys)

Two modes:

  profile key  secret = installation identifier
               salt   = 16 random bytes, generated once, stored base64 under
                        `profileEncryptionSalt`
               100,000 iterations; protects long-lived settings (API key)

  cache key    secret = content digest of the entry
               salt   = fixed application-versioned constant
               10,000 iterations; runs on every cache read/write

The cache key only keeps cached text from being greppable on disk; anyone who
knows the digest can rebuild it. Keys are never persisted, only re-derived.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import os
import uuid

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from mailreview import config
from mailreview.crypto.codec import CryptoFailure, DerivedKey
from mailreview.infrastructure.env import get_optional_env
from mailreview.observability.logging import get_logger
from mailreview.storage import KeyValueStore

logger = get_logger(__name__)


class KeyDerivationError(CryptoFailure):
    """Raised when a key cannot be derived (bad inputs, unreadable salt)"""


def derive_key(secret: str, salt: bytes, iterations: int, purpose: str) -> DerivedKey:
    """
    Derive a 256-bit AES-GCM key with PBKDF2-HMAC-SHA256.

    Raises:
        KeyDerivationError: If secret/salt are empty or of the wrong type
    """
    if not isinstance(secret, str) or not secret:
        raise KeyDerivationError("Key derivation secret must be a non-empty string")
    if not isinstance(salt, bytes | bytearray) or not salt:
        raise KeyDerivationError("Key derivation salt must be non-empty bytes")

    try:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=config.KEY_BYTES,
            salt=bytes(salt),
            iterations=iterations,
        )
        key_bytes = kdf.derive(secret.encode("utf-8"))
    except Exception as e:
        logger.error("Error deriving %s key: %s", purpose, e)
        raise KeyDerivationError(f"Key derivation failed: {e}") from e

    return DerivedKey(key_bytes, purpose=purpose)


async def derive_cache_key(content_digest: str) -> DerivedKey:
    """Derive the per-entry cache key for a content digest."""
    return await asyncio.to_thread(
        derive_key,
        content_digest,
        config.CACHE_KEY_SALT,
        config.CACHE_KEY_ITERATIONS,
        "cache",
    )


async def resolve_installation_id(store: KeyValueStore) -> str:
    """
    Return the stable per-profile identifier used as profile-key secret.

    MAILREVIEW_INSTALLATION_ID wins; otherwise the stored `installationId`;
    otherwise a UUID4 is generated once and persisted.

    Side Effects:
        - Writes `installationId` to the store on first use
    """
    env_id = get_optional_env("MAILREVIEW_INSTALLATION_ID")
    if env_id:
        return env_id

    stored = await store.get_value(config.INSTALLATION_ID_KEY)
    if isinstance(stored, str) and stored:
        return stored

    installation_id = str(uuid.uuid4())
    await store.set({config.INSTALLATION_ID_KEY: installation_id})
    logger.info("Generated new installation identifier")
    return installation_id


class ProfileKeyProvider:
    """
    Derives the profile-wide settings key from the installation id + stored salt.

    The salt is generated at most once per profile. A stored salt that cannot
    be decoded is a hard failure: regenerating it would silently orphan every
    previously encrypted setting.
    """

    def __init__(self, store: KeyValueStore, installation_id: str) -> None:
        self.kv = store
        self.installation_id = installation_id
        self._salt_lock = asyncio.Lock()

    async def get_salt(self) -> bytes:
        """
        Load the profile salt, generating and persisting it on first use.

        Side Effects:
            - Writes `profileEncryptionSalt` (base64) when absent
        """
        async with self._salt_lock:
            stored = await self.kv.get_value(config.PROFILE_SALT_KEY)
            if stored is not None:
                return self._decode_salt(stored)

            salt = os.urandom(config.PROFILE_SALT_BYTES)
            await self.kv.set({config.PROFILE_SALT_KEY: base64.b64encode(salt).decode("ascii")})
            logger.info("Generated new profile encryption salt")
            return salt

    @staticmethod
    def _decode_salt(stored: object) -> bytes:
        if not isinstance(stored, str):
            raise KeyDerivationError("Stored profile salt is not a string")
        try:
            salt = base64.b64decode(stored, validate=True)
        except (binascii.Error, ValueError) as e:
            raise KeyDerivationError(f"Stored profile salt is not valid base64: {e}") from e
        if len(salt) != config.PROFILE_SALT_BYTES:
            raise KeyDerivationError(
                f"Stored profile salt has {len(salt)} bytes, expected {config.PROFILE_SALT_BYTES}"
            )
        return salt

    async def get_key(self) -> DerivedKey:
        salt = await self.get_salt()
        return await asyncio.to_thread(
            derive_key,
            self.installation_id,
            salt,
            config.PROFILE_KEY_ITERATIONS,
            "profile",
        )
