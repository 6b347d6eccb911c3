"""Authenticated encryption codec (AES-256-GCM)

Blob layout: base64( nonce[12] || ciphertext || tag[16] )

SECURITY:
- A fresh 96-bit nonce is drawn from os.urandom on every encrypt call;
  there is no API that accepts a caller-supplied nonce
- Values are JSON-serialized before encryption and parsed after
- Any tag mismatch (wrong key, flipped byte, truncation past the nonce)
  raises AuthenticationError; nothing partially decrypted is returned
"""

from __future__ import annotations

import base64
import binascii
import json
import os
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from mailreview import config
from mailreview.observability.logging import get_logger

logger = get_logger(__name__)

TAG_BYTES = 16


class CryptoFailure(Exception):
    """Raised when a key derivation, encrypt or decrypt primitive fails"""


class AuthenticationError(CryptoFailure):
    """Raised when the GCM tag does not verify (wrong key, corruption, tampering)"""


class FormatError(CryptoFailure):
    """Raised when a blob cannot be decoded, split or parsed"""


class DerivedKey:
    """
    Symmetric AES-GCM key usable only through encrypt()/decrypt().

    The raw key bytes are handed to the AESGCM primitive and not retained,
    so the key cannot be exported from this object.
    """

    __slots__ = ("_cipher", "purpose")

    def __init__(self, key_bytes: bytes, purpose: str) -> None:
        if len(key_bytes) != config.KEY_BYTES:
            raise CryptoFailure(f"Expected {config.KEY_BYTES}-byte key, got {len(key_bytes)}")
        self._cipher = AESGCM(key_bytes)
        self.purpose = purpose

    def __repr__(self) -> str:
        return f"DerivedKey(purpose={self.purpose!r})"


def encrypt(value: Any, key: DerivedKey) -> str:
    """
    Encrypt a JSON-serializable value

    Args:
        value: Data to encrypt (serialized with json.dumps)
        key: Derived key

    Returns:
        Base64 string of nonce || ciphertext

    Raises:
        CryptoFailure: If the value cannot be serialized or encryption fails
    """
    try:
        plaintext = json.dumps(value, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise CryptoFailure(f"Value is not serializable: {e}") from e

    nonce = os.urandom(config.NONCE_BYTES)
    try:
        ciphertext = key._cipher.encrypt(nonce, plaintext, None)
    except Exception as e:
        logger.error("Failed to encrypt data: %s", e)
        raise CryptoFailure(f"Encryption failed: {e}") from e

    return base64.b64encode(nonce + ciphertext).decode("ascii")


def decrypt(blob: str, key: DerivedKey) -> Any:
    """
    Decrypt a blob produced by encrypt()

    Returns:
        The original JSON value

    Raises:
        FormatError: If the blob is not base64, too short, or not JSON inside
        AuthenticationError: If the authentication tag does not verify
    """
    if not isinstance(blob, str | bytes):
        raise FormatError(f"Encrypted blob must be a string, got {type(blob).__name__}")

    try:
        combined = base64.b64decode(blob, validate=True)
    except (binascii.Error, ValueError) as e:
        raise FormatError(f"Blob is not valid base64: {e}") from e

    if len(combined) < config.NONCE_BYTES + TAG_BYTES:
        raise FormatError(f"Blob too short ({len(combined)} bytes)")

    nonce, ciphertext = combined[: config.NONCE_BYTES], combined[config.NONCE_BYTES :]
    try:
        plaintext = key._cipher.decrypt(nonce, ciphertext, None)
    except InvalidTag as e:
        raise AuthenticationError("Authentication tag mismatch") from e

    try:
        return json.loads(plaintext.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        raise FormatError(f"Decrypted payload is not JSON: {e}") from e


def is_likely_encrypted(value: Any) -> bool:
    """
    Heuristic used only when migrating legacy rows.

    True for a string that is not JSON but is valid base64. This is content
    sniffing, not a format tag: a plain word such as "abcd" is valid base64
    and is reported as encrypted, while a blob that happens to be all digits
    parses as JSON and is reported as plaintext. Callers treat a wrong guess
    as a miss when decryption then fails.
    """
    if not isinstance(value, str):
        return False

    try:
        json.loads(value)
        return False
    except ValueError:
        pass

    try:
        base64.b64decode(value, validate=True)
        return True
    except (binascii.Error, ValueError):
        return False
