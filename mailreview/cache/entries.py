"""Stored cache rows: decoding legacy and current shapes into one variant

Current row (written by this package, tagged with a format version):

    {"v": 2, "createdAt": <epoch ms>, "data": <blob of {"response", "sourcePrompt"}>}

Legacy rows still found in older profiles:

    {"response": ..., "timestamp": <ms>}                 plaintext, original add-on
    {"response": ..., "createdAt": <ms>, "sourcePrompt"}  plaintext, later versions
    "<base64 blob>"                                      whole entry encrypted, untagged

decode_row() maps any raw value to exactly one of SealedRow / PlainRow /
OpaqueRow / CorruptRow. Only SealedRow is ever written back.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any

from mailreview.crypto import codec
from mailreview.crypto.codec import FormatError
from mailreview.crypto.keys import derive_cache_key
from mailreview.storage.models import CacheEntry

ROW_VERSION = 2


@dataclass(frozen=True)
class SealedRow:
    created_at: int
    blob: str


@dataclass(frozen=True)
class PlainRow:
    entry: CacheEntry


@dataclass(frozen=True)
class OpaqueRow:
    blob: str


@dataclass(frozen=True)
class CorruptRow:
    reason: str


StoredRow = SealedRow | PlainRow | OpaqueRow | CorruptRow


def parse_timestamp(value: Any) -> int | None:
    """Epoch-ms timestamp or None when missing, non-numeric or non-finite."""
    if isinstance(value, bool) or not isinstance(value, int | float):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    if value < 0:
        return None
    return int(value)


def _plain_entry(raw: dict[str, Any]) -> CacheEntry | None:
    response = raw.get("response")
    created_at = parse_timestamp(raw.get("createdAt", raw.get("timestamp")))
    if not isinstance(response, str) or created_at is None:
        return None
    source_prompt = raw.get("sourcePrompt")
    return CacheEntry(
        response=response,
        created_at=created_at,
        source_prompt=source_prompt if isinstance(source_prompt, str) else "",
    )


def decode_row(raw: Any) -> StoredRow:
    if isinstance(raw, dict):
        if raw.get("v") == ROW_VERSION:
            created_at = parse_timestamp(raw.get("createdAt"))
            blob = raw.get("data")
            if created_at is None:
                return CorruptRow("missing or invalid createdAt")
            if not isinstance(blob, str):
                return CorruptRow("missing encrypted payload")
            return SealedRow(created_at=created_at, blob=blob)

        entry = _plain_entry(raw)
        if entry is None:
            return CorruptRow("legacy entry without valid response/timestamp")
        return PlainRow(entry)

    if codec.is_likely_encrypted(raw):
        return OpaqueRow(raw)

    return CorruptRow(f"unrecognized row type {type(raw).__name__}")


def known_created_at(row: StoredRow) -> int | None:
    """createdAt when readable without decryption."""
    if isinstance(row, SealedRow):
        return row.created_at
    if isinstance(row, PlainRow):
        return row.entry.created_at
    return None


async def open_row(content_digest: str, row: StoredRow) -> CacheEntry:
    """
    Recover the CacheEntry held by a row.

    Raises:
        AuthenticationError: If the row's ciphertext does not verify
        FormatError: If the row or its decrypted payload is malformed
    """
    if isinstance(row, PlainRow):
        return row.entry
    if isinstance(row, CorruptRow):
        raise FormatError(row.reason)

    key = await derive_cache_key(content_digest)
    payload = codec.decrypt(row.blob, key)
    if not isinstance(payload, dict):
        raise FormatError("Decrypted cache payload is not an object")

    if isinstance(row, SealedRow):
        response = payload.get("response")
        if not isinstance(response, str):
            raise FormatError("Decrypted cache payload has no response")
        source_prompt = payload.get("sourcePrompt")
        return CacheEntry(
            response=response,
            created_at=row.created_at,
            source_prompt=source_prompt if isinstance(source_prompt, str) else "",
        )

    entry = _plain_entry(payload)
    if entry is None:
        raise FormatError("Decrypted legacy entry without valid response/timestamp")
    return entry


async def seal_entry(content_digest: str, entry: CacheEntry) -> dict[str, Any]:
    """
    Encrypt an entry into the current row format.

    Raises:
        CryptoFailure: If key derivation or encryption fails
    """
    key = await derive_cache_key(content_digest)
    blob = codec.encrypt({"response": entry.response, "sourcePrompt": entry.source_prompt}, key)
    return {"v": ROW_VERSION, "createdAt": entry.created_at, "data": blob}
