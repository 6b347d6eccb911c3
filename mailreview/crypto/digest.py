"""
Content digests used as cache keys.

The canonical form is the compact JSON object {"subject","to","body"} in that
fixed order, without ASCII escaping, which matches what the extension's
JSON.stringify produces. Keeping the rule identical means digests computed by
either side address the same cache entry and survive restarts.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping
from typing import Any

from mailreview.storage.models import ContentRecord

DIGEST_HEX_LENGTH = 64
_FIELDS = ("subject", "to", "body")


def canonicalize(record: ContentRecord | Mapping[str, Any]) -> str:
    """Serialize a record deterministically; missing fields become ""."""
    if not isinstance(record, ContentRecord):
        record = ContentRecord.model_validate(dict(record))
    canonical = {field: getattr(record, field) for field in _FIELDS}
    return json.dumps(canonical, ensure_ascii=False, separators=(",", ":"))


def digest(record: ContentRecord | Mapping[str, Any]) -> str:
    """Return the lowercase SHA-256 hex digest of the canonical serialization."""
    payload = canonicalize(record).encode("utf-8", errors="surrogatepass")
    return hashlib.sha256(payload).hexdigest()


def is_digest(value: Any) -> bool:
    if not isinstance(value, str) or len(value) != DIGEST_HEX_LENGTH:
        return False
    return all(c in "0123456789abcdef" for c in value)
