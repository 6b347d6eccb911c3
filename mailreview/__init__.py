"""Gemini Mail Review - pre-send email review with an encrypted local cache"""

from __future__ import annotations

__version__ = "1.0.0"


# Lazy imports so lightweight modules (digest, codec) load without httpx/fastapi
def __getattr__(name: str):
    if name in ("ContentRecord", "CacheEntry"):
        from mailreview.storage import models

        return getattr(models, name)

    if name == "CacheStore":
        from mailreview.cache.store import CacheStore

        return CacheStore

    if name == "ReviewService":
        from mailreview.review import ReviewService

        return ReviewService

    msg = f"module {__name__!r} has no attribute {name!r}"
    raise AttributeError(msg)


__all__ = [
    "CacheEntry",
    "CacheStore",
    "ContentRecord",
    "ReviewService",
]
