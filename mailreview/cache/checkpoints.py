"""Per-session content checkpoints

Remembers, for each open composition session (tab), which content digest it
was last reviewed against. Answers "has this message changed since the last
check?" and lets the caller fall back to the previous review.

Rows are read in either shape:
    "<digest>"                                 legacy bare string
    {"hash": "<digest>", "timestamp": <ms>}    current
and always written back in the current shape.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from mailreview import config
from mailreview.cache.entries import parse_timestamp
from mailreview.observability.logging import get_logger, short_digest
from mailreview.storage import KeyValueStore, StorageFailure
from mailreview.storage.models import Checkpoint

logger = get_logger(__name__)


def normalize_checkpoint(raw: Any) -> Checkpoint | None:
    """Legacy or current row -> Checkpoint; unusable rows -> None."""
    if isinstance(raw, str) and raw:
        # Legacy rows carry no timestamp and sort as oldest
        return Checkpoint(hash=raw, timestamp=0)
    if isinstance(raw, dict) and isinstance(raw.get("hash"), str) and raw["hash"]:
        return Checkpoint(hash=raw["hash"], timestamp=parse_timestamp(raw.get("timestamp")) or 0)
    return None


class CheckpointTracker:
    """Bounded sessionId -> Checkpoint table (oldest evicted first)."""

    def __init__(
        self,
        store: KeyValueStore,
        *,
        clock: Callable[[], int],
        max_sessions: int = config.MAX_TRACKED_TABS,
    ) -> None:
        self.kv = store
        self.clock = clock
        self.max_sessions = max_sessions

    async def _load(self) -> dict[str, Any]:
        raw = await self.kv.get_value(config.CHECKPOINT_TABLE_KEY)
        return raw if isinstance(raw, dict) else {}

    async def get_checkpoint(self, session_id: str | int) -> str | None:
        try:
            table = await self._load()
        except StorageFailure as e:
            logger.error("Checkpoint read failed: %s", e)
            return None
        checkpoint = normalize_checkpoint(table.get(str(session_id)))
        return checkpoint.hash if checkpoint else None

    async def has_changed(self, session_id: str | int, digest: str) -> bool:
        """True when the session was never checked or was checked against other content."""
        return await self.get_checkpoint(session_id) != digest

    async def set_checkpoint(self, session_id: str | int, digest: str) -> None:
        """
        Record the digest a session was just checked against.

        Side Effects:
            - Rewrites `lastCheckedHashes` in the current row shape
        """
        try:
            table = await self._load()
        except StorageFailure as e:
            logger.error("Checkpoint update skipped, table unreadable: %s", e)
            return

        normalized: dict[str, Checkpoint] = {}
        for key, raw in table.items():
            checkpoint = normalize_checkpoint(raw)
            if checkpoint is not None:
                normalized[key] = checkpoint

        normalized[str(session_id)] = Checkpoint(hash=digest, timestamp=self.clock())

        while len(normalized) > self.max_sessions:
            oldest = min(normalized, key=lambda k: normalized[k].timestamp)
            del normalized[oldest]

        try:
            await self.kv.set(
                {
                    config.CHECKPOINT_TABLE_KEY: {
                        key: checkpoint.model_dump() for key, checkpoint in normalized.items()
                    }
                }
            )
        except StorageFailure as e:
            logger.error("Checkpoint write failed: %s", e)
            return
        logger.debug("Checkpoint for session %s -> %s", session_id, short_digest(digest))
