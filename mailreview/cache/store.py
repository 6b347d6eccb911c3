"""
Encrypted, content-addressed cache of review results.

Cache Strategy:
- Key: SHA-256 digest of the composition {subject, to, body}
- Storage: one `geminiCache` table in the key-value store, rewritten whole
- Rows: AES-GCM encrypted per entry with a digest-derived key
- TTL: `cacheRetentionDays` setting (default 7, bounds 1-365)
- Capacity: MAX_CACHE_ENTRIES, oldest-by-createdAt evicted on write
- Migration: legacy plaintext/untagged rows re-encrypted on next read or write

Concurrent read-modify-write cycles are last-writer-wins: each write replaces
the whole table, so an overlapping store() may lose the other's entry but the
table is never left half-written.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any

from mailreview import config
from mailreview.cache.checkpoints import CheckpointTracker
from mailreview.cache.entries import (
    CorruptRow,
    OpaqueRow,
    PlainRow,
    SealedRow,
    StoredRow,
    decode_row,
    known_created_at,
    open_row,
    seal_entry,
)
from mailreview.crypto.codec import CryptoFailure
from mailreview.observability.logging import get_logger, short_digest
from mailreview.storage import KeyValueStore, StorageChange, StorageFailure
from mailreview.storage.models import CacheEntry

logger = get_logger(__name__)

Clock = Callable[[], int]


def now_ms() -> int:
    return int(time.time() * 1000)


def parse_retention_days(value: Any) -> int:
    """Stored retention setting -> days; anything invalid falls back to the default."""
    days: int | None = None
    if isinstance(value, bool):
        days = None
    elif isinstance(value, int):
        days = value
    elif isinstance(value, float) and value.is_integer():
        days = int(value)
    elif isinstance(value, str) and value.strip().isdigit():
        days = int(value.strip())

    if days is None or not (
        config.MIN_CACHE_RETENTION_DAYS <= days <= config.MAX_CACHE_RETENTION_DAYS
    ):
        if value is not None:
            logger.warning("Ignoring invalid cache retention value %r", value)
        return config.DEFAULT_CACHE_RETENTION_DAYS
    return days


class CacheStore:
    """
    Owner of the cache table and the tab checkpoint table.

    Usage:
        cache = CacheStore(kv)
        kv.add_listener(cache.on_storage_changed)   # keep retention fresh

        entry = await cache.lookup(digest)
        if entry is None:
            text = await client.analyze(prompt)
            await cache.store(digest, text, prompt)
    """

    def __init__(
        self,
        store: KeyValueStore,
        *,
        clock: Clock = now_ms,
        max_entries: int = config.MAX_CACHE_ENTRIES,
        max_tracked_tabs: int = config.MAX_TRACKED_TABS,
    ) -> None:
        self.kv = store
        self.clock = clock
        self.max_entries = max_entries
        self.checkpoints = CheckpointTracker(store, clock=clock, max_sessions=max_tracked_tabs)
        self._retention_days: int | None = None

    # -- retention -------------------------------------------------------

    def invalidate_retention(self) -> None:
        self._retention_days = None

    def on_storage_changed(self, changes: dict[str, StorageChange]) -> None:
        """Change listener: drop the memoized retention when its setting changes."""
        if config.RETENTION_DAYS_KEY in changes:
            logger.debug("Retention setting changed, invalidating memoized TTL")
            self.invalidate_retention()

    async def retention_days(self) -> int:
        if self._retention_days is None:
            raw = await self.kv.get_value(config.RETENTION_DAYS_KEY)
            self._retention_days = parse_retention_days(raw)
        return self._retention_days

    async def ttl_ms(self) -> int:
        return await self.retention_days() * config.MS_PER_DAY

    # -- table I/O -------------------------------------------------------

    async def _load_table(self) -> dict[str, Any]:
        raw = await self.kv.get_value(config.CACHE_TABLE_KEY)
        if raw is None:
            return {}
        if not isinstance(raw, dict):
            logger.warning("Cache table has unexpected type %s, starting empty", type(raw).__name__)
            return {}
        return raw

    async def _save_table(self, table: dict[str, Any]) -> None:
        await self.kv.set({config.CACHE_TABLE_KEY: table})

    # -- operations ------------------------------------------------------

    async def lookup(self, digest: str) -> CacheEntry | None:
        """
        Return the live entry for a digest, or None.

        Expired, corrupt and undecryptable rows are deleted as a side effect.
        Legacy rows that open successfully are rewritten in the current format.

        Side Effects:
            - May rewrite the `geminiCache` table (delete or migrate one row)
        """
        try:
            table = await self._load_table()
            raw = table.get(digest)
            if raw is None:
                logger.debug("Cache miss: %s", short_digest(digest))
                return None
            ttl = await self.ttl_ms()
        except StorageFailure as e:
            logger.error("Cache lookup failed, treating as miss: %s", e)
            return None

        now = self.clock()
        row = decode_row(raw)

        if isinstance(row, CorruptRow):
            logger.warning("Removing corrupt cache row %s: %s", short_digest(digest), row.reason)
            await self._drop(table, digest)
            return None

        created_at = known_created_at(row)
        if created_at is not None and now - created_at > ttl:
            logger.debug("Cache entry expired: %s", short_digest(digest))
            await self._drop(table, digest)
            return None

        try:
            entry = await open_row(digest, row)
        except CryptoFailure as e:
            logger.warning("Cannot recover cache row %s: %s", short_digest(digest), e)
            await self._drop(table, digest)
            return None

        if now - entry.created_at > ttl:
            logger.debug("Cache entry expired: %s", short_digest(digest))
            await self._drop(table, digest)
            return None

        if not isinstance(row, SealedRow):
            await self._migrate_one(table, digest, entry)

        logger.debug("Cache hit: %s", short_digest(digest))
        return entry

    async def _drop(self, table: dict[str, Any], digest: str) -> None:
        table.pop(digest, None)
        try:
            await self._save_table(table)
        except StorageFailure as e:
            logger.error("Failed to write cache table after removal: %s", e)

    async def _migrate_one(self, table: dict[str, Any], digest: str, entry: CacheEntry) -> None:
        try:
            table[digest] = await seal_entry(digest, entry)
            await self._save_table(table)
            logger.info("Migrated legacy cache row %s", short_digest(digest))
        except (CryptoFailure, StorageFailure) as e:
            logger.warning("Legacy cache row %s left unmigrated: %s", short_digest(digest), e)

    async def _sweep(self, table: dict[str, Any], now: int, ttl: int) -> dict[str, Any]:
        """
        Drop expired/unreadable rows and re-encrypt legacy ones.

        Returns a new table containing only current-format live rows.
        """
        swept: dict[str, Any] = {}
        for digest, raw in table.items():
            row: StoredRow = decode_row(raw)
            if isinstance(row, CorruptRow):
                logger.warning("Sweeping corrupt cache row %s: %s", short_digest(digest), row.reason)
                continue

            created_at = known_created_at(row)
            if created_at is not None and now - created_at > ttl:
                continue

            if isinstance(row, SealedRow):
                swept[digest] = raw
                continue

            try:
                entry = await open_row(digest, row)
                if now - entry.created_at > ttl:
                    continue
                swept[digest] = await seal_entry(digest, entry)
            except CryptoFailure as e:
                logger.warning("Dropping unreadable cache row %s: %s", short_digest(digest), e)

        expired = len(table) - len(swept)
        if expired:
            logger.info("Swept %d expired or unreadable cache entries", expired)
        return swept

    def _evict_oldest(self, table: dict[str, Any]) -> None:
        """Remove the single oldest row; ties go to the first key scanned."""
        oldest_key: str | None = None
        oldest_time = 0
        for digest, raw in table.items():
            created_at = raw["createdAt"]
            if oldest_key is None or created_at < oldest_time:
                oldest_key = digest
                oldest_time = created_at
        if oldest_key is not None:
            del table[oldest_key]
            logger.debug("Evicted oldest cache entry %s", short_digest(oldest_key))

    async def store(self, digest: str, response: str, source_prompt: str = "") -> None:
        """
        Insert or replace the entry for a digest.

        Sweeps expired entries first, then inserts, then evicts the oldest
        entry if the table is over capacity. The table is written back once.

        Raises:
            CryptoFailure: If the new entry cannot be encrypted

        Side Effects:
            - Rewrites the `geminiCache` table in the key-value store
        """
        now = self.clock()
        try:
            table = await self._load_table()
            ttl = await self.ttl_ms()
        except StorageFailure as e:
            logger.error("Cache store skipped, table unreadable: %s", e)
            return

        table = await self._sweep(table, now, ttl)
        entry = CacheEntry(response=response, created_at=now, source_prompt=source_prompt or "")
        table[digest] = await seal_entry(digest, entry)

        # Steady state is exactly one eviction per write
        while len(table) > self.max_entries:
            self._evict_oldest(table)

        try:
            await self._save_table(table)
        except StorageFailure as e:
            logger.error("Cache store failed for %s: %s", short_digest(digest), e)
            return
        logger.debug("Cache set: %s (%d entries)", short_digest(digest), len(table))

    async def purge_all(self) -> None:
        """
        Clear the cache table and the checkpoint table.

        Raises:
            StorageFailure: If the store rejects the removal

        Side Effects:
            - Removes `geminiCache` and `lastCheckedHashes` from the store
        """
        await self.kv.remove([config.CACHE_TABLE_KEY, config.CHECKPOINT_TABLE_KEY])
        logger.info("Cleared all cache entries and session checkpoints")

    async def stats(self) -> dict[str, Any]:
        """Entry count and age bounds, without decrypting anything."""
        table = await self._load_table()
        created = [
            ts for ts in (known_created_at(decode_row(raw)) for raw in table.values()) if ts is not None
        ]
        return {
            "entries": len(table),
            "max_entries": self.max_entries,
            "oldest_created_at": min(created) if created else None,
            "newest_created_at": max(created) if created else None,
            "retention_days": await self.retention_days(),
            "legacy_entries": sum(
                1 for raw in table.values() if isinstance(decode_row(raw), PlainRow | OpaqueRow)
            ),
        }
