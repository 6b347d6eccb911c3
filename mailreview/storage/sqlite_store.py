"""Durable key-value store backed by the single SQLite kv table

Each value is stored as a JSON document. sqlite3 work runs in a worker
thread so the event loop only suspends at store access, never blocks.
"""

from __future__ import annotations

import asyncio
import json
import sqlite3
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from mailreview.infrastructure.database import (
    db_transaction,
    get_db_path,
    init_database,
    retry_on_db_lock,
)
from mailreview.observability.logging import get_logger
from mailreview.storage import KeyValueStore, StorageChange, StorageFailure, _normalize_keys

logger = get_logger(__name__)


def _decode_previous(raw: str | None) -> Any:
    """Old value for change listeners; an undecodable prior row reads as None."""
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        logger.warning("Previous value is not valid JSON, reporting it as absent")
        return None


class SQLiteKeyValueStore(KeyValueStore):
    """
    Persistent KeyValueStore over one SQLite file.

    Usage:
        store = SQLiteKeyValueStore()              # MAILREVIEW_DB_PATH or default
        await store.set({"cacheRetentionDays": 14})
        await store.get(["cacheRetentionDays"])
        store.close()
    """

    def __init__(self, db_path: Path | str | None = None) -> None:
        super().__init__()
        self.db_path = Path(db_path) if db_path is not None else get_db_path()
        try:
            self._conn = init_database(self.db_path)
        except (sqlite3.Error, OSError, RuntimeError) as e:
            raise StorageFailure(f"Cannot open key-value database {self.db_path}: {e}") from e
        # Serializes access to the shared connection across worker threads
        self._lock = asyncio.Lock()

    @retry_on_db_lock()
    def _read(self, keys: list[str]) -> dict[str, str]:
        if not keys:
            return {}
        placeholders = ",".join("?" for _ in keys)
        rows = self._conn.execute(
            f"SELECT key, value FROM kv WHERE key IN ({placeholders})", tuple(keys)
        ).fetchall()
        return {row["key"]: row["value"] for row in rows}

    @retry_on_db_lock()
    def _write(self, encoded: dict[str, str]) -> dict[str, str]:
        with db_transaction(self._conn) as conn:
            previous = self._read(list(encoded))
            conn.executemany(
                """
                INSERT INTO kv (key, value, updated_at) VALUES (?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value,
                                               updated_at = CURRENT_TIMESTAMP
                """,
                list(encoded.items()),
            )
        return previous

    @retry_on_db_lock()
    def _delete(self, keys: list[str]) -> dict[str, str]:
        with db_transaction(self._conn) as conn:
            previous = self._read(keys)
            conn.executemany("DELETE FROM kv WHERE key = ?", [(key,) for key in previous])
        return previous

    async def get(self, keys: str | Iterable[str]) -> dict[str, Any]:
        key_list = _normalize_keys(keys)
        try:
            async with self._lock:
                raw = await asyncio.to_thread(self._read, key_list)
            return {key: json.loads(value) for key, value in raw.items()}
        except (sqlite3.Error, ValueError) as e:
            logger.error("Key-value read failed for %s: %s", key_list, e)
            raise StorageFailure(f"Read failed: {e}") from e

    async def set(self, items: dict[str, Any]) -> None:
        try:
            encoded = {key: json.dumps(value) for key, value in items.items()}
        except (TypeError, ValueError) as e:
            raise StorageFailure(f"Value is not JSON-serializable: {e}") from e

        try:
            async with self._lock:
                previous = await asyncio.to_thread(self._write, encoded)
        except sqlite3.Error as e:
            logger.error("Key-value write failed for %s: %s", list(items), e)
            raise StorageFailure(f"Write failed: {e}") from e

        self._notify(
            {
                key: StorageChange(
                    old_value=_decode_previous(previous.get(key)),
                    new_value=items[key],
                )
                for key in items
            }
        )

    async def remove(self, keys: str | Iterable[str]) -> None:
        key_list = _normalize_keys(keys)
        try:
            async with self._lock:
                previous = await asyncio.to_thread(self._delete, key_list)
        except sqlite3.Error as e:
            logger.error("Key-value delete failed for %s: %s", key_list, e)
            raise StorageFailure(f"Delete failed: {e}") from e

        self._notify({key: StorageChange(old_value=_decode_previous(raw)) for key, raw in previous.items()})

    def close(self) -> None:
        self._conn.close()
