"""Storage - key-value persistence, models, repositories"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

from mailreview.observability.logging import get_logger

logger = get_logger(__name__)


class StorageFailure(Exception):
    """Raised when the persistent store cannot be read or written"""


_MISSING = object()


@dataclass(frozen=True)
class StorageChange:
    """Old/new value pair delivered to change listeners (absent side is None)."""

    old_value: Any = None
    new_value: Any = None


ChangeListener = Callable[[dict[str, StorageChange]], None]


def _normalize_keys(keys: str | Iterable[str]) -> list[str]:
    if isinstance(keys, str):
        return [keys]
    return list(keys)


class KeyValueStore(ABC):
    """
    Async string-keyed store of JSON-serializable values.

    Best-effort durable, no transactions: every write replaces whole values.
    Listeners registered with add_listener() are called after each write with
    a {key: StorageChange} mapping describing what changed.
    """

    def __init__(self) -> None:
        self._listeners: list[ChangeListener] = []

    @abstractmethod
    async def get(self, keys: str | Iterable[str]) -> dict[str, Any]:
        """Return {key: value} for the requested keys that exist."""

    @abstractmethod
    async def set(self, items: dict[str, Any]) -> None:
        """Write each key, replacing any previous value."""

    @abstractmethod
    async def remove(self, keys: str | Iterable[str]) -> None:
        """Delete keys; missing keys are ignored."""

    async def get_value(self, key: str, default: Any = None) -> Any:
        result = await self.get(key)
        return result.get(key, default)

    def add_listener(self, listener: ChangeListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: ChangeListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, changes: dict[str, StorageChange]) -> None:
        """
        Deliver a change set to every listener.

        Side Effects:
            - Calls registered listeners synchronously
            - Logs (and skips) listeners that raise
        """
        if not changes:
            return
        for listener in list(self._listeners):
            try:
                listener(changes)
            except Exception as e:
                logger.warning("Storage change listener %r failed: %s", listener, e)


class MemoryKeyValueStore(KeyValueStore):
    """
    In-process store used by tests and ephemeral sessions.

    Values are JSON round-tripped on the way in and out so callers never hold
    a reference into the stored state, matching the durable store's behavior.
    """

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        super().__init__()
        self._data: dict[str, str] = {}
        for key, value in (initial or {}).items():
            self._data[key] = self._encode(key, value)

    @staticmethod
    def _encode(key: str, value: Any) -> str:
        try:
            return json.dumps(value)
        except (TypeError, ValueError) as e:
            raise StorageFailure(f"Value for {key!r} is not JSON-serializable: {e}") from e

    async def get(self, keys: str | Iterable[str]) -> dict[str, Any]:
        return {
            key: json.loads(self._data[key]) for key in _normalize_keys(keys) if key in self._data
        }

    async def set(self, items: dict[str, Any]) -> None:
        encoded = {key: self._encode(key, value) for key, value in items.items()}
        changes: dict[str, StorageChange] = {}
        for key, raw in encoded.items():
            old = self._data.get(key)
            self._data[key] = raw
            changes[key] = StorageChange(
                old_value=json.loads(old) if old is not None else None,
                new_value=json.loads(raw),
            )
        self._notify(changes)

    async def remove(self, keys: str | Iterable[str]) -> None:
        changes: dict[str, StorageChange] = {}
        for key in _normalize_keys(keys):
            old = self._data.pop(key, _MISSING)
            if old is not _MISSING:
                changes[key] = StorageChange(old_value=json.loads(old))
        self._notify(changes)

    def snapshot(self) -> dict[str, Any]:
        """Synchronous deep copy of everything stored (diagnostics and tests)."""
        return {key: json.loads(raw) for key, raw in self._data.items()}


__all__ = [
    "ChangeListener",
    "KeyValueStore",
    "MemoryKeyValueStore",
    "StorageChange",
    "StorageFailure",
]
