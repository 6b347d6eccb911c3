"""Tests for per-session content checkpoints"""

from __future__ import annotations

import pytest

from mailreview import config
from mailreview.cache.checkpoints import CheckpointTracker, normalize_checkpoint
from mailreview.storage import MemoryKeyValueStore
from mailreview.storage.models import Checkpoint
from tests.conftest import T0

DIGEST_A = "a" * 64
DIGEST_B = "b" * 64


@pytest.fixture
def tracker(kv, clock):
    return CheckpointTracker(kv, clock=clock)


@pytest.mark.parametrize(
    "raw, expected",
    [
        (DIGEST_A, Checkpoint(hash=DIGEST_A, timestamp=0)),
        ({"hash": DIGEST_A, "timestamp": T0}, Checkpoint(hash=DIGEST_A, timestamp=T0)),
        ({"hash": DIGEST_A}, Checkpoint(hash=DIGEST_A, timestamp=0)),
        ({"hash": DIGEST_A, "timestamp": "soon"}, Checkpoint(hash=DIGEST_A, timestamp=0)),
        ("", None),
        ({"timestamp": T0}, None),
        (None, None),
        (42, None),
    ],
)
def test_normalize_checkpoint(raw, expected):
    assert normalize_checkpoint(raw) == expected


@pytest.mark.asyncio
async def test_unknown_session_has_changed(tracker):
    assert await tracker.get_checkpoint("tab-1") is None
    assert await tracker.has_changed("tab-1", DIGEST_A) is True


@pytest.mark.asyncio
async def test_same_content_is_unchanged(tracker):
    await tracker.set_checkpoint("tab-1", DIGEST_A)

    assert await tracker.has_changed("tab-1", DIGEST_A) is False
    assert await tracker.has_changed("tab-1", DIGEST_B) is True


@pytest.mark.asyncio
async def test_integer_and_string_session_ids_are_the_same_key(tracker):
    await tracker.set_checkpoint(17, DIGEST_A)

    assert await tracker.get_checkpoint("17") == DIGEST_A


@pytest.mark.asyncio
async def test_written_in_current_shape(tracker, kv):
    await tracker.set_checkpoint("tab-1", DIGEST_A)

    table = await kv.get_value(config.CHECKPOINT_TABLE_KEY)

    assert table == {"tab-1": {"hash": DIGEST_A, "timestamp": T0}}


@pytest.mark.asyncio
async def test_legacy_string_rows_are_read_and_rewritten(clock):
    kv = MemoryKeyValueStore({config.CHECKPOINT_TABLE_KEY: {"tab-old": DIGEST_B, "bad": 7}})
    tracker = CheckpointTracker(kv, clock=clock)

    assert await tracker.get_checkpoint("tab-old") == DIGEST_B

    await tracker.set_checkpoint("tab-new", DIGEST_A)

    table = await kv.get_value(config.CHECKPOINT_TABLE_KEY)
    assert table == {
        "tab-old": {"hash": DIGEST_B, "timestamp": 0},
        "tab-new": {"hash": DIGEST_A, "timestamp": T0},
    }


@pytest.mark.asyncio
async def test_bounded_to_max_sessions_oldest_evicted(tracker, kv, clock):
    for i in range(config.MAX_TRACKED_TABS + 3):
        await tracker.set_checkpoint(f"tab-{i}", DIGEST_A)
        clock.advance(1000)

    table = await kv.get_value(config.CHECKPOINT_TABLE_KEY)

    assert len(table) == config.MAX_TRACKED_TABS
    assert "tab-0" not in table
    assert "tab-2" not in table
    assert f"tab-{config.MAX_TRACKED_TABS + 2}" in table


@pytest.mark.asyncio
async def test_legacy_rows_are_evicted_first(clock):
    kv = MemoryKeyValueStore({config.CHECKPOINT_TABLE_KEY: {"legacy": DIGEST_B}})
    tracker = CheckpointTracker(kv, clock=clock, max_sessions=2)

    await tracker.set_checkpoint("tab-1", DIGEST_A)
    clock.advance(10)
    await tracker.set_checkpoint("tab-2", DIGEST_A)

    table = await kv.get_value(config.CHECKPOINT_TABLE_KEY)
    assert set(table) == {"tab-1", "tab-2"}
