"""Tests for profile/cache key derivation and the profile salt lifecycle."""

from __future__ import annotations

import asyncio
import base64

import pytest

from mailreview import config
from mailreview.crypto import codec
from mailreview.crypto.keys import (
    KeyDerivationError,
    ProfileKeyProvider,
    derive_cache_key,
    derive_key,
    resolve_installation_id,
)
from mailreview.storage import MemoryKeyValueStore
from tests.conftest import INSTALLATION_ID


def test_derive_key_is_deterministic():
    k1 = derive_key("secret", b"salt-salt", 1_000, "test")
    k2 = derive_key("secret", b"salt-salt", 1_000, "test")

    blob = codec.encrypt("payload", k1)
    assert codec.decrypt(blob, k2) == "payload"


@pytest.mark.parametrize(
    "secret, salt",
    [("", b"salt"), (None, b"salt"), ("secret", b""), ("secret", "not-bytes")],
)
def test_derive_key_rejects_malformed_inputs(secret, salt):
    with pytest.raises(KeyDerivationError):
        derive_key(secret, salt, 1_000, "test")


@pytest.mark.asyncio
async def test_cache_key_depends_only_on_digest():
    digest_a = "a" * 64
    blob = codec.encrypt({"response": "r"}, await derive_cache_key(digest_a))

    assert codec.decrypt(blob, await derive_cache_key(digest_a)) == {"response": "r"}
    with pytest.raises(codec.AuthenticationError):
        codec.decrypt(blob, await derive_cache_key("b" * 64))


@pytest.mark.asyncio
async def test_profile_salt_generated_once_and_persisted(kv, key_provider):
    salt = await key_provider.get_salt()
    stored = (await kv.get(config.PROFILE_SALT_KEY))[config.PROFILE_SALT_KEY]

    assert len(salt) == config.PROFILE_SALT_BYTES
    assert base64.b64decode(stored) == salt
    assert await key_provider.get_salt() == salt
    assert await ProfileKeyProvider(kv, INSTALLATION_ID).get_salt() == salt


@pytest.mark.asyncio
async def test_concurrent_first_use_generates_single_salt(kv, key_provider):
    salts = await asyncio.gather(*(key_provider.get_salt() for _ in range(5)))

    assert len(set(salts)) == 1


@pytest.mark.asyncio
async def test_profile_key_stable_for_same_salt(kv, key_provider):
    blob = codec.encrypt("api-key", await key_provider.get_key())
    again = await ProfileKeyProvider(kv, INSTALLATION_ID).get_key()

    assert codec.decrypt(blob, again) == "api-key"


@pytest.mark.asyncio
async def test_profile_key_differs_per_installation(kv, key_provider):
    blob = codec.encrypt("api-key", await key_provider.get_key())
    other = await ProfileKeyProvider(kv, "another-installation").get_key()

    with pytest.raises(codec.AuthenticationError):
        codec.decrypt(blob, other)


@pytest.mark.asyncio
@pytest.mark.parametrize("stored", ["%%%not-base64", base64.b64encode(b"short").decode(), 123])
async def test_unreadable_salt_is_hard_failure_not_regenerated(stored):
    kv = MemoryKeyValueStore({config.PROFILE_SALT_KEY: stored})

    with pytest.raises(KeyDerivationError):
        await ProfileKeyProvider(kv, INSTALLATION_ID).get_key()
    assert (await kv.get_value(config.PROFILE_SALT_KEY)) == stored


@pytest.mark.asyncio
async def test_installation_id_generated_once(kv, monkeypatch):
    monkeypatch.delenv("MAILREVIEW_INSTALLATION_ID", raising=False)

    first = await resolve_installation_id(kv)
    second = await resolve_installation_id(kv)

    assert first == second
    assert await kv.get_value(config.INSTALLATION_ID_KEY) == first


@pytest.mark.asyncio
async def test_installation_id_env_override(kv, monkeypatch):
    monkeypatch.setenv("MAILREVIEW_INSTALLATION_ID", "from-env")

    assert await resolve_installation_id(kv) == "from-env"
    assert await kv.get_value(config.INSTALLATION_ID_KEY) is None


@pytest.mark.asyncio
async def test_blank_installation_id_override_is_ignored(kv, monkeypatch):
    monkeypatch.setenv("MAILREVIEW_INSTALLATION_ID", "   ")
    await kv.set({config.INSTALLATION_ID_KEY: "stored-id"})

    assert await resolve_installation_id(kv) == "stored-id"


@pytest.mark.asyncio
async def test_installation_id_override_is_trimmed(kv, monkeypatch):
    monkeypatch.setenv("MAILREVIEW_INSTALLATION_ID", "  from-env \n")

    assert await resolve_installation_id(kv) == "from-env"
