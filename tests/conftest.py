"""
Pytest configuration for Gemini Mail Review tests

Provides an in-memory key-value store, a controllable clock and
factories for services wired against a fake Gemini endpoint.
"""

from __future__ import annotations

import json

import httpx
import pytest

from mailreview.cache.store import CacheStore
from mailreview.crypto.keys import ProfileKeyProvider
from mailreview.llm.gemini import GeminiClient
from mailreview.storage import MemoryKeyValueStore
from mailreview.storage.settings_repository import SettingsRepository

T0 = 1_700_000_000_000  # epoch ms
INSTALLATION_ID = "test-installation-0001"
TEST_API_KEY = "AIzaTestKey0123456789abcdefghijklmnop"


class FakeClock:
    """Callable epoch-ms clock that only moves when told to."""

    def __init__(self, start: int = T0) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class FakeGemini:
    """Records requests and answers like the generateContent endpoint."""

    def __init__(self, text: str | None = "Looks good to send.", status_code: int = 200) -> None:
        self.text = text
        self.status_code = status_code
        self.requests: list[httpx.Request] = []
        self.clients: list[GeminiClient] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.status_code != 200:
            return httpx.Response(
                self.status_code, json={"error": {"message": "API key not valid."}}
            )
        return httpx.Response(
            200, json={"candidates": [{"content": {"parts": [{"text": self.text}]}}]}
        )

    @property
    def prompts(self) -> list[str]:
        return [json.loads(r.content)["contents"][0]["parts"][0]["text"] for r in self.requests]

    def client_factory(self, api_key: str, endpoint: str) -> GeminiClient:
        client = GeminiClient(api_key, endpoint, transport=httpx.MockTransport(self.handler))
        self.clients.append(client)
        return client


@pytest.fixture
def kv():
    return MemoryKeyValueStore()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(kv, clock):
    return CacheStore(kv, clock=clock)


@pytest.fixture
def key_provider(kv):
    return ProfileKeyProvider(kv, INSTALLATION_ID)


@pytest.fixture
def settings_repo(kv, key_provider):
    return SettingsRepository(kv, key_provider)


@pytest.fixture
def gemini():
    return FakeGemini()
