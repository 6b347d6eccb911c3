"""Tests for the Gemini REST client (transport mocked with httpx.MockTransport)"""

from __future__ import annotations

import json

import httpx
import pytest

from mailreview.llm.gemini import GeminiClient, RemoteServiceFailure
from mailreview.llm.prompts import CONNECTION_TEST_PROMPT
from tests.conftest import TEST_API_KEY, FakeGemini

ENDPOINT = "https://gemini.test/v1beta/models/test:generateContent"


def client_with(handler) -> GeminiClient:
    return GeminiClient(TEST_API_KEY, ENDPOINT, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_analyze_returns_first_candidate_text(gemini):
    async with gemini.client_factory(TEST_API_KEY, ENDPOINT) as client:
        text = await client.analyze("Review this")

    assert text == "Looks good to send."
    request = gemini.requests[0]
    assert request.method == "POST"
    assert str(request.url) == ENDPOINT
    assert request.headers["x-goog-api-key"] == TEST_API_KEY
    assert json.loads(request.content) == {"contents": [{"parts": [{"text": "Review this"}]}]}


@pytest.mark.asyncio
async def test_api_key_not_sent_in_url(gemini):
    async with gemini.client_factory(TEST_API_KEY, ENDPOINT) as client:
        await client.analyze("Review this")

    assert TEST_API_KEY not in str(gemini.requests[0].url)


@pytest.mark.asyncio
async def test_http_error_raises_with_status_and_detail():
    gemini = FakeGemini(status_code=403)

    async with gemini.client_factory(TEST_API_KEY, ENDPOINT) as client:
        with pytest.raises(RemoteServiceFailure) as exc_info:
            await client.analyze("Review this")

    assert exc_info.value.status_code == 403
    assert "403" in str(exc_info.value)
    assert "API key not valid." in str(exc_info.value)


@pytest.mark.asyncio
async def test_error_body_without_json_still_raises():
    client = client_with(lambda request: httpx.Response(500, text="<html>oops</html>"))

    async with client:
        with pytest.raises(RemoteServiceFailure) as exc_info:
            await client.analyze("x")

    assert exc_info.value.status_code == 500


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", [{}, {"candidates": []}, {"candidates": None}])
async def test_empty_candidates_is_failure(payload):
    with pytest.raises(RemoteServiceFailure, match="No response from Gemini API"):
        async with client_with(lambda request: httpx.Response(200, json=payload)) as client:
            await client.analyze("x")


@pytest.mark.asyncio
async def test_candidate_without_text_is_failure():
    payload = {"candidates": [{"content": {}}]}
    with pytest.raises(RemoteServiceFailure):
        async with client_with(lambda request: httpx.Response(200, json=payload)) as client:
            await client.analyze("x")


@pytest.mark.asyncio
@pytest.mark.parametrize("text", [None, 42, ["a"], {"t": "x"}])
async def test_candidate_with_non_string_text_is_failure(text):
    payload = {"candidates": [{"content": {"parts": [{"text": text}]}}]}
    with pytest.raises(RemoteServiceFailure, match="has no text"):
        async with client_with(lambda request: httpx.Response(200, json=payload)) as client:
            await client.analyze("x")


@pytest.mark.asyncio
async def test_non_json_success_is_failure():
    with pytest.raises(RemoteServiceFailure):
        async with client_with(lambda request: httpx.Response(200, text="not json")) as client:
            await client.analyze("x")


@pytest.mark.asyncio
async def test_transport_error_is_failure():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(RemoteServiceFailure):
        async with client_with(handler) as client:
            await client.analyze("x")


@pytest.mark.asyncio
async def test_timeout_is_failure():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(RemoteServiceFailure, match="timed out"):
        async with client_with(handler) as client:
            await client.analyze("x")


@pytest.mark.asyncio
async def test_connection_test_sends_fixed_prompt(gemini):
    async with gemini.client_factory(TEST_API_KEY, ENDPOINT) as client:
        assert await client.test_connection() is True

    assert gemini.prompts == [CONNECTION_TEST_PROMPT]


@pytest.mark.asyncio
async def test_connection_test_without_candidates_is_false():
    async with client_with(lambda request: httpx.Response(200, json={"candidates": []})) as client:
        assert await client.test_connection() is False


@pytest.mark.asyncio
async def test_connection_test_rejects_short_key(gemini):
    with pytest.raises(RemoteServiceFailure, match="too short"):
        async with gemini.client_factory("short", ENDPOINT) as client:
            await client.test_connection()
    assert gemini.requests == []


@pytest.mark.asyncio
async def test_owned_client_is_closed_on_exit():
    client = GeminiClient(TEST_API_KEY, ENDPOINT)

    async with client:
        pass

    assert client._client.is_closed


@pytest.mark.asyncio
async def test_client_built_on_transport_is_owned_and_closed(gemini):
    async with gemini.client_factory(TEST_API_KEY, ENDPOINT) as client:
        await client.analyze("Review this")
        assert not client._client.is_closed

    assert client._client.is_closed
    assert gemini.clients == [client]


@pytest.mark.asyncio
async def test_client_closed_after_failed_call():
    gemini = FakeGemini(status_code=500)

    with pytest.raises(RemoteServiceFailure):
        async with gemini.client_factory(TEST_API_KEY, ENDPOINT) as client:
            await client.analyze("Review this")

    assert client._client.is_closed


@pytest.mark.asyncio
async def test_injected_client_is_left_open(gemini):
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(gemini.handler))

    async with GeminiClient(TEST_API_KEY, ENDPOINT, http_client=http_client):
        pass

    assert not http_client.is_closed
    await http_client.aclose()
