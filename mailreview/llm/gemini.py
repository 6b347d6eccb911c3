"""
Gemini REST client for email review.

One POST per call to the configured generateContent endpoint, authenticated
with the user's API key in the x-goog-api-key header. No retries: any
transport error, non-2xx status or empty candidate list is a
RemoteServiceFailure for that call.
"""

from __future__ import annotations

from typing import Any

import httpx

from mailreview import config
from mailreview.llm.prompts import CONNECTION_TEST_PROMPT
from mailreview.observability.logging import get_logger

logger = get_logger(__name__)


class RemoteServiceFailure(Exception):
    """Raised when the analysis service call fails or returns no candidates."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class GeminiClient:
    """
    Async client for the Gemini generateContent API.

    Usage:
        async with GeminiClient(api_key, endpoint) as client:
            text = await client.analyze(prompt)
    """

    def __init__(
        self,
        api_key: str,
        endpoint: str = config.DEFAULT_API_ENDPOINT,
        *,
        http_client: httpx.AsyncClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float | None = config.LLM_TIMEOUT_SECONDS,
    ) -> None:
        self.api_key = api_key
        self.endpoint = endpoint
        # A borrowed http_client is left open; one built here is closed by aclose()
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            transport=transport, timeout=httpx.Timeout(timeout)
        )

    async def __aenter__(self) -> GeminiClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _generate(self, prompt: str) -> dict[str, Any]:
        try:
            response = await self._client.post(
                self.endpoint,
                headers={
                    "Content-Type": "application/json",
                    "x-goog-api-key": self.api_key,
                },
                json={"contents": [{"parts": [{"text": prompt}]}]},
            )
        except httpx.TimeoutException as e:
            logger.warning("Gemini request timed out")
            raise RemoteServiceFailure("API request timed out") from e
        except httpx.RequestError as e:
            logger.error("Gemini request failed: %s", e)
            raise RemoteServiceFailure(f"API request failed: {e}") from e

        if not response.is_success:
            detail = ""
            try:
                detail = (response.json().get("error") or {}).get("message", "")
            except (ValueError, AttributeError):
                pass
            logger.warning("Gemini returned HTTP %d", response.status_code)
            raise RemoteServiceFailure(
                f"API request failed: {response.status_code} {response.reason_phrase}. {detail}".strip(),
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise RemoteServiceFailure("API returned a non-JSON response") from e
        if not isinstance(data, dict):
            raise RemoteServiceFailure("API returned an unexpected response shape")
        return data

    async def analyze(self, prompt: str) -> str:
        """
        Send a prompt and return the first candidate's text.

        Raises:
            RemoteServiceFailure: On transport error, HTTP error or empty response
        """
        data = await self._generate(prompt)
        candidates = data.get("candidates") or []
        if not candidates:
            raise RemoteServiceFailure("No response from Gemini API")

        try:
            text = candidates[0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError) as e:
            raise RemoteServiceFailure("Gemini candidate has no text") from e
        if not isinstance(text, str):
            raise RemoteServiceFailure("Gemini candidate has no text")
        return text

    async def test_connection(self) -> bool:
        """
        Probe the endpoint with a fixed prompt.

        Returns:
            True when at least one candidate comes back

        Raises:
            RemoteServiceFailure: If the key is implausibly short or the call fails
        """
        if len(self.api_key) < config.MIN_API_KEY_LENGTH:
            raise RemoteServiceFailure("API key looks too short")
        data = await self._generate(CONNECTION_TEST_PROMPT)
        return bool(data.get("candidates"))
