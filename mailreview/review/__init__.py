"""Review orchestration: digest -> cache lookup -> remote review -> cache store

ReviewService wires the cache, settings and remote client together the way
the compose-window popup drives them:

    1. digest the composition content
    2. serve a live cache entry unless a refresh is forced
    3. otherwise call the review service once and cache the result
    4. remember the digest as the session's checkpoint
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from mailreview.cache.store import CacheStore, Clock, now_ms
from mailreview.crypto.codec import CryptoFailure
from mailreview.crypto.digest import digest as content_digest
from mailreview.crypto.keys import ProfileKeyProvider, resolve_installation_id
from mailreview.llm.gemini import GeminiClient
from mailreview.llm.prompts import build_review_prompt
from mailreview.observability.logging import get_logger, short_digest
from mailreview.storage import KeyValueStore
from mailreview.storage.models import CacheEntry, ContentRecord
from mailreview.storage.settings_repository import SettingsRepository

logger = get_logger(__name__)

ClientFactory = Callable[[str, str], GeminiClient]


class MissingCredentialError(Exception):
    """Raised when no API key is configured"""


@dataclass(frozen=True)
class ReviewOutcome:
    analysis: str
    from_cache: bool
    digest: str
    content_changed: bool


class ReviewService:
    def __init__(
        self,
        store: KeyValueStore,
        settings: SettingsRepository,
        cache: CacheStore,
        client_factory: ClientFactory = GeminiClient,
    ) -> None:
        self.kv = store
        self.settings = settings
        self.cache = cache
        self.client_factory = client_factory
        self.kv.add_listener(self.cache.on_storage_changed)

    @classmethod
    async def create(
        cls,
        store: KeyValueStore,
        *,
        installation_id: str | None = None,
        clock: Clock = now_ms,
        client_factory: ClientFactory = GeminiClient,
    ) -> ReviewService:
        """Build a service over a store, resolving the installation id if not given."""
        installation_id = installation_id or await resolve_installation_id(store)
        settings = SettingsRepository(store, ProfileKeyProvider(store, installation_id))
        return cls(store, settings, CacheStore(store, clock=clock), client_factory)

    def close(self) -> None:
        self.kv.remove_listener(self.cache.on_storage_changed)

    async def review(
        self,
        record: ContentRecord,
        session_id: str | int | None = None,
        force_refresh: bool = False,
    ) -> ReviewOutcome:
        """
        Review a composition, serving from cache when possible.

        Raises:
            MissingCredentialError: If no API key is configured
            RemoteServiceFailure: If the remote review fails (cache untouched)

        Side Effects:
            - May write the cache table and the session checkpoint
            - Makes one HTTPS call on a cache miss or forced refresh
        """
        settings = await self.settings.load()
        if not settings.api_key:
            raise MissingCredentialError("Configure your Gemini API key in the settings first")

        digest = content_digest(record)
        content_changed = True
        if session_id is not None:
            content_changed = await self.cache.checkpoints.has_changed(session_id, digest)

        if not force_refresh:
            entry = await self.cache.lookup(digest)
            if entry is not None:
                logger.info("Serving cached review for %s", short_digest(digest))
                await self._checkpoint(session_id, digest)
                return ReviewOutcome(entry.response, True, digest, content_changed)

        prompt = build_review_prompt(record, settings.custom_prompt)
        async with self.client_factory(settings.api_key, settings.api_endpoint) as client:
            analysis = await client.analyze(prompt)

        try:
            await self.cache.store(digest, analysis, prompt)
        except CryptoFailure as e:
            logger.warning("Review for %s not cached: %s", short_digest(digest), e)

        await self._checkpoint(session_id, digest)
        return ReviewOutcome(analysis, False, digest, content_changed)

    async def _checkpoint(self, session_id: str | int | None, digest: str) -> None:
        if session_id is not None:
            await self.cache.checkpoints.set_checkpoint(session_id, digest)

    async def previous_result(self, session_id: str | int) -> CacheEntry | None:
        """Cached review of the content this session was last checked against."""
        digest = await self.cache.checkpoints.get_checkpoint(session_id)
        if digest is None:
            return None
        return await self.cache.lookup(digest)

    async def purge(self) -> None:
        await self.cache.purge_all()
