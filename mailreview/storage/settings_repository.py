"""Settings repository with profile-key encryption

SECURITY:
- The API key and prompt templates are encrypted with the profile key
  (PBKDF2 over installation id + per-profile salt, AES-256-GCM)
- Encrypted values live under *Encrypted keys, separate from the legacy
  plaintext fields written by older versions
- A successful encrypted save deletes the legacy plaintext fields; plaintext
  is never written back (one-way migration)
- A value that fails to decrypt falls back to the legacy plaintext field if
  one is still present, otherwise reads as absent
"""

from __future__ import annotations

from typing import Any

from pydantic import ValidationError

from mailreview import config
from mailreview.cache.store import parse_retention_days
from mailreview.crypto import codec
from mailreview.crypto.codec import CryptoFailure, DerivedKey
from mailreview.crypto.keys import ProfileKeyProvider
from mailreview.observability.logging import get_logger
from mailreview.storage import KeyValueStore, StorageFailure
from mailreview.storage.models import PromptTemplate, ReviewSettings

logger = get_logger(__name__)

_SETTINGS_KEYS = (
    config.API_ENDPOINT_KEY,
    config.RETENTION_DAYS_KEY,
    config.API_KEY_ENCRYPTED_KEY,
    config.API_KEY_LEGACY_KEY,
    config.PROMPT_TEMPLATES_ENCRYPTED_KEY,
    config.PROMPT_TEMPLATES_LEGACY_KEY,
    config.CUSTOM_PROMPT_LEGACY_KEY,
)

_LEGACY_PLAINTEXT_KEYS = (
    config.API_KEY_LEGACY_KEY,
    config.PROMPT_TEMPLATES_LEGACY_KEY,
    config.CUSTOM_PROMPT_LEGACY_KEY,
)


def _templates_from(value: Any) -> list[PromptTemplate] | None:
    """Accept a list of template objects/strings or a single prompt string."""
    if isinstance(value, str):
        return [PromptTemplate(text=value)] if value.strip() else []
    if not isinstance(value, list):
        return None
    templates = []
    for index, item in enumerate(value):
        try:
            if isinstance(item, str):
                templates.append(PromptTemplate(name=f"Template {index + 1}", text=item))
            else:
                templates.append(PromptTemplate.model_validate(item))
        except ValidationError as e:
            logger.warning("Skipping malformed prompt template #%d: %s", index, e.error_count())
    return templates


class SettingsRepository:
    """
    Loads and saves ReviewSettings through the key-value store.

    Usage:
        repo = SettingsRepository(kv, ProfileKeyProvider(kv, installation_id))
        settings = await repo.load()
        await repo.save(settings.model_copy(update={"api_key": "..."}))
    """

    def __init__(self, store: KeyValueStore, key_provider: ProfileKeyProvider) -> None:
        self.kv = store
        self.key_provider = key_provider

    async def encrypt_settings(self, value: Any, key: DerivedKey | None = None) -> str:
        key = key or await self.key_provider.get_key()
        return codec.encrypt(value, key)

    async def decrypt_settings(self, blob: str, key: DerivedKey | None = None) -> Any:
        key = key or await self.key_provider.get_key()
        return codec.decrypt(blob, key)

    async def _open(self, raw: dict[str, Any], field: str, key_cache: dict[str, DerivedKey]) -> Any:
        """Decrypt one encrypted field; None when absent or unrecoverable."""
        blob = raw.get(field)
        if blob is None:
            return None
        try:
            if "profile" not in key_cache:
                key_cache["profile"] = await self.key_provider.get_key()
            return codec.decrypt(blob, key_cache["profile"])
        except CryptoFailure as e:
            logger.warning("Cannot decrypt %s, falling back to legacy value: %s", field, e)
            return None
        except StorageFailure as e:
            logger.error("Profile salt unavailable, cannot decrypt %s: %s", field, e)
            return None

    async def load(self) -> ReviewSettings:
        """
        Read settings, preferring encrypted fields over legacy plaintext.

        Never raises for unreadable data; missing values come back as defaults.
        """
        try:
            raw = await self.kv.get(_SETTINGS_KEYS)
        except StorageFailure as e:
            logger.error("Settings unreadable, using defaults: %s", e)
            return ReviewSettings()

        key_cache: dict[str, DerivedKey] = {}

        api_key = await self._open(raw, config.API_KEY_ENCRYPTED_KEY, key_cache)
        if not isinstance(api_key, str):
            legacy = raw.get(config.API_KEY_LEGACY_KEY)
            api_key = legacy if isinstance(legacy, str) else None

        templates = _templates_from(
            await self._open(raw, config.PROMPT_TEMPLATES_ENCRYPTED_KEY, key_cache)
        )
        if templates is None:
            templates = _templates_from(raw.get(config.PROMPT_TEMPLATES_LEGACY_KEY))
        if templates is None:
            templates = _templates_from(raw.get(config.CUSTOM_PROMPT_LEGACY_KEY)) or []

        endpoint = raw.get(config.API_ENDPOINT_KEY)
        return ReviewSettings(
            api_key=api_key,
            api_endpoint=endpoint if isinstance(endpoint, str) else None,
            prompt_templates=templates,
            cache_retention_days=parse_retention_days(raw.get(config.RETENTION_DAYS_KEY)),
        )

    async def get_api_key(self) -> str | None:
        return (await self.load()).api_key

    async def save(self, settings: ReviewSettings) -> None:
        """
        Persist settings with secrets encrypted.

        Raises:
            CryptoFailure: If the profile key cannot be derived or encryption fails
            StorageFailure: If the store rejects the write

        Side Effects:
            - Writes endpoint, retention days and encrypted secrets
            - Deletes legacy plaintext geminiApiKey/customPromptTemplates/customPrompt
        """
        key = await self.key_provider.get_key()

        items: dict[str, Any] = {
            config.API_ENDPOINT_KEY: settings.api_endpoint,
            config.RETENTION_DAYS_KEY: settings.cache_retention_days,
            config.PROMPT_TEMPLATES_ENCRYPTED_KEY: codec.encrypt(
                [template.model_dump() for template in settings.prompt_templates], key
            ),
        }
        removals = list(_LEGACY_PLAINTEXT_KEYS)
        if settings.api_key:
            items[config.API_KEY_ENCRYPTED_KEY] = codec.encrypt(settings.api_key, key)
        else:
            removals.append(config.API_KEY_ENCRYPTED_KEY)

        await self.kv.set(items)
        await self.kv.remove(removals)
        logger.info("Saved settings (encrypted secrets, legacy plaintext removed)")
