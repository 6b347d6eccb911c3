"""
Domain models (Pydantic v2) for Gemini Mail Review.

Persisted shapes use the camelCase field names the extension writes
(createdAt, sourcePrompt, ...) through aliases; Python code uses snake_case.
Sensitive fields (subject, recipients, body, api_key) are redacted in repr.
"""

from __future__ import annotations

from hashlib import sha256
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from mailreview import config


def _hash_value(value: str) -> str:
    digest = sha256(value.encode("utf-8")).hexdigest()
    return f"hash:{digest[:12]}"


class RedactedModel(BaseModel):
    """Base model that redacts sensitive fields in repr."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)
    _redact_fields = {"subject", "to", "body", "response", "source_prompt", "api_key"}

    def _redacted_dump(self) -> dict[str, Any]:
        data = self.model_dump(exclude_none=True)
        for field in self._redact_fields:
            if field in data and isinstance(data[field], str) and data[field]:
                data[field] = _hash_value(data[field])
        return data

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self._redacted_dump()})"

    def redacted(self) -> dict[str, Any]:
        """Public helper for log-safe dumps."""
        return self._redacted_dump()


class ContentRecord(RedactedModel):
    """Logical identity of a composition at a point in time."""

    subject: str = ""
    to: str = ""
    body: str = ""

    @field_validator("subject", "body", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("to", mode="before")
    @classmethod
    def _join_recipients(cls, value: Any) -> Any:
        if value is None:
            return ""
        if isinstance(value, list | tuple):
            return ", ".join(str(item) for item in value)
        return value

    @classmethod
    def from_compose_details(cls, details: dict[str, Any]) -> ContentRecord:
        """
        Build a record from the mail client's compose-details payload.

        `to` may be a string or a list of recipients; the plain-text body is
        preferred over the HTML body.
        """
        return cls(
            subject=details.get("subject") or "",
            to=details.get("to") or "",
            body=details.get("plainTextBody") or details.get("body") or "",
        )


class CacheEntry(RedactedModel):
    """One cached analysis, keyed by content digest in the cache table."""

    response: str
    created_at: int = Field(alias="createdAt")
    source_prompt: str = Field(default="", alias="sourcePrompt")

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class Checkpoint(BaseModel):
    """Last digest a composition session was checked against."""

    model_config = ConfigDict(frozen=True)

    hash: str
    timestamp: int = 0


class PromptTemplate(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = "Default"
    text: str
    enabled: bool = True


class ReviewSettings(RedactedModel):
    """User-facing settings; api_key and prompt_templates are stored encrypted."""

    api_key: str | None = None
    api_endpoint: str = config.DEFAULT_API_ENDPOINT
    prompt_templates: list[PromptTemplate] = Field(default_factory=list)
    cache_retention_days: int = Field(
        default=config.DEFAULT_CACHE_RETENTION_DAYS,
        ge=config.MIN_CACHE_RETENTION_DAYS,
        le=config.MAX_CACHE_RETENTION_DAYS,
    )

    @field_validator("api_key", mode="before")
    @classmethod
    def _blank_key_is_none(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip()
            return value or None
        return value

    @field_validator("api_endpoint", mode="before")
    @classmethod
    def _blank_endpoint_is_default(cls, value: Any) -> Any:
        if value is None or (isinstance(value, str) and not value.strip()):
            return config.DEFAULT_API_ENDPOINT
        return value.strip() if isinstance(value, str) else value

    @property
    def custom_prompt(self) -> str:
        """Enabled template texts joined into one instruction preamble."""
        texts = [t.text.strip() for t in self.prompt_templates if t.enabled and t.text.strip()]
        return "\n\n".join(texts)
