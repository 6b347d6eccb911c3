"""Pydantic request/response models for the Gemini Mail Review API."""

from __future__ import annotations

from pydantic import BaseModel, Field

from mailreview import config
from mailreview.storage.models import PromptTemplate

MAX_FIELD_LENGTH = 200_000


class ReviewRequest(BaseModel):
    subject: str | None = Field(default="", max_length=MAX_FIELD_LENGTH)
    to: str | list[str] | None = ""
    body: str | None = Field(default="", max_length=MAX_FIELD_LENGTH)
    session_id: str | None = Field(default=None, max_length=200)
    force_refresh: bool = False


class ReviewResponse(BaseModel):
    analysis: str
    from_cache: bool
    digest: str
    content_changed: bool


class PreviousReviewResponse(BaseModel):
    analysis: str
    created_at: int
    digest: str


class CacheStatsResponse(BaseModel):
    entries: int
    max_entries: int
    oldest_created_at: int | None
    newest_created_at: int | None
    retention_days: int
    legacy_entries: int


class SettingsView(BaseModel):
    """Settings as shown to the options page; the API key is masked."""

    api_key_configured: bool
    api_key_hint: str | None
    api_endpoint: str
    prompt_templates: list[PromptTemplate]
    cache_retention_days: int


class SettingsUpdate(BaseModel):
    api_key: str | None = None
    api_endpoint: str | None = None
    prompt_templates: list[PromptTemplate] | None = None
    cache_retention_days: int | None = Field(
        default=None,
        ge=config.MIN_CACHE_RETENTION_DAYS,
        le=config.MAX_CACHE_RETENTION_DAYS,
    )


class ConnectionTestRequest(BaseModel):
    api_key: str | None = None
    api_endpoint: str | None = None


class ConnectionTestResponse(BaseModel):
    ok: bool
    message: str
