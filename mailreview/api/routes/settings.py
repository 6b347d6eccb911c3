"""Settings endpoints for the options page."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import ValidationError

from mailreview.api.dependencies import get_review_service
from mailreview.api.models import (
    ConnectionTestRequest,
    ConnectionTestResponse,
    SettingsUpdate,
    SettingsView,
)
from mailreview.crypto.codec import CryptoFailure
from mailreview.llm.gemini import RemoteServiceFailure
from mailreview.observability.logging import get_logger
from mailreview.review import ReviewService
from mailreview.storage import StorageFailure
from mailreview.storage.models import ReviewSettings
from mailreview.utils.error_sanitizer import sanitize_error_message

logger = get_logger(__name__)

router = APIRouter(prefix="/api/settings", tags=["settings"])


def _view(settings: ReviewSettings) -> SettingsView:
    hint = f"...{settings.api_key[-4:]}" if settings.api_key else None
    return SettingsView(
        api_key_configured=bool(settings.api_key),
        api_key_hint=hint,
        api_endpoint=settings.api_endpoint,
        prompt_templates=settings.prompt_templates,
        cache_retention_days=settings.cache_retention_days,
    )


@router.get("", response_model=SettingsView)
async def get_settings(service: ReviewService = Depends(get_review_service)) -> SettingsView:
    return _view(await service.settings.load())


@router.put("", response_model=SettingsView)
async def update_settings(
    update: SettingsUpdate,
    service: ReviewService = Depends(get_review_service),
) -> SettingsView:
    """Merge the provided fields into the stored settings and save them encrypted."""
    current = await service.settings.load()
    try:
        merged = ReviewSettings.model_validate(
            {**current.model_dump(), **update.model_dump(exclude_unset=True)}
        )
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Invalid settings",
        ) from e

    try:
        await service.settings.save(merged)
    except CryptoFailure as e:
        logger.error("Settings encryption failed: %s", e)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Settings could not be encrypted",
        ) from e
    except StorageFailure as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Settings could not be saved",
        ) from e

    return _view(merged)


@router.post("/test-connection", response_model=ConnectionTestResponse)
async def test_connection(
    request: ConnectionTestRequest,
    service: ReviewService = Depends(get_review_service),
) -> ConnectionTestResponse:
    """Probe the review endpoint with the given (or stored) credentials."""
    stored = await service.settings.load()
    api_key = (request.api_key or "").strip() or stored.api_key
    endpoint = (request.api_endpoint or "").strip() or stored.api_endpoint
    if not api_key:
        return ConnectionTestResponse(ok=False, message="Enter an API key first")

    try:
        async with service.client_factory(api_key, endpoint) as client:
            ok = await client.test_connection()
    except RemoteServiceFailure as e:
        return ConnectionTestResponse(
            ok=False,
            message=sanitize_error_message(str(e), status.HTTP_502_BAD_GATEWAY, secrets=[api_key]),
        )

    if ok:
        return ConnectionTestResponse(ok=True, message="Connection successful")
    return ConnectionTestResponse(ok=False, message="Unexpected response from the API")
