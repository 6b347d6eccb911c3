"""Cache maintenance endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status

from mailreview.api.dependencies import get_review_service
from mailreview.api.models import CacheStatsResponse
from mailreview.review import ReviewService
from mailreview.storage import StorageFailure

router = APIRouter(prefix="/api/cache", tags=["cache"])


@router.delete("")
async def purge_cache(service: ReviewService = Depends(get_review_service)) -> dict[str, Any]:
    """Delete every cached review and session checkpoint (privacy reset)."""
    try:
        await service.purge()
    except StorageFailure as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Cache could not be cleared",
        ) from e
    return {"status": "cleared"}


@router.get("/stats", response_model=CacheStatsResponse)
async def cache_stats(service: ReviewService = Depends(get_review_service)) -> CacheStatsResponse:
    try:
        stats = await service.cache.stats()
    except StorageFailure as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Cache unavailable",
        ) from e
    return CacheStatsResponse(**stats)
