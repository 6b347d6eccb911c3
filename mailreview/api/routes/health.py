"""Health check endpoint."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Request

from mailreview.config import APP_VERSION

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(request: Request) -> dict[str, Any]:
    """Service status and whether the review service has been wired up."""
    return {
        "status": "healthy",
        "service": "Gemini Mail Review",
        "version": APP_VERSION,
        "timestamp": datetime.now(UTC).isoformat(),
        "ready": getattr(request.app.state, "review_service", None) is not None,
    }
