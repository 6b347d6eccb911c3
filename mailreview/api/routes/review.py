"""Review endpoints: run a pre-send review and fetch a session's previous one."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from mailreview.api.dependencies import get_review_service
from mailreview.api.models import PreviousReviewResponse, ReviewRequest, ReviewResponse
from mailreview.llm.gemini import RemoteServiceFailure
from mailreview.observability.logging import get_logger
from mailreview.review import MissingCredentialError, ReviewService
from mailreview.storage.models import ContentRecord
from mailreview.utils.error_sanitizer import sanitize_error_message

logger = get_logger(__name__)

router = APIRouter(prefix="/api/review", tags=["review"])


@router.post("", response_model=ReviewResponse)
async def review_email(
    request: ReviewRequest,
    service: ReviewService = Depends(get_review_service),
) -> ReviewResponse:
    """
    Review a composition before it is sent.

    Serves a cached review for unchanged content unless force_refresh is set.
    """
    record = ContentRecord(subject=request.subject, to=request.to, body=request.body)
    try:
        outcome = await service.review(
            record,
            session_id=request.session_id,
            force_refresh=request.force_refresh,
        )
    except MissingCredentialError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    except RemoteServiceFailure as e:
        logger.warning("Review failed: %s", e)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=sanitize_error_message(str(e), status.HTTP_502_BAD_GATEWAY),
        ) from e

    return ReviewResponse(
        analysis=outcome.analysis,
        from_cache=outcome.from_cache,
        digest=outcome.digest,
        content_changed=outcome.content_changed,
    )


@router.get("/previous/{session_id}", response_model=PreviousReviewResponse)
async def previous_review(
    session_id: str,
    service: ReviewService = Depends(get_review_service),
) -> PreviousReviewResponse:
    digest = await service.cache.checkpoints.get_checkpoint(session_id)
    entry = await service.previous_result(session_id)
    if digest is None or entry is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No previous review")
    return PreviousReviewResponse(analysis=entry.response, created_at=entry.created_at, digest=digest)
