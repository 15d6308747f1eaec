"""API endpoints for user feedback on generated content."""

from __future__ import annotations

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, status

from dependencies.ai import get_analytics_sink, get_feedback_recorder, get_feedback_sink
from schemas.ai import FeedbackReceipt, FeedbackRequest
from schemas.api import ApiResponse
from services.ai.interfaces import FeedbackSinkProtocol
from services.analytics import InMemoryAnalyticsSink
from services.feedback import FeedbackRecorder, InMemoryFeedbackSink


router = APIRouter(prefix="/ai", tags=["feedback"])

logger = logging.getLogger(__name__)


@router.post(
    "/feedback",
    status_code=status.HTTP_200_OK,
    response_model=ApiResponse[FeedbackReceipt],
)
async def submit_feedback(
    feedback: FeedbackRequest,
    recorder: Annotated[FeedbackRecorder, Depends(get_feedback_recorder)],
) -> ApiResponse[FeedbackReceipt]:
    """Rate one generated artifact (1-5) with an optional comment.

    Each content id accepts one submission; a repeat is rejected with 409.
    Delivery to the feedback sink is best effort; `delivered` reports whether
    the sink accepted the record.
    """
    delivered = await recorder.submit(
        feedback.content_id,
        feedback.template_id,
        feedback.rating,
        feedback.comments,
        metadata=feedback.metadata,
    )
    logger.info(
        "Feedback %d/5 for %s (delivered=%s)",
        feedback.rating,
        feedback.content_id,
        delivered,
    )
    return ApiResponse(
        data=FeedbackReceipt(delivered=delivered), message="Feedback received"
    )


@router.get("/feedback/stats", response_model=ApiResponse[dict[str, Any]])
def feedback_stats(
    sink: Annotated[FeedbackSinkProtocol, Depends(get_feedback_sink)],
) -> ApiResponse[dict[str, Any]]:
    """Summary of locally stored feedback (only for the in-memory sink)."""
    if not isinstance(sink, InMemoryFeedbackSink):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Feedback is forwarded to an external endpoint",
        )
    return ApiResponse(data=sink.stats(), message="Feedback statistics")


@router.get("/usage/stats", response_model=ApiResponse[dict[str, Any]])
def usage_stats(
    analytics: Annotated[InMemoryAnalyticsSink, Depends(get_analytics_sink)],
) -> ApiResponse[dict[str, Any]]:
    """Anonymous AI usage and event counters."""
    return ApiResponse(
        data={**analytics.ai_usage_stats(), **analytics.event_stats()},
        message="Usage statistics",
    )
