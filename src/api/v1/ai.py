"""AI content generation endpoints."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator
import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from dependencies.ai import (
    get_analytics_sink,
    get_generation_client,
    get_orchestrator,
    get_template_registry,
)
from schemas.ai import (
    AvailabilityResponse,
    GenerateContentRequest,
    GeneratedContentResponse,
    GenerationSseEvent,
    TemplateSummary,
)
from schemas.api import ApiResponse
from services.ai.assist_control import format_references
from services.ai.client import GenerationClient
from services.ai.models import ParamValue
from services.ai.orchestrator import (
    ChunkReceived,
    Failed,
    GenerationOrchestrator,
    LifecycleEvent,
    OrchestratorStatus,
    Reset,
    Started,
    Succeeded,
)
from services.ai.templates import REFERENCES_PARAMETER, TemplateRegistry
from services.analytics import AIOperationTimer, InMemoryAnalyticsSink


__all__ = [
    "build_generation_stream",
    "generate_content",
    "generate_content_stream",
]


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ai", tags=["ai"])


def _request_parameters(body: GenerateContentRequest) -> dict[str, ParamValue]:
    parameters = dict(body.parameters)
    if body.references:
        parameters[REFERENCES_PARAMETER] = format_references(body.references)
    return parameters


@router.get("/templates", response_model=ApiResponse[list[TemplateSummary]])
def list_templates(
    registry: Annotated[TemplateRegistry, Depends(get_template_registry)],
    category: str | None = None,
    tag: str | None = None,
) -> ApiResponse[list[TemplateSummary]]:
    """List prompt templates, optionally filtered by category or tag."""
    templates = list(registry)
    if category:
        templates = registry.by_category(category)
    if tag:
        templates = [t for t in templates if tag in t.tags]
    return ApiResponse(
        data=[TemplateSummary.from_template(t) for t in templates],
        message="Templates retrieved",
    )


@router.get("/availability", response_model=ApiResponse[AvailabilityResponse])
async def check_availability(
    client: Annotated[GenerationClient, Depends(get_generation_client)],
) -> ApiResponse[AvailabilityResponse]:
    available = await client.check_availability()
    return ApiResponse(
        data=AvailabilityResponse(available=available),
        message="AI service available" if available else "AI service unavailable",
    )


@router.post("/generate", response_model=ApiResponse[GeneratedContentResponse])
async def generate_content(
    body: GenerateContentRequest,
    orchestrator: Annotated[GenerationOrchestrator, Depends(get_orchestrator)],
    analytics: Annotated[InMemoryAnalyticsSink, Depends(get_analytics_sink)],
) -> ApiResponse[GeneratedContentResponse]:
    """Run one whole-response generation.

    Classified failures are raised as `AIError` and rendered by the global
    handler (422 validation, 429 rate limit, 502 server, 503 network).
    """
    timer = AIOperationTimer(analytics, "generate")
    orchestrator.start(body.template_id, _request_parameters(body), streaming=False)
    state = await orchestrator.wait_until_settled()

    if state.status is OrchestratorStatus.FAILED and state.error is not None:
        timer.stop(
            success=False,
            template_id=body.template_id,
            error_type=state.error.error_code,
        )
        raise state.error

    result = state.result
    if result is None:  # pragma: no cover - settled without a result
        raise RuntimeError("Generation settled without a result")

    timer.stop(success=True, template_id=body.template_id)
    return ApiResponse(
        data=GeneratedContentResponse(
            content=result.content,
            content_id=result.content_id,
            template_id=body.template_id,
            metadata=dict(result.metadata),
        ),
        message="Content generated",
    )


@router.post("/generate-stream")
async def generate_content_stream(
    request: Request,
    body: GenerateContentRequest,
    orchestrator: Annotated[GenerationOrchestrator, Depends(get_orchestrator)],
) -> StreamingResponse:
    """Stream a generation as Server-Sent Events.

    Event contract (JSON in `data:` lines):
      started  -> template_id
      chunk    -> delta, progress (0-100, non-decreasing)
      complete -> content_id, progress 100
      error    -> detail, kind, retryable
    """
    return StreamingResponse(
        build_generation_stream(
            orchestrator,
            template_id=body.template_id,
            parameters=_request_parameters(body),
            correlation_id=getattr(request.state, "correlation_id", None),
        ),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


async def build_generation_stream(
    orchestrator: GenerationOrchestrator,
    *,
    template_id: str,
    parameters: dict[str, ParamValue],
    correlation_id: str | None = None,
) -> AsyncGenerator[str, None]:
    """Relay one invocation's lifecycle events as SSE lines.

    Closing the generator (client disconnect) supersedes the invocation.
    """
    queue: asyncio.Queue[LifecycleEvent] = asyncio.Queue()
    unsubscribe = orchestrator.subscribe(queue.put_nowait)
    try:
        orchestrator.start(template_id, parameters, streaming=True)
        while True:
            event = await queue.get()
            if isinstance(event, Started):
                yield GenerationSseEvent(
                    event="started",
                    template_id=template_id,
                    progress=0,
                    correlation_id=correlation_id,
                ).to_sse()
            elif isinstance(event, ChunkReceived):
                yield GenerationSseEvent(
                    event="chunk",
                    delta=event.chunk.text,
                    progress=event.state.progress,
                ).to_sse()
            elif isinstance(event, Succeeded):
                yield GenerationSseEvent.complete(
                    template_id, event.result.content_id, correlation_id
                ).to_sse()
                return
            elif isinstance(event, Failed):
                logger.info(
                    "Streaming generation failed for %s (kind=%s)",
                    template_id,
                    event.error.error_code,
                )
                yield GenerationSseEvent.failure(
                    template_id, event.error, correlation_id
                ).to_sse()
                return
            elif isinstance(event, Reset):
                return
    finally:
        unsubscribe()
        orchestrator.close()
