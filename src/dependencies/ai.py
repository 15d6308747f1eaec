"""Dependency providers for the content generation pipeline.

Long-lived collaborators (template registry, backend, sinks) are built once
and cached; each request gets its own orchestrator. Nothing here touches the
network at import time, so the app starts without provider credentials.
"""

from __future__ import annotations

from functools import lru_cache
import logging
from typing import Annotated, Any

from fastapi import Depends

from core.config import get_settings
from services.ai.agents import AgentGenerationBackend
from services.ai.assist_control import AssistControl
from services.ai.client import GenerationClient
from services.ai.interfaces import FeedbackSinkProtocol, GenerationBackendProtocol
from services.ai.orchestrator import GenerationOrchestrator
from services.ai.templates import TemplateRegistry, TemplateResolver, build_default_registry
from services.analytics import InMemoryAnalyticsSink
from services.feedback import (
    FeedbackRecorder,
    HttpFeedbackSink,
    InMemoryFeedbackSink,
    SubmittedContentIds,
)


logger = logging.getLogger(__name__)


@lru_cache
def get_template_registry() -> TemplateRegistry:
    return build_default_registry(get_settings().TEMPLATE_DIR)


def get_template_resolver(
    registry: Annotated[TemplateRegistry, Depends(get_template_registry)],
) -> TemplateResolver:
    return TemplateResolver(registry)


@lru_cache
def get_generation_backend() -> GenerationBackendProtocol:
    return AgentGenerationBackend()


def get_generation_client(
    backend: Annotated[GenerationBackendProtocol, Depends(get_generation_backend)],
) -> GenerationClient:
    settings = get_settings()
    return GenerationClient(
        backend,
        max_tokens=settings.GENERATION_MAX_TOKENS,
        timeout_seconds=settings.GENERATION_TIMEOUT_SECONDS,
    )


def get_orchestrator(
    resolver: Annotated[TemplateResolver, Depends(get_template_resolver)],
    client: Annotated[GenerationClient, Depends(get_generation_client)],
) -> GenerationOrchestrator:
    return GenerationOrchestrator(resolver, client)


@lru_cache
def get_analytics_sink() -> InMemoryAnalyticsSink:
    return InMemoryAnalyticsSink(get_settings().ANALYTICS_MAX_RECORDS)


@lru_cache
def get_feedback_sink() -> FeedbackSinkProtocol:
    settings = get_settings()
    if settings.FEEDBACK_ENDPOINT:
        logger.info("Forwarding feedback to %s", settings.FEEDBACK_ENDPOINT)
        return HttpFeedbackSink(
            settings.FEEDBACK_ENDPOINT,
            timeout_seconds=settings.FEEDBACK_TIMEOUT_SECONDS,
        )
    return InMemoryFeedbackSink(settings.FEEDBACK_MAX_RECORDS)


@lru_cache
def get_submitted_content_ids() -> SubmittedContentIds:
    return SubmittedContentIds(get_settings().FEEDBACK_MAX_RECORDS)


def get_feedback_recorder(
    sink: Annotated[FeedbackSinkProtocol, Depends(get_feedback_sink)],
    analytics: Annotated[InMemoryAnalyticsSink, Depends(get_analytics_sink)],
    submitted: Annotated[SubmittedContentIds, Depends(get_submitted_content_ids)],
) -> FeedbackRecorder:
    return FeedbackRecorder(sink, analytics=analytics, submitted=submitted)


def create_assist_control(
    orchestrator: GenerationOrchestrator, **options: Any
) -> AssistControl:
    """Build an assist control wired to the shared sinks and configured delay."""
    options.setdefault("error_clear_delay", get_settings().ERROR_CLEAR_DELAY_SECONDS)
    options.setdefault("analytics", get_analytics_sink())
    if options.get("show_feedback"):
        options.setdefault(
            "feedback_recorder",
            FeedbackRecorder(
                get_feedback_sink(),
                analytics=get_analytics_sink(),
                submitted=get_submitted_content_ids(),
            ),
        )
    return AssistControl(orchestrator, **options)


def clear_dependency_caches() -> None:
    """Drop cached collaborators, e.g. after settings change in tests."""
    for provider in (
        get_template_registry,
        get_generation_backend,
        get_analytics_sink,
        get_feedback_sink,
        get_submitted_content_ids,
    ):
        provider.cache_clear()
