"""Privacy-focused usage analytics for the AI features.

Events are anonymous counters: metadata is stripped of credentials, personal
data and any generated or user-authored text before it is stored. Recording
is fire-and-forget; an analytics failure never affects the caller.
"""

from __future__ import annotations

import asyncio
from collections import Counter, deque
from collections.abc import Mapping
from datetime import UTC, datetime
import logging
import time
from typing import Any

from pydantic import BaseModel, Field

from core.security_config import is_analytics_excluded_key
from services.ai.interfaces import AnalyticsSinkProtocol


logger = logging.getLogger(__name__)

AI_ASSIST_EVENT = "ai_assist_button"
AI_FEEDBACK_EVENT = "ai_content_feedback"

DEFAULT_MAX_RECORDS = 1000

_background_tasks: set[asyncio.Task[None]] = set()


def sanitize_metadata(metadata: Mapping[str, Any] | None) -> dict[str, Any] | None:
    """Drop excluded keys; returns None when nothing safe remains."""
    if not metadata:
        return None
    sanitized = {
        key: value
        for key, value in metadata.items()
        if not is_analytics_excluded_key(key)
    }
    return sanitized or None


class AnalyticsEvent(BaseModel):
    event_name: str
    metadata: dict[str, Any] | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))


class AIUsageRecord(BaseModel):
    feature_id: str
    template_id: str | None = None
    success: bool
    response_time_ms: int | None = None
    error_type: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))


class InMemoryAnalyticsSink:
    """Process-local analytics store with summary statistics.

    Only the newest ``max_records`` events and usage records are kept; the
    statistics describe that retained window.
    """

    def __init__(self, max_records: int = DEFAULT_MAX_RECORDS) -> None:
        if max_records <= 0:
            raise ValueError("max_records must be positive")
        self._events: deque[AnalyticsEvent] = deque(maxlen=max_records)
        self._usage: deque[AIUsageRecord] = deque(maxlen=max_records)

    @property
    def events(self) -> list[AnalyticsEvent]:
        return list(self._events)

    @property
    def usage(self) -> list[AIUsageRecord]:
        return list(self._usage)

    async def record(self, event_name: str, context: Mapping[str, Any]) -> None:
        self._events.append(
            AnalyticsEvent(event_name=event_name, metadata=sanitize_metadata(context))
        )

    def track_ai_usage(
        self,
        feature_id: str,
        *,
        success: bool,
        template_id: str | None = None,
        response_time_ms: int | None = None,
        error_type: str | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> None:
        self._usage.append(
            AIUsageRecord(
                feature_id=feature_id,
                template_id=template_id,
                success=success,
                response_time_ms=response_time_ms,
                error_type=error_type,
                metadata=sanitize_metadata(metadata) or {},
            )
        )

    def event_stats(self) -> dict[str, Any]:
        return {
            "total_events": len(self._events),
            "events_by_name": dict(Counter(e.event_name for e in self._events)),
        }

    def ai_usage_stats(self) -> dict[str, Any]:
        total = len(self._usage)
        if total == 0:
            return {
                "total_usage": 0,
                "success_rate": 0.0,
                "average_response_time_ms": 0.0,
                "usage_by_feature": {},
                "error_rates": {},
            }
        successful = sum(1 for u in self._usage if u.success)
        times = [u.response_time_ms for u in self._usage if u.response_time_ms is not None]
        errors = Counter(u.error_type or "unknown" for u in self._usage if not u.success)
        return {
            "total_usage": total,
            "success_rate": successful / total * 100,
            "average_response_time_ms": sum(times) / len(times) if times else 0.0,
            "usage_by_feature": dict(Counter(u.feature_id for u in self._usage)),
            "error_rates": {kind: count / total * 100 for kind, count in errors.items()},
        }

    def clear(self) -> None:
        self._events.clear()
        self._usage.clear()


class AIOperationTimer:
    """Measures one AI operation and reports it to an in-memory sink.

    Usage:
        timer = AIOperationTimer(sink, "generate")
        ...
        timer.stop(success=True, template_id="analysis-data")
    """

    def __init__(self, sink: InMemoryAnalyticsSink, feature_id: str) -> None:
        self._sink = sink
        self._feature_id = feature_id
        self._started = time.perf_counter()

    def stop(
        self,
        *,
        success: bool,
        template_id: str | None = None,
        error_type: str | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> int:
        elapsed_ms = round((time.perf_counter() - self._started) * 1000)
        self._sink.track_ai_usage(
            self._feature_id,
            success=success,
            template_id=template_id,
            response_time_ms=elapsed_ms,
            error_type=error_type,
            metadata=metadata,
        )
        return elapsed_ms


async def record_event(
    sink: AnalyticsSinkProtocol | None,
    event_name: str,
    context: Mapping[str, Any],
) -> None:
    """Record an event, logging and swallowing sink failures."""
    if sink is None:
        return
    try:
        await sink.record(event_name, context)
    except Exception:
        logger.warning("Analytics sink failed to record %s", event_name, exc_info=True)


def record_event_in_background(
    sink: AnalyticsSinkProtocol | None,
    event_name: str,
    context: Mapping[str, Any],
) -> None:
    """Schedule ``record_event`` on the running loop without awaiting it."""
    if sink is None:
        return
    task = asyncio.get_running_loop().create_task(
        record_event(sink, event_name, dict(context))
    )
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
