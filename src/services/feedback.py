"""Feedback capture for generated content.

`FeedbackRecorder` validates a rating into a `FeedbackRecord` and forwards it
to a sink exactly once. Sink delivery is best effort: failures are logged and
reported as ``False``, never raised. `FeedbackPrompt` is the one-shot surface
offered after a successful generation.
"""

from __future__ import annotations

from collections import Counter, OrderedDict, deque
from collections.abc import Mapping
import logging
from typing import Any

import httpx
from pydantic import ValidationError

from core.exceptions import FeedbackPromptClosedError
from services.ai.interfaces import AnalyticsSinkProtocol, FeedbackSinkProtocol
from services.ai.models import FeedbackRecord
from services.analytics import AI_FEEDBACK_EVENT, DEFAULT_MAX_RECORDS, record_event


logger = logging.getLogger(__name__)


class InMemoryFeedbackSink:
    """Keeps the newest ``max_records`` feedback records in process memory."""

    def __init__(self, max_records: int = DEFAULT_MAX_RECORDS) -> None:
        if max_records <= 0:
            raise ValueError("max_records must be positive")
        self._records: deque[FeedbackRecord] = deque(maxlen=max_records)

    @property
    def records(self) -> list[FeedbackRecord]:
        return list(self._records)

    async def record(self, feedback: FeedbackRecord) -> None:
        self._records.append(feedback)

    def stats(self) -> dict[str, Any]:
        rating_counts = {rating: 0 for rating in range(1, 6)}
        rating_counts.update(Counter(r.rating for r in self._records))
        total = len(self._records)
        average = sum(r.rating for r in self._records) / total if total else 0.0
        return {
            "total_count": total,
            "average_rating": average,
            "rating_counts": rating_counts,
        }

    def clear(self) -> None:
        self._records.clear()


class HttpFeedbackSink:
    """POSTs each record as JSON to a feedback endpoint."""

    def __init__(
        self,
        endpoint: str,
        *,
        timeout_seconds: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._endpoint = endpoint
        self._timeout = timeout_seconds
        self._client = client

    async def record(self, feedback: FeedbackRecord) -> None:
        payload = feedback.model_dump(mode="json")
        if self._client is not None:
            response = await self._client.post(
                self._endpoint, json=payload, timeout=self._timeout
            )
            response.raise_for_status()
            return
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.post(self._endpoint, json=payload)
            response.raise_for_status()


class SubmittedContentIds:
    """Remembers which content ids already received feedback.

    Bounded: once ``capacity`` ids are held the oldest is forgotten.
    """

    def __init__(self, capacity: int = DEFAULT_MAX_RECORDS) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._capacity = capacity
        self._ids: OrderedDict[str, None] = OrderedDict()

    def __contains__(self, content_id: object) -> bool:
        return content_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def claim(self, content_id: str) -> bool:
        """Mark ``content_id`` as submitted; False if it already was."""
        if content_id in self._ids:
            return False
        self._ids[content_id] = None
        if len(self._ids) > self._capacity:
            self._ids.popitem(last=False)
        return True

    def clear(self) -> None:
        self._ids.clear()


class FeedbackRecorder:
    def __init__(
        self,
        sink: FeedbackSinkProtocol,
        *,
        analytics: AnalyticsSinkProtocol | None = None,
        submitted: SubmittedContentIds | None = None,
    ) -> None:
        self._sink = sink
        self._analytics = analytics
        self._submitted = submitted

    async def submit(
        self,
        content_id: str,
        template_id: str,
        rating: int,
        comments: str = "",
        metadata: Mapping[str, Any] | None = None,
    ) -> bool:
        """Validate and forward one feedback record.

        Raises:
            pydantic.ValidationError: rating outside 1..5 or empty ids; nothing
                is sent in that case.
            FeedbackPromptClosedError: feedback for this content id was already
                submitted.

        Returns:
            True when the sink accepted the record, False when it failed.
        """
        record = FeedbackRecord(
            content_id=content_id,
            template_id=template_id,
            rating=rating,
            comments=comments,
            metadata=dict(metadata or {}),
        )
        submitted = self._submitted
        if submitted is not None and not submitted.claim(record.content_id):
            raise FeedbackPromptClosedError(
                f"Feedback for {record.content_id} was already submitted"
            )

        try:
            await self._sink.record(record)
            delivered = True
        except Exception:
            logger.warning(
                "Failed to deliver feedback for %s", record.content_id, exc_info=True
            )
            delivered = False

        await record_event(
            self._analytics,
            AI_FEEDBACK_EVENT,
            {
                "template_id": record.template_id,
                "rating": record.rating,
                "has_comments": bool(record.comments.strip()),
            },
        )
        return delivered

    def prompt_for(
        self,
        content_id: str,
        template_id: str,
        metadata: Mapping[str, Any] | None = None,
    ) -> FeedbackPrompt:
        return FeedbackPrompt(self, content_id, template_id, metadata=metadata)


class FeedbackPrompt:
    """Accepts exactly one feedback submission for one generated artifact."""

    def __init__(
        self,
        recorder: FeedbackRecorder,
        content_id: str,
        template_id: str,
        *,
        metadata: Mapping[str, Any] | None = None,
    ) -> None:
        self._recorder = recorder
        self.content_id = content_id
        self.template_id = template_id
        self._metadata = dict(metadata or {})
        self._dismissed = False

    @property
    def is_open(self) -> bool:
        return not self._dismissed

    def dismiss(self) -> None:
        self._dismissed = True

    async def submit(self, rating: int, comments: str = "") -> bool:
        """Submit once; the prompt closes whatever the sink outcome.

        An invalid rating raises ``ValidationError`` and leaves the prompt open.
        """
        if self._dismissed:
            raise FeedbackPromptClosedError(
                f"Feedback for {self.content_id} was already submitted"
            )
        self._dismissed = True
        try:
            return await self._recorder.submit(
                self.content_id,
                self.template_id,
                rating,
                comments,
                metadata=self._metadata,
            )
        except ValidationError:
            self._dismissed = False
            raise
