"""Service interfaces for AI content generation.

Protocols for the external collaborators of the pipeline so concrete
backends and sinks are injected explicitly instead of resolved globally.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable, Mapping
from typing import Any, Protocol

from services.ai.models import BackendReply, FeedbackRecord, GenerationChunk, GenerationResult


ChunkCallback = Callable[[GenerationChunk], None]


class GenerationBackendProtocol(Protocol):
    """Remote generation endpoint the client talks to."""

    async def call_once(self, prompt: str) -> BackendReply:
        """Return the complete generated text for a prompt."""
        ...

    def call_streaming(self, prompt: str) -> AsyncIterator[str]:
        """Return an async iterator of text fragments in arrival order.

        Implementations should be async generator functions so that calling
        this method returns the iterator without awaiting.
        """
        ...

    async def probe(self) -> bool:
        """Cheap readiness check; may raise, callers degrade to unavailable."""
        ...


class GenerationClientProtocol(Protocol):
    """What the orchestrator needs from a generation client."""

    async def generate(
        self, prompt: str, *, template_id: str | None = None
    ) -> GenerationResult:
        ...

    async def generate_streaming(
        self,
        prompt: str,
        on_chunk: ChunkCallback,
        *,
        template_id: str | None = None,
    ) -> GenerationResult:
        ...


class AnalyticsSinkProtocol(Protocol):
    """Fire-and-forget usage event sink; callers ignore its failures."""

    async def record(self, event_name: str, context: Mapping[str, Any]) -> None:
        ...


class FeedbackSinkProtocol(Protocol):
    """Best-effort destination for submitted feedback records."""

    async def record(self, feedback: FeedbackRecord) -> None:
        ...
