"""Generation client: one round trip to the generation backend.

The client is the only place where raw backend exceptions are turned into
`AIError`. It owns request shaping (prompt validation, timeout, progress
estimation, content ids) but never retries; `AIError.retryable` only tells
callers whether trying again could help.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
import logging
import threading
import time
from typing import Any

import httpx
import openai
from pydantic import ValidationError
from pydantic_ai.exceptions import ModelHTTPError, UnexpectedModelBehavior

from core.observability import get_tracer
from services.ai.exceptions import AIError, AIErrorKind, EmptyPromptError
from services.ai.interfaces import ChunkCallback, GenerationBackendProtocol
from services.ai.models import (
    PROGRESS_MAX,
    BackendReply,
    GenerationChunk,
    GenerationResult,
)


logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)

# Rough characters-per-token ratio used to estimate stream progress
CHARS_PER_TOKEN = 4
# Progress ceiling until the stream has actually ended
STREAMING_PROGRESS_CAP = PROGRESS_MAX - 1
RAW_PROMPT_PREFIX = "prompt"

_RATE_LIMIT_HINTS = ("rate limit", "rate_limit", "too many requests", "quota")
_TIMEOUT_HINTS = ("timed out", "timeout")
_NETWORK_HINTS = ("network", "connection", "unreachable", "dns")


class ContentIdFactory:
    """Issues ``<prefix>-<epoch ms>`` ids, unique within the process.

    Ids requested within the same millisecond are bumped forward so two
    invocations never share an id.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._last_ms = 0

    def next_id(self, prefix: str) -> str:
        with self._lock:
            now_ms = time.time_ns() // 1_000_000
            self._last_ms = max(now_ms, self._last_ms + 1)
            return f"{prefix}-{self._last_ms}"


_content_ids = ContentIdFactory()


def _status_code_of(exc: BaseException) -> int | None:
    if isinstance(exc, ModelHTTPError):
        return exc.status_code
    if isinstance(exc, openai.APIStatusError):
        return exc.status_code
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code
    status = getattr(exc, "status_code", None)
    return status if isinstance(status, int) else None


def _kind_for_status(status: int) -> AIErrorKind | None:
    if status == 429:
        return AIErrorKind.RATE_LIMIT
    if status == 408 or 500 <= status <= 599:
        return AIErrorKind.SERVER
    if 400 <= status <= 499:
        return AIErrorKind.VALIDATION
    return None


def _kind_from_message(message: str) -> AIErrorKind:
    lowered = message.lower()
    if any(hint in lowered for hint in _RATE_LIMIT_HINTS):
        return AIErrorKind.RATE_LIMIT
    if any(hint in lowered for hint in _TIMEOUT_HINTS):
        return AIErrorKind.SERVER
    if any(hint in lowered for hint in _NETWORK_HINTS):
        return AIErrorKind.NETWORK
    return AIErrorKind.UNKNOWN


def classify_error(exc: BaseException) -> AIError:
    """Normalize any backend failure into an `AIError`."""
    if isinstance(exc, AIError):
        return exc

    message = str(exc) or exc.__class__.__name__

    # APITimeoutError subclasses APIConnectionError; timeouts must win
    if isinstance(exc, (TimeoutError, httpx.TimeoutException, openai.APITimeoutError)):
        return AIError(
            message="The generation service timed out", kind=AIErrorKind.SERVER, cause=exc
        )

    status = _status_code_of(exc)
    if status is not None:
        kind = _kind_for_status(status)
        if kind is not None:
            return AIError(message=message, kind=kind, cause=exc)

    if isinstance(exc, openai.RateLimitError):
        return AIError(message=message, kind=AIErrorKind.RATE_LIMIT, cause=exc)

    if isinstance(exc, (UnexpectedModelBehavior, ValidationError)):
        return AIError(message=message, kind=AIErrorKind.VALIDATION, cause=exc)

    if isinstance(exc, (httpx.TransportError, openai.APIConnectionError, ConnectionError)):
        return AIError(message=message, kind=AIErrorKind.NETWORK, cause=exc)

    return AIError(message=message, kind=_kind_from_message(message), cause=exc)


class GenerationClient:
    """Whole-response and streaming generation over a backend."""

    def __init__(
        self,
        backend: GenerationBackendProtocol,
        *,
        max_tokens: int = 1000,
        timeout_seconds: float = 60.0,
    ) -> None:
        if max_tokens <= 0:
            raise ValueError("max_tokens must be positive")
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")
        self._backend = backend
        self._max_tokens = max_tokens
        self._timeout_seconds = timeout_seconds

    @property
    def expected_chars(self) -> int:
        return self._max_tokens * CHARS_PER_TOKEN

    def _estimate_progress(self, received_chars: int) -> int:
        estimate = received_chars * PROGRESS_MAX // self.expected_chars
        return min(STREAMING_PROGRESS_CAP, estimate)

    @staticmethod
    def _validate_prompt(prompt: str) -> None:
        if not prompt or not prompt.strip():
            raise EmptyPromptError()

    def _content_id(self, reply_id: str | None, template_id: str | None) -> str:
        if reply_id:
            return reply_id
        return _content_ids.next_id(template_id or RAW_PROMPT_PREFIX)

    async def generate(
        self, prompt: str, *, template_id: str | None = None
    ) -> GenerationResult:
        """Generate the whole response in one round trip."""
        self._validate_prompt(prompt)

        with tracer.start_as_current_span("ai.generate") as span:
            span.set_attribute("ai.template_id", template_id or RAW_PROMPT_PREFIX)
            span.set_attribute("ai.prompt_length", len(prompt))
            try:
                async with asyncio.timeout(self._timeout_seconds):
                    reply: BackendReply = await self._backend.call_once(prompt)
            except Exception as exc:
                error = classify_error(exc)
                span.set_attribute("ai.error_kind", error.error_code)
                logger.warning(
                    "Generation failed (template=%s, kind=%s): %s",
                    template_id,
                    error.error_code,
                    error.message,
                )
                if error is exc:
                    raise
                raise error from exc

            span.set_attribute("ai.content_length", len(reply.text))

        metadata: dict[str, Any] = {
            "template_id": template_id,
            "streaming": False,
            "model_name": reply.model_name,
        }
        return GenerationResult(
            content=reply.text,
            content_id=self._content_id(reply.response_id, template_id),
            metadata=metadata,
        )

    async def generate_streaming(
        self,
        prompt: str,
        on_chunk: ChunkCallback,
        *,
        template_id: str | None = None,
    ) -> GenerationResult:
        """Stream fragments to ``on_chunk`` and return the concatenated result.

        One fragment is held back so the final chunk is the one that reports
        100; every earlier chunk is capped at 99.
        """
        self._validate_prompt(prompt)

        parts: list[str] = []
        received = 0
        chunk_count = 0
        pending: str | None = None

        with tracer.start_as_current_span("ai.generate_streaming") as span:
            span.set_attribute("ai.template_id", template_id or RAW_PROMPT_PREFIX)
            span.set_attribute("ai.prompt_length", len(prompt))
            try:
                async with asyncio.timeout(self._timeout_seconds):
                    stream: AsyncIterator[str] = self._backend.call_streaming(prompt)
                    async for fragment in stream:
                        if not fragment:
                            continue
                        if pending is not None:
                            on_chunk(
                                GenerationChunk(
                                    text=pending,
                                    progress=self._estimate_progress(received),
                                )
                            )
                            chunk_count += 1
                        parts.append(fragment)
                        received += len(fragment)
                        pending = fragment
            except Exception as exc:
                error = classify_error(exc)
                span.set_attribute("ai.error_kind", error.error_code)
                span.set_attribute("ai.chunk_count", chunk_count)
                logger.warning(
                    "Streaming generation failed after %d chunk(s) (template=%s, kind=%s): %s",
                    chunk_count,
                    template_id,
                    error.error_code,
                    error.message,
                )
                if error is exc:
                    raise
                raise error from exc

            on_chunk(GenerationChunk(text=pending or "", progress=PROGRESS_MAX))
            chunk_count += 1
            content = "".join(parts)
            span.set_attribute("ai.content_length", len(content))
            span.set_attribute("ai.chunk_count", chunk_count)

        metadata: dict[str, Any] = {
            "template_id": template_id,
            "streaming": True,
            "model_name": None,
            "chunk_count": chunk_count,
        }
        return GenerationResult(
            content=content,
            content_id=self._content_id(None, template_id),
            metadata=metadata,
        )

    async def check_availability(self) -> bool:
        """Probe the backend; every failure degrades to ``False``."""
        try:
            async with asyncio.timeout(self._timeout_seconds):
                return bool(await self._backend.probe())
        except Exception as exc:
            error = classify_error(exc)
            logger.warning(
                "Generation backend unavailable (kind=%s): %s",
                error.error_code,
                error.message,
            )
            return False
