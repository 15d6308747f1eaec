"""Generation orchestrator: per-invocation lifecycle state machine.

Idle -> InFlight -> (Streaming) -> Succeeded | Failed, with ``reset`` returning
to Idle from anywhere. Every transition replaces the immutable state snapshot
and emits one typed lifecycle event to subscribers, in transition order.

Cancellation is cooperative: ``start`` and ``reset`` mark the current
invocation ``superseded``; the backend call keeps running in the background,
but anything it reports afterwards is logged and dropped instead of touching
the newer state.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from enum import StrEnum
import itertools
import logging
from typing import Any

from services.ai.client import classify_error
from services.ai.exceptions import AIError
from services.ai.interfaces import GenerationClientProtocol
from services.ai.models import (
    PROGRESS_MAX,
    GenerationChunk,
    GenerationRequest,
    GenerationResult,
    ParamValue,
)
from services.ai.templates import TemplateResolver


logger = logging.getLogger(__name__)


class OrchestratorStatus(StrEnum):
    IDLE = "idle"
    IN_FLIGHT = "in_flight"
    STREAMING = "streaming"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


BUSY_STATUSES = frozenset({OrchestratorStatus.IN_FLIGHT, OrchestratorStatus.STREAMING})


@dataclass(frozen=True, slots=True)
class OrchestratorState:
    status: OrchestratorStatus = OrchestratorStatus.IDLE
    template_id: str | None = None
    progress: int = 0
    content: str = ""
    error: AIError | None = None
    result: GenerationResult | None = None

    @property
    def is_busy(self) -> bool:
        return self.status in BUSY_STATUSES


@dataclass(frozen=True, slots=True)
class Started:
    invocation_id: int
    state: OrchestratorState


@dataclass(frozen=True, slots=True)
class ChunkReceived:
    invocation_id: int
    state: OrchestratorState
    chunk: GenerationChunk


@dataclass(frozen=True, slots=True)
class Succeeded:
    invocation_id: int
    state: OrchestratorState
    result: GenerationResult


@dataclass(frozen=True, slots=True)
class Failed:
    invocation_id: int
    state: OrchestratorState
    error: AIError


@dataclass(frozen=True, slots=True)
class Reset:
    invocation_id: int | None
    state: OrchestratorState


LifecycleEvent = Started | ChunkReceived | Succeeded | Failed | Reset
Subscriber = Callable[[LifecycleEvent], None]


@dataclass(slots=True)
class Invocation:
    id: int
    request: GenerationRequest
    superseded: bool = False
    task: asyncio.Task[None] | None = field(default=None, repr=False)


class GenerationOrchestrator:
    """Runs one generation at a time and reports its lifecycle."""

    def __init__(
        self,
        resolver: TemplateResolver,
        client: GenerationClientProtocol,
        *,
        streaming: bool = True,
    ) -> None:
        self._resolver = resolver
        self._client = client
        self._streaming = streaming
        self._state = OrchestratorState()
        self._current: Invocation | None = None
        self._subscribers: list[Subscriber] = []
        self._ids = itertools.count(1)
        # Strong references so in-flight tasks are not garbage collected
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def state(self) -> OrchestratorState:
        return self._state

    @property
    def is_busy(self) -> bool:
        return self._state.is_busy

    @property
    def current_invocation(self) -> Invocation | None:
        return self._current

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback`` for lifecycle events; returns an unsubscriber."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def start(
        self,
        template_id: str,
        parameters: Mapping[str, ParamValue] | None = None,
        *,
        streaming: bool | None = None,
    ) -> None:
        """Begin a new invocation, superseding any current one.

        Template resolution happens synchronously; a resolution failure goes
        straight to Failed without the client ever being called. Must be
        called from within a running event loop.
        """
        request = GenerationRequest(
            template_id=template_id,
            parameters=parameters or {},
            streaming=self._streaming if streaming is None else streaming,
        )
        self._supersede_current()
        invocation = Invocation(id=next(self._ids), request=request)
        self._current = invocation

        state = OrchestratorState(
            status=OrchestratorStatus.IN_FLIGHT, template_id=template_id
        )
        self._apply(Started(invocation.id, state))

        try:
            prompt = self._resolver.resolve(template_id, request.parameters)
        except AIError as exc:
            logger.info(
                "Template resolution failed for %s (kind=%s)",
                template_id,
                exc.error_code,
            )
            self._fail(invocation, exc)
            return

        task = asyncio.get_running_loop().create_task(self._run(invocation, prompt))
        invocation.task = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def reset(self) -> None:
        """Synchronously return to Idle, superseding any in-flight call."""
        superseded_id = self._current.id if self._current else None
        self._supersede_current()
        self._current = None
        self._apply(Reset(superseded_id, OrchestratorState()))

    async def wait_until_settled(self) -> OrchestratorState:
        """Wait for the current invocation's call to finish; returns the state."""
        invocation = self._current
        if invocation is not None and invocation.task is not None:
            await asyncio.shield(invocation.task)
        return self._state

    def close(self) -> None:
        self.reset()
        self._subscribers.clear()

    async def _run(self, invocation: Invocation, prompt: str) -> None:
        request = invocation.request
        try:
            if request.streaming:
                result = await self._client.generate_streaming(
                    prompt,
                    lambda chunk: self._on_chunk(invocation, chunk),
                    template_id=request.template_id,
                )
            else:
                result = await self._client.generate(
                    prompt, template_id=request.template_id
                )
        except Exception as exc:
            self._fail(invocation, classify_error(exc))
            return
        self._succeed(invocation, result)

    def _on_chunk(self, invocation: Invocation, chunk: GenerationChunk) -> None:
        if self._is_stale(invocation, "chunk"):
            return
        state = replace(
            self._state,
            status=OrchestratorStatus.STREAMING,
            progress=max(self._state.progress, chunk.progress),
            content=self._state.content + chunk.text,
        )
        self._apply(ChunkReceived(invocation.id, state, chunk))

    def _succeed(self, invocation: Invocation, result: GenerationResult) -> None:
        if self._is_stale(invocation, "result"):
            return
        state = replace(
            self._state,
            status=OrchestratorStatus.SUCCEEDED,
            progress=PROGRESS_MAX,
            content=result.content,
            result=result,
        )
        self._apply(Succeeded(invocation.id, state, result))

    def _fail(self, invocation: Invocation, error: AIError) -> None:
        if self._is_stale(invocation, "error"):
            return
        state = replace(self._state, status=OrchestratorStatus.FAILED, error=error)
        self._apply(Failed(invocation.id, state, error))

    def _is_stale(self, invocation: Invocation, what: str) -> bool:
        if invocation.superseded:
            logger.debug(
                "Dropping %s from superseded invocation %d", what, invocation.id
            )
            return True
        return False

    def _supersede_current(self) -> None:
        if self._current is not None:
            self._current.superseded = True

    def _apply(self, event: LifecycleEvent) -> None:
        self._state = event.state
        for subscriber in list(self._subscribers):
            try:
                subscriber(event)
            except Exception:
                logger.exception(
                    "Lifecycle subscriber failed on %s", type(event).__name__
                )


@dataclass(slots=True)
class GenerationCallbacks:
    """Adapts lifecycle events to plain callbacks.

    Usage:
        orchestrator.subscribe(GenerationCallbacks(on_complete=save_draft))
    """

    on_stream: Callable[[str, int], None] | None = None
    on_complete: Callable[[str, Mapping[str, Any]], None] | None = None
    on_error: Callable[[AIError], None] | None = None
    on_reset: Callable[[], None] | None = None

    def __call__(self, event: LifecycleEvent) -> None:
        if isinstance(event, ChunkReceived) and self.on_stream:
            self.on_stream(event.chunk.text, event.chunk.progress)
        elif isinstance(event, Succeeded) and self.on_complete:
            metadata = {**event.result.metadata, "content_id": event.result.content_id}
            self.on_complete(event.result.content, metadata)
        elif isinstance(event, Failed) and self.on_error:
            self.on_error(event.error)
        elif isinstance(event, Reset) and self.on_reset:
            self.on_reset()
