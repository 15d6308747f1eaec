"""Invocation control: the "AI assist" trigger for one report section.

Collects the template, parameters and optional references, drives its own
orchestrator and turns lifecycle events into a render-ready `ControlView`.
Errors are shown and then cleared automatically after a short delay.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from enum import StrEnum
import logging

from services.ai.interfaces import AnalyticsSinkProtocol
from services.ai.models import ParamValue, Reference
from services.ai.orchestrator import (
    Failed,
    GenerationOrchestrator,
    LifecycleEvent,
    OrchestratorStatus,
    Succeeded,
)
from services.ai.templates import REFERENCES_PARAMETER
from services.analytics import AI_ASSIST_EVENT, record_event_in_background
from services.feedback import FeedbackPrompt, FeedbackRecorder


logger = logging.getLogger(__name__)

DEFAULT_ERROR_CLEAR_DELAY = 5.0


class ControlStatus(StrEnum):
    IDLE = "idle"
    LOADING = "loading"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class ControlView:
    status: ControlStatus
    disabled: bool
    show_spinner: bool
    progress: int
    show_progress_bar: bool
    error_message: str | None = None


def format_references(references: Sequence[Reference]) -> str:
    """Flatten references into ``- <title> by <author> (<year>)`` lines."""
    lines = []
    for ref in references:
        year = f" ({ref.year})" if ref.year else ""
        lines.append(f"- {ref.title} by {ref.author}{year}")
    return "\n".join(lines)


class AssistControl:
    def __init__(
        self,
        orchestrator: GenerationOrchestrator,
        *,
        template_id: str,
        parameters: Mapping[str, ParamValue],
        on_content_generated: Callable[[str], None],
        references: Sequence[Reference] = (),
        streaming: bool = True,
        show_feedback: bool = False,
        feedback_recorder: FeedbackRecorder | None = None,
        analytics: AnalyticsSinkProtocol | None = None,
        disabled: bool = False,
        error_clear_delay: float = DEFAULT_ERROR_CLEAR_DELAY,
    ) -> None:
        self._orchestrator = orchestrator
        self.template_id = template_id
        self.parameters: Mapping[str, ParamValue] = dict(parameters)
        self.references: tuple[Reference, ...] = tuple(references)
        self._on_content_generated = on_content_generated
        self._streaming = streaming
        self._show_feedback = show_feedback
        self._feedback_recorder = feedback_recorder
        self._analytics = analytics
        self.disabled = disabled
        self._error_clear_delay = error_clear_delay

        self._clear_handle: asyncio.TimerHandle | None = None
        self._delivered_invocation: int | None = None
        self._feedback_prompt: FeedbackPrompt | None = None
        self._unsubscribe: Callable[[], None] | None = orchestrator.subscribe(
            self._on_event
        )

    @property
    def feedback_prompt(self) -> FeedbackPrompt | None:
        """The open feedback prompt for the latest result, if any."""
        if self._feedback_prompt is not None and not self._feedback_prompt.is_open:
            self._feedback_prompt = None
        return self._feedback_prompt

    @property
    def view(self) -> ControlView:
        state = self._orchestrator.state
        if state.is_busy:
            return ControlView(
                status=ControlStatus.LOADING,
                disabled=True,
                show_spinner=True,
                progress=state.progress,
                show_progress_bar=self._streaming and state.progress > 0,
            )
        if state.status is OrchestratorStatus.FAILED and state.error is not None:
            return ControlView(
                status=ControlStatus.ERROR,
                disabled=self.disabled,
                show_spinner=False,
                progress=state.progress,
                show_progress_bar=False,
                error_message=state.error.message,
            )
        return ControlView(
            status=ControlStatus.IDLE,
            disabled=self.disabled,
            show_spinner=False,
            progress=state.progress,
            show_progress_bar=False,
        )

    def trigger(self) -> bool:
        """Start a generation; returns False when ignored (disabled or busy)."""
        if self.disabled or self._orchestrator.is_busy:
            return False

        record_event_in_background(
            self._analytics,
            AI_ASSIST_EVENT,
            {
                "template_id": self.template_id,
                "has_references": bool(self.references),
                "reference_count": len(self.references),
            },
        )

        self._cancel_auto_clear()
        self._hide_feedback()
        self._orchestrator.reset()

        parameters = dict(self.parameters)
        if self.references:
            parameters[REFERENCES_PARAMETER] = format_references(self.references)

        self._orchestrator.start(
            self.template_id, parameters, streaming=self._streaming
        )
        return True

    def close(self) -> None:
        """Tear down: cancel timers, stop listening and reset the orchestrator."""
        self._cancel_auto_clear()
        self._hide_feedback()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._orchestrator.reset()

    def _on_event(self, event: LifecycleEvent) -> None:
        if isinstance(event, Succeeded):
            self._handle_success(event)
        elif isinstance(event, Failed):
            self._handle_failure(event)

    def _handle_success(self, event: Succeeded) -> None:
        if self._delivered_invocation == event.invocation_id:
            return
        self._delivered_invocation = event.invocation_id
        self._on_content_generated(event.result.content)

        if self._show_feedback and self._feedback_recorder is not None:
            self._feedback_prompt = self._feedback_recorder.prompt_for(
                event.result.content_id, self.template_id
            )

    def _handle_failure(self, event: Failed) -> None:
        logger.info(
            "AI assist for %s failed (kind=%s)",
            self.template_id,
            event.error.error_code,
        )
        self._hide_feedback()
        self._cancel_auto_clear()
        self._clear_handle = asyncio.get_running_loop().call_later(
            self._error_clear_delay, self._auto_clear, event.invocation_id
        )

    def _auto_clear(self, invocation_id: int) -> None:
        self._clear_handle = None
        current = self._orchestrator.current_invocation
        if (
            current is not None
            and current.id == invocation_id
            and self._orchestrator.state.status is OrchestratorStatus.FAILED
        ):
            self._orchestrator.reset()

    def _cancel_auto_clear(self) -> None:
        if self._clear_handle is not None:
            self._clear_handle.cancel()
            self._clear_handle = None

    def _hide_feedback(self) -> None:
        if self._feedback_prompt is not None:
            self._feedback_prompt.dismiss()
            self._feedback_prompt = None
