"""Tests for the AI assist control: trigger guard, view, auto-clear, feedback."""

from __future__ import annotations

import asyncio

import pytest

from core.exceptions import FeedbackPromptClosedError
from dependencies.ai import (
    clear_dependency_caches,
    create_assist_control,
    get_analytics_sink,
    get_feedback_sink,
)
from services.ai.assist_control import (
    AssistControl,
    ControlStatus,
    format_references,
)
from services.ai.client import GenerationClient
from services.ai.models import Reference
from services.ai.orchestrator import GenerationOrchestrator, OrchestratorStatus
from services.ai.templates import (
    REFERENCES_PARAMETER,
    PromptTemplate,
    TemplateRegistry,
    TemplateResolver,
)
from services.analytics import AI_ASSIST_EVENT, InMemoryAnalyticsSink
from services.feedback import FeedbackRecorder, InMemoryFeedbackSink


INTRO_PARAMS = {"topic": "renewable energy", "researchQuestion": "What drives adoption?"}


def _control(
    orchestrator: GenerationOrchestrator,
    generated: list[str],
    **kwargs,
) -> AssistControl:
    kwargs.setdefault("template_id", "introduction-academic")
    kwargs.setdefault("parameters", INTRO_PARAMS)
    return AssistControl(orchestrator, on_content_generated=generated.append, **kwargs)


class TestFormatReferences:
    def test_lines_with_and_without_year(self) -> None:
        refs = [
            Reference(title="Energy Futures", author="Smith", year="2020"),
            Reference(title="Grid Storage", author="Lee"),
        ]
        assert format_references(refs) == (
            "- Energy Futures by Smith (2020)\n- Grid Storage by Lee"
        )

    def test_empty(self) -> None:
        assert format_references([]) == ""


class TestTrigger:
    @pytest.mark.asyncio
    async def test_success_delivers_content_once(
        self, orchestrator: GenerationOrchestrator
    ) -> None:
        generated: list[str] = []
        control = _control(orchestrator, generated)

        assert control.view.status is ControlStatus.IDLE
        assert control.trigger() is True
        assert control.view.status is ControlStatus.LOADING
        assert control.view.disabled is True
        assert control.view.show_spinner is True

        await orchestrator.wait_until_settled()

        assert generated == ["Generated text"]
        assert control.view.status is ControlStatus.IDLE
        assert control.view.progress == 100

    @pytest.mark.asyncio
    async def test_busy_trigger_is_ignored(self, orchestrator: GenerationOrchestrator) -> None:
        generated: list[str] = []
        control = _control(orchestrator, generated)

        assert control.trigger() is True
        assert control.trigger() is False
        await orchestrator.wait_until_settled()
        assert generated == ["Generated text"]

    @pytest.mark.asyncio
    async def test_disabled_trigger_is_ignored(
        self, orchestrator: GenerationOrchestrator, backend
    ) -> None:
        control = _control(orchestrator, [], disabled=True)
        assert control.trigger() is False
        assert control.view.disabled is True
        assert orchestrator.state.status is OrchestratorStatus.IDLE
        assert backend.calls == []

    @pytest.mark.asyncio
    async def test_references_are_added_as_parameter(self, backend) -> None:
        template = PromptTemplate(
            id="with-refs",
            name="With references",
            template="Write about {{topic}} using:\n{{references}}",
        )
        orchestrator = GenerationOrchestrator(
            TemplateResolver(TemplateRegistry([template])), GenerationClient(backend)
        )
        control = _control(
            orchestrator,
            [],
            template_id="with-refs",
            parameters={"topic": "solar"},
            references=[Reference(title="Sunlight", author="Ray", year="1999")],
        )

        control.trigger()
        await orchestrator.wait_until_settled()

        assert backend.calls == ["Write about solar using:\n- Sunlight by Ray (1999)"]
        assert REFERENCES_PARAMETER not in control.parameters

    @pytest.mark.asyncio
    async def test_progress_bar_only_when_streaming(self, resolver: TemplateResolver) -> None:
        class StalledBackend:
            def __init__(self) -> None:
                self.gate = asyncio.Event()

            async def call_once(self, prompt: str):
                raise NotImplementedError

            async def call_streaming(self, prompt: str):
                yield "a" * 500
                yield "b" * 500
                await self.gate.wait()

            async def probe(self) -> bool:
                return True

        stalled = StalledBackend()
        orchestrator = GenerationOrchestrator(resolver, GenerationClient(stalled))
        control = _control(orchestrator, [])

        control.trigger()
        for _ in range(5):
            await asyncio.sleep(0)

        view = control.view
        assert view.status is ControlStatus.LOADING
        assert view.progress > 0
        assert view.show_progress_bar is True

        stalled.gate.set()
        await orchestrator.wait_until_settled()


class TestErrorAutoClear:
    @pytest.mark.asyncio
    async def test_error_shown_then_cleared(self, resolver: TemplateResolver, make_backend) -> None:
        client = GenerationClient(make_backend(error=RuntimeError("rate limit hit"), fragments=[]))
        orchestrator = GenerationOrchestrator(resolver, client)
        generated: list[str] = []
        control = _control(orchestrator, generated, error_clear_delay=0.05)

        control.trigger()
        await orchestrator.wait_until_settled()

        view = control.view
        assert view.status is ControlStatus.ERROR
        assert view.error_message == "rate limit hit"
        assert view.show_spinner is False
        assert generated == []

        await asyncio.sleep(0.1)
        assert control.view.status is ControlStatus.IDLE
        assert orchestrator.state.status is OrchestratorStatus.IDLE

    @pytest.mark.asyncio
    async def test_auto_clear_does_not_touch_newer_invocation(
        self, orchestrator: GenerationOrchestrator
    ) -> None:
        generated: list[str] = []
        control = _control(
            orchestrator, generated, parameters={"topic": "x"}, error_clear_delay=0.05
        )

        control.trigger()
        assert control.view.status is ControlStatus.ERROR

        # A fresh trigger cancels the pending clear
        control.parameters = INTRO_PARAMS
        control.trigger()
        await orchestrator.wait_until_settled()
        await asyncio.sleep(0.1)

        assert generated == ["Generated text"]
        assert orchestrator.state.status is OrchestratorStatus.SUCCEEDED


class TestFeedbackPrompt:
    @pytest.mark.asyncio
    async def test_prompt_offered_after_success(
        self,
        orchestrator: GenerationOrchestrator,
        feedback_sink: InMemoryFeedbackSink,
        analytics_sink: InMemoryAnalyticsSink,
    ) -> None:
        recorder = FeedbackRecorder(feedback_sink, analytics=analytics_sink)
        control = _control(
            orchestrator, [], show_feedback=True, feedback_recorder=recorder
        )

        assert control.feedback_prompt is None
        control.trigger()
        await orchestrator.wait_until_settled()

        prompt = control.feedback_prompt
        assert prompt is not None
        assert prompt.template_id == "introduction-academic"
        assert prompt.content_id == orchestrator.state.result.content_id

        assert await prompt.submit(4, "useful") is True
        assert control.feedback_prompt is None
        with pytest.raises(FeedbackPromptClosedError):
            await prompt.submit(5)

        [record] = feedback_sink.records
        assert record.rating == 4
        assert record.comments == "useful"

    @pytest.mark.asyncio
    async def test_no_prompt_without_flag(
        self, orchestrator: GenerationOrchestrator, feedback_sink: InMemoryFeedbackSink
    ) -> None:
        control = _control(
            orchestrator, [], feedback_recorder=FeedbackRecorder(feedback_sink)
        )
        control.trigger()
        await orchestrator.wait_until_settled()
        assert control.feedback_prompt is None

    @pytest.mark.asyncio
    async def test_retrigger_dismisses_prompt(
        self, orchestrator: GenerationOrchestrator, feedback_sink: InMemoryFeedbackSink
    ) -> None:
        control = _control(
            orchestrator,
            [],
            show_feedback=True,
            feedback_recorder=FeedbackRecorder(feedback_sink),
        )
        control.trigger()
        await orchestrator.wait_until_settled()
        first = control.feedback_prompt

        control.trigger()
        assert first.is_open is False
        await orchestrator.wait_until_settled()
        assert control.feedback_prompt is not first


class TestAnalyticsAndTeardown:
    @pytest.mark.asyncio
    async def test_trigger_records_assist_event(
        self, orchestrator: GenerationOrchestrator, analytics_sink: InMemoryAnalyticsSink
    ) -> None:
        control = _control(
            orchestrator,
            [],
            analytics=analytics_sink,
            references=[Reference(title="T", author="A")],
        )
        control.trigger()
        await orchestrator.wait_until_settled()
        await asyncio.sleep(0)

        [event] = analytics_sink.events
        assert event.event_name == AI_ASSIST_EVENT
        assert event.metadata == {
            "template_id": "introduction-academic",
            "has_references": True,
            "reference_count": 1,
        }

    @pytest.mark.asyncio
    async def test_close_stops_delivery(self, orchestrator: GenerationOrchestrator) -> None:
        generated: list[str] = []
        control = _control(orchestrator, generated)

        control.trigger()
        invocation = orchestrator.current_invocation
        control.close()
        await invocation.task

        assert generated == []
        assert orchestrator.state.status is OrchestratorStatus.IDLE


class TestCreateAssistControl:
    @pytest.fixture(autouse=True)
    def _fresh_caches(self):
        clear_dependency_caches()
        yield
        clear_dependency_caches()

    @pytest.mark.asyncio
    async def test_wired_to_shared_sinks(self, orchestrator: GenerationOrchestrator) -> None:
        generated: list[str] = []
        control = create_assist_control(
            orchestrator,
            template_id="introduction-academic",
            parameters=INTRO_PARAMS,
            on_content_generated=generated.append,
            show_feedback=True,
        )

        control.trigger()
        await orchestrator.wait_until_settled()
        await asyncio.sleep(0)

        assert generated == ["Generated text"]
        assert [e.event_name for e in get_analytics_sink().events] == [AI_ASSIST_EVENT]

        assert await control.feedback_prompt.submit(5) is True
        [record] = get_feedback_sink().records
        assert record.rating == 5
