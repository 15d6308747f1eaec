"""Shared test fixtures for pytest.

ENVIRONMENT is forced to ``test`` before anything imports settings so no env
file is read. The generation backend is always a scripted in-process fake:
no test ever reaches a real model provider.
"""

import os


os.environ["ENVIRONMENT"] = "test"

from collections.abc import AsyncGenerator, AsyncIterator, Callable, Generator

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient
from pydantic_ai import models

from dependencies.ai import (
    get_analytics_sink,
    get_feedback_sink,
    get_generation_backend,
    get_submitted_content_ids,
)
from main import app
from services.ai.client import GenerationClient
from services.ai.models import BackendReply
from services.ai.orchestrator import GenerationOrchestrator, LifecycleEvent
from services.ai.templates import TemplateRegistry, TemplateResolver, build_default_registry
from services.analytics import InMemoryAnalyticsSink
from services.feedback import InMemoryFeedbackSink, SubmittedContentIds


# Block any real model requests in tests
models.ALLOW_MODEL_REQUESTS = False


class ScriptedBackend:
    """Generation backend that replays a script instead of calling a model."""

    def __init__(
        self,
        text: str = "Generated text",
        *,
        fragments: list[str] | None = None,
        error: BaseException | None = None,
        response_id: str | None = None,
        probe_result: bool = True,
    ) -> None:
        self.text = text
        self.fragments = fragments if fragments is not None else ["Gen", "erated ", "text"]
        self.error = error
        self.response_id = response_id
        self.probe_result = probe_result
        self.calls: list[str] = []

    async def call_once(self, prompt: str) -> BackendReply:
        self.calls.append(prompt)
        if self.error is not None:
            raise self.error
        return BackendReply(
            text=self.text, response_id=self.response_id, model_name="scripted"
        )

    async def call_streaming(self, prompt: str) -> AsyncIterator[str]:
        self.calls.append(prompt)
        for fragment in self.fragments:
            yield fragment
        if self.error is not None:
            raise self.error

    async def probe(self) -> bool:
        if self.error is not None:
            raise self.error
        return self.probe_result


class EventRecorder:
    """Subscriber that keeps every lifecycle event it receives."""

    def __init__(self) -> None:
        self.events: list[LifecycleEvent] = []

    def __call__(self, event: LifecycleEvent) -> None:
        self.events.append(event)

    @property
    def names(self) -> list[str]:
        return [type(e).__name__ for e in self.events]

    @property
    def progress(self) -> list[int]:
        return [e.state.progress for e in self.events]


@pytest.fixture
def backend() -> ScriptedBackend:
    return ScriptedBackend()


@pytest.fixture
def make_backend() -> Callable[..., ScriptedBackend]:
    return ScriptedBackend


@pytest.fixture
def registry() -> TemplateRegistry:
    return build_default_registry()


@pytest.fixture
def resolver(registry: TemplateRegistry) -> TemplateResolver:
    return TemplateResolver(registry)


@pytest.fixture
def generation_client(backend: ScriptedBackend) -> GenerationClient:
    return GenerationClient(backend, max_tokens=1000, timeout_seconds=5)


@pytest.fixture
def orchestrator(
    resolver: TemplateResolver, generation_client: GenerationClient
) -> GenerationOrchestrator:
    return GenerationOrchestrator(resolver, generation_client)


@pytest.fixture
def recorder() -> EventRecorder:
    return EventRecorder()


@pytest.fixture
def feedback_sink() -> InMemoryFeedbackSink:
    return InMemoryFeedbackSink()


@pytest.fixture
def analytics_sink() -> InMemoryAnalyticsSink:
    return InMemoryAnalyticsSink()


@pytest.fixture
def api_overrides(
    backend: ScriptedBackend,
    feedback_sink: InMemoryFeedbackSink,
    analytics_sink: InMemoryAnalyticsSink,
) -> Generator[None, None, None]:
    app.dependency_overrides[get_generation_backend] = lambda: backend
    app.dependency_overrides[get_feedback_sink] = lambda: feedback_sink
    app.dependency_overrides[get_analytics_sink] = lambda: analytics_sink
    submitted = SubmittedContentIds()
    app.dependency_overrides[get_submitted_content_ids] = lambda: submitted
    yield
    app.dependency_overrides.pop(get_generation_backend, None)
    app.dependency_overrides.pop(get_feedback_sink, None)
    app.dependency_overrides.pop(get_analytics_sink, None)
    app.dependency_overrides.pop(get_submitted_content_ids, None)


@pytest.fixture
def client(api_overrides: None) -> Generator[TestClient, None, None]:
    """Create a test client for the FastAPI application."""
    with TestClient(app) as client:
        yield client


@pytest_asyncio.fixture
async def async_client(api_overrides: None) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client
