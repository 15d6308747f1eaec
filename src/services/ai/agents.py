"""pydantic-ai agent backing content generation."""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
import logging

from pydantic_ai import Agent
from pydantic_ai.models import Model
from pydantic_ai.settings import ModelSettings

from core.config import get_settings
from services.ai.models import BackendReply


logger = logging.getLogger(__name__)


CONTENT_SYSTEM_PROMPT = """
You are an academic writing assistant helping students draft sections of
reports. Follow the instructions in the user's prompt exactly, write in clear
formal prose, and return only the requested text without preamble or
commentary.
"""

PROBE_PROMPT = "Reply with the single word OK."


def create_generation_agent(model: Model | str | None = None) -> Agent[None, str]:
    """Create a plain-text pydantic-ai agent for content generation.

    When ``model`` is omitted the configured provider model is used.
    """
    settings = get_settings()
    if model is None:
        from services.ai.model_factory import get_text_model

        model = get_text_model()

    return Agent(
        model,
        system_prompt=CONTENT_SYSTEM_PROMPT,
        model_settings=ModelSettings(
            temperature=settings.GENERATION_TEMPERATURE,
            max_tokens=settings.GENERATION_MAX_TOKENS,
        ),
    )


class AgentGenerationBackend:
    """Generation backend over a lazily created pydantic-ai agent.

    The agent is built on first use so the application can start (and serve
    templates, health, feedback) without provider credentials.
    """

    def __init__(
        self,
        agent_factory: Callable[[], Agent[None, str]] = create_generation_agent,
    ) -> None:
        self._agent_factory = agent_factory
        self._agent: Agent[None, str] | None = None

    def _get_agent(self) -> Agent[None, str]:
        if self._agent is None:
            self._agent = self._agent_factory()
        return self._agent

    async def call_once(self, prompt: str) -> BackendReply:
        agent = self._get_agent()
        result = await agent.run(prompt)
        response = result.all_messages()[-1]
        return BackendReply(
            text=result.output,
            response_id=getattr(response, "provider_response_id", None),
            model_name=getattr(response, "model_name", None),
        )

    async def call_streaming(self, prompt: str) -> AsyncIterator[str]:
        agent = self._get_agent()
        async with agent.run_stream(prompt) as result:
            async for delta in result.stream_text(delta=True):
                yield delta

    async def probe(self) -> bool:
        agent = self._get_agent()
        result = await agent.run(
            PROBE_PROMPT, model_settings=ModelSettings(max_tokens=5)
        )
        logger.debug("Generation backend probe answered %r", result.output[:20])
        return True
