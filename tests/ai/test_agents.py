"""Tests for the pydantic-ai generation backend using TestModel/FunctionModel."""

from __future__ import annotations

import pytest
from pydantic_ai import Agent
from pydantic_ai.messages import ModelMessage, ModelResponse, TextPart
from pydantic_ai.models.function import AgentInfo, FunctionModel
from pydantic_ai.models.test import TestModel

from services.ai.agents import (
    CONTENT_SYSTEM_PROMPT,
    AgentGenerationBackend,
    create_generation_agent,
)
from services.ai.client import GenerationClient
from services.ai.exceptions import AIError, AIErrorKind


def _backend(output: str = "Drafted section text") -> AgentGenerationBackend:
    return AgentGenerationBackend(
        lambda: Agent(TestModel(custom_output_text=output), system_prompt=CONTENT_SYSTEM_PROMPT)
    )


class TestAgentGenerationBackend:
    def test_agent_is_created_lazily(self) -> None:
        created: list[Agent] = []

        def factory() -> Agent[None, str]:
            agent = Agent(TestModel(custom_output_text="ok"))
            created.append(agent)
            return agent

        AgentGenerationBackend(factory)
        assert created == []

    @pytest.mark.asyncio
    async def test_call_once_returns_text(self) -> None:
        reply = await _backend().call_once("Write an introduction")
        assert reply.text == "Drafted section text"

    @pytest.mark.asyncio
    async def test_call_streaming_yields_deltas(self) -> None:
        fragments = [f async for f in _backend().call_streaming("Write it")]
        assert len(fragments) >= 1
        assert "".join(fragments) == "Drafted section text"

    @pytest.mark.asyncio
    async def test_probe(self) -> None:
        assert await _backend().probe() is True

    @pytest.mark.asyncio
    async def test_system_prompt_and_user_prompt_reach_model(self) -> None:
        seen: list[list[ModelMessage]] = []

        def respond(messages: list[ModelMessage], info: AgentInfo) -> ModelResponse:
            seen.append(messages)
            return ModelResponse(parts=[TextPart("done")])

        backend = AgentGenerationBackend(
            lambda: create_generation_agent(FunctionModel(respond))
        )
        reply = await backend.call_once("Write about tides")

        assert reply.text == "done"
        request_parts = seen[0][0].parts
        contents = [getattr(p, "content", "") for p in request_parts]
        assert any("academic writing assistant" in c for c in contents)
        assert any(c == "Write about tides" for c in contents)


class TestClientOverAgent:
    @pytest.mark.asyncio
    async def test_whole_response(self) -> None:
        client = GenerationClient(_backend())
        result = await client.generate("Write it", template_id="red-thread")
        assert result.content == "Drafted section text"
        assert result.content_id

    @pytest.mark.asyncio
    async def test_streaming(self) -> None:
        client = GenerationClient(_backend())
        chunks = []
        result = await client.generate_streaming("Write it", chunks.append)
        assert result.content == "Drafted section text"
        assert chunks[-1].progress == 100

    @pytest.mark.asyncio
    async def test_model_failure_is_classified(self) -> None:
        def fail(messages: list[ModelMessage], info: AgentInfo) -> ModelResponse:
            raise ConnectionError("connection refused by upstream")

        client = GenerationClient(
            AgentGenerationBackend(lambda: Agent(FunctionModel(fail)))
        )
        with pytest.raises(AIError) as info:
            await client.generate("Write it")
        assert info.value.kind is AIErrorKind.NETWORK
