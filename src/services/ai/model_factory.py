"""Centralized AI model factory for content generation.

Single source of truth for the pydantic-ai model behind the generation
backend. The provider is chosen by ``LLM_PROVIDER`` (openai, azure_openai or
gemini); provider SDK retries are governed by ``LLM_TRANSPORT_MAX_RETRIES``
because the pipeline itself never retries.

Usage:
    from services.ai.model_factory import get_text_model

    model = get_text_model()  # Returns pydantic-ai Model
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, cast

from pydantic_ai.models import Model
from pydantic_ai.models.google import GoogleModel
from pydantic_ai.models.openai import OpenAIChatModel
from pydantic_ai.providers.google import GoogleProvider
from pydantic_ai.providers.openai import OpenAIProvider

from core.config import Settings, get_settings


# OpenAI reasoning models that support reasoning_effort parameter
REASONING_MODELS = {
    "gpt-5-mini",
    "gpt-5-nano",
    "o1-mini",
    "o1-preview",
    "o1",
    "o3-mini",
}


if TYPE_CHECKING:
    from httpx import AsyncClient

logger = logging.getLogger(__name__)


class ProviderNotConfiguredError(ValueError):
    """Raised when the selected LLM provider lacks credentials."""


def _normalize_azure_endpoint(endpoint: str) -> str:
    """Normalize Azure OpenAI endpoint.

    Azure endpoints are typically provided as `https://{resource}.openai.azure.com/`.
    Trailing slashes can lead to `//openai/...` URLs, which Azure may treat as a
    different path and return 404.
    """
    return endpoint.rstrip("/")


def _openai_chat_model(model_name: str, provider: OpenAIProvider) -> Model:
    if model_name in REASONING_MODELS:
        logger.info(f"Applying low reasoning effort for reasoning model: {model_name}")
        return OpenAIChatModel(
            model_name,
            provider=provider,
            settings={"openai_reasoning_effort": "low"},
        )
    return OpenAIChatModel(model_name, provider=provider)


def _create_openai_model(
    settings: Settings,
    model_name: str,
    http_client: AsyncClient | None = None,
) -> Model:
    if not settings.OPENAI_API_KEY:
        raise ProviderNotConfiguredError(
            "LLM_PROVIDER=openai but OPENAI_API_KEY is not set"
        )

    from openai import AsyncOpenAI

    client = AsyncOpenAI(
        api_key=settings.OPENAI_API_KEY,
        max_retries=settings.LLM_TRANSPORT_MAX_RETRIES,
        http_client=http_client,
    )
    return _openai_chat_model(model_name, OpenAIProvider(openai_client=client))


def _create_azure_model(
    settings: Settings,
    model_name: str,
    http_client: AsyncClient | None = None,
) -> Model:
    """Create an Azure OpenAI model with the specified deployment name."""
    if (
        not settings.AZURE_OPENAI_ENDPOINT
        or not settings.AZURE_OPENAI_API_KEY
        or not settings.AZURE_OPENAI_API_VERSION
    ):
        raise ProviderNotConfiguredError(
            "LLM_PROVIDER=azure_openai but AZURE_OPENAI_ENDPOINT, "
            "AZURE_OPENAI_API_KEY or AZURE_OPENAI_API_VERSION is missing"
        )

    from openai import AsyncAzureOpenAI

    azure_client = AsyncAzureOpenAI(
        azure_endpoint=_normalize_azure_endpoint(settings.AZURE_OPENAI_ENDPOINT),
        api_key=settings.AZURE_OPENAI_API_KEY,
        api_version=settings.AZURE_OPENAI_API_VERSION,
        max_retries=settings.LLM_TRANSPORT_MAX_RETRIES,
        http_client=http_client,
    )
    return _openai_chat_model(model_name, OpenAIProvider(openai_client=azure_client))


def _create_gemini_model(
    settings: Settings,
    model_name: str,
    http_client: AsyncClient | None = None,
) -> Model:
    """Create a Google Gemini model with the specified model name."""
    if not settings.GEMINI_API_KEY:
        raise ProviderNotConfiguredError(
            "LLM_PROVIDER=gemini but GEMINI_API_KEY is not set"
        )
    provider = GoogleProvider(
        api_key=settings.GEMINI_API_KEY,
        http_client=http_client,
    )
    return cast(Model, GoogleModel(model_name, provider=provider))


def get_text_model(http_client: AsyncClient | None = None) -> Model:
    """Get the text generation model based on configuration.

    Args:
        http_client: Optional HTTP client shared with other outbound calls.

    Returns:
        A pydantic-ai Model configured for the selected provider.

    Raises:
        ProviderNotConfiguredError: the selected provider has no credentials.
    """
    settings = get_settings()
    model_name = settings.TEXT_MODEL

    if settings.LLM_PROVIDER == "azure_openai":
        logger.info(f"Using Azure OpenAI text model: {model_name}")
        return _create_azure_model(settings, model_name, http_client)
    if settings.LLM_PROVIDER == "gemini":
        logger.info(f"Using Gemini text model: {model_name}")
        return _create_gemini_model(settings, model_name, http_client)

    logger.info(f"Using OpenAI text model: {model_name}")
    return _create_openai_model(settings, model_name, http_client)
