"""AI-related request/response schemas for content generation.

This module defines the Pydantic models used by the HTTP layer: generation
requests, generated content, template summaries, feedback submission and the
structured Server-Sent Event payload used by the streaming endpoint.
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from services.ai.exceptions import AIError
from services.ai.models import ParamValue, Reference
from services.ai.templates import PromptTemplate


class GenerateContentRequest(BaseModel):
    """Request schema for generating content from a template."""

    template_id: str = Field(..., min_length=1, description="Prompt template id")
    parameters: dict[str, ParamValue] = Field(
        default_factory=dict, description="Values for the template's slots"
    )
    references: list[Reference] = Field(
        default_factory=list,
        max_length=100,
        description="Optional references rendered into the `references` slot",
    )

    model_config = ConfigDict(extra="forbid")


class GeneratedContentResponse(BaseModel):
    """Response schema for a completed generation."""

    content: str
    content_id: str = Field(..., description="Stable id used to key feedback")
    template_id: str
    metadata: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="forbid")


class TemplateSummary(BaseModel):
    """Public view of a prompt template (the prompt text itself is omitted)."""

    id: str
    name: str
    description: str
    category: str
    version: str
    tags: list[str]
    parameters: list[str]

    @classmethod
    def from_template(cls, template: PromptTemplate) -> "TemplateSummary":
        return cls(
            id=template.id,
            name=template.name,
            description=template.description,
            category=template.category.value,
            version=template.version,
            tags=list(template.tags),
            parameters=list(template.parameters),
        )


class AvailabilityResponse(BaseModel):
    available: bool


class FeedbackRequest(BaseModel):
    """Request schema for rating one generated artifact."""

    content_id: str = Field(..., min_length=1)
    template_id: str = Field(..., min_length=1)
    rating: int = Field(..., ge=1, le=5, description="User rating (1-5)")
    comments: str = Field(default="", max_length=2000)
    metadata: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="forbid")


class FeedbackReceipt(BaseModel):
    status: Literal["ok"] = "ok"
    delivered: bool


class GenerationSseEvent(BaseModel):
    """Structured Server-Sent Event payload for streaming generation.

    `event` is one of started, chunk, complete or error. The `to_sse` helper
    renders the wire format; the class helpers build the terminal events so
    the route cannot drift from the schema.
    """

    event: Literal["started", "chunk", "complete", "error"]
    template_id: str | None = None
    delta: str | None = Field(None, description="Text fragment for chunk events")
    progress: int | None = Field(None, ge=0, le=100)
    content_id: str | None = None
    detail: str | None = Field(None, description="Human-readable error message")
    kind: str | None = Field(None, description="Error kind for error events")
    retryable: bool | None = None
    correlation_id: str | None = None

    def to_sse(self) -> str:
        return f"data: {self.model_dump_json(exclude_none=True)}\n\n"

    @classmethod
    def complete(
        cls, template_id: str, content_id: str, correlation_id: str | None = None
    ) -> "GenerationSseEvent":
        return cls(
            event="complete",
            template_id=template_id,
            content_id=content_id,
            progress=100,
            correlation_id=correlation_id,
        )

    @classmethod
    def failure(
        cls, template_id: str, error: AIError, correlation_id: str | None = None
    ) -> "GenerationSseEvent":
        return cls(
            event="error",
            template_id=template_id,
            detail=error.message,
            kind=error.kind.value,
            retryable=error.retryable,
            correlation_id=correlation_id,
        )
