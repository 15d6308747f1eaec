"""Domain models for AI content generation.

Contract objects passed between the resolver, generation client,
orchestrator and feedback recorder:

* GenerationRequest - what one invocation asks for (immutable once built).
* GenerationChunk   - one streamed fragment plus cumulative progress.
* GenerationResult  - the settled content and its stable `content_id`.
* BackendReply      - raw whole-response reply from a generation backend.
* Reference         - contextual reference material rendered into prompts.
* FeedbackRecord    - one user rating of a generated artifact.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from types import MappingProxyType
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


ParamValue = str | int | float | bool | None

# Progress bounds for streamed generation
PROGRESS_MIN: int = 0
PROGRESS_MAX: int = 100


@dataclass(frozen=True, slots=True)
class GenerationRequest:
    template_id: str
    parameters: Mapping[str, ParamValue] = field(default_factory=dict)
    streaming: bool = False

    def __post_init__(self) -> None:
        # Snapshot the caller's mapping so later edits cannot leak in
        object.__setattr__(
            self, "parameters", MappingProxyType(dict(self.parameters))
        )


@dataclass(frozen=True, slots=True)
class GenerationChunk:
    text: str
    progress: int

    def __post_init__(self) -> None:
        if not PROGRESS_MIN <= self.progress <= PROGRESS_MAX:
            raise ValueError(
                f"progress must be within {PROGRESS_MIN}-{PROGRESS_MAX}, "
                f"got {self.progress}"
            )


@dataclass(frozen=True, slots=True)
class GenerationResult:
    content: str
    content_id: str
    metadata: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class BackendReply:
    text: str
    response_id: str | None = None
    model_name: str | None = None


class Reference(BaseModel):
    """A bibliographic reference supplied as optional prompt context."""

    title: str = Field(..., min_length=1)
    author: str = Field(..., min_length=1)
    year: str | None = None
    url: str | None = None
    publisher: str | None = None
    type: str | None = None

    model_config = ConfigDict(frozen=True, extra="ignore")


class FeedbackRecord(BaseModel):
    """User feedback for one generated artifact; immutable once created."""

    content_id: str = Field(..., min_length=1)
    template_id: str = Field(..., min_length=1)
    rating: int = Field(..., ge=1, le=5, description="User rating (1-5)")
    comments: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)
    submitted_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    model_config = ConfigDict(frozen=True, extra="forbid")
