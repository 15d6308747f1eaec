"""Error taxonomy for the AI content generation pipeline.

Every failure that crosses the generation client boundary is an `AIError`
whose `kind` is one of a fixed set. `retryable` is derived from the kind and
is advisory only: the pipeline never retries on its own, callers decide.

The stable `error_code` (the kind's value) is used for analytics tagging, the
SSE error events and the HTTP error envelope.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any


class AIErrorKind(StrEnum):
    NETWORK = "network"
    RATE_LIMIT = "rate_limit"
    SERVER = "server"
    VALIDATION = "validation"
    UNKNOWN = "unknown"


RETRYABLE_KINDS: frozenset[AIErrorKind] = frozenset(
    {AIErrorKind.RATE_LIMIT, AIErrorKind.SERVER}
)


@dataclass(slots=True, eq=False)
class AIError(Exception):
    """Base class for all classified generation errors."""

    message: str
    kind: AIErrorKind = AIErrorKind.UNKNOWN
    cause: BaseException | None = None

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS

    @property
    def error_code(self) -> str:
        return self.kind.value

    def __str__(self) -> str:
        return f"{self.error_code}: {self.message}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": self.message,
            "kind": self.kind.value,
            "retryable": self.retryable,
        }


class TemplateNotFoundError(AIError):
    def __init__(self, template_id: str) -> None:
        super().__init__(
            message=f"Template with ID {template_id} not found",
            kind=AIErrorKind.VALIDATION,
        )
        self.template_id = template_id


class MissingParameterError(AIError):
    def __init__(self, template_id: str, missing: list[str]) -> None:
        super().__init__(
            message=(
                f"Template {template_id} is missing required parameters: "
                f"{', '.join(missing)}"
            ),
            kind=AIErrorKind.VALIDATION,
        )
        self.template_id = template_id
        self.missing = missing


class EmptyPromptError(AIError):
    def __init__(self, message: str = "Prompt must not be empty") -> None:
        super().__init__(message=message, kind=AIErrorKind.VALIDATION)
