"""Response envelopes shared by every Rapport endpoint."""

from __future__ import annotations

from typing import Any, Generic, TypeVar

from pydantic import BaseModel


T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    """Envelope for successful responses.

    Routes return their payload under ``data``; clients branch on ``success``
    and only read ``error`` when it is False. Streaming generation is the one
    exception and emits bare SSE events instead.
    """

    success: bool = True
    data: T | None = None
    message: str = "Operation completed successfully"
    error: dict[str, Any] | None = None


class ErrorResponse(ApiResponse[None]):
    """Envelope rendered by the global error handlers.

    ``error`` always carries ``type`` and ``correlation_id``; AI failures add
    ``kind`` and ``retryable`` so clients can decide whether to offer a retry.
    """

    success: bool = False
    message: str = "An error occurred"
