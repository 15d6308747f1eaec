import json

import pytest
from pydantic import ValidationError

from schemas.ai import (
    FeedbackRequest,
    GenerateContentRequest,
    GenerationSseEvent,
    TemplateSummary,
)
from services.ai.exceptions import AIError, AIErrorKind
from services.ai.templates import TemplateResolver


def test_sse_event_wire_format_omits_empty_fields():
    line = GenerationSseEvent(event="chunk", delta="Gen", progress=12).to_sse()

    assert line.startswith("data: ")
    assert line.endswith("\n\n")
    assert json.loads(line[6:]) == {"event": "chunk", "delta": "Gen", "progress": 12}


def test_sse_complete_and_failure_helpers():
    complete = GenerationSseEvent.complete("red-thread", "red-thread-1", "cid")
    assert complete.progress == 100
    assert complete.content_id == "red-thread-1"

    failure = GenerationSseEvent.failure(
        "red-thread", AIError(message="Slow down", kind=AIErrorKind.RATE_LIMIT)
    )
    assert failure.event == "error"
    assert failure.kind == "rate_limit"
    assert failure.retryable is True
    assert failure.detail == "Slow down"


def test_sse_event_rejects_out_of_range_progress():
    with pytest.raises(ValidationError):
        GenerationSseEvent(event="chunk", progress=101)


def test_generate_request_defaults_and_extra_fields():
    request = GenerateContentRequest(template_id="red-thread")
    assert request.parameters == {}
    assert request.references == []

    with pytest.raises(ValidationError):
        GenerateContentRequest(template_id="red-thread", stream=True)
    with pytest.raises(ValidationError):
        GenerateContentRequest(template_id="")


def test_feedback_request_bounds():
    FeedbackRequest(content_id="c", template_id="t", rating=1)
    with pytest.raises(ValidationError):
        FeedbackRequest(content_id="c", template_id="t", rating=6)


def test_template_summary_from_template(resolver: TemplateResolver):
    template = resolver.registry.get("references-formatter")
    summary = TemplateSummary.from_template(template)

    assert summary.category == "references"
    assert summary.parameters == ["citationStyle", "rawReferences"]
    assert "citation" in summary.tags
