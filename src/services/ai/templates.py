"""Prompt templates: registry, resolver and JSON loader.

A template is a named text with ``{{slot}}`` placeholders. Every slot found in
the text is a required parameter. The registry is an explicit immutable
object built once at startup and handed to the resolver; nothing here keeps
module level mutable state.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from enum import StrEnum
import json
import logging
from pathlib import Path
import re
import textwrap
from types import MappingProxyType
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, computed_field

from services.ai.exceptions import (
    AIError,
    AIErrorKind,
    MissingParameterError,
    TemplateNotFoundError,
)
from services.ai.models import ParamValue


logger = logging.getLogger(__name__)

SLOT_PATTERN = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")

# Appended as a context block when the template has no slot for it
REFERENCES_PARAMETER = "references"
REFERENCES_BLOCK_HEADING = "Draw on the following references where relevant:"


class TemplateCategory(StrEnum):
    INTRODUCTION = "introduction"
    METHODOLOGY = "methodology"
    ANALYSIS = "analysis"
    CONCLUSION = "conclusion"
    REFERENCES = "references"
    GENERAL = "general"

    @classmethod
    def parse(cls, value: str | None) -> TemplateCategory:
        """Map a free-form category string; unknown values fall back to general."""
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            return cls.GENERAL


class PromptTemplate(BaseModel):
    """A reusable prompt with ``{{slot}}`` placeholders."""

    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    description: str = ""
    category: TemplateCategory = TemplateCategory.GENERAL
    version: str = "1.0.0"
    tags: tuple[str, ...] = ()
    template: str = Field(..., min_length=1)
    example_input: dict[str, str] | None = None
    example_output: str | None = None

    model_config = ConfigDict(frozen=True, extra="ignore")

    @computed_field  # type: ignore[prop-decorator]
    @property
    def parameters(self) -> tuple[str, ...]:
        """Slot names in order of first appearance."""
        return tuple(dict.fromkeys(SLOT_PATTERN.findall(self.template)))


class TemplateRegistry:
    """Immutable id -> template mapping."""

    def __init__(self, templates: Iterable[PromptTemplate] = ()) -> None:
        by_id: dict[str, PromptTemplate] = {}
        for template in templates:
            if template.id in by_id:
                raise ValueError(f"Duplicate template id: {template.id}")
            by_id[template.id] = template
        self._templates: Mapping[str, PromptTemplate] = MappingProxyType(by_id)

    def get(self, template_id: str) -> PromptTemplate | None:
        return self._templates.get(template_id)

    def __contains__(self, template_id: object) -> bool:
        return template_id in self._templates

    def __iter__(self) -> Iterator[PromptTemplate]:
        return iter(self._templates.values())

    def __len__(self) -> int:
        return len(self._templates)

    def by_category(self, category: TemplateCategory | str) -> list[PromptTemplate]:
        wanted = TemplateCategory.parse(str(category))
        return [t for t in self if t.category == wanted]

    def by_tag(self, tag: str) -> list[PromptTemplate]:
        return [t for t in self if tag in t.tags]

    def merged_with(self, overrides: Iterable[PromptTemplate]) -> TemplateRegistry:
        """Return a new registry where ``overrides`` replace same-id entries."""
        combined = dict(self._templates)
        for template in overrides:
            combined[template.id] = template
        return TemplateRegistry(combined.values())


class TemplateResolver:
    """Turns a template id plus parameters into a prompt string."""

    def __init__(self, registry: TemplateRegistry) -> None:
        self._registry = registry

    @property
    def registry(self) -> TemplateRegistry:
        return self._registry

    def resolve(self, template_id: str, parameters: Mapping[str, ParamValue]) -> str:
        template = self._registry.get(template_id)
        if template is None:
            raise TemplateNotFoundError(template_id)

        missing = [
            name for name in template.parameters if parameters.get(name) is None
        ]
        if missing:
            raise MissingParameterError(template_id, missing)

        prompt = SLOT_PATTERN.sub(
            lambda match: str(parameters[match.group(1)]), template.template
        )
        references = parameters.get(REFERENCES_PARAMETER)
        if REFERENCES_PARAMETER not in template.parameters and references:
            prompt = f"{prompt}\n\n{REFERENCES_BLOCK_HEADING}\n{references}"
        return prompt


class TemplateLoader:
    """Loads templates from JSON documents."""

    @staticmethod
    def load_from_json(text: str) -> PromptTemplate:
        try:
            data: Any = json.loads(text)
        except json.JSONDecodeError as exc:
            raise AIError(
                message=f"Failed to load template from JSON: {exc.msg}",
                kind=AIErrorKind.VALIDATION,
                cause=exc,
            ) from exc
        if not isinstance(data, dict):
            raise AIError(
                message="Failed to load template from JSON: expected an object",
                kind=AIErrorKind.VALIDATION,
            )

        data = dict(data)
        for camel, snake in (
            ("exampleInput", "example_input"),
            ("exampleOutput", "example_output"),
        ):
            if camel in data:
                data.setdefault(snake, data.pop(camel))
        data["category"] = TemplateCategory.parse(data.get("category"))
        if isinstance(data.get("example_input"), dict):
            data["example_input"] = {
                str(k): str(v) for k, v in data["example_input"].items()
            }

        try:
            return PromptTemplate.model_validate(data)
        except ValidationError as exc:
            raise AIError(
                message=f"Failed to load template from JSON: {exc.error_count()} invalid field(s)",
                kind=AIErrorKind.VALIDATION,
                cause=exc,
            ) from exc

    @classmethod
    def load_many(cls, documents: Iterable[str]) -> list[PromptTemplate]:
        return [cls.load_from_json(doc) for doc in documents]

    @classmethod
    def load_directory(cls, directory: str | Path) -> list[PromptTemplate]:
        path = Path(directory)
        if not path.is_dir():
            raise AIError(
                message=f"Template directory not found: {path}",
                kind=AIErrorKind.VALIDATION,
            )
        templates = []
        for file in sorted(path.glob("*.json")):
            templates.append(cls.load_from_json(file.read_text(encoding="utf-8")))
            logger.debug("Loaded template file %s", file.name)
        return templates


def _prompt(text: str) -> str:
    return textwrap.dedent(text).strip()


BUILTIN_TEMPLATES: tuple[PromptTemplate, ...] = (
    PromptTemplate(
        id="introduction-academic",
        name="Academic Introduction",
        description="Creates an academic introduction for a report",
        category=TemplateCategory.INTRODUCTION,
        tags=("academic", "introduction", "formal"),
        template=_prompt(
            """
            Write an academic introduction for a report on the topic of {{topic}}.
            The introduction should:
            - Provide context and background information
            - Clearly state the purpose of the report
            - Outline the scope and limitations
            - Present the main research question or hypothesis: {{researchQuestion}}
            - Briefly mention the methodology used
            - Use formal academic language
            - Be approximately 250-300 words
            """
        ),
        example_input={
            "topic": "Climate change impacts on coastal communities",
            "researchQuestion": "How are rising sea levels affecting infrastructure in coastal cities?",
        },
        example_output=(
            "Climate change represents one of the most significant challenges "
            "facing humanity in the 21st century..."
        ),
    ),
    PromptTemplate(
        id="methodology-qualitative",
        name="Qualitative Research Methodology",
        description="Describes a qualitative research methodology",
        category=TemplateCategory.METHODOLOGY,
        tags=("methodology", "qualitative", "research"),
        template=_prompt(
            """
            Write a methodology section for a qualitative research study on {{topic}}.
            The methodology should:
            - Describe the qualitative approach used ({{approach}})
            - Explain the participant selection process and criteria
            - Detail the data collection methods
            - Outline the data analysis procedures
            - Address ethical considerations
            - Discuss limitations of the methodology
            - Use appropriate academic terminology
            - Be approximately 300-350 words
            """
        ),
        example_input={
            "topic": "Work-life balance in remote work environments",
            "approach": "phenomenological study",
        },
        example_output=(
            "This study employed a qualitative research design using a "
            "phenomenological approach to explore..."
        ),
    ),
    PromptTemplate(
        id="analysis-data",
        name="Data Analysis",
        description="Provides a framework for analyzing research data",
        category=TemplateCategory.ANALYSIS,
        tags=("analysis", "data", "research"),
        template=_prompt(
            """
            Write an analysis section for a report on {{topic}} based on the following data points:
            {{dataPoints}}

            The analysis should:
            - Identify key patterns and trends in the data
            - Compare and contrast different findings
            - Relate the findings to the research question: {{researchQuestion}}
            - Support claims with evidence from the data
            - Consider alternative interpretations
            - Use critical thinking and analytical reasoning
            - Be approximately 400-450 words
            """
        ),
        example_input={
            "topic": "Consumer behavior in e-commerce",
            "researchQuestion": "How does website design influence purchasing decisions?",
            "dataPoints": (
                "- 67% of users abandoned carts when navigation was complex\n"
                "- Average time spent on simplified interfaces was 3.5 minutes longer\n"
                "- Conversion rates were 23% higher on redesigned pages"
            ),
        },
        example_output=(
            "The analysis of consumer behavior data reveals several significant "
            "patterns related to website design..."
        ),
    ),
    PromptTemplate(
        id="conclusion-recommendations",
        name="Conclusion with Recommendations",
        description="Creates a conclusion with actionable recommendations",
        category=TemplateCategory.CONCLUSION,
        tags=("conclusion", "recommendations", "summary"),
        template=_prompt(
            """
            Write a conclusion for a report on {{topic}} that includes recommendations.

            The conclusion should:
            - Summarize the key findings from the research
            - Answer the main research question: {{researchQuestion}}
            - Discuss the implications of the findings
            - Provide 3-5 specific, actionable recommendations
            - Suggest areas for future research
            - End with a compelling final statement
            - Be approximately 300-350 words
            """
        ),
        example_input={
            "topic": "Employee retention strategies in tech companies",
            "researchQuestion": "What factors most influence employee retention in the technology sector?",
        },
        example_output=(
            "This research has examined the multifaceted factors influencing "
            "employee retention in technology companies..."
        ),
    ),
    PromptTemplate(
        id="references-formatter",
        name="References Formatter",
        description="Formats reference entries according to academic standards",
        category=TemplateCategory.REFERENCES,
        tags=("references", "citation", "formatting"),
        template=_prompt(
            """
            Format the following references according to the {{citationStyle}} citation style:

            {{rawReferences}}

            Please ensure:
            - All references are properly formatted
            - References are sorted alphabetically by author's last name
            - All required information is included for each reference type
            - DOIs are included where available
            """
        ),
        example_input={
            "citationStyle": "APA 7th edition",
            "rawReferences": (
                "Smith, J. (2020) Climate Change and Society, Journal of "
                "Environmental Studies, 45(2)\nBrown, A and Johnson, T, 2019, "
                "Digital Transformation in Business, Harvard Business Review"
            ),
        },
        example_output=(
            "Brown, A., & Johnson, T. (2019). Digital transformation in business. "
            "Harvard Business Review.\n\nSmith, J. (2020). Climate change and "
            "society. Journal of Environmental Studies, 45(2)."
        ),
    ),
    PromptTemplate(
        id="improve-clarity",
        name="Improve Clarity and Coherence",
        description="Enhances the clarity and coherence of a text passage",
        category=TemplateCategory.GENERAL,
        tags=("clarity", "coherence", "editing"),
        template=_prompt(
            """
            Improve the clarity and coherence of the following text while maintaining its original meaning:

            {{originalText}}

            Please:
            - Enhance sentence structure and flow
            - Improve paragraph transitions
            - Ensure logical progression of ideas
            - Maintain academic tone and style
            - Correct any grammatical or spelling errors
            - Keep approximately the same length
            """
        ),
        example_input={
            "originalText": (
                "The research showed results that were significant. The "
                "participants in the study responded to the treatment. This has "
                "implications for future studies and also for practice in the field."
            ),
        },
        example_output=(
            "The research demonstrated statistically significant results. "
            "Participants responded positively to the treatment protocol."
        ),
    ),
    PromptTemplate(
        id="red-thread",
        name="Enhance Red Thread",
        description='Improves the "red thread" (logical connection) throughout a document',
        category=TemplateCategory.GENERAL,
        tags=("red thread", "coherence", "structure"),
        template=_prompt(
            """
            Analyze the following document sections and suggest improvements to strengthen the "red thread" (logical connection) throughout:

            Introduction:
            {{introduction}}

            Main sections:
            {{mainSections}}

            Conclusion:
            {{conclusion}}

            Please provide:
            - An analysis of how well the document maintains a clear focus and purpose
            - Specific suggestions for improving connections between sections
            - Recommendations for strengthening the logical flow from introduction to conclusion
            - Ideas for recurring themes or concepts that could be emphasized
            - 2-3 concrete examples of revisions that would enhance the red thread
            """
        ),
        example_input={
            "introduction": "This report examines sustainable urban planning practices in Nordic cities...",
            "mainSections": (
                "Section 1: Transportation infrastructure\n"
                "Section 2: Energy efficiency in buildings\n"
                "Section 3: Public green spaces"
            ),
            "conclusion": (
                "The findings indicate that integrated approaches to urban "
                "sustainability yield the best results."
            ),
        },
        example_output=(
            "Analysis of Red Thread:\nThe document presents related topics within "
            "urban sustainability but could more explicitly connect these elements..."
        ),
    ),
)


def build_default_registry(template_dir: str | Path | None = None) -> TemplateRegistry:
    """Built-in templates, overridden by any JSON files in ``template_dir``."""
    registry = TemplateRegistry(BUILTIN_TEMPLATES)
    if template_dir is None:
        return registry
    loaded = TemplateLoader.load_directory(template_dir)
    logger.info("Loaded %d template file(s) from %s", len(loaded), template_dir)
    return registry.merged_with(loaded)
