"""Init file for AI content generation services."""

from .client import GenerationClient, classify_error
from .exceptions import AIError, AIErrorKind
from .orchestrator import GenerationOrchestrator
from .templates import TemplateRegistry, TemplateResolver, build_default_registry


__all__ = [
    "AIError",
    "AIErrorKind",
    "GenerationClient",
    "GenerationOrchestrator",
    "TemplateRegistry",
    "TemplateResolver",
    "build_default_registry",
    "classify_error",
]
