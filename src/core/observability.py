"""Observability configuration for Azure Monitor and OpenTelemetry.

Call `configure_observability()` before the FastAPI app is created so the
Azure Monitor distro can instrument incoming requests. Without it, tracers
returned by `get_tracer()` are OpenTelemetry's built-in no-op tracers.

PII guidance for span attributes:
- never record prompts, generated text, feedback comments or reference titles
- prefer ids, lengths, counts and error kinds
- link traces to logs through the correlation id, not through content
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache

from opentelemetry import trace


logger = logging.getLogger(__name__)

_ENV_ENABLE_OBSERVABILITY = "ENABLE_OBSERVABILITY"
_ENV_APP_INSIGHTS_CONN_STRING = "APPLICATIONINSIGHTS_CONNECTION_STRING"
_ENV_OTEL_SERVICE_NAME = "OTEL_SERVICE_NAME"

_DEFAULT_SERVICE_NAME = "rapport-backend"

# Paths excluded from automatic request tracing
EXCLUDED_URLS = "health,health/,favicon.ico"


def _is_observability_enabled() -> bool:
    """True when ENABLE_OBSERVABILITY is truthy ("true", "1", "yes", "on")."""
    value = os.getenv(_ENV_ENABLE_OBSERVABILITY, "false").lower()
    return value in {"true", "1", "yes", "on"}


def _get_connection_string() -> str | None:
    return os.getenv(_ENV_APP_INSIGHTS_CONN_STRING)


@lru_cache
def configure_observability() -> bool:
    """Enable Azure Monitor export when switched on and a connection string is set.

    Returns:
        True if Azure Monitor was configured, False otherwise.

    Environment Variables:
        ENABLE_OBSERVABILITY: Set to "true" to enable (default: "false")
        APPLICATIONINSIGHTS_CONNECTION_STRING: Azure Monitor connection string
        OTEL_SERVICE_NAME: Service name for traces (default: "rapport-backend")
    """
    if not _is_observability_enabled():
        logger.info(
            "Observability disabled. Set %s=true to enable Azure Monitor.",
            _ENV_ENABLE_OBSERVABILITY,
        )
        return False

    connection_string = _get_connection_string()
    if not connection_string:
        logger.warning(
            "Observability enabled but %s not set. Skipping Azure Monitor setup.",
            _ENV_APP_INSIGHTS_CONN_STRING,
        )
        return False

    try:
        from azure.monitor.opentelemetry import configure_azure_monitor
    except ImportError:
        logger.warning(
            "azure-monitor-opentelemetry package not installed. "
            "Install with: pip install rapport-backend[observability]"
        )
        return False

    service_name = os.getenv(_ENV_OTEL_SERVICE_NAME, _DEFAULT_SERVICE_NAME)
    os.environ.setdefault("OTEL_SERVICE_NAME", service_name)
    os.environ.setdefault("OTEL_PYTHON_FASTAPI_EXCLUDED_URLS", EXCLUDED_URLS)

    try:
        configure_azure_monitor(connection_string=connection_string)
    except Exception as e:
        logger.exception("Failed to configure Azure Monitor observability: %s", e)
        return False
    logger.info("Azure Monitor observability configured for service '%s'", service_name)
    return True


def get_tracer(name: str) -> trace.Tracer:
    """Get an OpenTelemetry tracer for custom spans.

    Example:
        tracer = get_tracer(__name__)

        with tracer.start_as_current_span("ai.generate") as span:
            span.set_attribute("ai.prompt_length", len(prompt))

    WARNING: Never add user content or PII to span attributes!
    """
    return trace.get_tracer(name)
