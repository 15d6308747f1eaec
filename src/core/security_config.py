"""Security configuration constants for the Rapport API.

This module centralizes:
- Sensitive keys that should be sanitized from logs
- Keys that must never reach an analytics sink (generated text, prompts)
- Error response fields allowed per environment
"""

# Keys redacted from structured logs to prevent credential / PII leakage
SENSITIVE_KEYS: set[str] = {
    # Authentication & Authorization
    "password",
    "secret",
    "token",
    "authorization",
    "api_key",
    "apikey",
    "bearer",
    "session_id",
    "cookie",
    "x-api-key",
    # Personal Identifiable Information
    "email",
    "phone",
    "address",
    "credit_card",
}

# Analytics events are anonymous usage counters: besides SENSITIVE_KEYS they
# must not carry any user-authored or generated text.
ANALYTICS_EXCLUDED_KEYS: set[str] = SENSITIVE_KEYS | {
    "content",
    "prompt_text",
    "prompttext",
    "response_text",
    "responsetext",
    "user_id",
    "userid",
    "name",
}

# Production-only error response fields
# In production, error responses should only contain these fields to
# prevent information leakage
PRODUCTION_ERROR_FIELDS: set[str] = {
    "correlation_id",
    "type",
    "kind",
    "retryable",
}

# Development error response fields (additional fields allowed in development)
DEVELOPMENT_ERROR_FIELDS: set[str] = PRODUCTION_ERROR_FIELDS | {
    "details",
    "traceback",
    "exception_type",
    "validation_errors",
}


def get_allowed_error_fields(environment: str) -> set[str]:
    """Get allowed error response fields based on environment."""
    if environment == "production":
        return PRODUCTION_ERROR_FIELDS.copy()
    return DEVELOPMENT_ERROR_FIELDS.copy()


def is_sensitive_key(key: str) -> bool:
    """Check if a key should be considered sensitive and redacted."""
    key_lower = key.lower()
    return any(sensitive in key_lower for sensitive in SENSITIVE_KEYS)


def is_analytics_excluded_key(key: str) -> bool:
    """Check if a metadata key must be dropped before an analytics sink sees it."""
    key_lower = key.lower()
    return any(excluded in key_lower for excluded in ANALYTICS_EXCLUDED_KEYS)
