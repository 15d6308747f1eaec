import logging
from urllib.parse import urlparse

from core.observability import configure_observability


# Must run before FastAPI is imported so requests are instrumented
configure_observability()

from fastapi import FastAPI  # noqa: E402
from fastapi.exceptions import RequestValidationError  # noqa: E402
from fastapi.middleware.cors import CORSMiddleware  # noqa: E402
from fastapi.openapi.docs import get_redoc_html, get_swagger_ui_html  # noqa: E402

from api.v1.api import api_router  # noqa: E402
from core.config import get_settings  # noqa: E402
from core.error_handler import (  # noqa: E402
    ExceptionNormalizationMiddleware,
    global_exception_handler,
    setup_logging,
)
from core.exceptions import DomainError  # noqa: E402
from core.middleware import CorrelationIdMiddleware  # noqa: E402
from services.ai.exceptions import AIError  # noqa: E402


setup_logging()
logger = logging.getLogger(__name__)


def validate_cors_origins(origins: list[str]) -> list[str]:
    """Keep only well-formed http(s) origins."""

    def is_valid_url(url: str) -> bool:
        parsed = urlparse(url)
        return bool(parsed.scheme in {"http", "https"} and parsed.netloc)

    validated_origins = []
    for origin in origins:
        if is_valid_url(origin):
            validated_origins.append(origin)
        else:
            logger.warning(f"Invalid CORS origin '{origin}' ignored")
    return validated_origins


settings = get_settings()

app = FastAPI(
    title=f"{settings.APP_NAME} API",
    description="AI-assisted content generation for report writing",
    version="0.1.0",
    docs_url=None,  # Mounted under /api/v1/docs
    redoc_url=None,
)

app.add_exception_handler(AIError, global_exception_handler)  # type: ignore[arg-type]
app.add_exception_handler(DomainError, global_exception_handler)  # type: ignore[arg-type]
app.add_exception_handler(RequestValidationError, global_exception_handler)  # type: ignore[arg-type]

# Middleware order: last added runs first
app.add_middleware(ExceptionNormalizationMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=validate_cors_origins(list(settings.CORS_ORIGINS)),
    allow_credentials=settings.ALLOW_CREDENTIALS,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Correlation-ID"],
)

app.include_router(api_router, prefix="/api/v1")


@app.get("/api/v1/docs", include_in_schema=False)
def custom_swagger_ui_html():
    return get_swagger_ui_html(
        openapi_url="/openapi.json", title=f"{settings.APP_NAME} API Docs"
    )


@app.get("/api/v1/redoc", include_in_schema=False)
def redoc_html():
    return get_redoc_html(
        openapi_url="/openapi.json", title=f"{settings.APP_NAME} API Redoc"
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
