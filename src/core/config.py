"""Application settings and CORS configuration."""

import json
import os
from functools import lru_cache
from typing import Literal

from pydantic import ValidationInfo, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=(".env"), env_file_encoding="utf-8")

    # App
    APP_NAME: str = "Rapport"
    ENVIRONMENT: str = "development"  # development | production | test

    # CORS
    # Accept list or CSV/JSON string from env; normalized to list[str] by validators
    CORS_ORIGINS: list[str] | str = [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ]
    ALLOW_CREDENTIALS: bool = True

    # AI / LLM provider configuration
    LLM_PROVIDER: Literal["openai", "azure_openai", "gemini"] = "openai"
    OPENAI_API_KEY: str | None = None
    AZURE_OPENAI_ENDPOINT: str | None = None
    AZURE_OPENAI_API_KEY: str | None = None
    AZURE_OPENAI_API_VERSION: str | None = None
    GEMINI_API_KEY: str | None = None
    TEXT_MODEL: str = "gpt-4"

    # Generation request shaping
    GENERATION_TEMPERATURE: float = 0.7
    GENERATION_MAX_TOKENS: int = 1000
    # Upper bound for a whole backend call (entire stream when streaming)
    GENERATION_TIMEOUT_SECONDS: float = 60.0
    # Retries inside the provider SDK; the pipeline itself never retries
    LLM_TRANSPORT_MAX_RETRIES: int = 0

    # Invocation control
    ERROR_CLEAR_DELAY_SECONDS: float = 5.0

    # Optional directory of JSON prompt templates merged over the built-ins
    TEMPLATE_DIR: str | None = None

    # Feedback sink: POST to this endpoint when set, otherwise keep in memory
    FEEDBACK_ENDPOINT: str | None = None
    FEEDBACK_TIMEOUT_SECONDS: float = 10.0

    # Retention for the in-memory analytics and feedback stores
    ANALYTICS_MAX_RECORDS: int = 1000
    FEEDBACK_MAX_RECORDS: int = 1000

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v: object) -> list[str]:
        """Allow list, CSV string, or JSON array string for CORS origins."""
        if isinstance(v, list):
            return [str(i).strip() for i in v]
        if isinstance(v, str):
            s = v.strip()
            if not s:
                return []
            if s.startswith("["):
                try:
                    parsed = json.loads(s)
                except json.JSONDecodeError as e:
                    raise ValueError(
                        "CORS_ORIGINS must be a CSV list or JSON array string"
                    ) from e
                if not isinstance(parsed, list):
                    raise ValueError("CORS_ORIGINS JSON must be a list")
                return [str(i).strip() for i in parsed]
            # CSV fallback
            return [i.strip() for i in s.split(",") if i.strip()]
        raise ValueError("Invalid CORS_ORIGINS type; expected str or list[str]")

    @field_validator(
        "GENERATION_MAX_TOKENS", "ANALYTICS_MAX_RECORDS", "FEEDBACK_MAX_RECORDS"
    )
    @classmethod
    def _positive_counts(cls, v: int, info: ValidationInfo) -> int:
        if v <= 0:
            raise ValueError(f"{info.field_name} must be positive")
        return v

    @field_validator("GENERATION_TIMEOUT_SECONDS", "ERROR_CLEAR_DELAY_SECONDS")
    @classmethod
    def _positive_seconds(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("timeouts and delays must be positive")
        return v

    @model_validator(mode="after")
    def _validate_cors_credentials(self) -> "Settings":
        """Ensure wildcard origins are not used when credentials are allowed."""
        # Normalize in case the union allows a stray string at runtime
        if isinstance(self.CORS_ORIGINS, str):
            self.CORS_ORIGINS = self.assemble_cors_origins(self.CORS_ORIGINS)
        if self.ALLOW_CREDENTIALS and any(
            o.strip() == "*" for o in (self.CORS_ORIGINS or [])
        ):
            raise ValueError(
                "CORS configuration error: ALLOW_CREDENTIALS=True but "
                "CORS_ORIGINS contains '*'. Use explicit origins when credentials "
                "are allowed."
            )
        return self


@lru_cache
def get_settings() -> Settings:
    env = os.getenv("ENVIRONMENT", "development").lower()
    if env not in {"development", "production", "test"}:
        raise ValueError("ENVIRONMENT must be 'development', 'production', or 'test'")

    if env == "production":
        env_file = ".env.prod"
    elif env == "development":
        env_file = ".env.dev"
    else:
        # test environment - no env file needed, use defaults
        env_file = ""

    # pydantic-settings supports _env_file at runtime; mypy doesn't type it.
    return Settings(_env_file=env_file or None)  # type: ignore[call-arg]
