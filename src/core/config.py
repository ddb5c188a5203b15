"""Application settings, CORS and automation webhook configuration."""

import json
import os
from functools import lru_cache

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=(".env"), env_file_encoding="utf-8")

    # App
    APP_NAME: str = "SupportRelay"
    ENVIRONMENT: str = "development"  # development | production | test

    # CORS
    # Accept list or CSV/JSON string from env; normalized to list[str] by validators
    CORS_ORIGINS: list[str] | str = [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ]
    ALLOW_CREDENTIALS: bool = True

    # Workflow automation webhook (n8n style). The endpoint is optional at import
    # time so tests and tooling can load settings without it.
    AUTOMATION_ENDPOINT: str | None = None
    AUTOMATION_API_KEY: str | None = None
    AUTOMATION_API_KEY_HEADER: str = "X-API-Key"
    AUTOMATION_TIMEOUT_SECONDS: float = 120.0
    # Case-insensitive substring of metadata.nodeName marking the final
    # responder stage ("Respond to Webhook").
    AUTOMATION_RESPONDER_MARKER: str = "respond"

    # Conversation titles
    CONVERSATION_TITLE_MAX_LENGTH: int = 30
    UNTITLED_CONVERSATION_TITLE: str = "Untitled conversation"

    # Create tables on startup (local development without migrations)
    AUTO_CREATE_TABLES: bool = False

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

    @field_validator("AUTOMATION_ENDPOINT", "AUTOMATION_API_KEY", mode="before")
    @classmethod
    def blank_to_none(cls, v: object) -> object:
        """Treat empty env values as unset."""
        if isinstance(v, str) and not v.strip():
            return None
        return v.strip() if isinstance(v, str) else v

    @field_validator("AUTOMATION_TIMEOUT_SECONDS")
    @classmethod
    def positive_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("AUTOMATION_TIMEOUT_SECONDS must be positive")
        return v

    @field_validator("CONVERSATION_TITLE_MAX_LENGTH")
    @classmethod
    def title_budget_fits_ellipsis(cls, v: int) -> int:
        # The truncated form keeps at least one character before "..."
        if v < 4:
            raise ValueError("CONVERSATION_TITLE_MAX_LENGTH must be at least 4")
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

    # Production must know where to send prompts.
    if env == "production" and not os.getenv("AUTOMATION_ENDPOINT"):
        if not (env_file and os.path.exists(env_file)):
            raise RuntimeError("AUTOMATION_ENDPOINT must be set in production")

    # pydantic-settings supports _env_file at runtime; mypy doesn't type it.
    return Settings(_env_file=env_file or None)  # type: ignore[call-arg]
