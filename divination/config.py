"""Application configuration using pydantic-settings.

All environment variables are loaded from .env file or environment.
Provider credentials are read here once and handed to each provider
at construction time.
"""

import logging
from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from divination.ai.json_parser import RecoveryOptions

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # OpenAI
    openai_api_key: str = Field(default="", description="OpenAI API key")
    openai_model: str = Field(default="gpt-4o-mini", description="OpenAI chat model")
    openai_temperature: float = Field(default=0.7, description="OpenAI sampling temperature")

    # Google Gemini
    google_ai_api_key: str = Field(default="", description="Google AI (Gemini) API key")
    google_gemini_model: str = Field(default="gemini-2.0-flash", description="Gemini model")

    # Stability AI
    stability_api_key: str = Field(default="", description="Stability AI API key")
    stability_model: str = Field(default="stable-image-core", description="Stability image model")
    stability_style_preset: str = Field(default="fantasy-art", description="Default image style preset")

    # Generation calls
    text_provider: Literal["gemini", "openai"] = Field(
        default="gemini",
        description="Provider used for divination analysis",
    )
    llm_timeout_seconds: float = Field(default=60.0, description="HTTP timeout for provider calls")
    llm_max_attempts: int = Field(default=2, ge=1, description="Generate+parse round trips before giving up")

    # JSON recovery
    json_control_chars: Literal["escape", "space"] = Field(
        default="escape",
        description="Control-character strategy: escape (default) or space (legacy)",
    )
    json_pad_braces: bool = Field(default=False, description="Append missing closing braces (lossy)")
    json_preview_length: int = Field(default=200, ge=1, description="Length of text previews in errors")

    # Oracle data
    poem_data_path: str = Field(
        default="data/fortune_poems.json",
        description="Path to the fortune poem data file (.json or .yaml)",
    )
    session_ttl_hours: int = Field(default=24, description="Divination session TTL in hours")

    # Application settings
    app_name: str = Field(default="Divination API", description="Application name")
    cors_origins: list[str] = Field(default_factory=lambda: ["*"], description="Allowed CORS origins")
    log_level: str = Field(default="INFO", description="Logging level")
    debug_errors: bool = Field(default=False, description="Include error details in API responses")

    @property
    def recovery_options(self) -> RecoveryOptions:
        """JSON recovery strategy built from settings."""
        return RecoveryOptions(
            control_chars=self.json_control_chars,
            pad_braces=self.json_pad_braces,
            preview_length=self.json_preview_length,
        )

    def log_key_status(self) -> None:
        """Log which provider keys are configured, never their values."""
        status = {
            "OpenAI": bool(self.openai_api_key),
            "Stability AI": bool(self.stability_api_key),
            "Google AI": bool(self.google_ai_api_key),
        }
        if not any(status.values()):
            logger.error("No OpenAI, Stability AI or Google AI API key configured; AI features are disabled")
            return
        logger.info(
            "AI key status: " + ", ".join(f"{name}: {'set' if ok else 'not set'}" for name, ok in status.items())
        )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance.

    Settings are loaded lazily on first access.
    """
    return Settings()
