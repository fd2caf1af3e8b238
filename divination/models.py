"""Pydantic v2 models for API and session data boundaries."""

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field, field_validator


class SelectedCard(BaseModel):
    """A trigram card chosen by the user."""

    id: str | int = Field(..., description="Card ID")
    name: str = Field(..., min_length=1, description="Trigram name")

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str | int) -> str | int:
        """Reject empty or zero IDs."""
        if not v:
            raise ValueError("id must be non-empty")
        return v


class AnalyzeRequest(BaseModel):
    """Body of POST /api/divination/analyze.

    Cards are validated by the route so it can answer with specific error codes.
    """

    selectedCards: Any = Field(default=None, description="Exactly three selected cards")


class ImageRequest(BaseModel):
    """Body of POST /api/image/generate."""

    prompt: Any = Field(default=None, description="Image prompt")
    interactionId: str | None = Field(default=None, description="Optional caller correlation ID")


class GeminiAnalysis(BaseModel):
    """Merged output of the analysis and matching phases."""

    title: str
    analysis: str
    matchReason: str
    matchedFortunes: list[dict[str, Any]] = Field(default_factory=list)


class DivinationResult(BaseModel):
    """Outcome of a successful analysis."""

    sessionId: str
    canSave: bool
    geminiAnalysis: GeminiAnalysis
    matchedPoem: dict[str, Any] | None = None
    finalImageUrl: str | None = None
    selectedCardNames: str


class DivinationSession(BaseModel):
    """Stored analysis result."""

    session_id: str
    result: DivinationResult
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    expire_at: datetime
