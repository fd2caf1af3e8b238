"""Generation provider protocol interfaces."""

from typing import Any, Protocol

from pydantic import BaseModel, Field

Prompt = str | list[dict[str, Any]]


class LLMResponse(BaseModel):
    """LLM response model."""

    text: str = Field(..., description="Response text")
    model: str = Field(..., description="Model that produced the text")
    tokens_used: int = Field(default=0, description="Total tokens used")
    finish_reason: str | None = Field(default=None, description="Provider finish reason")


class LLMProvider(Protocol):
    """Protocol for text-generation providers."""

    name: str

    async def generate(self, prompt: Prompt, purpose: str = "general") -> LLMResponse:
        """Generate text for a prompt.

        Args:
            prompt: Prompt string, or a provider-native list of messages
            purpose: Label for logging

        Returns:
            LLMResponse with the raw generated text

        Raises:
            AIServiceError: On missing credentials, HTTP errors or empty output
        """
        ...

    async def close(self) -> None:
        """Release the underlying HTTP client."""
        ...


class ImageProvider(Protocol):
    """Protocol for image-generation providers."""

    async def generate_image(
        self,
        prompt: str,
        style_preset: str | None = None,
        options: dict[str, Any] | None = None,
    ) -> str:
        """Generate an image and return it as a data URL."""
        ...

    async def close(self) -> None:
        """Release the underlying HTTP client."""
        ...
