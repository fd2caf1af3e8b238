"""Generation providers."""

from divination.ai.providers.base import ImageProvider, LLMProvider, LLMResponse
from divination.ai.providers.gemini import GeminiProvider
from divination.ai.providers.openai import OpenAIProvider
from divination.ai.providers.stability import StabilityProvider

__all__ = [
    "GeminiProvider",
    "ImageProvider",
    "LLMProvider",
    "LLMResponse",
    "OpenAIProvider",
    "StabilityProvider",
]
