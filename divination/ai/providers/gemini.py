"""Google Gemini generateContent provider."""

import logging
from typing import Any

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from divination.ai.errors import EmptyResponseError, ProviderNotConfigured, ProviderResponseError
from divination.ai.providers.base import LLMResponse, Prompt

logger = logging.getLogger(__name__)


def format_safety_ratings(ratings: list[dict[str, Any]] | None) -> str:
    """Render safety ratings as "CATEGORY: PROBABILITY" pairs."""
    if not ratings:
        return "no safety rating details"
    return ", ".join(f"{r.get('category')}: {r.get('probability')}" for r in ratings)


class GeminiProvider:
    """Google Gemini provider."""

    name = "gemini"
    base_url = "https://generativelanguage.googleapis.com/v1beta/models"

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-2.0-flash",
        timeout: float = 60.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize Gemini provider.

        Args:
            api_key: Google AI API key (empty means not configured)
            model: Gemini model name
            timeout: HTTP timeout in seconds
            client: Optional pre-built httpx client
        """
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create persistent httpx client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self) -> None:
        """Close httpx client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def _post(self, payload: dict[str, Any]) -> httpx.Response:
        client = await self._get_client()
        return await client.post(
            f"{self.base_url}/{self.model}:generateContent",
            params={"key": self.api_key},
            json=payload,
            headers={"Content-Type": "application/json"},
        )

    @staticmethod
    def _build_contents(prompt: Prompt) -> list[dict[str, Any]]:
        if isinstance(prompt, list):
            return prompt
        return [{"role": "user", "parts": [{"text": prompt}]}]

    async def generate(self, prompt: Prompt, purpose: str = "general") -> LLMResponse:
        """Call the generateContent endpoint.

        Args:
            prompt: Prompt string, or a list of Gemini ``contents`` entries
            purpose: Label for logging

        Returns:
            LLMResponse with the first candidate's text

        Raises:
            ProviderNotConfigured: If no API key is set
            ProviderResponseError: On non-2xx responses
            EmptyResponseError: If the response was stopped, blocked or malformed
        """
        logger.info(f"[Gemini request: {purpose}] model={self.model}")
        if not self.api_key:
            raise ProviderNotConfigured("Google AI API key is not configured", purpose)

        response = await self._post({"contents": self._build_contents(prompt)})

        if response.is_error:
            try:
                error_data = response.json()
                if isinstance(error_data, dict):
                    error_text = (error_data.get("error") or {}).get("message") or str(error_data)
                else:
                    error_text = str(error_data)
            except ValueError:
                error_text = response.text
            logger.error(f"[Gemini error: {purpose}] status={response.status_code} body={error_text[:200]}")
            raise ProviderResponseError(
                f"Gemini API ({purpose}) request failed: {response.status_code} {response.reason_phrase}. "
                f"Response: {error_text[:200]}",
                purpose,
                status_code=response.status_code,
                detail=error_text[:200],
            )

        data = response.json()

        usage = data.get("usageMetadata")
        if usage:
            logger.info(
                f"[Gemini token usage: {purpose}] prompt={usage.get('promptTokenCount', 0)} "
                f"candidates={usage.get('candidatesTokenCount', 0)} total={usage.get('totalTokenCount', 0)}"
            )

        candidate = (data.get("candidates") or [{}])[0]
        parts = (candidate.get("content") or {}).get("parts") or [{}]
        text = parts[0].get("text") or ""

        if not text:
            finish_reason = candidate.get("finishReason")
            feedback = data.get("promptFeedback") or {}
            block_reason = feedback.get("blockReason")
            if finish_reason and finish_reason != "STOP":
                ratings = format_safety_ratings(candidate.get("safetyRatings"))
                logger.error(f"[Gemini error: {purpose}] response stopped: {finish_reason} ({ratings})")
                raise EmptyResponseError(
                    f"Gemini response ({purpose}) stopped due to '{finish_reason}'. Safety: {ratings}",
                    purpose,
                    reason=finish_reason,
                )
            if block_reason:
                ratings = format_safety_ratings(feedback.get("safetyRatings"))
                logger.error(f"[Gemini error: {purpose}] prompt blocked: {block_reason} ({ratings})")
                raise EmptyResponseError(
                    f"Gemini request ({purpose}) blocked due to '{block_reason}'. Safety: {ratings}",
                    purpose,
                    reason=block_reason,
                )
            logger.error(f"[Gemini error: {purpose}] unexpected response format")
            raise EmptyResponseError(f"Gemini response ({purpose}) has no extractable content", purpose)

        return LLMResponse(
            text=text,
            model=self.model,
            tokens_used=(usage or {}).get("totalTokenCount", 0),
            finish_reason=candidate.get("finishReason"),
        )
