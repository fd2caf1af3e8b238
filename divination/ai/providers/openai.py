"""OpenAI Chat Completions provider."""

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

JSON_INSTRUCTION = (
    "請以有效的JSON格式回覆，不要使用Markdown。"
    "確保JSON可以直接被解析，沒有額外的格式或標記。"
)


class OpenAIProvider:
    """OpenAI chat completions provider."""

    name = "openai"
    base_url = "https://api.openai.com/v1/chat/completions"

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        temperature: float = 0.7,
        timeout: float = 60.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize OpenAI provider.

        Args:
            api_key: OpenAI API key (empty means not configured)
            model: Chat model name
            temperature: Sampling temperature
            timeout: HTTP timeout in seconds
            client: Optional pre-built httpx client
        """
        self.api_key = api_key
        self.model = model
        self.temperature = temperature
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
            self.base_url,
            json=payload,
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self.api_key}",
            },
        )

    def _build_messages(self, prompt: Prompt) -> list[dict[str, Any]]:
        if isinstance(prompt, list):
            return prompt
        return [{"role": "user", "content": f"{prompt}\n\n{JSON_INSTRUCTION}"}]

    async def generate(self, prompt: Prompt, purpose: str = "general") -> LLMResponse:
        """Call the chat completions endpoint.

        Args:
            prompt: Prompt string (a JSON-only instruction is appended) or a message list
            purpose: Label for logging

        Returns:
            LLMResponse with the trimmed message content

        Raises:
            ProviderNotConfigured: If no API key is set
            ProviderResponseError: On non-2xx responses
            EmptyResponseError: If the completion has no content
        """
        logger.info(f"[OpenAI request: {purpose}] model={self.model}")
        if not self.api_key:
            raise ProviderNotConfigured("OpenAI API key is not configured", purpose)

        payload = {
            "model": self.model,
            "messages": self._build_messages(prompt),
            "temperature": self.temperature,
        }
        response = await self._post(payload)

        if response.is_error:
            try:
                error_data: Any = response.json()
            except ValueError:
                error_data = response.text
            logger.error(f"[OpenAI error: {purpose}] status={response.status_code} body={str(error_data)[:200]}")
            if isinstance(error_data, dict):
                message = (error_data.get("error") or {}).get("message") or f"status {response.status_code}"
            else:
                message = str(error_data)[:100] or f"unknown OpenAI API error ({response.status_code})"
            raise ProviderResponseError(
                f"OpenAI API ({purpose}) request failed: {message}",
                purpose,
                status_code=response.status_code,
                detail=str(error_data)[:200],
            )

        data = response.json()
        choice = (data.get("choices") or [{}])[0]
        content = ((choice.get("message") or {}).get("content") or "").strip()
        finish_reason = choice.get("finish_reason")

        if not content:
            logger.warning(f"[OpenAI warning: {purpose}] empty content, finish_reason={finish_reason}")
            if finish_reason:
                raise EmptyResponseError(
                    f"OpenAI API ({purpose}) returned empty content, finish reason: {finish_reason}",
                    purpose,
                    reason=finish_reason,
                )
            raise EmptyResponseError(f"OpenAI API ({purpose}) returned empty content", purpose)

        usage = data.get("usage") or {}
        return LLMResponse(
            text=content,
            model=data.get("model", self.model),
            tokens_used=usage.get("total_tokens", 0),
            finish_reason=finish_reason,
        )
