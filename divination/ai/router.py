"""LLM Router: structured generation on top of a text provider.

Calls the provider, recovers JSON from the raw text and validates the
shape. A failed recovery retries the whole generate+parse round trip;
transport and provider errors propagate unchanged.
"""

import logging
from typing import Any

from tenacity import AsyncRetrying, RetryError, retry_if_exception_type, stop_after_attempt

from divination.ai.errors import StructuredOutputError
from divination.ai.json_parser import (
    RecoveryFailure,
    RecoveryOptions,
    recover_structured_value,
    require_object,
)
from divination.ai.providers.base import LLMProvider, Prompt

logger = logging.getLogger(__name__)


class LLMRouter:
    """Structured JSON generation over an LLM provider."""

    def __init__(
        self,
        provider: LLMProvider,
        options: RecoveryOptions | None = None,
        max_attempts: int = 2,
    ) -> None:
        """Initialize LLM router.

        Args:
            provider: Text-generation provider
            options: JSON recovery strategy
            max_attempts: Generate+parse round trips before giving up
        """
        self.provider = provider
        self.options = options
        self.max_attempts = max(1, max_attempts)

    async def _generate_once(self, prompt: Prompt, purpose: str, require_obj: bool) -> Any:
        response = await self.provider.generate(prompt, purpose)
        value = recover_structured_value(response.text, purpose, self.options)
        if require_obj:
            value = require_object(value, purpose, self.options)
        return value

    async def generate_json(self, prompt: Prompt, purpose: str, require_object: bool = True) -> Any:
        """Generate text and recover a JSON value from it.

        Args:
            prompt: Prompt string or provider-native messages
            purpose: Label for logs and errors
            require_object: Treat a non-object result as a failure

        Returns:
            Parsed JSON value (a dict when require_object is True)

        Raises:
            StructuredOutputError: If every attempt produced unrecoverable text
            AIServiceError: On provider failures
        """
        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(RecoveryFailure),
                stop=stop_after_attempt(self.max_attempts),
            ):
                with attempt:
                    if attempt.retry_state.attempt_number > 1:
                        logger.warning(
                            f"[{purpose}] retrying generation "
                            f"(attempt {attempt.retry_state.attempt_number}/{self.max_attempts})"
                        )
                    return await self._generate_once(prompt, purpose, require_object)
        except RetryError as e:
            failure = e.last_attempt.exception()
            logger.error(
                f"[{purpose}] {self.provider.name} output could not be parsed as JSON: {failure}; "
                f"raw preview: {getattr(failure, 'raw_preview', '')!r}"
            )
            raise StructuredOutputError(
                f"{self.provider.name} output ({purpose}) could not be parsed as JSON: "
                f"{getattr(failure, 'message', failure)}",
                purpose,
            ) from failure
