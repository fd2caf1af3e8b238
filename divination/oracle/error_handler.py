"""API error handler: exceptions → opaque client-facing payloads.

Generator output and provider internals never reach the client; they are
logged server-side under a short error ID the client can quote.
"""

import logging
from typing import Any
from uuid import uuid4

from divination.ai.errors import AIServiceError
from divination.ai.json_parser import RecoveryFailure

logger = logging.getLogger(__name__)

AI_SERVICE_MESSAGE = "與 AI 服務溝通時發生問題，請稍後再試。"


class ApiErrorHandler:
    """Maps exceptions raised while serving a request to error payloads."""

    def __init__(self, include_details: bool = False) -> None:
        """Initialize error handler.

        Args:
            include_details: Add the raw exception message as ``errorDetails``
        """
        self.include_details = include_details

    @staticmethod
    def is_ai_error(error: Exception) -> bool:
        """True for generation-service and JSON-recovery failures."""
        return isinstance(error, (AIServiceError, RecoveryFailure))

    def handle_error(
        self,
        endpoint: str,
        error: Exception,
        context: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Log the error and build the response payload.

        Args:
            endpoint: Endpoint label for logs
            error: Exception raised while serving the request
            context: Extra values to log (never returned)

        Returns:
            Dict with success=False, error, errorId and optional errorDetails
        """
        error_id = uuid4().hex[:8]
        if self.is_ai_error(error):
            logger.warning(f"[{endpoint}] AI/JSON service error {error_id}: {error} context={context or {}}")
            message = AI_SERVICE_MESSAGE
        else:
            logger.error(
                f"[{endpoint}] critical error {error_id}: {error} context={context or {}}",
                exc_info=error,
            )
            message = f"處理請求時發生錯誤。參考碼: {error_id}"

        payload: dict[str, Any] = {
            "success": False,
            "error": message,
            "errorId": error_id,
        }
        if self.include_details:
            payload["errorDetails"] = str(error)
        return payload
