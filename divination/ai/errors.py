"""Errors raised by LLM and image-generation callers."""


class AIServiceError(Exception):
    """Base error for calls to generation services."""

    def __init__(self, message: str, purpose: str = "") -> None:
        self.purpose = purpose
        super().__init__(message)


class ProviderNotConfigured(AIServiceError):
    """Provider API key is missing."""


class ProviderResponseError(AIServiceError):
    """Provider answered with a non-success HTTP status."""

    def __init__(self, message: str, purpose: str = "", status_code: int | None = None, detail: str = "") -> None:
        super().__init__(message, purpose)
        self.status_code = status_code
        self.detail = detail


class EmptyResponseError(AIServiceError):
    """Provider answered without usable content (blocked, truncated, malformed)."""

    def __init__(self, message: str, purpose: str = "", reason: str | None = None) -> None:
        super().__init__(message, purpose)
        self.reason = reason


class StructuredOutputError(AIServiceError):
    """Generated text could not be turned into the required structure."""
