"""Error hierarchy for the RAG service.

Retryable errors are transient (rate limits, 5xx, timeouts) and may succeed
on a later attempt. Permanent errors will not (auth, malformed responses,
missing configuration). HTTP handlers map both onto fixed user-facing
messages; the text of these exceptions is for logs only.
"""
from typing import Any, Dict, Optional


class RAGServiceError(Exception):
    """Base exception for all service errors."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.original_error = original_error

    def __str__(self) -> str:
        base = self.message
        if self.details:
            base += f" | Details: {self.details}"
        if self.original_error:
            base += f" | Caused by: {type(self.original_error).__name__}: {self.original_error}"
        return base

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for logging."""
        return {
            "error_type": type(self).__name__,
            "message": self.message,
            "details": self.details,
            "original_error": str(self.original_error) if self.original_error else None,
        }


class ValidationError(RAGServiceError):
    """Input rejected before any external call was made."""


# Retryable errors


class RetryableError(RAGServiceError):
    """Transient failure that may succeed on retry."""

    def __init__(
        self,
        message: str,
        retry_after: Optional[float] = None,
        details: Optional[Dict[str, Any]] = None,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(message, details, original_error)
        self.retry_after = retry_after


class RateLimitError(RetryableError):
    """HTTP 429 from an upstream API."""


class ServiceUnavailableError(RetryableError):
    """HTTP 5xx from an upstream API."""


class ServiceTimeoutError(RetryableError):
    """Request timed out or the network failed."""


# Permanent errors


class PermanentError(RAGServiceError):
    """Failure that will not succeed on retry."""


class AuthenticationError(PermanentError):
    """HTTP 401/403 from an upstream API."""


class MalformedResponseError(PermanentError):
    """Upstream response could not be parsed or failed validation."""


class ConfigurationError(PermanentError):
    """Required configuration (API key, URL, secret) is missing."""


class EmbeddingError(RAGServiceError):
    """Embedding generation failed after retries or on a permanent error."""

    def __init__(
        self,
        message: str,
        attempts: int = 0,
        details: Optional[Dict[str, Any]] = None,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(message, details, original_error)
        self.attempts = attempts


class WebhookVerificationError(RAGServiceError):
    """Webhook signature is invalid or the payload is stale."""
