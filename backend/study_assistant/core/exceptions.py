"""
Custom exception classes for unified error handling.

Each error carries the HTTP status it maps to at the transport boundary.
"""

from fastapi import HTTPException, status

ASSISTANT_UNAVAILABLE = "The study assistant is unavailable right now. Please try again later."


class AppBaseError(Exception):
    """Base exception for all application errors."""
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, detail: str | None = None):
        self.message = message
        self.detail = detail
        super().__init__(message)


class InvalidInputError(AppBaseError):
    """Raised when a request is malformed."""
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str = "Invalid input", detail: str | None = None):
        super().__init__(message=message, detail=detail)


class NotFoundError(AppBaseError):
    """Raised when a student or conversation does not exist."""
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, resource: str, identifier: str):
        super().__init__(message=f"{resource} {identifier} not found")


# ── Generation capability ────────────────────────────────

class RateLimitedError(AppBaseError):
    """Provider overload or local scheduler queue overflow. Retryable by the caller."""
    status_code = status.HTTP_429_TOO_MANY_REQUESTS

    def __init__(self, detail: str | None = None):
        super().__init__(
            message="Too many requests to the assistant. Please try again in a few seconds.",
            detail=detail,
        )


class MisconfiguredError(AppBaseError):
    """Missing or rejected provider credentials. Needs an operator, not a retry."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, detail: str | None = "Check LLM_API_KEY / provider configuration."):
        super().__init__(message=ASSISTANT_UNAVAILABLE, detail=detail)


class UnavailableError(AppBaseError):
    """Transient provider or network failure."""
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self, detail: str | None = None):
        super().__init__(message=ASSISTANT_UNAVAILABLE, detail=detail)


class InvalidResponseError(AppBaseError):
    """Provider answered with empty or malformed output."""
    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(self, detail: str | None = "Empty response from the provider."):
        super().__init__(message=ASSISTANT_UNAVAILABLE, detail=detail)


# ── Knowledge / storage ──────────────────────────────────

class ProviderError(AppBaseError):
    """Raised when the embedding capability is unreachable or misconfigured."""
    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(self, message: str = "Embedding provider error", detail: str | None = None):
        super().__init__(message=message, detail=detail)


class DimensionMismatchError(AppBaseError):
    """Raised when comparing vectors of different length."""

    def __init__(self, len_a: int, len_b: int):
        super().__init__(
            message="Vectors must have the same length",
            detail=f"{len_a} != {len_b}",
        )


class StorageError(AppBaseError):
    """Raised when the document store rejects or fails an operation."""

    def __init__(self, action: str, original_error: str):
        super().__init__(message=f"Storage operation '{action}' failed", detail=original_error)


# ── Utility: convert to HTTPException ────────────────────

def app_error_to_http(error: AppBaseError, status_code: int | None = None) -> HTTPException:
    """Convert an AppBaseError to an HTTPException with consistent JSON body."""
    return HTTPException(
        status_code=status_code or error.status_code,
        detail={
            "error": error.message,
            "detail": error.detail,
            "type": type(error).__name__,
        },
    )
