"""
Custom exception hierarchy for Orchestral.

Provides structured error handling with error codes, user-friendly messages,
and proper HTTP status code mapping.
"""

from typing import Any, Dict, Optional
from enum import Enum


class ErrorCode(str, Enum):
    """Error codes for categorizing exceptions."""

    # Validation errors (400)
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_REQUEST = "INVALID_REQUEST"

    # Resource errors (404)
    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    SOURCE_NOT_FOUND = "SOURCE_NOT_FOUND"

    # External service errors (502)
    ANTHROPIC_API_ERROR = "ANTHROPIC_API_ERROR"
    SYNTHESIS_ERROR = "SYNTHESIS_ERROR"
    SOURCE_QUERY_ERROR = "SOURCE_QUERY_ERROR"
    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"

    # Rate limiting (429)
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    ANTHROPIC_RATE_LIMIT = "ANTHROPIC_RATE_LIMIT"

    # Server errors (500)
    INTERNAL_ERROR = "INTERNAL_ERROR"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"


class AppError(Exception):
    """
    Base application error with structured error information.

    All application-specific exceptions should inherit from this class.

    Attributes:
        code: Error code from ErrorCode enum
        message: Human-readable error message
        details: Additional context (not exposed to users in production)
        http_status: HTTP status code for API responses
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        http_status: int = 500,
    ):
        self.code = code
        self.message = message
        self.details = details or {}
        self.http_status = http_status
        super().__init__(message)

    def to_dict(self, include_details: bool = False) -> Dict[str, Any]:
        """Convert exception to dictionary for API response."""
        result = {
            "error": {
                "code": self.code.value,
                "message": self.message,
            }
        }
        if include_details and self.details:
            result["error"]["details"] = self.details
        return result


# ============ Validation Errors ============


class ValidationError(AppError):
    """Base class for validation errors."""

    def __init__(
        self,
        code: ErrorCode = ErrorCode.VALIDATION_ERROR,
        message: str = "Validation failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code=code, message=message, details=details, http_status=400)


class InvalidRequestError(ValidationError):
    """Raised when a request body is missing a required value."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            code=ErrorCode.INVALID_REQUEST,
            message=message,
            details=details,
        )


# ============ Resource Not Found Errors ============


class ResourceNotFoundError(AppError):
    """Base class for resource not found errors."""

    def __init__(
        self,
        code: ErrorCode = ErrorCode.RESOURCE_NOT_FOUND,
        message: str = "Resource not found",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code=code, message=message, details=details, http_status=404)


class SessionNotFoundError(ResourceNotFoundError):
    """Raised when a chat session cannot be found."""

    def __init__(self, session_id: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            code=ErrorCode.SESSION_NOT_FOUND,
            message="Session not found",
            details={**(details or {}), "session_id": session_id[:8] + "..."},
        )


class SourceNotFoundError(ResourceNotFoundError):
    """Raised when a knowledge source id is not registered."""

    def __init__(self, source_id: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            code=ErrorCode.SOURCE_NOT_FOUND,
            message=f"Source {source_id} not found",
            details={**(details or {}), "source_id": source_id},
        )


# ============ External Service Errors ============


class ExternalServiceError(AppError):
    """Base class for external service errors."""

    def __init__(
        self,
        code: ErrorCode = ErrorCode.EXTERNAL_SERVICE_ERROR,
        message: str = "External service error",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code=code, message=message, details=details, http_status=502)


class AnthropicAPIError(ExternalServiceError):
    """Raised when an Anthropic API call fails."""

    def __init__(self, original_error: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            code=ErrorCode.ANTHROPIC_API_ERROR,
            message="AI service temporarily unavailable",
            details={**(details or {}), "original_error": original_error},
        )


class SynthesisError(ExternalServiceError):
    """Raised when the answer cannot be synthesized from source results."""

    def __init__(self, original_error: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            code=ErrorCode.SYNTHESIS_ERROR,
            message="Failed to synthesize a response",
            details={**(details or {}), "original_error": original_error},
        )


class SourceQueryError(ExternalServiceError):
    """Raised inside a knowledge source when its backing service fails.

    Never crosses the source boundary: the source base class converts it
    into an error result.
    """

    def __init__(
        self,
        source_id: str,
        original_error: str,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            code=ErrorCode.SOURCE_QUERY_ERROR,
            message=f"{source_id} query failed: {original_error}",
            details={
                **(details or {}),
                "source_id": source_id,
                "original_error": original_error,
            },
        )


# ============ Rate Limiting Errors ============


class RateLimitError(AppError):
    """Base class for rate limiting errors."""

    def __init__(
        self,
        code: ErrorCode = ErrorCode.RATE_LIMIT_EXCEEDED,
        message: str = "Rate limit exceeded",
        retry_after: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.retry_after = retry_after
        details = details or {}
        if retry_after:
            details["retry_after_seconds"] = retry_after
        super().__init__(code=code, message=message, details=details, http_status=429)


class AnthropicRateLimitError(RateLimitError):
    """Raised when Anthropic API rate limit is hit."""

    def __init__(self, retry_after: Optional[int] = None):
        super().__init__(
            code=ErrorCode.ANTHROPIC_RATE_LIMIT,
            message="AI service rate limit reached. Please try again shortly.",
            retry_after=retry_after,
        )


# ============ Internal Errors ============


class ConfigurationError(AppError):
    """Raised when there's a configuration issue."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            code=ErrorCode.CONFIGURATION_ERROR,
            message=message,
            details=details,
            http_status=500,
        )
