"""
Unit tests for custom exceptions.
"""

from orchestral.core.exceptions import (
    AnthropicAPIError,
    AnthropicRateLimitError,
    AppError,
    ConfigurationError,
    ErrorCode,
    ExternalServiceError,
    InvalidRequestError,
    SessionNotFoundError,
    SourceNotFoundError,
    SourceQueryError,
    SynthesisError,
    ValidationError,
)


class TestAppError:
    """Tests for base AppError class."""

    def test_app_error_creation(self):
        error = AppError(
            code=ErrorCode.INTERNAL_ERROR,
            message="Test error",
            details={"key": "value"},
            http_status=500,
        )

        assert error.code == ErrorCode.INTERNAL_ERROR
        assert error.message == "Test error"
        assert error.details == {"key": "value"}
        assert error.http_status == 500
        assert str(error) == "Test error"

    def test_app_error_to_dict(self):
        """Details are only included on request."""
        error = AppError(
            code=ErrorCode.VALIDATION_ERROR,
            message="Invalid input",
            details={"field": "message"},
        )

        assert error.to_dict(include_details=False) == {
            "error": {
                "code": "VALIDATION_ERROR",
                "message": "Invalid input",
            }
        }
        assert error.to_dict(include_details=True)["error"]["details"] == {"field": "message"}


class TestValidationErrors:
    """Tests for validation errors."""

    def test_validation_error(self):
        error = ValidationError(message="Invalid format")
        assert error.code == ErrorCode.VALIDATION_ERROR
        assert error.http_status == 400

    def test_invalid_request_error(self):
        error = InvalidRequestError("Message is required")
        assert isinstance(error, ValidationError)
        assert error.code == ErrorCode.INVALID_REQUEST
        assert error.http_status == 400
        assert error.message == "Message is required"


class TestNotFoundErrors:
    """Tests for resource not found errors."""

    def test_session_not_found_truncates_id(self):
        error = SessionNotFoundError("abcdefghijklmnop")
        assert error.http_status == 404
        assert error.code == ErrorCode.SESSION_NOT_FOUND
        assert error.details["session_id"] == "abcdefgh..."

    def test_source_not_found(self):
        error = SourceNotFoundError("jira-issues")
        assert error.http_status == 404
        assert "jira-issues" in error.message


class TestExternalServiceErrors:
    """Tests for external service errors."""

    def test_anthropic_api_error_hides_original(self):
        error = AnthropicAPIError("connection reset")
        assert isinstance(error, ExternalServiceError)
        assert error.http_status == 502
        assert "connection reset" not in error.message
        assert error.details["original_error"] == "connection reset"

    def test_synthesis_error(self):
        error = SynthesisError("boom")
        assert error.code == ErrorCode.SYNTHESIS_ERROR
        assert error.http_status == 502

    def test_source_query_error(self):
        error = SourceQueryError("confluence-pages", "No Confluence pages loaded")
        assert error.message == "confluence-pages query failed: No Confluence pages loaded"
        assert error.details["source_id"] == "confluence-pages"


class TestOtherErrors:
    """Tests for rate limit and configuration errors."""

    def test_anthropic_rate_limit_error(self):
        error = AnthropicRateLimitError(retry_after=30)
        assert error.http_status == 429
        assert error.retry_after == 30
        assert error.details["retry_after_seconds"] == 30

    def test_rate_limit_without_retry_after(self):
        error = AnthropicRateLimitError()
        assert "retry_after_seconds" not in error.details

    def test_configuration_error(self):
        error = ConfigurationError("ANTHROPIC_API_KEY is not configured")
        assert error.http_status == 500
        assert error.code == ErrorCode.CONFIGURATION_ERROR
