"""
Tests for the errors module.
"""

from deal_intake.errors import (
    DealIntakeError,
    ClientError,
    PipelineError,
    ValidationError,
    ExtractionError,
    VocabularyError,
    InvalidTransitionError,
    OpenAIError,
    OpenAIRateLimitError,
    OpenAIModelError,
    OpenAITimeoutError,
    wrap_openai_error,
)


class TestErrorHierarchy:
    """Test error class hierarchy."""

    def test_base_error_with_context(self):
        """Test that base error captures context."""
        error = DealIntakeError(
            "Something went wrong",
            context={"key": "value", "count": 42},
        )

        assert error.message == "Something went wrong"
        assert error.context == {"key": "value", "count": 42}
        assert "key" in str(error)

    def test_base_error_without_context(self):
        """Test error without context."""
        error = DealIntakeError("Simple error")

        assert error.message == "Simple error"
        assert error.context == {}
        assert str(error) == "Simple error"

    def test_pipeline_error_inheritance(self):
        """Test that pipeline errors inherit correctly."""
        for error in (
            ValidationError("Invalid input"),
            ExtractionError("Extraction failed"),
            VocabularyError("Bad vocabulary"),
            InvalidTransitionError("Already converted"),
        ):
            assert isinstance(error, PipelineError)
            assert isinstance(error, DealIntakeError)

    def test_client_error_inheritance(self):
        """Test client error hierarchy."""
        assert isinstance(OpenAIError("API error"), ClientError)
        assert isinstance(OpenAIRateLimitError("Rate limited"), OpenAIError)
        assert isinstance(OpenAIModelError("Refused"), OpenAIError)
        assert isinstance(OpenAITimeoutError("Too slow"), OpenAIError)
        assert not isinstance(OpenAIError("API error"), PipelineError)


class TestErrorWrapping:
    """Test error wrapping utilities."""

    def test_wrap_openai_rate_limit(self):
        """Test wrapping rate limit errors."""
        wrapped = wrap_openai_error(Exception("Rate limit exceeded"))

        assert isinstance(wrapped, OpenAIRateLimitError)
        assert "rate limit" in wrapped.message.lower()

    def test_wrap_openai_timeout(self):
        """Test wrapping timeouts by type and by message."""
        assert isinstance(wrap_openai_error(TimeoutError()), OpenAITimeoutError)
        assert isinstance(wrap_openai_error(Exception("Request timed out")), OpenAITimeoutError)

    def test_wrap_openai_content_policy(self):
        """Test wrapping content policy errors."""
        wrapped = wrap_openai_error(Exception("Content policy violation: refused to process"))

        assert isinstance(wrapped, OpenAIModelError)
        assert wrapped.context.get("error_type") == "Exception"

    def test_wrap_openai_generic(self):
        """Test wrapping generic OpenAI errors."""
        wrapped = wrap_openai_error(Exception("Unknown API error"), context={"attempt": 3})

        assert type(wrapped) is OpenAIError
        assert wrapped.context["attempt"] == 3
        assert wrapped.context["original_error"] == "Unknown API error"
