"""
Custom exceptions and error handling for the Deal Intake pipeline.

Extraction and conflict detection never raise: "could not extract" is an
expected outcome and is reported through warnings. The hierarchy below covers
the places that can genuinely fail:
- The OpenAI client behind the LLM extraction strategy
- Loading a malformed vocabulary file
- Illegal intake lifecycle transitions
"""

from typing import Any


class DealIntakeError(Exception):
    """Base exception for all deal intake errors."""

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            return f"{self.message} | context={self.context}"
        return self.message


# =============================================================================
# Client Errors
# =============================================================================


class ClientError(DealIntakeError):
    """Base class for client-related errors."""

    pass


class OpenAIError(ClientError):
    """Error from OpenAI API calls."""

    pass


class OpenAIRateLimitError(OpenAIError):
    """Rate limit exceeded on OpenAI API."""

    pass


class OpenAIModelError(OpenAIError):
    """Model refused request or returned invalid response."""

    pass


class OpenAITimeoutError(OpenAIError):
    """OpenAI call did not complete within the configured timeout."""

    pass


# =============================================================================
# Pipeline Errors
# =============================================================================


class PipelineError(DealIntakeError):
    """Base class for pipeline-related errors."""

    pass


class ValidationError(PipelineError):
    """Input validation failed."""

    pass


class ExtractionError(PipelineError):
    """Automated extraction could not produce a usable record."""

    pass


class VocabularyError(PipelineError):
    """Vocabulary file is missing or malformed."""

    pass


class InvalidTransitionError(PipelineError):
    """Requested intake status change is not allowed from the current state."""

    pass


# =============================================================================
# Error Handling Utilities
# =============================================================================


def wrap_openai_error(exc: Exception, context: dict[str, Any] | None = None) -> OpenAIError:
    """
    Wrap an OpenAI exception in our typed error hierarchy.

    Args:
        exc: The original exception
        context: Additional context for debugging

    Returns:
        Typed OpenAIError subclass
    """
    error_str = str(exc).lower()
    ctx = context or {}
    ctx['original_error'] = str(exc)
    ctx['error_type'] = type(exc).__name__

    if isinstance(exc, TimeoutError) or 'timed out' in error_str or 'timeout' in error_str:
        return OpenAITimeoutError(
            f"OpenAI request timed out: {exc}",
            context=ctx,
        )
    elif 'rate limit' in error_str or 'rate_limit' in error_str:
        return OpenAIRateLimitError(
            f"OpenAI rate limit exceeded: {exc}",
            context=ctx,
        )
    elif 'content policy' in error_str or 'refused' in error_str or 'parse' in error_str:
        return OpenAIModelError(
            f"OpenAI model refused or returned unusable output: {exc}",
            context=ctx,
        )
    else:
        return OpenAIError(
            f"OpenAI API error: {exc}",
            context=ctx,
        )
