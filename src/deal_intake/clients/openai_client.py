"""
OpenAI client wrapper for the LLM extraction strategy.

Handles:
- Chat completions with structured output (Pydantic model parsing)
- Retry logic with exponential backoff
- Translating provider exceptions into the package's error hierarchy
"""

from typing import TypeVar

import structlog
from openai import AsyncOpenAI
from pydantic import BaseModel
from tenacity import (
    retry,
    retry_if_exception_type,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..config import config
from ..errors import OpenAIError, OpenAIModelError, OpenAIRateLimitError, wrap_openai_error

logger = structlog.get_logger(__name__)

# Type variable for structured output parsing
T = TypeVar('T', bound=BaseModel)

# Refusals and unparseable output will not improve on retry
_retryable = retry_if_exception_type(OpenAIError) & retry_if_not_exception_type(
    OpenAIModelError
)


class OpenAIClient:
    """
    Async OpenAI client with structured output support.

    Configuration via environment variables (see deal_intake.config):
    - OPENAI_API_KEY: Required API key
    - OPENAI_CHAT_MODEL: Chat model (default: gpt-4o-mini)
    """

    def __init__(
        self,
        api_key: str | None = None,
        chat_model: str | None = None,
    ):
        """
        Initialize the OpenAI client.

        Args:
            api_key: OpenAI API key (defaults to OPENAI_API_KEY)
            chat_model: Model for chat completions (defaults to OPENAI_CHAT_MODEL)
        """
        self.api_key = api_key or config.OPENAI_API_KEY
        if not self.api_key:
            raise ValueError('OPENAI_API_KEY environment variable is required')

        self.chat_model = chat_model or config.OPENAI_CHAT_MODEL
        self._client = AsyncOpenAI(api_key=self.api_key)

    @retry(
        retry=_retryable,
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def chat_completion_structured(
        self,
        messages: list[dict[str, str]],
        response_model: type[T],
        model: str | None = None,
        temperature: float = 0.0,
    ) -> T:
        """
        Get a chat completion with structured output (Pydantic model).

        Uses OpenAI's native structured output via response_format.

        Args:
            messages: List of message dicts with 'role' and 'content'
            response_model: Pydantic model class for the response
            model: Override the default chat model
            temperature: Sampling temperature

        Returns:
            Parsed Pydantic model instance

        Raises:
            OpenAIModelError: The model refused or its output did not parse
            OpenAIError: Any other provider failure (after retries)
        """
        try:
            response = await self._client.chat.completions.parse(
                model=model or self.chat_model,
                messages=messages,  # type: ignore
                response_format=response_model,
                temperature=temperature,
            )
        except Exception as e:
            error = wrap_openai_error(e, {'operation': 'chat_completion_structured'})
            if isinstance(error, OpenAIRateLimitError):
                logger.warning('openai.rate_limited', model=model or self.chat_model)
            raise error from e

        message = response.choices[0].message
        if message.parsed is None:
            raise OpenAIModelError(
                'Failed to parse structured response',
                context={'refusal': getattr(message, 'refusal', None)},
            )
        return message.parsed

    async def health_check(self) -> dict[str, bool | str]:
        """
        Verify API connectivity with a minimal request.

        Returns:
            Dict with 'healthy' bool and optional 'error' message
        """
        try:
            await self._client.models.retrieve(self.chat_model)
            return {
                'healthy': True,
                'chat_model': self.chat_model,
            }
        except Exception as e:
            return {'healthy': False, 'error': str(e)}

    async def close(self):
        """Close the client connection."""
        await self._client.close()
