"""
LLM extraction strategy.

Asks the chat model for the whole record in one structured-output call, then
holds the answer to the same contract as the rule-based extractor:
- Distributor names and solution tags restricted to the vocabulary
- Agent-count and timeline values snapped onto bucket labels
- Internal contact groups scrubbed, then the shared assembler finalize()

Any failure (provider error, unparseable output, timeout) yields an all-null
record with method 'failed' and a single review warning. Never raises.
"""

import asyncio
from typing import Any

import structlog
from pydantic import BaseModel, Field

from ..clients.openai_client import OpenAIClient
from ..config import config
from ..errors import DealIntakeError, ExtractionError, OpenAITimeoutError
from ..models.record import Candidate, ExtractedRecord, ExtractionResult, is_empty_value
from ..models.vocabulary import Vocabulary, load_vocabulary
from ..prompts.extract_intake import build_extraction_messages
from .assembler import RecordAssembler, scrub_role_groups
from .fields import (
    bucket_for_count,
    find_distributor_mention,
    parse_agent_count,
    timeline_from_text,
)
from .normalizer import normalize_text, truncate

logger = structlog.get_logger(__name__)

LLM_CONFIDENCE = 95
WARN_LLM_FAILED = 'Automated extraction failed - manual review required'


# =============================================================================
# Response Model
# =============================================================================


class LLMExtraction(BaseModel):
    """
    Structured output target for the extraction call.

    Mirrors ExtractedRecord; values are free text until coerced.
    """

    ta_full_name: str | None = Field(
        default=None, description='Partner/TA: the original sender with the customer details'
    )
    ta_email: str | None = Field(default=None, description='Partner/TA email')
    ta_phone: str | None = Field(default=None, description='Partner/TA phone from their signature')
    ta_company_name: str | None = Field(
        default=None, description='Partner/TA company from signature or email domain'
    )

    tsd_name: str | None = Field(default=None, description='Distributor (TSD) name')
    tsd_contact_name: str | None = Field(
        default=None, description='Distributor contact: intermediary forwarder or named rep'
    )
    tsd_contact_email: str | None = Field(default=None, description='Distributor contact email')

    customer_first_name: str | None = Field(default=None, description='End customer first name')
    customer_last_name: str | None = Field(default=None, description='End customer last name')
    customer_company_name: str | None = Field(default=None, description='End customer company')
    customer_email: str | None = Field(default=None, description='End customer email')
    customer_phone: str | None = Field(default=None, description='End customer phone')
    customer_job_title: str | None = Field(default=None, description='End customer job title')
    customer_street_address: str | None = Field(default=None, description='Street address')
    customer_city: str | None = Field(default=None, description='City')
    customer_state: str | None = Field(default=None, description='State (2-letter)')
    customer_postal_code: str | None = Field(default=None, description='ZIP or postal code')
    customer_country: str | None = Field(default=None, description='Country')

    agent_count: str | None = Field(default=None, description='Agent-count bucket label')
    implementation_timeline: str | None = Field(
        default=None, description='Implementation-timeline bucket label'
    )
    solutions_interested: list[str] = Field(
        default_factory=list, description='Solution tags from the allowed list'
    )
    opportunity_description: str | None = Field(default=None, description='Brief description')
    deal_value: str | None = Field(default=None, description='Stated deal value, as written')


# =============================================================================
# Coercion
# =============================================================================


def coerce_distributor(value: str | None, vocabulary: Vocabulary) -> str | None:
    """Vocabulary name for a distributor answer; 'Other' for unknown names."""
    if is_empty_value(value):
        return None
    return (
        vocabulary.resolve_distributor(value)
        or find_distributor_mention(value, vocabulary)
        or vocabulary.other_distributor
    )


def coerce_solutions(values: list[str], vocabulary: Vocabulary) -> list[str]:
    """Keep only tags naming a vocabulary solution, canonical spelling, no repeats."""
    known = {name.lower(): name for name in vocabulary.solutions}
    tags: list[str] = []
    for value in values:
        tag = known.get(value.strip().lower()) if isinstance(value, str) else None
        if tag and tag not in tags:
            tags.append(tag)
    return tags


def coerce_agent_count(value: str | None, vocabulary: Vocabulary) -> str | None:
    """Snap an agent-count answer onto a bucket label."""
    if is_empty_value(value):
        return None
    for label in vocabulary.agent_count_labels:
        if value.strip().lower() == label.lower():
            return label
    parsed = parse_agent_count(value, require_unit=False)
    if parsed is None:
        return None
    return bucket_for_count(parsed[0], vocabulary.agent_count_buckets)


def coerce_timeline(value: str | None, vocabulary: Vocabulary) -> str | None:
    if is_empty_value(value):
        return None
    return timeline_from_text(value, vocabulary.timeline_buckets, labeled=True)


def coerce_extraction(extraction: LLMExtraction, vocabulary: Vocabulary) -> dict[str, Any]:
    """
    Turn a model answer into record values.

    Args:
        extraction: Parsed structured output
        vocabulary: Extraction vocabulary

    Returns:
        Field map ready for the assembler (unrecognized vocabulary values dropped)
    """
    values = extraction.model_dump()
    values['tsd_name'] = coerce_distributor(values['tsd_name'], vocabulary)
    values['solutions_interested'] = coerce_solutions(values['solutions_interested'], vocabulary)
    values['agent_count'] = coerce_agent_count(values['agent_count'], vocabulary)
    values['implementation_timeline'] = coerce_timeline(values['implementation_timeline'], vocabulary)
    return values


# =============================================================================
# Extractor
# =============================================================================


class LLMExtractor:
    """
    Extracts a deal registration record with one structured chat completion.

    Satisfies the same output contract as RuleBasedExtractor, asynchronously.
    """

    method = 'ai'

    def __init__(
        self,
        openai_client: OpenAIClient,
        internal_domain: str | None = None,
        vocabulary: Vocabulary | None = None,
        timeout_seconds: float | None = None,
        description_max_chars: int | None = None,
        raw_text_max_chars: int | None = None,
    ):
        """
        Initialize the extractor.

        Args:
            openai_client: OpenAI client for structured output calls
            internal_domain: Organization's own email domain (defaults to config)
            vocabulary: Extraction vocabulary (defaults to the configured YAML)
            timeout_seconds: Upper bound on the whole call, retries included
            description_max_chars: Limit for the description fallback
            raw_text_max_chars: Limit for the normalized text kept on the result
        """
        self.openai = openai_client
        self.internal_domain = internal_domain if internal_domain is not None else config.INTERNAL_DOMAIN
        self.vocabulary = vocabulary or load_vocabulary(config.VOCABULARY_PATH or None)
        self.timeout_seconds = timeout_seconds or config.LLM_TIMEOUT_SECONDS
        self.description_max_chars = description_max_chars or config.DESCRIPTION_MAX_CHARS
        self.raw_text_max_chars = raw_text_max_chars or config.RAW_TEXT_MAX_CHARS

    async def extract(
        self,
        raw_body: str | None,
        sender_email: str | None = None,
        sender_name: str | None = None,
        subject: str | None = None,
    ) -> ExtractionResult:
        """
        Extract a record from one email.

        Args:
            raw_body: Email body, plain text or HTML
            sender_email: Direct sender address
            sender_name: Direct sender display name
            subject: Subject line

        Returns:
            ExtractionResult with method 'ai', or method 'failed' when the
            call could not produce a usable answer
        """
        text = normalize_text(raw_body)
        raw_text = truncate(text, self.raw_text_max_chars)
        if not text:
            logger.info('llm_extraction.skipped_empty_body')
            return self.failed_result(raw_text)

        messages = build_extraction_messages(
            email_body=text,
            internal_domain=self.internal_domain,
            vocabulary=self.vocabulary,
            sender_email=sender_email,
            sender_name=sender_name,
            subject=subject,
        )

        try:
            extraction = await self.request(messages)
        except DealIntakeError as e:
            logger.warning(
                'llm_extraction.failed',
                error=e.message,
                error_type=type(e).__name__,
                context=e.context,
            )
            return self.failed_result(raw_text)

        values = scrub_role_groups(coerce_extraction(extraction, self.vocabulary), self.internal_domain)
        if isinstance(values.get('opportunity_description'), str):
            values['opportunity_description'] = truncate(
                values['opportunity_description'].strip(), self.description_max_chars
            )

        assembler = RecordAssembler(
            internal_domain=self.internal_domain,
            description_max_chars=self.description_max_chars,
        )
        for name, value in values.items():
            assembler.apply(name, Candidate(value=value, confidence=LLM_CONFIDENCE, rule='llm'))
        assembler.finalize(source_text=text)
        result = assembler.result(raw_text=raw_text, method=self.method)

        logger.info(
            'llm_extraction.complete',
            fields_populated=len(result.confidence),
            warnings=len(result.warnings),
        )
        return result

    async def request(self, messages: list[dict[str, str]]) -> LLMExtraction:
        """
        Run the structured-output call under the configured timeout.

        Raises:
            OpenAITimeoutError: The call (retries included) exceeded the timeout
            OpenAIError: Provider failure surfaced by the client
            ExtractionError: Anything else went wrong producing the answer
        """
        try:
            return await asyncio.wait_for(
                self.openai.chat_completion_structured(
                    messages=messages,
                    response_model=LLMExtraction,
                ),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise OpenAITimeoutError(
                'LLM extraction timed out',
                context={'timeout_seconds': self.timeout_seconds},
            ) from e
        except DealIntakeError:
            raise
        except Exception as e:
            raise ExtractionError(
                f'LLM extraction failed: {e}',
                context={'error_type': type(e).__name__},
            ) from e

    def failed_result(self, raw_text: str = '') -> ExtractionResult:
        """All-null record flagged for manual review."""
        return ExtractionResult(
            record=ExtractedRecord(),
            confidence={},
            warnings=[WARN_LLM_FAILED],
            raw_text=raw_text,
            method='failed',
        )
