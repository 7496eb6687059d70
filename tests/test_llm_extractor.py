"""
Tests for the LLM extraction strategy with mocked OpenAI calls.

Tests cover:
- Successful extraction: vocabulary coercion, confidence, shared finalize
- Role-leak scrubbing of model output
- Failure modes: provider error, unexpected exception, timeout, empty body
- Prompt construction

No API keys required: all OpenAI calls are mocked.
"""

import asyncio

import pytest
from unittest.mock import AsyncMock

from deal_intake.errors import OpenAIModelError
from deal_intake.pipeline.llm_extractor import (
    LLM_CONFIDENCE,
    WARN_LLM_FAILED,
    LLMExtraction,
    LLMExtractor,
    coerce_agent_count,
    coerce_distributor,
    coerce_solutions,
    coerce_timeline,
)
from deal_intake.prompts.extract_intake import INTERNAL_FORWARDER_NOTE, build_extraction_messages


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def mock_openai():
    """Create a mocked OpenAI client."""
    client = AsyncMock()
    client.chat_completion_structured = AsyncMock()
    return client


@pytest.fixture
def extractor(mock_openai, vocabulary):
    return LLMExtractor(
        openai_client=mock_openai,
        internal_domain='internal.example',
        vocabulary=vocabulary,
        timeout_seconds=1,
    )


@pytest.fixture
def model_answer():
    """A typical structured answer for the double-forward email."""
    return LLMExtraction(
        ta_full_name='Jessica Hernandez',
        ta_email='jhernandez@partner.net',
        ta_company_name='NexGen Partners',
        tsd_name='telarus',
        tsd_contact_name='Marcus Webb',
        tsd_contact_email='marcus@telarus.com',
        customer_first_name='Derek',
        customer_last_name='Foster',
        customer_company_name='Pinnacle Retail Group',
        customer_email='dfoster@pinnacleretail.com',
        agent_count='about 2000 seats',
        implementation_timeline='within 3 months',
        solutions_interested=['coaching', 'Gamification', 'Teleportation'],
        opportunity_description='Pinnacle wants coaching for 2000 seats.',
    )


# =============================================================================
# Success
# =============================================================================


class TestLLMExtraction:
    """Structured answers held to the extraction contract."""

    @pytest.mark.asyncio
    async def test_fields_extracted(self, extractor, mock_openai, model_answer, double_forward_email):
        mock_openai.chat_completion_structured.return_value = model_answer

        result = await extractor.extract(**double_forward_email)

        assert result.method == 'ai'
        assert result.record.ta_full_name == 'Jessica Hernandez'
        assert result.record.ta_email == 'jhernandez@partner.net'
        assert 'Pinnacle Retail Group' in result.record.customer_company_name
        assert result.confidence['ta_email'] == LLM_CONFIDENCE

    @pytest.mark.asyncio
    async def test_values_coerced_to_vocabulary(self, extractor, mock_openai, model_answer, double_forward_email):
        mock_openai.chat_completion_structured.return_value = model_answer

        record = (await extractor.extract(**double_forward_email)).record

        assert record.tsd_name == 'Telarus'
        assert record.agent_count == '1000 to 2499'
        assert record.implementation_timeline == '0-3 months'
        assert record.solutions_interested == ['Coaching', 'Gamification']

    @pytest.mark.asyncio
    async def test_shared_finalize_warnings(self, extractor, mock_openai, double_forward_email):
        mock_openai.chat_completion_structured.return_value = LLMExtraction(
            customer_company_name='Pinnacle Retail Group',
        )

        result = await extractor.extract(**double_forward_email)

        assert result.method == 'ai'
        assert 'Could not extract customer email' in result.warnings
        assert result.record.opportunity_description
        assert result.confidence['opportunity_description'] == 30

    @pytest.mark.asyncio
    async def test_internal_partner_group_scrubbed(self, extractor, mock_openai, double_forward_email):
        mock_openai.chat_completion_structured.return_value = LLMExtraction(
            ta_full_name='Sarah Lin',
            ta_email='sarah@internal.example',
            ta_phone='555-123-4567',
            tsd_contact_name='Marcus Webb',
            tsd_contact_email='marcus@telarus.com',
            customer_email='ben@internal.example',
        )

        record = (await extractor.extract(**double_forward_email)).record

        assert record.ta_full_name is None
        assert record.ta_email is None
        assert record.ta_phone is None
        assert record.customer_email is None
        assert record.tsd_contact_name == 'Marcus Webb'

    @pytest.mark.asyncio
    async def test_prompt_sent(self, extractor, mock_openai, model_answer, double_forward_email):
        mock_openai.chat_completion_structured.return_value = model_answer

        await extractor.extract(**double_forward_email)

        kwargs = mock_openai.chat_completion_structured.call_args.kwargs
        assert kwargs['response_model'] is LLMExtraction
        assert kwargs['messages'][0]['role'] == 'system'
        assert 'Jessica Hernandez' in kwargs['messages'][1]['content']


# =============================================================================
# Failure
# =============================================================================


class TestLLMFailure:
    """Every failure becomes an all-null record flagged for review."""

    def assert_failed(self, result):
        assert result.method == 'failed'
        assert result.failed
        assert result.record.populated_fields() == []
        assert result.confidence == {}
        assert result.warnings == [WARN_LLM_FAILED]

    @pytest.mark.asyncio
    async def test_provider_error(self, extractor, mock_openai, double_forward_email):
        mock_openai.chat_completion_structured.side_effect = OpenAIModelError('refused')

        self.assert_failed(await extractor.extract(**double_forward_email))

    @pytest.mark.asyncio
    async def test_unexpected_exception(self, extractor, mock_openai, double_forward_email):
        mock_openai.chat_completion_structured.side_effect = RuntimeError('boom')

        self.assert_failed(await extractor.extract(**double_forward_email))

    @pytest.mark.asyncio
    async def test_timeout(self, mock_openai, vocabulary, double_forward_email):
        async def slow(**kwargs):
            await asyncio.sleep(5)

        mock_openai.chat_completion_structured.side_effect = slow
        extractor = LLMExtractor(
            openai_client=mock_openai,
            internal_domain='internal.example',
            vocabulary=vocabulary,
            timeout_seconds=0.05,
        )

        self.assert_failed(await extractor.extract(**double_forward_email))

    @pytest.mark.asyncio
    async def test_empty_body_skips_call(self, extractor, mock_openai):
        result = await extractor.extract('   ')

        self.assert_failed(result)
        mock_openai.chat_completion_structured.assert_not_called()


# =============================================================================
# Coercion helpers
# =============================================================================


class TestCoercion:
    """Free-text answers mapped onto vocabulary values."""

    def test_distributor(self, vocabulary):
        assert coerce_distributor('Sandler', vocabulary) == 'Sandler Partners'
        assert coerce_distributor('via Intelisys', vocabulary) == 'Intelisys'
        assert coerce_distributor('Some Other Master Agent', vocabulary) == 'Other'
        assert coerce_distributor('', vocabulary) is None

    def test_solutions(self, vocabulary):
        assert coerce_solutions(['autoqa / qa', 'AutoQA / QA', 'Unknown'], vocabulary) == ['AutoQA / QA']

    def test_agent_count(self, vocabulary):
        assert coerce_agent_count('250 to 499', vocabulary) == '250 to 499'
        assert coerce_agent_count('300 reps', vocabulary) == '250 to 499'
        assert coerce_agent_count('a lot', vocabulary) is None
        assert coerce_agent_count(None, vocabulary) is None

    def test_timeline(self, vocabulary):
        assert coerce_timeline('6-12 months', vocabulary) == '6-12 months'
        assert coerce_timeline('9 months', vocabulary) == '6-12 months'
        assert coerce_timeline('someday', vocabulary) is None


class TestPrompt:
    """Prompt messages for one email."""

    def test_internal_forwarder_note(self, vocabulary):
        messages = build_extraction_messages(
            email_body='Customer: Acme',
            internal_domain='internal.example',
            vocabulary=vocabulary,
            sender_email='sarah@internal.example',
            sender_name='Sarah Lin',
            subject='Fwd: deal',
        )

        assert len(messages) == 2
        assert 'internal.example' in messages[0]['content']
        assert '"Telarus"' in messages[0]['content']
        assert '"1000 to 2499"' in messages[0]['content']
        assert INTERNAL_FORWARDER_NOTE in messages[1]['content']
        assert 'Subject: Fwd: deal' in messages[1]['content']

    def test_external_sender_no_note(self, vocabulary):
        messages = build_extraction_messages(
            email_body='Customer: Acme',
            internal_domain='internal.example',
            vocabulary=vocabulary,
            sender_email='amy@brightpath.io',
        )

        assert INTERNAL_FORWARDER_NOTE not in messages[1]['content']
        assert messages[1]['content'].endswith('Customer: Acme')

    def test_lookalike_sender_no_note(self, vocabulary):
        messages = build_extraction_messages(
            email_body='Customer: Acme',
            internal_domain='internal.example',
            vocabulary=vocabulary,
            sender_email='bob@notinternal.example',
        )

        assert INTERNAL_FORWARDER_NOTE not in messages[1]['content']
