"""
Tests for the IntakePipeline.

These tests verify the complete flow with mocked OpenAI calls:
- Strategy selection and the rule-based fallback
- Building intakes from inbound emails, singly and concurrently
- Partner hand-off, resubmission conflicts and merging
- Lifecycle transitions (resolve, convert, discard) and their guards

Run with: pytest tests/test_pipeline.py -v
"""

from unittest.mock import AsyncMock

import pytest

from deal_intake.config import Config
from deal_intake.errors import InvalidTransitionError, OpenAIError, ValidationError
from deal_intake.logging import current_context
from deal_intake.models.intake import InboundEmail, Intake, IntakeStatus
from deal_intake.models.record import ExtractedRecord
from deal_intake.pipeline.llm_extractor import WARN_LLM_FAILED, LLMExtraction, LLMExtractor
from deal_intake.pipeline.pipeline import WARN_RULES_FALLBACK, IntakePipeline


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def mock_openai():
    """Create a mocked OpenAI client."""
    client = AsyncMock()
    client.chat_completion_structured = AsyncMock(
        return_value=LLMExtraction(
            ta_full_name='Jessica Hernandez',
            ta_email='jhernandez@partner.net',
            tsd_name='Telarus',
            customer_company_name='Pinnacle Retail Group',
            customer_email='dfoster@pinnacleretail.com',
            opportunity_description='Coaching for 2000 seats.',
        )
    )
    return client


@pytest.fixture
def llm_pipeline(rule_extractor, mock_openai):
    llm_extractor = LLMExtractor(
        mock_openai,
        internal_domain='internal.example',
        vocabulary=rule_extractor.vocabulary,
        timeout_seconds=1,
    )
    return IntakePipeline(rule_extractor=rule_extractor, llm_extractor=llm_extractor)


@pytest.fixture
def rules_pipeline(rule_extractor):
    return IntakePipeline(rule_extractor=rule_extractor)


@pytest.fixture
def reviewed_intake(rules_pipeline):
    """Intake handed off to the partner with a populated snapshot."""
    intake = Intake(
        record=ExtractedRecord(
            customer_company_name='Acme Corp',
            customer_email='a@acme.com',
            solutions_interested=['Coaching'],
        )
    )
    return rules_pipeline.hand_off_to_partner(intake, 'amy@brightpath.io')


# =============================================================================
# Extraction
# =============================================================================


class TestExtraction:
    """Strategy selection and fallback."""

    @pytest.mark.asyncio
    async def test_rules_only(self, rules_pipeline, double_forward_email):
        result = await rules_pipeline.extract_email(**double_forward_email)

        assert result.method == 'rules'
        assert WARN_RULES_FALLBACK not in result.warnings
        assert result.record.ta_email == 'jhernandez@partner.net'

    @pytest.mark.asyncio
    async def test_llm_first(self, llm_pipeline, mock_openai, double_forward_email):
        result = await llm_pipeline.extract_email(**double_forward_email)

        assert result.method == 'ai'
        assert result.record.customer_company_name == 'Pinnacle Retail Group'
        mock_openai.chat_completion_structured.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_rules_fallback_on_llm_failure(self, llm_pipeline, mock_openai, double_forward_email):
        mock_openai.chat_completion_structured.side_effect = OpenAIError('Service unavailable')

        result = await llm_pipeline.extract_email(**double_forward_email)

        assert result.method == 'rules'
        assert result.warnings[0] == WARN_RULES_FALLBACK
        assert result.record.ta_email == 'jhernandez@partner.net'
        assert result.record.tsd_name == 'Telarus'

    @pytest.mark.asyncio
    async def test_no_fallback_returns_failed(self, llm_pipeline, mock_openai, double_forward_email):
        mock_openai.chat_completion_structured.side_effect = OpenAIError('Service unavailable')
        llm_pipeline.rules_fallback = False

        result = await llm_pipeline.extract_email(**double_forward_email)

        assert result.method == 'failed'
        assert result.warnings == [WARN_LLM_FAILED]
        assert result.record.populated_fields() == []

    def test_from_config_without_key(self, monkeypatch):
        monkeypatch.setattr(Config, 'OPENAI_API_KEY', '')

        pipeline = IntakePipeline.from_config()

        assert pipeline.llm_extractor is None

    def test_from_config_with_client(self, mock_openai):
        pipeline = IntakePipeline.from_config(openai_client=mock_openai)

        assert pipeline.llm_extractor is not None
        assert pipeline.llm_extractor.vocabulary is pipeline.rule_extractor.vocabulary
        assert pipeline.llm_extractor.internal_domain == pipeline.rule_extractor.internal_domain


class TestProcessEmail:
    """Inbound emails become pending intakes."""

    @pytest.mark.asyncio
    async def test_pending_intake(self, rules_pipeline, double_forward_email):
        email = InboundEmail(
            body=double_forward_email['raw_body'],
            sender_email=double_forward_email['sender_email'],
            sender_name=double_forward_email['sender_name'],
            subject=double_forward_email['subject'],
            message_id='<m1@mail.example>',
        )

        intake = await rules_pipeline.process_email(email)

        assert intake.status == IntakeStatus.PENDING
        assert intake.email_from == 'sarah@internal.example'
        assert intake.message_id == '<m1@mail.example>'
        assert intake.parsing_method == 'rules'
        assert intake.record.customer_email == 'dfoster@pinnacleretail.com'
        assert intake.confidence['customer_email'] > 0
        assert 'Pinnacle Retail Group' in intake.raw_text
        assert intake.admin_snapshot is None

    @pytest.mark.asyncio
    async def test_empty_email(self, rules_pipeline):
        intake = await rules_pipeline.process_email(InboundEmail())

        assert intake.status == IntakeStatus.PENDING
        assert intake.record.populated_fields() == []
        assert intake.warnings

    @pytest.mark.asyncio
    async def test_intake_ids_bound_while_extracting(self, rules_pipeline, monkeypatch):
        seen = []
        extract = rules_pipeline.rule_extractor.extract

        def recording_extract(*args, **kwargs):
            seen.append(current_context())
            return extract(*args, **kwargs)

        monkeypatch.setattr(rules_pipeline.rule_extractor, 'extract', recording_extract)

        intake = await rules_pipeline.process_email(
            InboundEmail(body='Hello', message_id='<m2@mail.example>')
        )

        assert seen == [{'intake_id': str(intake.id), 'message_id': '<m2@mail.example>'}]
        assert current_context() == {}

    @pytest.mark.asyncio
    async def test_batch_keeps_order_and_isolates_failures(self, llm_pipeline, mock_openai):
        good = mock_openai.chat_completion_structured.return_value

        async def answer(messages, response_model):
            if 'BROKEN' in messages[1]['content']:
                raise OpenAIError('Service unavailable')
            return good

        mock_openai.chat_completion_structured.side_effect = answer
        emails = [
            InboundEmail(body='Customer: Acme Health, 150 agents.', message_id='<1@m>'),
            InboundEmail(body='BROKEN Customer: Harbor Logistics', message_id='<2@m>'),
            InboundEmail(body='Customer: Pinnacle Retail Group', message_id='<3@m>'),
        ]

        intakes = await llm_pipeline.process_emails(emails, max_concurrency=2)

        assert [i.message_id for i in intakes] == ['<1@m>', '<2@m>', '<3@m>']
        assert [i.parsing_method for i in intakes] == ['ai', 'rules', 'ai']
        assert intakes[1].warnings[0] == WARN_RULES_FALLBACK


# =============================================================================
# Partner hand-off and resubmission
# =============================================================================


class TestPartnerSubmission:
    """Conflict detection against the admin snapshot."""

    def test_hand_off_captures_snapshot(self, reviewed_intake):
        assert reviewed_intake.status == IntakeStatus.REVIEWED
        assert reviewed_intake.admin_snapshot == reviewed_intake.record.to_field_map()
        assert reviewed_intake.sent_to_partner_email == 'amy@brightpath.io'
        assert reviewed_intake.sent_to_partner_at is not None

    def test_changed_value_conflicts(self, rules_pipeline, reviewed_intake):
        outcome = rules_pipeline.receive_partner_submission(
            reviewed_intake,
            {'customer_email': 'b@acme.com', 'customer_city': 'Austin'},
        )

        assert outcome.conflicted_fields == ['customer_email']
        assert reviewed_intake.has_conflicts
        assert reviewed_intake.conflicts[0].admin_value == 'a@acme.com'
        assert reviewed_intake.record.customer_email == 'b@acme.com'
        assert reviewed_intake.record.customer_city == 'Austin'
        assert reviewed_intake.partner_submitted_values == {
            'customer_email': 'b@acme.com',
            'customer_city': 'Austin',
        }
        assert not rules_pipeline.is_convertible(reviewed_intake)

    def test_gap_filling_is_not_a_conflict(self, rules_pipeline, reviewed_intake):
        outcome = rules_pipeline.receive_partner_submission(
            reviewed_intake,
            {'tsd_contact_name': 'Marcus Webb', 'solutions_interested': ['Coaching']},
        )

        assert not outcome.has_conflicts
        assert reviewed_intake.record.tsd_contact_name == 'Marcus Webb'
        assert rules_pipeline.is_convertible(reviewed_intake)

    def test_staff_edits_outside_submission_kept(self, rules_pipeline, reviewed_intake):
        rules_pipeline.apply_staff_edits(reviewed_intake, {'customer_state': 'TX'})

        rules_pipeline.receive_partner_submission(reviewed_intake, {'customer_city': 'Austin'})

        assert reviewed_intake.record.customer_state == 'TX'
        assert reviewed_intake.record.customer_city == 'Austin'

    def test_no_snapshot_means_no_conflicts(self, rules_pipeline):
        intake = Intake(record=ExtractedRecord(customer_email='a@acme.com'))

        outcome = rules_pipeline.receive_partner_submission(intake, {'customer_email': 'b@acme.com'})

        assert not outcome.has_conflicts
        assert intake.record.customer_email == 'b@acme.com'
        assert intake.status == IntakeStatus.PENDING

    def test_invalid_submission(self, rules_pipeline, reviewed_intake):
        with pytest.raises(ValidationError):
            rules_pipeline.receive_partner_submission(
                reviewed_intake, {'solutions_interested': 'Coaching'}
            )

        assert reviewed_intake.partner_submitted_values is None

    def test_null_solutions_submission(self, rules_pipeline, reviewed_intake):
        outcome = rules_pipeline.receive_partner_submission(
            reviewed_intake,
            {'solutions_interested': None, 'customer_email': 'b@acme.com'},
        )

        assert reviewed_intake.record.solutions_interested == []
        assert reviewed_intake.record.customer_email == 'b@acme.com'
        assert sorted(outcome.conflicted_fields) == ['customer_email', 'solutions_interested']

    def test_null_solutions_matches_empty_snapshot(self, rules_pipeline):
        intake = rules_pipeline.hand_off_to_partner(
            Intake(record=ExtractedRecord(customer_email='a@acme.com')), 'amy@brightpath.io'
        )

        outcome = rules_pipeline.receive_partner_submission(
            intake, {'solutions_interested': None}
        )

        assert not outcome.has_conflicts
        assert intake.record.solutions_interested == []
        assert rules_pipeline.is_convertible(intake)

    def test_record_accepts_null_solutions(self):
        assert ExtractedRecord(solutions_interested=None).solutions_interested == []


# =============================================================================
# Lifecycle
# =============================================================================


class TestLifecycle:
    """Guarded status transitions."""

    def test_resolve_then_convert(self, rules_pipeline, reviewed_intake):
        rules_pipeline.receive_partner_submission(reviewed_intake, {'customer_email': 'b@acme.com'})

        rules_pipeline.mark_conflicts_resolved(reviewed_intake)
        assert not reviewed_intake.has_conflicts
        assert reviewed_intake.conflicts_resolved_at is not None

        rules_pipeline.convert(reviewed_intake)
        assert reviewed_intake.status == IntakeStatus.CONVERTED

    def test_resolve_without_conflicts(self, rules_pipeline, reviewed_intake):
        with pytest.raises(InvalidTransitionError):
            rules_pipeline.mark_conflicts_resolved(reviewed_intake)

    def test_convert_with_open_conflicts(self, rules_pipeline, reviewed_intake):
        rules_pipeline.receive_partner_submission(reviewed_intake, {'customer_email': 'b@acme.com'})

        with pytest.raises(InvalidTransitionError):
            rules_pipeline.convert(reviewed_intake)

    def test_convert_pending(self, rules_pipeline):
        with pytest.raises(InvalidTransitionError):
            rules_pipeline.convert(Intake())

    def test_discard(self, rules_pipeline):
        intake = rules_pipeline.discard(Intake())

        assert intake.status == IntakeStatus.DISCARDED
        assert not rules_pipeline.is_convertible(intake)

    @pytest.mark.parametrize('status', [IntakeStatus.CONVERTED, IntakeStatus.DISCARDED])
    def test_terminal_intakes_are_closed(self, rules_pipeline, status):
        intake = Intake(status=status)

        with pytest.raises(InvalidTransitionError):
            rules_pipeline.discard(intake)
        with pytest.raises(InvalidTransitionError):
            rules_pipeline.hand_off_to_partner(intake, 'amy@brightpath.io')
        with pytest.raises(InvalidTransitionError):
            rules_pipeline.receive_partner_submission(intake, {'customer_city': 'Austin'})
        with pytest.raises(InvalidTransitionError):
            rules_pipeline.apply_staff_edits(intake, {'customer_city': 'Austin'})
