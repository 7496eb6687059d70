"""
Intake pipeline orchestrator.

Wires the extraction strategies and the conflict engine into the intake
lifecycle:

    pending -> reviewed -> converted
                        -> discarded

- extract_email / process_email: LLM strategy first when configured, with
  the rule-based extractor as deterministic fallback
- hand_off_to_partner: capture the admin snapshot
- receive_partner_submission: detect conflicts and merge
- mark_conflicts_resolved / convert / discard: guarded transitions

Persistence is owned by the caller; every operation mutates and returns the
Intake it was given.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping

import structlog
from pydantic import ValidationError as PydanticValidationError

from ..clients.openai_client import OpenAIClient
from ..config import config
from ..errors import InvalidTransitionError, ValidationError
from ..logging import PipelineTimer, logging_context
from ..models.intake import InboundEmail, Intake, IntakeStatus
from ..models.record import ExtractedRecord, ExtractionResult
from .extractor import RuleBasedExtractor
from .llm_extractor import LLMExtractor
from .merger import MergeOutcome, apply_overrides, detect_conflicts

logger = structlog.get_logger(__name__)

WARN_RULES_FALLBACK = 'Automated extraction failed - rule-based extraction used'
DEFAULT_MAX_CONCURRENCY = 5


class IntakePipeline:
    """
    Orchestrates extraction and the review lifecycle of intakes.

    Responsibilities:
    - Choose the extraction strategy and fall back when the LLM fails
    - Build pending intakes from inbound emails, one or many at a time
    - Guard status transitions and run the conflict engine on resubmission
    """

    def __init__(
        self,
        rule_extractor: RuleBasedExtractor | None = None,
        llm_extractor: LLMExtractor | None = None,
        rules_fallback: bool = True,
    ):
        """
        Initialize the pipeline.

        Args:
            rule_extractor: Deterministic extractor (defaults to configured one)
            llm_extractor: Optional LLM strategy tried first
            rules_fallback: Use the rule-based extractor when the LLM fails
        """
        self.rule_extractor = rule_extractor or RuleBasedExtractor()
        self.llm_extractor = llm_extractor
        self.rules_fallback = rules_fallback

    @classmethod
    def from_config(cls, openai_client: OpenAIClient | None = None) -> 'IntakePipeline':
        """
        Build a pipeline from environment configuration.

        The LLM strategy is enabled when a client is given or OPENAI_API_KEY
        is set.
        """
        rule_extractor = RuleBasedExtractor()
        llm_extractor = None
        if openai_client is None and config.llm_enabled():
            openai_client = OpenAIClient()
        if openai_client is not None:
            llm_extractor = LLMExtractor(
                openai_client,
                internal_domain=rule_extractor.internal_domain,
                vocabulary=rule_extractor.vocabulary,
            )
        return cls(
            rule_extractor=rule_extractor,
            llm_extractor=llm_extractor,
            rules_fallback=config.RULES_FALLBACK,
        )

    # =========================================================================
    # Extraction
    # =========================================================================

    async def extract_email(
        self,
        raw_body: str | None,
        sender_email: str | None = None,
        sender_name: str | None = None,
        subject: str | None = None,
    ) -> ExtractionResult:
        """
        Extract a record with the configured strategies.

        Args:
            raw_body: Email body, plain text or HTML
            sender_email: Direct sender address
            sender_name: Direct sender display name
            subject: Subject line

        Returns:
            ExtractionResult; method tells which strategy produced it
        """
        timer = PipelineTimer()

        if self.llm_extractor is not None:
            with timer.stage('llm_extraction'):
                result = await self.llm_extractor.extract(raw_body, sender_email, sender_name, subject)
            if not result.failed or not self.rules_fallback:
                logger.info('pipeline.extraction_complete', method=result.method, **timer.summary())
                return result
            logger.warning('pipeline.rules_fallback')

        with timer.stage('rule_extraction'):
            result = self.rule_extractor.extract(raw_body, sender_email, sender_name, subject)
        if self.llm_extractor is not None:
            result.warnings.insert(0, WARN_RULES_FALLBACK)

        logger.info('pipeline.extraction_complete', method=result.method, **timer.summary())
        return result

    async def process_email(self, email: InboundEmail) -> Intake:
        """
        Turn one inbound email into a pending intake.

        Args:
            email: The delivered email

        Returns:
            New Intake in status pending
        """
        intake = Intake(
            email_from=email.sender_email,
            email_from_name=email.sender_name,
            email_subject=email.subject,
            message_id=email.message_id,
        )
        with logging_context(intake_id=str(intake.id), message_id=email.message_id):
            result = await self.extract_email(
                email.body,
                sender_email=email.sender_email,
                sender_name=email.sender_name,
                subject=email.subject,
            )
            intake.record = result.record
            intake.confidence = result.confidence
            intake.warnings = result.warnings
            intake.parsing_method = result.method
            intake.raw_text = result.raw_text

            logger.info(
                'pipeline.intake_created',
                method=result.method,
                fields_populated=len(result.confidence),
                warnings=len(result.warnings),
            )
        return intake

    async def process_emails(
        self,
        emails: Iterable[InboundEmail],
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    ) -> list[Intake]:
        """
        Process several emails concurrently; results keep input order.

        Each email is independent: one email's failed LLM call never affects
        another's result.
        """
        semaphore = asyncio.Semaphore(max(1, max_concurrency))

        async def _bounded(email: InboundEmail) -> Intake:
            async with semaphore:
                return await self.process_email(email)

        return list(await asyncio.gather(*(_bounded(email) for email in emails)))

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def _require_open(self, intake: Intake, action: str) -> None:
        if intake.is_terminal:
            raise InvalidTransitionError(
                f'Cannot {action} a {intake.status.value} intake',
                context={'intake_id': str(intake.id), 'status': intake.status.value},
            )

    def hand_off_to_partner(self, intake: Intake, partner_email: str) -> Intake:
        """
        Send an intake to the referring partner for completion.

        Captures the admin snapshot: a full copy of every record field as staff
        left it.
        """
        self._require_open(intake, 'hand off')
        intake.admin_snapshot = intake.record.to_field_map()
        intake.sent_to_partner_email = partner_email
        intake.sent_to_partner_at = datetime.now(timezone.utc)
        intake.status = IntakeStatus.REVIEWED
        intake.touch()

        logger.info('pipeline.handed_off', intake_id=str(intake.id))
        return intake

    def apply_staff_edits(self, intake: Intake, edits: Mapping[str, Any]) -> Intake:
        """Layer staff edits over the record; empty edits keep extracted values."""
        self._require_open(intake, 'edit')
        intake.record = apply_overrides(intake.record, edits)
        intake.touch()
        return intake

    def receive_partner_submission(
        self,
        intake: Intake,
        submitted: Mapping[str, Any],
    ) -> MergeOutcome:
        """
        Merge a partner's completion form into the intake.

        Args:
            intake: Intake previously handed off (a missing snapshot means no
                conflicts are possible)
            submitted: Fields the partner form re-collected

        Returns:
            MergeOutcome with the merged values and any conflicts

        Raises:
            InvalidTransitionError: The intake is already converted or discarded
            ValidationError: Submitted values do not fit the record fields
        """
        self._require_open(intake, 'accept a submission for')
        outcome = detect_conflicts(intake.admin_snapshot, submitted)

        values = intake.record.to_field_map()
        values.update({name: outcome.merged[name] for name in submitted if name in outcome.merged})
        try:
            merged_record = ExtractedRecord.model_validate(values)
        except PydanticValidationError as e:
            raise ValidationError(
                'Partner submission does not fit the record',
                context={'intake_id': str(intake.id), 'errors': e.errors(include_url=False)},
            ) from e

        intake.partner_submitted_values = dict(submitted)
        intake.record = merged_record
        intake.has_conflicts = outcome.has_conflicts
        intake.conflicts = outcome.conflicts
        if outcome.has_conflicts:
            intake.status = IntakeStatus.REVIEWED
            intake.conflicts_resolved_at = None
        intake.touch()

        logger.info(
            'pipeline.partner_submission_received',
            intake_id=str(intake.id),
            conflicts=outcome.conflicted_fields,
        )
        return outcome

    def mark_conflicts_resolved(self, intake: Intake) -> Intake:
        """Record that staff resolved the surfaced conflicts."""
        self._require_open(intake, 'resolve conflicts on')
        if not intake.has_conflicts:
            raise InvalidTransitionError(
                'Intake has no conflicts to resolve',
                context={'intake_id': str(intake.id)},
            )
        intake.has_conflicts = False
        intake.conflicts_resolved_at = datetime.now(timezone.utc)
        intake.touch()
        return intake

    def is_convertible(self, intake: Intake) -> bool:
        """Reviewed, with no unresolved conflicts."""
        return intake.status == IntakeStatus.REVIEWED and not intake.has_conflicts

    def convert(self, intake: Intake) -> Intake:
        """Mark an intake final."""
        if not self.is_convertible(intake):
            raise InvalidTransitionError(
                'Intake is not ready for conversion',
                context={
                    'intake_id': str(intake.id),
                    'status': intake.status.value,
                    'has_conflicts': intake.has_conflicts,
                },
            )
        intake.status = IntakeStatus.CONVERTED
        intake.touch()
        logger.info('pipeline.converted', intake_id=str(intake.id))
        return intake

    def discard(self, intake: Intake) -> Intake:
        self._require_open(intake, 'discard')
        intake.status = IntakeStatus.DISCARDED
        intake.touch()
        logger.info('pipeline.discarded', intake_id=str(intake.id))
        return intake
