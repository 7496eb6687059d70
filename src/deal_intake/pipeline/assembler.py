"""
Record assembly.

Applies extractor candidates to a blank ExtractedRecord and finalizes it:
- Precedence: a field changes only when empty, when the candidate is strictly
  more confident, or when the candidate refines it (labeled partner values
  over forward-header guesses)
- Role-leak scrub: no value may carry the internal email domain
- Description fallback: the truncated body, flagged for review
- Warnings for business-critical fields and weakly inferred values
- Confidence keys only for populated fields

Both extraction strategies finish through the same assembler so their
results obey the same contract.
"""

import re
from typing import Any, Iterable

import structlog

from ..models.record import (
    Candidate,
    ExtractedRecord,
    ExtractionResult,
    RECORD_FIELDS,
    TA_FIELDS,
    TSD_CONTACT_FIELDS,
    is_empty_value,
)
from .normalizer import truncate
from .unwrapper import is_internal_address

logger = structlog.get_logger(__name__)

LOW_CONFIDENCE_THRESHOLD = 50
FALLBACK_DESCRIPTION_CONFIDENCE = 30
REDACTED = '[redacted]'

WARN_EMPTY_BODY = 'Email body was empty - nothing to extract'
WARN_NO_CUSTOMER_COMPANY = 'Could not extract customer company name'
WARN_NO_CUSTOMER_EMAIL = 'Could not extract customer email'
WARN_NO_DISTRIBUTOR = 'Could not identify distributor (TSD) - please select manually'
WARN_NO_PARTNER = 'Could not extract partner/TA information - check forwarded email content'
WARN_DESCRIPTION_FALLBACK = 'Used email body as opportunity description - please review and edit'


def low_confidence_warning(field_name: str, confidence: int) -> str:
    return f'Low confidence for {field_name} ({confidence}) - please verify'


def scrub_role_groups(values: dict[str, Any], internal_domain: str | None) -> dict[str, Any]:
    """
    Drop whole contact groups whose email is internal.

    An internal ta_email means the "partner" is really forwarding staff, so
    the name, phone and company beside it are staff details too. Same for the
    distributor contact.

    Returns:
        A copy of ``values`` with leaked groups set to None
    """
    scrubbed = dict(values)
    for email_field, group in (('ta_email', TA_FIELDS), ('tsd_contact_email', TSD_CONTACT_FIELDS)):
        if is_internal_address(scrubbed.get(email_field), internal_domain):
            for name in group:
                scrubbed[name] = None
            logger.info('assembler.role_group_scrubbed', group=email_field)
    return scrubbed


class RecordAssembler:
    """
    Accumulates candidates into one record.

    Usage:
        assembler = RecordAssembler(internal_domain='acme.com')
        assembler.apply_all(candidates)
        assembler.finalize(source_text=text)
        result = assembler.result(raw_text=text)
    """

    def __init__(self, internal_domain: str | None = None, description_max_chars: int = 500):
        self.internal_domain = internal_domain
        self.description_max_chars = description_max_chars
        self.record = ExtractedRecord()
        self.confidence: dict[str, int] = {}
        self.rules: dict[str, str] = {}
        self.warnings: list[str] = []

    def carries_internal(self, value: Any) -> bool:
        if isinstance(value, str):
            return is_internal_address(value, self.internal_domain)
        if isinstance(value, (list, tuple)):
            return any(self.carries_internal(item) for item in value)
        return False

    def apply(self, field_name: str, candidate: Candidate) -> bool:
        """
        Offer one candidate for a field.

        Returns:
            True if the candidate's value was written
        """
        if field_name not in RECORD_FIELDS:
            raise ValueError(f'Unknown record field: {field_name}')
        if is_empty_value(candidate.value):
            return False
        if field_name != 'opportunity_description' and self.carries_internal(candidate.value):
            logger.debug('assembler.internal_candidate_dropped', field=field_name, rule=candidate.rule)
            return False

        current = self.confidence.get(field_name)
        if current is not None and not candidate.refines and candidate.confidence <= current:
            return False

        value = candidate.value.strip() if isinstance(candidate.value, str) else candidate.value
        setattr(self.record, field_name, value)
        self.confidence[field_name] = candidate.confidence
        self.rules[field_name] = candidate.rule
        return True

    def apply_all(self, candidates: Iterable[tuple[str, Candidate]]) -> int:
        """Apply candidates in order; returns how many were written."""
        return sum(1 for field_name, candidate in candidates if self.apply(field_name, candidate))

    def warn(self, message: str) -> None:
        if message not in self.warnings:
            self.warnings.append(message)

    # =========================================================================
    # Finalization
    # =========================================================================

    def finalize(self, source_text: str = '') -> None:
        """Scrub, fill the description fallback, collect warnings, prune confidence."""
        self._scrub_internal()

        if not self.record.is_populated('opportunity_description') and source_text.strip():
            self.record.opportunity_description = self._redact(
                truncate(source_text.strip(), self.description_max_chars)
            )
            self.confidence['opportunity_description'] = FALLBACK_DESCRIPTION_CONFIDENCE
            self.rules['opportunity_description'] = 'fallback'
            self.warn(WARN_DESCRIPTION_FALLBACK)

        record = self.record
        if not record.is_populated('customer_company_name'):
            self.warn(WARN_NO_CUSTOMER_COMPANY)
        if not record.is_populated('customer_email'):
            self.warn(WARN_NO_CUSTOMER_EMAIL)
        if not record.is_populated('tsd_name'):
            self.warn(WARN_NO_DISTRIBUTOR)
        if not record.is_populated('ta_full_name') and not record.is_populated('ta_email'):
            self.warn(WARN_NO_PARTNER)

        for name in RECORD_FIELDS:
            confidence = self.confidence.get(name)
            if name == 'opportunity_description' or confidence is None:
                continue
            if confidence < LOW_CONFIDENCE_THRESHOLD and record.is_populated(name):
                self.warn(low_confidence_warning(name, confidence))

        self.confidence = {
            name: confidence
            for name, confidence in self.confidence.items()
            if record.is_populated(name)
        }

    def _redact(self, text: str) -> str:
        if not self.internal_domain:
            return text
        domain = re.escape(self.internal_domain.lstrip('@'))
        text = re.sub(
            rf'(?<![\w.%+-])[\w.%+-]{{1,64}}@(?:[\w-]{{1,63}}\.){{0,8}}{domain}(?![\w-])',
            REDACTED,
            text,
            flags=re.IGNORECASE,
        )
        return re.sub(
            rf'(?<![\w-])(?:[\w-]{{1,63}}\.){{0,8}}{domain}(?![\w-])',
            REDACTED,
            text,
            flags=re.IGNORECASE,
        )

    def _scrub_internal(self) -> None:
        if not self.internal_domain:
            return
        for name in RECORD_FIELDS:
            value = getattr(self.record, name)
            if not self.carries_internal(value):
                continue
            if name == 'opportunity_description':
                self.record.opportunity_description = self._redact(value)
            elif isinstance(value, list):
                setattr(self.record, name, [v for v in value if not self.carries_internal(v)])
            else:
                setattr(self.record, name, None)
            logger.warning('assembler.role_leak_scrubbed', field=name)

    def result(self, raw_text: str = '', method: str = 'rules') -> ExtractionResult:
        return ExtractionResult(
            record=self.record.model_copy(deep=True),
            confidence=dict(self.confidence),
            warnings=list(self.warnings),
            raw_text=raw_text,
            method=method,
        )
