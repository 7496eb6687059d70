"""
Deal registration record extracted from a forwarded email.

The record is flat: the referring partner (TA), distributor (TSD), customer
and opportunity "entities" exist only as field-name prefixes and have no
identity of their own in this package.

Key design decisions:
- Every field is optional; the only non-null default is the empty tag list
- Confidence lives beside the record (sparse map), not inside it
- ExtractionResult is the shared output contract of every extraction strategy
"""

from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, Field, field_validator


class ExtractedRecord(BaseModel):
    """
    Structured deal registration fields recovered from an email.

    Field names match the columns used by the persistence layer (minus its
    ``extracted_`` prefix), so a record dumps straight into an intake row.
    """

    # Referring partner / trusted advisor
    ta_full_name: str | None = None
    ta_email: str | None = None
    ta_phone: str | None = None
    ta_company_name: str | None = None

    # Distributor (TSD)
    tsd_name: str | None = Field(
        default=None, description='One of the vocabulary distributor names, "Other", or None'
    )
    tsd_contact_name: str | None = None
    tsd_contact_email: str | None = None

    # End customer
    customer_first_name: str | None = None
    customer_last_name: str | None = None
    customer_company_name: str | None = None
    customer_email: str | None = None
    customer_phone: str | None = None
    customer_job_title: str | None = None
    customer_street_address: str | None = None
    customer_city: str | None = None
    customer_state: str | None = None
    customer_postal_code: str | None = None
    customer_country: str | None = None

    # Opportunity
    agent_count: str | None = Field(default=None, description='Agent-count bucket label')
    implementation_timeline: str | None = Field(
        default=None, description='Implementation-timeline bucket label'
    )
    solutions_interested: list[str] = Field(default_factory=list)
    opportunity_description: str | None = None
    deal_value: str | None = None

    @field_validator('solutions_interested', mode='before')
    @classmethod
    def _none_as_no_solutions(cls, value: Any) -> Any:
        return [] if value is None else value

    def is_populated(self, name: str) -> bool:
        """True when the named field holds a non-empty value."""
        return not is_empty_value(getattr(self, name))

    def populated_fields(self) -> list[str]:
        """Names of all non-empty fields, in declaration order."""
        return [name for name in RECORD_FIELDS if self.is_populated(name)]

    def to_field_map(self) -> dict[str, Any]:
        """Plain dict of every field (lists copied)."""
        return self.model_dump()


RECORD_FIELDS: tuple[str, ...] = tuple(ExtractedRecord.model_fields)

# Fields the partner completion form re-collects; tracked for conflicts.
PARTNER_FORM_FIELDS: tuple[str, ...] = tuple(f for f in RECORD_FIELDS if f != 'deal_value')

TA_FIELDS = ('ta_full_name', 'ta_email', 'ta_phone', 'ta_company_name')
TSD_CONTACT_FIELDS = ('tsd_contact_name', 'tsd_contact_email')


def is_empty_value(value: Any) -> bool:
    """None, blank strings and empty collections all count as empty."""
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ''
    if isinstance(value, (list, tuple, set, frozenset)):
        return len(value) == 0
    return False


@dataclass(frozen=True)
class Candidate:
    """
    A value proposed by one extraction rule.

    ``rule`` is one of 'label', 'vocabulary', 'pattern', 'positional',
    'header', 'fallback' or 'llm'. ``refines`` lets a more domain-specific rule
    replace a value even when its confidence is not higher.
    """

    value: Any
    confidence: int
    rule: str
    refines: bool = False


@dataclass
class ExtractionResult:
    """
    Output contract shared by the rule-based and LLM extraction strategies.

    ``method`` records which strategy produced the record:
    'rules', 'ai', or 'failed' (automated extraction gave up).
    """

    record: ExtractedRecord
    confidence: dict[str, int] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    raw_text: str = ''
    method: str = 'rules'

    @property
    def failed(self) -> bool:
        return self.method == 'failed'

    def to_dict(self) -> dict[str, Any]:
        """Serialize for storage or API responses."""
        return {
            'record': self.record.to_field_map(),
            'confidence': dict(self.confidence),
            'warnings': list(self.warnings),
        }
