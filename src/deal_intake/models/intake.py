"""
Intake lifecycle models.

An intake is one inbound email's record as it moves through review:

    pending -> reviewed -> converted
                        -> discarded

Staff hand an intake to the referring partner by taking an admin snapshot;
the partner's resubmission is compared against that snapshot and any
conflicts must be resolved before the intake can be converted.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from .record import ExtractedRecord


class IntakeStatus(str, Enum):
    """Processing status of an intake."""

    PENDING = 'pending'
    REVIEWED = 'reviewed'
    CONVERTED = 'converted'
    DISCARDED = 'discarded'


TERMINAL_STATUSES = frozenset({IntakeStatus.CONVERTED, IntakeStatus.DISCARDED})


class Conflict(BaseModel):
    """A field where the partner's value differs from a non-empty snapshot value."""

    field: str = Field(..., description='Record field name (no extracted_ prefix)')
    admin_value: Any = Field(..., description='Value in the admin snapshot')
    partner_value: Any = Field(..., description='Value the partner submitted')


class Intake(BaseModel):
    """
    A single inbound email and its extracted / reviewed record.

    Persistence is owned by an external collaborator; this model only carries
    the state the extraction and conflict engines read and write.
    """

    id: UUID = Field(default_factory=uuid4)
    status: IntakeStatus = IntakeStatus.PENDING

    # Source email
    email_from: str | None = None
    email_from_name: str | None = None
    email_subject: str | None = None
    message_id: str | None = None

    # Extraction output
    record: ExtractedRecord = Field(default_factory=ExtractedRecord)
    confidence: dict[str, int] = Field(default_factory=dict)
    warnings: list[str] = Field(default_factory=list)
    parsing_method: str = 'rules'
    raw_text: str = ''

    # Partner hand-off and resubmission
    admin_snapshot: dict[str, Any] | None = None
    sent_to_partner_email: str | None = None
    sent_to_partner_at: datetime | None = None
    partner_submitted_values: dict[str, Any] | None = None

    # Conflicts
    has_conflicts: bool = False
    conflicts: list[Conflict] = Field(default_factory=list)
    conflicts_resolved_at: datetime | None = None

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def touch(self) -> None:
        """Bump updated_at to now."""
        self.updated_at = datetime.now(timezone.utc)


class InboundEmail(BaseModel):
    """An email as delivered to the intake inbox."""

    body: str = ''
    sender_email: str | None = None
    sender_name: str | None = None
    subject: str | None = None
    message_id: str | None = None
