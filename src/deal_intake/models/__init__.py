"""
Data models for the Deal Intake pipeline.
"""

from .record import (
    Candidate,
    ExtractedRecord,
    ExtractionResult,
    PARTNER_FORM_FIELDS,
    RECORD_FIELDS,
    is_empty_value,
)
from .intake import Conflict, InboundEmail, Intake, IntakeStatus, TERMINAL_STATUSES
from .vocabulary import Vocabulary, load_vocabulary

__all__ = [
    'Candidate',
    'ExtractedRecord',
    'ExtractionResult',
    'PARTNER_FORM_FIELDS',
    'RECORD_FIELDS',
    'is_empty_value',
    'Conflict',
    'InboundEmail',
    'Intake',
    'IntakeStatus',
    'TERMINAL_STATUSES',
    'Vocabulary',
    'load_vocabulary',
]
