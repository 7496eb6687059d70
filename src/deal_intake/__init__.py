"""
Deal Intake

Turns forwarded partner emails into structured deal registration records,
and reconciles a partner's resubmitted form with the staff-reviewed snapshot
field by field.
"""

__version__ = '0.1.0'

# Re-export key classes for convenience
from .pipeline import (
    IntakePipeline,
    RuleBasedExtractor,
    LLMExtractor,
    MergeOutcome,
    apply_overrides,
    detect_conflicts,
    extract,
)
from .models import (
    Conflict,
    ExtractedRecord,
    ExtractionResult,
    InboundEmail,
    Intake,
    IntakeStatus,
    Vocabulary,
    load_vocabulary,
)
from .logging import (
    configure_logging,
    logging_context,
    PipelineTimer,
)
from .errors import (
    DealIntakeError,
    PipelineError,
    ValidationError,
    ExtractionError,
    VocabularyError,
    InvalidTransitionError,
    OpenAIError,
)

__all__ = [
    # Version
    '__version__',
    # Entry points
    'extract',
    'detect_conflicts',
    'apply_overrides',
    # Components
    'IntakePipeline',
    'RuleBasedExtractor',
    'LLMExtractor',
    'MergeOutcome',
    # Models
    'Conflict',
    'ExtractedRecord',
    'ExtractionResult',
    'InboundEmail',
    'Intake',
    'IntakeStatus',
    'Vocabulary',
    'load_vocabulary',
    # Logging
    'configure_logging',
    'logging_context',
    'PipelineTimer',
    # Errors
    'DealIntakeError',
    'PipelineError',
    'ValidationError',
    'ExtractionError',
    'VocabularyError',
    'InvalidTransitionError',
    'OpenAIError',
]
