"""
Rule-based extraction strategy.

Deterministic, no I/O: normalize -> unwrap forward chain -> run the field
extractors in rule-priority order -> assemble and finalize. Re-running on the
same input always yields the same record and confidence map.

The module-level ``extract`` is the package's primary entry point and uses
configured defaults (internal domain, vocabulary, size limits).
"""

import structlog

from ..config import config
from ..models.record import ExtractionResult
from ..models.vocabulary import Vocabulary, load_vocabulary
from .assembler import WARN_EMPTY_BODY, RecordAssembler
from .fields import EXTRACTORS, REFINING_EXTRACTORS, ExtractionContext
from .normalizer import normalize_lines, normalize_text, truncate
from .unwrapper import unwrap_forward_chain

logger = structlog.get_logger(__name__)


class RuleBasedExtractor:
    """
    Extracts a deal registration record from an email with heuristics only.

    Never raises for any email content: "could not extract" is reported
    through warnings.
    """

    method = 'rules'

    def __init__(
        self,
        internal_domain: str | None = None,
        vocabulary: Vocabulary | None = None,
        description_max_chars: int | None = None,
        raw_text_max_chars: int | None = None,
    ):
        """
        Initialize the extractor.

        Args:
            internal_domain: Organization's own email domain (defaults to config)
            vocabulary: Distributor / solution / bucket vocabulary (defaults to the
                configured or packaged YAML)
            description_max_chars: Limit for descriptions taken from the body
            raw_text_max_chars: Limit for the normalized text kept on the result
        """
        self.internal_domain = internal_domain if internal_domain is not None else config.INTERNAL_DOMAIN
        self.vocabulary = vocabulary or load_vocabulary(config.VOCABULARY_PATH or None)
        self.description_max_chars = description_max_chars or config.DESCRIPTION_MAX_CHARS
        self.raw_text_max_chars = raw_text_max_chars or config.RAW_TEXT_MAX_CHARS

    def build_context(
        self,
        raw_body: str | None,
        sender_email: str | None = None,
        sender_name: str | None = None,
        subject: str | None = None,
    ) -> ExtractionContext:
        """Normalize and unwrap an email into what the field extractors read."""
        text = normalize_text(raw_body)
        return ExtractionContext(
            text=text,
            lines=normalize_lines(raw_body),
            vocabulary=self.vocabulary,
            chain=unwrap_forward_chain(text, self.internal_domain),
            internal_domain=self.internal_domain,
            sender_email=sender_email.strip() if sender_email else None,
            sender_name=sender_name.strip() if sender_name else None,
            subject=subject,
            description_max_chars=self.description_max_chars,
        )

    def extract(
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
            sender_email: Address of the direct sender (the From: of the
                delivered message)
            sender_name: Display name of the direct sender
            subject: Subject line of the delivered message

        Returns:
            ExtractionResult with record, confidence and warnings
        """
        ctx = self.build_context(raw_body, sender_email, sender_name, subject)
        assembler = RecordAssembler(
            internal_domain=self.internal_domain,
            description_max_chars=self.description_max_chars,
        )

        if not ctx.text:
            assembler.warn(WARN_EMPTY_BODY)

        for extractor in EXTRACTORS:
            assembler.apply_all(extractor(ctx))
        for refiner in REFINING_EXTRACTORS:
            assembler.apply_all(refiner(ctx, assembler.record))

        assembler.finalize(source_text=ctx.text)
        result = assembler.result(
            raw_text=truncate(ctx.text, self.raw_text_max_chars),
            method=self.method,
        )

        logger.info(
            'extraction.complete',
            method=self.method,
            fields_populated=len(result.confidence),
            warnings=len(result.warnings),
            forward_layers=len(ctx.chain.headers),
            vocabulary_version=self.vocabulary.version,
        )
        return result


_default_extractor: RuleBasedExtractor | None = None


def get_default_extractor() -> RuleBasedExtractor:
    """Lazily built extractor using configured defaults."""
    global _default_extractor
    if _default_extractor is None:
        _default_extractor = RuleBasedExtractor()
    return _default_extractor


def extract(
    raw_body: str | None,
    sender_email: str | None = None,
    sender_name: str | None = None,
    subject: str | None = None,
) -> ExtractionResult:
    """
    Extract a deal registration record with the rule-based strategy.

    Args:
        raw_body: Email body, plain text or HTML
        sender_email: Address of the direct sender
        sender_name: Display name of the direct sender
        subject: Subject line

    Returns:
        ExtractionResult; ``to_dict()`` gives {record, confidence, warnings}
    """
    return get_default_extractor().extract(raw_body, sender_email, sender_name, subject)
