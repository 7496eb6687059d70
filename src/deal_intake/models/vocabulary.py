"""Extraction vocabulary: distributors, solution tags and bucket definitions."""

from functools import lru_cache
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError, model_validator

from ..errors import VocabularyError

DEFAULT_VOCABULARY_PATH = Path(__file__).parent.parent / 'data' / 'vocabulary.yaml'


class DistributorEntry(BaseModel):
    """A known distributor (TSD) with its aliases and email domains."""

    name: str
    aliases: list[str] = Field(default_factory=list)
    domains: list[str] = Field(default_factory=list)

    @property
    def terms(self) -> list[str]:
        """Name plus aliases, longest first so multi-word aliases win."""
        return sorted({self.name, *self.aliases}, key=len, reverse=True)


class CountBucket(BaseModel):
    """Agent-count range; max None means open-ended."""

    label: str
    min: int
    max: int | None = None

    def contains(self, n: float) -> bool:
        if n < self.min:
            return False
        return self.max is None or n <= self.max


class TimelineBucket(BaseModel):
    """Implementation-timeline range expressed as an upper bound in months."""

    label: str
    max_months: int | None = None
    phrases: list[str] = Field(default_factory=list)


class Vocabulary(BaseModel):
    """Versioned vocabulary loaded from YAML."""

    version: str
    distributors: list[DistributorEntry] = Field(default_factory=list)
    other_distributor: str = 'Other'
    solutions: dict[str, list[str]] = Field(default_factory=dict)
    agent_count_buckets: list[CountBucket] = Field(default_factory=list)
    timeline_buckets: list[TimelineBucket] = Field(default_factory=list)
    public_mail_providers: list[str] = Field(default_factory=list)

    @model_validator(mode='after')
    def _check_bucket_order(self) -> 'Vocabulary':
        mins = [b.min for b in self.agent_count_buckets]
        if mins != sorted(mins):
            raise ValueError('agent_count_buckets must be ordered smallest first')
        bounded = [b.max_months for b in self.timeline_buckets if b.max_months is not None]
        if bounded != sorted(bounded):
            raise ValueError('timeline_buckets must be ordered soonest first')
        return self

    @property
    def distributor_names(self) -> list[str]:
        return [d.name for d in self.distributors]

    @property
    def agent_count_labels(self) -> list[str]:
        return [b.label for b in self.agent_count_buckets]

    @property
    def timeline_labels(self) -> list[str]:
        return [b.label for b in self.timeline_buckets]

    def resolve_distributor(self, value: str | None) -> str | None:
        """Map a free-text distributor mention onto a vocabulary name (case-insensitive)."""
        if not value:
            return None
        lowered = value.strip().lower()
        for entry in self.distributors:
            if any(term.lower() == lowered for term in entry.terms):
                return entry.name
        if lowered == self.other_distributor.lower():
            return self.other_distributor
        return None

    def distributor_for_email(self, email: str | None) -> str | None:
        """Distributor whose domain the address belongs to, if any."""
        if not email or '@' not in email:
            return None
        domain = email.rsplit('@', 1)[1].lower()
        for entry in self.distributors:
            for known in entry.domains:
                if domain == known or domain.endswith('.' + known):
                    return entry.name
        return None

    def is_public_provider(self, domain_label: str) -> bool:
        return domain_label.lower() in {p.lower() for p in self.public_mail_providers}

    @classmethod
    def from_yaml(cls, path: str | Path) -> 'Vocabulary':
        """Load and validate a vocabulary file."""
        path = Path(path)
        try:
            data = yaml.safe_load(path.read_text()) or {}
        except (OSError, yaml.YAMLError) as e:
            raise VocabularyError(
                f'Could not read vocabulary: {e}', context={'path': str(path)}
            ) from e
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise VocabularyError(
                f'Invalid vocabulary: {e.error_count()} error(s)',
                context={'path': str(path), 'errors': e.errors(include_url=False)},
            ) from e


@lru_cache(maxsize=8)
def load_vocabulary(path: str | None = None) -> Vocabulary:
    """
    Load a vocabulary, caching by path.

    Args:
        path: YAML file to load; the packaged default when None or empty

    Returns:
        Validated Vocabulary
    """
    return Vocabulary.from_yaml(path or DEFAULT_VOCABULARY_PATH)
