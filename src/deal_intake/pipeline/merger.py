"""
Conflict engine.

Reconciles an admin snapshot (the full record as staff handed it to the
partner) with the partner's resubmitted values:
- Only tracked fields the partner actually submitted are compared
- None, blank strings and empty lists are one "empty" value; strings are
  compared trimmed and lists order-insensitively
- A difference is a conflict only when the snapshot value is non-empty;
  otherwise the partner is filling a gap
- The submitted value always lands in the merged record; conflicts are
  flagged for a human, never blocking

Any difference against a non-empty snapshot value is flagged, whether or not
staff edited that field.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

import structlog

from ..models.intake import Conflict
from ..models.record import ExtractedRecord, PARTNER_FORM_FIELDS, is_empty_value

logger = structlog.get_logger(__name__)


# =============================================================================
# Data Structures
# =============================================================================


@dataclass
class MergeOutcome:
    """Result of comparing a snapshot with a partner submission."""

    merged: dict[str, Any]
    conflicts: list[Conflict] = field(default_factory=list)

    @property
    def has_conflicts(self) -> bool:
        return bool(self.conflicts)

    @property
    def conflicted_fields(self) -> list[str]:
        return [c.field for c in self.conflicts]


# =============================================================================
# Comparison
# =============================================================================


def canonical_value(value: Any) -> str:
    """
    Comparable form of a field value.

    Empty values all map to ''. Lists become a sorted JSON array of their
    canonical items, so tag order never causes a conflict.
    """
    if is_empty_value(value):
        return ''
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (list, tuple, set, frozenset)):
        items = sorted(canonical_value(item) for item in value if not is_empty_value(item))
        return json.dumps(items) if items else ''
    return json.dumps(value, sort_keys=True, default=str)


def values_equal(left: Any, right: Any) -> bool:
    return canonical_value(left) == canonical_value(right)


def detect_conflicts(
    snapshot: Mapping[str, Any] | None,
    submitted: Mapping[str, Any],
    tracked_fields: Iterable[str] = PARTNER_FORM_FIELDS,
) -> MergeOutcome:
    """
    Compare a partner submission against the admin snapshot.

    Args:
        snapshot: Full field map captured at hand-off; None when the intake
            was never handed off (nothing to conflict with)
        submitted: Fields the partner form re-collected; absent keys are
            left untouched
        tracked_fields: Fields eligible for comparison and merge

    Returns:
        MergeOutcome with the merged field map and any conflicts
    """
    tracked = set(tracked_fields)
    merged: dict[str, Any] = dict(snapshot or {})
    conflicts: list[Conflict] = []

    ignored = sorted(k for k in submitted if k not in tracked)
    if ignored:
        logger.debug('merger.untracked_fields_ignored', fields=ignored)

    for name in (k for k in submitted if k in tracked):
        partner_value = submitted[name]
        admin_value = merged.get(name)

        if snapshot is not None and not values_equal(admin_value, partner_value):
            if not is_empty_value(admin_value):
                conflicts.append(
                    Conflict(field=name, admin_value=admin_value, partner_value=partner_value)
                )
                logger.info('merger.conflict_detected', field=name)

        merged[name] = partner_value

    logger.info(
        'merger.complete',
        submitted_fields=len(submitted) - len(ignored),
        conflicts=len(conflicts),
    )
    return MergeOutcome(merged=merged, conflicts=conflicts)


def apply_overrides(record: ExtractedRecord, overrides: Mapping[str, Any]) -> ExtractedRecord:
    """
    Layer staff edits over an extracted record.

    Non-empty override values win; empty ones leave the extracted value.
    Unknown keys are ignored.

    Returns:
        A new ExtractedRecord
    """
    values = record.to_field_map()
    for name, value in overrides.items():
        if name not in values:
            logger.debug('merger.unknown_override_ignored', field=name)
            continue
        if not is_empty_value(value):
            values[name] = value
    return ExtractedRecord.model_validate(values)
