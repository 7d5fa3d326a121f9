"""Record validation rules.

Built-in checks guard every record (payload present, sane timestamp,
decodable payload). Declarative rules express per-kind constraints on
decoded fields and can be built from pipeline files.
"""

from __future__ import annotations

from typing import Any, Mapping, Sequence

from core.errors import DecodeError, ValidationError
from core.pipeline_spec import RuleSpec
from core.types import Record, ValidationRule
from reflect.record_kind import RecordKind

EMPTY_PAYLOAD = "empty_payload"
INVALID_TIMESTAMP = "invalid_timestamp"
UNDECODABLE = "undecodable"
KIND_MISMATCH = "kind_mismatch"

# Records stamped more than a day ahead of the host clock are rejected.
MAX_CLOCK_SKEW_NS = 24 * 60 * 60 * 1_000_000_000


def validate_record(
    kind: RecordKind,
    record: Record,
    now_ns: int | None = None,
) -> Mapping[str, Any]:
    """Run built-in checks and the kind's rules over one record.

    Args:
        kind: Kind the record belongs to.
        record: Record to check.
        now_ns: Current time for the timestamp check; skipped when ``None``.

    Returns:
        Decoded fields of the accepted record.

    Raises:
        ValidationError: With the reason of the first failing check.
    """
    if record.kind != kind.name:
        raise ValidationError(
            KIND_MISMATCH,
            f"Record of kind '{record.kind}' was sent to a '{kind.name}' channel.",
        )
    if not record.payload:
        raise ValidationError(EMPTY_PAYLOAD, "Record payload is empty.")
    if record.timestamp_ns <= 0 or (
        now_ns is not None and record.timestamp_ns > now_ns + MAX_CLOCK_SKEW_NS
    ):
        raise ValidationError(
            INVALID_TIMESTAMP,
            f"Record timestamp {record.timestamp_ns} is not a valid Unix time in ns.",
        )
    try:
        fields = kind.decode(record.payload)
    except DecodeError as error:
        raise ValidationError(UNDECODABLE, str(error)) from error
    _apply_rules(kind.validation_rules, record, fields)
    return fields


def _apply_rules(
    rules: Sequence[ValidationRule],
    record: Record,
    fields: Mapping[str, Any],
) -> None:
    for rule in rules:
        if not rule.check(record, fields):
            raise ValidationError(
                rule.name,
                f"Record {record.key} of kind '{record.kind}' failed rule '{rule.name}'.",
            )


def range_rule(
    field: str,
    minimum: float | None = None,
    maximum: float | None = None,
) -> ValidationRule:
    """Require a numeric field to lie within inclusive bounds.

    An absent (null) value fails the rule.
    """

    def check(_record: Record, fields: Mapping[str, Any]) -> bool:
        value = fields.get(field)
        if value is None or isinstance(value, (str, list, dict)):
            return False
        if minimum is not None and value < minimum:
            return False
        return maximum is None or value <= maximum

    return ValidationRule(name=f"{field}_out_of_range", check=check)


def required_rule(field: str) -> ValidationRule:
    """Require a field to be present (not null)."""

    def check(_record: Record, fields: Mapping[str, Any]) -> bool:
        return fields.get(field) is not None

    return ValidationRule(name=f"{field}_missing", check=check)


def non_empty_rule(field: str) -> ValidationRule:
    """Require a string or vector field to be present and non-empty."""

    def check(_record: Record, fields: Mapping[str, Any]) -> bool:
        value = fields.get(field)
        return value is not None and len(value) > 0

    return ValidationRule(name=f"{field}_empty", check=check)


def rule_from_spec(spec: RuleSpec) -> ValidationRule:
    """Build the validation rule a pipeline file declares."""
    if spec.rule_type == "range":
        return range_rule(spec.field, spec.minimum, spec.maximum)
    if spec.rule_type == "required":
        return required_rule(spec.field)
    return non_empty_rule(spec.field)
