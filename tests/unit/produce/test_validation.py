"""Unit tests for record validation rules."""

from __future__ import annotations

import pytest

from core.errors import ValidationError
from core.pipeline_spec import RuleSpec
from produce.validation import (
    EMPTY_PAYLOAD,
    INVALID_TIMESTAMP,
    KIND_MISMATCH,
    MAX_CLOCK_SKEW_NS,
    UNDECODABLE,
    non_empty_rule,
    range_rule,
    required_rule,
    rule_from_spec,
    validate_record,
)
from schema_fixtures import simple_fields, simple_kind, simple_record

_NOW_NS = 1_700_000_000_000_000_000


def _reason(kind, record) -> str:  # type: ignore[no-untyped-def]
    with pytest.raises(ValidationError) as error_info:
        validate_record(kind, record, now_ns=_NOW_NS)
    return error_info.value.reason


def test_validate_record_returns_decoded_fields() -> None:
    """Accepted records should come back decoded."""
    kind = simple_kind()

    fields = validate_record(kind, simple_record(kind, 2), now_ns=_NOW_NS)

    assert fields == simple_fields(2)


def test_validate_record_rejects_empty_payload() -> None:
    """Records without payload bytes should be rejected."""
    kind = simple_kind()

    assert _reason(kind, simple_record(kind, 0, payload=b"")) == EMPTY_PAYLOAD


def test_validate_record_rejects_non_positive_timestamp() -> None:
    """Timestamps at or before the epoch should be rejected."""
    kind = simple_kind()

    assert _reason(kind, simple_record(kind, 0, timestamp_ns=0)) == INVALID_TIMESTAMP


def test_validate_record_rejects_far_future_timestamp() -> None:
    """Timestamps beyond the clock skew allowance should be rejected."""
    kind = simple_kind()
    record = simple_record(kind, 0, timestamp_ns=_NOW_NS + MAX_CLOCK_SKEW_NS + 1)

    assert _reason(kind, record) == INVALID_TIMESTAMP


def test_validate_record_rejects_undecodable_payload() -> None:
    """Payloads that do not decode should be rejected."""
    kind = simple_kind()

    assert _reason(kind, simple_record(kind, 0, payload=b"\xff" * 16)) == UNDECODABLE


def test_validate_record_rejects_other_kind() -> None:
    """Records of another kind should be rejected."""
    record = simple_record(simple_kind(name="other"), 0)

    assert _reason(simple_kind(), record) == KIND_MISMATCH


def test_validate_record_applies_kind_rules() -> None:
    """Kind rules should reject with their own name as reason."""
    kind = simple_kind(rules=[range_rule("value", maximum=1.0)])

    assert _reason(kind, simple_record(kind, 4)) == "value_out_of_range"


def test_range_rule_checks_inclusive_bounds() -> None:
    """Range rule should accept the bounds and reject nulls."""
    rule = range_rule("value", minimum=0.0, maximum=10.0)
    record = simple_record(simple_kind(), 0)

    assert rule.check(record, {"value": 0.0}) and rule.check(record, {"value": 10.0})
    assert not rule.check(record, {"value": 10.5})
    assert not rule.check(record, {"value": None})


def test_required_and_non_empty_rules() -> None:
    """Presence rules should reject null and empty values."""
    record = simple_record(simple_kind(), 0)

    assert required_rule("label").check(record, {"label": ""})
    assert not required_rule("label").check(record, {"label": None})
    assert not non_empty_rule("flags").check(record, {"flags": []})
    assert non_empty_rule("flags").check(record, {"flags": [1]})


def test_rule_from_spec_builds_named_rules() -> None:
    """Declarative rules should map onto rule builders."""
    rules = [
        rule_from_spec(RuleSpec(rule_type="range", field="value", minimum=0.0)),
        rule_from_spec(RuleSpec(rule_type="required", field="label")),
        rule_from_spec(RuleSpec(rule_type="non_empty", field="flags")),
    ]

    assert [rule.name for rule in rules] == ["value_out_of_range", "label_missing", "flags_empty"]
