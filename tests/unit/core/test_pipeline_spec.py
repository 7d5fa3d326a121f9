"""Unit tests for YAML pipeline file parsing."""

from __future__ import annotations

from pathlib import Path

import pytest

from core.errors import OpenSensorConfigError
from core.pipeline_spec import RuleSpec, load_pipeline_spec

_VALID_PIPELINE = """
version: 1
defaults:
  flush_rows: 1000
  key_prefix: site-a
kinds:
  - name: simple
    topic: raw.test.simple
    schema: schemas/simple.bfbs
    flush_seconds: 30
    rules:
      - range: {field: value, min: 0, max: 100}
      - required: label
      - non_empty: flags
"""


def _write(tmp_path: Path, text: str) -> Path:
    spec_path = tmp_path / "pipeline.yaml"
    spec_path.write_text(text, encoding="utf-8")
    return spec_path


def test_load_pipeline_spec_parses_kinds_and_defaults(tmp_path: Path) -> None:
    """Loader should parse defaults, kinds, and per-kind thresholds."""
    spec = load_pipeline_spec(_write(tmp_path, _VALID_PIPELINE))

    kind = spec.kinds[0]
    assert spec.version == 1 and spec.defaults.flush_rows == 1000
    assert spec.defaults.key_prefix == "site-a"
    assert kind.name == "simple" and kind.flush_seconds == 30.0 and kind.flush_rows is None


def test_load_pipeline_spec_resolves_schema_relative_to_file(tmp_path: Path) -> None:
    """Schema paths should resolve against the pipeline file directory."""
    spec = load_pipeline_spec(_write(tmp_path, _VALID_PIPELINE))

    assert spec.kinds[0].schema_path == tmp_path.resolve() / "schemas" / "simple.bfbs"


def test_load_pipeline_spec_parses_rules(tmp_path: Path) -> None:
    """Loader should parse every declarative rule type."""
    spec = load_pipeline_spec(_write(tmp_path, _VALID_PIPELINE))

    assert spec.kinds[0].rules == (
        RuleSpec(rule_type="range", field="value", minimum=0.0, maximum=100.0),
        RuleSpec(rule_type="required", field="label"),
        RuleSpec(rule_type="non_empty", field="flags"),
    )


def test_load_pipeline_spec_rejects_unknown_kind_fields(tmp_path: Path) -> None:
    """Loader should fail on unknown kind keys."""
    text = _VALID_PIPELINE.replace("flush_seconds: 30", "flush_minutes: 1")

    with pytest.raises(OpenSensorConfigError, match="flush_minutes"):
        load_pipeline_spec(_write(tmp_path, text))


def test_load_pipeline_spec_rejects_bad_topic(tmp_path: Path) -> None:
    """Loader should enforce the topic naming convention."""
    text = _VALID_PIPELINE.replace("raw.test.simple", "sensors.simple")

    with pytest.raises(OpenSensorConfigError, match="Invalid topic"):
        load_pipeline_spec(_write(tmp_path, text))


def test_load_pipeline_spec_rejects_duplicate_kinds(tmp_path: Path) -> None:
    """Loader should reject a kind declared twice."""
    text = """
version: 1
kinds:
  - {name: simple, topic: raw.test.simple, schema: a.bfbs}
  - {name: simple, topic: raw.test.other, schema: b.bfbs}
"""

    with pytest.raises(OpenSensorConfigError, match="more than once"):
        load_pipeline_spec(_write(tmp_path, text))


def test_load_pipeline_spec_rejects_inverted_range(tmp_path: Path) -> None:
    """Range rules should need min <= max."""
    text = _VALID_PIPELINE.replace("min: 0, max: 100", "min: 10, max: 1")

    with pytest.raises(OpenSensorConfigError, match="must not exceed"):
        load_pipeline_spec(_write(tmp_path, text))


def test_load_pipeline_spec_rejects_unknown_rule(tmp_path: Path) -> None:
    """Loader should reject rule types it cannot build."""
    text = _VALID_PIPELINE.replace("required: label", "regex: label")

    with pytest.raises(OpenSensorConfigError, match="Unsupported rule"):
        load_pipeline_spec(_write(tmp_path, text))


def test_load_pipeline_spec_rejects_unsupported_version(tmp_path: Path) -> None:
    """Loader should only accept version 1."""
    text = _VALID_PIPELINE.replace("version: 1", "version: 2")

    with pytest.raises(OpenSensorConfigError, match="version"):
        load_pipeline_spec(_write(tmp_path, text))


def test_load_pipeline_spec_rejects_missing_file(tmp_path: Path) -> None:
    """Loader should explain a missing pipeline file."""
    with pytest.raises(OpenSensorConfigError, match="does not exist"):
        load_pipeline_spec(tmp_path / "missing.yaml")


def test_read_schema_blob_reports_missing_schema(tmp_path: Path) -> None:
    """Kind specs should fail with a config error when the schema is missing."""
    spec = load_pipeline_spec(_write(tmp_path, _VALID_PIPELINE))

    with pytest.raises(OpenSensorConfigError, match="flatc"):
        spec.kinds[0].read_schema_blob()
