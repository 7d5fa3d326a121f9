"""Typed pipeline file parsing.

This module loads and validates YAML pipeline files that declare the
record kinds to produce and archive. One strict schema is shared by the
CLI and the SDK.

Example::

    version: 1
    defaults:
      flush_rows: 10000
      flush_seconds: 300
    kinds:
      - name: simple
        topic: raw.test.simple
        schema: schemas/simple.bfbs
        flush_rows: 500
        rules:
          - range: {field: value, min: 0, max: 100}
          - required: label
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Literal, Mapping, Sequence, cast

from core.errors import OpenSensorConfigError, OpenSensorDependencyError
from core.topics import validate_topic_name

RuleType = Literal["range", "required", "non_empty"]
SUPPORTED_RULE_TYPES: tuple[RuleType, ...] = ("range", "required", "non_empty")
_KIND_KEYS = {
    "name",
    "topic",
    "schema",
    "flush_rows",
    "flush_seconds",
    "channel_capacity",
    "rules",
}
_DEFAULT_KEYS = {"flush_rows", "flush_seconds", "channel_capacity", "key_prefix"}


@dataclass(frozen=True)
class RuleSpec:
    """One declarative validation rule."""

    rule_type: RuleType
    field: str
    minimum: float | None = None
    maximum: float | None = None


@dataclass(frozen=True)
class PipelineDefaults:
    """Values applied to kinds that do not set their own."""

    flush_rows: int | None = None
    flush_seconds: float | None = None
    channel_capacity: int | None = None
    key_prefix: str = ""


@dataclass(frozen=True)
class PipelineKindSpec:
    """One record kind declared by a pipeline file."""

    name: str
    topic: str
    schema_path: Path
    flush_rows: int | None = None
    flush_seconds: float | None = None
    channel_capacity: int | None = None
    rules: tuple[RuleSpec, ...] = ()

    def read_schema_blob(self) -> bytes:
        """Read the kind's binary schema file.

        Raises:
            OpenSensorConfigError: If the file cannot be read.
        """
        try:
            return self.schema_path.read_bytes()
        except OSError as error:
            raise OpenSensorConfigError(
                f"Failed to read schema for kind '{self.name}' at {self.schema_path}: {error}. "
                "Compile the schema with `flatc --binary --schema` and check the path."
            ) from error


@dataclass(frozen=True)
class PipelineSpec:
    """Validated pipeline root object."""

    version: int
    defaults: PipelineDefaults
    kinds: tuple[PipelineKindSpec, ...]


def load_pipeline_spec(spec_path: str | Path) -> PipelineSpec:
    """Load and validate a YAML pipeline file.

    Schema paths are resolved relative to the pipeline file.

    Args:
        spec_path: File path to the YAML pipeline.

    Returns:
        Fully validated pipeline object.

    Raises:
        OpenSensorDependencyError: If PyYAML is unavailable.
        OpenSensorConfigError: If the file is invalid or schema checks fail.
    """
    spec_file = Path(spec_path).expanduser().resolve()
    payload = _load_yaml_payload(spec_file)
    root_mapping = _expect_mapping(payload, "pipeline root")
    _validate_keys(root_mapping, {"version", "defaults", "kinds"}, "pipeline root")
    version = _parse_version(root_mapping)
    defaults = _parse_defaults(root_mapping)
    kinds = _parse_kinds(root_mapping, spec_file.parent)
    return PipelineSpec(version=version, defaults=defaults, kinds=kinds)


def _load_yaml_payload(spec_file: Path) -> object:
    try:
        import yaml  # type: ignore[import-untyped]
    except ImportError as error:  # pragma: no cover - dependency failure
        raise OpenSensorDependencyError(
            "Pipeline files require PyYAML. Install with 'pip install pyyaml'."
        ) from error
    if not spec_file.exists():
        raise OpenSensorConfigError(
            f"Pipeline file does not exist at {spec_file}. Provide a valid YAML file path."
        )
    try:
        payload = cast(object, yaml.safe_load(spec_file.read_text(encoding="utf-8")))
    except OSError as error:
        raise OpenSensorConfigError(
            f"Failed to read pipeline at {spec_file}: {error}. Check file permissions and retry."
        ) from error
    except yaml.YAMLError as error:
        raise OpenSensorConfigError(
            f"Failed to parse YAML pipeline at {spec_file}: {error}. Fix YAML syntax and retry."
        ) from error
    if payload is None:
        raise OpenSensorConfigError(
            f"Pipeline at {spec_file} is empty. Define 'version' and 'kinds'."
        )
    return payload


def _expect_mapping(value: object, context: str) -> Mapping[str, object]:
    if not isinstance(value, Mapping):
        raise OpenSensorConfigError(
            f"Invalid {context}: expected object mapping, got {type(value).__name__}."
        )
    for key in value:
        if not isinstance(key, str):
            raise OpenSensorConfigError(
                f"Invalid {context}: expected string keys, got {type(key).__name__}."
            )
    return cast(Mapping[str, object], value)


def _expect_sequence(value: object, context: str) -> Sequence[object]:
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray)):
        return value
    raise OpenSensorConfigError(f"Invalid {context}: expected list, got {type(value).__name__}.")


def _parse_version(root_mapping: Mapping[str, object]) -> int:
    raw_version = root_mapping.get("version")
    if not isinstance(raw_version, int) or isinstance(raw_version, bool):
        raise OpenSensorConfigError("Pipeline field 'version' must be an integer. Set version: 1.")
    if raw_version != 1:
        raise OpenSensorConfigError(f"Unsupported pipeline version {raw_version}. Use version: 1.")
    return raw_version


def _parse_defaults(root_mapping: Mapping[str, object]) -> PipelineDefaults:
    raw_defaults = root_mapping.get("defaults")
    if raw_defaults is None:
        return PipelineDefaults()
    context = "pipeline defaults"
    defaults_mapping = _expect_mapping(raw_defaults, context)
    _validate_keys(defaults_mapping, _DEFAULT_KEYS, context)
    key_prefix = _optional_string(defaults_mapping, "key_prefix", context)
    return PipelineDefaults(
        flush_rows=_optional_positive_int(defaults_mapping, "flush_rows", context),
        flush_seconds=_optional_positive_float(defaults_mapping, "flush_seconds", context),
        channel_capacity=_optional_positive_int(defaults_mapping, "channel_capacity", context),
        key_prefix=key_prefix or "",
    )


def _parse_kinds(
    root_mapping: Mapping[str, object],
    base_dir: Path,
) -> tuple[PipelineKindSpec, ...]:
    raw_kinds = root_mapping.get("kinds")
    if raw_kinds is None:
        raise OpenSensorConfigError(
            "Pipeline missing required field 'kinds'. Add a non-empty list of record kinds."
        )
    kind_rows = _expect_sequence(raw_kinds, "pipeline kinds")
    if len(kind_rows) == 0:
        raise OpenSensorConfigError("Pipeline field 'kinds' must include at least one kind.")
    kinds = tuple(_parse_kind(row, index, base_dir) for index, row in enumerate(kind_rows))
    names = [kind.name for kind in kinds]
    duplicates = sorted({name for name in names if names.count(name) > 1})
    if duplicates:
        raise OpenSensorConfigError(
            f"Pipeline declares kinds more than once: {', '.join(duplicates)}."
        )
    return kinds


def _parse_kind(value: object, index: int, base_dir: Path) -> PipelineKindSpec:
    context = f"pipeline kind #{index + 1}"
    kind_mapping = _expect_mapping(value, context)
    _validate_keys(kind_mapping, _KIND_KEYS, context)
    name = _required_string(kind_mapping, "name", context)
    topic = _required_string(kind_mapping, "topic", context)
    validate_topic_name(topic)
    schema_path = Path(_required_string(kind_mapping, "schema", context)).expanduser()
    if not schema_path.is_absolute():
        schema_path = base_dir / schema_path
    return PipelineKindSpec(
        name=name,
        topic=topic,
        schema_path=schema_path,
        flush_rows=_optional_positive_int(kind_mapping, "flush_rows", context),
        flush_seconds=_optional_positive_float(kind_mapping, "flush_seconds", context),
        channel_capacity=_optional_positive_int(kind_mapping, "channel_capacity", context),
        rules=_parse_rules(kind_mapping.get("rules"), context),
    )


def _parse_rules(value: object, context: str) -> tuple[RuleSpec, ...]:
    if value is None:
        return ()
    rule_rows = _expect_sequence(value, f"{context} rules")
    return tuple(
        _parse_rule(row, f"{context} rule #{index + 1}") for index, row in enumerate(rule_rows)
    )


def _parse_rule(value: object, context: str) -> RuleSpec:
    rule_mapping = _expect_mapping(value, context)
    if len(rule_mapping) != 1:
        raise OpenSensorConfigError(
            f"Invalid {context}: expected exactly one of {', '.join(SUPPORTED_RULE_TYPES)}."
        )
    raw_type, argument = next(iter(rule_mapping.items()))
    if raw_type not in SUPPORTED_RULE_TYPES:
        raise OpenSensorConfigError(
            f"Unsupported rule '{raw_type}' in {context}. "
            f"Use one of: {', '.join(SUPPORTED_RULE_TYPES)}."
        )
    rule_type = cast(RuleType, raw_type)
    if rule_type != "range":
        if not isinstance(argument, str) or not argument.strip():
            raise OpenSensorConfigError(
                f"Invalid {context}: '{rule_type}' takes a field name."
            )
        return RuleSpec(rule_type=rule_type, field=argument.strip())
    range_mapping = _expect_mapping(argument, context)
    _validate_keys(range_mapping, {"field", "min", "max"}, context)
    minimum = _optional_number(range_mapping, "min", context)
    maximum = _optional_number(range_mapping, "max", context)
    if minimum is None and maximum is None:
        raise OpenSensorConfigError(f"Invalid {context}: set 'min', 'max', or both.")
    if minimum is not None and maximum is not None and minimum > maximum:
        raise OpenSensorConfigError(f"Invalid {context}: 'min' must not exceed 'max'.")
    return RuleSpec(
        rule_type=rule_type,
        field=_required_string(range_mapping, "field", context),
        minimum=minimum,
        maximum=maximum,
    )


def _required_string(mapping: Mapping[str, object], field_name: str, context: str) -> str:
    value = _optional_string(mapping, field_name, context)
    if value is None:
        raise OpenSensorConfigError(f"Invalid {context}: missing required field '{field_name}'.")
    return value


def _optional_string(mapping: Mapping[str, object], field_name: str, context: str) -> str | None:
    raw_value = mapping.get(field_name)
    if raw_value is None:
        return None
    if isinstance(raw_value, str):
        normalized_value = raw_value.strip()
        return normalized_value if normalized_value else None
    raise OpenSensorConfigError(f"Invalid {context}: field '{field_name}' must be a string.")


def _optional_number(mapping: Mapping[str, object], field_name: str, context: str) -> float | None:
    raw_value = mapping.get(field_name)
    if raw_value is None:
        return None
    if isinstance(raw_value, bool) or not isinstance(raw_value, (int, float)):
        raise OpenSensorConfigError(f"Invalid {context}: field '{field_name}' must be numeric.")
    return float(raw_value)


def _optional_positive_int(
    mapping: Mapping[str, object],
    field_name: str,
    context: str,
) -> int | None:
    raw_value = mapping.get(field_name)
    if raw_value is None:
        return None
    if isinstance(raw_value, bool) or not isinstance(raw_value, int) or raw_value < 1:
        raise OpenSensorConfigError(
            f"Invalid {context}: field '{field_name}' must be a positive integer."
        )
    return raw_value


def _optional_positive_float(
    mapping: Mapping[str, object],
    field_name: str,
    context: str,
) -> float | None:
    value = _optional_number(mapping, field_name, context)
    if value is not None and value <= 0:
        raise OpenSensorConfigError(f"Invalid {context}: field '{field_name}' must be positive.")
    return value


def _validate_keys(mapping: Mapping[str, object], allowed_keys: set[str], context: str) -> None:
    unknown_keys = sorted(set(mapping) - allowed_keys)
    if unknown_keys:
        raise OpenSensorConfigError(
            f"Invalid {context}: unknown fields {', '.join(unknown_keys)}."
        )
