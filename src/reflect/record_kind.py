"""Record kind capability set.

A record kind ties a kind name to its broker topic, binary schema, payload
codec, and validation rules. Sensors and archivers depend only on the
``RecordKind`` protocol; ``ReflectedRecordKind`` implements it from a schema
blob alone.
"""

from __future__ import annotations

from typing import Any, Mapping, Protocol, Sequence, runtime_checkable

from core.topics import validate_topic_name
from core.types import ValidationRule
from reflect.record_codec import decode_record, encode_record
from reflect.reflector import ReflectedSchema, SchemaCache


@runtime_checkable
class RecordKind(Protocol):
    """Capabilities every record kind provides."""

    @property
    def name(self) -> str: ...

    @property
    def topic(self) -> str: ...

    @property
    def schema_blob(self) -> bytes: ...

    @property
    def validation_rules(self) -> Sequence[ValidationRule]: ...

    def decode(self, payload: bytes) -> Mapping[str, Any]: ...

    def encode(self, fields: Mapping[str, Any]) -> bytes: ...


class ReflectedRecordKind:
    """Record kind whose codec is driven by its binary schema.

    Args:
        name: Kind name.
        topic: Broker topic; must follow the raw/derived naming convention.
        schema_blob: Binary schema bytes.
        validation_rules: Extra rules applied after the built-in checks.
        schema_cache: Shared cache; a private one is used when omitted.
    """

    def __init__(
        self,
        name: str,
        topic: str,
        schema_blob: bytes,
        validation_rules: Sequence[ValidationRule] = (),
        schema_cache: SchemaCache | None = None,
    ) -> None:
        self._name = name
        self._topic = validate_topic_name(topic)
        self._schema_blob = bytes(schema_blob)
        self._validation_rules = tuple(validation_rules)
        self._schema_cache = schema_cache or SchemaCache()

    @property
    def name(self) -> str:
        return self._name

    @property
    def topic(self) -> str:
        return self._topic

    @property
    def schema_blob(self) -> bytes:
        return self._schema_blob

    @property
    def validation_rules(self) -> tuple[ValidationRule, ...]:
        return self._validation_rules

    @property
    def schema(self) -> ReflectedSchema:
        """Reflected schema, derived on first access."""
        return self._schema_cache.derive(self._name, self._schema_blob)

    def decode(self, payload: bytes) -> dict[str, Any]:
        return decode_record(self.schema, payload)

    def encode(self, fields: Mapping[str, Any]) -> bytes:
        return encode_record(self.schema, fields)

    def __repr__(self) -> str:
        return f"ReflectedRecordKind(name={self._name!r}, topic={self._topic!r})"
