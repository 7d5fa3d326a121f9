"""Columnar schema derivation from binary schemas.

This module walks the root table of a parsed binary schema in field-id
order and maps every field to a column type with an Arrow equivalent.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Union

import pyarrow as pa

from core.errors import SchemaBlobError, UnsupportedTypeError
from core.logging_config import get_logger
from reflect.bfbs import load_wire_schema
from reflect.wire_types import (
    FLOAT_TYPES,
    BaseType,
    WireField,
    WireObject,
    WireSchema,
    is_scalar,
)

_LOGGER = get_logger(__name__)

_ARROW_TYPES = {
    BaseType.BOOL: pa.bool_(),
    BaseType.BYTE: pa.int8(),
    BaseType.UBYTE: pa.uint8(),
    BaseType.SHORT: pa.int16(),
    BaseType.USHORT: pa.uint16(),
    BaseType.INT: pa.int32(),
    BaseType.UINT: pa.uint32(),
    BaseType.LONG: pa.int64(),
    BaseType.ULONG: pa.uint64(),
    BaseType.FLOAT: pa.float32(),
    BaseType.DOUBLE: pa.float64(),
    BaseType.STRING: pa.string(),
}

# Nested tables and structs are flattened one level deep.
_MAX_NESTING_DEPTH = 1


@dataclass(frozen=True)
class PrimitiveColumn:
    """Scalar or string column."""

    base_type: BaseType

    def to_arrow(self) -> pa.DataType:
        return _ARROW_TYPES[self.base_type]


@dataclass(frozen=True)
class VectorColumn:
    """List column of scalars or strings."""

    element: PrimitiveColumn

    def to_arrow(self) -> pa.DataType:
        return pa.list_(self.element.to_arrow())


@dataclass(frozen=True)
class StructColumn:
    """Struct column backed by a nested table or an inline struct."""

    schema: ReflectedSchema

    def to_arrow(self) -> pa.DataType:
        return pa.struct(self.schema.arrow_fields())


ColumnType = Union[PrimitiveColumn, VectorColumn, StructColumn]


@dataclass(frozen=True)
class ReflectedField:
    """One column of a reflected schema.

    Attributes:
        name: Field name.
        column: Column type.
        field_id: Wire field id; selects the vtable slot.
        struct_offset: Byte offset for members of inline structs.
        default: Value read when a scalar is absent.
        optional: Absent scalar reads as null.
        required: Non-scalar field must be present.
        documentation: Doc comment lines.
    """

    name: str
    column: ColumnType
    field_id: int
    struct_offset: int = 0
    default: int | float | bool | None = None
    optional: bool = False
    required: bool = False
    documentation: tuple[str, ...] = ()

    @property
    def base_type(self) -> BaseType:
        if isinstance(self.column, PrimitiveColumn):
            return self.column.base_type
        if isinstance(self.column, VectorColumn):
            return BaseType.VECTOR
        return BaseType.OBJ

    @property
    def is_vector(self) -> bool:
        return isinstance(self.column, VectorColumn)

    @property
    def nested_schema(self) -> ReflectedSchema | None:
        return self.column.schema if isinstance(self.column, StructColumn) else None

    @property
    def nullable(self) -> bool:
        """Whether decoded rows may carry null for this field."""
        if isinstance(self.column, PrimitiveColumn) and is_scalar(self.column.base_type):
            return self.optional
        return not self.required

    def to_arrow(self) -> pa.Field:
        return pa.field(self.name, self.column.to_arrow(), nullable=self.nullable)


@dataclass(frozen=True)
class ReflectedSchema:
    """Ordered column description of one record kind.

    Attributes:
        kind: Record kind name.
        object_name: Name of the wire object this schema describes.
        fields: Columns in field-id order, deprecated fields excluded.
        slot_count: Number of vtable slots, deprecated fields included.
        file_identifier: Payload file identifier, if declared.
        is_struct: Whether the object is an inline struct.
        minalign: Struct alignment in bytes.
        bytesize: Struct size in bytes.
    """

    kind: str
    object_name: str
    fields: tuple[ReflectedField, ...]
    slot_count: int
    file_identifier: str | None = None
    is_struct: bool = False
    minalign: int = 1
    bytesize: int = 0

    @property
    def field_names(self) -> tuple[str, ...]:
        return tuple(field.name for field in self.fields)

    def field(self, name: str) -> ReflectedField:
        """Return a field by name.

        Raises:
            KeyError: If the schema has no such field.
        """
        for field in self.fields:
            if field.name == name:
                return field
        raise KeyError(name)

    def arrow_fields(self) -> list[pa.Field]:
        return [field.to_arrow() for field in self.fields]

    def to_arrow(self) -> pa.Schema:
        """Build the Arrow schema used for archive files."""
        return pa.schema(
            self.arrow_fields(),
            metadata={b"opensensor.kind": self.kind.encode("utf-8")},
        )


class SchemaReflector:
    """Derive columnar schemas from binary schema blobs."""

    def derive(self, kind_name: str, blob: bytes) -> ReflectedSchema:
        """Derive the columnar schema of a record kind.

        Args:
            kind_name: Record kind name, used in errors and metadata.
            blob: Binary schema bytes of the kind.

        Returns:
            Reflected schema of the root table.

        Raises:
            SchemaBlobError: If the blob cannot be parsed.
            UnsupportedTypeError: If a field has no columnar mapping.
        """
        wire = load_wire_schema(blob)
        if wire.root.is_struct:
            raise SchemaBlobError(
                f"Kind '{kind_name}' has struct root '{wire.root.name}'; "
                "the root type must be a table."
            )
        schema = _reflect_object(wire, wire.root, kind_name, depth=0)
        _LOGGER.info(
            "schema_reflected",
            kind=kind_name,
            root_table=wire.root.name,
            columns=list(schema.field_names),
        )
        return schema


class SchemaCache:
    """Reflected schemas keyed by kind, derived at most once each."""

    def __init__(self, reflector: SchemaReflector | None = None) -> None:
        self._reflector = reflector or SchemaReflector()
        self._entries: dict[str, tuple[bytes, ReflectedSchema]] = {}
        self._lock = threading.Lock()

    def derive(self, kind_name: str, blob: bytes) -> ReflectedSchema:
        """Return the cached schema of a kind, deriving it on first use.

        Raises:
            SchemaBlobError: If the kind was cached with a different blob.
        """
        with self._lock:
            cached = self._entries.get(kind_name)
            if cached is not None:
                cached_blob, schema = cached
                if cached_blob != bytes(blob):
                    raise SchemaBlobError(
                        f"Kind '{kind_name}' was already registered with a different "
                        "schema blob. Use a new kind name for a changed schema."
                    )
                return schema
            schema = self._reflector.derive(kind_name, blob)
            self._entries[kind_name] = (bytes(blob), schema)
            return schema

    def __contains__(self, kind_name: object) -> bool:
        return kind_name in self._entries

    def __len__(self) -> int:
        return len(self._entries)


def _reflect_object(
    wire: WireSchema,
    wire_object: WireObject,
    kind_name: str,
    depth: int,
) -> ReflectedSchema:
    fields = tuple(
        _reflect_field(wire, wire_object, field, kind_name, depth)
        for field in wire_object.fields
        if not field.deprecated
    )
    return ReflectedSchema(
        kind=kind_name,
        object_name=wire_object.name,
        fields=fields,
        slot_count=max((field.field_id for field in wire_object.fields), default=-1) + 1,
        file_identifier=wire.file_identifier,
        is_struct=wire_object.is_struct,
        minalign=wire_object.minalign,
        bytesize=wire_object.bytesize,
    )


def _reflect_field(
    wire: WireSchema,
    wire_object: WireObject,
    field: WireField,
    kind_name: str,
    depth: int,
) -> ReflectedField:
    return ReflectedField(
        name=field.name,
        column=_column(wire, wire_object, field, kind_name, depth),
        field_id=field.field_id,
        struct_offset=field.offset,
        default=_default(field),
        optional=field.optional,
        required=field.required,
        documentation=field.documentation,
    )


def _column(
    wire: WireSchema,
    wire_object: WireObject,
    field: WireField,
    kind_name: str,
    depth: int,
) -> ColumnType:
    base_type = field.base_type
    if base_type in _ARROW_TYPES:
        return PrimitiveColumn(base_type)
    if base_type == BaseType.VECTOR:
        if field.element in _ARROW_TYPES:
            return VectorColumn(PrimitiveColumn(field.element))
        kind_of_element = (
            "tables or structs" if field.element == BaseType.OBJ else field.element.name
        )
        raise _unsupported(kind_name, wire_object, field, f"vector of {kind_of_element}")
    if base_type == BaseType.OBJ:
        if depth >= _MAX_NESTING_DEPTH:
            raise _unsupported(kind_name, wire_object, field, "object nested more than one level")
        if not 0 <= field.index < len(wire.objects):
            raise SchemaBlobError(
                f"Field '{wire_object.name}.{field.name}' points at missing object {field.index}."
            )
        nested = _reflect_object(wire, wire.objects[field.index], kind_name, depth + 1)
        if not nested.fields:
            raise _unsupported(kind_name, wire_object, field, "object without fields")
        return StructColumn(nested)
    raise _unsupported(kind_name, wire_object, field, base_type.name.lower())


def _default(field: WireField) -> int | float | bool | None:
    if not is_scalar(field.base_type) or field.optional:
        return None
    if field.base_type == BaseType.BOOL:
        return bool(field.default_integer)
    if field.base_type in FLOAT_TYPES:
        return field.default_real
    return field.default_integer


def _unsupported(
    kind_name: str,
    wire_object: WireObject,
    field: WireField,
    description: str,
) -> UnsupportedTypeError:
    return UnsupportedTypeError(
        f"Kind '{kind_name}' field '{wire_object.name}.{field.name}' has unsupported "
        f"type ({description}). Archive only scalars, strings, scalar or string "
        "vectors, and one level of nested tables or structs."
    )
