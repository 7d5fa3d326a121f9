"""Binary schema (.bfbs) writer.

Builds ``reflection.Schema`` buffers from declarative object definitions,
so kinds can be declared in Python when ``flatc`` is not at hand. Type
names follow the FlatBuffers IDL: scalars (``int``, ``float32``, ...),
``string``, ``[T]`` vectors, and declared object names.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import flatbuffers
from flatbuffers import number_types as N

from core.constants import SCHEMA_FILE_IDENTIFIER
from core.errors import SchemaBlobError
from reflect.wire_types import FLOAT_TYPES, BaseType, is_scalar, scalar_size

_TYPE_NAMES = {
    "bool": BaseType.BOOL,
    "byte": BaseType.BYTE,
    "int8": BaseType.BYTE,
    "ubyte": BaseType.UBYTE,
    "uint8": BaseType.UBYTE,
    "short": BaseType.SHORT,
    "int16": BaseType.SHORT,
    "ushort": BaseType.USHORT,
    "uint16": BaseType.USHORT,
    "int": BaseType.INT,
    "int32": BaseType.INT,
    "uint": BaseType.UINT,
    "uint32": BaseType.UINT,
    "long": BaseType.LONG,
    "int64": BaseType.LONG,
    "ulong": BaseType.ULONG,
    "uint64": BaseType.ULONG,
    "float": BaseType.FLOAT,
    "float32": BaseType.FLOAT,
    "double": BaseType.DOUBLE,
    "float64": BaseType.DOUBLE,
    "string": BaseType.STRING,
}

_FIELD_SLOT_COUNT = 14
_OBJECT_SLOT_COUNT = 8
_SCHEMA_SLOT_COUNT = 8
_TYPE_SLOT_COUNT = 6


@dataclass(frozen=True)
class FieldDefinition:
    """Declared field of a table or struct.

    Attributes:
        name: Field name.
        type_name: IDL type name, e.g. ``float32``, ``[int]``, ``Vec3``.
        default: Scalar default; ignored for non-scalars.
        optional: Absent scalar reads as null instead of the default.
        required: Non-scalar field must be present.
        deprecated: Field keeps its id but is no longer read.
        documentation: Doc comment lines.
    """

    name: str
    type_name: str
    default: int | float | bool | None = None
    optional: bool = False
    required: bool = False
    deprecated: bool = False
    documentation: tuple[str, ...] = ()


@dataclass(frozen=True)
class ObjectDefinition:
    """Declared table or struct. Field ids follow declaration order."""

    name: str
    fields: tuple[FieldDefinition, ...]
    is_struct: bool = False
    documentation: tuple[str, ...] = ()


@dataclass(frozen=True)
class _ResolvedType:
    base_type: BaseType
    element: BaseType = BaseType.NONE
    index: int = -1


@dataclass(frozen=True)
class _StructLayout:
    offsets: tuple[int, ...]
    minalign: int
    bytesize: int


def build_schema_blob(
    objects: Sequence[ObjectDefinition],
    root_table: str,
    file_identifier: str | None = None,
) -> bytes:
    """Serialize object definitions as a binary schema.

    Args:
        objects: Tables and structs, in any order.
        root_table: Name of the table payloads are rooted at.
        file_identifier: Optional four-character payload identifier.

    Returns:
        Binary schema bytes readable by ``load_wire_schema``.

    Raises:
        SchemaBlobError: If a definition is inconsistent.
    """
    ordered = sorted(objects, key=lambda definition: definition.name)
    indexes = {definition.name: index for index, definition in enumerate(ordered)}
    if len(indexes) != len(ordered):
        raise SchemaBlobError("Object names must be unique within one schema.")
    if root_table not in indexes:
        raise SchemaBlobError(f"Root table '{root_table}' is not among the defined objects.")
    if ordered[indexes[root_table]].is_struct:
        raise SchemaBlobError(f"Root type '{root_table}' must be a table, not a struct.")
    if file_identifier is not None and len(file_identifier.encode("utf-8")) != 4:
        raise SchemaBlobError(
            f"File identifier '{file_identifier}' must be exactly four bytes."
        )

    builder = flatbuffers.Builder(1024)
    object_offsets = [_write_object(builder, definition, indexes) for definition in ordered]
    objects_vector = _offset_vector(builder, object_offsets)
    enums_vector = _offset_vector(builder, [])
    ident_offset = builder.CreateString(file_identifier) if file_identifier else None

    builder.StartObject(_SCHEMA_SLOT_COUNT)
    builder.PrependUOffsetTRelativeSlot(0, objects_vector, 0)
    builder.PrependUOffsetTRelativeSlot(1, enums_vector, 0)
    if ident_offset is not None:
        builder.PrependUOffsetTRelativeSlot(2, ident_offset, 0)
    builder.PrependUOffsetTRelativeSlot(4, object_offsets[indexes[root_table]], 0)
    schema = builder.EndObject()
    builder.Finish(schema, file_identifier=SCHEMA_FILE_IDENTIFIER)
    return bytes(builder.Output())


def _write_object(
    builder: flatbuffers.Builder,
    definition: ObjectDefinition,
    indexes: dict[str, int],
) -> int:
    types = [_resolve_type(field, indexes) for field in definition.fields]
    layout = _struct_layout(definition, types) if definition.is_struct else None
    declared = list(enumerate(zip(definition.fields, types)))
    field_offsets = [
        _write_field(
            builder,
            field,
            resolved,
            field_id,
            layout.offsets[field_id] if layout is not None else 0,
        )
        for field_id, (field, resolved) in sorted(declared, key=lambda item: item[1][0].name)
    ]
    fields_vector = _offset_vector(builder, field_offsets)
    name = builder.CreateString(definition.name)
    documentation = _string_vector(builder, definition.documentation)

    builder.StartObject(_OBJECT_SLOT_COUNT)
    builder.PrependUOffsetTRelativeSlot(0, name, 0)
    builder.PrependUOffsetTRelativeSlot(1, fields_vector, 0)
    builder.PrependSlot(N.BoolFlags, 2, definition.is_struct, False)
    builder.PrependSlot(N.Int32Flags, 3, layout.minalign if layout else 1, 0)
    builder.PrependSlot(N.Int32Flags, 4, layout.bytesize if layout else 0, 0)
    if documentation is not None:
        builder.PrependUOffsetTRelativeSlot(6, documentation, 0)
    return builder.EndObject()


def _write_field(
    builder: flatbuffers.Builder,
    field: FieldDefinition,
    resolved: _ResolvedType,
    field_id: int,
    struct_offset: int,
) -> int:
    name = builder.CreateString(field.name)
    documentation = _string_vector(builder, field.documentation)
    type_offset = _write_type(builder, resolved)
    default_integer, default_real = _defaults(field, resolved.base_type)

    builder.StartObject(_FIELD_SLOT_COUNT)
    builder.PrependUOffsetTRelativeSlot(0, name, 0)
    builder.PrependUOffsetTRelativeSlot(1, type_offset, 0)
    builder.PrependSlot(N.Uint16Flags, 2, field_id, 0)
    builder.PrependSlot(N.Uint16Flags, 3, struct_offset, 0)
    builder.PrependSlot(N.Int64Flags, 4, default_integer, 0)
    builder.PrependSlot(N.Float64Flags, 5, default_real, 0.0)
    builder.PrependSlot(N.BoolFlags, 6, field.deprecated, False)
    builder.PrependSlot(N.BoolFlags, 7, field.required, False)
    if documentation is not None:
        builder.PrependUOffsetTRelativeSlot(10, documentation, 0)
    builder.PrependSlot(N.BoolFlags, 11, field.optional, False)
    return builder.EndObject()


def _write_type(builder: flatbuffers.Builder, resolved: _ResolvedType) -> int:
    element_size = (
        scalar_size(resolved.element) if resolved.base_type == BaseType.VECTOR else 0
    )
    builder.StartObject(_TYPE_SLOT_COUNT)
    builder.PrependSlot(N.Int8Flags, 0, int(resolved.base_type), 0)
    builder.PrependSlot(N.Int8Flags, 1, int(resolved.element), 0)
    builder.PrependSlot(N.Int32Flags, 2, resolved.index, -1)
    builder.PrependSlot(N.Uint32Flags, 4, scalar_size(resolved.base_type), 4)
    builder.PrependSlot(N.Uint32Flags, 5, element_size, 0)
    return builder.EndObject()


def _resolve_type(field: FieldDefinition, indexes: dict[str, int]) -> _ResolvedType:
    type_name = field.type_name.strip()
    if type_name.startswith("[") and type_name.endswith("]"):
        inner = type_name[1:-1].strip()
        if inner.startswith("["):
            raise SchemaBlobError(f"Field '{field.name}': nested vectors are not allowed.")
        element = _resolve_name(inner, field, indexes)
        return _ResolvedType(BaseType.VECTOR, element.base_type, element.index)
    return _resolve_name(type_name, field, indexes)


def _resolve_name(
    type_name: str,
    field: FieldDefinition,
    indexes: dict[str, int],
) -> _ResolvedType:
    if type_name in _TYPE_NAMES:
        return _ResolvedType(_TYPE_NAMES[type_name])
    if type_name in indexes:
        return _ResolvedType(BaseType.OBJ, index=indexes[type_name])
    raise SchemaBlobError(f"Field '{field.name}' has unknown type '{type_name}'.")


def _struct_layout(definition: ObjectDefinition, types: list[_ResolvedType]) -> _StructLayout:
    """Lay out struct members with natural alignment."""
    offsets: list[int] = []
    cursor = 0
    minalign = 1
    for field, resolved in zip(definition.fields, types):
        if not is_scalar(resolved.base_type):
            raise SchemaBlobError(
                f"Struct '{definition.name}' field '{field.name}' must be a scalar."
            )
        size = scalar_size(resolved.base_type)
        cursor = _align(cursor, size)
        offsets.append(cursor)
        cursor += size
        minalign = max(minalign, size)
    return _StructLayout(tuple(offsets), minalign, _align(cursor, minalign))


def _defaults(field: FieldDefinition, base_type: BaseType) -> tuple[int, float]:
    if field.default is None or not is_scalar(base_type):
        return 0, 0.0
    if base_type in FLOAT_TYPES:
        return 0, float(field.default)
    return int(field.default), 0.0


def _offset_vector(builder: flatbuffers.Builder, offsets: list[int]) -> int:
    builder.StartVector(N.UOffsetTFlags.bytewidth, len(offsets), N.UOffsetTFlags.bytewidth)
    for offset in reversed(offsets):
        builder.PrependUOffsetTRelative(offset)
    return builder.EndVector()


def _string_vector(builder: flatbuffers.Builder, values: tuple[str, ...]) -> int | None:
    if not values:
        return None
    return _offset_vector(builder, [builder.CreateString(value) for value in values])


def _align(value: int, alignment: int) -> int:
    return (value + alignment - 1) // alignment * alignment
