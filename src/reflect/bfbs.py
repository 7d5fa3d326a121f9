"""Binary schema (.bfbs) reader.

Parses a FlatBuffers binary schema with the ``flatbuffers`` runtime table
accessors. Slot numbers follow the field order of ``reflection.fbs``.
"""

from __future__ import annotations

import struct

from flatbuffers import encode, packer, util
from flatbuffers import number_types as N
from flatbuffers.table import Table

from core.constants import SCHEMA_FILE_IDENTIFIER
from core.errors import SchemaBlobError
from reflect.wire_types import BaseType, WireField, WireObject, WireSchema

# reflection.fbs vtable slots (4 + 2 * field index)
_SCHEMA_OBJECTS = 4
_SCHEMA_FILE_IDENT = 8
_SCHEMA_ROOT_TABLE = 12

_OBJECT_NAME = 4
_OBJECT_FIELDS = 6
_OBJECT_IS_STRUCT = 8
_OBJECT_MINALIGN = 10
_OBJECT_BYTESIZE = 12
_OBJECT_DOCUMENTATION = 16

_FIELD_NAME = 4
_FIELD_TYPE = 6
_FIELD_ID = 8
_FIELD_OFFSET = 10
_FIELD_DEFAULT_INTEGER = 12
_FIELD_DEFAULT_REAL = 14
_FIELD_DEPRECATED = 16
_FIELD_REQUIRED = 18
_FIELD_DOCUMENTATION = 24
_FIELD_OPTIONAL = 26

_TYPE_BASE_TYPE = 4
_TYPE_ELEMENT = 6
_TYPE_INDEX = 8

_MIN_BUFFER_SIZE = 8


def load_wire_schema(blob: bytes) -> WireSchema:
    """Parse a binary schema blob.

    Args:
        blob: Serialized ``reflection.Schema`` buffer.

    Returns:
        Parsed wire schema with objects in blob order.

    Raises:
        SchemaBlobError: If the blob is not a well-formed binary schema.
    """
    data = bytes(blob)
    if len(data) < _MIN_BUFFER_SIZE:
        raise SchemaBlobError(
            f"Schema blob is {len(data)} bytes; a binary schema needs at least "
            f"{_MIN_BUFFER_SIZE}. Pass the contents of a .bfbs file."
        )
    if not util.BufferHasIdentifier(data, 0, SCHEMA_FILE_IDENTIFIER):
        raise SchemaBlobError(
            "Schema blob has no BFBS file identifier. Compile the schema with "
            "`flatc --binary --schema` and pass the resulting .bfbs file."
        )
    try:
        return _read_schema(data)
    except (struct.error, IndexError, TypeError, UnicodeDecodeError, ValueError) as error:
        raise SchemaBlobError(f"Schema blob is corrupt: {error}") from error


def _read_schema(data: bytes) -> WireSchema:
    root = Table(data, encode.Get(packer.uoffset, data, 0))
    objects = tuple(_read_object(table) for table in _tables(root, _SCHEMA_OBJECTS))
    if not objects:
        raise SchemaBlobError("Schema blob declares no objects.")
    root_table = _table(root, _SCHEMA_ROOT_TABLE)
    if root_table is None:
        raise SchemaBlobError(
            "Schema blob has no root table. Declare `root_type` in the schema source."
        )
    root_name = _string(root_table, _OBJECT_NAME)
    names = [wire_object.name for wire_object in objects]
    if root_name not in names:
        raise SchemaBlobError(f"Schema root table '{root_name}' is not among its objects.")
    file_identifier = _string(root, _SCHEMA_FILE_IDENT) or None
    return WireSchema(
        objects=objects,
        root_index=names.index(root_name),
        file_identifier=file_identifier,
    )


def _read_object(table: Table) -> WireObject:
    name = _string(table, _OBJECT_NAME)
    if not name:
        raise SchemaBlobError("Schema object has no name.")
    fields = sorted(
        (_read_field(field_table) for field_table in _tables(table, _OBJECT_FIELDS)),
        key=lambda field: field.field_id,
    )
    return WireObject(
        name=name,
        fields=tuple(fields),
        is_struct=table.GetSlot(_OBJECT_IS_STRUCT, False, N.BoolFlags),
        minalign=table.GetSlot(_OBJECT_MINALIGN, 0, N.Int32Flags),
        bytesize=table.GetSlot(_OBJECT_BYTESIZE, 0, N.Int32Flags),
        documentation=_strings(table, _OBJECT_DOCUMENTATION),
    )


def _read_field(table: Table) -> WireField:
    name = _string(table, _FIELD_NAME)
    type_table = _table(table, _FIELD_TYPE)
    if not name or type_table is None:
        raise SchemaBlobError("Schema field is missing its name or type.")
    return WireField(
        name=name,
        base_type=_base_type(type_table.GetSlot(_TYPE_BASE_TYPE, 0, N.Int8Flags)),
        element=_base_type(type_table.GetSlot(_TYPE_ELEMENT, 0, N.Int8Flags)),
        index=type_table.GetSlot(_TYPE_INDEX, -1, N.Int32Flags),
        field_id=table.GetSlot(_FIELD_ID, 0, N.Uint16Flags),
        offset=table.GetSlot(_FIELD_OFFSET, 0, N.Uint16Flags),
        default_integer=table.GetSlot(_FIELD_DEFAULT_INTEGER, 0, N.Int64Flags),
        default_real=table.GetSlot(_FIELD_DEFAULT_REAL, 0.0, N.Float64Flags),
        deprecated=table.GetSlot(_FIELD_DEPRECATED, False, N.BoolFlags),
        required=table.GetSlot(_FIELD_REQUIRED, False, N.BoolFlags),
        optional=table.GetSlot(_FIELD_OPTIONAL, False, N.BoolFlags),
        documentation=_strings(table, _FIELD_DOCUMENTATION),
    )


def _base_type(value: int) -> BaseType:
    try:
        return BaseType(value)
    except ValueError as error:
        raise SchemaBlobError(f"Schema uses unknown base type {value}.") from error


def _string(table: Table, slot: int) -> str | None:
    offset = table.Offset(slot)
    if not offset:
        return None
    return table.String(table.Pos + offset).decode("utf-8")


def _table(table: Table, slot: int) -> Table | None:
    offset = table.Offset(slot)
    if not offset:
        return None
    return Table(table.Bytes, table.Indirect(table.Pos + offset))


def _tables(table: Table, slot: int) -> list[Table]:
    offset = table.Offset(slot)
    if not offset:
        return []
    start = table.Vector(offset)
    return [
        Table(table.Bytes, table.Indirect(start + index * N.UOffsetTFlags.bytewidth))
        for index in range(table.VectorLen(offset))
    ]


def _strings(table: Table, slot: int) -> tuple[str, ...]:
    offset = table.Offset(slot)
    if not offset:
        return ()
    start = table.Vector(offset)
    return tuple(
        table.String(start + index * N.UOffsetTFlags.bytewidth).decode("utf-8")
        for index in range(table.VectorLen(offset))
    )
