"""Schema-driven record payload codec.

Payloads are FlatBuffers tables. Decoding reads them through a reflected
schema instead of generated accessors; encoding writes them with the
``flatbuffers`` builder.
"""

from __future__ import annotations

import struct
from typing import Any, Mapping

import flatbuffers
from flatbuffers import encode, packer, util
from flatbuffers import number_types as N
from flatbuffers.table import Table

from core.errors import DecodeError, EncodeError
from reflect.reflector import (
    PrimitiveColumn,
    ReflectedField,
    ReflectedSchema,
    StructColumn,
    VectorColumn,
)
from reflect.wire_types import SCALAR_FLAGS, BaseType, scalar_size

_MIN_PAYLOAD_SIZE = N.UOffsetTFlags.bytewidth * 2
_OFFSET_WIDTH = N.UOffsetTFlags.bytewidth


def decode_record(schema: ReflectedSchema, payload: bytes) -> dict[str, Any]:
    """Decode a payload into field values keyed by column name.

    Absent scalars read as their default (null when optional); absent
    strings, vectors, and nested objects read as null.

    Args:
        schema: Reflected schema of the payload's kind.
        payload: Serialized FlatBuffers table.

    Returns:
        Field values in schema field order.

    Raises:
        DecodeError: If the payload does not match the schema.
    """
    data = bytes(payload)
    if len(data) < _MIN_PAYLOAD_SIZE:
        raise DecodeError(
            f"Payload of kind '{schema.kind}' is {len(data)} bytes; "
            f"a table needs at least {_MIN_PAYLOAD_SIZE}."
        )
    identifier = schema.file_identifier
    if identifier and not util.BufferHasIdentifier(data, 0, identifier.encode("utf-8")):
        raise DecodeError(
            f"Payload does not carry file identifier '{identifier}' of kind "
            f"'{schema.kind}'. Check that the record was routed to the right kind."
        )
    try:
        root = encode.Get(packer.uoffset, data, 0)
        _check_position(data, root)
        return _decode_table(Table(data, root), schema)
    except (struct.error, IndexError, TypeError, ValueError, UnicodeDecodeError) as error:
        raise DecodeError(
            f"Payload of kind '{schema.kind}' is malformed: {error}"
        ) from error


def encode_record(
    schema: ReflectedSchema,
    fields: Mapping[str, Any],
    file_identifier: str | None = None,
) -> bytes:
    """Encode field values as a payload of the schema's kind.

    Missing keys and ``None`` values are written as absent fields.

    Args:
        schema: Reflected schema of the target kind.
        fields: Field values keyed by column name.
        file_identifier: Identifier to stamp instead of the schema's own.

    Returns:
        Serialized FlatBuffers table, with a file identifier if one applies.

    Raises:
        EncodeError: If keys are unknown or values do not fit their columns.
    """
    builder = flatbuffers.Builder(256)
    try:
        root = _encode_table(builder, schema, fields)
        identifier_text = file_identifier or schema.file_identifier
        identifier = identifier_text.encode("utf-8") if identifier_text else None
        builder.Finish(root, file_identifier=identifier)
    except (struct.error, TypeError, ValueError, AttributeError) as error:
        raise EncodeError(f"Cannot encode record of kind '{schema.kind}': {error}") from error
    return bytes(builder.Output())


def _decode_table(table: Table, schema: ReflectedSchema) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for field in schema.fields:
        offset = table.Offset(_slot(field))
        if not offset:
            if field.required:
                raise DecodeError(
                    f"Payload of kind '{schema.kind}' is missing required field "
                    f"'{schema.object_name}.{field.name}'."
                )
            values[field.name] = field.default
            continue
        values[field.name] = _decode_present(table, field, offset)
    return values


def _decode_present(table: Table, field: ReflectedField, offset: int) -> Any:
    column = field.column
    position = table.Pos + offset
    if isinstance(column, PrimitiveColumn):
        if column.base_type == BaseType.STRING:
            return _read_string(table, position)
        return table.Get(SCALAR_FLAGS[column.base_type], position)
    if isinstance(column, VectorColumn):
        start = table.Vector(offset)
        length = table.VectorLen(offset)
        _check_position(table.Bytes, start + length * scalar_size(column.element.base_type) - 1)
        if column.element.base_type == BaseType.STRING:
            return [_read_string(table, start + index * _OFFSET_WIDTH) for index in range(length)]
        flags = SCALAR_FLAGS[column.element.base_type]
        return [table.Get(flags, start + index * flags.bytewidth) for index in range(length)]
    nested = column.schema
    if nested.is_struct:
        return {
            member.name: table.Get(
                SCALAR_FLAGS[member.base_type], position + member.struct_offset
            )
            for member in nested.fields
        }
    nested_position = table.Indirect(position)
    _check_position(table.Bytes, nested_position)
    return _decode_table(Table(table.Bytes, nested_position), nested)


def _read_string(table: Table, position: int) -> str:
    return table.String(position).decode("utf-8")


def _encode_table(
    builder: flatbuffers.Builder,
    schema: ReflectedSchema,
    fields: Mapping[str, Any],
) -> int:
    if not isinstance(fields, Mapping):
        raise EncodeError(
            f"Fields of '{schema.object_name}' must be a mapping, got {type(fields).__name__}."
        )
    unknown = sorted(set(fields) - set(schema.field_names))
    if unknown:
        raise EncodeError(
            f"Unknown fields for '{schema.object_name}' of kind '{schema.kind}': {unknown}."
        )
    # Offsets must be created before the table starts.
    offsets: dict[str, int] = {}
    for field in schema.fields:
        value = fields.get(field.name)
        if value is None:
            if field.required:
                raise EncodeError(
                    f"Required field '{schema.object_name}.{field.name}' has no value."
                )
            continue
        offset = _encode_offset(builder, field, value)
        if offset is not None:
            offsets[field.name] = offset

    builder.StartObject(schema.slot_count)
    for field in schema.fields:
        value = fields.get(field.name)
        if value is None:
            continue
        column = field.column
        if field.name in offsets:
            builder.PrependUOffsetTRelativeSlot(field.field_id, offsets[field.name], 0)
        elif isinstance(column, StructColumn):
            builder.PrependStructSlot(
                field.field_id, _encode_struct(builder, column.schema, value), 0
            )
        else:
            flags = SCALAR_FLAGS[column.base_type]
            builder.PrependSlot(flags, field.field_id, value, field.default)
    return builder.EndObject()


def _encode_offset(builder: flatbuffers.Builder, field: ReflectedField, value: Any) -> int | None:
    column = field.column
    if isinstance(column, PrimitiveColumn):
        if column.base_type != BaseType.STRING:
            return None
        return builder.CreateString(_as_text(field, value))
    if isinstance(column, VectorColumn):
        items = list(value)
        element = column.element.base_type
        if element == BaseType.STRING:
            strings = [builder.CreateString(_as_text(field, item)) for item in items]
            builder.StartVector(_OFFSET_WIDTH, len(strings), _OFFSET_WIDTH)
            for string in reversed(strings):
                builder.PrependUOffsetTRelative(string)
            return builder.EndVector()
        flags = SCALAR_FLAGS[element]
        builder.StartVector(flags.bytewidth, len(items), flags.bytewidth)
        for item in reversed(items):
            N.enforce_number(item, flags)
            builder.Prepend(flags, item)
        return builder.EndVector()
    if column.schema.is_struct:
        return None
    return _encode_table(builder, column.schema, value)


def _encode_struct(builder: flatbuffers.Builder, schema: ReflectedSchema, value: Any) -> int:
    if not isinstance(value, Mapping):
        raise EncodeError(f"Struct '{schema.object_name}' value must be a mapping.")
    missing = sorted(set(schema.field_names) - set(value))
    unknown = sorted(set(value) - set(schema.field_names))
    if missing or unknown:
        raise EncodeError(
            f"Struct '{schema.object_name}' needs exactly its members; "
            f"missing={missing} unknown={unknown}."
        )
    builder.Prep(schema.minalign, schema.bytesize)
    end = schema.bytesize
    for member in sorted(schema.fields, key=lambda item: item.struct_offset, reverse=True):
        flags = SCALAR_FLAGS[member.base_type]
        builder.Pad(end - (member.struct_offset + flags.bytewidth))
        N.enforce_number(value[member.name], flags)
        builder.Prepend(flags, value[member.name])
        end = member.struct_offset
    return builder.Offset()


def _as_text(field: ReflectedField, value: Any) -> str:
    if not isinstance(value, str):
        raise EncodeError(f"Field '{field.name}' expects text, got {type(value).__name__}.")
    return value


def _slot(field: ReflectedField) -> int:
    return 4 + 2 * field.field_id


def _check_position(data: bytes, position: int) -> None:
    if not 0 <= position < len(data):
        raise DecodeError(f"Offset {position} points outside a {len(data)}-byte payload.")
