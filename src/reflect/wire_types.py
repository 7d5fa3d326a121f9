"""Wire-level schema model.

These dataclasses mirror the tables of a FlatBuffers binary schema
(``reflection.fbs``) after parsing, independent of the buffer they came from.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum

from flatbuffers import number_types


class BaseType(IntEnum):
    """Wire base types, numbered as in ``reflection.fbs``."""

    NONE = 0
    UTYPE = 1
    BOOL = 2
    BYTE = 3
    UBYTE = 4
    SHORT = 5
    USHORT = 6
    INT = 7
    UINT = 8
    LONG = 9
    ULONG = 10
    FLOAT = 11
    DOUBLE = 12
    STRING = 13
    VECTOR = 14
    OBJ = 15
    UNION = 16
    ARRAY = 17
    VECTOR64 = 18


SCALAR_FLAGS = {
    BaseType.UTYPE: number_types.Uint8Flags,
    BaseType.BOOL: number_types.BoolFlags,
    BaseType.BYTE: number_types.Int8Flags,
    BaseType.UBYTE: number_types.Uint8Flags,
    BaseType.SHORT: number_types.Int16Flags,
    BaseType.USHORT: number_types.Uint16Flags,
    BaseType.INT: number_types.Int32Flags,
    BaseType.UINT: number_types.Uint32Flags,
    BaseType.LONG: number_types.Int64Flags,
    BaseType.ULONG: number_types.Uint64Flags,
    BaseType.FLOAT: number_types.Float32Flags,
    BaseType.DOUBLE: number_types.Float64Flags,
}

FLOAT_TYPES = (BaseType.FLOAT, BaseType.DOUBLE)
OFFSET_SIZE = number_types.UOffsetTFlags.bytewidth


def is_scalar(base_type: BaseType) -> bool:
    """Return whether a base type is stored inline as a fixed-width scalar."""
    return base_type in SCALAR_FLAGS


def scalar_size(base_type: BaseType) -> int:
    """Return the inline byte width of a base type."""
    flags = SCALAR_FLAGS.get(base_type)
    return flags.bytewidth if flags is not None else OFFSET_SIZE


@dataclass(frozen=True)
class WireField:
    """One field of a wire object.

    Attributes:
        name: Field name.
        base_type: Wire base type.
        element: Element base type for vectors, else ``NONE``.
        index: Object or enum index for ``OBJ``/enum-typed fields, else -1.
        field_id: Declaration order id; selects the vtable slot.
        offset: Byte offset inside a struct (structs only).
        default_integer: Default for integer and bool scalars.
        default_real: Default for float scalars.
        deprecated: Whether the field is deprecated.
        required: Whether the field must be present.
        optional: Whether an absent scalar reads as null.
        documentation: Documentation lines from the schema source.
    """

    name: str
    base_type: BaseType
    element: BaseType = BaseType.NONE
    index: int = -1
    field_id: int = 0
    offset: int = 0
    default_integer: int = 0
    default_real: float = 0.0
    deprecated: bool = False
    required: bool = False
    optional: bool = False
    documentation: tuple[str, ...] = ()


@dataclass(frozen=True)
class WireObject:
    """One table or struct declared by a wire schema."""

    name: str
    fields: tuple[WireField, ...]
    is_struct: bool = False
    minalign: int = 1
    bytesize: int = 0
    documentation: tuple[str, ...] = ()


@dataclass(frozen=True)
class WireSchema:
    """A parsed binary schema.

    Attributes:
        objects: Objects in schema order; ``WireField.index`` points here.
        root_index: Index of the root table in ``objects``.
        file_identifier: Four-character payload identifier, if declared.
    """

    objects: tuple[WireObject, ...]
    root_index: int
    file_identifier: str | None = None

    @property
    def root(self) -> WireObject:
        """Root table object."""
        return self.objects[self.root_index]
