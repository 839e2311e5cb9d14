"""Fixed structures stored in binary crate files."""

from __future__ import annotations

import enum
import struct
from dataclasses import dataclass
from typing import Any, ClassVar


class CrateError(ValueError):
    """Raised when crate data is malformed or unsupported."""


@dataclass(frozen=True, order=True)
class Version:
    """File format version, ordered by major, minor and patch."""

    major: int = 0
    minor: int = 0
    patch: int = 0

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"

    def can_read(self, file_ver: Version) -> bool:
        """True if a file of ``file_ver`` can be read by software of this version.

        The major version must match and the file's minor version must not be
        newer; patch changes are forward-compatible.
        """
        return file_ver.major == self.major and file_ver.minor <= self.minor

    def as_int(self) -> int:
        return (self.major << 16) | (self.minor << 8) | self.patch

    def is_valid(self) -> bool:
        return self.as_int() != 0


def version(major: int, minor: int, patch: int) -> Version:
    return Version(major, minor, patch)


@dataclass(frozen=True)
class Bootstrap:
    """File header: identifier, version bytes and offset to the table of contents."""

    SIZE: ClassVar[int] = 32
    _FORMAT: ClassVar[str] = "<8s8sQ8x"

    ident: bytes = bytes(8)
    version: bytes = bytes(8)
    toc_offset: int = 0

    @classmethod
    def from_bytes(cls, data: bytes) -> Bootstrap:
        try:
            ident, ver, toc_offset = struct.unpack_from(cls._FORMAT, data, 0)
        except struct.error as exc:
            raise CrateError("Unable to read crate bootstrap header") from exc
        return cls(ident=ident, version=ver, toc_offset=toc_offset)

    def file_version(self) -> Version:
        return Version(self.version[0], self.version[1], self.version[2])


@dataclass(frozen=True)
class Section:
    """Entry of the table of contents."""

    SIZE: ClassVar[int] = 32
    _FORMAT: ClassVar[str] = "<16sQQ"

    TOKENS: ClassVar[str] = "TOKENS"
    STRINGS: ClassVar[str] = "STRINGS"
    FIELDS: ClassVar[str] = "FIELDS"
    FIELDSETS: ClassVar[str] = "FIELDSETS"
    PATHS: ClassVar[str] = "PATHS"
    SPECS: ClassVar[str] = "SPECS"

    name: str = ""
    start: int = 0
    size: int = 0

    @classmethod
    def from_bytes(cls, data: bytes) -> Section:
        try:
            raw_name, start, size = struct.unpack_from(cls._FORMAT, data, 0)
        except struct.error as exc:
            raise CrateError("Unable to read crate section") from exc
        end = raw_name.find(b"\0")
        name = ""
        if end >= 0:
            try:
                name = raw_name[:end].decode("utf-8")
            except UnicodeDecodeError:
                name = ""
        return cls(name=name, start=start, size=size)


class Type(enum.IntEnum):
    """Value type codes stored in a value representation."""

    INVALID = 0
    BOOL = 1
    UCHAR = 2
    INT = 3
    UINT = 4
    INT64 = 5
    UINT64 = 6
    HALF = 7
    FLOAT = 8
    DOUBLE = 9
    STRING = 10
    TOKEN = 11
    ASSET_PATH = 12
    MATRIX2D = 13
    MATRIX3D = 14
    MATRIX4D = 15
    QUATD = 16
    QUATF = 17
    QUATH = 18
    VEC2D = 19
    VEC2F = 20
    VEC2H = 21
    VEC2I = 22
    VEC3D = 23
    VEC3F = 24
    VEC3H = 25
    VEC3I = 26
    VEC4D = 27
    VEC4F = 28
    VEC4H = 29
    VEC4I = 30
    DICTIONARY = 31
    TOKEN_LIST_OP = 32
    STRING_LIST_OP = 33
    PATH_LIST_OP = 34
    REFERENCE_LIST_OP = 35
    INT_LIST_OP = 36
    INT64_LIST_OP = 37
    UINT_LIST_OP = 38
    UINT64_LIST_OP = 39
    PATH_VECTOR = 40
    TOKEN_VECTOR = 41
    SPECIFIER = 42
    PERMISSION = 43
    VARIABILITY = 44
    VARIANT_SELECTION_MAP = 45
    TIME_SAMPLES = 46
    PAYLOAD = 47
    DOUBLE_VECTOR = 48
    LAYER_OFFSET_VECTOR = 49
    STRING_VECTOR = 50
    VALUE_BLOCK = 51
    VALUE = 52
    UNREGISTERED_VALUE = 53
    UNREGISTERED_VALUE_LIST_OP = 54
    PAYLOAD_LIST_OP = 55
    TIME_CODE = 56
    PATH_EXPRESSION = 57

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class ValueRep:
    """Packed value representation.

    The top two bytes hold the array, inlined and compressed flags and the
    type code; the low six bytes hold either an inlined value or a file offset.
    """

    bits: int = 0

    _ARRAY_BIT: ClassVar[int] = 1 << 63
    _INLINED_BIT: ClassVar[int] = 1 << 62
    _COMPRESSED_BIT: ClassVar[int] = 1 << 61
    _PAYLOAD_MASK: ClassVar[int] = (1 << 48) - 1

    def ty(self) -> Type:
        index = (self.bits >> 48) & 0xFF
        try:
            return Type(index)
        except ValueError:
            raise CrateError(f"Unable to parse type enum {index}") from None

    def payload(self) -> int:
        return self.bits & self._PAYLOAD_MASK

    def is_compressed(self) -> bool:
        return bool(self.bits & self._COMPRESSED_BIT)

    def is_inlined(self) -> bool:
        return bool(self.bits & self._INLINED_BIT)

    def is_array(self) -> bool:
        return bool(self.bits & self._ARRAY_BIT)

    def __repr__(self) -> str:
        try:
            ty = self.ty()
        except CrateError:
            ty = Type.INVALID
        return (
            f"ValueRep {self.payload()} (ty={ty}, inlined={self.is_inlined()}, "
            f"array={self.is_array()}, compressed={self.is_compressed()})"
        )


@dataclass(frozen=True)
class Field:
    """A field: index of its name token and its value representation."""

    token_index: int
    value_rep: ValueRep


@dataclass
class Spec:
    """Spec as stored in the file: path index, fieldset index and spec type."""

    path_index: int = 0
    fieldset_index: int = 0
    spec_type: Any = None


@dataclass(frozen=True)
class ListOpHeader:
    """Bit flags describing which item lists a list op carries."""

    bits: int = 0

    _IS_EXPLICIT: ClassVar[int] = 1 << 0
    _HAS_EXPLICIT_ITEMS: ClassVar[int] = 1 << 1
    _HAS_ADDED_ITEMS: ClassVar[int] = 1 << 2
    _HAS_DELETED_ITEMS: ClassVar[int] = 1 << 3
    _HAS_ORDERED_ITEMS: ClassVar[int] = 1 << 4
    _HAS_PREPEND_ITEMS: ClassVar[int] = 1 << 5
    _HAS_APPENDED_ITEMS: ClassVar[int] = 1 << 6

    def is_explicit(self) -> bool:
        return bool(self.bits & self._IS_EXPLICIT)

    def has_explicit(self) -> bool:
        return bool(self.bits & self._HAS_EXPLICIT_ITEMS)

    def has_added(self) -> bool:
        return bool(self.bits & self._HAS_ADDED_ITEMS)

    def has_deleted(self) -> bool:
        return bool(self.bits & self._HAS_DELETED_ITEMS)

    def has_ordered(self) -> bool:
        return bool(self.bits & self._HAS_ORDERED_ITEMS)

    def has_prepend(self) -> bool:
        return bool(self.bits & self._HAS_PREPEND_ITEMS)

    def has_appended(self) -> bool:
        return bool(self.bits & self._HAS_APPENDED_ITEMS)