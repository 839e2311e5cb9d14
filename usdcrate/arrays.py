"""Readers for scalar and array values stored in a crate file.

These work on an opened :class:`~usdcrate.crate.CrateFile` and read from its
stream at the position a value representation points to.

Element formats are :mod:`struct` codes without a byte-order prefix: for
example ``"i"``, ``"Q"``, ``"e"`` (half), ``"f"``, ``"d"`` or ``"3f"``.
"""

from __future__ import annotations

import enum
import struct
from typing import Any, BinaryIO

from usdcrate.crate import CrateFile
from usdcrate.layout import CrateError, Type, ValueRep, version

# Arrays shorter than this are never stored compressed.
_MIN_COMPRESSED_ARRAY_SIZE = 4
# Inlined values keep their data in the low 32 bits of the payload.
_INLINE_MASK = 0xFFFFFFFF

_SHAPE_REMOVED_VERSION = version(0, 5, 0)
_COMPRESSED_INTS_VERSION = version(0, 5, 0)
_COMPRESSED_FLOATS_VERSION = version(0, 6, 0)
_WIDE_COUNT_VERSION = version(0, 7, 0)


class ArrayKind(enum.Enum):
    """Element family of an array; decides whether it may be compressed."""

    INTS = enum.auto()
    FLOATS = enum.auto()
    OTHER = enum.auto()


def _read_exact(stream: BinaryIO, size: int) -> bytes:
    data = stream.read(size)
    if data is None or len(data) < size:
        raise CrateError(f"Unexpected end of data: wanted {size} bytes")
    return data


def _layout(fmt: str) -> struct.Struct:
    try:
        return struct.Struct("<" + fmt)
    except struct.error as exc:
        raise CrateError(f"Invalid value format '{fmt}'") from exc


def _read_values(stream: BinaryIO, fmt: str, count: int) -> list[Any]:
    if count == 0:
        return []
    layout = _layout(f"{count}{fmt}")
    return list(layout.unpack(_read_exact(stream, layout.size)))


def _int_format(width: int, signed: bool) -> str:
    formats = {4: "i", 8: "q"}
    if width not in formats:
        raise ValueError(f"Unsupported integer width: {width} (expected 4 or 8)")
    code = formats[width]
    return code if signed else code.upper()


def unpack_value(crate: CrateFile, rep: ValueRep, fmt: str) -> Any:
    """Read a non-array value, either inlined in ``rep`` or stored at its offset.

    Returns a single value when ``fmt`` describes one item, otherwise a tuple.
    """
    if rep.is_array():
        raise CrateError(f"Can't unpack array {rep!r} as inline value")
    if rep.ty() == Type.INVALID:
        raise CrateError("Invalid value type")

    layout = _layout(fmt)
    if rep.is_inlined():
        raw = (rep.payload() & _INLINE_MASK).to_bytes(8, "little")
        if layout.size > len(raw):
            raise CrateError(f"Value of format '{fmt}' does not fit an inlined payload")
        values = layout.unpack_from(raw)
    else:
        crate.stream.seek(rep.payload())
        values = layout.unpack(_read_exact(crate.stream, layout.size))

    return values[0] if len(values) == 1 else values


def unpack_array_len(crate: CrateFile, rep: ValueRep, kind: ArrayKind) -> tuple[int, bool]:
    """Seek to an array and return its element count and whether it is compressed.

    The stream is left at the first byte after the count.
    """
    if rep.payload() == 0:
        return 0, False

    crate.stream.seek(rep.payload())
    file_ver = crate.version()

    if file_ver < _SHAPE_REMOVED_VERSION:
        _read_exact(crate.stream, 4)  # obsolete shape size

    if kind is ArrayKind.INTS:
        compressed = file_ver >= _COMPRESSED_INTS_VERSION and rep.is_compressed()
    elif kind is ArrayKind.FLOATS:
        compressed = file_ver >= _COMPRESSED_FLOATS_VERSION and rep.is_compressed()
    else:
        compressed = False

    count_format = "<I" if file_ver < _WIDE_COUNT_VERSION else "<Q"
    (count,) = struct.unpack(count_format, _read_exact(crate.stream, struct.calcsize(count_format)))

    if count < _MIN_COMPRESSED_ARRAY_SIZE:
        compressed = False

    return count, compressed


def read_ints(crate: CrateFile, rep: ValueRep, width: int = 4, signed: bool = True) -> list[int]:
    """Read an integer array of ``width`` bytes per element."""
    fmt = _int_format(width, signed)
    count, compressed = unpack_array_len(crate, rep, ArrayKind.INTS)
    if count == 0:
        return []
    if compressed:
        return crate.read_encoded_ints(count, width, signed)
    return _read_values(crate.stream, fmt, count)


def read_floats(crate: CrateFile, rep: ValueRep, fmt: str) -> list[float]:
    """Read a floating point array of element format ``fmt`` (``"e"``, ``"f"`` or ``"d"``)."""
    if rep.is_inlined():
        raise CrateError("Floating point arrays can't be inlined")

    count, compressed = unpack_array_len(crate, rep, ArrayKind.FLOATS)
    if not compressed:
        return _read_values(crate.stream, fmt, count)

    (code,) = _read_exact(crate.stream, 1)

    if code == ord("i"):
        raw = crate.read_compressed(count * 4)
        usable = len(raw) // 4 * 4
        return [float(i) for i in struct.unpack(f"<{usable // 4}i", raw[:usable])]

    if code == ord("t"):
        (lut_size,) = struct.unpack("<I", _read_exact(crate.stream, 4))
        lut = _read_values(crate.stream, fmt, lut_size)
        indexes = crate.read_encoded_ints(count)
        if len(indexes) != count:
            raise CrateError("Read invalid number of indexes to decompress floating point array")
        try:
            return [lut[index] for index in indexes]
        except IndexError as exc:
            raise CrateError("Lookup table index out of range") from exc

    raise CrateError(f"Invalid compressed floating point array code: {code}")


def read_vec_array(crate: CrateFile, rep: ValueRep, fmt: str, n: int) -> list[Any]:
    """Read an array of ``n``-component elements as one flat list of components."""
    count, _ = unpack_array_len(crate, rep, ArrayKind.OTHER)
    if count == 0:
        return []
    return _read_values(crate.stream, fmt, count * n)