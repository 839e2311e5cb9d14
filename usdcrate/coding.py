"""Compressed integer coding used by the binary crate format.

Integers are stored as deltas from the previous value. Each delta is tagged
with a 2-bit code: the most common delta, or a small, medium or large
signed integer whose width depends on the width of the target type.
"""

from __future__ import annotations

import struct
from collections import Counter
from collections.abc import Iterable

from usdcrate.layout import CrateError

_COMMON = 0
_SMALL = 1
_MEDIUM = 2
_LARGE = 3

# Signed struct formats for the common value and for small/medium/large deltas.
_COMMON_FORMATS = {4: "<i", 8: "<q"}
_DELTA_FORMATS = {
    4: ("<b", "<h", "<i"),
    8: ("<h", "<i", "<q"),
}


def _check_width(width: int) -> None:
    if width not in _COMMON_FORMATS:
        raise ValueError(f"Unsupported integer width: {width} (expected 4 or 8)")


def _wrap(value: int, bits: int, signed: bool) -> int:
    """Reduce ``value`` to an integer of ``bits`` bits, two's complement if signed."""
    value &= (1 << bits) - 1
    if signed and value >= 1 << (bits - 1):
        value -= 1 << bits
    return value


def _num_code_bytes(count: int) -> int:
    return (count * 2 + 7) // 8


def encoded_buffer_size(count: int, width: int = 4) -> int:
    """Upper bound of the encoded size of ``count`` integers of ``width`` bytes."""
    _check_width(width)
    if count == 0:
        return 0
    return width + _num_code_bytes(count) + width * count


def _unpack(fmt: str, data: memoryview, offset: int, what: str) -> int:
    try:
        (value,) = struct.unpack_from(fmt, data, offset)
    except struct.error as exc:
        raise CrateError(f"Unable to read {what} at offset {offset}") from exc
    return value


def decode_ints(data: bytes, count: int, width: int = 4, signed: bool = False) -> list[int]:
    """Decode ``count`` integers of ``width`` bytes from an encoded buffer."""
    _check_width(width)
    view = memoryview(bytes(data))

    common = _unpack(_COMMON_FORMATS[width], view, 0, "common value")

    code_pos = width
    int_pos = width + _num_code_bytes(count)
    if int_pos > len(view):
        raise CrateError("Encoded integer buffer is too short")

    formats = dict(zip((_SMALL, _MEDIUM, _LARGE), _DELTA_FORMATS[width]))
    bits = width * 8

    prev = 0
    output: list[int] = []
    remaining = count

    while remaining > 0:
        n = min(remaining, 4)
        remaining -= 4

        # Each code byte describes the next four integers.
        code_byte = _unpack("<B", view, code_pos, "code byte")
        code_pos += 1

        for i in range(n):
            code = (code_byte >> (2 * i)) & 3
            if code == _COMMON:
                delta = common
            else:
                fmt = formats[code]
                delta = _unpack(fmt, view, int_pos, "encoded integer")
                int_pos += struct.calcsize(fmt)

            prev = _wrap(prev + delta, 64, True)
            output.append(_wrap(prev, bits, signed))

    return output


def _delta_code(delta: int, common: int, width: int) -> int:
    if delta == common:
        return _COMMON
    for code, fmt in zip((_SMALL, _MEDIUM), _DELTA_FORMATS[width]):
        limit = 1 << (struct.calcsize(fmt) * 8 - 1)
        if -limit <= delta < limit:
            return code
    return _LARGE


def encode_ints(values: Iterable[int], width: int = 4) -> bytes:
    """Encode integers of ``width`` bytes into the delta-coded form."""
    _check_width(width)
    bits = width * 8

    deltas: list[int] = []
    prev = 0
    for value in values:
        current = _wrap(value, bits, True)
        deltas.append(_wrap(current - prev, bits, True))
        prev = current

    if not deltas:
        return b""

    counts = Counter(deltas)
    common, _ = max(counts.items(), key=lambda item: (item[1], item[0]))

    formats = dict(zip((_SMALL, _MEDIUM, _LARGE), _DELTA_FORMATS[width]))
    codes = bytearray(_num_code_bytes(len(deltas)))
    payload = bytearray()

    for index, delta in enumerate(deltas):
        code = _delta_code(delta, common, width)
        codes[index // 4] |= code << (2 * (index % 4))
        if code != _COMMON:
            payload += struct.pack(formats[code], delta)

    return struct.pack(_COMMON_FORMATS[width], common) + bytes(codes) + bytes(payload)