"""Decoding of packed value representations into scene description values."""

from __future__ import annotations

import io
import struct
from collections.abc import Callable
from typing import Any, BinaryIO, TypeVar

from usdcrate.arrays import (
    ArrayKind,
    read_floats,
    read_ints,
    read_vec_array,
    unpack_array_len,
    unpack_value,
)
from usdcrate.crate import CrateFile
from usdcrate.layout import CrateError, ListOpHeader, Type, ValueRep, version
from usdcrate.sdf import (
    LayerOffset,
    ListOp,
    Path,
    Payload,
    Permission,
    Reference,
    Specifier,
    Value,
    ValueKind,
    Variability,
)

T = TypeVar("T")

# Layer offsets were added to payloads in this file version.
_PAYLOAD_LAYER_OFFSET_VERSION = version(0, 8, 0)

# Integer scalars and arrays: scalar kind, array kind, struct code, width, signed.
_INT_TYPES = {
    Type.INT: (ValueKind.INT, ValueKind.INT_VEC, "i", 4, True),
    Type.UINT: (ValueKind.UINT, ValueKind.UINT_VEC, "I", 4, False),
    Type.INT64: (ValueKind.INT64, ValueKind.INT64_VEC, "q", 8, True),
    Type.UINT64: (ValueKind.UINT64, ValueKind.UINT64_VEC, "Q", 8, False),
}

# Floating point scalars and arrays (double is handled separately).
_FLOAT_TYPES = {
    Type.HALF: (ValueKind.HALF, ValueKind.HALF_VEC, "e"),
    Type.FLOAT: (ValueKind.FLOAT, ValueKind.FLOAT_VEC, "f"),
}

# Fixed-size vectors: kind, component format, component count, inline conversion.
_VEC_TYPES: dict[Type, tuple[ValueKind, str, int, Callable[[int], Any]]] = {
    Type.VEC2H: (ValueKind.VEC2H, "e", 2, float),
    Type.VEC2F: (ValueKind.VEC2F, "f", 2, float),
    Type.VEC2D: (ValueKind.VEC2D, "d", 2, float),
    Type.VEC2I: (ValueKind.VEC2I, "i", 2, int),
    Type.VEC3H: (ValueKind.VEC3H, "e", 3, float),
    Type.VEC3F: (ValueKind.VEC3F, "f", 3, float),
    Type.VEC3D: (ValueKind.VEC3D, "d", 3, float),
    Type.VEC3I: (ValueKind.VEC3I, "i", 3, int),
    Type.VEC4H: (ValueKind.VEC4H, "e", 4, float),
    Type.VEC4F: (ValueKind.VEC4F, "f", 4, float),
    Type.VEC4D: (ValueKind.VEC4D, "d", 4, float),
    Type.VEC4I: (ValueKind.VEC4I, "i", 4, int),
}

_MATRIX_TYPES = {
    Type.MATRIX2D: (ValueKind.MATRIX2D, 2),
    Type.MATRIX3D: (ValueKind.MATRIX3D, 3),
    Type.MATRIX4D: (ValueKind.MATRIX4D, 4),
}

_QUAT_TYPES = {
    Type.QUATH: (ValueKind.QUATH, "e"),
    Type.QUATF: (ValueKind.QUATF, "f"),
    Type.QUATD: (ValueKind.QUATD, "d"),
}

_ENUM_TYPES = {
    Type.SPECIFIER: (ValueKind.SPECIFIER, Specifier, "SDF specifier"),
    Type.PERMISSION: (ValueKind.PERMISSION, Permission, "permission"),
    Type.VARIABILITY: (ValueKind.VARIABILITY, Variability, "variability"),
}


def _require(condition: bool, message: str) -> None:
    if not condition:
        raise CrateError(message)


def _diagonal(values: tuple[int, ...]) -> list[float]:
    n = len(values)
    matrix = [0.0] * (n * n)
    for i, value in enumerate(values):
        matrix[i * n + i] = float(value)
    return matrix


class ValueDecoder:
    """Turns value representations of an opened crate file into :class:`Value` objects."""

    def __init__(self, crate: CrateFile) -> None:
        self.crate = crate

    @property
    def _stream(self) -> BinaryIO:
        return self.crate.stream

    def value(self, rep: ValueRep) -> Value:
        """Decode ``rep``, reading from the crate stream where needed."""
        ty = rep.ty()
        if ty == Type.INVALID:
            raise CrateError("Invalid value type")

        if ty in _INT_TYPES:
            return self._int(rep, *_INT_TYPES[ty])
        if ty in _FLOAT_TYPES:
            return self._float(rep, *_FLOAT_TYPES[ty])
        if ty in _VEC_TYPES:
            return self._vec(rep, *_VEC_TYPES[ty])
        if ty in _MATRIX_TYPES:
            return self._matrix(rep, *_MATRIX_TYPES[ty])
        if ty in _QUAT_TYPES:
            return self._quat(rep, *_QUAT_TYPES[ty])
        if ty in _ENUM_TYPES:
            return self._enum(rep, *_ENUM_TYPES[ty])

        handler = self._HANDLERS.get(ty)
        if handler is None:
            raise CrateError(f"Unsupported value type: {ty}")
        return handler(self, rep)

    # Low level stream reads.

    def _read(self, size: int) -> bytes:
        data = self._stream.read(size)
        if data is None or len(data) < size:
            raise CrateError(f"Unexpected end of data: wanted {size} bytes")
        return data

    def _unpack(self, fmt: str) -> tuple[Any, ...]:
        layout = struct.Struct("<" + fmt)
        return layout.unpack(self._read(layout.size))

    def _count(self) -> int:
        return self._unpack("Q")[0]

    def _u32s(self, count: int) -> list[int]:
        return list(self._unpack(f"{count}I")) if count else []

    def _value_rep(self) -> ValueRep:
        return ValueRep(self._unpack("Q")[0])

    def _skip_recursive_offset(self) -> None:
        # The stored offset is relative to its own start, so compensate its size.
        offset = self._unpack("q")[0]
        self._stream.seek(offset - 8, io.SEEK_CUR)

    # Table lookups.

    def _token(self, index: int) -> str:
        try:
            return self.crate.tokens[index]
        except IndexError:
            raise CrateError(f"Token index out of range: {index}") from None

    def _resolve_string(self, index: int) -> str:
        try:
            token_index = self.crate.strings[index]
        except IndexError:
            raise CrateError(f"String index out of range: {index}") from None
        return self._token(token_index)

    def _path(self, index: int) -> Path:
        try:
            return self.crate.paths[index]
        except IndexError:
            raise CrateError(f"Path index out of range: {index}") from None

    # Composite readers at the current stream position.

    def _read_string(self) -> str:
        return self._resolve_string(self._unpack("I")[0])

    def _read_path(self) -> Path:
        return self._path(self._unpack("I")[0])

    def _read_layer_offset(self) -> LayerOffset:
        offset, scale = self._unpack("dd")
        return LayerOffset(offset, scale)

    def _read_string_vec(self) -> list[str]:
        return [self._resolve_string(i) for i in self._u32s(self._count())]

    def _read_token_vec(self) -> list[str]:
        return [self._token(i) for i in self._u32s(self._count())]

    def _read_path_vec(self) -> list[Path]:
        return [self._path(i) for i in self._u32s(self._count())]

    def _read_reference(self) -> Reference:
        asset_path = self._read_string()
        prim_path = self._read_path()
        layer_offset = self._read_layer_offset()
        custom_data = self._read_custom_data()
        return Reference(asset_path, prim_path, layer_offset, custom_data)

    def _read_references(self) -> list[Reference]:
        return [self._read_reference() for _ in range(self._count())]

    def _read_payload(self) -> Payload:
        payload = Payload(asset_path=self._read_string(), prim_path=self._read_path())
        if self.crate.version() >= _PAYLOAD_LAYER_OFFSET_VERSION:
            payload.layer_offset = self._read_layer_offset()
        return payload

    def _read_payloads(self) -> list[Payload]:
        return [self._read_payload() for _ in range(self._count())]

    def _read_custom_data(self) -> dict[str, Value]:
        result: dict[str, Value] = {}
        for _ in range(self._count()):
            key = self._read_string()
            self._skip_recursive_offset()
            rep = self._value_rep()
            ty = rep.ty()
            _require(ty != Type.INVALID, "Can't parse dictionary value type")
            _require(ty != Type.DICTIONARY, "Nested dictionaries are not supported")

            saved = self._stream.tell()
            result[key] = self.value(rep)
            self._stream.seek(saved)
        return result

    def _read_list_op(self, rep: ValueRep, read_items: Callable[[], list[T]]) -> ListOp[T]:
        self._stream.seek(rep.payload())
        header = ListOpHeader(self._read(1)[0])
        op: ListOp[T] = ListOp(explicit=header.is_explicit())
        if header.has_explicit():
            op.explicit_items = read_items()
        if header.has_added():
            op.added_items = read_items()
        if header.has_prepend():
            op.prepended_items = read_items()
        if header.has_appended():
            op.appended_items = read_items()
        if header.has_deleted():
            op.deleted_items = read_items()
        if header.has_ordered():
            op.ordered_items = read_items()
        return op

    # Families of numeric types.

    def _int(
        self, rep: ValueRep, kind: ValueKind, vec_kind: ValueKind, fmt: str, width: int, signed: bool
    ) -> Value:
        if rep.is_array():
            return Value(vec_kind, read_ints(self.crate, rep, width, signed))
        return Value(kind, unpack_value(self.crate, rep, fmt))

    def _float(self, rep: ValueRep, kind: ValueKind, vec_kind: ValueKind, fmt: str) -> Value:
        if rep.is_array():
            return Value(vec_kind, read_floats(self.crate, rep, fmt))
        return Value(kind, unpack_value(self.crate, rep, fmt))

    def _double(self, rep: ValueRep) -> Value:
        if rep.is_array():
            return Value(ValueKind.DOUBLE_VEC, read_floats(self.crate, rep, "d"))
        if rep.is_inlined():
            # Inlined doubles are stored as single precision.
            return Value(ValueKind.DOUBLE, float(unpack_value(self.crate, rep, "f")))
        return Value(ValueKind.DOUBLE, unpack_value(self.crate, rep, "d"))

    def _vec(
        self, rep: ValueRep, kind: ValueKind, fmt: str, n: int, convert: Callable[[int], Any]
    ) -> Value:
        if rep.is_array():
            return Value(kind, read_vec_array(self.crate, rep, fmt, n))
        if rep.is_inlined():
            return Value(kind, [convert(x) for x in unpack_value(self.crate, rep, f"{n}b")])
        return Value(kind, list(unpack_value(self.crate, rep, f"{n}{fmt}")))

    def _matrix(self, rep: ValueRep, kind: ValueKind, n: int) -> Value:
        if rep.is_array():
            return Value(kind, read_vec_array(self.crate, rep, "d", n * n))
        if rep.is_inlined():
            return Value(kind, _diagonal(unpack_value(self.crate, rep, f"{n}b")))
        return Value(kind, list(unpack_value(self.crate, rep, f"{n * n}d")))

    def _quat(self, rep: ValueRep, kind: ValueKind, fmt: str) -> Value:
        if rep.is_array():
            return Value(kind, read_vec_array(self.crate, rep, fmt, 4))
        return Value(kind, list(unpack_value(self.crate, rep, f"4{fmt}")))

    def _enum(self, rep: ValueRep, kind: ValueKind, enum_type: type, what: str) -> Value:
        code = unpack_value(self.crate, rep, "i")
        try:
            return Value(kind, enum_type(code))
        except ValueError:
            raise CrateError(f"Unable to parse {what}: {code}") from None

    # Individual types.

    def _bool(self, rep: ValueRep) -> Value:
        if rep.is_array():
            return Value(ValueKind.BOOL_VEC, [b != 0 for b in read_vec_array(self.crate, rep, "B", 1)])
        return Value(ValueKind.BOOL, unpack_value(self.crate, rep, "i") != 0)

    def _uchar(self, rep: ValueRep) -> Value:
        if rep.is_array():
            return Value(ValueKind.UCHAR_VEC, read_vec_array(self.crate, rep, "B", 1))
        return Value(ValueKind.UCHAR, unpack_value(self.crate, rep, "B"))

    def _double_vector(self, rep: ValueRep) -> Value:
        return Value(ValueKind.DOUBLE_VEC, read_floats(self.crate, rep, "d"))

    def _string_vector(self, rep: ValueRep) -> Value:
        _require(not rep.is_inlined(), "String vector can't be inlined")
        self._stream.seek(rep.payload())
        return Value(ValueKind.STRING_VEC, self._read_string_vec())

    def _string(self, rep: ValueRep) -> Value:
        if rep.is_array():
            return Value(ValueKind.STRING_VEC, self._read_string_vec())
        index = unpack_value(self.crate, rep, "I")
        return Value(ValueKind.STRING, self._resolve_string(index))

    def _read_token_value(self, rep: ValueRep) -> str:
        return self._token(unpack_value(self.crate, rep, "Q"))

    def _asset_path(self, rep: ValueRep) -> Value:
        return Value(ValueKind.ASSET_PATH, self._read_token_value(rep))

    def _token_value(self, rep: ValueRep) -> Value:
        if rep.is_array():
            count, _ = unpack_array_len(self.crate, rep, ArrayKind.OTHER)
            return Value(ValueKind.TOKEN_VEC, [self._token(i) for i in self._u32s(count)])
        return Value(ValueKind.TOKEN, self._read_token_value(rep))

    def _token_vector(self, rep: ValueRep) -> Value:
        _require(not rep.is_inlined(), "Token vector can't be inlined")
        self._stream.seek(rep.payload())
        return Value(ValueKind.TOKEN_VEC, self._read_token_vec())

    def _token_list_op(self, rep: ValueRep) -> Value:
        _require(not rep.is_inlined(), "List op can't be inlined")
        return Value(ValueKind.TOKEN_LIST_OP, self._read_list_op(rep, self._read_token_vec))

    def _string_list_op(self, rep: ValueRep) -> Value:
        _require(not rep.is_inlined(), "List op can't be inlined")
        return Value(ValueKind.STRING_LIST_OP, self._read_list_op(rep, self._read_string_vec))

    def _path_list_op(self, rep: ValueRep) -> Value:
        _require(not rep.is_inlined(), "List op can't be inlined")
        return Value(ValueKind.PATH_LIST_OP, self._read_list_op(rep, self._read_path_vec))

    def _reference_list_op(self, rep: ValueRep) -> Value:
        _require(not rep.is_inlined(), "List op can't be inlined")
        return Value(ValueKind.REFERENCE_LIST_OP, self._read_list_op(rep, self._read_references))

    def _payload_list_op(self, rep: ValueRep) -> Value:
        return Value(ValueKind.PAYLOAD_LIST_OP, self._read_list_op(rep, self._read_payloads))

    def _require_plain(self, rep: ValueRep, what: str) -> None:
        _require(not rep.is_inlined(), f"{what} can't be inlined")
        _require(not rep.is_array(), f"{what} can't be an array")
        _require(not rep.is_compressed(), f"{what} can't be compressed")

    def _layer_offset_vector(self, rep: ValueRep) -> Value:
        self._require_plain(rep, "Layer offset vector")
        self._stream.seek(rep.payload())
        offsets = [self._read_layer_offset() for _ in range(self._count())]
        return Value(ValueKind.LAYER_OFFSET_VEC, offsets)

    def _payload(self, rep: ValueRep) -> Value:
        self._require_plain(rep, "Payload")
        self._stream.seek(rep.payload())
        return Value(ValueKind.PAYLOAD, self._read_payload())

    def _variant_selection_map(self, rep: ValueRep) -> Value:
        self._require_plain(rep, "Variant selection map")
        self._stream.seek(rep.payload())
        selections: dict[str, str] = {}
        for _ in range(self._count()):
            key = self._read_string()
            selections[key] = self._read_string()
        return Value(ValueKind.VARIANT_SELECTION_MAP, selections)

    def _time_samples(self, rep: ValueRep) -> Value:
        _require(not rep.is_inlined(), "Time samples can't be inlined")
        _require(not rep.is_compressed(), "Time samples can't be compressed")
        self._stream.seek(rep.payload())

        self._skip_recursive_offset()
        times_rep = self._value_rep()
        ty = times_rep.ty()
        _require(
            ty == Type.DOUBLE_VECTOR or (ty == Type.DOUBLE and times_rep.is_array()),
            "Invalid time samples type: expected either double vector or double array",
        )

        saved = self._stream.tell()
        times = self.value(times_rep)
        if times.kind is not ValueKind.DOUBLE_VEC:
            raise CrateError("Failed to read time samples")
        self._stream.seek(saved)

        self._skip_recursive_offset()
        count = self._count()
        _require(count == len(times.data), "Invalid time samples count")

        reps = [ValueRep(bits) for bits in self._unpack(f"{count}Q")] if count else []
        values = [self.value(value_rep) for value_rep in reps]
        return Value(ValueKind.TIME_SAMPLES, list(zip(times.data, values)))

    def _dictionary(self, rep: ValueRep) -> Value:
        if rep.is_inlined():
            return Value(ValueKind.DICTIONARY, {})
        _require(not rep.is_compressed(), "Dictionary can't be compressed")
        _require(not rep.is_array(), "Dictionary can't be an array")
        self._stream.seek(rep.payload())
        return Value(ValueKind.DICTIONARY, self._read_custom_data())

    def _value_block(self, rep: ValueRep) -> Value:
        return Value(ValueKind.VALUE_BLOCK)

    _HANDLERS: dict[Type, Callable[[ValueDecoder, ValueRep], Value]] = {
        Type.BOOL: _bool,
        Type.UCHAR: _uchar,
        Type.DOUBLE: _double,
        Type.DOUBLE_VECTOR: _double_vector,
        Type.STRING_VECTOR: _string_vector,
        Type.STRING: _string,
        Type.ASSET_PATH: _asset_path,
        Type.TOKEN: _token_value,
        Type.TOKEN_VECTOR: _token_vector,
        Type.TOKEN_LIST_OP: _token_list_op,
        Type.STRING_LIST_OP: _string_list_op,
        Type.PATH_LIST_OP: _path_list_op,
        Type.REFERENCE_LIST_OP: _reference_list_op,
        Type.PAYLOAD_LIST_OP: _payload_list_op,
        Type.LAYER_OFFSET_VECTOR: _layer_offset_vector,
        Type.PAYLOAD: _payload,
        Type.VARIANT_SELECTION_MAP: _variant_selection_map,
        Type.TIME_SAMPLES: _time_samples,
        Type.DICTIONARY: _dictionary,
        Type.VALUE_BLOCK: _value_block,
    }