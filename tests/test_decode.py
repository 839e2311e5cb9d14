import io
import struct

import pytest
from lz4 import block as lz4_block

from usdcrate.coding import encode_ints
from usdcrate.crate import CrateFile
from usdcrate.decode import ValueDecoder
from usdcrate.layout import Bootstrap, CrateError, Type, ValueRep
from usdcrate.sdf import LayerOffset, Path, Specifier, Value, ValueKind


class _Buffer:
    def __init__(self):
        self.data = bytearray(32)

    def put(self, raw):
        offset = len(self.data)
        self.data += raw
        return offset


def _decoder(buf, ver=(0, 8, 0), tokens=(), strings=(), paths=()):
    boot = Bootstrap(ident=b"PXR-USDC", version=bytes([*ver, 0, 0, 0, 0, 0]), toc_offset=1)
    crate = CrateFile(io.BytesIO(bytes(buf.data)), boot)
    crate.tokens = list(tokens)
    crate.strings = list(strings)
    crate.paths = list(paths)
    return ValueDecoder(crate)


def _rep(ty, payload=0, *, array=False, inlined=False, compressed=False):
    bits = (int(ty) << 48) | payload
    if array:
        bits |= 1 << 63
    if inlined:
        bits |= 1 << 62
    if compressed:
        bits |= 1 << 61
    return ValueRep(bits)


def _compressed(raw):
    block = b"\0" + lz4_block.compress(raw, store_size=False)
    return struct.pack("<Q", len(block)) + block


def _u32(value):
    return struct.unpack("<I", struct.pack("<i", value))[0]


def test_inlined_int():
    dec = _decoder(_Buffer())
    assert dec.value(_rep(Type.INT, 12938, inlined=True)) == Value(ValueKind.INT, 12938)


def test_inlined_negative_int_round_trip():
    dec = _decoder(_Buffer())
    assert dec.value(_rep(Type.INT, _u32(-7), inlined=True)).data == -7


def test_inlined_bool_and_uchar():
    dec = _decoder(_Buffer())
    assert dec.value(_rep(Type.BOOL, 1, inlined=True)) == Value(ValueKind.BOOL, True)
    assert dec.value(_rep(Type.BOOL, 0, inlined=True)) == Value(ValueKind.BOOL, False)
    assert dec.value(_rep(Type.UCHAR, 128, inlined=True)) == Value(ValueKind.UCHAR, 128)


def test_inlined_double_is_single_precision():
    bits = struct.unpack("<I", struct.pack("<f", 4.5))[0]
    dec = _decoder(_Buffer())
    assert dec.value(_rep(Type.DOUBLE, bits, inlined=True)) == Value(ValueKind.DOUBLE, 4.5)


def test_stored_double():
    buf = _Buffer()
    offset = buf.put(struct.pack("<d", 4.3))
    dec = _decoder(buf)
    assert dec.value(_rep(Type.DOUBLE, offset)) == Value(ValueKind.DOUBLE, 4.3)


def test_token_and_string():
    tokens = ["World", "Test string"]
    dec = _decoder(_Buffer(), tokens=tokens, strings=[1])
    assert dec.value(_rep(Type.TOKEN, 0, inlined=True)) == Value(ValueKind.TOKEN, "World")
    assert dec.value(_rep(Type.STRING, 0, inlined=True)) == Value(ValueKind.STRING, "Test string")
    assert dec.value(_rep(Type.ASSET_PATH, 1, inlined=True)).data == "Test string"


def test_token_index_out_of_range():
    dec = _decoder(_Buffer(), tokens=["only"])
    with pytest.raises(CrateError):
        dec.value(_rep(Type.TOKEN, 5, inlined=True))


def test_inlined_vec3f():
    payload = int.from_bytes(bytes([0, 1, 0, 0]), "little")
    dec = _decoder(_Buffer())
    assert dec.value(_rep(Type.VEC3F, payload, inlined=True)) == Value(ValueKind.VEC3F, [0.0, 1.0, 0.0])


def test_stored_vec3d():
    buf = _Buffer()
    offset = buf.put(struct.pack("<3d", 0.0, 1.0, 0.0))
    dec = _decoder(buf)
    assert dec.value(_rep(Type.VEC3D, offset)) == Value(ValueKind.VEC3D, [0.0, 1.0, 0.0])


def test_inlined_matrix_is_diagonal():
    payload = int.from_bytes(bytes([1, 1, 1, 0]), "little")
    dec = _decoder(_Buffer())
    result = dec.value(_rep(Type.MATRIX3D, payload, inlined=True))
    assert result.kind is ValueKind.MATRIX3D
    assert len(result.data) == 9
    assert [result.data[i * 4] for i in range(3)] == [1.0, 1.0, 1.0]
    assert sum(result.data) == 3.0


def test_stored_quatf():
    buf = _Buffer()
    offset = buf.put(struct.pack("<4f", 2.5, 8.5, 4.5, 1.5))
    dec = _decoder(buf)
    assert dec.value(_rep(Type.QUATF, offset)) == Value(ValueKind.QUATF, [2.5, 8.5, 4.5, 1.5])


def test_uncompressed_uint_array():
    values = [1, 2, 4, 5, 3]
    buf = _Buffer()
    offset = buf.put(struct.pack("<Q", len(values)) + struct.pack(f"<{len(values)}I", *values))
    dec = _decoder(buf)
    assert dec.value(_rep(Type.UINT, offset, array=True)) == Value(ValueKind.UINT_VEC, values)


def test_compressed_int_array():
    values = [123, 124, 125, 100125, 100125, 100126, 100126]
    buf = _Buffer()
    offset = buf.put(struct.pack("<Q", len(values)) + _compressed(encode_ints(values, 4)))
    dec = _decoder(buf)
    result = dec.value(_rep(Type.INT, offset, array=True, compressed=True))
    assert result == Value(ValueKind.INT_VEC, values)


def test_empty_array():
    dec = _decoder(_Buffer())
    assert dec.value(_rep(Type.FLOAT, 0, array=True)) == Value(ValueKind.FLOAT_VEC, [])


def test_bool_array():
    flags = [1, 1, 0, 0, 1, 0]
    buf = _Buffer()
    offset = buf.put(struct.pack("<Q", len(flags)) + bytes(flags))
    dec = _decoder(buf)
    assert dec.value(_rep(Type.BOOL, offset, array=True)).data == [True, True, False, False, True, False]


def test_double_array():
    values = [0.5, 1.5, 2.25]
    buf = _Buffer()
    offset = buf.put(struct.pack("<Q", 3) + struct.pack("<3d", *values))
    dec = _decoder(buf)
    assert dec.value(_rep(Type.DOUBLE, offset, array=True)) == Value(ValueKind.DOUBLE_VEC, values)


def test_token_vector():
    buf = _Buffer()
    offset = buf.put(struct.pack("<Q", 2) + struct.pack("<2I", 1, 0))
    dec = _decoder(buf, tokens=["Materials", "Object"])
    assert dec.value(_rep(Type.TOKEN_VECTOR, offset)) == Value(ValueKind.TOKEN_VEC, ["Object", "Materials"])


def test_token_list_op_prepended():
    buf = _Buffer()
    offset = buf.put(bytes([1 << 5]) + struct.pack("<Q", 1) + struct.pack("<I", 0))
    dec = _decoder(buf, tokens=["displayVariantSet"])
    result = dec.value(_rep(Type.TOKEN_LIST_OP, offset))
    assert result.kind is ValueKind.TOKEN_LIST_OP
    assert result.data.prepended_items == ["displayVariantSet"]
    assert result.data.explicit is False
    assert result.data.explicit_items == []


def test_path_list_op_explicit():
    buf = _Buffer()
    offset = buf.put(bytes([0b11]) + struct.pack("<Q", 1) + struct.pack("<I", 1))
    paths = [Path("/"), Path("/TexModel/boardMat.inputs:frame")]
    dec = _decoder(buf, paths=paths)
    result = dec.value(_rep(Type.PATH_LIST_OP, offset))
    assert result.data.explicit is True
    assert result.data.explicit_items == [paths[1]]


def test_reference_list_op():
    buf = _Buffer()
    ref = struct.pack("<I", 0) + struct.pack("<I", 1) + struct.pack("<dd", 0.0, 1.0) + struct.pack("<Q", 0)
    offset = buf.put(bytes([0b11]) + struct.pack("<Q", 1) + ref)
    dec = _decoder(buf, tokens=["Marble.usd"], strings=[0], paths=[Path("/"), Path("/Foo/Bar")])
    result = dec.value(_rep(Type.REFERENCE_LIST_OP, offset))
    (reference,) = result.data.explicit_items
    assert reference.asset_path == "Marble.usd"
    assert reference.prim_path == Path("/Foo/Bar")
    assert reference.layer_offset == LayerOffset(0.0, 1.0)
    assert reference.custom_data == {}


def test_payload_with_layer_offset():
    buf = _Buffer()
    offset = buf.put(struct.pack("<II", 0, 1) + struct.pack("<dd", 0.0, 1.0))
    dec = _decoder(buf, tokens=["./payload.usda"], strings=[0], paths=[Path("/"), Path("/MySphere")])
    payload = dec.value(_rep(Type.PAYLOAD, offset)).data
    assert payload.asset_path == "./payload.usda"
    assert payload.prim_path == Path("/MySphere")
    assert payload.layer_offset == LayerOffset(0.0, 1.0)


def test_payload_before_layer_offsets():
    buf = _Buffer()
    offset = buf.put(struct.pack("<II", 0, 1))
    dec = _decoder(buf, ver=(0, 7, 0), tokens=["./payload.usda"], strings=[0], paths=[Path("/"), Path("/A")])
    assert dec.value(_rep(Type.PAYLOAD, offset)).data.layer_offset is None


def test_variant_selection_map():
    buf = _Buffer()
    offset = buf.put(struct.pack("<Q", 1) + struct.pack("<II", 0, 1))
    dec = _decoder(buf, tokens=["displayVariantSet", "`${VARIANT_CHOICE}`"], strings=[0, 1])
    result = dec.value(_rep(Type.VARIANT_SELECTION_MAP, offset))
    assert result.data == {"displayVariantSet": "`${VARIANT_CHOICE}`"}


def test_inlined_dictionary_is_empty():
    dec = _decoder(_Buffer())
    assert dec.value(_rep(Type.DICTIONARY, 0, inlined=True)) == Value(ValueKind.DICTIONARY, {})


def test_dictionary():
    buf = _Buffer()
    inner = _rep(Type.STRING, 1, inlined=True)
    offset = buf.put(struct.pack("<Q", 1) + struct.pack("<I", 0) + struct.pack("<q", 8) + struct.pack("<Q", inner.bits))
    dec = _decoder(buf, tokens=["test", "Test string"], strings=[0, 1])
    result = dec.value(_rep(Type.DICTIONARY, offset))
    assert result.data == {"test": Value(ValueKind.STRING, "Test string")}


def test_nested_dictionary_rejected():
    buf = _Buffer()
    inner = _rep(Type.DICTIONARY, 0, inlined=True)
    offset = buf.put(struct.pack("<Q", 1) + struct.pack("<I", 0) + struct.pack("<q", 8) + struct.pack("<Q", inner.bits))
    dec = _decoder(buf, tokens=["test"], strings=[0])
    with pytest.raises(CrateError):
        dec.value(_rep(Type.DICTIONARY, offset))


def _time_samples_buffer(sample_count):
    buf = _Buffer()
    times_at = buf.put(struct.pack("<Q", 2) + struct.pack("<2d", 4.0, 5.0))
    forty = struct.unpack("<I", struct.pack("<f", 40.0))[0]
    reps = [_rep(Type.DOUBLE, forty, inlined=True), _rep(Type.VALUE_BLOCK)]
    times_rep = _rep(Type.DOUBLE_VECTOR, times_at)
    body = (
        struct.pack("<q", 8)
        + struct.pack("<Q", times_rep.bits)
        + struct.pack("<q", 8)
        + struct.pack("<Q", sample_count)
        + b"".join(struct.pack("<Q", r.bits) for r in reps)
    )
    return buf, buf.put(body)


def test_time_samples():
    buf, offset = _time_samples_buffer(2)
    dec = _decoder(buf)
    result = dec.value(_rep(Type.TIME_SAMPLES, offset))
    assert result.kind is ValueKind.TIME_SAMPLES
    assert [t for t, _ in result.data] == [4.0, 5.0]
    assert result.data[0][1] == Value(ValueKind.DOUBLE, 40.0)
    assert result.data[1][1] == Value(ValueKind.VALUE_BLOCK)


def test_time_samples_count_mismatch():
    buf, offset = _time_samples_buffer(3)
    dec = _decoder(buf)
    with pytest.raises(CrateError):
        dec.value(_rep(Type.TIME_SAMPLES, offset))


def test_specifier():
    dec = _decoder(_Buffer())
    assert dec.value(_rep(Type.SPECIFIER, 1, inlined=True)) == Value(ValueKind.SPECIFIER, Specifier.OVER)
    with pytest.raises(CrateError):
        dec.value(_rep(Type.SPECIFIER, 9, inlined=True))


def test_layer_offset_vector():
    buf = _Buffer()
    offset = buf.put(struct.pack("<Q", 1) + struct.pack("<dd", 0.0, 1.0))
    dec = _decoder(buf)
    assert dec.value(_rep(Type.LAYER_OFFSET_VECTOR, offset)).data == [LayerOffset(0.0, 1.0)]


def test_invalid_and_unsupported_types():
    dec = _decoder(_Buffer())
    with pytest.raises(CrateError):
        dec.value(_rep(Type.INVALID, 0, inlined=True))
    with pytest.raises(CrateError):
        dec.value(_rep(Type.INT_LIST_OP, 0))
    with pytest.raises(CrateError):
        dec.value(ValueRep(200 << 48))


def test_truncated_data():
    buf = _Buffer()
    offset = buf.put(b"\x01\x02")
    dec = _decoder(buf)
    with pytest.raises(CrateError):
        dec.value(_rep(Type.DOUBLE, offset))