import numpy as np
import pytest

from checkpoint_inspector.errors import UnsupportedTensorType
from checkpoint_inspector.model_formats import codec
from checkpoint_inspector.model_formats.numeric_types import GGMLType
from checkpoint_inspector.model_formats.tensor import DType, ExternalType, UnknownType, parse_dtype


def test_f32_little_and_big_endian():
    values = np.asarray([1.0, -2.5, 3.0], dtype=np.float32)
    le = codec.decode_f32(values.astype("<f4").tobytes(), DType.F32)
    be = codec.decode_f32(values.astype(">f4").tobytes(), DType.F32, byteorder=codec.BE)
    np.testing.assert_array_equal(le, values)
    np.testing.assert_array_equal(be, values)


def test_integers_and_bool_widen_to_float():
    raw = np.asarray([-3, 0, 7], dtype="<i2").tobytes()
    np.testing.assert_array_equal(codec.decode_f64(raw, DType.I16), [-3.0, 0.0, 7.0])
    np.testing.assert_array_equal(codec.decode_f32(b"\x00\x01\x01", DType.BOOL), [0.0, 1.0, 1.0])
    raw64 = np.asarray([2**40], dtype="<u8").tobytes()
    assert codec.decode_f64(raw64, DType.U64)[0] == float(2**40)


def test_bf16():
    # 1.0 and -2.0 in bfloat16
    raw = bytes([0x80, 0x3F, 0x00, 0xC0])
    np.testing.assert_array_equal(codec.decode_f32(raw, DType.BF16), [1.0, -2.0])
    raw_be = bytes([0x3F, 0x80])
    np.testing.assert_array_equal(codec.decode_f32(raw_be, DType.BF16, byteorder=codec.BE), [1.0])


def test_f8_e4m3():
    out = codec.decode_f32(bytes([0x38, 0xB8, 0x7E, 0x7F, 0x01]), DType.F8_E4M3)
    assert out[0] == 1.0
    assert out[1] == -1.0
    assert out[2] == 448.0
    assert np.isnan(out[3])
    assert out[4] == 2.0 ** -9


def test_f8_e5m2():
    out = codec.decode_f32(bytes([0x3C, 0x7C, 0xFC, 0x7D, 0x7B]), DType.F8_E5M2)
    assert out[0] == 1.0
    assert out[1] == np.inf
    assert out[2] == -np.inf
    assert np.isnan(out[3])
    assert out[4] == 57344.0


def test_trailing_partial_element_is_ignored():
    raw = np.asarray([4.0], dtype="<f4").tobytes() + b"\x01\x02"
    np.testing.assert_array_equal(codec.decode_f32(raw, DType.F32), [4.0])


def test_result_does_not_alias_input():
    raw = bytearray(np.asarray([1.0, 2.0], dtype="<f4").tobytes())
    out = codec.decode_f32(raw, DType.F32)
    raw[:] = b"\x00" * len(raw)
    np.testing.assert_array_equal(out, [1.0, 2.0])
    assert out.flags.writeable


def test_external_types_use_registry():
    block = np.float16(2.0).tobytes() + bytes([0x98] * 16)
    out = codec.decode_f32(block, ExternalType(GGMLType.Q4_0, "Q4_0"))
    np.testing.assert_array_equal(out, [0.0] * 16 + [2.0] * 16)


def test_unknown_type_is_unsupported():
    with pytest.raises(UnsupportedTensorType, match="unsupported tensor type F4"):
        codec.decode_f32(b"\x00", UnknownType("F4"))


def test_output_type_is_validated():
    with pytest.raises(ValueError):
        codec.decode(b"", DType.F32, out=np.int32)


def test_parse_dtype():
    assert parse_dtype("BF16") is DType.BF16
    assert parse_dtype("F8_E4M3") is DType.F8_E4M3
    assert parse_dtype("Q4") == UnknownType("Q4")
    assert DType.F64.itemsize == 8
    assert str(DType.I8) == "I8"
