import numpy as np
import pytest

from checkpoint_inspector.errors import UnsupportedTensorType
from checkpoint_inspector.model_formats.numeric_types import GGMLType, dequantize, lookup


def _f16(x: float) -> bytes:
    return np.asarray([x], dtype="<f2").tobytes()


def test_registry_geometry():
    q4k = lookup(GGMLType.Q4_K)
    assert (q4k.name, q4k.block_size, q4k.type_size) == ("Q4_K", 256, 144)
    assert q4k.row_size(512) == 288
    assert lookup(GGMLType.F32).row_size(10) == 40
    assert lookup(GGMLType.BF16).name == "BF16"
    assert lookup(1000) is None


def test_q4_0():
    block = _f16(2.0) + bytes([0x98] * 16)
    np.testing.assert_array_equal(dequantize(GGMLType.Q4_0, block), [0.0] * 16 + [2.0] * 16)


def test_q4_1():
    block = _f16(1.0) + _f16(-1.0) + bytes([0x21] * 16)
    np.testing.assert_array_equal(dequantize(GGMLType.Q4_1, block), [0.0] * 16 + [1.0] * 16)


def test_q5_0_high_bits():
    qh = (1).to_bytes(4, "little")
    block = _f16(1.0) + qh + bytes(16)
    out = dequantize(GGMLType.Q5_0, block)
    assert out[0] == 0.0
    np.testing.assert_array_equal(out[1:], [-16.0] * 31)


def test_q5_1():
    qh = (0xFFFFFFFF).to_bytes(4, "little")
    block = _f16(0.5) + _f16(1.0) + qh + bytes([0x11] * 16)
    # every element is 0b10001 = 17
    np.testing.assert_array_equal(dequantize(GGMLType.Q5_1, block), [9.5] * 32)


def test_q8_0_multiple_blocks():
    b0 = _f16(1.0) + np.arange(32, dtype=np.int8).tobytes()
    b1 = _f16(-2.0) + np.full(32, 3, dtype=np.int8).tobytes()
    out = dequantize(GGMLType.Q8_0, b0 + b1)
    np.testing.assert_array_equal(out[:32], np.arange(32))
    np.testing.assert_array_equal(out[32:], [-6.0] * 32)


def test_q4_k():
    block = _f16(1.0) + _f16(0.0) + bytes([0x01] * 12) + bytes([0x53] * 128)
    expected = np.tile([3.0] * 32 + [5.0] * 32, 4)
    np.testing.assert_array_equal(dequantize(GGMLType.Q4_K, block), expected)


def test_q6_k():
    ql = bytes([0x11] * 128)
    qh = bytes(64)
    scales = np.ones(16, dtype=np.int8).tobytes()
    block = ql + qh + scales + _f16(2.0)
    np.testing.assert_array_equal(dequantize(GGMLType.Q6_K, block), [-62.0] * 256)


def test_partial_block_is_ignored():
    block = _f16(1.0) + bytes(32) + b"\x01"
    assert dequantize(GGMLType.Q8_0, block).shape == (32,)


def test_types_without_decoder():
    with pytest.raises(UnsupportedTensorType, match="Q2_K"):
        dequantize(GGMLType.Q2_K, bytes(84))
    with pytest.raises(UnsupportedTensorType):
        dequantize(1000, b"")
