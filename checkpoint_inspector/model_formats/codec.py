# checkpoint_inspector/model_formats/codec.py
"""
Byte-order codec: raw tensor bytes → float32 / float64 numpy arrays.

Fixed-width element types are decoded inline; ``ExternalType`` tensors are
handed to the numeric-type registry. A trailing partial element is ignored.
"""
from __future__ import annotations

from typing import Union

import numpy as np

from checkpoint_inspector.errors import UnsupportedTensorType
from checkpoint_inspector.model_formats import numeric_types
from checkpoint_inspector.model_formats.tensor import DType, ExternalType, TensorType

LE = "<"
BE = ">"

_NUMPY_DTYPES = {
    DType.BOOL: "bool",
    DType.U8: "uint8",
    DType.I8: "int8",
    DType.U16: "uint16",
    DType.I16: "int16",
    DType.U32: "uint32",
    DType.I32: "int32",
    DType.U64: "uint64",
    DType.I64: "int64",
    DType.F16: "float16",
    DType.F32: "float32",
    DType.F64: "float64",
}


def _build_f8_table(exp_bits: int, man_bits: int, bias: int, *, ieee_specials: bool) -> np.ndarray:
    """Value of every 8-bit pattern of a sign/exponent/mantissa float format."""
    codes = np.arange(256, dtype=np.int64)
    sign = np.where(codes >> 7, -1.0, 1.0)
    exp = (codes >> man_bits) & ((1 << exp_bits) - 1)
    man = codes & ((1 << man_bits) - 1)
    frac = man / float(1 << man_bits)
    normal = sign * (1.0 + frac) * np.exp2(exp.astype(np.float64) - bias)
    subnormal = sign * frac * np.exp2(1.0 - bias)
    table = np.where(exp == 0, subnormal, normal)
    max_exp = (1 << exp_bits) - 1
    if ieee_specials:
        # E5M2: all-ones exponent encodes inf / nan
        table = np.where((exp == max_exp) & (man == 0), sign * np.inf, table)
        table = np.where((exp == max_exp) & (man != 0), np.nan, table)
    else:
        # E4M3 (fn): no infinities, only S.1111.111 is nan
        table = np.where((exp == max_exp) & (man == (1 << man_bits) - 1), np.nan, table)
    return table


_F8_TABLES = {
    DType.F8_E4M3: _build_f8_table(4, 3, 7, ieee_specials=False),
    DType.F8_E5M2: _build_f8_table(5, 2, 15, ieee_specials=True),
}


def _decode(raw: bytes, dtype: TensorType, byteorder: str) -> np.ndarray:
    if isinstance(dtype, ExternalType):
        return numeric_types.dequantize(dtype.ggml_type, raw, byteorder=byteorder)
    if not isinstance(dtype, DType):
        raise UnsupportedTensorType(str(dtype))

    n = len(raw) // dtype.itemsize
    if dtype in _F8_TABLES:
        codes = np.frombuffer(raw, dtype=np.uint8, count=n)
        return _F8_TABLES[dtype][codes]
    if dtype is DType.BF16:
        bits = np.frombuffer(raw, dtype=np.dtype(np.uint16).newbyteorder(byteorder), count=n)
        return (bits.astype(np.uint32) << 16).view(np.float32)
    np_dtype = np.dtype(_NUMPY_DTYPES[dtype]).newbyteorder(byteorder)
    return np.frombuffer(raw, dtype=np_dtype, count=n)


def decode(
    raw: Union[bytes, bytearray, memoryview],
    dtype: TensorType,
    *,
    byteorder: str = LE,
    out: type = np.float32,
) -> np.ndarray:
    """Decode ``raw`` as elements of ``dtype`` into a flat array of ``out``.

    Args:
        raw: Encoded tensor bytes.
        dtype: Declared element type.
        byteorder: ``"<"`` (little-endian) or ``">"`` (big-endian).
        out: ``np.float32`` or ``np.float64``.

    Raises:
        UnsupportedTensorType: The type has no float decoder.
    """
    if out not in (np.float32, np.float64):
        raise ValueError(f"output must be float32 or float64, got {out!r}")
    values = _decode(bytes(raw), dtype, byteorder)
    # astype always copies, so the result never aliases the read buffer
    return values.astype(out)


def decode_f32(raw: Union[bytes, bytearray, memoryview], dtype: TensorType, *, byteorder: str = LE) -> np.ndarray:
    return decode(raw, dtype, byteorder=byteorder, out=np.float32)


def decode_f64(raw: Union[bytes, bytearray, memoryview], dtype: TensorType, *, byteorder: str = LE) -> np.ndarray:
    return decode(raw, dtype, byteorder=byteorder, out=np.float64)
