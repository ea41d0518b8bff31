# checkpoint_inspector/model_formats/numeric_types.py
"""
GGML numeric types: block geometry and dequantization.

Every ggml type has a block size (elements per block) and a block byte size.
Plain types have a block size of 1. Block-quantized types are decoded with
vectorised numpy routines; types without a decoder are listed for size
computation only.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Callable, Dict, Optional

import numpy as np

from checkpoint_inspector.errors import UnsupportedTensorType

Dequantizer = Callable[[bytes, str], np.ndarray]


class GGMLType(IntEnum):
    """GGML tensor types, including quantization."""

    F32 = 0
    F16 = 1
    Q4_0 = 2
    Q4_1 = 3
    # 4 and 5 (Q4_2, Q4_3) were removed from ggml
    Q5_0 = 6
    Q5_1 = 7
    Q8_0 = 8
    Q8_1 = 9
    Q2_K = 10
    Q3_K = 11
    Q4_K = 12
    Q5_K = 13
    Q6_K = 14
    Q8_K = 15
    IQ2_XXS = 16
    IQ2_XS = 17
    IQ3_XXS = 18
    IQ1_S = 19
    IQ4_NL = 20
    IQ3_S = 21
    IQ2_S = 22
    IQ4_XS = 23
    I8 = 24
    I16 = 25
    I32 = 26
    I64 = 27
    F64 = 28
    IQ1_M = 29
    BF16 = 30
    TQ1_0 = 34
    TQ2_0 = 35
    MXFP4 = 39


@dataclass(frozen=True)
class NumericType:
    """Properties of a GGML type.

    Attributes:
        name: Canonical ggml type name.
        block_size: Elements per block.
        type_size: Bytes per block.
        to_float: Decoder from raw bytes to a flat float32 array, if available.
    """

    name: str
    block_size: int
    type_size: int
    to_float: Optional[Dequantizer] = None

    def row_size(self, n_elements: int) -> int:
        """Bytes needed for ``n_elements`` consecutive elements."""
        return self.type_size * n_elements // self.block_size


# ---------------------------------------------------------------------------
# Dequantizers (block layouts follow ggml-common.h)
# ---------------------------------------------------------------------------


def _blocks(data: bytes, block_bytes: int) -> np.ndarray:
    n_blocks = len(data) // block_bytes
    if n_blocks * block_bytes != len(data):
        data = data[: n_blocks * block_bytes]
    return np.frombuffer(data, dtype=np.uint8).reshape(n_blocks, block_bytes)


def _f16_column(raw: np.ndarray, start: int, byteorder: str) -> np.ndarray:
    """Extract a per-block float16 field as a float32 column vector."""
    col = raw[:, start : start + 2].copy().view(np.dtype(np.float16).newbyteorder(byteorder))
    return col.astype(np.float32)


def _plain(np_dtype: str) -> Dequantizer:
    def decode(data: bytes, byteorder: str) -> np.ndarray:
        dt = np.dtype(np_dtype).newbyteorder(byteorder)
        n = len(data) // dt.itemsize
        return np.frombuffer(data, dtype=dt, count=n).astype(np.float32)

    return decode


def _bf16(data: bytes, byteorder: str) -> np.ndarray:
    n = len(data) // 2
    bits = np.frombuffer(data, dtype=np.dtype(np.uint16).newbyteorder(byteorder), count=n)
    return (bits.astype(np.uint32) << 16).view(np.float32)


def _q4_0(data: bytes, byteorder: str) -> np.ndarray:
    # d: f16, qs: u8[16] (low nibbles = first 16 elements)
    raw = _blocks(data, 18)
    d = _f16_column(raw, 0, byteorder)
    qs = raw[:, 2:18]
    q = np.concatenate([qs & 0x0F, qs >> 4], axis=1).astype(np.int8) - 8
    return (d * q).reshape(-1)


def _q4_1(data: bytes, byteorder: str) -> np.ndarray:
    raw = _blocks(data, 20)
    d = _f16_column(raw, 0, byteorder)
    m = _f16_column(raw, 2, byteorder)
    qs = raw[:, 4:20]
    q = np.concatenate([qs & 0x0F, qs >> 4], axis=1).astype(np.float32)
    return (d * q + m).reshape(-1)


def _q5_high_bits(raw: np.ndarray, start: int, byteorder: str) -> np.ndarray:
    qh = raw[:, start : start + 4].copy().view(np.dtype(np.uint32).newbyteorder(byteorder))
    shifts = np.arange(32, dtype=np.uint32)
    # bit j of qh is the fifth bit of element j
    return (((qh >> shifts) & 1) << 4).astype(np.uint8)


def _q5_0(data: bytes, byteorder: str) -> np.ndarray:
    raw = _blocks(data, 22)
    d = _f16_column(raw, 0, byteorder)
    high = _q5_high_bits(raw, 2, byteorder)
    qs = raw[:, 6:22]
    low = np.concatenate([qs & 0x0F, qs >> 4], axis=1)
    q = (low | high).astype(np.int8) - 16
    return (d * q).reshape(-1)


def _q5_1(data: bytes, byteorder: str) -> np.ndarray:
    raw = _blocks(data, 24)
    d = _f16_column(raw, 0, byteorder)
    m = _f16_column(raw, 2, byteorder)
    high = _q5_high_bits(raw, 4, byteorder)
    qs = raw[:, 8:24]
    low = np.concatenate([qs & 0x0F, qs >> 4], axis=1)
    q = (low | high).astype(np.float32)
    return (d * q + m).reshape(-1)


def _q8_0(data: bytes, byteorder: str) -> np.ndarray:
    raw = _blocks(data, 34)
    d = _f16_column(raw, 0, byteorder)
    qs = raw[:, 2:34].view(np.int8).astype(np.float32)
    return (d * qs).reshape(-1)


def _unpack_k_scales(scales_raw: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Decode 8 (scale, min) pairs from 12 packed bytes (6 bits each)."""
    n = len(scales_raw)
    sc = np.empty((n, 8), dtype=np.uint8)
    mn = np.empty((n, 8), dtype=np.uint8)
    sc[:, 0:4] = scales_raw[:, 0:4] & 0x3F
    mn[:, 0:4] = scales_raw[:, 4:8] & 0x3F
    sc[:, 4:8] = (scales_raw[:, 8:12] & 0x0F) | ((scales_raw[:, 0:4] >> 6) << 4)
    mn[:, 4:8] = (scales_raw[:, 8:12] >> 4) | ((scales_raw[:, 4:8] >> 6) << 4)
    return sc, mn


def _q4_k(data: bytes, byteorder: str) -> np.ndarray:
    # d f16, dmin f16, scales u8[12], qs u8[128]; 4 groups of 64 elements
    raw = _blocks(data, 144)
    n = raw.shape[0]
    d = _f16_column(raw, 0, byteorder)
    dmin = _f16_column(raw, 2, byteorder)
    sc, mn = _unpack_k_scales(raw[:, 4:16])
    qs = raw[:, 16:144].reshape(n, 4, 32)
    scale = sc.astype(np.float32).reshape(n, 4, 2) * d[:, :, None]
    offset = mn.astype(np.float32).reshape(n, 4, 2) * dmin[:, :, None]
    out = np.empty((n, 4, 2, 32), dtype=np.float32)
    out[:, :, 0, :] = scale[:, :, 0:1] * (qs & 0x0F) - offset[:, :, 0:1]
    out[:, :, 1, :] = scale[:, :, 1:2] * (qs >> 4) - offset[:, :, 1:2]
    return out.reshape(-1)


def _q6_k(data: bytes, byteorder: str) -> np.ndarray:
    # ql u8[128], qh u8[64], scales i8[16], d f16; 2 halves of 128 elements
    raw = _blocks(data, 210)
    n = raw.shape[0]
    ql = raw[:, 0:128]
    qh = raw[:, 128:192]
    sc = raw[:, 192:208].view(np.int8).astype(np.float32)
    d = _f16_column(raw, 208, byteorder)
    sub = np.arange(32) >> 4
    out = np.empty((n, 2, 4, 32), dtype=np.float32)
    for h in range(2):
        ql_a = ql[:, h * 64 : h * 64 + 32]
        ql_b = ql[:, h * 64 + 32 : h * 64 + 64]
        qh_h = qh[:, h * 32 : h * 32 + 32]
        quads = (
            (ql_a & 0x0F) | (((qh_h >> 0) & 3) << 4),
            (ql_b & 0x0F) | (((qh_h >> 2) & 3) << 4),
            (ql_a >> 4) | (((qh_h >> 4) & 3) << 4),
            (ql_b >> 4) | (((qh_h >> 6) & 3) << 4),
        )
        for k, q in enumerate(quads):
            s = sc[:, h * 8 + sub + 2 * k] * d
            out[:, h, k, :] = s * (q.astype(np.int16) - 32)
    return out.reshape(-1)


# Mapping from GGMLType to its properties
NUMERIC_TYPES: Dict[int, NumericType] = {
    GGMLType.F32: NumericType("F32", 1, 4, _plain("float32")),
    GGMLType.F16: NumericType("F16", 1, 2, _plain("float16")),
    GGMLType.Q4_0: NumericType("Q4_0", 32, 18, _q4_0),
    GGMLType.Q4_1: NumericType("Q4_1", 32, 20, _q4_1),
    GGMLType.Q5_0: NumericType("Q5_0", 32, 22, _q5_0),
    GGMLType.Q5_1: NumericType("Q5_1", 32, 24, _q5_1),
    GGMLType.Q8_0: NumericType("Q8_0", 32, 34, _q8_0),
    GGMLType.Q8_1: NumericType("Q8_1", 32, 36),
    GGMLType.Q2_K: NumericType("Q2_K", 256, 84),
    GGMLType.Q3_K: NumericType("Q3_K", 256, 110),
    GGMLType.Q4_K: NumericType("Q4_K", 256, 144, _q4_k),
    GGMLType.Q5_K: NumericType("Q5_K", 256, 176),
    GGMLType.Q6_K: NumericType("Q6_K", 256, 210, _q6_k),
    GGMLType.Q8_K: NumericType("Q8_K", 256, 292),
    GGMLType.IQ2_XXS: NumericType("IQ2_XXS", 256, 66),
    GGMLType.IQ2_XS: NumericType("IQ2_XS", 256, 74),
    GGMLType.IQ3_XXS: NumericType("IQ3_XXS", 256, 98),
    GGMLType.IQ1_S: NumericType("IQ1_S", 256, 50),
    GGMLType.IQ4_NL: NumericType("IQ4_NL", 32, 18),
    GGMLType.IQ3_S: NumericType("IQ3_S", 256, 110),
    GGMLType.IQ2_S: NumericType("IQ2_S", 256, 82),
    GGMLType.IQ4_XS: NumericType("IQ4_XS", 256, 136),
    GGMLType.I8: NumericType("I8", 1, 1, _plain("int8")),
    GGMLType.I16: NumericType("I16", 1, 2, _plain("int16")),
    GGMLType.I32: NumericType("I32", 1, 4, _plain("int32")),
    GGMLType.I64: NumericType("I64", 1, 8, _plain("int64")),
    GGMLType.F64: NumericType("F64", 1, 8, _plain("float64")),
    GGMLType.IQ1_M: NumericType("IQ1_M", 256, 56),
    GGMLType.BF16: NumericType("BF16", 1, 2, _bf16),
    GGMLType.TQ1_0: NumericType("TQ1_0", 256, 54),
    GGMLType.TQ2_0: NumericType("TQ2_0", 256, 66),
    GGMLType.MXFP4: NumericType("MXFP4", 32, 17),
}


def lookup(ggml_type: int) -> Optional[NumericType]:
    """Return the registry entry for a ggml type id, or None if unknown."""
    return NUMERIC_TYPES.get(ggml_type)


def dequantize(ggml_type: int, data: bytes, *, byteorder: str = "<") -> np.ndarray:
    """Decode raw bytes of a registered type to a flat float32 array.

    Trailing bytes that do not fill a whole block are ignored.
    """
    info = lookup(ggml_type)
    if info is None:
        raise UnsupportedTensorType(f"ggml type {ggml_type}")
    if info.to_float is None:
        raise UnsupportedTensorType(info.name)
    return info.to_float(data, byteorder)
