"""Shared builders for in-memory safetensors and GGUF files."""
from __future__ import annotations

import json
import struct
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
import pytest

from checkpoint_inspector.model_formats.gguf.gguf import GGUFValueType

_GGUF_SCALARS = {
    GGUFValueType.UINT8: "B",
    GGUFValueType.INT8: "b",
    GGUFValueType.UINT16: "H",
    GGUFValueType.INT16: "h",
    GGUFValueType.UINT32: "I",
    GGUFValueType.INT32: "i",
    GGUFValueType.FLOAT32: "f",
    GGUFValueType.BOOL: "B",
    GGUFValueType.UINT64: "Q",
    GGUFValueType.INT64: "q",
    GGUFValueType.FLOAT64: "d",
}


def build_safetensors(
    tensors: Dict[str, Tuple[str, Sequence[int], bytes]],
    metadata: Optional[Dict[str, str]] = None,
    *,
    pad: bool = True,
) -> bytes:
    """Safetensors bytes holding ``tensors`` (name -> (dtype, shape, data)) in order."""
    header: Dict[str, Any] = {}
    if metadata is not None:
        header["__metadata__"] = metadata
    data = b""
    for name, (dtype, shape, raw) in tensors.items():
        header[name] = {
            "dtype": dtype,
            "shape": list(shape),
            "data_offsets": [len(data), len(data) + len(raw)],
        }
        data += raw
    body = json.dumps(header).encode("utf-8")
    if pad:
        body += b" " * ((8 - len(body) % 8) % 8)
    return struct.pack("<Q", len(body)) + body + data


def _gguf_str(s: str) -> bytes:
    raw = s.encode("utf-8")
    return struct.pack("<Q", len(raw)) + raw


def gguf_value(vtype: GGUFValueType, value: Any, elem_type: Optional[GGUFValueType] = None) -> bytes:
    """Encode a metadata value payload (without its type tag)."""
    if vtype == GGUFValueType.STRING:
        return _gguf_str(value)
    if vtype == GGUFValueType.ARRAY:
        assert elem_type is not None
        out = struct.pack("<IQ", elem_type, len(value))
        for item in value:
            out += gguf_value(elem_type, item)
        return out
    return struct.pack("<" + _GGUF_SCALARS[vtype], value)


def build_gguf(
    kv: Sequence[Tuple[str, GGUFValueType, Any]] = (),
    tensors: Sequence[Tuple[str, int, Sequence[int], bytes]] = (),
    *,
    alignment: int = 32,
    version: int = 3,
) -> bytes:
    """GGUF bytes.

    ``kv`` items are (key, type, value) or (key, ARRAY, (elem_type, items)).
    ``tensors`` items are (name, ggml_type, shape outermost first, data).
    Tensor data is laid out back to back, each aligned to ``alignment``.
    """
    out = b"GGUF" + struct.pack("<IQQ", version, len(tensors), len(kv))
    for key, vtype, value in kv:
        out += _gguf_str(key) + struct.pack("<I", vtype)
        if vtype == GGUFValueType.ARRAY:
            elem_type, items = value
            out += gguf_value(vtype, items, elem_type)
        else:
            out += gguf_value(vtype, value)

    data = b""
    offsets: List[int] = []
    for _, _, _, raw in tensors:
        data += b"\x00" * ((alignment - len(data) % alignment) % alignment)
        offsets.append(len(data))
        data += raw
    for (name, ggml_type, shape, _), off in zip(tensors, offsets):
        out += _gguf_str(name) + struct.pack("<I", len(shape))
        out += struct.pack("<" + "Q" * len(shape), *reversed(shape))
        out += struct.pack("<IQ", ggml_type, off)

    out += b"\x00" * ((alignment - len(out) % alignment) % alignment)
    return out + data


def f32_bytes(values: Sequence[float]) -> bytes:
    return np.asarray(values, dtype="<f4").tobytes()


@pytest.fixture
def write_file(tmp_path):
    """Write bytes to a file under ``tmp_path`` and return its path."""

    def _write(name: str, data: bytes) -> str:
        path = tmp_path / name
        path.write_bytes(data)
        return str(path)

    return _write
