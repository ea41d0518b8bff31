# checkpoint_inspector/model_formats/gguf/gguf_parser.py
"""
GGUF v3 header parsing: metadata key/values, tensor records and the
aligned start of the tensor data section.
"""

from __future__ import annotations

import struct
from typing import Any, Dict, List, Tuple

from loguru import logger

from checkpoint_inspector.model_formats.gguf.gguf import (
    DEFAULT_ALIGNMENT,
    GGUF_MAGIC,
    GGUF_VERSION,
    INTEGER_TYPES,
    GGUFFile,
    GGUFParseError,
    GGUFTensorInfo,
    GGUFValue,
    GGUFValueType,
)
from checkpoint_inspector.model_formats.numeric_types import lookup

U64_MAX = (1 << 64) - 1

# struct codes for fixed-width scalar payloads
_SCALAR_FORMATS = {
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


def _unpack(buf: memoryview, off: int, fmt: str) -> Tuple[Tuple[Any, ...], int]:
    try:
        vals = struct.unpack_from(fmt, buf, off)
    except struct.error as e:
        raise GGUFParseError(f"Read beyond EOF at offset {off}") from e
    return vals, off + struct.calcsize(fmt)


def _u32(buf: memoryview, off: int, bo: str) -> Tuple[int, int]:
    (v,), off = _unpack(buf, off, bo + "I")
    return v, off


def _u64(buf: memoryview, off: int, bo: str) -> Tuple[int, int]:
    (v,), off = _unpack(buf, off, bo + "Q")
    return v, off


def _str(buf: memoryview, off: int, bo: str) -> Tuple[str, int]:
    ln, off = _u64(buf, off, bo)
    if off + ln > len(buf):
        raise GGUFParseError(f"String of length {ln} at offset {off} runs past EOF")
    raw = bytes(buf[off : off + ln])
    try:
        return raw.decode("utf-8", "strict"), off + ln
    except UnicodeDecodeError as e:
        raise GGUFParseError(f"Invalid UTF-8 string at offset {off}: {e}") from e


def _value_type(tag: int) -> GGUFValueType:
    try:
        return GGUFValueType(tag)
    except ValueError:
        raise GGUFParseError(f"unknown metadata type {tag}") from None


def _parse_value(buf: memoryview, off: int, bo: str, vtype: GGUFValueType) -> Tuple[GGUFValue, int]:
    if vtype == GGUFValueType.STRING:
        s, off = _str(buf, off, bo)
        return GGUFValue(vtype, s), off
    if vtype == GGUFValueType.ARRAY:
        elem_tag, off = _u32(buf, off, bo)
        elem_type = _value_type(elem_tag)
        count, off = _u64(buf, off, bo)
        # every element occupies at least one byte; reject impossible counts early
        if count > len(buf) - off:
            raise GGUFParseError(f"Array of {count} elements at offset {off} runs past EOF")
        items, off = _parse_array_items(buf, off, bo, elem_type, count)
        return GGUFValue(vtype, items, elem_type=elem_type), off
    (v,), off = _unpack(buf, off, bo + _SCALAR_FORMATS[vtype])
    if vtype == GGUFValueType.BOOL:
        v = v != 0
    return GGUFValue(vtype, v), off


def _parse_array_items(
    buf: memoryview, off: int, bo: str, elem_type: GGUFValueType, count: int
) -> Tuple[List[Any], int]:
    if elem_type in _SCALAR_FORMATS:
        fmt = bo + str(count) + _SCALAR_FORMATS[elem_type]
        vals, off = _unpack(buf, off, fmt)
        if elem_type == GGUFValueType.BOOL:
            return [v != 0 for v in vals], off
        return list(vals), off
    items: List[Any] = []
    for _ in range(count):
        item, off = _parse_value(buf, off, bo, elem_type)
        items.append(item if elem_type == GGUFValueType.ARRAY else item.value)
    return items, off


def _parse_kv(buf: memoryview, off: int, bo: str) -> Tuple[str, GGUFValue, int]:
    key, off = _str(buf, off, bo)
    tag, off = _u32(buf, off, bo)
    value, off = _parse_value(buf, off, bo, _value_type(tag))
    return key, value, off


def _tensor_nbytes(name: str, ggml_type: int, shape: Tuple[int, ...]) -> Tuple[str, int]:
    info = lookup(ggml_type)
    if info is None:
        raise GGUFParseError(f"ggml has no information for type={ggml_type} (tensor {name})")
    if not shape:
        raise GGUFParseError(f"empty shape (tensor {name})")
    # shape is outermost first; the innermost dimension is stored in blocks
    *outer, innermost = shape
    nbytes = info.type_size * innermost // info.block_size
    for dim in outer:
        nbytes *= dim
    if nbytes > U64_MAX:
        raise GGUFParseError(f"tensor size overflowed (tensor {name})")
    return info.name, nbytes


def _parse_tensor_info(buf: memoryview, off: int, bo: str) -> Tuple[GGUFTensorInfo, int]:
    name, off = _str(buf, off, bo)
    n_dims, off = _u32(buf, off, bo)
    if n_dims * 8 > len(buf) - off:
        raise GGUFParseError(f"Tensor {name} declares {n_dims} dimensions past EOF")
    dims, off = _unpack(buf, off, bo + str(n_dims) + "Q")
    # dimensions are stored innermost first
    shape = tuple(reversed(dims))
    ggml_type, off = _u32(buf, off, bo)
    rel_off, off = _u64(buf, off, bo)
    type_name, nbytes = _tensor_nbytes(name, ggml_type, shape)
    return (
        GGUFTensorInfo(
            name=name,
            ggml_type=ggml_type,
            type_name=type_name,
            shape=shape,
            nbytes=nbytes,
            offset=rel_off,
        ),
        off,
    )


def _alignment(metadata: Dict[str, GGUFValue]) -> int:
    item = metadata.get("general.alignment")
    if item is None:
        return DEFAULT_ALIGNMENT
    if item.type not in INTEGER_TYPES or item.value <= 0:
        raise GGUFParseError(f"Invalid general.alignment: {item.value!r}")
    return int(item.value)


def padding_for(pos: int, alignment: int) -> int:
    """Bytes needed to move ``pos`` up to the next multiple of ``alignment``."""
    return (alignment - pos % alignment) % alignment


def parse_gguf(buf: memoryview, *, byteorder: str = "<") -> GGUFFile:
    """Parse a GGUF v3 header from ``buf`` (no tensor data is read)."""
    if len(buf) < 4 or bytes(buf[:4]) != GGUF_MAGIC:
        raise GGUFParseError("not a gguf file")
    version, off = _u32(buf, 4, byteorder)
    if version != GGUF_VERSION:
        raise GGUFParseError("not a version 3 gguf file")
    n_tensors, off = _u64(buf, off, byteorder)
    n_kv, off = _u64(buf, off, byteorder)

    metadata: Dict[str, GGUFValue] = {}
    for _ in range(n_kv):
        key, value, off = _parse_kv(buf, off, byteorder)
        metadata[key] = value
    kv_end = off

    tensors: List[GGUFTensorInfo] = []
    for _ in range(n_tensors):
        ti, off = _parse_tensor_info(buf, off, byteorder)
        tensors.append(ti)

    alignment = _alignment(metadata)
    data_start = off + padding_for(off, alignment)
    logger.debug(
        "GGUF v{v}: {nkv} kv, {nt} tensors, alignment={a}, data_start={ds}",
        v=version,
        nkv=n_kv,
        nt=n_tensors,
        a=alignment,
        ds=data_start,
    )
    return GGUFFile(
        version=version,
        alignment=alignment,
        metadata=metadata,
        tensors=tensors,
        kv_end_offset=kv_end,
        tensor_info_end_offset=off,
        data_start=data_start,
    )
