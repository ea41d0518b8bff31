# checkpoint_inspector/model_formats/gguf/gguf.py
"""
GGUF shared structures and exceptions.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, List, Optional, Tuple

from checkpoint_inspector.errors import FormatError
from checkpoint_inspector.model_formats.numeric_types import GGMLType
from checkpoint_inspector.model_formats.tensor import DType, ExternalType, TensorDescriptor

GGUF_MAGIC = b"GGUF"
GGUF_VERSION = 3
DEFAULT_ALIGNMENT = 32
# Arrays longer than this are elided when exposed as generic metadata.
MAX_ARRAY_PREVIEW = 100


class GGUFParseError(FormatError):
    """Raised when a GGUF file is malformed."""


class GGUFValueType(IntEnum):
    """GGUF metadata value type tags."""

    UINT8 = 0
    INT8 = 1
    UINT16 = 2
    INT16 = 3
    UINT32 = 4
    INT32 = 5
    FLOAT32 = 6
    BOOL = 7
    STRING = 8
    ARRAY = 9
    UINT64 = 10
    INT64 = 11
    FLOAT64 = 12


INTEGER_TYPES = frozenset(
    {
        GGUFValueType.UINT8,
        GGUFValueType.INT8,
        GGUFValueType.UINT16,
        GGUFValueType.INT16,
        GGUFValueType.UINT32,
        GGUFValueType.INT32,
        GGUFValueType.UINT64,
        GGUFValueType.INT64,
    }
)


@dataclass
class GGUFValue:
    """A typed metadata value.

    Scalars hold a Python ``int``/``float``/``bool``/``str``. Arrays hold a
    list of plain Python values, or of ``GGUFValue`` when the elements are
    themselves arrays.
    """

    type: GGUFValueType
    value: Any
    elem_type: Optional[GGUFValueType] = None

    def to_json(self, max_array_len: Optional[int] = MAX_ARRAY_PREVIEW) -> Any:
        """Convert to the generic null/bool/number/string/array/object model."""
        if self.type != GGUFValueType.ARRAY:
            return self.value
        items = self.value
        elided = 0
        if max_array_len is not None and len(items) > max_array_len:
            elided = len(items) - max_array_len
            items = items[:max_array_len]
        out = [x.to_json(max_array_len) if isinstance(x, GGUFValue) else x for x in items]
        if elided:
            out.append(f"... ({elided} more)")
        return out


@dataclass
class GGUFTensorInfo:
    name: str
    ggml_type: int
    type_name: str
    shape: Tuple[int, ...]  # outermost first
    nbytes: int
    offset: int  # relative to data section

    @property
    def n_elements(self) -> int:
        """Total number of elements in the tensor."""
        p = 1
        for d in self.shape:
            p *= d
        return p

    def to_descriptor(self) -> TensorDescriptor:
        return TensorDescriptor(
            dtype=_NATIVE_TYPES.get(self.ggml_type) or ExternalType(self.ggml_type, self.type_name),
            shape=self.shape,
            nbytes=self.nbytes,
            offset=self.offset,
        )


_NATIVE_TYPES = {
    GGMLType.F32: DType.F32,
    GGMLType.F16: DType.F16,
    GGMLType.BF16: DType.BF16,
    GGMLType.F64: DType.F64,
    GGMLType.I8: DType.I8,
    GGMLType.I16: DType.I16,
    GGMLType.I32: DType.I32,
    GGMLType.I64: DType.I64,
}


@dataclass
class GGUFFile:
    version: int
    alignment: int
    metadata: Dict[str, GGUFValue]
    tensors: List[GGUFTensorInfo] = field(default_factory=list)
    kv_end_offset: int = 0
    tensor_info_end_offset: int = 0
    data_start: int = 0  # absolute offset of data section
