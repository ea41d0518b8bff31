# checkpoint_inspector/model_formats/tensor.py
"""
Format-independent tensor element types and descriptors.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Tuple, Union


class DType(str, Enum):
    """Element types with a fixed per-element width."""

    BOOL = "BOOL"
    U8 = "U8"
    I8 = "I8"
    U16 = "U16"
    I16 = "I16"
    U32 = "U32"
    I32 = "I32"
    U64 = "U64"
    I64 = "I64"
    F8_E5M2 = "F8_E5M2"
    F8_E4M3 = "F8_E4M3"
    F16 = "F16"
    BF16 = "BF16"
    F32 = "F32"
    F64 = "F64"

    @property
    def itemsize(self) -> int:
        return _ITEMSIZE[self]

    def __str__(self) -> str:
        return self.value


_ITEMSIZE = {
    DType.BOOL: 1,
    DType.U8: 1,
    DType.I8: 1,
    DType.U16: 2,
    DType.I16: 2,
    DType.U32: 4,
    DType.I32: 4,
    DType.U64: 8,
    DType.I64: 8,
    DType.F8_E5M2: 1,
    DType.F8_E4M3: 1,
    DType.F16: 2,
    DType.BF16: 2,
    DType.F32: 4,
    DType.F64: 8,
}


@dataclass(frozen=True)
class ExternalType:
    """A type decoded through the numeric-type registry (e.g. ggml Q4_K)."""

    ggml_type: int
    name: str

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class UnknownType:
    """A declared dtype string this package does not recognise."""

    name: str

    def __str__(self) -> str:
        return self.name


TensorType = Union[DType, ExternalType, UnknownType]


def parse_dtype(name: str) -> TensorType:
    """Map a safetensors dtype string to a ``TensorType``."""
    try:
        return DType(name)
    except ValueError:
        return UnknownType(name)


@dataclass(frozen=True)
class TensorDescriptor:
    """Immutable description of one stored tensor.

    Attributes:
        dtype: Element type.
        shape: Dimension sizes, outermost first.
        nbytes: Encoded byte size.
        offset: Byte offset relative to the container's data section.
    """

    dtype: TensorType
    shape: Tuple[int, ...]
    nbytes: int
    offset: int

    @property
    def n_elements(self) -> int:
        """Total number of elements (1 for a scalar)."""
        p = 1
        for d in self.shape:
            p *= d
        return p

    @property
    def start(self) -> int:
        return self.offset

    @property
    def end(self) -> int:
        return self.offset + self.nbytes

    @property
    def ndim(self) -> int:
        return len(self.shape)
