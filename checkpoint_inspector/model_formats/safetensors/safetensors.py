"""
Pure-Python SafeTensors reader with whole-header metadata rewrites.
"""

from __future__ import annotations

import json
import struct
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import json5
from loguru import logger

from checkpoint_inspector.errors import FormatError
from checkpoint_inspector.io.file_reader import Storage
from checkpoint_inspector.model_formats.source import ModuleSource
from checkpoint_inspector.model_formats.tensor import TensorDescriptor, parse_dtype

METADATA_KEY = "__metadata__"
HEADER_MIB_LIMIT = 100
HEADER_SIZE_LIMIT = HEADER_MIB_LIMIT * 1024 * 1024
# the safetensors convention pads the JSON header with spaces to this multiple
HEADER_ALIGNMENT = 8


class SafeTensorsParseError(FormatError):
    """Raised when a SafeTensors file is malformed."""


@dataclass
class STTensor:
    name: str
    dtype: str
    shape: Tuple[int, ...]
    data_offsets: Tuple[int, int]

    def to_descriptor(self) -> TensorDescriptor:
        start, end = self.data_offsets
        return TensorDescriptor(
            dtype=parse_dtype(self.dtype),
            shape=self.shape,
            nbytes=end - start,
            offset=start,
        )


@dataclass
class SafeTensorsHeader:
    header_size: int
    tensors: List[STTensor]
    metadata: Optional[Dict[str, Any]]
    data_start: int


def parse_safetensors(buf: memoryview, *, file_size: int, source: str = "file") -> SafeTensorsHeader:
    """Parse header + tensor metadata (no data reads)."""
    if file_size < 8:
        raise SafeTensorsParseError("File too small for safetensors header")
    header_size = struct.unpack_from("<Q", buf, 0)[0]
    if header_size > HEADER_SIZE_LIMIT:
        raise SafeTensorsParseError(
            f"Header is larger than {HEADER_MIB_LIMIT}MiB. Is {source} a safetensors file?"
        )
    header_start = 8
    header_end = header_start + header_size
    if header_end > file_size:
        raise SafeTensorsParseError("Header extends beyond EOF")
    try:
        text = bytes(buf[header_start:header_end]).decode("utf-8")
    except UnicodeDecodeError as e:
        raise SafeTensorsParseError(f"Header is not valid UTF-8: {e}") from e
    try:
        header = json.loads(text)
    except ValueError as e:
        raise SafeTensorsParseError(f"Invalid JSON header: {e}") from e
    if not isinstance(header, dict):
        raise SafeTensorsParseError("Header is not a JSON object")

    metadata = header.pop(METADATA_KEY, None)
    if metadata is not None and not isinstance(metadata, dict):
        raise SafeTensorsParseError(f"{METADATA_KEY} is not a JSON object")

    tensors: List[STTensor] = []
    for name, meta in header.items():
        if not isinstance(meta, dict):
            raise SafeTensorsParseError(f"Invalid tensor meta for {name}")
        dtype = meta.get("dtype")
        shape = meta.get("shape")
        offsets = meta.get("data_offsets")
        if not (
            isinstance(dtype, str)
            and isinstance(shape, list)
            and isinstance(offsets, (list, tuple))
            and len(offsets) == 2
        ):
            raise SafeTensorsParseError(f"Missing/invalid fields for {name}")
        if not all(isinstance(x, int) and x >= 0 for x in shape):
            raise SafeTensorsParseError(f"Invalid shape for {name}")
        if not all(isinstance(x, int) and x >= 0 for x in offsets) or offsets[1] < offsets[0]:
            raise SafeTensorsParseError(f"Invalid data_offsets for {name}")
        tensors.append(
            STTensor(
                name=name,
                dtype=dtype,
                shape=tuple(int(x) for x in shape),
                data_offsets=(int(offsets[0]), int(offsets[1])),
            )
        )

    return SafeTensorsHeader(
        header_size=header_size,
        tensors=tensors,
        metadata=metadata,
        data_start=header_end,
    )


def _coerce_metadata_value(raw: Any) -> Any:
    """Metadata values are strings on disk; expose them as JSON where they parse."""
    if not isinstance(raw, str):
        return raw
    try:
        return json.loads(raw)
    except ValueError:
        pass
    except RecursionError:
        return raw
    # lenient syntax: single quotes, trailing commas, bare keys
    try:
        return json5.loads(raw)
    except (ValueError, RecursionError):
        return raw


def _encode_metadata_value(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False)


def serialize_header(tensors: List[STTensor], metadata: Optional[Dict[str, Any]]) -> bytes:
    """Length prefix + padded JSON header for ``tensors`` and ``metadata``."""
    header: Dict[str, Any] = {}
    if metadata is not None:
        header[METADATA_KEY] = {str(k): _encode_metadata_value(v) for k, v in metadata.items()}
    for t in sorted(tensors, key=lambda t: t.data_offsets[0]):
        header[t.name] = {
            "dtype": t.dtype,
            "shape": list(t.shape),
            "data_offsets": list(t.data_offsets),
        }
    body = json.dumps(header, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    body += b" " * ((HEADER_ALIGNMENT - len(body) % HEADER_ALIGNMENT) % HEADER_ALIGNMENT)
    return struct.pack("<Q", len(body)) + body


class SafeTensorsReader(ModuleSource):
    """``ModuleSource`` implementation for SafeTensors files."""

    def __init__(self, storage: Storage):
        super().__init__(storage)
        self._header = self._read_header()

    def _read_header(self) -> SafeTensorsHeader:
        header = parse_safetensors(
            self.storage.view(), file_size=self.storage.size, source=self.storage.display()
        )
        logger.debug(
            "SafeTensors header: {size} bytes, {n} tensors, data_start={ds}",
            size=header.header_size,
            n=len(header.tensors),
            ds=header.data_start,
        )
        return header

    def get_format_name(self) -> str:
        return "safetensors"

    @property
    def data_start(self) -> int:
        return self._header.data_start

    @property
    def header_size(self) -> int:
        return self._header.header_size

    def tensors(self) -> List[Tuple[str, TensorDescriptor]]:
        return [(t.name, t.to_descriptor()) for t in self._header.tensors]

    def metadata(self) -> Dict[str, Any]:
        raw = self._header.metadata or {}
        return {k: _coerce_metadata_value(v) for k, v in raw.items()}

    def write_metadata(self, metadata: Dict[str, Any]) -> None:
        """Replace the whole header with one carrying ``metadata``.

        Tensor data is untouched; only the header region is spliced, so the
        data-section origin moves by the change in header length.
        """
        if not isinstance(metadata, dict):
            raise ValueError("safetensors metadata must be a JSON object")
        encoded = serialize_header(self._header.tensors, metadata)
        old_end = self._header.data_start
        self.storage.splice(0, old_end, encoded)
        self._header = self._read_header()
        logger.info(
            "Rewrote metadata of {path}: header {old} -> {new} bytes",
            path=self.storage.display(),
            old=old_end,
            new=self._header.data_start,
        )
