# checkpoint_inspector/model_formats/source.py
"""
Uniform reader interface over tensor containers, plus the lock wrapper that
lets the UI thread and the analysis worker share one reader.
"""
from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
from loguru import logger

from checkpoint_inspector.analysis.base import CancelToken
from checkpoint_inspector.errors import TensorIntegrityError, UnsupportedOperation
from checkpoint_inspector.io.file_reader import FileStorage, Storage
from checkpoint_inspector.model_formats import codec
from checkpoint_inspector.model_formats.tensor import TensorDescriptor
from checkpoint_inspector.tree.module_tree import ModuleTree, PathSplit

# Display-only shortening of very large metadata strings.
MAX_DISPLAY_STRING = 10_000


class ModuleSource(ABC):
    """Abstract base class for container readers."""

    byteorder = codec.LE

    def __init__(self, storage: Storage):
        self.storage = storage

    @abstractmethod
    def get_format_name(self) -> str:
        """Return the string name of the format (e.g., 'gguf')."""
        raise NotImplementedError

    @property
    @abstractmethod
    def data_start(self) -> int:
        """Absolute file offset that tensor offsets are relative to."""
        raise NotImplementedError

    @abstractmethod
    def tensors(self) -> List[Tuple[str, TensorDescriptor]]:
        """The flat tensor directory, in file order."""
        raise NotImplementedError

    @abstractmethod
    def metadata(self) -> Dict[str, Any]:
        """Free-form metadata in the generic JSON value model."""
        raise NotImplementedError

    def write_metadata(self, metadata: Dict[str, Any]) -> None:
        raise UnsupportedOperation(f"editing {self.get_format_name()} files is not supported")

    def display(self) -> str:
        return self.storage.display()

    def module(self, split: Optional[PathSplit] = None) -> ModuleTree:
        """Build the (unflattened) module tree from the tensor directory."""
        return ModuleTree.build(self.tensors(), split or PathSplit())

    def tensor_bytes(self, tensor: TensorDescriptor) -> bytes:
        start = self.data_start + tensor.start
        end = self.data_start + tensor.end
        data = self.storage.read_range(start, end)
        if len(data) < tensor.nbytes:
            raise TensorIntegrityError(
                f"tensor byte range [{start}, {end}) is shorter than required: "
                f"file holds {len(data)} of {tensor.nbytes} bytes"
            )
        return data

    def _tensor_as(self, tensor: TensorDescriptor, out: type, cancel: Optional[CancelToken]) -> np.ndarray:
        if cancel is not None:
            cancel.check()
        raw = self.tensor_bytes(tensor)
        if cancel is not None:
            cancel.check()
        return codec.decode(raw, tensor.dtype, byteorder=self.byteorder, out=out)

    def tensor_as_f32(self, tensor: TensorDescriptor, cancel: Optional[CancelToken] = None) -> np.ndarray:
        return self._tensor_as(tensor, np.float32, cancel)

    def tensor_as_f64(self, tensor: TensorDescriptor, cancel: Optional[CancelToken] = None) -> np.ndarray:
        return self._tensor_as(tensor, np.float64, cancel)

    def close(self) -> None:
        self.storage.close()


class LockedSource:
    """Serialises access to a ``ModuleSource``; the lock covers one call."""

    def __init__(self, source: ModuleSource):
        self._source = source
        self._lock = threading.Lock()

    def get_format_name(self) -> str:
        return self._source.get_format_name()

    def display(self) -> str:
        return self._source.display()

    def module(self, split: Optional[PathSplit] = None) -> ModuleTree:
        with self._lock:
            return self._source.module(split)

    def tensors(self) -> List[Tuple[str, TensorDescriptor]]:
        with self._lock:
            return self._source.tensors()

    def metadata(self) -> Dict[str, Any]:
        with self._lock:
            return self._source.metadata()

    def write_metadata(self, metadata: Dict[str, Any]) -> None:
        with self._lock:
            self._source.write_metadata(metadata)

    def tensor_as_f32(self, tensor: TensorDescriptor, cancel: Optional[CancelToken] = None) -> np.ndarray:
        with self._lock:
            return self._source.tensor_as_f32(tensor, cancel)

    def tensor_as_f64(self, tensor: TensorDescriptor, cancel: Optional[CancelToken] = None) -> np.ndarray:
        with self._lock:
            return self._source.tensor_as_f64(tensor, cancel)

    def close(self) -> None:
        with self._lock:
            self._source.close()


def open_source(storage: Storage) -> ModuleSource:
    """Open a container, choosing the reader from the leading magic bytes."""
    from checkpoint_inspector.model_formats.gguf.gguf import GGUF_MAGIC
    from checkpoint_inspector.model_formats.gguf.gguf_reader import GGUFReader
    from checkpoint_inspector.model_formats.safetensors.safetensors import SafeTensorsReader

    if storage.read_range(0, 4) == GGUF_MAGIC:
        reader: ModuleSource = GGUFReader(storage)
    else:
        reader = SafeTensorsReader(storage)
    logger.debug(
        "Opened {path} as {fmt} ({n} tensors)",
        path=storage.display(),
        fmt=reader.get_format_name(),
        n=len(reader.tensors()),
    )
    return reader


def open_path(path: str) -> ModuleSource:
    return open_source(FileStorage(path))


def shorten_value(value: Any) -> Any:
    """Replace huge strings and inline images with ``"..."`` for display."""
    if isinstance(value, str):
        if len(value) > MAX_DISPLAY_STRING or value.startswith("data:image/"):
            return "..."
        return value
    if isinstance(value, list):
        return [shorten_value(v) for v in value]
    if isinstance(value, dict):
        return {k: shorten_value(v) for k, v in value.items()}
    return value
