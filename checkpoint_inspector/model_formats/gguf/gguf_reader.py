# checkpoint_inspector/model_formats/gguf/gguf_reader.py
"""
GGUF reader: exposes a parsed GGUF v3 header through ``ModuleSource``.
"""

from __future__ import annotations

from typing import Any, Dict, List, Tuple

from checkpoint_inspector.errors import UnsupportedOperation
from checkpoint_inspector.io.file_reader import Storage
from checkpoint_inspector.model_formats.gguf.gguf import MAX_ARRAY_PREVIEW, GGUFFile
from checkpoint_inspector.model_formats.gguf.gguf_parser import parse_gguf
from checkpoint_inspector.model_formats.source import ModuleSource
from checkpoint_inspector.model_formats.tensor import TensorDescriptor


class GGUFReader(ModuleSource):
    """``ModuleSource`` implementation for GGUF v3 files."""

    def __init__(self, storage: Storage):
        super().__init__(storage)
        self.gguf: GGUFFile = parse_gguf(storage.view(), byteorder=self.byteorder)

    def get_format_name(self) -> str:
        return "gguf"

    @property
    def data_start(self) -> int:
        return self.gguf.data_start

    @property
    def alignment(self) -> int:
        return self.gguf.alignment

    def tensors(self) -> List[Tuple[str, TensorDescriptor]]:
        return [(t.name, t.to_descriptor()) for t in self.gguf.tensors]

    def metadata(self) -> Dict[str, Any]:
        return {k: v.to_json(MAX_ARRAY_PREVIEW) for k, v in self.gguf.metadata.items()}

    def write_metadata(self, metadata: Dict[str, Any]) -> None:
        raise UnsupportedOperation("editing gguf files is not yet supported")
