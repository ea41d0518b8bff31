# checkpoint_inspector/__init__.py
"""
checkpoint_inspector
====================

Inspection of safetensors and GGUF checkpoints: header parsing, module-tree
reconstruction from flat tensor names, and background histogram / singular
value analysis of tensor contents.
"""
from __future__ import annotations

from importlib.metadata import version as _pkg_version

__all__ = ["__version__"]

try:
    # Read version dynamically from installed package metadata
    __version__: str = _pkg_version("checkpoint-inspector")
except Exception:  # pragma: no cover - fallback for development environments
    __version__ = "0.0.0-dev"
