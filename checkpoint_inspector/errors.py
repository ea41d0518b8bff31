"""Shared exception types for checkpoint inspection."""
from __future__ import annotations


class InspectorError(Exception):
    """Base class for every error raised by checkpoint_inspector."""


class FormatError(InspectorError):
    """Raised when a container file cannot be opened because it is malformed.

    Covers bad magic, unsupported versions, oversized headers, malformed
    UTF-8/JSON, unknown metadata type tags and unknown tensor types.
    """


class TensorIntegrityError(InspectorError):
    """Raised when one tensor cannot be read; the reader stays usable."""


class UnsupportedOperation(InspectorError):
    """Raised for capabilities that are deliberately not provided."""


class UnsupportedTensorType(UnsupportedOperation):
    """Raised when a tensor's element type has no float decoder."""

    def __init__(self, type_name: str) -> None:
        self.type_name = type_name
        super().__init__(f"unsupported tensor type {type_name}")


class AnalysisError(InspectorError):
    """Raised by histogram / spectrum computation; stored on the request."""


class AnalysisCancelled(AnalysisError):
    """Raised when the request being computed is no longer referenced."""

    def __init__(self, message: str = "cancelled") -> None:
        super().__init__(message)
