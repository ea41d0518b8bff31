"""
Backing byte storage for container readers.

``FileStorage`` exposes a zero-copy mmap + memoryview over a local file and
supports whole-file writes and range splices (used for header rewrites).
``MemoryStorage`` keeps the bytes in memory.
"""

from __future__ import annotations

import mmap
import os
from typing import Optional, Protocol


class Storage(Protocol):
    """Narrow interface the readers need from their backing bytes."""

    def display(self) -> str: ...

    @property
    def size(self) -> int: ...

    def view(self) -> memoryview: ...

    def read_range(self, start: int, end: int) -> bytes: ...

    def write(self, data: bytes) -> None: ...

    def splice(self, start: int, end: int, data: bytes) -> None: ...

    def close(self) -> None: ...


class FileStorage:
    """Local file with a lazily created read-only memory map.

    The map is dropped before every mutation and re-created on the next read,
    so views obtained before a ``write``/``splice`` must not be reused.
    """

    __slots__ = ("path", "_fd", "_m", "_mv", "_size")

    def __init__(self, path: str):
        self.path = path
        self._fd: Optional[int] = None
        self._m: Optional[mmap.mmap] = None
        self._mv: Optional[memoryview] = None
        self._size: int = 0

    def __enter__(self) -> "FileStorage":
        self.view()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def display(self) -> str:
        return self.path

    @property
    def size(self) -> int:
        self.view()
        return self._size

    def view(self) -> memoryview:
        """Zero-copy memoryview over the file bytes."""
        if self._mv is None:
            self._fd = os.open(self.path, os.O_RDONLY)
            self._size = os.fstat(self._fd).st_size
            if self._size == 0:
                # mmap refuses empty files
                self._mv = memoryview(b"")
            else:
                self._m = mmap.mmap(self._fd, self._size, access=mmap.ACCESS_READ)
                self._mv = memoryview(self._m)
        return self._mv

    def read_range(self, start: int, end: int) -> bytes:
        """Copy ``[start, end)`` out of the map; short if the file is shorter."""
        view = self.view()
        return bytes(view[start:end])

    def write(self, data: bytes) -> None:
        self.close()
        with open(self.path, "wb") as f:
            f.write(data)

    def splice(self, start: int, end: int, data: bytes) -> None:
        """Replace bytes ``[start, end)`` with ``data``, shifting the rest."""
        self.close()
        with open(self.path, "r+b") as f:
            contents = bytearray(f.read())
            contents[start:end] = data
            f.seek(0)
            f.truncate()
            f.write(contents)

    def close(self) -> None:
        if self._mv is not None:
            self._mv.release()
            self._mv = None
        if self._m is not None:
            self._m.close()
            self._m = None
        if self._fd is not None:
            os.close(self._fd)
            self._fd = None


class MemoryStorage:
    """In-memory storage with the same interface as ``FileStorage``."""

    def __init__(self, data: bytes = b"", name: str = "<memory>"):
        self._data = bytes(data)
        self.name = name

    def display(self) -> str:
        return self.name

    @property
    def size(self) -> int:
        return len(self._data)

    @property
    def data(self) -> bytes:
        return self._data

    def view(self) -> memoryview:
        return memoryview(self._data)

    def read_range(self, start: int, end: int) -> bytes:
        return self._data[start:end]

    def write(self, data: bytes) -> None:
        self._data = bytes(data)

    def splice(self, start: int, end: int, data: bytes) -> None:
        self._data = self._data[:start] + bytes(data) + self._data[end:]

    def close(self) -> None:
        pass
