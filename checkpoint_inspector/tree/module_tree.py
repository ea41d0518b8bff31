# checkpoint_inspector/tree/module_tree.py
"""
Module tree reconstruction from flat tensor names.

``layer.0.weight`` becomes ``layer`` → ``0`` → ``weight``; every node counts
the tensors and parameters below it. Keys are views into the tensor's full
name, so splitting and joining never copy the name.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from checkpoint_inspector.model_formats.tensor import TensorDescriptor

_DIGITS = re.compile(r"(\d+)")


def natural_key(text: str) -> Tuple[Tuple[int, int, str], ...]:
    """Sort key that orders digit runs numerically (``tensor2`` < ``tensor10``).

    At the same position a digit run sorts before text, so ``0`` < ``bias``.
    """
    parts = _DIGITS.split(text)
    key = []
    for i, part in enumerate(parts):
        if i % 2:
            key.append((0, int(part), part))
        elif part:
            key.append((1, 0, part))
    return tuple(key)


class Key:
    """A ``[start, end)`` slice of a shared full tensor name."""

    __slots__ = ("full", "start", "end")

    def __init__(self, full: str = "", start: int = 0, end: Optional[int] = None):
        self.full = full
        self.start = start
        self.end = len(full) if end is None else end

    @property
    def text(self) -> str:
        return self.full[self.start : self.end]

    @property
    def is_index(self) -> bool:
        return self.text.isdigit()

    def absolute(self) -> "Key":
        """The key covering the full name up to this key's end."""
        return Key(self.full, 0, self.end)

    def join(self, child: "Key") -> "Key":
        """Extend this key over ``child``, which must continue the same name."""
        if self.full[: self.end] != child.full[: self.end]:
            raise ValueError(f"cannot join {self!r} with non-continuation {child!r}")
        return Key(child.full, self.start, child.end)

    def __str__(self) -> str:
        return self.text

    def __repr__(self) -> str:
        return f"Key({self.text!r})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Key):
            return NotImplemented
        if self.full is other.full and self.start == other.start and self.end == other.end:
            return True
        return self.text == other.text

    def __hash__(self) -> int:
        return hash(self.text)

    def __lt__(self, other: "Key") -> bool:
        return self.text < other.text

    def __len__(self) -> int:
        return self.end - self.start


@dataclass(frozen=True)
class PathSplit:
    """Splits tensor names into path segments on a single delimiter."""

    delimiter: str = "."

    def __post_init__(self) -> None:
        if len(self.delimiter) != 1:
            raise ValueError(f"delimiter must be a single character, got {self.delimiter!r}")

    def split(self, fullname: str) -> List[Key]:
        parts: List[Key] = []
        at = 0
        while True:
            off = fullname.find(self.delimiter, at)
            if off < 0:
                break
            parts.append(Key(fullname, at, off))
            at = off + 1
        parts.append(Key(fullname, at, len(fullname)))
        return parts


@dataclass
class ModuleTree:
    """One node of the module hierarchy.

    Attributes:
        full_name: Key spanning the node's whole dotted path (empty at the root).
        tensor: Descriptor when a tensor is stored under exactly this name.
        children: Child nodes by path segment.
        total_tensors: Tensors stored at or below this node.
        total_params: Elements of those tensors.
    """

    full_name: Key = field(default_factory=Key)
    tensor: Optional[TensorDescriptor] = None
    children: Dict[Key, "ModuleTree"] = field(default_factory=dict)
    total_tensors: int = 0
    total_params: int = 0

    @property
    def name(self) -> str:
        return self.full_name.text

    @property
    def is_tensor(self) -> bool:
        return self.tensor is not None

    @classmethod
    def build(
        cls,
        tensors: Iterable[Tuple[str, TensorDescriptor]],
        split: Optional[PathSplit] = None,
    ) -> "ModuleTree":
        split = split or PathSplit()
        root = cls()
        for name, info in tensors:
            params = info.n_elements
            current = root
            current.total_params += params
            current.total_tensors += 1
            for key in split.split(name):
                child = current.children.get(key)
                if child is None:
                    child = current.children[key] = cls(full_name=key.absolute())
                current = child
                current.total_params += params
                current.total_tensors += 1
            current.tensor = info
        return root

    def flatten_single_children(self) -> None:
        """Merge chains of single-child modules into one node, in place.

        A module with no tensor of its own and exactly one child module is
        replaced by that child under the joined key. A leaf tensor child is
        never absorbed, so every tensor keeps its own node.
        """
        flattened: Dict[Key, ModuleTree] = {}
        for key, child in self.children.items():
            child.flatten_single_children()
            if child.tensor is None and len(child.children) == 1:
                grand_key, grand = next(iter(child.children.items()))
                if grand.tensor is None or grand.children:
                    flattened[key.join(grand_key)] = grand
                    continue
            flattened[key] = child
        self.children = flattened

    def display_children(self) -> List[Tuple[Key, "ModuleTree"]]:
        """Children in display order: tensors first, each group naturally sorted."""
        return sorted(
            self.children.items(),
            key=lambda kv: (not kv[1].is_tensor, natural_key(kv[0].text)),
        )

    def walk(self, depth: int = 0) -> Iterator[Tuple[int, Key, "ModuleTree"]]:
        """Depth-first (depth, key, node) over descendants in display order."""
        for key, child in self.display_children():
            yield depth, key, child
            yield from child.walk(depth + 1)

    def iter_tensors(self) -> Iterator[Tuple[str, TensorDescriptor]]:
        if self.tensor is not None:
            yield self.name, self.tensor
        for child in self.children.values():
            yield from child.iter_tensors()

    def find(self, name: str) -> Optional["ModuleTree"]:
        """Node whose full name is ``name``, searching through joined keys."""
        if self.name == name:
            return self
        for child in self.children.values():
            child_name = child.name
            if name == child_name or name.startswith(child_name):
                found = child.find(name)
                if found is not None:
                    return found
        return None
