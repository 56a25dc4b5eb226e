# Copyright (c) 2025.
# This file is part of fusion-jit, released under the MIT License.
"""
Core typed handles for fusion-jit.

Variables are stored in per-type buffers (see `core.variables`). A handle
into that storage is a `TypedID`: the Python type of the stored value plus
its index inside the buffer for that type.

Classes
-------
TypedID
    Immutable, hashable pair ``(type, index)``. Handles are issued by
    ``VariableAssignments.store`` and are never reused while the owning
    store is alive.

Notes
-----
Handles carry no reference to the store that issued them. Using a handle
with a different store is a programming error and is caught by assertions
in the store's accessors.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class TypedID:
    """Handle to a stored variable of a statically known type."""
    type: type
    index: int

    def __repr__(self) -> str:
        return f"TypedID({self.type.__name__}, {self.index})"


EdgeTypes = Tuple[type, ...]


def edge_types(edges: Tuple[TypedID, ...]) -> EdgeTypes:
    """Types of the variables a factor touches, in edge order."""
    return tuple(e.type for e in edges)
