# Copyright (c) 2025.
# This file is part of fusion-jit, released under the MIT License.
"""
Blocked vector containers.

A single tangent or error vector is a plain 1-D ``jnp`` array. The solvers,
however, work with *collections* of such vectors: one tangent vector per
variable, or one error vector per factor. `VectorBlocks` keeps these
collections grouped by key (a variable type, or a factor array key), each
group stacked into a ``(n, dim)`` array so that arithmetic is a handful of
vectorized JAX ops instead of a Python loop over variables.

Key Functions
-------------
standard_basis(dim)
    Rows of the ``dim × dim`` identity; used to build Jacobian columns.

VectorBlocks
    Dict-like container with ``+``, ``-``, scalar ``*``, ``dot`` and
    ``squared_norm``. Binary operations require both operands to have the
    same keys and shapes.
"""

from __future__ import annotations
from typing import Any, Callable, Dict, Hashable, Iterator, Optional

import jax.numpy as jnp


def standard_basis(dim: int) -> jnp.ndarray:
    """Standard basis of R^dim, one basis vector per row."""
    return jnp.eye(dim)


def dot(a: jnp.ndarray, b: jnp.ndarray) -> jnp.ndarray:
    return jnp.sum(a * b)


def squared_norm(a: jnp.ndarray) -> jnp.ndarray:
    return jnp.sum(a * a)


class VectorBlocks:
    """Stacked vectors grouped by key."""

    def __init__(self, blocks: Optional[Dict[Hashable, jnp.ndarray]] = None):
        self.blocks: Dict[Hashable, jnp.ndarray] = dict(blocks or {})

    # --- dict-like access -------------------------------------------------

    def __getitem__(self, key: Hashable) -> jnp.ndarray:
        return self.blocks[key]

    def __setitem__(self, key: Hashable, value: jnp.ndarray) -> None:
        self.blocks[key] = value

    def __contains__(self, key: Hashable) -> bool:
        return key in self.blocks

    def __iter__(self) -> Iterator[Hashable]:
        return iter(self.blocks)

    def __len__(self) -> int:
        return len(self.blocks)

    def keys(self):
        return self.blocks.keys()

    def items(self):
        return self.blocks.items()

    def __repr__(self) -> str:
        shapes = {getattr(k, "__name__", k): tuple(v.shape) for k, v in self.blocks.items()}
        return f"VectorBlocks({shapes})"

    # --- arithmetic -------------------------------------------------------

    def map(self, fn: Callable[[jnp.ndarray], jnp.ndarray]) -> "VectorBlocks":
        return VectorBlocks({k: fn(v) for k, v in self.blocks.items()})

    def _zip(self, other: "VectorBlocks", fn: Callable[[Any, Any], Any]) -> "VectorBlocks":
        assert self.blocks.keys() == other.blocks.keys(), "mismatched vector blocks"
        out = {}
        for k, v in self.blocks.items():
            w = other.blocks[k]
            assert v.shape == w.shape, f"shape mismatch for {k}: {v.shape} vs {w.shape}"
            out[k] = fn(v, w)
        return VectorBlocks(out)

    def __add__(self, other: "VectorBlocks") -> "VectorBlocks":
        return self._zip(other, lambda a, b: a + b)

    def __sub__(self, other: "VectorBlocks") -> "VectorBlocks":
        return self._zip(other, lambda a, b: a - b)

    def __neg__(self) -> "VectorBlocks":
        return self.map(lambda a: -a)

    def __mul__(self, scalar) -> "VectorBlocks":
        return self.map(lambda a: scalar * a)

    __rmul__ = __mul__

    def dot(self, other: "VectorBlocks") -> float:
        assert self.blocks.keys() == other.blocks.keys(), "mismatched vector blocks"
        total = 0.0
        for k, v in self.blocks.items():
            total = total + dot(v, other.blocks[k])
        return float(total)

    def squared_norm(self) -> float:
        return float(sum((squared_norm(v) for v in self.blocks.values()), 0.0))

