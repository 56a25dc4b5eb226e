# Copyright (c) 2025.
# This file is part of fusion-jit, released under the MIT License.
"""
Heterogeneous variable storage for fusion-jit.

A problem mixes several variable types (Pose2 poses, Vector2 landmarks,
Rot3 rotations, ...). Rather than flattening everything into one state
vector, values are kept in one contiguous buffer per type:

    Pose2   -> ArrayBuffer [pose_0, pose_1, ...]   stacked pytree (n, ...)
    Vector2 -> ArrayBuffer [lm_0, lm_1, ...]

and addressed by `TypedID(type, index)` handles. Per-type stacking is what
lets every factor array and every retraction run as a single vmapped JAX
kernel.

Classes
-------
ArrayBuffer
    Append-only buffer for values of one type. Appends are collected in a
    Python list and merged into the stacked pytree lazily, so that building
    a graph with thousands of `store` calls stays O(1) amortized per call.
    Also reused by `core.factor_graph` to hold stacked factors.

VariableAssignments
    The type-keyed store itself:

        store(value) -> TypedID
        values[handle] / values[handle] = value
        tangent_zeros() -> VectorBlocks
        move(along)              (in place)
        moved(along)             (copy)
        copy(), assign(other)
"""

from __future__ import annotations

from typing import Any, Dict, Iterator, List, Optional, Tuple

import jax
import jax.numpy as jnp

from fusion_jit.core.types import TypedID
from fusion_jit.core.vectors import VectorBlocks
from fusion_jit.slam.manifold import is_manifold_type


def _stack(values: List[Any]) -> Any:
    return jax.tree_util.tree_map(lambda *xs: jnp.stack(xs), *values)


def _concat(a: Any, b: Any) -> Any:
    return jax.tree_util.tree_map(lambda x, y: jnp.concatenate([x, y]), a, b)


class ArrayBuffer:
    """Append-only, lazily stacked buffer of same-typed pytrees."""

    def __init__(self, element_type: type):
        self.element_type = element_type
        self._stacked: Optional[Any] = None
        self._pending: List[Any] = []
        self._count = 0

    def __len__(self) -> int:
        return self._count

    def append(self, value: Any) -> int:
        assert type(value) is self.element_type, (
            f"expected {self.element_type.__name__}, got {type(value).__name__}"
        )
        self._pending.append(value)
        self._count += 1
        return self._count - 1

    def stacked(self) -> Any:
        """All values as one pytree with a leading batch axis."""
        if self._pending:
            merged = _stack(self._pending)
            self._stacked = merged if self._stacked is None else _concat(self._stacked, merged)
            self._pending = []
        return self._stacked

    def set_stacked(self, stacked: Any) -> None:
        self.stacked()
        self._stacked = stacked

    def __getitem__(self, index: int) -> Any:
        assert 0 <= index < self._count, f"index {index} out of range"
        return jax.tree_util.tree_map(lambda x: x[index], self.stacked())

    def __setitem__(self, index: int, value: Any) -> None:
        assert 0 <= index < self._count, f"index {index} out of range"
        assert type(value) is self.element_type
        self._stacked = jax.tree_util.tree_map(
            lambda x, y: x.at[index].set(y), self.stacked(), value
        )

    def copy(self) -> "ArrayBuffer":
        out = ArrayBuffer(self.element_type)
        out._stacked = self.stacked()
        out._count = self._count
        return out


@jax.jit
def _retract_batch(stacked: Any, deltas: jnp.ndarray) -> Any:
    return jax.vmap(lambda p, d: p.retract(d))(stacked, deltas)


class VariableAssignments:
    """Type-keyed store of variable values."""

    def __init__(self):
        self._buffers: Dict[type, ArrayBuffer] = {}

    def store(self, value: Any) -> TypedID:
        buffer = self._buffers.get(type(value))
        if buffer is None:
            buffer = self._buffers[type(value)] = ArrayBuffer(type(value))
        return TypedID(type(value), buffer.append(value))

    def _buffer_for(self, handle: TypedID) -> ArrayBuffer:
        buffer = self._buffers.get(handle.type)
        assert buffer is not None and 0 <= handle.index < len(buffer), (
            f"{handle} does not belong to this store"
        )
        return buffer

    def __getitem__(self, handle: TypedID) -> Any:
        return self._buffer_for(handle)[handle.index]

    def __setitem__(self, handle: TypedID, value: Any) -> None:
        self._buffer_for(handle)[handle.index] = value

    def __contains__(self, handle: TypedID) -> bool:
        buffer = self._buffers.get(handle.type)
        return buffer is not None and 0 <= handle.index < len(buffer)

    def __len__(self) -> int:
        return sum(len(b) for b in self._buffers.values())

    def types(self) -> Tuple[type, ...]:
        return tuple(self._buffers)

    def count(self, value_type: type) -> int:
        buffer = self._buffers.get(value_type)
        return 0 if buffer is None else len(buffer)

    def stacked(self, value_type: type) -> Any:
        return self._buffers[value_type].stacked()

    def handles(self, value_type: type) -> List[TypedID]:
        return [TypedID(value_type, i) for i in range(self.count(value_type))]

    def values_of(self, value_type: type) -> Iterator[Tuple[TypedID, Any]]:
        for handle in self.handles(value_type):
            yield handle, self[handle]

    # --- tangent space ------------------------------------------------------

    def differentiable_types(self) -> Tuple[type, ...]:
        return tuple(t for t in self._buffers if is_manifold_type(t))

    def tangent_zeros(self) -> VectorBlocks:
        """One zero tangent vector per stored differentiable value."""
        return VectorBlocks(
            {
                t: jnp.zeros((len(self._buffers[t]), t.tangent_dim))
                for t in self.differentiable_types()
            }
        )

    def move(self, along: VectorBlocks) -> None:
        """Retract every differentiable value by its tangent vector, in place."""
        for t in self.differentiable_types():
            assert t in along, f"missing tangent block for {t.__name__}"
            buffer = self._buffers[t]
            deltas = along[t]
            assert deltas.shape == (len(buffer), t.tangent_dim), (
                f"tangent block for {t.__name__} has shape {deltas.shape}"
            )
            buffer.set_stacked(_retract_batch(buffer.stacked(), deltas))

    def moved(self, along: VectorBlocks) -> "VariableAssignments":
        out = self.copy()
        out.move(along)
        return out

    def copy(self) -> "VariableAssignments":
        out = VariableAssignments()
        out._buffers = {t: b.copy() for t, b in self._buffers.items()}
        return out

    def assign(self, other: "VariableAssignments") -> None:
        """Replace this store's contents with a copy of ``other``'s."""
        self._buffers = {t: b.copy() for t, b in other._buffers.items()}
