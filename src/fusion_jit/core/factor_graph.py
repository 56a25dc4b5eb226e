# Copyright (c) 2025.
# This file is part of fusion-jit, released under the MIT License.
"""
Factors and factor graphs for fusion-jit.

A `Factor` is an immutable constraint on a few variables. It holds the
handles of the variables it touches (``edges``) plus its own parameters
(measurement, weight, ...) and produces a fixed-dimension error vector as a
pure function of the variable values.

The `FactorGraph` groups factors by concrete type: every factor class
together with the types of its edges defines one `FactorArray`, stored as a
single stacked pytree plus an ``(n, k)`` integer array of variable indices.
All graph-wide operations then run one vmapped, jitted kernel per array
(see `optimization.jit_wrappers`) instead of one Python call per factor.

Factor contract
---------------
error_vector(*values)
    Error e(x) ∈ ℝᵏ. Must be pure and JAX-traceable.

error(*values)
    Scalar cost; defaults to ``0.5 * ‖e‖²``.

linearized(*values) -> JacobianFactor
    Blocks ``A_i = ∂e(retract(x_i, δ_i)) / ∂δ_i`` at δ = 0 and residual
    ``b = e(x)``. The default uses forward-mode autodiff (``jax.jacfwd``);
    factors with a closed-form Jacobian override it.

Writing a factor
----------------
Subclass `Factor`, decorate with ``@jdc.pytree_dataclass`` and declare the
parameters as fields::

    @jdc.pytree_dataclass
    class MyPrior(Factor):
        target: Vector2

        def error_vector(self, x):
            return self.target.local_coordinate(x)

    graph.store(MyPrior((x_id,), target))

Graph operations
----------------
store(factor), error(values), error_vectors(values), linearized(values),
error_gradient(values), factors(type).
"""

from __future__ import annotations

import dataclasses
from typing import Any, Dict, Iterator, List, Optional, Tuple

import jax
import jax.numpy as jnp
import jax_dataclasses as jdc
import numpy as onp

from fusion_jit.core.types import EdgeTypes, TypedID, edge_types
from fusion_jit.core.variables import ArrayBuffer, VariableAssignments
from fusion_jit.core.vectors import VectorBlocks, squared_norm
from fusion_jit.optimization.jit_wrappers import (
    batched_error_vectors,
    batched_errors,
    batched_linearized,
    gather,
)
from fusion_jit.optimization.linear import GaussianFactorGraph, JacobianFactor, JacobianFactorArray
from fusion_jit.slam.manifold import is_manifold_type

FactorKey = Tuple[type, EdgeTypes]


@jdc.pytree_dataclass
class Factor:
    """Base class of all nonlinear factors."""

    edges: jdc.Static[Tuple[TypedID, ...]]

    def error_vector(self, *values: Any) -> jnp.ndarray:
        raise NotImplementedError

    def error(self, *values: Any) -> jnp.ndarray:
        return 0.5 * squared_norm(self.error_vector(*values))

    def linearized(self, *values: Any) -> JacobianFactor:
        def error_at(deltas):
            return self.error_vector(*(v.retract(d) for v, d in zip(values, deltas)))

        zeros = tuple(type(v).zero_tangent() for v in values)
        jacobians = jax.jacfwd(error_at)(zeros)
        return JacobianFactor(self.edges, tuple(jacobians), self.error_vector(*values))


class FactorArray:
    """All factors of one class with the same edge variable types."""

    def __init__(self, factor_type: type, types: EdgeTypes):
        self.factor_type = factor_type
        self.edge_types = types
        self._factors = ArrayBuffer(factor_type)
        self._edges: List[Tuple[TypedID, ...]] = []
        self._indices = None

    def __len__(self) -> int:
        return len(self._edges)

    def append(self, factor: Factor) -> None:
        # Edges are static data; strip them so all stacked factors share one treedef.
        self._factors.append(dataclasses.replace(factor, edges=()))
        self._edges.append(factor.edges)
        self._indices = None

    @property
    def indices(self) -> onp.ndarray:
        if self._indices is None:
            self._indices = onp.array(
                [[e.index for e in edges] for edges in self._edges], dtype=onp.int32
            ).reshape(len(self._edges), len(self.edge_types))
        return self._indices

    def stacked_factors(self) -> Any:
        return self._factors.stacked()

    def gather_values(self, values: VariableAssignments) -> Tuple[Any, ...]:
        idx = self.indices
        return tuple(gather(values.stacked(t), idx[:, j]) for j, t in enumerate(self.edge_types))

    def factor(self, i: int) -> Factor:
        return dataclasses.replace(self._factors[i], edges=self._edges[i])

    def __iter__(self) -> Iterator[Factor]:
        for i in range(len(self)):
            yield self.factor(i)


class FactorGraph:
    """Heterogeneous, append-only collection of factors."""

    def __init__(self):
        self._arrays: Dict[FactorKey, FactorArray] = {}

    def store(self, factor: Factor) -> None:
        types = edge_types(factor.edges)
        for t in types:
            assert is_manifold_type(t), f"factor edge on non-manifold type {t.__name__}"
        key = (type(factor), types)
        array = self._arrays.get(key)
        if array is None:
            array = self._arrays[key] = FactorArray(type(factor), types)
        array.append(factor)

    def keys(self):
        return self._arrays.keys()

    def __len__(self) -> int:
        return sum(len(a) for a in self._arrays.values())

    def factors(self, factor_type: type, types: Optional[EdgeTypes] = None) -> List[Factor]:
        """Stored factors of ``factor_type``, optionally only those on ``types``."""
        return [
            f
            for (ftype, etypes), array in self._arrays.items()
            if ftype is factor_type and (types is None or etypes == tuple(types))
            for f in array
        ]

    # --- evaluation -----------------------------------------------------------

    def error(self, values: VariableAssignments) -> float:
        """Total error at ``values``."""
        total = 0.0
        for array in self._arrays.values():
            errors = batched_errors(array.stacked_factors(), array.gather_values(values))
            total = total + jnp.sum(errors)
        return float(total)

    def error_vectors(self, values: VariableAssignments) -> VectorBlocks:
        return VectorBlocks(
            {
                key: batched_error_vectors(array.stacked_factors(), array.gather_values(values))
                for key, array in self._arrays.items()
            }
        )

    def linearized(self, values: VariableAssignments) -> GaussianFactorGraph:
        """Linear approximation ``A Δ + b`` of all error vectors at ``values``."""
        linear = GaussianFactorGraph(
            {t: values.count(t) for t in values.differentiable_types()}
        )
        for key, array in self._arrays.items():
            lin = batched_linearized(array.stacked_factors(), array.gather_values(values))
            linear.store_array(
                key,
                JacobianFactorArray(array.edge_types, array.indices, lin.jacobians, lin.residual),
            )
        return linear

    def error_gradient(self, values: VariableAssignments) -> VectorBlocks:
        """Gradient ``Aᵀ b`` of the total error in tangent coordinates."""
        linear = self.linearized(values)
        return linear.apply_adjoint(linear.bias())

