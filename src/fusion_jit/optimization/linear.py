# Copyright (c) 2025.
# This file is part of fusion-jit, released under the MIT License.
"""
Linearized (Gaussian) factor graphs.

Linearizing a factor graph at an assignment x turns every factor into a
`JacobianFactor`

    e(δ) = Σ_i A_i δ_i + b

where ``δ_i`` is the tangent perturbation of the i-th variable the factor
touches, ``A_i`` is a dense ``(error_dim, tangent_dim)`` block and ``b`` is
the factor's error at x. Collected over the whole graph this is the
block-sparse system

    r(Δ) = A Δ + b

that `GaussianFactorGraph` represents *matrix-free*: it never assembles A,
it only offers the two products a Krylov solver needs,

    apply_forward(Δ)   ->  A Δ        (error-space VectorBlocks)
    apply_adjoint(y)   ->  Aᵀ y       (tangent-space VectorBlocks)

Both are additive over factors and exact adjoints of each other:
``<A Δ, y> == <Δ, Aᵀ y>``.

Damping
-------
`add_scalar_jacobians(s)` appends one `ScalarJacobianFactor` per variable,
with error ``s · δ_i`` and zero bias. Levenberg–Marquardt passes
``s = sqrt(λ)``, which adds ``λ I`` to the normal equations AᵀA.
"""

from __future__ import annotations

from typing import Dict, Hashable, Tuple

import jax.numpy as jnp
import jax_dataclasses as jdc
import numpy as onp

from fusion_jit.core.types import TypedID
from fusion_jit.core.vectors import VectorBlocks


@jdc.pytree_dataclass
class JacobianFactor:
    """Linear factor ``e(δ) = Σ A_i δ_i + b`` for one nonlinear factor."""

    edges: jdc.Static[Tuple[TypedID, ...]]
    jacobians: Tuple[jnp.ndarray, ...]
    residual: jnp.ndarray

    def apply_forward(self, *deltas: jnp.ndarray) -> jnp.ndarray:
        out = jnp.zeros_like(self.residual)
        for A, d in zip(self.jacobians, deltas):
            out = out + A @ d
        return out

    def apply_adjoint(self, y: jnp.ndarray) -> Tuple[jnp.ndarray, ...]:
        return tuple(A.T @ y for A in self.jacobians)

    def error_vector(self, *deltas: jnp.ndarray) -> jnp.ndarray:
        return self.apply_forward(*deltas) + self.residual


@jdc.pytree_dataclass
class ScalarJacobianFactor:
    """Linear factor ``e(δ) = scalar · δ`` on a single variable."""

    edges: jdc.Static[Tuple[TypedID, ...]]
    scalar: jnp.ndarray

    def apply_forward(self, delta: jnp.ndarray) -> jnp.ndarray:
        return self.scalar * delta

    def apply_adjoint(self, y: jnp.ndarray) -> Tuple[jnp.ndarray, ...]:
        return (self.scalar * y,)

    def error_vector(self, delta: jnp.ndarray) -> jnp.ndarray:
        return self.apply_forward(delta)


class JacobianFactorArray:
    """Stacked Jacobian blocks of every factor in one factor array."""

    def __init__(
        self,
        edge_types: Tuple[type, ...],
        indices: onp.ndarray,
        jacobians: Tuple[jnp.ndarray, ...],
        residual: jnp.ndarray,
    ):
        assert indices.shape == (residual.shape[0], len(edge_types))
        self.edge_types = edge_types
        self.indices = indices        # (n, k) positions into each edge type's block
        self.jacobians = jacobians    # k arrays (n, error_dim, tangent_dim_j)
        self.residual = residual      # (n, error_dim)

    def __len__(self) -> int:
        return self.residual.shape[0]

    def forward(self, delta: VectorBlocks) -> jnp.ndarray:
        out = jnp.zeros_like(self.residual)
        for j, t in enumerate(self.edge_types):
            out = out + jnp.einsum("nij,nj->ni", self.jacobians[j], delta[t][self.indices[:, j]])
        return out

    def adjoint_into(self, y: jnp.ndarray, out: Dict[type, jnp.ndarray]) -> None:
        for j, t in enumerate(self.edge_types):
            contribution = jnp.einsum("nij,ni->nj", self.jacobians[j], y)
            out[t] = out[t].at[self.indices[:, j]].add(contribution)

    def factor(self, i: int, edges: Tuple[TypedID, ...]) -> JacobianFactor:
        return JacobianFactor(edges, tuple(A[i] for A in self.jacobians), self.residual[i])


class ScalarJacobianFactorArray:
    """``scalar · δ`` for every variable of one type."""

    def __init__(self, variable_type: type, count: int, scalar: float):
        self.edge_types = (variable_type,)
        self.indices = onp.arange(count)[:, None]
        self.scalar = scalar
        self.residual = jnp.zeros((count, variable_type.tangent_dim))

    def __len__(self) -> int:
        return self.residual.shape[0]

    def forward(self, delta: VectorBlocks) -> jnp.ndarray:
        return self.scalar * delta[self.edge_types[0]]

    def adjoint_into(self, y: jnp.ndarray, out: Dict[type, jnp.ndarray]) -> None:
        t = self.edge_types[0]
        out[t] = out[t] + self.scalar * y

    def factor(self, i: int, edges: Tuple[TypedID, ...]) -> ScalarJacobianFactor:
        return ScalarJacobianFactor(edges, jnp.asarray(self.scalar))


class GaussianFactorGraph:
    """Block-sparse linear least-squares problem ``min ‖A Δ + b‖²``."""

    def __init__(self, tangent_counts: Dict[type, int]):
        # variable type -> number of variables of that type
        self.tangent_counts = dict(tangent_counts)
        self._arrays: Dict[Hashable, object] = {}

    def store_array(self, key: Hashable, array) -> None:
        assert key not in self._arrays, f"duplicate factor array {key}"
        for t in array.edge_types:
            assert t in self.tangent_counts, f"unknown variable type {t.__name__}"
        self._arrays[key] = array

    def keys(self):
        return self._arrays.keys()

    def array(self, key: Hashable):
        return self._arrays[key]

    def __len__(self) -> int:
        return sum(len(a) for a in self._arrays.values())

    def copy(self) -> "GaussianFactorGraph":
        out = GaussianFactorGraph(self.tangent_counts)
        out._arrays = dict(self._arrays)
        return out

    def tangent_zeros(self) -> VectorBlocks:
        return VectorBlocks(
            {t: jnp.zeros((n, t.tangent_dim)) for t, n in self.tangent_counts.items()}
        )

    def bias(self) -> VectorBlocks:
        """The residual ``b``: error vectors at ``Δ = 0``."""
        return VectorBlocks({k: a.residual for k, a in self._arrays.items()})

    def apply_forward(self, delta: VectorBlocks) -> VectorBlocks:
        return VectorBlocks({k: a.forward(delta) for k, a in self._arrays.items()})

    def apply_adjoint(self, y: VectorBlocks) -> VectorBlocks:
        out = self.tangent_zeros().blocks
        for k, a in self._arrays.items():
            a.adjoint_into(y[k], out)
        return VectorBlocks(out)

    def error_vectors(self, delta: VectorBlocks) -> VectorBlocks:
        return self.apply_forward(delta) + self.bias()

    def error(self, delta: VectorBlocks) -> float:
        return 0.5 * self.error_vectors(delta).squared_norm()

    def add_scalar_jacobians(self, scalar: float) -> None:
        """Append ``scalar · δ_i`` for every variable in the problem."""
        for t, n in self.tangent_counts.items():
            self.store_array(("scalar_jacobian", t), ScalarJacobianFactorArray(t, n, scalar))
