# Copyright (c) 2025.
# This file is part of fusion-jit, released under the MIT License.
"""
JIT-compiled batched kernels for factor arrays.

A factor array holds n factors of one concrete class, stacked into a single
pytree (see `core.factor_graph.FactorArray`). The kernels here evaluate all
n factors at once:

    batched_error_vectors(factors, values)  -> (n, error_dim)
    batched_errors(factors, values)         -> (n,)
    batched_linearized(factors, values)     -> JacobianFactor with stacked blocks

where ``values`` is a tuple with one stacked pytree per edge, already
gathered so that ``values[j][i]`` is the j-th variable of the i-th factor.

Each kernel is a ``jax.vmap`` of the per-factor method wrapped in
``jax.jit``. JAX caches one compiled executable per (factor class, edge
types, array length), so repeated evaluation of the same graph inside an
optimizer loop compiles once.

Notes
-----
Factors are stored with their ``edges`` stripped (see `FactorArray.append`)
so that every element of an array has the same static structure. Nothing
in these kernels may depend on edges.
"""

from __future__ import annotations

from typing import Any, Tuple

import jax
import jax.numpy as jnp

from fusion_jit.optimization.linear import JacobianFactor


@jax.jit
def batched_error_vectors(factors: Any, values: Tuple[Any, ...]) -> jnp.ndarray:
    return jax.vmap(lambda f, v: f.error_vector(*v))(factors, values)


@jax.jit
def batched_errors(factors: Any, values: Tuple[Any, ...]) -> jnp.ndarray:
    return jax.vmap(lambda f, v: f.error(*v))(factors, values)


@jax.jit
def batched_linearized(factors: Any, values: Tuple[Any, ...]) -> JacobianFactor:
    return jax.vmap(lambda f, v: f.linearized(*v))(factors, values)


def gather(stacked: Any, indices: jnp.ndarray) -> Any:
    """Select rows ``indices`` from every leaf of a stacked pytree."""
    return jax.tree_util.tree_map(lambda x: x[indices], stacked)
