# Copyright (c) 2025.
# This file is part of fusion-jit, released under the MIT License.
"""
Manifold and Lie-group abstractions for fusion-jit.

The optimizer works in a local tangent space while the *state* lives on a
manifold. Every variable type stored in a `VariableAssignments` that should
be optimized is a subclass of `Manifold` and provides:

    • ``tangent_dim``                   (class attribute)
    • ``retract(v)``                    point ⊕ tangent vector
    • ``local_coordinate(other)``       inverse of retract around ``self``

with the contract

    retract(p, 0) = p
    local_coordinate(p, retract(p, v)) = v      (for small v)
    local_coordinate(p, p) = 0

Lie groups
----------
`LieGroup` derives the manifold structure from the group operations using
right multiplication:

    retract(p, v)          = p · Exp(v)
    local_coordinate(p, q) = Log(p⁻¹ · q)

and supplies a *default* adjoint computed by automatic differentiation of
the conjugation map ``v ↦ Log(p · Exp(v) · p⁻¹)`` at zero (forward mode for
``adjoint``, reverse mode for ``adjoint_transpose``). Concrete groups in
`slam.lie_groups` override both with closed forms; the defaults remain the
reference the closed forms are tested against.

Euclidean vectors
-----------------
``Vector1 … Vector12`` are R^n viewed as a Lie group under addition, so a
landmark position or a relaxed rotation can be a variable like any pose.

All concrete manifold values are `jax_dataclasses` pytree dataclasses: they
can be stacked into batches, passed through ``jax.jit`` and vmapped over.
"""

from __future__ import annotations

from typing import Dict, Type

import jax
import jax.numpy as jnp
import jax_dataclasses as jdc

from fusion_jit.core.vectors import standard_basis


class Manifold:
    """Base class of every differentiable variable type."""

    tangent_dim = 0

    def retract(self, v: jnp.ndarray) -> "Manifold":
        raise NotImplementedError

    def local_coordinate(self, other: "Manifold") -> jnp.ndarray:
        raise NotImplementedError

    @classmethod
    def zero_tangent(cls) -> jnp.ndarray:
        return jnp.zeros(cls.tangent_dim)

    @classmethod
    def tangent_standard_basis(cls) -> jnp.ndarray:
        return standard_basis(cls.tangent_dim)


def is_manifold_type(t) -> bool:
    return isinstance(t, type) and issubclass(t, Manifold)


class LieGroup(Manifold):
    """Manifold whose retraction is right multiplication by Exp."""

    @classmethod
    def identity(cls) -> "LieGroup":
        raise NotImplementedError

    @classmethod
    def expmap(cls, v: jnp.ndarray) -> "LieGroup":
        raise NotImplementedError

    def logmap(self) -> jnp.ndarray:
        raise NotImplementedError

    def compose(self, other: "LieGroup") -> "LieGroup":
        raise NotImplementedError

    def inverse(self) -> "LieGroup":
        raise NotImplementedError

    def __mul__(self, other: "LieGroup") -> "LieGroup":
        return self.compose(other)

    def retract(self, v: jnp.ndarray) -> "LieGroup":
        return self * type(self).expmap(v)

    def local_coordinate(self, other: "LieGroup") -> jnp.ndarray:
        return (self.inverse() * other).logmap()

    # --- adjoint ------------------------------------------------------------

    def _conjugation(self, v: jnp.ndarray) -> jnp.ndarray:
        return (self * type(self).expmap(v) * self.inverse()).logmap()

    def adjoint(self, v: jnp.ndarray) -> jnp.ndarray:
        """Ad_p(v): tangent vector at p carried to the identity."""
        _, out = jax.jvp(self._conjugation, (type(self).zero_tangent(),), (v,))
        return out

    def adjoint_transpose(self, v: jnp.ndarray) -> jnp.ndarray:
        _, pullback = jax.vjp(self._conjugation, type(self).zero_tangent())
        return pullback(v)[0]

    def adjoint_matrix(self) -> jnp.ndarray:
        """Matrix of ``adjoint``; column j is ``adjoint(e_j)``."""
        return jax.vmap(self.adjoint)(type(self).tangent_standard_basis()).T


def between(a: LieGroup, b: LieGroup) -> LieGroup:
    """Relative transform a⁻¹ · b."""
    return a.inverse() * b


# ---------------------------------------------------------------------------
# Euclidean vectors
# ---------------------------------------------------------------------------

@jdc.pytree_dataclass
class Vector(LieGroup):
    """R^n under addition. Use the fixed-size subclasses ``Vector1 … Vector12``."""

    v: jnp.ndarray

    @classmethod
    def make(cls, *components) -> "Vector":
        v = jnp.asarray(components[0] if len(components) == 1 else components, dtype=jnp.float64)
        v = jnp.reshape(v, (cls.tangent_dim,))
        return cls(v)

    @classmethod
    def identity(cls) -> "Vector":
        return cls(jnp.zeros(cls.tangent_dim))

    @classmethod
    def expmap(cls, v: jnp.ndarray) -> "Vector":
        return cls(v)

    def logmap(self) -> jnp.ndarray:
        return self.v

    def compose(self, other: "Vector") -> "Vector":
        return type(self)(self.v + other.v)

    def inverse(self) -> "Vector":
        return type(self)(-self.v)

    def retract(self, v: jnp.ndarray) -> "Vector":
        return type(self)(self.v + v)

    def local_coordinate(self, other: "Vector") -> jnp.ndarray:
        return other.v - self.v

    def adjoint(self, v: jnp.ndarray) -> jnp.ndarray:
        return v

    def adjoint_transpose(self, v: jnp.ndarray) -> jnp.ndarray:
        return v


VECTOR_TYPES: Dict[int, Type[Vector]] = {}


def _vector_type(dim: int) -> Type[Vector]:
    name = f"Vector{dim}"
    cls = type(name, (Vector,), {"tangent_dim": dim, "__module__": __name__, "__qualname__": name})
    cls = jdc.pytree_dataclass(cls)
    VECTOR_TYPES[dim] = cls
    return cls


Vector1 = _vector_type(1)
Vector2 = _vector_type(2)
Vector3 = _vector_type(3)
Vector4 = _vector_type(4)
Vector5 = _vector_type(5)
Vector6 = _vector_type(6)
Vector7 = _vector_type(7)
Vector8 = _vector_type(8)
Vector9 = _vector_type(9)
Vector10 = _vector_type(10)
Vector11 = _vector_type(11)
Vector12 = _vector_type(12)
