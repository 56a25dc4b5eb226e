# Copyright (c) 2025.
# This file is part of fusion-jit, released under the MIT License.
"""
Measurement factors for fusion-jit.

Every factor here is a `core.factor_graph.Factor` subclass: a pytree
dataclass holding its edges, its measurement and a per-component square-root
information vector ``sqrt_info``. Error vectors are whitened by
``sqrt_info`` before they reach the optimizer.

1. Priors and relative-motion factors
-------------------------------------
    • `PriorFactor`:
        Pins a variable to a known value on any manifold:
            e = sqrt_info * prior.local_coordinate(x)

    • `BetweenFactor`:
        Relative-motion constraint between two variables of one Lie group:
            e = sqrt_info * difference.local_coordinate(x1⁻¹ · x2)

      Both have hand-derived Jacobians for Pose2, Rot2 and Euclidean
      vectors; other groups fall back to autodiff.

2. Pose3 chordal between factor
-------------------------------
    • `BetweenFactorAlternative`:
        12-dimensional error comparing rotation matrices entrywise
        instead of through the SO(3) logarithm:
            e = [vec(R₁₂ - R_d), t₁₂ - t_d]

3. Landmark factors
-------------------
    • `BearingRangeFactor2`:
        Pose2 observing a Vector2 landmark at a measured bearing (Rot2)
        and range.

4. Weighting
------------
Factors are built with ``make(...)`` which accepts an optional ``weight``:

    - missing:  unit sqrt-information
    - scalar:   information; applied as sqrt(w) on every component
    - vector:   per-component information; applied as sqrt(w[i])

`sigma_to_weight` converts standard deviations to weights.
"""

from __future__ import annotations

from typing import Any, Optional

import jax.numpy as jnp
import jax_dataclasses as jdc

from fusion_jit.core.factor_graph import Factor
from fusion_jit.core.math3d import se2_log_jacobian
from fusion_jit.core.types import TypedID
from fusion_jit.optimization.linear import JacobianFactor
from fusion_jit.slam.lie_groups import Pose2, Pose3, Rot2
from fusion_jit.slam.manifold import Vector, between


def sigma_to_weight(sigma):
    """
    Convert standard deviation sigma (or vector of sigmas) to a weight usable
    by the factor constructors.

    For scalar sigma:
        w = 1 / sigma^2

    For vector sigma (per-component std devs):
        w[i] = 1 / sigma[i]^2
    """
    s = jnp.asarray(sigma, dtype=jnp.float64)
    return 1.0 / (s * s)


def sqrt_information(weight, dim: int) -> jnp.ndarray:
    """
    Per-component sqrt-information vector of length ``dim``.

    ``weight`` is information, as returned by `sigma_to_weight`:
      - None:    ones
      - scalar:  sqrt(w) * ones
      - vector:  sqrt(w), per component
    """
    if weight is None:
        return jnp.ones(dim)
    w = jnp.asarray(weight, dtype=jnp.float64)
    if w.ndim == 0:
        return jnp.sqrt(w) * jnp.ones(dim)
    assert w.shape == (dim,), f"weight of shape {w.shape} for a {dim}-dimensional error"
    return jnp.sqrt(w)


def _weighted(factor: JacobianFactor, sqrt_info: jnp.ndarray) -> JacobianFactor:
    return JacobianFactor(
        factor.edges,
        tuple(sqrt_info[:, None] * A for A in factor.jacobians),
        sqrt_info * factor.residual,
    )


@jdc.pytree_dataclass
class PriorFactor(Factor):
    """e = prior.local_coordinate(x)"""

    prior: Any
    sqrt_info: jnp.ndarray

    @classmethod
    def make(cls, id: TypedID, prior: Any, weight=None) -> "PriorFactor":
        return cls((id,), prior, sqrt_information(weight, type(prior).tangent_dim))

    def error_vector(self, x):
        return self.sqrt_info * self.prior.local_coordinate(x)

    def linearized(self, x) -> JacobianFactor:
        if isinstance(x, Pose2):
            E = between(self.prior, x)
            J = se2_log_jacobian(E.theta, E.t)
            unweighted = JacobianFactor(self.edges, (J,), E.logmap())
        elif isinstance(x, (Rot2, Vector)):
            unweighted = JacobianFactor(
                self.edges, (jnp.eye(type(x).tangent_dim),), self.prior.local_coordinate(x)
            )
        else:
            return Factor.linearized(self, x)
        return _weighted(unweighted, self.sqrt_info)


@jdc.pytree_dataclass
class BetweenFactor(Factor):
    """e = difference.local_coordinate(x1⁻¹ · x2)"""

    difference: Any
    sqrt_info: jnp.ndarray

    @classmethod
    def make(cls, id1: TypedID, id2: TypedID, difference: Any, weight=None) -> "BetweenFactor":
        return cls((id1, id2), difference, sqrt_information(weight, type(difference).tangent_dim))

    def error_vector(self, x1, x2):
        return self.sqrt_info * self.difference.local_coordinate(between(x1, x2))

    def linearized(self, x1, x2) -> JacobianFactor:
        if isinstance(x1, Pose2):
            # E = d⁻¹ x1⁻¹ x2. Perturbing x2 on the right perturbs E on the
            # right; perturbing x1 does so through Ad(x2⁻¹ x1) with a sign flip.
            E = between(self.difference, between(x1, x2))
            L = se2_log_jacobian(E.theta, E.t)
            J1 = -L @ between(x2, x1).adjoint_matrix()
            unweighted = JacobianFactor(self.edges, (J1, L), E.logmap())
        elif isinstance(x1, (Rot2, Vector)):
            eye = jnp.eye(type(x1).tangent_dim)
            unweighted = JacobianFactor(
                self.edges, (-eye, eye), self.difference.local_coordinate(between(x1, x2))
            )
        else:
            return Factor.linearized(self, x1, x2)
        return _weighted(unweighted, self.sqrt_info)


@jdc.pytree_dataclass
class BetweenFactorAlternative(Factor):
    """Chordal Pose3 between factor with a 12-dimensional error."""

    difference: Pose3
    sqrt_info: jnp.ndarray

    @classmethod
    def make(cls, id1: TypedID, id2: TypedID, difference: Pose3, weight=None):
        return cls((id1, id2), difference, sqrt_information(weight, 12))

    def error_vector(self, x1: Pose3, x2: Pose3):
        actual = between(x1, x2)
        rot_error = jnp.reshape(actual.rot.R - self.difference.rot.R, (9,))
        return self.sqrt_info * jnp.concatenate([rot_error, actual.t - self.difference.t])


@jdc.pytree_dataclass
class BearingRangeFactor2(Factor):
    """Pose2 observing a Vector2 landmark at a bearing and range."""

    bearing: Rot2
    range: jnp.ndarray
    sqrt_info: jnp.ndarray

    @classmethod
    def make(
        cls,
        pose_id: TypedID,
        landmark_id: TypedID,
        bearing: Rot2,
        range: float,
        weight: Optional[Any] = None,
    ) -> "BearingRangeFactor2":
        return cls(
            (pose_id, landmark_id),
            bearing,
            jnp.asarray(range, dtype=jnp.float64),
            sqrt_information(weight, 2),
        )

    def error_vector(self, pose: Pose2, landmark: Vector):
        local = pose.transform_to(landmark.v)
        sq = jnp.dot(local, local)
        safe_sq = jnp.where(sq > 0.0, sq, 1.0)
        predicted_range = jnp.where(sq > 0.0, jnp.sqrt(safe_sq), 0.0)
        direction = jnp.where(sq > 0.0, local, jnp.array([1.0, 0.0]))
        predicted_bearing = Rot2.from_angle(jnp.arctan2(direction[1], direction[0]))
        e = jnp.concatenate(
            [
                self.bearing.local_coordinate(predicted_bearing),
                jnp.reshape(predicted_range - self.range, (1,)),
            ]
        )
        return self.sqrt_info * e
