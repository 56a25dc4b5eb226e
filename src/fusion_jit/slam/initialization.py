# Copyright (c) 2025.
# This file is part of fusion-jit, released under the MIT License.
"""
Chordal initialization for Pose3 graphs.

Pose graph optimization on SE(3) is non-convex; started far from the
answer, Levenberg–Marquardt can stall in a local minimum. Chordal
initialization computes a good starting point in three steps:

1. Relaxed rotations. Every pose gets a free 3×3 matrix (a `Vector9`
   variable, row-major) and every relative rotation ``R₁₂`` becomes the
   linear Frobenius constraint

        R₁ ≈ R₂ R₁₂ᵀ

   An extra anchor matrix is tied to the identity, and priors on poses are
   turned into relative constraints to that anchor. The problem is linear,
   so one CGLS solve gives its exact minimizer.

2. Projection. Each relaxed matrix is projected to the closest rotation
   (SVD).

3. Translations. Poses are set to (rotation, 0) and one Gauss–Newton step
   on the original between factors recovers translations.

Only `BetweenFactor` and `PriorFactor` factors on `Pose3` take part.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import jax.numpy as jnp
import jax_dataclasses as jdc

from fusion_jit.core.factor_graph import Factor, FactorGraph
from fusion_jit.core.types import TypedID
from fusion_jit.core.variables import VariableAssignments
from fusion_jit.optimization.solvers import CGLS, CGLSConfig
from fusion_jit.slam.lie_groups import Pose3, Rot3
from fusion_jit.slam.manifold import Vector9
from fusion_jit.slam.measurements import BetweenFactor, PriorFactor

logger = logging.getLogger(__name__)


def _as_matrix(v: Vector9) -> jnp.ndarray:
    return jnp.reshape(v.v, (3, 3))


@jdc.pytree_dataclass
class FrobeniusFactorRot3(Factor):
    """e = vec(R₂ R₁₂ᵀ) - vec(R₁) on relaxed rotations."""

    difference: jnp.ndarray  # R₁₂, 3×3

    def error_vector(self, start: Vector9, end: Vector9):
        R = _as_matrix(end) @ self.difference.T
        return jnp.reshape(R, (9,)) - start.v


@jdc.pytree_dataclass
class FrobeniusAnchorFactorRot3(Factor):
    """e = vec(R) - vec(prior) on a relaxed rotation."""

    prior: jnp.ndarray  # 3×3

    def error_vector(self, value: Vector9):
        return value.v - jnp.reshape(self.prior, (9,))


@dataclass
class ChordalInitialization:
    """Initial Pose3 estimates from relative rotations and translations."""

    # Tight enough that both linear solves are exact for noise-free measurements.
    cgls: CGLSConfig = field(default_factory=lambda: CGLSConfig(precision=1e-14, max_iters=2000))

    def pose3_graph(
        self, graph: FactorGraph, anchor: TypedID, ids: List[TypedID]
    ) -> FactorGraph:
        """Between factors on Pose3, with priors rewritten relative to ``anchor``."""
        pose_graph = FactorGraph()
        for factor in graph.factors(BetweenFactor, (Pose3, Pose3)):
            pose_graph.store(factor)
        priors = graph.factors(PriorFactor, (Pose3,))
        for factor in priors:
            pose_graph.store(
                BetweenFactor((anchor, factor.edges[0]), factor.prior, factor.sqrt_info)
            )
        if not priors and ids:
            # No absolute information: fix the gauge by pinning the first pose.
            pose_graph.store(BetweenFactor.make(anchor, ids[0], Pose3.identity()))
        return pose_graph

    def solve_orientations(
        self, pose_graph: FactorGraph, ids: List[TypedID], anchor: TypedID
    ) -> Dict[TypedID, Rot3]:
        """
        Projected relaxed rotations for ``ids`` and for every other pose the
        between factors of ``pose_graph`` touch.
        """
        betweens = pose_graph.factors(BetweenFactor, (Pose3, Pose3))
        poses: List[TypedID] = list(ids)
        for factor in betweens:
            poses.extend(h for h in factor.edges if h != anchor and h not in poses)

        relaxed = VariableAssignments()
        association: Dict[TypedID, TypedID] = {}
        for i in poses + [anchor]:
            association[i] = relaxed.store(Vector9(jnp.zeros(9)))

        orientation_graph = FactorGraph()
        for factor in betweens:
            a, b = factor.edges
            orientation_graph.store(
                FrobeniusFactorRot3(
                    (association[a], association[b]), factor.difference.rot.R
                )
            )
        orientation_graph.store(FrobeniusAnchorFactorRot3((association[anchor],), jnp.eye(3)))

        linear = orientation_graph.linearized(relaxed)
        solver = CGLS(self.cgls)
        delta = solver.optimize(linear, linear.tangent_zeros())
        relaxed.move(delta)
        logger.debug("relaxed rotation solve: %d CGLS steps", solver.step)

        return {i: Rot3.closest_to(_as_matrix(relaxed[association[i]])) for i in poses}

    def compute_poses(
        self,
        pose_graph: FactorGraph,
        orientations: Dict[TypedID, Rot3],
        values: VariableAssignments,
        anchor: TypedID,
    ) -> VariableAssignments:
        for i, rot in orientations.items():
            values[i] = Pose3(rot, jnp.zeros(3))
        pose_graph.store(PriorFactor.make(anchor, Pose3.identity()))

        # One Gauss-Newton iteration on the full poses.
        linear = pose_graph.linearized(values)
        delta = CGLS(self.cgls).optimize(linear, linear.tangent_zeros())
        values.move(delta)
        return values

    def initialize(
        self,
        graph: FactorGraph,
        values: VariableAssignments,
        ids: Optional[List[TypedID]] = None,
    ) -> VariableAssignments:
        """
        Chordal estimates for the Pose3 variables ``ids`` (default: all of them).

        ``ids`` may be a subset: every pose the Pose3 factors touch is solved
        for jointly, but only ``ids`` are written back.

        Returns a new assignment: a copy of ``values`` with those poses
        replaced. ``values`` itself is not modified.
        """
        if ids is None:
            ids = values.handles(Pose3)
        work = values.copy()
        anchor = work.store(Pose3.identity())
        pose_graph = self.pose3_graph(graph, anchor, ids)
        orientations = self.solve_orientations(pose_graph, ids, anchor)
        work = self.compute_poses(pose_graph, orientations, work, anchor)

        out = values.copy()
        for i in ids:
            out[i] = work[i]
        return out


def chordal_initialization(
    graph: FactorGraph, values: VariableAssignments, ids: Optional[List[TypedID]] = None
) -> VariableAssignments:
    return ChordalInitialization().initialize(graph, values, ids)
