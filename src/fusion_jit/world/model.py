# Copyright (c) 2025.
# This file is part of fusion-jit, released under the MIT License.
"""
World-level wrapper around the variable store and factor graph.

This module defines the *world model* abstraction: a thin layer that owns
one `VariableAssignments` and one `FactorGraph` and knows about high-level
entities (poses, landmarks) while staying generic enough to be reused by
experiments and benchmarks.

Key responsibilities
--------------------
- Own the store and the graph so callers never juggle both.
- Provide ergonomic helpers to:
    • Add poses and landmarks, optionally under a human-readable name.
    • Add priors, between factors and bearing/range observations.
    • Run an optimizer (Levenberg–Marquardt by default) in place.
- Keep simple name -> `TypedID` maps so that scenario code does not have
  to carry handles around.

Experiments typically:

    1. Construct a `WorldModel`.
    2. Add variables and factors according to a scenario.
    3. Call `optimize()`.
    4. Read the optimized values back with `value(name_or_handle)`.
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Union

from fusion_jit.core.factor_graph import Factor, FactorGraph
from fusion_jit.core.types import TypedID
from fusion_jit.core.variables import VariableAssignments
from fusion_jit.optimization.solvers import LevenbergMarquardt, LMConfig, LMSummary
from fusion_jit.slam.lie_groups import Rot2
from fusion_jit.slam.measurements import BearingRangeFactor2, BetweenFactor, PriorFactor

Handle = Union[TypedID, str]


class WorldModel:
    """High-level world model built on top of :class:`FactorGraph`."""

    def __init__(self) -> None:
        self.values = VariableAssignments()
        self.graph = FactorGraph()
        # Semantic maps; purely for convenience, they do not affect optimization.
        self.pose_ids: Dict[str, TypedID] = {}
        self.landmark_ids: Dict[str, TypedID] = {}

    # --- variables ----------------------------------------------------------

    def add_variable(self, value: Any) -> TypedID:
        return self.values.store(value)

    def add_pose(self, value: Any, name: Optional[str] = None) -> TypedID:
        """Add a pose variable (any Lie group value, usually Pose2 or Pose3).

        :param value: Initial pose value.
        :param name: Optional semantic name registered in :attr:`pose_ids`.
        :returns: The handle of the new pose.
        """
        handle = self.add_variable(value)
        if name is not None:
            self.pose_ids[name] = handle
        return handle

    def add_landmark(self, value: Any, name: Optional[str] = None) -> TypedID:
        handle = self.add_variable(value)
        if name is not None:
            self.landmark_ids[name] = handle
        return handle

    def resolve(self, handle: Handle) -> TypedID:
        if isinstance(handle, TypedID):
            return handle
        if handle in self.pose_ids:
            return self.pose_ids[handle]
        return self.landmark_ids[handle]

    def value(self, handle: Handle) -> Any:
        return self.values[self.resolve(handle)]

    # --- factors ------------------------------------------------------------

    def add_factor(self, factor: Factor) -> None:
        self.graph.store(factor)

    def add_prior(self, handle: Handle, prior: Any, weight=None) -> None:
        self.add_factor(PriorFactor.make(self.resolve(handle), prior, weight))

    def add_between(self, a: Handle, b: Handle, difference: Any, weight=None) -> None:
        self.add_factor(BetweenFactor.make(self.resolve(a), self.resolve(b), difference, weight))

    def add_bearing_range(
        self, pose: Handle, landmark: Handle, bearing: Rot2, range: float, weight=None
    ) -> None:
        self.add_factor(
            BearingRangeFactor2.make(
                self.resolve(pose), self.resolve(landmark), bearing, range, weight
            )
        )

    # --- optimization -------------------------------------------------------

    def error(self) -> float:
        return self.graph.error(self.values)

    def optimize(self, config: Optional[LMConfig] = None) -> LMSummary:
        """Run Levenberg–Marquardt on the owned graph, updating values in place."""
        return LevenbergMarquardt(config).optimize(self.graph, self.values)
