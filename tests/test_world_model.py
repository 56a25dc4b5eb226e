from __future__ import annotations

import jax.numpy as jnp
import pytest

from fusion_jit.core.types import TypedID
from fusion_jit.optimization.solvers import LMConfig
from fusion_jit.slam.lie_groups import Pose2, Rot2
from fusion_jit.slam.manifold import Vector2
from fusion_jit.world.model import WorldModel


def test_world_model_pose_landmark_slam():
    """
    Two poses observing one landmark.

    Variables:
      - pose0 = ~(0, 0, 0)
      - pose1 = ~(2, 0, 0)
      - tree  = ~(0.8, 1.3), truth (1, 1)

    Factors:
      - prior on pose0
      - odometry pose0 -> pose1
      - bearing/range from both poses to the tree
    """
    wm = WorldModel()
    p0 = wm.add_pose(Pose2.from_xytheta(0.1, -0.1, 0.05), name="pose0")
    p1 = wm.add_pose(Pose2.from_xytheta(1.7, 0.2, -0.1), name="pose1")
    tree = wm.add_landmark(Vector2.make(0.8, 1.3), name="tree")

    wm.add_prior("pose0", Pose2.identity())
    wm.add_between("pose0", "pose1", Pose2.from_xytheta(2.0, 0.0, 0.0))
    wm.add_bearing_range("pose0", "tree", Rot2.from_angle(jnp.pi / 4), jnp.sqrt(2.0))
    wm.add_bearing_range(p1, tree, Rot2.from_angle(3 * jnp.pi / 4), jnp.sqrt(2.0))

    initial_error = wm.error()
    summary = wm.optimize()

    assert summary.converged
    assert wm.error() < 1e-8 < initial_error
    assert jnp.allclose(wm.value("tree").v, jnp.array([1.0, 1.0]), atol=1e-5)
    assert jnp.allclose(wm.value(p1).t, jnp.array([2.0, 0.0]), atol=1e-5)
    assert wm.value("pose0") is not None
    assert p0 == wm.pose_ids["pose0"]


def test_resolve_names_and_handles():
    """Names resolve to handles; handles pass through unchanged."""
    wm = WorldModel()
    a = wm.add_pose(Pose2.identity(), name="a")
    b = wm.add_landmark(Vector2.make(1.0, 2.0), name="b")
    c = wm.add_variable(Vector2.make(0.0, 0.0))

    assert wm.resolve("a") == a
    assert wm.resolve("b") == b
    assert wm.resolve(c) is c
    assert c == TypedID(Vector2, 1)
    with pytest.raises(KeyError):
        wm.resolve("missing")


def test_optimize_accepts_config():
    """A custom LMConfig reaches the solver."""
    wm = WorldModel()
    x = wm.add_pose(Pose2.from_xytheta(1.0, 1.0, 1.0))
    wm.add_prior(x, Pose2.identity())
    summary = wm.optimize(LMConfig(max_iters=1))
    assert summary.iterations == 1
    assert wm.error() < summary.error_history[0]
