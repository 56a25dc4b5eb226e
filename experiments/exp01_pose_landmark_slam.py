# Copyright (c) 2025.
# This file is part of fusion-jit, released under the MIT License.
from __future__ import annotations

import logging

import jax.numpy as jnp

from fusion_jit.optimization.solvers import LMConfig, Verbosity
from fusion_jit.slam.lie_groups import Pose2, Rot2
from fusion_jit.slam.manifold import Vector2
from fusion_jit.world.model import WorldModel


def setup_mini_world() -> WorldModel:
    """
    Build a tiny synthetic 2D world:

      - 3 Pose2 poses along +x:
          pose0 ~ (0, 0, 0)
          pose1 ~ (1, 0, 0)
          pose2 ~ (2, 0, 0)

      - 2 landmarks, each observed by bearing and range:
          lamp ~ (1, 1)      seen from all three poses
          door ~ (2, -1)     seen from pose1 and pose2

    Factors:
      - prior on pose0 (identity)
      - odometry pose0->pose1 and pose1->pose2 (1m in x)
      - bearing/range observations
    """
    wm = WorldModel()

    # Initial guesses are intentionally noisy
    wm.add_pose(Pose2.from_xytheta(0.2, -0.1, 0.05), name="pose0")
    wm.add_pose(Pose2.from_xytheta(0.8, 0.1, -0.1), name="pose1")
    wm.add_pose(Pose2.from_xytheta(2.1, -0.2, 0.1), name="pose2")

    wm.add_landmark(Vector2.make(0.7, 1.4), name="lamp")
    wm.add_landmark(Vector2.make(2.4, -0.6), name="door")

    wm.add_prior("pose0", Pose2.identity())
    odom = Pose2.from_xytheta(1.0, 0.0, 0.0)
    wm.add_between("pose0", "pose1", odom)
    wm.add_between("pose1", "pose2", odom)

    truth = {"lamp": jnp.array([1.0, 1.0]), "door": jnp.array([2.0, -1.0])}
    seen = [("pose0", "lamp"), ("pose1", "lamp"), ("pose2", "lamp"), ("pose1", "door"), ("pose2", "door")]
    for pose, landmark in seen:
        x = float(pose[-1])
        local = truth[landmark] - jnp.array([x, 0.0])
        bearing = Rot2.from_angle(jnp.arctan2(local[1], local[0]))
        wm.add_bearing_range(pose, landmark, bearing, jnp.linalg.norm(local), weight=4.0)

    return wm


def print_world_state(wm: WorldModel, label: str):
    print(f"\n=== {label} ===")
    for name in wm.pose_ids:
        p = wm.value(name)
        print(f"{name}: x={float(p.x):.3f}, y={float(p.y):.3f}, theta={float(p.theta):.3f}")
    for name in wm.landmark_ids:
        v = wm.value(name).v
        print(f"{name}: ({float(v[0]):.3f}, {float(v[1]):.3f})")
    print(f"error: {wm.error():.6e}")


def main():
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    wm = setup_mini_world()

    print_world_state(wm, label="INITIAL STATE")
    wm.optimize(LMConfig(verbosity=Verbosity.SUMMARY))
    print_world_state(wm, label="OPTIMIZED STATE")


if __name__ == "__main__":
    main()
