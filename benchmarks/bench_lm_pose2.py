# Copyright (c) 2025.
# This file is part of fusion-jit, released under the MIT License.

import time

import jax
import jax.numpy as jnp

from fusion_jit.optimization.solvers import LMConfig
from fusion_jit.slam.lie_groups import Pose2
from fusion_jit.world.model import WorldModel


def build_pose2_loop_world_model(num_poses: int = 100, noise: float = 0.05, seed: int = 0):
    """
    Pose2 trajectory driving around a circle:
        pose0 --odom--> pose1 --odom--> ... --odom--> pose_{N-1} --loop--> pose0
    Prior on pose0, noisy initial guesses from the composed odometry.
    """
    wm = WorldModel()
    step = Pose2.from_xytheta(1.0, 0.0, 2 * jnp.pi / num_poses)

    key = jax.random.PRNGKey(seed)
    pose_ids = []
    truth = Pose2.identity()
    for i in range(num_poses):
        key, sub = jax.random.split(key)
        pose_ids.append(wm.add_pose(truth.retract(noise * i * jax.random.normal(sub, (3,)))))
        truth = truth * step

    wm.add_prior(pose_ids[0], Pose2.identity())
    for a, b in zip(pose_ids[:-1], pose_ids[1:]):
        wm.add_between(a, b, step)
    wm.add_between(pose_ids[-1], pose_ids[0], step)
    return wm, pose_ids


def run_benchmark(num_poses: int = 100):
    print("=== Pose2 Levenberg-Marquardt Benchmark (WorldModel) ===")
    print(f"num_poses = {num_poses}")

    # Warmup: compiles every batched kernel once
    wm, _ = build_pose2_loop_world_model(num_poses)
    wm.optimize(LMConfig(max_iters=1))

    wm, pose_ids = build_pose2_loop_world_model(num_poses)
    print(f"Initial error: {wm.error():.6e}")

    t0 = time.time()
    summary = wm.optimize()
    t1 = time.time()

    print(f"Elapsed time: {(t1 - t0) * 1000:.3f} ms")
    print(f"Outer steps: {summary.iterations}, damping trials: {summary.inner_iterations}")
    print(f"Final error: {summary.final_error:.6e} (converged={summary.converged})")

    last = wm.value(pose_ids[-1])
    print(f"poseN-1 (opt): x={float(last.x):.3f}, y={float(last.y):.3f}, theta={float(last.theta):.3f}")


if __name__ == "__main__":
    run_benchmark(num_poses=100)
