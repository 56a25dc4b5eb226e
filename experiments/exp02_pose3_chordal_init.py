# Copyright (c) 2025.
# This file is part of fusion-jit, released under the MIT License.
from __future__ import annotations

import jax
import jax.numpy as jnp

from fusion_jit.core.factor_graph import FactorGraph
from fusion_jit.core.variables import VariableAssignments
from fusion_jit.optimization.solvers import LevenbergMarquardt
from fusion_jit.slam.initialization import chordal_initialization
from fusion_jit.slam.lie_groups import Pose3
from fusion_jit.slam.manifold import between
from fusion_jit.slam.measurements import BetweenFactor, PriorFactor


def build_pose3_loop(num_poses: int = 8, seed: int = 0):
    """
    Closed Pose3 loop with strongly rotated steps and very poor initial guesses
    (every pose starts at the identity).
    """
    key = jax.random.PRNGKey(seed)
    truth = [Pose3.identity()]
    for _ in range(num_poses - 1):
        key, sub = jax.random.split(key)
        truth.append(truth[-1] * Pose3.expmap(jax.random.normal(sub, (6,))))

    values = VariableAssignments()
    ids = [values.store(Pose3.identity()) for _ in truth]

    graph = FactorGraph()
    graph.store(PriorFactor.make(ids[0], truth[0]))
    for i in range(num_poses):
        j = (i + 1) % num_poses
        graph.store(BetweenFactor.make(ids[i], ids[j], between(truth[i], truth[j])))
    return graph, values, ids, truth


def max_translation_error(values, ids, truth) -> float:
    return max(float(jnp.linalg.norm(values[i].t - p.t)) for i, p in zip(ids, truth))


def main():
    graph, values, ids, truth = build_pose3_loop()
    print(f"identity start:  error={graph.error(values):.6e}, "
          f"max |t - t_true| = {max_translation_error(values, ids, truth):.3f}")

    initial = chordal_initialization(graph, values)
    print(f"chordal start:   error={graph.error(initial):.6e}, "
          f"max |t - t_true| = {max_translation_error(initial, ids, truth):.3e}")

    summary = LevenbergMarquardt().optimize(graph, initial)
    print(f"after LM:        error={summary.final_error:.6e} "
          f"({summary.iterations} steps, converged={summary.converged})")


if __name__ == "__main__":
    main()
