from __future__ import annotations

import jax
import jax.numpy as jnp
import pytest

from fusion_jit.core.factor_graph import FactorGraph
from fusion_jit.core.types import TypedID
from fusion_jit.core.variables import VariableAssignments
from fusion_jit.optimization.solvers import LevenbergMarquardt
from fusion_jit.slam.lie_groups import Pose2, Pose3, Rot2
from fusion_jit.slam.manifold import Vector2, between
from fusion_jit.slam.measurements import (
    BearingRangeFactor2,
    BetweenFactor,
    BetweenFactorAlternative,
    PriorFactor,
    sigma_to_weight,
    sqrt_information,
)


def test_sigma_to_weight():
    assert float(sigma_to_weight(0.5)) == pytest.approx(4.0)
    assert jnp.allclose(sigma_to_weight([1.0, 0.1]), jnp.array([1.0, 100.0]))


def test_sqrt_information_forms():
    """Weights are information; the factor applies their square root."""
    assert jnp.allclose(sqrt_information(None, 3), jnp.ones(3))
    assert jnp.allclose(sqrt_information(4.0, 2), jnp.array([2.0, 2.0]))
    assert jnp.allclose(sqrt_information([1.0, 4.0, 9.0], 3), jnp.array([1.0, 2.0, 3.0]))
    with pytest.raises(AssertionError):
        sqrt_information([1.0, 2.0], 3)


def test_scalar_and_vector_sigma_weight_errors_alike():
    """
    A prior with sigma = 0.5 given once as a scalar and once per component
    must produce the same whitened error: e / sigma.
    """
    x = TypedID(Pose2, 0)
    value = Pose2.from_xytheta(1.0, 0.0, 0.0)
    scalar = PriorFactor.make(x, Pose2.identity(), weight=sigma_to_weight(0.5))
    vector = PriorFactor.make(x, Pose2.identity(), weight=sigma_to_weight([0.5, 0.5, 0.5]))
    plain = PriorFactor.make(x, Pose2.identity())

    assert jnp.allclose(scalar.error_vector(value), vector.error_vector(value))
    assert jnp.allclose(vector.error_vector(value), 2.0 * plain.error_vector(value))


def test_per_component_sigma_scales_each_component():
    """Between factor on Vector2 with sigmas (1, 0.1): error (0.1, 0.1) whitens to (0.1, 1)."""
    factor = BetweenFactor.make(
        TypedID(Vector2, 0), TypedID(Vector2, 1), Vector2.make(0.0, 0.0),
        weight=sigma_to_weight([1.0, 0.1]),
    )
    e = factor.error_vector(Vector2.make(0.0, 0.0), Vector2.make(0.1, 0.1))
    assert jnp.allclose(e, jnp.array([0.1, 1.0]))


def test_prior_weight_scales_error():
    """Information 9 scales the error by 3 and the cost by 9."""
    x = TypedID(Pose2, 0)
    value = Pose2.from_xytheta(1.0, 0.0, 0.0)
    plain = PriorFactor.make(x, Pose2.identity())
    weighted = PriorFactor.make(x, Pose2.identity(), weight=9.0)
    assert jnp.allclose(weighted.error_vector(value), 3.0 * plain.error_vector(value))
    assert float(weighted.error(value)) == pytest.approx(9.0 * float(plain.error(value)))


def test_between_zero_at_measurement():
    """x2 = x1 · d gives zero between error."""
    x1 = Pose2.from_xytheta(1.0, 2.0, 0.4)
    d = Pose2.from_xytheta(0.5, -0.2, 1.0)
    factor = BetweenFactor.make(TypedID(Pose2, 0), TypedID(Pose2, 1), d)
    assert jnp.allclose(factor.error_vector(x1, x1 * d), jnp.zeros(3), atol=1e-12)


def test_between_alternative_zero_at_measurement():
    """Chordal Pose3 between: zero at the measurement, a pure translation offset shows up in the last three entries."""
    x1 = Pose3.expmap(jnp.array([0.1, 0.2, -0.3, 1.0, 0.0, 2.0]))
    d = Pose3.expmap(jnp.array([-0.4, 0.0, 0.2, 0.5, 0.5, 0.0]))
    factor = BetweenFactorAlternative.make(TypedID(Pose3, 0), TypedID(Pose3, 1), d)
    assert factor.error_vector(x1, x1 * d).shape == (12,)
    assert jnp.allclose(factor.error_vector(x1, x1 * d), jnp.zeros(12), atol=1e-12)
    off = x1 * d * Pose3.expmap(jnp.array([0.0, 0.0, 0.0, 0.1, 0.0, 0.0]))
    expected = d.rot.rotate(jnp.array([0.1, 0.0, 0.0]))
    assert jnp.allclose(factor.error_vector(x1, off)[:9], jnp.zeros(9), atol=1e-12)
    assert jnp.allclose(factor.error_vector(x1, off)[9:], expected, atol=1e-12)


def test_bearing_range_zero_at_truth():
    """Pose at (1, 1) facing +y sees a landmark at (1, 3) straight ahead, 2 m away."""
    pose = Pose2.from_xytheta(1.0, 1.0, jnp.pi / 2)
    landmark = Vector2.make(1.0, 3.0)  # straight ahead, 2 m away
    factor = BearingRangeFactor2.make(
        TypedID(Pose2, 0), TypedID(Vector2, 0), Rot2.from_angle(0.0), 2.0
    )
    assert jnp.allclose(factor.error_vector(pose, landmark), jnp.zeros(2), atol=1e-12)


def test_bearing_range_finite_on_top_of_pose():
    """Landmark exactly on the pose: error and Jacobian stay finite."""
    pose = Pose2.from_xytheta(1.0, 1.0, 0.0)
    factor = BearingRangeFactor2.make(
        TypedID(Pose2, 0), TypedID(Vector2, 0), Rot2.from_angle(0.3), 1.0
    )
    landmark = Vector2.make(1.0, 1.0)
    J = jax.jacfwd(lambda v: factor.error_vector(pose, landmark.retract(v)))(jnp.zeros(2))
    assert jnp.all(jnp.isfinite(factor.error_vector(pose, landmark)))
    assert jnp.all(jnp.isfinite(J))


def test_bearing_range_localizes_landmark():
    """Two known poses observe one landmark at (3, 4); LM finds it from (1, 1)."""
    values = VariableAssignments()
    graph = FactorGraph()
    truth = jnp.array([3.0, 4.0])
    poses = [Pose2.identity(), Pose2.from_xytheta(2.0, 0.0, 0.5)]
    ids = [values.store(p) for p in poses]
    lm = values.store(Vector2.make(1.0, 1.0))

    for i, pose in zip(ids, poses):
        graph.store(PriorFactor.make(i, pose, weight=100.0))
        local = pose.transform_to(truth)
        graph.store(
            BearingRangeFactor2.make(
                i, lm, Rot2.from_angle(jnp.arctan2(local[1], local[0])), jnp.linalg.norm(local)
            )
        )

    summary = LevenbergMarquardt().optimize(graph, values)
    assert summary.converged
    assert jnp.allclose(values[lm].v, truth, atol=1e-5)
    assert jnp.allclose(between(poses[1], values[ids[1]]).logmap(), jnp.zeros(3), atol=1e-5)
