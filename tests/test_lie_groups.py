from __future__ import annotations

import jax
import jax.numpy as jnp
import pytest

from fusion_jit.slam.lie_groups import Pose2, Pose3, Rot2, Rot3
from fusion_jit.slam.manifold import LieGroup, Vector1, Vector2, Vector3, Vector12, between

GROUPS = [Rot2, Pose2, Rot3, Pose3, Vector1, Vector3, Vector12]
ROTATIONS = [Rot2, Pose2, Rot3, Pose3]

NUM_SAMPLES = 64


def _random_point(cls, key, scale=1.0):
    return cls.expmap(scale * jax.random.normal(key, (cls.tangent_dim,)))


def _random_points(cls, key, n=NUM_SAMPLES, scale=1.0):
    return jax.vmap(cls.expmap)(scale * jax.random.normal(key, (n, cls.tangent_dim)))


def _near_pi_points(cls, key, n=NUM_SAMPLES):
    """Points whose rotation angle is within 1e-4 of pi, random axis and translation."""
    k1, k2 = jax.random.split(key)
    angle = jnp.pi - 1e-4
    if cls is Rot2:
        return jax.vmap(cls.expmap)(jnp.full((n, 1), angle))
    if cls is Pose2:
        t = jax.random.normal(k2, (n, 2))
        return jax.vmap(cls.expmap)(jnp.concatenate([jnp.full((n, 1), angle), t], axis=1))
    axes = jax.random.normal(k1, (n, 3))
    w = angle * axes / jnp.linalg.norm(axes, axis=1, keepdims=True)
    if cls is Rot3:
        return jax.vmap(cls.expmap)(w)
    t = jax.random.normal(k2, (n, 3))
    return jax.vmap(cls.expmap)(jnp.concatenate([w, t], axis=1))


def _roundtrip(points, vs):
    return jax.vmap(lambda p, v: p.local_coordinate(p.retract(v)))(points, vs)


def _same_point(a, b, atol=1e-9):
    return jnp.allclose(a.local_coordinate(b), jnp.zeros(type(a).tangent_dim), atol=atol)


@pytest.mark.parametrize("seed", [0, 1, 2])
@pytest.mark.parametrize("cls", GROUPS)
def test_retract_local_roundtrip(cls, seed):
    """local_coordinate(p, retract(p, v)) == v for many random points and small v."""
    k1, k2 = jax.random.split(jax.random.PRNGKey(seed))
    points = _random_points(cls, k1)
    vs = 0.3 * jax.random.normal(k2, (NUM_SAMPLES, cls.tangent_dim))
    assert jnp.allclose(_roundtrip(points, vs), vs, atol=1e-9)


@pytest.mark.parametrize("cls", ROTATIONS)
def test_retract_local_roundtrip_near_pi(cls):
    """Same round trip at points rotated by almost pi."""
    k1, k2 = jax.random.split(jax.random.PRNGKey(5))
    points = _near_pi_points(cls, k1)
    vs = 0.3 * jax.random.normal(k2, (NUM_SAMPLES, cls.tangent_dim))
    out = _roundtrip(points, vs)
    assert jnp.all(jnp.isfinite(out))
    assert jnp.allclose(out, vs, atol=1e-8)


@pytest.mark.parametrize("cls", ROTATIONS)
def test_retract_local_roundtrip_large_steps(cls):
    """Tangent steps up to ~3 rad still invert, i.e. stay within the injectivity radius."""
    k1, k2 = jax.random.split(jax.random.PRNGKey(6))
    points = _random_points(cls, k1)
    vs = jax.random.normal(k2, (NUM_SAMPLES, cls.tangent_dim))
    rot_dim = 1 if cls in (Rot2, Pose2) else 3
    norms = jnp.linalg.norm(vs[:, :rot_dim], axis=1, keepdims=True)
    scale = jnp.where(norms > 3.0, 3.0 / norms, 1.0)
    vs = vs.at[:, :rot_dim].multiply(scale)
    assert jnp.allclose(_roundtrip(points, vs), vs, atol=1e-6)


@pytest.mark.parametrize("cls", GROUPS)
def test_retract_zero_and_local_self(cls):
    """retract(p, 0) == p and local_coordinate(p, p) == 0."""
    p = _random_point(cls, jax.random.PRNGKey(1))
    assert _same_point(p.retract(cls.zero_tangent()), p)
    assert jnp.allclose(p.local_coordinate(p), jnp.zeros(cls.tangent_dim), atol=1e-12)


@pytest.mark.parametrize("cls", GROUPS)
def test_retract_derivative_finite_at_identity(cls):
    """d/dv local(retract(v)) at the identity is finite and equal to I."""
    p = cls.identity()
    J = jax.jacfwd(lambda v: p.local_coordinate(p.retract(v)))(cls.zero_tangent())
    assert jnp.all(jnp.isfinite(J))
    assert jnp.allclose(J, jnp.eye(cls.tangent_dim), atol=1e-9)


@pytest.mark.parametrize("cls", GROUPS)
def test_inverse_and_between(cls):
    """a · a⁻¹ == identity and a · between(a, b) == b."""
    k1, k2 = jax.random.split(jax.random.PRNGKey(2))
    a = _random_point(cls, k1)
    b = _random_point(cls, k2)
    assert _same_point(a * a.inverse(), cls.identity())
    assert _same_point(a * between(a, b), b)


@pytest.mark.parametrize("cls", [Rot2, Pose2, Rot3, Pose3, Vector3])
def test_closed_form_adjoint_matches_default(cls):
    """Closed-form adjoints agree with the autodiff default."""
    k1, k2 = jax.random.split(jax.random.PRNGKey(3))
    p = _random_point(cls, k1)
    v = jax.random.normal(k2, (cls.tangent_dim,))
    assert jnp.allclose(p.adjoint(v), LieGroup.adjoint(p, v), atol=1e-9)
    assert jnp.allclose(p.adjoint_transpose(v), LieGroup.adjoint_transpose(p, v), atol=1e-9)


@pytest.mark.parametrize("cls", [Rot2, Pose2, Rot3, Pose3])
def test_adjoint_transpose_dot_product(cls):
    """<Ad v, w> == <v, Adᵀ w>."""
    k1, k2, k3 = jax.random.split(jax.random.PRNGKey(4), 3)
    p = _random_point(cls, k1)
    v = jax.random.normal(k2, (cls.tangent_dim,))
    w = jax.random.normal(k3, (cls.tangent_dim,))
    lhs = jnp.dot(p.adjoint(v), w)
    rhs = jnp.dot(v, p.adjoint_transpose(w))
    assert float(lhs) == pytest.approx(float(rhs), rel=1e-9, abs=1e-12)


def test_adjoint_conjugation_identity():
    """p · Exp(v) == Exp(Ad_p v) · p"""
    p = Pose3.expmap(jnp.array([0.2, -0.4, 0.1, 1.0, 2.0, 3.0]))
    v = jnp.array([0.05, 0.02, -0.03, 0.1, -0.2, 0.3])
    lhs = p * Pose3.expmap(v)
    rhs = Pose3.expmap(p.adjoint(v)) * p
    assert _same_point(lhs, rhs)


def test_pose2_compose():
    """(1, 0, 90°) · (1, 0, 0) == (1, 1, 90°)."""
    a = Pose2.from_xytheta(1.0, 0.0, jnp.pi / 2)
    b = Pose2.from_xytheta(1.0, 0.0, 0.0)
    c = a * b
    assert float(c.x) == pytest.approx(1.0)
    assert float(c.y) == pytest.approx(1.0)
    assert float(c.theta) == pytest.approx(jnp.pi / 2)


def test_pose2_transform_roundtrip():
    pose = Pose2.from_xytheta(2.0, -1.0, 0.7)
    p = jnp.array([0.3, 0.9])
    assert jnp.allclose(pose.transform_to(pose.transform_from(p)), p)


def test_rot2_angle_wraps():
    """3 rad + 1 rad wraps to 4 - 2π."""
    r = Rot2.from_angle(3.0) * Rot2.from_angle(1.0)
    assert float(r.theta) == pytest.approx(4.0 - 2 * jnp.pi)


def test_rot3_from_quaternion_matches_expmap():
    """Unit quaternion and axis-angle give the same rotation."""
    angle = 0.8
    axis = jnp.array([0.0, 0.6, 0.8])
    q = jnp.concatenate([jnp.array([jnp.cos(angle / 2)]), jnp.sin(angle / 2) * axis])
    R_q = Rot3.from_quaternion(*q)
    R_e = Rot3.expmap(angle * axis)
    assert jnp.allclose(R_q.R, R_e.R, atol=1e-12)


def test_pose3_matrix_roundtrip():
    p = Pose3.expmap(jnp.array([0.1, 0.2, 0.3, 1.0, -1.0, 2.0]))
    q = Pose3.from_matrix(p.matrix())
    assert _same_point(p, q)
    assert jnp.allclose(p.adjoint_matrix() @ jnp.ones(6), p.adjoint(jnp.ones(6)))


def test_vector_make_and_arithmetic():
    a = Vector2.make(1.0, 2.0)
    b = Vector2.make(jnp.array([3.0, -1.0]))
    assert jnp.allclose((a * b).v, jnp.array([4.0, 1.0]))
    assert jnp.allclose(a.local_coordinate(b), jnp.array([2.0, -3.0]))
    assert jnp.allclose(a.retract(jnp.array([1.0, 1.0])).v, jnp.array([2.0, 3.0]))


def test_group_values_are_pytrees():
    """Pose2 values stack into one pytree and vmap like arrays."""
    poses = [Pose2.from_xytheta(float(i), 0.0, 0.1 * i) for i in range(4)]
    stacked = jax.tree_util.tree_map(lambda *xs: jnp.stack(xs), *poses)
    assert stacked.t.shape == (4, 2)
    logs = jax.vmap(lambda p: p.logmap())(stacked)
    assert logs.shape == (4, 3)
    assert jnp.allclose(logs[2], poses[2].logmap())
