from __future__ import annotations

import jax
import jax.numpy as jnp
import pytest

from fusion_jit.core.math3d import (
    hat,
    project_to_so3,
    se2_exp,
    se2_log,
    se3_exp,
    se3_log,
    so3_exp,
    so3_log,
    vee,
)


def test_hat_vee_roundtrip():
    w = jnp.array([0.3, -1.2, 2.0])
    W = hat(w)
    assert jnp.allclose(W, -W.T)
    assert jnp.allclose(vee(W), w)


def test_so3_exp_is_rotation():
    R = so3_exp(jnp.array([0.4, -0.2, 1.1]))
    assert jnp.allclose(R @ R.T, jnp.eye(3), atol=1e-12)
    assert float(jnp.linalg.det(R)) == pytest.approx(1.0, abs=1e-12)


@pytest.mark.parametrize(
    "w",
    [
        [0.1, -0.05, 0.02],
        [1e-6, 2e-6, -1e-6],
        [0.0, 0.0, 0.0],
        [1.0, 2.0, -0.5],
        [0.0, 0.0, 3.1],
    ],
)
def test_so3_log_exp_roundtrip(w):
    """log(exp(w)) == w from zero up to just below π."""
    w = jnp.array(w)
    w_est = so3_log(so3_exp(w))
    assert jnp.all(jnp.isfinite(w_est))
    assert jnp.allclose(w_est, w, atol=1e-9)


@pytest.mark.parametrize("axis", [[1.0, 0.0, 0.0], [0.0, 1.0, 0.0], [0.0, 0.0, 1.0], [1.0, 1.0, 1.0]])
def test_so3_log_at_pi(axis):
    """Rotations by exactly π about several axes."""
    n = jnp.array(axis) / jnp.linalg.norm(jnp.array(axis))
    R = so3_exp(jnp.pi * n)
    w = so3_log(R)
    assert float(jnp.linalg.norm(w)) == pytest.approx(jnp.pi, abs=1e-6)
    assert jnp.allclose(so3_exp(w), R, atol=1e-6)


def test_so3_log_no_nan_gradient_at_identity():
    """The small-angle branch keeps the derivative finite at zero."""
    J = jax.jacfwd(lambda v: so3_log(so3_exp(v)))(jnp.zeros(3))
    assert jnp.all(jnp.isfinite(J))
    assert jnp.allclose(J, jnp.eye(3), atol=1e-12)


@pytest.mark.parametrize(
    "xi",
    [
        [0.1, -0.2, 0.3, 1.0, 2.0, -0.5],
        [0.0, 0.0, 0.0, 1.0, -1.0, 0.5],
        [1e-5, 0.0, -1e-5, 0.2, 0.0, 0.1],
        [2.0, -1.0, 0.5, -3.0, 0.1, 0.2],
    ],
)
def test_se3_log_exp_roundtrip(xi):
    xi = jnp.array(xi)
    R, t = se3_exp(xi)
    assert jnp.allclose(se3_log(R, t), xi, atol=1e-9)


def test_se3_exp_pure_translation():
    R, t = se3_exp(jnp.array([0.0, 0.0, 0.0, 1.0, 2.0, 3.0]))
    assert jnp.allclose(R, jnp.eye(3))
    assert jnp.allclose(t, jnp.array([1.0, 2.0, 3.0]))


@pytest.mark.parametrize(
    "xi",
    [
        [0.3, 1.0, -2.0],
        [0.0, 1.0, 2.0],
        [1e-4, 0.5, 0.5],
        [-2.5, 0.2, 0.1],
        [3.0, -1.0, 1.0],
    ],
)
def test_se2_log_exp_roundtrip(xi):
    xi = jnp.array(xi)
    phi, t = se2_exp(xi)
    assert jnp.allclose(se2_log(phi, t), xi, atol=1e-9)


def test_se2_exp_quarter_turn():
    """Unit-speed arc turning by π/2 with arc length π/2 ends at (1, 1)."""
    phi, t = se2_exp(jnp.array([jnp.pi / 2, jnp.pi / 2, 0.0]))
    assert float(phi) == pytest.approx(jnp.pi / 2)
    assert jnp.allclose(t, jnp.array([1.0, 1.0]), atol=1e-12)


def test_project_to_so3_recovers_rotation():
    """A perturbed rotation matrix projects back close to the original."""
    R = so3_exp(jnp.array([0.3, 0.2, -0.4]))
    noisy = R + 1e-3 * jnp.arange(9.0).reshape(3, 3)
    P = project_to_so3(noisy)
    assert jnp.allclose(P @ P.T, jnp.eye(3), atol=1e-12)
    assert float(jnp.linalg.det(P)) == pytest.approx(1.0)
    assert jnp.allclose(P, R, atol=1e-2)
    assert jnp.allclose(project_to_so3(R), R, atol=1e-12)
