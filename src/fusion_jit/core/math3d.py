# Copyright (c) 2025.
# This file is part of fusion-jit, released under the MIT License.
"""
SO(2)/SE(2)/SO(3)/SE(3) numeric kernels for fusion-jit.

This module implements the Lie-group mathematics behind the manifold types
in `slam.lie_groups`. Everything here works on raw ``jnp`` arrays; the
manifold classes wrap these kernels into values with ``retract`` and
``local_coordinate``.

Tangent vectors are ordered rotation first, translation second:

    se(2):  xi = [phi, v_x, v_y]
    se(3):  xi = [w_x, w_y, w_z, v_x, v_y, v_z]

Key Functions
-------------
hat(w) / vee(W)
    3-vector <-> 3×3 skew-symmetric matrix.

so3_exp(w) / so3_log(R)
    Rodrigues' formula and its inverse, including the near-pi branch
    where the rotation axis has to be read off the symmetric part of R.

se2_exp(xi) / se2_log(phi, t)
    Exact SE(2) exponential and logarithm.

se2_log_jacobian(phi, t)
    Derivative of ``Log(E · Exp(delta))`` at ``delta = 0``. Used by the
    hand-written Pose2 factor linearizations.

se3_exp(xi) / se3_log(R, t)
    Exact SE(3) exponential and logarithm.

project_to_so3(M)
    Closest rotation (Frobenius norm) to an arbitrary 3×3 matrix.

Notes
-----
All functions are JIT- and vmap-friendly and must stay NaN-free in both
value *and derivative*, including at the identity where the closed forms
divide by zero. Branches are therefore selected with ``jnp.where`` and the
unselected branch is always fed a harmless operand, so that its derivative
is finite and gets multiplied by zero instead of producing ``0 * inf``.
"""

from __future__ import annotations
from typing import Tuple

import jax.numpy as jnp

# Below this squared angle the closed forms are replaced by Taylor series.
SMALL_ANGLE2 = 1e-4


def _small_and_safe(theta2: jnp.ndarray) -> Tuple[jnp.ndarray, jnp.ndarray]:
    small = theta2 < SMALL_ANGLE2
    return small, jnp.where(small, 1.0, theta2)


# ---------------------------------------------------------------------------
# SO(3)
# ---------------------------------------------------------------------------

def hat(w: jnp.ndarray) -> jnp.ndarray:
    """so(3) hat operator: R^3 -> 3x3 skew-symmetric matrix."""
    x, y, z = w[0], w[1], w[2]
    zero = jnp.zeros_like(x)
    return jnp.array(
        [
            [zero, -z, y],
            [z, zero, -x],
            [-y, x, zero],
        ]
    )


def vee(W: jnp.ndarray) -> jnp.ndarray:
    """vee: so(3) -> R^3, inverse of hat for skew-symmetric input."""
    return jnp.array([W[2, 1], W[0, 2], W[1, 0]])


def so3_exp(w: jnp.ndarray) -> jnp.ndarray:
    """
    Exponential map from so(3) (rotation vector) to SO(3).

        R = I + A W + B W²,   A = sin θ / θ,   B = (1 - cos θ) / θ²
    """
    theta2 = jnp.dot(w, w)
    small, t2 = _small_and_safe(theta2)
    theta = jnp.sqrt(t2)
    half_sin = jnp.sin(0.5 * theta)

    A = jnp.where(small, 1.0 - theta2 / 6.0 + theta2 * theta2 / 120.0, jnp.sin(theta) / theta)
    B = jnp.where(small, 0.5 - theta2 / 24.0 + theta2 * theta2 / 720.0, 2.0 * half_sin * half_sin / t2)

    W = hat(w)
    return jnp.eye(3) + A * W + B * (W @ W)


def _so3_log_near_pi(R: jnp.ndarray) -> jnp.ndarray:
    # Rotation by ~pi: R ≈ 2 n nᵀ - I, so the axis is read from a column of
    # R + I. Use the column with the largest diagonal entry.
    use_z = R[2, 2] > -1.0 + 1e-5
    use_y = jnp.logical_and(~use_z, R[1, 1] > -1.0 + 1e-5)

    dz = jnp.where(use_z, 2.0 + 2.0 * R[2, 2], 1.0)
    dy = jnp.where(use_y, 2.0 + 2.0 * R[1, 1], 1.0)
    dx = jnp.where(use_z | use_y, 1.0, 2.0 + 2.0 * R[0, 0])

    wz = jnp.pi / jnp.sqrt(dz) * jnp.array([R[0, 2], R[1, 2], 1.0 + R[2, 2]])
    wy = jnp.pi / jnp.sqrt(dy) * jnp.array([R[0, 1], 1.0 + R[1, 1], R[2, 1]])
    wx = jnp.pi / jnp.sqrt(dx) * jnp.array([1.0 + R[0, 0], R[1, 0], R[2, 0]])

    return jnp.where(use_z, wz, jnp.where(use_y, wy, wx))


def so3_log(R: jnp.ndarray) -> jnp.ndarray:
    """
    Logarithm map SO(3) -> so(3).

    Three regimes:
      - near identity: w = (1/2 - (tr - 3)/12) vee(R - Rᵀ)
      - near pi:       axis extracted from R + I
      - otherwise:     w = θ / (2 sin θ) vee(R - Rᵀ)
    """
    tr = jnp.trace(R)
    tr_3 = tr - 3.0
    near_identity = tr_3 > -1e-7
    near_pi = tr + 1.0 < 1e-10
    general = ~(near_identity | near_pi)

    cos_theta = jnp.where(general, 0.5 * (tr - 1.0), 0.0)
    theta = jnp.arccos(jnp.clip(cos_theta, -1.0, 1.0))
    magnitude = jnp.where(
        near_identity,
        0.5 - tr_3 / 12.0,
        theta / (2.0 * jnp.sin(theta)),
    )
    skew = jnp.array([R[2, 1] - R[1, 2], R[0, 2] - R[2, 0], R[1, 0] - R[0, 1]])

    return jnp.where(near_pi, _so3_log_near_pi(R), magnitude * skew)


def project_to_so3(M: jnp.ndarray) -> jnp.ndarray:
    """
    Closest rotation to M in the Frobenius norm.

    With M = U S Vᵀ the answer is U diag(1, 1, det(U Vᵀ)) Vᵀ.
    """
    U, _, Vt = jnp.linalg.svd(M)
    d = jnp.sign(jnp.linalg.det(U @ Vt))
    d = jnp.where(d == 0.0, 1.0, d)
    return U @ jnp.diag(jnp.array([1.0, 1.0, d])) @ Vt


# ---------------------------------------------------------------------------
# SE(3)
# ---------------------------------------------------------------------------

def se3_exp(xi: jnp.ndarray) -> Tuple[jnp.ndarray, jnp.ndarray]:
    """
    Exponential map se(3) -> SE(3).

    xi = [w, v]. Returns the rotation matrix and translation ``t = V v`` with

        V = I + B W + C W²,   B = (1 - cos θ) / θ²,   C = (θ - sin θ) / θ³
    """
    w = xi[:3]
    v = xi[3:]
    theta2 = jnp.dot(w, w)
    small, t2 = _small_and_safe(theta2)
    theta = jnp.sqrt(t2)
    half_sin = jnp.sin(0.5 * theta)

    B = jnp.where(small, 0.5 - theta2 / 24.0 + theta2 * theta2 / 720.0, 2.0 * half_sin * half_sin / t2)
    C = jnp.where(
        small,
        1.0 / 6.0 - theta2 / 120.0 + theta2 * theta2 / 5040.0,
        (theta - jnp.sin(theta)) / (t2 * theta),
    )

    W = hat(w)
    WW = W @ W
    V = jnp.eye(3) + B * W + C * WW
    R = so3_exp(w)
    return R, V @ v


def se3_log(R: jnp.ndarray, t: jnp.ndarray) -> jnp.ndarray:
    """
    Logarithm map SE(3) -> se(3).

        w = log(R),   v = V⁻¹ t
        V⁻¹ = I - W/2 + D W²,   D = (1 - (θ/2) cot(θ/2)) / θ²
    """
    w = so3_log(R)
    theta2 = jnp.dot(w, w)
    small, t2 = _small_and_safe(theta2)
    half = 0.5 * jnp.sqrt(t2)

    D = jnp.where(
        small,
        1.0 / 12.0 + theta2 / 720.0 + theta2 * theta2 / 30240.0,
        (1.0 - half * jnp.cos(half) / jnp.sin(half)) / t2,
    )

    W = hat(w)
    V_inv = jnp.eye(3) - 0.5 * W + D * (W @ W)
    return jnp.concatenate([w, V_inv @ t])


# ---------------------------------------------------------------------------
# SO(2) / SE(2)
# ---------------------------------------------------------------------------

def rot2_matrix(c: jnp.ndarray, s: jnp.ndarray) -> jnp.ndarray:
    return jnp.array([[c, -s], [s, c]])


def _se2_alpha(phi: jnp.ndarray) -> Tuple[jnp.ndarray, jnp.ndarray]:
    # alpha = (phi/2) cot(phi/2) and its derivative wrt phi.
    phi2 = phi * phi
    small, p2 = _small_and_safe(phi2)
    safe_phi = jnp.where(small, 1.0, phi)
    half = 0.5 * safe_phi
    cot = jnp.cos(half) / jnp.sin(half)
    csc2 = 1.0 / (jnp.sin(half) ** 2)

    alpha = jnp.where(small, 1.0 - phi2 / 12.0 - phi2 * phi2 / 720.0, half * cot)
    d_alpha = jnp.where(
        small,
        -phi / 6.0 - phi * phi2 / 180.0,
        0.5 * cot - 0.25 * safe_phi * csc2,
    )
    return alpha, d_alpha


def se2_exp(xi: jnp.ndarray) -> Tuple[jnp.ndarray, jnp.ndarray]:
    """
    Exponential map se(2) -> SE(2).

    xi = [phi, v_x, v_y]. Returns ``(phi, t)`` with ``t = V v``,

        V = [[a, -b], [b, a]],   a = sin φ / φ,   b = (1 - cos φ) / φ
    """
    phi = xi[0]
    v = xi[1:]
    phi2 = phi * phi
    small, _ = _small_and_safe(phi2)
    safe_phi = jnp.where(small, 1.0, phi)
    half_sin = jnp.sin(0.5 * safe_phi)

    a = jnp.where(small, 1.0 - phi2 / 6.0 + phi2 * phi2 / 120.0, jnp.sin(safe_phi) / safe_phi)
    b = jnp.where(
        small,
        phi / 2.0 - phi * phi2 / 24.0 + phi * phi2 * phi2 / 720.0,
        2.0 * half_sin * half_sin / safe_phi,
    )
    t = jnp.array([a * v[0] - b * v[1], b * v[0] + a * v[1]])
    return phi, t


def se2_log(phi: jnp.ndarray, t: jnp.ndarray) -> jnp.ndarray:
    """
    Logarithm map SE(2) -> se(2) for a pose with heading ``phi`` in (-pi, pi].

        v = V⁻¹ t,   V⁻¹ = [[α, φ/2], [-φ/2, α]],   α = (φ/2) cot(φ/2)
    """
    alpha, _ = _se2_alpha(phi)
    half = 0.5 * phi
    v = jnp.array([alpha * t[0] + half * t[1], -half * t[0] + alpha * t[1]])
    return jnp.concatenate([jnp.reshape(phi, (1,)), v])


def se2_log_jacobian(phi: jnp.ndarray, t: jnp.ndarray) -> jnp.ndarray:
    """
    3×3 Jacobian of ``delta ↦ Log(E · Exp(delta))`` at ``delta = 0``.

    For E = (R(φ), t) the perturbed pose is (R(φ + dφ), t + R(φ) dv), so

        L = [[1,            0        ],
             [dV⁻¹/dφ · t,  V⁻¹ R(φ) ]]

    with dV⁻¹/dφ = [[α', 1/2], [-1/2, α']].
    """
    alpha, d_alpha = _se2_alpha(phi)
    half = 0.5 * phi
    V_inv = jnp.array([[alpha, half], [-half, alpha]])
    dV_inv = jnp.array([[d_alpha, 0.5], [-0.5, d_alpha]])
    R = rot2_matrix(jnp.cos(phi), jnp.sin(phi))

    top = jnp.array([[1.0, 0.0, 0.0]])
    bottom = jnp.concatenate([(dV_inv @ t)[:, None], V_inv @ R], axis=1)
    return jnp.concatenate([top, bottom], axis=0)
