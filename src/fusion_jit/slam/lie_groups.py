# Copyright (c) 2025.
# This file is part of fusion-jit, released under the MIT License.
"""
Concrete Lie groups: Rot2 (SO(2)), Pose2 (SE(2)), Rot3 (SO(3)), Pose3 (SE(3)).

Each group stores the smallest convenient numeric representation:

    Rot2   (c, s)        unit complex number cos θ + i sin θ
    Pose2  (rot, t)      Rot2 and a 2-vector
    Rot3   (R,)          3×3 rotation matrix
    Pose3  (rot, t)      Rot3 and a 3-vector

Tangent vectors put rotation first:

    Rot2: [θ]    Pose2: [θ, x, y]    Rot3: [ω]    Pose3: [ω, v]

All four override the automatic-differentiation adjoint from
`slam.manifold.LieGroup` with closed forms:

    Rot2   Ad = 1
    Pose2  Ad = [[1, 0, 0], [t_y, R], [-t_x, R]]        (R occupying 2×2)
    Rot3   Ad = R
    Pose3  Ad = [[R, 0], [[t]× R, R]]
"""

from __future__ import annotations

import jax.numpy as jnp
import jax_dataclasses as jdc

from fusion_jit.core.math3d import (
    hat,
    project_to_so3,
    rot2_matrix,
    se2_exp,
    se2_log,
    se3_exp,
    se3_log,
    so3_exp,
    so3_log,
)
from fusion_jit.slam.manifold import LieGroup


# ---------------------------------------------------------------------------
# SO(2)
# ---------------------------------------------------------------------------

@jdc.pytree_dataclass
class Rot2(LieGroup):
    """Planar rotation."""

    c: jnp.ndarray
    s: jnp.ndarray

    tangent_dim = 1

    @classmethod
    def from_angle(cls, theta) -> "Rot2":
        theta = jnp.asarray(theta, dtype=jnp.float64)
        return cls(jnp.cos(theta), jnp.sin(theta))

    @classmethod
    def identity(cls) -> "Rot2":
        return cls.from_angle(0.0)

    @classmethod
    def expmap(cls, v: jnp.ndarray) -> "Rot2":
        return cls.from_angle(v[0])

    def logmap(self) -> jnp.ndarray:
        return jnp.reshape(self.theta, (1,))

    @property
    def theta(self) -> jnp.ndarray:
        return jnp.arctan2(self.s, self.c)

    def matrix(self) -> jnp.ndarray:
        return rot2_matrix(self.c, self.s)

    def compose(self, other: "Rot2") -> "Rot2":
        return Rot2(
            self.c * other.c - self.s * other.s,
            self.s * other.c + self.c * other.s,
        )

    def inverse(self) -> "Rot2":
        return Rot2(self.c, -self.s)

    def rotate(self, p: jnp.ndarray) -> jnp.ndarray:
        return self.matrix() @ p

    def unrotate(self, p: jnp.ndarray) -> jnp.ndarray:
        return self.matrix().T @ p

    def adjoint(self, v: jnp.ndarray) -> jnp.ndarray:
        return v

    def adjoint_transpose(self, v: jnp.ndarray) -> jnp.ndarray:
        return v


# ---------------------------------------------------------------------------
# SE(2)
# ---------------------------------------------------------------------------

@jdc.pytree_dataclass
class Pose2(LieGroup):
    """Planar rigid transform."""

    rot: Rot2
    t: jnp.ndarray

    tangent_dim = 3

    @classmethod
    def from_xytheta(cls, x, y, theta) -> "Pose2":
        return cls(Rot2.from_angle(theta), jnp.array([x, y], dtype=jnp.float64))

    @classmethod
    def identity(cls) -> "Pose2":
        return cls.from_xytheta(0.0, 0.0, 0.0)

    @classmethod
    def expmap(cls, v: jnp.ndarray) -> "Pose2":
        phi, t = se2_exp(v)
        return cls(Rot2.from_angle(phi), t)

    def logmap(self) -> jnp.ndarray:
        return se2_log(self.rot.theta, self.t)

    @property
    def x(self) -> jnp.ndarray:
        return self.t[0]

    @property
    def y(self) -> jnp.ndarray:
        return self.t[1]

    @property
    def theta(self) -> jnp.ndarray:
        return self.rot.theta

    def compose(self, other: "Pose2") -> "Pose2":
        return Pose2(self.rot * other.rot, self.t + self.rot.rotate(other.t))

    def inverse(self) -> "Pose2":
        inv = self.rot.inverse()
        return Pose2(inv, -inv.rotate(self.t))

    def transform_from(self, p: jnp.ndarray) -> jnp.ndarray:
        """Point in the local frame -> world frame."""
        return self.rot.rotate(p) + self.t

    def transform_to(self, p: jnp.ndarray) -> jnp.ndarray:
        """Point in the world frame -> local frame."""
        return self.rot.unrotate(p - self.t)

    def adjoint_matrix(self) -> jnp.ndarray:
        R = self.rot.matrix()
        return jnp.array(
            [
                [1.0, 0.0, 0.0],
                [self.t[1], R[0, 0], R[0, 1]],
                [-self.t[0], R[1, 0], R[1, 1]],
            ]
        )

    def adjoint(self, v: jnp.ndarray) -> jnp.ndarray:
        return self.adjoint_matrix() @ v

    def adjoint_transpose(self, v: jnp.ndarray) -> jnp.ndarray:
        return self.adjoint_matrix().T @ v


# ---------------------------------------------------------------------------
# SO(3)
# ---------------------------------------------------------------------------

@jdc.pytree_dataclass
class Rot3(LieGroup):
    """3D rotation stored as a rotation matrix."""

    R: jnp.ndarray

    tangent_dim = 3

    @classmethod
    def identity(cls) -> "Rot3":
        return cls(jnp.eye(3))

    @classmethod
    def expmap(cls, v: jnp.ndarray) -> "Rot3":
        return cls(so3_exp(v))

    @classmethod
    def from_quaternion(cls, w, x, y, z) -> "Rot3":
        q = jnp.array([w, x, y, z], dtype=jnp.float64)
        w, x, y, z = q / jnp.linalg.norm(q)
        return cls(
            jnp.array(
                [
                    [1 - 2 * (y * y + z * z), 2 * (x * y - w * z), 2 * (x * z + w * y)],
                    [2 * (x * y + w * z), 1 - 2 * (x * x + z * z), 2 * (y * z - w * x)],
                    [2 * (x * z - w * y), 2 * (y * z + w * x), 1 - 2 * (x * x + y * y)],
                ]
            )
        )

    @classmethod
    def closest_to(cls, M: jnp.ndarray) -> "Rot3":
        return cls(project_to_so3(M))

    def logmap(self) -> jnp.ndarray:
        return so3_log(self.R)

    def matrix(self) -> jnp.ndarray:
        return self.R

    def compose(self, other: "Rot3") -> "Rot3":
        return Rot3(self.R @ other.R)

    def inverse(self) -> "Rot3":
        return Rot3(self.R.T)

    def rotate(self, p: jnp.ndarray) -> jnp.ndarray:
        return self.R @ p

    def unrotate(self, p: jnp.ndarray) -> jnp.ndarray:
        return self.R.T @ p

    def adjoint(self, v: jnp.ndarray) -> jnp.ndarray:
        return self.R @ v

    def adjoint_transpose(self, v: jnp.ndarray) -> jnp.ndarray:
        return self.R.T @ v


# ---------------------------------------------------------------------------
# SE(3)
# ---------------------------------------------------------------------------

@jdc.pytree_dataclass
class Pose3(LieGroup):
    """3D rigid transform."""

    rot: Rot3
    t: jnp.ndarray

    tangent_dim = 6

    @classmethod
    def identity(cls) -> "Pose3":
        return cls(Rot3.identity(), jnp.zeros(3))

    @classmethod
    def from_matrix(cls, T: jnp.ndarray) -> "Pose3":
        return cls(Rot3(T[:3, :3]), T[:3, 3])

    @classmethod
    def expmap(cls, v: jnp.ndarray) -> "Pose3":
        R, t = se3_exp(v)
        return cls(Rot3(R), t)

    def logmap(self) -> jnp.ndarray:
        return se3_log(self.rot.R, self.t)

    def matrix(self) -> jnp.ndarray:
        T = jnp.eye(4)
        T = T.at[:3, :3].set(self.rot.R)
        return T.at[:3, 3].set(self.t)

    def compose(self, other: "Pose3") -> "Pose3":
        return Pose3(self.rot * other.rot, self.t + self.rot.rotate(other.t))

    def inverse(self) -> "Pose3":
        inv = self.rot.inverse()
        return Pose3(inv, -inv.rotate(self.t))

    def transform_from(self, p: jnp.ndarray) -> jnp.ndarray:
        return self.rot.rotate(p) + self.t

    def transform_to(self, p: jnp.ndarray) -> jnp.ndarray:
        return self.rot.unrotate(p - self.t)

    def adjoint_matrix(self) -> jnp.ndarray:
        R = self.rot.R
        top = jnp.concatenate([R, jnp.zeros((3, 3))], axis=1)
        bottom = jnp.concatenate([hat(self.t) @ R, R], axis=1)
        return jnp.concatenate([top, bottom], axis=0)

    def adjoint(self, v: jnp.ndarray) -> jnp.ndarray:
        w = self.rot.R @ v[:3]
        return jnp.concatenate([w, jnp.cross(self.t, w) + self.rot.R @ v[3:]])

    def adjoint_transpose(self, v: jnp.ndarray) -> jnp.ndarray:
        w, u = v[:3], v[3:]
        R = self.rot.R
        return jnp.concatenate([R.T @ (w - jnp.cross(self.t, u)), R.T @ u])
