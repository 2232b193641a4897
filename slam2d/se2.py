"""Rigid transforms in the plane."""

from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np

_SMALL = 1e-10


def normalize_angle(angle: float) -> float:
    """Wrap an angle into [-pi, pi]."""
    return math.remainder(float(angle), 2.0 * math.pi)


@dataclass(frozen=True)
class SE2:
    """A planar pose: translation (x, y) and heading theta in radians."""

    x: float = 0.0
    y: float = 0.0
    theta: float = 0.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "x", float(self.x))
        object.__setattr__(self, "y", float(self.y))
        object.__setattr__(self, "theta", normalize_angle(self.theta))

    @property
    def translation(self) -> np.ndarray:
        return np.array([self.x, self.y])

    @property
    def rotation(self) -> np.ndarray:
        c, s = math.cos(self.theta), math.sin(self.theta)
        return np.array([[c, -s], [s, c]])

    @classmethod
    def exp(cls, xi) -> "SE2":
        """Map a tangent vector (vx, vy, theta) onto the group."""
        a, b, theta = (float(v) for v in xi)
        if abs(theta) < _SMALL:
            sin_by_theta = 1.0 - theta * theta / 6.0
            one_minus_cos_by_theta = 0.5 * theta
        else:
            sin_by_theta = math.sin(theta) / theta
            one_minus_cos_by_theta = (1.0 - math.cos(theta)) / theta
        x = sin_by_theta * a - one_minus_cos_by_theta * b
        y = one_minus_cos_by_theta * a + sin_by_theta * b
        return cls(x, y, theta)

    def log(self) -> np.ndarray:
        """Map the pose onto its tangent vector (vx, vy, theta)."""
        theta = self.theta
        half = 0.5 * theta
        cos_m1 = math.cos(theta) - 1.0
        if abs(cos_m1) < _SMALL:
            half_by_tan = 1.0 - theta * theta / 12.0
        else:
            half_by_tan = -(half * math.sin(theta)) / cos_m1
        v_inv = np.array([[half_by_tan, half], [-half, half_by_tan]])
        upsilon = v_inv @ self.translation
        return np.array([upsilon[0], upsilon[1], theta])

    def inverse(self) -> "SE2":
        rt = self.rotation.T
        t = -rt @ self.translation
        return SE2(t[0], t[1], -self.theta)

    def apply(self, point) -> np.ndarray:
        """Transform one point (shape 2) or many points (shape N x 2)."""
        p = np.asarray(point, dtype=float)
        if p.ndim == 2:
            return p @ self.rotation.T + self.translation
        return self.rotation @ p + self.translation

    def oplus(self, update) -> "SE2":
        """Add a (dx, dy, dtheta) increment to translation and heading."""
        return SE2(self.x + update[0], self.y + update[1], self.theta + update[2])

    def __mul__(self, other):
        if isinstance(other, SE2):
            t = self.apply(other.translation)
            return SE2(t[0], t[1], self.theta + other.theta)
        return self.apply(other)