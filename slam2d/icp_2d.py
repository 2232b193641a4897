"""Scan-to-scan ICP in the plane, point-to-point and point-to-line."""

from __future__ import annotations

import logging
import math

import numpy as np
from scipy.spatial import cKDTree

from slam2d.frame import Scan2d
from slam2d.se2 import SE2

logger = logging.getLogger(__name__)

_ITERATIONS = 10
_MIN_EFFECTIVE_POINTS = 20
_MAX_DIS2_POINT = 0.01
_MAX_DIS_LINE = 0.3


def fit_line_2d(points) -> np.ndarray | None:
    """Fit a*x + b*y + c = 0 with a^2 + b^2 = 1; None if it cannot be fitted."""
    pts = np.asarray(points, dtype=float).reshape(-1, 2)
    if len(pts) < 2:
        return None
    A = np.hstack([pts, np.ones((len(pts), 1))])
    _, _, vt = np.linalg.svd(A, full_matrices=False)
    coeffs = vt[-1]
    norm = math.hypot(coeffs[0], coeffs[1])
    if norm < 1e-12:
        return None
    return coeffs / norm


class Icp2d:
    """Set the target first (builds a KD-tree), then the source, then align."""

    def __init__(self) -> None:
        self._target_scan: Scan2d | None = None
        self._source_scan: Scan2d | None = None
        self._target_points = np.zeros((0, 2))
        self._kdtree: cKDTree | None = None

    def set_target(self, target: Scan2d) -> None:
        if target is None:
            raise ValueError("target is not set")
        self._target_scan = target
        pts = [(r * math.cos(a), r * math.sin(a)) for _, r, a in target.valid_points()]
        self._target_points = np.array(pts, dtype=float).reshape(-1, 2)
        self._kdtree = cKDTree(self._target_points) if len(pts) else None

    def set_source(self, source: Scan2d) -> None:
        self._source_scan = source

    def align_gauss_newton(self, init_pose: SE2) -> SE2 | None:
        """Point-to-point alignment; returns the pose or None on too few matches."""
        return self._align(init_pose, self._point_terms)

    def align_gauss_newton_point_to_plane(self, init_pose: SE2) -> SE2 | None:
        """Point-to-line alignment; returns the pose or None on too few matches."""
        return self._align(init_pose, self._line_terms)

    def _source_beams(self):
        if self._source_scan is None:
            raise RuntimeError("source is not set")
        for _, r, a in self._source_scan.valid_points():
            yield r, a

    def _point_terms(self, pose: SE2):
        H, b, cost, n = np.zeros((3, 3)), np.zeros(3), 0.0, 0
        theta = pose.theta
        for r, a in self._source_beams():
            if self._kdtree is None:
                break
            pw = pose.apply((r * math.cos(a), r * math.sin(a)))
            dist, idx = self._kdtree.query(pw, k=1)
            if dist * dist >= _MAX_DIS2_POINT:
                continue
            n += 1
            J = np.array([[1.0, 0.0], [0.0, 1.0],
                          [-r * math.sin(a + theta), r * math.cos(a + theta)]])
            e = pw - self._target_points[idx]
            H += J @ J.T
            b += -J @ e
            cost += float(e @ e)
        return H, b, cost, n

    def _line_terms(self, pose: SE2):
        H, b, cost, n = np.zeros((3, 3)), np.zeros(3), 0.0, 0
        theta = pose.theta
        for r, a in self._source_beams():
            if self._kdtree is None:
                break
            pw = pose.apply((r * math.cos(a), r * math.sin(a)))
            dists, idxs = self._kdtree.query(pw, k=5)
            near = [self._target_points[i] for d, i in zip(dists, idxs) if d * d < _MAX_DIS_LINE]
            if len(near) < 3:
                continue
            coeffs = fit_line_2d(near)
            if coeffs is None:
                continue
            n += 1
            J = np.array([coeffs[0], coeffs[1],
                          -coeffs[0] * r * math.sin(a + theta) + coeffs[1] * r * math.cos(a + theta)])
            e = coeffs[0] * pw[0] + coeffs[1] * pw[1] + coeffs[2]
            H += np.outer(J, J)
            b += -J * e
            cost += e * e
        return H, b, cost, n

    def _align(self, init_pose: SE2, terms) -> SE2 | None:
        pose = init_pose
        last_cost = 0.0
        for it in range(_ITERATIONS):
            H, b, cost, n = terms(pose)
            if n < _MIN_EFFECTIVE_POINTS:
                return None
            try:
                dx = np.linalg.solve(H, b)
            except np.linalg.LinAlgError:
                break
            if math.isnan(dx[0]):
                break
            cost /= n
            if it > 0 and cost >= last_cost:
                break
            logger.info("iter %d cost = %g, effect num: %d", it, cost, n)
            pose = pose.oplus(dx)
            last_cost = cost
        logger.info("estimated pose: %g %g, theta: %g", pose.x, pose.y, pose.theta)
        return pose