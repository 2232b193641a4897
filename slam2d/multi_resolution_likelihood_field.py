"""Coarse-to-fine likelihood-field matching over an image pyramid."""

from __future__ import annotations

import logging

import numpy as np

from slam2d.frame import Scan2d
from slam2d.likelihood_field import (
    DEFAULT_RESIDUAL,
    RANGE_LIMIT,
    _field_to_image,
    _matching_beams,
    _model_arrays,
    _occupied_pixels,
    _stamp,
    build_model,
)
from slam2d.optimizer import EdgeSE2LikelihoodField, Huber, LevenbergMarquardt, VertexSE2
from slam2d.se2 import SE2

logger = logging.getLogger(__name__)


class MRLikelihoodField:
    """Likelihood field at four resolutions, matched from coarse to fine."""

    LEVELS = 4
    FIELD_SIZES = (125, 250, 500, 1000)
    RESOLUTIONS = (2.5, 5.0, 10.0, 20.0)
    RATIOS = (0.125, 0.25, 0.5, 1.0)
    ITERATIONS = 10
    MIN_INLIERS = 100
    INLIER_RATIO_TH = 0.4
    _RK_DELTA = (0.2, 0.3, 0.6, 0.8)

    def __init__(self) -> None:
        self.pose = SE2()
        self.model = build_model()
        self._model = _model_arrays(self.model)
        self._source: Scan2d | None = None
        self.fields = [
            np.full((size, size), DEFAULT_RESIDUAL, dtype=np.float32) for size in self.FIELD_SIZES
        ]
        self.num_inliers: list[int] = []
        self.inlier_ratios: list[float] = []

    @property
    def levels(self) -> int:
        return self.LEVELS

    def resolution(self, level: int = 0) -> float:
        """Pixels per metre at a pyramid level."""
        return self.RESOLUTIONS[level]

    def set_pose(self, pose: SE2) -> None:
        self.pose = pose

    def set_source_scan(self, scan: Scan2d) -> None:
        self._source = scan

    def set_field_image_from_occu_map(self, occu_map) -> None:
        """Stamp the template around occupied cells into every level."""
        xs, ys = _occupied_pixels(occu_map)
        for field, ratio in zip(self.fields, self.RATIOS):
            _stamp(field, xs * ratio, ys * ratio, self._model)

    def align_g2o(self, init_pose: SE2) -> SE2 | None:
        """Align level by level; the pose, or None if any level is rejected."""
        if self._source is None:
            raise RuntimeError("source scan is not set")
        self.num_inliers = []
        self.inlier_ratios = []
        pose = init_pose
        for level in range(self.LEVELS):
            result = self._align_in_level(level, pose)
            if result is None:
                return None
            pose = result
        for level in range(self.LEVELS):
            logger.info(
                "level %d inliers: %d, ratio: %g", level, self.num_inliers[level], self.inlier_ratios[level]
            )
        return pose

    def _align_in_level(self, level: int, init_pose: SE2) -> SE2 | None:
        optimizer = LevenbergMarquardt()
        vertex = VertexSE2(0, init_pose)
        optimizer.add_vertex(vertex)
        delta = self._RK_DELTA[level]
        field = self.fields[level]

        edges = []
        for r, angle in _matching_beams(self._source, RANGE_LIMIT):
            edge = EdgeSE2LikelihoodField(vertex, field, r, angle, self.RESOLUTIONS[level])
            if edge.is_outside():
                continue
            edge.robust_kernel = Huber(delta)
            optimizer.add_edge(edge)
            edges.append(edge)

        if not edges:
            return None

        optimizer.optimize(self.ITERATIONS)

        inliers = sum(1 for e in edges if e.level == 0 and e.chi2() < delta)
        ratio = inliers / len(edges)
        self.num_inliers.append(inliers)
        self.inlier_ratios.append(ratio)

        if inliers > self.MIN_INLIERS and ratio > self.INLIER_RATIO_TH:
            return vertex.estimate
        return None

    def get_field_image(self) -> list[np.ndarray]:
        """Every level as an 8-bit, three-channel grey image."""
        return [_field_to_image(field) for field in self.fields]