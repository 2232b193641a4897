"""Likelihood-field scan matching against a distance-like field image."""

from __future__ import annotations

import logging
import math
from collections.abc import Iterator
from dataclasses import dataclass

import numpy as np

from slam2d.frame import Scan2d
from slam2d.optimizer import EdgeSE2LikelihoodField, Huber, LevenbergMarquardt, VertexSE2
from slam2d.se2 import SE2

logger = logging.getLogger(__name__)

FIELD_SIZE = 1000
DEFAULT_RESIDUAL = 30.0
MODEL_HALF_SIZE = 20
OCCUPIED_BELOW = 127
OCCU_MAP_BORDER = 25
RANGE_LIMIT = 15.0

_EDGE_MARGIN = 30 * math.pi / 180.0
_CHUNK = 1024


@dataclass(frozen=True)
class ModelPoint:
    """One template cell: pixel offset and the residual stored there."""

    dx: int
    dy: int
    residual: float


def build_model(half_size: int = MODEL_HALF_SIZE) -> list[ModelPoint]:
    """Square template of pixel offsets with their Euclidean distance."""
    span = range(-half_size, half_size + 1)
    return [ModelPoint(x, y, float(np.float32(math.sqrt(x * x + y * y)))) for x in span for y in span]


def _model_arrays(model: list[ModelPoint]) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    dx = np.array([p.dx for p in model], dtype=float)
    dy = np.array([p.dy for p in model], dtype=float)
    res = np.array([p.residual for p in model], dtype=np.float32)
    return dx, dy, res


def _stamp(field: np.ndarray, xs: np.ndarray, ys: np.ndarray, model: tuple) -> None:
    """Lower the field to the template residuals around every (x, y) centre."""
    dx, dy, res = model
    rows, cols = field.shape
    flat = field.reshape(-1)
    xs = np.asarray(xs, dtype=float)
    ys = np.asarray(ys, dtype=float)
    for start in range(0, len(xs), _CHUNK):
        xx = (xs[start : start + _CHUNK, None] + dx).astype(np.int64)
        yy = (ys[start : start + _CHUNK, None] + dy).astype(np.int64)
        vals = np.broadcast_to(res, xx.shape)
        mask = (xx >= 0) & (xx < cols) & (yy >= 0) & (yy < rows)
        np.minimum.at(flat, yy[mask] * cols + xx[mask], vals[mask])


def _occupied_pixels(occu_map, border: int = OCCU_MAP_BORDER) -> tuple[np.ndarray, np.ndarray]:
    """Pixel (x, y) coordinates of occupied cells away from the border."""
    occ = np.asarray(occu_map)
    if occ.ndim != 2:
        raise ValueError("occupancy map must be a single-channel image")
    rows, cols = occ.shape
    inner = occ[border : rows - border, border : cols - border]
    ys, xs = np.nonzero(inner < OCCUPIED_BELOW)
    return (xs + border).astype(float), (ys + border).astype(float)


def _matching_beams(scan: Scan2d, range_limit: float | None = None) -> Iterator[tuple[float, float]]:
    """Valid beams away from both ends of the scan, as (range, angle)."""
    for _, r, angle in scan.valid_points():
        if range_limit is not None and r > range_limit:
            continue
        if angle < scan.angle_min + _EDGE_MARGIN or angle > scan.angle_max - _EDGE_MARGIN:
            continue
        yield r, angle


def _field_to_image(field: np.ndarray) -> np.ndarray:
    gray = (field * 255.0 / DEFAULT_RESIDUAL).astype(np.uint8)
    return np.repeat(gray[:, :, None], 3, axis=2)


class LikelihoodField:
    """Single-resolution likelihood field built from a scan or an occupancy map."""

    RESOLUTION = 20.0
    ITERATIONS = 10
    MIN_EFFECTIVE_POINTS = 20
    IMAGE_BORDER = 20
    HUBER_DELTA = 0.8

    def __init__(self) -> None:
        self.pose = SE2()
        self.has_outside_points = False
        self.model = build_model()
        self._model = _model_arrays(self.model)
        self._target: Scan2d | None = None
        self._source: Scan2d | None = None
        self._field: np.ndarray | None = None

    @property
    def field(self) -> np.ndarray | None:
        return self._field

    def set_pose(self, pose: SE2) -> None:
        self.pose = pose

    def set_target_scan(self, scan: Scan2d) -> None:
        """Build the field around the points of a target scan."""
        self._target = scan
        self._field = np.full((FIELD_SIZE, FIELD_SIZE), DEFAULT_RESIDUAL, dtype=np.float32)
        half = FIELD_SIZE // 2
        pts = [(r * math.cos(a), r * math.sin(a)) for _, r, a in scan.valid_points()]
        if not pts:
            return
        arr = np.array(pts, dtype=float)
        _stamp(self._field, arr[:, 0] * self.RESOLUTION + half, arr[:, 1] * self.RESOLUTION + half, self._model)

    def set_source_scan(self, scan: Scan2d) -> None:
        self._source = scan

    def set_field_image_from_occu_map(self, occu_map) -> None:
        """Build the field around the occupied cells of an occupancy grid."""
        self._field = np.full((FIELD_SIZE, FIELD_SIZE), DEFAULT_RESIDUAL, dtype=np.float32)
        xs, ys = _occupied_pixels(occu_map)
        _stamp(self._field, xs, ys, self._model)

    def _require(self) -> tuple[np.ndarray, Scan2d]:
        if self._field is None:
            raise RuntimeError("likelihood field is not built")
        if self._source is None:
            raise RuntimeError("source scan is not set")
        return self._field, self._source

    def align_gauss_newton(self, init_pose: SE2) -> SE2 | None:
        """Gauss-Newton alignment; the pose, or None with too few usable points."""
        field, source = self._require()
        rows, cols = field.shape
        border = self.IMAGE_BORDER
        res = self.RESOLUTION
        half = FIELD_SIZE // 2
        beams = list(_matching_beams(source))
        pose = init_pose
        last_cost = 0.0
        self.has_outside_points = False

        for it in range(self.ITERATIONS):
            H = np.zeros((3, 3))
            b = np.zeros(3)
            cost = 0.0
            effective = 0
            theta = pose.theta
            for r, angle in beams:
                pw = pose.apply((r * math.cos(angle), r * math.sin(angle)))
                px = int(pw[0] * res + half)
                py = int(pw[1] * res + half)
                if not (border <= px < cols - border and border <= py < rows - border):
                    self.has_outside_points = True
                    continue
                effective += 1
                dx = 0.5 * float(field[py, px + 1] - field[py, px - 1])
                dy = 0.5 * float(field[py + 1, px] - field[py - 1, px])
                J = np.array(
                    [
                        res * dx,
                        res * dy,
                        -res * dx * r * math.sin(angle + theta) + res * dy * r * math.cos(angle + theta),
                    ]
                )
                e = float(field[py, px])
                H += np.outer(J, J)
                b += -J * e
                cost += e * e

            if effective < self.MIN_EFFECTIVE_POINTS:
                return None
            try:
                step = np.linalg.solve(H, b)
            except np.linalg.LinAlgError:
                break
            if math.isnan(step[0]):
                break
            cost /= effective
            if it > 0 and cost >= last_cost:
                break
            logger.info("iter %d cost = %g, effect num: %d", it, cost, effective)
            pose = pose.oplus(step)
            last_cost = cost

        return pose

    def align_g2o(self, init_pose: SE2) -> SE2:
        """Robust Levenberg-Marquardt alignment; returns the estimated pose."""
        field, source = self._require()
        optimizer = LevenbergMarquardt()
        vertex = VertexSE2(0, init_pose)
        optimizer.add_vertex(vertex)
        self.has_outside_points = False

        for r, angle in _matching_beams(source, RANGE_LIMIT):
            edge = EdgeSE2LikelihoodField(vertex, field, r, angle, self.RESOLUTION)
            if edge.is_outside():
                self.has_outside_points = True
                continue
            edge.robust_kernel = Huber(self.HUBER_DELTA)
            optimizer.add_edge(edge)

        optimizer.optimize(self.ITERATIONS)
        return vertex.estimate

    def get_field_image(self) -> np.ndarray:
        """The field as an 8-bit, three-channel grey image."""
        if self._field is None:
            raise RuntimeError("likelihood field is not built")
        return _field_to_image(self._field)