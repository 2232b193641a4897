"""Occupancy grid built from 2D laser frames."""

from __future__ import annotations

import math
from enum import Enum
from functools import lru_cache

import numpy as np

from slam2d.frame import Frame, Scan2d
from slam2d.se2 import SE2

CLOSEST_TH = 0.2
ENDPOINT_CLOSE_TH = 0.1
RESOLUTION = 20.0
INV_RESOLUTION = 0.05
IMAGE_SIZE = 1000
MODEL_SIZE = 400

UNKNOWN = 127
OCCUPIED_LIMIT = 117
FREE_LIMIT = 137
_RANGE_JUMP = 0.3


class GridMethod(Enum):
    """How free space between the sensor and the endpoints is filled."""

    MODEL_POINTS = "model"
    BRESENHAM = "bresenham"


@lru_cache(maxsize=1)
def _model() -> tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    """Template of pixel offsets with their metric range and bearing."""
    span = np.arange(-MODEL_SIZE, MODEL_SIZE + 1)
    xs, ys = np.meshgrid(span, span, indexing="ij")
    dx = xs.ravel().astype(np.int64)
    dy = ys.ravel().astype(np.int64)
    dist = np.sqrt((dx * dx + dy * dy).astype(float))
    ranges = (dist * float(np.float32(INV_RESOLUTION))).astype(np.float32).astype(float)
    angles = np.arctan2(dy.astype(float), dx.astype(float))
    for arr in (dx, dy, ranges, angles):
        arr.setflags(write=False)
    return dx, dy, ranges, angles


def _wrap_angles(angles: np.ndarray) -> np.ndarray:
    two_pi = 2.0 * math.pi
    return angles - two_pi * np.round(angles / two_pi)


def _ranges_in_angles(angles, scan: Scan2d) -> np.ndarray:
    """Range measured by the scan in each direction; 0 where there is none."""
    angles = _wrap_angles(np.asarray(angles, dtype=float))
    out = np.zeros(angles.shape)
    ranges = np.asarray(scan.ranges, dtype=float)
    n = len(ranges)
    if n == 0:
        return out

    in_fov = (angles >= scan.angle_min) & (angles <= scan.angle_max)
    with np.errstate(divide="ignore", invalid="ignore"):
        frac = (angles - scan.angle_min) / scan.angle_increment
    frac = np.where(in_fov & np.isfinite(frac), frac, -1.0)
    idx = np.trunc(frac).astype(np.int64)
    ok = in_fov & (idx >= 0) & (idx < n)

    last = ok & (idx + 1 >= n)
    out[last] = ranges[idx[last]]

    mid = ok & ~last
    i = idx[mid]
    s = frac[mid] - i
    r1 = ranges[i]
    r2 = ranges[i + 1]
    r2_bad = (r2 < scan.range_min) | (r2 > scan.range_max)
    r1_bad = (r1 < scan.range_min) | (r1 > scan.range_max)
    jump = np.abs(r1 - r2) > _RANGE_JUMP
    picked = np.where(s > 0.5, r2, r1)
    blended = r1 * (1.0 - s) + r2 * s
    out[mid] = np.where(r2_bad, r1, np.where(r1_bad, r2, np.where(jump, picked, blended)))
    return out


def _bresenham_cells(p1, p2) -> list[tuple[int, int]]:
    """Cells on the line from p1 (excluded) to p2 (excluded)."""
    x, y = int(p1[0]), int(p1[1])
    tx, ty = int(p2[0]), int(p2[1])
    dx, dy = tx - x, ty - y
    ux = 1 if dx > 0 else -1
    uy = 1 if dy > 0 else -1
    dx, dy = abs(dx), abs(dy)
    cells = []
    if dx > dy:
        e = -dx
        for _ in range(dx):
            x += ux
            e += 2 * dy
            if e >= 0:
                y += uy
                e -= 2 * dx
            if (x, y) != (tx, ty):
                cells.append((x, y))
    else:
        e = -dy
        for _ in range(dy):
            y += uy
            e += 2 * dx
            if e >= 0:
                x += ux
                e -= 2 * dy
            if (x, y) != (tx, ty):
                cells.append((x, y))
    return cells


class OccupancyMap:
    """An 8-bit occupancy grid: 127 unknown, lower occupied, higher free."""

    def __init__(self) -> None:
        self._grid = np.full((IMAGE_SIZE, IMAGE_SIZE), UNKNOWN, dtype=np.uint8)
        self.pose = SE2()
        self._to_map = self.pose.inverse()
        self._center = np.array([IMAGE_SIZE // 2, IMAGE_SIZE // 2], dtype=float)
        self.has_outside_points = False

    @property
    def occupancy_grid(self) -> np.ndarray:
        return self._grid

    @property
    def resolution(self) -> float:
        return RESOLUTION

    def set_pose(self, pose: SE2) -> None:
        self.pose = pose
        self._to_map = pose.inverse()

    def world_to_image(self, pt) -> np.ndarray:
        """Integer pixel coordinates of one point (shape 2) or many (N x 2)."""
        mapped = self._to_map.apply(np.asarray(pt, dtype=float)) * RESOLUTION + self._center
        return mapped.astype(np.int64)

    def _set_cells(self, xs, ys, occupy: bool) -> None:
        xs = np.asarray(xs, dtype=np.int64).ravel()
        ys = np.asarray(ys, dtype=np.int64).ravel()
        rows, cols = self._grid.shape
        inside = (xs >= 0) & (ys >= 0) & (xs < cols) & (ys < rows)
        if occupy and not inside.all():
            self.has_outside_points = True
        if not inside.any():
            return
        cells, counts = np.unique(ys[inside] * cols + xs[inside], return_counts=True)
        flat = self._grid.reshape(-1)
        values = flat[cells].astype(np.int64)
        if occupy:
            updated = np.where(values > OCCUPIED_LIMIT, np.maximum(values - counts, OCCUPIED_LIMIT), values)
        else:
            updated = np.where(values < FREE_LIMIT, np.minimum(values + counts, FREE_LIMIT), values)
        flat[cells] = updated.astype(np.uint8)

    def set_point(self, pt, occupy: bool) -> None:
        """Step one cell towards occupied or free, within the grid's limits."""
        self._set_cells([pt[0]], [pt[1]], occupy)

    def find_range_in_angle(self, angle: float, scan: Scan2d) -> float:
        """Range the scan measured in a direction, interpolated between beams."""
        return float(_ranges_in_angles(np.array([angle]), scan)[0])

    def bresenham_filling(self, p1, p2) -> None:
        """Mark the cells strictly between p1 and p2 as free."""
        cells = _bresenham_cells(p1, p2)
        if cells:
            xs, ys = zip(*cells)
            self._set_cells(xs, ys, False)

    def add_lidar_frame(self, frame: Frame, method: GridMethod = GridMethod.BRESENHAM) -> None:
        """Fill the grid with the free space and endpoints of one frame."""
        scan = frame.scan
        if scan is None:
            raise ValueError("frame has no scan")
        theta = (self._to_map * frame.pose).theta
        self.has_outside_points = False

        pts = [(r * math.cos(a), r * math.sin(a)) for _, r, a in scan.valid_points()]
        if pts:
            world = frame.pose.apply(np.array(pts, dtype=float))
            endpoints = np.unique(self.world_to_image(world), axis=0)
        else:
            endpoints = np.zeros((0, 2), dtype=np.int64)
        start = self.world_to_image(frame.pose.translation)

        if method is GridMethod.MODEL_POINTS:
            self._fill_with_model(start, theta, scan, endpoints)
        else:
            cells = [c for p in endpoints for c in _bresenham_cells(start, p)]
            if cells:
                xs, ys = zip(*cells)
                self._set_cells(xs, ys, False)

        if len(endpoints):
            self._set_cells(endpoints[:, 0], endpoints[:, 1], True)

    def _fill_with_model(self, start, theta: float, scan: Scan2d, endpoints: np.ndarray) -> None:
        dx, dy, model_range, model_angle = _model()
        px = start[0] + dx
        py = start[1] + dy
        rows, cols = self._grid.shape

        is_endpoint = np.zeros(px.shape, dtype=bool)
        if len(endpoints):
            marks = np.zeros((rows, cols), dtype=bool)
            ex, ey = endpoints[:, 0], endpoints[:, 1]
            keep = (ex >= 0) & (ey >= 0) & (ex < cols) & (ey < rows)
            marks[ey[keep], ex[keep]] = True
            inside = (px >= 0) & (py >= 0) & (px < cols) & (py < rows)
            is_endpoint[inside] = marks[py[inside], px[inside]]

        close = model_range < CLOSEST_TH
        rng = _ranges_in_angles(model_angle - theta, scan)
        invalid = (rng < scan.range_min) | (rng > scan.range_max)
        free = close | (
            ~close
            & np.where(invalid, model_range < ENDPOINT_CLOSE_TH, (rng > model_range) & ~is_endpoint)
        )
        self._set_cells(px[free], py[free], False)

    def get_occupancy_grid_black_white(self) -> np.ndarray:
        """Three-channel image: black occupied, white free, grey unknown."""
        image = np.full(self._grid.shape + (3,), UNKNOWN, dtype=np.uint8)
        image[self._grid < UNKNOWN] = 0
        image[self._grid > UNKNOWN] = 255
        return image