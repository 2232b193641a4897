"""Incremental 2D laser mapping with submaps and optional loop closing."""

from __future__ import annotations

import logging
import math

import numpy as np

from slam2d.frame import Frame, Scan2d
from slam2d.lidar_2d_utils import draw_circle
from slam2d.loop_closing import LoopClosing
from slam2d.se2 import SE2
from slam2d.submap import Submap

logger = logging.getLogger(__name__)

_UNKNOWN = 127
_CURRENT_FREE = (235, 250, 230)
_CURRENT_OCCUPIED = (230, 20, 30)
_FREE = (255, 255, 255)
_OCCUPIED = (0, 0, 0)
_X_AXIS = (0, 0, 255)
_Y_AXIS = (0, 255, 0)
_TRAJECTORY = (0, 0, 255)
_LOOP = (255, 0, 0)


def _draw_line(image: np.ndarray, p0, p1, color, thickness: int = 1) -> None:
    """Draw a thick line segment in place."""
    rows, cols = image.shape[:2]
    x0, y0 = float(p0[0]), float(p0[1])
    x1, y1 = float(p1[0]), float(p1[1])
    half = max(thickness, 1) / 2.0
    reach = half + 1
    bx0 = max(int(min(x0, x1) - reach), 0)
    bx1 = min(int(max(x0, x1) + reach) + 1, cols)
    by0 = max(int(min(y0, y1) - reach), 0)
    by1 = min(int(max(y0, y1) + reach) + 1, rows)
    if bx0 >= bx1 or by0 >= by1:
        return
    ys, xs = np.mgrid[by0:by1, bx0:bx1]
    vx, vy = x1 - x0, y1 - y0
    length2 = vx * vx + vy * vy
    if length2 > 0:
        t = np.clip(((xs - x0) * vx + (ys - y0) * vy) / length2, 0.0, 1.0)
    else:
        t = np.zeros(xs.shape)
    dist = np.hypot(xs - (x0 + t * vx), ys - (y0 + t * vy))
    image[by0:by1, bx0:bx1][dist <= half] = color


class Mapping2D:
    """Builds submaps from a stream of 2D scans, matching each scan to the current submap."""

    KEYFRAME_POS_TH = 0.3
    KEYFRAME_ANG_TH = 15 * math.pi / 180
    MAX_FRAMES_PER_SUBMAP = 50
    SUBMAP_RESOLUTION = 20.0
    SUBMAP_SIZE = 50.0
    SUBMAP_IMAGE_SIZE = 1000

    def __init__(self, loop_debug_path=None) -> None:
        self._loop_debug_path = loop_debug_path
        self.frame_id = 0
        self.keyframe_id = 0
        self.submap_id = 0
        self._first_scan = True
        self.current_frame: Frame | None = None
        self.last_frame: Frame | None = None
        self.motion_guess = SE2()
        self.last_keyframe: Frame | None = None
        self.current_submap: Submap | None = None
        self.submaps: list[Submap] = []
        self.loop_closing: LoopClosing | None = None

    def init(self, with_loop_closing: bool = True) -> bool:
        """Start a fresh map with one submap at the origin."""
        self.keyframe_id = 0
        self.current_submap = Submap(SE2())
        self.submaps.append(self.current_submap)
        if with_loop_closing:
            self.loop_closing = LoopClosing(self._loop_debug_path)
            self.loop_closing.add_new_submap(self.current_submap)
        return True

    def process_scan(self, scan: Scan2d) -> bool:
        """Match one scan, add it as a keyframe if it moved enough, and grow the map."""
        if self.current_submap is None:
            raise RuntimeError("mapping is not initialised")

        frame = Frame(scan=scan, id=self.frame_id)
        self.frame_id += 1
        self.current_frame = frame

        if self.last_frame is not None:
            frame.pose = self.last_frame.pose * self.motion_guess
            frame.pose_submap = self.last_frame.pose_submap

        if not self._first_scan:
            self.current_submap.match_scan(frame)
        self._first_scan = False

        if self._is_key_frame():
            self._add_key_frame()
            self.current_submap.add_scan_in_occupancy_map(frame)
            if self.loop_closing is not None:
                self.loop_closing.add_new_frame(frame)
            if (
                self.current_submap.has_outside_points()
                or self.current_submap.num_frames() > self.MAX_FRAMES_PER_SUBMAP
            ):
                self._expand_submap()

        if self.last_frame is not None:
            self.motion_guess = self.last_frame.pose.inverse() * frame.pose
        self.last_frame = frame
        return True

    def _is_key_frame(self) -> bool:
        if self.last_keyframe is None:
            return True
        delta = self.last_keyframe.pose.inverse() * self.current_frame.pose
        return (
            float(np.linalg.norm(delta.translation)) > self.KEYFRAME_POS_TH
            or abs(delta.theta) > self.KEYFRAME_ANG_TH
        )

    def _add_key_frame(self) -> None:
        logger.info("add keyframe %d", self.keyframe_id)
        self.current_frame.keyframe_id = self.keyframe_id
        self.keyframe_id += 1
        self.current_submap.add_key_frame(self.current_frame)
        self.last_keyframe = self.current_frame

    def _expand_submap(self) -> None:
        if self.loop_closing is not None:
            self.loop_closing.add_finished_submap(self.current_submap)

        last_submap = self.current_submap
        frame = self.current_frame
        submap = Submap(frame.pose)
        frame.pose_submap = SE2()

        self.submap_id += 1
        submap.id = self.submap_id
        submap.add_key_frame(frame)
        submap.set_occu_from_other_submap(last_submap)
        submap.add_scan_in_occupancy_map(frame)
        self.submaps.append(submap)
        self.current_submap = submap

        if self.loop_closing is not None:
            self.loop_closing.add_new_submap(submap)

        logger.info(
            "create submap %d with pose: %g %g, %g", submap.id, submap.pose.x, submap.pose.y, submap.pose.theta
        )

    def show_global_map(self, max_size: int = 500) -> np.ndarray:
        """Render all submaps into one image whose longer side is about ``max_size``."""
        if not self.submaps:
            return np.zeros((0, 0, 3), dtype=np.uint8)

        half_size = self.SUBMAP_SIZE / 2
        centres = np.array([m.pose.translation for m in self.submaps])
        top_left = centres.min(axis=0) - half_size
        bottom_right = centres.max(axis=0) + half_size

        global_center = (top_left + bottom_right) / 2.0
        phy_width = bottom_right[0] - top_left[0]
        phy_height = bottom_right[1] - top_left[1]
        res = max_size / phy_width if phy_width > phy_height else max_size / phy_height

        c = global_center.copy()
        c_x = int(global_center[0] * res)
        c_y = int(global_center[1] * res)
        global_center = np.array([c_x / res, c_y / res])

        width = int(phy_width * res + 0.5)
        height = int(phy_height * res + 0.5)
        center_image = np.array([width // 2, height // 2], dtype=float)
        image = np.full((height, width, 3), _UNKNOWN, dtype=np.uint8)
        if width == 0 or height == 0:
            return image

        self._render_submaps(image, center_image, res, c)

        def to_image(p) -> np.ndarray:
            return (np.asarray(p, dtype=float) - global_center) * res + center_image

        for m in self.submaps:
            centre_map = to_image(m.pose.translation)
            _draw_line(image, centre_map, to_image(m.pose.apply((1.0, 0.0))), _X_AXIS, 2)
            _draw_line(image, centre_map, to_image(m.pose.apply((0.0, 1.0))), _Y_AXIS, 2)
            for frame in m.frames:
                draw_circle(image, to_image(frame.pose.translation), 1, _TRAJECTORY, 1)

        if self.loop_closing is not None:
            for first_id, second_id in self.loop_closing.get_loops():
                c1 = to_image(self.submaps[first_id].pose.translation)
                c2 = to_image(self.submaps[second_id].pose.translation)
                _draw_line(image, c1, c2, _LOOP, 2)

        return image

    def _render_submaps(self, image: np.ndarray, center_image: np.ndarray, res: float, c: np.ndarray) -> None:
        height, width = image.shape[:2]
        ys, xs = np.mgrid[0:height, 0:width]
        world = np.stack(
            [(xs.ravel() - center_image[0]) / res + c[0], (ys.ravel() - center_image[1]) / res + c[1]], axis=1
        )
        flat = image.reshape(-1, 3)
        pending = np.arange(len(world))
        size = self.SUBMAP_IMAGE_SIZE
        offset = size / 2

        for m in self.submaps:
            if len(pending) == 0:
                break
            local = m.pose.inverse().apply(world[pending])
            pt = (local * self.SUBMAP_RESOLUTION + offset).astype(np.int64)
            inside = (pt[:, 0] >= 0) & (pt[:, 0] < size) & (pt[:, 1] >= 0) & (pt[:, 1] < size)
            idx = pending[inside]
            values = m.occu_map.occupancy_grid[pt[inside, 1], pt[inside, 0]]
            is_current = m is self.current_submap
            free = values > _UNKNOWN
            occupied = values < _UNKNOWN
            flat[idx[free]] = _CURRENT_FREE if is_current else _FREE
            flat[idx[occupied]] = _CURRENT_OCCUPIED if is_current else _OCCUPIED
            done = np.zeros(len(pending), dtype=bool)
            done[np.flatnonzero(inside)[free | occupied]] = True
            pending = pending[~done]