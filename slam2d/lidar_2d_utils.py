"""Drawing helpers for 2D laser scans."""

from __future__ import annotations

import math

import numpy as np

from slam2d.frame import Scan2d
from slam2d.se2 import SE2

_EDGE_MARGIN = 30 * math.pi / 180.0


def draw_circle(image: np.ndarray, center, radius: float, color, thickness: int = 1) -> np.ndarray:
    """Draw a circle outline (or a filled disc if thickness < 0) in place."""
    rows, cols = image.shape[:2]
    cx, cy = float(center[0]), float(center[1])
    reach = radius + max(thickness, 0) + 1
    x0, x1 = max(int(cx - reach), 0), min(int(cx + reach) + 1, cols)
    y0, y1 = max(int(cy - reach), 0), min(int(cy + reach) + 1, rows)
    if x0 >= x1 or y0 >= y1:
        return image
    ys, xs = np.mgrid[y0:y1, x0:x1]
    dist = np.hypot(xs - cx, ys - cy)
    if thickness < 0:
        mask = dist <= radius
    else:
        mask = np.abs(dist - radius) <= max(thickness, 1) / 2.0
    image[y0:y1, x0:x1][mask] = color
    return image


def visualize_2d_scan(
    scan: Scan2d,
    pose: SE2,
    image: np.ndarray | None = None,
    color=(255, 0, 0),
    image_size: int = 800,
    resolution: float = 20.0,
    pose_submap: SE2 | None = None,
) -> np.ndarray:
    """Draw a scan into an image (created white if None) and return the image."""
    if image is None:
        image = np.full((image_size, image_size, 3), 255, dtype=np.uint8)
    to_submap = (pose_submap or SE2()).inverse()
    rows, cols = image.shape[:2]
    half = image_size // 2

    for _, r, angle in scan.valid_points():
        if angle < scan.angle_min + _EDGE_MARGIN or angle > scan.angle_max - _EDGE_MARGIN:
            continue
        p = to_submap.apply(pose.apply((r * math.cos(angle), r * math.sin(angle))))
        ix = int(p[0] * resolution + half)
        iy = int(p[1] * resolution + half)
        if 0 <= ix < cols and 0 <= iy < rows:
            image[iy, ix] = color

    center = to_submap.apply(pose.translation) * resolution + half
    draw_circle(image, center, 5, color, 2)
    return image