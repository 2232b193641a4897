import math

import numpy as np
import pytest

from slam2d.frame import Scan2d
from slam2d.mapping_2d import Mapping2D


def room_scan(x=0.0, y=0.0, hx=5.0, hy=4.0, n=360, range_max=30.0):
    """Scan taken at (x, y) inside an axis-aligned rectangular room."""
    inc = 2 * math.pi / n
    ranges = []
    for i in range(n):
        a = -math.pi + i * inc
        c, s = math.cos(a), math.sin(a)
        hits = []
        if c > 1e-9:
            hits.append((hx - x) / c)
        elif c < -1e-9:
            hits.append((-hx - x) / c)
        if s > 1e-9:
            hits.append((hy - y) / s)
        elif s < -1e-9:
            hits.append((-hy - y) / s)
        ranges.append(min(hits))
    return Scan2d(ranges, -math.pi, -math.pi + (n - 1) * inc, inc, 0.1, range_max)


def test_init_creates_first_submap():
    mapping = Mapping2D()
    assert mapping.init(False) is True
    assert [m.id for m in mapping.submaps] == [0]
    assert mapping.loop_closing is None


def test_init_with_loop_closing():
    mapping = Mapping2D()
    assert mapping.init(True) is True
    assert mapping.loop_closing is not None
    assert mapping.loop_closing.get_loops() == {}


def test_process_scan_requires_init():
    mapping = Mapping2D()
    with pytest.raises(RuntimeError):
        mapping.process_scan(room_scan())


def test_identical_scans_make_one_keyframe():
    mapping = Mapping2D()
    mapping.init(False)
    scan = room_scan()
    assert mapping.process_scan(scan) is True
    assert mapping.process_scan(scan) is True
    assert mapping.current_frame.id == 1
    assert mapping.current_submap.num_frames() == 1
    pose = mapping.current_frame.pose
    assert abs(pose.x) < 0.1
    assert abs(pose.y) < 0.1
    assert abs(pose.theta) < 0.05


def test_moving_scan_becomes_keyframe():
    mapping = Mapping2D()
    mapping.init(False)
    mapping.process_scan(room_scan(0.0, 0.0))
    mapping.process_scan(room_scan(0.4, 0.0))
    pose = mapping.current_frame.pose
    assert abs(pose.x - 0.4) < 0.1
    assert abs(pose.y) < 0.1
    assert mapping.current_submap.num_frames() == 2
    assert mapping.current_frame.keyframe_id == 1


def test_outside_points_expand_submap():
    mapping = Mapping2D()
    mapping.init(False)
    mapping.process_scan(room_scan(hx=40.0, hy=3.0, range_max=100.0))
    assert [m.id for m in mapping.submaps] == [0, 1]
    assert mapping.current_submap is mapping.submaps[1]
    assert mapping.submaps[0].num_frames() == 1
    assert mapping.submaps[1].num_frames() == 1
    assert mapping.current_frame.pose_submap.x == 0.0
    assert mapping.current_frame.pose_submap.theta == 0.0


def test_global_map_without_submaps_is_empty():
    mapping = Mapping2D()
    assert mapping.show_global_map().size == 0


def test_global_map_size_and_unknown_background():
    mapping = Mapping2D()
    mapping.init(False)
    image = mapping.show_global_map(500)
    assert image.shape == (500, 500, 3)
    assert image.dtype == np.uint8
    assert image[0, 0].tolist() == [127, 127, 127]
    assert image[499, 0].tolist() == [127, 127, 127]


def test_global_map_shows_current_submap_cells():
    mapping = Mapping2D()
    mapping.init(False)
    mapping.process_scan(room_scan())
    image = mapping.show_global_map(500)
    pixels = image.reshape(-1, 3)
    assert np.any(np.all(pixels == [230, 20, 30], axis=1))
    assert np.any(np.all(pixels == [235, 250, 230], axis=1))
    assert image[0, 0].tolist() == [127, 127, 127]