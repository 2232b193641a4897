import math

import pytest

from slam2d.frame import Frame, Scan2d
from slam2d.se2 import SE2
from slam2d.submap import Submap


def ring_scan(radius=5.0, beams=360):
    inc = 2 * math.pi / beams
    return Scan2d([radius] * beams, -math.pi, -math.pi + (beams - 1) * inc, inc, 0.1, 30.0)


def assert_same_pose(a, b):
    assert a.x == pytest.approx(b.x, abs=1e-9)
    assert a.y == pytest.approx(b.y, abs=1e-9)
    assert a.theta == pytest.approx(b.theta, abs=1e-9)


def test_pose_is_shared_with_maps():
    pose = SE2(1.0, 2.0, 0.3)
    sm = Submap(pose)
    assert sm.occu_map.pose == pose
    assert sm.field.pose == pose
    new = SE2(-1.0, 0.5, -0.2)
    sm.set_pose(new)
    assert sm.pose == new
    assert sm.occu_map.pose == new
    assert sm.field.pose == new


def test_key_frames_are_counted():
    sm = Submap()
    assert sm.num_frames() == 0
    sm.add_key_frame(Frame(scan=ring_scan()))
    sm.add_key_frame(Frame(scan=ring_scan()))
    assert sm.num_frames() == 2


def test_update_frame_pose_world():
    sm = Submap(SE2(1.0, 2.0, 0.5))
    frame = Frame(scan=ring_scan(), pose_submap=SE2(1.0, 0.0, 0.1))
    sm.add_key_frame(frame)
    sm.update_frame_pose_world()
    assert_same_pose(frame.pose, sm.pose * frame.pose_submap)
    sm.set_pose(SE2(0.0, 0.0, 0.0))
    sm.update_frame_pose_world()
    assert_same_pose(frame.pose, frame.pose_submap)


def test_add_scan_updates_grid_and_field():
    sm = Submap()
    sm.add_scan_in_occupancy_map(Frame(scan=ring_scan()))
    assert sm.occu_map.occupancy_grid.min() < 127
    assert sm.field.field.min() == 0.0
    assert not sm.has_outside_points()


def test_far_scan_reports_outside_points():
    sm = Submap()
    far = Scan2d([40.0] * 10, 0.0, 0.9, 0.1, 0.1, 50.0)
    sm.add_scan_in_occupancy_map(Frame(scan=far))
    assert sm.has_outside_points()


def test_occu_from_other_submap_with_few_frames_is_empty():
    other = Submap()
    for _ in range(5):
        other.add_key_frame(Frame(scan=ring_scan()))
    sm = Submap()
    sm.set_occu_from_other_submap(other)
    grid = sm.occu_map.occupancy_grid
    field = sm.field.field
    assert int(grid.min()) == 127
    assert int(grid.max()) == 127
    assert float(field.min()) == 30.0
    assert float(field.max()) == 30.0


def test_occu_from_other_submap_uses_recent_frames():
    other = Submap()
    for _ in range(12):
        other.add_key_frame(Frame(scan=ring_scan()))
    sm = Submap()
    sm.set_occu_from_other_submap(other)
    assert sm.occu_map.occupancy_grid.min() < 127
    assert sm.field.field.min() == 0.0


def test_match_scan_keeps_world_pose_consistent():
    sm = Submap(SE2(1.0, 0.0, 0.0))
    sm.add_scan_in_occupancy_map(Frame(scan=ring_scan(), pose=SE2(1.0, 0.0, 0.0)))
    frame = Frame(scan=ring_scan(), pose_submap=SE2(0.05, 0.0, 0.0))
    assert sm.match_scan(frame) is True
    assert_same_pose(frame.pose, sm.pose * frame.pose_submap)


def test_match_scan_on_empty_submap_keeps_pose():
    sm = Submap()
    start = SE2(0.2, -0.1, 0.05)
    frame = Frame(scan=ring_scan(), pose_submap=start)
    assert sm.match_scan(frame) is True
    assert_same_pose(frame.pose_submap, start)
    assert_same_pose(frame.pose, start)