import math

import numpy as np
import pytest

from slam2d.frame import Scan2d
from slam2d.icp_2d import Icp2d, fit_line_2d
from slam2d.se2 import SE2


def _room_scan(pose: SE2, beams: int = 360) -> Scan2d:
    inc = 2 * math.pi / beams
    ranges = []
    for k in range(beams):
        g = pose.theta - math.pi + k * inc
        c, s = math.cos(g), math.sin(g)
        cands = []
        if abs(c) > 1e-9:
            cands += [(5 - pose.x) / c, (-5 - pose.x) / c]
        if abs(s) > 1e-9:
            cands += [(4 - pose.y) / s, (-4 - pose.y) / s]
        ranges.append(min(t for t in cands if t > 0))
    return Scan2d(ranges, -math.pi, math.pi - inc, inc, 0.1, 30.0)


def test_fit_line():
    pts = [(x, 2 * x + 1) for x in (0.0, 1.0, 2.0, 3.0)]
    coeffs = fit_line_2d(pts)
    assert coeffs[0] ** 2 + coeffs[1] ** 2 == pytest.approx(1.0)
    for x, y in pts:
        assert coeffs[0] * x + coeffs[1] * y + coeffs[2] == pytest.approx(0.0, abs=1e-9)
    assert fit_line_2d([(1.0, 1.0)]) is None


def test_point_to_point_reduces_error():
    truth = SE2(0.03, 0.02, 0.005)
    icp = Icp2d()
    icp.set_target(_room_scan(SE2()))
    icp.set_source(_room_scan(truth))
    est = icp.align_gauss_newton(SE2())
    err = np.hypot(est.x - truth.x, est.y - truth.y)
    assert err < np.hypot(truth.x, truth.y)


def test_point_to_plane_recovers_pose():
    truth = SE2(0.1, -0.05, 0.02)
    icp = Icp2d()
    icp.set_target(_room_scan(SE2()))
    icp.set_source(_room_scan(truth))
    est = icp.align_gauss_newton_point_to_plane(SE2())
    assert est.x == pytest.approx(truth.x, abs=0.01)
    assert est.y == pytest.approx(truth.y, abs=0.01)
    assert est.theta == pytest.approx(truth.theta, abs=0.005)


def test_too_few_points_fails():
    icp = Icp2d()
    icp.set_target(_room_scan(SE2()))
    icp.set_source(Scan2d([1.0] * 5, 0.0, 0.4, 0.1, 0.1, 30.0))
    assert icp.align_gauss_newton(SE2()) is None


def test_missing_target_rejected():
    with pytest.raises(ValueError):
        Icp2d().set_target(None)