import math

import numpy as np
import pytest

from slam2d.se2 import SE2, normalize_angle


def test_normalize_angle_wraps_into_range():
    for a in (-10.0, -4.0, 0.3, 4.0, 10.0):
        n = normalize_angle(a)
        assert -math.pi <= n <= math.pi
        assert math.isclose(math.cos(n), math.cos(a), abs_tol=1e-12)


def test_exp_log_round_trip():
    xi = np.array([0.7, -1.2, 0.9])
    assert np.allclose(SE2.exp(xi).log(), xi)


def test_exp_of_zero_is_identity():
    assert SE2.exp([0.0, 0.0, 0.0]) == SE2()


def test_inverse_composes_to_identity():
    p = SE2(1.5, -2.0, 0.8)
    ident = p * p.inverse()
    assert np.allclose([ident.x, ident.y, ident.theta], [0, 0, 0], atol=1e-12)


def test_apply_and_multiply_agree():
    p = SE2(1.0, 2.0, 0.5)
    q = SE2(-0.3, 0.4, 1.1)
    pt = np.array([0.2, -0.7])
    assert np.allclose((p * q).apply(pt), p.apply(q.apply(pt)))
    assert np.allclose(p * pt, p.apply(pt))


def test_apply_many_points():
    p = SE2(1.0, 0.0, math.pi / 2)
    pts = np.array([[1.0, 0.0], [0.0, 1.0]])
    out = p.apply(pts)
    assert np.allclose(out, [[1.0, 1.0], [0.0, 0.0]])


def test_oplus_adds_componentwise():
    p = SE2(1.0, 2.0, 0.1).oplus([0.5, -0.5, 0.2])
    assert p.x == pytest.approx(1.5)
    assert p.y == pytest.approx(1.5)
    assert p.theta == pytest.approx(0.3)