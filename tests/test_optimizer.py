import math

import numpy as np
import pytest

from slam2d.optimizer import (
    Cauchy,
    EdgeSE2,
    EdgeSE2LikelihoodField,
    Huber,
    LevenbergMarquardt,
    VertexSE2,
    bilinear_pixel,
)
from slam2d.se2 import SE2


def test_bilinear_on_linear_ramp_matches_coordinate():
    img = np.tile(np.arange(20, dtype=np.float32), (20, 1))
    assert bilinear_pixel(img, 3.25, 7.5) == pytest.approx(3.25)


def test_kernel_weights():
    h = Huber(0.8)
    assert h.weight(0.5) == 1.0
    assert h.weight(100.0) < 1.0
    c = Cauchy(1.0)
    assert c.weight(0.0) == 1.0
    assert c.weight(4.0) < c.weight(1.0)


def test_pose_graph_converges():
    opt = LevenbergMarquardt()
    v0 = VertexSE2(0, SE2(), fixed=True)
    v1 = VertexSE2(1, SE2(0.5, 0.0, 0.0))
    v2 = VertexSE2(2, SE2(1.5, 0.3, 0.0))
    for v in (v0, v1, v2):
        opt.add_vertex(v)
    e1 = EdgeSE2(v0, v1, SE2(1.0, 0.0, 0.1))
    e2 = EdgeSE2(v1, v2, SE2(1.0, 0.0, 0.0))
    opt.add_edge(e1)
    opt.add_edge(e2)
    before = e1.chi2() + e2.chi2()
    opt.optimize(20)
    assert e1.chi2() + e2.chi2() < 1e-8 < before
    assert opt.vertex(0).estimate == SE2()


def test_duplicate_vertex_rejected():
    opt = LevenbergMarquardt()
    opt.add_vertex(VertexSE2(0))
    with pytest.raises(ValueError):
        opt.add_vertex(VertexSE2(0))


def test_likelihood_edge_error_and_outside():
    img = np.tile(np.arange(100, dtype=np.float32), (100, 1))
    v = VertexSE2(0, SE2())
    e = EdgeSE2LikelihoodField(v, img, 0.0, 0.0, resolution=1.0)
    assert not e.is_outside()
    assert e.compute_error()[0] == pytest.approx(bilinear_pixel(img, 49.5, 49.5))
    v.estimate = SE2(60.0, 0.0, 0.0)
    assert e.is_outside()
    assert e.compute_error()[0] == 0.0
    assert e.level == 1


def test_likelihood_edges_optimize_to_zero_cost():
    img = np.tile(np.arange(100, dtype=np.float32) - 50.0, (100, 1))
    opt = LevenbergMarquardt()
    v = VertexSE2(0, SE2(3.0, 0.0, 0.0))
    opt.add_vertex(v)
    edges = [EdgeSE2LikelihoodField(v, img, float(r), math.pi / 2, resolution=1.0) for r in range(1, 6)]
    for e in edges:
        opt.add_edge(e)
    before = sum(e.chi2() for e in edges)
    opt.optimize(30)
    after = sum(e.chi2() for e in edges)
    assert after < 1e-4 < before