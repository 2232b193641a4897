"""A small Levenberg-Marquardt pose optimizer with SE2 vertices and edges."""

from __future__ import annotations

import math
from dataclasses import dataclass, field

import numpy as np

from slam2d.se2 import SE2, normalize_angle


def bilinear_pixel(image: np.ndarray, x: float, y: float) -> float:
    """Bilinearly interpolated value of a single-channel image at (x, y)."""
    rows, cols = image.shape[:2]
    x = max(float(x), 0.0)
    y = max(float(y), 0.0)
    if x >= cols - 1:
        x = cols - 2.0
    if y >= rows - 1:
        y = rows - 2.0
    x0, y0 = int(math.floor(x)), int(math.floor(y))
    fx, fy = x - x0, y - y0
    return float(
        (1 - fx) * (1 - fy) * image[y0, x0]
        + fx * (1 - fy) * image[y0, x0 + 1]
        + (1 - fx) * fy * image[y0 + 1, x0]
        + fx * fy * image[y0 + 1, x0 + 1]
    )


@dataclass
class Huber:
    """Huber robust kernel."""

    delta: float

    def weight(self, chi2: float) -> float:
        if chi2 <= self.delta**2:
            return 1.0
        return self.delta / math.sqrt(chi2)

    def _rho(self, chi2: float) -> float:
        if chi2 <= self.delta**2:
            return chi2
        return 2.0 * self.delta * math.sqrt(chi2) - self.delta**2


@dataclass
class Cauchy:
    """Cauchy robust kernel."""

    delta: float

    def weight(self, chi2: float) -> float:
        return 1.0 / (1.0 + chi2 / self.delta**2)

    def _rho(self, chi2: float) -> float:
        d2 = self.delta**2
        return d2 * math.log1p(chi2 / d2)


@dataclass(eq=False)
class VertexSE2:
    """An SE2 pose being estimated."""

    id: int
    estimate: SE2 = field(default_factory=SE2)
    fixed: bool = False


def _chi2(edge) -> float:
    err = edge.compute_error()
    return float(err @ edge.information @ err)


@dataclass(eq=False)
class EdgeSE2:
    """Relative pose constraint: error = log(v1^-1 * v2 * meas^-1)."""

    v1: VertexSE2
    v2: VertexSE2
    measurement: SE2
    information: np.ndarray = field(default_factory=lambda: np.eye(3))
    robust_kernel: Huber | Cauchy | None = None
    level: int = 0

    @property
    def vertices(self) -> tuple[VertexSE2, VertexSE2]:
        return (self.v1, self.v2)

    def compute_error(self) -> np.ndarray:
        return (self.v1.estimate.inverse() * self.v2.estimate * self.measurement.inverse()).log()

    def chi2(self) -> float:
        return _chi2(self)

    def _jacobians(self) -> list[np.ndarray]:
        h = 1e-6
        jacobians = []
        for vertex in self.vertices:
            original = vertex.estimate
            jac = np.zeros((3, 3))
            for k in range(3):
                step = np.zeros(3)
                step[k] = h
                vertex.estimate = original.oplus(step)
                plus = self.compute_error()
                vertex.estimate = original.oplus(-step)
                minus = self.compute_error()
                diff = plus - minus
                diff[2] = normalize_angle(diff[2])
                jac[:, k] = diff / (2 * h)
            vertex.estimate = original
            jacobians.append(jac)
        return jacobians


@dataclass(eq=False)
class EdgeSE2LikelihoodField:
    """Unary edge reading a likelihood field image at a transformed scan point."""

    vertex: VertexSE2
    field_image: np.ndarray
    measured_range: float
    angle: float
    resolution: float = 10.0
    information: np.ndarray = field(default_factory=lambda: np.eye(1))
    robust_kernel: Huber | Cauchy | None = None
    level: int = 0

    IMAGE_BORDER = 10

    @property
    def vertices(self) -> tuple[VertexSE2]:
        return (self.vertex,)

    def _field_coords(self) -> np.ndarray:
        pose = self.vertex.estimate
        local = (self.measured_range * math.cos(self.angle), self.measured_range * math.sin(self.angle))
        rows, cols = self.field_image.shape[:2]
        return pose.apply(local) * self.resolution + np.array([rows // 2, cols // 2], dtype=float)

    def _inside(self, px: float, py: float) -> bool:
        rows, cols = self.field_image.shape[:2]
        b = self.IMAGE_BORDER
        return b <= px < cols - b and b <= py < rows - b

    def is_outside(self) -> bool:
        pf = self._field_coords()
        return not self._inside(int(pf[0]), int(pf[1]))

    def compute_error(self) -> np.ndarray:
        pf = self._field_coords() - 0.5
        if self._inside(pf[0], pf[1]):
            return np.array([bilinear_pixel(self.field_image, pf[0], pf[1])])
        self.level = 1
        return np.zeros(1)

    def chi2(self) -> float:
        return _chi2(self)

    def _jacobians(self) -> list[np.ndarray]:
        theta = self.vertex.estimate.theta
        pf = self._field_coords() - 0.5
        if not self._inside(pf[0], pf[1]):
            self.level = 1
            return [np.zeros((1, 3))]
        img, x, y = self.field_image, pf[0], pf[1]
        dx = 0.5 * (bilinear_pixel(img, x + 1, y) - bilinear_pixel(img, x - 1, y))
        dy = 0.5 * (bilinear_pixel(img, x, y + 1) - bilinear_pixel(img, x, y - 1))
        res, r, a = self.resolution, self.measured_range, self.angle
        return [
            np.array(
                [[res * dx, res * dy, -res * dx * r * math.sin(a + theta) + res * dy * r * math.cos(a + theta)]]
            )
        ]


class LevenbergMarquardt:
    """Dense Levenberg-Marquardt over SE2 vertices."""

    def __init__(self) -> None:
        self._vertices: dict[int, VertexSE2] = {}
        self._edges: list = []

    def add_vertex(self, vertex: VertexSE2) -> None:
        if vertex.id in self._vertices:
            raise ValueError(f"vertex {vertex.id} already added")
        self._vertices[vertex.id] = vertex

    def vertex(self, vid: int) -> VertexSE2:
        return self._vertices[vid]

    def add_edge(self, edge) -> None:
        for v in edge.vertices:
            if self._vertices.get(v.id) is not v:
                raise ValueError(f"edge refers to unknown vertex {v.id}")
        self._edges.append(edge)

    @staticmethod
    def _cost(edges) -> float:
        total = 0.0
        for e in edges:
            c = e.chi2()
            total += e.robust_kernel._rho(c) if e.robust_kernel else c
        return total

    def _linearize(self, edges, index):
        n = 3 * len(index)
        H = np.zeros((n, n))
        b = np.zeros(n)
        for e in edges:
            err = e.compute_error()
            jacs = e._jacobians()
            chi2 = float(err @ e.information @ err)
            w = e.robust_kernel.weight(chi2) if e.robust_kernel else 1.0
            omega = w * e.information
            for vi, Ji in zip(e.vertices, jacs):
                if vi.id not in index:
                    continue
                i = 3 * index[vi.id]
                b[i : i + 3] += Ji.T @ omega @ err
                for vj, Jj in zip(e.vertices, jacs):
                    if vj.id not in index:
                        continue
                    j = 3 * index[vj.id]
                    H[i : i + 3, j : j + 3] += Ji.T @ omega @ Jj
        return H, b

    def optimize(self, iterations: int) -> float:
        """Run up to ``iterations`` steps; return the final robust cost."""
        active = [e for e in self._edges if e.level == 0]
        free = [v for v in self._vertices.values() if not v.fixed]
        if not active or not free:
            return self._cost(active)
        index = {v.id: k for k, v in enumerate(free)}
        cost = self._cost(active)
        lam = None
        nu = 2.0
        for _ in range(iterations):
            H, b = self._linearize(active, index)
            if lam is None:
                lam = 1e-5 * max(float(np.max(np.diag(H))), 1.0)
            accepted = False
            for _ in range(10):
                backup = {v.id: v.estimate for v in free}
                try:
                    dx = np.linalg.solve(H + lam * np.eye(len(b)), -b)
                except np.linalg.LinAlgError:
                    lam *= nu
                    nu *= 2
                    continue
                if not np.all(np.isfinite(dx)):
                    lam *= nu
                    nu *= 2
                    continue
                for v in free:
                    k = 3 * index[v.id]
                    v.estimate = v.estimate.oplus(dx[k : k + 3])
                new_cost = self._cost(active)
                predicted = float(dx @ (lam * dx - b)) + 1e-3
                rho = (cost - new_cost) / predicted
                if rho > 0 and math.isfinite(new_cost):
                    lam *= max(1.0 / 3.0, 1.0 - (2.0 * rho - 1.0) ** 3)
                    nu = 2.0
                    cost = new_cost
                    accepted = True
                    break
                for v in free:
                    v.estimate = backup[v.id]
                lam *= nu
                nu *= 2
            if not accepted:
                break
        return cost