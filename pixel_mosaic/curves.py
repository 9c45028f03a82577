"""
Curved cell boundaries.

A boundary between two lattice corners is either a straight chord or a
quadratic/cubic Bezier bowed toward where the neighbouring corners have moved.
Curves are derived from the canonical orientation (lower corner index first)
so the two cells sharing an edge always agree on its shape.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple

import numpy as np

from .config import MAX_CURVE_DEVIATION
from .grid import AdaptiveGrid, Point


class CurveKind(str, Enum):
    LINE = "line"
    QUADRATIC = "quadratic"
    CUBIC = "cubic"


@dataclass(frozen=True)
class EdgeCurve:
    kind: CurveKind
    points: Tuple[Point, ...]

    @classmethod
    def line(cls, start: Point, end: Point) -> "EdgeCurve":
        return cls(CurveKind.LINE, (tuple(start), tuple(end)))

    @property
    def start(self) -> Point:
        return self.points[0]

    @property
    def end(self) -> Point:
        return self.points[-1]

    def chord_length(self) -> float:
        (x0, y0), (x1, y1) = self.start, self.end
        return math.hypot(x1 - x0, y1 - y0)

    def reversed(self) -> "EdgeCurve":
        return EdgeCurve(self.kind, tuple(reversed(self.points)))

    def sample(self, segments: int) -> np.ndarray:
        """``segments + 1`` points at evenly spaced parameters t in [0, 1]."""
        t = np.linspace(0.0, 1.0, max(1, segments) + 1)[:, None]
        p = np.asarray(self.points, dtype=np.float64)
        if self.kind == CurveKind.LINE:
            return p[0] + (p[1] - p[0]) * t
        u = 1.0 - t
        if self.kind == CurveKind.QUADRATIC:
            return u * u * p[0] + 2 * u * t * p[1] + t * t * p[2]
        return u ** 3 * p[0] + 3 * u * u * t * p[1] + 3 * u * t * t * p[2] + t ** 3 * p[3]


def _clamp(value: float, limit: float) -> float:
    return max(-limit, min(limit, value))


def edge_curve(
    grid: AdaptiveGrid,
    a: int,
    b: int,
    degree: int = 2,
    smoothness: float = 0.5,
    override: Optional[Dict[int, Point]] = None,
) -> EdgeCurve:
    """Curve for the cell edge running from corner ``a`` to corner ``b``.

    Args:
        grid: grid owning both corners.
        a, b: indices of two corners joined by a cell edge.
        degree: 2 for a quadratic, 3 for a cubic Bezier.
        smoothness: 0 keeps the edge straight, 1 follows the neighbours fully.
        override: trial positions to use instead of the stored ones.

    Returns:
        An EdgeCurve starting at ``a`` and ending at ``b``.
    """
    override = override or {}

    def pos(index: int) -> np.ndarray:
        return np.asarray(override.get(index, grid.position(index)), dtype=np.float64)

    lo, hi = (a, b) if a < b else (b, a)
    A, B = pos(lo), pos(hi)
    curve = EdgeCurve.line(tuple(A), tuple(B))

    sides = grid.edge_sides(lo, hi)
    chord = B - A
    length = float(np.hypot(*chord))
    if len(sides) < 2 or length < 1e-9 or smoothness <= 0:
        return curve if a == lo else curve.reversed()

    normal = np.array([-chord[1], chord[0]]) / length
    limit = MAX_CURVE_DEVIATION * length
    (ua, ub), (da, db) = sides
    UA, UB, DA, DB = pos(ua), pos(ub), pos(da), pos(db)

    if degree == 3:
        off_a = float(np.dot((UA + DA) / 2 - A, normal))
        off_b = float(np.dot((UB + DB) / 2 - B, normal))
        c1 = A + chord / 3 + normal * _clamp(off_a * smoothness, limit)
        c2 = A + 2 * chord / 3 + normal * _clamp(off_b * smoothness, limit)
        curve = EdgeCurve(CurveKind.CUBIC, (tuple(A), tuple(c1), tuple(c2), tuple(B)))
    else:
        mid = (A + B) / 2
        offset = float(np.dot((UA + UB + DA + DB) / 4 - mid, normal))
        control = mid + normal * _clamp(offset * smoothness, limit)
        curve = EdgeCurve(CurveKind.QUADRATIC, (tuple(A), tuple(control), tuple(B)))

    return curve if a == lo else curve.reversed()


def cell_outline(
    grid: AdaptiveGrid,
    cell_index: int,
    degree: int = 2,
    smoothness: float = 0.5,
    segments: int = 8,
) -> np.ndarray:
    """Closed polygon (N, 2) tracing the curved boundary of one cell."""
    corners = grid.cells[cell_index].corners
    parts = []
    for i in range(4):
        curve = edge_curve(grid, corners[i], corners[(i + 1) % 4], degree, smoothness)
        # drop the end point; it starts the next edge
        parts.append(curve.sample(segments)[:-1])
    return np.concatenate(parts, axis=0)


class CurveCache:
    """Memoizes cell outlines for one rendering pass over a fixed grid."""

    def __init__(self, segments: int = 8):
        self.segments = segments
        self._outlines: Dict[Tuple[int, int, float], np.ndarray] = {}

    def outline(self, grid: AdaptiveGrid, cell_index: int, degree: int, smoothness: float) -> np.ndarray:
        key = (cell_index, degree, smoothness)
        if key not in self._outlines:
            self._outlines[key] = cell_outline(grid, cell_index, degree, smoothness, self.segments)
        return self._outlines[key]

    def clear(self) -> None:
        self._outlines.clear()

    def __contains__(self, key: Tuple[int, int, float]) -> bool:
        return key in self._outlines

    def __len__(self) -> int:
        return len(self._outlines)
