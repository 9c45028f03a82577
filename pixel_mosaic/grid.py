"""
Adaptive grid data model.

Corners live in a flat arena owned by the grid and are addressed by index
(``row * (cols + 1) + col``); cells hold four corner indices in the winding
order top-left, top-right, bottom-right, bottom-left. Neighbouring cells share
corner indices, so moving one corner reshapes every cell that touches it.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterator, List, Tuple

import numpy as np

from .config import MAX_CORNER_SHIFT

Point = Tuple[float, float]


class Corner:
    """Movable lattice vertex that remembers where it started."""

    __slots__ = ("x", "y", "_origin")

    def __init__(self, x: float, y: float):
        self.x = float(x)
        self.y = float(y)
        self._origin = (float(x), float(y))

    @property
    def original_x(self) -> float:
        return self._origin[0]

    @property
    def original_y(self) -> float:
        return self._origin[1]

    @property
    def position(self) -> Point:
        return self.x, self.y

    def move_to(self, x: float, y: float) -> None:
        self.x = float(x)
        self.y = float(y)

    def displacement(self) -> float:
        return math.hypot(self.x - self._origin[0], self.y - self._origin[1])

    def reset(self) -> None:
        self.x, self.y = self._origin

    def __repr__(self) -> str:
        return f"Corner(x={self.x:.2f}, y={self.y:.2f}, origin={self._origin})"


@dataclass(frozen=True)
class Cell:
    row: int
    col: int
    corners: Tuple[int, int, int, int]


class AdaptiveGrid:
    """``rows x cols`` quadrilateral cells over a shared corner lattice."""

    def __init__(self, width: int, height: int, rows: int, cols: int, corners: List[Corner]):
        if len(corners) != (rows + 1) * (cols + 1):
            raise ValueError("Corner arena does not match the lattice size.")
        self.width = width
        self.height = height
        self.rows = rows
        self.cols = cols
        self.corners = corners
        self.cells: List[Cell] = [
            Cell(
                row,
                col,
                (
                    self.corner_index(row, col),
                    self.corner_index(row, col + 1),
                    self.corner_index(row + 1, col + 1),
                    self.corner_index(row + 1, col),
                ),
            )
            for row in range(rows)
            for col in range(cols)
        ]

    # ------------------------- indexing ---------------------------------

    def corner_index(self, row: int, col: int) -> int:
        return row * (self.cols + 1) + col

    def row_col(self, index: int) -> Tuple[int, int]:
        return divmod(index, self.cols + 1)

    def corner_at(self, row: int, col: int) -> Corner:
        return self.corners[self.corner_index(row, col)]

    def position(self, index: int) -> Point:
        return self.corners[index].position

    def cell_index(self, row: int, col: int) -> int:
        return row * self.cols + col

    def is_border(self, index: int) -> bool:
        row, col = self.row_col(index)
        return row == 0 or col == 0 or row == self.rows or col == self.cols

    def interior_indices(self) -> Iterator[int]:
        for row in range(1, self.rows):
            for col in range(1, self.cols):
                yield self.corner_index(row, col)

    @property
    def spacing(self) -> Tuple[float, float]:
        return self.width / self.cols, self.height / self.rows

    # ------------------------- topology ---------------------------------

    def incident_neighbors(self, index: int) -> List[int]:
        """Corners joined to ``index`` by a cell edge (up, down, left, right)."""
        row, col = self.row_col(index)
        neighbors = []
        if row > 0:
            neighbors.append(self.corner_index(row - 1, col))
        if row < self.rows:
            neighbors.append(self.corner_index(row + 1, col))
        if col > 0:
            neighbors.append(self.corner_index(row, col - 1))
        if col < self.cols:
            neighbors.append(self.corner_index(row, col + 1))
        return neighbors

    def edge_sides(self, a: int, b: int) -> List[Tuple[int, int]]:
        """For each cell bordering edge a-b, the corners facing a and b across it."""
        ra, ca = self.row_col(a)
        rb, cb = self.row_col(b)
        sides: List[Tuple[int, int]] = []
        if ra == rb and abs(ca - cb) == 1:
            for step in (-1, 1):
                r = ra + step
                if 0 <= r <= self.rows:
                    sides.append((self.corner_index(r, ca), self.corner_index(r, cb)))
        elif ca == cb and abs(ra - rb) == 1:
            for step in (-1, 1):
                c = ca + step
                if 0 <= c <= self.cols:
                    sides.append((self.corner_index(ra, c), self.corner_index(rb, c)))
        else:
            raise ValueError(f"Corners {a} and {b} do not share a cell edge.")
        return sides

    def cells_sharing_edge(self, a: int, b: int) -> List[int]:
        """Indices of the one or two cells bordering edge a-b."""
        shared = []
        for cell_idx, cell in enumerate(self.cells):
            if a in cell.corners and b in cell.corners:
                # diagonal corners share a cell but not an edge
                gap = abs(cell.corners.index(a) - cell.corners.index(b))
                if gap in (1, 3):
                    shared.append(cell_idx)
        return shared

    def movement_box(self, index: int) -> Tuple[float, float, float, float]:
        """(x_min, x_max, y_min, y_max) the corner may occupy."""
        corner = self.corners[index]
        if self.is_border(index):
            return corner.original_x, corner.original_x, corner.original_y, corner.original_y
        sx, sy = self.spacing
        return (
            max(0.0, corner.original_x - MAX_CORNER_SHIFT * sx),
            min(float(self.width), corner.original_x + MAX_CORNER_SHIFT * sx),
            max(0.0, corner.original_y - MAX_CORNER_SHIFT * sy),
            min(float(self.height), corner.original_y + MAX_CORNER_SHIFT * sy),
        )

    # ------------------------- geometry ---------------------------------

    def cell_corner_points(self, cell_index: int, original: bool = False) -> np.ndarray:
        cell = self.cells[cell_index]
        if original:
            pts = [(self.corners[i].original_x, self.corners[i].original_y) for i in cell.corners]
        else:
            pts = [self.corners[i].position for i in cell.corners]
        return np.array(pts, dtype=np.float64)

    def cell_bounds(self, cell_index: int) -> Tuple[float, float, float, float]:
        pts = self.cell_corner_points(cell_index)
        return (
            float(pts[:, 0].min()),
            float(pts[:, 1].min()),
            float(pts[:, 0].max()),
            float(pts[:, 1].max()),
        )

    def cell_area(self, cell_index: int, original: bool = False) -> float:
        pts = self.cell_corner_points(cell_index, original=original)
        x, y = pts[:, 0], pts[:, 1]
        return 0.5 * abs(float(np.dot(x, np.roll(y, -1)) - np.dot(y, np.roll(x, -1))))

    def area_ratios(self) -> np.ndarray:
        """Current / lattice area for every cell, shaped (rows, cols)."""
        ratios = np.ones(len(self.cells), dtype=np.float64)
        for i in range(len(self.cells)):
            base = self.cell_area(i, original=True)
            if base > 0:
                ratios[i] = self.cell_area(i) / base
        return ratios.reshape(self.rows, self.cols)

    def snapped_edges(self) -> Tuple[List[int], List[int]]:
        """Integer x/y lattice lines from the median of each corner column/row.

        Borders stay at 0 and the image size; interior lines are forced to be
        strictly increasing so every block keeps at least one pixel.
        """
        pts = self.positions()
        x_edges = [_round_half_up(float(np.median(pts[:, c, 0]))) for c in range(self.cols + 1)]
        y_edges = [_round_half_up(float(np.median(pts[r, :, 1]))) for r in range(self.rows + 1)]
        return _strictly_increasing(x_edges, self.width), _strictly_increasing(y_edges, self.height)

    def positions(self) -> np.ndarray:
        pts = np.array([c.position for c in self.corners], dtype=np.float64)
        return pts.reshape(self.rows + 1, self.cols + 1, 2)

    def displacements(self) -> np.ndarray:
        return np.array([c.displacement() for c in self.corners], dtype=np.float64)

    def max_displacement(self) -> float:
        return float(self.displacements().max()) if self.corners else 0.0

    # ------------------------- lifecycle --------------------------------

    def reset(self) -> None:
        for corner in self.corners:
            corner.reset()

    def copy(self) -> "AdaptiveGrid":
        clone = AdaptiveGrid(
            self.width,
            self.height,
            self.rows,
            self.cols,
            [Corner(c.original_x, c.original_y) for c in self.corners],
        )
        for src, dst in zip(self.corners, clone.corners):
            dst.move_to(src.x, src.y)
        return clone

    def __repr__(self) -> str:
        return f"AdaptiveGrid({self.width}x{self.height}, rows={self.rows}, cols={self.cols})"


def create_initial_grid(width: int, height: int, block_size: float) -> AdaptiveGrid:
    """Uniform lattice of roughly ``block_size`` cells covering the image."""
    if block_size <= 0:
        raise ValueError(f"block_size must be positive, got {block_size}")
    if width <= 0 or height <= 0:
        raise ValueError(f"Image must be non-empty, got {width}x{height}")
    cols = int(math.ceil(width / block_size))
    rows = int(math.ceil(height / block_size))
    corners = [
        Corner(col * width / cols, row * height / rows)
        for row in range(rows + 1)
        for col in range(cols + 1)
    ]
    return AdaptiveGrid(width, height, rows, cols, corners)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _strictly_increasing(edges: List[int], size: int) -> List[int]:
    edges = list(edges)
    last = len(edges) - 1
    edges[0], edges[last] = 0, size
    for i in range(1, last):
        edges[i] = max(edges[i], edges[i - 1] + 1)
    for i in range(last - 1, 0, -1):
        edges[i] = min(edges[i], edges[i + 1] - 1)
    return edges
