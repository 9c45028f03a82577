"""Tests for the corner optimizer."""

from __future__ import annotations

import logging

import numpy as np
import pytest

from pixel_mosaic.config import OptimizerOptions
from pixel_mosaic.curves import EdgeCurve
from pixel_mosaic.grid import create_initial_grid
from pixel_mosaic.optimizer import alignment_score, optimize_grid_corners


def _vertical_line_map(size: int = 40, column: int = 13) -> np.ndarray:
    edge_map = np.zeros((size, size), dtype=np.float32)
    edge_map[:, column] = 1.0
    return edge_map


def _diagonal_map(size: int = 48) -> np.ndarray:
    edge_map = np.zeros((size, size), dtype=np.float32)
    for i in range(size):
        edge_map[i, i] = 1.0
        edge_map[i, size - 1 - i] = 1.0
    edge_map[size // 3, :] = 1.0
    return edge_map


def _signed_area(points: np.ndarray) -> float:
    x, y = points[:, 0], points[:, 1]
    return 0.5 * float(np.dot(x, np.roll(y, -1)) - np.dot(y, np.roll(x, -1)))


def _assert_topology(grid):
    for i in range(len(grid.cells)):
        area = _signed_area(grid.cell_corner_points(i))
        original = _signed_area(grid.cell_corner_points(i, original=True))
        assert area != 0.0
        assert np.sign(area) == np.sign(original)
    for index, corner in enumerate(grid.corners):
        x_min, x_max, y_min, y_max = grid.movement_box(index)
        assert x_min <= corner.x <= x_max
        assert y_min <= corner.y <= y_max
        if grid.is_border(index):
            assert corner.position == (corner.original_x, corner.original_y)


class TestAlignmentScore:
    def test_edge_following_segment_scores_full(self):
        edge_map = np.zeros((20, 20), dtype=np.float32)
        edge_map[5, :] = 1.0
        score = alignment_score(edge_map, EdgeCurve.line((2.0, 5.0), (15.0, 5.0)))
        assert score == pytest.approx(1.0)

    def test_off_edge_segment_scores_zero(self):
        edge_map = np.zeros((20, 20), dtype=np.float32)
        edge_map[5, :] = 1.0
        assert alignment_score(edge_map, EdgeCurve.line((2.0, 12.0), (15.0, 12.0))) == 0.0

    def test_sub_pixel_segment_scores_zero(self):
        edge_map = np.ones((20, 20), dtype=np.float32)
        assert alignment_score(edge_map, EdgeCurve.line((3.0, 3.0), (3.5, 3.2))) == 0.0

    def test_start_bonus(self):
        edge_map = np.zeros((20, 20), dtype=np.float32)
        edge_map[5, 2] = 1.0
        with_bonus = alignment_score(edge_map, EdgeCurve.line((2.0, 5.0), (15.0, 5.0)))
        without = alignment_score(edge_map, EdgeCurve.line((15.0, 5.0), (2.0, 5.0)))
        assert with_bonus == pytest.approx(without + 0.2)


class TestOptimizer:
    def test_no_edges_leaves_lattice(self):
        grid = create_initial_grid(40, 40, 10)
        optimize_grid_corners(grid, np.zeros((40, 40), dtype=np.float32))
        assert grid.max_displacement() == 0.0

    def test_returns_same_grid(self):
        grid = create_initial_grid(40, 40, 10)
        assert optimize_grid_corners(grid, _vertical_line_map()) is grid

    def test_corners_move_toward_edge(self):
        grid = create_initial_grid(40, 40, 10)
        options = OptimizerOptions(search_radius=25, iterations=3, step_size=1.0)
        optimize_grid_corners(grid, _vertical_line_map(column=13), options)
        assert grid.corner_at(1, 1).x > 10.5
        assert grid.corner_at(2, 1).x > 10.5

    def test_topology_preserved(self):
        grid = create_initial_grid(48, 48, 8)
        options = OptimizerOptions(search_radius=25, iterations=4, step_size=3.0, sharpness=1.0)
        optimize_grid_corners(grid, _diagonal_map(), options)
        assert grid.max_displacement() > 0.0
        _assert_topology(grid)

    @pytest.mark.parametrize("degree", [2, 3])
    def test_curved_mode_preserves_topology(self, degree):
        grid = create_initial_grid(48, 48, 8)
        options = OptimizerOptions(
            search_radius=9, iterations=2, step_size=2.0,
            use_curved_edges=True, curve_degree=degree, curve_smoothness=0.8,
        )
        optimize_grid_corners(grid, _diagonal_map(), options)
        _assert_topology(grid)

    def test_flat_edge_map_is_accepted(self):
        flat_grid = create_initial_grid(40, 40, 10)
        grid = create_initial_grid(40, 40, 10)
        edge_map = _vertical_line_map()
        optimize_grid_corners(flat_grid, edge_map.reshape(-1))
        optimize_grid_corners(grid, edge_map)
        np.testing.assert_array_equal(flat_grid.positions(), grid.positions())

    def test_mismatched_edge_map_is_ignored(self, caplog):
        grid = create_initial_grid(40, 40, 10)
        with caplog.at_level(logging.WARNING):
            optimize_grid_corners(grid, np.ones((10, 10), dtype=np.float32))
        assert grid.max_displacement() == 0.0
        assert "leaving grid unchanged" in caplog.text

    def test_invalid_options_are_ignored(self, caplog):
        grid = create_initial_grid(40, 40, 10)
        with caplog.at_level(logging.WARNING):
            optimize_grid_corners(grid, _vertical_line_map(), OptimizerOptions(step_size=float("nan")))
        assert grid.max_displacement() == 0.0
        assert "Invalid optimizer options" in caplog.text

    def test_tolerance_stops_early(self):
        stopped = create_initial_grid(40, 40, 10)
        single = create_initial_grid(40, 40, 10)
        edge_map = _vertical_line_map()
        optimize_grid_corners(stopped, edge_map, OptimizerOptions(search_radius=25, iterations=5, tolerance=1e6))
        optimize_grid_corners(single, edge_map, OptimizerOptions(search_radius=25, iterations=1))
        # the first pass damps the same way whatever the iteration count
        assert stopped.max_displacement() > 0.0
        np.testing.assert_array_equal(stopped.positions(), single.positions())

    def test_deterministic(self):
        first = create_initial_grid(48, 48, 8)
        second = create_initial_grid(48, 48, 8)
        options = OptimizerOptions(search_radius=25, iterations=3, step_size=2.0)
        optimize_grid_corners(first, _diagonal_map(), options)
        optimize_grid_corners(second, _diagonal_map(), options)
        np.testing.assert_array_equal(first.positions(), second.positions())
