"""
Local-search corner optimizer.

Every interior corner tries a small square of offsets around its current
position and moves (damped) toward the candidate whose incident cell edges
best follow the edge map. Border corners never move and every corner stays
inside its movement box, so cells keep their winding and positive area.
"""

import logging
import math
from typing import Optional, Tuple

import numpy as np

from .config import (
    ALIGNMENT_CORNER_BONUS,
    ALIGNMENT_HIT_WEIGHT,
    ALIGNMENT_RUN_WEIGHT,
    ALIGNMENT_SAMPLES_PER_PX,
    OptimizerOptions,
)
from .curves import EdgeCurve, edge_curve
from .edges import edge_density
from .grid import AdaptiveGrid

logger = logging.getLogger(__name__)


def _longest_run(hits: np.ndarray) -> int:
    if not hits.any():
        return 0
    padded = np.concatenate(([0], hits.astype(np.int8), [0]))
    steps = np.diff(padded)
    starts = np.flatnonzero(steps == 1)
    ends = np.flatnonzero(steps == -1)
    return int((ends - starts).max())


def alignment_score(edge_map: np.ndarray, curve: EdgeCurve) -> float:
    """How well a cell edge follows the edge map, in [0, 1].

    Weighted sum of the share of samples on edge pixels, the longest unbroken
    run of such samples, and a bonus when the starting corner itself sits on
    an edge pixel. Edges shorter than one pixel score 0.
    """
    length = curve.chord_length()
    if length < 1.0:
        return 0.0
    segments = max(3, int(math.ceil(length * ALIGNMENT_SAMPLES_PER_PX)))
    points = curve.sample(segments)

    h, w = edge_map.shape
    xs = np.clip(np.floor(points[:, 0] + 0.5), 0, w - 1).astype(np.intp)
    ys = np.clip(np.floor(points[:, 1] + 0.5), 0, h - 1).astype(np.intp)
    hits = edge_map[ys, xs] > 0

    n = len(hits)
    score = ALIGNMENT_HIT_WEIGHT * (np.count_nonzero(hits) / n)
    score += ALIGNMENT_RUN_WEIGHT * (_longest_run(hits) / n)
    if hits[0]:
        score += ALIGNMENT_CORNER_BONUS
    return float(score)


def corner_score(
    grid: AdaptiveGrid,
    edge_map: np.ndarray,
    index: int,
    x: float,
    y: float,
    options: OptimizerOptions,
) -> float:
    """Score of corner ``index`` if it were placed at (x, y)."""
    score = edge_density(edge_map, x, y, options.density_radius)
    for neighbor in grid.incident_neighbors(index):
        if options.use_curved_edges:
            curve = edge_curve(
                grid,
                index,
                neighbor,
                options.curve_degree,
                options.curve_smoothness,
                override={index: (x, y)},
            )
        else:
            curve = EdgeCurve.line((x, y), grid.position(neighbor))
        score += alignment_score(edge_map, curve)
    return score


def _search_offsets(options: OptimizerOptions) -> np.ndarray:
    side = int(math.isqrt(int(options.search_radius)))
    half = side // 2
    return np.arange(-half, half + 1, dtype=np.float64) * options.step_size


def _prepare_edge_map(grid: AdaptiveGrid, edge_map) -> Optional[np.ndarray]:
    arr = np.asarray(edge_map, dtype=np.float32)
    if arr.shape != (grid.height, grid.width):
        if arr.size != grid.width * grid.height:
            logger.warning(
                "Edge map of shape %s does not cover a %dx%d grid; leaving grid unchanged",
                arr.shape, grid.width, grid.height,
            )
            return None
        arr = arr.reshape(grid.height, grid.width)
    if not np.all(np.isfinite(arr)):
        logger.warning("Edge map contains non-finite values; leaving grid unchanged")
        return None
    return arr


def _best_candidate(
    grid: AdaptiveGrid,
    edge_map: np.ndarray,
    index: int,
    offsets: np.ndarray,
    options: OptimizerOptions,
) -> Tuple[float, float]:
    corner = grid.corners[index]
    x_min, x_max, y_min, y_max = grid.movement_box(index)
    best_x, best_y = corner.x, corner.y
    best_score = corner_score(grid, edge_map, index, best_x, best_y, options)
    seen = {(best_x, best_y)}

    for dy in offsets:
        for dx in offsets:
            tx = min(max(corner.x + dx, x_min), x_max)
            ty = min(max(corner.y + dy, y_min), y_max)
            if (tx, ty) in seen:
                continue
            seen.add((tx, ty))
            if tx < 0 or ty < 0 or tx >= grid.width or ty >= grid.height:
                continue
            score = corner_score(grid, edge_map, index, tx, ty, options)
            if score > best_score:
                best_score, best_x, best_y = score, tx, ty
    return best_x, best_y


def optimize_grid_corners(
    grid: AdaptiveGrid,
    edge_map,
    options: Optional[OptimizerOptions] = None,
) -> AdaptiveGrid:
    """Move interior corners toward nearby edges, in place.

    Args:
        grid: grid to refine; its corners are mutated.
        edge_map: (height, width) edge strengths (a flat array of the same
            size is accepted).
        options: search parameters; defaults to ``OptimizerOptions()``.

    Returns:
        The same grid object.
    """
    options = options or OptimizerOptions()
    if not options.is_valid():
        logger.warning("Invalid optimizer options %s; leaving grid unchanged", options)
        return grid
    edges = _prepare_edge_map(grid, edge_map)
    if edges is None:
        return grid
    if not edges.any():
        logger.debug("Edge map is empty; corners stay on the lattice")
        return grid

    offsets = _search_offsets(options)
    for iteration in range(options.iterations):
        damping = options.damping(iteration)
        largest_move = 0.0
        for index in grid.interior_indices():
            corner = grid.corners[index]
            best_x, best_y = _best_candidate(grid, edges, index, offsets, options)
            if best_x == corner.x and best_y == corner.y:
                continue
            x_min, x_max, y_min, y_max = grid.movement_box(index)
            new_x = min(max(corner.x + (best_x - corner.x) * damping, x_min), x_max)
            new_y = min(max(corner.y + (best_y - corner.y) * damping, y_min), y_max)
            largest_move = max(largest_move, math.hypot(new_x - corner.x, new_y - corner.y))
            corner.move_to(new_x, new_y)

        logger.debug(
            "Iteration %d/%d: damping=%.3f largest move=%.3f",
            iteration + 1, options.iterations, damping, largest_move,
        )
        if options.tolerance > 0 and largest_move < options.tolerance:
            logger.debug("Converged after %d iterations", iteration + 1)
            break

    return grid
