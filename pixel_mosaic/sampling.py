"""
Block layouts and per-block color sampling.

A block's color blends the mean of a sparse sample grid (soft) with its
luminance median (crisp). The sampled rectangle is always the rectangle the
renderer paints, because both read the same BlockLayout.
"""

import logging
import math
from dataclasses import dataclass
from typing import Iterator, Tuple, Union

import numpy as np

from .buffer import Color, PixelBuffer
from .config import BLOCK_SAMPLE_BUDGET, LUMA_WEIGHTS, MINORITY_LUMA_GAP
from .grid import AdaptiveGrid

logger = logging.getLogger(__name__)

Block = Tuple[int, int, int, int, int, int]  # row, col, x0, y0, x1, y1


@dataclass(frozen=True)
class BlockLayout:
    """Axis-aligned blocks between consecutive x and y edges."""
    x_edges: Tuple[int, ...]
    y_edges: Tuple[int, ...]

    @property
    def cols(self) -> int:
        return len(self.x_edges) - 1

    @property
    def rows(self) -> int:
        return len(self.y_edges) - 1

    @property
    def width(self) -> int:
        return self.x_edges[-1]

    @property
    def height(self) -> int:
        return self.y_edges[-1]

    def block(self, row: int, col: int) -> Tuple[int, int, int, int]:
        return self.x_edges[col], self.y_edges[row], self.x_edges[col + 1], self.y_edges[row + 1]

    def blocks(self) -> Iterator[Block]:
        for row in range(self.rows):
            for col in range(self.cols):
                yield (row, col) + self.block(row, col)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def uniform_layout(width: int, height: int, block_size: int) -> BlockLayout:
    if block_size < 1:
        raise ValueError(f"block_size must be >= 1, got {block_size}")
    cols = int(math.ceil(width / block_size))
    rows = int(math.ceil(height / block_size))
    return BlockLayout(
        tuple(_round_half_up(c * width / cols) for c in range(cols + 1)),
        tuple(_round_half_up(r * height / rows) for r in range(rows + 1)),
    )


def grid_layout(grid: AdaptiveGrid) -> BlockLayout:
    """Rectilinear layout following the optimized grid's lattice lines."""
    x_edges, y_edges = grid.snapped_edges()
    return BlockLayout(tuple(x_edges), tuple(y_edges))


def _axis_count(span: int, stride: int) -> int:
    return int(math.ceil((span - 1) / stride)) + 1


def _sample_stride(block_w: int, block_h: int) -> int:
    stride = max(1, int(math.ceil(math.sqrt(block_w * block_h / BLOCK_SAMPLE_BUDGET))))
    # border-to-border sampling takes one extra row and column
    while _axis_count(block_w, stride) * _axis_count(block_h, stride) > BLOCK_SAMPLE_BUDGET:
        stride += 1
    return stride


def _sample_positions(start: int, stop: int, stride: int) -> np.ndarray:
    """Evenly spread positions from the first to the last pixel, at most ``stride`` apart."""
    count = _axis_count(stop - start, stride)
    return np.floor(np.linspace(start, stop - 1, count) + 0.5).astype(np.intp)


def block_samples(pixels: np.ndarray, x0: int, y0: int, x1: int, y1: int) -> np.ndarray:
    """Sparse sample grid of a block as an (n, 4) float array.

    Border rows and columns are always sampled and no more than
    ``stride - 1`` pixels between two samples go unseen, so a feature at
    least ``stride`` pixels wide always reaches the samples.
    """
    if x1 <= x0 or y1 <= y0:
        raise ValueError(f"Empty block ({x0}, {y0}, {x1}, {y1})")
    stride = _sample_stride(x1 - x0, y1 - y0)
    xs = _sample_positions(x0, x1, stride)
    ys = _sample_positions(y0, y1, stride)
    return pixels[np.ix_(ys, xs)].reshape(-1, 4).astype(np.float64)


def minority_share(samples: np.ndarray) -> float:
    """Fraction of samples whose luma is far from the luma median."""
    luma = samples[:, :3] @ np.asarray(LUMA_WEIGHTS)
    median = luma[np.argsort(luma, kind="stable")[len(luma) // 2]]
    return float(np.mean(np.abs(luma - median) > MINORITY_LUMA_GAP))


def sample_block(
    pixels: np.ndarray,
    x0: int,
    y0: int,
    x1: int,
    y1: int,
    t: float,
    keep_minority: bool = False,
) -> Color:
    """Blend of mean and luminance-median color over a sparse sample grid.

    Args:
        pixels: (H, W, 4) uint8 RGBA array.
        x0, y0, x1, y1: half-open block rectangle.
        t: 0 gives the mean, 1 the median.
        keep_minority: cap ``t`` at ``1 - minority_share`` so a thin feature
            that loses the median vote still tints the block.

    Returns:
        The blended Color, rounded half up.
    """
    samples = block_samples(pixels, x0, y0, x1, y1)

    average = samples.mean(axis=0)
    luma = samples[:, :3] @ np.asarray(LUMA_WEIGHTS)
    median = samples[np.argsort(luma, kind="stable")[len(samples) // 2]]

    t = min(max(float(t), 0.0), 1.0)
    if keep_minority:
        t = min(t, 1.0 - minority_share(samples))
    blended = np.clip(np.floor(average * (1.0 - t) + median * t + 0.5), 0, 255)
    return Color(*(int(v) for v in blended))


def sample_block_colors(
    buffer: PixelBuffer,
    layout: BlockLayout,
    weights: Union[float, np.ndarray] = 0.0,
    keep_minority: bool = False,
) -> np.ndarray:
    """Colors for every block of ``layout``, shaped (rows, cols, 4) uint8.

    ``weights`` is the median blend weight, either one value for all blocks
    or a (rows, cols) array.
    """
    weight_grid = np.broadcast_to(np.asarray(weights, dtype=np.float64), (layout.rows, layout.cols))
    colors = np.zeros((layout.rows, layout.cols, 4), dtype=np.uint8)
    for row, col, x0, y0, x1, y1 in layout.blocks():
        colors[row, col] = sample_block(
            buffer.pixels, x0, y0, x1, y1, weight_grid[row, col], keep_minority
        )
    return colors
