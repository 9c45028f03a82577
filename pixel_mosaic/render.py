"""
Mosaic rendering: paint each layout block with its sampled color.
"""

import logging
from typing import Optional

import numpy as np

from .buffer import PixelBuffer
from .grid import AdaptiveGrid
from .sampling import BlockLayout, sample_block_colors, uniform_layout

logger = logging.getLogger(__name__)


def render_blocks(layout: BlockLayout, colors: np.ndarray) -> PixelBuffer:
    """Fill every block of ``layout`` with ``colors[row, col]``."""
    colors = np.asarray(colors, dtype=np.uint8)
    if colors.shape != (layout.rows, layout.cols, 4):
        raise ValueError(
            f"Expected {layout.rows}x{layout.cols} block colors, got shape {colors.shape}"
        )
    out = np.zeros((layout.height, layout.width, 4), dtype=np.uint8)
    for row, col, x0, y0, x1, y1 in layout.blocks():
        out[y0:y1, x0:x1] = colors[row, col]
    return PixelBuffer(out)


def render_mosaic(buffer: PixelBuffer, layout: BlockLayout, sharpness: float) -> PixelBuffer:
    """Sample and paint ``layout`` with blend weight ``sharpness`` for every block.

    The weight is capped per block so a minority feature keeps a trace.
    """
    if (layout.width, layout.height) != (buffer.width, buffer.height):
        logger.warning(
            "Layout %dx%d does not match image %dx%d; skipping render",
            layout.width, layout.height, buffer.width, buffer.height,
        )
        return buffer
    return render_blocks(layout, sample_block_colors(buffer, layout, sharpness, keep_minority=True))


def grid_crispness(grid: AdaptiveGrid) -> np.ndarray:
    """Per-cell crispness in [0, 1]: optimized over lattice cell area."""
    return np.clip(grid.area_ratios(), 0.0, 1.0)


def edge_gated_weights(
    edge_map: np.ndarray,
    layout: BlockLayout,
    sharpness: float,
    grid: Optional[AdaptiveGrid] = None,
) -> np.ndarray:
    """Median blend weight per block.

    Blocks without edge pixels use the pure average. Blocks with edges use
    ``sharpness * strongest edge * crispness``, where crispness shrinks as the
    optimizer contracts the matching grid cell around a thin feature.
    """
    crispness = np.ones((layout.rows, layout.cols), dtype=np.float64)
    if grid is not None:
        if (grid.rows, grid.cols) == (layout.rows, layout.cols):
            crispness = grid_crispness(grid)
        else:
            logger.warning(
                "Grid %dx%d does not match layout %dx%d; ignoring grid",
                grid.rows, grid.cols, layout.rows, layout.cols,
            )

    weights = np.zeros((layout.rows, layout.cols), dtype=np.float64)
    for row, col, x0, y0, x1, y1 in layout.blocks():
        peak = float(edge_map[y0:y1, x0:x1].max())
        if peak > 0:
            weights[row, col] = sharpness * peak * crispness[row, col]
    return weights


def render_edge_gated(
    buffer: PixelBuffer,
    edge_map: np.ndarray,
    block_size: int,
    sharpness: float,
    grid: Optional[AdaptiveGrid] = None,
) -> PixelBuffer:
    """Uniform blocks whose median blend is gated by the edge map.

    Each block weight is further capped at ``1 - minority_share`` of its
    samples: a thin line that loses the median vote still tints its block.
    """
    edge_map = np.asarray(edge_map, dtype=np.float32)
    layout = uniform_layout(buffer.width, buffer.height, block_size)
    if edge_map.size != buffer.width * buffer.height:
        logger.warning(
            "Edge map of %d values does not match %dx%d image; averaging every block",
            edge_map.size, buffer.width, buffer.height,
        )
        weights = np.zeros((layout.rows, layout.cols))
    else:
        edge_map = edge_map.reshape(buffer.height, buffer.width)
        weights = edge_gated_weights(edge_map, layout, sharpness, grid)
    return render_blocks(layout, sample_block_colors(buffer, layout, weights, keep_minority=True))
