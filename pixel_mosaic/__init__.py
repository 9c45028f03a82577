"""Public interface for the edge-aware pixel mosaic toolkit."""

from __future__ import annotations

from .buffer import Color, PixelBuffer, adjust_contrast
from .config import EdgeOptions, MosaicConfig, OptimizerOptions, RenderMode, ThresholdMode
from .curves import CurveCache, CurveKind, EdgeCurve, edge_curve
from .edges import build_edge_map, compute_edge_map
from .grid import AdaptiveGrid, create_initial_grid
from .mosaic import MosaicPixelator, MosaicResult, pixelate_blocks, pixelate_edge_aware
from .optimizer import optimize_grid_corners
from .palette import quantize_colors
from .render import render_blocks, render_edge_gated
from .sampling import BlockLayout, grid_layout, uniform_layout

__all__ = [
    "AdaptiveGrid",
    "BlockLayout",
    "Color",
    "CurveCache",
    "CurveKind",
    "EdgeCurve",
    "EdgeOptions",
    "MosaicConfig",
    "MosaicPixelator",
    "MosaicResult",
    "OptimizerOptions",
    "PixelBuffer",
    "RenderMode",
    "ThresholdMode",
    "adjust_contrast",
    "build_edge_map",
    "compute_edge_map",
    "create_initial_grid",
    "edge_curve",
    "grid_layout",
    "optimize_grid_corners",
    "pixelate_blocks",
    "pixelate_edge_aware",
    "quantize_colors",
    "render_blocks",
    "render_edge_gated",
    "uniform_layout",
]
