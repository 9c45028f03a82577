"""Visual QC output for edge-aware mosaics.

Generates inspection-friendly images:
  - Source image with the (optionally curved) adaptive grid drawn on top
  - Edge map as a greyscale image
  - Side-by-side comparison: original | grid overlay | mosaic, with metrics
"""

import logging
from pathlib import Path
from typing import Optional, Tuple

import cv2
import numpy as np
from PIL import Image

from .buffer import PixelBuffer
from .curves import CurveCache
from .grid import AdaptiveGrid

logger = logging.getLogger(__name__)

LATTICE_COLOR = (255, 0, 0)
OPTIMIZED_COLOR = (0, 255, 0)
BACKGROUND = 220.0  # light grey behind transparent pixels


def to_rgb(buffer: PixelBuffer) -> np.ndarray:
    """Composite RGBA pixels over a light grey background."""
    alpha = buffer.pixels[:, :, 3:4].astype(np.float32) / 255.0
    rgb = buffer.pixels[:, :, :3].astype(np.float32)
    return (rgb * alpha + BACKGROUND * (1 - alpha)).astype(np.uint8)


def _lattice_polygon(grid: AdaptiveGrid, cell_index: int) -> np.ndarray:
    return grid.cell_corner_points(cell_index, original=True)


def render_grid_overlay(
    buffer: PixelBuffer,
    grid: AdaptiveGrid,
    color: Tuple[int, int, int] = OPTIMIZED_COLOR,
    curved: bool = False,
    degree: int = 2,
    smoothness: float = 0.5,
    cache: Optional[CurveCache] = None,
    show_lattice: bool = False,
) -> np.ndarray:
    """Draw every cell outline of ``grid`` over the source image.

    Args:
        buffer: source image.
        grid: grid whose current corner positions are drawn.
        color: RGB line colour.
        curved: draw the curved cell boundaries instead of straight edges.
        degree: curve degree (2 or 3) when ``curved``.
        smoothness: curve smoothness when ``curved``.
        cache: outline cache for this pass; a fresh one is used when omitted.
        show_lattice: also draw the untouched lattice in red underneath.

    Returns:
        RGB numpy array the size of the source.
    """
    overlay = to_rgb(buffer).copy()
    if curved and cache is None:
        cache = CurveCache()

    if show_lattice:
        lattice = [
            np.round(_lattice_polygon(grid, i)).astype(np.int32).reshape(-1, 1, 2)
            for i in range(len(grid.cells))
        ]
        cv2.polylines(overlay, lattice, True, LATTICE_COLOR, 1)

    polygons = []
    for i in range(len(grid.cells)):
        if curved:
            points = cache.outline(grid, i, degree, smoothness)
        else:
            points = grid.cell_corner_points(i)
        polygons.append(np.round(points).astype(np.int32).reshape(-1, 1, 2))
    cv2.polylines(overlay, polygons, True, color, 1)
    return overlay


def edge_map_to_image(edge_map: np.ndarray) -> np.ndarray:
    """Edge strengths as an RGB image (white = strong edge)."""
    grey = np.clip(np.asarray(edge_map, dtype=np.float32) * 255.0, 0, 255).astype(np.uint8)
    return cv2.cvtColor(grey, cv2.COLOR_GRAY2RGB)


def build_qc_panel(
    source: PixelBuffer,
    mosaic: PixelBuffer,
    grid: Optional[AdaptiveGrid] = None,
    metrics: Optional[dict] = None,
    source_name: str = "",
    curved: bool = False,
    degree: int = 2,
    smoothness: float = 0.5,
    cache: Optional[CurveCache] = None,
) -> np.ndarray:
    """Create a QC panel: original | grid overlay | mosaic, plus a metrics bar.

    ``degree`` and ``smoothness`` should match the run so the drawn curves
    are the ones the optimizer scored.
    """
    original = to_rgb(source)
    if grid is not None:
        middle = render_grid_overlay(
            source, grid, curved=curved, degree=degree, smoothness=smoothness,
            cache=cache, show_lattice=True,
        )
    else:
        middle = original.copy()
    result = to_rgb(mosaic)

    sep = np.full((source.height, 3, 3), 128, dtype=np.uint8)
    composite = np.hstack([original, sep, middle, sep, result])

    if not metrics:
        return composite

    bar = np.full((40, composite.shape[1], 3), 30, dtype=np.uint8)
    line = (
        f"{source_name}  mode={metrics.get('mode', '?')}  "
        f"edges={metrics.get('edge_pixels', 0)}  "
        f"shift={metrics.get('max_corner_shift', 0.0):.2f}  "
        f"colors={metrics.get('colors', 0)}"
    )
    cv2.putText(bar, line, (6, 24), cv2.FONT_HERSHEY_SIMPLEX, 0.4, (220, 220, 220), 1, cv2.LINE_AA)
    return np.vstack([composite, bar])


def save_qc_image(panel: np.ndarray, output_path: Path) -> Path:
    Image.fromarray(panel).save(output_path)
    logger.info("QC image saved: %s", output_path)
    return output_path
