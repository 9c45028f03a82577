"""
Edge-aware pixelation pipeline.

Steps of one run:
1. Edge map (alternate backend if it delivers, else the CPU builder)
2. Uniform lattice over the image
3. Corner optimization against the edge map
4. Block sampling and painting (edge-gated uniform blocks, or blocks snapped
   to the optimized grid)
5. Optional contrast and palette reduction
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional, Union

import cv2
import numpy as np

from .buffer import PixelBuffer, adjust_contrast
from .config import MosaicConfig, RenderMode
from .edges import EdgeBackend, compute_edge_map, count_edge_pixels
from .grid import AdaptiveGrid, create_initial_grid
from .optimizer import optimize_grid_corners
from .palette import quantize_colors
from .render import render_edge_gated, render_mosaic
from .sampling import BlockLayout, grid_layout, uniform_layout

logger = logging.getLogger(__name__)

ProgressHook = Callable[[bool], None]


@dataclass
class MosaicResult:
    """Output of one pipeline run plus everything needed for QC."""
    image: PixelBuffer
    edge_map: np.ndarray
    layout: BlockLayout
    initial_grid: Optional[AdaptiveGrid] = None
    grid: Optional[AdaptiveGrid] = None
    used_backend: bool = False
    metrics: dict = field(default_factory=dict)


def pixelate_blocks(
    buffer: PixelBuffer,
    block_size: int,
    color_limit: Optional[int] = None,
    contrast: float = 1.0,
) -> PixelBuffer:
    """Plain fixed-grid pixelation: area downsample, nearest-neighbour upsample."""
    if block_size < 1:
        raise ValueError(f"block_size must be >= 1, got {block_size}")
    small_w = max(1, buffer.width // block_size)
    small_h = max(1, buffer.height // block_size)
    small = cv2.resize(buffer.pixels, (small_w, small_h), interpolation=cv2.INTER_AREA)
    result = adjust_contrast(PixelBuffer(np.ascontiguousarray(small)), contrast)
    if color_limit is not None:
        result = quantize_colors(result, color_limit)
    large = cv2.resize(result.pixels, (buffer.width, buffer.height), interpolation=cv2.INTER_NEAREST)
    return PixelBuffer(np.ascontiguousarray(large))


def _notify(on_progress: Optional[ProgressHook], used_backend: bool) -> None:
    if on_progress is None:
        return
    try:
        on_progress(used_backend)
    except Exception as exc:  # pylint: disable=broad-except
        logger.warning("Progress hook failed: %s", exc)


def _finish(buffer: PixelBuffer, config: MosaicConfig) -> PixelBuffer:
    buffer = adjust_contrast(buffer, config.contrast)
    if config.color_limit is not None:
        buffer = quantize_colors(buffer, config.color_limit)
    return buffer


def pixelate_edge_aware(
    buffer: PixelBuffer,
    config: Optional[MosaicConfig] = None,
    backend: Optional[EdgeBackend] = None,
    on_progress: Optional[ProgressHook] = None,
) -> MosaicResult:
    """Pixelate ``buffer`` with blocks that respect its strong edges.

    Args:
        buffer: source image.
        config: run configuration; validated before use.
        backend: optional alternate edge map builder.
        on_progress: called once with whether the backend's edge map was used.

    Returns:
        MosaicResult with the output image, edge map, grids and metrics.
    """
    config = config or MosaicConfig()
    config.validate()
    mode = RenderMode(config.mode)

    if mode == RenderMode.NAIVE:
        image = pixelate_blocks(buffer, config.block_size, config.color_limit, config.contrast)
        _notify(on_progress, False)
        return MosaicResult(
            image=image,
            edge_map=np.zeros(buffer.shape, dtype=np.float32),
            layout=uniform_layout(buffer.width, buffer.height, config.block_size),
            metrics=_metrics(image, None, None, mode, False),
        )

    edges = compute_edge_map(buffer, config.sharpness, config.edge_options(), backend)
    _notify(on_progress, edges.used_backend)

    grid = create_initial_grid(buffer.width, buffer.height, config.block_size)
    initial = grid.copy()
    optimize_grid_corners(grid, edges.edge_map, config.optimizer_options())

    if mode == RenderMode.ADAPTIVE:
        layout = grid_layout(grid)
        image = render_mosaic(buffer, layout, config.sharpness)
    else:
        layout = uniform_layout(buffer.width, buffer.height, config.block_size)
        image = render_edge_gated(buffer, edges.edge_map, config.block_size, config.sharpness, grid)

    image = _finish(image, config)
    metrics = _metrics(image, edges.edge_map, grid, mode, edges.used_backend)
    logger.info(
        "Mosaic %dx%d: %d edge px, max corner shift %.2f, %d colors",
        buffer.width, buffer.height, metrics["edge_pixels"],
        metrics["max_corner_shift"], metrics["colors"],
    )
    return MosaicResult(
        image=image,
        edge_map=edges.edge_map,
        layout=layout,
        initial_grid=initial,
        grid=grid,
        used_backend=edges.used_backend,
        metrics=metrics,
    )


def _metrics(
    image: PixelBuffer,
    edge_map: Optional[np.ndarray],
    grid: Optional[AdaptiveGrid],
    mode: RenderMode,
    used_backend: bool,
) -> dict:
    shifts = grid.displacements() if grid is not None else np.zeros(1)
    return {
        "mode": mode.value,
        "edge_pixels": count_edge_pixels(edge_map) if edge_map is not None else 0,
        "mean_corner_shift": float(shifts.mean()),
        "max_corner_shift": float(shifts.max()),
        "colors": image.count_colors(),
        "used_backend": used_backend,
    }


class MosaicPixelator:
    """Runs the pipeline on an image path or an in-memory array."""

    def __init__(
        self,
        image_path: Optional[str] = None,
        image: Optional[Union[np.ndarray, PixelBuffer]] = None,
        config: Optional[MosaicConfig] = None,
    ):
        if image_path is None and image is None:
            raise ValueError("Either image_path or image must be provided.")
        self.image_path = image_path
        if isinstance(image, PixelBuffer):
            self.buffer: Optional[PixelBuffer] = image
        else:
            self.buffer = PixelBuffer.from_array(image) if image is not None else None
        self.config = config or MosaicConfig()
        self.backend: Optional[EdgeBackend] = None
        self.progress_callback: Optional[ProgressHook] = None
        self.last_result: Optional[MosaicResult] = None

    def _ensure_image_loaded(self) -> None:
        if self.buffer is not None:
            return
        self.buffer = PixelBuffer.load(self.image_path)

    def run(self) -> np.ndarray:
        """Pixelate the source; returns the (H, W, 4) RGBA output array."""
        self._ensure_image_loaded()
        logger.info(
            "Processing %s [%s, block %d, sharpness %.2f]",
            self.image_path or "<in-memory image>",
            RenderMode(self.config.mode).value,
            self.config.block_size,
            self.config.sharpness,
        )
        self.last_result = pixelate_edge_aware(
            self.buffer, self.config, backend=self.backend, on_progress=self.progress_callback
        )
        return self.last_result.image.pixels
