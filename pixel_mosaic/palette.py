"""
Palette reduction: pick a small set of frequent, mutually distant colors and
remap every pixel to its nearest entry.
"""

import logging
import math

import numpy as np

from .buffer import PixelBuffer
from .config import PALETTE_SAMPLE_DIVISOR

logger = logging.getLogger(__name__)

_REMAP_CHUNK = 65536


def _candidate_colors(rgb: np.ndarray, width: int, height: int) -> np.ndarray:
    """Sampled distinct colors, most frequent first (ties by first appearance)."""
    step = max(1, int(math.floor(math.sqrt(width * height) / PALETTE_SAMPLE_DIVISOR)))
    samples = rgb[::step]
    colors, first_seen, counts = np.unique(samples, axis=0, return_index=True, return_counts=True)
    order = np.lexsort((first_seen, -counts))
    return colors[order].astype(np.float64)


def build_palette(candidates: np.ndarray, max_colors: int) -> np.ndarray:
    """Greedy max-min selection seeded with the first (most frequent) candidate."""
    chosen = [0]
    nearest = np.linalg.norm(candidates - candidates[0], axis=1)
    nearest[0] = -1.0
    while len(chosen) < min(max_colors, len(candidates)):
        pick = int(np.argmax(nearest))
        chosen.append(pick)
        nearest = np.minimum(nearest, np.linalg.norm(candidates - candidates[pick], axis=1))
        nearest[chosen] = -1.0
    return candidates[chosen]


def quantize_colors(buffer: PixelBuffer, max_colors: int) -> PixelBuffer:
    """Reduce ``buffer`` to at most ``max_colors`` distinct RGB colors.

    Alpha is left untouched. A buffer that already fits is returned as is.
    """
    if max_colors < 1:
        raise ValueError(f"max_colors must be >= 1, got {max_colors}")
    rgb = buffer.pixels[:, :, :3].reshape(-1, 3)
    distinct, inverse = np.unique(rgb, axis=0, return_inverse=True)
    if len(distinct) <= max_colors:
        return buffer

    palette = build_palette(_candidate_colors(rgb, buffer.width, buffer.height), max_colors)
    # remap each distinct color once, then scatter back to pixels
    mapped = np.empty_like(distinct)
    for start in range(0, len(distinct), _REMAP_CHUNK):
        chunk = distinct[start:start + _REMAP_CHUNK].astype(np.float64)
        dist = ((chunk[:, None, :] - palette[None, :, :]) ** 2).sum(axis=2)
        mapped[start:start + _REMAP_CHUNK] = palette[np.argmin(dist, axis=1)].astype(np.uint8)

    out = buffer.pixels.copy()
    out[:, :, :3] = mapped[np.asarray(inverse).reshape(-1)].reshape(buffer.height, buffer.width, 3)
    logger.debug("Quantized %d colors down to %d", len(distinct), len(palette))
    return PixelBuffer(out)
