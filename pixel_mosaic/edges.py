"""
Edge map construction.

The edge map is a float32 ``(height, width)`` array in ``[0, 1]`` built in
five steps:

1. Luma conversion of the RGBA buffer.
2. 3x3 Sobel gradients (the one-pixel border ring stays at zero).
3. Magnitude and edge orientation (gradient direction rotated by 90 degrees).
4. Normalisation by the maximum magnitude.
5. Non-maximum suppression along the edge orientation, then a percentile
   threshold (simple or hysteresis) whose cutoff follows the distribution of
   the surviving magnitudes, so one ``sharpness`` value behaves alike on low-
   and high-contrast images.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

import cv2
import numpy as np
from scipy import ndimage

from .buffer import PixelBuffer
from .config import EdgeOptions, ThresholdMode

logger = logging.getLogger(__name__)

# An alternate (e.g. GPU) implementation of build_edge_map. Returns None when
# it is unavailable.
EdgeBackend = Callable[[PixelBuffer, float], Optional[np.ndarray]]


@dataclass
class EdgeStages:
    """Intermediate maps of one edge detection run, for QC output."""
    luminance: np.ndarray
    magnitude: np.ndarray
    direction: np.ndarray
    suppressed: np.ndarray
    edge_map: np.ndarray


@dataclass
class EdgeMapResult:
    edge_map: np.ndarray
    used_backend: bool


# ------------------------- gradient stage ---------------------------


def compute_gradients(luminance: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Sobel x/y gradients with the border ring zeroed."""
    lum = np.asarray(luminance, dtype=np.float32)
    gx = np.zeros_like(lum)
    gy = np.zeros_like(lum)
    h, w = lum.shape
    if h < 3 or w < 3:
        return gx, gy
    sx = cv2.Sobel(lum, cv2.CV_32F, 1, 0, ksize=3)
    sy = cv2.Sobel(lum, cv2.CV_32F, 0, 1, ksize=3)
    gx[1:-1, 1:-1] = sx[1:-1, 1:-1]
    gy[1:-1, 1:-1] = sy[1:-1, 1:-1]
    return gx, gy


def gradient_magnitude(gx: np.ndarray, gy: np.ndarray) -> np.ndarray:
    """Euclidean magnitude normalised to [0, 1] by its maximum."""
    magnitude = np.hypot(gx, gy).astype(np.float32)
    peak = float(magnitude.max()) if magnitude.size else 0.0
    if peak > 0:
        magnitude /= peak
    return magnitude


def edge_orientation(gx: np.ndarray, gy: np.ndarray) -> np.ndarray:
    # the edge runs perpendicular to the gradient
    return (np.arctan2(gy, gx) + np.pi / 2).astype(np.float32)


def edge_directions(buffer: PixelBuffer) -> np.ndarray:
    """Edge orientation in radians for every pixel (0 on the border ring)."""
    gx, gy = compute_gradients(buffer.luminance())
    directions = edge_orientation(gx, gy)
    directions[0, :] = 0
    directions[-1, :] = 0
    directions[:, 0] = 0
    directions[:, -1] = 0
    return directions


# ------------------------- thinning stage ---------------------------


def non_maximum_suppression(magnitude: np.ndarray, direction: np.ndarray) -> np.ndarray:
    """Keep a pixel only where it is >= both neighbours along its edge.

    Orientations are quantised to the 0/45/90/135 degree sectors.
    """
    mag = np.asarray(magnitude, dtype=np.float32)
    out = np.zeros_like(mag)
    h, w = mag.shape
    if h < 3 or w < 3:
        return out

    center = mag[1:-1, 1:-1]
    angle = np.degrees(np.mod(direction[1:-1, 1:-1].astype(np.float64), 2 * np.pi)) % 180.0

    horizontal = (angle < 22.5) | (angle >= 157.5)
    diagonal_up = (angle >= 22.5) & (angle < 67.5)
    vertical = (angle >= 67.5) & (angle < 112.5)

    first = np.select(
        [horizontal, diagonal_up, vertical],
        [mag[1:-1, :-2], mag[:-2, 2:], mag[:-2, 1:-1]],
        default=mag[:-2, :-2],
    )
    second = np.select(
        [horizontal, diagonal_up, vertical],
        [mag[1:-1, 2:], mag[2:, :-2], mag[2:, 1:-1]],
        default=mag[2:, 2:],
    )

    keep = (center > 0) & (center >= first) & (center >= second)
    out[1:-1, 1:-1] = np.where(keep, center, 0.0)
    return out


# ------------------------- threshold stage --------------------------


def percentile_cutoff(values: np.ndarray, percentile: float) -> float:
    """Value at ``ceil(n * percentile)`` of the sorted non-zero values."""
    nonzero = np.sort(values[values > 0], kind="stable")
    if nonzero.size == 0:
        return 0.0
    index = int(math.ceil(nonzero.size * percentile))
    index = min(nonzero.size - 1, max(0, index))
    return float(nonzero[index])


def apply_threshold(edge_map: np.ndarray, options: Optional[EdgeOptions] = None) -> np.ndarray:
    """Drop weak edges; survivors become 1.0 unless ``binarize`` is off."""
    options = options or EdgeOptions()
    values = np.asarray(edge_map, dtype=np.float32)
    positive = values > 0
    if not positive.any():
        return np.zeros_like(values)

    if options.mode == ThresholdMode.HYSTERESIS:
        high_p, low_p = options.hysteresis_percentiles()
        high = percentile_cutoff(values, high_p)
        low = percentile_cutoff(values, low_p)
        strong = positive & (values >= high)
        candidate = positive & (values >= low)
        labels, count = ndimage.label(candidate, structure=np.ones((3, 3), dtype=bool))
        if count == 0:
            return np.zeros_like(values)
        linked = np.unique(labels[strong])
        kept = np.isin(labels, linked[linked > 0])
    else:
        cutoff = percentile_cutoff(values, options.threshold_percentile())
        kept = positive & (values >= cutoff)

    if options.binarize:
        return kept.astype(np.float32)
    return np.where(kept, values, 0.0).astype(np.float32)


# ------------------------- public entry points ----------------------


def detect_edges(buffer: PixelBuffer, options: Optional[EdgeOptions] = None) -> EdgeStages:
    """Run the full CPU edge pipeline and keep every intermediate map."""
    options = options or EdgeOptions()
    luminance = buffer.luminance()
    gx, gy = compute_gradients(luminance)
    magnitude = gradient_magnitude(gx, gy)
    direction = edge_orientation(gx, gy)
    if options.apply_nms:
        suppressed = non_maximum_suppression(magnitude, direction)
    else:
        suppressed = magnitude.copy()
    edge_map = np.clip(apply_threshold(suppressed, options), 0.0, 1.0)
    return EdgeStages(
        luminance=luminance,
        magnitude=magnitude,
        direction=direction,
        suppressed=suppressed,
        edge_map=edge_map,
    )


def build_edge_map(
    buffer: PixelBuffer,
    sharpness: float = 0.8,
    options: Optional[EdgeOptions] = None,
) -> np.ndarray:
    """Edge-strength map of ``buffer``; higher sharpness keeps fewer edges."""
    if options is None:
        options = EdgeOptions(sharpness=sharpness)
    return detect_edges(buffer, options).edge_map


def _valid_backend_map(edge_map: Optional[np.ndarray], buffer: PixelBuffer) -> bool:
    if edge_map is None:
        return False
    arr = np.asarray(edge_map)
    if arr.size != buffer.width * buffer.height:
        logger.warning(
            "Edge backend returned %d values for a %dx%d image; using CPU path",
            arr.size, buffer.width, buffer.height,
        )
        return False
    if not np.all(np.isfinite(arr)):
        logger.warning("Edge backend returned non-finite values; using CPU path")
        return False
    if not np.any(arr > 0):
        logger.info("Edge backend found no edges; re-running on CPU to confirm")
        return False
    return True


def compute_edge_map(
    buffer: PixelBuffer,
    sharpness: float = 0.8,
    options: Optional[EdgeOptions] = None,
    backend: Optional[EdgeBackend] = None,
) -> EdgeMapResult:
    """Edge map from ``backend`` when it delivers a usable one, else from the CPU."""
    if backend is not None:
        try:
            candidate = backend(buffer, sharpness)
        except Exception as exc:  # pylint: disable=broad-except
            logger.debug("Edge backend failed: %s", exc)
            candidate = None
        if _valid_backend_map(candidate, buffer):
            arr = np.asarray(candidate, dtype=np.float32).reshape(buffer.height, buffer.width)
            return EdgeMapResult(np.clip(arr, 0.0, 1.0), True)
    return EdgeMapResult(build_edge_map(buffer, sharpness, options), False)


# ------------------------- lookups ----------------------------------


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def edge_strength(edge_map: np.ndarray, x: float, y: float) -> float:
    """Strength at the pixel containing (x, y); 0 outside the map."""
    h, w = edge_map.shape
    px, py = int(math.floor(x)), int(math.floor(y))
    if px < 0 or py < 0 or px >= w or py >= h:
        return 0.0
    return float(edge_map[py, px])


def edge_strength_at(
    edge_map: np.ndarray, x: float, y: float, interpolate: bool = False
) -> float:
    """Sub-pixel strength, clamped to the map. Nearest-neighbour by default."""
    h, w = edge_map.shape
    x = min(max(x, 0.0), w - 1.0)
    y = min(max(y, 0.0), h - 1.0)
    if not interpolate:
        return float(edge_map[_round_half_up(y), _round_half_up(x)])

    x1, y1 = int(math.floor(x)), int(math.floor(y))
    x2, y2 = min(w - 1, x1 + 1), min(h - 1, y1 + 1)
    fx, fy = x - x1, y - y1
    top = edge_map[y1, x1] * (1 - fx) + edge_map[y1, x2] * fx
    bottom = edge_map[y2, x1] * (1 - fx) + edge_map[y2, x2] * fx
    return float(top * (1 - fy) + bottom * fy)


def edge_density(edge_map: np.ndarray, x: float, y: float, radius: int = 1) -> float:
    """Fraction of edge-positive pixels in the square window around (x, y)."""
    h, w = edge_map.shape
    px, py = _round_half_up(x), _round_half_up(y)
    x0, x1 = max(0, px - radius), min(w, px + radius + 1)
    y0, y1 = max(0, py - radius), min(h, py + radius + 1)
    if x0 >= x1 or y0 >= y1:
        return 0.0
    window = edge_map[y0:y1, x0:x1]
    return float(np.count_nonzero(window > 0)) / window.size


def count_edge_pixels(edge_map: np.ndarray) -> int:
    return int(np.count_nonzero(np.asarray(edge_map) > 0))
