"""
Immutable RGBA pixel buffers and colors shared by every pipeline stage.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import NamedTuple, Union

import numpy as np
from PIL import Image

from .config import LUMA_WEIGHTS


class Color(NamedTuple):
    r: int
    g: int
    b: int
    a: int = 255


@dataclass(frozen=True, eq=False)
class PixelBuffer:
    """Row-major (height, width, 4) uint8 RGBA pixels.

    The wrapped array is flagged read-only; stages build new buffers instead
    of writing into an existing one.
    """

    pixels: np.ndarray

    def __post_init__(self):
        if self.pixels.ndim != 3 or self.pixels.shape[2] != 4:
            raise ValueError(f"Expected (H, W, 4) pixels, got shape {self.pixels.shape}")
        if self.pixels.dtype != np.uint8:
            raise ValueError(f"Expected uint8 pixels, got {self.pixels.dtype}")
        self.pixels.flags.writeable = False

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def shape(self):
        return self.height, self.width

    @classmethod
    def from_array(cls, array: np.ndarray) -> "PixelBuffer":
        """Copy a grey, RGB or RGBA array into a new buffer."""
        arr = np.asarray(array)
        if arr.dtype != np.uint8:
            arr = np.clip(np.rint(arr.astype(np.float64)), 0, 255).astype(np.uint8)
        if arr.ndim == 2:
            arr = np.repeat(arr[:, :, None], 3, axis=2)
        if arr.ndim != 3 or arr.shape[2] not in (3, 4):
            raise ValueError(f"Unsupported pixel array shape {arr.shape}")
        if arr.shape[2] == 3:
            alpha = np.full(arr.shape[:2] + (1,), 255, dtype=np.uint8)
            arr = np.concatenate([arr, alpha], axis=2)
        return cls(np.ascontiguousarray(arr).copy())

    @classmethod
    def from_image(cls, image: Image.Image) -> "PixelBuffer":
        return cls(np.array(image.convert("RGBA"), dtype=np.uint8))

    @classmethod
    def load(cls, path: Union[str, Path]) -> "PixelBuffer":
        with Image.open(path) as img:
            return cls.from_image(img)

    def to_image(self) -> Image.Image:
        return Image.fromarray(self.pixels.copy())

    def save(self, path: Union[str, Path]) -> None:
        image = self.to_image()
        if Path(path).suffix.lower() in {".jpg", ".jpeg", ".bmp"}:
            image = image.convert("RGB")
        image.save(path)

    def luminance(self) -> np.ndarray:
        """Per-pixel luma as a float32 (H, W) array."""
        rgb = self.pixels[:, :, :3].astype(np.float32)
        wr, wg, wb = LUMA_WEIGHTS
        return rgb[:, :, 0] * wr + rgb[:, :, 1] * wg + rgb[:, :, 2] * wb

    def count_colors(self, include_alpha: bool = False) -> int:
        channels = 4 if include_alpha else 3
        flat = self.pixels[:, :, :channels].reshape(-1, channels)
        return int(len(np.unique(flat, axis=0)))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PixelBuffer):
            return NotImplemented
        return self.pixels.shape == other.pixels.shape and bool(np.array_equal(self.pixels, other.pixels))

    def __hash__(self) -> int:
        return hash((self.pixels.shape, self.pixels.tobytes()))


def adjust_contrast(buffer: PixelBuffer, contrast: float) -> PixelBuffer:
    """Linear contrast around mid-grey: ``(v - 128) * contrast + 128``; alpha kept."""
    if contrast == 1.0:
        return buffer
    rgb = buffer.pixels[:, :, :3].astype(np.float32)
    adjusted = np.clip(np.rint((rgb - 128.0) * contrast + 128.0), 0, 255).astype(np.uint8)
    out = buffer.pixels.copy()
    out[:, :, :3] = adjusted
    return PixelBuffer(out)
