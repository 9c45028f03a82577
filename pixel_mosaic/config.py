"""Mosaic configuration: tuning constants, option records, render modes."""

import json
import math
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional, Tuple


# ---------------------------------------------------------------------------
# Edge detection
# ---------------------------------------------------------------------------
LUMA_WEIGHTS: Tuple[float, float, float] = (0.299, 0.587, 0.114)

# sharpness 0.0 discards the weakest 10% of edges, 1.0 discards 60%
THRESHOLD_BASE = 0.1
THRESHOLD_RANGE = 0.5

# low hysteresis percentile as a fraction of the high one
HYSTERESIS_LOW_RATIO = 0.5


# ---------------------------------------------------------------------------
# Grid optimization
# ---------------------------------------------------------------------------
# Corners stay within this fraction of the lattice spacing of their origin.
# Below 0.5 the four corner boxes of any cell are disjoint, so no cell can
# fold over or collapse.
MAX_CORNER_SHIFT = 0.45

DAMPING_BASE = 0.3
DAMPING_SHARPNESS_GAIN = 0.5
DAMPING_RANGE = 0.2

ALIGNMENT_HIT_WEIGHT = 0.4
ALIGNMENT_RUN_WEIGHT = 0.4
ALIGNMENT_CORNER_BONUS = 0.2
ALIGNMENT_SAMPLES_PER_PX = 1.5

# curve control points may leave the chord by at most this fraction of it
MAX_CURVE_DEVIATION = 0.25


# ---------------------------------------------------------------------------
# Sampling / quantization
# ---------------------------------------------------------------------------
BLOCK_SAMPLE_BUDGET = 36
# samples further than this from the block's luma median count as a minority feature
MINORITY_LUMA_GAP = 24.0
PALETTE_SAMPLE_DIVISOR = 100


class RenderMode(str, Enum):
    BLOCKS = "blocks"        # uniform blocks, edge-gated blend
    ADAPTIVE = "adaptive"    # blocks snapped to the optimized grid
    NAIVE = "naive"          # plain downsample/upsample


class ThresholdMode(str, Enum):
    PERCENTILE = "percentile"
    HYSTERESIS = "hysteresis"


def _check_unit(name: str, value: float) -> None:
    if not math.isfinite(value) or value < 0.0 or value > 1.0:
        raise ValueError(f"{name} must be within [0, 1], got {value}")


@dataclass
class EdgeOptions:
    """How the edge map is thresholded."""
    sharpness: float = 0.8
    mode: ThresholdMode = ThresholdMode.PERCENTILE
    binarize: bool = True
    apply_nms: bool = True
    # explicit percentiles override the sharpness mapping
    percentile: Optional[float] = None
    high_percentile: Optional[float] = None
    low_percentile: Optional[float] = None

    def threshold_percentile(self) -> float:
        if self.percentile is not None:
            return float(self.percentile)
        return THRESHOLD_BASE + self.sharpness * THRESHOLD_RANGE

    def hysteresis_percentiles(self) -> Tuple[float, float]:
        high = self.high_percentile
        if high is None:
            high = self.threshold_percentile()
        low = self.low_percentile
        if low is None:
            low = high * HYSTERESIS_LOW_RATIO
        return float(high), float(min(low, high))


@dataclass
class OptimizerOptions:
    """Local-search parameters for the corner optimizer."""
    search_radius: int = 9
    iterations: int = 2
    step_size: float = 1.0
    sharpness: float = 0.8
    use_curved_edges: bool = False
    curve_degree: int = 2
    curve_smoothness: float = 0.5
    density_radius: int = 1
    tolerance: float = 0.0

    def is_valid(self) -> bool:
        numbers = (self.step_size, self.sharpness, self.curve_smoothness, self.tolerance)
        if not all(math.isfinite(v) for v in numbers):
            return False
        return (
            self.search_radius >= 1
            and self.iterations >= 0
            and self.step_size > 0
            and self.curve_degree in (2, 3)
        )

    def damping(self, iteration: int) -> float:
        s = self.sharpness
        base = DAMPING_BASE + s * DAMPING_SHARPNESS_GAIN
        spread = DAMPING_RANGE * (1.0 - s * 0.5)
        progress = iteration / max(1, self.iterations - 1)
        return base + spread * (1.0 - progress)


@dataclass
class MosaicConfig:
    """Top-level configuration of one edge-aware pixelation run."""
    block_size: int = 8
    sharpness: float = 0.8
    mode: RenderMode = RenderMode.BLOCKS

    # Edge detection
    threshold_mode: ThresholdMode = ThresholdMode.PERCENTILE
    binarize_edges: bool = True

    # Optimization
    search_radius: int = 9
    iterations: int = 2
    use_curved_edges: bool = False
    curve_degree: int = 2
    curve_smoothness: float = 0.5
    tolerance: float = 0.0

    # Post-processing
    contrast: float = 1.0
    color_limit: Optional[int] = None

    extra: dict = field(default_factory=dict)

    def validate(self) -> None:
        if self.block_size < 1:
            raise ValueError(f"block_size must be >= 1, got {self.block_size}")
        _check_unit("sharpness", self.sharpness)
        _check_unit("curve_smoothness", self.curve_smoothness)
        if self.curve_degree not in (2, 3):
            raise ValueError(f"curve_degree must be 2 or 3, got {self.curve_degree}")
        if self.search_radius < 1 or self.iterations < 0:
            raise ValueError("search_radius must be >= 1 and iterations >= 0")
        if not math.isfinite(self.tolerance) or self.tolerance < 0:
            raise ValueError(f"tolerance must be a non-negative number, got {self.tolerance}")
        if self.color_limit is not None and self.color_limit < 1:
            raise ValueError(f"color_limit must be >= 1, got {self.color_limit}")
        if not math.isfinite(self.contrast) or self.contrast < 0:
            raise ValueError(f"contrast must be a non-negative number, got {self.contrast}")

    def edge_options(self) -> EdgeOptions:
        return EdgeOptions(
            sharpness=self.sharpness,
            mode=self.threshold_mode,
            binarize=self.binarize_edges,
        )

    def optimizer_options(self) -> OptimizerOptions:
        """Scale the search to the block size; sharper settings search wider."""
        s = self.sharpness
        sharpness_scale = 0.5 + s * 1.5
        return OptimizerOptions(
            search_radius=max(self.search_radius, int(math.floor(9 + s * 16))),
            iterations=max(self.iterations, int(math.floor(2 + s * 3))),
            step_size=max(1.0, self.block_size * 0.3 * sharpness_scale),
            sharpness=s,
            use_curved_edges=self.use_curved_edges,
            curve_degree=self.curve_degree,
            curve_smoothness=self.curve_smoothness,
            tolerance=self.tolerance,
        )

    def to_dict(self) -> dict:
        data = asdict(self)
        data["mode"] = RenderMode(self.mode).value
        data["threshold_mode"] = ThresholdMode(self.threshold_mode).value
        return data

    @classmethod
    def from_dict(cls, d: dict) -> "MosaicConfig":
        known = {f for f in cls.__dataclass_fields__ if f != "extra"}
        kwargs = {k: v for k, v in d.items() if k in known}
        if "mode" in kwargs:
            kwargs["mode"] = RenderMode(kwargs["mode"])
        if "threshold_mode" in kwargs:
            kwargs["threshold_mode"] = ThresholdMode(kwargs["threshold_mode"])
        extra = dict(d.get("extra") or {})
        extra.update({k: v for k, v in d.items() if k not in known and k != "extra"})
        cfg = cls(**kwargs, extra=extra)
        cfg.validate()
        return cfg

    @classmethod
    def from_json(cls, path: Path) -> "MosaicConfig":
        with Path(path).open() as handle:
            return cls.from_dict(json.load(handle))
