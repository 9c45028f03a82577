"""End-to-end tests for the edge-aware pixelation pipeline.

Runs the full edge map -> grid -> optimizer -> render flow on synthetic
images and checks the results and the QC output.
"""

from __future__ import annotations

import json

import cv2
import numpy as np
import pytest
from PIL import Image

from pixel_mosaic.buffer import PixelBuffer, adjust_contrast
from pixel_mosaic.config import MosaicConfig, RenderMode
from pixel_mosaic.curves import CurveCache
from pixel_mosaic.mosaic import MosaicPixelator, pixelate_blocks, pixelate_edge_aware
from pixel_mosaic.overlay import build_qc_panel, edge_map_to_image, render_grid_overlay, save_qc_image
from pixel_mosaic.palette import quantize_colors
from pixel_mosaic.sampling import grid_layout


# ---------------------------------------------------------------------------
# Synthetic image helpers
# ---------------------------------------------------------------------------


def _make_vertical_line(size: int = 60, x0: int = 24, width: int = 3) -> PixelBuffer:
    """Black image with a white vertical line ``width`` pixels wide."""
    pixels = np.zeros((size, size, 3), dtype=np.uint8)
    pixels[:, x0:x0 + width] = 255
    return PixelBuffer.from_array(pixels)


def _make_checkerboard(size: int = 32, block: int = 4) -> PixelBuffer:
    """Create an RGBA checkerboard."""
    pixels = np.zeros((size, size, 4), dtype=np.uint8)
    colors = [
        (32, 48, 112, 255),
        (240, 200, 96, 255),
        (20, 20, 24, 255),
        (220, 80, 92, 255),
    ]
    for y in range(size):
        for x in range(size):
            idx = ((x // block) + (y // block)) % len(colors)
            pixels[y, x] = colors[idx]
    return PixelBuffer(pixels)


def _make_disc(size: int = 48) -> PixelBuffer:
    """Orange disc on a blue background."""
    yy, xx = np.mgrid[:size, :size]
    inside = (xx - size / 2) ** 2 + (yy - size / 2) ** 2 < (size / 3) ** 2
    pixels = np.zeros((size, size, 3), dtype=np.uint8)
    pixels[:] = (40, 60, 160)
    pixels[inside] = (240, 150, 40)
    return PixelBuffer.from_array(pixels)


# ---------------------------------------------------------------------------
# Tests: edge-aware pipeline
# ---------------------------------------------------------------------------


class TestEdgeAwarePipeline:
    @pytest.mark.parametrize("x0", range(1, 57))
    def test_thin_line_survives_at_every_offset(self, x0):
        buffer = _make_vertical_line(x0=x0)
        result = pixelate_edge_aware(buffer, MosaicConfig(block_size=10, sharpness=1.0))
        out = result.image

        assert (out.width, out.height) == (60, 60)
        for _, _, bx0, by0, bx1, by1 in result.layout.blocks():
            block = out.pixels[by0:by1, bx0:bx1].reshape(-1, 4)
            assert np.all(block == block[0]), (bx0, by0)
            if bx0 < x0 + 3 and bx1 > x0:
                assert tuple(block[0]) != (0, 0, 0, 255), (bx0, by0)
            else:
                assert tuple(block[0]) == (0, 0, 0, 255), (bx0, by0)

    @pytest.mark.parametrize("x0", range(1, 57))
    def test_thin_line_survives_adaptive_layout(self, x0):
        buffer = _make_vertical_line(x0=x0)
        config = MosaicConfig(block_size=10, sharpness=1.0, mode=RenderMode.ADAPTIVE)
        result = pixelate_edge_aware(buffer, config)
        out = result.image

        on_line = {}
        for row, _, bx0, by0, bx1, by1 in result.layout.blocks():
            block = out.pixels[by0:by1, bx0:bx1].reshape(-1, 4)
            assert np.all(block == block[0]), (bx0, by0)
            if bx0 < x0 + 3 and bx1 > x0:
                on_line.setdefault(row, []).append(tuple(block[0]) != (0, 0, 0, 255))
            else:
                assert tuple(block[0]) == (0, 0, 0, 255), (bx0, by0)
        assert all(any(hits) for hits in on_line.values())

    def test_thin_line_blocks_are_uniform(self):
        out = pixelate_edge_aware(_make_vertical_line(), MosaicConfig(block_size=10, sharpness=1.0)).image
        for y in range(0, 60, 10):
            for x in range(0, 60, 10):
                block = out.pixels[y:y + 10, x:x + 10].reshape(-1, 4)
                assert np.all(block == block[0]), (x, y)
        assert tuple(out.pixels[30, 25]) != tuple(out.pixels[30, 5])
        assert tuple(out.pixels[30, 55]) == (0, 0, 0, 255)

    def test_optimizer_hugs_the_line(self):
        result = pixelate_edge_aware(_make_vertical_line(), MosaicConfig(block_size=10, sharpness=1.0))
        grid = result.grid
        assert grid.corner_at(3, 2).x > 22.0
        assert grid.corner_at(3, 3).x < 28.0
        assert grid.area_ratios()[3, 2] < 0.5
        assert result.initial_grid.max_displacement() == 0.0

    def test_deterministic(self):
        buffer = _make_disc()
        config = MosaicConfig(block_size=6, sharpness=0.7)
        first = pixelate_edge_aware(buffer, config)
        second = pixelate_edge_aware(buffer, config)
        assert first.image.pixels.tobytes() == second.image.pixels.tobytes()

    def test_output_covers_source(self):
        buffer = _make_disc(size=37)
        result = pixelate_edge_aware(buffer, MosaicConfig(block_size=8))
        assert result.image.shape == buffer.shape
        assert np.all(result.image.pixels[:, :, 3] == 255)

    def test_adaptive_mode_uses_grid_layout(self):
        buffer = _make_disc()
        result = pixelate_edge_aware(buffer, MosaicConfig(block_size=8, mode=RenderMode.ADAPTIVE))
        assert result.layout == grid_layout(result.grid)
        assert result.image.shape == buffer.shape
        for _, _, x0, y0, x1, y1 in result.layout.blocks():
            block = result.image.pixels[y0:y1, x0:x1].reshape(-1, 4)
            assert np.all(block == block[0])

    def test_naive_mode(self):
        buffer = _make_checkerboard()
        result = pixelate_edge_aware(buffer, MosaicConfig(block_size=8, mode=RenderMode.NAIVE))
        assert result.grid is None
        assert result.image.shape == buffer.shape
        assert result.metrics["edge_pixels"] == 0

    def test_color_limit(self):
        result = pixelate_edge_aware(_make_disc(), MosaicConfig(block_size=4, color_limit=3))
        assert result.image.count_colors() <= 3
        assert result.metrics["colors"] <= 3

    def test_invalid_config_raises(self):
        with pytest.raises(ValueError):
            pixelate_edge_aware(_make_disc(), MosaicConfig(sharpness=1.5))
        with pytest.raises(ValueError):
            pixelate_edge_aware(_make_disc(), MosaicConfig(block_size=0))

    def test_progress_hook(self):
        calls = []
        pixelate_edge_aware(_make_disc(), MosaicConfig(block_size=8), on_progress=calls.append)
        assert calls == [False]

        supplied = np.zeros((48, 48), dtype=np.float32)
        supplied[10:12, :] = 1.0
        calls.clear()
        result = pixelate_edge_aware(
            _make_disc(), MosaicConfig(block_size=8),
            backend=lambda b, s: supplied, on_progress=calls.append,
        )
        assert calls == [True]
        assert result.used_backend

    def test_failing_progress_hook_is_ignored(self):
        def hook(used_backend):
            raise RuntimeError("ui gone")

        result = pixelate_edge_aware(_make_disc(), MosaicConfig(block_size=8), on_progress=hook)
        assert result.image.shape == (48, 48)


class TestPixelator:
    def test_runs_on_array(self):
        image = np.array(_make_disc().pixels[:, :, :3])
        pixelator = MosaicPixelator(image=image, config=MosaicConfig(block_size=8))
        out = pixelator.run()
        assert out.shape == (48, 48, 4)
        assert pixelator.last_result is not None

    def test_runs_on_path(self, tmp_path):
        path = tmp_path / "disc.png"
        _make_disc().save(path)
        out = MosaicPixelator(image_path=str(path)).run()
        assert out.shape == (48, 48, 4)

    def test_requires_a_source(self):
        with pytest.raises(ValueError):
            MosaicPixelator()


class TestNaivePixelation:
    def test_blocks_are_flat(self):
        out = pixelate_blocks(_make_disc(), 8)
        assert out.shape == (48, 48)
        block = out.pixels[8:16, 8:16].reshape(-1, 4)
        assert np.all(block == block[0])

    def test_color_limit_and_contrast(self):
        out = pixelate_blocks(_make_disc(), 4, color_limit=2, contrast=1.5)
        assert out.count_colors() <= 2

    def test_contrast_is_applied_before_palette(self):
        source = _make_disc()
        out = pixelate_blocks(source, 4, color_limit=2, contrast=1.5)
        small = cv2.resize(source.pixels, (12, 12), interpolation=cv2.INTER_AREA)
        expected = quantize_colors(adjust_contrast(PixelBuffer(small), 1.5), 2)
        assert out.pixels[::4, ::4].tobytes() == expected.pixels.tobytes()


# ---------------------------------------------------------------------------
# Tests: configuration
# ---------------------------------------------------------------------------


class TestConfig:
    def test_effective_optimizer_options(self):
        options = MosaicConfig(block_size=10, sharpness=1.0).optimizer_options()
        assert options.step_size == pytest.approx(6.0)
        assert options.search_radius == 25
        assert options.iterations == 5

        options = MosaicConfig(block_size=2, sharpness=0.0).optimizer_options()
        assert options.step_size == 1.0
        assert options.search_radius == 9
        assert options.iterations == 2

    def test_damping_schedule(self):
        options = MosaicConfig(block_size=10, sharpness=1.0).optimizer_options()
        assert options.damping(0) == pytest.approx(0.9)
        assert options.damping(options.iterations - 1) == pytest.approx(0.8)

    def test_round_trip_through_json(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"block_size": 12, "mode": "adaptive", "note": "keep"}))
        config = MosaicConfig.from_json(path)
        assert config.block_size == 12
        assert config.mode == RenderMode.ADAPTIVE
        assert config.extra == {"note": "keep"}
        assert MosaicConfig.from_dict(config.to_dict()).to_dict() == config.to_dict()

    def test_unknown_mode_rejected(self):
        with pytest.raises(ValueError):
            MosaicConfig.from_dict({"mode": "hexagons"})


# ---------------------------------------------------------------------------
# Tests: QC visual output
# ---------------------------------------------------------------------------


class TestQCVisual:
    def test_grid_overlay(self):
        buffer = _make_disc()
        result = pixelate_edge_aware(buffer, MosaicConfig(block_size=8))
        overlay = render_grid_overlay(buffer, result.grid)
        assert overlay.shape == (48, 48, 3)
        assert tuple(overlay[0, 0]) == (0, 255, 0)

    def test_curved_overlay_fills_cache(self):
        buffer = _make_disc()
        result = pixelate_edge_aware(buffer, MosaicConfig(block_size=8))
        cache = CurveCache()
        render_grid_overlay(buffer, result.grid, curved=True, cache=cache)
        assert len(cache) == len(result.grid.cells)

    def test_qc_panel_draws_the_run_curves(self):
        buffer = _make_disc()
        config = MosaicConfig(block_size=8, use_curved_edges=True, curve_degree=3, curve_smoothness=0.9)
        result = pixelate_edge_aware(buffer, config)
        cache = CurveCache()
        build_qc_panel(
            buffer, result.image, result.grid, result.metrics, "disc.png",
            curved=True, degree=3, smoothness=0.9, cache=cache,
        )
        assert (0, 3, 0.9) in cache
        assert (0, 2, 0.5) not in cache
        assert len(cache) == len(result.grid.cells)

    def test_edge_map_image(self):
        edge_map = np.zeros((5, 5), dtype=np.float32)
        edge_map[2, 2] = 1.0
        image = edge_map_to_image(edge_map)
        assert image.shape == (5, 5, 3)
        assert tuple(image[2, 2]) == (255, 255, 255)

    def test_save_qc_panel(self, tmp_path):
        buffer = _make_disc()
        result = pixelate_edge_aware(buffer, MosaicConfig(block_size=8))
        panel = build_qc_panel(buffer, result.image, result.grid, result.metrics, "disc.png")
        assert panel.shape[1] == 48 * 3 + 6
        path = save_qc_image(panel, tmp_path / "qc.png")
        assert Image.open(path).size == (panel.shape[1], panel.shape[0])
