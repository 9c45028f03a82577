#!/usr/bin/env python3
"""
Example usage of the edge-aware pixelation pipeline.

This script demonstrates how to:
1. Build the edge map and inspect it
2. Pixelate with the optimized grid in each render mode
3. Save a QC panel showing the grid the optimizer settled on
"""

import logging
import sys
from pathlib import Path

from PIL import Image

from pixel_mosaic import MosaicConfig, PixelBuffer, RenderMode, pixelate_edge_aware
from pixel_mosaic.overlay import build_qc_panel, edge_map_to_image, save_qc_image


def demo(image_path: str, output_dir: str = "output") -> None:
    path = Path(image_path)
    if not path.exists():
        print(f"Error: Image file {image_path} not found")
        return

    out = Path(output_dir)
    out.mkdir(parents=True, exist_ok=True)
    source = PixelBuffer.load(path)
    print(f"Analyzing image: {path} ({source.width}x{source.height})")
    print("=" * 50)

    for mode in RenderMode:
        config = MosaicConfig(block_size=8, sharpness=0.8, mode=mode)
        result = pixelate_edge_aware(source, config)
        metrics = result.metrics
        print(
            f"{mode.value:>9}: edges={metrics['edge_pixels']:6d} "
            f"max shift={metrics['max_corner_shift']:5.2f} colors={metrics['colors']}"
        )
        result.image.save(out / f"{path.stem}_{mode.value}.png")

        if mode == RenderMode.BLOCKS:
            Image.fromarray(edge_map_to_image(result.edge_map)).save(out / f"{path.stem}_edges.png")
            panel = build_qc_panel(source, result.image, result.grid, metrics, path.name)
            save_qc_image(panel, out / f"{path.stem}_qc.png")

    print(f"\nResults written to {out}/")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    if len(sys.argv) < 2:
        print("Usage: python example_usage.py <image_path> [output_dir]")
        sys.exit(1)
    demo(*sys.argv[1:3])
