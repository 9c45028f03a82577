"""
Batch command line interface for edge-aware pixelation.

Usage examples
--------------

Pixelate every image in ``input/`` and drop the results in ``output/``::

    python -m pixel_mosaic.cli input --output-dir output

Pixelate one file with 12px blocks snapped to the optimized grid and save a
QC panel next to it::

    python -m pixel_mosaic.cli photo.png --block-size 12 --mode adaptive --qc
"""

from __future__ import annotations

import argparse
import csv
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from .buffer import PixelBuffer
from .config import MosaicConfig, RenderMode, ThresholdMode
from .mosaic import pixelate_edge_aware
from .overlay import build_qc_panel, save_qc_image

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = {".png", ".jpg", ".jpeg", ".bmp", ".tif", ".tiff", ".webp"}

METRIC_FIELDS = [
    "image",
    "width",
    "height",
    "block_size",
    "mode",
    "sharpness",
    "edge_pixels",
    "mean_corner_shift",
    "max_corner_shift",
    "colors",
    "used_backend",
    "output_path",
]


@dataclass
class BatchConfig:
    """Runtime configuration derived from CLI arguments."""

    inputs: Sequence[Path]
    output_dir: Path
    mosaic: MosaicConfig
    save_qc: bool
    metrics_path: Optional[Path]


def _setup_logging(debug: bool = False):
    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _gather_images(sources: Sequence[Path], recursive: bool) -> List[Path]:
    """Collect candidate image files from the provided locations."""
    seen: set[Path] = set()
    images: List[Path] = []

    for source in sources:
        if source.is_dir():
            iterator: Iterable[Path]
            iterator = source.rglob("*") if recursive else source.iterdir()
            for candidate in iterator:
                if not candidate.is_file():
                    continue
                if candidate.suffix.lower() not in IMAGE_EXTENSIONS:
                    continue
                # skip our own outputs when writing into the input folder
                if candidate.stem.endswith(("_mosaic", "_qc")):
                    continue
                resolved = candidate.resolve()
                if resolved in seen:
                    continue
                seen.add(resolved)
                images.append(resolved)
        elif source.is_file():
            if source.suffix.lower() not in IMAGE_EXTENSIONS:
                logger.warning("Skipping unsupported file: %s", source)
                continue
            resolved = source.resolve()
            if resolved not in seen:
                seen.add(resolved)
                images.append(resolved)
        else:
            logger.warning("Input path not found: %s", source)

    images.sort()
    return images


def _process_single_image(image_path: Path, cfg: BatchConfig) -> Optional[dict]:
    """Run the pipeline for one image and persist artefacts."""
    try:
        source = PixelBuffer.load(image_path)
        result = pixelate_edge_aware(source, cfg.mosaic)
    except Exception as exc:  # pylint: disable=broad-except
        logger.error("Failed to process %s: %s", image_path.name, exc)
        return None

    output_path = cfg.output_dir / f"{image_path.stem}_mosaic{image_path.suffix}"
    result.image.save(output_path)

    if cfg.save_qc:
        panel = build_qc_panel(
            source,
            result.image,
            grid=result.grid,
            metrics=result.metrics,
            source_name=image_path.name,
            curved=cfg.mosaic.use_curved_edges,
            degree=cfg.mosaic.curve_degree,
            smoothness=cfg.mosaic.curve_smoothness,
        )
        save_qc_image(panel, cfg.output_dir / f"{image_path.stem}_qc.png")

    metrics = result.metrics
    logger.info(
        "[OK] %s: %d edge px, max shift %.2f, %d colors",
        image_path.name, metrics["edge_pixels"], metrics["max_corner_shift"], metrics["colors"],
    )

    return {
        "image": image_path.name,
        "width": source.width,
        "height": source.height,
        "block_size": cfg.mosaic.block_size,
        "mode": metrics["mode"],
        "sharpness": cfg.mosaic.sharpness,
        "edge_pixels": metrics["edge_pixels"],
        "mean_corner_shift": round(metrics["mean_corner_shift"], 4),
        "max_corner_shift": round(metrics["max_corner_shift"], 4),
        "colors": metrics["colors"],
        "used_backend": "yes" if metrics["used_backend"] else "no",
        "output_path": str(output_path),
    }


def _write_metrics_csv(metrics: List[dict], path: Path) -> None:
    with path.open("w", newline="") as csvfile:
        writer = csv.DictWriter(csvfile, fieldnames=METRIC_FIELDS)
        writer.writeheader()
        writer.writerows(metrics)
    logger.info("Metrics written to %s", path)


def _build_mosaic_config(args: argparse.Namespace) -> MosaicConfig:
    """JSON config first, then any flag given on the command line."""
    data = MosaicConfig.from_json(args.config).to_dict() if args.config else {}
    overrides = {
        "block_size": args.block_size,
        "sharpness": args.sharpness,
        "mode": args.mode,
        "threshold_mode": args.threshold,
        "iterations": args.iterations,
        "search_radius": args.search_radius,
        "curve_degree": args.curve_degree,
        "curve_smoothness": args.curve_smoothness,
        "contrast": args.contrast,
        "color_limit": args.colors,
    }
    data.update({key: value for key, value in overrides.items() if value is not None})
    if args.curved:
        data["use_curved_edges"] = True
    return MosaicConfig.from_dict(data)


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Edge-aware adaptive pixelation.")
    parser.add_argument(
        "inputs",
        nargs="+",
        type=Path,
        help="Image files or directories to process.",
    )
    parser.add_argument(
        "-o",
        "--output-dir",
        type=Path,
        default=Path("output"),
        help="Directory for pixelated images (default: ./output).",
    )
    parser.add_argument("--config", type=Path, help="JSON file with MosaicConfig fields.")
    parser.add_argument("-b", "--block-size", type=int, help="Block size in pixels (default: 8).")
    parser.add_argument("-s", "--sharpness", type=float, help="Edge sharpness in [0, 1] (default: 0.8).")
    parser.add_argument(
        "--mode",
        choices=[m.value for m in RenderMode],
        help="blocks: edge-gated uniform blocks; adaptive: blocks snapped to the "
             "optimized grid; naive: plain downsample/upsample.",
    )
    parser.add_argument(
        "--threshold",
        choices=[m.value for m in ThresholdMode],
        help="Edge threshold strategy (default: percentile).",
    )
    parser.add_argument("--iterations", type=int, help="Minimum optimizer iterations.")
    parser.add_argument("--search-radius", type=int, help="Minimum candidate count per corner.")
    parser.add_argument("--curved", action="store_true", help="Score and draw curved cell edges.")
    parser.add_argument("--curve-degree", type=int, choices=[2, 3], help="Bezier degree for curved edges.")
    parser.add_argument("--curve-smoothness", type=float, help="Curve smoothness in [0, 1].")
    parser.add_argument("--contrast", type=float, help="Contrast multiplier (default: 1.0).")
    parser.add_argument("--colors", type=int, help="Reduce the output to this many colors.")
    parser.add_argument("--qc", action="store_true", help="Also write <stem>_qc.png panels.")
    parser.add_argument(
        "--recursive",
        action="store_true",
        help="When inputs include directories, walk them recursively.",
    )
    parser.add_argument(
        "--metrics-path",
        type=Path,
        help="Write a CSV summary to the provided path (defaults to <output>/metrics.csv).",
    )
    parser.add_argument(
        "--no-metrics",
        action="store_true",
        help="Do not emit the metrics CSV.",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable verbose debug logging.",
    )
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    _setup_logging(args.debug)

    try:
        mosaic_cfg = _build_mosaic_config(args)
    except (OSError, ValueError) as exc:
        logger.error("Invalid configuration: %s", exc)
        return 2

    images = _gather_images(args.inputs, recursive=args.recursive)
    if not images:
        logger.error("No matching images found.")
        return 1

    output_dir = args.output_dir.resolve()
    output_dir.mkdir(parents=True, exist_ok=True)

    metrics_path: Optional[Path]
    if args.no_metrics:
        metrics_path = None
    else:
        metrics_path = args.metrics_path.resolve() if args.metrics_path else output_dir / "metrics.csv"

    cfg = BatchConfig(
        inputs=images,
        output_dir=output_dir,
        mosaic=mosaic_cfg,
        save_qc=args.qc,
        metrics_path=metrics_path,
    )

    logger.info("Found %d image(s) to process -> %s", len(images), output_dir)

    records: List[dict] = []
    for image_path in images:
        record = _process_single_image(image_path, cfg)
        if record is not None:
            records.append(record)

    if records and cfg.metrics_path:
        _write_metrics_csv(records, cfg.metrics_path)
    return 0 if records else 1


if __name__ == "__main__":
    raise SystemExit(main())
