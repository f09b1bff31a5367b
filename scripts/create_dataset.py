#!/usr/bin/env python3
"""Convert images and their pixel-label text files into a record store.

Usage::

    python scripts/create_dataset.py --image-dir data/JPEGImages/ \
        --label-dir data/SegLabels/ --list-file data/train.txt \
        --out data/train.db --shuffle --min-height 321 --min-width 321
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from loguru import logger

# Add project root to path so we can import seg_pipeline
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT / "src"))

from seg_pipeline.errors import StoreError  # noqa: E402
from seg_pipeline.io.dataset_builder import DatasetBuildConfig, build_dataset  # noqa: E402


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Convert a list of images and their pixel annotations "
        "into a record store"
    )
    parser.add_argument(
        "--image-dir",
        type=Path,
        required=True,
        help="Folder where the images reside",
    )
    parser.add_argument(
        "--label-dir",
        type=Path,
        required=True,
        help="Folder where the ground-truth label text files reside",
    )
    parser.add_argument(
        "--list-file",
        type=Path,
        required=True,
        help="Text file listing the image names (without extension)",
    )
    parser.add_argument(
        "--out",
        type=Path,
        required=True,
        help="Path of the output record store (must not exist)",
    )
    parser.add_argument(
        "--backend",
        type=str,
        default="sqlite",
        help="Store backend (default: sqlite)",
    )
    parser.add_argument(
        "--shuffle",
        action="store_true",
        help="Randomly shuffle the order of images",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Seed for --shuffle",
    )
    parser.add_argument(
        "--min-height",
        type=int,
        default=1,
        help="Minimal image height; smaller images are enlarged (default: 1)",
    )
    parser.add_argument(
        "--min-width",
        type=int,
        default=1,
        help="Minimal image width; smaller images are enlarged (default: 1)",
    )
    parser.add_argument(
        "--image-name-as-key",
        action="store_true",
        help="Use the image name as key instead of an 8-digit index",
    )
    parser.add_argument(
        "--num-classes",
        type=int,
        default=20,
        help="Foreground class count; label 255 becomes num_classes + 1 (default: 20)",
    )
    parser.add_argument("--image-ext", type=str, default=".jpg")
    parser.add_argument("--label-ext", type=str, default=".txt")
    parser.add_argument(
        "--encoding",
        choices=["JPEG", "PNG"],
        default="JPEG",
        help="Codec used for the stored image bytes (default: JPEG)",
    )
    parser.add_argument("--log-level", type=str, default="INFO")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)

    logger.remove()
    logger.add(sys.stderr, level=args.log_level)

    if not args.list_file.is_file():
        logger.error(f"List file not found: {args.list_file}")
        return 1

    config = DatasetBuildConfig(
        image_dir=str(args.image_dir),
        label_dir=str(args.label_dir),
        list_file=str(args.list_file),
        out_path=str(args.out),
        backend=args.backend,
        shuffle=args.shuffle,
        seed=args.seed,
        min_height=args.min_height,
        min_width=args.min_width,
        image_name_as_key=args.image_name_as_key,
        num_classes=args.num_classes,
        image_ext=args.image_ext,
        label_ext=args.label_ext,
        encoding=args.encoding,
    )
    try:
        count = build_dataset(config)
    except StoreError as e:
        logger.error(str(e))
        return 1
    logger.info(f"Done! {count} records written to {args.out}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
