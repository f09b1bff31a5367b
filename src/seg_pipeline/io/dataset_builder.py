"""Build a record store from an image directory and pixel-label text files.

Each list-file entry ``NAME`` pairs ``image_dir/NAME{image_ext}`` with
``label_dir/NAME{label_ext}``.  A label file holds one whitespace-separated
row of integers per image row; value 255 marks difficult pixels and is stored
as ``num_classes + 1``.  Images smaller than the configured minimum are
enlarged with their aspect ratio preserved, and their labels are resampled
with the same nearest-neighbour mapping the transformer uses.
"""

from __future__ import annotations

import random
from pathlib import Path
from typing import Literal

import numpy as np
from loguru import logger
from PIL import Image
from pydantic import BaseModel, PositiveInt
from tqdm import tqdm

from seg_pipeline.io.codec import encode_image, resize_image
from seg_pipeline.io.store import open_store
from seg_pipeline.io.wire import serialize_record
from seg_pipeline.schemas.record import Record
from seg_pipeline.transforms.geometry import enlarged_size
from seg_pipeline.transforms.labels import remap_difficult, resize_label_map

__all__ = [
    "DatasetBuildConfig",
    "build_dataset",
    "read_image_list",
    "read_image_seg_to_record",
    "read_label_file",
]

# Records written per store transaction
_COMMIT_EVERY = 200


class DatasetBuildConfig(BaseModel, frozen=True):
    """Options for ``build_dataset``."""

    image_dir: str
    label_dir: str
    list_file: str
    out_path: str
    backend: str = "sqlite"
    shuffle: bool = False
    seed: int | None = None
    min_height: PositiveInt = 1
    min_width: PositiveInt = 1
    image_name_as_key: bool = False
    num_classes: PositiveInt = 20
    image_ext: str = ".jpg"
    label_ext: str = ".txt"
    encoding: Literal["JPEG", "PNG"] = "JPEG"


def read_image_list(list_file: Path) -> list[str]:
    """Whitespace-separated image names, in file order."""
    return list_file.read_text().split()


def read_label_file(
    path: Path, height: int, width: int, num_classes: int
) -> np.ndarray:
    """Parse a label text file into an ``(height, width)`` int64 grid.

    Raises:
        ValueError: If the row or column counts do not match the image.
    """
    rows: list[list[int]] = []
    with open(path) as f:
        for line in f:
            values = line.split()
            if not values:
                continue
            if len(values) != width:
                raise ValueError(
                    f"{path}: row {len(rows)} has {len(values)} labels, "
                    f"expected {width}"
                )
            rows.append([int(v) for v in values])
    if len(rows) != height:
        raise ValueError(f"{path}: found {len(rows)} label rows, expected {height}")
    return remap_difficult(np.asarray(rows, dtype=np.int64), num_classes)


def read_image_seg_to_record(
    image_path: Path,
    label_path: Path,
    min_height: int = 1,
    min_width: int = 1,
    num_classes: int = 20,
    encoding: str = "JPEG",
) -> Record:
    """Load one image / label pair, enlarging it if below the minimum size."""
    with Image.open(image_path) as img:
        image = np.asarray(img.convert("RGB"), dtype=np.uint8)
    height, width = image.shape[:2]
    labels = read_label_file(label_path, height, width, num_classes)

    new_height, new_width = enlarged_size(height, width, min_height, min_width)
    if (new_height, new_width) != (height, width):
        image = resize_image(image, new_height, new_width)
        labels = resize_label_map(labels, new_height, new_width)
    logger.debug(
        f"{image_path.name}: resized from ({height},{width}) to "
        f"({new_height},{new_width})"
    )

    return Record(
        channels=image.shape[2],
        height=new_height,
        width=new_width,
        data=encode_image(image, encoding),
        encoded=True,
        labels=labels.ravel().tolist(),
    )


def build_dataset(config: DatasetBuildConfig) -> int:
    """Write every readable image / label pair to a new record store.

    Pairs that fail to load are skipped with a warning and do not consume a
    key index.

    Returns:
        Number of records written.
    """
    names = read_image_list(Path(config.list_file))
    if config.shuffle:
        logger.info("Shuffling images in the list")
        random.Random(config.seed).shuffle(names)
    if config.image_name_as_key:
        logger.info("Using image names as keys")
    else:
        logger.info("Using zero-padded image indices as keys")

    image_dir = Path(config.image_dir)
    label_dir = Path(config.label_dir)
    count = 0
    skipped = 0
    with open_store(config.out_path, "new", config.backend) as store:
        txn = store.transaction()
        for name in tqdm(names, desc="Build store", unit="img"):
            try:
                record = read_image_seg_to_record(
                    image_dir / f"{name}{config.image_ext}",
                    label_dir / f"{name}{config.label_ext}",
                    config.min_height,
                    config.min_width,
                    config.num_classes,
                    config.encoding,
                )
            except (OSError, ValueError) as e:
                logger.warning(f"Skipping {name}: {e}")
                skipped += 1
                continue

            key = name if config.image_name_as_key else f"{count:08d}"
            txn.put(key, serialize_record(record))
            count += 1
            if count % _COMMIT_EVERY == 0:
                txn.commit()
                logger.info(f"Processed {count} images")
        txn.commit()

    logger.info(f"Wrote {count} records to {config.out_path} ({skipped} skipped)")
    return count
