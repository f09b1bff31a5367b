"""Crop and resize geometry.

Pure integer arithmetic shared by the transformer, the prefetch pipeline and
dataset construction.
"""

from __future__ import annotations

import math
from typing import NamedTuple

from loguru import logger

from seg_pipeline.errors import ConfigurationError


class CropGeometry(NamedTuple):
    """Spatial shape every item of a batch is cut to."""

    height: int
    width: int


def round_to_multiple(value: int, multiple: int) -> int:
    """Round ``value`` down to the nearest multiple of ``multiple``."""
    return (value // multiple) * multiple


def plan_from_aspect_ratio(
    ratio: float,
    min_height: int,
    min_width: int,
    height_multiple: int = 1,
    width_multiple: int = 1,
) -> CropGeometry:
    """Largest crop with the given aspect ratio fitting in ``min_height x min_width``.

    ``ratio`` is height / width of the first item of the batch.  Each side is
    then rounded down to its multiple.

    Raises:
        ConfigurationError: If the resulting geometry is empty or exceeds the
            minimum size.
    """
    if ratio <= 0:
        raise ConfigurationError(f"aspect ratio must be positive, got {ratio}")
    if min_height / min_width < ratio:
        height = min_height
        width = math.floor(min_height / ratio)
    else:
        width = min_width
        height = math.floor(min_width * ratio)
    height = round_to_multiple(height, height_multiple)
    width = round_to_multiple(width, width_multiple)

    if not 0 < height <= min_height or not 0 < width <= min_width:
        raise ConfigurationError(
            f"aspect ratio {ratio:.4f} gives crop {height} x {width}, which does "
            f"not fit in (0, {min_height}] x (0, {min_width}] with multiples "
            f"({height_multiple}, {width_multiple})"
        )
    logger.debug(f"aspect_ratio {ratio:.4f} -> crop height {height} width {width}")
    return CropGeometry(height, width)


def short_side_resize(height: int, width: int, short_side: int) -> CropGeometry:
    """Size that makes the shorter side ``short_side``, keeping aspect ratio."""
    if height > width:
        return CropGeometry(-(-height * short_side // width), short_side)
    return CropGeometry(short_side, -(-width * short_side // height))


def enlarged_size(
    height: int, width: int, min_height: int, min_width: int
) -> CropGeometry:
    """Smallest aspect-preserving size that meets both minimums.

    Sizes already meeting both minimums are returned unchanged.
    """
    if height >= min_height and width >= min_width:
        return CropGeometry(height, width)
    if height < min_height and width >= min_width:
        factor = min_height / height
        return CropGeometry(min_height, math.ceil(width * factor))
    if height >= min_height and width < min_width:
        factor = min_width / width
        return CropGeometry(math.ceil(height * factor), min_width)

    height_factor = min_height / height
    width_factor = min_width / width
    if height_factor > width_factor:
        return CropGeometry(min_height, math.ceil(width * height_factor))
    return CropGeometry(math.ceil(height * width_factor), min_width)
