"""Paired image / label transform: resize -> crop -> mirror -> normalize.

Every random decision for one item is drawn up front into a ``TransformPlan``
and then executed identically on the image and its label grid, so the two can
never drift apart.  Images are CHW arrays; labels are ``(H, W)`` int64 grids.
"""

from __future__ import annotations

from typing import NamedTuple

import numpy as np
from loguru import logger

from seg_pipeline.config import (
    AspectRatioCrop,
    FixedRectCrop,
    FixedSquareCrop,
    FixedSquareResize,
    MeanFileNormalization,
    MeanValuesNormalization,
    ShortSideRangeResize,
    TransformConfig,
)
from seg_pipeline.errors import ConfigurationError
from seg_pipeline.io.codec import coerce_channels, decode_image, resize_image
from seg_pipeline.schemas.record import Record
from seg_pipeline.transforms.geometry import (
    CropGeometry,
    plan_from_aspect_ratio,
    short_side_resize,
)
from seg_pipeline.transforms.labels import remap_difficult, resize_label_map


class TransformPlan(NamedTuple):
    """Decisions for one item: resized size, crop window and mirror flag."""

    resized: CropGeometry
    crop: CropGeometry
    h_off: int
    w_off: int
    mirror: bool


class TransformResult(NamedTuple):
    image: np.ndarray
    labels: np.ndarray | None
    plan: TransformPlan


def record_to_array(record: Record, channels: int | None = None) -> np.ndarray:
    """Decode a record's payload into a CHW array.

    Encoded records are decoded with the image codec (uint8); raw bytes are
    read as CHW uint8 and ``float_data`` as CHW float32.  If a decoded image
    does not have ``channels`` channels, a warning is logged and the image is
    converted.
    """
    if record.encoded:
        hwc = decode_image(record.data)
        if channels is not None and hwc.shape[2] != channels:
            logger.warning(
                f"Decoded image has {hwc.shape[2]} channels but the batch expects "
                f"{channels}. Your dataset contains encoded images with mixed "
                "channel sizes; consider rebuilding it with a fixed color mode."
            )
            hwc = coerce_channels(hwc, channels)
        return np.ascontiguousarray(hwc.transpose(2, 0, 1))
    shape = (record.channels, record.height, record.width)
    if record.data:
        return np.frombuffer(record.data, dtype=np.uint8).reshape(shape)
    return np.asarray(record.float_data, dtype=np.float32).reshape(shape)


def record_labels(record: Record, height: int, width: int) -> np.ndarray:
    """Row-major label grid of a record, shaped ``(height, width)``.

    Raises:
        ConfigurationError: If the record carries fewer labels than pixels.
    """
    needed = height * width
    if len(record.labels) < needed:
        raise ConfigurationError(
            f"record has {len(record.labels)} labels but the image has "
            f"{height}x{width} = {needed} pixels"
        )
    return np.asarray(record.labels[:needed], dtype=np.int64).reshape(height, width)


class SegmentationTransformer:
    """Applies a TransformConfig to image / label pairs.

    Args:
        config: Frozen transform configuration.  A mean file, if configured,
            is loaded once here.
    """

    def __init__(self, config: TransformConfig) -> None:
        self.config = config
        self._mean: np.ndarray | None = None
        self._mean_values: np.ndarray | None = None

        norm = config.normalization
        if isinstance(norm, MeanFileNormalization):
            logger.info(f"Loading mean file from: {norm.path}")
            mean = np.load(norm.path).astype(np.float32)
            if mean.ndim == 4 and mean.shape[0] == 1:
                mean = mean[0]
            if mean.ndim != 3:
                raise ConfigurationError(
                    f"mean file must hold a (C, H, W) array, got shape {mean.shape}"
                )
            self._mean = mean
        elif isinstance(norm, MeanValuesNormalization):
            self._mean_values = np.asarray(norm.values, dtype=np.float32)

    @property
    def is_train(self) -> bool:
        return self.config.phase == "train"

    # ------------------------------------------------------------------
    # Geometry
    # ------------------------------------------------------------------
    def fixed_geometry(self) -> CropGeometry | None:
        """Crop geometry fixed by configuration, or None if it varies by batch."""
        crop = self.config.crop
        if isinstance(crop, FixedSquareCrop):
            return CropGeometry(crop.size, crop.size)
        if isinstance(crop, FixedRectCrop):
            return CropGeometry(crop.height, crop.width)
        return None

    def resized_size(
        self, height: int, width: int, rng: np.random.Generator
    ) -> CropGeometry:
        resize = self.config.resize
        if isinstance(resize, FixedSquareResize):
            return CropGeometry(resize.size, resize.size)
        if isinstance(resize, ShortSideRangeResize):
            lo, hi = resize.short_side_min, resize.short_side_max
            if self.is_train:
                short_side = lo + int(rng.integers(hi - lo + 1))
            else:
                short_side = (lo + hi) // 2
            return short_side_resize(height, width, short_side)
        return CropGeometry(height, width)

    def plan(
        self,
        height: int,
        width: int,
        rng: np.random.Generator,
        geometry: CropGeometry | None = None,
    ) -> TransformPlan:
        """Draw resize, crop and mirror decisions for a ``height x width`` source.

        Draw order is: short-side length, crop height offset, crop width
        offset, mirror coin.  ``geometry=None`` keeps the whole resized image.

        Raises:
            ConfigurationError: If the crop is larger than the resized source.
        """
        resized = self.resized_size(height, width, rng)
        crop = resized if geometry is None else geometry
        if crop.height > resized.height or crop.width > resized.width:
            raise ConfigurationError(
                f"crop {crop.height}x{crop.width} is larger than source "
                f"{resized.height}x{resized.width}"
            )

        h_off = w_off = 0
        if geometry is not None:
            if self.is_train:
                h_off = int(rng.integers(resized.height - crop.height + 1))
                w_off = int(rng.integers(resized.width - crop.width + 1))
            else:
                h_off = (resized.height - crop.height) // 2
                w_off = (resized.width - crop.width) // 2

        mirror = self.config.mirror and self.is_train and bool(rng.integers(2))
        return TransformPlan(resized, crop, h_off, w_off, mirror)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------
    @staticmethod
    def _channel_means(values: np.ndarray, channels: int) -> np.ndarray:
        if values.size == 1:
            return np.full(channels, values[0], dtype=np.float32)
        if values.size != channels:
            raise ConfigurationError(
                f"Specify either 1 mean_value or as many as channels: {channels}"
            )
        return values

    def execute(
        self,
        image: np.ndarray,
        labels: np.ndarray | None,
        plan: TransformPlan,
    ) -> TransformResult:
        """Run a plan on a CHW image and its optional ``(H, W)`` label grid."""
        channels, height, width = image.shape
        if labels is not None and labels.shape != (height, width):
            raise ConfigurationError(
                f"label grid {labels.shape} does not match image {height}x{width}"
            )

        if plan.resized != (height, width):
            hwc = resize_image(image.transpose(1, 2, 0), *plan.resized)
            image = hwc.transpose(2, 0, 1)
            if labels is not None:
                labels = resize_label_map(labels, *plan.resized)

        rows = slice(plan.h_off, plan.h_off + plan.crop.height)
        cols = slice(plan.w_off, plan.w_off + plan.crop.width)
        out = image[:, rows, cols].astype(np.float32)

        if self._mean is not None:
            if self._mean.shape != image.shape:
                raise ConfigurationError(
                    f"mean shape {self._mean.shape} does not match image "
                    f"shape {image.shape}"
                )
            out -= self._mean[:, rows, cols]
        elif self._mean_values is not None:
            means = self._channel_means(self._mean_values, channels)
            out -= means[:, np.newaxis, np.newaxis]
        if self.config.scale != 1.0:
            out *= self.config.scale

        label_out = None
        if labels is not None:
            label_out = labels[rows, cols].astype(np.int64)
            if self.config.num_classes is not None:
                label_out = remap_difficult(
                    label_out, self.config.num_classes, self.config.difficult_value
                )

        if plan.mirror:
            out = out[:, :, ::-1]
            if label_out is not None:
                label_out = label_out[:, ::-1]

        return TransformResult(
            np.ascontiguousarray(out),
            None if label_out is None else np.ascontiguousarray(label_out),
            plan,
        )

    def apply(
        self,
        image: np.ndarray,
        labels: np.ndarray | None,
        rng: np.random.Generator,
        geometry: CropGeometry | None = None,
    ) -> TransformResult:
        """Plan and execute in one step."""
        _, height, width = image.shape
        return self.execute(image, labels, self.plan(height, width, rng, geometry))

    def batch_geometry(self, image: np.ndarray) -> CropGeometry | None:
        """Crop geometry for a batch whose first item is ``image``.

        Aspect-ratio crops are planned from this item; fixed crops come from
        configuration; ``None`` means no crop.
        """
        crop = self.config.crop
        if isinstance(crop, AspectRatioCrop):
            _, height, width = image.shape
            return plan_from_aspect_ratio(
                height / width,
                crop.min_height,
                crop.min_width,
                crop.height_multiple,
                crop.width_multiple,
            )
        return self.fixed_geometry()
