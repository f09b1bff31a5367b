"""Reusable batch slot for the prefetch pipeline."""

from __future__ import annotations

import torch

from seg_pipeline.errors import ConfigurationError
from seg_pipeline.transforms.geometry import CropGeometry
from seg_pipeline.transforms.transformer import TransformResult
from seg_pipeline.types import SegmentationBatch


class BatchBuffer:
    """Image (and optional label) tensors for one batch, reused in place.

    Tensors are reallocated only when ``ensure_geometry`` sees a new shape.

    Args:
        batch_size: Number of items per batch (N).
        channels: Image channel count (C).
        geometry: Initial spatial shape (H, W).
        with_labels: Whether a ``(N, 1, H, W)`` label tensor is kept.
    """

    def __init__(
        self,
        batch_size: int,
        channels: int,
        geometry: CropGeometry,
        with_labels: bool,
    ) -> None:
        self.batch_size = batch_size
        self.channels = channels
        self.with_labels = with_labels
        self.geometry = geometry
        self.images, self.labels = self._allocate(geometry)

    def _allocate(
        self, geometry: CropGeometry
    ) -> tuple[torch.Tensor, torch.Tensor | None]:
        n, (h, w) = self.batch_size, geometry
        images = torch.zeros((n, self.channels, h, w), dtype=torch.float32)
        labels = (
            torch.zeros((n, 1, h, w), dtype=torch.long) if self.with_labels else None
        )
        return images, labels

    def ensure_geometry(self, geometry: CropGeometry) -> bool:
        """Reshape to ``geometry``. Returns True if tensors were reallocated."""
        if geometry == self.geometry:
            return False
        self.geometry = geometry
        self.images, self.labels = self._allocate(geometry)
        return True

    def write(self, slot: int, result: TransformResult) -> None:
        """Copy one transformed item into ``slot``.

        Raises:
            ConfigurationError: If the item's shape differs from the batch.
        """
        expected = (self.channels, *self.geometry)
        if result.image.shape != expected:
            raise ConfigurationError(
                f"item {slot} has shape {result.image.shape}, batch expects "
                f"{expected}; all items of a batch must share one geometry"
            )
        self.images[slot].copy_(torch.from_numpy(result.image))
        if self.labels is not None:
            if result.labels is None:
                raise ConfigurationError(
                    f"item {slot} has no labels but the pipeline outputs labels"
                )
            self.labels[slot, 0].copy_(torch.from_numpy(result.labels))

    def as_batch(self) -> SegmentationBatch:
        return {
            "images": self.images,
            "labels": self.labels,
            "size": torch.tensor(self.geometry, dtype=torch.long),
        }

    def __repr__(self) -> str:
        return (
            f"BatchBuffer(batch_size={self.batch_size}, channels={self.channels}, "
            f"geometry={tuple(self.geometry)}, with_labels={self.with_labels})"
        )
