"""Type aliases and TypedDicts for seg_pipeline inter-module contracts."""

from typing import TypedDict

import torch


class SegmentationBatch(TypedDict):
    """A single batch handed out by the prefetch pipeline.

    images: Float tensor of shape (N, C, H, W), mean-subtracted and scaled.
    labels: Long tensor of shape (N, 1, H, W), or None when labels are off.
    size: Long tensor of shape (2,) holding the batch geometry (H, W).
    """

    images: torch.Tensor
    labels: torch.Tensor | None
    size: torch.Tensor
