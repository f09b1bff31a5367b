"""Label grid helpers.

Labels are categorical, so resampling is nearest-neighbour only: output pixel
``(i, j)`` reads source pixel
``(round(i / (H_out - 1) * (H_in - 1)), round(j / (W_out - 1) * (W_in - 1)))``
with round-half-up.  The same mapping serves per-batch resizing and
dataset-construction enlargement.
"""

from __future__ import annotations

import numpy as np


def _source_indices(out_size: int, in_size: int) -> np.ndarray:
    if out_size == 1:
        # A single output row/column samples the first source row/column.
        return np.zeros(1, dtype=np.int64)
    frac = np.arange(out_size, dtype=np.float64) / (out_size - 1)
    return np.floor(frac * (in_size - 1) + 0.5).astype(np.int64)


def resize_label_map(labels: np.ndarray, height: int, width: int) -> np.ndarray:
    """Nearest-neighbour resample of an ``(H, W)`` label grid."""
    if labels.ndim != 2:
        raise ValueError(f"label map must be 2-D, got shape {labels.shape}")
    in_h, in_w = labels.shape
    if (in_h, in_w) == (height, width):
        return labels.copy()
    rows = _source_indices(height, in_h)
    cols = _source_indices(width, in_w)
    return labels[np.ix_(rows, cols)]


def difficult_label(num_classes: int) -> int:
    """Sentinel class for difficult pixels: one past the last foreground class."""
    return num_classes + 1


def remap_difficult(
    labels: np.ndarray, num_classes: int, difficult_value: int = 255
) -> np.ndarray:
    """Replace ``difficult_value`` with the difficult sentinel class."""
    out = labels.copy()
    out[out == difficult_value] = difficult_label(num_classes)
    return out
