"""Geometry planning and paired image / label transforms."""

from seg_pipeline.transforms.geometry import (
    CropGeometry,
    enlarged_size,
    plan_from_aspect_ratio,
    short_side_resize,
)
from seg_pipeline.transforms.labels import remap_difficult, resize_label_map
from seg_pipeline.transforms.transformer import (
    SegmentationTransformer,
    TransformPlan,
    TransformResult,
    record_labels,
    record_to_array,
)

__all__ = [
    "CropGeometry",
    "SegmentationTransformer",
    "TransformPlan",
    "TransformResult",
    "enlarged_size",
    "plan_from_aspect_ratio",
    "record_labels",
    "record_to_array",
    "remap_difficult",
    "resize_label_map",
    "short_side_resize",
]
