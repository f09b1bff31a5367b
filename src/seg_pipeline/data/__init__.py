"""Prefetch pipeline and host integration."""

from seg_pipeline.data.buffer import BatchBuffer
from seg_pipeline.data.datamodule import PrefetchBatchDataset, SegmentationDataModule
from seg_pipeline.data.pipeline import PipelineState, PrefetchPipeline

__all__ = [
    "BatchBuffer",
    "PipelineState",
    "PrefetchBatchDataset",
    "PrefetchPipeline",
    "SegmentationDataModule",
]
