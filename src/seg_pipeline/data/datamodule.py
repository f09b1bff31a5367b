"""LightningDataModule exposing prefetch pipelines to a training host."""

from __future__ import annotations

import math
from collections.abc import Iterator
from typing import Any

import lightning as L
from loguru import logger
from torch.utils.data import DataLoader, IterableDataset

from seg_pipeline.config import DataModuleConfig, PipelineConfig
from seg_pipeline.data.pipeline import PrefetchPipeline
from seg_pipeline.io.store import open_store
from seg_pipeline.types import SegmentationBatch


class PrefetchBatchDataset(IterableDataset[SegmentationBatch]):
    """Yields ``num_batches`` already-collated batches per iteration.

    The pipeline keeps running between iterations, so consecutive epochs
    continue from where the cursor stopped.  Each batch is cloned because the
    pipeline reuses its buffers on the following ``get_batch`` call.
    """

    def __init__(self, pipeline: PrefetchPipeline, num_batches: int) -> None:
        super().__init__()
        self.pipeline = pipeline
        self.num_batches = num_batches

    def __len__(self) -> int:
        return self.num_batches

    def __iter__(self) -> Iterator[SegmentationBatch]:
        for _ in range(self.num_batches):
            batch = self.pipeline.get_batch()
            labels = batch["labels"]
            yield {
                "images": batch["images"].clone(),
                "labels": None if labels is None else labels.clone(),
                "size": batch["size"],
            }


class SegmentationDataModule(L.LightningDataModule):
    """DataModule serving train / val batches from record stores.

    The train pipeline runs in the phase its config declares (normally
    ``"train"``); the val pipeline must use ``"test"``.  DataLoaders use
    ``batch_size=None`` because batches arrive already assembled, and
    ``num_workers=0`` because each pipeline owns its own producer thread.

    Args:
        config: DataModuleConfig. If provided, flat kwargs are ignored.
        train: Train PipelineConfig (used when config is None, e.g. Hydra).
        val: Optional val PipelineConfig.
        batches_per_epoch: Train batches per epoch; defaults to one pass.
        val_batches: Val batches per epoch; defaults to one pass.
        **kwargs: Absorbs extra Hydra-injected keys (_target_, _recursive_, etc.).
    """

    def __init__(
        self,
        config: DataModuleConfig | None = None,
        *,
        train: PipelineConfig | dict[str, Any] | None = None,
        val: PipelineConfig | dict[str, Any] | None = None,
        batches_per_epoch: int | None = None,
        val_batches: int | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__()
        if config is not None:
            self._config = config
        else:
            if train is None:
                raise ValueError("Either config or train must be provided")
            self._config = DataModuleConfig.model_validate(
                {
                    "train": train,
                    "val": val,
                    "batches_per_epoch": batches_per_epoch,
                    "val_batches": val_batches,
                }
            )
        self._train_pipeline: PrefetchPipeline | None = None
        self._val_pipeline: PrefetchPipeline | None = None
        self._train_batches = 0
        self._val_batches = 0

    @staticmethod
    def _passes(config: PipelineConfig, override: int | None) -> int:
        """Batches per epoch: override, or one pass over the store rounded up."""
        if override is not None:
            return override
        with open_store(config.source, "read", config.backend) as store:
            total = store.count()
        return max(1, math.ceil(total / config.batch_size))

    def setup(self, stage: str | None = None) -> None:
        """Start the pipelines for the given stage.

        Args:
            stage: "fit" starts train (and val when configured), "validate"
                starts val only, None starts everything available.
        """
        if stage in ("fit", None) and self._train_pipeline is None:
            cfg = self._config.train
            self._train_batches = self._passes(cfg, self._config.batches_per_epoch)
            self._train_pipeline = PrefetchPipeline(cfg)
            self._train_pipeline.start()
            logger.info(
                f"Setup train pipeline: {cfg.source}, "
                f"{self._train_batches} batches/epoch"
            )

        wants_val = stage in ("fit", "validate", None)
        if wants_val and self._config.val is not None and self._val_pipeline is None:
            cfg = self._config.val
            self._val_batches = self._passes(cfg, self._config.val_batches)
            self._val_pipeline = PrefetchPipeline(cfg)
            self._val_pipeline.start()
            logger.info(f"Setup val pipeline: {cfg.source}, {self._val_batches} batches")

    def train_dataloader(self) -> DataLoader[SegmentationBatch]:
        if self._train_pipeline is None:
            raise RuntimeError("Call setup('fit') first")
        return DataLoader(
            PrefetchBatchDataset(self._train_pipeline, self._train_batches),
            batch_size=None,
            num_workers=0,
        )

    def val_dataloader(self) -> DataLoader[SegmentationBatch]:
        if self._val_pipeline is None:
            raise RuntimeError("Call setup('fit') or setup('validate') with a val config first")
        return DataLoader(
            PrefetchBatchDataset(self._val_pipeline, self._val_batches),
            batch_size=None,
            num_workers=0,
        )

    def teardown(self, stage: str | None = None) -> None:
        """Join producers and close stores."""
        if self._train_pipeline is not None and stage in ("fit", None):
            self._train_pipeline.close()
            self._train_pipeline = None
        if self._val_pipeline is not None:
            self._val_pipeline.close()
            self._val_pipeline = None
