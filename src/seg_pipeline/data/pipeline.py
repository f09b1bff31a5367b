"""Double-buffered prefetch pipeline.

Two ``BatchBuffer`` instances alternate between the consumer ("active") and a
single background producer ("filling").  ``get_batch`` waits for the producer
future, swaps the two roles and relaunches production into the buffer the
consumer just released, so decoding and transforming batch k+1 overlaps with
the consumer's use of batch k.

The store cursor and the producer's RNG are only ever touched from the
producer task.  A batch handed out by ``get_batch`` stays valid until the
next ``get_batch`` call.
"""

from __future__ import annotations

import concurrent.futures
import time
from collections.abc import Iterator
from enum import Enum

import numpy as np
from loguru import logger

from seg_pipeline.config import AspectRatioCrop, FixedSquareResize, PipelineConfig
from seg_pipeline.data.buffer import BatchBuffer
from seg_pipeline.errors import StoreError
from seg_pipeline.io.store import Cursor, RecordStore, open_store
from seg_pipeline.io.wire import parse_record
from seg_pipeline.transforms.geometry import CropGeometry, round_to_multiple
from seg_pipeline.transforms.transformer import (
    SegmentationTransformer,
    record_labels,
    record_to_array,
)
from seg_pipeline.types import SegmentationBatch

__all__ = ["PipelineState", "PrefetchPipeline"]

# Batches whose timing is reported at INFO; later batches log at DEBUG.
_VERBOSE_BATCHES = 10


class PipelineState(str, Enum):
    IDLE = "idle"
    FILLING = "filling"
    READY = "ready"


class PrefetchPipeline:
    """Produces fixed-shape batches from a record store in the background.

    Args:
        config: Pipeline configuration.
        store: Already-open store to read from.  When omitted, ``start()``
            opens ``config.source`` and ``close()`` closes it again.
    """

    def __init__(self, config: PipelineConfig, store: RecordStore | None = None) -> None:
        self.config = config
        self._store = store
        self._owns_store = store is None
        self._transformer = SegmentationTransformer(config.transform)
        self._seed_seq = np.random.SeedSequence(config.seed)

        self._cursor: Cursor | None = None
        self._channels = 0
        self._buffers: list[BatchBuffer] = []
        # Index of the buffer held by the consumer; the other one is filling.
        self._active = 0
        self._executor: concurrent.futures.ThreadPoolExecutor | None = None
        self._future: concurrent.futures.Future[BatchBuffer] | None = None
        self._batches_produced = 0
        self._closed = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self) -> None:
        """Open the store, allocate both buffers and launch the first batch."""
        if self._executor is not None:
            raise RuntimeError("Pipeline already started")
        if self._closed:
            raise RuntimeError("Pipeline is closed")

        if self._store is None:
            self._store = open_store(self.config.source, "read", self.config.backend)
        cursor = self._store.cursor()
        if not cursor.valid():
            raise StoreError(f"Record store {self._store.path} contains no records")

        if self.config.rand_skip:
            skip_rng = np.random.default_rng(self._spawn_seed())
            skip = int(skip_rng.integers(self.config.rand_skip))
            logger.info(f"Skipping first {skip} data points.")
            for _ in range(skip):
                self._advance(cursor)
        self._cursor = cursor

        first = parse_record(cursor.value())
        self._channels = first.channels
        geometry = self._initial_geometry(first.height, first.width)
        logger.info(
            f"Allocating batch buffers: {self.config.batch_size} x {self._channels} "
            f"x {geometry.height} x {geometry.width}"
        )
        self._buffers = [
            BatchBuffer(
                self.config.batch_size,
                self._channels,
                geometry,
                self.config.output_labels,
            )
            for _ in range(2)
        ]
        self._active = 0

        self._executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="seg-prefetch"
        )
        self._launch(self._buffers[1])

    def close(self) -> None:
        """Join the outstanding producer, then release the store."""
        if self._closed:
            return
        self._closed = True
        if self._future is not None:
            concurrent.futures.wait([self._future])
            exc = self._future.exception()
            if exc is not None:
                logger.error(f"Prefetch producer failed before shutdown: {exc!r}")
            self._future = None
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
        if self._owns_store and self._store is not None:
            self._store.close()
            self._store = None
        logger.debug("Prefetch pipeline closed")

    def __enter__(self) -> PrefetchPipeline:
        self.start()
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Consumer side
    # ------------------------------------------------------------------
    @property
    def state(self) -> PipelineState:
        if self._future is None:
            return PipelineState.IDLE
        if self._future.done():
            return PipelineState.READY
        return PipelineState.FILLING

    @property
    def batches_produced(self) -> int:
        return self._batches_produced

    def get_batch(self) -> SegmentationBatch:
        """Block until the next batch is ready, hand it over, refill the other buffer.

        Errors raised by the producer are re-raised here.
        """
        if self._future is None:
            raise RuntimeError("Call start() before get_batch()")
        batch = self._future.result().as_batch()
        self._future = None

        self._active = 1 - self._active
        self._launch(self._buffers[1 - self._active])
        return batch

    def __iter__(self) -> Iterator[SegmentationBatch]:
        while True:
            yield self.get_batch()

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------
    def _spawn_seed(self) -> np.random.SeedSequence:
        return self._seed_seq.spawn(1)[0]

    def _started(self) -> tuple[concurrent.futures.ThreadPoolExecutor, Cursor]:
        if self._executor is None or self._cursor is None:
            raise RuntimeError("Call start() before get_batch()")
        return self._executor, self._cursor

    def _launch(self, buffer: BatchBuffer) -> None:
        executor, cursor = self._started()
        rng = np.random.default_rng(self._spawn_seed())
        self._future = executor.submit(self._produce, buffer, cursor, rng)

    def _initial_geometry(self, height: int, width: int) -> CropGeometry:
        crop = self.config.transform.crop
        if isinstance(crop, AspectRatioCrop):
            return CropGeometry(
                round_to_multiple(crop.min_height, crop.height_multiple),
                round_to_multiple(crop.min_width, crop.width_multiple),
            )
        fixed = self._transformer.fixed_geometry()
        if fixed is not None:
            return fixed
        resize = self.config.transform.resize
        if isinstance(resize, FixedSquareResize):
            return CropGeometry(resize.size, resize.size)
        return CropGeometry(height, width)

    @staticmethod
    def _advance(cursor: Cursor) -> None:
        cursor.next()
        if not cursor.valid():
            logger.debug("Restarting data prefetching from start.")
            cursor.seek_to_first()

    def _produce(
        self, buffer: BatchBuffer, cursor: Cursor, rng: np.random.Generator
    ) -> BatchBuffer:
        batch_start = time.perf_counter()
        read_time = 0.0
        trans_time = 0.0
        geometry: CropGeometry | None = None

        for item_id in range(self.config.batch_size):
            t0 = time.perf_counter()
            record = parse_record(cursor.value())
            image = record_to_array(record, self._channels)
            labels = None
            if self.config.output_labels:
                labels = record_labels(record, image.shape[1], image.shape[2])
            if item_id == 0:
                # The first item decides the batch geometry; items are expected
                # to be pre-sorted by aspect ratio.
                geometry = self._transformer.batch_geometry(image)
            t1 = time.perf_counter()
            read_time += t1 - t0

            result = self._transformer.apply(image, labels, rng, geometry)
            if item_id == 0 and buffer.ensure_geometry(result.plan.crop):
                logger.debug(
                    f"Reshaped batch buffer to {result.plan.crop.height} x "
                    f"{result.plan.crop.width}"
                )
            buffer.write(item_id, result)
            trans_time += time.perf_counter() - t1

            self._advance(cursor)

        level = "INFO" if self._batches_produced < _VERBOSE_BATCHES else "DEBUG"
        self._batches_produced += 1
        batch_ms = (time.perf_counter() - batch_start) * 1000
        logger.log(
            level,
            f"Prefetch batch: {batch_ms:.1f} ms (read {read_time * 1000:.1f} ms, "
            f"transform {trans_time * 1000:.1f} ms)",
        )
        return buffer
