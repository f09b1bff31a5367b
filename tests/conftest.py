"""Shared pytest fixtures for seg_pipeline tests."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from pathlib import Path

import numpy as np
import pytest

from seg_pipeline.io.store import open_store
from seg_pipeline.io.wire import serialize_record
from seg_pipeline.schemas.record import Record


def _pattern(channels: int, height: int, width: int, offset: int = 0) -> np.ndarray:
    """CHW uint8 array where every pixel value encodes its coordinates."""
    c, h, w = np.meshgrid(
        np.arange(channels), np.arange(height), np.arange(width), indexing="ij"
    )
    return ((c * 50 + h * 10 + w + offset) % 256).astype(np.uint8)


@pytest.fixture()
def pattern_image() -> Callable[..., np.ndarray]:
    """Factory for coordinate-encoding CHW uint8 images."""
    return _pattern


@pytest.fixture()
def make_record() -> Callable[..., Record]:
    """Factory for raw (unencoded) records with a constant or given label grid."""

    def _make(
        height: int = 10,
        width: int = 10,
        channels: int = 3,
        label_value: int = 0,
        labels: np.ndarray | None = None,
        offset: int = 0,
    ) -> Record:
        image = _pattern(channels, height, width, offset)
        if labels is None:
            labels = np.full((height, width), label_value, dtype=np.int64)
        return Record(
            channels=channels,
            height=height,
            width=width,
            data=image.tobytes(),
            labels=labels.ravel().tolist(),
        )

    return _make


@pytest.fixture()
def make_store(tmp_path: Path) -> Callable[..., Path]:
    """Factory writing records to a fresh SQLite store under tmp_path.

    Keys are 8-digit zero-padded indices, so cursor order is list order.
    """
    counter = {"n": 0}

    def _make(records: Sequence[Record]) -> Path:
        counter["n"] += 1
        path = tmp_path / f"store_{counter['n']}.db"
        with open_store(path, "new") as store:
            txn = store.transaction()
            for i, record in enumerate(records):
                txn.put(f"{i:08d}", serialize_record(record))
            txn.commit()
        return path

    return _make
