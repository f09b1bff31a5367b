"""Tests for the paired image / label transformer."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import numpy as np
import pytest

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
from seg_pipeline.io.codec import encode_image
from seg_pipeline.schemas.record import Record
from seg_pipeline.transforms.geometry import CropGeometry
from seg_pipeline.transforms.transformer import (
    SegmentationTransformer,
    TransformPlan,
    record_labels,
    record_to_array,
)


@pytest.fixture()
def rng() -> np.random.Generator:
    return np.random.default_rng(1234)


@pytest.fixture()
def image(pattern_image: Callable[..., np.ndarray]) -> np.ndarray:
    return pattern_image(3, 10, 10)


@pytest.fixture()
def labels() -> np.ndarray:
    return np.arange(100, dtype=np.int64).reshape(10, 10) % 7


class TestPlan:
    def test_test_phase_centres_crop(self, rng: np.random.Generator) -> None:
        t = SegmentationTransformer(
            TransformConfig(crop=FixedSquareCrop(size=4), phase="test")
        )
        plan = t.plan(10, 10, rng, CropGeometry(4, 4))
        assert (plan.h_off, plan.w_off) == (3, 3)
        assert plan.mirror is False

    def test_train_offsets_follow_draw_order(self) -> None:
        t = SegmentationTransformer(TransformConfig(crop=FixedSquareCrop(size=4)))
        plan = t.plan(10, 10, np.random.default_rng(7), CropGeometry(4, 4))

        reference = np.random.default_rng(7)
        assert plan.h_off == int(reference.integers(7))
        assert plan.w_off == int(reference.integers(7))

    def test_train_offsets_stay_in_bounds(self, rng: np.random.Generator) -> None:
        t = SegmentationTransformer(TransformConfig(crop=FixedRectCrop(height=3, width=8)))
        for _ in range(50):
            plan = t.plan(10, 10, rng, CropGeometry(3, 8))
            assert 0 <= plan.h_off <= 7
            assert 0 <= plan.w_off <= 2

    def test_no_geometry_keeps_whole_image(self, rng: np.random.Generator) -> None:
        plan = SegmentationTransformer(TransformConfig()).plan(6, 9, rng)
        assert plan.crop == (6, 9)
        assert (plan.h_off, plan.w_off) == (0, 0)

    def test_crop_larger_than_source(self, rng: np.random.Generator) -> None:
        t = SegmentationTransformer(TransformConfig(crop=FixedSquareCrop(size=4)))
        with pytest.raises(ConfigurationError, match="larger than source"):
            t.plan(3, 3, rng, CropGeometry(4, 4))

    def test_mirror_only_in_train(self, rng: np.random.Generator) -> None:
        t = SegmentationTransformer(TransformConfig(mirror=True, phase="test"))
        assert not any(t.plan(10, 10, rng).mirror for _ in range(20))

    def test_mirror_coin_is_used_in_train(self, rng: np.random.Generator) -> None:
        t = SegmentationTransformer(TransformConfig(mirror=True))
        flips = {t.plan(10, 10, rng).mirror for _ in range(50)}
        assert flips == {True, False}

    def test_short_side_test_phase_uses_midpoint(self, rng: np.random.Generator) -> None:
        t = SegmentationTransformer(
            TransformConfig(
                resize=ShortSideRangeResize(short_side_min=4, short_side_max=6),
                phase="test",
            )
        )
        assert t.plan(10, 20, rng).resized == (5, 10)

    def test_short_side_equal_to_source_keeps_size(
        self, rng: np.random.Generator
    ) -> None:
        t = SegmentationTransformer(
            TransformConfig(resize=ShortSideRangeResize(short_side_min=11, short_side_max=11))
        )
        assert t.plan(11, 25, rng).resized == (11, 25)

    def test_short_side_train_phase_in_range(self, rng: np.random.Generator) -> None:
        t = SegmentationTransformer(
            TransformConfig(resize=ShortSideRangeResize(short_side_min=4, short_side_max=6))
        )
        sides = {min(t.plan(10, 20, rng).resized) for _ in range(60)}
        assert sides == {4, 5, 6}

    def test_fixed_square_resize(self, rng: np.random.Generator) -> None:
        t = SegmentationTransformer(TransformConfig(resize=FixedSquareResize(size=8)))
        assert t.plan(10, 20, rng).resized == (8, 8)


class TestExecute:
    def test_centre_crop_values(self, image: np.ndarray, labels: np.ndarray) -> None:
        t = SegmentationTransformer(
            TransformConfig(crop=FixedSquareCrop(size=4), phase="test")
        )
        result = t.apply(image, labels, np.random.default_rng(0), CropGeometry(4, 4))
        np.testing.assert_array_equal(result.image, image[:, 3:7, 3:7].astype(np.float32))
        np.testing.assert_array_equal(result.labels, labels[3:7, 3:7])
        assert result.image.dtype == np.float32
        assert result.labels is not None and result.labels.dtype == np.int64

    def test_mirror_reverses_image_and_labels_together(
        self, image: np.ndarray, labels: np.ndarray
    ) -> None:
        t = SegmentationTransformer(TransformConfig(mirror=True))
        base = TransformPlan(CropGeometry(10, 10), CropGeometry(4, 6), 2, 3, False)
        plain = t.execute(image, labels, base)
        flipped = t.execute(image, labels, base._replace(mirror=True))
        np.testing.assert_array_equal(flipped.image, plain.image[:, :, ::-1])
        np.testing.assert_array_equal(flipped.labels, plain.labels[:, ::-1])

    def test_mean_file_is_indexed_before_crop(
        self, tmp_path: Path, image: np.ndarray
    ) -> None:
        mean = np.arange(300, dtype=np.float32).reshape(3, 10, 10)
        path = tmp_path / "mean.npy"
        np.save(path, mean)
        t = SegmentationTransformer(
            TransformConfig(
                crop=FixedSquareCrop(size=4),
                normalization=MeanFileNormalization(path=str(path)),
                phase="test",
            )
        )
        result = t.apply(image, None, np.random.default_rng(0), CropGeometry(4, 4))
        expected = image[:, 3:7, 3:7].astype(np.float32) - mean[:, 3:7, 3:7]
        np.testing.assert_allclose(result.image, expected)
        assert result.labels is None

    def test_mean_file_with_leading_batch_axis(
        self, tmp_path: Path, image: np.ndarray
    ) -> None:
        path = tmp_path / "mean.npy"
        np.save(path, np.ones((1, 3, 10, 10), dtype=np.float32))
        t = SegmentationTransformer(
            TransformConfig(normalization=MeanFileNormalization(path=str(path)))
        )
        result = t.apply(image, None, np.random.default_rng(0))
        np.testing.assert_allclose(result.image, image.astype(np.float32) - 1.0)

    def test_mean_file_shape_mismatch(self, tmp_path: Path, image: np.ndarray) -> None:
        path = tmp_path / "mean.npy"
        np.save(path, np.zeros((3, 8, 8), dtype=np.float32))
        t = SegmentationTransformer(
            TransformConfig(normalization=MeanFileNormalization(path=str(path)))
        )
        with pytest.raises(ConfigurationError, match="mean shape"):
            t.apply(image, None, np.random.default_rng(0))

    def test_mean_file_must_be_3d(self, tmp_path: Path) -> None:
        path = tmp_path / "mean.npy"
        np.save(path, np.zeros((10, 10), dtype=np.float32))
        with pytest.raises(ConfigurationError, match=r"\(C, H, W\)"):
            SegmentationTransformer(
                TransformConfig(normalization=MeanFileNormalization(path=str(path)))
            )

    def test_mean_values_per_channel(self, image: np.ndarray) -> None:
        t = SegmentationTransformer(
            TransformConfig(normalization=MeanValuesNormalization(values=(1.0, 2.0, 3.0)))
        )
        result = t.apply(image, None, np.random.default_rng(0))
        for c, m in enumerate((1.0, 2.0, 3.0)):
            np.testing.assert_allclose(result.image[c], image[c].astype(np.float32) - m)

    def test_single_mean_value_broadcasts(self, image: np.ndarray) -> None:
        t = SegmentationTransformer(
            TransformConfig(normalization=MeanValuesNormalization(values=(10.0,)))
        )
        result = t.apply(image, None, np.random.default_rng(0))
        np.testing.assert_allclose(result.image, image.astype(np.float32) - 10.0)

    def test_mean_value_count_mismatch(self, image: np.ndarray) -> None:
        t = SegmentationTransformer(
            TransformConfig(normalization=MeanValuesNormalization(values=(1.0, 2.0)))
        )
        with pytest.raises(ConfigurationError, match="mean_value"):
            t.apply(image, None, np.random.default_rng(0))

    def test_scale_after_mean(self, image: np.ndarray) -> None:
        t = SegmentationTransformer(
            TransformConfig(
                normalization=MeanValuesNormalization(values=(4.0,)), scale=0.5
            )
        )
        result = t.apply(image, None, np.random.default_rng(0))
        np.testing.assert_allclose(result.image, (image.astype(np.float32) - 4.0) * 0.5)

    def test_difficult_labels_remapped(self, image: np.ndarray) -> None:
        grid = np.zeros((10, 10), dtype=np.int64)
        grid[0, 0] = 255
        grid[9, 9] = 5
        t = SegmentationTransformer(TransformConfig(num_classes=20))
        result = t.apply(image, grid, np.random.default_rng(0))
        assert result.labels is not None
        assert result.labels[0, 0] == 21
        assert result.labels[9, 9] == 5

    def test_resize_keeps_labels_categorical(
        self, image: np.ndarray, labels: np.ndarray
    ) -> None:
        t = SegmentationTransformer(TransformConfig(resize=FixedSquareResize(size=17)))
        result = t.apply(image, labels, np.random.default_rng(0))
        assert result.image.shape == (3, 17, 17)
        assert result.labels is not None and result.labels.shape == (17, 17)
        assert set(np.unique(result.labels)) <= set(np.unique(labels))

    def test_label_shape_mismatch(self, image: np.ndarray) -> None:
        t = SegmentationTransformer(TransformConfig())
        with pytest.raises(ConfigurationError, match="does not match"):
            t.apply(image, np.zeros((5, 5), dtype=np.int64), np.random.default_rng(0))

    def test_outputs_are_contiguous(self, image: np.ndarray, labels: np.ndarray) -> None:
        t = SegmentationTransformer(TransformConfig(mirror=True))
        plan = TransformPlan(CropGeometry(10, 10), CropGeometry(10, 10), 0, 0, True)
        result = t.execute(image, labels, plan)
        assert result.image.flags["C_CONTIGUOUS"]
        assert result.labels is not None and result.labels.flags["C_CONTIGUOUS"]


class TestBatchGeometry:
    def test_aspect_ratio_from_first_item(
        self, pattern_image: Callable[..., np.ndarray]
    ) -> None:
        t = SegmentationTransformer(
            TransformConfig(crop=AspectRatioCrop(min_height=8, min_width=8))
        )
        # ratio 2.0 -> height pinned at 8, width floor(8 / 2.0)
        assert t.batch_geometry(pattern_image(3, 20, 10)) == (8, 4)

    def test_fixed_crop(self, image: np.ndarray) -> None:
        t = SegmentationTransformer(TransformConfig(crop=FixedRectCrop(height=2, width=5)))
        assert t.batch_geometry(image) == (2, 5)

    def test_no_crop(self, image: np.ndarray) -> None:
        assert SegmentationTransformer(TransformConfig()).batch_geometry(image) is None


class TestRecordDecoding:
    def test_raw_record(self, make_record: Callable[..., Record]) -> None:
        record = make_record(height=4, width=5)
        arr = record_to_array(record)
        assert arr.shape == (3, 4, 5)
        assert arr.dtype == np.uint8

    def test_float_record(self) -> None:
        record = Record(
            channels=1, height=2, width=2, float_data=[0.5, 1.5, 2.5, 3.5]
        )
        arr = record_to_array(record)
        assert arr.dtype == np.float32
        assert arr.tolist() == [[[0.5, 1.5], [2.5, 3.5]]]

    def test_encoded_record_is_chw(self) -> None:
        hwc = np.zeros((4, 6, 3), dtype=np.uint8)
        hwc[:, :, 1] = 200
        record = Record(
            channels=3, height=4, width=6, data=encode_image(hwc, "PNG"), encoded=True
        )
        arr = record_to_array(record, channels=3)
        assert arr.shape == (3, 4, 6)
        assert np.all(arr[1] == 200)

    def test_encoded_channel_mismatch_is_converted(self) -> None:
        gray = np.full((4, 6, 1), 77, dtype=np.uint8)
        record = Record(
            channels=1, height=4, width=6, data=encode_image(gray, "PNG"), encoded=True
        )
        arr = record_to_array(record, channels=3)
        assert arr.shape == (3, 4, 6)
        assert np.all(arr == 77)

    def test_record_labels_grid(self, make_record: Callable[..., Record]) -> None:
        grid = np.arange(20, dtype=np.int64).reshape(4, 5)
        record = make_record(height=4, width=5, labels=grid)
        np.testing.assert_array_equal(record_labels(record, 4, 5), grid)

    def test_record_without_labels(self, pattern_image: Callable[..., np.ndarray]) -> None:
        record = Record(
            channels=3, height=4, width=4, data=pattern_image(3, 4, 4).tobytes()
        )
        with pytest.raises(ConfigurationError, match="labels"):
            record_labels(record, 4, 4)
