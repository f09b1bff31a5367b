"""Pydantic frozen configuration models for seg_pipeline.

Each transform axis (resize, crop, normalization) is a tagged union keyed on
``mode``, so only one option per axis can ever be selected.  The flat option
surface used by dataset tooling goes through ``TransformConfig.from_options``,
which rejects contradictory combinations with ``ConfigurationError``.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Annotated, Literal

from pydantic import BaseModel, Field, PositiveInt, model_validator

from seg_pipeline.errors import ConfigurationError

Phase = Literal["train", "test"]


# ---------------------------------------------------------------------------
# Resize modes
# ---------------------------------------------------------------------------
class NoResize(BaseModel, frozen=True):
    mode: Literal["none"] = "none"


class FixedSquareResize(BaseModel, frozen=True):
    """Resize every image to ``size x size`` regardless of aspect ratio."""

    mode: Literal["fixed_square"] = "fixed_square"
    size: PositiveInt


class ShortSideRangeResize(BaseModel, frozen=True):
    """Scale so the shorter side is drawn uniformly from ``[min, max]``."""

    mode: Literal["short_side_range"] = "short_side_range"
    short_side_min: PositiveInt
    short_side_max: PositiveInt

    @model_validator(mode="after")
    def _ordered(self) -> ShortSideRangeResize:
        if self.short_side_min > self.short_side_max:
            raise ValueError(
                f"short_side_min ({self.short_side_min}) must not exceed "
                f"short_side_max ({self.short_side_max})"
            )
        return self


ResizeMode = Annotated[
    NoResize | FixedSquareResize | ShortSideRangeResize,
    Field(discriminator="mode"),
]


# ---------------------------------------------------------------------------
# Crop modes
# ---------------------------------------------------------------------------
class NoCrop(BaseModel, frozen=True):
    mode: Literal["none"] = "none"


class FixedSquareCrop(BaseModel, frozen=True):
    mode: Literal["fixed_square"] = "fixed_square"
    size: PositiveInt


class FixedRectCrop(BaseModel, frozen=True):
    mode: Literal["fixed_rect"] = "fixed_rect"
    height: PositiveInt
    width: PositiveInt


class AspectRatioCrop(BaseModel, frozen=True):
    """Crop shape derived per batch from the first item's aspect ratio.

    Items should be pre-sorted by aspect ratio so the first item of each
    batch is representative of the rest.
    """

    mode: Literal["aspect_ratio"] = "aspect_ratio"
    min_height: PositiveInt
    min_width: PositiveInt
    height_multiple: PositiveInt = 1
    width_multiple: PositiveInt = 1

    @model_validator(mode="after")
    def _multiples_fit(self) -> AspectRatioCrop:
        if self.min_height // self.height_multiple == 0:
            raise ValueError(
                f"min_height ({self.min_height}) is smaller than "
                f"height_multiple ({self.height_multiple})"
            )
        if self.min_width // self.width_multiple == 0:
            raise ValueError(
                f"min_width ({self.min_width}) is smaller than "
                f"width_multiple ({self.width_multiple})"
            )
        return self


CropMode = Annotated[
    NoCrop | FixedSquareCrop | FixedRectCrop | AspectRatioCrop,
    Field(discriminator="mode"),
]


# ---------------------------------------------------------------------------
# Normalization modes
# ---------------------------------------------------------------------------
class NoNormalization(BaseModel, frozen=True):
    mode: Literal["none"] = "none"


class MeanFileNormalization(BaseModel, frozen=True):
    """Subtract a per-pixel mean stored as a ``(C, H, W)`` ``.npy`` array."""

    mode: Literal["mean_file"] = "mean_file"
    path: str


class MeanValuesNormalization(BaseModel, frozen=True):
    """Subtract one scalar per channel (a single value is broadcast)."""

    mode: Literal["mean_values"] = "mean_values"
    values: tuple[float, ...] = Field(min_length=1)


NormalizationMode = Annotated[
    NoNormalization | MeanFileNormalization | MeanValuesNormalization,
    Field(discriminator="mode"),
]


# ---------------------------------------------------------------------------
# Transform / pipeline configuration
# ---------------------------------------------------------------------------
class TransformConfig(BaseModel, frozen=True):
    """Configuration for SegmentationTransformer.

    ``num_classes`` counts the foreground classes (background is 0); when set,
    label value ``difficult_value`` is remapped to ``num_classes + 1``.
    """

    resize: ResizeMode = Field(default_factory=NoResize)
    crop: CropMode = Field(default_factory=NoCrop)
    normalization: NormalizationMode = Field(default_factory=NoNormalization)
    mirror: bool = False
    scale: float = 1.0
    phase: Phase = "train"
    num_classes: PositiveInt | None = None
    difficult_value: int = 255

    @classmethod
    def from_options(
        cls,
        *,
        resize_size: int = 0,
        resize_short_side_min: int = 0,
        resize_short_side_max: int = 0,
        crop_size: int = 0,
        crop_height: int = 0,
        crop_width: int = 0,
        mirror: bool = False,
        mean_file: str | None = None,
        mean_value: Sequence[float] = (),
        scale: float = 1.0,
        min_height: int = 0,
        min_width: int = 0,
        height_multiple: int = 1,
        width_multiple: int = 1,
        phase: Phase = "train",
        num_classes: int | None = None,
    ) -> TransformConfig:
        """Build a TransformConfig from flat data-layer style options.

        Zero means "not set" for the integer options.

        Raises:
            ConfigurationError: If options on the same axis contradict each other.
        """
        has_short_side = resize_short_side_min > 0 or resize_short_side_max > 0
        if resize_size > 0 and has_short_side:
            raise ConfigurationError(
                "resize_size and resize_short_side_min/max can not both be set"
            )
        resize: NoResize | FixedSquareResize | ShortSideRangeResize
        if resize_size > 0:
            resize = FixedSquareResize(size=resize_size)
        elif has_short_side:
            if resize_short_side_min <= 0 or resize_short_side_max <= 0:
                raise ConfigurationError(
                    "resize_short_side_min and resize_short_side_max must be set together"
                )
            if resize_short_side_min > resize_short_side_max:
                raise ConfigurationError(
                    f"resize_short_side_min ({resize_short_side_min}) exceeds "
                    f"resize_short_side_max ({resize_short_side_max})"
                )
            resize = ShortSideRangeResize(
                short_side_min=resize_short_side_min,
                short_side_max=resize_short_side_max,
            )
        else:
            resize = NoResize()

        crop: NoCrop | FixedSquareCrop | FixedRectCrop | AspectRatioCrop
        if crop_size > 0:
            if crop_height or crop_width:
                raise ConfigurationError(
                    "crop_size and crop_height/crop_width can not both be non-zero"
                )
            crop = FixedSquareCrop(size=crop_size)
        elif crop_height or crop_width:
            if crop_height <= 0 or crop_width <= 0:
                raise ConfigurationError(
                    "crop_height and crop_width must both be positive"
                )
            crop = FixedRectCrop(height=crop_height, width=crop_width)
        elif min_height > 0 or min_width > 0:
            if min_height <= 0 or min_width <= 0:
                raise ConfigurationError(
                    "min_height and min_width must both be positive"
                )
            if height_multiple <= 0 or width_multiple <= 0:
                raise ConfigurationError(
                    "height_multiple and width_multiple must be positive"
                )
            if min_height < height_multiple or min_width < width_multiple:
                raise ConfigurationError(
                    f"min size ({min_height} x {min_width}) rounds to zero with "
                    f"multiples ({height_multiple}, {width_multiple})"
                )
            crop = AspectRatioCrop(
                min_height=min_height,
                min_width=min_width,
                height_multiple=height_multiple,
                width_multiple=width_multiple,
            )
        else:
            crop = NoCrop()

        normalization: NoNormalization | MeanFileNormalization | MeanValuesNormalization
        if mean_file is not None and len(mean_value) > 0:
            raise ConfigurationError(
                "Cannot specify mean_file and mean_value at the same time"
            )
        if mean_file is not None:
            normalization = MeanFileNormalization(path=mean_file)
        elif len(mean_value) > 0:
            normalization = MeanValuesNormalization(values=tuple(mean_value))
        else:
            normalization = NoNormalization()

        return cls(
            resize=resize,
            crop=crop,
            normalization=normalization,
            mirror=mirror,
            scale=scale,
            phase=phase,
            num_classes=num_classes,
        )


class PipelineConfig(BaseModel, frozen=True):
    """Configuration for PrefetchPipeline.

    All fields are validated at construction time. Frozen: no mutation after
    creation.
    """

    source: str
    backend: Literal["sqlite"] = "sqlite"
    batch_size: PositiveInt = 8
    rand_skip: int = Field(default=0, ge=0)
    output_labels: bool = True
    seed: int | None = None
    transform: TransformConfig = Field(default_factory=TransformConfig)


class DataModuleConfig(BaseModel, frozen=True):
    """Configuration for SegmentationDataModule.

    ``batches_per_epoch`` of ``None`` means one pass over the train store,
    rounded up to whole batches.
    """

    train: PipelineConfig
    val: PipelineConfig | None = None
    batches_per_epoch: PositiveInt | None = None
    val_batches: PositiveInt | None = None

    @model_validator(mode="after")
    def _phases_match_roles(self) -> DataModuleConfig:
        """A validation pipeline must not apply training-time randomness."""
        if self.val is not None and self.val.transform.phase != "test":
            raise ValueError("val pipeline must use phase='test'")
        return self
