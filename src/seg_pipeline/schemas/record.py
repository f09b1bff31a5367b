"""Raw record schema as stored in the key-ordered record store."""

from __future__ import annotations

from pydantic import BaseModel, Field, PositiveInt, model_validator


class Record(BaseModel, frozen=True):
    """One stored image with an optional per-pixel label grid.

    ``data`` holds either raw CHW uint8 pixels or codec-encoded bytes
    (``encoded=True``); ``float_data`` holds raw CHW float samples instead.
    ``labels`` is row-major, one integer per pixel.
    """

    channels: PositiveInt
    height: PositiveInt
    width: PositiveInt
    data: bytes = b""
    float_data: list[float] = Field(default_factory=list)
    label: int = 0
    labels: list[int] = Field(default_factory=list)
    encoded: bool = False

    @model_validator(mode="after")
    def _payload_consistent(self) -> Record:
        if bool(self.data) == bool(self.float_data):
            raise ValueError("exactly one of data / float_data must be populated")
        if self.encoded and not self.data:
            raise ValueError("encoded records must carry data bytes")
        expected = self.channels * self.height * self.width
        if self.data and not self.encoded and len(self.data) != expected:
            raise ValueError(
                f"raw data has {len(self.data)} bytes, expected {expected} "
                f"({self.channels}x{self.height}x{self.width})"
            )
        if self.float_data and len(self.float_data) != expected:
            raise ValueError(
                f"float_data has {len(self.float_data)} samples, expected {expected}"
            )
        if self.labels and len(self.labels) != self.height * self.width:
            raise ValueError(
                f"labels has {len(self.labels)} entries, expected "
                f"{self.height * self.width}"
            )
        return self

    @property
    def aspect_ratio(self) -> float:
        return self.height / self.width

    @property
    def has_labels(self) -> bool:
        return len(self.labels) > 0
