"""Record schemas."""

from seg_pipeline.schemas.record import Record

__all__ = ["Record"]
