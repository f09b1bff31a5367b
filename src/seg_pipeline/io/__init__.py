"""Record storage, wire encoding and image codec."""

from seg_pipeline.io.store import Cursor, RecordStore, Transaction, open_store
from seg_pipeline.io.wire import parse_record, serialize_record

__all__ = [
    "Cursor",
    "RecordStore",
    "Transaction",
    "open_store",
    "parse_record",
    "serialize_record",
]
