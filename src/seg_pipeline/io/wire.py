"""Record wire encoding using orjson.

orjson has no bytes type, so the ``data`` payload travels base64 encoded.
"""

from __future__ import annotations

import base64

import orjson

from seg_pipeline.schemas.record import Record


def serialize_record(record: Record) -> bytes:
    """Encode a record to the bytes stored as a store value."""
    dump = record.model_dump()
    dump["data"] = base64.b64encode(record.data).decode("ascii")
    return orjson.dumps(dump)


def parse_record(raw: bytes) -> Record:
    """Decode a store value back into a validated Record."""
    dump = orjson.loads(raw)
    dump["data"] = base64.b64decode(dump.get("data", ""))
    return Record.model_validate(dump)
