"""Binary key layouts.

All integers are big-endian so that bytewise key order equals numeric
order, which keeps prefix scans sorted by id.

=====================  ===========================================
link sequence          ``>Q sequence_id``
road object            ``0x00 | >I type_id | >Q object_id``
location index         ``0x01 | >I type_id | >Q sequence_id | >Q object_id``
exported feature       ``>I type_id | >Q feature_id``
dirty object           ``>I type_id | >Q object_id``
dirty link sequence    ``>Q sequence_id``
=====================  ===========================================
"""

from __future__ import annotations

import struct

OBJECT_TAG = 0x00
LOCATION_TAG = 0x01

_ID = struct.Struct(">Q")
_TYPE = struct.Struct(">I")
_TYPE_ID = struct.Struct(">IQ")
_TAGGED_TYPE = struct.Struct(">BI")
_OBJECT = struct.Struct(">BIQ")
_LOCATION_SEQUENCE = struct.Struct(">BIQ")
_LOCATION = struct.Struct(">BIQQ")


def link_sequence_key(sequence_id: int) -> bytes:
    return _ID.pack(sequence_id)


def decode_link_sequence_key(key: bytes) -> int:
    (sequence_id,) = _ID.unpack(key)
    return int(sequence_id)


def object_key(type_id: int, object_id: int) -> bytes:
    return _OBJECT.pack(OBJECT_TAG, type_id, object_id)


def object_type_prefix(type_id: int) -> bytes:
    return _TAGGED_TYPE.pack(OBJECT_TAG, type_id)


def decode_object_key(key: bytes) -> tuple[int, int]:
    tag, type_id, object_id = _OBJECT.unpack(key)
    if tag != OBJECT_TAG:
        raise ValueError(f"Not an object key: {key.hex()}")
    return int(type_id), int(object_id)


def location_key(type_id: int, sequence_id: int, object_id: int) -> bytes:
    return _LOCATION.pack(LOCATION_TAG, type_id, sequence_id, object_id)


def location_sequence_prefix(type_id: int, sequence_id: int) -> bytes:
    """Prefix of every index entry for objects of *type_id* on *sequence_id*."""
    return _LOCATION_SEQUENCE.pack(LOCATION_TAG, type_id, sequence_id)


def location_type_prefix(type_id: int) -> bytes:
    return _TAGGED_TYPE.pack(LOCATION_TAG, type_id)


def decode_location_key(key: bytes) -> tuple[int, int, int]:
    """Return ``(type_id, sequence_id, object_id)``."""
    tag, type_id, sequence_id, object_id = _LOCATION.unpack(key)
    if tag != LOCATION_TAG:
        raise ValueError(f"Not a location index key: {key.hex()}")
    return int(type_id), int(sequence_id), int(object_id)


def typed_id_key(type_id: int, entity_id: int) -> bytes:
    """Key for per-type records (exported features, dirty objects)."""
    return _TYPE_ID.pack(type_id, entity_id)


def type_prefix(type_id: int) -> bytes:
    return _TYPE.pack(type_id)


def decode_typed_id_key(key: bytes) -> tuple[int, int]:
    type_id, entity_id = _TYPE_ID.unpack(key)
    return int(type_id), int(entity_id)


# ----------------------------------------------------------------------
# Settings keys (UTF-8 strings)
# ----------------------------------------------------------------------

LINK_SEQUENCES_KIND = "link_sequences"


def object_kind(type_id: int) -> str:
    """Settings name of the entity kind for objects of *type_id*."""
    return f"objects_{type_id}"


def range_last_id_key(kind: str, partition: int) -> str:
    return f"{kind}_backfill_range_{partition}_last_id"


def range_completed_key(kind: str, partition: int) -> str:
    return f"{kind}_backfill_range_{partition}_completed"


def backfill_partitions_key(kind: str) -> str:
    return f"{kind}_backfill_partitions"


def backfill_started_key(kind: str) -> str:
    return f"{kind}_backfill_started"


def backfill_completed_key(kind: str) -> str:
    return f"{kind}_backfill_completed"


def last_event_id_key(kind: str) -> str:
    return f"{kind}_last_event_id"


def last_update_check_key(type_id: int) -> str:
    return f"{object_kind(type_id)}_last_update_check"


def last_snapshot_key(type_id: int) -> str:
    return f"{object_kind(type_id)}_last_snapshot"
