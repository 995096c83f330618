"""Content hash of exportable features.

The hash covers a canonical big-endian encoding of the feature content.
Mappings are encoded in sorted key order and every variable-length field
is length prefixed, so equal content always encodes to equal bytes. The
update type is not part of :class:`FeatureContent` and therefore never
influences the hash.
"""

from __future__ import annotations

import struct
from datetime import date

import xxhash

from roadfeed.models.feature import FeatureContent, Scalar

_U8 = struct.Struct(">B")
_U32 = struct.Struct(">I")
_I64 = struct.Struct(">q")
_U64 = struct.Struct(">Q")
_F64 = struct.Struct(">d")

_TAG_INT = b"i"
_TAG_FLOAT = b"f"
_TAG_TEXT = b"s"


class _CanonicalWriter:
    def __init__(self) -> None:
        self._buf = bytearray()

    def u8(self, value: int) -> None:
        self._buf += _U8.pack(value)

    def u32(self, value: int) -> None:
        self._buf += _U32.pack(value)

    def i64(self, value: int) -> None:
        self._buf += _I64.pack(value)

    def u64(self, value: int) -> None:
        self._buf += _U64.pack(value)

    def f64(self, value: float) -> None:
        # -0.0 and 0.0 describe the same position.
        self._buf += _F64.pack(value + 0.0)

    def text(self, value: str) -> None:
        encoded = value.encode("utf-8")
        self.u32(len(encoded))
        self._buf += encoded

    def optional_date(self, value: date | None) -> None:
        if value is None:
            self.u8(0)
        else:
            self.u8(1)
            self.u32(value.toordinal())

    def scalar(self, value: Scalar) -> None:
        if isinstance(value, bool):
            raise TypeError("Boolean properties are not supported")
        if isinstance(value, int):
            self._buf += _TAG_INT
            self.i64(value)
        elif isinstance(value, float):
            self._buf += _TAG_FLOAT
            self.f64(value)
        else:
            self._buf += _TAG_TEXT
            self.text(value)

    def getvalue(self) -> bytes:
        return bytes(self._buf)


def canonical_bytes(content: FeatureContent) -> bytes:
    """Encode *content* deterministically."""
    writer = _CanonicalWriter()
    writer.u64(content.id)
    writer.u32(content.type_id)
    writer.u32(content.valid_from.toordinal())
    writer.optional_date(content.valid_to)

    writer.u32(len(content.geometry))
    for line in content.geometry:
        writer.u32(len(line))
        for x, y in line:
            writer.f64(x)
            writer.f64(y)

    writer.u32(len(content.properties))
    for name in sorted(content.properties):
        writer.text(name)
        writer.scalar(content.properties[name])

    writer.u32(len(content.locations))
    for location in content.locations:
        writer.u64(location.sequence_id)
        writer.f64(location.start_position)
        writer.f64(location.end_position)
        writer.text(location.direction.value if location.direction is not None else "")
        writer.u32(len(location.lanes))
        for lane in location.lanes:
            writer.text(lane)

    writer.u32(len(content.references))
    for reference in content.references:
        writer.text(reference)
    return writer.getvalue()


def content_hash(content: FeatureContent, seed: int = 0) -> int:
    """Seeded 64-bit xxh3 hash of the canonical encoding of *content*."""
    return int(xxhash.xxh3_64_intdigest(canonical_bytes(content), seed=seed))
