"""Base model and enum for road data payloads.

Every model inherits from :class:`RoadBaseModel` which provides:

* ``alias_generator=to_camel`` so camelCase API keys map
  automatically to snake_case fields, while stored records written
  with either spelling still validate (``populate_by_name``).
* Frozen instances, so models can be shared between concurrent tasks.

Enums the source API sends as open sets inherit from
:class:`RoadEnum`, which resolves unknown values to ``UNKNOWN``
instead of raising ``ValueError``.
"""

from __future__ import annotations

import enum
from datetime import UTC, datetime
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict
from pydantic.alias_generators import to_camel

Coordinate = tuple[float, float]
"""Planar ``(x, y)`` coordinate."""


def ensure_utc(value: Any) -> Any:
    """Attach UTC to naive datetimes; leave everything else to pydantic."""
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


UtcDatetime = Annotated[datetime, BeforeValidator(ensure_utc)]
"""Datetime that is always timezone aware (naive input is taken as UTC)."""


class RoadEnum(enum.StrEnum):
    """Base for open string enums sent by the source API.

    Every subclass **must** define ``UNKNOWN``.
    """

    @classmethod
    def _missing_(cls, value: object) -> RoadEnum:
        unknown: RoadEnum = cls["UNKNOWN"]
        return unknown


class RoadBaseModel(BaseModel):
    """Base for road data models."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )
