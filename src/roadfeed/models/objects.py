"""Road object models: versioned attribute objects located on the network."""

from __future__ import annotations

from datetime import date
from typing import Annotated, Literal

from pydantic import Field, model_validator

from roadfeed.models._base import RoadBaseModel, RoadEnum, UtcDatetime


class IntegerValue(RoadBaseModel):
    kind: Literal["integer"] = "integer"
    value: int


class DecimalValue(RoadBaseModel):
    kind: Literal["decimal"] = "decimal"
    value: float


class TextValue(RoadBaseModel):
    kind: Literal["text"] = "text"
    value: str


class EnumValue(RoadBaseModel):
    """Value picked from a catalogue enumeration; ``value`` is the enum value id."""

    kind: Literal["enum"] = "enum"
    value: int


PropertyValue = Annotated[
    IntegerValue | DecimalValue | TextValue | EnumValue,
    Field(discriminator="kind"),
]
"""Tagged union of property values, discriminated by ``kind``."""


class Direction(RoadEnum):
    """Direction of a location relative to the link sequence."""

    WITH = "with"
    AGAINST = "against"
    BOTH = "both"
    UNKNOWN = "unknown"


class LinearLocation(RoadBaseModel):
    """Where on a link sequence an object is located.

    Fractions are within ``[0, 1]`` and ``start_position <= end_position``.
    """

    sequence_id: int
    start_position: float = Field(ge=0.0, le=1.0)
    end_position: float = Field(ge=0.0, le=1.0)
    direction: Direction | None = None
    lanes: tuple[str, ...] = ()

    @model_validator(mode="after")
    def _check_order(self) -> LinearLocation:
        if self.start_position > self.end_position:
            raise ValueError(
                f"start_position {self.start_position} is after end_position {self.end_position}"
            )
        return self


class RoadObject(RoadBaseModel):
    """A versioned road object.

    Parameters
    ----------
    type_id : int
        Object type in the source data catalogue.
    id : int
        Object id, unique within its type.
    version : int
        Version number; never decreases for a given object.
    last_modified : datetime
        When the source last changed this version.
    valid_from, valid_to : date
        Validity interval, ``valid_to`` exclusive and ``None`` when open.
    properties : dict[int, PropertyValue]
        Values keyed by property-type id.
    locations : tuple of LinearLocation
        Linear locations on the road network.
    removed : bool
        Tombstone flag set when the source deleted the object.
    """

    type_id: int
    id: int
    version: int
    last_modified: UtcDatetime
    valid_from: date
    valid_to: date | None = None
    properties: dict[int, PropertyValue] = Field(default_factory=dict)
    locations: tuple[LinearLocation, ...] = ()
    removed: bool = False

    @property
    def sequence_ids(self) -> set[int]:
        return {location.sequence_id for location in self.locations}

    def has_expired_by(self, day: date) -> bool:
        """Return ``True`` when the object is tombstoned or its validity ended by *day*."""
        return self.removed or (self.valid_to is not None and self.valid_to <= day)

    def tombstone(self) -> RoadObject:
        """Return a removed copy that no longer occupies any location."""
        return self.model_copy(update={"removed": True, "locations": ()})
