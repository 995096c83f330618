"""Exportable feature content and the change records handed to exporters."""

from __future__ import annotations

import enum
from datetime import date

from pydantic import Field

from roadfeed.models._base import Coordinate, RoadBaseModel, UtcDatetime
from roadfeed.models.objects import LinearLocation

Scalar = int | float | str


class UpdateType(enum.StrEnum):
    ADD = "Add"
    MODIFY = "Modify"
    REMOVE = "Remove"


class Classification(enum.StrEnum):
    """Outcome of diffing a feature against its last export."""

    ADD = "add"
    MODIFY = "modify"
    REMOVE = "remove"
    UNCHANGED = "unchanged"

    @property
    def update_type(self) -> UpdateType | None:
        """Update type to emit, ``None`` for suppressed outcomes."""
        return _UPDATE_TYPES.get(self)


_UPDATE_TYPES = {
    Classification.ADD: UpdateType.ADD,
    Classification.MODIFY: UpdateType.MODIFY,
    Classification.REMOVE: UpdateType.REMOVE,
}


class FeatureContent(RoadBaseModel):
    """Everything a feed consumer needs to reproduce a feature.

    Carries no update type; the same content hashes identically whether it
    is emitted as an Add or a Modify.

    Parameters
    ----------
    id : int
        Feature id (the road object id).
    type_id : int
        Road object type.
    valid_from, valid_to : date
        Validity interval.
    geometry : tuple of linestrings
        One linestring per location, in location order.
    properties : dict[str, Scalar]
        Exported property name to value.
    locations : tuple of LinearLocation
        The linear locations the geometry was derived from.
    references : tuple of str
        Encoded location references, one per location.
    """

    id: int
    type_id: int
    valid_from: date
    valid_to: date | None = None
    geometry: tuple[tuple[Coordinate, ...], ...] = ()
    properties: dict[str, Scalar] = Field(default_factory=dict)
    locations: tuple[LinearLocation, ...] = ()
    references: tuple[str, ...] = ()


class FeatureChange(RoadBaseModel):
    """One Add/Modify/Remove handed to an exporter."""

    feature_id: int
    type_id: int
    update_type: UpdateType
    content: FeatureContent
    content_hash: int


class ExportedFeature(RoadBaseModel):
    """What was last emitted for a feature."""

    feature_id: int
    type_id: int
    content_hash: int
    update_type: UpdateType
    exported_at: UtcDatetime
    content: FeatureContent
