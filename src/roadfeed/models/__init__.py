"""Data models for road network data and exported features."""

from roadfeed.models._base import Coordinate, RoadBaseModel, RoadEnum, UtcDatetime
from roadfeed.models.events import (
    ChangeKind,
    DirtyLinkSequence,
    DirtyObjectChange,
    LinkSequenceEvent,
    LinkSequenceEventPage,
    ObjectEvent,
    ObjectEventPage,
    ObjectEventType,
)
from roadfeed.models.feature import (
    Classification,
    ExportedFeature,
    FeatureChange,
    FeatureContent,
    Scalar,
    UpdateType,
)
from roadfeed.models.network import RoadLink, RoadLinkSequence
from roadfeed.models.objects import (
    DecimalValue,
    Direction,
    EnumValue,
    IntegerValue,
    LinearLocation,
    PropertyValue,
    RoadObject,
    TextValue,
)

__all__ = [
    "ChangeKind",
    "Classification",
    "Coordinate",
    "DecimalValue",
    "Direction",
    "DirtyLinkSequence",
    "DirtyObjectChange",
    "EnumValue",
    "ExportedFeature",
    "FeatureChange",
    "FeatureContent",
    "IntegerValue",
    "LinearLocation",
    "LinkSequenceEvent",
    "LinkSequenceEventPage",
    "ObjectEvent",
    "ObjectEventPage",
    "ObjectEventType",
    "PropertyValue",
    "RoadBaseModel",
    "RoadEnum",
    "RoadLink",
    "RoadLinkSequence",
    "RoadObject",
    "Scalar",
    "TextValue",
    "UpdateType",
    "UtcDatetime",
]
