"""Change events from the source API and the change kinds derived from them."""

from __future__ import annotations

import enum

from roadfeed.models._base import RoadBaseModel, RoadEnum, UtcDatetime


class ChangeKind(enum.StrEnum):
    """How an entity changed since it was last exported."""

    NEW = "new"
    MODIFIED = "modified"
    DELETED = "deleted"

    def merge(self, other: ChangeKind) -> ChangeKind:
        """Combine two kinds for the same id.

        DELETED wins over NEW, which wins over MODIFIED. The result does
        not depend on the order the kinds were observed in.
        """
        return self if _PRECEDENCE[self] >= _PRECEDENCE[other] else other


_PRECEDENCE = {
    ChangeKind.MODIFIED: 0,
    ChangeKind.NEW: 1,
    ChangeKind.DELETED: 2,
}


class ObjectEventType(RoadEnum):
    """Event types the source publishes for road objects."""

    IMPORTED = "ObjectImported"
    VERSION_CREATED = "VersionCreated"
    VERSION_CORRECTED = "VersionCorrected"
    VERSION_REMOVED = "VersionRemoved"
    UNKNOWN = "Unknown"


class ObjectEvent(RoadBaseModel):
    event_id: int
    object_id: int
    version: int
    event_type: ObjectEventType = ObjectEventType.UNKNOWN


class LinkSequenceEvent(RoadBaseModel):
    event_id: int
    sequence_id: int


class ObjectEventPage(RoadBaseModel):
    """A page of object events; ``next_cursor`` is ``None`` on the last page."""

    events: tuple[ObjectEvent, ...] = ()
    next_cursor: int | None = None


class LinkSequenceEventPage(RoadBaseModel):
    events: tuple[LinkSequenceEvent, ...] = ()
    next_cursor: int | None = None


class DirtyObjectChange(RoadBaseModel):
    """Ledger entry for a changed object awaiting export."""

    object_id: int
    kind: ChangeKind
    marked_at: UtcDatetime


class DirtyLinkSequence(RoadBaseModel):
    sequence_id: int
    marked_at: UtcDatetime
