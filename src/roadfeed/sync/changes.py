"""Collapse source events into one change kind per entity id."""

from __future__ import annotations

from collections.abc import Iterable, MutableMapping

from roadfeed.models.events import ChangeKind, LinkSequenceEvent, ObjectEvent, ObjectEventType


def classify_object_event(event: ObjectEvent) -> ChangeKind:
    """Map a single object event to a change kind.

    An import, or the creation of version 1, is a new object. Removing any
    version deletes the object. Everything else modifies it.
    """
    if event.event_type is ObjectEventType.IMPORTED:
        return ChangeKind.NEW
    if event.event_type is ObjectEventType.VERSION_CREATED and event.version == 1:
        return ChangeKind.NEW
    if event.event_type is ObjectEventType.VERSION_REMOVED:
        return ChangeKind.DELETED
    return ChangeKind.MODIFIED


def merge_change(changes: MutableMapping[int, ChangeKind], entity_id: int, kind: ChangeKind) -> None:
    existing = changes.get(entity_id)
    changes[entity_id] = kind if existing is None else existing.merge(kind)


def collapse_object_events(
    events: Iterable[ObjectEvent],
    into: MutableMapping[int, ChangeKind] | None = None,
) -> MutableMapping[int, ChangeKind]:
    """Merge *events* into a per-id change map; the result is order independent."""
    changes: MutableMapping[int, ChangeKind] = {} if into is None else into
    for event in events:
        merge_change(changes, event.object_id, classify_object_event(event))
    return changes


def collapse_link_sequence_events(
    events: Iterable[LinkSequenceEvent],
    into: MutableMapping[int, ChangeKind] | None = None,
) -> MutableMapping[int, ChangeKind]:
    """Every link sequence event means "refetch this sequence"."""
    changes: MutableMapping[int, ChangeKind] = {} if into is None else into
    for event in events:
        merge_change(changes, event.sequence_id, ChangeKind.MODIFIED)
    return changes
