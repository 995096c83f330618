"""Entity kinds kept in sync: link sequences and one kind per object type.

Each kind knows how to read its entities and events from the source and
how to stage them in a write batch. The coordinators are generic over
kinds and own paging, checkpoints, cursors and concurrency.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Mapping, MutableMapping, Sequence
from datetime import datetime
from typing import Protocol

from roadfeed._api import SourceApi
from roadfeed.models.events import ChangeKind, LinkSequenceEventPage, ObjectEventPage
from roadfeed.models.network import RoadLinkSequence
from roadfeed.models.objects import RoadObject
from roadfeed.storage import keys
from roadfeed.storage.batch import WriteBatch
from roadfeed.storage.ledger import ChangeLedger
from roadfeed.storage.network import RoadNetworkRepository
from roadfeed.storage.objects import ObjectUpdate, RoadObjectRepository
from roadfeed.sync.changes import collapse_link_sequence_events, collapse_object_events

_logger = logging.getLogger(__name__)

EventPage = LinkSequenceEventPage | ObjectEventPage


class EntityKind(Protocol):
    """One independently synchronized stream of entities."""

    @property
    def name(self) -> str:
        """Settings name, e.g. ``"link_sequences"`` or ``"objects_105"``."""
        ...

    async def stream(self, start: int, end: int | None, page_size: int) -> Sequence[RoadLinkSequence | RoadObject]:
        ...

    def store_page(self, entities: Sequence[RoadLinkSequence | RoadObject], now: datetime, batch: WriteBatch) -> int:
        ...

    async def latest_event_id(self, as_of: datetime) -> int | None:
        ...

    async def events_since(self, cursor: int, page_size: int) -> EventPage:
        ...

    def collapse(self, page: EventPage, bound: int, into: MutableMapping[int, ChangeKind]) -> int | None:
        """Merge events up to *bound* into *into*; return the last event id taken."""
        ...

    async def fetch_latest(self, ids: Sequence[int]) -> Mapping[int, RoadLinkSequence | RoadObject]:
        ...

    def stage_changes(
        self,
        changes: Mapping[int, ChangeKind],
        fetched: Mapping[int, RoadLinkSequence | RoadObject],
        now: datetime,
        batch: WriteBatch,
    ) -> Mapping[int, ChangeKind]:
        """Write entities and dirty marks; return the change kinds actually recorded."""
        ...


def _last_event_id(event_ids: Iterable[int]) -> int | None:
    return max(event_ids, default=None)


class LinkSequenceKind:
    name = keys.LINK_SEQUENCES_KIND

    def __init__(
        self,
        api: SourceApi,
        network: RoadNetworkRepository,
        ledger: ChangeLedger,
        limiter: asyncio.Semaphore,
    ) -> None:
        self._api = api
        self._network = network
        self._ledger = ledger
        self._limiter = limiter

    def __repr__(self) -> str:
        return f"LinkSequenceKind({self.name})"

    async def stream(self, start: int, end: int | None, page_size: int) -> Sequence[RoadLinkSequence]:
        async with self._limiter:
            return await self._api.stream_link_sequences(start, end, page_size)

    def store_page(self, entities: Sequence[RoadLinkSequence | RoadObject], now: datetime, batch: WriteBatch) -> int:
        sequences = [entity for entity in entities if isinstance(entity, RoadLinkSequence)]
        return self._network.insert_many(sequences, today=now.date(), batch=batch)

    async def latest_event_id(self, as_of: datetime) -> int | None:
        async with self._limiter:
            return await self._api.latest_link_sequence_event_id(as_of)

    async def events_since(self, cursor: int, page_size: int) -> LinkSequenceEventPage:
        async with self._limiter:
            return await self._api.link_sequence_events_since(cursor, page_size)

    def collapse(self, page: EventPage, bound: int, into: MutableMapping[int, ChangeKind]) -> int | None:
        assert isinstance(page, LinkSequenceEventPage)  # noqa: S101
        taken = [event for event in page.events if event.event_id <= bound]
        collapse_link_sequence_events(taken, into)
        return _last_event_id(event.event_id for event in taken)

    async def fetch_latest(self, ids: Sequence[int]) -> dict[int, RoadLinkSequence]:
        async with self._limiter:
            sequences = await self._api.fetch_link_sequences(ids)
        return {sequence.id: sequence for sequence in sequences}

    def stage_changes(
        self,
        changes: Mapping[int, ChangeKind],
        fetched: Mapping[int, RoadLinkSequence | RoadObject],
        now: datetime,
        batch: WriteBatch,
    ) -> Mapping[int, ChangeKind]:
        updates: dict[int, RoadLinkSequence | None] = {}
        recorded: dict[int, ChangeKind] = {}
        for sequence_id in changes:
            sequence = fetched.get(sequence_id)
            if isinstance(sequence, RoadLinkSequence):
                updates[sequence_id] = sequence
                recorded[sequence_id] = ChangeKind.MODIFIED
            else:
                _logger.info("Link sequence %d no longer exists at the source, deleting", sequence_id)
                updates[sequence_id] = None
                recorded[sequence_id] = ChangeKind.DELETED
        self._network.update_many(updates, today=now.date(), batch=batch)
        self._ledger.mark_link_sequences_dirty(recorded, now, batch=batch)
        return recorded


class ObjectTypeKind:
    def __init__(
        self,
        type_id: int,
        api: SourceApi,
        objects: RoadObjectRepository,
        ledger: ChangeLedger,
        limiter: asyncio.Semaphore,
    ) -> None:
        self.type_id = type_id
        self._api = api
        self._objects = objects
        self._ledger = ledger
        self._limiter = limiter

    @property
    def name(self) -> str:
        return keys.object_kind(self.type_id)

    def __repr__(self) -> str:
        return f"ObjectTypeKind({self.name})"

    async def stream(self, start: int, end: int | None, page_size: int) -> Sequence[RoadObject]:
        async with self._limiter:
            return await self._api.stream_objects(self.type_id, start, end, page_size)

    def store_page(self, entities: Sequence[RoadLinkSequence | RoadObject], now: datetime, batch: WriteBatch) -> int:
        objects = [entity for entity in entities if isinstance(entity, RoadObject)]
        self._objects.insert_many(objects, batch=batch)
        return len(objects)

    async def latest_event_id(self, as_of: datetime) -> int | None:
        async with self._limiter:
            return await self._api.latest_object_event_id(self.type_id, as_of)

    async def events_since(self, cursor: int, page_size: int) -> ObjectEventPage:
        async with self._limiter:
            return await self._api.object_events_since(self.type_id, cursor, page_size)

    def collapse(self, page: EventPage, bound: int, into: MutableMapping[int, ChangeKind]) -> int | None:
        assert isinstance(page, ObjectEventPage)  # noqa: S101
        taken = [event for event in page.events if event.event_id <= bound]
        collapse_object_events(taken, into)
        return _last_event_id(event.event_id for event in taken)

    async def fetch_latest(self, ids: Sequence[int]) -> dict[int, RoadObject]:
        if not ids:
            return {}
        async with self._limiter:
            objects = await self._api.fetch_objects(self.type_id, ids)
        return {obj.id: obj for obj in objects}

    def stage_changes(
        self,
        changes: Mapping[int, ChangeKind],
        fetched: Mapping[int, RoadLinkSequence | RoadObject],
        now: datetime,
        batch: WriteBatch,
    ) -> Mapping[int, ChangeKind]:
        updates: list[ObjectUpdate] = []
        recorded: dict[int, ChangeKind] = {}
        for object_id, kind in changes.items():
            if kind is ChangeKind.DELETED:
                updates.append(ObjectUpdate(object_id, ChangeKind.DELETED))
                recorded[object_id] = ChangeKind.DELETED
                continue
            obj = fetched.get(object_id)
            if not isinstance(obj, RoadObject):
                _logger.warning(
                    "Object %d/%d marked %s is missing at the source, treating as deleted",
                    self.type_id,
                    object_id,
                    kind,
                )
                updates.append(ObjectUpdate(object_id, ChangeKind.DELETED))
                recorded[object_id] = ChangeKind.DELETED
                continue
            updates.append(ObjectUpdate(object_id, kind, obj))
            recorded[object_id] = kind
        self._objects.apply_updates(self.type_id, updates, batch=batch)
        self._ledger.mark_objects_dirty(self.type_id, recorded, now, batch=batch)
        return recorded
