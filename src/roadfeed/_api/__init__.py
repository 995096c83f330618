"""Source road data API: protocol and HTTP implementation."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Protocol

from roadfeed._api import network as _network_api
from roadfeed._api import objects as _objects_api
from roadfeed._transport import Transport
from roadfeed.models.events import LinkSequenceEventPage, ObjectEventPage
from roadfeed.models.network import RoadLinkSequence
from roadfeed.models.objects import RoadObject


class SourceApi(Protocol):
    """What the synchronization engine needs from the source.

    Range reads return entities with ids in ``(start, end]`` in ascending id
    order (``end=None`` is unbounded). Event reads return events with ids
    greater than the cursor.
    """

    async def stream_link_sequences(self, start: int, end: int | None, page_size: int) -> list[RoadLinkSequence]:
        ...

    async def fetch_link_sequences(self, ids: Sequence[int]) -> list[RoadLinkSequence]:
        ...

    async def link_sequence_events_since(self, cursor: int, page_size: int) -> LinkSequenceEventPage:
        ...

    async def latest_link_sequence_event_id(self, as_of: datetime) -> int | None:
        ...

    async def stream_objects(self, type_id: int, start: int, end: int | None, page_size: int) -> list[RoadObject]:
        ...

    async def fetch_objects(self, type_id: int, ids: Sequence[int]) -> list[RoadObject]:
        ...

    async def object_events_since(self, type_id: int, cursor: int, page_size: int) -> ObjectEventPage:
        ...

    async def latest_object_event_id(self, type_id: int, as_of: datetime) -> int | None:
        ...


class HttpSourceApi:
    """:class:`SourceApi` over an HTTP :class:`~roadfeed._transport.Transport`."""

    def __init__(self, transport: Transport) -> None:
        self._transport = transport

    async def stream_link_sequences(self, start: int, end: int | None, page_size: int) -> list[RoadLinkSequence]:
        return await _network_api.stream_link_sequences(self._transport, start, end, page_size)

    async def fetch_link_sequences(self, ids: Sequence[int]) -> list[RoadLinkSequence]:
        return await _network_api.fetch_link_sequences(self._transport, ids)

    async def link_sequence_events_since(self, cursor: int, page_size: int) -> LinkSequenceEventPage:
        return await _network_api.link_sequence_events_since(self._transport, cursor, page_size)

    async def latest_link_sequence_event_id(self, as_of: datetime) -> int | None:
        return await _network_api.latest_link_sequence_event_id(self._transport, as_of)

    async def stream_objects(self, type_id: int, start: int, end: int | None, page_size: int) -> list[RoadObject]:
        return await _objects_api.stream_objects(self._transport, type_id, start, end, page_size)

    async def fetch_objects(self, type_id: int, ids: Sequence[int]) -> list[RoadObject]:
        return await _objects_api.fetch_objects(self._transport, type_id, ids)

    async def object_events_since(self, type_id: int, cursor: int, page_size: int) -> ObjectEventPage:
        return await _objects_api.object_events_since(self._transport, type_id, cursor, page_size)

    async def latest_object_event_id(self, type_id: int, as_of: datetime) -> int | None:
        return await _objects_api.latest_object_event_id(self._transport, type_id, as_of)


__all__ = ["HttpSourceApi", "SourceApi"]
