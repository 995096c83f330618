from __future__ import annotations

from collections.abc import Callable, Iterator, Sequence
from datetime import UTC, date, datetime
from pathlib import Path

import pytest

from roadfeed._constants import SPEED_LIMIT_KMH_PROPERTY, SPEED_LIMIT_TYPE
from roadfeed.config import DEFAULT_FEATURE_TYPES, SyncConfig
from roadfeed.models import (
    FeatureChange,
    IntegerValue,
    LinearLocation,
    LinkSequenceEvent,
    LinkSequenceEventPage,
    ObjectEvent,
    ObjectEventPage,
    RoadLink,
    RoadLinkSequence,
    RoadObject,
)
from roadfeed.storage import VersionedStore

SPEED_LIMIT = DEFAULT_FEATURE_TYPES[0]


def utc(year: int = 2026, month: int = 1, day: int = 15, hour: int = 12) -> datetime:
    return datetime(year, month, day, hour, tzinfo=UTC)


def make_sequence(
    sequence_id: int,
    *,
    geometry: tuple[tuple[float, float], ...] = ((0.0, 0.0), (100.0, 0.0)),
    valid_to: date | None = None,
) -> RoadLinkSequence:
    return RoadLinkSequence(
        id=sequence_id,
        links=(
            RoadLink(
                sequence_id=sequence_id,
                link_number=1,
                start_position=0.0,
                end_position=1.0,
                valid_from=date(2020, 1, 1),
                valid_to=valid_to,
                geometry=geometry,
                length=100.0,
            ),
        ),
    )


def make_object(
    object_id: int,
    *,
    type_id: int = SPEED_LIMIT_TYPE,
    version: int = 1,
    speed: int | None = 80,
    sequence_id: int = 1,
    start: float = 0.0,
    end: float = 1.0,
    valid_to: date | None = None,
) -> RoadObject:
    properties = {SPEED_LIMIT_KMH_PROPERTY: IntegerValue(value=speed)} if speed is not None else {}
    return RoadObject(
        type_id=type_id,
        id=object_id,
        version=version,
        last_modified=utc(),
        valid_from=date(2021, 1, 1),
        valid_to=valid_to,
        properties=properties,
        locations=(LinearLocation(sequence_id=sequence_id, start_position=start, end_position=end),),
    )


class FakeSourceApi:
    """In-memory source API.

    Events are only visible once published; ``on_fetch`` runs before every
    "fetch by ids" call so tests can publish events mid-pass.
    """

    def __init__(self) -> None:
        self.link_sequences: dict[int, RoadLinkSequence] = {}
        self.objects: dict[int, dict[int, RoadObject]] = {}
        self.link_events: list[LinkSequenceEvent] = []
        self.object_events: dict[int, list[ObjectEvent]] = {}
        self.seed_event_ids: dict[str, int | None] = {}
        self.on_fetch: Callable[[], None] | None = None
        self.stream_calls: list[tuple[str, int, int | None]] = []
        self.fetch_calls: list[tuple[str, tuple[int, ...]]] = []

    def add_sequence(self, sequence: RoadLinkSequence) -> None:
        self.link_sequences[sequence.id] = sequence

    def add_object(self, obj: RoadObject) -> None:
        self.objects.setdefault(obj.type_id, {})[obj.id] = obj

    def remove_object(self, type_id: int, object_id: int) -> None:
        self.objects.get(type_id, {}).pop(object_id, None)

    def publish_object_event(self, type_id: int, object_id: int, version: int, event_type: str) -> ObjectEvent:
        events = self.object_events.setdefault(type_id, [])
        event = ObjectEvent(
            event_id=self._next_event_id(),
            object_id=object_id,
            version=version,
            event_type=event_type,
        )
        events.append(event)
        return event

    def publish_link_event(self, sequence_id: int) -> LinkSequenceEvent:
        event = LinkSequenceEvent(event_id=self._next_event_id(), sequence_id=sequence_id)
        self.link_events.append(event)
        return event

    def _next_event_id(self) -> int:
        ids = [event.event_id for event in self.link_events]
        for events in self.object_events.values():
            ids.extend(event.event_id for event in events)
        return max(ids, default=0) + 1

    @staticmethod
    def _range(entities: dict[int, object], start: int, end: int | None, page_size: int) -> list[int]:
        ids = sorted(i for i in entities if i > start and (end is None or i <= end))
        return ids[:page_size]

    @staticmethod
    def _page(events: Sequence[ObjectEvent | LinkSequenceEvent], cursor: int, page_size: int) -> tuple[list, int | None]:
        after = sorted((e for e in events if e.event_id > cursor), key=lambda e: e.event_id)
        page = after[:page_size]
        next_cursor = page[-1].event_id if len(after) > page_size else None
        return page, next_cursor

    async def stream_link_sequences(self, start: int, end: int | None, page_size: int) -> list[RoadLinkSequence]:
        self.stream_calls.append(("link_sequences", start, end))
        return [self.link_sequences[i] for i in self._range(self.link_sequences, start, end, page_size)]

    async def fetch_link_sequences(self, ids: Sequence[int]) -> list[RoadLinkSequence]:
        if self.on_fetch is not None:
            self.on_fetch()
        self.fetch_calls.append(("link_sequences", tuple(ids)))
        return [self.link_sequences[i] for i in ids if i in self.link_sequences]

    async def link_sequence_events_since(self, cursor: int, page_size: int) -> LinkSequenceEventPage:
        events, next_cursor = self._page(self.link_events, cursor, page_size)
        return LinkSequenceEventPage(events=tuple(events), next_cursor=next_cursor)

    async def latest_link_sequence_event_id(self, as_of: datetime) -> int | None:
        if "link_sequences" in self.seed_event_ids:
            return self.seed_event_ids.pop("link_sequences")
        return max((event.event_id for event in self.link_events), default=None)

    async def stream_objects(self, type_id: int, start: int, end: int | None, page_size: int) -> list[RoadObject]:
        self.stream_calls.append((f"objects_{type_id}", start, end))
        objects = self.objects.get(type_id, {})
        return [objects[i] for i in self._range(objects, start, end, page_size)]

    async def fetch_objects(self, type_id: int, ids: Sequence[int]) -> list[RoadObject]:
        if self.on_fetch is not None:
            self.on_fetch()
        self.fetch_calls.append((f"objects_{type_id}", tuple(ids)))
        objects = self.objects.get(type_id, {})
        return [objects[i] for i in ids if i in objects]

    async def object_events_since(self, type_id: int, cursor: int, page_size: int) -> ObjectEventPage:
        events, next_cursor = self._page(self.object_events.get(type_id, []), cursor, page_size)
        return ObjectEventPage(events=tuple(events), next_cursor=next_cursor)

    async def latest_object_event_id(self, type_id: int, as_of: datetime) -> int | None:
        kind = f"objects_{type_id}"
        if kind in self.seed_event_ids:
            return self.seed_event_ids.pop(kind)
        return max((event.event_id for event in self.object_events.get(type_id, [])), default=None)


class MemoryExporter:
    def __init__(self) -> None:
        self.exports: list[tuple[int, list[FeatureChange], datetime]] = []
        self.fail_with: Exception | None = None

    async def export(self, type_id: int, changes: Sequence[FeatureChange], timestamp: datetime) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.exports.append((type_id, list(changes), timestamp))

    @property
    def changes(self) -> list[FeatureChange]:
        return [change for _, changes, _ in self.exports for change in changes]


@pytest.fixture
def store(tmp_path: Path) -> Iterator[VersionedStore]:
    with VersionedStore(tmp_path / "replica.sqlite3", scan_page_size=3) as opened:
        yield opened


@pytest.fixture
def config(tmp_path: Path) -> SyncConfig:
    return SyncConfig(
        base_url="https://roads.example.test/api",
        database_path=tmp_path / "replica.sqlite3",
        export_directory=tmp_path / "exports",
        feature_types=(SPEED_LIMIT,),
        backfill_partitions=4,
        partition_id_ceiling=400,
        link_sequence_page_size=2,
        object_page_size=2,
        event_page_size=2,
        fetch_chunk_size=2,
        retry_attempts=3,
        retry_base_delay=0.5,
        retry_max_delay=4.0,
    )


@pytest.fixture
def api() -> FakeSourceApi:
    return FakeSourceApi()


@pytest.fixture
def exporter() -> MemoryExporter:
    return MemoryExporter()
