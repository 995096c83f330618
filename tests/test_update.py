from __future__ import annotations

import asyncio

import pytest
from conftest import FakeSourceApi, make_object, make_sequence, utc

from roadfeed.config import SyncConfig
from roadfeed.exceptions import SyncStateError
from roadfeed.models import ChangeKind
from roadfeed.storage import (
    ChangeLedger,
    RoadNetworkRepository,
    RoadObjectRepository,
    SettingsStore,
    VersionedStore,
)
from roadfeed.storage import keys
from roadfeed.sync import LinkSequenceKind, ObjectTypeKind, ShutdownSignal, SyncPhase, UpdateCoordinator


def _coordinator(
    config: SyncConfig,
    store: VersionedStore,
    api: FakeSourceApi,
    shutdown: ShutdownSignal | None = None,
) -> UpdateCoordinator:
    ledger = ChangeLedger(store)
    limiter = asyncio.Semaphore(config.max_concurrent_requests)
    kinds = [
        LinkSequenceKind(api, RoadNetworkRepository(store), ledger, limiter),
        ObjectTypeKind(105, api, RoadObjectRepository(store), ledger, limiter),
    ]
    return UpdateCoordinator(config, store, SettingsStore(store), kinds, shutdown=shutdown, clock=utc)


def _start_cursors(store: VersionedStore, cursor: int = 0) -> None:
    settings = SettingsStore(store)
    for kind in ("link_sequences", "objects_105"):
        settings.put(keys.last_event_id_key(kind), cursor)


def _seed(store: VersionedStore, *objects_: object) -> None:
    with store.write_batch() as batch:
        RoadObjectRepository(store).insert_many(objects_, batch=batch)  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_second_wave_needs_another_pass(config: SyncConfig, store: VersionedStore, api: FakeSourceApi) -> None:
    _seed(store, make_object(1), make_object(2))
    _start_cursors(store)
    api.add_object(make_object(1, version=2, speed=60))
    api.add_object(make_object(2, version=2, speed=70))
    api.publish_object_event(105, 1, 2, "VersionCreated")
    api.publish_object_event(105, 2, 2, "VersionCreated")

    def second_wave() -> None:
        api.on_fetch = None
        api.add_object(make_object(3))
        api.publish_object_event(105, 3, 1, "ObjectImported")

    api.on_fetch = second_wave
    coordinator = _coordinator(config, store, api)

    total = await coordinator.run()

    assert total == 3
    assert coordinator.passes == 3
    assert coordinator.phase is SyncPhase.CONVERGED
    assert ChangeLedger(store).drain_dirty_object_changes(105) == {
        1: ChangeKind.MODIFIED,
        2: ChangeKind.MODIFIED,
        3: ChangeKind.NEW,
    }
    objects = RoadObjectRepository(store)
    assert objects.find(105, 1).version == 2  # type: ignore[union-attr]
    assert objects.find(105, 3) is not None
    assert SettingsStore(store).get(keys.last_event_id_key("objects_105"), int) == 3


@pytest.mark.asyncio
async def test_quiet_source_converges_in_one_pass(
    config: SyncConfig, store: VersionedStore, api: FakeSourceApi
) -> None:
    _start_cursors(store)
    coordinator = _coordinator(config, store, api)

    assert await coordinator.run() == 0
    assert coordinator.passes == 1


@pytest.mark.asyncio
async def test_object_missing_at_source_is_deleted(
    config: SyncConfig, store: VersionedStore, api: FakeSourceApi
) -> None:
    _seed(store, make_object(9, sequence_id=1))
    _start_cursors(store)
    api.publish_object_event(105, 9, 2, "VersionCreated")

    await _coordinator(config, store, api).run()

    objects = RoadObjectRepository(store)
    assert objects.find(105, 9).removed  # type: ignore[union-attr]
    assert objects.find_located_object_ids(105, [1]) == set()
    assert ChangeLedger(store).drain_dirty_object_changes(105) == {9: ChangeKind.DELETED}


@pytest.mark.asyncio
async def test_removal_is_not_fetched(config: SyncConfig, store: VersionedStore, api: FakeSourceApi) -> None:
    _seed(store, make_object(4), make_object(5))
    _start_cursors(store)
    api.add_object(make_object(5, version=2))
    api.publish_object_event(105, 4, 1, "VersionRemoved")
    api.publish_object_event(105, 5, 2, "VersionCreated")

    await _coordinator(config, store, api).run()

    assert api.fetch_calls == [("objects_105", (5,))]
    assert ChangeLedger(store).drain_dirty_object_changes(105) == {4: ChangeKind.DELETED, 5: ChangeKind.MODIFIED}


@pytest.mark.asyncio
async def test_link_sequence_events_replace_or_delete(
    config: SyncConfig, store: VersionedStore, api: FakeSourceApi
) -> None:
    network = RoadNetworkRepository(store)
    with store.write_batch() as batch:
        network.insert_many([make_sequence(1), make_sequence(2)], today=utc().date(), batch=batch)
    _start_cursors(store)
    api.add_sequence(make_sequence(1, geometry=((0.0, 0.0), (0.0, 100.0))))
    api.publish_link_event(1)
    api.publish_link_event(2)
    api.publish_link_event(1)

    total = await _coordinator(config, store, api).run()

    assert total == 2
    assert network.get(1).links[0].geometry == ((0.0, 0.0), (0.0, 100.0))  # type: ignore[union-attr]
    assert network.get(2) is None
    assert ChangeLedger(store).drain_dirty_link_sequence_ids() == {1, 2}


@pytest.mark.asyncio
async def test_cursor_is_seeded_from_backfill_start(
    config: SyncConfig, store: VersionedStore, api: FakeSourceApi
) -> None:
    settings = SettingsStore(store)
    for kind in ("link_sequences", "objects_105"):
        settings.put(keys.backfill_started_key(kind), utc(hour=1))
        settings.put(keys.backfill_completed_key(kind), utc(hour=2))
    for object_id in (1, 1, 2, 2, 3):
        api.publish_object_event(105, object_id, 2, "VersionCorrected")
    for object_id in (1, 2, 3):
        api.add_object(make_object(object_id, version=2))
    api.seed_event_ids["objects_105"] = 4

    await _coordinator(config, store, api).run()

    assert ChangeLedger(store).drain_dirty_object_changes(105) == {3: ChangeKind.MODIFIED}
    assert settings.get(keys.last_event_id_key("objects_105"), int) == 5


@pytest.mark.asyncio
async def test_update_before_backfill_is_refused(
    config: SyncConfig, store: VersionedStore, api: FakeSourceApi
) -> None:
    with pytest.raises(SyncStateError):
        await _coordinator(config, store, api).run()


@pytest.mark.asyncio
async def test_shutdown_stops_fetching_mid_pass(
    config: SyncConfig, store: VersionedStore, api: FakeSourceApi
) -> None:
    _seed(store, *(make_object(object_id) for object_id in range(1, 11)))
    _start_cursors(store)
    for object_id in range(1, 11):
        api.add_object(make_object(object_id, version=2, speed=50))
        api.publish_object_event(105, object_id, 2, "VersionCreated")
    shutdown = ShutdownSignal()
    api.on_fetch = lambda: shutdown.request("for test")
    coordinator = _coordinator(config, store, api, shutdown)

    await coordinator.run()

    assert api.fetch_calls == [("objects_105", (1, 2))]
    assert coordinator.phase is not SyncPhase.CONVERGED
    # The cursor only moves with the last chunk, so the next run replays every event.
    assert SettingsStore(store).get(keys.last_event_id_key("objects_105"), int) == 0
    assert ChangeLedger(store).drain_dirty_object_changes(105) == {1: ChangeKind.MODIFIED, 2: ChangeKind.MODIFIED}
