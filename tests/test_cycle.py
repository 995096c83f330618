from __future__ import annotations

import asyncio
import dataclasses
from datetime import date

import pytest
from conftest import FakeSourceApi, MemoryExporter, make_object, make_sequence, utc

from roadfeed import CycleReport, RoadFeedApp, SyncConfig, UpdateType
from roadfeed.exceptions import RoadFeedTransportError
from roadfeed.models import ChangeKind
from roadfeed.storage import (
    ChangeLedger,
    ExportedFeatureStore,
    RoadObjectRepository,
    SettingsStore,
    VersionedStore,
)
from roadfeed.storage import keys

CLOSED_ID = 78712521
REMOVED_ID = 83589630


def _source() -> FakeSourceApi:
    api = FakeSourceApi()
    api.add_sequence(make_sequence(1))
    api.add_object(make_object(CLOSED_ID, start=0.0, end=0.5))
    api.add_object(make_object(REMOVED_ID, start=0.5, end=1.0, speed=60))
    return api


@pytest.mark.e2e
@pytest.mark.asyncio
async def test_backfill_snapshot_then_incremental_export(
    config: SyncConfig, store: VersionedStore, exporter: MemoryExporter
) -> None:
    api = _source()
    async with RoadFeedApp(config, api=api, exporter=exporter, store=store, clock=utc) as app:
        first = await app.update()

        assert first.backfilled == 3
        assert not first.backfill_pending
        assert [(s.type_id, s.added) for s in first.snapshots] == [(105, 2)]
        assert sorted(c.feature_id for c in exporter.changes) == [CLOSED_ID, REMOVED_ID]
        assert all(c.update_type is UpdateType.ADD for c in exporter.changes)

        api.add_object(make_object(CLOSED_ID, version=2, start=0.0, end=0.5, valid_to=date(2026, 3, 1)))
        api.publish_object_event(105, CLOSED_ID, 2, "VersionCreated")
        api.remove_object(105, REMOVED_ID)
        api.publish_object_event(105, REMOVED_ID, 1, "VersionRemoved")
        exporter.exports.clear()

        second = await app.update()

        assert second.snapshots == []
        assert second.synchronized == 2
        emitted = {c.feature_id: c for c in exporter.changes}
        assert emitted[CLOSED_ID].update_type is UpdateType.MODIFY
        assert emitted[CLOSED_ID].content.valid_to == date(2026, 3, 1)
        assert emitted[REMOVED_ID].update_type is UpdateType.REMOVE
        assert ExportedFeatureStore(store).count(105) == 1
        assert not ChangeLedger(store).has_pending()
        # The tombstone is pruned after export.
        assert RoadObjectRepository(store).find(105, REMOVED_ID) is None

        exporter.exports.clear()
        third = await app.update()
        assert exporter.changes == []
        assert [s.emitted for s in third.exports] == [0]


@pytest.mark.asyncio
async def test_link_sequence_touch_without_content_change_emits_nothing(
    config: SyncConfig, store: VersionedStore, exporter: MemoryExporter
) -> None:
    api = _source()
    async with RoadFeedApp(config, api=api, exporter=exporter, store=store, clock=utc) as app:
        await app.update()
        exporter.exports.clear()

        api.publish_link_event(1)
        report = await app.update()

        assert report.synchronized == 1
        assert exporter.changes == []
        assert [s.unchanged for s in report.exports] == [2]


@pytest.mark.asyncio
async def test_failed_export_keeps_changes_dirty(
    config: SyncConfig, store: VersionedStore, exporter: MemoryExporter
) -> None:
    api = _source()
    async with RoadFeedApp(config, api=api, exporter=exporter, store=store, clock=utc) as app:
        await app.update()
        api.add_object(make_object(CLOSED_ID, version=2, speed=50, start=0.0, end=0.5))
        api.publish_object_event(105, CLOSED_ID, 2, "VersionCorrected")
        exporter.fail_with = OSError("disk full")

        with pytest.raises(OSError):
            await app.update()
        assert ChangeLedger(store).drain_dirty_object_changes(105) == {CLOSED_ID: ChangeKind.MODIFIED}

        exporter.fail_with = None
        await app.update()
        assert [(c.feature_id, c.update_type) for c in exporter.changes][-1] == (CLOSED_ID, UpdateType.MODIFY)


@pytest.mark.asyncio
async def test_source_failure_aborts_the_cycle_and_leaves_state(
    config: SyncConfig, store: VersionedStore, exporter: MemoryExporter
) -> None:
    api = _source()
    async with RoadFeedApp(config, api=api, exporter=exporter, store=store, clock=utc) as app:
        await app.update()
        api.publish_object_event(105, CLOSED_ID, 2, "VersionCorrected")

        async def unavailable(type_id: int, ids: object) -> list:
            raise RoadFeedTransportError("HTTP 503 from /objects/105", status_code=503)

        api.fetch_objects = unavailable  # type: ignore[method-assign]

        with pytest.raises(RoadFeedTransportError):
            await app.update()

    assert SettingsStore(store).get(keys.last_event_id_key("objects_105"), int) == 0
    assert ChangeLedger(store).drain_dirty_object_changes(105) == {}


@pytest.mark.asyncio
async def test_auto_repeats_until_shutdown(
    config: SyncConfig, store: VersionedStore, exporter: MemoryExporter
) -> None:
    api = _source()
    quick = dataclasses.replace(config, auto_interval=0.01)
    async with RoadFeedApp(quick, api=api, exporter=exporter, store=store, clock=utc) as app:
        cycles: list[CycleReport] = []
        update = app.update

        async def counted_update() -> CycleReport:
            report = await update()
            cycles.append(report)
            if len(cycles) == 2:
                app.shutdown.request("by test")
            return report

        app.update = counted_update  # type: ignore[method-assign]
        last = await asyncio.wait_for(app.auto(), timeout=10)

    assert len(cycles) == 2
    assert last is cycles[-1]
    assert cycles[0].backfilled == 3
    assert last.backfilled == 0
    assert len(exporter.exports) == 1


@pytest.mark.asyncio
async def test_backfill_mode_exports_the_snapshot_once(
    config: SyncConfig, store: VersionedStore, exporter: MemoryExporter
) -> None:
    async with RoadFeedApp(config, api=_source(), exporter=exporter, store=store, clock=utc) as app:
        first = await app.backfill()
        again = await app.backfill()

    assert first.backfilled == 3
    assert [s.added for s in first.snapshots] == [2]
    assert again.backfilled == 0
    assert again.snapshots == []
    assert len(exporter.changes) == 2


@pytest.mark.asyncio
async def test_app_must_be_entered() -> None:
    app = RoadFeedApp(SyncConfig(base_url="https://roads.example.test"))
    with pytest.raises(RuntimeError):
        await app.update()
