"""Application wiring and the backfill / update / auto cycles."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import aiohttp

from roadfeed._api import HttpSourceApi, SourceApi
from roadfeed._transport import HttpTransport
from roadfeed.config import SyncConfig
from roadfeed.diff import FeatureDiffEngine, RoadFeatureBuilder
from roadfeed.export import DirectoryExporter, ExportService, ExportSummary, FeatureExporter
from roadfeed.storage import (
    ChangeLedger,
    ExportedFeatureStore,
    RoadNetworkRepository,
    RoadObjectRepository,
    SettingsStore,
    VersionedStore,
)
from roadfeed.storage import keys
from roadfeed.sync import (
    BackfillCoordinator,
    EntityKind,
    LinkSequenceKind,
    ObjectTypeKind,
    ShutdownSignal,
    UpdateCoordinator,
)

_logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclasses.dataclass
class CycleReport:
    """What one invocation of a cycle did."""

    backfilled: int = 0
    backfill_pending: bool = False
    synchronized: int = 0
    update_passes: int = 0
    snapshots: list[ExportSummary] = dataclasses.field(default_factory=list)
    exports: list[ExportSummary] = dataclasses.field(default_factory=list)

    def describe(self) -> str:
        if self.backfill_pending:
            return f"backfill in progress ({self.backfilled} entities loaded)"
        parts = [f"backfilled={self.backfilled}", f"synchronized={self.synchronized} in {self.update_passes} passes"]
        for summary in [*self.snapshots, *self.exports]:
            parts.append(
                f"type {summary.type_id}: +{summary.added} ~{summary.modified} -{summary.removed}"
                f" ({summary.failed} failed)"
            )
        return ", ".join(parts)


class RoadFeedApp:
    """Local replica plus feature feed for one source API.

    Usage::

        async with RoadFeedApp(SyncConfig.from_env()) as app:
            report = await app.update()

    ``api``, ``exporter`` and ``store`` may be injected; otherwise an
    aiohttp session, a :class:`VersionedStore` at ``config.database_path``
    and a :class:`DirectoryExporter` are created on enter.
    """

    def __init__(
        self,
        config: SyncConfig,
        *,
        api: SourceApi | None = None,
        exporter: FeatureExporter | None = None,
        store: VersionedStore | None = None,
        shutdown: ShutdownSignal | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._config = config
        self._api = api
        self._exporter = exporter
        self._store = store
        self._owns_store = store is None
        self._http_session: aiohttp.ClientSession | None = None
        self.shutdown = shutdown or ShutdownSignal()
        self._clock = clock
        self._backfill: BackfillCoordinator | None = None
        self._updater: UpdateCoordinator | None = None
        self._export: ExportService | None = None
        self._settings: SettingsStore | None = None
        self._kinds: list[EntityKind] = []

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> RoadFeedApp:
        if self._store is None:
            self._store = VersionedStore(self._config.database_path)
        self._store.open()
        if self._api is None:
            self._http_session = aiohttp.ClientSession()
            self._api = HttpSourceApi(HttpTransport(self._config, self._http_session))
        if self._exporter is None:
            self._exporter = DirectoryExporter(self._config.export_directory, self._config)
        self._wire(self._store, self._api, self._exporter)
        return self

    async def __aexit__(self, *exc: Any) -> None:
        if self._http_session is not None:
            await self._http_session.close()
            self._http_session = None
            self._api = None
        if self._owns_store and self._store is not None:
            self._store.close()
            self._store = None

    def _wire(self, store: VersionedStore, api: SourceApi, exporter: FeatureExporter) -> None:
        config = self._config
        settings = SettingsStore(store)
        network = RoadNetworkRepository(store)
        objects = RoadObjectRepository(store)
        ledger = ChangeLedger(store)
        limiter = asyncio.Semaphore(config.max_concurrent_requests)

        self._kinds = [LinkSequenceKind(api, network, ledger, limiter)]
        self._kinds.extend(ObjectTypeKind(type_id, api, objects, ledger, limiter) for type_id in config.object_types)

        builders = {spec.type_id: RoadFeatureBuilder(spec, network) for spec in config.feature_types}
        engine = FeatureDiffEngine(
            store,
            objects,
            ExportedFeatureStore(store),
            ledger,
            builders,
            hash_seed=config.hash_seed,
        )
        self._settings = settings
        self._backfill = BackfillCoordinator(
            config, store, settings, self._kinds, shutdown=self.shutdown, clock=self._clock
        )
        self._updater = UpdateCoordinator(config, store, settings, self._kinds, shutdown=self.shutdown, clock=self._clock)
        self._export = ExportService(config, objects, ledger, settings, engine, exporter)

    def _require(self) -> tuple[BackfillCoordinator, UpdateCoordinator, ExportService, SettingsStore]:
        if self._backfill is None or self._updater is None or self._export is None or self._settings is None:
            raise RuntimeError("RoadFeedApp must be used as an async context manager")
        return self._backfill, self._updater, self._export, self._settings

    # ------------------------------------------------------------------
    # Cycles
    # ------------------------------------------------------------------

    async def _snapshots(self) -> list[ExportSummary]:
        _, _, export, settings = self._require()
        if not settings.is_backfill_complete(keys.LINK_SEQUENCES_KIND):
            return []
        summaries: list[ExportSummary] = []
        for spec in self._config.feature_types:
            if self.shutdown.is_set:
                break
            if not settings.is_backfill_complete(keys.object_kind(spec.type_id)):
                continue
            if export.needs_snapshot(spec.type_id):
                summaries.append(await export.export_snapshot(spec.type_id, self._clock()))
        return summaries

    async def backfill(self) -> CycleReport:
        """Load everything not loaded yet, then export the initial snapshots."""
        backfill, _, _, _ = self._require()
        report = CycleReport()
        report.backfilled = await backfill.run()
        report.backfill_pending = bool(backfill.pending_kinds())
        report.snapshots = await self._snapshots()
        return report

    async def update(self) -> CycleReport:
        """Run one full cycle: finish any backfill, synchronize and export.

        Returns early with ``backfill_pending`` set when the backfill could
        not finish (shutdown requested).
        """
        backfill, updater, export, _ = self._require()
        report = CycleReport()
        if backfill.pending_kinds():
            _logger.info("Backfill incomplete; resuming it before updating")
            report.backfilled = await backfill.run()
            if backfill.pending_kinds():
                report.backfill_pending = True
                return report
        report.snapshots = await self._snapshots()
        if self.shutdown.is_set:
            return report

        report.synchronized = await updater.run()
        report.update_passes = updater.passes
        if self.shutdown.is_set:
            _logger.info("Skipping export after interrupted synchronization")
            return report
        report.exports = await export.export_updates(self._clock())
        return report

    async def auto(self) -> CycleReport | None:
        """Repeat :meth:`update` every ``config.auto_interval`` seconds until shutdown.

        Each cycle is logged as it finishes; the last report is returned
        (``None`` when shutdown came before the first cycle).
        """
        last: CycleReport | None = None
        cycles = 0
        while not self.shutdown.is_set:
            last = await self.update()
            cycles += 1
            _logger.info("Cycle %d done: %s", cycles, last.describe())
            if await self.shutdown.wait(self._config.auto_interval):
                break
        return last
