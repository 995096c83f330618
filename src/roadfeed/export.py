"""Hand feature changes to an exporter and commit what it accepted."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import os
from collections.abc import Iterable, Sequence
from datetime import datetime
from pathlib import Path
from typing import Protocol

from roadfeed.config import SyncConfig
from roadfeed.diff.engine import DiffResult, FeatureDiffEngine
from roadfeed.models.events import ChangeKind
from roadfeed.models.feature import Classification, FeatureChange
from roadfeed.storage import keys
from roadfeed.storage.ledger import ChangeLedger
from roadfeed.storage.objects import RoadObjectRepository
from roadfeed.storage.settings import SettingsStore

_logger = logging.getLogger(__name__)


class FeatureExporter(Protocol):
    """Serializes feature changes to the outside world.

    ``export`` must only return once the changes are durably stored;
    the ledger entries behind them are cleared right after.
    """

    async def export(self, type_id: int, changes: Sequence[FeatureChange], timestamp: datetime) -> None:
        ...


class DirectoryExporter:
    """Writes one NDJSON file per feature type and export.

    Files are named ``<FeatureType>-<YYYYMMDDTHHMMSSZ>.ndjson`` (with a
    ``-<n>`` suffix when that name is taken) and written to a temporary
    name, fsynced and renamed into place.
    """

    def __init__(self, directory: Path, config: SyncConfig) -> None:
        self._directory = directory
        self._names = {spec.type_id: spec.name for spec in config.feature_types}

    def path_for(self, type_id: int, timestamp: datetime) -> Path:
        stem = f"{self._names.get(type_id, f'type{type_id}')}-{timestamp:%Y%m%dT%H%M%SZ}"
        path = self._directory / f"{stem}.ndjson"
        counter = 1
        while path.exists():
            path = self._directory / f"{stem}-{counter}.ndjson"
            counter += 1
        return path

    async def export(self, type_id: int, changes: Sequence[FeatureChange], timestamp: datetime) -> None:
        if not changes:
            return
        path = self.path_for(type_id, timestamp)
        await asyncio.to_thread(self._write, path, [change.model_dump_json(by_alias=True) for change in changes])
        _logger.info("Exported %d changes of type %d to %s", len(changes), type_id, path)

    @staticmethod
    def _write(path: Path, lines: Iterable[str]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(path.suffix + ".tmp")
        with tmp.open("w", encoding="utf-8") as handle:
            for line in lines:
                handle.write(line)
                handle.write("\n")
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp, path)


@dataclasses.dataclass(frozen=True)
class ExportSummary:
    type_id: int
    added: int
    modified: int
    removed: int
    unchanged: int
    failed: int

    @property
    def emitted(self) -> int:
        return self.added + self.modified + self.removed

    @classmethod
    def from_result(cls, result: DiffResult) -> ExportSummary:
        return cls(
            type_id=result.type_id,
            added=result.counts[Classification.ADD],
            modified=result.counts[Classification.MODIFY],
            removed=result.counts[Classification.REMOVE],
            unchanged=result.counts[Classification.UNCHANGED],
            failed=len(result.failed),
        )


class ExportService:
    """Runs the diff, export and commit sequence for every feature type."""

    def __init__(
        self,
        config: SyncConfig,
        objects: RoadObjectRepository,
        ledger: ChangeLedger,
        settings: SettingsStore,
        engine: FeatureDiffEngine,
        exporter: FeatureExporter,
    ) -> None:
        self._config = config
        self._objects = objects
        self._ledger = ledger
        self._settings = settings
        self._engine = engine
        self._exporter = exporter

    async def _diff(
        self,
        type_id: int,
        changes: dict[int, ChangeKind],
        dirty_sequences: Iterable[int],
        timestamp: datetime,
    ) -> DiffResult:
        return await asyncio.to_thread(self._engine.diff, type_id, changes, dirty_sequences, timestamp)

    async def _export(
        self,
        result: DiffResult,
        timestamp: datetime,
        *,
        retry_failed_as: ChangeKind | None = None,
    ) -> ExportSummary:
        if result.changes:
            await self._exporter.export(result.type_id, result.changes, timestamp)
        await asyncio.to_thread(self._engine.commit, result, timestamp, retry_failed_as=retry_failed_as)
        return ExportSummary.from_result(result)

    def needs_snapshot(self, type_id: int) -> bool:
        return self._settings.get(keys.last_snapshot_key(type_id), datetime) is None

    async def export_snapshot(self, type_id: int, timestamp: datetime) -> ExportSummary:
        """Evaluate every stored object of *type_id* and export what differs from the baseline.

        Used once after the backfill; features already exported with the same
        content are suppressed, so re-running a snapshot is harmless. Backfill
        writes no dirty entries, so ids that cannot be evaluated now are
        marked NEW for the next update.
        """
        changes = {object_id: ChangeKind.NEW for object_id in self._objects.iterate_ids(type_id)}
        changes.update(self._ledger.drain_dirty_object_changes(type_id))
        result = await self._diff(type_id, changes, (), timestamp)
        summary = await self._export(result, timestamp, retry_failed_as=ChangeKind.NEW)
        self._settings.put(keys.last_snapshot_key(type_id), timestamp)
        _logger.info("Snapshot of type %d: %d features emitted", type_id, summary.emitted)
        return summary

    async def export_updates(self, timestamp: datetime) -> list[ExportSummary]:
        """Export pending changes of every feature type, then tidy up the replica."""
        dirty_sequences = self._ledger.drain_dirty_link_sequence_ids()
        summaries: list[ExportSummary] = []
        for spec in self._config.feature_types:
            changes = self._ledger.drain_dirty_object_changes(spec.type_id)
            result = await self._diff(spec.type_id, changes, dirty_sequences, timestamp)
            summaries.append(await self._export(result, timestamp))
            self._settings.put(keys.last_update_check_key(spec.type_id), timestamp)

        self._ledger.clear_link_sequences(dirty_sequences)
        feature_ids = {spec.type_id for spec in self._config.feature_types}
        for type_id in self._config.object_types:
            if type_id not in feature_ids:
                self._ledger.clear_all(type_id)
            self._objects.prune_expired(type_id, timestamp.date())

        _logger.info(
            "Export at %s: %s",
            timestamp.isoformat(),
            ", ".join(
                f"{summary.type_id}: +{summary.added} ~{summary.modified} -{summary.removed}" for summary in summaries
            )
            or "no feature types",
        )
        return summaries
