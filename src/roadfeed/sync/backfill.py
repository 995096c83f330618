"""Initial full load of every entity kind, partitioned and resumable."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from collections.abc import Callable, Sequence
from datetime import UTC, datetime

from roadfeed.config import SyncConfig
from roadfeed.exceptions import RoadFeedApiError
from roadfeed.storage import keys
from roadfeed.storage.settings import SettingsStore
from roadfeed.storage.store import VersionedStore
from roadfeed.sync._groups import first_exception
from roadfeed.sync.kinds import EntityKind
from roadfeed.sync.shutdown import ShutdownSignal

_logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclasses.dataclass(frozen=True)
class IdRange:
    """Ids in ``(start, end]``; ``end=None`` leaves the range open."""

    index: int
    start: int
    end: int | None


def partition_id_space(partitions: int, ceiling: int) -> list[IdRange]:
    """Split ``[0, ceiling]`` into *partitions* fixed ranges, the last one open ended."""
    if partitions < 1:
        raise ValueError("partitions must be >= 1")
    step = max(1, ceiling // partitions)
    ranges: list[IdRange] = []
    for index in range(partitions):
        start = index * step
        end = None if index == partitions - 1 else (index + 1) * step
        ranges.append(IdRange(index, start, end))
    return ranges


class BackfillCoordinator:
    """Load every entity of every kind, resuming from stored checkpoints.

    Each kind's id space is split into fixed partitions that run as
    concurrent tasks. A partition pages the source from its checkpoint and
    commits each page together with the advanced checkpoint, so a crash
    loses at most the page in flight. No dirty entries are written:
    everything loaded here reaches the feed through the initial
    snapshot export.
    """

    def __init__(
        self,
        config: SyncConfig,
        store: VersionedStore,
        settings: SettingsStore,
        kinds: Sequence[EntityKind],
        *,
        shutdown: ShutdownSignal | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._config = config
        self._store = store
        self._settings = settings
        self._kinds = list(kinds)
        self._shutdown = shutdown or ShutdownSignal()
        self._clock = clock

    def pending_kinds(self) -> list[EntityKind]:
        return [kind for kind in self._kinds if not self._settings.is_backfill_complete(kind.name)]

    def _partitions_for(self, kind: EntityKind) -> list[IdRange]:
        partitions = self._settings.get(keys.backfill_partitions_key(kind.name), int)
        if partitions is None:
            partitions = self._config.backfill_partitions
            self._settings.put(keys.backfill_partitions_key(kind.name), partitions)
        elif partitions != self._config.backfill_partitions:
            _logger.info(
                "Resuming %s backfill with its original %d partitions (configured %d)",
                kind.name,
                partitions,
                self._config.backfill_partitions,
            )
        return partition_id_space(partitions, self._config.partition_id_ceiling)

    async def run(self) -> int:
        """Backfill every incomplete kind; return the number of entities loaded now."""
        kinds = self.pending_kinds()
        if not kinds:
            _logger.debug("Backfill already complete for all kinds")
            return 0

        plan: dict[str, list[IdRange]] = {}
        for kind in kinds:
            if self._settings.get(keys.backfill_started_key(kind.name), datetime) is None:
                self._settings.put(keys.backfill_started_key(kind.name), self._clock())
            plan[kind.name] = self._partitions_for(kind)

        tasks: list[asyncio.Task[int]] = []
        try:
            async with asyncio.TaskGroup() as tg:
                for kind in kinds:
                    for id_range in plan[kind.name]:
                        if self._settings.checkpoint(kind.name, id_range.index).completed:
                            continue
                        tasks.append(
                            tg.create_task(
                                self._run_partition(kind, id_range),
                                name=f"backfill-{kind.name}-{id_range.index}",
                            )
                        )
        except ExceptionGroup as group:
            raise first_exception(group) from group

        loaded = sum(task.result() for task in tasks)

        for kind in kinds:
            done = sum(
                1 for id_range in plan[kind.name] if self._settings.checkpoint(kind.name, id_range.index).completed
            )
            if done == len(plan[kind.name]):
                self._settings.put(keys.backfill_completed_key(kind.name), self._clock())
                _logger.info("Backfill of %s complete", kind.name)
            else:
                _logger.info(
                    "Backfill of %s paused with %d/%d partitions complete",
                    kind.name,
                    done,
                    len(plan[kind.name]),
                )

        _logger.info("Backfill loaded %d entities", loaded)
        return loaded

    async def _run_partition(self, kind: EntityKind, id_range: IdRange) -> int:
        checkpoint = self._settings.checkpoint(kind.name, id_range.index)
        cursor = checkpoint.last_id if checkpoint.last_id is not None else id_range.start
        loaded = 0
        _logger.debug("Backfill %s partition %d from id %d", kind.name, id_range.index, cursor)

        while not self._shutdown.is_set:
            page = await kind.stream(cursor, id_range.end, self._config.page_size_for(kind.name))
            if not page:
                self._settings.complete_partition(kind.name, id_range.index)
                _logger.info(
                    "Backfill %s partition %d complete (%d loaded in this run)",
                    kind.name,
                    id_range.index,
                    loaded,
                )
                return loaded

            last_id = max(entity.id for entity in page)
            if last_id <= cursor:
                raise RoadFeedApiError(
                    f"Source returned ids not after cursor {cursor} for {kind.name} partition {id_range.index}"
                )
            async with self._store.async_write_batch() as batch:
                kind.store_page(page, self._clock(), batch)
                self._settings.save_checkpoint(kind.name, id_range.index, last_id, batch)
            loaded += len(page)
            cursor = last_id

        _logger.info("Backfill %s partition %d stopped at id %d", kind.name, id_range.index, cursor)
        return loaded
