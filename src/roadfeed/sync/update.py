"""Incremental synchronization from the source event streams."""

from __future__ import annotations

import asyncio
import dataclasses
import enum
import logging
from collections.abc import Callable, Sequence
from datetime import UTC, datetime

from roadfeed.config import SyncConfig
from roadfeed.exceptions import SyncStateError
from roadfeed.models.events import ChangeKind
from roadfeed.storage import keys
from roadfeed.storage.settings import SettingsStore
from roadfeed.storage.store import VersionedStore
from roadfeed.sync._groups import first_exception
from roadfeed.sync.kinds import EntityKind
from roadfeed.sync.shutdown import ShutdownSignal

_logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class SyncPhase(enum.StrEnum):
    POLLING = "polling"
    APPLYING = "applying"
    CONVERGED = "converged"


@dataclasses.dataclass
class PolledChanges:
    """Changes collected for one kind during the polling phase."""

    kind: EntityKind
    cursor: int
    changes: dict[int, ChangeKind] = dataclasses.field(default_factory=dict)
    last_event_id: int | None = None

    @property
    def next_cursor(self) -> int:
        return self.last_event_id if self.last_event_id is not None else self.cursor


class UpdateCoordinator:
    """Apply source events to the replica until a pass finds nothing new.

    A pass polls every kind concurrently, bounded by the latest event id
    the source reports at the start of the pass, then applies the
    collapsed changes per kind. Events published while a pass runs are
    picked up by the next pass; the coordinator stops at the first pass
    that changes nothing.
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
        self._phase = SyncPhase.CONVERGED
        self.passes = 0

    @property
    def phase(self) -> SyncPhase:
        return self._phase

    async def run(self) -> int:
        """Run passes to a fixed point; return the number of changes over all passes.

        Raises
        ------
        SyncStateError
            If a kind has not finished its backfill.
        """
        total = 0
        self.passes = 0
        while not self._shutdown.is_set:
            changed = await self.run_pass()
            total += changed
            if self._shutdown.is_set:
                break
            if changed == 0:
                self._phase = SyncPhase.CONVERGED
                _logger.info("Update converged after %d passes with %d changes", self.passes, total)
                return total
        _logger.info("Update stopped by shutdown after %d passes with %d changes", self.passes, total)
        return total

    async def run_pass(self) -> int:
        """Poll and apply one pass; return the number of changed entities."""
        self._phase = SyncPhase.POLLING
        bound_at = self._clock()
        try:
            async with asyncio.TaskGroup() as tg:
                tasks = [tg.create_task(self._poll(kind, bound_at), name=f"poll-{kind.name}") for kind in self._kinds]
        except ExceptionGroup as group:
            raise first_exception(group) from group
        polled = [task.result() for task in tasks]

        self._phase = SyncPhase.APPLYING
        try:
            async with asyncio.TaskGroup() as tg:
                for result in polled:
                    tg.create_task(self._apply(result), name=f"apply-{result.kind.name}")
        except ExceptionGroup as group:
            raise first_exception(group) from group

        self.passes += 1
        changed = sum(len(result.changes) for result in polled)
        _logger.info(
            "Update pass %d: %s",
            self.passes,
            ", ".join(f"{result.kind.name}={len(result.changes)}" for result in polled) or "no kinds",
        )
        return changed

    async def _cursor(self, kind: EntityKind) -> int:
        cursor = self._settings.get(keys.last_event_id_key(kind.name), int)
        if cursor is not None:
            return cursor
        if not self._settings.is_backfill_complete(kind.name):
            raise SyncStateError(f"Backfill of {kind.name} has not completed")
        started = self._settings.get(keys.backfill_started_key(kind.name), datetime)
        if started is None:
            raise SyncStateError(f"Backfill of {kind.name} has no start timestamp")
        seeded = await kind.latest_event_id(started) or 0
        self._settings.put(keys.last_event_id_key(kind.name), seeded)
        _logger.info("Seeded %s event cursor at %d (backfill started %s)", kind.name, seeded, started.isoformat())
        return seeded

    async def _poll(self, kind: EntityKind, bound_at: datetime) -> PolledChanges:
        cursor = await self._cursor(kind)
        result = PolledChanges(kind=kind, cursor=cursor)
        bound = await kind.latest_event_id(bound_at)
        if bound is None or bound <= cursor:
            return result

        request_cursor = cursor
        while not self._shutdown.is_set:
            page = await kind.events_since(request_cursor, self._config.event_page_size)
            if not page.events:
                break
            last_taken = kind.collapse(page, bound, result.changes)
            if last_taken is not None:
                result.last_event_id = max(last_taken, result.last_event_id or last_taken)
            reached_bound = any(event.event_id >= bound for event in page.events)
            if reached_bound or page.next_cursor is None:
                break
            if page.next_cursor <= request_cursor:
                _logger.warning("Event cursor for %s did not advance past %d", kind.name, request_cursor)
                break
            request_cursor = page.next_cursor

        _logger.debug(
            "Polled %s: %d changes from events %d..%s",
            kind.name,
            len(result.changes),
            cursor,
            result.last_event_id,
        )
        return result

    async def _apply(self, polled: PolledChanges) -> None:
        kind = polled.kind
        cursor_key = keys.last_event_id_key(kind.name)
        ids = sorted(polled.changes)
        if not ids:
            if polled.next_cursor != polled.cursor:
                self._settings.put(cursor_key, polled.next_cursor)
            return

        chunk_size = self._config.fetch_chunk_size
        chunks = [ids[start : start + chunk_size] for start in range(0, len(ids), chunk_size)]
        deleted = 0
        for position, chunk in enumerate(chunks):
            if self._shutdown.is_set:
                _logger.info(
                    "Stopped applying %s after %d of %d chunks; cursor stays at %d",
                    kind.name,
                    position,
                    len(chunks),
                    polled.cursor,
                )
                return
            changes = {entity_id: polled.changes[entity_id] for entity_id in chunk}
            fetch_ids = [entity_id for entity_id, kind_ in changes.items() if kind_ is not ChangeKind.DELETED]
            fetched = await kind.fetch_latest(fetch_ids) if fetch_ids else {}
            async with self._store.async_write_batch() as batch:
                recorded = kind.stage_changes(changes, fetched, self._clock(), batch)
                if position == len(chunks) - 1:
                    self._settings.put(cursor_key, polled.next_cursor, batch=batch)
            deleted += sum(1 for kind_ in recorded.values() if kind_ is ChangeKind.DELETED)
        _logger.info(
            "Applied %d changes to %s (%d deleted), cursor now %d",
            len(ids),
            kind.name,
            deleted,
            polled.next_cursor,
        )
