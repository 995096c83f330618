"""Typed settings and backfill checkpoints."""

from __future__ import annotations

import dataclasses
import functools
import logging
from datetime import datetime
from typing import Any, TypeVar

from pydantic import TypeAdapter, ValidationError

from roadfeed.exceptions import CorruptRecordError
from roadfeed.storage import keys
from roadfeed.storage.batch import WriteBatch
from roadfeed.storage.namespaces import Namespace
from roadfeed.storage.store import VersionedStore

_logger = logging.getLogger(__name__)

T = TypeVar("T")


@functools.cache
def _adapter(tp: Any) -> TypeAdapter[Any]:
    return TypeAdapter(tp)


@dataclasses.dataclass(frozen=True)
class Checkpoint:
    """Progress of one backfill partition.

    ``last_id`` is the highest id written so far, ``None`` before the first page.
    """

    last_id: int | None = None
    completed: bool = False


class SettingsStore:
    """Small typed values in the ``settings`` namespace, JSON encoded."""

    _NS = Namespace.SETTINGS

    def __init__(self, store: VersionedStore) -> None:
        self._store = store

    def get(self, key: str, tp: type[T], *, batch: WriteBatch | None = None) -> T | None:
        raw = self._store.get(self._NS, key.encode(), batch=batch)
        if raw is None:
            return None
        try:
            value: T = _adapter(tp).validate_json(raw)
        except ValidationError as exc:
            raise CorruptRecordError(
                f"Setting {key!r} is not a valid {getattr(tp, '__name__', tp)}: {raw[:64]!r}",
                namespace=self._NS.value,
                key=key.encode(),
            ) from exc
        return value

    def put(self, key: str, value: Any, *, batch: WriteBatch | None = None) -> None:
        encoded = _adapter(type(value)).dump_json(value)
        with self._store.batch_scope(batch) as target:
            target.put(self._NS, key.encode(), encoded)

    def delete(self, key: str, *, batch: WriteBatch | None = None) -> None:
        with self._store.batch_scope(batch) as target:
            target.delete(self._NS, key.encode())

    def delete_prefix(self, prefix: str) -> int:
        removed = self._store.delete_prefix(self._NS, prefix.encode())
        _logger.debug("Deleted %d settings with prefix %r", removed, prefix)
        return removed

    def count_matching(self, prefix: str, suffix: str = "") -> int:
        """Count keys that start with *prefix* and end with *suffix*."""
        encoded_suffix = suffix.encode()
        return sum(
            1 for key in self._store.iterate_keys(self._NS, prefix.encode()) if key.endswith(encoded_suffix)
        )

    # ------------------------------------------------------------------
    # Backfill checkpoints
    # ------------------------------------------------------------------

    def checkpoint(self, kind: str, partition: int) -> Checkpoint:
        return Checkpoint(
            last_id=self.get(keys.range_last_id_key(kind, partition), int),
            completed=bool(self.get(keys.range_completed_key(kind, partition), bool)),
        )

    def save_checkpoint(self, kind: str, partition: int, last_id: int, batch: WriteBatch) -> None:
        self.put(keys.range_last_id_key(kind, partition), last_id, batch=batch)

    def complete_partition(self, kind: str, partition: int, *, batch: WriteBatch | None = None) -> None:
        self.put(keys.range_completed_key(kind, partition), True, batch=batch)

    def completed_partitions(self, kind: str) -> int:
        return self.count_matching(f"{kind}_backfill_range_", "_completed")

    def is_backfill_complete(self, kind: str) -> bool:
        return self.get(keys.backfill_completed_key(kind), datetime) is not None

    def reset_backfill(self, kind: str) -> int:
        """Forget all backfill progress for *kind* so the next run starts over."""
        return self.delete_prefix(f"{kind}_backfill_")
