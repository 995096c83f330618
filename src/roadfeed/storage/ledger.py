"""Dirty-entity ledger: what changed since the last successful export.

Entries are written in the same batch as the entity change that caused
them and are only cleared once an exporter has accepted the resulting
feature changes. Draining is a read; a crash between drain and clear
leaves every entry in place for the next cycle.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from datetime import datetime

from pydantic import ValidationError

from roadfeed.models.events import ChangeKind, DirtyLinkSequence, DirtyObjectChange
from roadfeed.storage import keys
from roadfeed.storage.batch import WriteBatch
from roadfeed.storage.namespaces import Namespace
from roadfeed.storage.store import VersionedStore

_logger = logging.getLogger(__name__)


class ChangeLedger:
    """Dirty markers for link sequences and road objects."""

    _OBJECTS = Namespace.DIRTY_OBJECTS
    _SEQUENCES = Namespace.DIRTY_LINK_SEQUENCES

    def __init__(self, store: VersionedStore) -> None:
        self._store = store

    def _existing_kind(self, key: bytes, batch: WriteBatch) -> ChangeKind | None:
        raw = self._store.get(self._OBJECTS, key, batch=batch)
        if raw is None:
            return None
        try:
            return DirtyObjectChange.model_validate_json(raw).kind
        except ValidationError:
            _logger.warning("Overwriting undecodable dirty entry %s", key.hex())
            return None

    def mark_objects_dirty(
        self,
        type_id: int,
        changes: Mapping[int, ChangeKind],
        timestamp: datetime,
        *,
        batch: WriteBatch | None = None,
    ) -> None:
        """Record *changes* for objects of *type_id*.

        The timestamp of an existing entry is replaced; its change kind is
        merged with the new one so that a recorded deletion is never lost.
        """
        if not changes:
            return
        with self._store.batch_scope(batch) as target:
            for object_id, kind in changes.items():
                key = keys.typed_id_key(type_id, object_id)
                existing = self._existing_kind(key, target)
                merged = kind if existing is None else existing.merge(kind)
                entry = DirtyObjectChange(object_id=object_id, kind=merged, marked_at=timestamp)
                target.put(self._OBJECTS, key, entry.model_dump_json().encode())

    def mark_link_sequences_dirty(
        self,
        sequence_ids: Iterable[int],
        timestamp: datetime,
        *,
        batch: WriteBatch | None = None,
    ) -> None:
        with self._store.batch_scope(batch) as target:
            for sequence_id in sequence_ids:
                entry = DirtyLinkSequence(sequence_id=sequence_id, marked_at=timestamp)
                target.put(self._SEQUENCES, keys.link_sequence_key(sequence_id), entry.model_dump_json().encode())

    def drain_dirty_object_changes(self, type_id: int) -> dict[int, ChangeKind]:
        """Return every pending object change for *type_id* without clearing it.

        Undecodable entries are reported as MODIFIED so the object is
        re-evaluated rather than forgotten.
        """
        changes: dict[int, ChangeKind] = {}
        for key, raw in self._store.iterate_prefix(self._OBJECTS, keys.type_prefix(type_id)):
            object_id = keys.decode_typed_id_key(key)[1]
            try:
                changes[object_id] = DirtyObjectChange.model_validate_json(raw).kind
            except ValidationError:
                _logger.warning("Undecodable dirty entry for object %d/%d, treating as modified", type_id, object_id)
                changes[object_id] = ChangeKind.MODIFIED
        return changes

    def drain_dirty_link_sequence_ids(self) -> set[int]:
        return {keys.decode_link_sequence_key(key) for key in self._store.iterate_keys(self._SEQUENCES)}

    def clear_object_ids(self, type_id: int, object_ids: Iterable[int], *, batch: WriteBatch | None = None) -> None:
        with self._store.batch_scope(batch) as target:
            for object_id in object_ids:
                target.delete(self._OBJECTS, keys.typed_id_key(type_id, object_id))

    def clear_all(self, type_id: int) -> int:
        return self._store.delete_prefix(self._OBJECTS, keys.type_prefix(type_id))

    def clear_link_sequences(
        self,
        sequence_ids: Iterable[int] | None = None,
        *,
        batch: WriteBatch | None = None,
    ) -> None:
        """Clear the given dirty link sequences, or all of them when *sequence_ids* is ``None``."""
        if sequence_ids is None:
            if batch is not None:
                sequence_ids = self.drain_dirty_link_sequence_ids()
            else:
                cleared = self._store.clear_namespace(self._SEQUENCES)
                _logger.debug("Cleared %d dirty link sequences", cleared)
                return
        with self._store.batch_scope(batch) as target:
            for sequence_id in sequence_ids:
                target.delete(self._SEQUENCES, keys.link_sequence_key(sequence_id))

    def count_dirty_objects(self, type_id: int) -> int:
        return self._store.count_prefix(self._OBJECTS, keys.type_prefix(type_id))

    def has_pending(self) -> bool:
        return (
            self._store.count_prefix(self._OBJECTS) > 0 or self._store.count_prefix(self._SEQUENCES) > 0
        )
