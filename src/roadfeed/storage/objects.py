"""Repository for versioned road objects and their location index."""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Iterable, Iterator
from datetime import date

from pydantic import ValidationError

from roadfeed.exceptions import CorruptRecordError
from roadfeed.models.events import ChangeKind
from roadfeed.models.objects import RoadObject
from roadfeed.storage import keys
from roadfeed.storage.batch import WriteBatch
from roadfeed.storage.namespaces import Namespace
from roadfeed.storage.store import VersionedStore

_logger = logging.getLogger(__name__)

_PRUNE_BATCH_SIZE = 1000


@dataclasses.dataclass(frozen=True)
class ObjectUpdate:
    """Latest state of one object as observed by an update pass.

    ``obj`` is required for NEW and MODIFIED and ignored for DELETED.
    """

    object_id: int
    change: ChangeKind
    obj: RoadObject | None = None


def _decode(key: bytes, raw: bytes) -> RoadObject:
    try:
        return RoadObject.model_validate_json(raw)
    except ValidationError as exc:
        type_id, object_id = keys.decode_object_key(key)
        raise CorruptRecordError(
            f"Undecodable road object {type_id}/{object_id}",
            namespace=Namespace.ROAD_OBJECTS.value,
            key=key,
        ) from exc


class RoadObjectRepository:
    """Road objects keyed by ``(type, id)`` plus an index by link sequence.

    The index lets the diff engine find every object of a type located on
    a changed link sequence without scanning all objects.
    """

    _NS = Namespace.ROAD_OBJECTS

    def __init__(self, store: VersionedStore) -> None:
        self._store = store

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def find(self, type_id: int, object_id: int, *, batch: WriteBatch | None = None) -> RoadObject | None:
        key = keys.object_key(type_id, object_id)
        raw = self._store.get(self._NS, key, batch=batch)
        return _decode(key, raw) if raw is not None else None

    def find_many(self, type_id: int, object_ids: Iterable[int]) -> dict[int, RoadObject]:
        """Return stored objects among *object_ids*; absent ids are left out.

        Raises
        ------
        CorruptRecordError
            For the first record that cannot be decoded. Use :meth:`find`
            per id to isolate failures.
        """
        found = self._store.get_many(self._NS, (keys.object_key(type_id, i) for i in object_ids))
        return {keys.decode_object_key(key)[1]: _decode(key, raw) for key, raw in found.items()}

    def find_located_object_ids(self, type_id: int, sequence_ids: Iterable[int]) -> set[int]:
        """Ids of objects of *type_id* located on any of *sequence_ids*."""
        located: set[int] = set()
        for sequence_id in sequence_ids:
            prefix = keys.location_sequence_prefix(type_id, sequence_id)
            for key in self._store.iterate_keys(self._NS, prefix):
                located.add(keys.decode_location_key(key)[2])
        return located

    def iterate_ids(self, type_id: int) -> Iterator[int]:
        for key in self._store.iterate_keys(self._NS, keys.object_type_prefix(type_id)):
            yield keys.decode_object_key(key)[1]

    def iterate(self, type_id: int) -> Iterator[RoadObject]:
        for key, raw in self._store.iterate_prefix(self._NS, keys.object_type_prefix(type_id)):
            yield _decode(key, raw)

    def count(self, type_id: int) -> int:
        return self._store.count_prefix(self._NS, keys.object_type_prefix(type_id))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _write(self, obj: RoadObject, previous: RoadObject | None, batch: WriteBatch) -> None:
        if previous is not None:
            for sequence_id in previous.sequence_ids - obj.sequence_ids:
                batch.delete(self._NS, keys.location_key(obj.type_id, sequence_id, obj.id))
        batch.put(self._NS, keys.object_key(obj.type_id, obj.id), obj.model_dump_json().encode())
        for sequence_id in obj.sequence_ids:
            batch.put(self._NS, keys.location_key(obj.type_id, sequence_id, obj.id), b"")

    def _previous(self, type_id: int, object_id: int, batch: WriteBatch) -> RoadObject | None:
        try:
            return self.find(type_id, object_id, batch=batch)
        except CorruptRecordError:
            _logger.warning("Replacing undecodable road object %d/%d", type_id, object_id)
            return None

    def insert_many(self, objects: Iterable[RoadObject], *, batch: WriteBatch) -> int:
        """Store *objects*, skipping any older than the stored version.

        Returns the number of objects written.
        """
        written = 0
        for obj in objects:
            previous = self._previous(obj.type_id, obj.id, batch)
            if previous is not None and previous.version > obj.version:
                _logger.debug(
                    "Skipping stale version %d of object %d/%d (stored %d)",
                    obj.version,
                    obj.type_id,
                    obj.id,
                    previous.version,
                )
                continue
            self._write(obj, previous, batch)
            written += 1
        return written

    def apply_updates(self, type_id: int, updates: Iterable[ObjectUpdate], *, batch: WriteBatch) -> int:
        """Apply observed changes; DELETED tombstones the object and drops its index entries.

        Returns the number of objects whose stored state changed.
        """
        applied = 0
        for update in updates:
            previous = self._previous(type_id, update.object_id, batch)
            if update.change is ChangeKind.DELETED:
                if previous is None or previous.removed:
                    continue
                for sequence_id in previous.sequence_ids:
                    batch.delete(self._NS, keys.location_key(type_id, sequence_id, update.object_id))
                batch.put(
                    self._NS,
                    keys.object_key(type_id, update.object_id),
                    previous.tombstone().model_dump_json().encode(),
                )
                applied += 1
                continue

            if update.obj is None:
                raise ValueError(f"{update.change} update for object {type_id}/{update.object_id} has no object")
            if previous is not None and previous.version > update.obj.version:
                continue
            self._write(update.obj, previous, batch)
            applied += 1
        return applied

    def prune_expired(self, type_id: int, today: date) -> int:
        """Delete tombstoned objects and objects whose validity ended by *today*."""
        pruned = 0
        expired: list[RoadObject] = []
        for key, raw in self._store.iterate_prefix(self._NS, keys.object_type_prefix(type_id)):
            try:
                obj = _decode(key, raw)
            except CorruptRecordError as exc:
                _logger.warning("Skipping %s while pruning", exc)
                continue
            if obj.has_expired_by(today):
                expired.append(obj)
            if len(expired) >= _PRUNE_BATCH_SIZE:
                pruned += self._delete(expired)
                expired = []
        if expired:
            pruned += self._delete(expired)
        if pruned:
            _logger.info("Pruned %d expired objects of type %d", pruned, type_id)
        return pruned

    def _delete(self, objects: list[RoadObject]) -> int:
        with self._store.write_batch() as batch:
            for obj in objects:
                for sequence_id in obj.sequence_ids:
                    batch.delete(self._NS, keys.location_key(obj.type_id, sequence_id, obj.id))
                batch.delete(self._NS, keys.object_key(obj.type_id, obj.id))
        return len(objects)

    def clear_type(self, type_id: int) -> int:
        removed = self._store.delete_prefix(self._NS, keys.object_type_prefix(type_id))
        self._store.delete_prefix(self._NS, keys.location_type_prefix(type_id))
        _logger.info("Cleared %d objects of type %d", removed, type_id)
        return removed
