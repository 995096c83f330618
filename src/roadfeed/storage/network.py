"""Repository for road link sequences."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Mapping
from datetime import date

from pydantic import ValidationError

from roadfeed.exceptions import CorruptRecordError
from roadfeed.models.network import RoadLinkSequence
from roadfeed.storage import keys
from roadfeed.storage.batch import WriteBatch
from roadfeed.storage.namespaces import Namespace
from roadfeed.storage.store import VersionedStore

_logger = logging.getLogger(__name__)


def _decode(key: bytes, raw: bytes) -> RoadLinkSequence:
    try:
        return RoadLinkSequence.model_validate_json(raw)
    except ValidationError as exc:
        raise CorruptRecordError(
            f"Undecodable link sequence {keys.decode_link_sequence_key(key)}",
            namespace=Namespace.ROAD_LINKS.value,
            key=key,
        ) from exc


class RoadNetworkRepository:
    """Link sequences keyed by sequence id.

    Links whose validity ended before the write date are pruned on every
    write, so only current and future links are kept.
    """

    _NS = Namespace.ROAD_LINKS

    def __init__(self, store: VersionedStore) -> None:
        self._store = store

    def get(self, sequence_id: int) -> RoadLinkSequence | None:
        key = keys.link_sequence_key(sequence_id)
        raw = self._store.get(self._NS, key)
        return _decode(key, raw) if raw is not None else None

    def get_many(self, sequence_ids: Iterable[int]) -> dict[int, RoadLinkSequence]:
        """Return the stored sequences among *sequence_ids*; absent ids are left out."""
        found = self._store.get_many(self._NS, (keys.link_sequence_key(i) for i in sequence_ids))
        return {keys.decode_link_sequence_key(key): _decode(key, raw) for key, raw in found.items()}

    def insert_many(self, sequences: Iterable[RoadLinkSequence], *, today: date, batch: WriteBatch) -> int:
        count = 0
        for sequence in sequences:
            batch.put(self._NS, keys.link_sequence_key(sequence.id), sequence.pruned(today).model_dump_json().encode())
            count += 1
        return count

    def update_many(
        self,
        updates: Mapping[int, RoadLinkSequence | None],
        *,
        today: date,
        batch: WriteBatch,
    ) -> int:
        """Replace or delete sequences; a ``None`` value deletes the sequence."""
        for sequence_id, sequence in updates.items():
            key = keys.link_sequence_key(sequence_id)
            if sequence is None:
                batch.delete(self._NS, key)
            else:
                batch.put(self._NS, key, sequence.pruned(today).model_dump_json().encode())
        return len(updates)

    def iterate(self) -> Iterator[RoadLinkSequence]:
        for key, raw in self._store.iterate_prefix(self._NS):
            yield _decode(key, raw)

    def count(self) -> int:
        return self._store.count_prefix(self._NS)

    def clear(self) -> int:
        removed = self._store.clear_namespace(self._NS)
        _logger.info("Cleared %d link sequences", removed)
        return removed
