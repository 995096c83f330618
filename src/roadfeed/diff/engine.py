"""Classify dirty features against their last export."""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Iterable, Mapping
from datetime import datetime

from roadfeed.diff.features import FeatureBuilder
from roadfeed.diff.hashing import content_hash
from roadfeed.exceptions import CorruptRecordError, FeatureLookupError
from roadfeed.models.events import ChangeKind
from roadfeed.models.feature import (
    Classification,
    ExportedFeature,
    FeatureChange,
    FeatureContent,
    UpdateType,
)
from roadfeed.storage.exported import ExportedFeatureStore
from roadfeed.storage.ledger import ChangeLedger
from roadfeed.storage.objects import RoadObjectRepository
from roadfeed.storage.store import VersionedStore

_logger = logging.getLogger(__name__)

_CHUNK_SIZE = 1000


@dataclasses.dataclass
class DiffResult:
    """Outcome of diffing one feature type.

    ``processed`` holds every id that was evaluated, emitted or not;
    ``failed`` holds ids whose content could not be determined.
    ``direct_ids`` are the ids that had their own ledger entry, as opposed
    to ids reached only through a dirty link sequence.
    """

    type_id: int
    changes: list[FeatureChange] = dataclasses.field(default_factory=list)
    processed: set[int] = dataclasses.field(default_factory=set)
    failed: set[int] = dataclasses.field(default_factory=set)
    direct_ids: set[int] = dataclasses.field(default_factory=set)
    counts: dict[Classification, int] = dataclasses.field(
        default_factory=lambda: dict.fromkeys(Classification, 0)
    )

    @property
    def indirect_failures(self) -> set[int]:
        return self.failed - self.direct_ids


class FeatureDiffEngine:
    """Turns drained ledger entries into the minimal set of feature changes."""

    def __init__(
        self,
        store: VersionedStore,
        objects: RoadObjectRepository,
        exported: ExportedFeatureStore,
        ledger: ChangeLedger,
        builders: Mapping[int, FeatureBuilder],
        *,
        hash_seed: int = 0,
    ) -> None:
        self._store = store
        self._objects = objects
        self._exported = exported
        self._ledger = ledger
        self._builders = dict(builders)
        self._hash_seed = hash_seed

    def classify(
        self,
        change: ChangeKind,
        content: FeatureContent | None,
        previous: ExportedFeature | None,
    ) -> tuple[Classification, int | None]:
        """Return the classification and, for ADD/MODIFY, the new content hash."""
        if change is ChangeKind.DELETED or content is None:
            return (Classification.REMOVE if previous is not None else Classification.UNCHANGED), None
        digest = content_hash(content, self._hash_seed)
        if previous is None:
            return Classification.ADD, digest
        if previous.content_hash == digest:
            return Classification.UNCHANGED, digest
        return Classification.MODIFY, digest

    def _content(self, type_id: int, object_id: int, change: ChangeKind) -> FeatureContent | None:
        if change is ChangeKind.DELETED:
            return None
        obj = self._objects.find(type_id, object_id)
        if obj is None:
            return None
        return self._builders[type_id].build(obj)

    def diff(
        self,
        type_id: int,
        object_changes: Mapping[int, ChangeKind],
        dirty_sequence_ids: Iterable[int],
        timestamp: datetime,
    ) -> DiffResult:
        """Classify every feature of *type_id* affected by the given changes.

        Objects located on a dirty link sequence are evaluated as MODIFIED
        unless they already have an entry of their own.
        """
        if type_id not in self._builders:
            raise KeyError(f"No feature builder for object type {type_id}")
        result = DiffResult(type_id=type_id, direct_ids=set(object_changes))
        affected = dict(object_changes)
        sequence_ids = set(dirty_sequence_ids)
        if sequence_ids:
            for object_id in self._objects.find_located_object_ids(type_id, sequence_ids):
                affected.setdefault(object_id, ChangeKind.MODIFIED)

        ids = sorted(affected)
        for start in range(0, len(ids), _CHUNK_SIZE):
            chunk = ids[start : start + _CHUNK_SIZE]
            previous_exports = self._exported.get_many(type_id, chunk)
            for object_id in chunk:
                change = affected[object_id]
                try:
                    content = self._content(type_id, object_id, change)
                except (CorruptRecordError, FeatureLookupError) as exc:
                    _logger.error("Cannot evaluate feature %d/%d: %s", type_id, object_id, exc)
                    result.failed.add(object_id)
                    continue
                previous = previous_exports.get(object_id)
                classification, digest = self.classify(change, content, previous)
                result.counts[classification] += 1
                result.processed.add(object_id)
                feature_change = self._change(type_id, object_id, classification, content, digest, previous, timestamp)
                if feature_change is not None:
                    result.changes.append(feature_change)

        _logger.info(
            "Diffed %d features of type %d: %s, %d failed",
            len(ids),
            type_id,
            ", ".join(f"{name}={count}" for name, count in result.counts.items()),
            len(result.failed),
        )
        return result

    @staticmethod
    def _change(
        type_id: int,
        object_id: int,
        classification: Classification,
        content: FeatureContent | None,
        digest: int | None,
        previous: ExportedFeature | None,
        timestamp: datetime,
    ) -> FeatureChange | None:
        update_type = classification.update_type
        if update_type is None:
            return None
        if update_type is UpdateType.REMOVE:
            assert previous is not None  # noqa: S101
            retracted = previous.content.model_copy(update={"valid_to": timestamp.date()})
            return FeatureChange(
                feature_id=object_id,
                type_id=type_id,
                update_type=update_type,
                content=retracted,
                content_hash=previous.content_hash,
            )
        assert content is not None and digest is not None  # noqa: S101
        return FeatureChange(
            feature_id=object_id,
            type_id=type_id,
            update_type=update_type,
            content=content,
            content_hash=digest,
        )

    def commit(
        self,
        result: DiffResult,
        timestamp: datetime,
        *,
        retry_failed_as: ChangeKind | None = None,
    ) -> None:
        """Persist the outcome after the exporter accepted ``result.changes``.

        Updates the exported baseline and clears the ledger entries of every
        processed id in one batch. Failed ids that were only reached through
        a dirty link sequence get an entry of their own, so clearing that
        sequence afterwards does not lose them. With *retry_failed_as*, every
        failed id is marked dirty with that kind; callers that diff ids the
        ledger does not track (snapshots) use it to keep failures retryable.
        """
        with self._store.write_batch() as batch:
            self._exported.record(result.type_id, result.changes, timestamp, batch=batch)
            self._ledger.clear_object_ids(result.type_id, result.processed, batch=batch)
            retry = {object_id: ChangeKind.MODIFIED for object_id in result.indirect_failures}
            if retry_failed_as is not None:
                retry.update(dict.fromkeys(result.failed, retry_failed_as))
            self._ledger.mark_objects_dirty(result.type_id, retry, timestamp, batch=batch)
        if result.failed:
            _logger.warning(
                "%d features of type %d stay dirty for the next cycle",
                len(result.failed),
                result.type_id,
            )
