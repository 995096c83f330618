"""Record of what was last exported per feature."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime

from pydantic import ValidationError

from roadfeed.models.feature import ExportedFeature, FeatureChange, UpdateType
from roadfeed.storage import keys
from roadfeed.storage.batch import WriteBatch
from roadfeed.storage.namespaces import Namespace
from roadfeed.storage.store import VersionedStore

_logger = logging.getLogger(__name__)


class ExportedFeatureStore:
    """Last exported hash and content per ``(type, feature id)``."""

    _NS = Namespace.EXPORTED_FEATURES

    def __init__(self, store: VersionedStore) -> None:
        self._store = store

    def get_many(self, type_id: int, feature_ids: Iterable[int]) -> dict[int, ExportedFeature]:
        """Return previous exports among *feature_ids*.

        Undecodable records are logged and deleted, and reported as absent
        so the feature is exported again as an Add.
        """
        found = self._store.get_many(self._NS, (keys.typed_id_key(type_id, i) for i in feature_ids))
        exported: dict[int, ExportedFeature] = {}
        corrupt: list[bytes] = []
        for key, raw in found.items():
            feature_id = keys.decode_typed_id_key(key)[1]
            try:
                exported[feature_id] = ExportedFeature.model_validate_json(raw)
            except ValidationError as exc:
                _logger.error(
                    "Deleting undecodable exported feature %d/%d: %s",
                    type_id,
                    feature_id,
                    exc.errors()[0]["msg"] if exc.errors() else exc,
                )
                corrupt.append(key)
        if corrupt:
            with self._store.write_batch() as batch:
                for key in corrupt:
                    batch.delete(self._NS, key)
        return exported

    def record(
        self,
        type_id: int,
        changes: Iterable[FeatureChange],
        timestamp: datetime,
        *,
        batch: WriteBatch,
    ) -> None:
        """Store ADD/MODIFY changes as the new baseline and forget REMOVEd features."""
        for change in changes:
            key = keys.typed_id_key(type_id, change.feature_id)
            if change.update_type is UpdateType.REMOVE:
                batch.delete(self._NS, key)
                continue
            exported = ExportedFeature(
                feature_id=change.feature_id,
                type_id=type_id,
                content_hash=change.content_hash,
                update_type=change.update_type,
                exported_at=timestamp,
                content=change.content,
            )
            batch.put(self._NS, key, exported.model_dump_json().encode())

    def count(self, type_id: int) -> int:
        return self._store.count_prefix(self._NS, keys.type_prefix(type_id))

    def clear(self, type_id: int) -> int:
        removed = self._store.delete_prefix(self._NS, keys.type_prefix(type_id))
        _logger.info("Cleared %d exported features of type %d", removed, type_id)
        return removed
