"""Synchronization of the local replica with the source API."""

from roadfeed.sync.backfill import BackfillCoordinator, IdRange, partition_id_space
from roadfeed.sync.changes import classify_object_event, collapse_link_sequence_events, collapse_object_events
from roadfeed.sync.kinds import EntityKind, LinkSequenceKind, ObjectTypeKind
from roadfeed.sync.shutdown import ShutdownSignal
from roadfeed.sync.update import SyncPhase, UpdateCoordinator

__all__ = [
    "BackfillCoordinator",
    "EntityKind",
    "IdRange",
    "LinkSequenceKind",
    "ObjectTypeKind",
    "ShutdownSignal",
    "SyncPhase",
    "UpdateCoordinator",
    "classify_object_event",
    "collapse_link_sequence_events",
    "collapse_object_events",
    "partition_id_space",
]
