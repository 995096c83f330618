"""Local versioned replica: key-value store, repositories and the change ledger."""

from roadfeed.storage.batch import BatchOperation, Delete, Put, WriteBatch
from roadfeed.storage.exported import ExportedFeatureStore
from roadfeed.storage.ledger import ChangeLedger
from roadfeed.storage.namespaces import Namespace
from roadfeed.storage.network import RoadNetworkRepository
from roadfeed.storage.objects import ObjectUpdate, RoadObjectRepository
from roadfeed.storage.settings import Checkpoint, SettingsStore
from roadfeed.storage.store import VersionedStore

__all__ = [
    "BatchOperation",
    "ChangeLedger",
    "Checkpoint",
    "Delete",
    "ExportedFeatureStore",
    "Namespace",
    "ObjectUpdate",
    "Put",
    "RoadNetworkRepository",
    "RoadObjectRepository",
    "SettingsStore",
    "VersionedStore",
    "WriteBatch",
]
