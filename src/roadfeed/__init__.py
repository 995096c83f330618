"""roadfeed - Local road network replica with an incremental feature change feed."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("roadfeed")
except PackageNotFoundError:
    __version__ = "0+local"
from roadfeed.config import FeatureTypeSpec, SyncConfig
from roadfeed.cycle import CycleReport, RoadFeedApp
from roadfeed.exceptions import (
    CorruptRecordError,
    FeatureLookupError,
    RoadFeedApiError,
    RoadFeedConfigError,
    RoadFeedError,
    RoadFeedRateLimitError,
    RoadFeedTransportError,
    StoreCommitError,
    StoreError,
    SyncStateError,
)
from roadfeed.export import DirectoryExporter, ExportSummary, FeatureExporter
from roadfeed.models import (
    ChangeKind,
    FeatureChange,
    FeatureContent,
    RoadLinkSequence,
    RoadObject,
    UpdateType,
)
from roadfeed.sync import ShutdownSignal

__all__ = [
    "ChangeKind",
    "CorruptRecordError",
    "CycleReport",
    "DirectoryExporter",
    "ExportSummary",
    "FeatureChange",
    "FeatureContent",
    "FeatureExporter",
    "FeatureLookupError",
    "FeatureTypeSpec",
    "RoadFeedApiError",
    "RoadFeedApp",
    "RoadFeedConfigError",
    "RoadFeedError",
    "RoadFeedRateLimitError",
    "RoadFeedTransportError",
    "RoadLinkSequence",
    "RoadObject",
    "ShutdownSignal",
    "StoreCommitError",
    "StoreError",
    "SyncConfig",
    "SyncStateError",
    "UpdateType",
    "__version__",
]
