"""Feature change detection: content building, hashing and classification."""

from roadfeed.diff.engine import DiffResult, FeatureDiffEngine
from roadfeed.diff.features import FeatureBuilder, RoadFeatureBuilder
from roadfeed.diff.geometry import EncodedLocation, LinearGeometryEncoder, LocationEncoder
from roadfeed.diff.hashing import canonical_bytes, content_hash

__all__ = [
    "DiffResult",
    "EncodedLocation",
    "FeatureBuilder",
    "FeatureDiffEngine",
    "LinearGeometryEncoder",
    "LocationEncoder",
    "RoadFeatureBuilder",
    "canonical_bytes",
    "content_hash",
]
