"""Runtime configuration for roadfeed."""

from __future__ import annotations

import dataclasses
import os
from pathlib import Path
from typing import Any

from roadfeed._constants import (
    DEFAULT_PARTITION_ID_CEILING,
    EVENT_PAGE_SIZE,
    FETCH_IDS_CHUNK_SIZE,
    LINK_SEQUENCE_PAGE_SIZE,
    MAXIMUM_HEIGHT_TYPE,
    OBJECT_PAGE_SIZE,
    ROAD_NAME_PROPERTY,
    ROAD_NAME_TYPE,
    SIGNED_HEIGHT_PROPERTY,
    SPEED_LIMIT_KMH_PROPERTY,
    SPEED_LIMIT_TYPE,
)
from roadfeed.exceptions import RoadFeedConfigError


def _env_int(env: os._Environ[str] | dict[str, str], key: str) -> int | None:
    raw = env.get(key)
    if raw is None or not raw.strip():
        return None
    try:
        return int(raw)
    except ValueError as exc:
        raise RoadFeedConfigError(f"{key} must be an integer, got {raw!r}") from exc


def _env_float(env: os._Environ[str] | dict[str, str], key: str) -> float | None:
    raw = env.get(key)
    if raw is None or not raw.strip():
        return None
    try:
        return float(raw)
    except ValueError as exc:
        raise RoadFeedConfigError(f"{key} must be a number, got {raw!r}") from exc


def _env_int_list(env: os._Environ[str] | dict[str, str], key: str) -> tuple[int, ...] | None:
    raw = env.get(key)
    if raw is None:
        return None
    try:
        return tuple(int(part) for part in raw.split(",") if part.strip())
    except ValueError as exc:
        raise RoadFeedConfigError(f"{key} must be a comma separated list of integers, got {raw!r}") from exc


@dataclasses.dataclass(frozen=True)
class FeatureTypeSpec:
    """How a road object type maps to an exported feature type.

    Parameters
    ----------
    type_id : int
        Object type id in the source data catalogue.
    name : str
        Exported feature type name (e.g. ``"SpeedLimit"``).
    properties : dict[int, str]
        Source property-type id -> exported property name. Every listed
        property is required; an object missing one has no valid content.
    """

    type_id: int
    name: str
    properties: dict[int, str] = dataclasses.field(default_factory=dict)


DEFAULT_FEATURE_TYPES: tuple[FeatureTypeSpec, ...] = (
    FeatureTypeSpec(SPEED_LIMIT_TYPE, "SpeedLimit", {SPEED_LIMIT_KMH_PROPERTY: "maximumSpeedLimit"}),
    FeatureTypeSpec(ROAD_NAME_TYPE, "RoadName", {ROAD_NAME_PROPERTY: "roadName"}),
    FeatureTypeSpec(MAXIMUM_HEIGHT_TYPE, "MaximumHeight", {SIGNED_HEIGHT_PROPERTY: "maximumHeight"}),
)


@dataclasses.dataclass(frozen=True)
class SyncConfig:
    """Synchronization configuration.

    Parameters
    ----------
    base_url : str
        Base URL of the source road data API.
    database_path : Path
        SQLite file backing the versioned store.
    export_directory : Path
        Where the default exporter writes change files.
    feature_types : tuple[FeatureTypeSpec, ...]
        Object types that are exported as features.
    supporting_types : tuple[int, ...]
        Object types that are synchronized but not exported.
    backfill_partitions : int
        Number of fixed id ranges per entity kind during backfill.
    partition_id_ceiling : int
        Upper id used to compute partition bounds.
    link_sequence_page_size, object_page_size, event_page_size : int
        Page sizes requested from the source API.
    fetch_chunk_size : int
        Ids per "fetch by ids" request.
    max_concurrent_requests : int
        Bound on outstanding requests to the source API.
    request_timeout : float
        Per request timeout in seconds.
    retry_attempts : int
        Attempts per request for transient failures (>= 1).
    retry_base_delay, retry_max_delay : float
        Exponential backoff parameters in seconds.
    hash_seed : int
        Seed keying the feature content hash. Changing it invalidates all
        stored hashes (every feature is re-emitted once).
    auto_interval : float
        Seconds between cycles in ``auto`` mode.
    """

    base_url: str
    database_path: Path = Path("roadfeed.sqlite3")
    export_directory: Path = Path("exports")
    feature_types: tuple[FeatureTypeSpec, ...] = DEFAULT_FEATURE_TYPES
    supporting_types: tuple[int, ...] = ()
    backfill_partitions: int = 4
    partition_id_ceiling: int = DEFAULT_PARTITION_ID_CEILING
    link_sequence_page_size: int = LINK_SEQUENCE_PAGE_SIZE
    object_page_size: int = OBJECT_PAGE_SIZE
    event_page_size: int = EVENT_PAGE_SIZE
    fetch_chunk_size: int = FETCH_IDS_CHUNK_SIZE
    max_concurrent_requests: int = 8
    request_timeout: float = 60.0
    retry_attempts: int = 5
    retry_base_delay: float = 1.0
    retry_max_delay: float = 30.0
    hash_seed: int = 0
    auto_interval: float = 3600.0

    def __post_init__(self) -> None:
        if not self.base_url:
            raise RoadFeedConfigError("base_url is required (set ROADFEED_BASE_URL)")
        if self.backfill_partitions < 1:
            raise RoadFeedConfigError("backfill_partitions must be >= 1")
        if self.retry_attempts < 1:
            raise RoadFeedConfigError("retry_attempts must be >= 1")
        if not 0 <= self.hash_seed < 2**64:
            raise RoadFeedConfigError("hash_seed must be an unsigned 64-bit integer")
        if self.max_concurrent_requests < 1:
            raise RoadFeedConfigError("max_concurrent_requests must be >= 1")
        for size_field in ("link_sequence_page_size", "object_page_size", "event_page_size", "fetch_chunk_size"):
            if getattr(self, size_field) < 1:
                raise RoadFeedConfigError(f"{size_field} must be >= 1")

    @property
    def object_types(self) -> tuple[int, ...]:
        """All synchronized object types, feature types first."""
        feature_ids = tuple(spec.type_id for spec in self.feature_types)
        return feature_ids + tuple(t for t in self.supporting_types if t not in feature_ids)

    def page_size_for(self, kind: str) -> int:
        """Page size for backfill reads of the named entity kind."""
        if kind == "link_sequences":
            return self.link_sequence_page_size
        return self.object_page_size

    def feature_type(self, type_id: int) -> FeatureTypeSpec:
        for spec in self.feature_types:
            if spec.type_id == type_id:
                return spec
        raise RoadFeedConfigError(f"Object type {type_id} is not configured as a feature type")

    @classmethod
    def from_env(cls, **overrides: Any) -> SyncConfig:
        """Create configuration from ``ROADFEED_*`` environment variables.

        Explicit keyword arguments override environment values.

        ``ROADFEED_FEATURE_TYPES`` selects a subset of the known feature types
        by id (e.g. ``"105,538"``); unknown ids are a configuration error.

        Raises
        ------
        RoadFeedConfigError
            If a required setting is missing or a value cannot be parsed.
        """
        env = os.environ
        config_kwargs: dict[str, Any] = {}

        _ENV_STR_MAP = {
            "ROADFEED_BASE_URL": "base_url",
        }
        for env_key, field_name in _ENV_STR_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        _ENV_PATH_MAP = {
            "ROADFEED_DATABASE_PATH": "database_path",
            "ROADFEED_EXPORT_DIRECTORY": "export_directory",
        }
        for env_key, field_name in _ENV_PATH_MAP.items():
            val = env.get(env_key)
            if val:
                config_kwargs[field_name] = Path(val)

        _ENV_INT_MAP = {
            "ROADFEED_BACKFILL_PARTITIONS": "backfill_partitions",
            "ROADFEED_PARTITION_ID_CEILING": "partition_id_ceiling",
            "ROADFEED_EVENT_PAGE_SIZE": "event_page_size",
            "ROADFEED_MAX_CONCURRENT_REQUESTS": "max_concurrent_requests",
            "ROADFEED_RETRY_ATTEMPTS": "retry_attempts",
            "ROADFEED_HASH_SEED": "hash_seed",
        }
        for env_key, field_name in _ENV_INT_MAP.items():
            int_val = _env_int(env, env_key)
            if int_val is not None:
                config_kwargs[field_name] = int_val

        _ENV_FLOAT_MAP = {
            "ROADFEED_REQUEST_TIMEOUT": "request_timeout",
            "ROADFEED_AUTO_INTERVAL": "auto_interval",
        }
        for env_key, field_name in _ENV_FLOAT_MAP.items():
            float_val = _env_float(env, env_key)
            if float_val is not None:
                config_kwargs[field_name] = float_val

        feature_ids = _env_int_list(env, "ROADFEED_FEATURE_TYPES")
        if feature_ids is not None and "feature_types" not in overrides:
            known = {spec.type_id: spec for spec in DEFAULT_FEATURE_TYPES}
            unknown = [type_id for type_id in feature_ids if type_id not in known]
            if unknown:
                raise RoadFeedConfigError(f"ROADFEED_FEATURE_TYPES contains unknown type ids: {unknown}")
            config_kwargs["feature_types"] = tuple(known[type_id] for type_id in feature_ids)

        supporting = _env_int_list(env, "ROADFEED_SUPPORTING_TYPES")
        if supporting is not None:
            config_kwargs["supporting_types"] = supporting

        config_kwargs.update(overrides)
        if "base_url" not in config_kwargs:
            raise RoadFeedConfigError("base_url is required (set ROADFEED_BASE_URL)")

        return cls(**config_kwargs)
