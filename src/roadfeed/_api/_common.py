"""Shared helpers for source API endpoint modules.

It is internal to roadfeed and may change at any time.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from roadfeed.exceptions import RoadFeedApiError

M = TypeVar("M", bound=BaseModel)


def require_mapping(payload: Any, *, endpoint: str) -> dict[str, Any]:
    if not isinstance(payload, dict):
        raise RoadFeedApiError(f"{endpoint} returned {type(payload).__name__}, expected an object", endpoint=endpoint)
    return payload


def parse_items(payload: Any, model: type[M], *, endpoint: str, key: str = "items") -> list[M]:
    """Validate ``payload[key]`` as a list of *model*."""
    body = require_mapping(payload, endpoint=endpoint)
    items = body.get(key, [])
    if not isinstance(items, list):
        raise RoadFeedApiError(f"{endpoint} field {key!r} is not a list", endpoint=endpoint)
    try:
        return [model.model_validate(item) for item in items]
    except ValidationError as exc:
        raise RoadFeedApiError(f"{endpoint} returned an invalid {model.__name__}: {exc}", endpoint=endpoint) from exc


def parse_model(payload: Any, model: type[M], *, endpoint: str) -> M:
    try:
        return model.model_validate(require_mapping(payload, endpoint=endpoint))
    except ValidationError as exc:
        raise RoadFeedApiError(f"{endpoint} returned an invalid {model.__name__}: {exc}", endpoint=endpoint) from exc


def parse_latest_event_id(payload: Any, *, endpoint: str) -> int | None:
    value = require_mapping(payload, endpoint=endpoint).get("eventId")
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise RoadFeedApiError(f"{endpoint} returned a non-integer eventId: {value!r}", endpoint=endpoint) from exc


def range_params(start: int, end: int | None, limit: int) -> dict[str, int | None]:
    """Query parameters selecting ids in ``(start, end]``, ascending."""
    return {"start": start, "end": end, "limit": limit}


def as_of_param(as_of: datetime) -> str:
    return as_of.isoformat()
