"""Road object endpoints.

Endpoints:
  - /objects/{type_id} (id range or explicit ids)
  - /objects/{type_id}/events
  - /objects/{type_id}/events/latest
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime

from roadfeed._api._common import (
    as_of_param,
    parse_items,
    parse_latest_event_id,
    parse_model,
    range_params,
)
from roadfeed._transport import Transport
from roadfeed.exceptions import RoadFeedApiError
from roadfeed.models.events import ObjectEventPage
from roadfeed.models.objects import RoadObject

_logger = logging.getLogger(__name__)


def _check_type(objects: list[RoadObject], type_id: int, endpoint: str) -> list[RoadObject]:
    for obj in objects:
        if obj.type_id != type_id:
            raise RoadFeedApiError(
                f"{endpoint} returned object {obj.id} of type {obj.type_id}",
                endpoint=endpoint,
            )
    return objects


async def stream_objects(
    transport: Transport,
    type_id: int,
    start: int,
    end: int | None,
    page_size: int,
) -> list[RoadObject]:
    """Return up to *page_size* objects of *type_id* with ids in ``(start, end]``, ascending."""
    endpoint = f"/objects/{type_id}"
    payload = await transport.get_json(endpoint, range_params(start, end, page_size))
    return _check_type(parse_items(payload, RoadObject, endpoint=endpoint), type_id, endpoint)


async def fetch_objects(transport: Transport, type_id: int, ids: Sequence[int]) -> list[RoadObject]:
    """Return the latest version of each object in *ids*; objects the source no longer has are left out."""
    if not ids:
        return []
    endpoint = f"/objects/{type_id}"
    payload = await transport.get_json(endpoint, {"ids": sorted(ids)})
    objects = _check_type(parse_items(payload, RoadObject, endpoint=endpoint), type_id, endpoint)
    _logger.debug("Fetched %d of %d requested objects of type %d", len(objects), len(ids), type_id)
    return objects


async def object_events_since(
    transport: Transport,
    type_id: int,
    cursor: int,
    page_size: int,
) -> ObjectEventPage:
    endpoint = f"/objects/{type_id}/events"
    payload = await transport.get_json(endpoint, {"after": cursor, "limit": page_size})
    return parse_model(payload, ObjectEventPage, endpoint=endpoint)


async def latest_object_event_id(transport: Transport, type_id: int, as_of: datetime) -> int | None:
    endpoint = f"/objects/{type_id}/events/latest"
    payload = await transport.get_json(endpoint, {"asOf": as_of_param(as_of)})
    return parse_latest_event_id(payload, endpoint=endpoint)
