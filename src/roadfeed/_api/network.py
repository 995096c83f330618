"""Road network endpoints.

Endpoints:
  - /link-sequences (id range or explicit ids)
  - /link-sequences/events
  - /link-sequences/events/latest
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
from roadfeed.models.events import LinkSequenceEventPage
from roadfeed.models.network import RoadLinkSequence

_logger = logging.getLogger(__name__)

_SEQUENCES = "/link-sequences"
_EVENTS = "/link-sequences/events"
_LATEST_EVENT = "/link-sequences/events/latest"


async def stream_link_sequences(
    transport: Transport,
    start: int,
    end: int | None,
    page_size: int,
) -> list[RoadLinkSequence]:
    """Return up to *page_size* sequences with ids in ``(start, end]``, ascending."""
    payload = await transport.get_json(_SEQUENCES, range_params(start, end, page_size))
    return parse_items(payload, RoadLinkSequence, endpoint=_SEQUENCES)


async def fetch_link_sequences(transport: Transport, ids: Sequence[int]) -> list[RoadLinkSequence]:
    """Return the current version of each sequence in *ids*; missing ones are left out."""
    if not ids:
        return []
    payload = await transport.get_json(_SEQUENCES, {"ids": sorted(ids)})
    sequences = parse_items(payload, RoadLinkSequence, endpoint=_SEQUENCES)
    _logger.debug("Fetched %d of %d requested link sequences", len(sequences), len(ids))
    return sequences


async def link_sequence_events_since(
    transport: Transport,
    cursor: int,
    page_size: int,
) -> LinkSequenceEventPage:
    payload = await transport.get_json(_EVENTS, {"after": cursor, "limit": page_size})
    return parse_model(payload, LinkSequenceEventPage, endpoint=_EVENTS)


async def latest_link_sequence_event_id(transport: Transport, as_of: datetime) -> int | None:
    payload = await transport.get_json(_LATEST_EVENT, {"asOf": as_of_param(as_of)})
    return parse_latest_event_id(payload, endpoint=_LATEST_EVENT)
