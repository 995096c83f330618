from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

import aiohttp
import pytest
from conftest import utc

from roadfeed._api import HttpSourceApi
from roadfeed._transport import HttpTransport, _encode_params
from roadfeed.config import SyncConfig
from roadfeed.exceptions import RoadFeedApiError, RoadFeedRateLimitError, RoadFeedTransportError
from roadfeed.models import ObjectEventType

Response = tuple[int, Mapping[str, str], str] | Exception


class _ScriptedTransport(HttpTransport):
    def __init__(self, config: SyncConfig, responses: list[Response]) -> None:
        self.sleeps: list[float] = []

        async def _sleep(delay: float) -> None:
            self.sleeps.append(delay)

        super().__init__(config, None, sleep=_sleep)  # type: ignore[arg-type]
        self._responses = list(responses)
        self.requests: list[tuple[str, dict[str, str]]] = []

    async def _send(self, url: str, params: dict[str, str]) -> tuple[int, Mapping[str, str], str]:
        self.requests.append((url, params))
        response = self._responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def _ok(body: Any) -> Response:
    return (200, {}, json.dumps(body))


def test_encode_params() -> None:
    assert _encode_params({"ids": [3, 1], "end": None, "limit": 10}) == {"ids": "3,1", "limit": "10"}
    assert _encode_params(None) == {}


@pytest.mark.asyncio
async def test_transient_failures_are_retried_with_backoff(config: SyncConfig) -> None:
    transport = _ScriptedTransport(
        config,
        [aiohttp.ClientConnectionError("reset"), (503, {}, "busy"), _ok({"eventId": 12})],
    )

    payload = await transport.get_json("/objects/105/events/latest", {"asOf": "x"})

    assert payload == {"eventId": 12}
    assert transport.sleeps == [0.5, 1.0]
    assert transport.requests[0][0] == "https://roads.example.test/api/objects/105/events/latest"


@pytest.mark.asyncio
async def test_retry_after_is_honoured_and_capped(config: SyncConfig) -> None:
    transport = _ScriptedTransport(
        config,
        [(429, {"Retry-After": "2"}, ""), (429, {"Retry-After": "120"}, ""), _ok({})],
    )

    await transport.get_json("/link-sequences")

    assert transport.sleeps == [2.0, 4.0]


@pytest.mark.asyncio
async def test_exhausted_rate_limit_raises(config: SyncConfig) -> None:
    transport = _ScriptedTransport(config, [(429, {}, "")] * 3)

    with pytest.raises(RoadFeedRateLimitError) as excinfo:
        await transport.get_json("/link-sequences")

    assert excinfo.value.status_code == 429
    assert len(transport.sleeps) == 2


@pytest.mark.asyncio
async def test_timeouts_exhaust_into_transport_error(config: SyncConfig) -> None:
    transport = _ScriptedTransport(config, [TimeoutError()] * 3)

    with pytest.raises(RoadFeedTransportError):
        await transport.get_json("/link-sequences")


@pytest.mark.asyncio
async def test_client_errors_are_not_retried(config: SyncConfig) -> None:
    transport = _ScriptedTransport(config, [(404, {}, "no such type"), _ok({})])

    with pytest.raises(RoadFeedTransportError) as excinfo:
        await transport.get_json("/objects/999")

    assert excinfo.value.status_code == 404
    assert transport.sleeps == []


@pytest.mark.asyncio
async def test_invalid_json_is_a_transport_error(config: SyncConfig) -> None:
    transport = _ScriptedTransport(config, [(200, {}, "<html>")])

    with pytest.raises(RoadFeedTransportError, match="Invalid JSON"):
        await transport.get_json("/link-sequences")


@pytest.mark.asyncio
async def test_source_api_parses_camel_case_payloads(config: SyncConfig) -> None:
    transport = _ScriptedTransport(
        config,
        [
            _ok(
                {
                    "items": [
                        {
                            "typeId": 105,
                            "id": 78712521,
                            "version": 3,
                            "lastModified": "2025-11-02T10:00:00",
                            "validFrom": "2019-05-01",
                            "validTo": "2026-02-01",
                            "properties": {"2021": {"kind": "integer", "value": 60}},
                            "locations": [
                                {"sequenceId": 41, "startPosition": 0.1, "endPosition": 0.4, "direction": "with"}
                            ],
                        }
                    ]
                }
            ),
            _ok(
                {
                    "events": [{"eventId": 8, "objectId": 78712521, "version": 3, "eventType": "VersionCreated"}],
                    "nextCursor": None,
                }
            ),
        ],
    )
    api = HttpSourceApi(transport)

    (obj,) = await api.fetch_objects(105, [78712521])
    page = await api.object_events_since(105, 7, 100)

    assert obj.properties[2021].value == 60
    assert obj.last_modified.tzinfo is not None
    assert obj.locations[0].sequence_id == 41
    assert transport.requests[0][1] == {"ids": "78712521"}
    assert page.events[0].event_type is ObjectEventType.VERSION_CREATED
    assert transport.requests[1][1] == {"after": "7", "limit": "100"}


@pytest.mark.asyncio
async def test_objects_of_another_type_are_rejected(config: SyncConfig) -> None:
    body = {
        "items": [
            {"typeId": 538, "id": 1, "version": 1, "lastModified": "2025-01-01T00:00:00Z", "validFrom": "2020-01-01"}
        ]
    }
    api = HttpSourceApi(_ScriptedTransport(config, [_ok(body)]))

    with pytest.raises(RoadFeedApiError):
        await api.stream_objects(105, 0, None, 10)


@pytest.mark.asyncio
async def test_latest_event_id_may_be_absent(config: SyncConfig) -> None:
    api = HttpSourceApi(_ScriptedTransport(config, [_ok({"eventId": None})]))
    assert await api.latest_link_sequence_event_id(utc()) is None
