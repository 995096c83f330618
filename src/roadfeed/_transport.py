"""HTTP transport with bounded retries for the source road data API."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, Protocol

import aiohttp

from roadfeed._constants import RATE_LIMIT_STATUS, RETRYABLE_STATUS_CODES, USER_AGENT
from roadfeed.config import SyncConfig
from roadfeed.exceptions import RoadFeedRateLimitError, RoadFeedTransportError

_logger = logging.getLogger(__name__)

QueryValue = str | int | float | list[int] | None


class Transport(Protocol):
    """Structural transport interface used by endpoint modules.

    Having a protocol here makes it easy to pass test doubles while keeping
    the production implementation (:class:`HttpTransport`) concrete.
    """

    async def get_json(self, endpoint: str, params: Mapping[str, QueryValue] | None = None) -> Any:
        ...


def _encode_params(params: Mapping[str, QueryValue] | None) -> dict[str, str]:
    encoded: dict[str, str] = {}
    for key, value in (params or {}).items():
        if value is None:
            continue
        if isinstance(value, list):
            encoded[key] = ",".join(str(item) for item in value)
        else:
            encoded[key] = str(value)
    return encoded


def _retry_after(headers: Mapping[str, str]) -> float | None:
    """Seconds from a numeric ``Retry-After`` header, ``None`` when absent or a date."""
    raw = headers.get("Retry-After")
    if raw is None:
        return None
    try:
        return max(0.0, float(raw))
    except ValueError:
        return None


class HttpTransport:
    """GET-only JSON transport.

    Timeouts, connection errors, 5xx responses and ``429`` are retried with
    exponential backoff up to ``config.retry_attempts`` attempts. A
    ``Retry-After`` header on a ``429`` overrides the computed delay, still
    capped at ``config.retry_max_delay``. Any other non-200 status fails
    immediately.
    """

    def __init__(
        self,
        config: SyncConfig,
        http_session: aiohttp.ClientSession,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._config = config
        self._http = http_session
        self._sleep = sleep
        self._timeout = aiohttp.ClientTimeout(total=config.request_timeout)

    def _backoff(self, attempt: int) -> float:
        return float(min(self._config.retry_max_delay, self._config.retry_base_delay * 2 ** (attempt - 1)))

    async def _send(self, url: str, params: dict[str, str]) -> tuple[int, Mapping[str, str], str]:
        """Perform one request and return ``(status, headers, body)``."""
        headers = {
            "accept": "application/json",
            "user-agent": USER_AGENT,
        }
        async with self._http.get(url, params=params, headers=headers, timeout=self._timeout) as resp:
            text = await resp.text()
            return resp.status, resp.headers, text

    async def get_json(self, endpoint: str, params: Mapping[str, QueryValue] | None = None) -> Any:
        """GET *endpoint* and return the decoded JSON body.

        Raises
        ------
        RoadFeedRateLimitError
            If the API kept answering ``429`` for every attempt.
        RoadFeedTransportError
            On a non-retryable status, invalid JSON, or exhausted retries.
        """
        url = f"{self._config.base_url.rstrip('/')}{endpoint}"
        query = _encode_params(params)
        attempts = self._config.retry_attempts
        last_error: RoadFeedTransportError | None = None

        for attempt in range(1, attempts + 1):
            _logger.debug("GET %s %s", url, query)
            delay = self._backoff(attempt)
            try:
                status, headers, text = await self._send(url, query)
            except (aiohttp.ClientError, TimeoutError) as exc:
                last_error = RoadFeedTransportError(
                    f"Request to {endpoint} failed: {exc!r}",
                    endpoint=endpoint,
                )
            else:
                if status == 200:
                    try:
                        return json.loads(text)
                    except json.JSONDecodeError as exc:
                        raise RoadFeedTransportError(
                            f"Invalid JSON from {endpoint}: {text[:200]}",
                            status_code=status,
                            endpoint=endpoint,
                        ) from exc
                if status == RATE_LIMIT_STATUS:
                    last_error = RoadFeedRateLimitError(
                        f"Rate limited by {endpoint}",
                        status_code=status,
                        endpoint=endpoint,
                    )
                    retry_after = _retry_after(headers)
                    if retry_after is not None:
                        delay = min(retry_after, self._config.retry_max_delay)
                elif status in RETRYABLE_STATUS_CODES:
                    last_error = RoadFeedTransportError(
                        f"HTTP {status} from {endpoint}: {text[:200]}",
                        status_code=status,
                        endpoint=endpoint,
                    )
                else:
                    raise RoadFeedTransportError(
                        f"HTTP {status} from {endpoint}: {text[:200]}",
                        status_code=status,
                        endpoint=endpoint,
                    )

            if attempt < attempts:
                _logger.warning(
                    "GET %s failed (%s), retry %d/%d in %.1fs",
                    endpoint,
                    last_error,
                    attempt,
                    attempts - 1,
                    delay,
                )
                await self._sleep(delay)

        assert last_error is not None  # noqa: S101
        _logger.error("GET %s failed after %d attempts: %s", endpoint, attempts, last_error)
        raise last_error
