"""Custom exception hierarchy for roadfeed."""

from __future__ import annotations


class RoadFeedError(Exception):
    """Base exception for all roadfeed errors."""


class RoadFeedConfigError(RoadFeedError):
    """Invalid or missing configuration."""


class RoadFeedTransportError(RoadFeedError):
    """HTTP-level failure (network, non-200, invalid JSON).

    Raised once the transport has exhausted its retries for transient
    failures, or immediately for non-retryable client errors.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        endpoint: str = "",
    ) -> None:
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(message)


class RoadFeedRateLimitError(RoadFeedTransportError):
    """Source API kept answering ``429 Too Many Requests`` after all retries."""


class RoadFeedApiError(RoadFeedError):
    """Source API answered with a payload that does not match the expected shape."""

    def __init__(self, message: str, *, endpoint: str = "") -> None:
        self.endpoint = endpoint
        super().__init__(message)


class StoreError(RoadFeedError):
    """Local store could not be opened or is in an unexpected layout."""


class StoreCommitError(StoreError):
    """An atomic batch could not be committed.

    Nothing from the batch is visible after this error. The current cycle
    must be aborted and retried as a whole.
    """


class CorruptRecordError(StoreError):
    """A stored value could not be decoded.

    Carries the namespace and key so callers can decide whether to skip the
    record or abort.
    """

    def __init__(self, message: str, *, namespace: str, key: bytes) -> None:
        self.namespace = namespace
        self.key = key
        super().__init__(message)


class FeatureLookupError(RoadFeedError):
    """The current content of a feature could not be resolved."""

    def __init__(self, message: str, *, feature_id: int) -> None:
        self.feature_id = feature_id
        super().__init__(message)


class SyncStateError(RoadFeedError):
    """Synchronization was requested in a state that does not allow it.

    For example an incremental update before the backfill has completed.
    """
