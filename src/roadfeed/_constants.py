"""Internal constants shared across the library."""

USER_AGENT = "roadfeed/0.4"
RETRYABLE_STATUS_CODES: frozenset[int] = frozenset({500, 502, 503, 504})
RATE_LIMIT_STATUS = 429

# ------------------------------------------------------------------
# Page and chunk sizes
# ------------------------------------------------------------------

LINK_SEQUENCE_PAGE_SIZE = 1000
OBJECT_PAGE_SIZE = 1000
EVENT_PAGE_SIZE = 1000
# The source API limits the length of the ``ids`` query parameter.
FETCH_IDS_CHUNK_SIZE = 100

# ------------------------------------------------------------------
# Object and property type ids in the source data catalogue
# ------------------------------------------------------------------

SPEED_LIMIT_TYPE = 105
ROAD_NAME_TYPE = 538
MAXIMUM_HEIGHT_TYPE = 591

SPEED_LIMIT_KMH_PROPERTY = 2021
ROAD_NAME_PROPERTY = 4589
SIGNED_HEIGHT_PROPERTY = 5277

# Upper bound used when splitting the id space into backfill partitions.
# The last partition is open ended, so ids above the ceiling are still loaded.
DEFAULT_PARTITION_ID_CEILING = 2_000_000_000
