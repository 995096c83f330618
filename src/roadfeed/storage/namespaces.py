"""Closed registry of store namespaces."""

from __future__ import annotations

import enum

from roadfeed.exceptions import StoreError


class Namespace(enum.StrEnum):
    """Every namespace the store may contain.

    The set is closed: a database holding a namespace that is not listed
    here was written by an incompatible version and is rejected on open.
    """

    ROAD_LINKS = "road_links"
    ROAD_OBJECTS = "road_objects"
    SETTINGS = "settings"
    DIRTY_LINK_SEQUENCES = "dirty_link_sequences"
    DIRTY_OBJECTS = "dirty_objects"
    EXPORTED_FEATURES = "exported_features"


def resolve_namespace(name: str | Namespace) -> Namespace:
    """Return the :class:`Namespace` for *name* or raise :class:`StoreError`."""
    try:
        return Namespace(name)
    except ValueError as exc:
        raise StoreError(f"Unknown namespace {name!r}") from exc
