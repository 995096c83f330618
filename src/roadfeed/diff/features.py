"""Build exportable feature content from stored road objects."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, date, datetime
from typing import Protocol

from roadfeed.config import FeatureTypeSpec
from roadfeed.diff.geometry import LinearGeometryEncoder, LocationEncoder
from roadfeed.exceptions import FeatureLookupError
from roadfeed.models._base import Coordinate
from roadfeed.models.feature import FeatureContent, Scalar
from roadfeed.models.objects import LinearLocation, RoadObject
from roadfeed.storage.network import RoadNetworkRepository

_logger = logging.getLogger(__name__)


def _today() -> date:
    return datetime.now(UTC).date()


class FeatureBuilder(Protocol):
    """Derives the exportable content of a road object.

    Returns ``None`` when the object has no valid content (removed,
    required properties missing, or nowhere on the current network).
    Raises :class:`FeatureLookupError` when the content cannot be
    determined right now.
    """

    def build(self, obj: RoadObject) -> FeatureContent | None:
        ...


class RoadFeatureBuilder:
    """Feature builder driven by a :class:`FeatureTypeSpec`.

    Every property listed in the feature type is required. Locations on link
    sequences missing from the replica are skipped; geometry and location
    references come from the :class:`LocationEncoder`.
    """

    def __init__(
        self,
        spec: FeatureTypeSpec,
        network: RoadNetworkRepository,
        encoder: LocationEncoder | None = None,
        *,
        today: Callable[[], date] = _today,
    ) -> None:
        self._spec = spec
        self._network = network
        self._encoder = encoder or LinearGeometryEncoder()
        self._today = today

    @property
    def spec(self) -> FeatureTypeSpec:
        return self._spec

    def _properties(self, obj: RoadObject) -> dict[str, Scalar] | None:
        properties: dict[str, Scalar] = {}
        for property_id, name in self._spec.properties.items():
            value = obj.properties.get(property_id)
            if value is None:
                _logger.debug("Object %d/%d lacks required property %d", obj.type_id, obj.id, property_id)
                return None
            properties[name] = value.value
        return properties

    def build(self, obj: RoadObject) -> FeatureContent | None:
        if obj.removed:
            return None
        properties = self._properties(obj)
        if properties is None or not obj.locations:
            return None

        sequences = self._network.get_many(obj.sequence_ids)
        day = self._today()
        geometry: list[tuple[Coordinate, ...]] = []
        references: list[str] = []
        located: list[LinearLocation] = []
        ordered = sorted(obj.locations, key=lambda loc: (loc.sequence_id, loc.start_position, loc.end_position))
        for location in ordered:
            sequence = sequences.get(location.sequence_id)
            if sequence is None:
                _logger.debug(
                    "Object %d/%d is located on unknown link sequence %d",
                    obj.type_id,
                    obj.id,
                    location.sequence_id,
                )
                continue
            try:
                encoded = self._encoder.encode(location, sequence.active_links(day))
            except ValueError as exc:
                raise FeatureLookupError(
                    f"Cannot encode location of object {obj.type_id}/{obj.id}: {exc}",
                    feature_id=obj.id,
                ) from exc
            geometry.append(encoded.geometry)
            references.append(encoded.reference)
            located.append(location)

        if not located:
            return None
        return FeatureContent(
            id=obj.id,
            type_id=obj.type_id,
            valid_from=obj.valid_from,
            valid_to=obj.valid_to,
            geometry=tuple(geometry),
            properties=properties,
            locations=tuple(located),
            references=tuple(references),
        )
