"""Geometry and location-reference encoding for linear locations."""

from __future__ import annotations

import dataclasses
import math
from collections.abc import Sequence
from typing import Protocol

from roadfeed.models._base import Coordinate
from roadfeed.models.network import RoadLink
from roadfeed.models.objects import Direction, LinearLocation


@dataclasses.dataclass(frozen=True)
class EncodedLocation:
    """Geometry of a linear location plus its encoded location reference."""

    geometry: tuple[Coordinate, ...]
    reference: str


class LocationEncoder(Protocol):
    """Turns a linear location into geometry and a location reference.

    *links* are the active links of the location's sequence, ordered by
    position. Implementations raise ``ValueError`` when the location cannot
    be encoded.
    """

    def encode(self, location: LinearLocation, links: Sequence[RoadLink]) -> EncodedLocation:
        ...


def _cumulative(coords: Sequence[Coordinate]) -> list[float]:
    distances = [0.0]
    for previous, current in zip(coords, coords[1:]):
        distances.append(distances[-1] + math.dist(previous, current))
    return distances


def _point_at(coords: Sequence[Coordinate], distances: Sequence[float], target: float) -> Coordinate:
    for index in range(1, len(coords)):
        if distances[index] >= target:
            segment = distances[index] - distances[index - 1]
            ratio = 0.0 if segment == 0 else (target - distances[index - 1]) / segment
            (x0, y0), (x1, y1) = coords[index - 1], coords[index]
            return (x0 + (x1 - x0) * ratio, y0 + (y1 - y0) * ratio)
    return coords[-1]


def clip_polyline(coords: Sequence[Coordinate], start: float, end: float) -> list[Coordinate]:
    """Part of *coords* between the fractions *start* and *end* of its length."""
    if len(coords) < 2:
        return list(coords)
    distances = _cumulative(coords)
    total = distances[-1]
    if total == 0:
        return [coords[0], coords[-1]]
    lower, upper = start * total, end * total
    clipped = [_point_at(coords, distances, lower)]
    clipped.extend(coords[i] for i in range(1, len(coords) - 1) if lower < distances[i] < upper)
    clipped.append(_point_at(coords, distances, upper))
    return clipped


def _append(line: list[Coordinate], part: Sequence[Coordinate]) -> None:
    for point in part:
        if not line or line[-1] != point:
            line.append(point)


class LinearGeometryEncoder:
    """Default encoder: clips link geometries by the location's fractions.

    Point locations (equal fractions) encode to a single coordinate.
    The reference has the form ``"<sequence>:<start>-<end>"`` with fractions
    rounded to eight decimals, suffixed with ``":against"`` for locations
    that run against the sequence direction, whose geometry is reversed.
    """

    def encode(self, location: LinearLocation, links: Sequence[RoadLink]) -> EncodedLocation:
        is_point = location.start_position == location.end_position
        line: list[Coordinate] = []
        for link in links:
            span = link.end_position - link.start_position
            if span <= 0 or len(link.geometry) < 2:
                continue
            lower = max(location.start_position, link.start_position)
            upper = min(location.end_position, link.end_position)
            if upper < lower or (upper == lower and not is_point):
                continue
            part = clip_polyline(
                link.geometry,
                (lower - link.start_position) / span,
                (upper - link.start_position) / span,
            )
            _append(line, part)
            if is_point:
                break

        if len(line) < (1 if is_point else 2):
            raise ValueError(
                f"No geometry for sequence {location.sequence_id} "
                f"between {location.start_position} and {location.end_position}"
            )
        reference = f"{location.sequence_id}:{location.start_position:.8f}-{location.end_position:.8f}"
        if location.direction is Direction.AGAINST:
            line.reverse()
            reference += ":against"
        return EncodedLocation(geometry=tuple(line), reference=reference)
