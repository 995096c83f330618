"""Road network models: links and link sequences."""

from __future__ import annotations

from datetime import date

from pydantic import Field

from roadfeed.models._base import Coordinate, RoadBaseModel


class RoadLink(RoadBaseModel):
    """One link of a road link sequence.

    Parameters
    ----------
    sequence_id : int
        Owning link sequence.
    link_number : int
        Link number within the sequence.
    start_position, end_position : float
        Fractions ``[0, 1]`` along the sequence covered by this link.
    start_node, end_node : int or None
        Node ids at each end.
    valid_from : date
        First day the link is valid.
    valid_to : date or None
        First day the link is no longer valid (exclusive), ``None`` when open.
    geometry : tuple of Coordinate
        Ordered coordinates from start to end.
    length : float or None
        Length in metres.
    """

    sequence_id: int
    link_number: int
    start_position: float = Field(ge=0.0, le=1.0)
    end_position: float = Field(ge=0.0, le=1.0)
    start_node: int | None = None
    end_node: int | None = None
    valid_from: date
    valid_to: date | None = None
    geometry: tuple[Coordinate, ...] = ()
    length: float | None = None

    def is_active_on(self, day: date) -> bool:
        """Return ``True`` when the link is valid on *day*."""
        return self.valid_from <= day and (self.valid_to is None or self.valid_to > day)

    def has_ended_by(self, day: date) -> bool:
        return self.valid_to is not None and self.valid_to <= day


class RoadLinkSequence(RoadBaseModel):
    """A road link sequence with its links.

    Sequences are replaced wholesale whenever they are (re)fetched.
    """

    id: int
    links: tuple[RoadLink, ...] = ()

    def pruned(self, today: date) -> RoadLinkSequence:
        """Return a copy without links whose validity ended before *today*."""
        kept = tuple(link for link in self.links if not link.has_ended_by(today))
        if len(kept) == len(self.links):
            return self
        return self.model_copy(update={"links": kept})

    def active_links(self, day: date) -> list[RoadLink]:
        """Links valid on *day*, ordered by position along the sequence."""
        return sorted(
            (link for link in self.links if link.is_active_on(day)),
            key=lambda link: (link.start_position, link.end_position),
        )
