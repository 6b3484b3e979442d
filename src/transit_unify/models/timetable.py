"""Railway timetable messages and their cancellations."""

from __future__ import annotations

from dataclasses import dataclass, replace

from transit_unify.models.gtfs import GtfsFeed
from transit_unify.services.calendar.bitmap import DateBitmap, bitmap_to_exceptions


@dataclass(frozen=True)
class TransportIdentifier:
    """Planned-transport identifier (train number plus variant)."""

    company: str
    core: str
    variant: str
    timetable_year: int

    @property
    def key(self) -> str:
        return f"{self.company}-{self.core}-{self.variant}-{self.timetable_year}"


@dataclass
class TimetableMessage:
    """Schedule of one planned transport.

    ``feed`` holds the decoded agencies, stops, routes, trips and stop times;
    its calendar is derived from ``calendar`` for ``service_id`` when the
    message is turned back into a feed.
    """

    identifier: TransportIdentifier
    calendar: DateBitmap
    feed: GtfsFeed
    service_id: str

    @property
    def key(self) -> str:
        return self.identifier.key

    def to_feed(self) -> GtfsFeed:
        return replace(
            self.feed,
            calendar=[],
            calendar_exceptions=bitmap_to_exceptions(self.service_id, self.calendar),
        )


@dataclass(frozen=True)
class CancellationMessage:
    """Cancels the days set in ``calendar`` for the referenced transport."""

    identifier: TransportIdentifier
    calendar: DateBitmap

    @property
    def key(self) -> str:
        return self.identifier.key
