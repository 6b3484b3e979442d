"""Canonical in-memory GTFS feed records.

Every decoder produces these records and the merge engine consumes them.
Field names follow GTFS column names without the table prefix; the CSV
column mapping lives in the GTFS normalizer and writer.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import date
from typing import Optional


class LocationType(str, enum.Enum):
    """GTFS ``location_type``."""

    STOP = "0"
    STATION = "1"
    STATION_ENTRANCE = "2"


class ExceptionType(str, enum.Enum):
    """GTFS ``exception_type``."""

    SERVICE_ADDED = "1"
    SERVICE_REMOVED = "2"


@dataclass(frozen=True)
class Agency:
    """Transit operator."""

    id: Optional[str]
    name: str
    url: str = ""
    timezone: str = "Europe/Prague"
    lang: Optional[str] = None
    phone: Optional[str] = None
    fare_url: Optional[str] = None
    email: Optional[str] = None
    # Operator registration number, the only identifier stable across feeds
    stable_id: Optional[str] = None


@dataclass(frozen=True)
class Stop:
    """Boarding point, platform or station."""

    id: str
    name: str
    code: Optional[str] = None
    description: Optional[str] = None
    lat: Optional[float] = None
    lon: Optional[float] = None
    zone_id: Optional[str] = None
    url: Optional[str] = None
    location_type: Optional[LocationType] = None
    parent_station: Optional[str] = None
    timezone: Optional[str] = None
    wheelchair_boarding: Optional[int] = None
    platform_code: Optional[str] = None

    @property
    def is_station(self) -> bool:
        return self.location_type == LocationType.STATION

    @property
    def has_coordinates(self) -> bool:
        return self.lat is not None and self.lon is not None


@dataclass(frozen=True)
class Route:
    """Line as presented to passengers."""

    id: str
    route_type: str
    agency_id: Optional[str] = None
    short_name: Optional[str] = None
    long_name: Optional[str] = None
    description: Optional[str] = None
    url: Optional[str] = None
    color: Optional[str] = None
    text_color: Optional[str] = None
    sort_order: Optional[int] = None

    @property
    def display_name(self) -> Optional[str]:
        """Short name, falling back to the long name."""
        return self.short_name or self.long_name or None


@dataclass(frozen=True)
class Trip:
    """One scheduled vehicle run."""

    id: str
    route_id: str
    service_id: str
    headsign: Optional[str] = None
    short_name: Optional[str] = None
    direction_id: Optional[int] = None
    block_id: Optional[str] = None
    shape_id: Optional[str] = None
    wheelchair_accessible: Optional[int] = None
    bikes_allowed: Optional[int] = None


@dataclass(frozen=True)
class StopTime:
    """Stop visit of a trip.

    Times are seconds after midnight of the service day and may exceed
    86400 for trips running past midnight.
    """

    trip_id: str
    stop_id: str
    stop_sequence: int
    arrival_time: Optional[int] = None
    departure_time: Optional[int] = None
    headsign: Optional[str] = None
    pickup_type: Optional[int] = None
    drop_off_type: Optional[int] = None
    shape_dist_traveled: Optional[float] = None
    timepoint: Optional[int] = None


@dataclass(frozen=True)
class CalendarEntry:
    """Weekly service pattern over an inclusive date range."""

    id: str
    # Monday first
    weekday_service: tuple[bool, bool, bool, bool, bool, bool, bool]
    start_date: date
    end_date: date

    def runs_on_weekday(self, day: date) -> bool:
        return self.weekday_service[day.weekday()]


@dataclass(frozen=True)
class CalendarException:
    """Single-date override of a service."""

    id: str
    date: date
    exception_type: ExceptionType


@dataclass
class GtfsFeed:
    """One self-contained schedule."""

    agencies: list[Agency] = field(default_factory=list)
    stops: list[Stop] = field(default_factory=list)
    routes: list[Route] = field(default_factory=list)
    trips: list[Trip] = field(default_factory=list)
    stop_times: list[StopTime] = field(default_factory=list)
    calendar: list[CalendarEntry] = field(default_factory=list)
    calendar_exceptions: list[CalendarException] = field(default_factory=list)

    def counts(self) -> dict[str, int]:
        return {
            "agencies": len(self.agencies),
            "stops": len(self.stops),
            "routes": len(self.routes),
            "trips": len(self.trips),
            "stop_times": len(self.stop_times),
            "calendar": len(self.calendar),
            "calendar_exceptions": len(self.calendar_exceptions),
        }
