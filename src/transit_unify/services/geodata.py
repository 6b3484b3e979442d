"""Fill in missing stop coordinates from named reference geodata.

Stops decoded from name-only sources are looked up in a
:class:`StopMatcher` over reference stops. All matches scoring at least
``min_score`` are candidates for the stop's position:

- one candidate, or candidates close together (the mean of the latitude and
  longitude sample standard deviations is at most ``max_spread`` degrees):
  the stop gets their mean position;
- candidates far apart (a common name shared by several towns): the
  candidate nearest to the midpoint of the closest located stops before and
  after it on the first trip serving it is used;
- otherwise the stop is left without coordinates.

No match at all is a normal outcome and only counted.
"""

from __future__ import annotations

import math
import statistics
from collections.abc import Sequence
from dataclasses import dataclass, field, replace
from typing import Any, Optional

from transit_unify.config import get_settings
from transit_unify.logging import get_logger
from transit_unify.models.gtfs import GtfsFeed, Stop
from transit_unify.services.matching.stop_matcher import StopMatcher

logger = get_logger(__name__)

Point = tuple[float, float]


@dataclass(frozen=True)
class StopGeodata:
    """Reference position of a named stop."""

    lat: float
    lon: float
    source: str = ""

    @property
    def point(self) -> Point:
        return (self.lat, self.lon)


@dataclass
class GeodataReport:
    """Outcome counts of one :func:`apply_stop_geodata` call."""

    already_located: int = 0
    located: int = 0
    disambiguated: int = 0
    ambiguous: list[str] = field(default_factory=list)
    unmatched: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "already_located": self.already_located,
            "located": self.located,
            "disambiguated": self.disambiguated,
            "ambiguous": len(self.ambiguous),
            "unmatched": len(self.unmatched),
        }


def coordinate_spread(points: Sequence[Point]) -> float:
    """Mean of the sample standard deviations of latitudes and longitudes."""
    if len(points) < 2:
        return 0.0
    lat_dev = statistics.stdev(p[0] for p in points)
    lon_dev = statistics.stdev(p[1] for p in points)
    return (lat_dev + lon_dev) / 2


def mean_point(points: Sequence[Point]) -> Point:
    return (
        statistics.fmean(p[0] for p in points),
        statistics.fmean(p[1] for p in points),
    )


def _distance(a: Point, b: Point) -> float:
    # Planar distance in degrees, only used to rank nearby candidates
    return math.hypot(a[0] - b[0], a[1] - b[1])


def _neighbour_midpoint(
    stop_id: str,
    trip_stops: dict[str, list[tuple[int, str]]],
    first_trip: dict[str, str],
    located: dict[str, Point],
) -> Optional[Point]:
    """Midpoint of the nearest located stops around ``stop_id`` on its first trip.

    If only one side has a located stop, that stop's position is returned.
    """
    trip_id = first_trip.get(stop_id)
    if trip_id is None:
        return None
    sequence = trip_stops[trip_id]
    position = next(i for i, (_, sid) in enumerate(sequence) if sid == stop_id)

    before = next(
        (located[sid] for _, sid in reversed(sequence[:position]) if sid in located), None
    )
    after = next((located[sid] for _, sid in sequence[position + 1 :] if sid in located), None)
    ends = [p for p in (before, after) if p is not None]
    return mean_point(ends) if ends else None


def apply_stop_geodata(
    feed: GtfsFeed,
    matcher: StopMatcher[StopGeodata],
    *,
    min_score: Optional[float] = None,
    max_spread: Optional[float] = None,
    source: Optional[str] = None,
) -> tuple[GtfsFeed, GeodataReport]:
    """Return a copy of ``feed`` with stop coordinates filled in where possible.

    Args:
        feed: Decoded feed; stops that already have coordinates are kept.
        matcher: Index over reference stops with :class:`StopGeodata` payloads.
        min_score: Lowest accepted name similarity (default from config).
        max_spread: Largest coordinate spread, in degrees, still averaged
            (default from config).
        source: Only use reference stops of this source.
    """
    settings = get_settings()
    min_score = min_score if min_score is not None else settings.geodata_min_score
    max_spread = max_spread if max_spread is not None else settings.geodata_max_spread

    report = GeodataReport()
    located: dict[str, Point] = {}
    ambiguous: dict[str, list[Point]] = {}

    for stop in feed.stops:
        if stop.lat is not None and stop.lon is not None:
            located[stop.id] = (stop.lat, stop.lon)
            report.already_located += 1
            continue

        points = [
            match.payload.point
            for match in matcher.match_stop(stop.name)
            if match.score >= min_score and (source is None or match.payload.source == source)
        ]
        if not points:
            report.unmatched.append(stop.id)
        elif coordinate_spread(points) <= max_spread:
            located[stop.id] = mean_point(points)
            report.located += 1
        else:
            ambiguous[stop.id] = points

    if ambiguous:
        trip_stops: dict[str, list[tuple[int, str]]] = {}
        first_trip: dict[str, str] = {}
        for stop_time in feed.stop_times:
            trip_stops.setdefault(stop_time.trip_id, []).append(
                (stop_time.stop_sequence, stop_time.stop_id)
            )
            first_trip.setdefault(stop_time.stop_id, stop_time.trip_id)
        for sequence in trip_stops.values():
            sequence.sort()

        # Resolved against pass-one positions only, so the order of the
        # ambiguous stops does not matter
        resolved: dict[str, Point] = {}
        for stop_id, points in ambiguous.items():
            midpoint = _neighbour_midpoint(stop_id, trip_stops, first_trip, located)
            if midpoint is None:
                report.ambiguous.append(stop_id)
                logger.warning("Ambiguous stop geodata", stop_id=stop_id, candidates=len(points))
                continue
            resolved[stop_id] = min(points, key=lambda p: _distance(p, midpoint))
            report.disambiguated += 1
        located.update(resolved)

    stops: list[Stop] = []
    for stop in feed.stops:
        point = located.get(stop.id)
        if point is not None and not stop.has_coordinates:
            stop = replace(stop, lat=point[0], lon=point[1])
        stops.append(stop)

    logger.info("Stop geodata applied", **report.to_dict())
    return replace(feed, stops=stops), report
