"""Merge engine: folds decoded feeds into one consolidated feed.

Agencies, stops and routes are deduplicated by cheap, deterministic
identity rules (names mostly, since sources share no identifiers). Trips,
stop times and calendars are never merged; they are copied with their ids
made unique and their foreign keys rewritten through the id maps built
earlier in the same ``insert_feed`` call.

The rules are intentionally greedy. Routes merge on display name alone, so
two operators' line "101" become one route unless the caller partitions its
inputs. Stops merge on name, separated into railway and non-railway stops
by the route types serving them.
"""

from __future__ import annotations

import re
import threading
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from datetime import date
from typing import Optional

from transit_unify.config import get_settings
from transit_unify.logging import get_logger
from transit_unify.models.gtfs import (
    Agency,
    CalendarEntry,
    CalendarException,
    ExceptionType,
    GtfsFeed,
    LocationType,
    Route,
    Stop,
    StopTime,
    Trip,
)

logger = get_logger(__name__)

IdMap = dict[str, str]

ID_SEPARATOR = "/"

# Extended 1xx railway types. Unanchored, so any type containing "1" and two
# more characters (1000 water transport, 1100 air) counts as railway too.
_RAILWAY_ROUTE_TYPE = re.compile(r"1..")


class MergeError(Exception):
    """Base class for errors raised while merging a feed."""


class OutOfOrderReferenceError(MergeError):
    """A record refers to an id that has not been inserted in this merge pass."""

    def __init__(self, kind: str, ref_id: str, referrer: str) -> None:
        self.kind = kind
        self.ref_id = ref_id
        self.referrer = referrer
        super().__init__(f"{referrer} refers to unknown {kind} id {ref_id!r}")


class ConcurrentMergeError(MergeError):
    """A second writer tried to use a merge engine that is already busy."""


class CalendarConflictError(MergeError):
    """Contradicting calendar exceptions for the same service and date."""

    def __init__(self, service_id: str, day: date, types: Iterable[ExceptionType]) -> None:
        self.service_id = service_id
        self.day = day
        self.types = sorted(t.value for t in types)
        super().__init__(
            f"Conflicting calendar exceptions for service {service_id!r} "
            f"on {day.isoformat()}: exception types {self.types}"
        )


def is_railway_station(route_types: Iterable[str]) -> bool:
    """Heuristic: a stop served by any rail route type is a railway station."""
    return any(rt == "2" or _RAILWAY_ROUTE_TYPE.search(rt) for rt in route_types)


def new_id(prev_id: str, *taken: Mapping[str, object]) -> str:
    """Return ``prev_id`` if unused, else ``prev_id/n`` with the smallest free ``n``."""
    if not any(prev_id in ids for ids in taken):
        return prev_id
    n = 0
    while True:
        candidate = f"{prev_id}{ID_SEPARATOR}{n}"
        if not any(candidate in ids for ids in taken):
            return candidate
        n += 1


def _resolve(id_map: Mapping[str, str], kind: str, ref_id: str, referrer: str) -> str:
    try:
        return id_map[ref_id]
    except KeyError:
        raise OutOfOrderReferenceError(kind, ref_id, referrer) from None


def stop_route_types(feed: GtfsFeed) -> dict[str, frozenset[str]]:
    """Map each stop id of ``feed`` to the route types of the trips visiting it."""
    route_types = {route.id: route.route_type for route in feed.routes}
    trip_route_types = {
        trip.id: route_types[trip.route_id]
        for trip in feed.trips
        if trip.route_id in route_types
    }
    result: dict[str, set[str]] = {}
    for stop_time in feed.stop_times:
        route_type = trip_route_types.get(stop_time.trip_id)
        if route_type is not None:
            result.setdefault(stop_time.stop_id, set()).add(route_type)
    return {stop_id: frozenset(types) for stop_id, types in result.items()}


@dataclass
class FeedIdMaps:
    """Original id -> consolidated id, per entity kind, for one input feed."""

    agencies: IdMap = field(default_factory=dict)
    stops: IdMap = field(default_factory=dict)
    routes: IdMap = field(default_factory=dict)
    calendar: IdMap = field(default_factory=dict)
    trips: IdMap = field(default_factory=dict)


class MergedFeed:
    """Consolidated feed built incrementally from input feeds.

    One instance belongs to one merge run. It is not thread-safe; a second
    concurrent ``insert_feed`` call raises :class:`ConcurrentMergeError`
    instead of corrupting the indices. Independent instances can be used
    from different threads.
    """

    def __init__(
        self,
        *,
        check_stop_type: Optional[bool] = None,
        check_stations: Optional[bool] = None,
    ) -> None:
        settings = get_settings()
        self.check_stop_type = (
            check_stop_type if check_stop_type is not None else settings.merge_check_stop_type
        )
        self.check_stations = (
            check_stations if check_stations is not None else settings.merge_check_stations
        )
        self._writer = threading.Lock()
        self._feed_count = 0

        # Lists hold the records, the dicts map a key to a list index
        self._agencies: list[Agency] = []
        self._agencies_by_id: dict[str, int] = {}
        self._agencies_by_name: dict[str, int] = {}
        self._agencies_by_stable_id: dict[str, int] = {}
        self._stops: list[Stop] = []
        self._stops_by_id: dict[str, int] = {}
        self._stops_by_name: dict[str, list[int]] = {}
        self._stop_route_types: dict[int, frozenset[str]] = {}
        self._routes: list[Route] = []
        self._routes_by_id: dict[str, int] = {}
        self._routes_by_name: dict[str, int] = {}
        self._trips: list[Trip] = []
        self._trips_by_id: dict[str, int] = {}
        self._stop_times: list[StopTime] = []
        self._calendar: list[CalendarEntry] = []
        self._calendar_by_id: dict[str, int] = {}
        self._calendar_exceptions: list[CalendarException] = []
        self._calendar_exceptions_by_key: dict[tuple[str, date], int] = {}
        self._exception_service_ids: set[str] = set()

    @property
    def feed_count(self) -> int:
        return self._feed_count

    # Agencies

    def insert_agency(self, agency: Agency) -> str:
        """Insert an agency, or return the id of the one it merges with.

        Agencies merge on equal name or equal stable id. Merged records are
        not combined field by field; the existing record wins.
        """
        existing = self._agencies_by_name.get(agency.name)
        if existing is None and agency.stable_id:
            existing = self._agencies_by_stable_id.get(agency.stable_id)
        if existing is not None:
            return self._agencies[existing].id or ""

        agency_id = new_id(agency.id or "", self._agencies_by_id)
        self._agencies.append(replace(agency, id=agency_id))
        index = len(self._agencies) - 1
        self._agencies_by_id[agency_id] = index
        self._agencies_by_name[agency.name] = index
        if agency.stable_id:
            self._agencies_by_stable_id.setdefault(agency.stable_id, index)
        return agency_id

    def insert_agencies(self, agencies: Iterable[Agency]) -> IdMap:
        return {agency.id or "": self.insert_agency(agency) for agency in agencies}

    # Stops

    def _stops_match(self, existing_index: int, stop: Stop, route_types: frozenset[str]) -> bool:
        existing = self._stops[existing_index]
        if self.check_stop_type and is_railway_station(
            self._stop_route_types[existing_index]
        ) != is_railway_station(route_types):
            return False
        if self.check_stations:
            if (existing.location_type or LocationType.STOP) != (
                stop.location_type or LocationType.STOP
            ):
                return False
            if not stop.is_station and existing.platform_code != stop.platform_code:
                return False
        return True

    def insert_stop(
        self,
        stop: Stop,
        route_types: frozenset[str],
        station_id_map: Mapping[str, str],
    ) -> str:
        """Insert a stop, or return the id of the stop it merges with.

        ``parent_station`` is rewritten through ``station_id_map`` before
        anything else, so the stop is never compared against a pre-merge
        parent id.
        """
        if stop.parent_station:
            stop = replace(
                stop,
                parent_station=_resolve(
                    station_id_map, "station", stop.parent_station, f"stop {stop.id!r}"
                ),
            )

        # Identical names at different places (a bus stop and a railway
        # station of the same town) are kept apart only by the railway check.
        for index in self._stops_by_name.get(stop.name, ()):
            if self._stops_match(index, stop, route_types):
                return self._stops[index].id

        stop_id = new_id(stop.id, self._stops_by_id)
        self._stops.append(replace(stop, id=stop_id))
        index = len(self._stops) - 1
        self._stops_by_id[stop_id] = index
        self._stops_by_name.setdefault(stop.name, []).append(index)
        self._stop_route_types[index] = route_types
        return stop_id

    def insert_stops(self, feed: GtfsFeed) -> IdMap:
        """Insert parent-less stops first, then the stops that name a parent.

        Any stop without a ``parent_station`` may be referenced as a parent,
        whatever its ``location_type``.
        """
        route_types = stop_route_types(feed)
        stations = [s for s in feed.stops if not s.parent_station]
        others = [s for s in feed.stops if s.parent_station]

        station_id_map: IdMap = {}
        for station in stations:
            station_id_map[station.id] = self.insert_stop(
                station, route_types.get(station.id, frozenset()), {}
            )
        id_map = dict(station_id_map)
        for stop in others:
            id_map[stop.id] = self.insert_stop(
                stop, route_types.get(stop.id, frozenset()), station_id_map
            )
        return id_map

    # Routes

    def insert_route(self, route: Route, agency_id_map: Mapping[str, str]) -> str:
        """Insert a route, or return the id of a route with the same name."""
        name = route.display_name
        if name is None:
            msg = f"Route {route.id!r} has neither a short nor a long name"
            raise MergeError(msg)

        agency_id = _resolve(agency_id_map, "agency", route.agency_id or "", f"route {route.id!r}")
        existing = self._routes_by_name.get(name)
        if existing is not None:
            return self._routes[existing].id

        route_id = new_id(route.id, self._routes_by_id)
        self._routes.append(replace(route, id=route_id, agency_id=agency_id))
        index = len(self._routes) - 1
        self._routes_by_id[route_id] = index
        self._routes_by_name[name] = index
        return route_id

    def insert_routes(self, routes: Iterable[Route], agency_id_map: Mapping[str, str]) -> IdMap:
        return {route.id: self.insert_route(route, agency_id_map) for route in routes}

    # Calendar

    def _service_id(self, prev_id: str) -> str:
        return new_id(prev_id, self._calendar_by_id, self._exception_service_ids)

    def insert_calendar_entry(self, entry: CalendarEntry) -> str:
        entry_id = self._service_id(entry.id)
        self._calendar.append(replace(entry, id=entry_id))
        self._calendar_by_id[entry_id] = len(self._calendar) - 1
        return entry_id

    def insert_calendar(self, entries: Iterable[CalendarEntry]) -> IdMap:
        return {entry.id: self.insert_calendar_entry(entry) for entry in entries}

    def insert_calendar_exception(
        self, exception: CalendarException, calendar_id_map: IdMap
    ) -> str:
        """Insert an exception, extending ``calendar_id_map`` for new services.

        Services already mapped (by a calendar entry or an earlier exception
        of the same feed) keep their id; exception-only services get a
        fresh one.
        """
        service_id = calendar_id_map.get(exception.id)
        if service_id is None:
            service_id = self._service_id(exception.id)
            calendar_id_map[exception.id] = service_id
            self._exception_service_ids.add(service_id)

        key = (service_id, exception.date)
        existing = self._calendar_exceptions_by_key.get(key)
        if existing is not None:
            stored = self._calendar_exceptions[existing]
            if stored.exception_type != exception.exception_type:
                raise CalendarConflictError(
                    service_id, exception.date, {stored.exception_type, exception.exception_type}
                )
            logger.debug("Dropping duplicate calendar exception", service_id=service_id)
            return service_id

        self._calendar_exceptions.append(replace(exception, id=service_id))
        self._calendar_exceptions_by_key[key] = len(self._calendar_exceptions) - 1
        return service_id

    def insert_calendar_exceptions(
        self, exceptions: Iterable[CalendarException], calendar_id_map: Mapping[str, str]
    ) -> IdMap:
        id_map = dict(calendar_id_map)
        for exception in exceptions:
            self.insert_calendar_exception(exception, id_map)
        return id_map

    # Trips and stop times

    def insert_trip(
        self,
        trip: Trip,
        route_id_map: Mapping[str, str],
        calendar_id_map: Mapping[str, str],
    ) -> str:
        """Insert a trip. Trips are never merged."""
        referrer = f"trip {trip.id!r}"
        route_id = _resolve(route_id_map, "route", trip.route_id, referrer)
        service_id = _resolve(calendar_id_map, "service", trip.service_id, referrer)
        trip_id = new_id(trip.id, self._trips_by_id)
        self._trips.append(replace(trip, id=trip_id, route_id=route_id, service_id=service_id))
        self._trips_by_id[trip_id] = len(self._trips) - 1
        return trip_id

    def insert_trips(
        self,
        trips: Iterable[Trip],
        route_id_map: Mapping[str, str],
        calendar_id_map: Mapping[str, str],
    ) -> IdMap:
        return {trip.id: self.insert_trip(trip, route_id_map, calendar_id_map) for trip in trips}

    def insert_stop_time(
        self,
        stop_time: StopTime,
        trip_id_map: Mapping[str, str],
        stop_id_map: Mapping[str, str],
    ) -> None:
        referrer = f"stop time {stop_time.trip_id!r}#{stop_time.stop_sequence}"
        self._stop_times.append(
            replace(
                stop_time,
                trip_id=_resolve(trip_id_map, "trip", stop_time.trip_id, referrer),
                stop_id=_resolve(stop_id_map, "stop", stop_time.stop_id, referrer),
            )
        )

    # Whole feeds

    def insert_feed(self, feed: GtfsFeed) -> FeedIdMaps:
        """Fold ``feed`` into the consolidated feed.

        Entity kinds are inserted in dependency order so every foreign key
        can be rewritten through an already complete id map. A failure
        leaves earlier kinds inserted and later ones missing; callers must
        treat it as fatal for the run.

        Raises:
            OutOfOrderReferenceError: A record refers to an id that is not
                part of the feed (or not of the kind it should be).
            ConcurrentMergeError: Another thread is inserting into this
                instance.
        """
        if not self._writer.acquire(blocking=False):
            msg = "MergedFeed is already being written by another caller"
            raise ConcurrentMergeError(msg)
        try:
            self._feed_count += 1
            id_maps = FeedIdMaps()
            id_maps.agencies = self.insert_agencies(feed.agencies)
            id_maps.stops = self.insert_stops(feed)
            id_maps.routes = self.insert_routes(feed.routes, id_maps.agencies)
            calendar_id_map = self.insert_calendar(feed.calendar)
            id_maps.calendar = self.insert_calendar_exceptions(
                feed.calendar_exceptions, calendar_id_map
            )
            id_maps.trips = self.insert_trips(feed.trips, id_maps.routes, id_maps.calendar)
            for stop_time in feed.stop_times:
                self.insert_stop_time(stop_time, id_maps.trips, id_maps.stops)
        finally:
            self._writer.release()

        logger.debug(
            "Feed merged",
            feed_number=self._feed_count,
            input_counts=feed.counts(),
            merged_counts=self.counts(),
        )
        return id_maps

    def counts(self) -> dict[str, int]:
        return {
            "agencies": len(self._agencies),
            "stops": len(self._stops),
            "routes": len(self._routes),
            "trips": len(self._trips),
            "stop_times": len(self._stop_times),
            "calendar": len(self._calendar),
            "calendar_exceptions": len(self._calendar_exceptions),
        }

    def to_gtfs_feed(self) -> GtfsFeed:
        """Snapshot of the consolidated feed."""
        return GtfsFeed(
            agencies=list(self._agencies),
            stops=list(self._stops),
            routes=list(self._routes),
            trips=list(self._trips),
            stop_times=list(self._stop_times),
            calendar=list(self._calendar),
            calendar_exceptions=list(self._calendar_exceptions),
        )
