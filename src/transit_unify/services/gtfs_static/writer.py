"""GTFS feed writer - serializes a canonical feed into a GTFS ZIP."""

from __future__ import annotations

import csv
import io
import zipfile
from collections.abc import Callable, Sequence
from typing import Any, Optional, TypeVar

from transit_unify.logging import get_logger
from transit_unify.models.gtfs import (
    Agency,
    CalendarEntry,
    CalendarException,
    GtfsFeed,
    Route,
    Stop,
    StopTime,
    Trip,
)
from transit_unify.services.gtfs_static.normalizer import (
    WEEKDAY_COLUMNS,
    format_gtfs_date,
    format_gtfs_time,
)

logger = get_logger(__name__)

R = TypeVar("R")

FILE_COLUMNS: dict[str, tuple[str, ...]] = {
    "agency.txt": (
        "agency_id",
        "agency_name",
        "agency_url",
        "agency_timezone",
        "agency_lang",
        "agency_phone",
        "agency_fare_url",
        "agency_email",
        "agency_stable_id",
    ),
    "stops.txt": (
        "stop_id",
        "stop_code",
        "stop_name",
        "stop_desc",
        "stop_lat",
        "stop_lon",
        "zone_id",
        "stop_url",
        "location_type",
        "parent_station",
        "stop_timezone",
        "wheelchair_boarding",
        "platform_code",
    ),
    "routes.txt": (
        "route_id",
        "agency_id",
        "route_short_name",
        "route_long_name",
        "route_desc",
        "route_type",
        "route_url",
        "route_color",
        "route_text_color",
        "route_sort_order",
    ),
    "trips.txt": (
        "route_id",
        "service_id",
        "trip_id",
        "trip_headsign",
        "trip_short_name",
        "direction_id",
        "block_id",
        "shape_id",
        "wheelchair_accessible",
        "bikes_allowed",
    ),
    "stop_times.txt": (
        "trip_id",
        "arrival_time",
        "departure_time",
        "stop_id",
        "stop_sequence",
        "stop_headsign",
        "pickup_type",
        "drop_off_type",
        "shape_dist_traveled",
        "timepoint",
    ),
    "calendar.txt": ("service_id", *WEEKDAY_COLUMNS, "start_date", "end_date"),
    "calendar_dates.txt": ("service_id", "date", "exception_type"),
}


def _value(value: Any) -> str:
    if value is None:
        return ""
    if hasattr(value, "value"):  # enums
        return str(value.value)
    return str(value)


def _time(seconds: Optional[int]) -> str:
    return format_gtfs_time(seconds) if seconds is not None else ""


def agency_row(agency: Agency) -> dict[str, str]:
    return {
        "agency_id": _value(agency.id),
        "agency_name": agency.name,
        "agency_url": agency.url,
        "agency_timezone": agency.timezone,
        "agency_lang": _value(agency.lang),
        "agency_phone": _value(agency.phone),
        "agency_fare_url": _value(agency.fare_url),
        "agency_email": _value(agency.email),
        "agency_stable_id": _value(agency.stable_id),
    }


def stop_row(stop: Stop) -> dict[str, str]:
    return {
        "stop_id": stop.id,
        "stop_code": _value(stop.code),
        "stop_name": stop.name,
        "stop_desc": _value(stop.description),
        "stop_lat": _value(stop.lat),
        "stop_lon": _value(stop.lon),
        "zone_id": _value(stop.zone_id),
        "stop_url": _value(stop.url),
        "location_type": _value(stop.location_type),
        "parent_station": _value(stop.parent_station),
        "stop_timezone": _value(stop.timezone),
        "wheelchair_boarding": _value(stop.wheelchair_boarding),
        "platform_code": _value(stop.platform_code),
    }


def route_row(route: Route) -> dict[str, str]:
    return {
        "route_id": route.id,
        "agency_id": _value(route.agency_id),
        "route_short_name": _value(route.short_name),
        "route_long_name": _value(route.long_name),
        "route_desc": _value(route.description),
        "route_type": route.route_type,
        "route_url": _value(route.url),
        "route_color": _value(route.color),
        "route_text_color": _value(route.text_color),
        "route_sort_order": _value(route.sort_order),
    }


def trip_row(trip: Trip) -> dict[str, str]:
    return {
        "route_id": trip.route_id,
        "service_id": trip.service_id,
        "trip_id": trip.id,
        "trip_headsign": _value(trip.headsign),
        "trip_short_name": _value(trip.short_name),
        "direction_id": _value(trip.direction_id),
        "block_id": _value(trip.block_id),
        "shape_id": _value(trip.shape_id),
        "wheelchair_accessible": _value(trip.wheelchair_accessible),
        "bikes_allowed": _value(trip.bikes_allowed),
    }


def stop_time_row(stop_time: StopTime) -> dict[str, str]:
    return {
        "trip_id": stop_time.trip_id,
        "arrival_time": _time(stop_time.arrival_time),
        "departure_time": _time(stop_time.departure_time),
        "stop_id": stop_time.stop_id,
        "stop_sequence": str(stop_time.stop_sequence),
        "stop_headsign": _value(stop_time.headsign),
        "pickup_type": _value(stop_time.pickup_type),
        "drop_off_type": _value(stop_time.drop_off_type),
        "shape_dist_traveled": _value(stop_time.shape_dist_traveled),
        "timepoint": _value(stop_time.timepoint),
    }


def calendar_row(entry: CalendarEntry) -> dict[str, str]:
    row = {"service_id": entry.id}
    for column, runs in zip(WEEKDAY_COLUMNS, entry.weekday_service):
        row[column] = "1" if runs else "0"
    row["start_date"] = format_gtfs_date(entry.start_date)
    row["end_date"] = format_gtfs_date(entry.end_date)
    return row


def calendar_date_row(exception: CalendarException) -> dict[str, str]:
    return {
        "service_id": exception.id,
        "date": format_gtfs_date(exception.date),
        "exception_type": exception.exception_type.value,
    }


def _write_csv(
    zf: zipfile.ZipFile,
    filename: str,
    records: Sequence[R],
    to_row: Callable[[R], dict[str, str]],
) -> None:
    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=FILE_COLUMNS[filename], lineterminator="\n")
    writer.writeheader()
    writer.writerows(to_row(record) for record in records)
    zf.writestr(filename, buf.getvalue())


def write_feed(feed: GtfsFeed) -> bytes:
    """Serialize ``feed`` into GTFS ZIP bytes.

    Calendar files are only written when they have rows.
    """
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED) as zf:
        _write_csv(zf, "agency.txt", feed.agencies, agency_row)
        _write_csv(zf, "stops.txt", feed.stops, stop_row)
        _write_csv(zf, "routes.txt", feed.routes, route_row)
        _write_csv(zf, "trips.txt", feed.trips, trip_row)
        _write_csv(zf, "stop_times.txt", feed.stop_times, stop_time_row)
        if feed.calendar:
            _write_csv(zf, "calendar.txt", feed.calendar, calendar_row)
        if feed.calendar_exceptions:
            _write_csv(zf, "calendar_dates.txt", feed.calendar_exceptions, calendar_date_row)

    logger.info("GTFS feed written", counts=feed.counts())
    return buf.getvalue()
