"""GTFS data normalizer - cleans and converts raw CSV rows into feed records."""

from __future__ import annotations

from datetime import date
from typing import Any, Optional

from transit_unify.logging import get_logger
from transit_unify.models.gtfs import (
    Agency,
    CalendarEntry,
    CalendarException,
    ExceptionType,
    LocationType,
    Route,
    Stop,
    StopTime,
    Trip,
)

logger = get_logger(__name__)

WEEKDAY_COLUMNS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


class TimeParseError(Exception):
    """Raised when a GTFS time string cannot be parsed."""


class NormalizationError(Exception):
    """Raised when a row cannot be normalized."""


class GtfsNormalizer:
    """Normalizes raw GTFS CSV rows into canonical records."""

    @staticmethod
    def normalize_agency(row: dict[str, Any]) -> Agency:
        name = _clean_str(row.get("agency_name"))
        if not name:
            raise NormalizationError("Missing agency_name")

        return Agency(
            id=_optional_str(row.get("agency_id")),
            name=name,
            url=_clean_str(row.get("agency_url")),
            timezone=_clean_str(row.get("agency_timezone")) or "Europe/Prague",
            lang=_optional_str(row.get("agency_lang")),
            phone=_optional_str(row.get("agency_phone")),
            fare_url=_optional_str(row.get("agency_fare_url")),
            email=_optional_str(row.get("agency_email")),
            stable_id=_optional_str(row.get("agency_stable_id")),
        )

    @staticmethod
    def normalize_stop(row: dict[str, Any]) -> Stop:
        """Normalize a stops.txt row.

        Coordinates are optional, but a stop has either both or neither.

        Raises:
            NormalizationError: If required fields are missing/invalid.
        """
        stop_id = _clean_str(row.get("stop_id"))
        name = _clean_str(row.get("stop_name"))

        if not stop_id:
            raise NormalizationError("Missing stop_id")
        if not name:
            raise NormalizationError(f"Missing stop_name for stop_id={stop_id}")

        lat_str = _clean_str(row.get("stop_lat"))
        lon_str = _clean_str(row.get("stop_lon"))
        lat: Optional[float] = None
        lon: Optional[float] = None
        if lat_str or lon_str:
            try:
                lat = float(lat_str)
                lon = float(lon_str)
            except ValueError as exc:
                raise NormalizationError(
                    f"Invalid lat/lon for stop_id={stop_id}: lat={lat_str!r}, lon={lon_str!r}"
                ) from exc

        location_type_str = _clean_str(row.get("location_type"))
        location_type: Optional[LocationType] = None
        if location_type_str:
            try:
                location_type = LocationType(location_type_str)
            except ValueError as exc:
                raise NormalizationError(
                    f"Invalid location_type={location_type_str!r} for stop_id={stop_id}"
                ) from exc

        return Stop(
            id=stop_id,
            name=name,
            code=_optional_str(row.get("stop_code")),
            description=_optional_str(row.get("stop_desc")),
            lat=lat,
            lon=lon,
            zone_id=_optional_str(row.get("zone_id")),
            url=_optional_str(row.get("stop_url")),
            location_type=location_type,
            parent_station=_optional_str(row.get("parent_station")),
            timezone=_optional_str(row.get("stop_timezone")),
            wheelchair_boarding=_optional_int(row, "wheelchair_boarding", stop_id),
            platform_code=_optional_str(row.get("platform_code")),
        )

    @staticmethod
    def normalize_route(row: dict[str, Any]) -> Route:
        """Normalize a routes.txt row.

        Raises:
            NormalizationError: If required fields are missing.
        """
        route_id = _clean_str(row.get("route_id"))
        short_name = _optional_str(row.get("route_short_name"))
        long_name = _optional_str(row.get("route_long_name"))
        route_type = _clean_str(row.get("route_type"))

        if not route_id:
            raise NormalizationError("Missing route_id")
        # Routes merge by name, so a nameless route cannot be handled
        if not short_name and not long_name:
            raise NormalizationError(f"Both short_name and long_name empty for route_id={route_id}")
        if not route_type:
            raise NormalizationError(f"Missing route_type for route_id={route_id}")

        return Route(
            id=route_id,
            route_type=route_type,
            agency_id=_optional_str(row.get("agency_id")),
            short_name=short_name,
            long_name=long_name,
            description=_optional_str(row.get("route_desc")),
            url=_optional_str(row.get("route_url")),
            color=_optional_str(row.get("route_color")),
            text_color=_optional_str(row.get("route_text_color")),
            sort_order=_optional_int(row, "route_sort_order", route_id),
        )

    @staticmethod
    def normalize_trip(row: dict[str, Any]) -> Trip:
        """Normalize a trips.txt row.

        Raises:
            NormalizationError: If required fields are missing.
        """
        trip_id = _clean_str(row.get("trip_id"))
        route_id = _clean_str(row.get("route_id"))
        service_id = _clean_str(row.get("service_id"))
        direction_id_str = _clean_str(row.get("direction_id"))

        if not trip_id:
            raise NormalizationError("Missing trip_id")
        if not route_id:
            raise NormalizationError(f"Missing route_id for trip_id={trip_id}")
        if not service_id:
            raise NormalizationError(f"Missing service_id for trip_id={trip_id}")

        direction_id: Optional[int] = None
        if direction_id_str:
            if direction_id_str in ("0", "1"):
                direction_id = int(direction_id_str)
            else:
                logger.warning(
                    "Invalid direction_id, leaving it unset",
                    trip_id=trip_id,
                    direction_id=direction_id_str,
                )

        return Trip(
            id=trip_id,
            route_id=route_id,
            service_id=service_id,
            headsign=_optional_str(row.get("trip_headsign")),
            short_name=_optional_str(row.get("trip_short_name")),
            direction_id=direction_id,
            block_id=_optional_str(row.get("block_id")),
            shape_id=_optional_str(row.get("shape_id")),
            wheelchair_accessible=_optional_int(row, "wheelchair_accessible", trip_id),
            bikes_allowed=_optional_int(row, "bikes_allowed", trip_id),
        )

    @staticmethod
    def normalize_stop_time(row: dict[str, Any]) -> StopTime:
        """Normalize a stop_times.txt row.

        Converts GTFS times (HH:MM:SS, may be >24:00:00) to seconds from
        midnight. Either time may be empty for untimed stops.

        Raises:
            NormalizationError: If required fields are missing/invalid.
        """
        trip_id = _clean_str(row.get("trip_id"))
        stop_id = _clean_str(row.get("stop_id"))
        seq_str = _clean_str(row.get("stop_sequence"))

        if not trip_id:
            raise NormalizationError("Missing trip_id in stop_times")
        if not stop_id:
            raise NormalizationError(f"Missing stop_id in stop_times for trip_id={trip_id}")
        if not seq_str:
            raise NormalizationError(
                f"Missing stop_sequence for trip_id={trip_id}, stop_id={stop_id}"
            )

        try:
            stop_sequence = int(seq_str)
        except ValueError as exc:
            raise NormalizationError(
                f"Invalid stop_sequence={seq_str!r} for trip_id={trip_id}"
            ) from exc

        context = f"{trip_id}#{stop_sequence}"
        shape_dist_str = _clean_str(row.get("shape_dist_traveled"))
        try:
            shape_dist = float(shape_dist_str) if shape_dist_str else None
        except ValueError as exc:
            raise NormalizationError(
                f"Invalid shape_dist_traveled={shape_dist_str!r} for {context}"
            ) from exc

        return StopTime(
            trip_id=trip_id,
            stop_id=stop_id,
            stop_sequence=stop_sequence,
            arrival_time=_optional_time(row.get("arrival_time")),
            departure_time=_optional_time(row.get("departure_time")),
            headsign=_optional_str(row.get("stop_headsign")),
            pickup_type=_optional_int(row, "pickup_type", context),
            drop_off_type=_optional_int(row, "drop_off_type", context),
            shape_dist_traveled=shape_dist,
            timepoint=_optional_int(row, "timepoint", context),
        )

    @staticmethod
    def normalize_calendar_entry(row: dict[str, Any]) -> CalendarEntry:
        service_id = _clean_str(row.get("service_id"))
        if not service_id:
            raise NormalizationError("Missing service_id in calendar")

        weekdays: list[bool] = []
        for column in WEEKDAY_COLUMNS:
            value = _clean_str(row.get(column))
            if value not in ("0", "1"):
                raise NormalizationError(
                    f"Invalid {column}={value!r} for service_id={service_id}"
                )
            weekdays.append(value == "1")

        return CalendarEntry(
            id=service_id,
            weekday_service=(
                weekdays[0],
                weekdays[1],
                weekdays[2],
                weekdays[3],
                weekdays[4],
                weekdays[5],
                weekdays[6],
            ),
            start_date=_required_date(row, "start_date", service_id),
            end_date=_required_date(row, "end_date", service_id),
        )

    @staticmethod
    def normalize_calendar_exception(row: dict[str, Any]) -> CalendarException:
        service_id = _clean_str(row.get("service_id"))
        if not service_id:
            raise NormalizationError("Missing service_id in calendar_dates")

        type_str = _clean_str(row.get("exception_type"))
        try:
            exception_type = ExceptionType(type_str)
        except ValueError as exc:
            raise NormalizationError(
                f"Invalid exception_type={type_str!r} for service_id={service_id}"
            ) from exc

        return CalendarException(
            id=service_id,
            date=_required_date(row, "date", service_id),
            exception_type=exception_type,
        )


def parse_gtfs_time(time_str: str) -> int:
    """Parse a GTFS time string (HH:MM:SS) to seconds from midnight.

    Supports times >= 24:00:00 for trips spanning past midnight.

    Examples:
        "08:30:00" -> 30600
        "25:01:30" -> 90090

    Raises:
        TimeParseError: If the format is invalid.
    """
    time_str = time_str.strip()
    parts = time_str.split(":")
    if len(parts) != 3:
        msg = f"Invalid GTFS time format: {time_str!r} (expected HH:MM:SS)"
        raise TimeParseError(msg)

    try:
        hours = int(parts[0])
        minutes = int(parts[1])
        seconds = int(parts[2])
    except ValueError as exc:
        msg = f"Non-numeric components in GTFS time: {time_str!r}"
        raise TimeParseError(msg) from exc

    if minutes < 0 or minutes > 59 or seconds < 0 or seconds > 59:
        msg = f"Invalid minutes/seconds in GTFS time: {time_str!r}"
        raise TimeParseError(msg)

    if hours < 0:
        msg = f"Negative hours in GTFS time: {time_str!r}"
        raise TimeParseError(msg)

    return hours * 3600 + minutes * 60 + seconds


def format_gtfs_time(seconds: int) -> str:
    """Inverse of :func:`parse_gtfs_time`; hours may exceed 23."""
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def parse_gtfs_date(date_str: str) -> date:
    """Parse a GTFS date (YYYYMMDD).

    Raises:
        NormalizationError: If the string is not a valid date.
    """
    date_str = date_str.strip()
    if len(date_str) != 8 or not date_str.isdigit():
        raise NormalizationError(f"Invalid GTFS date: {date_str!r} (expected YYYYMMDD)")
    try:
        return date(int(date_str[:4]), int(date_str[4:6]), int(date_str[6:]))
    except ValueError as exc:
        raise NormalizationError(f"Invalid GTFS date: {date_str!r}") from exc


def format_gtfs_date(day: date) -> str:
    return day.strftime("%Y%m%d")


def _clean_str(value: Any) -> str:
    """Trim whitespace from a value, return empty string for None."""
    if value is None:
        return ""
    return str(value).strip()


def _optional_str(value: Any) -> Optional[str]:
    return _clean_str(value) or None


def _optional_int(row: dict[str, Any], column: str, context: str) -> Optional[int]:
    value = _clean_str(row.get(column))
    if not value:
        return None
    try:
        return int(value)
    except ValueError as exc:
        raise NormalizationError(f"Invalid {column}={value!r} for {context}") from exc


def _optional_time(value: Any) -> Optional[int]:
    time_str = _clean_str(value)
    if not time_str:
        return None
    return parse_gtfs_time(time_str)


def _required_date(row: dict[str, Any], column: str, context: str) -> date:
    value = _clean_str(row.get(column))
    if not value:
        raise NormalizationError(f"Missing {column} for service_id={context}")
    return parse_gtfs_date(value)
