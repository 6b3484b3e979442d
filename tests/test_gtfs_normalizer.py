"""Tests for GtfsNormalizer, time and date parsing."""

from __future__ import annotations

from datetime import date

import pytest

from transit_unify.models.gtfs import ExceptionType, LocationType
from transit_unify.services.gtfs_static.normalizer import (
    GtfsNormalizer,
    NormalizationError,
    TimeParseError,
    format_gtfs_date,
    format_gtfs_time,
    parse_gtfs_date,
    parse_gtfs_time,
)


class TestParseGtfsTime:
    """Tests for GTFS time string parsing (supports >24h)."""

    def test_normal_time(self) -> None:
        assert parse_gtfs_time("08:30:00") == 30600

    def test_midnight(self) -> None:
        assert parse_gtfs_time("00:00:00") == 0

    def test_end_of_day(self) -> None:
        assert parse_gtfs_time("23:59:59") == 86399

    def test_past_midnight_25h(self) -> None:
        assert parse_gtfs_time("25:01:30") == 90090

    def test_single_digit_hours(self) -> None:
        assert parse_gtfs_time("8:05:00") == 29100

    def test_whitespace_stripped(self) -> None:
        assert parse_gtfs_time("  08:30:00  ") == 30600

    def test_invalid_format_too_few_parts(self) -> None:
        with pytest.raises(TimeParseError, match="Invalid GTFS time format"):
            parse_gtfs_time("08:30")

    def test_invalid_non_numeric(self) -> None:
        with pytest.raises(TimeParseError, match="Non-numeric"):
            parse_gtfs_time("ab:cd:ef")

    def test_invalid_minutes_over_59(self) -> None:
        with pytest.raises(TimeParseError, match="Invalid minutes"):
            parse_gtfs_time("08:60:00")

    def test_negative_hours(self) -> None:
        with pytest.raises(TimeParseError, match="Negative hours"):
            parse_gtfs_time("-1:00:00")

    def test_format_keeps_hours_past_midnight(self) -> None:
        assert format_gtfs_time(90090) == "25:01:30"
        assert format_gtfs_time(0) == "00:00:00"


class TestParseGtfsDate:
    def test_valid_date(self) -> None:
        assert parse_gtfs_date("20240229") == date(2024, 2, 29)

    def test_format_date(self) -> None:
        assert format_gtfs_date(date(2024, 1, 5)) == "20240105"

    @pytest.mark.parametrize("value", ["2024-01-01", "2024011", "abcdefgh", "20230229"])
    def test_invalid_date_raises(self, value: str) -> None:
        with pytest.raises(NormalizationError, match="Invalid GTFS date"):
            parse_gtfs_date(value)


class TestNormalizeAgency:
    def test_valid_agency(self) -> None:
        row = {
            "agency_id": "CD",
            "agency_name": "České dráhy",
            "agency_url": "https://www.cd.cz",
            "agency_timezone": "Europe/Prague",
        }
        agency = GtfsNormalizer.normalize_agency(row)
        assert agency.id == "CD"
        assert agency.name == "České dráhy"
        assert agency.stable_id is None

    def test_missing_id_and_timezone(self) -> None:
        agency = GtfsNormalizer.normalize_agency({"agency_id": "", "agency_name": "ČD"})
        assert agency.id is None
        assert agency.timezone == "Europe/Prague"

    def test_stable_id_column(self) -> None:
        agency = GtfsNormalizer.normalize_agency(
            {"agency_name": "ČD", "agency_stable_id": " 25:CD "}
        )
        assert agency.stable_id == "25:CD"

    def test_missing_name_raises(self) -> None:
        with pytest.raises(NormalizationError, match="Missing agency_name"):
            GtfsNormalizer.normalize_agency({"agency_id": "CD", "agency_name": " "})


class TestNormalizeStop:
    """Tests for stop normalization."""

    def test_valid_stop(self) -> None:
        row = {
            "stop_id": "U100",
            "stop_name": "Hostivice",
            "stop_lat": "50.0813",
            "stop_lon": "14.2586",
            "location_type": "1",
        }
        stop = GtfsNormalizer.normalize_stop(row)
        assert stop.id == "U100"
        assert stop.name == "Hostivice"
        assert stop.lat == 50.0813
        assert stop.lon == 14.2586
        assert stop.location_type is LocationType.STATION
        assert stop.is_station

    def test_whitespace_trimmed(self) -> None:
        row = {"stop_id": " U100 ", "stop_name": " Hostivice ", "parent_station": " "}
        stop = GtfsNormalizer.normalize_stop(row)
        assert stop.id == "U100"
        assert stop.name == "Hostivice"
        assert stop.parent_station is None

    def test_coordinates_are_optional(self) -> None:
        stop = GtfsNormalizer.normalize_stop({"stop_id": "1", "stop_name": "Hostivice"})
        assert stop.lat is None
        assert stop.lon is None
        assert not stop.has_coordinates

    def test_single_coordinate_raises(self) -> None:
        row = {"stop_id": "1", "stop_name": "Hostivice", "stop_lat": "50.08"}
        with pytest.raises(NormalizationError, match="Invalid lat/lon"):
            GtfsNormalizer.normalize_stop(row)

    def test_invalid_lat_raises(self) -> None:
        row = {"stop_id": "1", "stop_name": "Test", "stop_lat": "abc", "stop_lon": "14"}
        with pytest.raises(NormalizationError, match="Invalid lat/lon"):
            GtfsNormalizer.normalize_stop(row)

    def test_invalid_location_type_raises(self) -> None:
        row = {"stop_id": "1", "stop_name": "Test", "location_type": "7"}
        with pytest.raises(NormalizationError, match="Invalid location_type"):
            GtfsNormalizer.normalize_stop(row)

    def test_missing_stop_id_raises(self) -> None:
        with pytest.raises(NormalizationError, match="Missing stop_id"):
            GtfsNormalizer.normalize_stop({"stop_id": "", "stop_name": "Test"})

    def test_missing_name_raises(self) -> None:
        with pytest.raises(NormalizationError, match="Missing stop_name"):
            GtfsNormalizer.normalize_stop({"stop_id": "1", "stop_name": ""})


class TestNormalizeRoute:
    """Tests for route normalization."""

    def test_valid_route(self) -> None:
        row = {
            "route_id": "S5",
            "agency_id": "CD",
            "route_short_name": "S5",
            "route_long_name": "Praha - Hostivice",
            "route_type": "2",
        }
        route = GtfsNormalizer.normalize_route(row)
        assert route.id == "S5"
        assert route.agency_id == "CD"
        assert route.display_name == "S5"

    def test_long_name_used_without_short_name(self) -> None:
        row = {"route_id": "R1", "route_long_name": "Praha - Kladno", "route_type": "2"}
        route = GtfsNormalizer.normalize_route(row)
        assert route.short_name is None
        assert route.display_name == "Praha - Kladno"

    def test_both_names_empty_raises(self) -> None:
        row = {"route_id": "R1", "route_short_name": "", "route_long_name": "", "route_type": "3"}
        with pytest.raises(NormalizationError, match="Both short_name and long_name empty"):
            GtfsNormalizer.normalize_route(row)

    def test_missing_route_type_raises(self) -> None:
        row = {"route_id": "R1", "route_short_name": "1"}
        with pytest.raises(NormalizationError, match="Missing route_type"):
            GtfsNormalizer.normalize_route(row)

    def test_invalid_sort_order_raises(self) -> None:
        row = {
            "route_id": "R1",
            "route_short_name": "1",
            "route_type": "3",
            "route_sort_order": "x",
        }
        with pytest.raises(NormalizationError, match="route_sort_order"):
            GtfsNormalizer.normalize_route(row)


class TestNormalizeTrip:
    """Tests for trip normalization."""

    def test_valid_trip(self) -> None:
        row = {"trip_id": "t1", "route_id": "r1", "service_id": "WD", "direction_id": "1"}
        trip = GtfsNormalizer.normalize_trip(row)
        assert trip.id == "t1"
        assert trip.direction_id == 1

    def test_empty_direction_id_is_unset(self) -> None:
        row = {"trip_id": "t1", "route_id": "r1", "service_id": "WD", "direction_id": ""}
        assert GtfsNormalizer.normalize_trip(row).direction_id is None

    def test_invalid_direction_id_is_unset(self) -> None:
        row = {"trip_id": "t1", "route_id": "r1", "service_id": "WD", "direction_id": "5"}
        assert GtfsNormalizer.normalize_trip(row).direction_id is None

    def test_missing_trip_id_raises(self) -> None:
        row = {"trip_id": "", "route_id": "r1", "service_id": "WD"}
        with pytest.raises(NormalizationError, match="Missing trip_id"):
            GtfsNormalizer.normalize_trip(row)

    def test_missing_service_id_raises(self) -> None:
        row = {"trip_id": "t1", "route_id": "r1", "service_id": ""}
        with pytest.raises(NormalizationError, match="Missing service_id"):
            GtfsNormalizer.normalize_trip(row)


class TestNormalizeStopTime:
    """Tests for stop_time normalization."""

    def test_valid_stop_time(self) -> None:
        row = {
            "trip_id": "t1",
            "stop_id": "U200",
            "stop_sequence": "1",
            "arrival_time": "06:30:00",
            "departure_time": "06:31:00",
        }
        stop_time = GtfsNormalizer.normalize_stop_time(row)
        assert stop_time.trip_id == "t1"
        assert stop_time.stop_id == "U200"
        assert stop_time.stop_sequence == 1
        assert stop_time.arrival_time == 23400
        assert stop_time.departure_time == 23460

    def test_past_midnight_time(self) -> None:
        row = {"trip_id": "t1", "stop_id": "U200", "stop_sequence": "1", "arrival_time": "25:01:30"}
        assert GtfsNormalizer.normalize_stop_time(row).arrival_time == 90090

    def test_untimed_stop(self) -> None:
        row = {"trip_id": "t1", "stop_id": "U200", "stop_sequence": "2", "arrival_time": ""}
        stop_time = GtfsNormalizer.normalize_stop_time(row)
        assert stop_time.arrival_time is None
        assert stop_time.departure_time is None

    def test_bad_time_raises(self) -> None:
        row = {"trip_id": "t1", "stop_id": "U200", "stop_sequence": "1", "arrival_time": "6:30"}
        with pytest.raises(TimeParseError):
            GtfsNormalizer.normalize_stop_time(row)

    def test_invalid_sequence_raises(self) -> None:
        row = {"trip_id": "t1", "stop_id": "U200", "stop_sequence": "abc"}
        with pytest.raises(NormalizationError, match="Invalid stop_sequence"):
            GtfsNormalizer.normalize_stop_time(row)

    def test_missing_stop_id_raises(self) -> None:
        row = {"trip_id": "t1", "stop_id": "", "stop_sequence": "1"}
        with pytest.raises(NormalizationError, match="Missing stop_id"):
            GtfsNormalizer.normalize_stop_time(row)


class TestNormalizeCalendar:
    def test_calendar_entry(self) -> None:
        row = {
            "service_id": "WD",
            "monday": "1",
            "tuesday": "1",
            "wednesday": "1",
            "thursday": "1",
            "friday": "1",
            "saturday": "0",
            "sunday": "0",
            "start_date": "20240101",
            "end_date": "20241231",
        }
        entry = GtfsNormalizer.normalize_calendar_entry(row)
        assert entry.id == "WD"
        assert entry.weekday_service == (True, True, True, True, True, False, False)
        assert entry.start_date == date(2024, 1, 1)
        assert entry.end_date == date(2024, 12, 31)

    def test_invalid_weekday_flag_raises(self) -> None:
        row = {"service_id": "WD", "monday": "yes"}
        with pytest.raises(NormalizationError, match="Invalid monday"):
            GtfsNormalizer.normalize_calendar_entry(row)

    def test_calendar_exception(self) -> None:
        row = {"service_id": "WD", "date": "20240101", "exception_type": "2"}
        exception = GtfsNormalizer.normalize_calendar_exception(row)
        assert exception.date == date(2024, 1, 1)
        assert exception.exception_type is ExceptionType.SERVICE_REMOVED

    def test_invalid_exception_type_raises(self) -> None:
        row = {"service_id": "WD", "date": "20240101", "exception_type": "3"}
        with pytest.raises(NormalizationError, match="Invalid exception_type"):
            GtfsNormalizer.normalize_calendar_exception(row)

    def test_missing_date_raises(self) -> None:
        row = {"service_id": "WD", "date": "", "exception_type": "1"}
        with pytest.raises(NormalizationError, match="Missing date"):
            GtfsNormalizer.normalize_calendar_exception(row)
