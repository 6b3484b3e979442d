"""Tests for GtfsParser - CSV column validation and streaming."""

from __future__ import annotations

import pytest

from transit_unify.services.gtfs_static.parser import GtfsParser, MissingColumnError
from transit_unify.services.gtfs_static.reader import GtfsZipReader

from .fixtures.gtfs_fixture import build_gtfs_zip


class TestGtfsParser:
    """Tests for CSV parsing and column validation."""

    def test_parse_agencies_yields_rows(self) -> None:
        with GtfsZipReader(build_gtfs_zip()) as reader:
            rows = list(GtfsParser(reader).parse_agencies())

        assert [row["agency_id"] for row in rows] == ["CD", "DPP"]

    def test_parse_stops_yields_rows(self) -> None:
        zip_bytes = build_gtfs_zip()
        with GtfsZipReader(zip_bytes) as reader:
            parser = GtfsParser(reader)
            rows = list(parser.parse_stops())

        assert len(rows) == 4
        assert rows[0]["stop_id"] == "U100"
        assert rows[0]["stop_name"] == "Hostivice"

    def test_parse_routes_yields_rows(self) -> None:
        zip_bytes = build_gtfs_zip()
        with GtfsZipReader(zip_bytes) as reader:
            parser = GtfsParser(reader)
            rows = list(parser.parse_routes())

        assert len(rows) == 2
        assert rows[0]["route_id"] == "S5"
        assert rows[0]["route_type"] == "2"

    def test_parse_stop_times_yields_rows(self) -> None:
        zip_bytes = build_gtfs_zip()
        with GtfsZipReader(zip_bytes) as reader:
            parser = GtfsParser(reader)
            rows = list(parser.parse_stop_times())

        assert len(rows) == 6
        assert rows[0]["trip_id"] == "S5-1"
        assert rows[0]["arrival_time"] == "06:00:00"

    def test_parse_calendar_files(self) -> None:
        with GtfsZipReader(build_gtfs_zip()) as reader:
            parser = GtfsParser(reader)
            calendar = list(parser.parse_calendar())
            calendar_dates = list(parser.parse_calendar_dates())

        assert calendar[0]["service_id"] == "WD"
        assert calendar_dates[0]["exception_type"] == "2"

    def test_absent_optional_file_yields_nothing(self) -> None:
        with GtfsZipReader(build_gtfs_zip(calendar_dates=None)) as reader:
            assert list(GtfsParser(reader).parse_calendar_dates()) == []

    def test_missing_required_column_raises(self) -> None:
        bad_routes = "route_id,route_short_name\nS5,S5\n"  # missing route_type
        zip_bytes = build_gtfs_zip(routes=bad_routes)
        with GtfsZipReader(zip_bytes) as reader:
            parser = GtfsParser(reader)
            with pytest.raises(MissingColumnError, match="route_type"):
                list(parser.parse_routes())

    def test_header_whitespace_is_stripped(self) -> None:
        zip_bytes = build_gtfs_zip(stops="stop_id , stop_name\nA,Hostivice\n")
        with GtfsZipReader(zip_bytes) as reader:
            rows = list(GtfsParser(reader).parse_stops())
        assert rows == [{"stop_id": "A", "stop_name": "Hostivice"}]

    def test_empty_csv_parses_zero_rows(self) -> None:
        empty_stops = "stop_id,stop_name,stop_lat,stop_lon\n"
        zip_bytes = build_gtfs_zip(stops=empty_stops)
        with GtfsZipReader(zip_bytes) as reader:
            parser = GtfsParser(reader)
            rows = list(parser.parse_stops())
        assert len(rows) == 0

    def test_file_without_header_raises(self) -> None:
        zip_bytes = build_gtfs_zip(trips="")
        with GtfsZipReader(zip_bytes) as reader:
            with pytest.raises(MissingColumnError, match="Empty CSV"):
                list(GtfsParser(reader).parse_trips())

    def test_extra_columns_accepted(self) -> None:
        zip_bytes = build_gtfs_zip()  # fixture has extra columns like zone_id
        with GtfsZipReader(zip_bytes) as reader:
            parser = GtfsParser(reader)
            rows = list(parser.parse_stops())
        assert "zone_id" in rows[0]

    def test_stop_times_missing_column_raises(self) -> None:
        bad_st = "trip_id,stop_id\nS5-1,U200\n"  # missing stop_sequence
        zip_bytes = build_gtfs_zip(stop_times=bad_st)
        with GtfsZipReader(zip_bytes) as reader:
            parser = GtfsParser(reader)
            with pytest.raises(MissingColumnError, match="stop_sequence"):
                list(parser.parse_stop_times())
