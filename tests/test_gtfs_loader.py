"""Tests for GtfsFeedLoader - full archive decoding into a canonical feed."""

from __future__ import annotations

import hashlib
from datetime import date

import pytest

from transit_unify.models.gtfs import LocationType, Stop
from transit_unify.services.gtfs_static.loader import (
    AmbiguousZoneError,
    GtfsFeedLoader,
    deduplicate_stops,
)
from transit_unify.services.gtfs_static.normalizer import TimeParseError
from transit_unify.services.gtfs_static.reader import MissingRequiredFileError

from .fixtures.gtfs_fixture import STOP_TIMES_TXT, STOPS_TXT, build_gtfs_zip

BAD_STOP_TIMES = STOP_TIMES_TXT + "S5-2,7:30,07:30:00,U300,3\n"


class TestGtfsFeedLoader:
    def test_load_fixture(self) -> None:
        feed = GtfsFeedLoader().load(build_gtfs_zip())

        assert feed.counts() == {
            "agencies": 2,
            "stops": 4,
            "routes": 2,
            "trips": 3,
            "stop_times": 6,
            "calendar": 1,
            "calendar_exceptions": 1,
        }
        station = feed.stops[0]
        assert station.location_type is LocationType.STATION
        assert feed.stops[1].parent_station == "U100"
        assert feed.stop_times[4].arrival_time == 24 * 3600 + 30 * 60
        assert feed.calendar[0].end_date == date(2024, 12, 31)

    def test_report(self) -> None:
        data = build_gtfs_zip()
        _, report = GtfsFeedLoader().load_with_report(data, source="pid.zip")

        result = report.to_dict()
        assert result["status"] == "success"
        assert result["source"] == "pid.zip"
        assert result["feed_hash"] == hashlib.sha256(data).hexdigest()
        assert result["counts"]["stop_times"] == {"read": 6, "loaded": 6, "failed": 0}
        assert result["duration_ms"] is not None

    def test_default_strictness_from_settings(self) -> None:
        assert GtfsFeedLoader().strict is True

    def test_strict_mode_raises_on_bad_row(self) -> None:
        data = build_gtfs_zip(stop_times=BAD_STOP_TIMES)
        with pytest.raises(TimeParseError):
            GtfsFeedLoader(strict=True).load(data)

    def test_lenient_mode_skips_bad_row(self) -> None:
        data = build_gtfs_zip(stop_times=BAD_STOP_TIMES)

        feed, report = GtfsFeedLoader(strict=False).load_with_report(data)

        assert len(feed.stop_times) == 6
        assert report.counts["stop_times"] == {"read": 7, "loaded": 6, "failed": 1}
        assert report.warnings == [
            "stop_times line 8: Invalid GTFS time format: '7:30' (expected HH:MM:SS)"
        ]

    def test_without_calendar_files(self) -> None:
        feed = GtfsFeedLoader().load(build_gtfs_zip(calendar=None, calendar_dates=None))
        assert feed.calendar == []
        assert feed.calendar_exceptions == []

    def test_missing_required_file(self) -> None:
        with pytest.raises(MissingRequiredFileError):
            GtfsFeedLoader().load(build_gtfs_zip(exclude_files={"agency.txt"}))

    def test_conflicting_zones_raise(self) -> None:
        stops = STOPS_TXT + "U200,Praha-Dejvice,50.1009,14.3929,0,0,,\n"
        with pytest.raises(AmbiguousZoneError, match="U200"):
            GtfsFeedLoader().load(build_gtfs_zip(stops=stops))

    def test_repeated_stop_row_is_collapsed(self) -> None:
        stops = STOPS_TXT + "U200,Praha-Dejvice,50.1009,14.3929,P,0,,\n"

        feed, report = GtfsFeedLoader().load_with_report(build_gtfs_zip(stops=stops))

        assert [s.id for s in feed.stops] == ["U100", "U100Z1", "U200", "U300"]
        assert report.warnings == ["Duplicate stop_id=U200, keeping the first row"]


class TestDeduplicateStops:
    def test_zone_error_lists_zones(self) -> None:
        stops = [Stop(id="1", name="Kladno", zone_id="5"), Stop(id="1", name="Kladno")]
        with pytest.raises(AmbiguousZoneError) as exc_info:
            deduplicate_stops(stops)
        assert exc_info.value.zones == ["", "5"]
