"""Tests for TimetableMerger - message store and cancellations."""

from __future__ import annotations

from datetime import date

from transit_unify.models.gtfs import (
    Agency,
    ExceptionType,
    GtfsFeed,
    Route,
    Stop,
    StopTime,
    Trip,
)
from transit_unify.models.timetable import (
    CancellationMessage,
    TimetableMessage,
    TransportIdentifier,
)
from transit_unify.services.calendar.bitmap import DateBitmap
from transit_unify.services.merge.engine import MergedFeed
from transit_unify.services.merge.timetable import TimetableMerger

JAN_1 = date(2024, 1, 1)
JAN_3 = date(2024, 1, 3)


def _identifier(core: str = "KADR----1234") -> TransportIdentifier:
    return TransportIdentifier(company="1054", core=core, variant="01", timetable_year=2024)


def _message(core: str = "KADR----1234", bits: str = "111") -> TimetableMessage:
    service_id = f"{core}-svc"
    feed = GtfsFeed(
        agencies=[Agency(id="CD", name="České dráhy")],
        stops=[Stop(id="A", name="Hostivice"), Stop(id="B", name="Praha-Dejvice")],
        routes=[Route(id=core, route_type="2", agency_id="CD", short_name=f"Os {core[-4:]}")],
        trips=[Trip(id=core, route_id=core, service_id=service_id)],
        stop_times=[
            StopTime(trip_id=core, stop_id="A", stop_sequence=1, departure_time=21600),
            StopTime(trip_id=core, stop_id="B", stop_sequence=2, arrival_time=22800),
        ],
    )
    return TimetableMessage(
        identifier=_identifier(core),
        calendar=DateBitmap.from_string(JAN_1, JAN_3, bits),
        feed=feed,
        service_id=service_id,
    )


def _cancellation(core: str = "KADR----1234", bits: str = "010") -> CancellationMessage:
    return CancellationMessage(
        identifier=_identifier(core), calendar=DateBitmap.from_string(JAN_1, JAN_3, bits)
    )


class TestTransportIdentifier:
    def test_key(self) -> None:
        assert _identifier().key == "1054-KADR----1234-01-2024"


class TestTimetableMerger:
    def test_add_and_cancel_part(self) -> None:
        merger = TimetableMerger()
        merger.add(_message())

        merger.cancel(_cancellation(bits="010"))

        message = merger.messages["1054-KADR----1234-01-2024"]
        assert message.calendar.to_string() == "101"
        assert merger.removed_count == 0

    def test_full_cancellation_removes_message(self) -> None:
        merger = TimetableMerger()
        merger.add(_message())

        merger.cancel(_cancellation(bits="111"))

        assert len(merger) == 0
        assert merger.removed_count == 1

    def test_duplicate_add_keeps_first(self) -> None:
        merger = TimetableMerger()
        first = _message(bits="100")
        merger.add(first)
        merger.add(_message(bits="111"))

        assert len(merger) == 1
        assert merger.messages[first.key] is first

    def test_cancel_unknown_message_is_ignored(self) -> None:
        merger = TimetableMerger()
        merger.add(_message())

        merger.cancel(_cancellation(core="KADR----9999", bits="111"))

        assert len(merger) == 1
        assert merger.removed_count == 0

    def test_process_all_applies_cancellations_last(self) -> None:
        merger = TimetableMerger()
        failed = merger.process_all(
            [
                ("cancel.xml", _cancellation(bits="001")),
                ("a.xml", _message()),
                ("b.xml", _message(core="KADR----5678")),
            ]
        )

        assert failed == 0
        assert len(merger) == 2
        assert merger.messages["1054-KADR----1234-01-2024"].calendar.to_string() == "110"

    def test_process_all_counts_failures(self) -> None:
        merger = TimetableMerger()
        merger.add(_message())
        bad = CancellationMessage(
            identifier=_identifier(),
            calendar=DateBitmap.filled(JAN_1, JAN_3, True),
        )
        # A broken stored bitmap makes applying the cancellation fail
        merger.messages[bad.key].calendar = None  # type: ignore[assignment]

        failed = merger.process_all([("bad.xml", bad), ("b.xml", _message(core="KADR----5678"))])

        assert failed == 1
        assert len(merger) == 2

    def test_to_feed_uses_bitmap_as_exceptions(self) -> None:
        feed = _message(bits="101").to_feed()

        assert feed.calendar == []
        assert [e.exception_type for e in feed.calendar_exceptions] == [
            ExceptionType.SERVICE_ADDED,
            ExceptionType.SERVICE_REMOVED,
            ExceptionType.SERVICE_ADDED,
        ]
        assert {e.id for e in feed.calendar_exceptions} == {"KADR----1234-svc"}

    def test_insert_into_merged_feed(self) -> None:
        merger = TimetableMerger()
        merger.add(_message())
        merger.add(_message(core="KADR----5678"))
        merger.cancel(_cancellation(core="KADR----5678", bits="111"))
        merged = MergedFeed()

        merger.insert_into(merged)

        result = merged.to_gtfs_feed()
        assert [t.id for t in result.trips] == ["KADR----1234"]
        assert len(result.calendar_exceptions) == 3
        assert len(result.stops) == 2
