"""GTFS feed loader - reads a GTFS ZIP into a canonical feed."""

from __future__ import annotations

import hashlib
import uuid
from collections.abc import Callable, Iterable, Iterator
from datetime import datetime, timezone
from typing import Any, Optional, TypeVar

from transit_unify.config import get_settings
from transit_unify.logging import get_logger
from transit_unify.models.gtfs import GtfsFeed, Stop
from transit_unify.services.gtfs_static.normalizer import (
    GtfsNormalizer,
    NormalizationError,
    TimeParseError,
)
from transit_unify.services.gtfs_static.parser import GtfsParser
from transit_unify.services.gtfs_static.reader import GtfsZipReader

logger = get_logger(__name__)

R = TypeVar("R")


class AmbiguousZoneError(Exception):
    """Two rows describe the same stop with different fare zones."""

    def __init__(self, stop_id: str, zones: Iterable[Optional[str]]) -> None:
        self.stop_id = stop_id
        self.zones = sorted(zone or "" for zone in zones)
        super().__init__(f"Conflicting zone_id values for stop_id={stop_id}: {self.zones}")


class LoadReport:
    """Collects load metrics, warnings, and errors."""

    def __init__(self, source: str, feed_hash: str, load_id: str | None = None) -> None:
        self.load_id = load_id or str(uuid.uuid4())
        self.source = source
        self.feed_hash = feed_hash
        self.started_at = datetime.now(timezone.utc)
        self.ended_at: datetime | None = None
        self.duration_ms: int | None = None
        self.counts: dict[str, dict[str, int]] = {}
        self.warnings: list[str] = []
        self.errors: list[str] = []

    def init_table(self, table: str) -> None:
        self.counts[table] = {"read": 0, "loaded": 0, "failed": 0}

    def finish(self) -> None:
        self.ended_at = datetime.now(timezone.utc)
        self.duration_ms = int((self.ended_at - self.started_at).total_seconds() * 1000)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": "failed" if self.errors else "success",
            "load_id": self.load_id,
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "duration_ms": self.duration_ms,
            "source": self.source,
            "feed_hash": self.feed_hash,
            "counts": self.counts,
            "warnings": self.warnings[:100],  # cap for log size
            "errors": self.errors[:100],
        }


def deduplicate_stops(stops: Iterable[Stop], report: Optional[LoadReport] = None) -> list[Stop]:
    """Collapse repeated rows for one stop id.

    Raises:
        AmbiguousZoneError: If the repeated rows disagree on ``zone_id``.
    """
    by_id: dict[str, Stop] = {}
    for stop in stops:
        existing = by_id.get(stop.id)
        if existing is None:
            by_id[stop.id] = stop
            continue
        if existing.zone_id != stop.zone_id:
            raise AmbiguousZoneError(stop.id, {existing.zone_id, stop.zone_id})
        msg = f"Duplicate stop_id={stop.id}, keeping the first row"
        logger.warning("Duplicate stop row", stop_id=stop.id)
        if report is not None:
            report.warnings.append(msg)
    return list(by_id.values())


class GtfsFeedLoader:
    """Loads GTFS archives into :class:`GtfsFeed` objects.

    In strict mode the first malformed row aborts loading with the
    normalizer's exception. In lenient mode malformed rows are skipped and
    recorded as warnings.
    """

    def __init__(self, strict: bool | None = None) -> None:
        settings = get_settings()
        self.strict = strict if strict is not None else settings.gtfs_load_strict
        self._normalizer = GtfsNormalizer()

    def load(self, data: bytes, source: str = "<memory>") -> GtfsFeed:
        feed, _ = self.load_with_report(data, source)
        return feed

    def load_with_report(
        self, data: bytes, source: str = "<memory>"
    ) -> tuple[GtfsFeed, LoadReport]:
        """Read, parse and normalize a GTFS ZIP.

        Raises:
            zipfile.BadZipFile: If data is not a valid ZIP.
            MissingRequiredFileError: If required files are missing.
            MissingColumnError: If required columns are missing.
            NormalizationError: On the first bad row, in strict mode.
            AmbiguousZoneError: If one stop id has conflicting zones.
        """
        report = LoadReport(source=source, feed_hash=hashlib.sha256(data).hexdigest())

        with GtfsZipReader(data) as reader:
            parser = GtfsParser(reader)
            normalizer = self._normalizer
            feed = GtfsFeed(
                agencies=self._normalize_all(
                    parser.parse_agencies(), normalizer.normalize_agency, "agencies", report
                ),
                stops=deduplicate_stops(
                    self._normalize_all(
                        parser.parse_stops(), normalizer.normalize_stop, "stops", report
                    ),
                    report,
                ),
                routes=self._normalize_all(
                    parser.parse_routes(), normalizer.normalize_route, "routes", report
                ),
                trips=self._normalize_all(
                    parser.parse_trips(), normalizer.normalize_trip, "trips", report
                ),
                stop_times=self._normalize_all(
                    parser.parse_stop_times(),
                    normalizer.normalize_stop_time,
                    "stop_times",
                    report,
                ),
                calendar=self._normalize_all(
                    parser.parse_calendar(),
                    normalizer.normalize_calendar_entry,
                    "calendar",
                    report,
                ),
                calendar_exceptions=self._normalize_all(
                    parser.parse_calendar_dates(),
                    normalizer.normalize_calendar_exception,
                    "calendar_dates",
                    report,
                ),
            )

        report.finish()
        logger.info(
            "GTFS feed loaded",
            load_id=report.load_id,
            source=source,
            duration_ms=report.duration_ms,
            counts=feed.counts(),
            warnings_count=len(report.warnings),
        )
        return feed, report

    def _normalize_all(
        self,
        rows: Iterator[dict[str, str]],
        normalize_fn: Callable[[dict[str, Any]], R],
        table_name: str,
        report: LoadReport,
    ) -> list[R]:
        """Normalize rows from a GTFS file.

        Collects errors per row; if strict mode, raises on first error.
        """
        report.init_table(table_name)
        results: list[R] = []

        for line, row in enumerate(rows, start=2):
            report.counts[table_name]["read"] += 1
            try:
                results.append(normalize_fn(row))
                report.counts[table_name]["loaded"] += 1
            except (NormalizationError, TimeParseError) as exc:
                report.counts[table_name]["failed"] += 1
                msg = f"{table_name} line {line}: {exc}"
                if self.strict:
                    report.errors.append(msg)
                    raise
                report.warnings.append(msg)

        return results
