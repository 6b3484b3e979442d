"""Merge runs: load GTFS archives and fold them into one consolidated feed.

Archives that cannot be decoded are logged, recorded in the run report and
skipped; the remaining sources still make a useful feed. Merge failures
are different: a failed ``insert_feed`` leaves the consolidated feed
partially written, so they abort the run.
"""

from __future__ import annotations

import csv
import uuid
import zipfile
from collections.abc import Callable, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from time import monotonic
from typing import Any, Optional

from transit_unify.config import get_settings
from transit_unify.logging import bind_merge_context, clear_merge_context, get_logger
from transit_unify.services.gtfs_static.loader import AmbiguousZoneError, GtfsFeedLoader
from transit_unify.services.gtfs_static.normalizer import NormalizationError, TimeParseError
from transit_unify.services.gtfs_static.parser import MissingColumnError
from transit_unify.services.gtfs_static.reader import MissingRequiredFileError
from transit_unify.services.merge.engine import MergedFeed, MergeError

logger = get_logger(__name__)

# Errors that make a single source unusable without affecting the run
LOAD_ERRORS: tuple[type[Exception], ...] = (
    zipfile.BadZipFile,
    MissingRequiredFileError,
    MissingColumnError,
    NormalizationError,
    TimeParseError,
    AmbiguousZoneError,
    UnicodeDecodeError,
    csv.Error,
)


class MergeReport:
    """Collects sources, failures and counts of one merge run."""

    def __init__(self, run_id: str | None = None) -> None:
        self.run_id = run_id or str(uuid.uuid4())
        self.started_at = datetime.now(timezone.utc)
        self.ended_at: datetime | None = None
        self.duration_ms: int | None = None
        self._t0 = monotonic()
        self.merged_sources: list[str] = []
        self.failed_sources: dict[str, str] = {}
        self.counts: dict[str, int] = {}

    def finish(self, merged: MergedFeed) -> None:
        self.ended_at = datetime.now(timezone.utc)
        self.duration_ms = int((monotonic() - self._t0) * 1000)
        self.counts = merged.counts()

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": "partial" if self.failed_sources else "success",
            "run_id": self.run_id,
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "duration_ms": self.duration_ms,
            "merged_sources": list(self.merged_sources),
            "failed_sources": dict(self.failed_sources),
            "counts": dict(self.counts),
        }


def merge_sources(
    sources: Mapping[str, bytes],
    merged: Optional[MergedFeed] = None,
    *,
    loader: Optional[GtfsFeedLoader] = None,
) -> tuple[MergedFeed, MergeReport]:
    """Load and merge GTFS archives in mapping order.

    Args:
        sources: Source name -> GTFS ZIP bytes.
        merged: Engine to merge into; a fresh one by default.
        loader: Feed loader; a default (settings-driven) one by default.

    Raises:
        MergeError: If merging a decoded feed fails. The engine must not be
            reused afterwards.
    """
    merged = merged if merged is not None else MergedFeed()
    loader = loader if loader is not None else GtfsFeedLoader()
    report = MergeReport()

    logger.info("Merge run starting", run_id=report.run_id, sources=len(sources))

    for name, data in sources.items():
        bind_merge_context(run_id=report.run_id, source=name)
        try:
            try:
                feed = loader.load(data, source=name)
            except LOAD_ERRORS as exc:
                report.failed_sources[name] = str(exc)
                logger.error("Error while loading GTFS source", error=str(exc))
                continue

            try:
                merged.insert_feed(feed)
            except MergeError as exc:
                logger.error("Merge run aborted", error=str(exc))
                raise
            report.merged_sources.append(name)
        finally:
            clear_merge_context()

    report.finish(merged)
    logger.info("Merge run complete", **report.to_dict())
    return merged, report


def merge_partitioned(
    partitions: Sequence[Mapping[str, bytes]],
    max_workers: Optional[int] = None,
    *,
    engine_factory: Callable[[], MergedFeed] = MergedFeed,
) -> tuple[MergedFeed, MergeReport]:
    """Merge each partition on its own engine in parallel, then fold them.

    Every partition is merged into a private :class:`MergedFeed` on a worker
    thread. The intermediate feeds are then inserted, in partition order,
    into one final engine on the calling thread, so the result does not
    depend on which worker finishes first.

    Raises:
        MergeError: If merging any partition, or folding one, fails.
    """
    max_workers = max_workers if max_workers is not None else get_settings().merge_max_workers
    report = MergeReport()
    logger.info(
        "Partitioned merge starting",
        run_id=report.run_id,
        partitions=len(partitions),
        max_workers=max_workers,
    )

    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        futures = [
            pool.submit(merge_sources, partition, engine_factory()) for partition in partitions
        ]
        # In submission order; the first failing partition re-raises here
        results = [future.result() for future in futures]

    final = engine_factory()
    for number, (partial, partial_report) in enumerate(results):
        bind_merge_context(run_id=report.run_id, partition=number)
        try:
            final.insert_feed(partial.to_gtfs_feed())
        except MergeError as exc:
            logger.error("Partitioned merge aborted", error=str(exc))
            raise
        finally:
            clear_merge_context()
        report.merged_sources.extend(partial_report.merged_sources)
        report.failed_sources.update(partial_report.failed_sources)

    report.finish(final)
    logger.info("Partitioned merge complete", **report.to_dict())
    return final, report
