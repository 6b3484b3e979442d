"""Feed merging: the consolidating engine, timetable messages and merge runs."""

from transit_unify.services.merge.engine import (
    CalendarConflictError,
    ConcurrentMergeError,
    MergedFeed,
    MergeError,
    OutOfOrderReferenceError,
)
from transit_unify.services.merge.runner import MergeReport, merge_partitioned, merge_sources
from transit_unify.services.merge.timetable import TimetableMerger

__all__ = [
    "CalendarConflictError",
    "ConcurrentMergeError",
    "MergeError",
    "MergeReport",
    "MergedFeed",
    "OutOfOrderReferenceError",
    "TimetableMerger",
    "merge_partitioned",
    "merge_sources",
]
