"""Static GTFS archives: reading, normalizing and writing canonical feeds."""

from transit_unify.services.gtfs_static.loader import GtfsFeedLoader
from transit_unify.services.gtfs_static.normalizer import GtfsNormalizer
from transit_unify.services.gtfs_static.parser import GtfsParser
from transit_unify.services.gtfs_static.reader import GtfsZipReader
from transit_unify.services.gtfs_static.writer import write_feed

__all__ = [
    "GtfsFeedLoader",
    "GtfsNormalizer",
    "GtfsParser",
    "GtfsZipReader",
    "write_feed",
]
