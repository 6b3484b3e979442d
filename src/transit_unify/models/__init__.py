"""Canonical schedule records."""

from transit_unify.models.gtfs import (
    Agency,
    CalendarEntry,
    CalendarException,
    ExceptionType,
    GtfsFeed,
    LocationType,
    Route,
    Stop,
    StopTime,
    Trip,
)

__all__ = [
    "Agency",
    "CalendarEntry",
    "CalendarException",
    "ExceptionType",
    "GtfsFeed",
    "LocationType",
    "Route",
    "Stop",
    "StopTime",
    "Trip",
]
