"""Transit Unify: merges public transport schedules into one GTFS feed."""

__version__ = "0.1.0"
