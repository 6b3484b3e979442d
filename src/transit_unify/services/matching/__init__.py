"""Fuzzy stop name matching."""

from transit_unify.services.matching.stop_matcher import StopCandidate, StopMatch, StopMatcher

__all__ = ["StopCandidate", "StopMatch", "StopMatcher"]
