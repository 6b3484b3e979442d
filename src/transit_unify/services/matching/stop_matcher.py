"""Match free-text stop names against a list of reference stops.

Used to attach coordinates (or any other payload) to stops whose source
data carries only a name. Candidates are indexed once in an in-memory
inverted index; queries must contain every query token (after abbreviation
expansion), are ranked by a tf-idf relevance score, and are then re-scored
by how much of each candidate's name the query covers.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

from transit_unify.config import get_settings
from transit_unify.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

# Abbreviations commonly found in Czech stop names. Each group is one
# equivalence class; tokens are compared after lowercasing and without dots.
SYNONYM_GROUPS: tuple[frozenset[str], ...] = (
    frozenset({"nám", "náměstí"}),
    frozenset({"hl", "hlavní"}),
    frozenset({"n", "nádr", "nádraží"}),
    frozenset({"žel", "železniční"}),
    frozenset({"st", "stanice"}),
    frozenset({"zast", "zastávka"}),
    frozenset({"ul", "ulice"}),
    frozenset({"sídl", "sídliště"}),
    frozenset({"rozc", "rozcestí"}),
    frozenset({"křiž", "křižovatka"}),
    frozenset({"aut", "autobusové", "autobusová"}),
    frozenset({"nem", "nemocnice"}),
)

_SYNONYMS: dict[str, frozenset[str]] = {
    token: group for group in SYNONYM_GROUPS for token in group
}

_PUNCTUATION = str.maketrans({".": " ", ",": " ", "-": " ", "/": " ", "(": " ", ")": " "})


def preprocess_stop_name(name: str) -> str:
    """Lowercase a stop name and replace punctuation with spaces."""
    # "hl.n." must become two tokens
    return name.replace(".", ". ").translate(_PUNCTUATION).lower()


def stop_name_to_tokens(name: str) -> list[str]:
    """Split a stop name into normalized tokens."""
    return preprocess_stop_name(name).split()


def expand_token(token: str) -> frozenset[str]:
    """Return the synonym class of a token (the token itself if it has none)."""
    return _SYNONYMS.get(token, frozenset((token,)))


def expand_tokens(tokens: Iterable[str]) -> frozenset[str]:
    expanded: set[str] = set()
    for token in tokens:
        expanded |= expand_token(token)
    return frozenset(expanded)


def name_similarity(query_tokens: Sequence[str], candidate_tokens: Sequence[str]) -> float:
    """Fraction of the candidate's tokens that also occur in the query.

    Tokens are compared by synonym class, so "nám" matches "náměstí".
    """
    if not candidate_tokens:
        return 0.0
    query_terms = expand_tokens(query_tokens)
    matched = sum(1 for token in candidate_tokens if expand_token(token) & query_terms)
    return matched / len(candidate_tokens)


@dataclass(frozen=True)
class StopCandidate(Generic[T]):
    """A reference stop; ``payload`` is returned unchanged with matches."""

    name: str
    payload: T


@dataclass(frozen=True)
class StopMatch(Generic[T]):
    candidate: StopCandidate[T]
    score: float

    @property
    def payload(self) -> T:
        return self.candidate.payload


class StopMatcher(Generic[T]):
    """Read-only stop name index.

    The index is built in the constructor and never modified afterwards, so
    one matcher can serve queries from any number of threads.
    """

    def __init__(
        self,
        candidates: Iterable[StopCandidate[T]],
        *,
        top_n: Optional[int] = None,
    ) -> None:
        self.top_n = top_n if top_n is not None else get_settings().matcher_top_n
        self._candidates: tuple[StopCandidate[T], ...] = tuple(candidates)
        self._tokens: list[list[str]] = []
        # term -> {candidate index: occurrences}
        self._postings: dict[str, dict[int, int]] = {}
        self._index()

    def __len__(self) -> int:
        return len(self._candidates)

    def _index(self) -> None:
        for i, candidate in enumerate(self._candidates):
            tokens = stop_name_to_tokens(candidate.name)
            self._tokens.append(tokens)
            for token in tokens:
                for term in expand_token(token):
                    postings = self._postings.setdefault(term, {})
                    postings[i] = postings.get(i, 0) + 1

        skipped = sum(1 for tokens in self._tokens if not tokens)
        logger.info(
            "Stop matcher index built",
            candidates=len(self._candidates),
            terms=len(self._postings),
            skipped_empty=skipped,
        )

    def _token_postings(self, token: str) -> dict[int, int]:
        """Candidates containing any synonym of ``token``, with term frequency."""
        merged: dict[int, int] = {}
        for term in expand_token(token):
            for doc, tf in self._postings.get(term, {}).items():
                merged[doc] = max(merged.get(doc, 0), tf)
        return merged

    def _relevance(self, doc: int, token_postings: list[dict[int, int]]) -> float:
        total_docs = len(self._candidates)
        score = 0.0
        for postings in token_postings:
            idf = 1.0 + math.log(total_docs / (len(postings) + 1))
            score += idf * math.sqrt(postings[doc])
        return score / math.sqrt(len(self._tokens[doc]))

    def match_stop(self, name: str, top: Optional[int] = None) -> list[StopMatch[T]]:
        """Find candidates whose names contain every token of ``name``.

        At most ``top`` candidates (by relevance) are kept; they are then
        ordered by :func:`name_similarity`, best first. No match is not an
        error and yields an empty list.
        """
        query_tokens = stop_name_to_tokens(name)
        if not query_tokens or not self._candidates:
            return []

        token_postings = [self._token_postings(token) for token in query_tokens]
        docs = set(token_postings[0])
        for postings in token_postings[1:]:
            docs &= postings.keys()
        if not docs:
            return []

        limit = top if top is not None else self.top_n
        ranked = sorted(docs, key=lambda d: (-self._relevance(d, token_postings), d))[:limit]
        matches = [
            StopMatch(
                candidate=self._candidates[doc],
                score=name_similarity(query_tokens, self._tokens[doc]),
            )
            for doc in ranked
        ]
        # Stable, so equal scores keep relevance order
        matches.sort(key=lambda m: -m.score)
        return matches
