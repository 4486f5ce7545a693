"""
Title normalization and fuzzy candidate selection.

Search endpoints return several candidates; picking "the first one that contains
the title" is order-sensitive and wrong surprisingly often. Instead every
candidate is scored against the parsed title (after normalization) and the year,
and anything below a threshold is treated as a miss.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass
from typing import Generic, Iterable, TypeVar

from rapidfuzz import fuzz

T = TypeVar("T")

DEFAULT_THRESHOLD = 0.6
YEAR_MATCH_BONUS = 0.1
YEAR_NEAR_BONUS = 0.05
YEAR_MISMATCH_PENALTY = 0.15

_PUNCTUATION = re.compile(r"[^\w\s]")
_SPACES = re.compile(r"\s+")


def normalize_title(title: str | None) -> str:
    """Case-fold, strip accents and punctuation, collapse whitespace."""
    if not title:
        return ""
    decomposed = unicodedata.normalize("NFKD", title)
    no_accents = "".join(c for c in decomposed if not unicodedata.combining(c))
    s = _PUNCTUATION.sub(" ", no_accents.casefold()).replace("_", " ")
    s = s.replace(" and ", " ").replace(" & ", " ")
    return _SPACES.sub(" ", s).strip()


def title_similarity(a: str | None, b: str | None) -> float:
    """Similarity in [0, 1] between two titles after normalization."""
    na, nb = normalize_title(a), normalize_title(b)
    if not na or not nb:
        return 0.0
    if na == nb:
        return 1.0
    return float(fuzz.token_sort_ratio(na, nb)) / 100.0


@dataclass(frozen=True, slots=True)
class Candidate(Generic[T]):
    """A search hit reduced to what matching needs, plus the original payload."""

    title: str
    year: int | None
    payload: T
    alt_title: str | None = None


def score_candidate(
    title: str, year: int | None, candidate: Candidate[T]
) -> float:
    score = title_similarity(title, candidate.title)
    if candidate.alt_title:
        score = max(score, title_similarity(title, candidate.alt_title))

    if year is not None and candidate.year is not None:
        if candidate.year == year:
            score += YEAR_MATCH_BONUS
        elif abs(candidate.year - year) == 1:
            # Festival vs. release year.
            score += YEAR_NEAR_BONUS
        else:
            score -= YEAR_MISMATCH_PENALTY
    return score


def best_match(
    title: str,
    year: int | None,
    candidates: Iterable[Candidate[T]],
    *,
    threshold: float = DEFAULT_THRESHOLD,
) -> Candidate[T] | None:
    """
    Return the best-scoring candidate, or None if nothing reaches `threshold`.

    Ties keep the service's own ranking (earlier candidate wins).
    """
    best: Candidate[T] | None = None
    best_score = threshold
    for candidate in candidates:
        score = score_candidate(title, year, candidate)
        if score > best_score or (best is None and score >= threshold):
            best = candidate
            best_score = score
    return best
