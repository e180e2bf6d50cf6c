"""Similarity scoring between free-text names and catalogue entries."""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Sequence, Tuple, TypeVar

from .models import Suggestion
from .utils import normalize_text, tokenize


LOGGER = logging.getLogger(__name__)

EXACT_BONUS = 0.5
CONTAINMENT_BONUS = 0.25

T = TypeVar("T")


def token_jaccard(a: str, b: str) -> float:
    """Jaccard similarity of the token sets of two normalised strings."""

    if not a or not b:
        return 0.0
    left = set(tokenize(a))
    right = set(tokenize(b))
    union = len(left | right)
    if union == 0:
        return 0.0
    return len(left & right) / union


def containment_bonus(a: str, b: str) -> float:
    # Truncated names in spreadsheets usually still contain the catalogue name
    if not a or not b:
        return 0.0
    if a == b:
        return EXACT_BONUS
    if a in b or b in a:
        return CONTAINMENT_BONUS
    return 0.0


def similarity(a: str, b: str) -> float:
    """Score two already normalised strings."""

    return token_jaccard(a, b) + containment_bonus(a, b)


def _score_all(name: str, candidates: Iterable[T]) -> Iterable[Tuple[T, float]]:
    normalized = normalize_text(name)
    if not normalized:
        return
    for candidate in candidates:
        candidate_text = normalize_text(getattr(candidate, "name", ""))
        if not candidate_text:
            continue
        yield candidate, similarity(normalized, candidate_text)


def best_fuzzy_match(name: str, candidates: Sequence[T], min_score: float) -> Tuple[Optional[T], float]:
    """Return the best scoring candidate for ``name``.

    The first candidate wins on ties so the result follows catalogue order.
    When the best score is below ``min_score`` the candidate is dropped but
    the score is still returned for diagnostics.
    """

    best: Optional[T] = None
    best_score = 0.0
    for candidate, score in _score_all(name, candidates):
        if score > best_score:
            best, best_score = candidate, score

    if best is None or best_score < min_score:
        return None, best_score
    return best, best_score


def suggest(name: str, candidates: Sequence[T], top_n: int = 5) -> List[Suggestion]:
    """Rank catalogue entries for the manual matching search box."""

    scored = [(candidate, score) for candidate, score in _score_all(name, candidates) if score > 0]
    # sort() is stable, equal scores keep catalogue order
    scored.sort(key=lambda entry: entry[1], reverse=True)
    return [
        Suggestion(entity_id=str(candidate.id), entity_name=candidate.name, score=round(score, 4))
        for candidate, score in scored[:top_n]
    ]


def search(query: str, candidates: Sequence[T], limit: int = 20) -> List[T]:
    """Plain substring search over normalised names."""

    normalized = normalize_text(query)
    if not normalized:
        return list(candidates)[:limit]
    found = [candidate for candidate in candidates if normalized in normalize_text(candidate.name)]
    return found[:limit]


__all__ = [
    "token_jaccard",
    "containment_bonus",
    "similarity",
    "best_fuzzy_match",
    "suggest",
    "search",
]
