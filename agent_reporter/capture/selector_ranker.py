"""Selector ranking by similarity to a failed selector."""

from __future__ import annotations

import logging
import re
from typing import Sequence

logger = logging.getLogger(__name__)

EXACT_MATCH_SCORE = 1000.0
CONTAINMENT_SCORE = 100.0
TOKEN_WEIGHT = 10.0
SIMILARITY_WEIGHT = 50.0
TYPE_AFFINITY_BONUS = 5.0

# Edit distance is quadratic; skip it for long selectors.
SIMILARITY_LENGTH_GUARD = 50

DEFAULT_SUGGESTIONS = 5
FUZZY_ID_THRESHOLD = 0.5

_TOKEN_RE = re.compile(r"[A-Za-z0-9]+")

_SELECTOR_KINDS = (
    ("#", "id"),
    (".", "class"),
    ("[", "attribute"),
    ("text=", "text"),
    ("role=", "role"),
    ("xpath=", "xpath"),
    ("//", "xpath"),
)


def edit_distance(a: str, b: str) -> int:
    """Levenshtein distance (insert, delete, substitute all cost 1)."""
    rows, cols = len(a) + 1, len(b) + 1
    matrix = [[0] * cols for _ in range(rows)]
    for i in range(rows):
        matrix[i][0] = i
    for j in range(cols):
        matrix[0][j] = j

    for i in range(1, rows):
        for j in range(1, cols):
            if a[i - 1] == b[j - 1]:
                matrix[i][j] = matrix[i - 1][j - 1]
            else:
                matrix[i][j] = 1 + min(
                    matrix[i - 1][j - 1],  # substitute
                    matrix[i][j - 1],      # insert
                    matrix[i - 1][j],      # delete
                )
    return matrix[-1][-1]


def similarity(a: str, b: str) -> float:
    """Edit distance normalized to 0..1, where 1 means identical."""
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return (longest - edit_distance(a, b)) / longest


def selector_tokens(selector: str) -> list[str]:
    """Alphanumeric runs of a selector, e.g. '#login-btn' -> ['login', 'btn']."""
    return _TOKEN_RE.findall(selector)


def selector_kind(selector: str) -> str | None:
    for prefix, kind in _SELECTOR_KINDS:
        if selector.startswith(prefix):
            return kind
    return None


def score_selector(target: str, candidate: str) -> float:
    """Relevance of candidate for a target selector. Higher is closer."""
    target_lower = target.lower()
    candidate_lower = candidate.lower()

    if target_lower == candidate_lower:
        return EXACT_MATCH_SCORE
    if target_lower in candidate_lower or candidate_lower in target_lower:
        return CONTAINMENT_SCORE

    score = 0.0
    for token in selector_tokens(target_lower):
        if token in candidate_lower:
            score += TOKEN_WEIGHT * len(token)

    if len(target) < SIMILARITY_LENGTH_GUARD and len(candidate) < SIMILARITY_LENGTH_GUARD:
        score += SIMILARITY_WEIGHT * similarity(target_lower, candidate_lower)

    kind = selector_kind(target)
    if kind is not None and kind == selector_kind(candidate):
        score += TYPE_AFFINITY_BONUS

    return score


def rank(target: str, candidates: Sequence[str]) -> list[str]:
    """Candidates sorted by descending relevance; ties keep their input order."""
    if not target:
        return list(candidates)
    scored = [(score_selector(target, c), c) for c in candidates]
    # sorted() is stable, so equal scores stay in input order
    return [c for _, c in sorted(scored, key=lambda pair: -pair[0])]


def suggest(
    target: str, candidates: Sequence[str], limit: int = DEFAULT_SUGGESTIONS,
) -> list[str]:
    """Short "did you mean" list: only candidates that plausibly match target.

    A candidate qualifies when it shares an alphanumeric token with target,
    or when both are id selectors whose ids are more than half similar.
    """
    if not target:
        return []
    tokens = [t.lower() for t in selector_tokens(target)]
    suggestions: list[str] = []
    for candidate in rank(target, candidates):
        if candidate in suggestions:
            continue
        candidate_lower = candidate.lower()
        if any(t in candidate_lower for t in tokens):
            suggestions.append(candidate)
        elif target.startswith("#") and candidate.startswith("#"):
            if similarity(target[1:].lower(), candidate[1:].lower()) > FUZZY_ID_THRESHOLD:
                suggestions.append(candidate)
        if len(suggestions) >= limit:
            break
    logger.debug("Suggestions for '%s': %s", target, suggestions)
    return suggestions
