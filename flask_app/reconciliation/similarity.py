"""
String similarity helpers used by auto-match and the duplicate report.

All scores are symmetric, deterministic and clamped to [0, 1]. Empty or
missing inputs score 0 and never count as an exact or same-location match.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from rapidfuzz import fuzz, utils

_WHITESPACE = re.compile(r"\s+")


def _clean_text(value: object | None) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    return str(value).strip()


def normalize_name(value: object | None) -> str:
    """Case-fold and collapse whitespace; the basis for exact comparisons."""

    return _WHITESPACE.sub(" ", _clean_text(value)).casefold()


def normalize_key(value: object | None) -> str:
    """Normalize a natural key (contract number, employee number, ...)."""

    token = _clean_text(value)
    if token.endswith(".0") and token[:-2].isdigit():
        token = token[:-2]
    return token.upper()


def is_exact_match(value1: object | None, value2: object | None) -> bool:
    """True when both values are non-empty and equal after normalization."""

    left = normalize_name(value1)
    right = normalize_name(value2)
    return bool(left) and left == right


def is_same_key(value1: object | None, value2: object | None) -> bool:
    left = normalize_key(value1)
    right = normalize_key(value2)
    return bool(left) and left == right


def is_same_location(
    city1: object | None,
    state1: object | None,
    city2: object | None,
    state2: object | None,
) -> bool:
    """City and state both present on each side and equal (case-insensitive)."""

    return is_exact_match(city1, city2) and is_exact_match(state1, state2)


def name_similarity(value1: object | None, value2: object | None) -> float:
    """Return a 0..1 similarity between two names.

    Exact matches (after case/whitespace normalization) score 1.0; everything
    else uses rapidfuzz's token-sort ratio over default-processed text, so word
    order and punctuation do not matter.
    """

    if is_exact_match(value1, value2):
        return 1.0
    text1 = utils.default_process(_clean_text(value1))
    text2 = utils.default_process(_clean_text(value2))
    if not text1 or not text2:
        return 0.0
    score = fuzz.token_sort_ratio(text1, text2) / 100.0
    return float(max(0.0, min(1.0, score)))


def bigram_similarity(value1: object | None, value2: object | None) -> float:
    """Sørensen–Dice coefficient over character bigrams of the normalized text."""

    left = normalize_name(value1)
    right = normalize_name(value2)
    if not left or not right:
        return 0.0
    if left == right:
        return 1.0
    if len(left) < 2 or len(right) < 2:
        return 0.0
    bigrams1 = {left[i : i + 2] for i in range(len(left) - 1)}
    bigrams2 = {right[i : i + 2] for i in range(len(right) - 1)}
    overlap = len(bigrams1 & bigrams2)
    return (2.0 * overlap) / (len(bigrams1) + len(bigrams2))


def best_name_similarity(value: object | None, *candidates: object | None) -> float:
    """Highest similarity between ``value`` and any of the candidate names."""

    return max((name_similarity(value, candidate) for candidate in candidates), default=0.0)


@dataclass(frozen=True)
class PairScore:
    score: float
    exact_match: bool
    same_location: bool


def score_pair(
    name1: object | None,
    name2: object | None,
    *,
    city1: object | None = None,
    state1: object | None = None,
    city2: object | None = None,
    state2: object | None = None,
) -> PairScore:
    return PairScore(
        score=name_similarity(name1, name2),
        exact_match=is_exact_match(name1, name2),
        same_location=is_same_location(city1, state1, city2, state2),
    )


__all__ = [
    "PairScore",
    "best_name_similarity",
    "bigram_similarity",
    "is_exact_match",
    "is_same_key",
    "is_same_location",
    "name_similarity",
    "normalize_key",
    "normalize_name",
    "score_pair",
]
