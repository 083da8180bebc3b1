from __future__ import annotations

from typing import Optional

from .normalization import normalize_company_name

DEFAULT_SIMILARITY_THRESHOLD = 0.8


def levenshtein_distance(a: str, b: str) -> int:
    """Edit distance with a single rolling row, O(len(a) * len(b)) time."""
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i] + [0] * len(b)
        for j, char_b in enumerate(b, start=1):
            cost = 0 if char_a == char_b else 1
            current[j] = min(
                previous[j] + 1,  # deletion
                current[j - 1] + 1,  # insertion
                previous[j - 1] + cost,  # substitution
            )
        previous = current
    return previous[len(b)]


def calculate_similarity(a: Optional[str], b: Optional[str]) -> float:
    """0-1 similarity of two names after company-name normalization."""
    left = normalize_company_name(a)
    right = normalize_company_name(b)
    if left == right:
        return 1.0
    longest = max(len(left), len(right))
    if longest == 0:
        return 1.0
    score = 1.0 - levenshtein_distance(left, right) / longest
    return max(0.0, min(1.0, score))


def is_similar_name(
    a: Optional[str], b: Optional[str], threshold: float = DEFAULT_SIMILARITY_THRESHOLD
) -> bool:
    return calculate_similarity(a, b) >= threshold
