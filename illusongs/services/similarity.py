# services/similarity.py
from __future__ import annotations

import re

_WHITESPACE = re.compile(r"\s+")


def normalize_verse_text(text: str) -> str:
    """Collapse whitespace runs (line breaks included), trim and lowercase."""
    return _WHITESPACE.sub(" ", text or "").strip().lower()


def levenshtein_distance(a: str, b: str) -> int:
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)

    # single row of the DP table, indexed by position in b
    row = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        diagonal = row[0]
        row[0] = i
        for j, cb in enumerate(b, start=1):
            above = row[j]
            cost = 0 if ca == cb else 1
            row[j] = min(above + 1, row[j - 1] + 1, diagonal + cost)
            diagonal = above
    return row[-1]


def similarity(a: str, b: str) -> float:
    """Return a score in [0, 1]; 1 means the normalized texts are identical."""
    left = normalize_verse_text(a)
    right = normalize_verse_text(b)
    longest = max(len(left), len(right))
    if longest == 0:
        return 1.0
    return 1.0 - levenshtein_distance(left, right) / longest


__all__ = ["normalize_verse_text", "levenshtein_distance", "similarity"]
