# services/reconcile.py
"""Match edited lyric text back onto a song's existing verses.

Two greedy passes: unchanged verses (after normalization) are paired first
regardless of position, then the leftovers are paired by similarity inside a
small index window. Whatever is left on the new side becomes new verses,
whatever is left on the old side is removed.
"""
from __future__ import annotations

from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Protocol, Sequence

from illusongs.services.similarity import normalize_verse_text, similarity

# Policy constants; auto-unpublish behaviour depends on their exact values.
FUZZY_MATCH_WINDOW = 2
FUZZY_MATCH_FLOOR = 0.5
SIGNIFICANT_CHANGE_THRESHOLD = 0.85


class ExistingVerse(Protocol):
    id: str
    lyric_text: str


@dataclass(frozen=True)
class VerseMatch:
    old_index: int
    new_index: int
    score: float

    @property
    def is_significant(self) -> bool:
        return self.score < SIGNIFICANT_CHANGE_THRESHOLD


@dataclass
class ReconciliationPlan:
    matches: list[VerseMatch] = field(default_factory=list)
    new_verse_indexes: list[int] = field(default_factory=list)
    removed_verse_ids: list[str] = field(default_factory=list)

    @property
    def significant_matches(self) -> list[VerseMatch]:
        return [m for m in self.matches if m.is_significant]

    @property
    def requires_unpublish(self) -> bool:
        return bool(self.new_verse_indexes) or bool(self.significant_matches)


def _exact_matches(
    previous_keys: list[str], next_keys: list[str]
) -> dict[int, VerseMatch]:
    buckets: dict[str, deque[int]] = defaultdict(deque)
    for index, key in enumerate(previous_keys):
        buckets[key].append(index)

    matched: dict[int, VerseMatch] = {}
    for new_index, key in enumerate(next_keys):
        available = buckets.get(key)
        if available:
            old_index = available.popleft()
            matched[new_index] = VerseMatch(old_index, new_index, 1.0)
    return matched


def _fuzzy_matches(
    previous_texts: Sequence[str],
    next_texts: Sequence[str],
    used_old: set[int],
    used_new: set[int],
) -> list[VerseMatch]:
    candidates: list[tuple[float, int, int, int]] = []
    for old_index, old_text in enumerate(previous_texts):
        if old_index in used_old:
            continue
        low = max(0, old_index - FUZZY_MATCH_WINDOW)
        high = min(len(next_texts) - 1, old_index + FUZZY_MATCH_WINDOW)
        for new_index in range(low, high + 1):
            if new_index in used_new:
                continue
            score = similarity(old_text, next_texts[new_index])
            if score < FUZZY_MATCH_FLOOR:
                continue
            candidates.append((score, abs(old_index - new_index), old_index, new_index))

    candidates.sort(key=lambda c: (-c[0], c[1], c[2], c[3]))

    accepted: list[VerseMatch] = []
    for score, _distance, old_index, new_index in candidates:
        if old_index in used_old or new_index in used_new:
            continue
        used_old.add(old_index)
        used_new.add(new_index)
        accepted.append(VerseMatch(old_index, new_index, score))
    return accepted


def reconcile_verses(
    previous: Sequence[ExistingVerse], next_texts: Sequence[str]
) -> ReconciliationPlan:
    """Plan how `next_texts` maps onto the `previous` verses (in sequence order).

    Greedy and index-window bounded, so not a globally optimal alignment; ties
    are broken deterministically by score, index distance, old index, new index.
    """
    previous_texts = [v.lyric_text for v in previous]
    exact = _exact_matches(
        [normalize_verse_text(t) for t in previous_texts],
        [normalize_verse_text(t) for t in next_texts],
    )
    used_new = set(exact)
    used_old = {m.old_index for m in exact.values()}

    fuzzy = _fuzzy_matches(previous_texts, next_texts, used_old, used_new)

    matches = sorted([*exact.values(), *fuzzy], key=lambda m: m.new_index)
    return ReconciliationPlan(
        matches=matches,
        new_verse_indexes=[i for i in range(len(next_texts)) if i not in used_new],
        removed_verse_ids=[v.id for i, v in enumerate(previous) if i not in used_old],
    )


__all__ = [
    "FUZZY_MATCH_WINDOW",
    "FUZZY_MATCH_FLOOR",
    "SIGNIFICANT_CHANGE_THRESHOLD",
    "VerseMatch",
    "ReconciliationPlan",
    "reconcile_verses",
]
