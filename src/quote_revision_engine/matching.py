from __future__ import annotations

import math
from difflib import SequenceMatcher
from typing import Protocol, Sequence

from .errors import AmbiguousTarget, TargetNotFound
from .models.quote import QuoteItem


class TargetMatcher(Protocol):
    def match(self, target: str | None, items: Sequence[QuoteItem]) -> QuoteItem:
        ...


def _normalize(text: str | None) -> str:
    return " ".join((text or "").split()).lower()


def _is_exact(target: str, item: QuoteItem) -> bool:
    if item.item_code and _normalize(item.item_code) == target:
        return True
    return _normalize(item.description) == target


def similarity(target: str, item: QuoteItem) -> float:
    return SequenceMatcher(None, target, _normalize(item.description)).ratio()


def _best_by_similarity(target: str, candidates: Sequence[QuoteItem]) -> QuoteItem:
    if len(candidates) == 1:
        return candidates[0]
    scored = sorted(
        ((similarity(target, item), item) for item in candidates),
        key=lambda pair: pair[0],
        reverse=True,
    )
    best_score = scored[0][0]
    leaders = [item for score, item in scored if math.isclose(score, best_score)]
    if len(leaders) > 1:
        raise AmbiguousTarget(target, [item.description for item in leaders])
    return leaders[0]


class SimilarityMatcher:
    """Exact code/description matches first, then case-insensitive substrings.

    Several candidates at the same level are ranked by string similarity to
    the target; a tie at the top is ambiguous.
    """

    def match(self, target: str | None, items: Sequence[QuoteItem]) -> QuoteItem:
        needle = _normalize(target)
        if not needle:
            raise TargetNotFound(target)

        exact = [item for item in items if _is_exact(needle, item)]
        if exact:
            return _best_by_similarity(needle, exact)

        partial = [item for item in items if needle in _normalize(item.description)]
        if not partial:
            raise TargetNotFound(target)
        return _best_by_similarity(needle, partial)


class ExactMatcher:
    def match(self, target: str | None, items: Sequence[QuoteItem]) -> QuoteItem:
        needle = _normalize(target)
        exact = [item for item in items if needle and _is_exact(needle, item)]
        if not exact:
            raise TargetNotFound(target)
        if len(exact) > 1:
            raise AmbiguousTarget(needle, [item.description for item in exact])
        return exact[0]


__all__ = ["ExactMatcher", "SimilarityMatcher", "TargetMatcher", "similarity"]
