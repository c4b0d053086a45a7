"""Near-duplicate removal for extracted obligations.

Two candidates are duplicates when the Jaccard similarity of their
lowercased, whitespace-tokenized word sets exceeds the threshold. With
``containment`` enabled the score is the larger of Jaccard and the share of
the smaller set found in the larger one, which also collapses restatements
that only add a trailing qualifier ("... of the event") but merges any
obligation that extends a shorter one.
"""

from __future__ import annotations

import logging
from typing import FrozenSet, List, Optional, Sequence, TypeVar

from regextract.config import settings
from regextract.models.obligation import ExtractedObligation

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=ExtractedObligation)


def word_set(text: str) -> FrozenSet[str]:
    return frozenset(text.lower().split())


def jaccard(a: FrozenSet[str], b: FrozenSet[str]) -> float:
    union = a | b
    if not union:
        return 1.0
    return len(a & b) / len(union)


def containment(a: FrozenSet[str], b: FrozenSet[str]) -> float:
    smaller = min(len(a), len(b))
    if smaller == 0:
        return 1.0 if not a and not b else 0.0
    return len(a & b) / smaller


def similarity(a: FrozenSet[str], b: FrozenSet[str], use_containment: bool = False) -> float:
    if use_containment:
        return max(jaccard(a, b), containment(a, b))
    return jaccard(a, b)


def deduplicate(
    obligations: Sequence[T],
    threshold: Optional[float] = None,
    use_containment: Optional[bool] = None,
) -> List[T]:
    """Keep the first of any group of near-duplicates, preserving order.

    Quadratic in the number of obligations, which stays in the low hundreds
    per document.
    """
    if threshold is None:
        threshold = settings.dedup_threshold
    if use_containment is None:
        use_containment = settings.dedup_containment
    unique: List[T] = []
    seen: List[FrozenSet[str]] = []
    for obligation in obligations:
        words = word_set(obligation.extracted_text)
        if any(similarity(existing, words, use_containment) > threshold for existing in seen):
            continue
        unique.append(obligation)
        seen.append(words)
    dropped = len(obligations) - len(unique)
    if dropped:
        logger.info("Dropped %s near-duplicate obligations", dropped)
    return unique
