"""Text and card similarity scoring.

Both sides are normalized with ``normalize_for_match`` first. Short texts
(longest side up to ``long_text_threshold`` characters) are compared by
Levenshtein distance; longer texts by Jaccard overlap of their word sets.
"""

from __future__ import annotations

from typing import Tuple

from rapidfuzz.distance import Levenshtein

from .models import SimilarityResult
from .normalize import normalize_for_match

LONG_TEXT_THRESHOLD = 255
DEFAULT_WEIGHTS: Tuple[float, float] = (0.7, 0.3)


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def word_similarity(text1: str, text2: str) -> float:
    """Jaccard similarity of the whitespace-split word sets."""
    words1 = set(text1.split())
    words2 = set(text2.split())
    union = words1 | words2
    if not union:
        return 0.0
    return len(words1 & words2) / len(union)


def text_similarity(text1: str, text2: str, long_text_threshold: int = LONG_TEXT_THRESHOLD) -> float:
    """Similarity of two texts in [0, 1].

    Identical normalized text scores 1.0 (two empty texts included);
    otherwise an empty side scores 0.0.
    """
    t1 = normalize_for_match(text1)
    t2 = normalize_for_match(text2)
    if t1 == t2:
        return 1.0
    if not t1 or not t2:
        return 0.0

    longest = max(len(t1), len(t2))
    if longest > long_text_threshold:
        return _clamp(word_similarity(t1, t2))
    return _clamp(1.0 - Levenshtein.distance(t1, t2) / longest)


def card_similarity(
    q1: str,
    a1: str,
    q2: str,
    a2: str,
    weights: Tuple[float, float] = DEFAULT_WEIGHTS,
    long_text_threshold: int = LONG_TEXT_THRESHOLD,
) -> SimilarityResult:
    """Weighted question/answer similarity of two cards."""
    question_weight, answer_weight = weights
    q_sim = text_similarity(q1, q2, long_text_threshold)
    a_sim = text_similarity(a1, a2, long_text_threshold)
    return SimilarityResult(
        question_similarity=q_sim,
        answer_similarity=a_sim,
        combined_score=_clamp(question_weight * q_sim + answer_weight * a_sim),
    )
