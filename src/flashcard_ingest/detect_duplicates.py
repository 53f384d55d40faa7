"""Duplicate detection for incoming cards against a scope and within the batch.

Match order per incoming card (first hit wins):
- exact_existing: normalized question and answer equal an existing card's
- exact_in_batch: equal to a card accepted as unique earlier in the batch
- similar_existing: best existing card with combined score >= threshold
- similar_in_batch: best in-batch unique card with combined score >= threshold

Cards whose trimmed question is shorter than ``min_question_length`` skip
detection and count as unique. Only the ``max_comparison_limit`` most recent
active cards of the scope are compared; older duplicates go unnoticed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Sequence, Tuple, Union

from .classifier import classify_card
from .config import DEFAULT_CONFIG, ImportConfig
from .errors import RowError
from .models import (
    AnyCard,
    ClassifiedCard,
    DuplicateMatch,
    MatchKind,
    MergeAction,
    RawCardTuple,
    SimilarityResult,
    StoredCard,
    SuggestedAction,
)
from .normalize import normalize_for_match
from .similarity import card_similarity
from .store import CardStore, StoreError
from .validation import validate_card

logger = logging.getLogger(__name__)

Candidate = Union[AnyCard, StoredCard]


@dataclass
class DetectionResult:
    duplicates: List[DuplicateMatch] = field(default_factory=list)
    unique: List[AnyCard] = field(default_factory=list)
    existing_checked: int = 0
    total: int = 0

    @property
    def duplicate_count(self) -> int:
        return len(self.duplicates)

    @property
    def unique_count(self) -> int:
        return len(self.unique)


@dataclass
class DetectionStatistics:
    existing_cards: int
    comparison_limit: int
    similarity_threshold: float
    will_check_against: int


@dataclass
class MergeStrategy:
    """A global action for every duplicate, or per-index actions.

    Indexes without an action default to ``skip``.
    """
    global_action: Optional[str] = None
    actions: Dict[int, str] = field(default_factory=dict)

    def action_for(self, index: int) -> str:
        if self.global_action:
            return self.global_action
        return self.actions.get(index, MergeAction.SKIP.value)


@dataclass
class MergeResult:
    skipped: int = 0
    updated: int = 0
    kept_both: int = 0
    replaced: int = 0
    errors: List[str] = field(default_factory=list)
    total_processed: int = 0

    @property
    def success(self) -> bool:
        return not self.errors

    def counts(self) -> Dict[str, int]:
        return {
            "skipped": self.skipped,
            "updated": self.updated,
            "kept_both": self.kept_both,
            "replaced": self.replaced,
        }


def as_classified(card: Union[AnyCard, StoredCard], import_source: str = "manual") -> ClassifiedCard:
    if isinstance(card, StoredCard):
        return card.card
    if isinstance(card, RawCardTuple):
        return classify_card(card, import_source)
    return card


def _qa(card: Candidate) -> Tuple[str, str]:
    return (card.question or "", card.answer or "")


class DuplicateDetector:
    def __init__(self, store: Optional[CardStore] = None, config: ImportConfig = DEFAULT_CONFIG) -> None:
        self.store = store
        self.config = config

    # -- scoring -----------------------------------------------------------

    def similarity(self, q1: str, a1: str, q2: str, a2: str) -> SimilarityResult:
        return card_similarity(
            q1,
            a1,
            q2,
            a2,
            weights=(self.config.question_weight, self.config.answer_weight),
            long_text_threshold=self.config.long_text_threshold,
        )

    def suggest_action(self, score: float, match_kind: MatchKind) -> SuggestedAction:
        if score >= 0.95:
            return SuggestedAction.SKIP
        if score >= 0.9:
            return SuggestedAction.REVIEW
        if match_kind.against_existing:
            return SuggestedAction.UPDATE
        return SuggestedAction.KEEP_BOTH

    # -- matching ----------------------------------------------------------

    @staticmethod
    def _find_exact(key: Tuple[str, str], pool: Sequence[Candidate]) -> Optional[Candidate]:
        for candidate in pool:
            q, a = _qa(candidate)
            if (normalize_for_match(q), normalize_for_match(a)) == key:
                return candidate
        return None

    def _find_similar(self, question: str, answer: str, pool: Sequence[Candidate]) -> Optional[Tuple[Candidate, float]]:
        best: Optional[Tuple[Candidate, float]] = None
        for candidate in pool:
            q, a = _qa(candidate)
            score = self.similarity(question, answer, q, a).combined_score
            if score >= self.config.similarity_threshold and (best is None or score > best[1]):
                best = (candidate, score)
        return best

    def find_duplicate(
        self,
        card: AnyCard,
        existing: Sequence[StoredCard],
        unique: Sequence[AnyCard],
    ) -> Optional[Tuple[Candidate, MatchKind, float]]:
        question, answer = _qa(card)
        question = question.strip()
        answer = answer.strip()
        if len(question) < self.config.min_question_length:
            return None

        key = (normalize_for_match(question), normalize_for_match(answer))
        hit = self._find_exact(key, existing)
        if hit is not None:
            return hit, MatchKind.EXACT_EXISTING, 1.0
        hit = self._find_exact(key, unique)
        if hit is not None:
            return hit, MatchKind.EXACT_IN_BATCH, 1.0

        similar = self._find_similar(question, answer, existing)
        if similar is not None:
            return similar[0], MatchKind.SIMILAR_EXISTING, similar[1]
        similar = self._find_similar(question, answer, unique)
        if similar is not None:
            return similar[0], MatchKind.SIMILAR_IN_BATCH, similar[1]
        return None

    def detect(self, incoming: Sequence[AnyCard], existing: Sequence[StoredCard]) -> DetectionResult:
        """Split ``incoming`` into duplicates and unique cards, in input order.

        ``existing`` is expected newest first; anything past the comparison
        limit is ignored.
        """
        existing = list(existing)[: self.config.max_comparison_limit]
        result = DetectionResult(existing_checked=len(existing), total=len(incoming))
        for index, card in enumerate(incoming):
            found = self.find_duplicate(card, existing, result.unique)
            if found is None:
                result.unique.append(card)
                continue
            candidate, kind, score = found
            result.duplicates.append(
                DuplicateMatch(
                    source_index=index,
                    incoming=card,
                    candidate=candidate,
                    match_kind=kind,
                    score=score,
                    suggested_action=self.suggest_action(score, kind),
                )
            )
        logger.info(
            "Duplicate detection: %d incoming, %d duplicates, %d unique, %d existing checked",
            result.total, result.duplicate_count, result.unique_count, result.existing_checked,
        )
        return result

    def _require_store(self) -> CardStore:
        if self.store is None:
            raise ValueError("DuplicateDetector needs a card store for this operation")
        return self.store

    def existing_cards(self, scope_id: str) -> List[StoredCard]:
        return self._require_store().recent_active(scope_id, self.config.max_comparison_limit)

    def detect_for_scope(self, incoming: Sequence[AnyCard], scope_id: str) -> DetectionResult:
        """Detect against a snapshot of the scope taken once, up front."""
        return self.detect(incoming, self.existing_cards(scope_id))

    def statistics(self, scope_id: str) -> DetectionStatistics:
        existing = self._require_store().count_active(scope_id)
        return DetectionStatistics(
            existing_cards=existing,
            comparison_limit=self.config.max_comparison_limit,
            similarity_threshold=self.config.similarity_threshold,
            will_check_against=min(existing, self.config.max_comparison_limit),
        )

    # -- merge -------------------------------------------------------------

    def _existing_record(self, match: DuplicateMatch) -> StoredCard:
        candidate = match.candidate
        record = self._require_store().get(candidate.id) if isinstance(candidate, StoredCard) else None
        if record is None:
            raise RowError(match.source_index + 1, "Existing card not found")
        return record

    def _update(self, match: DuplicateMatch, import_source: str) -> str:
        if not match.against_existing:
            return "skipped"
        record = self._existing_record(match)
        incoming = as_classified(match.incoming, import_source)
        merged = replace(
            incoming,
            hint=incoming.hint or record.card.hint,
            tags=frozenset(record.tags) | frozenset(incoming.tags),
        )
        self._require_store().update(record.id, merged)
        return "updated"

    def _replace(self, match: DuplicateMatch, scope_id: str, import_source: str) -> str:
        if not match.against_existing:
            return "skipped"
        record = self._existing_record(match)
        incoming = as_classified(match.incoming, import_source)
        self._require_store().update(record.id, incoming, scope_id=scope_id, is_active=True)
        return "replaced"

    def _keep_both(self, match: DuplicateMatch, scope_id: str, actor_id: Optional[str], import_source: str) -> str:
        incoming = as_classified(match.incoming, import_source)
        errors = validate_card(incoming)
        if errors:
            raise RowError(match.source_index + 1, ", ".join(errors))
        self._require_store().create(scope_id, incoming, actor_id)
        return "kept_both"

    def apply_action(
        self,
        match: DuplicateMatch,
        action: str,
        scope_id: str,
        actor_id: Optional[str] = None,
        import_source: str = "manual",
    ) -> str:
        """Execute one action and return the counter it increments.

        Raises:
            RowError: If the action is unknown or cannot be carried out.
        """
        row = match.source_index + 1
        merge_action = MergeAction.from_name(action)
        if merge_action is None:
            raise RowError(row, f"Unknown action: {action}")
        try:
            if merge_action is MergeAction.SKIP:
                return "skipped"
            if merge_action is MergeAction.UPDATE:
                return self._update(match, import_source)
            if merge_action is MergeAction.REPLACE:
                return self._replace(match, scope_id, import_source)
            return self._keep_both(match, scope_id, actor_id, import_source)
        except StoreError as e:
            raise RowError(row, f"Failed to apply action '{merge_action.value}': {e}")

    def apply_merge_strategy(
        self,
        duplicates: Sequence[DuplicateMatch],
        strategy: MergeStrategy,
        scope_id: str,
        actor_id: Optional[str] = None,
        import_source: str = "manual",
    ) -> MergeResult:
        """Apply ``strategy`` to every duplicate; each row succeeds or fails alone."""
        result = MergeResult(total_processed=len(duplicates))
        for match in duplicates:
            action = strategy.action_for(match.source_index)
            try:
                counter = self.apply_action(match, action, scope_id, actor_id, import_source)
            except RowError as e:
                logger.error("Merge failed for row %d: %s", e.row, e.message)
                result.errors.append(str(e))
                continue
            setattr(result, counter, getattr(result, counter) + 1)
        logger.info("Merge strategy applied: %s, %d errors", result.counts(), len(result.errors))
        return result
