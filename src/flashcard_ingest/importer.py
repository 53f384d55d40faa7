"""Import orchestration: parse, classify, detect duplicates, merge, persist.

Every public method returns an outcome object. Format errors become an
unsuccessful outcome with a single message; row errors are collected as
``"Row N: ..."`` strings while the rest of the batch carries on.

Advanced imports run as a small state machine:

    detecting -> resolving_duplicates -> persisting -> done

Detection is optional. When duplicates are found and the caller gave no
merge strategy, the import stops in ``resolving_duplicates`` and hands the
duplicate list back instead of guessing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from . import anki, mnemosyne, text_parser
from .classifier import classify_card
from .config import DEFAULT_CONFIG, ImportConfig
from .detect_duplicates import (
    DetectionResult,
    DetectionStatistics,
    DuplicateDetector,
    MergeResult,
    MergeStrategy,
)
from .errors import FlashcardIngestError, FormatError
from .models import AnyCard, ClassifiedCard, ImportBatchResult, RawCardTuple
from .store import CardStore, InMemoryMediaStore, MediaStore, StoredMedia, StoreError
from .validation import validate_card

logger = logging.getLogger(__name__)

TEXT_EXTENSIONS = ("csv", "tsv", "txt")
ANKI_EXTENSIONS = ("apkg",)
MNEMOSYNE_EXTENSIONS = mnemosyne.EXTENSIONS
SUPPORTED_EXTENSIONS = TEXT_EXTENSIONS + ANKI_EXTENSIONS + MNEMOSYNE_EXTENSIONS


class ImportPhase(str, Enum):
    DETECTING = "detecting"
    RESOLVING_DUPLICATES = "resolving_duplicates"
    PERSISTING = "persisting"
    DONE = "done"


@dataclass
class ParseOutcome:
    """Cards from one parse call, plus whatever the format adds."""
    success: bool
    cards: List[RawCardTuple] = field(default_factory=list)
    error: Optional[str] = None
    errors: List[str] = field(default_factory=list)
    import_source: str = "manual"
    delimiter: Optional[str] = None
    note_types: Dict[str, anki.NoteType] = field(default_factory=dict)
    media_files: Dict[str, StoredMedia] = field(default_factory=dict)
    deck_info: Dict[str, anki.DeckInfo] = field(default_factory=dict)
    categories: List[str] = field(default_factory=list)

    @classmethod
    def failure(cls, error: str) -> "ParseOutcome":
        return cls(success=False, error=error)


@dataclass
class AdvancedImportResult:
    phase: ImportPhase
    success: bool = False
    error: Optional[str] = None
    batch: Optional[ImportBatchResult] = None
    detection: Optional[DetectionResult] = None
    merge: Optional[MergeResult] = None

    @property
    def needs_duplicate_resolution(self) -> bool:
        return self.phase is ImportPhase.RESOLVING_DUPLICATES and self.error is None


def bound_errors(errors: Sequence[str], limit: int) -> List[str]:
    """First ``limit`` errors, with a trailing count of the ones left out."""
    if len(errors) <= limit:
        return list(errors)
    return list(errors[:limit]) + [f"... and {len(errors) - limit} more errors"]


def file_extension(path: str | Path) -> str:
    return Path(path).suffix.lower().lstrip(".")


class FlashcardImporter:
    """Entry points of the import pipeline for one card store."""

    def __init__(
        self,
        store: CardStore,
        media_store: Optional[MediaStore] = None,
        config: ImportConfig = DEFAULT_CONFIG,
    ) -> None:
        self.store = store
        self.media_store = media_store if media_store is not None else InMemoryMediaStore()
        self.config = config
        self.detector = DuplicateDetector(store, config)

    # -- parsing -----------------------------------------------------------

    def parse_text(self, content: str) -> ParseOutcome:
        try:
            parsed = text_parser.parse_text(content, max_cards=self.config.max_import_size)
        except FormatError as e:
            return ParseOutcome.failure(str(e))
        return ParseOutcome(
            success=True,
            cards=parsed.cards,
            errors=bound_errors(parsed.errors, self.config.max_reported_errors),
            delimiter=parsed.delimiter_name,
        )

    def parse_anki_package(self, path: str | Path, scope_id: str) -> ParseOutcome:
        try:
            parsed = anki.parse_anki_package(
                path, scope_id, media_store=self.media_store, max_bytes=self.config.max_anki_bytes
            )
        except FormatError as e:
            return ParseOutcome.failure(str(e))
        return ParseOutcome(
            success=True,
            cards=parsed.cards,
            errors=bound_errors(parsed.warnings, self.config.max_reported_errors),
            import_source=anki.IMPORT_SOURCE,
            note_types=parsed.note_types,
            media_files=parsed.media_files,
            deck_info=parsed.deck_info,
        )

    def parse_mnemosyne_file(self, path: str | Path) -> ParseOutcome:
        try:
            parsed = mnemosyne.parse_mnemosyne_file(path, max_bytes=self.config.max_mnemosyne_bytes)
        except FormatError as e:
            return ParseOutcome.failure(str(e))
        return ParseOutcome(
            success=True,
            cards=parsed.cards,
            import_source=mnemosyne.IMPORT_SOURCE,
            categories=parsed.categories,
        )

    def parse_file(self, path: str | Path, scope_id: str = "default") -> ParseOutcome:
        """Parse an import file, choosing the parser by extension."""
        path = Path(path)
        if not path.is_file():
            return ParseOutcome.failure(f"File not found: {path}")
        ext = file_extension(path)
        if ext in ANKI_EXTENSIONS:
            return self.parse_anki_package(path, scope_id)
        if ext in MNEMOSYNE_EXTENSIONS:
            return self.parse_mnemosyne_file(path)
        if ext not in TEXT_EXTENSIONS:
            return ParseOutcome.failure(
                f"Unsupported file type '.{ext}'. Supported: {', '.join(SUPPORTED_EXTENSIONS)}"
            )
        try:
            content = text_parser.read_text_file(path)
        except FormatError as e:
            return ParseOutcome.failure(str(e))
        return self.parse_text(content)

    # -- persistence -------------------------------------------------------

    def _classified(self, card: AnyCard, source: str) -> ClassifiedCard:
        if isinstance(card, RawCardTuple):
            return classify_card(card, source)
        return replace(card, import_source=source)

    def import_cards(
        self,
        cards: Sequence[AnyCard],
        scope_id: str,
        actor_id: Optional[str] = None,
        source: str = "manual",
    ) -> ImportBatchResult:
        """Classify, validate and save each card; a failing row never stops the batch."""
        result = ImportBatchResult(total=len(cards))
        errors: List[str] = []
        for index, card in enumerate(cards):
            row = index + 1
            try:
                classified = self._classified(card, source)
                card_errors = validate_card(classified)
                if card_errors:
                    raise ValueError(", ".join(card_errors))
                self.store.create(scope_id, classified, actor_id)
            except (StoreError, ValueError, TypeError) as e:
                result.failed += 1
                errors.append(f"Row {row}: {e}")
                logger.error("Flashcard import error in row %d: %s", row, e)
                continue
            result.imported += 1
        result.errors = bound_errors(errors, self.config.max_reported_errors)
        logger.info(
            "Imported %d of %d cards into scope %s (%d failed)",
            result.imported, result.total, scope_id, result.failed,
        )
        return result

    # -- duplicates --------------------------------------------------------

    def _classified_batch(self, cards: Sequence[AnyCard], source: str) -> List[AnyCard]:
        """Classified copies of ``cards``, compared against stored classified cards.

        A card that fails to classify is kept as is and fails later as a row error.
        """
        batch: List[AnyCard] = []
        for card in cards:
            try:
                batch.append(self._classified(card, source))
            except (ValueError, TypeError):
                batch.append(card)
        return batch

    def detect_duplicates(
        self, cards: Sequence[AnyCard], scope_id: str, source: str = "manual"
    ) -> DetectionResult:
        return self.detector.detect_for_scope(self._classified_batch(cards, source), scope_id)

    def detection_statistics(self, scope_id: str) -> DetectionStatistics:
        return self.detector.statistics(scope_id)

    def apply_merge_strategy(
        self,
        duplicates,
        strategy: MergeStrategy,
        scope_id: str,
        actor_id: Optional[str] = None,
        source: str = "manual",
    ) -> MergeResult:
        result = self.detector.apply_merge_strategy(duplicates, strategy, scope_id, actor_id, source)
        result.errors = bound_errors(result.errors, self.config.max_reported_errors)
        return result

    def import_cards_advanced(
        self,
        cards: Sequence[AnyCard],
        scope_id: str,
        actor_id: Optional[str] = None,
        source: str = "manual",
        detect_duplicates: bool = False,
        merge_strategy: Optional[MergeStrategy] = None,
    ) -> AdvancedImportResult:
        """Run detection, duplicate resolution and persistence for one batch."""
        phase = ImportPhase.DETECTING
        detection: Optional[DetectionResult] = None
        merge: Optional[MergeResult] = None
        try:
            if detect_duplicates:
                detection = self.detect_duplicates(cards, scope_id, source)
                if detection.duplicates:
                    phase = ImportPhase.RESOLVING_DUPLICATES
                    if merge_strategy is None:
                        logger.info(
                            "Import paused: %d duplicates need a merge strategy", detection.duplicate_count
                        )
                        return AdvancedImportResult(phase=phase, detection=detection)
                    merge = self.apply_merge_strategy(
                        detection.duplicates, merge_strategy, scope_id, actor_id, source
                    )
                    cards = detection.unique

            phase = ImportPhase.PERSISTING
            batch = self.import_cards(cards, scope_id, actor_id, source)
        except (FlashcardIngestError, StoreError, ValueError) as e:
            logger.error("Advanced import failed during %s: %s", phase.value, e)
            return AdvancedImportResult(
                phase=phase,
                error=f"Import failed during {phase.value}: {e}",
                detection=detection,
                merge=merge,
            )

        return AdvancedImportResult(
            phase=ImportPhase.DONE,
            success=batch.success or batch.total == 0,
            batch=batch,
            detection=detection,
            merge=merge,
        )
