"""Tests for the import orchestrator."""

import hashlib

import pytest

from flashcard_ingest.config import ImportConfig
from flashcard_ingest.detect_duplicates import MergeStrategy
from flashcard_ingest.importer import FlashcardImporter, ImportPhase, bound_errors
from flashcard_ingest.models import BasicCard, CardType, RawCardTuple
from flashcard_ingest.store import InMemoryCardStore, StoreError


def batch(n):
    """``n`` raw cards that are neither exact nor similar duplicates of each other."""
    cards = []
    for i in range(n):
        digest = hashlib.sha1(str(i).encode()).hexdigest()
        cards.append(RawCardTuple(question=digest, answer=digest[::-1]))
    return cards


class FailingStore(InMemoryCardStore):
    """Refuses to save cards whose question contains 'boom'."""

    def create(self, scope_id, card, actor_id=None):
        if "boom" in card.question:
            raise StoreError("disk full")
        return super().create(scope_id, card, actor_id)


@pytest.fixture
def store():
    return InMemoryCardStore()


@pytest.fixture
def importer(store):
    return FlashcardImporter(store)


class TestParsing:
    """Parse entry points never raise on bad input."""

    def test_parse_text(self, importer):
        outcome = importer.parse_text("Capital of France\tParis\n2+2\tFour")
        assert outcome.success
        assert outcome.delimiter == "tab"
        assert len(outcome.cards) == 2

    def test_parse_text_failure(self, importer):
        outcome = importer.parse_text("")
        assert not outcome.success
        assert outcome.error == "No content provided"
        assert outcome.cards == []

    def test_parse_text_size_limit(self, store):
        importer = FlashcardImporter(store, config=ImportConfig(max_import_size=1))
        outcome = importer.parse_text("Q one\tA\nQ two\tB")
        assert not outcome.success
        assert "maximum allowed is 1" in outcome.error

    def test_parse_file_text(self, importer, tmp_path):
        path = tmp_path / "cards.csv"
        path.write_text("Capital of France,Paris\n", encoding="utf-8")
        outcome = importer.parse_file(path)
        assert outcome.success
        assert outcome.delimiter == "comma"

    def test_parse_file_dispatches_mnemosyne(self, importer, tmp_path):
        path = tmp_path / "deck.mem"
        path.write_text("Hund\tdog\n", encoding="utf-8")
        outcome = importer.parse_file(path)
        assert outcome.success
        assert outcome.import_source == "mnemosyne"

    def test_parse_file_dispatches_anki(self, importer, tmp_path):
        path = tmp_path / "deck.apkg"
        path.write_bytes(b"not a zip")
        outcome = importer.parse_file(path, "s1")
        assert not outcome.success
        assert outcome.error.startswith("Failed to open Anki package file")

    def test_parse_file_unsupported(self, importer, tmp_path):
        path = tmp_path / "deck.pdf"
        path.write_bytes(b"%PDF")
        outcome = importer.parse_file(path)
        assert not outcome.success
        assert "Unsupported file type" in outcome.error

    def test_parse_file_missing(self, importer, tmp_path):
        assert not importer.parse_file(tmp_path / "nope.txt").success

    def test_parse_anki_package_missing(self, importer, tmp_path):
        outcome = importer.parse_anki_package(tmp_path / "nope.apkg", "s1")
        assert not outcome.success
        assert outcome.error.startswith("Failed to open Anki package file")

    def test_parse_mnemosyne_file_missing(self, importer, tmp_path):
        outcome = importer.parse_mnemosyne_file(tmp_path / "nope.mem")
        assert not outcome.success
        assert outcome.error.startswith("Failed to read Mnemosyne file")


class TestImportCards:
    """Test per-row persistence."""

    def test_imports_and_classifies(self, importer, store):
        result = importer.import_cards(
            [RawCardTuple("Is water wet?", "yes"), RawCardTuple("Capital of France", "Paris")],
            "s1",
            actor_id="u1",
            source="manual",
        )
        assert (result.imported, result.failed, result.total) == (2, 0, 2)
        assert result.success
        types = [r.card.card_type for r in store.all_active("s1")]
        assert types == [CardType.TRUE_FALSE, CardType.BASIC]

    def test_row_errors_do_not_abort(self, importer, store):
        cards = [
            RawCardTuple("Good question", "Good answer"),
            BasicCard(question="", answer="orphan answer"),
            RawCardTuple("Tagged", "Card", tags=frozenset({"x" * 51})),
            RawCardTuple("Another good one", "Yes indeed"),
        ]
        result = importer.import_cards(cards, "s1")
        assert result.imported == 2
        assert result.failed == 2
        assert result.errors[0] == "Row 2: Question is required"
        assert result.errors[1].startswith("Row 3: Tag")
        assert len(store) == 2

    def test_store_failure_is_row_error(self):
        importer = FlashcardImporter(FailingStore())
        result = importer.import_cards(
            [RawCardTuple("Fine question", "A"), RawCardTuple("boom question", "B")], "s1"
        )
        assert result.imported == 1
        assert result.errors == ["Row 2: disk full"]

    def test_errors_are_bounded(self, store):
        importer = FlashcardImporter(store, config=ImportConfig(max_reported_errors=2))
        result = importer.import_cards([BasicCard(question="", answer="a")] * 5, "s1")
        assert result.failed == 5
        assert len(result.errors) == 3
        assert result.errors[-1] == "... and 3 more errors"

    def test_source_overrides_classified_card(self, importer, store):
        importer.import_cards([BasicCard(question="Question", answer="Answer")], "s1", source="quizlet")
        assert store.all_active("s1")[0].card.import_source == "quizlet"

    def test_nothing_imported_is_unsuccessful(self, importer):
        assert not importer.import_cards([], "s1").success


class TestBoundErrors:
    def test_under_limit_unchanged(self):
        assert bound_errors(["a", "b"], 2) == ["a", "b"]

    def test_over_limit(self):
        assert bound_errors(["a", "b", "c"], 1) == ["a", "... and 2 more errors"]


class TestRepeatedBatches:
    """Importing the same batch twice."""

    def test_without_detection_doubles(self, importer, store):
        cards = batch(500)
        importer.import_cards(cards, "s1")
        importer.import_cards(cards, "s1")
        assert store.count_active("s1") == 1000

    def test_with_detection_and_skip(self, importer, store):
        cards = batch(500)
        strategy = MergeStrategy(global_action="skip")
        first = importer.import_cards_advanced(cards, "s1", detect_duplicates=True, merge_strategy=strategy)
        second = importer.import_cards_advanced(cards, "s1", detect_duplicates=True, merge_strategy=strategy)

        assert first.batch.imported == 500
        assert second.merge.skipped == 500
        assert second.batch.total == 0
        assert second.phase is ImportPhase.DONE
        assert second.success
        assert store.count_active("s1") == 500

    def test_with_detection_and_skip_mixed_types(self, importer, store):
        """Classified answers and cloze questions still match on re-import."""
        content = (
            "Is the sky blue?\tyes\n"
            "Primary colours?\tred;green;blue\n"
            "The capital of France is {{Paris}}\tParis\n"
            "Capital of Germany\tBerlin\n"
        )
        cards = importer.parse_text(content).cards
        strategy = MergeStrategy(global_action="skip")
        first = importer.import_cards_advanced(cards, "s1", detect_duplicates=True, merge_strategy=strategy)
        second = importer.import_cards_advanced(cards, "s1", detect_duplicates=True, merge_strategy=strategy)

        types = {r.card.card_type for r in store.all_active("s1")}
        assert types == {CardType.TRUE_FALSE, CardType.MULTIPLE_CHOICE, CardType.CLOZE, CardType.BASIC}
        assert first.batch.imported == 4
        assert [m.match_kind.value for m in second.detection.duplicates] == ["exact_existing"] * 4
        assert second.merge.skipped == 4
        assert store.count_active("s1") == 4


class TestAdvancedImport:
    """Test the detection / resolution / persistence state machine."""

    def test_without_detection(self, importer, store):
        result = importer.import_cards_advanced([RawCardTuple("Capital of France", "Paris")], "s1")
        assert result.phase is ImportPhase.DONE
        assert result.detection is None
        assert result.batch.imported == 1

    def test_pauses_for_resolution(self, importer, store):
        importer.import_cards([RawCardTuple("Capital of France", "Paris")], "s1")
        cards = [RawCardTuple("Capital of France", "Paris"), RawCardTuple("Capital of Spain", "Madrid")]
        result = importer.import_cards_advanced(cards, "s1", detect_duplicates=True)

        assert result.phase is ImportPhase.RESOLVING_DUPLICATES
        assert result.needs_duplicate_resolution
        assert not result.success
        assert result.batch is None
        assert result.detection.duplicate_count == 1
        assert [c.question for c in result.detection.unique] == ["Capital of Spain"]
        assert result.detection.duplicates[0].incoming.card_type is CardType.BASIC
        assert store.count_active("s1") == 1

    def test_no_duplicates_goes_straight_to_persisting(self, importer, store):
        result = importer.import_cards_advanced(
            [RawCardTuple("Capital of France", "Paris")], "s1", detect_duplicates=True
        )
        assert result.phase is ImportPhase.DONE
        assert result.merge is None
        assert result.batch.imported == 1

    def test_strategy_then_unique_cards_persisted(self, importer, store):
        importer.import_cards([RawCardTuple("Capital of France", "Paris")], "s1")
        cards = [
            RawCardTuple("Capital of France", "Paris", tags=frozenset({"geo"})),
            RawCardTuple("Capital of Spain", "Madrid"),
            RawCardTuple("Capital of Spain", "Madrid"),
        ]
        result = importer.import_cards_advanced(
            cards, "s1", detect_duplicates=True, merge_strategy=MergeStrategy(global_action="update")
        )

        assert result.phase is ImportPhase.DONE
        assert result.merge.updated == 1
        assert result.merge.skipped == 1
        assert result.batch.imported == 1
        questions = sorted(r.question for r in store.all_active("s1"))
        assert questions == ["Capital of France", "Capital of Spain"]
        france = [r for r in store.all_active("s1") if r.question == "Capital of France"][0]
        assert france.tags == frozenset({"geo"})

    def test_statistics(self, importer):
        importer.import_cards(batch(3), "s1")
        assert importer.detection_statistics("s1").will_check_against == 3
