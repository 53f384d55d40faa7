"""Tests for Mnemosyne export parsing."""

import pytest

from flashcard_ingest.errors import FormatError
from flashcard_ingest.mnemosyne import (
    clean_text,
    convert_difficulty,
    is_xml_content,
    parse_mnemosyne_content,
    parse_mnemosyne_file,
    split_question_answer,
)
from flashcard_ingest.models import Difficulty

CARD_XML = """<?xml version="1.0" encoding="UTF-8"?>
<mnemosyne core_version="1">
  <card>
    <Q>What is H2O?</Q>
    <A>Water</A>
    <category>Chemistry</category>
    <grade>4</grade>
  </card>
  <card>
    <question><![CDATA[Symbol for <b>gold</b>?]]></question>
    <answer>Au</answer>
    <hint>Latin aurum</hint>
  </card>
</mnemosyne>
"""


class TestXmlFormat:
    """Test structured XML parsing."""

    def test_card_elements(self):
        result = parse_mnemosyne_content(CARD_XML)
        assert len(result.cards) == 2

        first, second = result.cards
        assert (first.question, first.answer) == ("What is H2O?", "Water")
        assert first.tags == frozenset({"Chemistry"})
        assert first.difficulty is Difficulty.HARD
        assert first.explicit_type is None

        assert second.question == "Symbol for <b>gold</b>?"
        assert second.hint == "Latin aurum"
        assert second.difficulty is Difficulty.MEDIUM

    def test_categories(self):
        assert parse_mnemosyne_content(CARD_XML).categories == ["Chemistry"]

    def test_item_elements(self):
        content = "<cards><item><front>Hund</front><back>dog</back></item></cards>"
        result = parse_mnemosyne_content(content)
        assert (result.cards[0].question, result.cards[0].answer) == ("Hund", "dog")

    def test_single_field_item_is_split(self):
        content = "<cards><item><text>Capital of France? Paris is the answer</text></item></cards>"
        card = parse_mnemosyne_content(content).cards[0]
        assert card.question == "Capital of France"
        assert card.answer == "Paris is the answer"

    def test_bare_ampersand(self):
        content = "<mnemosyne><card><Q>Salt & pepper?</Q><A>Spices</A></card></mnemosyne>"
        assert parse_mnemosyne_content(content).cards[0].question == "Salt & pepper?"

    def test_malformed_xml_falls_back_to_regex(self):
        content = (
            "<mnemosyne><card><question>First question</question><answer>First answer</answer></card>"
            "<card><question>Broken"
        )
        result = parse_mnemosyne_content(content)
        assert [(c.question, c.answer) for c in result.cards] == [("First question", "First answer")]

    def test_cards_without_answer_skipped(self):
        content = "<mnemosyne><card><Q>Only a question</Q></card><card><Q>Q2 here</Q><A>A2</A></card></mnemosyne>"
        assert len(parse_mnemosyne_content(content).cards) == 1


class TestTextFormat:
    def test_legacy_lines(self):
        content = "# exported deck\nHund\tdog\nKatze | cat\nMaus - mouse\n\n"
        result = parse_mnemosyne_content(content)
        assert [(c.question, c.answer) for c in result.cards] == [
            ("Hund", "dog"),
            ("Katze", "cat"),
            ("Maus", "mouse"),
        ]

    def test_detects_format(self):
        assert is_xml_content("\ufeff<?xml version='1.0'?><x/>")
        assert not is_xml_content("Hund\tdog")

    def test_no_cards_is_format_error(self):
        with pytest.raises(FormatError, match="No valid flashcards"):
            parse_mnemosyne_content("just words without any separator")


class TestHelpers:
    @pytest.mark.parametrize(
        "value,expected",
        [
            ("0", Difficulty.EASY),
            ("1", Difficulty.EASY),
            ("2", Difficulty.MEDIUM),
            ("3", Difficulty.MEDIUM),
            ("4", Difficulty.HARD),
            ("5", Difficulty.HARD),
            ("", Difficulty.MEDIUM),
            (None, Difficulty.MEDIUM),
            ("hard", Difficulty.MEDIUM),
            ("inf", Difficulty.MEDIUM),
        ],
    )
    def test_convert_difficulty(self, value, expected):
        assert convert_difficulty(value) is expected

    def test_clean_text_keeps_basic_formatting(self):
        assert clean_text("<font color='red'>Hi</font>  <b>there</b> &amp; you") == "Hi <b>there</b> & you"

    def test_split_question_answer(self):
        assert split_question_answer("x = y") is None
        assert split_question_answer("Water -> H2O molecule") == ("Water", "H2O molecule")


class TestParseFile:
    def test_reads_file(self, tmp_path):
        path = tmp_path / "deck.xml"
        path.write_text(CARD_XML, encoding="utf-8")
        assert len(parse_mnemosyne_file(path).cards) == 2

    def test_wrong_extension(self, tmp_path):
        path = tmp_path / "deck.txt"
        path.write_text("Hund\tdog", encoding="utf-8")
        with pytest.raises(FormatError):
            parse_mnemosyne_file(path)

    def test_empty_file(self, tmp_path):
        path = tmp_path / "deck.mem"
        path.write_text("  \n", encoding="utf-8")
        with pytest.raises(FormatError, match="empty"):
            parse_mnemosyne_file(path)

    def test_size_limit(self, tmp_path):
        path = tmp_path / "deck.mem"
        path.write_text("Hund\tdog\n" * 10, encoding="utf-8")
        with pytest.raises(FormatError, match="less than"):
            parse_mnemosyne_file(path, max_bytes=10)
