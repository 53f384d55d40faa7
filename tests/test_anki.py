"""Tests for Anki package extraction.

Packages are built on the fly: a minimal ``collection.anki2`` database with
the ``col``, ``notes`` and ``cards`` tables, zipped with a media map.
"""

import json
import sqlite3
import tempfile
import zipfile
from contextlib import closing
from pathlib import Path

import pytest

from flashcard_ingest import anki
from flashcard_ingest.classifier import classify_card
from flashcard_ingest.errors import FormatError
from flashcard_ingest.models import CardType, ClozeCard, MultipleChoiceCard
from flashcard_ingest.store import InMemoryMediaStore

MODELS = {
    "1": {
        "name": "Basic",
        "type": 0,
        "flds": [{"name": "Front"}, {"name": "Back"}],
        "tmpls": [{"name": "Card 1", "qfmt": "{{Front}}", "afmt": "{{FrontSide}}<hr id=answer>{{Back}}"}],
        "css": ".card {}",
    },
    "2": {
        "name": "Cloze",
        "type": 1,
        "flds": [{"name": "Text"}, {"name": "Back Extra"}],
        "tmpls": [{"name": "Cloze", "qfmt": "{{cloze:Text}}", "afmt": "{{cloze:Text}}<br>{{Back Extra}}"}],
    },
    "3": {
        "name": "Quiz",
        "type": 0,
        "flds": [{"name": "Question"}, {"name": "Choice 1"}, {"name": "Choice 2"}, {"name": "Answer"}],
        "tmpls": [{"name": "Card 1", "qfmt": "{{Question}}", "afmt": "{{Answer}}"}],
    },
}
DECKS = {"1": {"name": "French", "desc": "Greetings", "conf": 1}}


def build_apkg(path, notes, media=None, models=MODELS):
    """Write an .apkg holding ``notes`` [(model_id, fields, tags)] and ``media`` {name: bytes|None}."""
    with tempfile.TemporaryDirectory() as tmpdir:
        db = Path(tmpdir) / "collection.anki2"
        with closing(sqlite3.connect(str(db))) as conn:
            conn.execute("CREATE TABLE col (id INTEGER PRIMARY KEY, models TEXT, decks TEXT)")
            conn.execute("CREATE TABLE notes (id INTEGER PRIMARY KEY, mid INTEGER, flds TEXT, tags TEXT)")
            conn.execute("CREATE TABLE cards (id INTEGER PRIMARY KEY, nid INTEGER, ord INTEGER)")
            conn.execute("INSERT INTO col VALUES (1, ?, ?)", (json.dumps(models), json.dumps(DECKS)))
            for note_id, (model_id, fields, tags) in enumerate(notes, start=1):
                conn.execute(
                    "INSERT INTO notes VALUES (?, ?, ?, ?)",
                    (note_id, int(model_id), "\x1f".join(fields), tags),
                )
                conn.execute("INSERT INTO cards VALUES (?, ?, 0)", (1000 + note_id, note_id))
            conn.commit()

        media_map = {}
        with zipfile.ZipFile(path, "w") as zf:
            zf.write(db, "collection.anki2")
            for index, (name, content) in enumerate((media or {}).items()):
                media_map[str(index)] = name
                if content is not None:
                    zf.writestr(str(index), content)
            zf.writestr("media", json.dumps(media_map))
    return path


@pytest.fixture
def media_store():
    return InMemoryMediaStore()


class TestBasicNotes:
    """Test rendering of standard note types."""

    def test_question_and_answer(self, tmp_path, media_store):
        path = build_apkg(tmp_path / "deck.apkg", [("1", ["Bonjour", "Hello"], " french greetings ")])
        result = anki.parse_anki_package(path, "s1", media_store)

        assert len(result.cards) == 1
        card = result.cards[0]
        assert card.question == "Bonjour"
        assert card.answer == "Hello"
        assert card.tags == frozenset({"french", "greetings"})
        assert card.explicit_type == "basic"
        assert "Bonjour" in card.source_data["original_answer"]
        assert card.source_data["fields"] == {"Front": "Bonjour", "Back": "Hello"}

    def test_note_types_and_decks(self, tmp_path, media_store):
        path = build_apkg(tmp_path / "deck.apkg", [("1", ["Bonjour", "Hello"], "")])
        result = anki.parse_anki_package(path, "s1", media_store)

        assert result.note_types["1"].fields == ["Front", "Back"]
        assert result.note_types["2"].is_cloze
        assert result.deck_info["1"].name == "French"
        assert result.deck_info["1"].description == "Greetings"

    def test_empty_answer_dropped(self, tmp_path, media_store):
        path = build_apkg(
            tmp_path / "deck.apkg",
            [("1", ["Bonjour", ""], ""), ("1", ["Merci", "Thanks"], "")],
        )
        result = anki.parse_anki_package(path, "s1", media_store)
        assert [c.question for c in result.cards] == ["Merci"]

    def test_html_stripped(self, tmp_path, media_store):
        path = build_apkg(tmp_path / "deck.apkg", [("1", ["<b>Bonjour</b>&nbsp;!", "<div>Hello</div>"], "")])
        card = anki.parse_anki_package(path, "s1", media_store).cards[0]
        assert card.question == "Bonjour !"
        assert card.answer == "Hello"


class TestCardTypeInference:
    def test_cloze_note_type(self, tmp_path, media_store):
        path = build_apkg(tmp_path / "deck.apkg", [("2", ["{{c1::Paris}} is the capital of France", ""], "")])
        raw = anki.parse_anki_package(path, "s1", media_store).cards[0]
        assert raw.explicit_type == "cloze"

        card = classify_card(raw, anki.IMPORT_SOURCE)
        assert isinstance(card, ClozeCard)
        assert card.cloze_answers == ("Paris",)
        assert card.import_source == "anki"

    def test_choice_fields(self, tmp_path, media_store):
        path = build_apkg(tmp_path / "deck.apkg", [("3", ["Capital of France?", "Paris", "London", "Paris"], "")])
        raw = anki.parse_anki_package(path, "s1", media_store).cards[0]
        assert raw.explicit_type == "multiple_choice"
        assert raw.choices == ("Paris", "London")

        card = classify_card(raw)
        assert isinstance(card, MultipleChoiceCard)
        assert card.answer == "Paris"

    def test_image_occlusion_by_name(self):
        note_type = anki.NoteType(id="9", name="Image Occlusion Enhanced", kind=0, fields=["Image"], templates=[])
        template = anki.NoteTemplate(name="t", qfmt="{{Image}}", afmt="")
        assert anki.infer_card_type(note_type, template, {"Image": ""}) is CardType.IMAGE_OCCLUSION


class TestMedia:
    """Test media extraction and linking."""

    def test_image_and_sound_linked(self, tmp_path, media_store):
        path = build_apkg(
            tmp_path / "deck.apkg",
            [("1", ["Label", 'Cell <img src="cell.png"> [sound:hello.mp3]'], "")],
            media={"cell.png": b"PNG", "hello.mp3": b"MP3"},
        )
        result = anki.parse_anki_package(path, "s1", media_store)

        assert set(result.media_files) == {"cell.png", "hello.mp3"}
        assert media_store.blobs[("s1", "cell.png")] == b"PNG"
        card = result.cards[0]
        assert card.answer == "Cell"
        assert card.question_image_url == "memory://s1/cell.png"
        assert card.audio_url == "memory://s1/hello.mp3"

    def test_missing_media_file_is_warning(self, tmp_path, media_store):
        path = build_apkg(
            tmp_path / "deck.apkg",
            [("1", ["Bonjour", "Hello"], "")],
            media={"gone.png": None},
        )
        result = anki.parse_anki_package(path, "s1", media_store)
        assert len(result.cards) == 1
        assert result.media_files == {}
        assert result.warnings == ["gone.png: media file not found in package"]


class TestFormatErrors:
    def test_wrong_extension(self, tmp_path):
        path = tmp_path / "deck.zip"
        path.write_bytes(b"")
        with pytest.raises(FormatError, match=r"\.apkg"):
            anki.parse_anki_package(path, "s1")

    def test_not_a_zip(self, tmp_path):
        path = tmp_path / "deck.apkg"
        path.write_bytes(b"not a zip")
        with pytest.raises(FormatError, match="Failed to open"):
            anki.parse_anki_package(path, "s1")

    def test_missing_collection(self, tmp_path):
        path = tmp_path / "deck.apkg"
        with zipfile.ZipFile(path, "w") as zf:
            zf.writestr("media", "{}")
        with pytest.raises(FormatError, match="collection.anki2 not found"):
            anki.parse_anki_package(path, "s1")

    def test_corrupt_database(self, tmp_path):
        path = tmp_path / "deck.apkg"
        with zipfile.ZipFile(path, "w") as zf:
            zf.writestr("collection.anki2", b"garbage" * 100)
        with pytest.raises(FormatError, match="Failed to parse Anki database"):
            anki.parse_anki_package(path, "s1")

    def test_too_large(self, tmp_path):
        path = build_apkg(tmp_path / "deck.apkg", [("1", ["Bonjour", "Hello"], "")])
        with pytest.raises(FormatError, match="too large"):
            anki.parse_anki_package(path, "s1", max_bytes=10)


class TestScratchDirectory:
    """The scratch directory is removed on success and on failure."""

    @pytest.fixture
    def created(self, monkeypatch):
        names = []
        real = tempfile.TemporaryDirectory

        def tracking(*args, **kwargs):
            tmp = real(*args, **kwargs)
            names.append(tmp.name)
            return tmp

        monkeypatch.setattr(anki.tempfile, "TemporaryDirectory", tracking)
        return names

    def test_removed_after_success(self, tmp_path, created):
        path = build_apkg(tmp_path / "deck.apkg", [("1", ["Bonjour", "Hello"], "")])
        anki.parse_anki_package(path, "s1")
        assert created and not Path(created[-1]).exists()

    def test_removed_after_failure(self, tmp_path, created):
        path = tmp_path / "deck.apkg"
        with zipfile.ZipFile(path, "w") as zf:
            zf.writestr("media", "{}")
        with pytest.raises(FormatError):
            anki.parse_anki_package(path, "s1")
        assert created and not Path(created[-1]).exists()
