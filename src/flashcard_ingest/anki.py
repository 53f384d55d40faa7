"""Anki package (.apkg) extraction.

An .apkg is a zip archive holding a ``collection.anki2`` SQLite database, a
``media`` JSON map (``{"0": "picture.png", ...}``) and the media files named
by their map index. The legacy ``col`` table carries note types (``models``)
and decks as JSON; ``notes.flds`` joins field values with 0x1F.

Each Anki card becomes one RawCardTuple: the note's fields are rendered
through the card template, HTML is stripped for the plain question/answer,
and the raw rendered HTML is kept in ``source_data``.
"""

from __future__ import annotations

import json
import logging
import re
import sqlite3
import tempfile
import zipfile
from contextlib import closing
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from .classifier import find_image_src
from .errors import ExtractionError, FormatError
from .models import CardType, Difficulty, RawCardTuple
from .normalize import clean_field_text
from .store import MediaStore, StoredMedia, StoreError
from .templates import render_template

logger = logging.getLogger(__name__)

COLLECTION_NAME = "collection.anki2"
MEDIA_MAP_NAME = "media"
FIELD_SEPARATOR = "\x1f"
MAX_PACKAGE_BYTES = 100 * 1024 * 1024
IMPORT_SOURCE = "anki"

_ANKI_CLOZE_RE = re.compile(r"\{\{c\d+::[^}]+\}\}")
_SOUND_RE = re.compile(r"\[sound:([^\]]+)\]")

_CARDS_QUERY = """
    SELECT n.id AS note_id, n.mid AS model_id, n.flds AS fields, n.tags AS tags,
           c.id AS card_id, c.ord AS template_ord
    FROM notes n
    JOIN cards c ON n.id = c.nid
    ORDER BY n.id, c.ord
"""


@dataclass
class NoteTemplate:
    name: str
    qfmt: str
    afmt: str


@dataclass
class NoteType:
    id: str
    name: str
    kind: int  # 0 = standard, 1 = cloze
    fields: List[str]
    templates: List[NoteTemplate]
    css: str = ""

    @property
    def is_cloze(self) -> bool:
        return self.kind == 1


@dataclass
class DeckInfo:
    id: str
    name: str
    description: str = ""
    config: int = 1


@dataclass
class AnkiParseResult:
    cards: List[RawCardTuple] = field(default_factory=list)
    note_types: Dict[str, NoteType] = field(default_factory=dict)
    media_files: Dict[str, StoredMedia] = field(default_factory=dict)
    deck_info: Dict[str, DeckInfo] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)


def _load_col_json(conn: sqlite3.Connection, column: str) -> dict:
    row = conn.execute(f"SELECT {column} FROM col LIMIT 1").fetchone()
    if not row or not row[0]:
        return {}
    try:
        return json.loads(row[0])
    except json.JSONDecodeError as e:
        raise FormatError(f"Invalid Anki package: {column} metadata is not valid JSON ({e})")


def read_note_types(conn: sqlite3.Connection) -> Dict[str, NoteType]:
    note_types: Dict[str, NoteType] = {}
    for model_id, model in _load_col_json(conn, "models").items():
        note_types[str(model_id)] = NoteType(
            id=str(model_id),
            name=model.get("name", ""),
            kind=int(model.get("type", 0)),
            fields=[f.get("name", "") for f in model.get("flds", [])],
            templates=[
                NoteTemplate(name=t.get("name", ""), qfmt=t.get("qfmt", ""), afmt=t.get("afmt", ""))
                for t in model.get("tmpls", [])
            ],
            css=model.get("css", ""),
        )
    return note_types


def read_decks(conn: sqlite3.Connection) -> Dict[str, DeckInfo]:
    decks: Dict[str, DeckInfo] = {}
    for deck_id, deck in _load_col_json(conn, "decks").items():
        decks[str(deck_id)] = DeckInfo(
            id=str(deck_id),
            name=deck.get("name", ""),
            description=deck.get("desc", ""),
            config=deck.get("conf", 1),
        )
    return decks


def _is_choice_field(name: str) -> bool:
    lowered = name.lower()
    return "choice" in lowered or "option" in lowered


def infer_card_type(note_type: NoteType, template: NoteTemplate, field_map: Mapping[str, str]) -> CardType:
    """Card type from the note type, its field names, and cloze markup."""
    if note_type.is_cloze:
        return CardType.CLOZE
    if "image occlusion" in note_type.name.lower():
        return CardType.IMAGE_OCCLUSION
    if any(_is_choice_field(name) for name in field_map):
        return CardType.MULTIPLE_CHOICE
    content = " ".join([template.qfmt, template.afmt, *field_map.values()])
    if _ANKI_CLOZE_RE.search(content):
        return CardType.CLOZE
    return CardType.BASIC


def _match_media(src: str, media_files: Mapping[str, StoredMedia]) -> Optional[StoredMedia]:
    for filename, media in media_files.items():
        if filename and filename in src:
            return media
    return None


def build_card(
    note_type: NoteType,
    template: NoteTemplate,
    field_values: List[str],
    tags: List[str],
    media_files: Mapping[str, StoredMedia],
) -> Optional[RawCardTuple]:
    """Render one Anki card; None when its question or answer is empty."""
    field_map = {
        name: (field_values[i] if i < len(field_values) else "")
        for i, name in enumerate(note_type.fields)
    }
    card_type = infer_card_type(note_type, template, field_map)

    question_html = render_template(template.qfmt, field_map)
    answer_html = render_template(template.afmt, field_map, front_side=question_html)
    question = clean_field_text(question_html)
    answer = clean_field_text(render_template(template.afmt, field_map))
    if not question or not answer:
        return None

    choices = None
    if card_type is CardType.CLOZE:
        source = next((v for v in field_map.values() if _ANKI_CLOZE_RE.search(v)), None)
        if source:
            question = clean_field_text(source)
    elif card_type is CardType.MULTIPLE_CHOICE:
        values = [clean_field_text(v) for k, v in field_map.items() if _is_choice_field(k)]
        choices = tuple(v for v in values if v) or None

    question_image_url = None
    src = find_image_src(*field_map.values()) if card_type is CardType.IMAGE_OCCLUSION else None
    src = src or find_image_src(question_html, answer_html)
    if src:
        media = _match_media(src, media_files)
        if media:
            question_image_url = media.url

    audio_url = None
    sound = _SOUND_RE.search(question_html + " " + answer_html)
    if sound and sound.group(1) in media_files:
        audio_url = media_files[sound.group(1)].url

    return RawCardTuple(
        question=question,
        answer=answer,
        tags=frozenset(t for t in tags if t),
        explicit_type=card_type.value,
        choices=choices,
        difficulty=Difficulty.MEDIUM,
        question_image_url=question_image_url,
        audio_url=audio_url,
        source_data={
            "note_type": note_type.name,
            "template": template.name,
            "original_question": question_html,
            "original_answer": answer_html,
            "fields": field_map,
        },
    )


def read_cards(
    conn: sqlite3.Connection,
    note_types: Mapping[str, NoteType],
    media_files: Mapping[str, StoredMedia],
    warnings: List[str],
) -> List[RawCardTuple]:
    cards: List[RawCardTuple] = []
    for note_id, model_id, fields, tags, card_id, ord_ in conn.execute(_CARDS_QUERY):
        note_type = note_types.get(str(model_id))
        if note_type is None or not note_type.templates:
            logger.debug("Skipping card %s: unknown note type %s", card_id, model_id)
            continue
        ord_ = int(ord_ or 0)
        # Cloze note types have one template shared by every cloze ordinal.
        template = note_type.templates[ord_] if ord_ < len(note_type.templates) else note_type.templates[0]
        try:
            card = build_card(
                note_type,
                template,
                (fields or "").split(FIELD_SEPARATOR),
                (tags or "").strip().split(" "),
                media_files,
            )
        except (KeyError, IndexError, TypeError, ValueError) as e:
            err = ExtractionError(f"note {note_id}", f"failed to process card ({e})")
            logger.warning("%s", err)
            warnings.append(str(err))
            continue
        if card is not None:
            cards.append(card)
    return cards


def extract_media_files(
    root: Path,
    media_map: Mapping[str, str],
    scope_id: str,
    media_store: MediaStore,
    warnings: List[str],
) -> Dict[str, StoredMedia]:
    """Hand every media file of the package to the media store.

    Files that are missing or cannot be stored are skipped with a warning.
    """
    stored: Dict[str, StoredMedia] = {}
    for index, filename in media_map.items():
        path = root / Path(str(index)).name
        try:
            if not path.is_file():
                raise ExtractionError(filename, "media file not found in package")
            try:
                stored[filename] = media_store.store(path.read_bytes(), filename, scope_id)
            except (OSError, StoreError) as e:
                raise ExtractionError(filename, f"failed to store media ({e})")
        except ExtractionError as e:
            logger.warning("%s", e)
            warnings.append(str(e))
    return stored


def parse_extracted_package(root: Path, scope_id: str, media_store: Optional[MediaStore] = None) -> AnkiParseResult:
    """Parse an already unpacked .apkg directory.

    Raises:
        FormatError: If the collection database is missing or unreadable.
    """
    db_path = root / COLLECTION_NAME
    if not db_path.is_file():
        raise FormatError(f"Invalid Anki package: {COLLECTION_NAME} not found")

    result = AnkiParseResult()
    media_map_path = root / MEDIA_MAP_NAME
    if media_map_path.is_file() and media_store is not None:
        try:
            media_map = json.loads(media_map_path.read_text(encoding="utf-8") or "{}")
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            media_map = {}
            result.warnings.append(f"media: unreadable media map ({e})")
            logger.warning("Unreadable media map in Anki package: %s", e)
        result.media_files = extract_media_files(root, media_map, scope_id, media_store, result.warnings)

    try:
        with closing(sqlite3.connect(str(db_path))) as conn:
            result.note_types = read_note_types(conn)
            result.deck_info = read_decks(conn)
            result.cards = read_cards(conn, result.note_types, result.media_files, result.warnings)
    except sqlite3.DatabaseError as e:
        raise FormatError(f"Failed to parse Anki database: {e}")

    logger.info(
        "Extracted %d cards, %d note types, %d media files from Anki package",
        len(result.cards), len(result.note_types), len(result.media_files),
    )
    return result


def parse_anki_package(
    path: str | Path,
    scope_id: str,
    media_store: Optional[MediaStore] = None,
    max_bytes: int = MAX_PACKAGE_BYTES,
) -> AnkiParseResult:
    """Unpack an .apkg into a scratch directory and parse it.

    The scratch directory is removed whether parsing succeeds or fails.

    Raises:
        FormatError: If the file is not an .apkg, too large, not a zip
            archive, or does not contain a readable collection.
    """
    path = Path(path)
    if path.suffix.lower() != ".apkg":
        raise FormatError("File must be an Anki package (.apkg) file")
    try:
        size = path.stat().st_size
    except OSError as e:
        raise FormatError(f"Failed to open Anki package file: {e}")
    if size > max_bytes:
        raise FormatError(f"Anki package too large (max {max_bytes // (1024 * 1024)}MB)")

    with tempfile.TemporaryDirectory(prefix="anki-import-") as scratch:
        try:
            with zipfile.ZipFile(path) as archive:
                archive.extractall(scratch)
        except (zipfile.BadZipFile, OSError) as e:
            raise FormatError(f"Failed to open Anki package file: {e}")
        return parse_extracted_package(Path(scratch), scope_id, media_store)
