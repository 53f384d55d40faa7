"""Mnemosyne export ingest (.mem / .xml).

Two shapes are accepted:
- XML: ``<mnemosyne><card>...</card></mnemosyne>`` or
  ``<cards><item>...</item></cards>``, with flexible child names
  (question|q|front|Q, answer|a|back|A). Malformed XML falls back to regex
  extraction of question/answer fragments.
- Legacy text: one card per line, question and answer split on the first
  matching delimiter of tab, `` | ``, `` - ``, ``;``, ``|``.

Mnemosyne grades (0-5) map to difficulty: 0-1 easy, 2-3 medium, 4-5 hard.
"""

from __future__ import annotations

import html as html_lib
import logging
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple

from .errors import FormatError
from .models import Difficulty, RawCardTuple
from .normalize import collapse_whitespace, unique_in_order

logger = logging.getLogger(__name__)

IMPORT_SOURCE = "mnemosyne"
EXTENSIONS = ("mem", "xml")
MAX_FILE_BYTES = 10 * 1024 * 1024

QUESTION_NAMES = ("question", "q", "front", "Q")
ANSWER_NAMES = ("answer", "a", "back", "A")
ITEM_QUESTION_NAMES = ("text", "question", "front")
ITEM_ANSWER_NAMES = ("answer", "back", "solution")
CATEGORY_NAMES = ("category", "cat", "tag", "deck")
TAGS_NAMES = ("tags",)
DIFFICULTY_NAMES = ("difficulty", "level", "grade")
HINT_NAMES = ("hint", "note", "comment")

LEGACY_DELIMITERS = ("\t", " | ", " - ", ";", "|")

_BOM = "\ufeff"
_BARE_AMP_RE = re.compile(r"&(?!#\d+;|#x[0-9a-fA-F]+;|\w+;)")
_BR_RE = re.compile(r"<br\s*/?>", re.IGNORECASE)
_DISALLOWED_TAG_RE = re.compile(r"</?(?!(?:b|i|u|br)\b)[a-zA-Z][^>]*>")

_REGEX_FALLBACKS = (
    re.compile(
        r"<(?:card|item|flashcard)[^>]*>.*?<(?:question|q|front)>(.*?)</(?:question|q|front)>"
        r".*?<(?:answer|a|back)>(.*?)</(?:answer|a|back)>.*?</(?:card|item|flashcard)>",
        re.IGNORECASE | re.DOTALL,
    ),
    re.compile(r"<Q>(.*?)</Q>\s*<A>(.*?)</A>", re.IGNORECASE | re.DOTALL),
    re.compile(r"<question>(.*?)</question>\s*<answer>(.*?)</answer>", re.IGNORECASE | re.DOTALL),
)

_SPLIT_PATTERNS = (
    re.compile(r"(.+?)\s*[?:]\s*(.+)"),
    re.compile(r"(.+?)\s*->\s*(.+)"),
    re.compile(r"(.+?)\s*=\s*(.+)"),
    re.compile(r"(.{1,200}?)\s+(.{10,})"),
)


@dataclass
class MnemosyneParseResult:
    cards: List[RawCardTuple] = field(default_factory=list)
    categories: List[str] = field(default_factory=list)


def clean_text(text: str) -> str:
    """Drop tags other than b/i/u/br, decode entities, collapse whitespace."""
    text = _DISALLOWED_TAG_RE.sub("", text or "")
    text = html_lib.unescape(text)
    return collapse_whitespace(text)


def convert_difficulty(value: Optional[str]) -> Difficulty:
    value = (value or "").strip()
    try:
        level = int(float(value))
    except (ValueError, OverflowError):
        return Difficulty.MEDIUM
    if level <= 1:
        return Difficulty.EASY
    if level >= 4:
        return Difficulty.HARD
    return Difficulty.MEDIUM


def is_xml_content(content: str) -> bool:
    stripped = content.lstrip(_BOM).strip()
    return stripped.startswith("<?xml") or "<mnemosyne" in stripped or "<cards" in stripped


def _prepare_xml(content: str) -> str:
    content = content.lstrip(_BOM)
    content = _BARE_AMP_RE.sub("&amp;", content)
    content = _BR_RE.sub("\n", content)
    return content.strip()


def _xml_value(elem: ET.Element, names: Sequence[str]) -> str:
    """Text of the first child (or attribute) matching one of ``names``."""
    for name in names:
        child = elem.find(name)
        if child is not None:
            return "".join(child.itertext())
        if name in elem.attrib:
            return elem.attrib[name]
    return ""


def _make_card(
    question: str,
    answer: str,
    hint: Optional[str] = None,
    tags: Iterable[str] = (),
    difficulty: Difficulty = Difficulty.MEDIUM,
    source_data: Optional[dict] = None,
) -> Optional[RawCardTuple]:
    question = clean_text(question)
    answer = clean_text(answer)
    if not question or not answer:
        return None
    return RawCardTuple(
        question=question,
        answer=answer,
        hint=clean_text(hint) or None if hint else None,
        tags=frozenset(t for t in tags if t),
        difficulty=difficulty,
        source_data=source_data or {},
    )


def split_question_answer(text: str) -> Optional[Tuple[str, str]]:
    """Split a single combined field into question and answer."""
    for pattern in _SPLIT_PATTERNS:
        m = pattern.match(text)
        if m:
            question, answer = m.group(1).strip(), m.group(2).strip()
            if len(question) > 3 and len(answer) > 3:
                return question, answer
    return None


def parse_xml_card(elem: ET.Element) -> Optional[RawCardTuple]:
    question = _xml_value(elem, QUESTION_NAMES)
    answer = _xml_value(elem, ANSWER_NAMES)
    category = clean_text(_xml_value(elem, CATEGORY_NAMES))
    # <tags> holds a comma-separated list, as written by the exporter
    tags = [clean_text(t) for t in _xml_value(elem, TAGS_NAMES).split(",")]
    if category:
        tags.insert(0, category)
    raw_difficulty = _xml_value(elem, DIFFICULTY_NAMES).strip()
    return _make_card(
        question,
        answer,
        hint=_xml_value(elem, HINT_NAMES),
        tags=tags,
        difficulty=convert_difficulty(raw_difficulty),
        source_data={"category": category, "original_difficulty": raw_difficulty},
    )


def parse_xml_item(elem: ET.Element) -> Optional[RawCardTuple]:
    question = _xml_value(elem, ITEM_QUESTION_NAMES)
    answer = _xml_value(elem, ITEM_ANSWER_NAMES)
    if not answer.strip() and question.strip():
        parts = split_question_answer(clean_text(question))
        if parts:
            question, answer = parts
    return _make_card(question, answer)


def parse_xml_format(content: str) -> List[RawCardTuple]:
    """Structured parse, falling back to regex extraction on malformed XML."""
    prepared = _prepare_xml(content)
    try:
        root = ET.fromstring(prepared)
    except ET.ParseError as e:
        logger.warning("XML parsing failed, trying regex extraction: %s", e)
        return parse_xml_with_regex(prepared)

    if root.find("card") is not None:
        parsed = [parse_xml_card(e) for e in root.findall("card")]
    elif root.find("item") is not None:
        parsed = [parse_xml_item(e) for e in root.findall("item")]
    else:
        elems = [e for e in root.iter() if e.tag in ("card", "item", "flashcard")]
        parsed = [parse_xml_card(e) for e in elems]
    return [c for c in parsed if c is not None]


def parse_xml_with_regex(content: str) -> List[RawCardTuple]:
    for pattern in _REGEX_FALLBACKS:
        cards = [c for c in (_make_card(q, a) for q, a in pattern.findall(content)) if c]
        if cards:
            return cards
    return []


def parse_text_line(line: str) -> Optional[RawCardTuple]:
    for delimiter in LEGACY_DELIMITERS:
        if delimiter in line:
            question, answer = line.split(delimiter, 1)
            card = _make_card(question, answer)
            if card is not None:
                return card
    return None


def parse_text_format(content: str) -> List[RawCardTuple]:
    cards: List[RawCardTuple] = []
    for line in content.lstrip(_BOM).splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        card = parse_text_line(line)
        if card is not None:
            cards.append(card)
    return cards


def extract_categories(cards: Iterable[RawCardTuple]) -> List[str]:
    found: List[str] = []
    for card in cards:
        found.extend(sorted(card.tags))
        category = card.source_data.get("category")
        if category:
            found.append(category)
    return unique_in_order(c for c in found if c)


def parse_mnemosyne_content(content: str) -> MnemosyneParseResult:
    """Parse Mnemosyne export text (XML or legacy lines).

    Raises:
        FormatError: If no card can be extracted.
    """
    if is_xml_content(content):
        cards = parse_xml_format(content)
    else:
        cards = parse_text_format(content)
    if not cards:
        raise FormatError("No valid flashcards found in the file")
    logger.info("Parsed %d Mnemosyne cards", len(cards))
    return MnemosyneParseResult(cards=cards, categories=extract_categories(cards))


def parse_mnemosyne_file(path: str | Path, max_bytes: int = MAX_FILE_BYTES) -> MnemosyneParseResult:
    """Read and parse a .mem/.xml Mnemosyne export.

    Raises:
        FormatError: On a wrong extension, oversized or empty file, or no cards.
    """
    path = Path(path)
    if path.suffix.lower().lstrip(".") not in EXTENSIONS:
        raise FormatError("File must be a Mnemosyne export (.mem or .xml) file")
    try:
        if path.stat().st_size > max_bytes:
            raise FormatError(f"File size must be less than {max_bytes // (1024 * 1024)}MB")
        content = path.read_bytes().decode("utf-8", errors="replace")
    except OSError as e:
        raise FormatError(f"Failed to read Mnemosyne file: {e}")
    if not content.strip():
        raise FormatError("File is empty or could not be read")
    return parse_mnemosyne_content(content)
