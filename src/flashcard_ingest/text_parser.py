"""Delimited text ingest (pasted text, Quizlet exports, CSV/TSV files).

Format: one card per line, ``question<delim>answer[<delim>hint]``. The
delimiter is detected from the first few lines. An extended CSV form is
accepted when the first column names a card type:

    type,question,answer,choice;choice;...,correct;...,hint,tag;tag;...
"""

from __future__ import annotations

import csv
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from .errors import FormatError, RowError
from .models import CardType, RawCardTuple
from .normalize import unique_in_order

logger = logging.getLogger(__name__)

# Detection order doubles as the tie-break order.
DELIMITERS: Tuple[Tuple[str, str], ...] = (
    ("tab", "\t"),
    ("comma", ","),
    ("dash", " - "),
    ("pipe", "|"),
    ("semicolon", ";"),
)

SAMPLE_SIZE = 5
MAX_IMPORT_SIZE = 500

_HASHTAG_RE = re.compile(r"#(\w+)")


@dataclass
class TextParseResult:
    delimiter: str
    cards: List[RawCardTuple] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    total_lines: int = 0

    @property
    def delimiter_name(self) -> str:
        for name, delim in DELIMITERS:
            if delim == self.delimiter:
                return name
        return "unknown"


def split_line(line: str, delimiter: str) -> List[str]:
    """Split one line; commas get quote-aware CSV splitting."""
    if delimiter == ",":
        return next(csv.reader([line]), [])
    return line.split(delimiter)


def score_delimiter(lines: Sequence[str], delimiter: str) -> Optional[float]:
    """Average split score over ``lines``; None when no line splits at all.

    Two fields score 3 (question/answer), three score 2 (with hint), more
    score 1. Lines that do not split contribute nothing.
    """
    if not lines:
        return None
    score = 0
    valid = 0
    for line in lines:
        n = len(split_line(line, delimiter))
        if n < 2:
            continue
        valid += 1
        if n == 2:
            score += 3
        elif n == 3:
            score += 2
        else:
            score += 1
    if valid == 0:
        return None
    return score / len(lines)


def detect_delimiter(lines: Sequence[str]) -> Optional[str]:
    """Pick the delimiter with the best average score over the first lines."""
    sample = [ln for ln in lines if ln.strip()][:SAMPLE_SIZE]
    best: Optional[str] = None
    best_score = 0.0
    for _name, delim in DELIMITERS:
        s = score_delimiter(sample, delim)
        if s is not None and (best is None or s > best_score):
            best = delim
            best_score = s
    return best


def _parse_index(value: str) -> int:
    value = value.strip()
    if value.lstrip("-").isdigit():
        return int(value)
    return 0


def _split_list(value: str) -> List[str]:
    return [part.strip() for part in value.split(";")]


def parse_line(line: str, delimiter: str, line_number: int) -> RawCardTuple:
    """Parse one content line into a RawCardTuple.

    Raises:
        RowError: If the line lacks a question or an answer.
    """
    parts = split_line(line, delimiter)
    if len(parts) < 2:
        raise RowError(line_number, "Must contain at least question and answer separated by delimiter")

    explicit_type: Optional[str] = None
    choices: Optional[Tuple[str, ...]] = None
    correct: Optional[Tuple[int, ...]] = None
    tags = unique_in_order(_HASHTAG_RE.findall(line))

    first = CardType.from_name(parts[0]) if len(parts) >= 5 else None
    if first is not None:
        explicit_type = first.value
        question = parts[1].strip()
        answer = parts[2].strip()
        if parts[3].strip():
            choices = tuple(_split_list(parts[3].strip()))
        if parts[4].strip():
            correct = tuple(_parse_index(v) for v in parts[4].strip().split(";"))
        hint = parts[5].strip() if len(parts) > 5 else None
        if len(parts) > 6 and parts[6].strip():
            tags = [t for t in _split_list(parts[6].strip()) if t]
    else:
        question = parts[0].strip()
        answer = parts[1].strip()
        hint = parts[2].strip() if len(parts) > 2 else None

    if not question:
        raise RowError(line_number, "Question cannot be empty")
    if not answer:
        raise RowError(line_number, "Answer cannot be empty")

    return RawCardTuple(
        question=question,
        answer=answer,
        hint=hint or None,
        tags=frozenset(tags),
        explicit_type=explicit_type,
        choices=choices,
        correct_choices=correct,
    )


def parse_text(content: str, max_cards: int = MAX_IMPORT_SIZE) -> TextParseResult:
    """Parse delimited text into raw cards.

    Rows that fail are reported in ``errors`` as ``"Row N: ..."`` with the
    1-based physical line number, and skipped.

    Raises:
        FormatError: If there is no content, no delimiter can be detected,
            no card parses, or more than ``max_cards`` cards parse.
    """
    if not content or not content.strip():
        raise FormatError("No content provided")

    content = content.replace("\r\n", "\n").replace("\r", "\n")
    numbered = [(i + 1, ln) for i, ln in enumerate(content.split("\n")) if ln.strip()]
    if not numbered:
        raise FormatError("No content lines found")

    delimiter = detect_delimiter([ln for _, ln in numbered])
    if delimiter is None:
        raise FormatError(
            "Could not detect delimiter. Supported formats: tab-separated, "
            'comma-separated, " - " separated, pipe- or semicolon-separated'
        )

    result = TextParseResult(delimiter=delimiter, total_lines=len(numbered))
    for line_number, line in numbered:
        try:
            result.cards.append(parse_line(line, delimiter, line_number))
        except RowError as e:
            result.errors.append(str(e))

    if not result.cards:
        detail = f" Errors: {'; '.join(result.errors)}" if result.errors else ""
        raise FormatError(f"No valid flashcards could be parsed.{detail}")
    if len(result.cards) > max_cards:
        raise FormatError(
            f"Import contains {len(result.cards)} cards, but maximum allowed is {max_cards}"
        )

    logger.info(
        "Parsed %d cards from %d lines (delimiter=%s, %d errors)",
        len(result.cards), result.total_lines, result.delimiter_name, len(result.errors),
    )
    return result


def read_text_file(path: str | Path) -> str:
    """Read a text import file as UTF-8 (a leading BOM is dropped).

    Raises:
        FormatError: If the file cannot be read as non-empty UTF-8 text.
    """
    path = Path(path)
    try:
        content = path.read_text(encoding="utf-8-sig")
    except UnicodeDecodeError as e:
        raise FormatError(f"File {path.name} is not valid UTF-8 text: {e}")
    except OSError as e:
        raise FormatError(f"Failed to read {path.name}: {e}")
    if not content.strip():
        raise FormatError("File is empty or could not be read")
    return content
