"""Export stored cards to other flashcard tools.

Formats:
- quizlet: ``question<TAB>answer`` per line (.tsv)
- csv: every card field with a header row (.csv)
- json: a versioned backup document (.json)
- mnemosyne: ``<mnemosyne><card><Q/><A/></card>`` with CDATA text (.xml)
- supermemo: ``Q:`` / ``A:`` blocks separated by blank lines (.txt)
"""

from __future__ import annotations

import csv
import io
import json
import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence, Tuple
from xml.sax.saxutils import escape

from .models import ClozeCard, MultipleChoiceCard, StoredCard, TrueFalseCard

logger = logging.getLogger(__name__)

MAX_EXPORT_SIZE = 5000
FORMAT_VERSION = "1.0"

# name -> (extension, mime type)
EXPORT_FORMATS: Dict[str, Tuple[str, str]] = {
    "quizlet": ("tsv", "text/tab-separated-values"),
    "csv": ("csv", "text/csv"),
    "json": ("json", "application/json"),
    "mnemosyne": ("xml", "application/xml"),
    "supermemo": ("txt", "text/plain"),
}

CSV_HEADER = [
    "ID",
    "Card Type",
    "Question",
    "Answer",
    "Hint",
    "Choices",
    "Correct Choices",
    "Cloze Text",
    "Cloze Answers",
    "Question Image URL",
    "Answer Image URL",
    "Occlusion Data",
    "Difficulty Level",
    "Tags",
]

_CLOZE_SPAN_RE = re.compile(r"\{\{([^}]*)\}\}")


@dataclass
class ExportOutcome:
    success: bool
    content: Optional[str] = None
    filename: Optional[str] = None
    mime_type: Optional[str] = None
    error: Optional[str] = None


def _letter(index: int) -> str:
    return chr(ord("A") + index)


def question_text(card: StoredCard) -> str:
    """Question as shown outside the app, options and cloze gaps included."""
    c = card.card
    if isinstance(c, MultipleChoiceCard):
        text = c.question
        if c.choices:
            text += "\n\nOptions:\n"
            text += "".join(f"{_letter(i)}) {choice}\n" for i, choice in enumerate(c.choices))
        return text
    if isinstance(c, TrueFalseCard):
        return c.question + "\n\n(True or False)"
    if isinstance(c, ClozeCard) and c.cloze_text:
        return _CLOZE_SPAN_RE.sub("[...]", c.cloze_text)
    return c.question


def answer_text(card: StoredCard) -> str:
    c = card.card
    if isinstance(c, MultipleChoiceCard) and c.choices and c.correct_choices:
        correct = [f"{_letter(i)}) {c.choices[i]}" for i in c.correct_choices if 0 <= i < len(c.choices)]
        return ", ".join(correct)
    if isinstance(c, ClozeCard) and c.cloze_answers:
        return ", ".join(c.cloze_answers)
    return c.answer


def _one_line(text: str) -> str:
    return text.replace("\r", "").replace("\t", " ").replace("\n", " ")


def export_quizlet(cards: Sequence[StoredCard]) -> str:
    lines = [f"{_one_line(question_text(c))}\t{_one_line(answer_text(c))}" for c in cards]
    return "\n".join(lines).strip()


def export_csv(cards: Sequence[StoredCard]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow(CSV_HEADER)
    for record in cards:
        data = record.card.to_dict()
        writer.writerow([
            record.id,
            data["card_type"],
            data["question"],
            data["answer"],
            data["hint"] or "",
            ";".join(data.get("choices", [])),
            ";".join(str(i) for i in data.get("correct_choices", [])),
            data.get("cloze_text", ""),
            ";".join(data.get("cloze_answers", [])),
            data["question_image_url"] or "",
            data["answer_image_url"] or "",
            json.dumps(data["occlusion_regions"]) if "occlusion_regions" in data else "",
            data["difficulty"],
            ";".join(data["tags"]),
        ])
    return buf.getvalue()


def export_json(cards: Sequence[StoredCard]) -> str:
    rows: List[dict] = []
    for record in cards:
        data = record.card.to_dict()
        row = {
            "id": record.id,
            "card_type": data["card_type"],
            "question": data["question"],
            "answer": data["answer"],
            "difficulty": data["difficulty"],
            "tags": data["tags"],
        }
        if data["hint"]:
            row["hint"] = data["hint"]
        for key in ("choices", "correct_choices", "cloze_text", "cloze_answers", "occlusion_regions"):
            if key in data:
                row[key] = data[key]
        if "occlusion_regions" in data:
            row["question_image_url"] = data["question_image_url"]
            row["answer_image_url"] = data["answer_image_url"]
        rows.append(row)
    document = {
        "exported_at": datetime.now(timezone.utc).isoformat(),
        "format_version": FORMAT_VERSION,
        "total_cards": len(rows),
        "flashcards": rows,
    }
    return json.dumps(document, ensure_ascii=False, indent=2)


def _cdata(text: str) -> str:
    return "<![CDATA[" + text.replace("]]>", "]]]]><![CDATA[>") + "]]>"


def export_mnemosyne(cards: Sequence[StoredCard]) -> str:
    out = ['<?xml version="1.0" encoding="UTF-8"?>', '<mnemosyne core_version="1" database_version="1">']
    for record in cards:
        out.append("  <card>")
        out.append(f"    <id>{escape(record.id)}</id>")
        out.append(f"    <Q>{_cdata(question_text(record))}</Q>")
        out.append(f"    <A>{_cdata(answer_text(record))}</A>")
        if record.tags:
            out.append(f"    <tags>{escape(', '.join(sorted(record.tags)))}</tags>")
        out.append("    <grade>0</grade>")
        out.append("    <easiness>2.5</easiness>")
        out.append("    <acq_reps>0</acq_reps>")
        out.append("  </card>")
    out.append("</mnemosyne>")
    return "\n".join(out) + "\n"


def export_supermemo(cards: Sequence[StoredCard]) -> str:
    blocks = [f"Q: {question_text(c)}\nA: {answer_text(c)}\n" for c in cards]
    return "\n".join(blocks)


_EXPORTERS: Dict[str, Callable[[Sequence[StoredCard]], str]] = {
    "quizlet": export_quizlet,
    "csv": export_csv,
    "json": export_json,
    "mnemosyne": export_mnemosyne,
    "supermemo": export_supermemo,
}

_BASENAMES = {
    "quizlet": "quizlet-export",
    "csv": "extended-export",
    "json": "backup-export",
    "mnemosyne": "mnemosyne-export",
    "supermemo": "supermemo-export",
}


def export_filename(fmt: str, today: Optional[date] = None) -> str:
    extension, _mime = EXPORT_FORMATS[fmt]
    return f"{_BASENAMES[fmt]}-{(today or date.today()).isoformat()}.{extension}"


def export_cards(cards: Sequence[StoredCard], fmt: str, max_cards: int = MAX_EXPORT_SIZE) -> ExportOutcome:
    """Render ``cards`` in ``fmt``; problems come back as an unsuccessful outcome."""
    if not cards:
        return ExportOutcome(success=False, error="No flashcards provided for export")
    if len(cards) > max_cards:
        return ExportOutcome(success=False, error=f"Export size exceeds maximum limit of {max_cards} cards")
    if fmt not in _EXPORTERS:
        return ExportOutcome(success=False, error="Invalid export format specified")

    content = _EXPORTERS[fmt](cards)
    logger.info("Exported %d cards as %s", len(cards), fmt)
    return ExportOutcome(
        success=True,
        content=content,
        filename=export_filename(fmt),
        mime_type=EXPORT_FORMATS[fmt][1],
    )
