"""Card-type classification and per-type normalization.

Detection priority (first match wins):
1. cloze: a ``{{...}}`` span in question or answer
2. multiple_choice: two or more explicit choices, an answer starting with
   ``a)``..``d)`` or ``1)``, or an answer containing ``;``
3. true_false: answer is one of true/false/yes/no/t/f/y/n
4. image_occlusion: the question is a bare image URL
5. basic

The classifier never raises: input it cannot make sense of comes out as a
basic card with its fields passed through.
"""

from __future__ import annotations

import logging
import re
from typing import List, Optional, Sequence, Tuple
from urllib.parse import urlparse

from .models import (
    BasicCard,
    CardType,
    ClassifiedCard,
    ClozeCard,
    Difficulty,
    ImageOcclusionCard,
    MultipleChoiceCard,
    RawCardTuple,
    Region,
    TrueFalseCard,
)
from .normalize import unique_in_order

logger = logging.getLogger(__name__)

MAX_CHOICES = 6
PLACEHOLDER_CHOICES = ("Option B", "Option C", "Option D")

TRUE_FALSE_VALUES = frozenset({"true", "false", "yes", "no", "t", "f", "y", "n"})
AFFIRMATIVE_VALUES = frozenset({"true", "yes", "t", "y", "1"})

_CLOZE_SPAN_RE = re.compile(r"\{\{([^}]*)\}\}")
# Anki cloze {{c1::text}} or {{c1::text::hint}}
_ANKI_CLOZE_RE = re.compile(r"\{\{c\d+::(.*?)(?:::[^}]*)?\}\}")
_MC_ANSWER_RE = re.compile(r"^[a-d]\)|^\d+\)")
_IMAGE_EXT_RE = re.compile(r"\.(jpg|jpeg|png|gif|webp)$", re.IGNORECASE)
_IMG_SRC_RE = re.compile(r"""<img[^>]+src=["']([^"']+)["']""", re.IGNORECASE)


def is_url(text: str) -> bool:
    text = (text or "").strip()
    if not text or any(ch.isspace() for ch in text):
        return False
    parsed = urlparse(text)
    return bool(parsed.scheme and parsed.netloc)


def is_image_url(text: str) -> bool:
    return is_url(text) and bool(_IMAGE_EXT_RE.search(urlparse(text.strip()).path))


def has_cloze_span(text: str) -> bool:
    return bool(_CLOZE_SPAN_RE.search(text or ""))


def convert_anki_cloze(text: str) -> str:
    """Rewrite ``{{cN::text}}`` / ``{{cN::text::hint}}`` to ``{{text}}``."""
    return _ANKI_CLOZE_RE.sub(lambda m: "{{" + m.group(1) + "}}", text)


def cloze_spans(text: str) -> List[str]:
    """Captured texts of ``{{...}}`` spans, de-duplicated in first-seen order."""
    return unique_in_order(_CLOZE_SPAN_RE.findall(text or ""))


def find_image_src(*texts: str) -> Optional[str]:
    for text in texts:
        m = _IMG_SRC_RE.search(text or "")
        if m:
            return m.group(1)
    return None


def classify(raw: RawCardTuple) -> CardType:
    """Return the card type for a raw tuple.

    An explicit type set by the parser or extractor wins; otherwise the
    detection rules run in priority order.
    """
    explicit = CardType.from_name(raw.explicit_type)
    if explicit is not None:
        return explicit

    question = raw.question or ""
    answer = raw.answer or ""

    if has_cloze_span(question) or has_cloze_span(answer):
        return CardType.CLOZE

    if raw.choices and len(raw.choices) >= 2:
        return CardType.MULTIPLE_CHOICE
    if _MC_ANSWER_RE.search(answer) or ";" in answer:
        return CardType.MULTIPLE_CHOICE

    if answer.strip().lower() in TRUE_FALSE_VALUES:
        return CardType.TRUE_FALSE

    if is_image_url(question):
        return CardType.IMAGE_OCCLUSION

    return CardType.BASIC


def _common_fields(raw: RawCardTuple, import_source: str) -> dict:
    return {
        "question": raw.question,
        "answer": raw.answer,
        "hint": raw.hint,
        "tags": frozenset(raw.tags),
        "difficulty": raw.difficulty or Difficulty.MEDIUM,
        "import_source": import_source,
        "question_image_url": raw.question_image_url,
        "answer_image_url": raw.answer_image_url,
        "audio_url": raw.audio_url,
        "source_data": raw.source_data,
    }


def _derive_choices(answer: str) -> List[str]:
    if ";" in answer:
        return [c.strip() for c in answer.split(";")]
    if "\n" in answer:
        return [c.strip() for c in answer.split("\n") if c.strip()]
    return [answer, *PLACEHOLDER_CHOICES]


def _correct_indices(indices: Optional[Sequence[int]], n_choices: int) -> Tuple[int, ...]:
    kept = tuple(unique_in_order(i for i in (indices or ()) if 0 <= i < n_choices))
    return kept or (0,)


def _multiple_choice(raw: RawCardTuple, common: dict) -> MultipleChoiceCard:
    choices = list(raw.choices) if raw.choices else _derive_choices(raw.answer)
    choices = choices[:MAX_CHOICES]
    correct = _correct_indices(raw.correct_choices, len(choices))
    common["answer"] = ", ".join(choices[i] for i in correct)
    return MultipleChoiceCard(choices=tuple(choices), correct_choices=correct, **common)


def _true_false(raw: RawCardTuple, common: dict) -> TrueFalseCard:
    is_true = raw.answer.strip().lower() in AFFIRMATIVE_VALUES
    common["answer"] = "True" if is_true else "False"
    return TrueFalseCard(choices=("True", "False"), correct_choices=(0 if is_true else 1,), **common)


def _cloze(raw: RawCardTuple, common: dict) -> ClozeCard:
    question = convert_anki_cloze(raw.question)
    answer = convert_anki_cloze(raw.answer)
    if has_cloze_span(question):
        cloze_text = question
    elif has_cloze_span(answer):
        cloze_text = answer
    elif answer and answer in question:
        cloze_text = question.replace(answer, "{{" + answer + "}}")
    else:
        cloze_text = (question + " {{" + answer + "}}").strip()

    answers = cloze_spans(cloze_text)
    common["question"] = _CLOZE_SPAN_RE.sub("[...]", cloze_text)
    common["answer"] = ", ".join(answers)
    return ClozeCard(cloze_text=cloze_text, cloze_answers=tuple(answers), **common)


def _image_occlusion(raw: RawCardTuple, common: dict) -> ImageOcclusionCard:
    question = raw.question.strip()
    if is_url(question):
        common["question_image_url"] = question
    elif not common["question_image_url"]:
        common["question_image_url"] = find_image_src(raw.question, raw.answer)
    region = Region(answer=raw.answer)
    return ImageOcclusionCard(occlusion_regions=(region,), **common)


def normalize(raw: RawCardTuple, card_type: CardType, import_source: str = "manual") -> ClassifiedCard:
    """Build the ClassifiedCard variant for ``card_type`` from a raw tuple."""
    common = _common_fields(raw, import_source)
    try:
        if card_type is CardType.MULTIPLE_CHOICE:
            return _multiple_choice(raw, common)
        if card_type is CardType.TRUE_FALSE:
            return _true_false(raw, common)
        if card_type is CardType.CLOZE:
            return _cloze(raw, common)
        if card_type is CardType.IMAGE_OCCLUSION:
            return _image_occlusion(raw, common)
    except (AttributeError, TypeError, ValueError, IndexError) as e:
        logger.warning("Could not normalize %s card %r, keeping it basic: %s", card_type.value, raw.question, e)
        common = _common_fields(raw, import_source)
    return BasicCard(**common)


def classify_card(raw: RawCardTuple, import_source: str = "manual") -> ClassifiedCard:
    """Classify and normalize in one step."""
    return normalize(raw, classify(raw), import_source)
