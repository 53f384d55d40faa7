"""Row validation applied before a card is persisted."""

from __future__ import annotations

from typing import List

from .models import (
    ClassifiedCard,
    ClozeCard,
    Difficulty,
    ImageOcclusionCard,
    MultipleChoiceCard,
    TrueFalseCard,
)

MAX_TEXT_LENGTH = 65535
MAX_TAG_LENGTH = 50

_DIFFICULTY_VALUES = frozenset(d.value for d in Difficulty)


def _check_text(errors: List[str], label: str, value: str | None, required: bool) -> None:
    text = (value or "").strip()
    if required and not text:
        errors.append(f"{label} is required")
    elif len(value or "") > MAX_TEXT_LENGTH:
        errors.append(f"{label} may not be longer than {MAX_TEXT_LENGTH} characters")


def _type_errors(card: ClassifiedCard) -> List[str]:
    if isinstance(card, MultipleChoiceCard):
        errors = []
        if len(card.choices) < 2:
            errors.append("Multiple choice cards must have at least 2 choices")
        if not card.correct_choices:
            errors.append("Multiple choice cards must have correct choices specified")
        return errors
    if isinstance(card, TrueFalseCard):
        if len(card.choices) != 2:
            return ["True/false cards must have exactly 2 choices"]
        return []
    if isinstance(card, ClozeCard):
        errors = []
        if not card.cloze_text:
            errors.append("Cloze deletion cards must have cloze text")
        if not card.cloze_answers:
            errors.append("Cloze deletion cards must have cloze answers")
        return errors
    if isinstance(card, ImageOcclusionCard):
        errors = []
        if not card.question_image_url:
            errors.append("Image occlusion cards must have a question image")
        if not card.occlusion_regions:
            errors.append("Image occlusion cards must have occlusion data")
        return errors
    return []


def validate_card(card: ClassifiedCard) -> List[str]:
    """Return the validation errors of ``card``; empty when it may be saved."""
    errors: List[str] = []
    _check_text(errors, "Question", card.question, required=True)
    _check_text(errors, "Answer", card.answer, required=True)
    _check_text(errors, "Hint", card.hint, required=False)

    for tag in sorted(card.tags):
        if len(tag) > MAX_TAG_LENGTH:
            errors.append(f"Tag '{tag[:20]}...' may not be longer than {MAX_TAG_LENGTH} characters")

    difficulty = getattr(card.difficulty, "value", card.difficulty)
    if difficulty not in _DIFFICULTY_VALUES:
        errors.append(f"Difficulty must be one of: {', '.join(sorted(_DIFFICULTY_VALUES))}")

    errors.extend(_type_errors(card))
    return errors
