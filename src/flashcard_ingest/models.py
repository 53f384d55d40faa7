"""Card data model shared by parsers, classifier, detector and importer.

RawCardTuple is what every extractor emits. The classifier turns it into one
of the ClassifiedCard variants, each of which only carries the fields that
make sense for its card type.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, FrozenSet, List, Mapping, Optional, Tuple, Union


class CardType(str, Enum):
    BASIC = "basic"
    CLOZE = "cloze"
    TRUE_FALSE = "true_false"
    MULTIPLE_CHOICE = "multiple_choice"
    IMAGE_OCCLUSION = "image_occlusion"

    @classmethod
    def from_name(cls, name: Optional[str]) -> Optional["CardType"]:
        """Return the CardType for a case-insensitive name, or None."""
        if not name:
            return None
        try:
            return cls(name.strip().lower())
        except ValueError:
            return None


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class MatchKind(str, Enum):
    EXACT_EXISTING = "exact_existing"
    EXACT_IN_BATCH = "exact_in_batch"
    SIMILAR_EXISTING = "similar_existing"
    SIMILAR_IN_BATCH = "similar_in_batch"

    @property
    def against_existing(self) -> bool:
        return self in (MatchKind.EXACT_EXISTING, MatchKind.SIMILAR_EXISTING)


class SuggestedAction(str, Enum):
    SKIP = "skip"
    REVIEW = "review"
    UPDATE = "update"
    KEEP_BOTH = "keep_both"
    REPLACE = "replace"


class MergeAction(str, Enum):
    """Actions the merge step can execute. ``review`` is advisory only."""
    SKIP = "skip"
    UPDATE = "update"
    REPLACE = "replace"
    KEEP_BOTH = "keep_both"

    @classmethod
    def from_name(cls, name: Optional[str]) -> Optional["MergeAction"]:
        if not name:
            return None
        try:
            return cls(str(name).strip().lower())
        except ValueError:
            return None


@dataclass(frozen=True)
class RawCardTuple:
    """A question/answer pair as it came out of a parser or extractor."""
    question: str
    answer: str
    hint: Optional[str] = None
    tags: FrozenSet[str] = frozenset()
    explicit_type: Optional[str] = None
    choices: Optional[Tuple[str, ...]] = None
    correct_choices: Optional[Tuple[int, ...]] = None
    difficulty: Optional[Difficulty] = None
    question_image_url: Optional[str] = None
    answer_image_url: Optional[str] = None
    audio_url: Optional[str] = None
    source_data: Mapping[str, Any] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class Region:
    """Rectangular occlusion mask. Always the fixed placeholder for now."""
    answer: str
    shape: str = "rectangle"
    x: int = 100
    y: int = 100
    width: int = 200
    height: int = 50

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.shape,
            "x": self.x,
            "y": self.y,
            "width": self.width,
            "height": self.height,
            "answer": self.answer,
        }


@dataclass(frozen=True)
class ClassifiedCard:
    """Common fields of every classified card variant."""
    card_type: ClassVar[CardType] = CardType.BASIC

    question: str
    answer: str
    hint: Optional[str] = None
    tags: FrozenSet[str] = frozenset()
    difficulty: Difficulty = Difficulty.MEDIUM
    import_source: str = "manual"
    question_image_url: Optional[str] = None
    answer_image_url: Optional[str] = None
    audio_url: Optional[str] = None
    source_data: Mapping[str, Any] = field(default_factory=dict, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        """Flat record used by stores and exporters."""
        data: Dict[str, Any] = {
            "card_type": self.card_type.value,
            "question": self.question,
            "answer": self.answer,
            "hint": self.hint,
            "tags": sorted(self.tags),
            "difficulty": self.difficulty.value,
            "import_source": self.import_source,
            "question_image_url": self.question_image_url,
            "answer_image_url": self.answer_image_url,
            "audio_url": self.audio_url,
        }
        data.update(self._variant_fields())
        return data

    def _variant_fields(self) -> Dict[str, Any]:
        return {}


@dataclass(frozen=True)
class BasicCard(ClassifiedCard):
    card_type: ClassVar[CardType] = CardType.BASIC


@dataclass(frozen=True)
class TrueFalseCard(ClassifiedCard):
    card_type: ClassVar[CardType] = CardType.TRUE_FALSE

    choices: Tuple[str, ...] = ("True", "False")
    correct_choices: Tuple[int, ...] = (0,)

    def _variant_fields(self) -> Dict[str, Any]:
        return {"choices": list(self.choices), "correct_choices": list(self.correct_choices)}


@dataclass(frozen=True)
class MultipleChoiceCard(ClassifiedCard):
    card_type: ClassVar[CardType] = CardType.MULTIPLE_CHOICE

    choices: Tuple[str, ...] = ()
    correct_choices: Tuple[int, ...] = (0,)

    def _variant_fields(self) -> Dict[str, Any]:
        return {"choices": list(self.choices), "correct_choices": list(self.correct_choices)}


@dataclass(frozen=True)
class ClozeCard(ClassifiedCard):
    card_type: ClassVar[CardType] = CardType.CLOZE

    cloze_text: str = ""
    cloze_answers: Tuple[str, ...] = ()

    def _variant_fields(self) -> Dict[str, Any]:
        return {"cloze_text": self.cloze_text, "cloze_answers": list(self.cloze_answers)}


@dataclass(frozen=True)
class ImageOcclusionCard(ClassifiedCard):
    card_type: ClassVar[CardType] = CardType.IMAGE_OCCLUSION

    occlusion_regions: Tuple[Region, ...] = ()

    def _variant_fields(self) -> Dict[str, Any]:
        return {"occlusion_regions": [r.to_dict() for r in self.occlusion_regions]}


CARD_CLASSES: Dict[CardType, type] = {
    CardType.BASIC: BasicCard,
    CardType.TRUE_FALSE: TrueFalseCard,
    CardType.MULTIPLE_CHOICE: MultipleChoiceCard,
    CardType.CLOZE: ClozeCard,
    CardType.IMAGE_OCCLUSION: ImageOcclusionCard,
}


def card_from_dict(data: Mapping[str, Any]) -> ClassifiedCard:
    """Rebuild a ClassifiedCard from the output of ClassifiedCard.to_dict()."""
    card_type = CardType.from_name(data.get("card_type")) or CardType.BASIC
    common: Dict[str, Any] = {
        "question": data.get("question", ""),
        "answer": data.get("answer", ""),
        "hint": data.get("hint"),
        "tags": frozenset(data.get("tags") or ()),
        "difficulty": Difficulty(data.get("difficulty") or "medium"),
        "import_source": data.get("import_source") or "manual",
        "question_image_url": data.get("question_image_url"),
        "answer_image_url": data.get("answer_image_url"),
        "audio_url": data.get("audio_url"),
    }
    if card_type in (CardType.TRUE_FALSE, CardType.MULTIPLE_CHOICE):
        common["choices"] = tuple(data.get("choices") or ())
        common["correct_choices"] = tuple(int(i) for i in data.get("correct_choices") or ())
    elif card_type is CardType.CLOZE:
        common["cloze_text"] = data.get("cloze_text") or ""
        common["cloze_answers"] = tuple(data.get("cloze_answers") or ())
    elif card_type is CardType.IMAGE_OCCLUSION:
        common["occlusion_regions"] = tuple(
            Region(
                answer=r.get("answer", ""),
                shape=r.get("type", "rectangle"),
                x=r.get("x", 100),
                y=r.get("y", 100),
                width=r.get("width", 200),
                height=r.get("height", 50),
            )
            for r in data.get("occlusion_regions") or ()
        )
    return CARD_CLASSES[card_type](**common)


@dataclass
class StoredCard:
    """A persisted card as seen by the duplicate detector and merge step."""
    id: str
    scope_id: str
    card: ClassifiedCard
    is_active: bool = True
    created_seq: int = 0
    created_by: Optional[str] = None

    @property
    def question(self) -> str:
        return self.card.question

    @property
    def answer(self) -> str:
        return self.card.answer

    @property
    def tags(self) -> FrozenSet[str]:
        return self.card.tags


AnyCard = Union[RawCardTuple, ClassifiedCard]


@dataclass(frozen=True)
class SimilarityResult:
    question_similarity: float
    answer_similarity: float
    combined_score: float


@dataclass
class DuplicateMatch:
    """One incoming card flagged as a duplicate during a detection pass."""
    source_index: int
    incoming: AnyCard
    candidate: Union[AnyCard, StoredCard]
    match_kind: MatchKind
    score: float
    suggested_action: SuggestedAction

    @property
    def against_existing(self) -> bool:
        return self.match_kind.against_existing


@dataclass
class ImportBatchResult:
    imported: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)
    total: int = 0

    @property
    def success(self) -> bool:
        return self.imported > 0
