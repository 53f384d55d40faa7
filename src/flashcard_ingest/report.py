"""Reporting utilities for parse, detection and import results."""

from __future__ import annotations

import csv
from pathlib import Path
from typing import Iterable, List, Optional

from .detect_duplicates import DetectionResult, MergeResult
from .models import ClassifiedCard, DuplicateMatch, ImportBatchResult, StoredCard


def write_csv(path: str | Path, rows: Iterable[dict]) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    rows = list(rows)
    if not rows:
        # Write empty file with no rows
        with path.open("w", encoding="utf-8", newline="") as f:
            f.write("")
        return
    fieldnames = list(rows[0].keys())
    with path.open("w", encoding="utf-8", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=fieldnames)
        writer.writeheader()
        for r in rows:
            writer.writerow(r)


def classified_cards_to_rows(cards: Iterable[ClassifiedCard]) -> List[dict]:
    return [
        {
            "card_type": c.card_type.value,
            "question": c.question,
            "answer": c.answer,
            "hint": c.hint or "",
            "tags": " ".join(sorted(c.tags)),
            "difficulty": c.difficulty.value,
        }
        for c in cards
    ]


def _candidate_id(match: DuplicateMatch) -> str:
    if isinstance(match.candidate, StoredCard):
        return match.candidate.id
    return ""


def duplicates_to_rows(duplicates: Iterable[DuplicateMatch]) -> List[dict]:
    return [
        {
            "row": m.source_index + 1,
            "question": m.incoming.question,
            "answer": m.incoming.answer,
            "match_kind": m.match_kind.value,
            "score": f"{m.score:.3f}",
            "suggested_action": m.suggested_action.value,
            "matched_card_id": _candidate_id(m),
            "matched_question": m.candidate.question,
            "matched_answer": m.candidate.answer,
        }
        for m in duplicates
    ]


def write_duplicates_csv(path: str | Path, detection: DetectionResult) -> None:
    write_csv(path, duplicates_to_rows(detection.duplicates))


def print_errors(errors: List[str]) -> None:
    if not errors:
        return
    print("Errors:")
    for err in errors:
        print(f"  {err}")


def print_detection_summary(detection: DetectionResult) -> None:
    counts = {}
    for m in detection.duplicates:
        counts[m.match_kind.value] = counts.get(m.match_kind.value, 0) + 1
    print("Duplicate Detection Summary:")
    print(f"  Incoming cards:          {detection.total}")
    print(f"  Existing cards checked:  {detection.existing_checked}")
    for kind in ("exact_existing", "exact_in_batch", "similar_existing", "similar_in_batch"):
        print(f"  {kind:>17}: {counts.get(kind, 0)}")
    print(f"  unique           : {detection.unique_count}")
    print()


def print_merge_summary(merge: MergeResult) -> None:
    print("Merge Summary:")
    for name, count in merge.counts().items():
        print(f"  {name:>9}: {count}")
    print_errors(merge.errors)
    print()


def print_import_summary(batch: ImportBatchResult, merge: Optional[MergeResult] = None) -> None:
    if merge is not None:
        print_merge_summary(merge)
    print("Import Summary:")
    print(f"  imported: {batch.imported}")
    print(f"  failed  : {batch.failed}")
    print(f"  total   : {batch.total}")
    print_errors(batch.errors)
