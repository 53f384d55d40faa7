"""CLI entrypoint for flashcard-ingest.

Usage:
  flashcard-ingest parse --input cards.txt --out out/parsed.csv
  flashcard-ingest import --input deck.apkg --store store.json --scope biology --actor me
  flashcard-ingest detect --input cards.csv --store store.json --scope biology --out out/dups.csv
  flashcard-ingest export --store store.json --scope biology --format quizlet --out out/cards.tsv
"""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import List

from .classifier import classify_card
from .config import ImportConfig, load_config
from .detect_duplicates import MergeStrategy
from .errors import FlashcardIngestError
from .export import EXPORT_FORMATS, export_cards
from .importer import FlashcardImporter, ParseOutcome
from .models import MergeAction
from .report import (
    classified_cards_to_rows,
    print_detection_summary,
    print_errors,
    print_import_summary,
    write_csv,
    write_duplicates_csv,
)
from .store import DirectoryMediaStore, InMemoryCardStore, InMemoryMediaStore, JsonCardStore, StoreError


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def _load(args: argparse.Namespace) -> ImportConfig:
    _setup_logging(args.verbose)
    return load_config(args.config)


def _parse_input(importer: FlashcardImporter, path: str, scope_id: str) -> ParseOutcome:
    outcome = importer.parse_file(path, scope_id)
    if not outcome.success:
        print(f"Error: {outcome.error}")
        return outcome
    print(f"Parsed {len(outcome.cards)} cards from: {path}")
    if outcome.delimiter:
        print(f"  Delimiter: {outcome.delimiter}")
    if outcome.media_files:
        print(f"  Media files: {len(outcome.media_files)}")
    if outcome.categories:
        print(f"  Categories: {', '.join(outcome.categories)}")
    print_errors(outcome.errors)
    return outcome


def cmd_parse(args: argparse.Namespace) -> int:
    cfg = _load(args)
    importer = FlashcardImporter(InMemoryCardStore(), InMemoryMediaStore(), cfg)
    outcome = _parse_input(importer, args.input, "preview")
    if not outcome.success:
        return 1

    cards = [classify_card(c, outcome.import_source) for c in outcome.cards]
    counts = {}
    for c in cards:
        counts[c.card_type.value] = counts.get(c.card_type.value, 0) + 1
    print("Card Types:")
    for name, count in sorted(counts.items()):
        print(f"  {name:>16}: {count}")

    if args.out:
        write_csv(args.out, classified_cards_to_rows(cards))
        print(f"Wrote parsed cards: {args.out}")
    return 0


def cmd_import(args: argparse.Namespace) -> int:
    cfg = _load(args)
    if args.strategy and not args.detect_duplicates:
        print("Error: --strategy requires --detect-duplicates")
        return 1
    try:
        store = JsonCardStore(args.store)
    except StoreError as e:
        print(f"Error: {e}")
        return 1
    media_store = DirectoryMediaStore(args.media_dir) if args.media_dir else InMemoryMediaStore()
    importer = FlashcardImporter(store, media_store, cfg)

    outcome = _parse_input(importer, args.input, args.scope)
    if not outcome.success:
        return 1

    strategy = MergeStrategy(global_action=args.strategy) if args.strategy else None
    result = importer.import_cards_advanced(
        outcome.cards,
        args.scope,
        actor_id=args.actor,
        source=outcome.import_source,
        detect_duplicates=args.detect_duplicates,
        merge_strategy=strategy,
    )
    if result.detection is not None:
        print_detection_summary(result.detection)
    if result.error:
        print(f"Error: {result.error}")
        return 1
    if result.needs_duplicate_resolution:
        print("Duplicates found; re-run with --strategy to resolve them. Nothing was imported.")
        return 0

    print_import_summary(result.batch, result.merge)
    print(f"Store: {args.store}")
    return 0


def cmd_detect(args: argparse.Namespace) -> int:
    cfg = _load(args)
    try:
        store = JsonCardStore(args.store)
    except StoreError as e:
        print(f"Error: {e}")
        return 1
    importer = FlashcardImporter(store, InMemoryMediaStore(), cfg)

    outcome = _parse_input(importer, args.input, args.scope)
    if not outcome.success:
        return 1

    stats = importer.detection_statistics(args.scope)
    print(f"Checking against {stats.will_check_against} of {stats.existing_cards} existing cards "
          f"(limit {stats.comparison_limit}, threshold {stats.similarity_threshold})")
    detection = importer.detect_duplicates(outcome.cards, args.scope, outcome.import_source)
    write_duplicates_csv(args.out, detection)
    print_detection_summary(detection)
    print(f"Wrote report: {args.out}")
    return 0


def cmd_export(args: argparse.Namespace) -> int:
    cfg = _load(args)
    try:
        store = JsonCardStore(args.store)
    except StoreError as e:
        print(f"Error: {e}")
        return 1

    cards = store.all_active(args.scope)
    outcome = export_cards(cards, args.format, max_cards=cfg.max_export_size)
    if not outcome.success:
        print(f"Error: {outcome.error}")
        return 1

    out = Path(args.out) if args.out else Path(outcome.filename)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_text(outcome.content, encoding="utf-8")
    print(f"Exported {len(cards)} cards as {args.format}: {out}")
    return 0


def _add_common(p: argparse.ArgumentParser) -> None:
    p.add_argument(
        "--config",
        default="resources/config.json",
        help="Path to config.json (optional; defaults will be used if missing)",
    )
    p.add_argument("--verbose", action="store_true", help="Enable debug logging")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="flashcard-ingest", description="Flashcard import pipeline CLI")
    sub = p.add_subparsers(dest="cmd", required=True)

    parse = sub.add_parser("parse", help="Parse and classify an import file without saving")
    parse.add_argument("--input", required=True, help="Path to .txt/.csv/.tsv/.apkg/.mem/.xml file")
    parse.add_argument("--out", help="Optional path to a CSV of the classified cards")
    _add_common(parse)
    parse.set_defaults(func=cmd_parse)

    imp = sub.add_parser("import", help="Import cards into a JSON card store")
    imp.add_argument("--input", required=True, help="Path to the import file")
    imp.add_argument("--store", required=True, help="Path to the JSON card store (created if missing)")
    imp.add_argument("--scope", required=True, help="Scope id the cards belong to")
    imp.add_argument("--actor", default=None, help="Id of the user performing the import")
    imp.add_argument(
        "--detect-duplicates",
        action="store_true",
        help="Check cards against the scope and the batch before saving",
    )
    imp.add_argument(
        "--strategy",
        choices=[a.value for a in MergeAction],
        help="Action applied to every duplicate (requires --detect-duplicates)",
    )
    imp.add_argument("--media-dir", help="Directory for media extracted from Anki packages")
    _add_common(imp)
    imp.set_defaults(func=cmd_import)

    detect = sub.add_parser("detect", help="Report duplicates without importing")
    detect.add_argument("--input", required=True, help="Path to the import file")
    detect.add_argument("--store", required=True, help="Path to the JSON card store")
    detect.add_argument("--scope", required=True, help="Scope id to check against")
    detect.add_argument("--out", required=True, help="Path to output CSV report")
    _add_common(detect)
    detect.set_defaults(func=cmd_detect)

    export = sub.add_parser("export", help="Export the active cards of a scope")
    export.add_argument("--store", required=True, help="Path to the JSON card store")
    export.add_argument("--scope", required=True, help="Scope id to export")
    export.add_argument("--format", required=True, choices=sorted(EXPORT_FORMATS), help="Export format")
    export.add_argument("--out", help="Output path (default: generated filename)")
    _add_common(export)
    export.set_defaults(func=cmd_export)

    return p


def main(argv: List[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        return args.func(args)
    except (ValueError, FlashcardIngestError) as e:
        print(f"Error: {e}")
        return 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
