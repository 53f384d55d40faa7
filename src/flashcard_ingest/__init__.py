"""Flashcard import pipeline.

Parses delimited text, Anki packages and Mnemosyne exports into cards,
classifies them by type, finds duplicates and persists the result.
"""

__all__ = [
    "anki",
    "classifier",
    "config",
    "detect_duplicates",
    "errors",
    "export",
    "importer",
    "mnemosyne",
    "models",
    "normalize",
    "report",
    "similarity",
    "store",
    "templates",
    "text_parser",
    "validation",
]
