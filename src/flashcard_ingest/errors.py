"""Exception types for the import pipeline.

Three failure scopes:
- FormatError: the whole input cannot be parsed; nothing is imported.
- RowError: a single card fails validation or persistence; the batch goes on.
- ExtractionError: one asset inside a package (a media file, a note) fails to
  decode; it is skipped with a warning.
"""

from __future__ import annotations


class FlashcardIngestError(Exception):
    """Base class for all pipeline errors."""


class FormatError(FlashcardIngestError, ValueError):
    """Raised when content cannot be parsed at all."""


class RowError(FlashcardIngestError):
    def __init__(self, row: int, message: str) -> None:
        super().__init__(f"Row {row}: {message}")
        self.row = row
        self.message = message


class ExtractionError(FlashcardIngestError):
    def __init__(self, asset: str, message: str) -> None:
        super().__init__(f"{asset}: {message}")
        self.asset = asset
        self.message = message
