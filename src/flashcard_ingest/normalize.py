"""Text normalization utilities.

Policy:
- Apply NFC early for consistency.
- For matching: lowercase, strip HTML tags, collapse whitespace, strip
  punctuation (anything that is neither a word character nor whitespace), trim.
- For display: strip HTML and Anki sound tags, decode entities, collapse
  whitespace.
"""

from __future__ import annotations

import html as html_lib
import re
import unicodedata as ud
from typing import Iterable, List

_WS_RE = re.compile(r"\s+")
_TAG_RE = re.compile(r"<[^>]*>")
_SOUND_RE = re.compile(r"\[sound:[^\]]+\]")
_PUNCT_RE = re.compile(r"[^\w\s]")


def normalize_text_nfc(text: str) -> str:
    """Apply Unicode NFC to input text (safe for None-like inputs)."""
    if text is None:
        return ""
    return ud.normalize("NFC", str(text))


def strip_html(text: str) -> str:
    """Remove HTML tags, keeping their text content."""
    if not text:
        return ""
    return _TAG_RE.sub("", text)


def collapse_whitespace(text: str) -> str:
    return _WS_RE.sub(" ", text or "").strip()


def clean_field_text(text: str) -> str:
    """Plain display text for an HTML field: no tags, no [sound:...], no entities."""
    if not text:
        return ""
    t = _SOUND_RE.sub(" ", text)
    t = _TAG_RE.sub(" ", t)
    t = html_lib.unescape(t)
    return collapse_whitespace(t)


def normalize_for_match(text: str) -> str:
    """Normalize text for duplicate matching.

    Steps: NFC -> lowercase -> strip HTML -> collapse whitespace ->
    strip punctuation -> trim.
    """
    if not text:
        return ""
    t = normalize_text_nfc(text)
    t = t.lower()
    t = strip_html(t)
    t = _WS_RE.sub(" ", t)
    t = _PUNCT_RE.sub("", t)
    return t.strip()


def unique_in_order(items: Iterable[str]) -> List[str]:
    """De-duplicate while keeping first-seen order."""
    seen = set()
    out: List[str] = []
    for item in items:
        if item not in seen:
            seen.add(item)
            out.append(item)
    return out
