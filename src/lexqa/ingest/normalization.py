"""Text normalisation utilities."""
from __future__ import annotations

import re
import unicodedata

_WHITESPACE_RE = re.compile(r"\s+")


def normalize_text(text: str) -> str:
    """Collapse every whitespace run to a single space and trim."""

    normalized = unicodedata.normalize("NFC", text)
    return _WHITESPACE_RE.sub(" ", normalized).strip()


def count_words(text: str) -> int:
    if not text:
        return 0
    return len(text.split())


def slugify(value: str, max_length: int = 60) -> str:
    """Lowercase *value* and replace runs of non-alphanumerics with dashes."""

    slug = re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")
    return slug[:max_length]
