"""Classification of parsed elements into content and noise."""
from __future__ import annotations

import re

from .models import DocumentElement

SKIPPED_TYPES = frozenset({"Footer", "PageBreak"})

_DOWNLOADED_RE = re.compile(r"^Downloaded:", re.IGNORECASE)
# The parser sometimes emits the copyright sign as the mojibake "Â©".
_COPYRIGHT_RE = re.compile(r"^(?:Â)?©\s*\d{4}")


def should_skip(element: DocumentElement) -> bool:
    """Return ``True`` for elements that are neither content nor headings."""

    if not element.text or not element.text.strip():
        return True
    if element.type in SKIPPED_TYPES:
        return True
    trimmed = element.text.strip()
    if _DOWNLOADED_RE.match(trimmed):
        return True
    if _COPYRIGHT_RE.match(trimmed):
        return True
    return False


def is_content(element: DocumentElement) -> bool:
    """Headings survive filtering for section paths but are never content."""

    return not should_skip(element) and not element.is_heading


__all__ = ["SKIPPED_TYPES", "is_content", "should_skip"]
