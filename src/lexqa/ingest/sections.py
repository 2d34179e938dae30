"""Heading breadcrumbs built from the parser's parent links."""
from __future__ import annotations

from typing import Iterable, Optional

from .models import DocumentElement
from .normalization import normalize_text

SECTION_SEPARATOR = " > "


class ElementGraph:
    """Arena of a document's elements addressed by ``element_id``.

    Parent links form a forest. A missing or dangling ``parent_id`` marks a
    root, and a revisited id stops the walk so malformed input cannot loop.
    """

    def __init__(self, elements: Iterable[DocumentElement]) -> None:
        self._by_id: dict[str, DocumentElement] = {}
        for element in elements:
            if element.element_id:
                self._by_id[element.element_id] = element

    def __len__(self) -> int:
        return len(self._by_id)

    def get(self, element_id: Optional[str]) -> Optional[DocumentElement]:
        if not element_id:
            return None
        return self._by_id.get(element_id)

    def ancestors(self, element: DocumentElement) -> Iterable[DocumentElement]:
        """Yield parents from the nearest outwards."""

        seen = {element.element_id}
        cursor = self.get(element.parent_id)
        while cursor is not None and cursor.element_id not in seen:
            seen.add(cursor.element_id)
            yield cursor
            cursor = self.get(cursor.parent_id)

    def section_path(self, element: DocumentElement, fallback: str) -> str:
        parts: list[str] = []
        for ancestor in self.ancestors(element):
            if ancestor.is_heading and ancestor.text and ancestor.text.strip():
                parts.insert(0, normalize_text(ancestor.text))
        if not parts:
            return fallback
        return SECTION_SEPARATOR.join(parts)


def resolve_doc_title(elements: Iterable[DocumentElement]) -> Optional[str]:
    """Normalised text of the first non-empty ``Title`` element, if any."""

    for element in elements:
        if element.type == "Title" and element.text and element.text.strip():
            return normalize_text(element.text)
    return None


__all__ = ["ElementGraph", "SECTION_SEPARATOR", "resolve_doc_title"]
