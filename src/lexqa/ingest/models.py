"""Data models used by the ingestion pipeline."""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

HEADING_TYPES = frozenset({"Title", "Header"})


class DocumentFormatError(ValueError):
    """Raised when a parsed document cannot be read as a list of elements."""


def _page_number(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise DocumentFormatError(f"Element page_number must be a number, got {value!r}")
    if isinstance(value, float) and not (math.isfinite(value) and value.is_integer()):
        raise DocumentFormatError(f"Element page_number must be a whole number, got {value!r}")
    return int(value)


def _filename(value: Any) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise DocumentFormatError(f"Element filename must be a string, got {type(value).__name__}")
    return value or None


@dataclass(frozen=True, slots=True)
class DocumentElement:
    """One element emitted by the upstream document-parsing service."""

    element_id: str
    type: str
    text: str
    page_number: Optional[int] = None
    parent_id: Optional[str] = None
    filename: Optional[str] = None

    @property
    def is_heading(self) -> bool:
        return self.type in HEADING_TYPES

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "DocumentElement":
        if not isinstance(payload, Mapping):
            raise DocumentFormatError(f"Element must be an object, got {type(payload).__name__}")
        metadata = payload.get("metadata") or {}
        if not isinstance(metadata, Mapping):
            raise DocumentFormatError("Element metadata must be an object")
        text = payload.get("text")
        parent_id = metadata.get("parent_id")
        element_id = payload.get("element_id")
        return cls(
            element_id=str(element_id) if element_id is not None else "",
            type=str(payload.get("type") or ""),
            text=text if isinstance(text, str) else "",
            page_number=_page_number(metadata.get("page_number")),
            parent_id=str(parent_id) if parent_id else None,
            filename=_filename(metadata.get("filename")),
        )


@dataclass(frozen=True, slots=True)
class ContentItem:
    """A non-filtered element positioned on its page and inside its section."""

    element_id: str
    text: str
    page_number: int
    para_index: int
    section_path: str
    content_type: str
    parent_id: Optional[str] = None
    doc_id: Optional[str] = None


@dataclass(frozen=True, slots=True)
class Chunk:
    """A contiguous, provenance-tagged span of one document's content items."""

    chunk_id: str
    doc_id: str
    doc_title: str
    page_start: int
    page_end: int
    para_start: int
    para_end: int
    section_path: str
    content_type: str
    element_ids: tuple[str, ...]
    text: str
    source_url: str
    chunk_index: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "chunk_id": self.chunk_id,
            "doc_id": self.doc_id,
            "doc_title": self.doc_title,
            "page_start": self.page_start,
            "page_end": self.page_end,
            "para_start": self.para_start,
            "para_end": self.para_end,
            "section_path": self.section_path,
            "content_type": self.content_type,
            "element_ids": list(self.element_ids),
            "text": self.text,
            "source_url": self.source_url,
            "chunk_index": self.chunk_index,
        }

    def index_metadata(self) -> dict[str, Any]:
        """Metadata stored next to the chunk in the search indexes."""

        payload = self.to_dict()
        payload.pop("chunk_id")
        payload.pop("chunk_index")
        return payload


@dataclass(slots=True)
class DocumentResult:
    """Outcome of ingesting a single parsed document."""

    file_name: str
    chunks: list[Chunk] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None
