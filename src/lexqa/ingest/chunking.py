"""Provenance-preserving chunking of parsed document elements.

Content items are grouped into chunks that never span two sections or two
pages: a section or page change always closes the open chunk, and only
within one page of one section does the paragraph/word window decide where a
chunk ends. Chunk ids are derived from the document id, the chunk ordinal and
the member element ids, so re-ingesting an unchanged document reproduces the
same ids.
"""
from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from typing import Iterable, Iterator, List, Optional, Sequence
from urllib.parse import quote

from .filters import is_content
from .models import Chunk, ContentItem, DocumentElement
from .normalization import count_words, normalize_text, slugify
from .sections import ElementGraph

LOGGER = logging.getLogger(__name__)

MIN_PARAS = 4
MAX_PARAS = 6
MIN_WORDS = 350
MAX_WORDS = 800

DEFAULT_PDF_BASE_URL = "/pdfs"


def make_chunk_id(doc_id: str, index: int, element_ids: Sequence[str]) -> str:
    seed = f"{doc_id}|{index}|{'|'.join(element_ids)}"
    digest = hashlib.sha256(seed.encode("utf-8")).hexdigest()[:16]
    return f"{slugify(doc_id)}-{index}-{digest}"


def make_source_url(doc_id: str, page: int, base_url: str = DEFAULT_PDF_BASE_URL) -> str:
    return f"{base_url.rstrip('/')}/{quote(doc_id, safe='')}#page={page}"


def build_content_items(
    elements: Sequence[DocumentElement],
    fallback_title: str,
) -> List[ContentItem]:
    """Filter *elements* and position each survivor on its page and section.

    Paragraph indices are 1-based and restart on every page, counting content
    items only, in encounter order.
    """

    graph = ElementGraph(elements)
    para_counts: dict[int, int] = {}
    items: List[ContentItem] = []

    for element in elements:
        if not is_content(element):
            continue
        page = element.page_number if element.page_number is not None else 0
        para_counts[page] = para_counts.get(page, 0) + 1
        items.append(
            ContentItem(
                element_id=element.element_id,
                text=normalize_text(element.text),
                page_number=page,
                para_index=para_counts[page],
                section_path=graph.section_path(element, fallback_title),
                content_type="table" if element.type == "Table" else "text",
                parent_id=element.parent_id,
                doc_id=element.filename,
            )
        )
    return items


@dataclass(slots=True)
class _OpenChunk:
    doc_id: str
    doc_title: str
    section_path: str
    page_start: int
    page_end: int
    para_start: int
    para_end: int
    element_ids: List[str] = field(default_factory=list)
    text_parts: List[str] = field(default_factory=list)
    word_count: int = 0
    para_count: int = 0
    content_types: List[str] = field(default_factory=list)

    @classmethod
    def seed(cls, item: ContentItem, doc_id: str, doc_title: str) -> "_OpenChunk":
        return cls(
            doc_id=doc_id,
            doc_title=doc_title,
            section_path=item.section_path,
            page_start=item.page_number,
            page_end=item.page_number,
            para_start=item.para_index,
            para_end=item.para_index,
            element_ids=[item.element_id],
            text_parts=[item.text],
            word_count=count_words(item.text),
            para_count=1,
            content_types=[item.content_type],
        )

    def merge(self, item: ContentItem, word_count: int) -> None:
        self.page_end = item.page_number
        self.para_end = item.para_index
        self.element_ids.append(item.element_id)
        self.text_parts.append(item.text)
        self.word_count = word_count
        self.para_count += 1
        if item.content_type not in self.content_types:
            self.content_types.append(item.content_type)


class ElementChunker:
    """Accumulate one document's content items into bounded chunks.

    The word cap only closes a chunk that already holds ``min_paras`` items.
    ``MIN_WORDS`` is a sizing target and is not enforced.
    """

    def __init__(
        self,
        *,
        min_paras: int = MIN_PARAS,
        max_paras: int = MAX_PARAS,
        max_words: int = MAX_WORDS,
        pdf_base_url: str = DEFAULT_PDF_BASE_URL,
    ) -> None:
        self.min_paras = min_paras
        self.max_paras = max_paras
        self.max_words = max_words
        self.pdf_base_url = pdf_base_url

    def chunk_items(
        self,
        items: Iterable[ContentItem],
        *,
        doc_id: str,
        doc_title: str,
    ) -> Iterator[Chunk]:
        current: Optional[_OpenChunk] = None
        chunk_index = 0

        for item in items:
            item_doc_id = item.doc_id or doc_id
            if current is None:
                current = _OpenChunk.seed(item, item_doc_id, doc_title)
                continue

            next_word_count = current.word_count + count_words(item.text)
            if self._should_flush(current, item, next_word_count):
                yield self._finalize(current, chunk_index)
                chunk_index += 1
                current = _OpenChunk.seed(item, item_doc_id, doc_title)
                continue

            current.merge(item, next_word_count)

        if current is not None:
            yield self._finalize(current, chunk_index)

    def _should_flush(self, current: _OpenChunk, item: ContentItem, next_word_count: int) -> bool:
        if item.section_path != current.section_path:
            return True
        if item.page_number != current.page_end:
            return True
        if current.para_count >= self.max_paras:
            return True
        return next_word_count > self.max_words and current.para_count >= self.min_paras

    def _finalize(self, current: _OpenChunk, chunk_index: int) -> Chunk:
        chunk_id = make_chunk_id(current.doc_id, chunk_index, current.element_ids)
        content_type = current.content_types[0] if len(current.content_types) == 1 else "mixed"
        LOGGER.debug(
            "Chunk %s pages %s-%s paras %s-%s (%s words)",
            chunk_id,
            current.page_start,
            current.page_end,
            current.para_start,
            current.para_end,
            current.word_count,
        )
        return Chunk(
            chunk_id=chunk_id,
            doc_id=current.doc_id,
            doc_title=current.doc_title,
            page_start=current.page_start,
            page_end=current.page_end,
            para_start=current.para_start,
            para_end=current.para_end,
            section_path=current.section_path,
            content_type=content_type,
            element_ids=tuple(current.element_ids),
            text="\n\n".join(current.text_parts),
            source_url=make_source_url(current.doc_id, current.page_start, self.pdf_base_url),
            chunk_index=chunk_index,
        )


__all__ = [
    "ElementChunker",
    "MAX_PARAS",
    "MAX_WORDS",
    "MIN_PARAS",
    "MIN_WORDS",
    "build_content_items",
    "make_chunk_id",
    "make_source_url",
]
