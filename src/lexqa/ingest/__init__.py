"""Document ingestion: element filtering, section paths and chunking."""

from .chunking import MAX_PARAS, MAX_WORDS, MIN_PARAS, MIN_WORDS, ElementChunker, build_content_items, make_chunk_id
from .models import Chunk, ContentItem, DocumentElement, DocumentFormatError, DocumentResult
from .pipeline import (
    build_chunks_for_directory,
    build_chunks_for_elements,
    build_chunks_for_file,
    index_chunks,
    write_chunks_jsonl,
)

__all__ = [
    "Chunk",
    "ContentItem",
    "DocumentElement",
    "DocumentFormatError",
    "DocumentResult",
    "ElementChunker",
    "MAX_PARAS",
    "MAX_WORDS",
    "MIN_PARAS",
    "MIN_WORDS",
    "build_chunks_for_directory",
    "build_chunks_for_elements",
    "build_chunks_for_file",
    "build_content_items",
    "index_chunks",
    "make_chunk_id",
    "write_chunks_jsonl",
]
