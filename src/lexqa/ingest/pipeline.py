"""High level ingestion entry points: parsed JSON in, chunks and index records out."""
from __future__ import annotations

import json
import logging
import re
import time
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, List, Optional, Sequence

from lexqa.logging_config import AUDIT_LOGGER_NAME
from lexqa.telemetry import emit_exception, emit_ingest_event, emit_vectorstore_event

from .chunking import DEFAULT_PDF_BASE_URL, ElementChunker, build_content_items
from .models import Chunk, DocumentElement, DocumentFormatError, DocumentResult
from .sections import resolve_doc_title

if TYPE_CHECKING:  # pragma: no cover - import for type checking only
    from lexqa.embeddings import EmbeddingModel
    from lexqa.vectorstore import DenseVectorStore, SparseVectorStore

LOGGER = logging.getLogger(__name__)
AUDIT_LOGGER = logging.getLogger(AUDIT_LOGGER_NAME)

DEFAULT_EMBED_BATCH = 32

_JSON_SUFFIX_RE = re.compile(r"\.json$", re.IGNORECASE)
_PDF_SUFFIX_RE = re.compile(r"\.pdf$", re.IGNORECASE)


def load_elements(path: Path) -> List[DocumentElement]:
    """Read a parser output file into :class:`DocumentElement` instances."""

    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise DocumentFormatError(f"{path.name}: invalid JSON ({exc})") from exc
    if not isinstance(payload, list):
        raise DocumentFormatError(f"{path.name}: expected a list of elements")
    return [DocumentElement.from_dict(item) for item in payload]


def fallback_doc_id(path: Path) -> str:
    return _JSON_SUFFIX_RE.sub(".pdf", path.name)


def build_chunks_for_elements(
    elements: Sequence[DocumentElement],
    *,
    file_name: str,
    chunker: Optional[ElementChunker] = None,
) -> List[Chunk]:
    chunker = chunker or ElementChunker()
    default_doc_id = _JSON_SUFFIX_RE.sub(".pdf", file_name)
    doc_id = next(
        (element.filename for element in elements if element.filename),
        default_doc_id,
    )
    doc_title = resolve_doc_title(elements) or _PDF_SUFFIX_RE.sub("", doc_id)

    items = build_content_items(elements, doc_title)
    chunks = list(chunker.chunk_items(items, doc_id=default_doc_id, doc_title=doc_title))
    emit_ingest_event(
        "ingest.file.chunked",
        file_name=file_name,
        doc_id=doc_id,
        elements=len(elements),
        content_items=len(items),
        chunks=len(chunks),
    )
    return chunks


def build_chunks_for_file(path: str | Path, *, chunker: Optional[ElementChunker] = None) -> List[Chunk]:
    """Chunk one parsed document. Raises :class:`DocumentFormatError` on bad input."""

    path = Path(path)
    elements = load_elements(path)
    return build_chunks_for_elements(elements, file_name=path.name, chunker=chunker)


def build_chunks_for_directory(
    directory: str | Path,
    *,
    pdf_base_url: str = DEFAULT_PDF_BASE_URL,
) -> List[DocumentResult]:
    """Chunk every ``*.json`` document in *directory*, isolating failures per file."""

    directory = Path(directory)
    chunker = ElementChunker(pdf_base_url=pdf_base_url)
    results: List[DocumentResult] = []

    for path in sorted(directory.iterdir()):
        if not path.is_file() or path.suffix.lower() != ".json":
            continue

        started = time.perf_counter()
        emit_ingest_event("ingest.file.start", file_name=path.name)
        try:
            chunks = build_chunks_for_file(path, chunker=chunker)
        except (DocumentFormatError, OSError, UnicodeDecodeError) as error:
            duration_ms = (time.perf_counter() - started) * 1000.0
            LOGGER.error("Skipping %s: %s", path.name, error)
            emit_ingest_event(
                "ingest.file.error",
                file_name=path.name,
                duration_ms=duration_ms,
                error=error,
            )
            AUDIT_LOGGER.info({"event": "ingest.failed", "file_name": path.name, "error": str(error)})
            results.append(DocumentResult(file_name=path.name, error=str(error)))
            continue

        duration_ms = (time.perf_counter() - started) * 1000.0
        doc_id = chunks[0].doc_id if chunks else fallback_doc_id(path)
        emit_ingest_event(
            "ingest.file.complete",
            file_name=path.name,
            doc_id=doc_id,
            duration_ms=duration_ms,
            chunks=len(chunks),
        )
        AUDIT_LOGGER.info(
            {
                "event": "ingest",
                "file_name": path.name,
                "doc_id": doc_id,
                "chunk_count": len(chunks),
                "chunk_ids": [chunk.chunk_id for chunk in chunks],
            }
        )
        results.append(DocumentResult(file_name=path.name, chunks=chunks))

    return results


def write_chunks_jsonl(chunks: Iterable[Chunk], path: str | Path) -> int:
    """Truncate *path* and write one chunk object per line."""

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    count = 0
    with path.open("w", encoding="utf-8") as handle:
        for chunk in chunks:
            handle.write(json.dumps(chunk.to_dict(), ensure_ascii=False))
            handle.write("\n")
            count += 1
    LOGGER.info("Wrote %s chunks to %s", count, path)
    return count


async def index_chunks(
    chunks: Sequence[Chunk],
    *,
    embedding_model: "EmbeddingModel",
    dense_store: "DenseVectorStore",
    sparse_store: Optional["SparseVectorStore"] = None,
    batch_size: int = DEFAULT_EMBED_BATCH,
) -> int:
    """Embed *chunks* in batches and upsert them into the search indexes."""

    from lexqa.vectorstore import IndexRecord

    if batch_size <= 0:
        raise ValueError("batch_size must be positive")

    indexed = 0
    for offset in range(0, len(chunks), batch_size):
        batch = chunks[offset : offset + batch_size]
        started = time.perf_counter()
        try:
            vectors = await embedding_model.embed_texts([chunk.text for chunk in batch])
            records = [
                IndexRecord(
                    id=chunk.chunk_id,
                    text=chunk.text,
                    metadata=chunk.index_metadata(),
                    vector=vector,
                )
                for chunk, vector in zip(batch, vectors)
            ]
            await dense_store.upsert(records)
            if sparse_store is not None:
                await sparse_store.upsert(records)
        except Exception as error:
            emit_vectorstore_event(
                "vectorstore.upsert",
                backend=dense_store.backend_name,
                index="dense",
                count=len(batch),
                duration_ms=(time.perf_counter() - started) * 1000.0,
                error=error,
            )
            emit_exception(module=f"{__name__}.index_chunks", error=error)
            raise

        indexed += len(batch)
        emit_vectorstore_event(
            "vectorstore.upsert",
            backend=dense_store.backend_name,
            index="dense" if sparse_store is None else "dense+sparse",
            count=len(batch),
            duration_ms=(time.perf_counter() - started) * 1000.0,
        )
        LOGGER.info("Upserted %s/%s chunks", indexed, len(chunks))

    return indexed


__all__ = [
    "DEFAULT_EMBED_BATCH",
    "build_chunks_for_directory",
    "build_chunks_for_elements",
    "build_chunks_for_file",
    "fallback_doc_id",
    "index_chunks",
    "load_elements",
    "write_chunks_jsonl",
]
