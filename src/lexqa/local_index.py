"""Read-only chunk index backed by the JSONL file the ingestion CLI writes."""
from __future__ import annotations

import json
import logging
import threading
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

from lexqa.settings import PROJECT_ROOT, get_settings

LOGGER = logging.getLogger(__name__)

RECORD_FIELDS = (
    "doc_id",
    "doc_title",
    "page_start",
    "page_end",
    "para_start",
    "para_end",
    "section_path",
    "source_url",
    "content_type",
)


def normalize_chunk_record(chunk_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    """Shape a stored chunk for API responses; page bounds fall back to ``page``."""

    record: Dict[str, Any] = {"chunk_id": chunk_id}
    for key in RECORD_FIELDS:
        record[key] = payload.get(key)
    if record["page_start"] is None:
        record["page_start"] = payload.get("page")
    if record["page_end"] is None:
        record["page_end"] = payload.get("page")
    record["text"] = payload.get("text") or ""
    return record


class LocalChunkIndex:
    """Chunks keyed by ``chunk_id``, loaded from disk on first access.

    The file is read at most once; the populated mapping is never mutated.
    Malformed lines are skipped.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._records: Optional[Dict[str, Dict[str, Any]]] = None
        self._lock = threading.Lock()

    def _load(self) -> Dict[str, Dict[str, Any]]:
        records: Dict[str, Dict[str, Any]] = {}
        if not self.path.exists():
            LOGGER.warning("Local chunk index %s does not exist", self.path)
            return records

        skipped = 0
        with self.path.open("r", encoding="utf-8") as handle:
            for line in handle:
                if not line.strip():
                    continue
                try:
                    item = json.loads(line)
                except json.JSONDecodeError:
                    skipped += 1
                    continue
                chunk_id = item.get("chunk_id") if isinstance(item, dict) else None
                if not chunk_id:
                    skipped += 1
                    continue
                records[chunk_id] = item
        if skipped:
            LOGGER.warning("Skipped %s malformed lines in %s", skipped, self.path)
        LOGGER.info("Loaded %s chunks from %s", len(records), self.path)
        return records

    @property
    def records(self) -> Dict[str, Dict[str, Any]]:
        if self._records is None:
            with self._lock:
                if self._records is None:
                    self._records = self._load()
        return self._records

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self) -> Iterator[Dict[str, Any]]:
        return iter(self.records.values())

    def get(self, chunk_id: str) -> Optional[Dict[str, Any]]:
        item = self.records.get(chunk_id)
        if item is None:
            return None
        return normalize_chunk_record(chunk_id, item)


def resolve_chunks_path(value: str) -> Path:
    path = Path(value)
    if path.is_absolute() or path.exists():
        return path
    return PROJECT_ROOT / path


@lru_cache()
def get_local_index() -> LocalChunkIndex:
    return LocalChunkIndex(resolve_chunks_path(get_settings().chunks_path))


def reset_local_index_cache() -> None:
    get_local_index.cache_clear()  # type: ignore[attr-defined]


__all__ = [
    "LocalChunkIndex",
    "get_local_index",
    "normalize_chunk_record",
    "reset_local_index_cache",
    "resolve_chunks_path",
]
