"""In-memory search indexes for tests and offline runs."""
from __future__ import annotations

import logging
import math
import re
from collections import Counter
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence

from .base import DenseVectorStore, IndexRecord, RetrievalMatch, SparseVectorStore

LOGGER = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"\w+", re.UNICODE)


@dataclass(slots=True)
class _StoredItem:
    id: str
    text: str
    metadata: dict
    embedding: Optional[List[float]] = None


def _cosine_similarity(vec_a: Sequence[float], vec_b: Sequence[float]) -> float:
    if len(vec_a) != len(vec_b):
        raise ValueError("Vectors must be of the same dimension")
    dot = sum(a * b for a, b in zip(vec_a, vec_b))
    norm_a = math.sqrt(sum(a * a for a in vec_a))
    norm_b = math.sqrt(sum(b * b for b in vec_b))
    if not norm_a or not norm_b:
        return 0.0
    return dot / (norm_a * norm_b)


def _tokenize(text: str) -> List[str]:
    return _TOKEN_RE.findall(text.lower())


class InMemoryDenseStore(DenseVectorStore):
    """Cosine-similarity index. Upserting an existing id replaces the record."""

    backend_name = "mock"

    def __init__(self) -> None:
        self._items: Dict[str, _StoredItem] = {}

    def __len__(self) -> int:
        return len(self._items)

    async def upsert(self, records: Sequence[IndexRecord]) -> None:
        for record in records:
            if record.vector is None:
                raise ValueError(f"Record {record.id} has no vector")
            self._items[record.id] = _StoredItem(
                id=record.id,
                text=record.text,
                metadata=dict(record.metadata),
                embedding=list(map(float, record.vector)),
            )

    async def query(self, vector: Sequence[float], top_k: int) -> List[RetrievalMatch]:
        if top_k <= 0 or not self._items:
            return []
        scored = [
            (_cosine_similarity(vector, item.embedding or []), item)
            for item in self._items.values()
        ]
        scored.sort(key=lambda pair: pair[0], reverse=True)
        return [
            RetrievalMatch(id=item.id, score=score, metadata=dict(item.metadata))
            for score, item in scored[:top_k]
        ]

    async def fetch(self, record_id: str) -> Optional[RetrievalMatch]:
        item = self._items.get(record_id)
        if item is None:
            return None
        return RetrievalMatch(id=item.id, score=None, metadata=dict(item.metadata))


class InMemorySparseStore(SparseVectorStore):
    """Keyword index scored with a log-tf / idf weighting."""

    backend_name = "mock"

    def __init__(self, records: Iterable[IndexRecord] = ()) -> None:
        self._items: Dict[str, _StoredItem] = {}
        self._terms: Dict[str, Counter] = {}
        for record in records:
            self._add(record)

    def __len__(self) -> int:
        return len(self._items)

    def _add(self, record: IndexRecord) -> None:
        self._items[record.id] = _StoredItem(id=record.id, text=record.text, metadata=dict(record.metadata))
        self._terms[record.id] = Counter(_tokenize(record.text))

    async def upsert(self, records: Sequence[IndexRecord]) -> None:
        for record in records:
            self._add(record)

    async def search(self, text: str, top_k: int) -> List[RetrievalMatch]:
        query_terms = set(_tokenize(text))
        if top_k <= 0 or not query_terms or not self._items:
            return []

        total = len(self._items)
        document_frequency = {
            term: sum(1 for counts in self._terms.values() if term in counts) for term in query_terms
        }
        scored: List[tuple[float, _StoredItem]] = []
        for item_id, item in self._items.items():
            counts = self._terms[item_id]
            score = 0.0
            for term in query_terms:
                frequency = counts.get(term, 0)
                if frequency:
                    idf = math.log(1.0 + total / document_frequency[term])
                    score += (1.0 + math.log(frequency)) * idf
            if score > 0:
                scored.append((score, item))

        scored.sort(key=lambda pair: pair[0], reverse=True)
        return [
            RetrievalMatch(id=item.id, score=score, metadata=dict(item.metadata))
            for score, item in scored[:top_k]
        ]


__all__ = ["InMemoryDenseStore", "InMemorySparseStore"]
