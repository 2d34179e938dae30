"""Records and interfaces shared by the dense and sparse search backends."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence


@dataclass(slots=True)
class RetrievalMatch:
    """One ranked hit. ``score`` is ranker-native and not comparable across rankers."""

    id: str
    score: Optional[float]
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class IndexRecord:
    """A chunk as written to the search indexes."""

    id: str
    text: str
    metadata: Dict[str, Any]
    vector: Optional[List[float]] = None


class DenseVectorStore:
    """Vector similarity index addressed by chunk id."""

    backend_name = "unknown"

    async def upsert(self, records: Sequence[IndexRecord]) -> None:
        raise NotImplementedError

    async def query(self, vector: Sequence[float], top_k: int) -> List[RetrievalMatch]:
        raise NotImplementedError

    async def fetch(self, record_id: str) -> Optional[RetrievalMatch]:
        raise NotImplementedError


class SparseVectorStore:
    """Lexical index queried with raw text."""

    backend_name = "unknown"

    async def upsert(self, records: Sequence[IndexRecord]) -> None:
        raise NotImplementedError

    async def search(self, text: str, top_k: int) -> List[RetrievalMatch]:
        raise NotImplementedError


__all__ = ["DenseVectorStore", "IndexRecord", "RetrievalMatch", "SparseVectorStore"]
