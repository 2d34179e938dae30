"""Chroma vector store adapter."""
from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence

import chromadb

from lexqa.errors import VectorStoreUnavailableError

from .base import DenseVectorStore, IndexRecord, RetrievalMatch

if TYPE_CHECKING:  # pragma: no cover - import for typing only
    from chromadb.api import ClientAPI
    from chromadb.api.models.Collection import Collection

DEFAULT_COLLECTION_NAME = "legal_chunks"
DEFAULT_DISTANCE_METRIC = "cosine"

# Chroma metadata values must be scalars.
_JSON_ENCODED_KEYS = ("element_ids",)


def _flatten_metadata(metadata: Dict[str, Any]) -> Dict[str, Any]:
    flattened: Dict[str, Any] = {}
    for key, value in metadata.items():
        if value is None:
            continue
        if isinstance(value, (list, tuple, dict)):
            flattened[key] = json.dumps(value, ensure_ascii=False)
        else:
            flattened[key] = value
    return flattened


def _restore_metadata(metadata: Optional[Dict[str, Any]], document: Optional[str]) -> Dict[str, Any]:
    restored = dict(metadata or {})
    for key in _JSON_ENCODED_KEYS:
        value = restored.get(key)
        if isinstance(value, str):
            try:
                restored[key] = json.loads(value)
            except json.JSONDecodeError:
                pass
    if document is not None:
        restored.setdefault("text", document)
    return restored


class ChromaDenseStore(DenseVectorStore):
    """Persistent Chroma collection using cosine distance.

    Chroma's client is synchronous, so every call is moved to a worker thread.
    Scores are reported as ``1 - distance``.
    """

    backend_name = "chroma"

    def __init__(
        self,
        persist_dir: str | Path,
        *,
        collection_name: str = DEFAULT_COLLECTION_NAME,
        client: Optional["ClientAPI"] = None,
    ) -> None:
        self.persist_dir = Path(persist_dir)
        self.collection_name = collection_name
        try:
            if client is None:
                self.persist_dir.mkdir(parents=True, exist_ok=True)
                client = chromadb.PersistentClient(path=str(self.persist_dir))
            self._client = client
            self._collection: "Collection" = self._client.get_or_create_collection(
                name=collection_name,
                metadata={"hnsw:space": DEFAULT_DISTANCE_METRIC},
            )
        except Exception as exc:  # pragma: no cover - depends on chromadb runtime
            raise VectorStoreUnavailableError("Failed to initialise Chroma collection", cause=exc) from exc

    async def upsert(self, records: Sequence[IndexRecord]) -> None:
        if not records:
            return
        for record in records:
            if record.vector is None:
                raise ValueError(f"Record {record.id} has no vector")
        await self._call(
            self._collection.upsert,
            ids=[record.id for record in records],
            embeddings=[list(map(float, record.vector or [])) for record in records],
            documents=[record.text for record in records],
            metadatas=[_flatten_metadata(record.metadata) for record in records],
        )

    async def query(self, vector: Sequence[float], top_k: int) -> List[RetrievalMatch]:
        if top_k <= 0:
            return []
        count = await self._call(self._collection.count)
        if not count:
            return []
        result = await self._call(
            self._collection.query,
            query_embeddings=[list(map(float, vector))],
            n_results=min(top_k, count),
            include=["metadatas", "documents", "distances"],
        )

        ids = (result.get("ids") or [[]])[0]
        documents = (result.get("documents") or [[]])[0]
        metadatas = (result.get("metadatas") or [[]])[0]
        distances = (result.get("distances") or [[]])[0]

        matches: List[RetrievalMatch] = []
        for record_id, document, metadata, distance in zip(ids, documents, metadatas, distances):
            score = 1.0 - float(distance) if distance is not None else None
            matches.append(
                RetrievalMatch(id=record_id, score=score, metadata=_restore_metadata(metadata, document))
            )
        return matches

    async def fetch(self, record_id: str) -> Optional[RetrievalMatch]:
        result = await self._call(self._collection.get, ids=[record_id], include=["metadatas", "documents"])
        ids = result.get("ids") or []
        if not ids:
            return None
        documents = result.get("documents") or [None]
        metadatas = result.get("metadatas") or [None]
        return RetrievalMatch(id=ids[0], score=None, metadata=_restore_metadata(metadatas[0], documents[0]))

    async def _call(self, func: Any, *args: Any, **kwargs: Any) -> Any:
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except VectorStoreUnavailableError:
            raise
        except Exception as exc:
            raise VectorStoreUnavailableError(f"Chroma {getattr(func, '__name__', 'call')} failed", cause=exc) from exc


__all__ = ["ChromaDenseStore", "DEFAULT_COLLECTION_NAME"]
