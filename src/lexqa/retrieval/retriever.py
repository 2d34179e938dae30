"""Dense, sparse and hybrid retrieval over the configured search indexes."""
from __future__ import annotations

import asyncio
import logging
import time
from typing import List, Optional

from lexqa.embeddings import EmbeddingModel, get_embedding_model
from lexqa.settings import Settings, get_settings
from lexqa.telemetry import emit_retriever_event
from lexqa.vectorstore import (
    DenseVectorStore,
    RetrievalMatch,
    SparseVectorStore,
    get_dense_store,
    get_sparse_store,
)

from .fusion import reciprocal_rank_fusion

LOGGER = logging.getLogger(__name__)

RETRIEVAL_MODES = ("dense", "sparse", "hybrid")


class HybridRetriever:
    """Run one retrieval mode; hybrid queries both indexes concurrently and fuses them."""

    def __init__(
        self,
        *,
        embedding_model: Optional[EmbeddingModel] = None,
        dense_store: Optional[DenseVectorStore] = None,
        sparse_store: Optional[SparseVectorStore] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._embedding_model = embedding_model
        self._dense_store = dense_store
        self._sparse_store = sparse_store

    @property
    def embedding_model(self) -> EmbeddingModel:
        if self._embedding_model is None:
            self._embedding_model = get_embedding_model()
        return self._embedding_model

    @property
    def dense_store(self) -> DenseVectorStore:
        if self._dense_store is None:
            self._dense_store = get_dense_store()
        return self._dense_store

    @property
    def sparse_store(self) -> SparseVectorStore:
        if self._sparse_store is None:
            self._sparse_store = get_sparse_store()
        return self._sparse_store

    async def dense(self, question: str) -> List[RetrievalMatch]:
        vector = await self.embedding_model.embed_query(question)
        return await self.dense_store.query(vector, self._settings.dense_top_k)

    async def sparse(self, question: str) -> List[RetrievalMatch]:
        return await self.sparse_store.search(question, self._settings.sparse_top_k)

    async def retrieve(self, question: str, mode: str = "hybrid", *, req_id: str | None = None) -> List[RetrievalMatch]:
        if mode not in RETRIEVAL_MODES:
            raise ValueError(f"Unsupported retrieval mode: {mode!r}")

        started = time.perf_counter()
        dense_matches: Optional[List[RetrievalMatch]] = None
        sparse_matches: Optional[List[RetrievalMatch]] = None

        if mode == "dense":
            dense_matches = await self.dense(question)
            matches = dense_matches
        elif mode == "sparse":
            sparse_matches = await self.sparse(question)
            matches = sparse_matches
        else:
            dense_matches, sparse_matches = await asyncio.gather(self.dense(question), self.sparse(question))
            matches = reciprocal_rank_fusion(dense_matches, sparse_matches, self._settings.top_k)

        emit_retriever_event(
            req_id=req_id,
            query=question,
            mode=mode,
            dense_ids=[match.id for match in dense_matches] if dense_matches is not None else None,
            sparse_ids=[match.id for match in sparse_matches] if sparse_matches is not None else None,
            final_ids=[match.id for match in matches],
            duration_ms=(time.perf_counter() - started) * 1000.0,
        )
        return matches


__all__ = ["HybridRetriever", "RETRIEVAL_MODES"]
