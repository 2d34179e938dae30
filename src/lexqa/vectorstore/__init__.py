"""Search index helpers backed by pluggable backends."""

from __future__ import annotations

import logging
from functools import lru_cache

from lexqa.errors import ConfigurationError, VectorStoreUnavailableError
from lexqa.settings import Settings, get_settings, require_setting

from .base import DenseVectorStore, IndexRecord, RetrievalMatch, SparseVectorStore
from .mock_store import InMemoryDenseStore, InMemorySparseStore

LOGGER = logging.getLogger(__name__)

SUPPORTED_BACKENDS = ("mock", "chroma", "pinecone")


def _local_sparse_store(settings: Settings) -> InMemorySparseStore:
    """Keyword index over the chunks file written at ingestion time."""

    from lexqa.local_index import LocalChunkIndex, resolve_chunks_path

    index = LocalChunkIndex(resolve_chunks_path(settings.chunks_path))
    records = [
        IndexRecord(
            id=item["chunk_id"],
            text=item.get("text") or "",
            metadata={key: value for key, value in item.items() if key not in {"chunk_id", "chunk_index"}},
        )
        for item in index
    ]
    LOGGER.info("Built in-memory keyword index over %s chunks", len(records))
    return InMemorySparseStore(records)


def build_dense_store(settings: Settings) -> DenseVectorStore:
    backend = settings.vector_store
    if backend == "mock":
        return InMemoryDenseStore()
    if backend == "chroma":
        from .chroma_store import ChromaDenseStore

        return ChromaDenseStore(settings.chroma_persist_dir, collection_name=settings.chroma_collection)
    if backend == "pinecone":
        from .pinecone_store import PineconeDenseStore

        return PineconeDenseStore(
            api_key=require_setting(settings.pinecone_api_key, "PINECONE_API_KEY"),
            host=require_setting(settings.pinecone_host, "PINECONE_HOST"),
            namespace=settings.pinecone_namespace,
        )
    raise ConfigurationError(f"Unsupported VECTOR_STORE backend: {backend!r}")


def build_sparse_store(settings: Settings) -> SparseVectorStore:
    backend = settings.vector_store
    if backend in {"mock", "chroma"}:
        return _local_sparse_store(settings)
    if backend == "pinecone":
        from .pinecone_store import PineconeSparseStore

        return PineconeSparseStore(
            api_key=require_setting(settings.pinecone_api_key, "PINECONE_API_KEY"),
            host=require_setting(settings.pinecone_host_sparse, "PINECONE_HOST_SPARSE"),
            namespace=settings.pinecone_namespace,
        )
    raise ConfigurationError(f"Unsupported VECTOR_STORE backend: {backend!r}")


@lru_cache()
def get_dense_store() -> DenseVectorStore:
    """Return the lazily initialised dense index selected by ``VECTOR_STORE``."""

    return build_dense_store(get_settings())


@lru_cache()
def get_sparse_store() -> SparseVectorStore:
    """Return the lazily initialised keyword index selected by ``VECTOR_STORE``."""

    return build_sparse_store(get_settings())


def reset_vector_store_cache() -> None:
    """Clear the cached stores (primarily for testing)."""

    get_dense_store.cache_clear()  # type: ignore[attr-defined]
    get_sparse_store.cache_clear()  # type: ignore[attr-defined]


__all__ = [
    "DenseVectorStore",
    "InMemoryDenseStore",
    "InMemorySparseStore",
    "IndexRecord",
    "RetrievalMatch",
    "SUPPORTED_BACKENDS",
    "SparseVectorStore",
    "VectorStoreUnavailableError",
    "build_dense_store",
    "build_sparse_store",
    "get_dense_store",
    "get_sparse_store",
    "reset_vector_store_cache",
]
