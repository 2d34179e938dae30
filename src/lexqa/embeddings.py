"""Embedding backends: OpenAI over HTTP, local Sentence Transformers, deterministic fallback."""
from __future__ import annotations

import asyncio
import hashlib
import logging
import random
import time
from functools import lru_cache
from typing import Any, List, Optional, Sequence

import httpx

from lexqa.errors import ConfigurationError, UpstreamServiceError
from lexqa.settings import Settings, get_settings, require_setting
from lexqa.telemetry import emit_embeddings_event, emit_upstream_error

LOGGER = logging.getLogger(__name__)

FALLBACK_DIMENSION = 384


class EmbeddingModel:
    """Common interface for the embedding backends."""

    model_name: str = "unknown"

    async def embed_texts(self, texts: Sequence[str]) -> List[List[float]]:
        if not texts:
            return []
        started = time.perf_counter()
        try:
            embeddings = await self._embed(list(texts))
        except Exception as error:
            emit_embeddings_event(
                model=self.model_name,
                count=len(texts),
                duration_ms=(time.perf_counter() - started) * 1000.0,
                errors=[str(error)],
            )
            raise

        emit_embeddings_event(
            model=self.model_name,
            count=len(texts),
            duration_ms=(time.perf_counter() - started) * 1000.0,
        )
        return embeddings

    async def embed_query(self, text: str) -> List[float]:
        embeddings = await self.embed_texts([text])
        return embeddings[0]

    async def _embed(self, texts: List[str]) -> List[List[float]]:
        raise NotImplementedError


class DeterministicEmbeddingModel(EmbeddingModel):
    """Hash-seeded vectors for offline runs and tests.

    Identical texts map to identical vectors; nothing else is meaningful.
    """

    model_name = "deterministic-fallback"

    def __init__(self, dimension: int = FALLBACK_DIMENSION) -> None:
        self.dimension = dimension

    async def _embed(self, texts: List[str]) -> List[List[float]]:
        return [self._vector(text) for text in texts]

    def _vector(self, text: str) -> List[float]:
        seed = int.from_bytes(hashlib.sha256(text.encode("utf-8")).digest(), "big")
        rng = random.Random(seed)
        return [rng.uniform(-1.0, 1.0) for _ in range(self.dimension)]


class SentenceTransformerEmbeddingModel(EmbeddingModel):
    """Local ``sentence-transformers`` model; encoding runs in a worker thread."""

    def __init__(self, model_name_or_path: str, *, device: str | None = None) -> None:
        from sentence_transformers import SentenceTransformer

        self.model_name = model_name_or_path
        self._model = SentenceTransformer(model_name_or_path, device=device)
        self.dimension = int(self._model.get_sentence_embedding_dimension())

    async def _embed(self, texts: List[str]) -> List[List[float]]:
        return await asyncio.to_thread(self._encode, texts)

    def _encode(self, texts: List[str]) -> List[List[float]]:
        embeddings = self._model.encode(
            texts,
            convert_to_numpy=True,
            show_progress_bar=False,
            normalize_embeddings=False,
        )
        return embeddings.tolist()


class OpenAIEmbeddingModel(EmbeddingModel):
    """Client for the OpenAI ``/embeddings`` endpoint."""

    def __init__(
        self,
        *,
        api_key: str,
        model: str,
        base_url: str = "https://api.openai.com/v1",
        timeout_s: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.model_name = model
        self._api_key = api_key
        self._url = f"{base_url.rstrip('/')}/embeddings"
        self._timeout_s = timeout_s
        self._client = client

    async def _embed(self, texts: List[str]) -> List[List[float]]:
        payload = {"model": self.model_name, "input": texts}
        headers = {"Authorization": f"Bearer {self._api_key}"}
        try:
            if self._client is not None:
                response = await self._client.post(self._url, json=payload, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=self._timeout_s) as client:
                    response = await client.post(self._url, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            raise UpstreamServiceError("OpenAI embeddings", None, f"request failed: {exc}") from exc

        if response.status_code >= 400:
            emit_upstream_error(service="OpenAI embeddings", status=response.status_code, body=response.text)
            raise UpstreamServiceError("OpenAI embeddings", response.status_code, response.text)

        data: dict[str, Any] = response.json()
        items = sorted(data.get("data") or [], key=lambda item: item.get("index", 0))
        embeddings = [list(map(float, item["embedding"])) for item in items]
        if len(embeddings) != len(texts):
            raise UpstreamServiceError(
                "OpenAI embeddings",
                response.status_code,
                f"expected {len(texts)} embeddings, got {len(embeddings)}",
            )
        return embeddings


def build_embedding_model(settings: Settings) -> EmbeddingModel:
    backend = settings.embedding_backend
    if backend == "fallback":
        return DeterministicEmbeddingModel()
    if backend == "local":
        LOGGER.info("Loading sentence-transformers model %s", settings.embedding_model_path)
        return SentenceTransformerEmbeddingModel(settings.embedding_model_path)
    if backend == "openai":
        return OpenAIEmbeddingModel(
            api_key=require_setting(settings.openai_api_key, "OPENAI_API_KEY"),
            model=settings.openai_embedding_model,
            base_url=settings.openai_base_url,
            timeout_s=settings.embedding_timeout_s,
        )
    raise ConfigurationError(f"Unsupported EMBEDDING_BACKEND: {backend!r}")


@lru_cache()
def get_embedding_model() -> EmbeddingModel:
    """Return a cached embedding model instance."""

    return build_embedding_model(get_settings())


def reset_embedding_model_cache() -> None:
    """Clear the cached embedding model instance (primarily for testing)."""

    get_embedding_model.cache_clear()  # type: ignore[attr-defined]


__all__ = [
    "DeterministicEmbeddingModel",
    "EmbeddingModel",
    "FALLBACK_DIMENSION",
    "OpenAIEmbeddingModel",
    "SentenceTransformerEmbeddingModel",
    "build_embedding_model",
    "get_embedding_model",
    "reset_embedding_model_cache",
]
