"""Tests for the embedding backends."""
from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from lexqa.embeddings import (
    DeterministicEmbeddingModel,
    OpenAIEmbeddingModel,
    SentenceTransformerEmbeddingModel,
    build_embedding_model,
    get_embedding_model,
)
from lexqa.errors import ConfigurationError, UpstreamServiceError
from lexqa.settings import Settings


def test_deterministic_model_is_stable_per_text() -> None:
    model = DeterministicEmbeddingModel(dimension=12)

    first, second, again = asyncio.run(model.embed_texts(["rent", "deposit", "rent"]))

    assert len(first) == 12
    assert first == again
    assert first != second
    assert asyncio.run(model.embed_texts([])) == []
    assert asyncio.run(model.embed_query("rent")) == first


def test_default_backend_is_cached_fallback() -> None:
    model = get_embedding_model()

    assert isinstance(model, DeterministicEmbeddingModel)
    assert get_embedding_model() is model


def test_openai_backend_requires_api_key() -> None:
    with pytest.raises(ConfigurationError, match="OPENAI_API_KEY"):
        build_embedding_model(Settings(embedding_backend="openai"))
    with pytest.raises(ConfigurationError):
        build_embedding_model(Settings(embedding_backend="word2vec"))


def test_openai_model_orders_embeddings_by_index() -> None:
    seen: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append({"url": str(request.url), "auth": request.headers["Authorization"], "body": json.loads(request.content)})
        return httpx.Response(
            200,
            json={"data": [{"index": 1, "embedding": [0, 1]}, {"index": 0, "embedding": [1, 0]}]},
        )

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    model = OpenAIEmbeddingModel(api_key="sk-test", model="text-embedding-3-large", client=client)

    vectors = asyncio.run(model.embed_texts(["first", "second"]))

    assert vectors == [[1.0, 0.0], [0.0, 1.0]]
    assert seen[0]["url"] == "https://api.openai.com/v1/embeddings"
    assert seen[0]["auth"] == "Bearer sk-test"
    assert seen[0]["body"] == {"model": "text-embedding-3-large", "input": ["first", "second"]}


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(429, text="rate limited"),
        httpx.Response(200, json={"data": [{"index": 0, "embedding": [1, 0]}]}),
    ],
)
def test_openai_model_failures_raise_upstream_error(response: httpx.Response) -> None:
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: response))
    model = OpenAIEmbeddingModel(api_key="sk-test", model="m", client=client)

    with pytest.raises(UpstreamServiceError):
        asyncio.run(model.embed_texts(["first", "second"]))


def test_sentence_transformer_model_encodes_in_thread(monkeypatch) -> None:
    class _Array(list):
        def tolist(self):
            return list(self)

    class _FakeSentenceTransformer:
        def __init__(self, name: str, device=None) -> None:
            self.name = name

        def get_sentence_embedding_dimension(self) -> int:
            return 2

        def encode(self, texts, **kwargs):
            return _Array([[float(len(text)), 1.0] for text in texts])

    monkeypatch.setattr("sentence_transformers.SentenceTransformer", _FakeSentenceTransformer)

    model = SentenceTransformerEmbeddingModel("local-model")

    assert model.dimension == 2
    assert asyncio.run(model.embed_texts(["abc"])) == [[3.0, 1.0]]
