"""Shared fixtures: offline backends and fresh caches for every test."""
from __future__ import annotations

import pytest

from lexqa.embeddings import reset_embedding_model_cache
from lexqa.llm_provider import reset_chat_model_cache
from lexqa.local_index import reset_local_index_cache
from lexqa.prompt_builder import load_system_prompt, load_user_template
from lexqa.services.rag import reset_rag_service_cache
from lexqa.settings import reset_settings_cache
from lexqa.vectorstore import reset_vector_store_cache


def _reset_caches() -> None:
    reset_settings_cache()
    reset_embedding_model_cache()
    reset_chat_model_cache()
    reset_vector_store_cache()
    reset_local_index_cache()
    reset_rag_service_cache()
    load_system_prompt.cache_clear()
    load_user_template.cache_clear()


@pytest.fixture(autouse=True)
def offline_environment(monkeypatch, tmp_path):
    monkeypatch.setenv("VECTOR_STORE", "mock")
    monkeypatch.setenv("EMBEDDING_BACKEND", "fallback")
    monkeypatch.setenv("LLM_BACKEND", "stub")
    monkeypatch.setenv("LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("CHUNKS_PATH", str(tmp_path / "chunks.jsonl"))
    for name in ("RAG_TOP_K", "RAG_DENSE_TOP_K", "RAG_SPARSE_TOP_K", "RAG_HISTORY_MAX_MESSAGES"):
        monkeypatch.delenv(name, raising=False)
    _reset_caches()
    yield
    _reset_caches()


def _element(
    element_id: str,
    type_: str,
    text: str,
    *,
    page: int | None = 1,
    parent_id: str | None = None,
    filename: str | None = "contract.pdf",
) -> dict:
    """Build one element in the document parser's JSON shape."""

    metadata: dict = {"filename": filename}
    if page is not None:
        metadata["page_number"] = page
    if parent_id is not None:
        metadata["parent_id"] = parent_id
    return {"element_id": element_id, "type": type_, "text": text, "metadata": metadata}


@pytest.fixture
def make_element():
    return _element
