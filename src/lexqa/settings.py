"""Runtime configuration read from environment variables."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional

from lexqa.errors import ConfigurationError

LOGGER = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parents[2]


def _env_str(name: str, default: str | None = None) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    value = value.strip()
    return value or default


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        LOGGER.warning("Invalid integer for %s: %s; using default %s", name, value, default)
        return default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        LOGGER.warning("Invalid float for %s: %s; using default %s", name, value, default)
        return default


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() not in {"0", "false", "no", "off"}


def require_setting(value: str | None, env_name: str) -> str:
    """Return *value* or raise :class:`ConfigurationError` naming *env_name*."""

    if not value:
        raise ConfigurationError(f"Missing required env var: {env_name}")
    return value


@dataclass(frozen=True)
class Settings:
    """Typed view over the environment used by the service and the CLI."""

    vector_store: str = "mock"
    embedding_backend: str = "fallback"
    llm_backend: str = "openrouter"

    openai_api_key: str | None = None
    openai_base_url: str = "https://api.openai.com/v1"
    openai_embedding_model: str = "text-embedding-3-large"
    embedding_model_path: str = "sentence-transformers/all-MiniLM-L6-v2"
    embedding_timeout_s: float = 30.0

    pinecone_api_key: str | None = None
    pinecone_host: str | None = None
    pinecone_host_sparse: str | None = None
    pinecone_namespace: str = "default"
    chroma_persist_dir: str = "chroma_db"
    chroma_collection: str = "legal_chunks"

    openrouter_api_key: str | None = None
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    openrouter_model: str = "openai/gpt-4o-mini"
    openrouter_temperature: float = 0.2
    openrouter_timeout_ms: int = 60000
    openrouter_site_url: str | None = None
    openrouter_app_name: str | None = None
    structured_output: bool = True

    top_k: int = 8
    dense_top_k: int = 8
    sparse_top_k: int = 8
    history_max_messages: int = 12

    chunks_path: str = "data/chunks.jsonl"
    pdf_base_url: str = "/pdfs"
    embed_batch: int = 32
    citation_marker_start: str = "[["
    citation_marker_end: str = "]]"

    @classmethod
    def from_env(cls) -> "Settings":
        top_k = _env_int("RAG_TOP_K", 8)
        timeout_ms = _env_int("OPENROUTER_TIMEOUT_MS", 60000)
        if timeout_ms <= 0:
            LOGGER.warning("OPENROUTER_TIMEOUT_MS must be positive; using 60000")
            timeout_ms = 60000
        return cls(
            vector_store=(_env_str("VECTOR_STORE", "mock") or "mock").lower(),
            embedding_backend=(_env_str("EMBEDDING_BACKEND", "fallback") or "fallback").lower(),
            llm_backend=(_env_str("LLM_BACKEND", "openrouter") or "openrouter").lower(),
            openai_api_key=_env_str("OPENAI_API_KEY"),
            openai_base_url=_env_str("OPENAI_BASE_URL", cls.openai_base_url) or cls.openai_base_url,
            openai_embedding_model=_env_str("OPENAI_EMBEDDING_MODEL", cls.openai_embedding_model)
            or cls.openai_embedding_model,
            embedding_model_path=_env_str("EMBEDDING_MODEL_PATH", cls.embedding_model_path)
            or cls.embedding_model_path,
            embedding_timeout_s=_env_float("EMBEDDING_TIMEOUT_S", 30.0),
            pinecone_api_key=_env_str("PINECONE_API_KEY"),
            pinecone_host=_env_str("PINECONE_HOST"),
            pinecone_host_sparse=_env_str("PINECONE_HOST_SPARSE") or _env_str("PINECONE_HOST_PARSE"),
            pinecone_namespace=_env_str("PINECONE_NAMESPACE", "default") or "default",
            chroma_persist_dir=_env_str("CHROMA_PERSIST_DIR", "chroma_db") or "chroma_db",
            chroma_collection=_env_str("CHROMA_COLLECTION", "legal_chunks") or "legal_chunks",
            openrouter_api_key=_env_str("OPENROUTER_API_KEY"),
            openrouter_base_url=_env_str("OPENROUTER_BASE_URL", cls.openrouter_base_url)
            or cls.openrouter_base_url,
            openrouter_model=_env_str("OPENROUTER_MODEL", cls.openrouter_model) or cls.openrouter_model,
            openrouter_temperature=_env_float("OPENROUTER_TEMPERATURE", 0.2),
            openrouter_timeout_ms=timeout_ms,
            openrouter_site_url=_env_str("OPENROUTER_SITE_URL"),
            openrouter_app_name=_env_str("OPENROUTER_APP_NAME"),
            structured_output=_env_flag("OPENROUTER_STRUCTURED_OUTPUT", True),
            top_k=top_k,
            dense_top_k=_env_int("RAG_DENSE_TOP_K", top_k),
            sparse_top_k=_env_int("RAG_SPARSE_TOP_K", top_k),
            history_max_messages=_env_int("RAG_HISTORY_MAX_MESSAGES", 12),
            chunks_path=_env_str("CHUNKS_PATH", "data/chunks.jsonl") or "data/chunks.jsonl",
            pdf_base_url=_env_str("PDF_BASE_URL", "/pdfs") or "/pdfs",
            embed_batch=max(1, _env_int("EMBED_BATCH", 32)),
            citation_marker_start=_env_str("CITATION_MARKER_START", "[[") or "[[",
            citation_marker_end=_env_str("CITATION_MARKER_END", "]]") or "]]",
        )


def load_dotenv_files() -> None:
    """Load ``.env.local`` and ``.env`` without overriding the real environment."""

    from dotenv import load_dotenv

    for candidate in (
        PROJECT_ROOT / ".env.local",
        PROJECT_ROOT / ".env",
        Path.cwd() / ".env.local",
        Path.cwd() / ".env",
    ):
        if candidate.exists():
            load_dotenv(dotenv_path=candidate, override=False)


@lru_cache()
def get_settings() -> Settings:
    """Return the process-wide settings snapshot."""

    return Settings.from_env()


def reset_settings_cache() -> None:
    """Clear the cached settings (primarily for testing)."""

    get_settings.cache_clear()  # type: ignore[attr-defined]


__all__ = [
    "PROJECT_ROOT",
    "Settings",
    "get_settings",
    "load_dotenv_files",
    "require_setting",
    "reset_settings_cache",
]
