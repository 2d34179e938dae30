import logging
from typing import Any, Callable, TypeVar

from fastapi import FastAPI, HTTPException
from fastapi.responses import PlainTextResponse

from lexqa.api.chat import router as chat_router
from lexqa.embeddings import get_embedding_model
from lexqa.errors import ConfigurationError, VectorStoreUnavailableError
from lexqa.logging_config import configure_logging
from lexqa.settings import get_settings, load_dotenv_files
from lexqa.telemetry import log_event
from lexqa.vectorstore import get_dense_store, get_sparse_store

load_dotenv_files()
configure_logging()

LOGGER = logging.getLogger(__name__)

app = FastAPI(title="lexqa")
app.include_router(chat_router)


@app.on_event("startup")
async def _log_startup() -> None:
    settings = get_settings()
    log_event(
        LOGGER,
        "app.startup",
        details={
            "vector_store": settings.vector_store,
            "embedding_backend": settings.embedding_backend,
            "llm_backend": settings.llm_backend,
            "top_k": settings.top_k,
        },
    )


T = TypeVar("T")


def _resolve_dependency(factory: Callable[[], T]) -> T:
    """Resolve a dependency while respecting FastAPI overrides."""

    override: Any | None = app.dependency_overrides.get(factory)
    resolved: Any = override if override is not None else factory
    return resolved() if callable(resolved) else resolved


@app.get("/", response_class=PlainTextResponse)
def read_root() -> str:
    """Healthcheck endpoint for the service."""
    return "ok"


@app.get("/healthz", response_class=PlainTextResponse)
def healthcheck() -> str:
    """Liveness probe used by container orchestrators."""
    return "ok"


@app.get("/readyz", response_class=PlainTextResponse)
def readiness_probe() -> str:
    """Readiness probe that ensures the configured backends can be constructed."""

    errors: list[str] = []
    for name, factory in (
        ("embedding_model", get_embedding_model),
        ("dense_store", get_dense_store),
        ("sparse_store", get_sparse_store),
    ):
        try:
            _resolve_dependency(factory)
        except (ConfigurationError, VectorStoreUnavailableError, OSError) as exc:
            errors.append(f"{name}_unavailable: {exc}")

    if errors:
        raise HTTPException(status_code=503, detail="; ".join(errors))
    return "ok"
