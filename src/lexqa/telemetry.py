"""Centralised observability helpers for structured lifecycle logging."""

from __future__ import annotations

import logging
import time
import traceback
from contextlib import contextmanager
from typing import Any, Iterable, Iterator, Optional

LOGGER = logging.getLogger("lexqa.telemetry")

_PREVIEW_CHARS = 120


def _format_exception(error: BaseException) -> str:
    return "".join(traceback.format_exception(error.__class__, error, error.__traceback__))


def log_event(
    logger: Optional[logging.Logger],
    step: str,
    *,
    level: str = "info",
    req_id: str | None = None,
    duration_ms: float | None = None,
    exc: BaseException | str | None = None,
    details: dict[str, Any] | None = None,
    **payload: Any,
) -> None:
    """Emit a structured log event with the agreed-upon schema."""

    logger = logger or LOGGER
    event: dict[str, Any] = {"step": step, "module": logger.name}
    if req_id:
        event["req_id"] = req_id
    if duration_ms is not None:
        event["duration_ms"] = round(duration_ms, 3)
    if details is not None:
        event["details"] = details
    event.update(payload)

    exc_info = None
    if exc is not None:
        if isinstance(exc, BaseException):
            event["exc"] = _format_exception(exc)
            exc_info = (exc.__class__, exc, exc.__traceback__)
        else:
            event["exc"] = str(exc)

    log_method = getattr(logger, level.lower(), logger.info)
    log_method(event, exc_info=exc_info)


def emit_ingest_event(
    step: str,
    *,
    file_name: str,
    doc_id: str | None = None,
    duration_ms: float | None = None,
    elements: int | None = None,
    content_items: int | None = None,
    chunks: int | None = None,
    error: BaseException | None = None,
) -> None:
    details = {
        "file": file_name,
        "doc_id": doc_id,
        "elements": elements,
        "content_items": content_items,
        "chunks": chunks,
    }
    level = "error" if error else "info"
    log_event(LOGGER, step, level=level, duration_ms=duration_ms, details=details, exc=error)


def emit_embeddings_event(
    *, model: str, count: int, duration_ms: float, errors: list[str] | None = None
) -> None:
    details = {
        "model": model,
        "count": count,
        "errors": errors or [],
        "per_item_ms": round(duration_ms / count, 3) if count else None,
    }
    log_event(LOGGER, "embeddings.compute", duration_ms=duration_ms, details=details)


def emit_vectorstore_event(
    step: str,
    *,
    backend: str,
    index: str,
    count: int,
    duration_ms: float | None = None,
    error: BaseException | None = None,
) -> None:
    details = {"backend": backend, "index": index, "count": count}
    level = "error" if error else "info"
    log_event(LOGGER, step, level=level, duration_ms=duration_ms, details=details, exc=error)


def emit_upstream_error(*, service: str, status: int | None, body: str) -> None:
    details = {"service": service, "status": status, "body": body[:2000]}
    log_event(LOGGER, "upstream.error", level="error", details=details)


def emit_retriever_event(
    *,
    req_id: str | None,
    query: str,
    mode: str,
    dense_ids: list[str] | None,
    sparse_ids: list[str] | None,
    final_ids: list[str],
    duration_ms: float,
) -> None:
    details = {
        "query_preview": query[:_PREVIEW_CHARS],
        "mode": mode,
        "dense": {"count": len(dense_ids), "ids": dense_ids} if dense_ids is not None else None,
        "sparse": {"count": len(sparse_ids), "ids": sparse_ids} if sparse_ids is not None else None,
        "final": {"count": len(final_ids), "ids": final_ids},
    }
    log_event(LOGGER, "retriever.search", req_id=req_id, duration_ms=duration_ms, details=details)


def emit_prompt_event(
    *,
    req_id: str | None,
    system_prompt: str,
    sources: Iterable[str],
    history_messages: int,
    sources_chars: int,
) -> None:
    details = {
        "system_prompt_preview": system_prompt[:_PREVIEW_CHARS],
        "sources": list(sources),
        "history_messages": history_messages,
        "sources_chars": sources_chars,
    }
    log_event(LOGGER, "prompt.compose", req_id=req_id, details=details)


def emit_inference_request(
    *,
    req_id: str,
    model: str,
    temperature: float,
    structured: bool,
    stream: bool,
    message_count: int,
) -> None:
    details = {
        "model": model,
        "temperature": temperature,
        "structured": structured,
        "stream": stream,
        "message_count": message_count,
    }
    log_event(LOGGER, "inference.request", req_id=req_id, details=details)


def emit_inference_result(
    *,
    req_id: str,
    duration_ms: float,
    model_used: str,
    structured: bool,
    raw_preview: str,
    fallback: bool,
    citations: int | None = None,
) -> None:
    details = {
        "model_used": model_used,
        "structured": structured,
        "raw_preview": raw_preview[:_PREVIEW_CHARS],
        "fallback": fallback,
        "citations": citations,
    }
    log_event(LOGGER, "inference.result", req_id=req_id, duration_ms=duration_ms, details=details)


def emit_exception(
    *,
    module: str,
    error: BaseException,
    req_id: str | None = None,
    suggestion: str | None = None,
) -> None:
    details = {"module": module}
    if suggestion:
        details["suggestion"] = suggestion
    log_event(
        LOGGER,
        "exception",
        level="error",
        req_id=req_id,
        details=details,
        exc=error,
    )


@contextmanager
def traced_duration(step: str, *, logger: Optional[logging.Logger] = None, **fields: Any) -> Iterator[None]:
    start = time.perf_counter()
    log_event(logger or LOGGER, f"{step}.start", details=fields)
    try:
        yield
    except Exception as error:
        log_event(logger or LOGGER, f"{step}.error", level="error", details=fields, exc=error)
        raise
    finally:
        end = time.perf_counter()
        log_event(
            logger or LOGGER,
            f"{step}.complete",
            duration_ms=(end - start) * 1000.0,
            details=fields,
        )


__all__ = [
    "emit_embeddings_event",
    "emit_exception",
    "emit_inference_request",
    "emit_inference_result",
    "emit_ingest_event",
    "emit_prompt_event",
    "emit_retriever_event",
    "emit_upstream_error",
    "emit_vectorstore_event",
    "log_event",
    "traced_duration",
]
