"""API router exposing the chat, plain-chat and chunk lookup endpoints."""
from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field

from lexqa.errors import InvalidRequestError
from lexqa.services.rag import RAGService, get_rag_service

LOGGER = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["chat"])


class ChatRequest(BaseModel):
    """Request body accepted by the chat endpoint."""

    messages: list[Any] = Field(default_factory=list, description="Conversation so far, oldest first.")
    retrievalMode: str = Field("hybrid", description="One of dense, sparse or hybrid.")
    stream: bool = Field(False, description="Return newline-delimited JSON events instead of one object.")


class PlainChatRequest(BaseModel):
    messages: list[Any] = Field(default_factory=list)


class CitationModel(BaseModel):
    chunk_id: str
    doc_id: Optional[str] = None
    page: Optional[int] = None
    para_start: Optional[int] = None
    para_end: Optional[int] = None
    section_path: Optional[str] = None
    source_url: Optional[str] = None


class ChatResponse(BaseModel):
    """Response payload for the chat endpoint."""

    answer: str
    citations: list[CitationModel]


class PlainChatResponse(BaseModel):
    answer: str


class ChunkResponse(BaseModel):
    chunk_id: str
    doc_id: Optional[str] = None
    doc_title: Optional[str] = None
    page_start: Optional[int] = None
    page_end: Optional[int] = None
    para_start: Optional[int] = None
    para_end: Optional[int] = None
    section_path: Optional[str] = None
    source_url: Optional[str] = None
    content_type: Optional[str] = None
    text: str = ""


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


async def _ndjson(events: AsyncIterator[dict[str, Any]]) -> AsyncIterator[str]:
    async for event in events:
        yield json.dumps(event, ensure_ascii=False) + "\n"


@router.post("/chat", response_model=ChatResponse)
async def chat(request: ChatRequest, rag_service: RAGService = Depends(get_rag_service)) -> Any:
    """Answer the latest user question from the retrieved sources."""

    try:
        query = rag_service.prepare(request.messages)
        mode = rag_service.validate_mode(request.retrievalMode)
    except InvalidRequestError as exc:
        return error_response(400, str(exc))

    if request.stream:
        return StreamingResponse(
            _ndjson(rag_service.stream_answer(query, mode)),
            media_type="application/x-ndjson",
        )

    try:
        result = await rag_service.answer(query, mode)
    except InvalidRequestError as exc:
        return error_response(400, str(exc))
    except Exception as exc:
        LOGGER.exception("Chat request failed")
        return error_response(500, str(exc) or "Unexpected error")
    return ChatResponse(**result.to_dict())


@router.post("/test-chat", response_model=PlainChatResponse)
async def test_chat(request: PlainChatRequest, rag_service: RAGService = Depends(get_rag_service)) -> Any:
    """Talk to the completion model directly, without retrieval."""

    try:
        answer = await rag_service.chat(request.messages)
    except InvalidRequestError as exc:
        return error_response(400, str(exc))
    except Exception as exc:
        LOGGER.exception("Plain chat request failed")
        return error_response(500, str(exc) or "Unexpected error")
    return PlainChatResponse(answer=answer)


@router.get("/chunk", response_model=ChunkResponse)
async def get_chunk(
    chunk_id: Optional[str] = Query(None, alias="id"),
    rag_service: RAGService = Depends(get_rag_service),
) -> Any:
    """Return one chunk's provenance and text."""

    if not chunk_id:
        return error_response(400, "Missing chunk id")
    try:
        record = await rag_service.get_chunk(chunk_id)
    except Exception as exc:
        LOGGER.exception("Chunk lookup failed")
        return error_response(500, str(exc) or "Unexpected error")
    if record is None:
        return error_response(404, "Chunk not found")
    return ChunkResponse(**record)


__all__ = ["router"]
