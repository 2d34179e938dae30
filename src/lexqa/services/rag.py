"""Query orchestration: history handling, retrieval, generation and citation checks."""
from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Sequence, Tuple

from lexqa.citations import Citation, parse_model_answer, validate_citations
from lexqa.errors import InvalidRequestError
from lexqa.llm_provider import ChatModel, LLMGenerationError, get_chat_model, is_schema_rejection
from lexqa.local_index import LocalChunkIndex, get_local_index, normalize_chunk_record
from lexqa.logging_config import AUDIT_LOGGER_NAME
from lexqa.prompt_builder import ChatHistoryMessage, build_messages, build_sources, load_system_prompt, response_format
from lexqa.retrieval import RETRIEVAL_MODES, HybridRetriever
from lexqa.settings import Settings, get_settings
from lexqa.streaming import AnswerStreamExtractor, CitationMarkerFilter, strip_citation_markers
from lexqa.telemetry import (
    emit_exception,
    emit_inference_request,
    emit_inference_result,
    emit_prompt_event,
)
from lexqa.vectorstore import DenseVectorStore, RetrievalMatch, get_dense_store

LOGGER = logging.getLogger(__name__)
AUDIT_LOGGER = logging.getLogger(AUDIT_LOGGER_NAME)

NO_MATCHES_ANSWER = "I could not find anything relevant in the provided sources."
UNSUPPORTED_ANSWER = "I could not extract a supported answer from the sources."
PLAIN_CHAT_SYSTEM_PROMPT = "You are a helpful assistant."

_CHAT_ROLES = ("user", "assistant")


@dataclass(slots=True)
class PreparedQuery:
    """The current question and the history turns that precede it."""

    question: str
    history: List[ChatHistoryMessage] = field(default_factory=list)


@dataclass(slots=True)
class AnswerResult:
    """Structured result returned from :meth:`RAGService.answer`."""

    answer: str
    citations: List[Citation] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"answer": self.answer, "citations": [citation.to_dict() for citation in self.citations]}


def _field(message: Any, name: str) -> Any:
    if isinstance(message, Mapping):
        return message.get(name)
    return getattr(message, name, None)


class RAGService:
    """High level orchestration for the grounded question-answering workflow."""

    def __init__(
        self,
        *,
        retriever: Optional[HybridRetriever] = None,
        chat_model: Optional[ChatModel] = None,
        dense_store: Optional[DenseVectorStore] = None,
        local_index: Optional[LocalChunkIndex] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._retriever = retriever
        self._chat_model = chat_model
        self._dense_store = dense_store
        self._local_index = local_index

    @property
    def retriever(self) -> HybridRetriever:
        if self._retriever is None:
            self._retriever = HybridRetriever(settings=self._settings)
        return self._retriever

    @property
    def chat_model(self) -> ChatModel:
        if self._chat_model is None:
            self._chat_model = get_chat_model()
        return self._chat_model

    def prepare(self, messages: Sequence[Any]) -> PreparedQuery:
        """Split the client's messages into the current question and its history.

        Only ``user``/``assistant`` turns with non-empty text are kept. History is
        what precedes the last user turn, trimmed to the most recent
        ``history_max_messages`` entries (``0`` disables history).
        """

        normalized: List[ChatHistoryMessage] = []
        for message in messages or []:
            role = _field(message, "role")
            content = _field(message, "content")
            if role not in _CHAT_ROLES or not isinstance(content, str) or not content.strip():
                continue
            citations = _field(message, "citations") if role == "assistant" else None
            normalized.append(
                ChatHistoryMessage(role=role, content=content.strip(), citations=list(citations or []))
            )

        last_user = next(
            (index for index in range(len(normalized) - 1, -1, -1) if normalized[index].role == "user"),
            None,
        )
        if last_user is None:
            raise InvalidRequestError("Missing user message")

        limit = self._settings.history_max_messages
        history = normalized[:last_user][-limit:] if limit > 0 else []
        return PreparedQuery(question=normalized[last_user].content, history=history)

    @staticmethod
    def validate_mode(mode: str) -> str:
        if mode not in RETRIEVAL_MODES:
            raise InvalidRequestError(f"Unsupported retrieval mode: {mode}")
        return mode

    async def _retrieve(self, query: PreparedQuery, mode: str, req_id: str) -> List[RetrievalMatch]:
        return await self.retriever.retrieve(query.question, self.validate_mode(mode), req_id=req_id)

    def _compose(self, query: PreparedQuery, matches: Sequence[RetrievalMatch], req_id: str) -> List[Dict[str, str]]:
        system_prompt = load_system_prompt()
        messages = build_messages(query.question, matches, query.history, system_prompt=system_prompt)
        emit_prompt_event(
            req_id=req_id,
            system_prompt=system_prompt,
            sources=[match.id for match in matches],
            history_messages=len(query.history),
            sources_chars=len(build_sources(matches)),
        )
        return messages

    def _finalize(self, raw: str, matches: Sequence[RetrievalMatch]) -> AnswerResult:
        answer, citation_ids = parse_model_answer(raw)
        answer = strip_citation_markers(
            answer,
            self._settings.citation_marker_start,
            self._settings.citation_marker_end,
        ).strip()
        citations = validate_citations(citation_ids, matches)
        return AnswerResult(answer=answer or UNSUPPORTED_ANSWER, citations=citations)

    async def _complete(self, messages: List[Dict[str, str]], req_id: str) -> Tuple[str, bool]:
        """Request the answer once, retrying without the JSON schema if it was rejected."""

        structured = self._settings.structured_output
        model = self.chat_model
        emit_inference_request(
            req_id=req_id,
            model=model.model_name,
            temperature=model.temperature,
            structured=structured,
            stream=False,
            message_count=len(messages),
        )
        try:
            raw = await model.complete(messages, response_format=response_format() if structured else None)
            return raw, structured
        except LLMGenerationError as error:
            if not structured or not is_schema_rejection(error):
                raise
            LOGGER.warning("Structured output rejected; retrying without response_format: %s", error)
        raw = await model.complete(messages, response_format=None)
        return raw, False

    async def answer(self, query: PreparedQuery, mode: str = "hybrid") -> AnswerResult:
        req_id = uuid.uuid4().hex
        matches = await self._retrieve(query, mode, req_id)
        if not matches:
            LOGGER.info("No matches for request %s; skipping generation", req_id)
            return AnswerResult(answer=NO_MATCHES_ANSWER)

        messages = self._compose(query, matches, req_id)
        started = time.perf_counter()
        try:
            raw, structured = await self._complete(messages, req_id)
        except Exception as error:
            emit_exception(module=f"{__name__}.generate", error=error, req_id=req_id)
            raise

        result = self._finalize(raw, matches)
        emit_inference_result(
            req_id=req_id,
            duration_ms=(time.perf_counter() - started) * 1000.0,
            model_used=self.chat_model.model_name,
            structured=structured,
            raw_preview=raw,
            fallback=result.answer == UNSUPPORTED_ANSWER,
            citations=len(result.citations),
        )
        self._audit(req_id, query, mode, matches, result)
        return result

    async def _stream_with_fallback(
        self, messages: List[Dict[str, str]], req_id: str, state: Dict[str, Any]
    ) -> AsyncIterator[str]:
        structured = self._settings.structured_output
        model = self.chat_model
        emit_inference_request(
            req_id=req_id,
            model=model.model_name,
            temperature=model.temperature,
            structured=structured,
            stream=True,
            message_count=len(messages),
        )
        state["structured"] = structured
        received = False
        try:
            async for fragment in model.stream(
                messages, response_format=response_format() if structured else None
            ):
                received = True
                yield fragment
            return
        except LLMGenerationError as error:
            if received or not structured or not is_schema_rejection(error):
                raise
            LOGGER.warning("Structured output rejected; retrying stream without response_format: %s", error)

        state["structured"] = False
        async for fragment in model.stream(messages, response_format=None):
            yield fragment

    async def stream_answer(self, query: PreparedQuery, mode: str = "hybrid") -> AsyncIterator[Dict[str, Any]]:
        """Yield ``token`` events with the live answer text, then one ``done`` event.

        A failure yields a single ``error`` event and ends the stream.
        """

        req_id = uuid.uuid4().hex
        try:
            matches = await self._retrieve(query, mode, req_id)
            if not matches:
                yield {"type": "done", "data": AnswerResult(answer=NO_MATCHES_ANSWER).to_dict()}
                return

            messages = self._compose(query, matches, req_id)
            extractor = AnswerStreamExtractor()
            marker_filter = CitationMarkerFilter(
                self._settings.citation_marker_start,
                self._settings.citation_marker_end,
            )
            raw_parts: List[str] = []
            state: Dict[str, Any] = {}
            started = time.perf_counter()

            async for fragment in self._stream_with_fallback(messages, req_id, state):
                raw_parts.append(fragment)
                visible = marker_filter.feed(extractor.feed(fragment))
                if visible:
                    yield {"type": "token", "data": visible}
            tail = marker_filter.flush()
            if tail:
                yield {"type": "token", "data": tail}

            raw = "".join(raw_parts)
            result = self._finalize(raw, matches)
            emit_inference_result(
                req_id=req_id,
                duration_ms=(time.perf_counter() - started) * 1000.0,
                model_used=self.chat_model.model_name,
                structured=bool(state.get("structured")),
                raw_preview=raw,
                fallback=result.answer == UNSUPPORTED_ANSWER,
                citations=len(result.citations),
            )
            self._audit(req_id, query, mode, matches, result)
            yield {"type": "done", "data": result.to_dict()}
        except Exception as error:
            emit_exception(module=f"{__name__}.stream", error=error, req_id=req_id)
            yield {"type": "error", "data": str(error) or "Unexpected error"}

    async def chat(self, messages: Sequence[Any]) -> str:
        """Plain completion over the given turns, without retrieval."""

        history = [
            {"role": _field(message, "role"), "content": _field(message, "content")}
            for message in messages or []
            if _field(message, "role") in _CHAT_ROLES and isinstance(_field(message, "content"), str)
        ]
        if not history:
            raise InvalidRequestError("No messages provided")
        payload = [{"role": "system", "content": PLAIN_CHAT_SYSTEM_PROMPT}, *history]
        return await self.chat_model.complete(payload, response_format=None)

    async def get_chunk(self, chunk_id: str) -> Optional[Dict[str, Any]]:
        """Look a chunk up in the dense index, falling back to the local JSONL index."""

        try:
            store = self._dense_store or get_dense_store()
            match = await store.fetch(chunk_id)
        except Exception as error:
            LOGGER.warning("Dense fetch for %s failed, falling back to local index: %s", chunk_id, error)
            match = None

        if match is not None and match.metadata:
            return normalize_chunk_record(chunk_id, match.metadata)

        try:
            index = self._local_index or get_local_index()
            return index.get(chunk_id)
        except OSError as error:
            LOGGER.warning("Local chunk index load failed: %s", error)
            return None

    def _audit(
        self,
        req_id: str,
        query: PreparedQuery,
        mode: str,
        matches: Sequence[RetrievalMatch],
        result: AnswerResult,
    ) -> None:
        AUDIT_LOGGER.info(
            {
                "event": "query",
                "req_id": req_id,
                "question": query.question,
                "mode": mode,
                "sources": [match.id for match in matches],
                "citations": [citation.chunk_id for citation in result.citations],
            }
        )


@lru_cache()
def get_rag_service() -> RAGService:
    """FastAPI dependency returning the shared :class:`RAGService` instance."""

    return RAGService()


def reset_rag_service_cache() -> None:
    get_rag_service.cache_clear()  # type: ignore[attr-defined]


__all__ = [
    "AnswerResult",
    "ChatHistoryMessage",
    "NO_MATCHES_ANSWER",
    "PLAIN_CHAT_SYSTEM_PROMPT",
    "PreparedQuery",
    "RAGService",
    "UNSUPPORTED_ANSWER",
    "get_rag_service",
    "reset_rag_service_cache",
]
