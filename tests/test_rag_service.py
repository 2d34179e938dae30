"""Tests for query orchestration in :class:`RAGService`."""
from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, List, Optional

import pytest

from lexqa.errors import InvalidRequestError
from lexqa.llm_provider import ChatModel, LLMGenerationError
from lexqa.local_index import LocalChunkIndex
from lexqa.services.rag import (
    NO_MATCHES_ANSWER,
    PLAIN_CHAT_SYSTEM_PROMPT,
    UNSUPPORTED_ANSWER,
    PreparedQuery,
    RAGService,
)
from lexqa.settings import Settings
from lexqa.vectorstore import InMemoryDenseStore, IndexRecord, RetrievalMatch


MATCHES = [
    RetrievalMatch(
        id="c1",
        score=0.9,
        metadata={"doc_id": "lease.pdf", "page_start": 2, "para_start": 1, "para_end": 3, "text": "Rent is due monthly."},
    ),
    RetrievalMatch(id="c2", score=0.7, metadata={"doc_id": "lease.pdf", "page_start": 4, "text": "Deposit terms."}),
]


class FakeRetriever:
    def __init__(self, matches: List[RetrievalMatch]) -> None:
        self.matches = matches
        self.calls: List[tuple] = []

    async def retrieve(self, question: str, mode: str = "hybrid", *, req_id: str | None = None):
        self.calls.append((question, mode))
        return list(self.matches)


class ScriptedChatModel(ChatModel):
    """Replays one scripted outcome per call; exceptions are raised."""

    model_name = "scripted"

    def __init__(self, outcomes: List[Any]) -> None:
        self.outcomes = list(outcomes)
        self.calls: List[Dict[str, Any]] = []

    def _next(self, messages, response_format) -> Any:
        self.calls.append({"messages": list(messages), "response_format": response_format})
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def complete(self, messages, *, response_format: Optional[Dict[str, Any]] = None) -> str:
        return self._next(messages, response_format)

    async def stream(self, messages, *, response_format: Optional[Dict[str, Any]] = None):
        fragments = self._next(messages, response_format)
        for fragment in fragments:
            if isinstance(fragment, Exception):
                raise fragment
            yield fragment


def _service(outcomes: List[Any], matches: List[RetrievalMatch] = MATCHES, **settings: Any) -> RAGService:
    return RAGService(
        retriever=FakeRetriever(matches),
        chat_model=ScriptedChatModel(outcomes),
        settings=Settings(**settings),
    )


async def _events(service: RAGService, query: PreparedQuery, mode: str = "hybrid") -> List[Dict[str, Any]]:
    return [event async for event in service.stream_answer(query, mode)]


def test_prepare_splits_question_and_history() -> None:
    service = _service([], history_max_messages=2)
    messages = [
        {"role": "user", "content": "First question"},
        {"role": "assistant", "content": "First answer", "citations": [{"chunk_id": "c1"}]},
        {"role": "system", "content": "ignored"},
        {"role": "user", "content": "   "},
        {"role": "user", "content": "Second question"},
        {"role": "assistant", "content": "Second answer"},
        {"role": "user", "content": "  Current question  "},
    ]

    query = service.prepare(messages)

    assert query.question == "Current question"
    assert [(message.role, message.content) for message in query.history] == [
        ("user", "Second question"),
        ("assistant", "Second answer"),
    ]


def test_prepare_keeps_assistant_citations_and_can_disable_history() -> None:
    messages = [
        {"role": "user", "content": "Q1"},
        {"role": "assistant", "content": "A1", "citations": [{"chunk_id": "c1"}]},
        {"role": "user", "content": "Q2"},
    ]

    assert _service([]).prepare(messages).history[1].citations == [{"chunk_id": "c1"}]
    assert _service([], history_max_messages=0).prepare(messages).history == []


@pytest.mark.parametrize(
    "messages",
    [[], [{"role": "assistant", "content": "Hello"}], [{"role": "user", "content": ""}], [{"content": "no role"}]],
)
def test_prepare_requires_a_user_message(messages) -> None:
    with pytest.raises(InvalidRequestError, match="Missing user message"):
        _service([]).prepare(messages)


def test_validate_mode_rejects_unknown_modes() -> None:
    assert RAGService.validate_mode("sparse") == "sparse"
    with pytest.raises(InvalidRequestError):
        RAGService.validate_mode("keyword")


def test_empty_retrieval_skips_generation() -> None:
    service = _service([], matches=[])

    result = asyncio.run(service.answer(PreparedQuery(question="Anything?"), "dense"))

    assert result.answer == NO_MATCHES_ANSWER
    assert result.citations == []
    assert service.chat_model.calls == []
    assert service.retriever.calls == [("Anything?", "dense")]


def test_answer_validates_citations_and_strips_markers() -> None:
    raw = json.dumps({"answer": "Rent is due monthly [[c1]].", "citations": ["c1", "zz", "c1"]})
    service = _service([raw])

    result = asyncio.run(service.answer(PreparedQuery(question="When is rent due?")))

    assert result.answer == "Rent is due monthly ."
    assert [citation.chunk_id for citation in result.citations] == ["c1"]
    assert result.to_dict()["citations"][0] == {
        "chunk_id": "c1",
        "doc_id": "lease.pdf",
        "page": 2,
        "para_start": 1,
        "para_end": 3,
        "section_path": None,
        "source_url": None,
    }
    call = service.chat_model.calls[0]
    assert call["response_format"]["json_schema"]["name"] == "rag_answer"
    assert call["messages"][-1]["content"].startswith("Question:\nWhen is rent due?\n\nSources:\nSource 1\nchunk_id: c1")


def test_schema_rejection_retries_once_without_schema() -> None:
    service = _service(
        [
            LLMGenerationError("OpenRouter error: 400 response_format is not supported", status=400),
            'Here you go: {"answer": "Yes.", "citations": ["c2"]}',
        ]
    )

    result = asyncio.run(service.answer(PreparedQuery(question="Deposit?")))

    assert result.answer == "Yes."
    assert [citation.chunk_id for citation in result.citations] == ["c2"]
    assert [call["response_format"] is None for call in service.chat_model.calls] == [False, True]


def test_other_generation_errors_are_not_retried() -> None:
    service = _service([LLMGenerationError("OpenRouter error: 401 invalid key", status=401)])

    with pytest.raises(LLMGenerationError):
        asyncio.run(service.answer(PreparedQuery(question="Deposit?")))
    assert len(service.chat_model.calls) == 1


def test_structured_output_can_be_disabled() -> None:
    service = _service(['{"answer": "Yes.", "citations": []}'], structured_output=False)

    asyncio.run(service.answer(PreparedQuery(question="Deposit?")))

    assert service.chat_model.calls[0]["response_format"] is None


def test_malformed_model_output_yields_fallback_answer() -> None:
    service = _service(["I think the rent is monthly."])

    result = asyncio.run(service.answer(PreparedQuery(question="Rent?")))

    assert result.answer == UNSUPPORTED_ANSWER
    assert result.citations == []


def test_stream_emits_tokens_then_done() -> None:
    raw = json.dumps({"answer": "Rent is due [[c1]] monthly.", "citations": ["c1"]})
    fragments = [raw[index : index + 5] for index in range(0, len(raw), 5)]
    service = _service([fragments])

    events = asyncio.run(_events(service, PreparedQuery(question="Rent?")))

    tokens = [event["data"] for event in events if event["type"] == "token"]
    assert "".join(tokens) == "Rent is due  monthly."
    assert [event["type"] for event in events][-1] == "done"
    assert events[-1]["data"]["answer"] == "Rent is due  monthly."
    assert [citation["chunk_id"] for citation in events[-1]["data"]["citations"]] == ["c1"]


def test_stream_with_no_matches_sends_only_done() -> None:
    service = _service([], matches=[])

    events = asyncio.run(_events(service, PreparedQuery(question="Rent?")))

    assert events == [{"type": "done", "data": {"answer": NO_MATCHES_ANSWER, "citations": []}}]


def test_stream_failure_emits_error_without_done() -> None:
    service = _service([['{"answer": "Partial', RuntimeError("connection reset")]])

    events = asyncio.run(_events(service, PreparedQuery(question="Rent?")))

    assert [event["type"] for event in events] == ["token", "error"]
    assert events[-1]["data"] == "connection reset"


def test_stream_falls_back_when_schema_rejected_before_first_fragment() -> None:
    service = _service(
        [
            [LLMGenerationError("json_schema unsupported", status=400)],
            ['{"answer": "Ok", "citations": []}'],
        ]
    )

    events = asyncio.run(_events(service, PreparedQuery(question="Rent?")))

    assert events[-1] == {"type": "done", "data": {"answer": "Ok", "citations": []}}
    assert service.chat_model.calls[1]["response_format"] is None


def test_stream_does_not_retry_after_fragments_arrived() -> None:
    service = _service([['{"answer": "Ok', LLMGenerationError("schema mismatch")], ['{"answer": "again"}']])

    events = asyncio.run(_events(service, PreparedQuery(question="Rent?")))

    assert events[-1]["type"] == "error"
    assert len(service.chat_model.calls) == 1


def test_stream_rejects_unknown_mode_as_error_event() -> None:
    events = asyncio.run(_events(_service([]), PreparedQuery(question="Rent?"), mode="semantic"))

    assert [event["type"] for event in events] == ["error"]


def test_plain_chat_prepends_generic_system_prompt() -> None:
    service = _service(["Hello there"])

    answer = asyncio.run(service.chat([{"role": "user", "content": "Hi"}, {"role": "tool", "content": "x"}]))

    assert answer == "Hello there"
    assert service.chat_model.calls[0]["messages"] == [
        {"role": "system", "content": PLAIN_CHAT_SYSTEM_PROMPT},
        {"role": "user", "content": "Hi"},
    ]
    with pytest.raises(InvalidRequestError, match="No messages provided"):
        asyncio.run(service.chat([]))


class _BrokenDenseStore(InMemoryDenseStore):
    async def fetch(self, record_id: str):
        raise RuntimeError("index offline")


def test_get_chunk_prefers_dense_store(tmp_path) -> None:
    dense = InMemoryDenseStore()
    asyncio.run(
        dense.upsert([IndexRecord(id="c1", text="Body", metadata={"doc_id": "a.pdf", "page": 3, "text": "Body"}, vector=[1.0])])
    )
    service = RAGService(dense_store=dense, local_index=LocalChunkIndex(tmp_path / "none.jsonl"), settings=Settings())

    record = asyncio.run(service.get_chunk("c1"))

    assert record is not None
    assert (record["doc_id"], record["page_start"], record["text"]) == ("a.pdf", 3, "Body")


def test_get_chunk_falls_back_to_local_index(tmp_path) -> None:
    path = tmp_path / "chunks.jsonl"
    path.write_text(json.dumps({"chunk_id": "c9", "doc_id": "b.pdf", "text": "Local"}) + "\n", encoding="utf-8")
    service = RAGService(dense_store=_BrokenDenseStore(), local_index=LocalChunkIndex(path), settings=Settings())

    assert asyncio.run(service.get_chunk("c9"))["text"] == "Local"
    assert asyncio.run(service.get_chunk("unknown")) is None
