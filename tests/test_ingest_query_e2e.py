"""End-to-end: parsed documents in, grounded answer with verified citations out."""
from __future__ import annotations

import asyncio
import json
import re

from lexqa.embeddings import DeterministicEmbeddingModel
from lexqa.ingest import build_chunks_for_directory, index_chunks, write_chunks_jsonl
from lexqa.llm_provider import ChatModel
from lexqa.local_index import LocalChunkIndex
from lexqa.retrieval import HybridRetriever
from lexqa.services.rag import RAGService
from lexqa.settings import Settings
from lexqa.vectorstore import InMemoryDenseStore, InMemorySparseStore

_CHUNK_ID_RE = re.compile(r"^chunk_id: (\S+)$", re.MULTILINE)


class CitingChatModel(ChatModel):
    """Answers with the first source it was given, plus one invented id."""

    model_name = "citing"

    async def complete(self, messages, *, response_format=None) -> str:
        first = _CHUNK_ID_RE.search(messages[-1]["content"]).group(1)
        return json.dumps({"answer": f"See [[{first}]] for the notice period.", "citations": [first, "made-up"]})


def test_ingest_then_answer(tmp_path, make_element) -> None:
    parsed = tmp_path / "parsed"
    parsed.mkdir()
    elements = [
        make_element("t", "Title", "Employment Contract", filename="job.pdf"),
        make_element("h1", "Header", "Termination", parent_id="t", filename="job.pdf"),
        make_element("p1", "NarrativeText", "Either party may terminate with one month notice.", parent_id="h1", filename="job.pdf"),
        make_element("h2", "Header", "Salary", page=2, parent_id="t", filename="job.pdf"),
        make_element("p2", "NarrativeText", "The salary is paid monthly in arrears.", page=2, parent_id="h2", filename="job.pdf"),
    ]
    (parsed / "job.json").write_text(json.dumps(elements), encoding="utf-8")

    chunks = [chunk for result in build_chunks_for_directory(parsed) for chunk in result.chunks]
    chunks_path = tmp_path / "chunks.jsonl"
    write_chunks_jsonl(chunks, chunks_path)

    embedding_model = DeterministicEmbeddingModel(dimension=32)
    dense = InMemoryDenseStore()
    sparse = InMemorySparseStore()
    asyncio.run(index_chunks(chunks, embedding_model=embedding_model, dense_store=dense, sparse_store=sparse))

    settings = Settings(top_k=3)
    service = RAGService(
        retriever=HybridRetriever(embedding_model=embedding_model, dense_store=dense, sparse_store=sparse, settings=settings),
        chat_model=CitingChatModel(),
        dense_store=dense,
        local_index=LocalChunkIndex(chunks_path),
        settings=settings,
    )

    query = service.prepare([{"role": "user", "content": "What notice is needed to terminate?"}])
    result = asyncio.run(service.answer(query, "sparse"))

    termination = chunks[0]
    assert result.answer == "See  for the notice period."
    assert [citation.chunk_id for citation in result.citations] == [termination.chunk_id]
    citation = result.citations[0]
    assert (citation.doc_id, citation.page, citation.section_path) == ("job.pdf", 1, "Employment Contract > Termination")
    assert citation.source_url == "/pdfs/job.pdf#page=1"

    record = asyncio.run(service.get_chunk(termination.chunk_id))
    assert record["text"] == "Either party may terminate with one month notice."
