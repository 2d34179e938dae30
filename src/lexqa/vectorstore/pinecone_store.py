"""Pinecone data-plane adapters over HTTP.

The dense index is a regular vector index (``/vectors/upsert``, ``/query``,
``/vectors/fetch``). The sparse index is an integrated-embedding index that
accepts raw text records and is searched with text
(``/records/namespaces/{namespace}/...``).
"""
from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Sequence

import httpx

from lexqa.errors import UpstreamServiceError, VectorStoreUnavailableError
from lexqa.telemetry import emit_upstream_error

from .base import DenseVectorStore, IndexRecord, RetrievalMatch, SparseVectorStore

API_VERSION = "2025-01"

SPARSE_FIELDS = [
    "text",
    "doc_id",
    "doc_title",
    "page_start",
    "page_end",
    "para_start",
    "para_end",
    "section_path",
    "content_type",
    "element_ids",
    "source_url",
]


def _clean_metadata(metadata: Dict[str, Any]) -> Dict[str, Any]:
    """Pinecone rejects null metadata values."""

    return {key: value for key, value in metadata.items() if value is not None}


class _PineconeHTTP:
    def __init__(
        self,
        *,
        api_key: str,
        host: str,
        namespace: str = "default",
        timeout_s: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        host = host.rstrip("/")
        if not host.startswith(("http://", "https://")):
            host = f"https://{host}"
        self.host = host
        self.namespace = namespace
        self._headers = {"Api-Key": api_key, "X-Pinecone-API-Version": API_VERSION}
        self._timeout_s = timeout_s
        self._client = client

    async def request(
        self,
        service: str,
        method: str,
        path: str,
        *,
        json_body: Any = None,
        content: str | None = None,
        params: Dict[str, Any] | None = None,
        content_type: str = "application/json",
    ) -> Dict[str, Any]:
        headers = dict(self._headers)
        headers["Content-Type"] = content_type
        url = f"{self.host}{path}"
        try:
            if self._client is not None:
                response = await self._client.request(
                    method, url, json=json_body, content=content, params=params, headers=headers
                )
            else:
                async with httpx.AsyncClient(timeout=self._timeout_s) as client:
                    response = await client.request(
                        method, url, json=json_body, content=content, params=params, headers=headers
                    )
        except httpx.HTTPError as exc:
            raise VectorStoreUnavailableError(f"{service} request failed: {exc}", cause=exc) from exc

        if response.status_code >= 400:
            emit_upstream_error(service=service, status=response.status_code, body=response.text)
            raise UpstreamServiceError(service, response.status_code, response.text)
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamServiceError(service, response.status_code, f"Invalid JSON response: {response.text}") from exc


class PineconeDenseStore(DenseVectorStore):
    backend_name = "pinecone"

    def __init__(self, **kwargs: Any) -> None:
        self._http = _PineconeHTTP(**kwargs)

    async def upsert(self, records: Sequence[IndexRecord]) -> None:
        if not records:
            return
        vectors = []
        for record in records:
            if record.vector is None:
                raise ValueError(f"Record {record.id} has no vector")
            vectors.append(
                {
                    "id": record.id,
                    "values": list(map(float, record.vector)),
                    "metadata": _clean_metadata(record.metadata),
                }
            )
        await self._http.request(
            "Pinecone upsert",
            "POST",
            "/vectors/upsert",
            json_body={"vectors": vectors, "namespace": self._http.namespace},
        )

    async def query(self, vector: Sequence[float], top_k: int) -> List[RetrievalMatch]:
        if top_k <= 0:
            return []
        data = await self._http.request(
            "Pinecone query",
            "POST",
            "/query",
            json_body={
                "vector": list(map(float, vector)),
                "topK": top_k,
                "includeMetadata": True,
                "namespace": self._http.namespace,
            },
        )
        return [
            RetrievalMatch(id=str(match["id"]), score=match.get("score"), metadata=dict(match.get("metadata") or {}))
            for match in data.get("matches") or []
        ]

    async def fetch(self, record_id: str) -> Optional[RetrievalMatch]:
        data = await self._http.request(
            "Pinecone fetch",
            "GET",
            "/vectors/fetch",
            params={"ids": record_id, "namespace": self._http.namespace},
        )
        vectors = data.get("vectors") or {}
        vector = vectors.get(record_id) or next(iter(vectors.values()), None)
        if not vector or not vector.get("metadata"):
            return None
        return RetrievalMatch(id=record_id, score=None, metadata=dict(vector["metadata"]))


class PineconeSparseStore(SparseVectorStore):
    backend_name = "pinecone"

    def __init__(self, **kwargs: Any) -> None:
        self._http = _PineconeHTTP(**kwargs)

    async def upsert(self, records: Sequence[IndexRecord]) -> None:
        if not records:
            return
        lines = []
        for record in records:
            payload = _clean_metadata(record.metadata)
            payload["_id"] = record.id
            payload["text"] = record.text
            lines.append(json.dumps(payload, ensure_ascii=False))
        await self._http.request(
            "Pinecone records upsert",
            "POST",
            f"/records/namespaces/{self._http.namespace}/upsert",
            content="\n".join(lines),
            content_type="application/x-ndjson",
        )

    async def search(self, text: str, top_k: int) -> List[RetrievalMatch]:
        if top_k <= 0 or not text.strip():
            return []
        data = await self._http.request(
            "Pinecone sparse search",
            "POST",
            f"/records/namespaces/{self._http.namespace}/search",
            json_body={"query": {"inputs": {"text": text}, "top_k": top_k}, "fields": SPARSE_FIELDS},
        )
        hits = (data.get("result") or {}).get("hits") or data.get("hits") or []
        matches: List[RetrievalMatch] = []
        for hit in hits:
            score = hit.get("_score", hit.get("score"))
            matches.append(
                RetrievalMatch(
                    id=str(hit.get("_id") or hit.get("id")),
                    score=score,
                    metadata=dict(hit.get("fields") or hit.get("metadata") or {}),
                )
            )
        return matches


__all__ = ["PineconeDenseStore", "PineconeSparseStore", "SPARSE_FIELDS"]
