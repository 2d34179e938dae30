"""Parsing of the model's JSON answer and validation of its citations."""
from __future__ import annotations

import json
import re
from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from lexqa.vectorstore import RetrievalMatch

_OBJECT_SPAN_RE = re.compile(r"\{[\s\S]*\}")


@dataclass(frozen=True, slots=True)
class Citation:
    """Provenance of one retrieved chunk the answer relies on."""

    chunk_id: str
    doc_id: Optional[str] = None
    page: Optional[int] = None
    para_start: Optional[int] = None
    para_end: Optional[int] = None
    section_path: Optional[str] = None
    source_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_match(cls, match: RetrievalMatch) -> "Citation":
        metadata = match.metadata or {}
        page = metadata.get("page_start")
        if page is None:
            page = metadata.get("page")
        return cls(
            chunk_id=match.id,
            doc_id=metadata.get("doc_id"),
            page=page,
            para_start=metadata.get("para_start"),
            para_end=metadata.get("para_end"),
            section_path=metadata.get("section_path"),
            source_url=metadata.get("source_url"),
        )


def extract_json(raw: str) -> Optional[Any]:
    """Parse *raw* as JSON, else its first ``{...}`` span, else ``None``."""

    try:
        return json.loads(raw)
    except (TypeError, json.JSONDecodeError):
        pass
    match = _OBJECT_SPAN_RE.search(raw or "")
    if match is None:
        return None
    try:
        return json.loads(match.group(0))
    except json.JSONDecodeError:
        return None


def claimed_citation_ids(claimed: Any) -> List[str]:
    """Citation ids from strings or from objects carrying a ``chunk_id``."""

    if not isinstance(claimed, list):
        return []
    ids: List[str] = []
    for item in claimed:
        value = item.get("chunk_id") if isinstance(item, dict) else item
        if isinstance(value, str):
            ids.append(value)
    return ids


def parse_model_answer(raw: str) -> Tuple[str, List[str]]:
    """Return ``(answer, citation_ids)``; both are empty when *raw* is unusable."""

    parsed = extract_json(raw)
    if not isinstance(parsed, dict):
        return "", []
    answer = parsed.get("answer")
    answer = answer.strip() if isinstance(answer, str) else ""
    return answer, claimed_citation_ids(parsed.get("citations"))


def validate_citations(claimed: Iterable[Any], matches: Sequence[RetrievalMatch]) -> List[Citation]:
    """Keep claimed ids that were actually retrieved, deduplicated in first-seen order.

    Ids that were not retrieved are dropped silently.
    """

    by_id = {match.id: match for match in matches}
    seen: set[str] = set()
    citations: List[Citation] = []
    for chunk_id in claimed_citation_ids(list(claimed)):
        if chunk_id in seen or chunk_id not in by_id:
            continue
        seen.add(chunk_id)
        citations.append(Citation.from_match(by_id[chunk_id]))
    return citations


__all__ = [
    "Citation",
    "claimed_citation_ids",
    "extract_json",
    "parse_model_answer",
    "validate_citations",
]
