"""Utilities for constructing the answering model's prompt."""
from __future__ import annotations

from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

from lexqa.vectorstore import RetrievalMatch

_PROMPTS_DIR = Path(__file__).resolve().parent / "prompts"
_SYSTEM_PROMPT_PATH = _PROMPTS_DIR / "system.txt"
_USER_PROMPT_PATH = _PROMPTS_DIR / "user.md"

SOURCE_SEPARATOR = "\n\n---\n\n"
NO_SOURCES = "None provided"
RESPONSE_SCHEMA_NAME = "rag_answer"


@dataclass(slots=True)
class ChatHistoryMessage:
    """A prior conversation turn supplied by the client."""

    role: str
    content: str
    citations: List[Any] = field(default_factory=list)


def _load_template(path: Path) -> str:
    """Read and trim the contents of a template file."""
    return path.read_text(encoding="utf-8").strip()


@lru_cache()
def load_system_prompt() -> str:
    return _load_template(_SYSTEM_PROMPT_PATH)


@lru_cache()
def load_user_template() -> str:
    return _load_template(_USER_PROMPT_PATH)


def _first_present(metadata: Mapping[str, Any], *keys: str, default: Any = "?") -> Any:
    for key in keys:
        value = metadata.get(key)
        if value is not None:
            return value
    return default


def format_source(index: int, match: RetrievalMatch) -> str:
    metadata = match.metadata or {}
    section_path = metadata.get("section_path")
    section = f"Section: {section_path}" if section_path else ""
    page = _first_present(metadata, "page_start", "page")
    para_start = _first_present(metadata, "para_start")
    para_end = _first_present(metadata, "para_end", "para_start")
    return (
        f"Source {index}\n"
        f"chunk_id: {match.id}\n"
        f"Doc: {metadata.get('doc_id') or 'Unknown'}\n"
        f"Page: {page}\n"
        f"Paragraphs: {para_start}-{para_end}\n"
        f"{section}\n"
        f"Text: {metadata.get('text') or ''}"
    )


def build_sources(matches: Sequence[RetrievalMatch]) -> str:
    """Render the evidence block; never empty so the prompt stays unambiguous."""

    if not matches:
        return NO_SOURCES
    return SOURCE_SEPARATOR.join(format_source(index, match) for index, match in enumerate(matches, start=1))


def _citation_label(citation: Any) -> Optional[str]:
    if isinstance(citation, str):
        return citation or None
    if not isinstance(citation, Mapping):
        return None
    chunk_id = citation.get("chunk_id")
    if not chunk_id:
        return None
    doc_id = citation.get("doc_id")
    page = citation.get("page")
    if doc_id and page is not None:
        return f"{chunk_id} ({doc_id} p.{page})"
    if doc_id:
        return f"{chunk_id} ({doc_id})"
    return str(chunk_id)


def format_history_message(message: ChatHistoryMessage) -> Dict[str, str]:
    content = message.content
    if message.role == "assistant" and message.citations:
        labels = [label for label in map(_citation_label, message.citations) if label]
        if labels:
            content = f"{content}\n\nCited sources: {', '.join(labels)}"
    return {"role": message.role, "content": content}


def build_user_message(question: str, sources: str) -> str:
    return load_user_template().format(question=question, sources=sources)


def build_messages(
    question: str,
    matches: Sequence[RetrievalMatch],
    history: Sequence[ChatHistoryMessage] = (),
    *,
    system_prompt: Optional[str] = None,
) -> List[Dict[str, str]]:
    """Compose system prompt, prior turns and the evidence-bearing current turn."""

    messages = [{"role": "system", "content": system_prompt or load_system_prompt()}]
    messages.extend(format_history_message(message) for message in history)
    messages.append({"role": "user", "content": build_user_message(question, build_sources(matches))})
    return messages


def response_format() -> Dict[str, Any]:
    return {
        "type": "json_schema",
        "json_schema": {
            "name": RESPONSE_SCHEMA_NAME,
            "strict": True,
            "schema": {
                "type": "object",
                "additionalProperties": False,
                "properties": {
                    "answer": {"type": "string"},
                    "citations": {"type": "array", "items": {"type": "string"}},
                },
                "required": ["answer", "citations"],
            },
        },
    }


__all__ = [
    "ChatHistoryMessage",
    "NO_SOURCES",
    "SOURCE_SEPARATOR",
    "build_messages",
    "build_sources",
    "build_user_message",
    "format_history_message",
    "format_source",
    "load_system_prompt",
    "load_user_template",
    "response_format",
]
