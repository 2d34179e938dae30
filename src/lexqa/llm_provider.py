"""Chat-completion backends used to generate grounded answers."""

from __future__ import annotations

import json
import logging
import re
from functools import lru_cache
from typing import Any, AsyncIterator, Dict, Optional, Sequence

import httpx

from lexqa.errors import ConfigurationError
from lexqa.settings import Settings, get_settings, require_setting
from lexqa.telemetry import emit_upstream_error

LOGGER = logging.getLogger(__name__)

DEFAULT_STUB_RESPONSE = "The language model is not configured. Please try again later."

_SCHEMA_REJECTION_RE = re.compile(r"response_format|json_schema|schema|unsupported", re.IGNORECASE)


class LLMError(RuntimeError):
    """Base exception raised for chat-completion issues."""


class LLMGenerationError(LLMError):
    """Raised when the completion service fails or returns nothing usable."""

    def __init__(self, message: str, *, status: int | None = None, body: str | None = None) -> None:
        super().__init__(message)
        self.status = status
        self.body = body


class LLMTimeoutError(LLMError):
    """Raised when the completion request exceeds its time budget."""


def is_schema_rejection(error: BaseException) -> bool:
    """Return ``True`` when *error* reads like a rejected structured-output request."""

    return bool(_SCHEMA_REJECTION_RE.search(str(error)))


Message = Dict[str, str]


class ChatModel:
    """Common interface exposed by chat-completion implementations."""

    model_name: str = "stub"
    temperature: float = 0.0

    async def complete(
        self,
        messages: Sequence[Message],
        *,
        response_format: Optional[Dict[str, Any]] = None,
    ) -> str:
        raise NotImplementedError

    def stream(
        self,
        messages: Sequence[Message],
        *,
        response_format: Optional[Dict[str, Any]] = None,
    ) -> AsyncIterator[str]:
        raise NotImplementedError


class LLMStub(ChatModel):
    """Offline backend replying with a fixed, citation-free JSON answer."""

    def __init__(self, message: str = DEFAULT_STUB_RESPONSE, *, fragment_size: int = 8) -> None:
        self._message = message
        self._fragment_size = max(1, fragment_size)

    def _raw(self, response_format: Optional[Dict[str, Any]]) -> str:
        if response_format is None:
            return self._message
        return json.dumps({"answer": self._message, "citations": []}, ensure_ascii=False)

    async def complete(
        self,
        messages: Sequence[Message],
        *,
        response_format: Optional[Dict[str, Any]] = None,
    ) -> str:
        return self._raw(response_format)

    async def stream(
        self,
        messages: Sequence[Message],
        *,
        response_format: Optional[Dict[str, Any]] = None,
    ) -> AsyncIterator[str]:
        raw = self._raw(response_format)
        for offset in range(0, len(raw), self._fragment_size):
            yield raw[offset : offset + self._fragment_size]


class OpenRouterChatModel(ChatModel):
    """Client for an OpenRouter-compatible ``/chat/completions`` endpoint."""

    service_name = "OpenRouter"

    def __init__(
        self,
        *,
        api_key: str,
        model: str,
        base_url: str = "https://openrouter.ai/api/v1",
        temperature: float = 0.2,
        timeout_ms: int = 60000,
        site_url: str | None = None,
        app_name: str | None = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.model_name = model
        self.temperature = temperature
        self.timeout_ms = timeout_ms
        self._url = f"{base_url.rstrip('/')}/chat/completions"
        self._client = client
        self._headers = {"Authorization": f"Bearer {api_key}"}
        if site_url:
            self._headers["HTTP-Referer"] = site_url
        if app_name:
            self._headers["X-Title"] = app_name

    def _payload(
        self,
        messages: Sequence[Message],
        response_format: Optional[Dict[str, Any]],
        stream: bool,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self.model_name,
            "temperature": self.temperature,
            "messages": list(messages),
        }
        if response_format is not None:
            payload["response_format"] = response_format
        if stream:
            payload["stream"] = True
        return payload

    def _timeout_error(self, exc: Exception) -> LLMTimeoutError:
        return LLMTimeoutError(
            f"{self.service_name} request timed out after {self.timeout_ms} ms; the request may be retried"
        )

    def _status_error(self, status: int, body: str) -> LLMGenerationError:
        emit_upstream_error(service=self.service_name, status=status, body=body)
        return LLMGenerationError(f"{self.service_name} error: {status} {body}", status=status, body=body)

    def _client_or_new(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client
        return httpx.AsyncClient(timeout=httpx.Timeout(self.timeout_ms / 1000.0))

    async def complete(
        self,
        messages: Sequence[Message],
        *,
        response_format: Optional[Dict[str, Any]] = None,
    ) -> str:
        payload = self._payload(messages, response_format, stream=False)
        client = self._client_or_new()
        try:
            response = await client.post(self._url, json=payload, headers=self._headers)
        except httpx.TimeoutException as exc:
            raise self._timeout_error(exc) from exc
        except httpx.HTTPError as exc:
            raise LLMGenerationError(f"{self.service_name} request failed: {exc}") from exc
        finally:
            if client is not self._client:
                await client.aclose()

        if response.status_code >= 400:
            raise self._status_error(response.status_code, response.text)
        try:
            data = response.json()
        except ValueError as exc:
            raise LLMGenerationError(f"Failed to parse {self.service_name} response") from exc

        content = _message_content(data)
        if not content:
            raise LLMGenerationError(f"{self.service_name} returned no content")
        return content

    async def stream(
        self,
        messages: Sequence[Message],
        *,
        response_format: Optional[Dict[str, Any]] = None,
    ) -> AsyncIterator[str]:
        """Yield content fragments from the server-sent event stream until ``[DONE]``."""

        payload = self._payload(messages, response_format, stream=True)
        client = self._client_or_new()
        try:
            async with client.stream("POST", self._url, json=payload, headers=self._headers) as response:
                if response.status_code >= 400:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    raise self._status_error(response.status_code, body)
                async for line in response.aiter_lines():
                    fragment = _parse_sse_line(line)
                    if fragment is _DONE:
                        break
                    if fragment:
                        yield fragment
        except httpx.TimeoutException as exc:
            raise self._timeout_error(exc) from exc
        except httpx.HTTPError as exc:
            raise LLMGenerationError(f"{self.service_name} request failed: {exc}") from exc
        finally:
            if client is not self._client:
                await client.aclose()


_DONE = object()


def _message_content(data: Any) -> Optional[str]:
    try:
        content = data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError):
        return None
    return content if isinstance(content, str) else None


def _parse_sse_line(line: str) -> Any:
    """Return the content delta carried by one SSE line, ``_DONE`` or ``None``."""

    line = line.strip()
    if not line or line.startswith(":") or not line.startswith("data:"):
        return None
    data = line[len("data:") :].strip()
    if data == "[DONE]":
        return _DONE
    try:
        event = json.loads(data)
    except json.JSONDecodeError:
        LOGGER.debug("Ignoring undecodable stream line: %s", data[:200])
        return None
    if isinstance(event, dict) and event.get("error"):
        error = event["error"]
        message = error.get("message") if isinstance(error, dict) else str(error)
        raise LLMGenerationError(f"OpenRouter stream error: {message}")
    try:
        delta = event["choices"][0].get("delta") or {}
    except (KeyError, IndexError, TypeError, AttributeError):
        return None
    content = delta.get("content")
    return content if isinstance(content, str) else None


def build_chat_model(settings: Settings) -> ChatModel:
    backend = settings.llm_backend
    if backend == "stub":
        return LLMStub()
    if backend == "openrouter":
        return OpenRouterChatModel(
            api_key=require_setting(settings.openrouter_api_key, "OPENROUTER_API_KEY"),
            model=settings.openrouter_model,
            base_url=settings.openrouter_base_url,
            temperature=settings.openrouter_temperature,
            timeout_ms=settings.openrouter_timeout_ms,
            site_url=settings.openrouter_site_url,
            app_name=settings.openrouter_app_name,
        )
    raise ConfigurationError(f"Unsupported LLM_BACKEND: {backend!r}")


@lru_cache()
def get_chat_model() -> ChatModel:
    """Return the configured chat model (cached per process)."""

    return build_chat_model(get_settings())


def reset_chat_model_cache() -> None:
    get_chat_model.cache_clear()  # type: ignore[attr-defined]


__all__ = [
    "ChatModel",
    "DEFAULT_STUB_RESPONSE",
    "LLMError",
    "LLMGenerationError",
    "LLMStub",
    "LLMTimeoutError",
    "OpenRouterChatModel",
    "build_chat_model",
    "get_chat_model",
    "is_schema_rejection",
    "reset_chat_model_cache",
]
