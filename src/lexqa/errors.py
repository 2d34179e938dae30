"""Exceptions shared across the ingestion and query pipelines."""
from __future__ import annotations


class ConfigurationError(RuntimeError):
    """Raised when a required credential or endpoint is not configured."""


class InvalidRequestError(ValueError):
    """Raised when a client request cannot be processed as submitted."""


class UpstreamServiceError(RuntimeError):
    """Raised when a remote collaborator answers with a non-success status."""

    def __init__(self, service: str, status: int | None, body: str) -> None:
        super().__init__(f"{service} error: {status} {body}".rstrip())
        self.service = service
        self.status = status
        self.body = body


class VectorStoreUnavailableError(RuntimeError):
    """Raised when a search index cannot be reached, initialised or queried."""

    def __init__(self, message: str, *, cause: Exception | None = None) -> None:
        super().__init__(message)
        self.__cause__ = cause


__all__ = ["ConfigurationError", "InvalidRequestError", "UpstreamServiceError", "VectorStoreUnavailableError"]
