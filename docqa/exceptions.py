"""Exception hierarchy for the document Q&A service.

Every error carries a human-readable message plus a ``details`` dict
(stage, batch number, document id, ...) so failures stay diagnosable
once they reach the HTTP layer or the logs.
"""
from typing import Any, Dict, Optional


class DocQAError(Exception):
    """Base exception for all document Q&A errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ValidationError(DocQAError):
    """Raised when request input is missing or too short."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        if field:
            details["field"] = field
        self.field = field
        super().__init__(message, details)


class ConfigurationError(DocQAError):
    """Raised when required configuration (e.g. an API key) is missing."""


class ProviderError(DocQAError):
    """Raised when an external embedding or generation provider fails."""

    retryable = False

    def __init__(
        self,
        message: str,
        stage: str,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        details["stage"] = stage
        if status_code is not None:
            details["status_code"] = status_code
        self.stage = stage
        self.status_code = status_code
        super().__init__(message, details)


class ProviderTimeoutError(ProviderError):
    """Raised when a provider call exceeds its timeout."""

    retryable = True


class PersistenceError(DocQAError):
    """Raised when a read or write against the store fails."""

    def __init__(
        self,
        message: str,
        operation: str,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        details["operation"] = operation
        self.operation = operation
        super().__init__(message, details)


class IngestionError(DocQAError):
    """Raised when a document could not be ingested at all.

    ``document_id`` is set when the document row was written before the
    failure; ``rolled_back`` tells whether it has since been deleted.
    """

    def __init__(
        self,
        message: str,
        document_id: Optional[str] = None,
        rolled_back: bool = False,
        stats: Optional[Dict[str, Any]] = None,
    ):
        self.document_id = document_id
        self.rolled_back = rolled_back
        self.stats = stats or {}
        super().__init__(
            message,
            {"document_id": document_id, "rolled_back": rolled_back, **self.stats},
        )


class NoChunksError(IngestionError):
    """Raised when chunking yields no usable chunks."""


class NoEmbeddingsError(IngestionError):
    """Raised when every embedding batch of a document failed."""
