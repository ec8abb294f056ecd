"""Exception hierarchy for the document Q&A pipeline.

Every error raised by the pipeline derives from :class:`DocQAError`, which
carries a stable ``error_code``, an optional ``provider_name`` and a
``user_message`` suitable for rendering to an end user:

    DocQAError
    +-- DocumentNotFound / EmptyDocument / UnsupportedDocumentFormat   (parser)
    +-- ProviderError{kind}                                            (remote models)
    |   +-- EmbeddingProviderError
    |   +-- GenerationProviderError
    +-- RetrievalError{kind}                                           (query-time search)
    +-- NoDataIngested
    +-- ConfigurationInvalid{errors}
    +-- IngestionInProgress
    +-- InvalidQuestion
"""
from __future__ import annotations

import json
from enum import Enum
from typing import Any

import anthropic
import openai


class ProviderErrorKind(str, Enum):
    """User-facing failure categories for remote model calls."""

    AUTH = "auth"
    QUOTA = "quota"
    NETWORK = "network"
    UNAVAILABLE = "unavailable"
    MALFORMED = "malformed"


PROVIDER_MESSAGES: dict[ProviderErrorKind, str] = {
    ProviderErrorKind.AUTH: "The AI provider rejected the configured API credentials. Check the API key.",
    ProviderErrorKind.QUOTA: "The AI provider quota or rate limit was exceeded. Please try again later.",
    ProviderErrorKind.NETWORK: "Could not reach the AI provider. Check the network connection and try again.",
    ProviderErrorKind.UNAVAILABLE: "The AI provider is temporarily unavailable. Please try again shortly.",
    ProviderErrorKind.MALFORMED: "The AI provider returned an unexpected response.",
}


class DocQAError(Exception):
    """Base exception for all pipeline errors."""

    error_code: str = "DOCQA_ERR"
    default_user_message: str = "The request could not be completed."

    def __init__(self, message: str, *, provider_name: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.provider_name = provider_name

    @property
    def user_message(self) -> str:
        return self.default_user_message

    def to_dict(self) -> dict[str, Any]:
        """Serialize the error for structured logs and JSON responses."""
        payload: dict[str, Any] = {
            "type": type(self).__name__,
            "code": self.error_code,
            "message": self.user_message,
        }
        if self.provider_name:
            payload["provider"] = self.provider_name
        return payload

    def __str__(self) -> str:
        if self.provider_name:
            return f"[{self.provider_name}] {self.message}"
        return self.message


class DocumentNotFound(DocQAError):
    error_code = "DOCQA_DOC_NOT_FOUND"
    default_user_message = "The source document could not be found."

    def __init__(self, path: str) -> None:
        super().__init__(f"Document not found: {path}")
        self.path = path


class EmptyDocument(DocQAError):
    error_code = "DOCQA_DOC_EMPTY"
    default_user_message = "No content found in document."

    def __init__(self, path: str) -> None:
        super().__init__(f"No content found in document: {path}")
        self.path = path


class UnsupportedDocumentFormat(DocQAError):
    error_code = "DOCQA_DOC_FORMAT"
    default_user_message = "The source document format is not supported."

    def __init__(self, path: str) -> None:
        super().__init__(f"Unsupported document format: {path}")
        self.path = path


class ProviderError(DocQAError):
    """A remote model call failed; ``kind`` tells the caller what to do about it."""

    error_code = "DOCQA_PROVIDER"

    def __init__(
        self,
        message: str,
        kind: ProviderErrorKind,
        *,
        provider_name: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message, provider_name=provider_name)
        self.kind = ProviderErrorKind(kind)
        self.status_code = status_code

    @property
    def user_message(self) -> str:
        return PROVIDER_MESSAGES[self.kind]

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["kind"] = self.kind.value
        return payload


class EmbeddingProviderError(ProviderError):
    error_code = "DOCQA_EMBEDDING"


class GenerationProviderError(ProviderError):
    error_code = "DOCQA_GENERATION"


class RetrievalError(DocQAError):
    """Query-time retrieval failed because the query could not be embedded."""

    error_code = "DOCQA_RETRIEVAL"

    def __init__(self, message: str, kind: ProviderErrorKind, *, provider_name: str | None = None) -> None:
        super().__init__(message, provider_name=provider_name)
        self.kind = ProviderErrorKind(kind)

    @property
    def user_message(self) -> str:
        return PROVIDER_MESSAGES[self.kind]

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["kind"] = self.kind.value
        return payload


class NoDataIngested(DocQAError):
    error_code = "DOCQA_NO_DATA"
    default_user_message = "Document has not been ingested. Run the ingestion script first."

    def __init__(self) -> None:
        super().__init__("No document data found. The document needs to be ingested first.")


class ConfigurationInvalid(DocQAError):
    error_code = "DOCQA_CONFIG"
    default_user_message = "The service is not configured correctly."

    def __init__(self, errors: list[str]) -> None:
        super().__init__("Invalid configuration: " + "; ".join(errors))
        self.errors = list(errors)

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["errors"] = self.errors
        return payload


class IngestionInProgress(DocQAError):
    error_code = "DOCQA_INGEST_BUSY"
    default_user_message = "An ingestion is already running. Try again when it has finished."

    def __init__(self) -> None:
        super().__init__("Ingestion already in progress")


class InvalidQuestion(DocQAError):
    error_code = "DOCQA_BAD_QUESTION"

    @property
    def user_message(self) -> str:
        return self.message


def _kind_for_status(status_code: int) -> ProviderErrorKind:
    if status_code in (401, 403):
        return ProviderErrorKind.AUTH
    if status_code == 429:
        return ProviderErrorKind.QUOTA
    if status_code == 408 or status_code >= 500:
        return ProviderErrorKind.UNAVAILABLE
    return ProviderErrorKind.MALFORMED


def classify_provider_error(exc: BaseException) -> ProviderErrorKind:
    """Map an SDK or transport exception onto a :class:`ProviderErrorKind`.

    Args:
        exc: Exception raised by the OpenAI or Anthropic SDK (or while decoding
            one of their responses).

    Returns:
        The failure category used to pick a user-facing message.
    """
    if isinstance(exc, (ProviderError, RetrievalError)):
        return exc.kind
    # Timeouts subclass the connection errors in both SDKs.
    if isinstance(exc, (openai.APIConnectionError, anthropic.APIConnectionError)):
        return ProviderErrorKind.NETWORK
    if isinstance(exc, (openai.APIResponseValidationError, anthropic.APIResponseValidationError)):
        return ProviderErrorKind.MALFORMED
    status_code = getattr(exc, "status_code", None)
    if isinstance(status_code, int):
        return _kind_for_status(status_code)
    if isinstance(exc, (ConnectionError, TimeoutError)):
        return ProviderErrorKind.NETWORK
    if isinstance(exc, (json.JSONDecodeError, KeyError, IndexError, TypeError, ValueError, AttributeError)):
        return ProviderErrorKind.MALFORMED
    return ProviderErrorKind.UNAVAILABLE


def provider_error_from(
    exc: BaseException,
    error_cls: type[ProviderError],
    provider_name: str,
    action: str,
) -> ProviderError:
    """Wrap an arbitrary provider exception in the matching typed error."""
    kind = classify_provider_error(exc)
    status_code = getattr(exc, "status_code", None)
    return error_cls(
        f"{action} failed ({kind.value}): {exc}",
        kind,
        provider_name=provider_name,
        status_code=status_code if isinstance(status_code, int) else None,
    )
