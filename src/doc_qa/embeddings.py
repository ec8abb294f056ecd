from __future__ import annotations

from typing import Protocol

import numpy as np
import structlog
from openai import OpenAI

from .errors import EmbeddingProviderError, ProviderErrorKind, provider_error_from
from .settings import ProviderSettings

logger = structlog.get_logger(logger_name=__name__)


class EmbeddingClient(Protocol):
    """Anything that turns text into fixed-length vectors."""

    dimensions: int

    def embed(self, text: str) -> list[float]: ...

    def embed_batch(self, texts: list[str]) -> list[list[float]]: ...


class OpenAIEmbeddingClient:
    """Embedding client backed by the OpenAI embeddings API."""

    provider_name = "openai"

    def __init__(self, settings: ProviderSettings, client: OpenAI | None = None):
        """Bind the client to a model, dimensionality and batch size.

        Args:
            settings: Provider configuration (API key, model, dimensions, batch size).
            client: Pre-built SDK client; one is constructed from `settings` when omitted.
        """
        self.model = settings.embedding_model
        self.dimensions = settings.embedding_dimensions
        self.batch_size = settings.embedding_batch_size
        self.client = client if client is not None else OpenAI(api_key=settings.openai_api_key or None)

    def embed(self, text: str) -> list[float]:
        """Embed a single text.

        Raises:
            EmbeddingProviderError: The provider call failed or returned a bad vector.
        """
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed many texts, one request per batch, preserving input order.

        Args:
            texts: Input strings.

        Returns:
            One vector per input, aligned with `texts`.

        Raises:
            EmbeddingProviderError: Any batch failed or returned malformed data.
        """
        vectors: list[list[float]] = []
        for start in range(0, len(texts), self.batch_size):
            batch = texts[start : start + self.batch_size]
            vectors.extend(self._embed_request(batch))
            logger.debug("embedding_batch_completed", batch_start=start, batch_size=len(batch))
        return vectors

    def _embed_request(self, batch: list[str]) -> list[list[float]]:
        try:
            response = self.client.embeddings.create(model=self.model, input=batch)
        except Exception as exc:
            raise provider_error_from(exc, EmbeddingProviderError, self.provider_name, "embedding request") from exc

        try:
            rows = sorted(response.data, key=lambda row: row.index)
            vectors = [list(row.embedding) for row in rows]
        except (AttributeError, TypeError) as exc:
            raise EmbeddingProviderError(
                f"Unreadable embedding response: {exc}",
                ProviderErrorKind.MALFORMED,
                provider_name=self.provider_name,
            ) from exc

        if len(vectors) != len(batch):
            raise EmbeddingProviderError(
                f"Expected {len(batch)} embeddings, received {len(vectors)}",
                ProviderErrorKind.MALFORMED,
                provider_name=self.provider_name,
            )
        for vector in vectors:
            if len(vector) != self.dimensions:
                raise EmbeddingProviderError(
                    f"Embedding has {len(vector)} dimensions, expected {self.dimensions}",
                    ProviderErrorKind.MALFORMED,
                    provider_name=self.provider_name,
                )
        return vectors


def cosine_similarity(a: list[float] | np.ndarray, b: list[float] | np.ndarray) -> float:
    """Cosine similarity of two vectors; 0.0 when either has zero norm."""
    left = np.asarray(a, dtype=np.float64)
    right = np.asarray(b, dtype=np.float64)
    denominator = float(np.linalg.norm(left) * np.linalg.norm(right))
    if denominator == 0.0:
        return 0.0
    return float(np.dot(left, right) / denominator)


def cosine_similarity_matrix(query_vector: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """Compute cosine similarity between one query vector and many vectors.

    Rows (or a query) with zero norm score 0.0.

    Args:
        query_vector: Query embedding vector.
        matrix: Candidate embedding matrix where each row is one vector.

    Returns:
        A 1D array of cosine similarity scores aligned to matrix rows.
    """
    query = np.asarray(query_vector, dtype=np.float64)
    if matrix.size == 0:
        return np.zeros(0, dtype=np.float64)
    query_norm = np.linalg.norm(query)
    matrix_norm = np.linalg.norm(matrix, axis=1)
    denominator = query_norm * matrix_norm
    scores = np.zeros(matrix.shape[0], dtype=np.float64)
    nonzero = denominator > 0
    scores[nonzero] = (matrix[nonzero] @ query) / denominator[nonzero]
    return scores
