from __future__ import annotations

import numpy as np
import structlog

from .embeddings import EmbeddingClient, cosine_similarity_matrix
from .errors import NoDataIngested, ProviderError, RetrievalError, classify_provider_error
from .schema import SearchResult
from .store import ChunkStore

logger = structlog.get_logger(logger_name=__name__)


class Retriever:
    """Exact cosine-similarity search over every stored chunk."""

    def __init__(self, store: ChunkStore, embedder: EmbeddingClient, max_top_k: int = 10):
        self.store = store
        self.embedder = embedder
        self.max_top_k = max_top_k

    def search(self, query: str, top_k: int = 5) -> list[SearchResult]:
        """Return the chunks most similar to `query`.

        Args:
            query: Natural-language question.
            top_k: Requested result count, capped at `max_top_k`.

        Returns:
            Up to `min(top_k, max_top_k)` results sorted by descending score.

        Raises:
            NoDataIngested: The store is empty.
            RetrievalError: The query could not be embedded.
        """
        snapshot = self.store.snapshot()
        if len(snapshot) == 0:
            raise NoDataIngested()

        try:
            query_vector = self.embedder.embed(query)
        except Exception as exc:
            kind = classify_provider_error(exc)
            provider_name = exc.provider_name if isinstance(exc, ProviderError) else None
            logger.warning("query_embedding_failed", kind=kind.value, error=str(exc))
            raise RetrievalError(f"Query embedding failed: {exc}", kind, provider_name=provider_name) from exc

        scores = cosine_similarity_matrix(np.asarray(query_vector, dtype=np.float64), snapshot.matrix)
        limit = max(0, min(top_k, self.max_top_k))
        # Stable sort keeps document order among equal scores.
        ranked = np.argsort(-scores, kind="stable")[:limit]

        results = []
        for position in ranked:
            chunk = snapshot.chunks[int(position)]
            results.append(
                SearchResult(
                    id=chunk.id,
                    heading=chunk.heading,
                    content=chunk.content,
                    score=float(scores[position]),
                    source_path=chunk.source_path,
                    offset_start=chunk.offset_start,
                    offset_end=chunk.offset_end,
                )
            )
        logger.debug(
            "search_completed",
            candidates=len(snapshot),
            returned=len(results),
            top_score=results[0].score if results else None,
        )
        return results
