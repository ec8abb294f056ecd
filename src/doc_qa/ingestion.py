from __future__ import annotations

import threading
import time
from datetime import datetime, timezone
from pathlib import Path

import structlog
from opentelemetry import trace

from .chunking import chunk_sections, merge_small_sections
from .embeddings import EmbeddingClient
from .errors import DocQAError, IngestionInProgress
from .parsing import parse_document
from .schema import Chunk, IngestResult, Metadata
from .settings import ChunkingSettings
from .store import ChunkStore
from .tokens import TokenCounter
from .tracing import ATTR_CHUNK_COUNT, ATTR_DOCUMENT_PATH, ATTR_EMBEDDING_MODEL_NAME, traced_span

logger = structlog.get_logger(logger_name=__name__)


def embedding_input(chunk: Chunk) -> str:
    """Text sent to the embedding model for a chunk: heading, blank line, content."""
    return f"{chunk.heading}\n\n{chunk.content}"


class IngestionPipeline:
    """Parse, chunk, embed and persist one document as the whole corpus.

    Only one ingestion runs at a time; a concurrent call is rejected rather
    than queued. The store is written exclusively by the final atomic
    replace, so a failed run leaves the previous corpus in place.
    """

    def __init__(
        self,
        store: ChunkStore,
        embedder: EmbeddingClient,
        chunking: ChunkingSettings,
        default_document_path: str,
        document_url: str = "",
        counter: TokenCounter | None = None,
        tracer: trace.Tracer | None = None,
    ):
        self.store = store
        self.embedder = embedder
        self.chunking = chunking
        self.default_document_path = default_document_path
        self.document_url = document_url
        self.counter = counter if counter is not None else TokenCounter(chunking.tokenizer_encoding)
        self.tracer = tracer
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    def ingest(self, document_path: str | None = None) -> IngestResult:
        """Run the full ingestion and report the outcome.

        Args:
            document_path: Document to ingest; the configured default when omitted.

        Returns:
            An :class:`IngestResult`. Failures are reported on the result
            (``success=False`` with ``errors`` and ``error_code``) rather than
            raised.
        """
        path = document_path or self.default_document_path
        timestamp = datetime.now(timezone.utc).isoformat()

        if not self._lock.acquire(blocking=False):
            busy = IngestionInProgress()
            logger.warning("ingestion_rejected", document_path=path, reason="in_progress")
            return self._failure(path, timestamp, busy)

        try:
            return self._run(path, timestamp)
        except DocQAError as exc:
            logger.error("ingestion_failed", document_path=path, error=exc.to_dict())
            return self._failure(path, timestamp, exc)
        except Exception as exc:
            logger.exception("ingestion_failed", document_path=path)
            return self._failure(path, timestamp, exc)
        finally:
            self._lock.release()

    def _run(self, path: str, timestamp: str) -> IngestResult:
        started = time.perf_counter()
        logger.info("ingestion_started", document_path=path)

        with traced_span(self.tracer, "ingestion", input_value=path) as span:
            span.set_attribute(ATTR_DOCUMENT_PATH, path)
            span.set_attribute(ATTR_EMBEDDING_MODEL_NAME, getattr(self.embedder, "model", ""))

            sections = parse_document(path)
            logger.info("sections_parsed", count=len(sections))

            merged = merge_small_sections(sections, self.counter, self.chunking)
            logger.info("sections_merged", before=len(sections), after=len(merged))

            source_name = Path(path).name
            drafts = chunk_sections(merged, source_name, self.counter, self.chunking)
            logger.info("chunks_created", count=len(drafts))

            vectors = self.embedder.embed_batch([embedding_input(chunk) for chunk in drafts])
            chunks = [
                Chunk(
                    id=draft.id,
                    heading=draft.heading,
                    content=draft.content,
                    source_path=draft.source_path,
                    offset_start=draft.offset_start,
                    offset_end=draft.offset_end,
                    token_count=draft.token_count,
                    embedding=tuple(vector),
                )
                for draft, vector in zip(drafts, vectors, strict=True)
            ]

            total_tokens = sum(chunk.token_count for chunk in chunks)
            metadata = Metadata(
                document_name=source_name,
                document_path=path,
                section_count=len(merged),
                chunk_count=len(chunks),
                total_tokens=total_tokens,
                ingested_at=timestamp,
                document_url=self.document_url or None,
            )
            self.store.replace(chunks, metadata)
            span.set_attribute(ATTR_CHUNK_COUNT, len(chunks))

        logger.info(
            "ingestion_completed",
            document_path=path,
            sections=len(merged),
            chunks=len(chunks),
            total_tokens=total_tokens,
            elapsed_ms=round((time.perf_counter() - started) * 1000, 1),
        )
        return IngestResult(
            success=True,
            document_path=path,
            section_count=len(merged),
            chunk_count=len(chunks),
            total_tokens=total_tokens,
            timestamp=timestamp,
        )

    @staticmethod
    def _failure(path: str, timestamp: str, exc: Exception) -> IngestResult:
        return IngestResult(
            success=False,
            document_path=path,
            section_count=0,
            chunk_count=0,
            total_tokens=0,
            timestamp=timestamp,
            errors=[str(exc)],
            error_code=exc.error_code if isinstance(exc, DocQAError) else None,
        )
