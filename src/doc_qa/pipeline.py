from __future__ import annotations

from dataclasses import dataclass

from opentelemetry import trace

from .answering import AnswerService
from .embeddings import EmbeddingClient, OpenAIEmbeddingClient
from .generation import GenerationClient, create_generation_client
from .ingestion import IngestionPipeline
from .retrieval import Retriever
from .settings import Settings
from .store import ChunkStore, JsonChunkStore
from .tokens import TokenCounter
from .tracing import configure_tracing, get_tracer


@dataclass(slots=True)
class DocQA:
    """Wired-up application: one store shared by ingestion and answering."""

    settings: Settings
    store: ChunkStore
    ingestion: IngestionPipeline
    answers: AnswerService

    def ingest(self, document_path: str | None = None):
        return self.ingestion.ingest(document_path)

    def ask(self, question: str, top_k: int | None = None, strict: bool = True, patient_response: bool = False):
        return self.answers.ask(question, top_k=top_k, strict=strict, patient_response=patient_response)

    def ask_stream(
        self, question: str, top_k: int | None = None, strict: bool = True, patient_response: bool = False
    ):
        return self.answers.ask_stream(question, top_k=top_k, strict=strict, patient_response=patient_response)


def tracer_for(settings: Settings) -> trace.Tracer | None:
    """Export spans to `settings.otlp_endpoint` when one is configured."""
    if not settings.otlp_endpoint:
        return None
    configure_tracing(endpoint=settings.otlp_endpoint, service_name="doc-qa")
    return get_tracer("doc_qa")


def build_pipeline(
    settings: Settings,
    store: ChunkStore | None = None,
    embedder: EmbeddingClient | None = None,
    generator: GenerationClient | None = None,
    tracer: trace.Tracer | None = None,
) -> DocQA:
    """Compose the store, clients, ingestion pipeline and answer service.

    Any collaborator may be injected (tests pass fakes); missing ones are
    built from `settings`.

    Args:
        settings: Loaded (and ideally validated) configuration.
        store: Chunk store; defaults to a JSON file at `paths.corpus_path`.
        embedder: Embedding client; defaults to OpenAI embeddings.
        generator: Generation client; defaults to the configured `llm_provider`.
        tracer: OpenTelemetry tracer shared by both halves; defaults to an
            OTLP-exporting tracer when `otlp_endpoint` is set.

    Returns:
        The assembled :class:`DocQA` application.
    """
    store = store if store is not None else JsonChunkStore(settings.paths.corpus_path)
    embedder = embedder if embedder is not None else OpenAIEmbeddingClient(settings.providers)
    generator = generator if generator is not None else create_generation_client(settings.providers)
    tracer = tracer if tracer is not None else tracer_for(settings)

    ingestion = IngestionPipeline(
        store=store,
        embedder=embedder,
        chunking=settings.chunking,
        default_document_path=settings.paths.document_path,
        document_url=settings.paths.document_url,
        counter=TokenCounter(settings.chunking.tokenizer_encoding),
        tracer=tracer,
    )
    retriever = Retriever(store=store, embedder=embedder, max_top_k=settings.retrieval.max_top_k)
    answers = AnswerService(
        retriever=retriever,
        generator=generator,
        default_top_k=settings.retrieval.default_top_k,
        tracer=tracer,
    )
    return DocQA(settings=settings, store=store, ingestion=ingestion, answers=answers)
