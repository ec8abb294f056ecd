"""OpenTelemetry tracing helpers for ingestion and answering.

The answer service and the ingestion pipeline open spans through
:func:`traced_span`; with no provider configured those spans go to the no-op
global tracer and cost nothing.

Usage with an OTLP backend (e.g. Arize Phoenix):

    from doc_qa.tracing import configure_tracing, get_tracer

    configure_tracing(
        endpoint="http://localhost:6006/v1/traces",
        service_name="doc-qa",
    )
    service = AnswerService(..., tracer=get_tracer("doc_qa.answering"))

Usage in tests:

    exporter = InMemorySpanExporter()
    configure_tracing(exporter=exporter)
"""
from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from opentelemetry import trace
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import ConsoleSpanExporter, SimpleSpanProcessor, SpanExporter

from .schema import SearchResult

# ---------------------------------------------------------------------------
# OpenInference semantic-convention attribute names
# ---------------------------------------------------------------------------

ATTR_INPUT_VALUE = "input.value"
ATTR_OUTPUT_VALUE = "output.value"
ATTR_LLM_MODEL_NAME = "llm.model_name"
ATTR_RETRIEVAL_DOCUMENTS = "retrieval.documents"
ATTR_EMBEDDING_MODEL_NAME = "embedding.model_name"

ATTR_PROMPT_VARIANT = "doc_qa.prompt.variant"
ATTR_TOP_SCORE = "doc_qa.retrieval.top_score"
ATTR_CHUNK_COUNT = "doc_qa.ingestion.chunk_count"
ATTR_DOCUMENT_PATH = "doc_qa.ingestion.document_path"

OUTPUT_PREVIEW_CHARS = 500

# ---------------------------------------------------------------------------
# Provider lifecycle helpers
# ---------------------------------------------------------------------------

_provider: TracerProvider | None = None


def configure_tracing(
    endpoint: str | None = None,
    service_name: str = "doc-qa",
    exporter: SpanExporter | None = None,
) -> TracerProvider:
    """Create and register a global TracerProvider.

    Args:
        endpoint: OTLP HTTP endpoint URL. When *None* and no *exporter* is
            given, spans are printed to stdout.
        service_name: Label identifying this application in the backend.
        exporter: Pre-built exporter (e.g. ``InMemorySpanExporter`` in tests).
            When provided, *endpoint* is ignored.

    Returns:
        The configured provider, also registered as the global provider.
    """
    global _provider

    resource = Resource(attributes={SERVICE_NAME: service_name})
    provider = TracerProvider(resource=resource)

    if exporter is not None:
        chosen_exporter: SpanExporter = exporter
    elif endpoint is not None:
        try:
            from opentelemetry.exporter.otlp.proto.http.trace_exporter import (
                OTLPSpanExporter,
            )
        except ImportError as exc:  # pragma: no cover
            raise ImportError(
                "opentelemetry-exporter-otlp-proto-http is required to export "
                "traces to an OTLP endpoint. Install the 'otlp' extra."
            ) from exc
        chosen_exporter = OTLPSpanExporter(endpoint=endpoint)
    else:
        chosen_exporter = ConsoleSpanExporter()

    provider.add_span_processor(SimpleSpanProcessor(chosen_exporter))
    trace.set_tracer_provider(provider)
    _provider = provider
    return provider


def get_tracer(name: str) -> trace.Tracer:
    """Return a tracer from the most recently configured provider.

    Falls back to the global (no-op unless configured) provider.
    """
    if _provider is not None:
        return _provider.get_tracer(name)
    return trace.get_tracer(name)


# ---------------------------------------------------------------------------
# Span helpers
# ---------------------------------------------------------------------------


@contextmanager
def traced_span(tracer: trace.Tracer | None, name: str, input_value: str | None = None) -> Iterator[trace.Span]:
    """Run a block inside a span that records OK/ERROR status and exceptions.

    Args:
        tracer: Tracer to use; the global tracer when *None*.
        name: Span name, e.g. ``"retrieval"``.
        input_value: Optional value stored under ``input.value``.

    Yields:
        The active span, for callers that add attributes.
    """
    active_tracer = tracer if tracer is not None else trace.get_tracer("doc_qa")
    with active_tracer.start_as_current_span(name, record_exception=False, set_status_on_exception=False) as span:
        if input_value is not None:
            span.set_attribute(ATTR_INPUT_VALUE, input_value)
        try:
            yield span
        except Exception as exc:
            span.set_status(trace.StatusCode.ERROR, str(exc))
            span.record_exception(exc)
            raise
        span.set_status(trace.StatusCode.OK)


def annotate_retrieval(span: trace.Span, results: list[SearchResult]) -> None:
    """Attach result count and best score to a retrieval span."""
    span.set_attribute(ATTR_RETRIEVAL_DOCUMENTS, len(results))
    if results:
        span.set_attribute(ATTR_TOP_SCORE, float(results[0].score))


def preview(text: str) -> str:
    return text[:OUTPUT_PREVIEW_CHARS]
