"""Tests for tracing.py — configure_tracing, get_tracer, traced_span and the
spans emitted by ingestion and answering.

Spans are collected with InMemorySpanExporter so tests run fully offline.
"""
from __future__ import annotations

import pytest
from opentelemetry import trace
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from conftest import FakeGenerationClient
from doc_qa.errors import GenerationProviderError
from doc_qa.pipeline import build_pipeline
from doc_qa.schema import SearchResult
from doc_qa.tracing import (
    ATTR_CHUNK_COUNT,
    ATTR_EMBEDDING_MODEL_NAME,
    ATTR_INPUT_VALUE,
    ATTR_LLM_MODEL_NAME,
    ATTR_OUTPUT_VALUE,
    ATTR_PROMPT_VARIANT,
    ATTR_RETRIEVAL_DOCUMENTS,
    ATTR_TOP_SCORE,
    OUTPUT_PREVIEW_CHARS,
    annotate_retrieval,
    configure_tracing,
    get_tracer,
    preview,
    traced_span,
)


# ---------------------------------------------------------------------------
# Shared in-memory exporter fixture
# ---------------------------------------------------------------------------


@pytest.fixture()
def mem_exporter() -> InMemorySpanExporter:
    """Fresh InMemorySpanExporter and a configured TracerProvider."""
    exporter = InMemorySpanExporter()
    configure_tracing(exporter=exporter, service_name="test-service")
    return exporter


def _spans_by_name(exporter: InMemorySpanExporter) -> dict:
    return {span.name: span for span in exporter.get_finished_spans()}


# ---------------------------------------------------------------------------
# configure_tracing / get_tracer
# ---------------------------------------------------------------------------


class TestConfigureTracing:
    def test_returns_provider_with_service_name(self):
        provider = configure_tracing(exporter=InMemorySpanExporter(), service_name="doc-qa-test")
        assert provider.resource.attributes["service.name"] == "doc-qa-test"

    def test_missing_otlp_package_raises_import_error(self, monkeypatch):
        """When the otlp exporter package is absent, a helpful ImportError is raised."""
        import builtins

        real_import = builtins.__import__

        def mock_import(name, *args, **kwargs):
            if "otlp" in name:
                raise ImportError("mocked missing package")
            return real_import(name, *args, **kwargs)

        monkeypatch.setattr(builtins, "__import__", mock_import)
        with pytest.raises(ImportError, match="opentelemetry-exporter-otlp"):
            configure_tracing(endpoint="http://localhost:6006/v1/traces")


class TestGetTracer:
    def test_returns_tracer(self, mem_exporter):
        tracer = get_tracer("test.component")
        assert hasattr(tracer, "start_as_current_span")

    def test_spans_reach_configured_exporter(self, mem_exporter):
        with get_tracer("test.component").start_as_current_span("startup-check"):
            pass
        assert [span.name for span in mem_exporter.get_finished_spans()] == ["startup-check"]


# ---------------------------------------------------------------------------
# traced_span / helpers
# ---------------------------------------------------------------------------


class TestTracedSpan:
    def test_success_sets_ok_and_input(self, mem_exporter):
        with traced_span(get_tracer("t"), "step", input_value="hello") as span:
            span.set_attribute("extra", 1)
        finished = _spans_by_name(mem_exporter)["step"]
        assert finished.status.status_code == trace.StatusCode.OK
        assert finished.attributes[ATTR_INPUT_VALUE] == "hello"
        assert finished.attributes["extra"] == 1

    def test_failure_sets_error_and_reraises(self, mem_exporter):
        with pytest.raises(RuntimeError, match="boom"):
            with traced_span(get_tracer("t"), "step"):
                raise RuntimeError("boom")
        finished = _spans_by_name(mem_exporter)["step"]
        assert finished.status.status_code == trace.StatusCode.ERROR
        assert [event.name for event in finished.events] == ["exception"]

    def test_none_tracer_uses_global(self):
        with traced_span(None, "noop") as span:
            assert span is not None


class TestHelpers:
    def test_annotate_retrieval(self, mem_exporter):
        results = [
            SearchResult(id="a", heading="A", content="x", score=0.8, source_path="s", offset_start=0, offset_end=1),
            SearchResult(id="b", heading="B", content="y", score=0.4, source_path="s", offset_start=1, offset_end=2),
        ]
        with get_tracer("t").start_as_current_span("retrieval") as span:
            annotate_retrieval(span, results)
        finished = _spans_by_name(mem_exporter)["retrieval"]
        assert finished.attributes[ATTR_RETRIEVAL_DOCUMENTS] == 2
        assert finished.attributes[ATTR_TOP_SCORE] == pytest.approx(0.8)

    def test_preview_truncates(self):
        assert len(preview("x" * 2000)) == OUTPUT_PREVIEW_CHARS
        assert preview("short") == "short"


# ---------------------------------------------------------------------------
# Spans from the pipeline
# ---------------------------------------------------------------------------


class TestPipelineSpans:
    def test_ingest_and_ask_emit_spans(self, mem_exporter, settings, store, embedder, generator):
        doc_qa = build_pipeline(settings, store=store, embedder=embedder, generator=generator,
                                tracer=get_tracer("doc_qa"))
        doc_qa.ingest()
        doc_qa.ask("What are the steps for scheduling?")

        spans = _spans_by_name(mem_exporter)
        assert {"ingestion", "retrieval", "generation", "rag-pipeline"} <= set(spans)
        assert spans["ingestion"].attributes[ATTR_CHUNK_COUNT] == 3
        assert spans["ingestion"].attributes[ATTR_EMBEDDING_MODEL_NAME] == "keyword-fake"
        assert spans["generation"].attributes[ATTR_LLM_MODEL_NAME] == "fake-model"
        assert spans["generation"].attributes[ATTR_PROMPT_VARIANT] == "grounded"
        assert spans["rag-pipeline"].attributes[ATTR_OUTPUT_VALUE] == "Book the earliest open slot [1]."
        assert spans["retrieval"].parent.span_id == spans["rag-pipeline"].context.span_id

    def test_stream_generation_span_closes_on_error(self, mem_exporter, settings, store, embedder):
        failing = FakeGenerationClient(error=RuntimeError("upstream died"), fail_after=1)
        doc_qa = build_pipeline(settings, store=store, embedder=embedder, generator=failing,
                                tracer=get_tracer("doc_qa"))
        doc_qa.ingest()
        with doc_qa.ask_stream("What are the steps for scheduling?") as stream:
            text = "".join(stream.fragments())

        assert text.startswith("Book the ")
        generation = _spans_by_name(mem_exporter)["generation"]
        assert generation.status.status_code == trace.StatusCode.ERROR
        assert generation.end_time is not None

    def test_stream_generation_span_closes_on_early_error(self, mem_exporter, settings, store, embedder):
        failing = FakeGenerationClient(error=RuntimeError("upstream died"))
        doc_qa = build_pipeline(settings, store=store, embedder=embedder, generator=failing,
                                tracer=get_tracer("doc_qa"))
        doc_qa.ingest()
        with pytest.raises(GenerationProviderError):
            doc_qa.ask_stream("What are the steps for scheduling?")

        generation = _spans_by_name(mem_exporter)["generation"]
        assert generation.status.status_code == trace.StatusCode.ERROR
        assert generation.end_time is not None
        assert generation.attributes["doc_qa.generation.emitted_chars"] == 0
