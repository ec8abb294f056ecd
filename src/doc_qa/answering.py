from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Iterator

import structlog
from opentelemetry import trace

from .errors import (
    PROVIDER_MESSAGES,
    DocQAError,
    GenerationProviderError,
    InvalidQuestion,
    classify_provider_error,
    provider_error_from,
)
from .framing import frame_answer_stream
from .generation import GenerationClient
from .prompts import RELEVANCE_FLOOR, build_answer_prompt
from .reranking import RERANK_BOOST_FACTOR, rerank_by_keywords
from .retrieval import Retriever
from .schema import AskResult, Citation, PromptPair, SearchResult
from .tracing import (
    ATTR_LLM_MODEL_NAME,
    ATTR_OUTPUT_VALUE,
    ATTR_PROMPT_VARIANT,
    annotate_retrieval,
    preview,
    traced_span,
)

logger = structlog.get_logger(logger_name=__name__)

MAX_QUESTION_CHARS = 2000
EXCERPT_CHARS = 150
ELLIPSIS = "..."

_EXHAUSTED = object()


def validate_question(question: object) -> str:
    """Return the question unchanged if it is usable, else raise InvalidQuestion."""
    if not isinstance(question, str):
        raise InvalidQuestion("Question is required and must be a string")
    if not question.strip():
        raise InvalidQuestion("Question cannot be empty")
    if len(question) > MAX_QUESTION_CHARS:
        raise InvalidQuestion(f"Question is too long (max {MAX_QUESTION_CHARS} characters)")
    return question


def create_excerpt(content: str, max_length: int = EXCERPT_CHARS) -> str:
    """Shorten content to at most `max_length` characters, ellipsis included.

    Breaks at the last space when it falls in the final 30% of the window.
    """
    if len(content) <= max_length:
        return content
    window = max_length - len(ELLIPSIS)
    truncated = content[:window]
    last_space = truncated.rfind(" ")
    if last_space > window * 0.7:
        return truncated[:last_space] + ELLIPSIS
    return truncated + ELLIPSIS


def results_to_citations(results: list[SearchResult]) -> list[Citation]:
    return [
        Citation(
            id=result.id,
            number=number,
            heading=result.heading,
            excerpt=create_excerpt(result.content),
            score=result.score,
            source_path=result.source_path,
            offset_start=result.offset_start,
            offset_end=result.offset_end,
        )
        for number, result in enumerate(results, start=1)
    ]


def inline_error_marker(exc: BaseException) -> str:
    """Text appended to a partially streamed answer when generation fails."""
    if isinstance(exc, DocQAError):
        message = exc.user_message
    else:
        message = PROVIDER_MESSAGES[classify_provider_error(exc)]
    return f"\n\n[Error: {message}]"


@dataclass(slots=True)
class PreparedAnswer:
    """Everything decided before generation starts."""

    question: str
    results: list[SearchResult]
    citations: list[Citation]
    prompt: PromptPair


class AnswerStream:
    """A streamed answer whose citations are known before any text arrives.

    Iterate :meth:`fragments` for answer text or :meth:`iter_bytes` for the
    framed wire format. :meth:`close` stops generation and releases the
    provider connection; it is safe to call more than once.
    """

    def __init__(
        self,
        prepared: PreparedAnswer,
        generator: GenerationClient,
        tracer: trace.Tracer | None = None,
    ):
        self.citations = prepared.citations
        self.retrieved = prepared.results
        self.prompt = prepared.prompt
        self._generator = generator
        self._tracer = tracer
        self._fragments: Iterator[str] | None = None
        self._upstream: Iterator[str] | None = None
        self._span: trace.Span | None = None
        self._emitted = 0
        self.closed = False

    def open(self) -> None:
        """Send the prompt and wait for the first fragment.

        Raises:
            GenerationProviderError: The provider failed before any text arrived.
        """
        if self._fragments is not None or self.closed:
            return
        # Span is not made current: the relay may be resumed from other threads.
        tracer = self._tracer if self._tracer is not None else trace.get_tracer("doc_qa")
        self._span = tracer.start_span("generation")
        self._span.set_attribute(ATTR_LLM_MODEL_NAME, getattr(self._generator, "model", ""))
        self._span.set_attribute(ATTR_PROMPT_VARIANT, self.prompt.variant)
        try:
            self._upstream = iter(self._generator.stream(self.prompt.system, self.prompt.user))
            first = next(self._upstream, _EXHAUSTED)
        except Exception as exc:
            self.closed = True
            self._fail(exc)
            self._finish()
            if isinstance(exc, DocQAError):
                raise
            provider_name = getattr(self._generator, "provider_name", "unknown")
            raise provider_error_from(exc, GenerationProviderError, provider_name, "chat stream") from exc
        self._fragments = self._relay(first)

    def fragments(self) -> Iterator[str]:
        """Answer text fragments; single use."""
        self.open()
        return self._fragments if self._fragments is not None else iter(())

    def iter_bytes(self) -> Iterator[bytes]:
        return frame_answer_stream(self.citations, self.retrieved, self.fragments())

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self._fragments is not None:
            self._fragments.close()
        self._finish()

    def __enter__(self) -> AnswerStream:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _relay(self, first: object) -> Iterator[str]:
        try:
            if first is not _EXHAUSTED:
                self._emitted += len(first)
                yield first
            for fragment in self._upstream:
                self._emitted += len(fragment)
                yield fragment
            self._span.set_status(trace.StatusCode.OK)
        except Exception as exc:
            self._fail(exc)
            yield inline_error_marker(exc)
        finally:
            self._finish()

    def _fail(self, exc: Exception) -> None:
        self._span.set_status(trace.StatusCode.ERROR, str(exc))
        self._span.record_exception(exc)
        logger.error("generation_stream_failed", error=str(exc), emitted_chars=self._emitted)

    def _finish(self) -> None:
        if self._span is None:
            return
        span, self._span = self._span, None
        close = getattr(self._upstream, "close", None)
        if close is not None:
            close()
        span.set_attribute("doc_qa.generation.emitted_chars", self._emitted)
        span.end()
        logger.debug("generation_stream_closed", emitted_chars=self._emitted)


class AnswerService:
    """Orchestrates retrieval, reranking, prompt assembly and generation."""

    def __init__(
        self,
        retriever: Retriever,
        generator: GenerationClient,
        default_top_k: int = 5,
        tracer: trace.Tracer | None = None,
        relevance_floor: float = RELEVANCE_FLOOR,
        boost_factor: float = RERANK_BOOST_FACTOR,
    ):
        self.retriever = retriever
        self.generator = generator
        self.default_top_k = default_top_k
        self.tracer = tracer
        self.relevance_floor = relevance_floor
        self.boost_factor = boost_factor

    def prepare(
        self,
        question: str,
        top_k: int | None = None,
        strict: bool = True,
        patient_response: bool = False,
    ) -> PreparedAnswer:
        """Validate, retrieve, rerank and build the prompt.

        Raises:
            InvalidQuestion: Empty or over-long question.
            NoDataIngested: Nothing has been ingested yet.
            RetrievalError: The question could not be embedded.
        """
        question = validate_question(question)
        k = top_k if top_k is not None else self.default_top_k
        k = max(1, min(k, self.retriever.max_top_k))

        with traced_span(self.tracer, "retrieval", input_value=question) as span:
            candidates = self.retriever.search(question, top_k=k * 2)
            reranked = rerank_by_keywords(candidates, question, self.boost_factor)
            results = reranked[:k]
            annotate_retrieval(span, results)

        prompt = build_answer_prompt(question, results, strict, patient_response, self.relevance_floor)
        logger.info(
            "answer_prepared",
            candidates=len(candidates),
            results=len(results),
            top_score=round(results[0].score, 4) if results else None,
            variant=prompt.variant,
            strict=strict,
            patient_response=patient_response,
        )
        return PreparedAnswer(
            question=question,
            results=results,
            citations=results_to_citations(results),
            prompt=prompt,
        )

    def ask(
        self,
        question: str,
        top_k: int | None = None,
        strict: bool = True,
        patient_response: bool = False,
    ) -> AskResult:
        """Answer a question in one piece.

        Raises:
            InvalidQuestion, NoDataIngested, RetrievalError: Before generation.
            GenerationProviderError: The model call failed.
        """
        question = validate_question(question)
        started = time.perf_counter()
        with traced_span(self.tracer, "rag-pipeline", input_value=question) as pipeline_span:
            prepared = self.prepare(question, top_k, strict, patient_response)
            with traced_span(self.tracer, "generation") as span:
                span.set_attribute(ATTR_LLM_MODEL_NAME, getattr(self.generator, "model", ""))
                span.set_attribute(ATTR_PROMPT_VARIANT, prepared.prompt.variant)
                answer = self.generator.generate(prepared.prompt.system, prepared.prompt.user)
                span.set_attribute(ATTR_OUTPUT_VALUE, preview(answer))
            pipeline_span.set_attribute(ATTR_OUTPUT_VALUE, preview(answer))

        logger.info(
            "answer_completed",
            answer_chars=len(answer),
            citations=len(prepared.citations),
            elapsed_ms=round((time.perf_counter() - started) * 1000, 1),
        )
        return AskResult(answer=answer, citations=prepared.citations, retrieved=prepared.results)

    def ask_stream(
        self,
        question: str,
        top_k: int | None = None,
        strict: bool = True,
        patient_response: bool = False,
    ) -> AnswerStream:
        """Retrieve, send the prompt and wait for the first fragment.

        Retrieval errors and provider failures before the first fragment raise
        here, before any byte is produced. Generation errors after streaming
        has begun become an inline error marker at the end of the text.
        """
        question = validate_question(question)
        with traced_span(self.tracer, "rag-pipeline", input_value=question):
            prepared = self.prepare(question, top_k, strict, patient_response)
        stream = AnswerStream(prepared, self.generator, tracer=self.tracer)
        stream.open()
        return stream
