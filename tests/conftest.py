"""Shared pytest fixtures and deterministic fakes for doc_qa unit tests."""
from __future__ import annotations

from pathlib import Path
from typing import Iterator

import numpy as np
import pytest

from doc_qa.errors import EmbeddingProviderError, ProviderErrorKind
from doc_qa.pipeline import DocQA, build_pipeline
from doc_qa.reranking import extract_keywords
from doc_qa.schema import Chunk, Metadata, SearchResult
from doc_qa.settings import ChunkingSettings, Paths, ProviderSettings, RetrievalSettings, Settings
from doc_qa.store import InMemoryChunkStore
from doc_qa.tokens import TokenCounter

HANDBOOK_MARKDOWN = """\
# Intake

New patients complete the intake packet before their first visit. Front desk staff verify insurance coverage and copy the photo identification card into the patient record.

# Scheduling

Scheduling appointments follows these steps. Staff open the shared calendar, choose the provider, confirm the visit type and book the earliest open slot. Reminder texts go out two days before each scheduled appointment.

# Escalation

Complaints about billing disputes go to the office manager within one business day. Threats of legal action must be forwarded to the compliance officer immediately.
"""


# ---------------------------------------------------------------------------
# Fake clients
# ---------------------------------------------------------------------------


class KeywordEmbeddingClient:
    """Bag-of-keywords embedder: one vector slot per keyword, L2-normalized.

    Keywords are assigned slots in order of first appearance, so texts that
    share no keywords have cosine similarity exactly 0. A text with no
    keywords embeds to the zero vector.
    """

    def __init__(self, dimensions: int = 512):
        self.model = "keyword-fake"
        self.dimensions = dimensions
        self.vocabulary: dict[str, int] = {}
        self.calls: list[list[str]] = []

    def _slot(self, keyword: str) -> int:
        if keyword not in self.vocabulary:
            self.vocabulary[keyword] = len(self.vocabulary) % self.dimensions
        return self.vocabulary[keyword]

    def _vector(self, text: str) -> list[float]:
        vector = np.zeros(self.dimensions, dtype=np.float64)
        for keyword in extract_keywords(text):
            vector[self._slot(keyword)] += 1.0
        norm = np.linalg.norm(vector)
        if norm > 0:
            vector /= norm
        return vector.tolist()

    def embed(self, text: str) -> list[float]:
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        return [self._vector(text) for text in texts]


class FailingEmbeddingClient:
    """Embedder whose every call fails with the given provider error kind."""

    def __init__(self, kind: ProviderErrorKind = ProviderErrorKind.NETWORK, dimensions: int = 512):
        self.kind = kind
        self.dimensions = dimensions

    def embed(self, text: str) -> list[float]:
        raise EmbeddingProviderError("embedding unavailable", self.kind, provider_name="fake")

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        raise EmbeddingProviderError("embedding unavailable", self.kind, provider_name="fake")


class FakeGenerationClient:
    """Generation client that records prompts and replays canned fragments."""

    def __init__(self, fragments: list[str] | None = None, error: Exception | None = None, fail_after: int = 0):
        self.model = "fake-model"
        self.fragments = fragments if fragments is not None else ["Book the ", "earliest open slot [1]."]
        self.error = error
        self.fail_after = fail_after
        self.prompts: list[tuple[str, str]] = []
        self.stream_closed = False
        self.fragments_sent = 0

    def generate(self, system: str, user: str) -> str:
        self.prompts.append((system, user))
        if self.error is not None:
            raise self.error
        return "".join(self.fragments)

    def stream(self, system: str, user: str) -> Iterator[str]:
        self.prompts.append((system, user))
        try:
            for index, fragment in enumerate(self.fragments):
                if self.error is not None and index == self.fail_after:
                    raise self.error
                self.fragments_sent += 1
                yield fragment
            if self.error is not None and self.fail_after >= len(self.fragments):
                raise self.error
        finally:
            self.stream_closed = True


# ---------------------------------------------------------------------------
# Settings and documents
# ---------------------------------------------------------------------------


@pytest.fixture()
def counter() -> TokenCounter:
    return TokenCounter("cl100k_base")


@pytest.fixture()
def chunking_settings() -> ChunkingSettings:
    return ChunkingSettings(
        tokenizer_encoding="cl100k_base",
        target_chunk_tokens=80,
        min_chunk_tokens=20,
        max_chunk_tokens=120,
        chunk_overlap_tokens=40,
    )


@pytest.fixture()
def handbook_path(tmp_path: Path) -> Path:
    path = tmp_path / "handbook.md"
    path.write_text(HANDBOOK_MARKDOWN, encoding="utf-8")
    return path


@pytest.fixture()
def settings(tmp_path: Path, handbook_path: Path, chunking_settings: ChunkingSettings) -> Settings:
    return Settings(
        providers=ProviderSettings(openai_api_key="sk-test", embedding_dimensions=512),
        chunking=chunking_settings,
        retrieval=RetrievalSettings(default_top_k=3, max_top_k=10),
        paths=Paths(document_path=str(handbook_path), corpus_path=str(tmp_path / "corpus.json")),
        dev_mode=True,
    )


# ---------------------------------------------------------------------------
# Wired pipeline
# ---------------------------------------------------------------------------


@pytest.fixture()
def embedder() -> KeywordEmbeddingClient:
    return KeywordEmbeddingClient()


@pytest.fixture()
def generator() -> FakeGenerationClient:
    return FakeGenerationClient()


@pytest.fixture()
def store() -> InMemoryChunkStore:
    return InMemoryChunkStore()


@pytest.fixture()
def doc_qa(settings, store, embedder, generator) -> DocQA:
    return build_pipeline(settings, store=store, embedder=embedder, generator=generator)


@pytest.fixture()
def ingested(doc_qa: DocQA) -> DocQA:
    result = doc_qa.ingest()
    assert result.success, result.errors
    return doc_qa


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


def make_chunk(chunk_id: str, heading: str, content: str, embedding: list[float], offset: int = 0) -> Chunk:
    return Chunk(
        id=chunk_id,
        heading=heading,
        content=content,
        source_path="handbook.md",
        offset_start=offset,
        offset_end=offset + len(content),
        token_count=max(1, len(content.split())),
        embedding=tuple(embedding),
    )


def make_metadata(chunk_count: int, total_tokens: int = 10) -> Metadata:
    return Metadata(
        document_name="handbook.md",
        document_path="/docs/handbook.md",
        section_count=chunk_count,
        chunk_count=chunk_count,
        total_tokens=total_tokens,
        ingested_at="2026-01-01T00:00:00+00:00",
    )


@pytest.fixture()
def sample_chunks() -> list[Chunk]:
    return [
        make_chunk("intake-0-abc", "Intake", "Complete the intake packet.", [1.0, 0.0, 0.0], 0),
        make_chunk("scheduling-1-abc", "Scheduling", "Book the earliest slot.", [0.0, 1.0, 0.0], 29),
        make_chunk("escalation-2-abc", "Escalation", "Forward legal threats.", [0.0, 0.0, 1.0], 54),
    ]


@pytest.fixture()
def sample_results() -> list[SearchResult]:
    return [
        SearchResult(
            id="intake-0-abc",
            heading="Intake",
            content="New patients complete the intake packet before their first visit.",
            score=0.50,
            source_path="handbook.md",
            offset_start=0,
            offset_end=66,
        ),
        SearchResult(
            id="scheduling-1-abc",
            heading="Scheduling",
            content="Scheduling appointments follows these steps.",
            score=0.48,
            source_path="handbook.md",
            offset_start=200,
            offset_end=245,
        ),
        SearchResult(
            id="escalation-2-abc",
            heading="Escalation",
            content="Threats of legal action go to the compliance officer.",
            score=0.30,
            source_path="handbook.md",
            offset_start=400,
            offset_end=454,
        ),
    ]
