from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(slots=True)
class Section:
    """Heading-delimited span of the source document produced by the parser."""

    heading: str
    level: int
    content: str
    start_offset: int
    end_offset: int


@dataclass(slots=True, frozen=True)
class Chunk:
    """Persisted unit of retrieval: bounded document text plus its embedding."""

    id: str
    heading: str
    content: str
    source_path: str
    offset_start: int
    offset_end: int
    token_count: int
    embedding: tuple[float, ...] = ()

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "heading": self.heading,
            "content": self.content,
            "source_path": self.source_path,
            "offset_start": self.offset_start,
            "offset_end": self.offset_end,
            "token_count": self.token_count,
            "embedding": list(self.embedding),
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> Chunk:
        return cls(
            id=record["id"],
            heading=record["heading"],
            content=record["content"],
            source_path=record["source_path"],
            offset_start=int(record["offset_start"]),
            offset_end=int(record["offset_end"]),
            token_count=int(record["token_count"]),
            embedding=tuple(float(value) for value in record["embedding"]),
        )


@dataclass(slots=True, frozen=True)
class Metadata:
    """Ingestion summary stored next to the chunks."""

    document_name: str
    document_path: str
    section_count: int
    chunk_count: int
    total_tokens: int
    ingested_at: str
    document_url: str | None = None

    def to_record(self) -> dict[str, Any]:
        record: dict[str, Any] = {
            "document_name": self.document_name,
            "document_path": self.document_path,
            "section_count": self.section_count,
            "chunk_count": self.chunk_count,
            "total_tokens": self.total_tokens,
            "ingested_at": self.ingested_at,
        }
        if self.document_url:
            record["document_url"] = self.document_url
        return record

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> Metadata:
        return cls(
            document_name=record["document_name"],
            document_path=record["document_path"],
            section_count=int(record["section_count"]),
            chunk_count=int(record["chunk_count"]),
            total_tokens=int(record["total_tokens"]),
            ingested_at=record["ingested_at"],
            document_url=record.get("document_url") or None,
        )


@dataclass(slots=True)
class SearchResult:
    """Ranked chunk returned by the retriever; the reranker adjusts `score` in place."""

    id: str
    heading: str
    content: str
    score: float
    source_path: str
    offset_start: int
    offset_end: int

    def to_wire(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "heading": self.heading,
            "content": self.content,
            "score": self.score,
            "sourcePath": self.source_path,
            "offsetStart": self.offset_start,
            "offsetEnd": self.offset_end,
        }

    @classmethod
    def from_wire(cls, payload: dict[str, Any]) -> SearchResult:
        return cls(
            id=payload["id"],
            heading=payload["heading"],
            content=payload["content"],
            score=float(payload["score"]),
            source_path=payload["sourcePath"],
            offset_start=int(payload["offsetStart"]),
            offset_end=int(payload["offsetEnd"]),
        )


@dataclass(slots=True)
class Citation:
    """Numbered reference from an answer back to one retrieved chunk."""

    id: str
    number: int
    heading: str
    excerpt: str
    score: float
    source_path: str
    offset_start: int
    offset_end: int

    def to_wire(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "number": self.number,
            "heading": self.heading,
            "excerpt": self.excerpt,
            "score": self.score,
            "sourcePath": self.source_path,
            "offsetStart": self.offset_start,
            "offsetEnd": self.offset_end,
        }

    @classmethod
    def from_wire(cls, payload: dict[str, Any]) -> Citation:
        return cls(
            id=payload["id"],
            number=int(payload["number"]),
            heading=payload["heading"],
            excerpt=payload["excerpt"],
            score=float(payload["score"]),
            source_path=payload["sourcePath"],
            offset_start=int(payload["offsetStart"]),
            offset_end=int(payload["offsetEnd"]),
        )


@dataclass(slots=True)
class PromptPair:
    """System/user instructions for one generation call."""

    system: str
    user: str
    variant: str = "grounded"


@dataclass(slots=True)
class IngestResult:
    """Outcome of one ingestion run."""

    success: bool
    document_path: str
    section_count: int
    chunk_count: int
    total_tokens: int
    timestamp: str
    errors: list[str] = field(default_factory=list)
    error_code: str | None = None

    def to_wire(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "documentPath": self.document_path,
            "sectionCount": self.section_count,
            "chunkCount": self.chunk_count,
            "totalTokens": self.total_tokens,
            "timestamp": self.timestamp,
            "errors": list(self.errors),
            "errorCode": self.error_code,
        }


@dataclass(slots=True)
class AskResult:
    """Buffered answer with its citations and the results it was grounded on."""

    answer: str
    citations: list[Citation]
    retrieved: list[SearchResult]

    def to_wire(self) -> dict[str, Any]:
        return {
            "answer": self.answer,
            "citations": [citation.to_wire() for citation in self.citations],
            "retrieved": [result.to_wire() for result in self.retrieved],
        }
