"""Grounded question answering over a single procedural document."""

from .errors import DocQAError
from .pipeline import DocQA, build_pipeline
from .schema import AskResult, Chunk, Citation, IngestResult, Metadata, SearchResult, Section

__all__ = [
    "AskResult",
    "Chunk",
    "Citation",
    "DocQA",
    "DocQAError",
    "IngestResult",
    "Metadata",
    "SearchResult",
    "Section",
    "build_pipeline",
]
