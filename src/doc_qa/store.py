"""Chunk store: one flat, wholesale-replaced collection of embedded chunks.

Readers always work on an immutable :class:`CorpusSnapshot`. A replacement
builds a complete new snapshot first and swaps the reference in one step, so a
reader sees either the previous corpus or the next one, never a mixture.
"""
from __future__ import annotations

import json
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Mapping

import numpy as np
import structlog

from .schema import Chunk, Metadata

logger = structlog.get_logger(logger_name=__name__)


@dataclass(frozen=True)
class CorpusSnapshot:
    """Read-only view of the corpus at one point in time."""

    chunks: tuple[Chunk, ...] = ()
    metadata: Metadata | None = None
    index: Mapping[str, int] = field(default_factory=lambda: MappingProxyType({}))
    matrix: np.ndarray = field(default_factory=lambda: np.zeros((0, 0), dtype=np.float32))

    @classmethod
    def build(cls, chunks: list[Chunk] | tuple[Chunk, ...], metadata: Metadata | None) -> CorpusSnapshot:
        frozen_chunks = tuple(chunks)
        index = MappingProxyType({chunk.id: position for position, chunk in enumerate(frozen_chunks)})
        if frozen_chunks:
            matrix = np.array([chunk.embedding for chunk in frozen_chunks], dtype=np.float32)
        else:
            matrix = np.zeros((0, 0), dtype=np.float32)
        matrix.setflags(write=False)
        return cls(chunks=frozen_chunks, metadata=metadata, index=index, matrix=matrix)

    def __len__(self) -> int:
        return len(self.chunks)


class ChunkStore(ABC):
    """Interface shared by the in-memory and file-backed stores."""

    def __init__(self) -> None:
        self._snapshot = CorpusSnapshot()
        self._write_lock = threading.Lock()

    def snapshot(self) -> CorpusSnapshot:
        return self._snapshot

    def get(self, chunk_id: str) -> Chunk | None:
        snapshot = self._snapshot
        position = snapshot.index.get(chunk_id)
        return None if position is None else snapshot.chunks[position]

    def get_many(self, chunk_ids: list[str]) -> list[Chunk]:
        """Return chunks for the known ids, in the order requested."""
        snapshot = self._snapshot
        return [snapshot.chunks[snapshot.index[chunk_id]] for chunk_id in chunk_ids if chunk_id in snapshot.index]

    def scan(self) -> tuple[Chunk, ...]:
        return self._snapshot.chunks

    def count(self) -> int:
        return len(self._snapshot)

    def get_metadata(self) -> Metadata | None:
        return self._snapshot.metadata

    def unique_headings(self) -> list[str]:
        """Distinct chunk headings in document order."""
        return list(dict.fromkeys(chunk.heading for chunk in self._snapshot.chunks))

    def replace(self, chunks: list[Chunk], metadata: Metadata) -> None:
        """Atomically swap the whole collection and its metadata."""
        snapshot = CorpusSnapshot.build(chunks, metadata)
        with self._write_lock:
            self._persist(snapshot)
            self._snapshot = snapshot
        logger.info("store_replaced", chunk_count=len(snapshot), document=metadata.document_name)

    def clear(self) -> None:
        snapshot = CorpusSnapshot()
        with self._write_lock:
            self._persist(snapshot)
            self._snapshot = snapshot
        logger.info("store_cleared")

    @abstractmethod
    def _persist(self, snapshot: CorpusSnapshot) -> None:
        """Write `snapshot` durably before it becomes visible to readers."""


class InMemoryChunkStore(ChunkStore):
    """Process-local store; nothing survives a restart."""

    def _persist(self, snapshot: CorpusSnapshot) -> None:
        return None


class JsonChunkStore(ChunkStore):
    """Store persisted as one JSON document `{"chunks": [...], "metadata": {...}}`.

    Writes go to a temporary file in the same directory which is then renamed
    over the target, so the file on disk is always a complete corpus.
    """

    def __init__(self, path: str | Path):
        super().__init__()
        self.path = Path(path)
        self.reload()

    def reload(self) -> None:
        """Re-read the corpus file, e.g. after another process re-ingested."""
        if not self.path.is_file():
            self._snapshot = CorpusSnapshot()
            return

        with self.path.open("r", encoding="utf-8") as file_handle:
            payload = json.load(file_handle)

        chunks = [Chunk.from_record(record) for record in payload.get("chunks", [])]
        metadata_record = payload.get("metadata")
        metadata = Metadata.from_record(metadata_record) if metadata_record else None
        self._snapshot = CorpusSnapshot.build(chunks, metadata)
        logger.debug("store_loaded", path=str(self.path), chunk_count=len(chunks))

    def _persist(self, snapshot: CorpusSnapshot) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "chunks": [chunk.to_record() for chunk in snapshot.chunks],
            "metadata": snapshot.metadata.to_record() if snapshot.metadata else None,
        }
        file_descriptor, temp_name = tempfile.mkstemp(
            dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(file_descriptor, "w", encoding="utf-8") as file_handle:
                json.dump(payload, file_handle)
                file_handle.flush()
                os.fsync(file_handle.fileno())
            os.replace(temp_name, self.path)
        except BaseException:
            Path(temp_name).unlink(missing_ok=True)
            raise
