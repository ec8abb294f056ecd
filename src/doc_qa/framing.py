"""Wire framing for streamed answers.

A streamed answer is one byte stream::

    __CITATIONS__<json>__END_CITATIONS__<answer text...>

``<json>`` is compact JSON ``{"citations": [...], "retrieved": [...]}`` with
camelCase keys. Any literal ``__END_CITATIONS__`` inside the JSON (for example
in a chunk's text) is written with its underscores as ``\\u005f`` escapes, so
the first occurrence of the terminator in the stream is always the real one.
Everything after the terminator is raw UTF-8 answer text.
"""
from __future__ import annotations

import codecs
import json
from typing import Any, Iterable, Iterator

from .schema import Citation, SearchResult

CITATIONS_PREFIX = "__CITATIONS__"
CITATIONS_SUFFIX = "__END_CITATIONS__"
ESCAPED_CITATIONS_SUFFIX = "\\u005f\\u005fEND_CITATIONS\\u005f\\u005f"

_PREFIX_BYTES = CITATIONS_PREFIX.encode("ascii")
_SUFFIX_BYTES = CITATIONS_SUFFIX.encode("ascii")


class FramingError(ValueError):
    """The byte stream does not start with a well-formed citation header."""


def encode_citation_json(citations: list[Citation], retrieved: list[SearchResult]) -> str:
    payload = {
        "citations": [citation.to_wire() for citation in citations],
        "retrieved": [result.to_wire() for result in retrieved],
    }
    text = json.dumps(payload, separators=(",", ":"), ensure_ascii=False)
    return text.replace(CITATIONS_SUFFIX, ESCAPED_CITATIONS_SUFFIX)


def encode_citation_header(citations: list[Citation], retrieved: list[SearchResult]) -> bytes:
    """Return the complete header frame, prefix and terminator included."""
    body = encode_citation_json(citations, retrieved)
    return f"{CITATIONS_PREFIX}{body}{CITATIONS_SUFFIX}".encode("utf-8")


def frame_answer_stream(
    citations: list[Citation],
    retrieved: list[SearchResult],
    fragments: Iterable[str],
) -> Iterator[bytes]:
    """Yield the header frame, then each non-empty answer fragment as UTF-8."""
    yield encode_citation_header(citations, retrieved)
    for fragment in fragments:
        if fragment:
            yield fragment.encode("utf-8")


class CitationStreamDecoder:
    """Incremental consumer of a framed answer stream.

    Feed raw bytes as they arrive; :meth:`feed` returns whatever answer text
    became available. Multi-byte characters split across reads are held back
    until complete.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()
        self._text_decoder = codecs.getincrementaldecoder("utf-8")()
        self.header_complete = False
        self.citations: list[Citation] = []
        self.retrieved: list[SearchResult] = []

    def feed(self, data: bytes) -> str:
        if self.header_complete:
            return self._text_decoder.decode(data)

        self._buffer.extend(data)
        prefix_length = min(len(self._buffer), len(_PREFIX_BYTES))
        if bytes(self._buffer[:prefix_length]) != _PREFIX_BYTES[:prefix_length]:
            raise FramingError("Stream does not start with the citation header")

        end = self._buffer.find(_SUFFIX_BYTES, len(_PREFIX_BYTES))
        if end < 0:
            return ""

        header = bytes(self._buffer[len(_PREFIX_BYTES) : end]).decode("utf-8")
        self._load_header(header)
        rest = bytes(self._buffer[end + len(_SUFFIX_BYTES) :])
        self._buffer.clear()
        self.header_complete = True
        return self._text_decoder.decode(rest)

    def finish(self) -> str:
        """Flush the decoder at end of stream.

        Raises:
            FramingError: The stream ended before the header terminator.
        """
        if not self.header_complete:
            raise FramingError("Stream ended before the citation header was complete")
        return self._text_decoder.decode(b"", final=True)

    def _load_header(self, header: str) -> None:
        try:
            payload: dict[str, Any] = json.loads(header)
            self.citations = [Citation.from_wire(item) for item in payload.get("citations", [])]
            self.retrieved = [SearchResult.from_wire(item) for item in payload.get("retrieved", [])]
        except (ValueError, KeyError, TypeError) as exc:
            raise FramingError(f"Malformed citation header: {exc}") from exc


def decode_framed(data: bytes) -> tuple[list[Citation], list[SearchResult], str]:
    """Decode a complete framed stream into citations, retrieved results and answer text."""
    decoder = CitationStreamDecoder()
    answer = decoder.feed(data) + decoder.finish()
    return decoder.citations, decoder.retrieved, answer
