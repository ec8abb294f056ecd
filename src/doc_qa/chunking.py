from __future__ import annotations

import re
import time
from dataclasses import dataclass, replace

import structlog

from .schema import Chunk, Section
from .settings import ChunkingSettings
from .tokens import TokenCounter

logger = structlog.get_logger(logger_name=__name__)

PARAGRAPH_BREAK = re.compile(r"\n{2,}")
SENTENCE_BREAK = re.compile(r"(?<=[.!?])\s+")
_SLUG_STRIP = re.compile(r"[^a-z0-9]+")
_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


@dataclass(slots=True)
class Piece:
    """A paragraph or sentence with its absolute span in the normalized text."""

    text: str
    start: int
    end: int


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits: list[str] = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits))


def heading_slug(heading: str, max_length: int = 30) -> str:
    slug = _SLUG_STRIP.sub("-", heading.lower()).strip("-")
    return slug[:max_length] or "section"


def make_chunk_id(heading: str, index: int, created_at_ns: int) -> str:
    """Build `<heading-slug>-<sequence>-<base36 creation time>`."""
    return f"{heading_slug(heading)}-{index}-{_to_base36(created_at_ns)}"


def split_with_spans(text: str, pattern: re.Pattern[str], base_offset: int) -> list[Piece]:
    """Split `text` on `pattern`, keeping each non-blank piece's absolute span."""
    pieces: list[Piece] = []
    cursor = 0
    for match in pattern.finditer(text):
        if match.start() > cursor:
            pieces.append(Piece(text[cursor : match.start()], base_offset + cursor, base_offset + match.start()))
        cursor = match.end()
    if cursor < len(text):
        pieces.append(Piece(text[cursor:], base_offset + cursor, base_offset + len(text)))
    return [piece for piece in pieces if piece.text.strip()]


def merge_small_sections(
    sections: list[Section],
    counter: TokenCounter,
    settings: ChunkingSettings,
) -> list[Section]:
    """Greedily merge adjacent undersized sections at the same heading level.

    Two neighbours are merged when both are below `min_chunk_tokens` and the
    combined text stays within `max_chunk_tokens`. The merged section keeps
    absorbing followers while those conditions hold.

    Args:
        sections: Parsed sections in document order.
        counter: Token counter for the configured encoding.
        settings: Chunk size bounds.

    Returns:
        A new list of sections; the input is not modified.
    """
    if not sections:
        return []

    merged: list[Section] = []
    current = replace(sections[0])
    current_tokens = counter.count(current.content)

    for following in sections[1:]:
        following_tokens = counter.count(following.content)
        if (
            following.level == current.level
            and current_tokens < settings.min_chunk_tokens
            and following_tokens < settings.min_chunk_tokens
        ):
            combined = f"{current.content}\n\n{following.heading}\n\n{following.content}"
            combined_tokens = counter.count(combined)
            if combined_tokens <= settings.max_chunk_tokens:
                # Content now carries absorbed headings; offsets still index heading-free text.
                current.content = combined
                current.end_offset = following.end_offset
                current_tokens = combined_tokens
                continue

        merged.append(current)
        current = replace(following)
        current_tokens = following_tokens

    merged.append(current)
    return merged


class _SectionSplitter:
    """Accumulate-and-emit splitting of one oversized section."""

    def __init__(self, counter: TokenCounter, settings: ChunkingSettings):
        self.counter = counter
        self.max_tokens = settings.max_chunk_tokens
        self.overlap_tokens = settings.chunk_overlap_tokens
        self.output: list[tuple[str, int, int]] = []

    def _emit(self, pieces: list[Piece], separator: str) -> None:
        self.output.append((separator.join(piece.text for piece in pieces), pieces[0].start, pieces[-1].end))

    def _size(self, pieces: list[Piece], separator: str) -> int:
        return self.counter.count(separator.join(piece.text for piece in pieces))

    def _overlap_seed(self, pieces: list[Piece]) -> list[Piece]:
        seed: list[Piece] = []
        for piece in reversed(pieces):
            candidate = [piece, *seed]
            if self._size(candidate, "\n\n") > self.overlap_tokens:
                break
            seed = candidate
        return seed

    def split_paragraphs(self, paragraphs: list[Piece]) -> list[tuple[str, int, int]]:
        current: list[Piece] = []
        for paragraph in paragraphs:
            if self.counter.count(paragraph.text) > self.max_tokens:
                if current:
                    self._emit(current, "\n\n")
                    current = []
                self.split_sentences(paragraph)
                continue

            if current and self._size([*current, paragraph], "\n\n") > self.max_tokens:
                self._emit(current, "\n\n")
                seed = self._overlap_seed(current)
                while seed and self._size([*seed, paragraph], "\n\n") > self.max_tokens:
                    seed = seed[1:]
                current = [*seed, paragraph]
            else:
                current.append(paragraph)

        if current:
            self._emit(current, "\n\n")
        return self.output

    def split_sentences(self, paragraph: Piece) -> None:
        sentences = split_with_spans(paragraph.text, SENTENCE_BREAK, paragraph.start)
        current: list[Piece] = []
        for sentence in sentences:
            if self.counter.count(sentence.text) > self.max_tokens:
                if current:
                    self._emit(current, " ")
                    current = []
                self.split_token_windows(sentence)
                continue
            if current and self._size([*current, sentence], " ") > self.max_tokens:
                self._emit(current, " ")
                current = [sentence]
            else:
                current.append(sentence)
        if current:
            self._emit(current, " ")

    def split_token_windows(self, sentence: Piece) -> None:
        tokens = self.counter.encode(sentence.text)
        position = 0
        cursor = sentence.start
        while position < len(tokens):
            width = min(self.max_tokens, len(tokens) - position)
            text = self.counter.decode(tokens[position : position + width])
            # Decoded text can re-encode to more tokens at window edges.
            while width > 1 and self.counter.count(text) > self.max_tokens:
                width -= 1
                text = self.counter.decode(tokens[position : position + width])
            position += width
            if not text.strip():
                continue
            start = min(cursor, sentence.end - 1)
            end = max(start + 1, min(sentence.end, start + len(text)))
            self.output.append((text, start, end))
            cursor = end


def chunk_sections(
    sections: list[Section],
    source_path: str,
    counter: TokenCounter,
    settings: ChunkingSettings,
    created_at_ns: int | None = None,
) -> list[Chunk]:
    """Turn sections into token-bounded chunks without embeddings.

    Sections within `max_chunk_tokens` become a single chunk verbatim. Larger
    sections are split by paragraph with trailing-paragraph overlap, then by
    sentence, then by token window, so no chunk exceeds the maximum.

    Args:
        sections: Sections (usually already merged) in document order.
        source_path: Document path recorded on each chunk.
        counter: Token counter for the configured encoding.
        settings: Chunk size bounds and overlap size.
        created_at_ns: Creation time embedded in chunk ids; defaults to now.

    Returns:
        Chunks in document order with exact token counts.
    """
    stamp = created_at_ns if created_at_ns is not None else time.time_ns()
    chunks: list[Chunk] = []

    for section in sections:
        section_tokens = counter.count(section.content)
        if section_tokens <= settings.max_chunk_tokens:
            parts = [(section.content, section.start_offset, section.end_offset)]
        else:
            paragraphs = split_with_spans(section.content, PARAGRAPH_BREAK, section.start_offset)
            parts = _SectionSplitter(counter, settings).split_paragraphs(paragraphs)
            logger.debug(
                "section_split",
                heading=section.heading,
                section_tokens=section_tokens,
                parts=len(parts),
            )

        for content, offset_start, offset_end in parts:
            chunks.append(
                Chunk(
                    id=make_chunk_id(section.heading, len(chunks), stamp),
                    heading=section.heading,
                    content=content,
                    source_path=source_path,
                    offset_start=offset_start,
                    offset_end=max(offset_end, offset_start + 1),
                    token_count=counter.count(content),
                )
            )

    return chunks
