"""Document parsing: source file -> ordered heading-delimited sections.

Each supported format is first converted into a flat, ordered list of
heading / paragraph / list-item blocks, then folded into sections. Body blocks
are laid end to end (joined by a blank line) to form the normalized document
text that chunk offsets point into; headings are not part of that text.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path

import docx
import structlog
from docx.table import Table
from docx.text.paragraph import Paragraph

from .errors import DocumentNotFound, EmptyDocument, UnsupportedDocumentFormat
from .schema import Section

logger = structlog.get_logger(logger_name=__name__)

DOCUMENT_START_HEADING = "Document Start"
BLOCK_SEPARATOR = "\n\n"
LIST_BULLET = "• "

_HEADING_STYLE = re.compile(r"^heading\s*(\d)$", re.IGNORECASE)
_MD_HEADING = re.compile(r"^(#{1,6})\s+(.+?)\s*#*\s*$")
_MD_LIST_ITEM = re.compile(r"^\s*(?:[-*+]|\d+[.)])\s+(.*)$")


@dataclass(slots=True)
class Block:
    """One structural element of a document in reading order."""

    kind: str  # "heading", "paragraph" or "list"
    text: str
    level: int = 0


def _clean(text: str) -> str:
    return " ".join(text.split())


def _docx_paragraph_block(paragraph: Paragraph) -> Block | None:
    text = _clean(paragraph.text)
    if not text:
        return None
    style_name = paragraph.style.name if paragraph.style is not None else ""
    match = _HEADING_STYLE.match(style_name)
    if match:
        return Block(kind="heading", text=text, level=int(match.group(1)))
    if style_name.lower() == "title":
        return Block(kind="heading", text=text, level=1)
    p_pr = paragraph._p.pPr
    is_numbered = p_pr is not None and p_pr.numPr is not None
    if style_name.lower().startswith("list") or is_numbered:
        return Block(kind="list", text=text)
    return Block(kind="paragraph", text=text)


def read_docx_blocks(path: Path) -> list[Block]:
    """Walk a .docx body in order, including paragraphs nested in tables."""
    document = docx.Document(str(path))
    blocks: list[Block] = []
    for item in document.iter_inner_content():
        if isinstance(item, Paragraph):
            block = _docx_paragraph_block(item)
            if block is not None:
                blocks.append(block)
        elif isinstance(item, Table):
            seen_cells: set[int] = set()
            for row in item.rows:
                for cell in row.cells:
                    # Merged cells are returned once per grid position.
                    if id(cell._tc) in seen_cells:
                        continue
                    seen_cells.add(id(cell._tc))
                    for paragraph in cell.paragraphs:
                        text = _clean(paragraph.text)
                        if text:
                            blocks.append(Block(kind="paragraph", text=text))
    return blocks


def read_markdown_blocks(text: str) -> list[Block]:
    """Split Markdown or plain text into heading, paragraph and list blocks."""
    blocks: list[Block] = []
    paragraph_lines: list[str] = []

    def _flush_paragraph() -> None:
        if paragraph_lines:
            cleaned = _clean(" ".join(paragraph_lines))
            if cleaned:
                blocks.append(Block(kind="paragraph", text=cleaned))
            paragraph_lines.clear()

    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line:
            _flush_paragraph()
            continue
        heading = _MD_HEADING.match(line)
        if heading:
            _flush_paragraph()
            blocks.append(Block(kind="heading", text=_clean(heading.group(2)), level=len(heading.group(1))))
            continue
        list_item = _MD_LIST_ITEM.match(raw_line)
        if list_item:
            _flush_paragraph()
            item_text = _clean(list_item.group(1))
            if item_text:
                blocks.append(Block(kind="list", text=item_text))
            continue
        paragraph_lines.append(line)

    _flush_paragraph()
    return blocks


def blocks_to_sections(blocks: list[Block]) -> list[Section]:
    """Fold ordered blocks into sections, tracking offsets into the normalized text.

    Content before the first heading is kept under a synthetic
    "Document Start" heading. Headings without body text produce no section.
    """
    sections: list[Section] = []
    current_heading = DOCUMENT_START_HEADING
    current_level = 0
    current_parts: list[str] = []
    section_start = 0
    cursor = 0

    def _commit_section() -> None:
        if not current_parts:
            return
        content = BLOCK_SEPARATOR.join(current_parts)
        sections.append(
            Section(
                heading=current_heading,
                level=current_level,
                content=content,
                start_offset=section_start,
                end_offset=section_start + len(content),
            )
        )

    for block in blocks:
        if block.kind == "heading":
            _commit_section()
            current_heading = block.text
            current_level = block.level or 1
            current_parts = []
            continue

        text = f"{LIST_BULLET}{block.text}" if block.kind == "list" else block.text
        if not current_parts:
            section_start = cursor
        current_parts.append(text)
        cursor += len(text) + len(BLOCK_SEPARATOR)

    _commit_section()
    return sections


def normalized_text(blocks: list[Block]) -> str:
    """Return the text that section and chunk offsets index into."""
    parts = [f"{LIST_BULLET}{b.text}" if b.kind == "list" else b.text for b in blocks if b.kind != "heading"]
    return BLOCK_SEPARATOR.join(parts)


def read_blocks(path: str | Path) -> list[Block]:
    source = Path(path)
    if not source.is_file():
        raise DocumentNotFound(str(source))

    suffix = source.suffix.lower()
    if suffix == ".docx":
        return read_docx_blocks(source)
    if suffix in {".md", ".markdown", ".txt"}:
        return read_markdown_blocks(source.read_text(encoding="utf-8"))
    raise UnsupportedDocumentFormat(str(source))


def parse_document(path: str | Path) -> list[Section]:
    """Parse a document into ordered sections.

    Args:
        path: Path to a `.docx`, `.md` or `.txt` file.

    Returns:
        Sections in document order.

    Raises:
        DocumentNotFound: The path does not point to a file.
        UnsupportedDocumentFormat: The suffix is not a supported format.
        EmptyDocument: The document yields no sections.
    """
    blocks = read_blocks(path)
    sections = blocks_to_sections(blocks)
    if not sections:
        raise EmptyDocument(str(path))
    logger.debug("document_parsed", path=str(path), blocks=len(blocks), sections=len(sections))
    return sections
