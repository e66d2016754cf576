# =============================================================================
# Token-Based Chunker — tiktoken (cl100k_base)
# =============================================================================
#
# Splits a ParsedDocument into overlapping token windows sized for the
# embedding model. Each chunk carries the page it starts on, the section
# heading in force, and the element types it spans.
#
# ALGORITHM:
# 1. Join elements with blank lines, remembering each element's char span
# 2. Encode the full text once
# 3. Slide a window of chunk_size tokens, stepping chunk_size - overlap
# 4. Map each window back to a char range, then to the elements it covers
# =============================================================================

from __future__ import annotations

import bisect
import logging
from dataclasses import dataclass, field

import tiktoken

from grooshub.services.parser import ParsedDocument

logger = logging.getLogger(__name__)

SEPARATOR = "\n\n"


@dataclass
class ChunkResult:
    """A chunk ready for embedding and storage."""

    content: str
    page_number: int
    chunk_index: int  # 0-based, contiguous within the file
    token_count: int
    section_title: str | None = None
    metadata: dict = field(default_factory=dict)


_encoder: tiktoken.Encoding | None = None


def _get_encoder() -> tiktoken.Encoding:
    """Lazily load and cache the cl100k_base encoder."""
    global _encoder
    if _encoder is None:
        _encoder = tiktoken.get_encoding("cl100k_base")
    return _encoder


def count_tokens(text: str) -> int:
    return len(_get_encoder().encode(text))


def chunk_document(
    parsed_doc: ParsedDocument,
    chunk_size: int = 512,
    chunk_overlap: int = 50,
) -> list[ChunkResult]:
    """
    Split a parsed document into token windows.

    Args:
        parsed_doc: Output of the parser.
        chunk_size: Maximum tokens per chunk.
        chunk_overlap: Tokens shared by consecutive chunks. Must be smaller
            than chunk_size.

    Returns:
        Chunks in document order; empty when the document has no text.
    """
    if chunk_overlap >= chunk_size:
        raise ValueError("chunk_overlap must be smaller than chunk_size")

    if not parsed_doc.elements:
        logger.warning("No elements to chunk in '%s'", parsed_doc.filename)
        return []

    encoder = _get_encoder()

    # Start offset of each element within the joined text
    starts: list[int] = []
    position = 0
    for element in parsed_doc.elements:
        starts.append(position)
        position += len(element.text) + len(SEPARATOR)
    full_text = SEPARATOR.join(e.text for e in parsed_doc.elements)

    tokens = encoder.encode(full_text)
    if not tokens:
        return []

    offsets = _token_char_offsets(encoder, tokens)
    step = chunk_size - chunk_overlap
    chunks: list[ChunkResult] = []

    for start in range(0, len(tokens), step):
        end = min(start + chunk_size, len(tokens))
        window = tokens[start:end]
        text = encoder.decode(window).strip()

        if text:
            first = max(bisect.bisect_right(starts, offsets[start]) - 1, 0)
            last = max(bisect.bisect_right(starts, max(offsets[end] - 1, 0)) - 1, first)
            covered = parsed_doc.elements[first:last + 1]

            pages = sorted({e.page_number for e in covered if e.page_number > 0})
            section_title = next(
                (e.section_title for e in covered if e.section_title), None,
            )

            chunks.append(ChunkResult(
                content=text,
                page_number=covered[0].page_number or 1,
                chunk_index=len(chunks),
                token_count=len(window),
                section_title=section_title,
                metadata={
                    "source_pages": pages,
                    "contains_table": any(e.element_type == "table" for e in covered),
                    "element_types": sorted({e.element_type for e in covered}),
                },
            ))

        if end >= len(tokens):
            break

    logger.info(
        "Chunked '%s': %d tokens into %d chunks (size=%d, overlap=%d)",
        parsed_doc.filename, len(tokens), len(chunks), chunk_size, chunk_overlap,
    )
    return chunks


def _token_char_offsets(encoder: tiktoken.Encoding, tokens: list[int]) -> list[int]:
    """Char offset where each token starts, plus an end sentinel."""
    offsets = [0]
    for token in tokens:
        offsets.append(offsets[-1] + len(encoder.decode([token])))
    return offsets
