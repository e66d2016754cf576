# =============================================================================
# Document Parser — Docling for PDF/Office, Plain Decoding for Text
# =============================================================================
#
# Turns an uploaded project file into a list of structural elements with
# page numbers and the section heading they fall under. Downstream code
# (chunker, worker) only sees ParsedDocument/ParsedElement, never Docling
# types.
#
# Formats:
#   .pdf, .docx, .pptx, .html  → Docling (layout model, tables, OCR)
#   .txt, .md, .markdown, .csv → UTF-8 decode; markdown "#" lines are headings
#
# Docling loads ML models on first use, so the converter is created lazily
# and reused by every task in the worker process.
# =============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

DOCLING_SUFFIXES = {".pdf", ".docx", ".pptx", ".html", ".htm"}
TEXT_SUFFIXES = {".txt", ".md", ".markdown", ".csv"}
SUPPORTED_SUFFIXES = DOCLING_SUFFIXES | TEXT_SUFFIXES


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class ParsedElement:
    """One paragraph, heading or table, in reading order."""

    text: str  # Markdown for tables
    page_number: int  # 1-indexed; text files are a single page
    element_type: str  # "text", "table" or "heading"
    section_title: str | None = None
    level: int = 0


@dataclass
class ParsedDocument:
    elements: list[ParsedElement] = field(default_factory=list)
    page_count: int = 0
    filename: str = ""


class UnsupportedFileTypeError(ValueError):
    """The file extension has no parser."""


class EmptyDocumentError(ValueError):
    """Parsing produced no text to chunk."""


# ---------------------------------------------------------------------------
# Docling Converter — Lazy Singleton
# ---------------------------------------------------------------------------

_converter = None


def _get_converter():
    """Lazily initialize and cache the Docling DocumentConverter."""
    global _converter
    if _converter is None:
        from docling.datamodel.base_models import InputFormat
        from docling.datamodel.pipeline_options import PdfPipelineOptions
        from docling.document_converter import DocumentConverter, PdfFormatOption

        logger.info("Initializing Docling DocumentConverter (first use)...")

        # Building specs and tender documents are table-heavy; scans need OCR
        pipeline_options = PdfPipelineOptions()
        pipeline_options.do_table_structure = True
        pipeline_options.do_ocr = True

        _converter = DocumentConverter(
            format_options={
                InputFormat.PDF: PdfFormatOption(pipeline_options=pipeline_options),
            }
        )
    return _converter


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def is_supported(filename: str) -> bool:
    return Path(filename).suffix.lower() in SUPPORTED_SUFFIXES


def parse_file(file_path: str, filename: str | None = None) -> ParsedDocument:
    """
    Parse a stored upload.

    Args:
        file_path: Path of the stored file on disk.
        filename: Original upload name; its extension picks the parser.
            Defaults to the basename of file_path.

    Raises:
        FileNotFoundError: The stored file is missing.
        UnsupportedFileTypeError: No parser for the extension.
        RuntimeError: Docling failed to convert the document.
    """
    path = Path(file_path)
    if not path.exists():
        raise FileNotFoundError(f"File not found: {file_path}")

    name = filename or path.name
    suffix = Path(name).suffix.lower()

    if suffix in TEXT_SUFFIXES:
        document = parse_text(path.read_bytes().decode("utf-8", errors="replace"), name)
    elif suffix in DOCLING_SUFFIXES:
        document = _parse_with_docling(path, name)
    else:
        raise UnsupportedFileTypeError(f"Unsupported file type: '{suffix or name}'")

    logger.info(
        "Parsed '%s': %d elements (%d headings, %d tables), %d pages",
        name,
        len(document.elements),
        sum(1 for e in document.elements if e.element_type == "heading"),
        sum(1 for e in document.elements if e.element_type == "table"),
        document.page_count,
    )
    return document


def parse_text(content: str, filename: str) -> ParsedDocument:
    """
    Split plain text or markdown into paragraphs.

    Blank lines separate paragraphs; a paragraph starting with "#" is a
    heading and becomes the section title for what follows.
    """
    elements: list[ParsedElement] = []
    current_section: str | None = None

    for block in content.replace("\r\n", "\n").split("\n\n"):
        block = block.strip()
        if not block:
            continue

        if block.startswith("#"):
            first_line, _, rest = block.partition("\n")
            level = len(first_line) - len(first_line.lstrip("#"))
            heading = first_line.lstrip("#").strip()
            if heading:
                current_section = heading
                elements.append(ParsedElement(
                    text=heading,
                    page_number=1,
                    element_type="heading",
                    section_title=heading,
                    level=level,
                ))
            block = rest.strip()
            if not block:
                continue

        element_type = "table" if block.startswith("|") else "text"
        elements.append(ParsedElement(
            text=block,
            page_number=1,
            element_type=element_type,
            section_title=current_section,
        ))

    return ParsedDocument(
        elements=elements,
        page_count=1 if elements else 0,
        filename=filename,
    )


# ---------------------------------------------------------------------------
# Internal Helpers
# ---------------------------------------------------------------------------


def _parse_with_docling(path: Path, filename: str) -> ParsedDocument:
    from docling_core.types.doc.labels import DocItemLabel

    converter = _get_converter()
    try:
        result = converter.convert(str(path))
    except Exception as exc:
        raise RuntimeError(f"Docling failed to parse '{filename}': {exc}") from exc

    text_labels = (
        DocItemLabel.TEXT,
        DocItemLabel.LIST_ITEM,
        DocItemLabel.CAPTION,
        DocItemLabel.FOOTNOTE,
    )

    elements: list[ParsedElement] = []
    current_section: str | None = None
    pages: set[int] = set()

    for item, level in result.document.iterate_items():
        page_no = item.prov[0].page_no if getattr(item, "prov", None) else 0
        if page_no:
            pages.add(page_no)

        label = getattr(item, "label", None)

        if label in (DocItemLabel.SECTION_HEADER, DocItemLabel.TITLE):
            heading = getattr(item, "text", "").strip()
            if heading:
                current_section = heading
                elements.append(ParsedElement(
                    heading, page_no, "heading", current_section, level,
                ))
        elif label == DocItemLabel.TABLE:
            table_md = _table_to_markdown(item, result.document)
            if table_md:
                elements.append(ParsedElement(
                    table_md, page_no, "table", current_section, level,
                ))
        elif label in text_labels:
            body = getattr(item, "text", "").strip()
            if body:
                elements.append(ParsedElement(
                    body, page_no, "text", current_section, level,
                ))

    return ParsedDocument(
        elements=elements,
        page_count=max(pages) if pages else 0,
        filename=filename,
    )


def _table_to_markdown(table_item: object, document: object) -> str:
    """Export a Docling table as markdown; fall back to its plain text."""
    try:
        if hasattr(table_item, "export_to_markdown"):
            return table_item.export_to_markdown(doc=document)
    except Exception as exc:
        logger.warning("Table export to markdown failed: %s", exc)

    text = getattr(table_item, "text", "")
    return text.strip() if text else ""
