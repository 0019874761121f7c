"""
DocDigest Backend: Multi-Format Text Extraction
=================================================

What:  Normalizes PDF, DOCX, TXT, RTF and ODT documents into one shape:
       ExtractionResult(text, page_count, page_count_estimated, degraded).
How:   One parser per format behind a single dispatcher. Parsing is CPU-bound
       and runs in a worker thread (extract_file) so the event loop stays free.
Who:   Called by the ProcessingOrchestrator right after the upload is stored.

Per-format policy:
    pdf   pypdf; page count is exact (number of pages in the document)
    docx  python-docx paragraphs + table cells; page count estimated
    txt   UTF-8 (BOM tolerated, bad bytes replaced); page count estimated
    rtf   control words/groups stripped with regexes; page count estimated
    odt   content.xml walked with ElementTree; if any step of that fails
          (archive, compressed entry, XML, attributes), the raw bytes are
          decoded as plain text and the result is flagged degraded=True

    Estimated page count = max(1, ceil(words / settings.words_per_page)).
    This is approximate and can disagree badly with the rendered document.

Whitespace is normalized for every format, so `result.is_empty` (trimmed
text has zero length) reliably detects documents with nothing to summarize.
Empty text is NOT an extractor error; the orchestrator decides what to do.
"""

import asyncio
import io
import logging
import math
import re
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Optional
from xml.etree import ElementTree

import aiofiles
import docx
from pypdf import PdfReader

from app.config import settings
from app.exceptions import DocDigestError, ExtractionError, UnsupportedFormatError

logger = logging.getLogger(__name__)

SUPPORTED_FORMATS = ("pdf", "txt", "docx", "rtf", "odt")


@dataclass(frozen=True)
class ExtractionResult:
    """Normalized output of every extractor."""

    text: str
    page_count: int
    file_format: str
    page_count_estimated: bool = True
    # True when the structured parse failed and a byte-level fallback was used
    degraded: bool = False

    @property
    def is_empty(self) -> bool:
        return len(self.text.strip()) == 0


# ══════════════════════════════════════════════════════════════════════════
# Shared helpers
# ══════════════════════════════════════════════════════════════════════════

_HORIZONTAL_SPACE = re.compile(r"[ \t\f\v\u00a0]+")
_EXCESS_BLANK_LINES = re.compile(r"\n{3,}")


def normalize_whitespace(text: str) -> str:
    """
    Collapse runs of horizontal whitespace, trim every line, cap blank lines at one.

    Returns "" for input that contains only whitespace or NUL bytes.
    """
    text = text.replace("\x00", "").replace("\r\n", "\n").replace("\r", "\n")
    text = _HORIZONTAL_SPACE.sub(" ", text)
    text = "\n".join(line.strip() for line in text.split("\n"))
    text = _EXCESS_BLANK_LINES.sub("\n\n", text)
    return text.strip()


def estimate_page_count(text: str, words_per_page: Optional[int] = None) -> int:
    """Approximate pages from word count; never less than 1."""
    per_page = words_per_page or settings.words_per_page
    words = len(text.split())
    return max(1, math.ceil(words / per_page))


def normalize_format(file_format: str) -> str:
    """'.PDF' / 'pdf' / ' Pdf ' → 'pdf'."""
    return (file_format or "").strip().lower().lstrip(".")


def format_from_filename(filename: str) -> str:
    return normalize_format(Path(filename or "").suffix)


def _decode_text(content: bytes) -> str:
    return content.decode("utf-8-sig", errors="replace")


# ══════════════════════════════════════════════════════════════════════════
# RTF markup stripping
# ══════════════════════════════════════════════════════════════════════════

# Escaped literals are swapped for placeholders before any brace handling.
_RTF_ESCAPES = {"\\\\": "\x01", "\\{": "\x02", "\\}": "\x03"}
_RTF_RESTORE = {"\x01": "\\", "\x02": "{", "\x03": "}"}

# Opening of a group whose content is metadata, not document text
_RTF_DESTINATION = re.compile(
    r"\{\\(?:\*|fonttbl|colortbl|stylesheet|info|pict|listtable|listoverridetable"
    r"|generator|header[lrf]?|footer[lrf]?)(?![a-zA-Z])"
)
# A raw newline after a control word is only its delimiter
_RTF_WORD_NEWLINE = re.compile(r"(\\[a-zA-Z]+-?\d*)\r?\n")
_RTF_RAW_NEWLINE = re.compile(r"[\r\n]")
_RTF_PARAGRAPH = re.compile(r"\\(?:par|line|sect|page)\b ?")
_RTF_TAB = re.compile(r"\\tab\b ?")
_RTF_UNICODE = re.compile(r"\\u(-?\d+)\??")
_RTF_HEX = re.compile(r"\\'([0-9a-fA-F]{2})")
_RTF_CONTROL_WORD = re.compile(r"\\[a-zA-Z]+-?\d* ?")
_RTF_CONTROL_SYMBOL = re.compile(r"\\[^a-zA-Z0-9]")
_RTF_BRACES = re.compile(r"[{}]")


def _rtf_unicode(match: "re.Match[str]") -> str:
    code = int(match.group(1))
    if code < 0:
        code += 65536
    try:
        return chr(code)
    except ValueError:
        return ""


def _rtf_hex(match: "re.Match[str]") -> str:
    return bytes([int(match.group(1), 16)]).decode("cp1252", errors="replace")


def _drop_destinations(markup: str) -> str:
    # Destination groups nest ({\fonttbl{\f0 Arial;}}), so each one is cut
    # at its matching closing brace. An unterminated group runs to the end.
    parts = []
    position = 0
    while True:
        match = _RTF_DESTINATION.search(markup, position)
        if match is None:
            parts.append(markup[position:])
            return "".join(parts)
        parts.append(markup[position:match.start()])
        depth = 0
        index = match.start()
        while index < len(markup):
            if markup[index] == "{":
                depth += 1
            elif markup[index] == "}":
                depth -= 1
                if depth == 0:
                    break
            index += 1
        position = index + 1


def strip_rtf(markup: str) -> str:
    """
    Recover plain text from RTF markup by pattern substitution.

    Not a full RTF parser: metadata groups are dropped, paragraph/tab control
    words become whitespace, \\uN and \\'hh escapes are decoded, and every
    other control word, control symbol and brace is removed.
    """
    for escape, placeholder in _RTF_ESCAPES.items():
        markup = markup.replace(escape, placeholder)

    markup = _drop_destinations(markup)

    markup = _RTF_WORD_NEWLINE.sub(r"\1 ", markup)
    markup = _RTF_RAW_NEWLINE.sub("", markup)
    markup = _RTF_PARAGRAPH.sub("\n", markup)
    markup = _RTF_TAB.sub("\t", markup)
    markup = _RTF_UNICODE.sub(_rtf_unicode, markup)
    markup = _RTF_HEX.sub(_rtf_hex, markup)
    markup = _RTF_CONTROL_WORD.sub("", markup)
    markup = _RTF_CONTROL_SYMBOL.sub("", markup)
    markup = _RTF_BRACES.sub("", markup)

    for placeholder, literal in _RTF_RESTORE.items():
        markup = markup.replace(placeholder, literal)
    return markup


# ══════════════════════════════════════════════════════════════════════════
# ODT XML walking
# ══════════════════════════════════════════════════════════════════════════

_ODT_TEXT_NS = "urn:oasis:names:tc:opendocument:xmlns:text:1.0"
_ODT_OFFICE_NS = "urn:oasis:names:tc:opendocument:xmlns:office:1.0"
_ODT_BLOCK_TAGS = {f"{{{_ODT_TEXT_NS}}}p", f"{{{_ODT_TEXT_NS}}}h"}
_ODT_SPACE = f"{{{_ODT_TEXT_NS}}}s"
_ODT_TAB = f"{{{_ODT_TEXT_NS}}}tab"
_ODT_LINE_BREAK = f"{{{_ODT_TEXT_NS}}}line-break"


def _odt_inline_text(node: ElementTree.Element) -> str:
    parts = [node.text or ""]
    for child in node:
        if child.tag == _ODT_SPACE:
            parts.append(" " * int(child.get(f"{{{_ODT_TEXT_NS}}}c", "1")))
        elif child.tag == _ODT_TAB:
            parts.append("\t")
        elif child.tag == _ODT_LINE_BREAK:
            parts.append("\n")
        else:
            parts.append(_odt_inline_text(child))
        parts.append(child.tail or "")
    return "".join(parts)


def _odt_collect_blocks(node: ElementTree.Element, lines: list) -> None:
    # Paragraphs and headings are leaves of the walk; anything nested inside
    # them is inline content.
    if node.tag in _ODT_BLOCK_TAGS:
        lines.append(_odt_inline_text(node))
        return
    for child in node:
        _odt_collect_blocks(child, lines)


def _odt_text(content: bytes) -> str:
    """Text of an ODT package's content.xml, one line per paragraph or heading."""
    with zipfile.ZipFile(io.BytesIO(content)) as archive:
        xml_content = archive.read("content.xml")
    root = ElementTree.fromstring(xml_content)
    body = root.find(f"{{{_ODT_OFFICE_NS}}}body")
    lines: list = []
    _odt_collect_blocks(body if body is not None else root, lines)
    return "\n".join(lines)


# ══════════════════════════════════════════════════════════════════════════
# Text Extractor
# ══════════════════════════════════════════════════════════════════════════

class TextExtractor:
    """
    Dispatches a document to its format parser.

    Contract:
        extract(content, file_format) → ExtractionResult with page_count >= 1
        Raises UnsupportedFormatError for formats outside SUPPORTED_FORMATS
        Raises ExtractionError when a supported document cannot be parsed
    """

    def __init__(self, words_per_page: Optional[int] = None):
        self.words_per_page = words_per_page or settings.words_per_page
        self._parsers: Dict[str, Callable[[bytes], ExtractionResult]] = {
            "pdf": self._extract_pdf,
            "docx": self._extract_docx,
            "txt": self._extract_txt,
            "rtf": self._extract_rtf,
            "odt": self._extract_odt,
        }

    def _estimated(self, text: str, file_format: str, degraded: bool = False) -> ExtractionResult:
        normalized = normalize_whitespace(text)
        return ExtractionResult(
            text=normalized,
            page_count=estimate_page_count(normalized, self.words_per_page),
            file_format=file_format,
            page_count_estimated=True,
            degraded=degraded,
        )

    def extract(self, content: bytes, file_format: str) -> ExtractionResult:
        """Parse `content` as `file_format` (extension with or without the dot)."""
        fmt = normalize_format(file_format)
        parser = self._parsers.get(fmt)
        if parser is None:
            raise UnsupportedFormatError(fmt, supported=list(SUPPORTED_FORMATS))

        try:
            result = parser(content)
        except DocDigestError:
            raise
        except Exception as e:
            logger.warning("Failed to extract %s document: %s", fmt, str(e))
            raise ExtractionError(fmt, context={"error_type": type(e).__name__}) from e

        logger.debug(
            "Extracted %s: %d chars, %d pages (estimated=%s, degraded=%s)",
            fmt,
            len(result.text),
            result.page_count,
            result.page_count_estimated,
            result.degraded,
        )
        return result

    async def extract_file(self, file_path: str, file_format: str) -> ExtractionResult:
        """Read a stored upload and parse it off the event loop."""
        async with aiofiles.open(file_path, "rb") as f:
            content = await f.read()
        return await asyncio.to_thread(self.extract, content, file_format)

    # ── Format parsers ────────────────────────────────────────────────────

    def _extract_pdf(self, content: bytes) -> ExtractionResult:
        reader = PdfReader(io.BytesIO(content))
        if reader.is_encrypted and not reader.decrypt(""):
            raise ExtractionError(
                "pdf",
                message="This PDF is password protected. Please upload an unprotected copy.",
            )
        page_count = len(reader.pages)
        if page_count == 0:
            raise ExtractionError("pdf", message="The PDF document has no pages.")

        texts = [page.extract_text() or "" for page in reader.pages]
        return ExtractionResult(
            text=normalize_whitespace("\n\n".join(texts)),
            page_count=page_count,
            file_format="pdf",
            page_count_estimated=False,
        )

    def _extract_docx(self, content: bytes) -> ExtractionResult:
        document = docx.Document(io.BytesIO(content))
        lines = [paragraph.text for paragraph in document.paragraphs]
        for table in document.tables:
            for row in table.rows:
                lines.append(" ".join(cell.text for cell in row.cells))
        return self._estimated("\n".join(lines), "docx")

    def _extract_txt(self, content: bytes) -> ExtractionResult:
        return self._estimated(_decode_text(content), "txt")

    def _extract_rtf(self, content: bytes) -> ExtractionResult:
        markup = content.decode("latin-1")
        if not markup.lstrip().startswith("{\\rtf"):
            raise ExtractionError(
                "rtf",
                message="The file is not valid RTF (missing {\\rtf header).",
            )
        return self._estimated(strip_rtf(markup), "rtf")

    def _extract_odt(self, content: bytes) -> ExtractionResult:
        # Any failure of the structured path (bad archive, corrupt or encrypted
        # entry, malformed XML) falls back to reading the bytes as text.
        try:
            text = _odt_text(content)
        except Exception as e:
            logger.warning(
                "ODT structured parse failed (%s), using plain-text fallback: %s",
                type(e).__name__,
                str(e),
            )
            return self._estimated(_decode_text(content), "odt", degraded=True)
        return self._estimated(text, "odt")


# ── Singleton Instance ────────────────────────────────────────────────────
text_extractor = TextExtractor()
