"""Document parser — turns uploaded files into page-level text, tables and images.

PDFs go through pdfplumber (pypdf when pdfplumber cannot open the file),
with tesseract OCR for pages that carry no text layer. Word documents,
plain text and source files are read as a single page.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from urllib.parse import urlparse

import docx
import pdfplumber
import pytesseract
from pypdf import PdfReader
from pypdf.errors import PdfReadError

from app.errors import ParseError, UnsupportedFormatError

logger = logging.getLogger(__name__)

TEXT_EXTENSIONS = {"txt", "md", "markdown", "rst"}
CODE_EXTENSIONS = {
    "py", "ipynb", "c", "h", "cpp", "cc", "hpp", "java", "js", "jsx", "ts", "tsx",
    "go", "rs", "rb", "php", "cs", "kt", "swift", "sql", "sh", "r", "m",
}
MIME_FORMATS = {
    "application/pdf": "pdf",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": "docx",
    "text/plain": "text",
    "text/markdown": "text",
    "text/x-python": "code",
    "text/x-c": "code",
    "text/x-java-source": "code",
    "application/javascript": "code",
}


# ── Parsed structures ───────────────────────────────────────────────────────

@dataclass
class ParsedTable:
    rows: list[list[str]]
    bbox: tuple[float, float, float, float] | None = None

    @property
    def row_count(self) -> int:
        return len(self.rows)

    @property
    def column_count(self) -> int:
        return max((len(r) for r in self.rows), default=0)


@dataclass
class ParsedImage:
    page_number: int
    name: str
    bbox: tuple[float, float, float, float] | None = None
    uri: str | None = None


@dataclass
class ParsedPage:
    page_number: int
    text: str
    markdown: str | None = None
    tables: list[ParsedTable] = field(default_factory=list)
    images: list[ParsedImage] = field(default_factory=list)
    ocr_applied: bool = False


@dataclass
class ParseResult:
    pages: list[ParsedPage]
    total_pages: int
    skipped_pages: list[int] = field(default_factory=list)

    @property
    def skipped_count(self) -> int:
        return len(self.skipped_pages)

    @property
    def total_tables(self) -> int:
        return sum(len(p.tables) for p in self.pages)

    @property
    def total_images(self) -> int:
        return sum(len(p.images) for p in self.pages)


# ── Format detection ────────────────────────────────────────────────────────

def detect_format(file_name: str | None, mime_type: str | None = None) -> str:
    """Return one of pdf, docx, text, code. Raises UnsupportedFormatError otherwise.

    Accepts bare file names as well as URLs (query strings are ignored).
    """
    name = urlparse(file_name or "").path or (file_name or "")
    suffix = PurePosixPath(name).suffix.lower().lstrip(".")

    if suffix == "pdf":
        return "pdf"
    if suffix == "docx":
        return "docx"
    if suffix in TEXT_EXTENSIONS:
        return "text"
    if suffix in CODE_EXTENSIONS:
        return "code"

    if mime_type:
        fmt = MIME_FORMATS.get(mime_type.split(";")[0].strip().lower())
        if fmt:
            return fmt

    raise UnsupportedFormatError(file_name or "<unnamed>")


def _clean_cell(value) -> str:
    if value is None:
        return ""
    return " ".join(str(value).split())


def _table_to_markdown(rows: list[list[str]]) -> str:
    width = max(len(r) for r in rows)
    padded = [r + [""] * (width - len(r)) for r in rows]
    lines = ["| " + " | ".join(padded[0]) + " |", "|" + "---|" * width]
    lines.extend("| " + " | ".join(r) + " |" for r in padded[1:])
    return "\n".join(lines)


def _outside_bboxes(bboxes: list[tuple]):
    """pdfplumber filter that drops characters sitting inside any table."""

    def keep(obj: dict) -> bool:
        if obj.get("object_type") != "char":
            return True
        x = (obj["x0"] + obj["x1"]) / 2
        y = (obj["top"] + obj["bottom"]) / 2
        return not any(x0 <= x < x1 and top <= y < bottom for x0, top, x1, bottom in bboxes)

    return keep


# ── Parser ──────────────────────────────────────────────────────────────────

class DocumentParser:
    """Parses raw document bytes into a ParseResult."""

    def __init__(
        self,
        ocr_enabled: bool = True,
        ocr_languages: str = "eng",
        ocr_min_chars: int = 20,
        ocr_resolution: int = 300,
    ):
        if not ocr_languages.strip():
            raise ValueError("At least one OCR language must be configured")
        self.ocr_enabled = ocr_enabled
        self.ocr_languages = ocr_languages
        self.ocr_min_chars = ocr_min_chars
        self.ocr_resolution = ocr_resolution

    @classmethod
    def from_settings(cls, settings) -> "DocumentParser":
        return cls(
            ocr_enabled=settings.OCR_ENABLED,
            ocr_languages=settings.OCR_LANGUAGES,
            ocr_min_chars=settings.OCR_MIN_CHARS,
            ocr_resolution=settings.OCR_RESOLUTION,
        )

    def parse(
        self,
        data: bytes,
        file_name: str,
        mime_type: str | None = None,
        source_uri: str | None = None,
    ) -> ParseResult:
        fmt = detect_format(file_name, mime_type)

        if fmt == "pdf":
            result = self._parse_pdf(data, source_uri)
        elif fmt == "docx":
            result = self._parse_docx(data)
        else:
            result = self._parse_plain(data, markdown=file_name.lower().endswith((".md", ".markdown")))

        if result.total_pages and not result.pages:
            raise ParseError(
                f"No readable pages in {file_name}",
                detail=f"All {result.total_pages} pages failed to parse.",
            )
        logger.info(
            "Parsed %s: %d/%d pages, %d tables, %d images",
            file_name, len(result.pages), result.total_pages, result.total_tables, result.total_images,
        )
        return result

    # ── PDF ──────────────────────────────────────────────────────────────────

    def _parse_pdf(self, data: bytes, source_uri: str | None) -> ParseResult:
        try:
            pdf = pdfplumber.open(io.BytesIO(data))
        except Exception as e:
            logger.warning("pdfplumber could not open document, falling back to pypdf: %s", e)
            return self._parse_pdf_text_only(data)

        pages: list[ParsedPage] = []
        skipped: list[int] = []
        with pdf:
            total = len(pdf.pages)
            for number, page in enumerate(pdf.pages, start=1):
                try:
                    pages.append(self._parse_pdf_page(page, number, source_uri))
                except Exception as e:
                    logger.warning("Skipping page %d: %s", number, e)
                    skipped.append(number)

        return ParseResult(pages=pages, total_pages=total, skipped_pages=skipped)

    def _parse_pdf_page(self, page, number: int, source_uri: str | None) -> ParsedPage:
        found = page.find_tables()
        tables: list[ParsedTable] = []
        for table in found:
            rows = [[_clean_cell(c) for c in row] for row in table.extract()]
            rows = [r for r in rows if any(r)]
            if rows:
                tables.append(ParsedTable(rows=rows, bbox=tuple(float(v) for v in table.bbox)))

        # Table text is kept out of the page text so it only lands in table chunks.
        bboxes = [t.bbox for t in found]
        text_page = page.filter(_outside_bboxes(bboxes)) if bboxes else page
        text = text_page.extract_text() or ""

        ocr_applied = False
        if self.ocr_enabled and not tables and len(text.strip()) < self.ocr_min_chars:
            ocr_text = self._ocr_page(page, number)
            if len(ocr_text.strip()) > len(text.strip()):
                text = ocr_text
                ocr_applied = True

        images = []
        for index, img in enumerate(page.images, start=1):
            bbox = (float(img["x0"]), float(img["top"]), float(img["x1"]), float(img["bottom"]))
            images.append(ParsedImage(
                page_number=number,
                name=img.get("name") or f"image-{number}-{index}",
                bbox=bbox,
                uri=f"{source_uri}#page={number}&image={index}" if source_uri else None,
            ))

        markdown = None
        if tables:
            markdown = "\n\n".join([text.strip()] + [_table_to_markdown(t.rows) for t in tables]).strip()

        return ParsedPage(
            page_number=number,
            text=text,
            markdown=markdown,
            tables=tables,
            images=images,
            ocr_applied=ocr_applied,
        )

    def _ocr_page(self, page, number: int) -> str:
        try:
            image = page.to_image(resolution=self.ocr_resolution).original
            return pytesseract.image_to_string(image, lang=self.ocr_languages)
        except (pytesseract.TesseractError, OSError) as e:
            logger.warning("OCR failed on page %d: %s", number, e)
            return ""

    def _parse_pdf_text_only(self, data: bytes) -> ParseResult:
        try:
            reader = PdfReader(io.BytesIO(data))
        except (PdfReadError, ValueError, OSError) as e:
            raise ParseError("Document is not a readable PDF", detail=str(e)) from e

        pages: list[ParsedPage] = []
        skipped: list[int] = []
        for number, page in enumerate(reader.pages, start=1):
            try:
                pages.append(ParsedPage(page_number=number, text=page.extract_text() or ""))
            except Exception as e:
                logger.warning("Skipping page %d: %s", number, e)
                skipped.append(number)
        return ParseResult(pages=pages, total_pages=len(reader.pages), skipped_pages=skipped)

    # ── Other formats ────────────────────────────────────────────────────────

    def _parse_docx(self, data: bytes) -> ParseResult:
        try:
            document = docx.Document(io.BytesIO(data))
        except Exception as e:
            raise ParseError("Document is not a readable Word file", detail=str(e)) from e

        text = "\n".join(p.text for p in document.paragraphs if p.text.strip())
        tables = []
        for table in document.tables:
            rows = [[_clean_cell(cell.text) for cell in row.cells] for row in table.rows]
            rows = [r for r in rows if any(r)]
            if rows:
                tables.append(ParsedTable(rows=rows))
        page = ParsedPage(page_number=1, text=text, tables=tables)
        return ParseResult(pages=[page], total_pages=1)

    def _parse_plain(self, data: bytes, markdown: bool = False) -> ParseResult:
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError:
            text = data.decode("latin-1")
        page = ParsedPage(page_number=1, text=text, markdown=text if markdown else None)
        return ParseResult(pages=[page], total_pages=1)
