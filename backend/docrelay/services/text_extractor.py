"""
DocRelay Backend - Text Extraction Service
===========================================

What:  Turns decompressed document bytes into plain text for the LLM.
Why:   Providers take text, while clients send PDFs, spreadsheets and text files.
How:   The mimetype picks the extractor:
           contains "pdf"                          → pypdf, pages joined with \\f
           contains "excel"/"spreadsheet"/"xls"    → openpyxl (xlsx) or xlrd (.xls),
                                                     UTF-8 text fallback on failure
           anything else                           → UTF-8 text, invalid bytes replaced
       Parsing is CPU-bound, so it runs in a worker thread.
Who:   Called by DocumentPipeline during the `extract` stage.

Spreadsheet rendering:
    Sheet: <name>
    <blank>
    cell<TAB>cell<TAB>cell
    ...
    <blank>
    ---
    <blank>
"""

import asyncio
import io
import logging
from typing import Iterable, List, Optional

import openpyxl
import xlrd
from pypdf import PdfReader

from docrelay.exceptions import ExtractionFailedError
from docrelay.models.envelope import ExtractedDocument

logger = logging.getLogger(__name__)

PAGE_SEPARATOR = "\f"
SHEET_SEPARATOR = "\n---\n\n"

# Legacy .xls files are OLE2 compound documents
OLE2_SIGNATURE = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"

_SPREADSHEET_MARKERS = ("excel", "spreadsheet", "xls")


def is_pdf(mimetype: str) -> bool:
    return "pdf" in mimetype.lower()


def is_spreadsheet(mimetype: str) -> bool:
    lowered = mimetype.lower()
    return any(marker in lowered for marker in _SPREADSHEET_MARKERS)


def decode_text(content: bytes) -> str:
    return content.decode("utf-8", errors="replace")


def extract_pdf(content: bytes) -> ExtractedDocument:
    """
    Extract text from every page of a PDF.

    Raises:
        ExtractionFailedError: the PDF cannot be read or holds no text
            (e.g. a scanned document without a text layer).
    """
    try:
        reader = PdfReader(io.BytesIO(content))
        page_texts = [(page.extract_text() or "") for page in reader.pages]
    except Exception as e:
        raise ExtractionFailedError(
            message=f"Failed to extract text from PDF: {e}",
            context={"size_bytes": len(content), "reason": str(e)},
        )

    text = PAGE_SEPARATOR.join(page_texts)
    if not text.strip():
        raise ExtractionFailedError(
            message="Failed to extract text from PDF: No text content found in PDF",
            context={"size_bytes": len(content), "pages": len(page_texts)},
        )

    logger.debug("Extracted %d characters from %d PDF pages", len(text), len(page_texts))
    return ExtractedDocument(text=text, pages=len(page_texts))


def _format_cell(value) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _render_sheets(sheets: Iterable[tuple]) -> str:
    parts: List[str] = []
    for name, rows in sheets:
        parts.append(f"Sheet: {name}\n\n")
        for row in rows:
            cells = [_format_cell(value) for value in row]
            if any(cells):
                parts.append("\t".join(cells) + "\n")
        parts.append(SHEET_SEPARATOR)
    return "".join(parts)


def _xlsx_sheets(content: bytes):
    workbook = openpyxl.load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    try:
        return [
            (worksheet.title, [list(row) for row in worksheet.iter_rows(values_only=True)])
            for worksheet in workbook.worksheets
        ]
    finally:
        workbook.close()


def _xls_sheets(content: bytes):
    workbook = xlrd.open_workbook(file_contents=content)
    return [
        (sheet.name, [sheet.row_values(row_idx) for row_idx in range(sheet.nrows)])
        for sheet in workbook.sheets()
    ]


def extract_spreadsheet(content: bytes) -> ExtractedDocument:
    """
    Render every sheet of a workbook as tab-separated text.

    Falls back to UTF-8 text when the bytes are not a readable workbook
    (CSV files are commonly labelled with a spreadsheet mimetype).
    """
    try:
        sheets = _xls_sheets(content) if content.startswith(OLE2_SIGNATURE) else _xlsx_sheets(content)
        text = _render_sheets(sheets)
        if not text.strip():
            raise ValueError("No text content found in Excel file")
    except Exception as e:
        logger.warning("Spreadsheet extraction failed, falling back to text: %s", str(e))
        return ExtractedDocument(text=decode_text(content))

    logger.debug("Extracted %d characters from %d sheets", len(text), len(sheets))
    return ExtractedDocument(text=text, pages=len(sheets))


class TextExtractor:
    """Extraction collaborator: bytes plus mimetype in, ExtractedDocument out."""

    def extract_sync(self, content: bytes, mimetype: str) -> ExtractedDocument:
        if is_pdf(mimetype):
            return extract_pdf(content)
        if is_spreadsheet(mimetype):
            return extract_spreadsheet(content)
        return ExtractedDocument(text=decode_text(content))

    async def extract(
        self,
        content: bytes,
        mimetype: str,
        request_id: Optional[str] = "",
    ) -> ExtractedDocument:
        document = await asyncio.to_thread(self.extract_sync, content, mimetype)
        logger.info(
            "[%s] Extracted %d characters from %s (%s pages)",
            request_id,
            len(document.text),
            mimetype,
            document.pages if document.pages is not None else "n/a",
        )
        return document


def get_text_extractor() -> TextExtractor:
    return TextExtractor()
