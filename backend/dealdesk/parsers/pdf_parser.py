from __future__ import annotations

import io
from pathlib import PurePath

from pypdf import PdfReader

from dealdesk.parsers.base import ParseResult, ParsedPage

PDF_CONTENT_TYPE = "application/pdf"


class PdfTextExtractor:
    """Extracts the text layer of uploaded PDFs with pypdf.

    Scanned PDFs without a text layer parse successfully but yield no pages,
    which the caller treats like any other empty document.
    """

    parser_id = "pdf"

    def supports(self, *, file_name: str, content_type: str) -> bool:
        media_type = content_type.split(";", 1)[0].strip().lower()
        return media_type == PDF_CONTENT_TYPE or PurePath(file_name).suffix.lower() == ".pdf"

    def parse(self, *, content: bytes, file_name: str, content_type: str) -> ParseResult:
        del content_type
        if not content:
            return ParseResult.failed(self.parser_id, f"{file_name} is empty")

        try:
            reader = PdfReader(io.BytesIO(content), strict=False)
            if reader.is_encrypted:
                return ParseResult.failed(self.parser_id, f"{file_name} is encrypted")
            pages = [
                ParsedPage(page=number, text=text)
                for number, text in enumerate((_collapse(page.extract_text()) for page in reader.pages), start=1)
                if text
            ]
            page_count = len(reader.pages)
        except Exception as exc:
            return ParseResult.failed(self.parser_id, f"pdf parse failed: {exc}")

        return ParseResult(parser_id=self.parser_id, pages=pages, page_count=page_count)


def _collapse(text: str | None) -> str:
    return " ".join((text or "").split())
