from dealdesk.parsers.base import ParseResult, ParsedPage, TextExtractor
from dealdesk.parsers.pdf_parser import PDF_CONTENT_TYPE, PdfTextExtractor

__all__ = ["PDF_CONTENT_TYPE", "ParseResult", "ParsedPage", "PdfTextExtractor", "TextExtractor"]
