from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol


@dataclass(frozen=True)
class ParsedPage:
    page: int
    text: str


@dataclass(frozen=True)
class ParseResult:
    """Text pulled out of one uploaded document, page by page."""

    parser_id: str
    pages: list[ParsedPage] = field(default_factory=list)
    page_count: int = 0
    error: str | None = None

    @property
    def text(self) -> str:
        return "\n".join(page.text for page in self.pages)

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def failed(cls, parser_id: str, error: str) -> "ParseResult":
        return cls(parser_id=parser_id, error=error)


class TextExtractor(Protocol):
    parser_id: str

    def supports(self, *, file_name: str, content_type: str) -> bool:
        ...

    def parse(self, *, content: bytes, file_name: str, content_type: str) -> ParseResult:
        ...
