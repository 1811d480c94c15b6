from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

from dealdesk.dsp import DspDocument
from dealdesk.export.html_template import render_html
from dealdesk.export.markdown_template import render_markdown


@dataclass(frozen=True)
class RenderedDocument:
    content: str
    extension: str
    content_type: str

    def encode(self) -> bytes:
        return self.content.encode("utf-8")


def render_document(
    document: DspDocument,
    opportunity_name: str,
    output_format: str,
    *,
    generated_at: datetime | None = None,
) -> RenderedDocument:
    timestamp = generated_at or datetime.now(timezone.utc)
    normalized = output_format.strip().lower()
    if normalized == "html":
        return RenderedDocument(
            content=render_html(document, opportunity_name, timestamp),
            extension="html",
            content_type="text/html; charset=utf-8",
        )
    if normalized == "markdown":
        return RenderedDocument(
            content=render_markdown(document, opportunity_name, timestamp),
            extension="md",
            content_type="text/markdown; charset=utf-8",
        )
    raise ValueError(f"Unsupported output format '{output_format}'.")
