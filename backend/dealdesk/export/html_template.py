from __future__ import annotations

from datetime import datetime
from html import escape

from dealdesk.dsp import DspDocument
from dealdesk.export.layout import (
    DSP_SECTIONS,
    EMPTY_VALUE,
    BadgeBlock,
    Block,
    ListBlock,
    TableBlock,
    TextBlock,
    badge_class_for_priority,
    display_value,
)

_STYLES = """
    * { margin: 0; padding: 0; box-sizing: border-box; }
    body {
      font-family: 'Segoe UI', Tahoma, Geneva, Verdana, sans-serif;
      line-height: 1.6;
      color: #2c3e50;
      background: #f8f9fa;
      padding: 40px 20px;
    }
    .container {
      max-width: 1200px;
      margin: 0 auto;
      background: white;
      padding: 60px;
      border-radius: 12px;
      box-shadow: 0 4px 20px rgba(0,0,0,0.08);
    }
    .header { text-align: center; border-bottom: 4px solid #3498db; padding-bottom: 30px; margin-bottom: 50px; }
    .header h1 { font-size: 2.5em; margin-bottom: 10px; font-weight: 700; }
    .header .opportunity-name { font-size: 1.5em; color: #7f8c8d; font-weight: 300; }
    .section { margin-bottom: 50px; page-break-inside: avoid; }
    .section-title {
      font-size: 1.8em;
      font-weight: 700;
      margin-bottom: 25px;
      padding-bottom: 12px;
      border-bottom: 3px solid #3498db;
      display: flex;
      align-items: center;
    }
    .section-number {
      display: inline-flex;
      align-items: center;
      justify-content: center;
      width: 40px;
      height: 40px;
      background: #3498db;
      color: white;
      border-radius: 50%;
      margin-right: 15px;
      font-size: 0.8em;
      flex-shrink: 0;
    }
    .purpose-box {
      background: #ecf7fd;
      border-left: 4px solid #3498db;
      padding: 15px 20px;
      margin-bottom: 25px;
      border-radius: 4px;
      font-style: italic;
      color: #5a6c7d;
    }
    .subsection { margin-bottom: 25px; }
    .subsection-title {
      color: #34495e;
      font-size: 1.2em;
      font-weight: 600;
      margin-bottom: 12px;
      padding-left: 10px;
      border-left: 3px solid #95a5a6;
    }
    .content { color: #444; line-height: 1.8; padding-left: 15px; }
    .content p { margin-bottom: 10px; }
    .content ul { list-style: none; padding-left: 0; }
    .content li { padding: 8px 0 8px 30px; position: relative; }
    .content li:before { content: "\\25B8"; position: absolute; left: 10px; color: #3498db; font-weight: bold; }
    table { width: 100%; border-collapse: collapse; margin: 20px 0; background: white; }
    th {
      background: linear-gradient(135deg, #667eea 0%, #764ba2 100%);
      color: white;
      padding: 16px;
      text-align: left;
      font-weight: 600;
      font-size: 0.95em;
      text-transform: uppercase;
      letter-spacing: 0.5px;
    }
    td { padding: 14px 16px; border-bottom: 1px solid #ecf0f1; color: #555; }
    tbody tr:hover { background: #f8f9fa; }
    .badge {
      display: inline-block;
      padding: 6px 14px;
      border-radius: 20px;
      font-size: 0.85em;
      font-weight: 600;
      text-transform: uppercase;
      letter-spacing: 0.5px;
    }
    .badge-high { background: linear-gradient(135deg, #f093fb 0%, #f5576c 100%); color: white; }
    .badge-medium { background: linear-gradient(135deg, #fa709a 0%, #fee140 100%); color: white; }
    .badge-low { background: linear-gradient(135deg, #a8edea 0%, #fed6e3 100%); color: #555; }
    .badge-info { background: linear-gradient(135deg, #667eea 0%, #764ba2 100%); color: white; }
    .metadata {
      margin-top: 60px;
      padding: 30px;
      background: linear-gradient(135deg, #f5f7fa 0%, #c3cfe2 100%);
      border-radius: 8px;
      border-top: 4px solid #667eea;
    }
    .metadata h3 { margin-bottom: 20px; font-size: 1.3em; }
    .metadata-grid { display: grid; grid-template-columns: repeat(auto-fit, minmax(250px, 1fr)); gap: 15px; }
    .metadata-item { background: white; padding: 15px; border-radius: 6px; }
    .metadata-label {
      font-weight: 600;
      color: #7f8c8d;
      font-size: 0.85em;
      text-transform: uppercase;
      letter-spacing: 0.5px;
      margin-bottom: 8px;
    }
    .empty-state { color: #95a5a6; font-style: italic; }
    @media print {
      body { padding: 0; background: white; }
      .container { box-shadow: none; padding: 40px; }
    }
"""


def escape_html(value: object) -> str:
    return escape(str(value if value is not None else ""), quote=True)


def _scalar(value: object) -> str:
    text = str(value or "").strip()
    if not text:
        return f'<span class="empty-state">{EMPTY_VALUE}</span>'
    return escape_html(text)


def _subsection(title: str, body: str) -> str:
    return (
        '<div class="subsection">'
        f'<h3 class="subsection-title">{escape_html(title)}</h3>'
        f'<div class="content">{body}</div>'
        "</div>"
    )


def _render_block(block: Block, section: dict[str, object]) -> str:
    value = section.get(block.field)

    if isinstance(block, TextBlock):
        if block.optional and not str(value or "").strip():
            return ""
        return _subsection(block.title, f"<p>{_scalar(value)}</p>")

    if isinstance(block, BadgeBlock):
        text = display_value(value)
        css_class = badge_class_for_priority(str(value or ""))
        return _subsection(block.title, f'<p><span class="badge {css_class}">{escape_html(text)}</span></p>')

    items = value if isinstance(value, list) else []
    if not items:
        return _subsection(block.title, f'<p class="empty-state">{EMPTY_VALUE}</p>')

    if isinstance(block, ListBlock):
        rendered = "".join(f"<li>{escape_html(item)}</li>" for item in items)
        return _subsection(block.title, f"<ul>{rendered}</ul>")

    header = "".join(f"<th>{escape_html(label)}</th>" for label, _ in block.columns)
    rows: list[str] = []
    for item in items:
        cells: list[str] = []
        for index, (_, key) in enumerate(block.columns):
            cell = escape_html(item.get(key, "") if isinstance(item, dict) else "")
            if index == 0 and block.emphasize_first:
                cell = f"<strong>{cell}</strong>"
            cells.append(f"<td>{cell}</td>")
        rows.append(f"<tr>{''.join(cells)}</tr>")
    return _subsection(block.title, f"<table><thead><tr>{header}</tr></thead><tbody>{''.join(rows)}</tbody></table>")


def _metadata_item(label: str, body: str) -> str:
    return (
        '<div class="metadata-item">'
        f'<div class="metadata-label">{escape_html(label)}</div>'
        f'<div class="metadata-value">{body}</div>'
        "</div>"
    )


def render_html(document: DspDocument, opportunity_name: str, generated_at: datetime) -> str:
    plan = document.deal_strategy_plan.model_dump()
    meta = plan["meta"]

    sections: list[str] = []
    for layout in DSP_SECTIONS:
        section = plan[layout.key]
        blocks = "".join(_render_block(block, section) for block in layout.blocks)
        sections.append(
            '<div class="section">'
            '<h2 class="section-title">'
            f'<span class="section-number">{layout.number}</span>{escape_html(layout.title)}'
            "</h2>"
            f'<div class="purpose-box">{escape_html(section.get("purpose", ""))}</div>'
            f"{blocks}"
            "</div>"
        )

    inputs = ", ".join(str(name) for name in meta.get("generated_from_inputs", []))
    confidence = display_value(meta.get("confidence_level"))
    metadata = "".join(
        [
            _metadata_item("Opportunity ID", _scalar(meta.get("opportunity_id"))),
            _metadata_item("Generated from inputs", _scalar(inputs)),
            _metadata_item("Confidence level", f'<span class="badge badge-info">{escape_html(confidence)}</span>'),
            _metadata_item("Missing information", _scalar(meta.get("missing_information_summary"))),
            _metadata_item("Generated at", escape_html(generated_at.strftime("%Y-%m-%d %H:%M UTC"))),
        ]
    )

    title = escape_html(opportunity_name)
    return (
        "<!DOCTYPE html>\n"
        '<html lang="en">\n'
        "<head>\n"
        '  <meta charset="UTF-8">\n'
        '  <meta name="viewport" content="width=device-width, initial-scale=1.0">\n'
        f"  <title>Deal Strategy Plan - {title}</title>\n"
        f"  <style>{_STYLES}  </style>\n"
        "</head>\n"
        "<body>\n"
        '<div class="container">\n'
        f'<div class="header"><h1>Deal Strategy Plan</h1><div class="opportunity-name">{title}</div></div>\n'
        + "\n".join(sections)
        + f'\n<div class="metadata"><h3>Metadata</h3><div class="metadata-grid">{metadata}</div></div>\n'
        "</div>\n"
        "</body>\n"
        "</html>\n"
    )
