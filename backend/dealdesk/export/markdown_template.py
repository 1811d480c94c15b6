from __future__ import annotations

from datetime import datetime

from dealdesk.dsp import DspDocument
from dealdesk.export.layout import DSP_SECTIONS, EMPTY_VALUE, BadgeBlock, Block, ListBlock, TextBlock, display_value


def _table_cell(value: object) -> str:
    return " ".join(str(value or "").replace("|", "\\|").split()) or EMPTY_VALUE


def _render_block(block: Block, section: dict[str, object]) -> list[str]:
    value = section.get(block.field)

    if isinstance(block, TextBlock):
        if block.optional and not str(value or "").strip():
            return []
        return [f"### {block.title}", "", display_value(value), ""]

    if isinstance(block, BadgeBlock):
        return [f"### {block.title}", "", f"**{display_value(value)}**", ""]

    items = value if isinstance(value, list) else []
    lines = [f"### {block.title}", ""]
    if not items:
        return lines + [f"_{EMPTY_VALUE}_", ""]

    if isinstance(block, ListBlock):
        return lines + [f"- {item}" for item in items] + [""]

    lines.append("| " + " | ".join(label for label, _ in block.columns) + " |")
    lines.append("|" + "---|" * len(block.columns))
    for item in items:
        cells = [_table_cell(item.get(key) if isinstance(item, dict) else "") for _, key in block.columns]
        if block.emphasize_first and cells[0] != EMPTY_VALUE:
            cells[0] = f"**{cells[0]}**"
        lines.append("| " + " | ".join(cells) + " |")
    lines.append("")
    return lines


def render_markdown(document: DspDocument, opportunity_name: str, generated_at: datetime) -> str:
    # Values are interpolated verbatim. Consumers must not render this as trusted HTML.
    plan = document.deal_strategy_plan.model_dump()
    meta = plan["meta"]

    lines: list[str] = ["# Deal Strategy Plan", "", f"## {opportunity_name.strip() or 'Opportunity'}", ""]
    for layout in DSP_SECTIONS:
        section = plan[layout.key]
        lines.extend([f"## {layout.number}. {layout.title}", ""])
        purpose = str(section.get("purpose", "")).strip()
        if purpose:
            lines.extend([f"> {purpose}", ""])
        for block in layout.blocks:
            lines.extend(_render_block(block, section))

    inputs = ", ".join(str(name) for name in meta.get("generated_from_inputs", []))
    lines.extend(
        [
            "---",
            "",
            "## Metadata",
            "",
            f"- **Opportunity ID:** {display_value(meta.get('opportunity_id'))}",
            f"- **Generated from inputs:** {display_value(inputs)}",
            f"- **Confidence level:** {display_value(meta.get('confidence_level'))}",
            f"- **Missing information:** {display_value(meta.get('missing_information_summary'))}",
            f"- **Generated at:** {generated_at.strftime('%Y-%m-%d %H:%M UTC')}",
        ]
    )
    return "\n".join(lines).strip() + "\n"
