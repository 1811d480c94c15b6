from __future__ import annotations

from dataclasses import dataclass

EMPTY_VALUE = "N/A"


@dataclass(frozen=True)
class TextBlock:
    title: str
    field: str
    optional: bool = False


@dataclass(frozen=True)
class BadgeBlock:
    title: str
    field: str


@dataclass(frozen=True)
class ListBlock:
    title: str
    field: str


@dataclass(frozen=True)
class TableBlock:
    title: str
    field: str
    columns: tuple[tuple[str, str], ...]
    emphasize_first: bool = False


Block = TextBlock | BadgeBlock | ListBlock | TableBlock


@dataclass(frozen=True)
class SectionLayout:
    number: int
    key: str
    title: str
    blocks: tuple[Block, ...]


_NOTES = TextBlock("Notes", "notes", optional=True)

DSP_SECTIONS: tuple[SectionLayout, ...] = (
    SectionLayout(
        1,
        "project_objective",
        "Project Objective",
        (
            TextBlock("Strategic Objective", "strategic_objective"),
            TextBlock("Success Criteria", "success_criteria"),
            _NOTES,
        ),
    ),
    SectionLayout(
        2,
        "use_case",
        "Use Case",
        (
            TextBlock("Problem to Solve", "problem_to_solve"),
            TextBlock("Current Consequences", "current_consequences"),
            TextBlock("Business Impact", "business_impact"),
            BadgeBlock("Priority Level", "priority_level"),
            TextBlock("Priority Rationale", "priority_rationale"),
            _NOTES,
        ),
    ),
    SectionLayout(
        3,
        "bundles",
        "Bundles",
        (
            TextBlock("Recommended Bundle", "recommended_bundle"),
            TableBlock(
                "Options Considered",
                "bundle_options_considered",
                (("Bundle", "bundle"), ("Fit Reason", "fit_reason")),
            ),
            _NOTES,
        ),
    ),
    SectionLayout(
        4,
        "preliminary_solution_approach",
        "Preliminary Solution Approach",
        (
            TextBlock("Recommended Approach", "recommended_approach"),
            TextBlock("Approach Rationale", "approach_rationale"),
            ListBlock("Assumptions", "assumptions"),
            ListBlock("Open Questions", "open_questions"),
            _NOTES,
        ),
    ),
    SectionLayout(
        5,
        "functionalities_description",
        "Functionalities Description",
        (
            TableBlock(
                "Expected Functionalities",
                "expected_functionalities",
                (("Name", "name"), ("Description", "description"), ("Business Value", "business_value")),
                emphasize_first=True,
            ),
            ListBlock("Out of Scope", "out_of_scope"),
            _NOTES,
        ),
    ),
    SectionLayout(
        6,
        "technical",
        "Technical",
        (
            TextBlock("Cloud Environment", "cloud_environment"),
            TextBlock("Cloud Experience", "cloud_experience"),
            TextBlock("Infrastructure Owner", "infrastructure_owner"),
            TableBlock(
                "Required Data",
                "required_data",
                (("Data Type", "data_type"), ("Availability", "availability"), ("Location", "location")),
            ),
            ListBlock("Data Gaps or Risks", "data_gaps_or_risks"),
            _NOTES,
        ),
    ),
    SectionLayout(
        7,
        "competitiveness_and_strategic_positioning",
        "Competitiveness and Strategic Positioning",
        (
            TableBlock(
                "Competitors or Alternatives",
                "competitors_or_alternatives",
                (
                    ("Name", "name"),
                    ("Status / Role", "status_or_role"),
                    ("Strengths", "strengths"),
                    ("Weaknesses", "weaknesses"),
                ),
                emphasize_first=True,
            ),
            ListBlock("Santex Advantages", "santex_advantages"),
            TextBlock("Differentiation Narrative", "differentiation_narrative"),
            _NOTES,
        ),
    ),
    SectionLayout(
        8,
        "commercial_roadmap_next_steps",
        "Commercial Roadmap and Next Steps",
        (
            TableBlock(
                "Next Steps",
                "next_steps",
                (
                    ("Step", "step"),
                    ("Owner", "owner"),
                    ("Expected Date", "expected_date_or_window"),
                    ("Exit Criteria", "exit_criteria"),
                ),
            ),
            ListBlock("Dependencies", "dependencies"),
            _NOTES,
        ),
    ),
)

_PRIORITY_BADGES = (
    (("high", "alta"), "badge-high"),
    (("medium", "media"), "badge-medium"),
    (("low", "baja"), "badge-low"),
)


def badge_class_for_priority(priority: str) -> str:
    normalized = priority.strip().lower()
    for keywords, css_class in _PRIORITY_BADGES:
        if any(keyword in normalized for keyword in keywords):
            return css_class
    return "badge-info"


def display_value(value: object) -> str:
    text = str(value or "").strip()
    return text or EMPTY_VALUE
