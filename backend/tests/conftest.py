from __future__ import annotations

import copy
from pathlib import Path
from typing import Callable

import pytest

from dealdesk.config import settings


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path: Path):
    original = settings.model_dump()
    settings.app_env = "test"
    settings.auth_enabled = False
    settings.database_url = f"sqlite:///{tmp_path}/dealdesk.db"
    settings.storage_backend = "local"
    settings.storage_root = str(tmp_path / "storage")
    settings.public_base_url = "http://testserver"
    settings.ai_gateway_api_key = "test-gateway-key"
    settings.dsp_output_format = "markdown"
    settings.upload_webhook_url = "https://hooks.example.test/upload"
    settings.artifact_webhook_url = "https://hooks.example.test/artifact"
    yield settings
    for key, value in original.items():
        setattr(settings, key, value)


def _escape_pdf_text(value: str) -> str:
    return value.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")


def _build_pdf(*lines: str) -> bytes:
    operations = ["BT", "/F1 12 Tf", "14 TL", "72 720 Td"]
    for line in lines:
        operations.append(f"({_escape_pdf_text(line)}) Tj T*")
    operations.append("ET")
    stream = "\n".join(operations).encode("latin-1")

    objects = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        b"<< /Type /Pages /Kids [3 0 R] /Count 1 >>",
        b"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] "
        b"/Resources << /Font << /F1 5 0 R >> >> /Contents 4 0 R >>",
        b"<< /Length %d >>\nstream\n" % len(stream) + stream + b"\nendstream",
        b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
    ]

    output = bytearray(b"%PDF-1.4\n")
    offsets: list[int] = []
    for number, body in enumerate(objects, start=1):
        offsets.append(len(output))
        output += b"%d 0 obj\n" % number + body + b"\nendobj\n"

    xref_offset = len(output)
    output += b"xref\n0 %d\n" % (len(objects) + 1)
    output += b"0000000000 65535 f \n"
    for offset in offsets:
        output += b"%010d 00000 n \n" % offset
    output += b"trailer\n<< /Size %d /Root 1 0 R >>\nstartxref\n%d\n%%%%EOF\n" % (len(objects) + 1, xref_offset)
    return bytes(output)


@pytest.fixture()
def build_pdf() -> Callable[..., bytes]:
    return _build_pdf


_VALID_PLAN: dict[str, object] = {
    "deal_strategy_plan": {
        "project_objective": {
            "purpose": "Define the strategic objective.",
            "strategic_objective": "Renew the support contract for three more years.",
            "success_criteria": "Signed renewal before Q3.",
            "notes": "",
        },
        "use_case": {
            "purpose": "Describe the problem.",
            "problem_to_solve": "Legacy ticketing is slow.",
            "current_consequences": "SLA breaches every month.",
            "business_impact": "Churn risk on key accounts.",
            "priority_level": "High",
            "priority_rationale": "Contract expires soon.",
            "notes": "",
        },
        "bundles": {
            "purpose": "Identify bundles.",
            "recommended_bundle": "Support Accelerator",
            "bundle_options_considered": [{"bundle": "Support Accelerator", "fit_reason": "Matches scope."}],
            "notes": "",
        },
        "preliminary_solution_approach": {
            "purpose": "Define the approach.",
            "recommended_approach": "Phased migration.",
            "approach_rationale": "Limits risk.",
            "assumptions": ["Client provides API access."],
            "open_questions": ["Who owns the data migration?"],
            "notes": "",
        },
        "functionalities_description": {
            "purpose": "List functionalities.",
            "expected_functionalities": [
                {"name": "Ticket triage", "description": "Auto-route tickets.", "business_value": "Faster response."}
            ],
            "out_of_scope": ["Billing"],
            "notes": "",
        },
        "technical": {
            "purpose": "Assess infrastructure.",
            "cloud_environment": "AWS",
            "cloud_experience": "Intermediate",
            "infrastructure_owner": "Client IT",
            "required_data": [{"data_type": "Tickets", "availability": "Available", "location": "Zendesk"}],
            "data_gaps_or_risks": ["No historical SLA data."],
            "notes": "",
        },
        "competitiveness_and_strategic_positioning": {
            "purpose": "Map competitors.",
            "competitors_or_alternatives": [
                {"name": "Globex", "status_or_role": "Incumbent", "strengths": "Price", "weaknesses": "Slow"}
            ],
            "santex_advantages": ["Domain expertise"],
            "differentiation_narrative": "Faster delivery with proven accelerators.",
            "notes": "",
        },
        "commercial_roadmap_next_steps": {
            "purpose": "Set milestones.",
            "next_steps": [
                {
                    "step": "Discovery workshop",
                    "owner": "Jane Doe",
                    "expected_date_or_window": "Next two weeks",
                    "exit_criteria": "Scope agreed",
                }
            ],
            "dependencies": ["Client availability"],
            "notes": "",
        },
        "meta": {
            "opportunity_id": "999",
            "generated_from_inputs": ["made-up.pdf"],
            "confidence_level": "Medium",
            "missing_information_summary": "Budget is unknown.",
        },
    }
}


@pytest.fixture()
def plan_payload() -> dict[str, object]:
    return copy.deepcopy(_VALID_PLAN)


class ScriptedGateway:
    """Completion client that replays canned responses and records every call."""

    def __init__(self, responses: list[object]) -> None:
        self._responses = list(responses)
        self.calls: list[tuple[str, str]] = []

    def complete(self, system_prompt: str, user_prompt: str) -> str:
        self.calls.append((system_prompt, user_prompt))
        response = self._responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return str(response)


@pytest.fixture()
def scripted_gateway() -> Callable[[list[object]], ScriptedGateway]:
    return ScriptedGateway
