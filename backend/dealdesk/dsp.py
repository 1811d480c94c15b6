from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from dealdesk.errors import GenerationFailed

logger = logging.getLogger("dealdesk.dsp")

REASON_EMPTY_RESPONSE = "empty_response"
REASON_INVALID_JSON = "invalid_json"
REASON_SCHEMA_VIOLATION = "schema_violation"

_FENCE_PATTERN = re.compile(r"^```(?:json|JSON)?\s*(.*?)\s*```$", flags=re.DOTALL)


class _Section(BaseModel):
    model_config = ConfigDict(extra="ignore")


class ProjectObjective(_Section):
    purpose: str
    strategic_objective: str
    success_criteria: str
    notes: str


class UseCase(_Section):
    purpose: str
    problem_to_solve: str
    current_consequences: str
    business_impact: str
    priority_level: str
    priority_rationale: str
    notes: str


class BundleOption(_Section):
    bundle: str
    fit_reason: str


class Bundles(_Section):
    purpose: str
    recommended_bundle: str
    bundle_options_considered: list[BundleOption]
    notes: str


class PreliminarySolutionApproach(_Section):
    purpose: str
    recommended_approach: str
    approach_rationale: str
    assumptions: list[str]
    open_questions: list[str]
    notes: str


class Functionality(_Section):
    name: str
    description: str
    business_value: str


class FunctionalitiesDescription(_Section):
    purpose: str
    expected_functionalities: list[Functionality]
    out_of_scope: list[str]
    notes: str


class RequiredData(_Section):
    data_type: str
    availability: str
    location: str


class Technical(_Section):
    purpose: str
    cloud_environment: str
    cloud_experience: str
    infrastructure_owner: str
    required_data: list[RequiredData]
    data_gaps_or_risks: list[str]
    notes: str


class Competitor(_Section):
    name: str
    status_or_role: str
    strengths: str
    weaknesses: str


class CompetitivePositioning(_Section):
    purpose: str
    competitors_or_alternatives: list[Competitor]
    santex_advantages: list[str]
    differentiation_narrative: str
    notes: str


class NextStep(_Section):
    step: str
    owner: str
    expected_date_or_window: str
    exit_criteria: str


class CommercialRoadmap(_Section):
    purpose: str
    next_steps: list[NextStep]
    dependencies: list[str]
    notes: str


class PlanMeta(_Section):
    opportunity_id: str
    generated_from_inputs: list[str]
    confidence_level: str
    missing_information_summary: str


class DealStrategyPlan(_Section):
    project_objective: ProjectObjective
    use_case: UseCase
    bundles: Bundles
    preliminary_solution_approach: PreliminarySolutionApproach
    functionalities_description: FunctionalitiesDescription
    technical: Technical
    competitiveness_and_strategic_positioning: CompetitivePositioning
    commercial_roadmap_next_steps: CommercialRoadmap
    meta: PlanMeta


class DspDocument(_Section):
    deal_strategy_plan: DealStrategyPlan


@dataclass(frozen=True)
class DspParseResult:
    """Either a validated document or the reason it was rejected."""

    document: DspDocument | None = None
    reason: str | None = None
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.document is not None


def strip_code_fences(raw: str) -> str:
    candidate = raw.strip()
    fenced = _FENCE_PATTERN.match(candidate)
    if fenced:
        return fenced.group(1).strip()
    return candidate


def _format_validation_error(err: ValidationError) -> list[str]:
    messages: list[str] = []
    for issue in err.errors():
        location = ".".join(str(part) for part in issue.get("loc", ()))
        messages.append(f"{location}: {issue['msg']}" if location else str(issue["msg"]))
    return messages


def parse_dsp_response(raw: str | None) -> DspParseResult:
    if raw is None or not raw.strip():
        return DspParseResult(reason=REASON_EMPTY_RESPONSE, errors=["The response was empty."])

    candidate = strip_code_fences(raw)
    try:
        payload = json.loads(candidate)
    except json.JSONDecodeError as exc:
        return DspParseResult(reason=REASON_INVALID_JSON, errors=[f"JSON decode error: {exc.msg} at position {exc.pos}"])

    try:
        document = DspDocument.model_validate(payload)
    except ValidationError as err:
        return DspParseResult(reason=REASON_SCHEMA_VIOLATION, errors=_format_validation_error(err))
    return DspParseResult(document=document)


def build_plan_skeleton(opportunity_id: int, input_names: list[str]) -> dict[str, object]:
    return {
        "deal_strategy_plan": {
            "project_objective": {
                "purpose": "Define the strategic objective the client pursues with the initiative.",
                "strategic_objective": "",
                "success_criteria": "",
                "notes": "",
            },
            "use_case": {
                "purpose": "Describe the concrete problem to solve and its business impact.",
                "problem_to_solve": "",
                "current_consequences": "",
                "business_impact": "",
                "priority_level": "",
                "priority_rationale": "",
                "notes": "",
            },
            "bundles": {
                "purpose": "Identify whether an acceleration bundle applies.",
                "recommended_bundle": "",
                "bundle_options_considered": [{"bundle": "", "fit_reason": ""}],
                "notes": "",
            },
            "preliminary_solution_approach": {
                "purpose": "Define the initial approach given project clarity and technology maturity.",
                "recommended_approach": "",
                "approach_rationale": "",
                "assumptions": [""],
                "open_questions": [""],
                "notes": "",
            },
            "functionalities_description": {
                "purpose": "List the initial expected functionalities without deep technical detail.",
                "expected_functionalities": [{"name": "", "description": "", "business_value": ""}],
                "out_of_scope": [""],
                "notes": "",
            },
            "technical": {
                "purpose": "Assess infrastructure and data availability.",
                "cloud_environment": "",
                "cloud_experience": "",
                "infrastructure_owner": "",
                "required_data": [{"data_type": "", "availability": "", "location": ""}],
                "data_gaps_or_risks": [""],
                "notes": "",
            },
            "competitiveness_and_strategic_positioning": {
                "purpose": "Map the competitive landscape and build a differentiating narrative.",
                "competitors_or_alternatives": [
                    {"name": "", "status_or_role": "", "strengths": "", "weaknesses": ""}
                ],
                "santex_advantages": [""],
                "differentiation_narrative": "",
                "notes": "",
            },
            "commercial_roadmap_next_steps": {
                "purpose": "Set commercial milestones and exit criteria.",
                "next_steps": [{"step": "", "owner": "", "expected_date_or_window": "", "exit_criteria": ""}],
                "dependencies": [""],
                "notes": "",
            },
            "meta": {
                "opportunity_id": str(opportunity_id),
                "generated_from_inputs": list(input_names),
                "confidence_level": "",
                "missing_information_summary": "",
            },
        }
    }


def build_system_prompt(language: str) -> str:
    return (
        "You are a senior pre-sales consultant who writes Deal Strategy Plans (DSP) for technology projects. "
        "Analyze the document corpus you are given and answer with a single JSON object that follows the "
        "provided structure exactly.\n\n"
        "Rules:\n"
        "1. Return only valid JSON. No markdown, no comments, no surrounding text.\n"
        "2. Do not invent facts that are not supported by the corpus.\n"
        '3. When the corpus lacks information for a field, use "N/A".\n'
        "4. Keep every key of the structure. Lists may be empty.\n"
        "5. Be precise and concise.\n"
        f"6. Write every content field in {language}."
    )


def build_user_prompt(corpus: str, opportunity_id: int, input_names: list[str]) -> str:
    skeleton = json.dumps(build_plan_skeleton(opportunity_id, input_names), indent=2, ensure_ascii=False)
    return (
        "Analyze the following document corpus and produce the Deal Strategy Plan as JSON.\n\n"
        f"{corpus}\n\n"
        "Fill in this structure EXACTLY and return ONLY the JSON object. "
        "Array entries show the expected item shape:\n"
        f"{skeleton}"
    )


def build_corrective_prompt(user_prompt: str, failure: DspParseResult) -> str:
    problems = "\n".join(f"- {error}" for error in failure.errors[:20]) or "- (no details)"
    return (
        f"{user_prompt}\n\n"
        f"Your previous answer was rejected ({failure.reason}). Problems found:\n"
        f"{problems}\n"
        "Return the corrected JSON object only, with every required key present and every value of the "
        "declared type."
    )


class CompletionClient(Protocol):
    def complete(self, system_prompt: str, user_prompt: str) -> str:
        ...


@dataclass(frozen=True)
class DraftingOutcome:
    document: DspDocument
    attempts: int
    rejected: list[DspParseResult] = field(default_factory=list)


class DspDraftingLoop:
    """Bounded generate-validate loop.

    Each attempt calls the completion client once. A rejected attempt feeds its
    failure reason and violations into the next attempt's prompt. Transport
    errors raised by the client propagate untouched.
    """

    def __init__(self, client: CompletionClient, *, max_attempts: int = 2, language: str = "Spanish") -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._client = client
        self._max_attempts = max_attempts
        self._language = language

    def run(self, *, corpus: str, opportunity_id: int, input_names: list[str]) -> DraftingOutcome:
        system_prompt = build_system_prompt(self._language)
        user_prompt = build_user_prompt(corpus, opportunity_id, input_names)
        rejected: list[DspParseResult] = []

        for attempt in range(1, self._max_attempts + 1):
            prompt = user_prompt if not rejected else build_corrective_prompt(user_prompt, rejected[-1])
            result = parse_dsp_response(self._client.complete(system_prompt, prompt))
            if result.ok:
                document = result.document
                meta = document.deal_strategy_plan.meta
                meta.opportunity_id = str(opportunity_id)
                meta.generated_from_inputs = list(input_names)
                logger.info(
                    "dsp_attempt_accepted",
                    extra={"event": "dsp_attempt_accepted", "attempt": attempt, "opportunity_id": opportunity_id},
                )
                return DraftingOutcome(document=document, attempts=attempt, rejected=rejected)

            logger.warning(
                "dsp_attempt_rejected",
                extra={
                    "event": "dsp_attempt_rejected",
                    "attempt": attempt,
                    "max_attempts": self._max_attempts,
                    "opportunity_id": opportunity_id,
                    "reason": result.reason,
                    "error_count": len(result.errors),
                },
            )
            rejected.append(result)

        last = rejected[-1]
        raise GenerationFailed(
            f"Could not produce a valid Deal Strategy Plan after {self._max_attempts} attempts. Please retry.",
            details={"reason": last.reason, "errors": last.errors[:10]},
        )
