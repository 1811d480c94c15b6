from __future__ import annotations

import json

import pytest

from dealdesk.dsp import (
    REASON_EMPTY_RESPONSE,
    REASON_INVALID_JSON,
    REASON_SCHEMA_VIOLATION,
    DspDraftingLoop,
    build_plan_skeleton,
    build_user_prompt,
    parse_dsp_response,
    strip_code_fences,
)
from dealdesk.errors import GenerationFailed, GatewayTimeout


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ('```json\n{"a": 1}\n```', '{"a": 1}'),
        ('```\n{"a": 1}\n```', '{"a": 1}'),
        ('  {"a": 1}  ', '{"a": 1}'),
    ],
)
def test_strip_code_fences(raw: str, expected: str) -> None:
    assert strip_code_fences(raw) == expected


def test_parse_accepts_fenced_valid_plan(plan_payload) -> None:
    result = parse_dsp_response(f"```json\n{json.dumps(plan_payload)}\n```")
    assert result.ok
    assert result.document.deal_strategy_plan.use_case.priority_level == "High"


def test_parse_ignores_unknown_keys(plan_payload) -> None:
    plan_payload["deal_strategy_plan"]["extra_section"] = {"anything": True}
    assert parse_dsp_response(json.dumps(plan_payload)).ok


def test_parse_reports_empty_response() -> None:
    result = parse_dsp_response("   ")
    assert not result.ok
    assert result.reason == REASON_EMPTY_RESPONSE


def test_parse_reports_invalid_json() -> None:
    result = parse_dsp_response('{"deal_strategy_plan": ')
    assert result.reason == REASON_INVALID_JSON
    assert result.errors[0].startswith("JSON decode error")


def test_parse_reports_schema_violations_with_locations(plan_payload) -> None:
    del plan_payload["deal_strategy_plan"]["technical"]["cloud_environment"]
    plan_payload["deal_strategy_plan"]["use_case"]["priority_level"] = 3
    result = parse_dsp_response(json.dumps(plan_payload))

    assert result.reason == REASON_SCHEMA_VIOLATION
    joined = "\n".join(result.errors)
    assert "deal_strategy_plan.technical.cloud_environment" in joined
    assert "deal_strategy_plan.use_case.priority_level" in joined


def test_skeleton_carries_known_meta() -> None:
    skeleton = build_plan_skeleton(42, ["a.pdf", "b.pdf"])
    meta = skeleton["deal_strategy_plan"]["meta"]
    assert meta["opportunity_id"] == "42"
    assert meta["generated_from_inputs"] == ["a.pdf", "b.pdf"]
    assert len(skeleton["deal_strategy_plan"]) == 9


def test_user_prompt_embeds_corpus_and_skeleton() -> None:
    prompt = build_user_prompt("=== INPUT: a.pdf ===\nhello", 7, ["a.pdf"])
    assert "=== INPUT: a.pdf ===\nhello" in prompt
    assert '"competitiveness_and_strategic_positioning"' in prompt


def test_loop_accepts_first_valid_answer_and_overwrites_meta(plan_payload, scripted_gateway) -> None:
    gateway = scripted_gateway([json.dumps(plan_payload)])
    outcome = DspDraftingLoop(gateway).run(corpus="corpus text", opportunity_id=12, input_names=["brief.pdf"])

    assert outcome.attempts == 1
    assert outcome.rejected == []
    meta = outcome.document.deal_strategy_plan.meta
    assert meta.opportunity_id == "12"
    assert meta.generated_from_inputs == ["brief.pdf"]
    assert meta.confidence_level == "Medium"
    assert len(gateway.calls) == 1


def test_loop_retries_once_with_corrective_prompt(plan_payload, scripted_gateway) -> None:
    gateway = scripted_gateway(["not json at all", json.dumps(plan_payload)])
    outcome = DspDraftingLoop(gateway, language="English").run(
        corpus="corpus text", opportunity_id=12, input_names=["brief.pdf"]
    )

    assert outcome.attempts == 2
    assert [item.reason for item in outcome.rejected] == [REASON_INVALID_JSON]
    first_system, first_user = gateway.calls[0]
    second_system, second_user = gateway.calls[1]
    assert "English" in first_system
    assert second_system == first_system
    assert "rejected (invalid_json)" not in first_user
    assert second_user.startswith(first_user)
    assert "Your previous answer was rejected (invalid_json)" in second_user


def test_loop_gives_up_after_max_attempts(plan_payload, scripted_gateway) -> None:
    del plan_payload["deal_strategy_plan"]["meta"]
    gateway = scripted_gateway(["", json.dumps(plan_payload)])

    with pytest.raises(GenerationFailed) as excinfo:
        DspDraftingLoop(gateway, max_attempts=2).run(corpus="c", opportunity_id=1, input_names=["a.pdf"])

    assert len(gateway.calls) == 2
    assert excinfo.value.status_code == 500
    assert excinfo.value.details["reason"] == REASON_SCHEMA_VIOLATION


def test_loop_does_not_retry_transport_errors(scripted_gateway) -> None:
    gateway = scripted_gateway([GatewayTimeout("slow"), "unused"])
    with pytest.raises(GatewayTimeout):
        DspDraftingLoop(gateway).run(corpus="c", opportunity_id=1, input_names=["a.pdf"])
    assert len(gateway.calls) == 1


def test_loop_requires_at_least_one_attempt(scripted_gateway) -> None:
    with pytest.raises(ValueError):
        DspDraftingLoop(scripted_gateway([]), max_attempts=0)
