from __future__ import annotations

import json

import httpx
import pytest

from dealdesk.ai_gateway import PAYMENT_REQUIRED_MESSAGE, RATE_LIMITED_MESSAGE, AIGatewayClient
from dealdesk.config import Settings
from dealdesk.errors import GatewayTimeout, PaymentRequired, RateLimited, UpstreamError


def _settings() -> Settings:
    return Settings(
        _env_file=None,
        ai_gateway_url="https://gateway.example.test/v1/chat/completions",
        ai_gateway_api_key="secret-key",
        ai_model="google/gemini-2.5-flash",
        ai_temperature=0.3,
    )


def _client(handler) -> AIGatewayClient:
    return AIGatewayClient(_settings(), client=httpx.Client(transport=httpx.MockTransport(handler)))


def _completion(content: object) -> dict[str, object]:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


def test_complete_posts_chat_payload_and_returns_content() -> None:
    captured: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(200, json=_completion('  {"ok": true}  '))

    result = _client(handler).complete("system text", "user text")

    assert result == '{"ok": true}'
    request = captured[0]
    assert str(request.url) == "https://gateway.example.test/v1/chat/completions"
    assert request.headers["authorization"] == "Bearer secret-key"
    body = json.loads(request.content)
    assert body == {
        "model": "google/gemini-2.5-flash",
        "messages": [
            {"role": "system", "content": "system text"},
            {"role": "user", "content": "user text"},
        ],
        "temperature": 0.3,
    }


def test_rate_limit_maps_to_429() -> None:
    client = _client(lambda request: httpx.Response(429, text="slow down"))
    with pytest.raises(RateLimited) as excinfo:
        client.complete("s", "u")
    assert excinfo.value.status_code == 429
    assert excinfo.value.message == RATE_LIMITED_MESSAGE


def test_payment_required_maps_to_402() -> None:
    client = _client(lambda request: httpx.Response(402, text="no credits"))
    with pytest.raises(PaymentRequired) as excinfo:
        client.complete("s", "u")
    assert excinfo.value.status_code == 402
    assert excinfo.value.message == PAYMENT_REQUIRED_MESSAGE


def test_other_gateway_errors_map_to_upstream_error() -> None:
    client = _client(lambda request: httpx.Response(500, text="boom"))
    with pytest.raises(UpstreamError) as excinfo:
        client.complete("s", "u")
    assert excinfo.value.status_code == 502
    assert "500" in excinfo.value.message


def test_timeout_maps_to_gateway_timeout() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(GatewayTimeout):
        _client(handler).complete("s", "u")


def test_connection_failure_maps_to_upstream_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(UpstreamError):
        _client(handler).complete("s", "u")


def test_response_without_choices_is_an_upstream_error() -> None:
    client = _client(lambda request: httpx.Response(200, json={"choices": []}))
    with pytest.raises(UpstreamError):
        client.complete("s", "u")


def test_blank_content_is_returned_empty() -> None:
    client = _client(lambda request: httpx.Response(200, json=_completion(None)))
    assert client.complete("s", "u") == ""
