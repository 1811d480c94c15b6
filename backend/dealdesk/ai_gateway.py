from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from dealdesk.config import Settings
from dealdesk.errors import ConfigurationError, GatewayTimeout, PaymentRequired, RateLimited, UpstreamError

logger = logging.getLogger("dealdesk.ai_gateway")

RATE_LIMITED_MESSAGE = "Rate limit exceeded on the AI gateway. Please try again later."
PAYMENT_REQUIRED_MESSAGE = "The AI gateway requires payment. Please add credits to the workspace."


class AIGatewayClient:
    """Minimal client for an OpenAI-compatible chat completions endpoint."""

    def __init__(self, settings: Settings, client: httpx.Client | None = None) -> None:
        api_key = str(settings.ai_gateway_api_key or "").strip()
        if not api_key:
            raise ConfigurationError("AI_GATEWAY_API_KEY is not configured.")
        if not str(settings.ai_gateway_url or "").strip():
            raise ConfigurationError("AI_GATEWAY_URL is not configured.")

        self._settings = settings
        self._api_key = api_key
        self._client = client or httpx.Client(timeout=settings.ai_timeout_seconds)

    def complete(self, system_prompt: str, user_prompt: str) -> str:
        payload = {
            "model": self._settings.ai_model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": self._settings.ai_temperature,
        }
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

        started = time.perf_counter()
        try:
            response = self._client.post(
                self._settings.ai_gateway_url,
                json=payload,
                headers=headers,
                timeout=self._settings.ai_timeout_seconds,
            )
        except httpx.TimeoutException as exc:
            self._log_failure(started, error=str(exc))
            raise GatewayTimeout("The AI gateway did not respond in time.") from exc
        except httpx.HTTPError as exc:
            self._log_failure(started, error=str(exc))
            raise UpstreamError(f"AI gateway request failed: {exc}") from exc

        if response.status_code >= 400:
            self._log_failure(started, status_code=response.status_code, error=response.text)
            if response.status_code == 429:
                raise RateLimited(RATE_LIMITED_MESSAGE, upstream_status=429)
            if response.status_code == 402:
                raise PaymentRequired(PAYMENT_REQUIRED_MESSAGE, upstream_status=402)
            raise UpstreamError(
                f"AI gateway returned status {response.status_code}.",
                upstream_status=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise UpstreamError("AI gateway returned a non-JSON body.", upstream_status=response.status_code) from exc

        text = self._extract_text(body)
        logger.info(
            "ai_gateway_completed",
            extra={
                "event": "ai_gateway_completed",
                "model": self._settings.ai_model,
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                "system_prompt_chars": len(system_prompt),
                "user_prompt_chars": len(user_prompt),
                "response_chars": len(text),
            },
        )
        return text

    def close(self) -> None:
        self._client.close()

    def _log_failure(self, started: float, *, error: str, status_code: int | None = None) -> None:
        logger.warning(
            "ai_gateway_failed",
            extra={
                "event": "ai_gateway_failed",
                "model": self._settings.ai_model,
                "status_code": status_code,
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                "error": error,
            },
        )

    @staticmethod
    def _extract_text(body: Any) -> str:
        choices = body.get("choices") if isinstance(body, dict) else None
        if not isinstance(choices, list) or not choices:
            raise UpstreamError("AI gateway response did not include any choices.")
        message = choices[0].get("message") if isinstance(choices[0], dict) else None
        if not isinstance(message, dict):
            raise UpstreamError("AI gateway response did not include a message.")
        # Blank content is returned as-is so the drafting loop can retry it.
        content = message.get("content")
        return content.strip() if isinstance(content, str) else ""
