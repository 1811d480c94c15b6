from __future__ import annotations

import logging
import time

import httpx
from pydantic import BaseModel, Field, ValidationError, field_validator

from dealdesk.config import Settings
from dealdesk.errors import (
    ConfigurationError,
    GatewayTimeout,
    InvalidWebhookResponse,
    WebhookRejected,
    WebhookUnavailable,
)

logger = logging.getLogger("dealdesk.webhooks")

GOOGLE_DRIVE_URL_PREFIX = "https://drive.google.com/"


class DriveDelivery(BaseModel):
    gdrive_file_name: str = Field(..., min_length=1, max_length=255, pattern=r'^[^<>:"|?*\\]+$')
    gdrive_web_url: str = Field(..., max_length=500)

    @field_validator("gdrive_web_url")
    @classmethod
    def _must_be_drive_url(cls, value: str) -> str:
        if not value.startswith(GOOGLE_DRIVE_URL_PREFIX):
            raise ValueError("must be a Google Drive URL")
        try:
            parsed = httpx.URL(value)
        except httpx.InvalidURL as exc:
            raise ValueError("invalid URL format") from exc
        if parsed.host != "drive.google.com":
            raise ValueError("must be a Google Drive URL")
        return value


def parse_drive_delivery(payload: object) -> DriveDelivery:
    try:
        return DriveDelivery.model_validate(payload)
    except ValidationError as err:
        detail = ", ".join(
            f"{'.'.join(str(part) for part in issue['loc'])}: {issue['msg']}" for issue in err.errors()
        )
        raise InvalidWebhookResponse("Invalid webhook response format.", details=detail) from err


class WebhookClient:
    """Forwards uploads and artifact requests to the document-delivery webhooks."""

    def __init__(self, settings: Settings, client: httpx.Client | None = None) -> None:
        self._settings = settings
        self._client = client or httpx.Client(timeout=settings.webhook_timeout_seconds)

    def forward_upload(
        self,
        *,
        content: bytes,
        file_name: str,
        input_id: str,
        opportunity_id: str,
        uploaded_by: str,
    ) -> DriveDelivery:
        url = self._require_url(self._settings.upload_webhook_url, "UPLOAD_WEBHOOK_URL")
        response = self._post(
            url,
            files={"file": (file_name, content, "application/pdf")},
            data={
                "input_id": input_id,
                "id_opp": opportunity_id,
                "file_name": file_name,
                "uploaded_by": uploaded_by,
            },
        )
        return parse_drive_delivery(self._json_body(response))

    def request_artifact_delivery(self, *, opportunity_id: int, artifact_id: int) -> DriveDelivery:
        url = self._require_url(self._settings.artifact_webhook_url, "ARTIFACT_WEBHOOK_URL")
        response = self._post(url, json={"opportunity_id": opportunity_id, "artifact_id": artifact_id})
        return parse_drive_delivery(self._json_body(response))

    def close(self) -> None:
        self._client.close()

    @staticmethod
    def _require_url(value: str, name: str) -> str:
        url = str(value or "").strip()
        if not url:
            raise ConfigurationError(f"{name} is not configured.")
        return url

    def _post(self, url: str, **kwargs: object) -> httpx.Response:
        started = time.perf_counter()
        try:
            response = self._client.post(url, timeout=self._settings.webhook_timeout_seconds, **kwargs)
        except httpx.TimeoutException as exc:
            logger.warning("webhook_timeout", extra={"event": "webhook_timeout", "url": url})
            raise GatewayTimeout(
                "Request to the webhook timed out.",
                details="The upload took too long to complete.",
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning("webhook_unreachable", extra={"event": "webhook_unreachable", "url": url, "error": str(exc)})
            raise WebhookUnavailable("Failed to connect to the webhook.", details=str(exc)) from exc

        logger.info(
            "webhook_completed",
            extra={
                "event": "webhook_completed",
                "url": url,
                "status_code": response.status_code,
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
            },
        )
        if not response.is_success:
            raise WebhookRejected(
                "The webhook returned an error.",
                upstream_status=response.status_code,
                details=response.text[:200],
            )
        return response

    @staticmethod
    def _json_body(response: httpx.Response) -> object:
        try:
            return response.json()
        except ValueError as exc:
            raise WebhookUnavailable("Invalid JSON response from the webhook.") from exc
