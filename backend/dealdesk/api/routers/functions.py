from __future__ import annotations

import logging
from typing import Callable

from fastapi import APIRouter, Depends, File, Form, UploadFile

from dealdesk.api.contracts import GenerateArtifactRequest, GenerateDspRequest
from dealdesk.api.services.generation import (
    CompletionClientGetter,
    StorageGetter,
    TextExtractorGetter,
    generate_deal_strategy_plan,
)
from dealdesk.auth import Caller, require_authenticated_user, require_caller
from dealdesk.config import settings
from dealdesk.db import ARTIFACT_STATUS_GENERATED, get_artifact, update_artifact_delivery
from dealdesk.errors import DeliveryFailed, InvalidRequest, InvalidWebhookResponse, NotFound, PayloadTooLarge
from dealdesk.parsers import PDF_CONTENT_TYPE
from dealdesk.webhooks import WebhookClient

logger = logging.getLogger("dealdesk.api")

WebhookClientGetter = Callable[[], WebhookClient]


def build_functions_router(
    *,
    get_ai_gateway: CompletionClientGetter,
    get_storage: StorageGetter,
    get_text_extractor: TextExtractorGetter,
    get_webhook_client: WebhookClientGetter,
) -> APIRouter:
    router = APIRouter(prefix="/functions")

    @router.post("/generate-dsp")
    def generate_dsp_endpoint(
        payload: GenerateDspRequest,
        caller: Caller = Depends(require_caller),
    ) -> dict[str, object]:
        return generate_deal_strategy_plan(
            payload.opportunity_id,
            caller,
            get_ai_gateway=get_ai_gateway,
            get_storage=get_storage,
            get_text_extractor=get_text_extractor,
        )

    @router.post("/proxy-upload", dependencies=[Depends(require_authenticated_user)])
    async def proxy_upload_endpoint(
        file: UploadFile = File(...),
        input_id: str = Form(default=""),
        opportunity_id: str = Form(default=""),
        file_name: str = Form(default=""),
        uploaded_by: str = Form(default=""),
    ) -> dict[str, object]:
        if (file.content_type or "").split(";", 1)[0].strip().lower() != PDF_CONTENT_TYPE:
            raise InvalidRequest("Only PDF files are allowed.", details={"received_type": file.content_type})

        content = await file.read(settings.max_upload_file_bytes + 1)
        if len(content) > settings.max_upload_file_bytes:
            raise PayloadTooLarge(
                "File too large.",
                details={"max_size": settings.max_upload_file_bytes},
            )

        delivery = get_webhook_client().forward_upload(
            content=content,
            file_name=file_name.strip() or file.filename or "upload.pdf",
            input_id=input_id,
            opportunity_id=opportunity_id,
            uploaded_by=uploaded_by,
        )
        return {
            "success": True,
            "gdrive_file_name": delivery.gdrive_file_name,
            "gdrive_web_url": delivery.gdrive_web_url,
        }

    @router.post("/generate-artifact")
    def generate_artifact_endpoint(
        payload: GenerateArtifactRequest,
        caller: Caller = Depends(require_caller),
    ) -> dict[str, object]:
        artifact = get_artifact(
            payload.artifact_id,
            opportunity_id=payload.opportunity_id,
            status=ARTIFACT_STATUS_GENERATED,
        )
        if artifact is None:
            raise NotFound("Artifact not found.")

        try:
            delivery = get_webhook_client().request_artifact_delivery(
                opportunity_id=payload.opportunity_id,
                artifact_id=payload.artifact_id,
            )
        except InvalidWebhookResponse as exc:
            update_artifact_delivery(payload.artifact_id, gdrive_file_name="error", gdrive_web_url="error")
            raise DeliveryFailed("Invalid webhook response format.", details=exc.details) from exc

        update_artifact_delivery(
            payload.artifact_id,
            gdrive_file_name=delivery.gdrive_file_name,
            gdrive_web_url=delivery.gdrive_web_url,
        )
        logger.info(
            "artifact_delivered",
            extra={
                "event": "artifact_delivered",
                "artifact_id": payload.artifact_id,
                "requested_by": caller.user_id,
            },
        )
        return {
            "success": True,
            "artifact_id": payload.artifact_id,
            "gdrive_file_name": delivery.gdrive_file_name,
            "gdrive_web_url": delivery.gdrive_web_url,
        }

    return router
