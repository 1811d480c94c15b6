from __future__ import annotations

import logging
from typing import Callable

from fastapi import APIRouter, Depends, File, Query, UploadFile

from dealdesk.api.contracts import OpportunityCreateRequest, OpportunityUpdateRequest
from dealdesk.api.services.records import (
    require_opportunity,
    resolve_client,
    resolve_responsible,
    serialize_opportunity_detail,
)
from dealdesk.auth import Caller, require_authenticated_user
from dealdesk.config import settings
from dealdesk.db import (
    create_input,
    create_opportunity,
    delete_input,
    delete_opportunity,
    get_input,
    list_artifacts,
    list_inputs,
    list_opportunities,
    update_opportunity,
)
from dealdesk.errors import InvalidRequest, NotFound, PayloadTooLarge
from dealdesk.parsers import PDF_CONTENT_TYPE
from dealdesk.storage import ObjectStorage, input_storage_path

logger = logging.getLogger("dealdesk.api")

StorageGetter = Callable[[], ObjectStorage]

PREVIEW_SIGNED_URL_TTL_SECONDS = 3600
_NON_NULLABLE_FIELDS = ("opportunity_name", "client_id", "responsible_id", "status")


def _uploader(caller: Caller | None) -> str:
    return caller.display_name if caller is not None else "system"


def build_opportunities_router(*, get_storage: StorageGetter) -> APIRouter:
    router = APIRouter()

    @router.post("/opportunities", status_code=201)
    def create_opportunity_endpoint(
        payload: OpportunityCreateRequest,
        caller: Caller | None = Depends(require_authenticated_user),
    ) -> dict[str, object]:
        client = resolve_client(payload.client_id, payload.client_name)
        responsible = resolve_responsible(payload.responsible_id, payload.responsible_name)
        return create_opportunity(
            name=payload.opportunity_name,
            description=payload.description,
            client_id=int(client["client_id"]),
            responsible_id=int(responsible["responsible_id"]),
            generated_by=_uploader(caller),
            status=payload.status,
        )

    @router.get("/opportunities", dependencies=[Depends(require_authenticated_user)])
    def list_opportunities_endpoint() -> dict[str, object]:
        return {"opportunities": list_opportunities()}

    @router.get("/opportunities/{opportunity_id}", dependencies=[Depends(require_authenticated_user)])
    def get_opportunity_endpoint(opportunity_id: int) -> dict[str, object]:
        return serialize_opportunity_detail(require_opportunity(opportunity_id))

    @router.patch("/opportunities/{opportunity_id}", dependencies=[Depends(require_authenticated_user)])
    def update_opportunity_endpoint(opportunity_id: int, payload: OpportunityUpdateRequest) -> dict[str, object]:
        require_opportunity(opportunity_id)
        fields = payload.model_dump(exclude_unset=True)
        for key in _NON_NULLABLE_FIELDS:
            if key in fields and fields[key] is None:
                del fields[key]
        if "client_id" in fields:
            resolve_client(int(fields["client_id"]), None)
        if "responsible_id" in fields:
            resolve_responsible(int(fields["responsible_id"]), None)

        updated = update_opportunity(opportunity_id, fields)
        if updated is None:
            raise NotFound(f"Opportunity {opportunity_id} not found.")
        return updated

    @router.delete("/opportunities/{opportunity_id}", dependencies=[Depends(require_authenticated_user)])
    def delete_opportunity_endpoint(opportunity_id: int) -> dict[str, object]:
        require_opportunity(opportunity_id)
        storage = get_storage()
        inputs = list_inputs(opportunity_id)
        artifacts = list_artifacts(opportunity_id, include_unfinished=True)
        for item in inputs:
            storage.remove(bucket=settings.inputs_bucket, path=str(item["storage_path"]))
        for artifact in artifacts:
            if artifact.get("storage_path"):
                storage.remove(bucket=settings.artifacts_bucket, path=str(artifact["storage_path"]))

        delete_opportunity(opportunity_id)
        logger.info(
            "opportunity_deleted",
            extra={
                "event": "opportunity_deleted",
                "opportunity_id": opportunity_id,
                "inputs_removed": len(inputs),
                "artifacts_removed": len(artifacts),
            },
        )
        return {"deleted": True, "opportunity_id": opportunity_id}

    @router.post("/opportunities/{opportunity_id}/inputs", status_code=201)
    async def upload_input_endpoint(
        opportunity_id: int,
        file: UploadFile = File(...),
        caller: Caller | None = Depends(require_authenticated_user),
    ) -> dict[str, object]:
        require_opportunity(opportunity_id)

        content_type = (file.content_type or "").split(";", 1)[0].strip().lower()
        if content_type != PDF_CONTENT_TYPE:
            raise InvalidRequest(
                "Only PDF files are allowed.",
                details={"received_type": file.content_type},
            )

        original_name = file.filename or "upload.pdf"
        content = await file.read(settings.max_upload_file_bytes + 1)
        if len(content) > settings.max_upload_file_bytes:
            raise PayloadTooLarge(
                f"File '{original_name}' exceeds max size of {settings.max_upload_file_bytes} bytes.",
                details={"max_size": settings.max_upload_file_bytes},
            )

        storage_path = input_storage_path(opportunity_id, original_name)
        storage = get_storage()
        storage.ensure_bucket(settings.inputs_bucket)
        storage.upload(
            bucket=settings.inputs_bucket,
            path=storage_path,
            content=content,
            content_type=PDF_CONTENT_TYPE,
        )

        record = create_input(
            opportunity_id=opportunity_id,
            input_name=original_name,
            storage_path=storage_path,
            file_size_kb=round(len(content) / 1024),
            uploaded_by=_uploader(caller),
        )
        logger.info(
            "input_uploaded",
            extra={
                "event": "input_uploaded",
                "opportunity_id": opportunity_id,
                "input_id": record["input_id"],
                "size_bytes": len(content),
            },
        )
        return record

    @router.get("/opportunities/{opportunity_id}/inputs", dependencies=[Depends(require_authenticated_user)])
    def list_inputs_endpoint(opportunity_id: int) -> dict[str, object]:
        require_opportunity(opportunity_id)
        return {"opportunity_id": opportunity_id, "inputs": list_inputs(opportunity_id)}

    @router.delete("/inputs/{input_id}", dependencies=[Depends(require_authenticated_user)])
    def delete_input_endpoint(input_id: int) -> dict[str, object]:
        record = get_input(input_id)
        if record is None:
            raise NotFound(f"Input {input_id} not found.")
        get_storage().remove(bucket=settings.inputs_bucket, path=str(record["storage_path"]))
        delete_input(input_id)
        return {"deleted": True, "input_id": input_id}

    @router.get("/inputs/{input_id}/url", dependencies=[Depends(require_authenticated_user)])
    def input_url_endpoint(
        input_id: int,
        expires_in: int | None = Query(default=None, ge=1, le=PREVIEW_SIGNED_URL_TTL_SECONDS * 24),
        preview: bool = Query(default=False),
    ) -> dict[str, object]:
        record = get_input(input_id)
        if record is None:
            raise NotFound(f"Input {input_id} not found.")
        lifetime = expires_in or (
            PREVIEW_SIGNED_URL_TTL_SECONDS if preview else settings.input_signed_url_ttl_seconds
        )
        url = get_storage().create_signed_url(
            bucket=settings.inputs_bucket,
            path=str(record["storage_path"]),
            expires_in=lifetime,
        )
        return {"input_id": input_id, "signed_url": url, "expires_in": lifetime}

    @router.get("/opportunities/{opportunity_id}/artifacts", dependencies=[Depends(require_authenticated_user)])
    def list_artifacts_endpoint(opportunity_id: int) -> dict[str, object]:
        require_opportunity(opportunity_id)
        return {"opportunity_id": opportunity_id, "artifacts": list_artifacts(opportunity_id)}

    return router
