from __future__ import annotations

import mimetypes
from typing import Callable

from fastapi import APIRouter, Query
from fastapi.responses import Response

from dealdesk.config import settings
from dealdesk.errors import InvalidSignature, NotFound, StorageError
from dealdesk.storage import ObjectStorage, verify_signed_object_path

StorageGetter = Callable[[], ObjectStorage]


def build_storage_router(*, get_storage: StorageGetter) -> APIRouter:
    """Serves objects behind the HMAC-signed URLs issued by the local backend."""

    router = APIRouter()

    @router.get("/storage/signed/{bucket}/{object_path:path}")
    def signed_download(
        bucket: str,
        object_path: str,
        expires: int = Query(...),
        token: str = Query(..., min_length=1),
    ) -> Response:
        storage = get_storage()
        if storage.backend != "local" or bucket not in {settings.inputs_bucket, settings.artifacts_bucket}:
            raise NotFound("Object not found.")
        if not verify_signed_object_path(settings.storage_signing_secret, bucket, object_path, expires, token):
            raise InvalidSignature("Signed URL is invalid or has expired.")

        try:
            content = storage.download(bucket=bucket, path=object_path)
        except StorageError as exc:
            raise NotFound("Object not found.") from exc

        media_type = mimetypes.guess_type(object_path)[0] or "application/octet-stream"
        if object_path.endswith(".md"):
            media_type = "text/markdown"
        return Response(content=content, media_type=media_type)

    return router
