from __future__ import annotations

import sqlite3
from typing import Callable
from uuid import uuid4

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from dealdesk.config import settings
from dealdesk.db import get_conn
from dealdesk.errors import StorageError
from dealdesk.storage import ObjectStorage
from dealdesk.version import APP_VERSION

StorageGetter = Callable[[], ObjectStorage]

_PROBE_PREFIX = ".ready"


def _check_database() -> dict[str, object]:
    with get_conn() as conn:
        row = conn.execute("SELECT COUNT(*) AS total FROM opportunities").fetchone()
    return {"ok": True, "backend": "sqlite", "opportunities": int(row["total"])}


def _check_storage(storage: ObjectStorage) -> dict[str, object]:
    if storage.backend != "local":
        return {"ok": True, "backend": storage.backend, "probe": "skipped"}

    marker = f"{_PROBE_PREFIX}/{uuid4().hex}"
    content = marker.encode("utf-8")
    storage.ensure_bucket(settings.inputs_bucket)
    storage.upload(bucket=settings.inputs_bucket, path=marker, content=content, content_type="text/plain")
    try:
        if storage.download(bucket=settings.inputs_bucket, path=marker) != content:
            raise StorageError("local storage probe mismatch")
    finally:
        storage.remove(bucket=settings.inputs_bucket, path=marker)
    return {"ok": True, "backend": "local"}


def build_system_router(*, get_storage: StorageGetter) -> APIRouter:
    router = APIRouter()

    @router.get("/")
    def root() -> dict[str, str]:
        return {"service": "dealdesk-backend", "status": "running", "version": APP_VERSION}

    @router.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok", "environment": settings.app_env}

    @router.get("/ready", response_model=None)
    def ready() -> JSONResponse:
        checks: dict[str, object] = {}
        payload: dict[str, object] = {"status": "ready", "environment": settings.app_env, "checks": checks}

        try:
            checks["db"] = _check_database()
        except (sqlite3.Error, RuntimeError) as exc:
            checks["db"] = {"ok": False, "backend": "sqlite", "error": str(exc)}

        try:
            checks["storage"] = _check_storage(get_storage())
        except (StorageError, OSError) as exc:
            checks["storage"] = {"ok": False, "backend": settings.storage_backend, "error": str(exc)}

        checks["ai_gateway"] = {"configured": bool(settings.ai_gateway_api_key.strip())}
        checks["webhooks"] = {
            "upload": bool(settings.upload_webhook_url.strip()),
            "artifact": bool(settings.artifact_webhook_url.strip()),
        }

        if not all(check.get("ok", True) for check in checks.values() if isinstance(check, dict)):
            payload["status"] = "not_ready"
            return JSONResponse(status_code=503, content=payload)
        return JSONResponse(status_code=200, content=payload)

    return router
