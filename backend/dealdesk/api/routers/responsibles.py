from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from dealdesk.api.contracts import ResponsibleCreateRequest, ResponsibleUpdateRequest
from dealdesk.auth import require_authenticated_user
from dealdesk.db import create_responsible, get_responsible, list_responsibles, update_responsible
from dealdesk.errors import NotFound


def build_responsibles_router() -> APIRouter:
    router = APIRouter(prefix="/responsibles", dependencies=[Depends(require_authenticated_user)])

    @router.post("", status_code=201)
    def create_responsible_endpoint(payload: ResponsibleCreateRequest) -> dict[str, object]:
        return create_responsible(payload.responsible_name, is_active=payload.is_active)

    @router.get("")
    def list_responsibles_endpoint(active_only: bool = Query(default=False)) -> dict[str, object]:
        return {"responsibles": list_responsibles(active_only=active_only)}

    @router.get("/{responsible_id}")
    def get_responsible_endpoint(responsible_id: int) -> dict[str, object]:
        responsible = get_responsible(responsible_id)
        if responsible is None:
            raise NotFound(f"Responsible {responsible_id} not found.")
        return responsible

    @router.patch("/{responsible_id}")
    def update_responsible_endpoint(responsible_id: int, payload: ResponsibleUpdateRequest) -> dict[str, object]:
        responsible = update_responsible(
            responsible_id,
            name=payload.responsible_name,
            is_active=payload.is_active,
        )
        if responsible is None:
            raise NotFound(f"Responsible {responsible_id} not found.")
        return responsible

    @router.delete("/{responsible_id}")
    def deactivate_responsible_endpoint(responsible_id: int) -> dict[str, object]:
        # Responsibles stay referenced by past opportunities, so removal only deactivates.
        responsible = update_responsible(responsible_id, is_active=False)
        if responsible is None:
            raise NotFound(f"Responsible {responsible_id} not found.")
        return responsible

    return router
