from __future__ import annotations

from fastapi import APIRouter, Depends

from dealdesk.api.contracts import ClientCreateRequest, ClientUpdateRequest
from dealdesk.auth import require_authenticated_user
from dealdesk.db import create_client, delete_client, get_client, list_clients, update_client
from dealdesk.errors import NotFound


def build_clients_router() -> APIRouter:
    router = APIRouter(prefix="/clients", dependencies=[Depends(require_authenticated_user)])

    @router.post("", status_code=201)
    def create_client_endpoint(payload: ClientCreateRequest) -> dict[str, object]:
        return create_client(payload.client_name)

    @router.get("")
    def list_clients_endpoint() -> dict[str, object]:
        return {"clients": list_clients()}

    @router.get("/{client_id}")
    def get_client_endpoint(client_id: int) -> dict[str, object]:
        client = get_client(client_id)
        if client is None:
            raise NotFound(f"Client {client_id} not found.")
        return client

    @router.patch("/{client_id}")
    def update_client_endpoint(client_id: int, payload: ClientUpdateRequest) -> dict[str, object]:
        client = update_client(client_id, payload.client_name)
        if client is None:
            raise NotFound(f"Client {client_id} not found.")
        return client

    @router.delete("/{client_id}")
    def delete_client_endpoint(client_id: int) -> dict[str, object]:
        if not delete_client(client_id):
            raise NotFound(f"Client {client_id} not found.")
        return {"deleted": True, "client_id": client_id}

    return router
