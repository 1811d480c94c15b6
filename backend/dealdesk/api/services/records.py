from __future__ import annotations

import logging

from dealdesk.db import (
    get_client,
    get_opportunity,
    get_or_create_client,
    get_or_create_responsible,
    get_responsible,
    list_artifacts,
    list_inputs,
)
from dealdesk.errors import NotFound

logger = logging.getLogger("dealdesk.api")


def require_opportunity(opportunity_id: int) -> dict[str, object]:
    opportunity = get_opportunity(opportunity_id)
    if opportunity is None:
        raise NotFound(f"Opportunity {opportunity_id} not found.")
    return opportunity


def resolve_client(client_id: int | None, client_name: str | None) -> dict[str, object]:
    if client_id is not None:
        client = get_client(client_id)
        if client is None:
            raise NotFound(f"Client {client_id} not found.")
        return client

    client, created = get_or_create_client(str(client_name))
    if created:
        logger.info("client_created_inline", extra={"event": "client_created_inline", "client_id": client["client_id"]})
    return client


def resolve_responsible(responsible_id: int | None, responsible_name: str | None) -> dict[str, object]:
    if responsible_id is not None:
        responsible = get_responsible(responsible_id)
        if responsible is None:
            raise NotFound(f"Responsible {responsible_id} not found.")
        return responsible

    responsible, created = get_or_create_responsible(str(responsible_name))
    if created:
        logger.info(
            "responsible_created_inline",
            extra={"event": "responsible_created_inline", "responsible_id": responsible["responsible_id"]},
        )
    return responsible


def serialize_opportunity_detail(opportunity: dict[str, object]) -> dict[str, object]:
    opportunity_id = int(opportunity["opportunity_id"])
    return {
        **opportunity,
        "inputs": list_inputs(opportunity_id),
        "artifacts": list_artifacts(opportunity_id),
    }
