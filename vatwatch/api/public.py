"""Public HTTP API: the same operations the Telegram bot offers.

    GET|POST /api/check       owner_id, vat_number
    GET|POST /api/uncheck     owner_id, vat_number
    GET|POST /api/uncheckAll  owner_id
    GET|POST /api/list        owner_id

Parameters come from the query string or a JSON body.
"""
# ruff: noqa: B008

from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from vatwatch import messages
from vatwatch.api.deps import get_monitoring
from vatwatch.lifecycle.admission import MonitoringService, ServiceReply, client_error

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["public"])

ALLOWED_ACTIONS = ("check", "uncheck", "uncheckAll", "list")


async def _params(request: Request) -> dict[str, Any]:
    """Merge JSON body (if any) under query parameters."""
    params: dict[str, Any] = {}
    body = await request.body()
    if body:
        try:
            decoded = json.loads(body)
        except ValueError:
            decoded = None
        if isinstance(decoded, dict):
            params.update(decoded)
    params.update(request.query_params)
    return params


def _to_response(reply: ServiceReply) -> JSONResponse:
    return JSONResponse(
        status_code=reply.status,
        content={"type": "success" if reply.success else "error", "message": reply.message},
    )


@router.api_route("/{action}", methods=["GET", "POST"])
async def handle_action(
    action: str,
    request: Request,
    monitoring: MonitoringService = Depends(get_monitoring),
) -> JSONResponse:
    """Dispatch one user action."""
    params = await _params(request)
    owner_id = params.get("owner_id")
    vat_number = params.get("vat_number")
    if vat_number is not None:
        vat_number = str(vat_number)

    if owner_id is None or str(owner_id).strip() == "":
        return _to_response(client_error(messages.MISSING_OWNER))
    if action not in ALLOWED_ACTIONS:
        return _to_response(
            client_error(
                f"Missing or invalid action (should be one of the following: {', '.join(ALLOWED_ACTIONS)})"
            )
        )

    if action == "check":
        reply = await monitoring.submit(owner_id, vat_number)
    elif action == "uncheck":
        reply = await monitoring.remove(owner_id, vat_number)
    elif action == "uncheckAll":
        reply = await monitoring.remove_all(owner_id)
    else:
        reply = await monitoring.list_mine(owner_id)

    logger.info("[%d] %s for chat %s: %s", reply.status, action, owner_id, reply.message)
    return _to_response(reply)
