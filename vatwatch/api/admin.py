"""Admin HTTP API: inspect the queue and work the error bin.

All routes require HTTP Basic Auth via verify_admin dependency.
"""
# ruff: noqa: B008

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel

from vatwatch.api.auth import verify_admin
from vatwatch.api.deps import get_engine, get_store
from vatwatch.lifecycle.admission import parse_vat_number
from vatwatch.lifecycle.engine import LifecycleEngine
from vatwatch.schemas.vat import ErroredRequest, PendingRequest, ResolveOutcome, VatIdentity
from vatwatch.store.requests import RequestStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(verify_admin)])


class UpdateVatRequest(BaseModel):
    """Correction of a pending request's VAT number."""

    owner_id: str | None = None
    vat_number: str | None = None
    new_vat_number: str | None = None


def _not_found(error_id: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"VAT Request Error with id '{error_id}' not found",
    )


@router.get("/pending", response_model=list[PendingRequest])
async def list_pending(store: RequestStore = Depends(get_store)) -> list[PendingRequest]:
    """Every monitored VAT number, all owners."""
    return await store.list_pending()


@router.get("/errors", response_model=list[ErroredRequest])
async def list_errors(store: RequestStore = Depends(get_store)) -> list[ErroredRequest]:
    """Every request in the error bin."""
    return await store.list_errors()


@router.post("/errors/resolve-all", status_code=status.HTTP_204_NO_CONTENT)
async def resolve_all_errors(
    silent: bool = Query(False),
    engine: LifecycleEngine = Depends(get_engine),
) -> Response:
    """Resolve every error; owners whose monitoring resumes are notified unless silent."""
    results = await engine.resolve_all_errors(silent=silent)
    resumed = sum(1 for r in results if r.outcome is ResolveOutcome.ALL_RESOLVED_AND_RESUMED)
    logger.info("Resolved %d errors, %d VAT numbers back in monitoring", len(results), resumed)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/errors/{error_id}/resolve", status_code=status.HTTP_204_NO_CONTENT)
async def resolve_error(
    error_id: str,
    silent: bool = Query(False),
    engine: LifecycleEngine = Depends(get_engine),
) -> Response:
    """Resolve one error. 404 when it does not exist."""
    result = await engine.resolve_error(error_id, silent=silent)
    if result.outcome is ResolveOutcome.NOT_FOUND:
        raise _not_found(error_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete("/errors/{error_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_error(error_id: str, store: RequestStore = Depends(get_store)) -> Response:
    """Drop an error without resuming monitoring."""
    logger.info("Removing error with id '%s'", error_id)
    if not await store.remove_error(error_id):
        raise _not_found(error_id)
    logger.info("Error with id '%s' removed", error_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/pending/update", status_code=status.HTTP_204_NO_CONTENT)
async def update_pending(body: UpdateVatRequest, store: RequestStore = Depends(get_store)) -> Response:
    """Correct the VAT number of a pending request.

    204 on success and when nothing changes, 404 when the request does not
    exist, 409 when the corrected VAT number is already monitored.
    """
    if not body.owner_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing Telegram Chat ID")
    if not body.vat_number:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing VAT Number")
    if not body.new_vat_number:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing new VAT Number")

    old_country, old_number = parse_vat_number(body.vat_number)
    new_country, new_number = parse_vat_number(body.new_vat_number)
    old = VatIdentity(owner_id=body.owner_id, country_code=old_country, vat_number=old_number)
    new = VatIdentity(owner_id=body.owner_id, country_code=new_country, vat_number=new_number)

    if old == new:
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    if await store.find_pending(new) is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"VAT number '{new.display}' is already monitored for chat '{body.owner_id}'",
        )

    logger.info("Updating VAT request '%s' to '%s' for chat %s", old.display, new.display, body.owner_id)
    if not await store.update_identity(old, new_country, new_number):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"VAT Request with number '{old.display}' and Telegram Chat ID '{body.owner_id}' not found",
        )
    return Response(status_code=status.HTTP_204_NO_CONTENT)
