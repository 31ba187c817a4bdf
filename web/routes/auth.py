"""Credential bundle routes."""

from fastapi import APIRouter, Depends, Query

from session_broker.services.session.orchestrator import AcquisitionOrchestrator
from web.dependencies import get_orchestrator
from web.models import AuthBundleResponse, ErrorResponse, InvalidateResponse

router = APIRouter(prefix="/auth", tags=["auth"])


@router.api_route(
    "",
    methods=["GET", "POST"],
    response_model=AuthBundleResponse,
    responses={502: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
)
async def get_auth(
    force_refresh: bool = Query(False, description="Discard the cached session and log in again"),
    orchestrator: AcquisitionOrchestrator = Depends(get_orchestrator),
) -> AuthBundleResponse:
    """
    Return a valid credential bundle, logging in if necessary.

    Concurrent requests share a single login.
    """
    bundle = await orchestrator.acquire(force_refresh=force_refresh)
    return AuthBundleResponse(**bundle.to_dict())


@router.post("/invalidate", response_model=InvalidateResponse)
async def invalidate_auth(
    orchestrator: AcquisitionOrchestrator = Depends(get_orchestrator),
) -> InvalidateResponse:
    """Drop the cached session after the downstream API rejected it."""
    await orchestrator.invalidate()
    return InvalidateResponse()
