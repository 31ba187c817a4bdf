"""Health check route."""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from session_broker.services.session.orchestrator import AcquisitionOrchestrator
from web.dependencies import get_orchestrator
from web.models import HealthResponse

router = APIRouter(tags=["health"])


def get_version() -> str:
    """
    Get application version from centralized source.

    Returns:
        Version string
    """
    from session_broker import __version__

    return __version__


@router.get("/health", response_model=HealthResponse)
async def health_check(
    orchestrator: AcquisitionOrchestrator = Depends(get_orchestrator),
) -> HealthResponse:
    """
    Health check endpoint for monitoring and container orchestration.

    Never triggers a login; reports whether a valid session is cached.
    """
    return HealthResponse(
        status="healthy",
        version=get_version(),
        timestamp=datetime.now(timezone.utc).isoformat(),
        credential=orchestrator.snapshot(),
    )
