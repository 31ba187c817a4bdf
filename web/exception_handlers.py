"""Exception handlers mapping broker errors to structured JSON responses."""

from fastapi import Request
from fastapi.responses import JSONResponse
from loguru import logger

from session_broker.core.exceptions import (
    AcquisitionFailedError,
    SessionBrokerError,
    UpstreamUnavailableError,
)
from web.models import ErrorResponse


def error_payload(exc: SessionBrokerError) -> ErrorResponse:
    """
    Build the error body for a broker failure.

    An acquisition failure reports the code of the error that ended its last
    attempt, so callers can tell an unavailable portal from an OTP timeout.
    """
    if isinstance(exc, AcquisitionFailedError):
        return ErrorResponse(
            error=exc.message, code=exc.cause_code, debugScreenshot=exc.debug_screenshot
        )
    screenshot = exc.screenshot if isinstance(exc, UpstreamUnavailableError) else None
    return ErrorResponse(error=exc.message, code=exc.code, debugScreenshot=screenshot)


async def broker_exception_handler(request: Request, exc: SessionBrokerError) -> JSONResponse:
    """Convert SessionBrokerError to ``{success: false, error, code, debugScreenshot?}``."""
    logger.error(
        f"Broker error on {request.url.path}: {exc.__class__.__name__}: {exc.message} "
        f"(code={exc.code}, recoverable={exc.recoverable})"
    )
    payload = error_payload(exc)
    return JSONResponse(
        status_code=exc.http_status,
        content=payload.model_dump(by_alias=True, exclude_none=True),
    )
