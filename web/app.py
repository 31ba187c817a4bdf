"""FastAPI application serving credential bundles and the authenticated proxy."""

import asyncio
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from loguru import logger

from session_broker import __version__
from session_broker.core.exceptions import SessionBrokerError
from session_broker.core.settings import BrokerSettings, get_settings
from session_broker.factory import MailboxProvider, build_orchestrator
from session_broker.services.session.orchestrator import AcquisitionOrchestrator
from web.exception_handlers import broker_exception_handler
from web.routes import auth_router, health_router, proxy_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    FastAPI lifespan context manager for startup and shutdown.

    Handles:
    - Proxy HTTP session cleanup on shutdown
    - Mailbox connection cleanup on shutdown
    """
    logger.info("Session broker starting up...")

    yield

    logger.info("Session broker shutting down...")

    http_session = getattr(app.state, "http_session", None)
    if http_session is not None and not http_session.closed:
        try:
            await asyncio.wait_for(http_session.close(), timeout=5)
        except asyncio.TimeoutError:
            logger.warning("Proxy HTTP session close timed out after 5s")

    mailbox: Optional[MailboxProvider] = getattr(app.state, "mailbox", None)
    if mailbox is not None:
        try:
            await asyncio.wait_for(mailbox.close(), timeout=5)
        except asyncio.TimeoutError:
            logger.warning("Mailbox close timed out after 5s")
        except Exception as e:
            logger.error(f"Error closing mailbox: {e}")


def create_app(
    settings: Optional[BrokerSettings] = None,
    orchestrator: Optional[AcquisitionOrchestrator] = None,
    mailbox: Optional[MailboxProvider] = None,
) -> FastAPI:
    """
    Factory function to create FastAPI application instance.

    Args:
        settings: Broker settings (default: the settings singleton)
        orchestrator: Pre-built orchestrator, e.g. with a fake acquirer in tests
        mailbox: Mailbox provider shared with the orchestrator

    Returns:
        Configured FastAPI application instance
    """
    settings = settings or get_settings()
    if orchestrator is None:
        mailbox = mailbox or MailboxProvider(settings)
        orchestrator = build_orchestrator(settings, mailbox=mailbox)

    app = FastAPI(
        title="Session Broker API",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.is_development() else None,
        redoc_url=None,
        openapi_url="/openapi.json" if settings.is_development() else None,
    )
    app.state.settings = settings
    app.state.orchestrator = orchestrator
    app.state.mailbox = mailbox
    app.state.http_session = None

    app.add_exception_handler(SessionBrokerError, broker_exception_handler)

    app.include_router(auth_router)  # /auth, /auth/invalidate
    app.include_router(proxy_router)  # /proxy/{path}
    app.include_router(health_router)  # /health

    return app
