"""Shared dependencies for the web application."""

import aiohttp
from fastapi import Request

from session_broker.core.settings import BrokerSettings
from session_broker.services.session.orchestrator import AcquisitionOrchestrator


def get_orchestrator(request: Request) -> AcquisitionOrchestrator:
    """Acquisition orchestrator owned by the application."""
    return request.app.state.orchestrator


def get_broker_settings(request: Request) -> BrokerSettings:
    """Settings the application was created with."""
    return request.app.state.settings


async def get_http_session(request: Request) -> aiohttp.ClientSession:
    """
    HTTP session used for proxied requests, created on first use.

    Returns:
        Shared aiohttp ClientSession
    """
    session = getattr(request.app.state, "http_session", None)
    if session is None or session.closed:
        settings: BrokerSettings = request.app.state.settings
        session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=settings.proxy_timeout_seconds)
        )
        request.app.state.http_session = session
    return session
