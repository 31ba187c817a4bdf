"""Reverse proxy that attaches the cached session to upstream requests."""

import asyncio
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Tuple

import aiohttp
from fastapi import APIRouter, Depends, Request, Response
from loguru import logger

from session_broker.core.exceptions import UpstreamRequestError
from session_broker.core.settings import BrokerSettings
from session_broker.services.session.models import CredentialBundle
from session_broker.services.session.orchestrator import AcquisitionOrchestrator
from web.dependencies import get_broker_settings, get_http_session, get_orchestrator

router = APIRouter(prefix="/proxy", tags=["proxy"])

HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailers",
        "transfer-encoding",
        "upgrade",
        "host",
        "content-length",
    }
)
# aiohttp already decoded the body, so these no longer describe it
DECODED_BODY_HEADERS = frozenset({"content-encoding", "content-type"})
# Responses that mean the upstream no longer accepts the session
SESSION_REJECTED_STATUSES = frozenset({401, 403})


@dataclass
class UpstreamResponse:
    """Status, body, content type and end-to-end headers of a proxied request."""

    status: int
    body: bytes
    content_type: Optional[str] = None
    headers: List[Tuple[str, str]] = field(default_factory=list)


def build_upstream_url(base_url: str, path: str, query: str = "") -> str:
    """Join the upstream base URL, the proxied path and the raw query string."""
    url = f"{base_url.rstrip('/')}/{path.lstrip('/')}"
    return f"{url}?{query}" if query else url


def response_headers(headers: Mapping[str, str]) -> List[Tuple[str, str]]:
    """
    Upstream response headers worth passing back to the caller.

    Repeated headers such as Set-Cookie keep every value.
    """
    return [
        (name, value)
        for name, value in headers.items()
        if name.lower() not in HOP_BY_HOP_HEADERS and name.lower() not in DECODED_BODY_HEADERS
    ]


def merge_headers(incoming: Mapping[str, str], bundle: CredentialBundle) -> Dict[str, str]:
    """
    Forwardable request headers with the session headers laid over them.

    Hop-by-hop headers are dropped. Incoming headers that the bundle also
    sets (Cookie, Authorization, ...) are replaced regardless of case.
    """
    overridden = {name.lower() for name in bundle.headers}
    headers = {
        name: value
        for name, value in incoming.items()
        if name.lower() not in HOP_BY_HOP_HEADERS and name.lower() not in overridden
    }
    headers.update(bundle.headers)
    return headers


async def forward(
    session: aiohttp.ClientSession,
    method: str,
    url: str,
    headers: Mapping[str, str],
    body: bytes,
) -> UpstreamResponse:
    """
    Send one request upstream.

    Raises:
        UpstreamRequestError: If the upstream cannot be reached
    """
    try:
        async with session.request(
            method, url, headers=dict(headers), data=body or None, allow_redirects=False
        ) as response:
            return UpstreamResponse(
                status=response.status,
                body=await response.read(),
                content_type=response.headers.get("Content-Type"),
                headers=response_headers(response.headers),
            )
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        logger.error(f"Upstream request failed: {method} {url}: {e}")
        raise UpstreamRequestError(method, url, str(e)) from e


@router.api_route("/{path:path}", methods=["GET", "POST", "PUT", "PATCH", "DELETE"])
async def proxy_request(
    path: str,
    request: Request,
    orchestrator: AcquisitionOrchestrator = Depends(get_orchestrator),
    settings: BrokerSettings = Depends(get_broker_settings),
    session: aiohttp.ClientSession = Depends(get_http_session),
) -> Response:
    """
    Forward a request upstream with the session attached.

    When the upstream rejects the session it is replaced (one login shared by
    every request rejected with the same session) and the request is replayed once.
    """
    url = build_upstream_url(settings.upstream_base_url, path, request.url.query)
    body = await request.body()
    incoming = dict(request.headers)

    bundle = await orchestrator.acquire()
    upstream = await forward(session, request.method, url, merge_headers(incoming, bundle), body)

    if upstream.status in SESSION_REJECTED_STATUSES:
        logger.warning(f"Upstream rejected session ({upstream.status}); refreshing and replaying")
        bundle = await orchestrator.refresh_if_current(bundle)
        upstream = await forward(
            session, request.method, url, merge_headers(incoming, bundle), body
        )

    response = Response(
        content=upstream.body,
        status_code=upstream.status,
        media_type=upstream.content_type,
    )
    for name, value in upstream.headers:
        response.headers.append(name, value)
    return response
