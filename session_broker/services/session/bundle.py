"""Assemble a credential bundle from what the browser exposes after login."""

from typing import Any, Dict, Iterable, Mapping, Optional

from loguru import logger

from .models import CredentialBundle

DEFAULT_USER_AGENT = "Mozilla/5.0"


def _token_from_storage(storage: Optional[Mapping[str, Any]]) -> Optional[str]:
    # Any key containing "token"; the last non-empty one in iteration order wins
    token = None
    for key, value in (storage or {}).items():
        if "token" in str(key).lower() and value:
            token = value if isinstance(value, str) else str(value)
    return token


def select_access_token(
    local_storage: Optional[Mapping[str, Any]],
    session_storage: Optional[Mapping[str, Any]],
    captured_bearer: Optional[str],
) -> Optional[str]:
    """
    Pick the bearer token for the downstream API.

    Precedence: a "token" key in localStorage, then in sessionStorage, then
    the last ``Authorization: Bearer`` header seen on an outgoing request.
    Key names are not otherwise validated, so with several matching keys this
    is best-effort.
    """
    token = _token_from_storage(local_storage)
    source = "localStorage"
    if not token:
        token = _token_from_storage(session_storage)
        source = "sessionStorage"
    if not token and captured_bearer:
        token = captured_bearer
        source = "request header"
    logger.info(f"Token source: {source if token else 'none'}")
    return token


def build_bundle(
    cookies: Iterable[Mapping[str, Any]],
    local_storage: Optional[Mapping[str, Any]],
    session_storage: Optional[Mapping[str, Any]],
    captured_bearer: Optional[str],
    user_agent: Optional[str],
    referer: str,
    origin: str,
) -> CredentialBundle:
    """
    Build the immutable bundle handed to downstream callers.

    Args:
        cookies: Browser cookies (dicts with ``name`` and ``value``)
        local_storage: Snapshot of window.localStorage
        session_storage: Snapshot of window.sessionStorage
        captured_bearer: Last bearer token seen on an outgoing request
        user_agent: Browser user agent
        referer: Referer header for downstream requests
        origin: Origin header for downstream requests
    """
    cookie_map: Dict[str, str] = {}
    for cookie in cookies or []:
        name = cookie.get("name")
        if name is not None:
            cookie_map[name] = cookie.get("value") or ""
    cookie_header = "; ".join(f"{name}={value}" for name, value in cookie_map.items())

    access_token = select_access_token(local_storage, session_storage, captured_bearer)

    headers = {
        "Cookie": cookie_header,
        "User-Agent": user_agent or DEFAULT_USER_AGENT,
        "Referer": referer,
        "Origin": origin,
    }
    if access_token:
        headers["Authorization"] = f"Bearer {access_token}"

    return CredentialBundle(
        cookies=cookie_map,
        cookie_header=cookie_header,
        access_token=access_token,
        headers=headers,
    )
