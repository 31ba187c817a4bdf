"""Microsoft Graph message source.

Reads the OTP mailbox with an Azure AD app registration (client credentials
flow). Sender filtering is done locally rather than with a server-side
``from`` filter, which is brittle across aliases and casing.
"""

import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import aiohttp
from loguru import logger

from ...core.exceptions import (
    MessageSourceError,
    MissingCredentialsError,
    SortOrderUnsupportedError,
)
from ..otp.extractor import html_to_text
from .base import MessageSource
from .models import MailMessage

GRAPH_API_BASE = "https://graph.microsoft.com/v1.0"
TOKEN_URL_TEMPLATE = "https://login.microsoftonline.com/{tenant}/oauth2/v2.0/token"
GRAPH_SCOPE = "https://graph.microsoft.com/.default"

SUMMARY_FIELDS = "id,subject,receivedDateTime,from,sender,bodyPreview"
SORT_TOO_COMPLEX = "restriction or sort order is too complex"

# Refresh the app token this many seconds before it expires
TOKEN_REFRESH_MARGIN = 60


def _sender_of(raw: Dict[str, Any]) -> str:
    for key in ("from", "sender"):
        address = ((raw.get(key) or {}).get("emailAddress") or {}).get("address")
        if address:
            return address.strip()
    return ""


def _parse_received(value: Optional[str]) -> datetime:
    if not value:
        return datetime.fromtimestamp(0, tz=timezone.utc)
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.warning(f"Unparseable receivedDateTime: {value!r}")
        return datetime.fromtimestamp(0, tz=timezone.utc)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_graph_message(raw: Dict[str, Any]) -> MailMessage:
    """Convert a Graph message resource to a MailMessage."""
    return MailMessage(
        id=raw.get("id", ""),
        sender_address=_sender_of(raw),
        received_at=_parse_received(raw.get("receivedDateTime")),
        subject=raw.get("subject") or "",
        body_preview=raw.get("bodyPreview") or "",
    )


class GraphMessageSource(MessageSource):
    """Message source backed by the Microsoft Graph mail API."""

    def __init__(
        self,
        tenant_id: Optional[str],
        client_id: Optional[str],
        client_secret: Optional[str],
        mailbox: Optional[str],
        timeout: float = 30.0,
    ):
        """
        Initialize Graph message source.

        Args:
            tenant_id: Azure AD tenant id
            client_id: App registration client id
            client_secret: App registration secret
            mailbox: Address of the mailbox that receives OTP emails
            timeout: Per-request timeout in seconds

        Raises:
            MissingCredentialsError: If any of the Azure settings is missing
        """
        missing = [
            name
            for name, value in (
                ("AZURE_TENANT_ID", tenant_id),
                ("AZURE_CLIENT_ID", client_id),
                ("AZURE_CLIENT_SECRET", client_secret),
                ("USER_EMAIL", mailbox),
            )
            if not value
        ]
        if missing:
            raise MissingCredentialsError(*missing)

        self.tenant_id = tenant_id
        self.client_id = client_id
        self._client_secret = client_secret
        self.mailbox = mailbox
        self.timeout = timeout

        self._http_session: Optional[aiohttp.ClientSession] = None
        self._access_token: Optional[str] = None
        self._token_expires_at = 0.0

    @property
    def _session(self) -> aiohttp.ClientSession:
        if self._http_session is None or self._http_session.closed:
            self._http_session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
        return self._http_session

    async def close(self) -> None:
        if self._http_session is not None and not self._http_session.closed:
            await self._http_session.close()
        self._http_session = None

    async def _get_token(self) -> str:
        """Get an app-only Graph token, reusing it until shortly before expiry."""
        if self._access_token and time.time() < self._token_expires_at:
            return self._access_token

        data = {
            "grant_type": "client_credentials",
            "client_id": self.client_id,
            "client_secret": self._client_secret,
            "scope": GRAPH_SCOPE,
        }
        url = TOKEN_URL_TEMPLATE.format(tenant=self.tenant_id)
        try:
            async with self._session.post(url, data=data) as response:
                payload = await response.json(content_type=None)
                if response.status != 200:
                    description = (payload or {}).get("error_description", "")
                    raise MessageSourceError(
                        f"Graph token request failed with status {response.status}: "
                        f"{description[:200]}",
                        status=response.status,
                    )
        except aiohttp.ClientError as e:
            raise MessageSourceError(f"Graph token request failed: {e}") from e

        self._access_token = payload["access_token"]
        expires_in = int(payload.get("expires_in", 3600))
        self._token_expires_at = time.time() + max(0, expires_in - TOKEN_REFRESH_MARGIN)
        logger.debug(f"Graph app token acquired (expires_in={expires_in}s)")
        return self._access_token

    async def _get(self, path: str, params: Dict[str, str]) -> Dict[str, Any]:
        token = await self._get_token()
        headers = {"Authorization": f"Bearer {token}"}
        try:
            async with self._session.get(
                f"{GRAPH_API_BASE}{path}", params=params, headers=headers
            ) as response:
                payload = await response.json(content_type=None)
                if response.status != 200:
                    message = ((payload or {}).get("error") or {}).get("message", "")
                    if SORT_TOO_COMPLEX in message.lower():
                        raise SortOrderUnsupportedError(message, status=response.status)
                    raise MessageSourceError(
                        f"Graph request {path} failed with status {response.status}: "
                        f"{message[:200]}",
                        status=response.status,
                    )
                return payload or {}
        except aiohttp.ClientError as e:
            raise MessageSourceError(f"Graph request {path} failed: {e}") from e

    async def list_messages(
        self, folder: Optional[str], limit: int, newest_first: bool = True
    ) -> List[MailMessage]:
        if folder:
            path = f"/users/{self.mailbox}/mailFolders/{folder}/messages"
        else:
            path = f"/users/{self.mailbox}/messages"
        params = {"$top": str(limit), "$select": SUMMARY_FIELDS}
        if newest_first:
            params["$orderby"] = "receivedDateTime desc"

        payload = await self._get(path, params)
        return [parse_graph_message(raw) for raw in payload.get("value", [])]

    async def fetch_body(self, message_id: str) -> str:
        payload = await self._get(
            f"/users/{self.mailbox}/messages/{message_id}",
            {"$select": "id,subject,receivedDateTime,from,sender,body,bodyPreview"},
        )
        body = payload.get("body") or {}
        content = body.get("content") or ""
        if (body.get("contentType") or "").lower() == "html":
            return html_to_text(content)
        return content
