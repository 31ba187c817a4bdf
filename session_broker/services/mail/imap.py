"""IMAP message source.

Alternative backend for mailboxes that are reachable over IMAP with an app
password instead of a Graph app registration. imaplib is blocking, so every
call runs in a worker thread.
"""

import asyncio
import email.utils
import imaplib
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from email import message_from_bytes
from email.header import decode_header
from email.message import Message
from typing import List, Optional, Tuple

from loguru import logger

from ...core.exceptions import MessageSourceError, MissingCredentialsError
from ..otp.extractor import html_to_text
from .base import MessageSource
from .models import MailMessage

HEADER_FIELDS = "(BODY.PEEK[HEADER.FIELDS (MESSAGE-ID FROM SENDER SUBJECT DATE)])"
_UID_PATTERN = re.compile(rb"UID (\d+)")


@dataclass
class IMAPConfig:
    """
    IMAP server configuration.

    Attributes:
        host: IMAP server hostname (default: outlook.office365.com)
        port: IMAP server port (default: 993 for SSL)
        use_ssl: Whether to use SSL/TLS connection (default: True)
    """

    host: str = "outlook.office365.com"
    port: int = 993
    use_ssl: bool = True


def decode_header_value(header_value: Optional[str]) -> str:
    """Decode MIME-encoded email header."""
    if not header_value:
        return ""

    decoded_parts = []
    for part, encoding in decode_header(header_value):
        if isinstance(part, bytes):
            decoded_parts.append(part.decode(encoding or "utf-8", errors="ignore"))
        else:
            decoded_parts.append(part)

    return " ".join(decoded_parts).strip()


def get_email_body(msg: Message) -> str:
    """Extract email body as text, preferring text/plain over HTML."""
    body = ""

    if msg.is_multipart():
        for part in msg.walk():
            if "attachment" in str(part.get("Content-Disposition")):
                continue

            content_type = part.get_content_type()
            payload = part.get_payload(decode=True)
            if payload is None:
                continue

            if content_type == "text/plain":
                body = payload.decode(part.get_content_charset() or "utf-8", errors="ignore")
                break
            if content_type == "text/html" and not body:
                body = html_to_text(
                    payload.decode(part.get_content_charset() or "utf-8", errors="ignore")
                )
    else:
        payload = msg.get_payload(decode=True)
        if payload is not None:
            body = payload.decode(msg.get_content_charset() or "utf-8", errors="ignore")
            if msg.get_content_type() == "text/html":
                body = html_to_text(body)

    return body


def parse_header_block(message_id: str, header_bytes: bytes) -> MailMessage:
    """Build a MailMessage from a fetched header block."""
    msg = message_from_bytes(header_bytes)
    _, from_address = email.utils.parseaddr(decode_header_value(msg.get("From")))
    if not from_address:
        _, from_address = email.utils.parseaddr(decode_header_value(msg.get("Sender")))

    try:
        received_at = email.utils.parsedate_to_datetime(msg.get("Date", ""))
    except (TypeError, ValueError):
        received_at = datetime.fromtimestamp(0, tz=timezone.utc)
    if received_at.tzinfo is None:
        received_at = received_at.replace(tzinfo=timezone.utc)

    return MailMessage(
        id=message_id,
        sender_address=from_address.strip(),
        received_at=received_at,
        subject=decode_header_value(msg.get("Subject")),
    )


class ImapMessageSource(MessageSource):
    """Message source backed by an IMAP mailbox."""

    folders: Tuple[Optional[str], ...] = ("INBOX", "Junk")

    def __init__(
        self,
        username: Optional[str],
        password: Optional[str],
        imap_config: Optional[IMAPConfig] = None,
    ):
        """
        Initialize IMAP message source.

        Args:
            username: Mailbox login
            password: App password
            imap_config: IMAP configuration (default: outlook.office365.com:993)

        Raises:
            MissingCredentialsError: If login or password is missing
        """
        missing = [
            name for name, value in (("USER_EMAIL", username), ("IMAP_PASSWORD", password))
            if not value
        ]
        if missing:
            raise MissingCredentialsError(*missing)

        self._username = username
        self._password = password
        self._imap_config = imap_config or IMAPConfig()

    def _connect_imap(self) -> imaplib.IMAP4:
        """Create and authenticate IMAP connection."""
        if self._imap_config.use_ssl:
            mail: imaplib.IMAP4 = imaplib.IMAP4_SSL(self._imap_config.host, self._imap_config.port)
        else:
            mail = imaplib.IMAP4(self._imap_config.host, self._imap_config.port)
        mail.login(self._username, self._password)
        logger.debug(f"IMAP connection established to {self._imap_config.host}")
        return mail

    @staticmethod
    def _logout(mail: imaplib.IMAP4) -> None:
        try:
            mail.logout()
        except (imaplib.IMAP4.error, OSError) as e:
            logger.debug(f"Error closing IMAP connection: {e}")

    def _list_sync(self, folder: str, limit: int, newest_first: bool) -> List[MailMessage]:
        mail = self._connect_imap()
        try:
            status, _ = mail.select(folder, readonly=True)
            if status != "OK":
                # Folder does not exist on this server
                return []

            _, data = mail.uid("search", None, "ALL")
            uids = data[0].split() if data and data[0] else []
            uids = uids[-limit:]
            if not uids:
                return []

            _, fetched = mail.uid("fetch", b",".join(uids).decode(), HEADER_FIELDS)
            messages = []
            for item in fetched or []:
                if not isinstance(item, tuple):
                    continue
                uid_match = _UID_PATTERN.search(item[0])
                if not uid_match:
                    continue
                message_id = f"{folder}:{uid_match.group(1).decode()}"
                messages.append(parse_header_block(message_id, item[1]))

            # UIDs ascend with arrival order
            if newest_first:
                messages.reverse()
            return messages
        finally:
            self._logout(mail)

    def _fetch_body_sync(self, message_id: str) -> str:
        folder, _, uid = message_id.rpartition(":")
        mail = self._connect_imap()
        try:
            mail.select(folder or "INBOX", readonly=True)
            _, fetched = mail.uid("fetch", uid, "(BODY.PEEK[])")
            for item in fetched or []:
                if isinstance(item, tuple):
                    return get_email_body(message_from_bytes(item[1]))
            return ""
        finally:
            self._logout(mail)

    async def list_messages(
        self, folder: Optional[str], limit: int, newest_first: bool = True
    ) -> List[MailMessage]:
        try:
            return await asyncio.to_thread(
                self._list_sync, folder or "INBOX", limit, newest_first
            )
        except (imaplib.IMAP4.error, OSError) as e:
            raise MessageSourceError(f"IMAP listing of {folder or 'INBOX'} failed: {e}") from e

    async def fetch_body(self, message_id: str) -> str:
        try:
            return await asyncio.to_thread(self._fetch_body_sync, message_id)
        except (imaplib.IMAP4.error, OSError) as e:
            raise MessageSourceError(f"IMAP body fetch failed: {e}") from e
