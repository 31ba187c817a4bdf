"""Mailbox inspection for troubleshooting OTP correlation."""

import re
from dataclasses import dataclass
from typing import List, Optional

from loguru import logger

from ..mail.base import MessageSource, match_sender
from ..mail.models import MailMessage
from .extractor import extract_otp

LATEST_COUNT = 15
MATCHED_COUNT = 10

_WHITESPACE = re.compile(r"\s+")


@dataclass
class MessageSummary:
    """One mailbox line of the diagnostic report."""

    received_at: str
    sender: str
    subject: str
    preview: str
    otp: Optional[str]


@dataclass
class OtpDiagnosticReport:
    """Latest messages of any sender, and those matching the OTP sender."""

    sender: str
    latest: List[MessageSummary]
    matched: List[MessageSummary]


def _summarize(
    message: MailMessage, preview_chars: int, min_length: int, max_length: int
) -> MessageSummary:
    preview = _WHITESPACE.sub(" ", message.body_preview[:preview_chars])
    otp = extract_otp(message.subject, min_len=min_length, max_len=max_length) or extract_otp(
        preview, min_len=min_length, max_len=max_length
    )
    return MessageSummary(
        received_at=message.received_at.isoformat(),
        sender=message.sender_address,
        subject=message.subject,
        preview=preview,
        otp=otp,
    )


async def inspect_mailbox(
    source: MessageSource, sender: str, min_length: int = 4, max_length: int = 8
) -> OtpDiagnosticReport:
    """
    List the latest messages and show which ones the correlator would consider.

    Args:
        source: Mailbox to inspect
        sender: Configured OTP sender
        min_length: Shortest OTP accepted by the extractor
        max_length: Longest OTP accepted by the extractor

    Returns:
        Diagnostic report
    """
    messages = await source.list_messages(None, LATEST_COUNT, newest_first=True)
    messages = sorted(messages, key=lambda m: m.received_at, reverse=True)
    logger.info(f"Fetched {len(messages)} messages; looking for sender {sender}")

    latest = [_summarize(m, 140, min_length, max_length) for m in messages]
    for item in latest:
        logger.info(
            f"- {item.received_at} | from={item.sender} | otp={item.otp or '-'} "
            f"| subject={item.subject!r}"
        )

    matched = [
        _summarize(m, 200, min_length, max_length)
        for m in messages
        if match_sender(m.sender_address, sender)
    ][:MATCHED_COUNT]
    logger.info(f"---- {len(matched)} message(s) matching {sender} ----")
    for item in matched:
        logger.info(
            f"- {item.received_at} | from={item.sender} | subject={item.subject!r} "
            f"| preview={item.preview!r}"
        )

    return OtpDiagnosticReport(sender=sender, latest=latest, matched=matched)
