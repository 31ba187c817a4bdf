"""Data models for mailbox access."""

from dataclasses import dataclass
from datetime import datetime, timezone


@dataclass(frozen=True)
class MailMessage:
    """
    Summary of one mailbox message, as returned by a listing query.

    Attributes:
        id: Provider message identifier (stable across polls)
        sender_address: From (or Sender) address, stripped
        received_at: Delivery timestamp (timezone-aware)
        subject: Subject line
        body_preview: Short plain-text preview supplied by the provider
    """

    id: str
    sender_address: str
    received_at: datetime
    subject: str = ""
    body_preview: str = ""

    def age_seconds(self, now_ms: int) -> float:
        """Age of the message relative to ``now_ms``."""
        received = self.received_at
        if received.tzinfo is None:
            received = received.replace(tzinfo=timezone.utc)
        return now_ms / 1000 - received.timestamp()
