"""Mailbox access used for OTP correlation."""

from .base import MessageSource, match_sender, pick_latest_match, sender_match_rank
from .graph import GraphMessageSource
from .imap import IMAPConfig, ImapMessageSource
from .models import MailMessage

__all__ = [
    "MailMessage",
    "MessageSource",
    "match_sender",
    "sender_match_rank",
    "pick_latest_match",
    "GraphMessageSource",
    "ImapMessageSource",
    "IMAPConfig",
]
