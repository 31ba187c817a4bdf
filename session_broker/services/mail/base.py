"""Message source abstraction shared by the mailbox backends."""

from abc import ABC, abstractmethod
from typing import Iterable, List, Optional, Tuple

from loguru import logger

from ...core.exceptions import SortOrderUnsupportedError
from .models import MailMessage


def sender_match_rank(address: str, wanted: str) -> Optional[int]:
    """
    Rank how well a sender address matches the wanted OTP sender.

    Tenants may rewrite casing, add aliases or display decorations, so the
    match is relaxed in steps: exact (0), containment (1), same domain (2).

    Returns:
        Rank of the match, or None if the address does not match at all
    """
    a = (address or "").strip().lower()
    w = (wanted or "").strip().lower()
    if not a or not w:
        return None
    if a == w:
        return 0
    if w in a:
        return 1
    domain = w.split("@", 1)[1] if "@" in w else ""
    if domain and a.endswith(f"@{domain}"):
        return 2
    return None


def match_sender(address: str, wanted: str) -> bool:
    """Check whether ``address`` is acceptable as the wanted sender."""
    return sender_match_rank(address, wanted) is not None


def pick_latest_match(messages: Iterable[MailMessage], wanted: str) -> Optional[MailMessage]:
    """
    Return the most recent message from the wanted sender.

    Sorts locally by timestamp, so the result does not depend on the order
    the backend returned the batch in. Ties go to the better sender match.
    """
    best: Optional[Tuple[MailMessage, int]] = None
    for message in messages:
        rank = sender_match_rank(message.sender_address, wanted)
        if rank is None:
            continue
        if best is None:
            best = (message, rank)
            continue
        current, current_rank = best
        if message.received_at > current.received_at or (
            message.received_at == current.received_at and rank < current_rank
        ):
            best = (message, rank)
    return best[0] if best else None


class MessageSource(ABC):
    """
    Read-only view of the mailbox that receives OTP emails.

    Backends implement listing and body retrieval; the lookup policy
    (folder preference, sender matching, ordering fallback) lives here.
    """

    # Folder search order; None means "all messages"
    folders: Tuple[Optional[str], ...] = ("inbox", "junkemail", None)
    folder_batch_size = 100
    all_batch_size = 200
    unordered_batch_size = 200

    @abstractmethod
    async def list_messages(
        self, folder: Optional[str], limit: int, newest_first: bool = True
    ) -> List[MailMessage]:
        """
        List message summaries.

        Args:
            folder: Folder name, or None for the whole mailbox
            limit: Maximum number of messages
            newest_first: Request server-side ordering by delivery time

        Raises:
            SortOrderUnsupportedError: If the server refuses the ordering
            MessageSourceError: On any other transport failure
        """

    @abstractmethod
    async def fetch_body(self, message_id: str) -> str:
        """Fetch the full body of a message as plain text."""

    async def close(self) -> None:
        """Release transport resources."""

    async def find_latest_from(self, address: str) -> Optional[MailMessage]:
        """
        Find the most recent message from ``address``.

        Returns:
            Latest matching message or None if no message matches
        """
        try:
            for folder in self.folders:
                limit = self.all_batch_size if folder is None else self.folder_batch_size
                messages = await self.list_messages(folder, limit, newest_first=True)
                match = pick_latest_match(messages, address)
                logger.debug(
                    f"{folder or 'all'} checked={len(messages)} matched={1 if match else 0}"
                )
                if match:
                    return match
            return None
        except SortOrderUnsupportedError:
            logger.debug(
                "Mail API refused recency ordering; fetching unordered batch and sorting locally"
            )
            messages = await self.list_messages(
                None, self.unordered_batch_size, newest_first=False
            )
            return pick_latest_match(messages, address)
