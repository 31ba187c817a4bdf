"""Correlate a freshly triggered OTP email with the login attempt that triggered it.

The mailbox usually still holds OTP emails from earlier logins, often with the
same sender and subject. The correlator polls for the newest message from the
OTP sender and only accepts it once its id differs from the baseline id that
was captured right before the login form was submitted.
"""

from enum import Enum
from typing import Optional

from loguru import logger

from ...core.clock import SYSTEM_CLOCK, Clock
from ...core.exceptions import ConfigurationError
from ..mail.base import MessageSource
from ..mail.models import MailMessage
from .extractor import extract_otp


class CorrelationState(Enum):
    """Polling state machine states."""

    POLLING = "polling"
    FOUND = "found"
    EXHAUSTED = "exhausted"


class MessageCorrelator:
    """Polls a message source for the new OTP email and extracts the code."""

    def __init__(
        self,
        source: MessageSource,
        clock: Clock = SYSTEM_CLOCK,
        min_length: int = 4,
        max_length: int = 8,
        debug: bool = False,
    ):
        """
        Initialize message correlator.

        Args:
            source: Mailbox to poll
            clock: Clock used for message age and poll interval sleeps
            min_length: Shortest OTP accepted by the extractor
            max_length: Longest OTP accepted by the extractor
            debug: Log previews and always read the full body of matched messages
        """
        self.source = source
        self.clock = clock
        self.min_length = min_length
        self.max_length = max_length
        self.debug = debug
        self.state = CorrelationState.EXHAUSTED
        self._diag_level = "INFO" if debug else "DEBUG"

    def _extract(self, text: str) -> Optional[str]:
        return extract_otp(text, min_len=self.min_length, max_len=self.max_length)

    async def latest_message_id(self, sender: str) -> Optional[str]:
        """Id of the newest message currently in the mailbox from ``sender``."""
        message = await self.source.find_latest_from(sender)
        return message.id if message else None

    async def fetch_otp(
        self,
        sender: str,
        max_attempts: int = 5,
        poll_interval_ms: int = 2000,
        max_age_minutes: float = 2,
        baseline_message_id: Optional[str] = None,
    ) -> Optional[str]:
        """
        Poll until an OTP newer than the baseline message is found.

        Args:
            sender: Expected OTP sender address
            max_attempts: Number of polls before giving up
            poll_interval_ms: Delay between polls
            max_age_minutes: Ignore messages older than this (0 disables the check)
            baseline_message_id: Id of the newest sender message before the login submit

        Returns:
            OTP code, or None when all polls are exhausted
        """
        self.state = CorrelationState.POLLING

        for attempt in range(1, max_attempts + 1):
            logger.log(self._diag_level, f"OTP poll {attempt}/{max_attempts} for {sender}")
            poll_started_ms = self.clock.now_ms()
            try:
                otp = await self._poll_once(
                    sender, poll_started_ms, max_age_minutes, baseline_message_id
                )
            except ConfigurationError:
                raise
            except Exception as e:
                # Flaky or rate-limited mail API: count as a miss for this poll
                logger.warning(f"OTP poll {attempt}/{max_attempts} failed: {e}")
                otp = None

            if otp:
                self.state = CorrelationState.FOUND
                logger.info(f"OTP found on poll {attempt}/{max_attempts} (length={len(otp)})")
                return otp

            if attempt < max_attempts:
                await self.clock.sleep(poll_interval_ms / 1000)

        self.state = CorrelationState.EXHAUSTED
        logger.warning(f"No new OTP from {sender} after {max_attempts} polls")
        return None

    async def _poll_once(
        self,
        sender: str,
        now_ms: int,
        max_age_minutes: float,
        baseline_message_id: Optional[str],
    ) -> Optional[str]:
        message = await self.source.find_latest_from(sender)
        if message is None:
            logger.log(self._diag_level, "No message matched the sender filter")
            return None

        if baseline_message_id and message.id == baseline_message_id:
            logger.log(
                self._diag_level,
                "Latest message is still the baseline; waiting for a newer email",
            )
            return None

        age_seconds = message.age_seconds(now_ms)
        logger.log(
            self._diag_level,
            f"Latest matched message: id={message.id} from={message.sender_address} "
            f"age={round(age_seconds)}s subject={message.subject!r}",
        )
        if max_age_minutes > 0 and age_seconds > max_age_minutes * 60:
            logger.log(self._diag_level, f"Message too old (>{max_age_minutes} min)")
            return None

        return await self._extract_from(message)

    async def _extract_from(self, message: MailMessage) -> Optional[str]:
        if self.debug:
            preview = " ".join(message.body_preview[:200].split())
            logger.info(f"Preview (first 200 chars): {preview}")

        otp = self._extract(message.subject) or self._extract(message.body_preview)

        if otp:
            if self.debug:
                await self._log_body(message.id)
            return otp

        # Full body only when subject and preview had nothing (one extra API call)
        body = await self.source.fetch_body(message.id)
        if self.debug:
            logger.info(f"Body length={len(body)} snippet: {' '.join(body[:400].split())}")
        return self._extract(body)

    async def _log_body(self, message_id: str) -> None:
        """Debug-only body dump; a failure here never discards a found code."""
        try:
            body = await self.source.fetch_body(message_id)
        except Exception as e:
            logger.warning(f"Debug body fetch failed for {message_id}: {e}")
            return
        logger.info(f"Body length={len(body)} snippet: {' '.join(body[:400].split())}")
