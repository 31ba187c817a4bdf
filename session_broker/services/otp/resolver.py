"""Per-attempt OTP resolver handed to the session acquirer."""

from dataclasses import dataclass
from typing import Optional

from loguru import logger

from ...core.exceptions import ConfigurationError, OtpTimeoutError
from .correlator import MessageCorrelator
from .extractor import validate_otp


@dataclass(frozen=True)
class BaselineMessageMarker:
    """Newest OTP-sender message id seen right before the login submit."""

    message_id: Optional[str]
    captured_at_ms: int


class OtpResolver:
    """
    Resolves the OTP for exactly one login attempt.

    The acquirer calls ``capture_baseline()`` immediately before submitting
    the credentials and ``resolve()`` once the OTP page is shown. A new
    resolver is built for every attempt, so a retry always waits for the
    email its own submit triggered.
    """

    def __init__(
        self,
        correlator: MessageCorrelator,
        sender: str,
        poll_attempts: int = 30,
        poll_interval_ms: int = 2000,
        max_age_minutes: float = 0,
        min_length: int = 4,
    ):
        self.correlator = correlator
        self.sender = sender
        self.poll_attempts = poll_attempts
        self.poll_interval_ms = poll_interval_ms
        self.max_age_minutes = max_age_minutes
        self.min_length = min_length
        self.baseline: Optional[BaselineMessageMarker] = None

    async def capture_baseline(self) -> BaselineMessageMarker:
        """Record the newest sender message currently in the mailbox."""
        message_id: Optional[str] = None
        try:
            message_id = await self.correlator.latest_message_id(self.sender)
        except ConfigurationError:
            raise
        except Exception as e:
            logger.warning(f"OTP baseline fetch failed (will still try OTP): {e}")

        self.baseline = BaselineMessageMarker(
            message_id=message_id, captured_at_ms=self.correlator.clock.now_ms()
        )
        logger.info(f"OTP baseline message id: {message_id or 'none'}")
        return self.baseline

    async def resolve(self) -> str:
        """
        Wait for the new OTP email and return its validated code.

        Raises:
            OtpTimeoutError: If no new OTP arrived within the polling window
            OtpMalformedError: If the extracted code is not a digit string
            OtpTooShortError: If the extracted code is too short
        """
        baseline_id = self.baseline.message_id if self.baseline else None
        code = await self.correlator.fetch_otp(
            self.sender,
            max_attempts=self.poll_attempts,
            poll_interval_ms=self.poll_interval_ms,
            max_age_minutes=self.max_age_minutes,
            baseline_message_id=baseline_id,
        )
        if not code:
            raise OtpTimeoutError(self.sender, self.poll_attempts)
        return validate_otp(code, self.min_length)
