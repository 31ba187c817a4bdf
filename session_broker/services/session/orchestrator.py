"""Single-flight credential acquisition with bounded retries."""

import asyncio
import logging as stdlib_logging
from typing import Any, Callable, Dict, List, Optional

from loguru import logger
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_incrementing,
)

from ...core.clock import SYSTEM_CLOCK, Clock
from ...core.exceptions import (
    AcquisitionFailedError,
    SessionBrokerError,
    UpstreamUnavailableError,
)
from ..otp.resolver import OtpResolver
from .acquirer import LoginCredentials, SessionAcquirer
from .cache import CredentialCache
from .models import AcquisitionAttempt, AcquisitionState, AttemptOutcome, CredentialBundle

# Stdlib logger needed for tenacity's before_sleep_log
_stdlib_logger = stdlib_logging.getLogger(__name__)


def is_retryable(error: BaseException) -> bool:
    """Retry ordinary failures unless they are flagged as non-recoverable."""
    return isinstance(error, Exception) and getattr(error, "recoverable", True)


class AcquisitionOrchestrator:
    """
    Returns a valid credential bundle, logging in only when necessary.

    At most one acquisition sequence runs at a time. Concurrent callers that
    find no valid cache entry join the sequence already in flight and observe
    the same bundle or the same failure. The sequence runs as its own task
    and callers await it through ``asyncio.shield``, so a caller that times
    out or is cancelled leaves the acquisition running; its result still
    lands in the cache.
    """

    def __init__(
        self,
        acquirer: SessionAcquirer,
        cache: CredentialCache,
        resolver_factory: Callable[[], OtpResolver],
        credentials_provider: Callable[[], LoginCredentials],
        max_attempts: int = 3,
        base_delay_ms: int = 1500,
        clock: Clock = SYSTEM_CLOCK,
    ):
        """
        Initialize acquisition orchestrator.

        Args:
            acquirer: Performs one interactive login
            cache: Credential cache shared with readers
            resolver_factory: Builds a fresh OTP resolver for every attempt
            credentials_provider: Returns the portal login secrets
            max_attempts: Login attempts per acquisition sequence
            base_delay_ms: Backoff after attempt N is ``base_delay_ms * N``
            clock: Clock used for backoff sleeps
        """
        self.acquirer = acquirer
        self.cache = cache
        self.resolver_factory = resolver_factory
        self.credentials_provider = credentials_provider
        self.max_attempts = max_attempts
        self.base_delay_ms = base_delay_ms
        self.clock = clock

        self.state = AcquisitionState.IDLE
        self.attempts: List[AcquisitionAttempt] = []
        self._lock = asyncio.Lock()
        self._in_flight: Optional["asyncio.Task[CredentialBundle]"] = None

    @property
    def in_flight(self) -> bool:
        """Whether an acquisition sequence is currently running."""
        return self._in_flight is not None

    async def acquire(self, force_refresh: bool = False) -> CredentialBundle:
        """
        Get a valid credential bundle.

        Args:
            force_refresh: Discard the cached entry and log in again

        Returns:
            Credential bundle

        Raises:
            AcquisitionFailedError: If every attempt of the sequence failed
        """
        async with self._lock:
            if force_refresh:
                self.cache.invalidate()
                # Never run two logins at once: a forced refresh queues behind
                # the sequence already in flight instead of joining it
                task = self._start(after=self._in_flight)
                logger.info("Forced credential refresh requested")
            elif self._in_flight is not None:
                logger.debug("Joining credential acquisition already in flight")
                task = self._in_flight
            else:
                cached = self.cache.get()
                if cached is not None:
                    return cached.bundle
                task = self._start()

        return await asyncio.shield(task)

    async def refresh_if_current(self, rejected: CredentialBundle) -> CredentialBundle:
        """
        Replace a bundle the downstream API rejected, once per rejection wave.

        Concurrent callers holding the same rejected bundle share one login:
        the first one starts it, later ones join the sequence in flight or
        pick up the newer bundle it already cached.

        Args:
            rejected: Bundle the downstream API answered with 401/403

        Returns:
            A bundle other than ``rejected`` when a newer one exists

        Raises:
            AcquisitionFailedError: If every attempt of the sequence failed
        """
        async with self._lock:
            if self._in_flight is not None and not self._in_flight.done():
                logger.debug("Rejected credential already being refreshed; joining")
                task = self._in_flight
            else:
                cached = self.cache.get()
                if cached is not None and cached.bundle != rejected:
                    logger.debug("Rejected credential already replaced in cache")
                    return cached.bundle
                self.cache.invalidate()
                task = self._start()
                logger.info("Refreshing rejected credential")

        return await asyncio.shield(task)

    async def invalidate(self) -> None:
        """Drop the cached credential, e.g. after the downstream API rejected it."""
        async with self._lock:
            self.cache.invalidate()

    def snapshot(self) -> Dict[str, Any]:
        """Current state for health reporting."""
        entry = self.cache.peek()
        now_ms = self.clock.now_ms()
        last = self.attempts[-1] if self.attempts else None
        return {
            "state": self.state.value,
            "in_flight": self.in_flight,
            "cached": entry is not None and entry.is_valid(now_ms, self.cache.skew_ms),
            "expires_at_ms": entry.expires_at_ms if entry else None,
            "attempts": len(self.attempts),
            "last_error_code": last.error_code if last else None,
        }

    def _start(
        self, after: Optional["asyncio.Task[CredentialBundle]"] = None
    ) -> "asyncio.Task[CredentialBundle]":
        task = asyncio.create_task(self._run_sequence(after))
        task.add_done_callback(self._clear_in_flight)
        self._in_flight = task
        return task

    def _clear_in_flight(self, task: "asyncio.Task[CredentialBundle]") -> None:
        if self._in_flight is task:
            self._in_flight = None
        # Mark the outcome as retrieved even if every waiter went away
        if not task.cancelled():
            task.exception()

    async def _run_sequence(
        self, after: Optional["asyncio.Task[CredentialBundle]"] = None
    ) -> CredentialBundle:
        if after is not None and not after.done():
            await asyncio.wait({after})

        self.attempts = []
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_incrementing(
                start=self.base_delay_ms / 1000, increment=self.base_delay_ms / 1000
            ),
            retry=retry_if_exception(is_retryable),
            sleep=self._backoff_sleep,
            before_sleep=before_sleep_log(_stdlib_logger, stdlib_logging.WARNING),
            reraise=True,
        )

        bundle: Optional[CredentialBundle] = None
        try:
            async for attempt in retrying:
                with attempt:
                    bundle = await self._attempt_once(attempt.retry_state.attempt_number)
        except Exception as e:
            self.state = AcquisitionState.EXHAUSTED
            logger.error(
                f"Credential acquisition failed after {len(self.attempts)} attempt(s): {e}"
            )
            raise AcquisitionFailedError(e, len(self.attempts)) from e

        assert bundle is not None
        async with self._lock:
            self.cache.put(bundle)
        self.state = AcquisitionState.SUCCEEDED
        logger.info(f"Credential acquisition succeeded on attempt {len(self.attempts)}")
        return bundle

    async def _attempt_once(self, index: int) -> CredentialBundle:
        self.state = AcquisitionState.ATTEMPTING
        record = AcquisitionAttempt(index=index)
        self.attempts.append(record)
        logger.info(f"Login attempt {index}/{self.max_attempts}")

        try:
            credentials = self.credentials_provider().require()
            resolver = self.resolver_factory()
            bundle = await self.acquirer.run(credentials, resolver)
        except Exception as e:
            record.outcome = AttemptOutcome.FAILED
            record.error = str(e)
            if isinstance(e, SessionBrokerError):
                record.error_code = e.code
                record.details = dict(e.details)
            if isinstance(e, UpstreamUnavailableError):
                record.server_error = True
                record.debug_screenshot = e.screenshot
            logger.warning(f"Login attempt {index} failed: {e}")
            raise

        record.outcome = AttemptOutcome.SUCCEEDED
        return bundle

    async def _backoff_sleep(self, seconds: float) -> None:
        self.state = AcquisitionState.BACKOFF
        logger.info(f"Backing off {seconds:.1f}s before next login attempt")
        await self.clock.sleep(seconds)
