"""Tests for the per-attempt OTP resolver."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from conftest import FakeClock, FakeMessageSource, make_message

from session_broker.core.exceptions import (
    MessageSourceError,
    MissingCredentialsError,
    OtpTimeoutError,
    OtpTooShortError,
)
from session_broker.services.otp.correlator import MessageCorrelator
from session_broker.services.otp.resolver import OtpResolver


def make_resolver(source, clock=None, **kwargs):
    correlator = MessageCorrelator(source, clock=clock or FakeClock(), min_length=3)
    return OtpResolver(correlator, sender="NoReply@logisti.sa", poll_attempts=3, **kwargs)


class TestOtpResolver:
    """Tests for OtpResolver."""

    @pytest.mark.asyncio
    async def test_baseline_then_resolve(self):
        """Test the resolver only accepts the email sent after the baseline."""
        source = FakeMessageSource([make_message("old", subject="code 1111", age_seconds=60)])
        resolver = make_resolver(source)

        baseline = await resolver.capture_baseline()
        assert baseline.message_id == "old"

        source.deliver(make_message("new", subject="code 4821"))
        assert await resolver.resolve() == "4821"

    @pytest.mark.asyncio
    async def test_empty_mailbox_baseline(self):
        """Test a mailbox without sender messages gives an empty baseline."""
        resolver = make_resolver(FakeMessageSource())

        baseline = await resolver.capture_baseline()

        assert baseline.message_id is None

    @pytest.mark.asyncio
    async def test_baseline_failure_is_tolerated(self):
        """Test a failing baseline lookup does not abort the attempt."""
        source = FakeMessageSource()
        source.failures.append(MessageSourceError("boom", status=500))
        resolver = make_resolver(source)

        baseline = await resolver.capture_baseline()

        assert baseline.message_id is None

    @pytest.mark.asyncio
    async def test_baseline_configuration_error_propagates(self):
        """Test missing mailbox credentials fail the attempt immediately."""
        source = FakeMessageSource()
        source.failures.append(MissingCredentialsError("USER_EMAIL"))
        resolver = make_resolver(source)

        with pytest.raises(MissingCredentialsError):
            await resolver.capture_baseline()

    @pytest.mark.asyncio
    async def test_timeout_when_no_new_email(self):
        """Test OtpTimeoutError after all polls miss."""
        source = FakeMessageSource([make_message("old", subject="code 1111")])
        clock = FakeClock()
        resolver = make_resolver(source, clock=clock)
        await resolver.capture_baseline()

        with pytest.raises(OtpTimeoutError) as exc_info:
            await resolver.resolve()

        assert exc_info.value.details["poll_attempts"] == 3
        assert exc_info.value.http_status == 504
        assert clock.sleeps == [2.0, 2.0]

    @pytest.mark.asyncio
    async def test_short_code_rejected(self):
        """Test the resolved code must meet the minimum length."""
        source = FakeMessageSource([make_message("m1", subject="code 123")])
        resolver = make_resolver(source, min_length=4)

        with pytest.raises(OtpTooShortError):
            await resolver.resolve()

    @pytest.mark.asyncio
    async def test_passes_polling_parameters(self):
        """Test the resolver forwards its polling window to the correlator."""
        correlator = MagicMock()
        correlator.fetch_otp = AsyncMock(return_value="9876")
        resolver = OtpResolver(
            correlator,
            sender="NoReply@logisti.sa",
            poll_attempts=30,
            poll_interval_ms=2000,
            max_age_minutes=0,
        )

        assert await resolver.resolve() == "9876"
        correlator.fetch_otp.assert_awaited_once_with(
            "NoReply@logisti.sa",
            max_attempts=30,
            poll_interval_ms=2000,
            max_age_minutes=0,
            baseline_message_id=None,
        )
