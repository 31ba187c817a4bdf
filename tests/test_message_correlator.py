"""Tests for mailbox polling and OTP correlation."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest
from conftest import FakeClock, FakeMessageSource, make_message

from session_broker.core.exceptions import MessageSourceError, MissingCredentialsError
from session_broker.services.otp.correlator import CorrelationState, MessageCorrelator


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def source():
    return FakeMessageSource()


@pytest.fixture
def correlator(source, clock):
    return MessageCorrelator(source, clock=clock)


class TestFetchOtp:
    """Tests for MessageCorrelator.fetch_otp."""

    @pytest.mark.asyncio
    async def test_finds_otp_in_subject(self, correlator, source):
        """Test an OTP in the subject is returned on the first poll."""
        source.deliver(make_message("m1", subject="Your verification code is 4821"))

        otp = await correlator.fetch_otp("NoReply@logisti.sa", max_attempts=3)

        assert otp == "4821"
        assert correlator.state == CorrelationState.FOUND
        assert source.body_calls == []

    @pytest.mark.asyncio
    async def test_preview_used_when_subject_has_no_code(self, correlator, source):
        """Test fallback to the body preview."""
        source.deliver(make_message("m1", subject="Login", preview="Use 9911 to sign in"))

        assert await correlator.fetch_otp("NoReply@logisti.sa") == "9911"
        assert source.body_calls == []

    @pytest.mark.asyncio
    async def test_full_body_fetched_lazily(self, correlator, source):
        """Test the full body is read only when subject and preview have no code."""
        source.deliver(make_message("m1", subject="Login", preview="Hello"), body="code: 5566")

        assert await correlator.fetch_otp("NoReply@logisti.sa") == "5566"
        assert source.body_calls == ["m1"]

    @pytest.mark.asyncio
    async def test_never_returns_otp_from_baseline_message(self, correlator, source, clock):
        """Test the baseline message is skipped until a newer one arrives."""
        source.deliver(make_message("old", subject="code 1111", age_seconds=30))

        def deliver_new(sleep_count):
            if sleep_count == 2:
                now = datetime.fromtimestamp(clock.now_ms() / 1000, tz=timezone.utc)
                source.deliver(make_message("new", subject="code 2222", now=now))

        clock.on_sleep = deliver_new

        otp = await correlator.fetch_otp(
            "NoReply@logisti.sa",
            max_attempts=5,
            poll_interval_ms=2000,
            max_age_minutes=0,
            baseline_message_id="old",
        )

        assert otp == "2222"
        assert clock.sleeps == [2.0, 2.0]

    @pytest.mark.asyncio
    async def test_only_baseline_exhausts(self, correlator, source, clock):
        """Test that a mailbox holding only the baseline message yields nothing."""
        source.deliver(make_message("old", subject="code 1111"))

        otp = await correlator.fetch_otp(
            "NoReply@logisti.sa", max_attempts=3, baseline_message_id="old"
        )

        assert otp is None
        assert correlator.state == CorrelationState.EXHAUSTED
        # No sleep after the final poll
        assert clock.sleeps == [2.0, 2.0]

    @pytest.mark.asyncio
    async def test_message_older_than_max_age_is_ignored(self, correlator, source):
        """Test the age filter."""
        source.deliver(make_message("m1", subject="code 1234", age_seconds=180))

        sender = "NoReply@logisti.sa"
        assert await correlator.fetch_otp(sender, max_attempts=1, max_age_minutes=2) is None
        assert await correlator.fetch_otp(sender, max_attempts=1, max_age_minutes=0) == "1234"

    @pytest.mark.asyncio
    async def test_other_senders_are_ignored(self, correlator, source):
        """Test messages from unrelated senders never match."""
        source.deliver(make_message("m1", sender="news@example.com", subject="code 1234"))

        assert await correlator.fetch_otp("NoReply@logisti.sa", max_attempts=2) is None

    @pytest.mark.asyncio
    async def test_same_domain_sender_matches(self, correlator, source):
        """Test a rewritten sender in the same domain is accepted."""
        source.deliver(make_message("m1", sender="otp@logisti.sa", subject="code 4455"))

        assert await correlator.fetch_otp("NoReply@logisti.sa", max_attempts=1) == "4455"

    @pytest.mark.asyncio
    async def test_transport_failure_counts_as_miss(self, correlator, source):
        """Test a failing poll is swallowed and polling continues."""
        source.failures.append(MessageSourceError("throttled", status=429))
        source.deliver(make_message("m1", subject="code 8080"))

        assert await correlator.fetch_otp("NoReply@logisti.sa", max_attempts=2) == "8080"

    @pytest.mark.asyncio
    async def test_configuration_error_propagates(self, correlator, source):
        """Test configuration errors are not swallowed."""
        source.failures.append(MissingCredentialsError("AZURE_CLIENT_SECRET"))

        with pytest.raises(MissingCredentialsError):
            await correlator.fetch_otp("NoReply@logisti.sa", max_attempts=3)

    @pytest.mark.asyncio
    async def test_debug_mode_always_reads_body(self, source, clock):
        """Test debug mode fetches the body even when the subject has the code."""
        correlator = MessageCorrelator(source, clock=clock, debug=True)
        source.deliver(make_message("m1", subject="code 1212"), body="code 1212")

        assert await correlator.fetch_otp("NoReply@logisti.sa", max_attempts=1) == "1212"
        assert source.body_calls == ["m1"]

    @pytest.mark.asyncio
    async def test_debug_body_failure_keeps_found_code(self, source, clock):
        """Test a failing debug-only body fetch does not discard the subject code."""
        correlator = MessageCorrelator(source, clock=clock, debug=True)
        source.deliver(make_message("m1", subject="code 3434"))
        source.fetch_body = AsyncMock(side_effect=MessageSourceError("throttled", status=429))

        assert await correlator.fetch_otp("NoReply@logisti.sa", max_attempts=1) == "3434"
        source.fetch_body.assert_awaited_once_with("m1")
        assert correlator.state == CorrelationState.FOUND


class TestLatestMessageId:
    """Tests for MessageCorrelator.latest_message_id."""

    @pytest.mark.asyncio
    async def test_returns_newest_matching_id(self, correlator, source):
        """Test the newest sender message id is returned."""
        source.deliver(make_message("a", age_seconds=60))
        source.deliver(make_message("b", age_seconds=5))
        source.deliver(make_message("c", sender="other@example.com", age_seconds=1))

        assert await correlator.latest_message_id("NoReply@logisti.sa") == "b"

    @pytest.mark.asyncio
    async def test_empty_mailbox(self, correlator):
        """Test an empty mailbox has no baseline."""
        assert await correlator.latest_message_id("NoReply@logisti.sa") is None
