"""Pytest configuration and common fixtures."""

import asyncio
import os
import sys
import warnings
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

# CRITICAL: Set environment variables BEFORE any session_broker imports
os.environ.setdefault("ENV", "testing")

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

import pytest

from session_broker.core.clock import Clock
from session_broker.core.settings import reset_settings
from session_broker.services.mail.base import MessageSource
from session_broker.services.mail.models import MailMessage
from session_broker.services.session.acquirer import LoginCredentials, SessionAcquirer
from session_broker.services.session.models import CredentialBundle

# 2026-01-01T00:00:00Z
BASE_TIME_MS = 1767225600000
BASE_TIME = datetime.fromtimestamp(BASE_TIME_MS / 1000, tz=timezone.utc)


def pytest_configure(config):
    """Configure pytest environment before tests run."""
    warnings.filterwarnings("ignore", message="coroutine.*was never awaited")


class FakeClock(Clock):
    """Clock whose time only moves when a test (or a sleep) advances it."""

    def __init__(self, now_ms: int = BASE_TIME_MS):
        self.current_ms = now_ms
        self.sleeps: List[float] = []
        self.on_sleep: Optional[Callable[[int], None]] = None

    def now_ms(self) -> int:
        return self.current_ms

    def advance(self, seconds: float) -> None:
        self.current_ms += int(seconds * 1000)

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.advance(seconds)
        if self.on_sleep is not None:
            self.on_sleep(len(self.sleeps))
        # Yield so other tasks run, without real waiting
        await asyncio.sleep(0)


class FakeMessageSource(MessageSource):
    """In-memory mailbox; every folder query sees the same messages."""

    def __init__(self, messages: Optional[List[MailMessage]] = None):
        self.messages: List[MailMessage] = list(messages or [])
        self.bodies: Dict[str, str] = {}
        self.failures: List[Exception] = []
        self.list_calls: List[Dict[str, Any]] = []
        self.body_calls: List[str] = []
        self.closed = False

    def deliver(self, message: MailMessage, body: str = "") -> None:
        self.messages.append(message)
        self.bodies[message.id] = body

    async def list_messages(
        self, folder: Optional[str], limit: int, newest_first: bool = True
    ) -> List[MailMessage]:
        self.list_calls.append({"folder": folder, "limit": limit, "newest_first": newest_first})
        if self.failures:
            raise self.failures.pop(0)
        ordered = sorted(self.messages, key=lambda m: m.received_at, reverse=newest_first)
        return ordered[:limit]

    async def fetch_body(self, message_id: str) -> str:
        self.body_calls.append(message_id)
        return self.bodies.get(message_id, "")

    async def close(self) -> None:
        self.closed = True


Outcome = Union[CredentialBundle, BaseException]


class ScriptedAcquirer(SessionAcquirer):
    """
    Acquirer that plays back a list of outcomes, one per run.

    When ``gate`` is set each run waits for it, so tests can hold an
    acquisition in flight while other callers arrive.
    """

    def __init__(self, outcomes: Sequence[Outcome]):
        self.outcomes = list(outcomes)
        self.calls = 0
        self.resolvers: List[Any] = []
        self.gate: Optional[asyncio.Event] = None
        self.started = asyncio.Event()

    async def run(self, credentials: LoginCredentials, otp_resolver: Any) -> CredentialBundle:
        self.calls += 1
        self.resolvers.append(otp_resolver)
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        outcome = self.outcomes[min(self.calls, len(self.outcomes)) - 1]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


def make_message(
    message_id: str,
    sender: str = "NoReply@logisti.sa",
    age_seconds: float = 0,
    subject: str = "",
    preview: str = "",
    now: datetime = BASE_TIME,
) -> MailMessage:
    """Build a mailbox message received ``age_seconds`` before ``now``."""
    return MailMessage(
        id=message_id,
        sender_address=sender,
        received_at=now - timedelta(seconds=age_seconds),
        subject=subject,
        body_preview=preview,
    )


def make_bundle(token: Optional[str] = "token-1", session_id: str = "abc") -> CredentialBundle:
    """Build a credential bundle with a JSESSIONID cookie."""
    headers = {
        "Cookie": f"JSESSIONID={session_id}",
        "User-Agent": "Mozilla/5.0",
        "Referer": "https://bayan.logisti.sa/",
        "Origin": "https://bayan.logisti.sa",
    }
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return CredentialBundle(
        cookies={"JSESSIONID": session_id},
        cookie_header=f"JSESSIONID={session_id}",
        access_token=token,
        headers=headers,
    )


@pytest.fixture(autouse=True)
def setup_test_environment(monkeypatch):
    """Isolate settings from the developer's environment for every test."""
    monkeypatch.setenv("ENV", "testing")
    for name in (
        "PORTAL_IDENTITY_NUMBER",
        "PORTAL_PASSWORD",
        "AZURE_TENANT_ID",
        "AZURE_CLIENT_ID",
        "AZURE_CLIENT_SECRET",
        "USER_EMAIL",
        "IMAP_PASSWORD",
        "AUTH_CACHE_PATH",
        "AUTH_CACHE_ENCRYPTION_KEY",
        "MAIL_BACKEND",
        "LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def fake_clock():
    """Fake clock starting at BASE_TIME."""
    return FakeClock()


@pytest.fixture
def fake_source():
    """Empty in-memory mailbox."""
    return FakeMessageSource()


@pytest.fixture
def credentials():
    """Valid portal login secrets."""
    return LoginCredentials(identity_number="1234567890", password="secret")
