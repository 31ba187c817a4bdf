"""Wiring of the broker's collaborators from settings."""

from typing import Optional

from loguru import logger

from .core.clock import SYSTEM_CLOCK, Clock
from .core.settings import BrokerSettings
from .services.browser.portal_acquirer import PlaywrightPortalAcquirer
from .services.mail.base import MessageSource
from .services.mail.graph import GraphMessageSource
from .services.mail.imap import IMAPConfig, ImapMessageSource
from .services.otp.correlator import MessageCorrelator
from .services.otp.resolver import OtpResolver
from .services.session.acquirer import LoginCredentials, SessionAcquirer
from .services.session.cache import CredentialCache
from .services.session.orchestrator import AcquisitionOrchestrator


def _secret(value) -> Optional[str]:
    return value.get_secret_value() if value is not None else None


def build_message_source(settings: BrokerSettings) -> MessageSource:
    """
    Create the configured mailbox backend.

    Raises:
        MissingCredentialsError: If the backend's secrets are not configured
    """
    if settings.mail_backend == "imap":
        return ImapMessageSource(
            username=settings.user_email,
            password=_secret(settings.imap_password),
            imap_config=IMAPConfig(host=settings.imap_host, port=settings.imap_port),
        )
    return GraphMessageSource(
        tenant_id=settings.azure_tenant_id,
        client_id=settings.azure_client_id,
        client_secret=_secret(settings.azure_client_secret),
        mailbox=settings.user_email,
    )


class MailboxProvider:
    """
    Lazily creates the message source and hands out per-attempt OTP resolvers.

    The source is built on first use so that missing mailbox secrets surface
    as a configuration error of the acquisition rather than at startup.
    """

    def __init__(
        self,
        settings: BrokerSettings,
        clock: Clock = SYSTEM_CLOCK,
        source: Optional[MessageSource] = None,
    ):
        self.settings = settings
        self.clock = clock
        self._source = source
        self._correlator: Optional[MessageCorrelator] = None

    @property
    def source(self) -> MessageSource:
        if self._source is None:
            self._source = build_message_source(self.settings)
            logger.info(f"Mailbox backend: {self.settings.mail_backend}")
        return self._source

    def correlator(self) -> MessageCorrelator:
        """Shared correlator over the mailbox."""
        if self._correlator is None:
            self._correlator = MessageCorrelator(
                self.source,
                clock=self.clock,
                min_length=self.settings.otp_min_length,
                max_length=self.settings.otp_max_length,
                debug=self.settings.debug_otp,
            )
        return self._correlator

    def resolver(self) -> OtpResolver:
        """Fresh resolver for one login attempt."""
        return OtpResolver(
            self.correlator(),
            sender=self.settings.otp_sender,
            poll_attempts=self.settings.otp_poll_attempts,
            poll_interval_ms=self.settings.otp_poll_interval_ms,
            max_age_minutes=self.settings.otp_max_age_minutes,
            min_length=self.settings.otp_min_length,
        )

    async def close(self) -> None:
        if self._source is not None:
            await self._source.close()


def build_cache(settings: BrokerSettings, clock: Clock = SYSTEM_CLOCK) -> CredentialCache:
    """Credential cache configured from settings."""
    return CredentialCache(
        path=settings.auth_cache_path,
        fallback_ttl_ms=settings.auth_cache_ttl_ms,
        skew_ms=settings.auth_cache_skew_ms,
        clock=clock,
        encryption_key=_secret(settings.auth_cache_encryption_key),
    )


def build_acquirer(settings: BrokerSettings, clock: Clock = SYSTEM_CLOCK) -> SessionAcquirer:
    """Playwright portal acquirer configured from settings."""
    return PlaywrightPortalAcquirer(
        portal_url=settings.portal_url,
        portal_origin=settings.portal_origin,
        executable_path=settings.browser_executable_path,
        headless=settings.headless,
        screenshots_dir=settings.screenshots_dir,
        otp_wait_ms=settings.otp_wait_ms,
        clock=clock,
    )


def build_orchestrator(
    settings: BrokerSettings,
    mailbox: Optional[MailboxProvider] = None,
    acquirer: Optional[SessionAcquirer] = None,
    cache: Optional[CredentialCache] = None,
    clock: Clock = SYSTEM_CLOCK,
) -> AcquisitionOrchestrator:
    """
    Assemble an orchestrator; any collaborator may be supplied explicitly.

    Args:
        settings: Broker settings
        mailbox: Mailbox provider (built from settings if omitted)
        acquirer: Session acquirer (Playwright portal acquirer if omitted)
        cache: Credential cache (built from settings if omitted)
        clock: Clock shared by all collaborators

    Returns:
        AcquisitionOrchestrator instance
    """
    mailbox = mailbox or MailboxProvider(settings, clock)

    def credentials() -> LoginCredentials:
        return LoginCredentials(
            identity_number=settings.portal_identity_number,
            password=settings.portal_password.get_secret_value(),
        )

    return AcquisitionOrchestrator(
        acquirer=acquirer or build_acquirer(settings, clock),
        cache=cache or build_cache(settings, clock),
        resolver_factory=mailbox.resolver,
        credentials_provider=credentials,
        max_attempts=settings.login_max_attempts,
        base_delay_ms=settings.login_backoff_ms,
        clock=clock,
    )
