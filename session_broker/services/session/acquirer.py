"""Session acquirer interface."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from ...core.exceptions import MissingCredentialsError
from ..otp.resolver import OtpResolver
from .models import CredentialBundle


@dataclass(frozen=True)
class LoginCredentials:
    """Portal login secrets."""

    identity_number: str
    password: str = field(repr=False)

    def require(self) -> "LoginCredentials":
        """
        Ensure both secrets are present.

        Raises:
            MissingCredentialsError: If either secret is empty
        """
        missing = []
        if not self.identity_number:
            missing.append("PORTAL_IDENTITY_NUMBER")
        if not self.password:
            missing.append("PORTAL_PASSWORD")
        if missing:
            raise MissingCredentialsError(*missing)
        return self


class SessionAcquirer(ABC):
    """
    Performs one interactive login and returns the resulting session material.

    Implementations must call ``otp_resolver.capture_baseline()`` immediately
    before the step that triggers the OTP email and ``otp_resolver.resolve()``
    once the OTP is needed. Failures are raised as ``SessionBrokerError``
    subclasses; anything else is treated as a retryable failure.
    """

    @abstractmethod
    async def run(
        self, credentials: LoginCredentials, otp_resolver: OtpResolver
    ) -> CredentialBundle:
        """Run one login attempt."""
