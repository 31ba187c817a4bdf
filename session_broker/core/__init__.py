"""Core infrastructure: settings, logging, errors and the clock."""

from .clock import SYSTEM_CLOCK, Clock
from .exceptions import (
    AcquisitionFailedError,
    BrowserLaunchError,
    BrowserNotFoundError,
    ConfigurationError,
    LoginFlowError,
    MessageSourceError,
    MissingCredentialsError,
    OTPError,
    OtpMalformedError,
    OtpTimeoutError,
    OtpTooShortError,
    PostLoginNotReachedError,
    SessionBrokerError,
    SortOrderUnsupportedError,
    UpstreamRequestError,
    UpstreamUnavailableError,
)
from .settings import BrokerSettings, get_settings, reset_settings

__all__ = [
    "Clock",
    "SYSTEM_CLOCK",
    "SessionBrokerError",
    "ConfigurationError",
    "MissingCredentialsError",
    "BrowserNotFoundError",
    "BrowserLaunchError",
    "LoginFlowError",
    "UpstreamUnavailableError",
    "PostLoginNotReachedError",
    "OTPError",
    "OtpTimeoutError",
    "OtpTooShortError",
    "OtpMalformedError",
    "MessageSourceError",
    "SortOrderUnsupportedError",
    "UpstreamRequestError",
    "AcquisitionFailedError",
    "BrokerSettings",
    "get_settings",
    "reset_settings",
]
