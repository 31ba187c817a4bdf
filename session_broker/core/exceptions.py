"""Custom exception classes for the session broker."""

from datetime import datetime, timezone
from typing import Any, Dict, Optional


class SessionBrokerError(Exception):
    """Base exception for the session broker."""

    code = "SESSION_BROKER_ERROR"
    http_status = 500

    def __init__(
        self, message: str, recoverable: bool = True, details: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize session broker error.

        Args:
            message: Error message
            recoverable: Whether the error is recoverable with retry
            details: Additional error details
        """
        self.message = message
        self.recoverable = recoverable
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc).isoformat()
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary."""
        return {
            "error": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "recoverable": self.recoverable,
            "details": self.details,
            "timestamp": self.timestamp,
        }


# Configuration Errors
class ConfigurationError(SessionBrokerError):
    """Configuration error occurred. Never retried."""

    code = "CONFIGURATION_ERROR"

    def __init__(
        self,
        message: str = "Configuration error",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, recoverable=False, details=details)


class MissingCredentialsError(ConfigurationError):
    """Raised when required secrets are not configured."""

    code = "MISSING_CREDENTIALS"

    def __init__(self, *variable_names: str):
        super().__init__(
            f"Missing required settings: {', '.join(variable_names)}",
            details={"variables": list(variable_names)},
        )


class BrowserNotFoundError(ConfigurationError):
    """No Chrome/Chromium/Edge executable could be located."""

    code = "BROWSER_NOT_FOUND"

    def __init__(self):
        super().__init__(
            "Chrome/Chromium/Edge not found. Install a supported browser "
            "or set BROWSER_EXECUTABLE_PATH."
        )


class BrowserLaunchError(ConfigurationError):
    """Browser executable exists but could not be launched."""

    code = "BROWSER_LAUNCH_FAILED"

    def __init__(self, reason: str):
        super().__init__(f"Failed to launch browser: {reason}", details={"reason": reason})


# Login flow errors (retryable)
class LoginFlowError(SessionBrokerError):
    """A step of the interactive login flow failed."""

    code = "LOGIN_FLOW_ERROR"
    http_status = 502

    def __init__(
        self,
        message: str = "Login flow failed",
        recoverable: bool = True,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, recoverable, details)


class UpstreamUnavailableError(LoginFlowError):
    """The login surface rendered its generic server-error page."""

    code = "UPSTREAM_UNAVAILABLE"
    http_status = 503

    def __init__(self, where: str, screenshot: Optional[str] = None):
        """
        Initialize upstream unavailable error.

        Args:
            where: Login step at which the error page was seen
            screenshot: Path of the captured diagnostic screenshot, if any
        """
        self.where = where
        self.screenshot = screenshot
        super().__init__(
            f"Upstream server error page at: {where}",
            details={"where": where, "debugScreenshot": screenshot},
        )


class PostLoginNotReachedError(LoginFlowError):
    """Session indicators never appeared after OTP submission."""

    code = "POST_LOGIN_NOT_REACHED"

    def __init__(self, timeout_seconds: float):
        super().__init__(
            "Post-login state not reached (still on login/OTP page)",
            details={"timeout_seconds": timeout_seconds},
        )


# OTP Errors
class OTPError(LoginFlowError):
    """Base class for OTP-related errors."""

    code = "OTP_ERROR"


class OtpTimeoutError(OTPError):
    """No new OTP message arrived within the polling window."""

    code = "OTP_TIMEOUT"
    http_status = 504

    def __init__(self, sender: str, poll_attempts: int):
        super().__init__(
            f"No new OTP email from {sender} after {poll_attempts} polls",
            details={"sender": sender, "poll_attempts": poll_attempts},
        )


class OtpTooShortError(OTPError):
    """Extracted OTP has fewer digits than the login form expects."""

    code = "OTP_TOO_SHORT"

    def __init__(self, length: int, min_length: int):
        super().__init__(
            f"OTP too short: {length} digits (expected at least {min_length})",
            details={"length": length, "min_length": min_length},
        )


class OtpMalformedError(OTPError):
    """Extracted OTP is not a plain digit string."""

    code = "OTP_MALFORMED"

    def __init__(self, message: str = "OTP is not a digit string"):
        super().__init__(message)


# Mailbox errors
class MessageSourceError(SessionBrokerError):
    """Mail API request failed."""

    code = "MESSAGE_SOURCE_ERROR"
    http_status = 502

    def __init__(self, message: str = "Mail API request failed", status: Optional[int] = None):
        self.status = status
        super().__init__(message, recoverable=True, details={"status": status})


class SortOrderUnsupportedError(MessageSourceError):
    """Mail API refused a server-side recency ordering for the query."""

    code = "SORT_ORDER_UNSUPPORTED"


# Reverse proxy
class UpstreamRequestError(SessionBrokerError):
    """A proxied request could not reach the upstream API."""

    code = "UPSTREAM_REQUEST_FAILED"
    http_status = 502

    def __init__(self, method: str, url: str, reason: str):
        super().__init__(
            f"Upstream request failed: {method} {url}: {reason}",
            details={"method": method, "url": url},
        )


# Terminal
class AcquisitionFailedError(SessionBrokerError):
    """All acquisition attempts failed; wraps the last underlying error."""

    code = "ACQUISITION_FAILED"

    def __init__(self, last_error: BaseException, attempts: int):
        """
        Initialize acquisition failure.

        Args:
            last_error: Error raised by the final attempt
            attempts: Number of attempts that were made
        """
        self.last_error = last_error
        self.attempts = attempts
        details: Dict[str, Any] = {"attempts": attempts, "cause": self.cause_code}
        if isinstance(last_error, SessionBrokerError):
            details.update(last_error.details)
            self.http_status = last_error.http_status
        super().__init__(
            f"Credential acquisition failed after {attempts} attempt(s): {last_error}",
            recoverable=False,
            details=details,
        )

    @property
    def cause_code(self) -> str:
        """Machine-readable code of the underlying error."""
        if isinstance(self.last_error, SessionBrokerError):
            return self.last_error.code
        return self.code

    @property
    def debug_screenshot(self) -> Optional[str]:
        """Screenshot reference of the last attempt, if it hit an error page."""
        if isinstance(self.last_error, UpstreamUnavailableError):
            return self.last_error.screenshot
        return None
