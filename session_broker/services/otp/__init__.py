"""OTP extraction and mailbox correlation."""

from .correlator import CorrelationState, MessageCorrelator
from .diagnostics import MessageSummary, OtpDiagnosticReport, inspect_mailbox
from .extractor import extract_otp, html_to_text, normalize_digits, validate_otp
from .resolver import BaselineMessageMarker, OtpResolver

__all__ = [
    "extract_otp",
    "normalize_digits",
    "validate_otp",
    "html_to_text",
    "CorrelationState",
    "MessageCorrelator",
    "BaselineMessageMarker",
    "OtpResolver",
    "MessageSummary",
    "OtpDiagnosticReport",
    "inspect_mailbox",
]
