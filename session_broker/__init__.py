"""Session broker: OTP-protected portal login with cached, single-flight credential acquisition."""

__version__ = "1.0.0"
