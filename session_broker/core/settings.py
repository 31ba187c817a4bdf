"""Application settings with Pydantic validation."""

from typing import Any, Optional

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class BrokerSettings(BaseSettings):
    """Application settings with validation and environment variable support."""

    # Environment
    env: str = Field(
        default="production", description="Environment (production, development, testing)"
    )

    @model_validator(mode="before")
    @classmethod
    def default_env_for_pytest(cls, data: Any) -> Any:
        """Auto-detect testing environment when running under pytest."""
        import sys

        if not isinstance(data, dict):
            return data

        if ("env" not in data or not data.get("env")) and "pytest" in sys.modules:
            data["env"] = "testing"

        return data

    # Portal login
    portal_url: str = Field(
        default="https://bayan.logisti.sa/", description="Landing page of the login portal"
    )
    portal_origin: str = Field(
        default="https://bayan.logisti.sa", description="Origin header sent downstream"
    )
    portal_identity_number: str = Field(default="", description="Portal login identity number")
    portal_password: SecretStr = Field(default=SecretStr(""), description="Portal password")

    # OTP correlation
    otp_sender: str = Field(default="NoReply@logisti.sa", description="Sender of OTP emails")
    otp_wait_ms: int = Field(
        default=10000, ge=0, description="Delay after the OTP page appears before polling"
    )
    otp_poll_attempts: int = Field(default=30, ge=1, description="Mailbox polls per OTP")
    otp_poll_interval_ms: int = Field(default=2000, ge=0, description="Delay between polls")
    otp_max_age_minutes: float = Field(
        default=0, ge=0, description="Reject OTP emails older than this (0 = any age)"
    )
    otp_min_length: int = Field(default=4, ge=1, description="Shortest accepted OTP")
    otp_max_length: int = Field(default=8, ge=1, description="Longest accepted OTP")
    debug_otp: bool = Field(default=False, description="Verbose OTP correlation diagnostics")

    # Login retry
    login_max_attempts: int = Field(default=3, ge=1, description="Login attempts per acquisition")
    login_backoff_ms: int = Field(
        default=1500, ge=0, description="Linear backoff base between login attempts"
    )

    # Credential cache
    auth_cache_ttl_ms: int = Field(
        default=30 * 60 * 1000,
        ge=0,
        description="Fallback credential lifetime when the token carries no expiry",
    )
    auth_cache_skew_ms: int = Field(
        default=60000, ge=0, description="Safety margin subtracted from the expiry"
    )
    auth_cache_path: Optional[str] = Field(
        default="data/auth_cache.json", description="Durable cache record (empty disables)"
    )
    auth_cache_encryption_key: Optional[SecretStr] = Field(
        default=None, description="Fernet key; encrypts the durable cache record when set"
    )

    # Browser
    browser_executable_path: Optional[str] = Field(
        default=None, description="Explicit Chrome/Chromium/Edge executable"
    )
    headless: bool = Field(default=True, description="Run the browser headless")
    screenshots_dir: str = Field(
        default="screenshots/errors", description="Directory for diagnostic screenshots"
    )

    # Mailbox
    mail_backend: str = Field(default="graph", description="Message source backend (graph, imap)")
    azure_tenant_id: Optional[str] = Field(default=None, description="Azure AD tenant")
    azure_client_id: Optional[str] = Field(default=None, description="Azure AD app client id")
    azure_client_secret: Optional[SecretStr] = Field(
        default=None, description="Azure AD app client secret"
    )
    user_email: Optional[str] = Field(default=None, description="Mailbox that receives OTPs")
    imap_host: str = Field(default="outlook.office365.com", description="IMAP server hostname")
    imap_port: int = Field(default=993, description="IMAP server port")
    imap_password: Optional[SecretStr] = Field(default=None, description="IMAP app password")

    # Reverse proxy
    upstream_base_url: str = Field(
        default="https://bayan.logisti.sa", description="Base URL proxied requests go to"
    )
    proxy_timeout_seconds: float = Field(default=60.0, gt=0, description="Proxy request timeout")

    # Service
    host: str = Field(default="0.0.0.0", description="Bind address")
    port: int = Field(default=3000, description="Bind port")
    log_level: str = Field(
        default="INFO", description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )
    log_json: bool = Field(default=True, description="Write JSON log file")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("env")
    @classmethod
    def validate_env(cls, v: str) -> str:
        """Validate environment value."""
        allowed = ["production", "development", "testing", "staging"]
        if v.lower() not in allowed:
            raise ValueError(f'ENV must be one of: {", ".join(allowed)}')
        return v.lower()

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        allowed = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in allowed:
            raise ValueError(f'LOG_LEVEL must be one of: {", ".join(allowed)}')
        return v_upper

    @field_validator("mail_backend")
    @classmethod
    def validate_mail_backend(cls, v: str) -> str:
        """Validate mail backend name."""
        v_lower = v.lower()
        if v_lower not in ("graph", "imap"):
            raise ValueError("MAIL_BACKEND must be one of: graph, imap")
        return v_lower

    @field_validator("auth_cache_path")
    @classmethod
    def empty_cache_path_disables(cls, v: Optional[str]) -> Optional[str]:
        """Treat an empty cache path as 'no persistence'."""
        if v is not None and not v.strip():
            return None
        return v

    @field_validator("auth_cache_encryption_key")
    @classmethod
    def validate_encryption_key(cls, v: Optional[SecretStr]) -> Optional[SecretStr]:
        """Validate the Fernet key format; empty means no encryption."""
        if v is None or not v.get_secret_value().strip():
            return None
        from cryptography.fernet import Fernet

        try:
            Fernet(v.get_secret_value().encode())
        except (ValueError, TypeError) as e:
            raise ValueError(
                "AUTH_CACHE_ENCRYPTION_KEY must be a valid Fernet key "
                "(32 url-safe base64-encoded bytes)"
            ) from e
        return v

    @model_validator(mode="after")
    def validate_otp_lengths(self) -> "BrokerSettings":
        """Ensure the OTP length window is not inverted."""
        if self.otp_min_length > self.otp_max_length:
            raise ValueError("OTP_MIN_LENGTH must not exceed OTP_MAX_LENGTH")
        return self

    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.env in ("development", "testing")


# Singleton instance
_settings: Optional[BrokerSettings] = None


def get_settings() -> BrokerSettings:
    """
    Get application settings singleton.

    Returns:
        BrokerSettings instance

    Raises:
        ValidationError: If settings are invalid
    """
    global _settings
    if _settings is None:
        _settings = BrokerSettings()
    return _settings


def reset_settings() -> None:
    """Reset settings singleton (useful for testing)."""
    global _settings
    _settings = None
