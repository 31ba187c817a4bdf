"""Data models for credential acquisition."""

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional


class AcquisitionState(Enum):
    """Retry state machine states of the acquisition orchestrator."""

    IDLE = "idle"
    ATTEMPTING = "attempting"
    BACKOFF = "backoff"
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"


class AttemptOutcome(Enum):
    """Outcome of a single login attempt."""

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class CredentialBundle:
    """
    Authenticated session material for the downstream API.

    Attributes:
        cookies: Cookie name to value
        cookie_header: Rendered ``Cookie`` header value
        access_token: Bearer token, if the session exposes one
        headers: Outbound headers (Cookie, User-Agent, Referer, Origin, Authorization)
    """

    cookies: Mapping[str, str]
    cookie_header: str
    access_token: Optional[str]
    headers: Mapping[str, str]

    def __post_init__(self):
        object.__setattr__(self, "cookies", MappingProxyType(dict(self.cookies)))
        object.__setattr__(self, "headers", MappingProxyType(dict(self.headers)))

    def to_dict(self) -> Dict[str, Any]:
        """Serialize using the wire field names."""
        return {
            "cookie": dict(self.cookies),
            "cookieHeader": self.cookie_header,
            "accessToken": self.access_token,
            "headers": dict(self.headers),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CredentialBundle":
        """
        Deserialize from the wire field names.

        Raises:
            ValueError: If the record does not have the bundle shape
        """
        if not isinstance(data, dict):
            raise ValueError("Credential bundle must be an object")
        cookies = data.get("cookie") or {}
        headers = data.get("headers") or {}
        cookie_header = data.get("cookieHeader")
        if not isinstance(cookies, dict) or not isinstance(headers, dict):
            raise ValueError("Credential bundle cookie/headers must be objects")
        if not isinstance(cookie_header, str):
            raise ValueError("Credential bundle cookieHeader must be a string")
        token = data.get("accessToken")
        return cls(
            cookies={str(k): str(v) for k, v in cookies.items()},
            cookie_header=cookie_header,
            access_token=str(token) if token else None,
            headers={str(k): str(v) for k, v in headers.items()},
        )


@dataclass(frozen=True)
class CachedCredential:
    """A credential bundle with its validity horizon."""

    bundle: CredentialBundle
    acquired_at_ms: int
    expires_at_ms: int

    def is_valid(self, now_ms: int, skew_ms: int = 60000) -> bool:
        """Valid strictly before ``expires_at_ms - skew_ms``."""
        return now_ms < self.expires_at_ms - skew_ms

    def to_record(self) -> Dict[str, Any]:
        """Durable record written to disk."""
        return {"acquiredAtMs": self.acquired_at_ms, "bundle": self.bundle.to_dict()}


@dataclass
class AcquisitionAttempt:
    """Ephemeral state of one login attempt."""

    index: int
    outcome: AttemptOutcome = AttemptOutcome.PENDING
    server_error: bool = False
    error: Optional[str] = None
    error_code: Optional[str] = None
    debug_screenshot: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
