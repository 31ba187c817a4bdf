"""Credential bundle, cache, and acquisition orchestration."""

from .acquirer import LoginCredentials, SessionAcquirer
from .bundle import build_bundle, select_access_token
from .cache import CredentialCache, token_expiry_ms
from .models import (
    AcquisitionAttempt,
    AcquisitionState,
    AttemptOutcome,
    CachedCredential,
    CredentialBundle,
)
from .orchestrator import AcquisitionOrchestrator, is_retryable

__all__ = [
    "AcquisitionAttempt",
    "AcquisitionOrchestrator",
    "AcquisitionState",
    "AttemptOutcome",
    "CachedCredential",
    "CredentialBundle",
    "CredentialCache",
    "LoginCredentials",
    "SessionAcquirer",
    "build_bundle",
    "is_retryable",
    "select_access_token",
    "token_expiry_ms",
]
