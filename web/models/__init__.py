"""Pydantic models for the web API."""

from .auth import AuthBundleResponse, ErrorResponse, HealthResponse, InvalidateResponse

__all__ = [
    "AuthBundleResponse",
    "ErrorResponse",
    "HealthResponse",
    "InvalidateResponse",
]
