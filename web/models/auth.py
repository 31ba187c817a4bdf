"""Credential bundle and error response models."""

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class AuthBundleResponse(BaseModel):
    """Credential bundle as returned to downstream callers."""

    model_config = ConfigDict(populate_by_name=True)

    cookie: Dict[str, str]
    cookie_header: str = Field(alias="cookieHeader")
    access_token: Optional[str] = Field(default=None, alias="accessToken")
    headers: Dict[str, str]


class ErrorResponse(BaseModel):
    """Structured failure of a broker operation."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool = False
    error: str
    code: str
    debug_screenshot: Optional[str] = Field(default=None, alias="debugScreenshot")


class InvalidateResponse(BaseModel):
    """Result of a cache invalidation."""

    success: bool = True
    invalidated: bool = True


class HealthResponse(BaseModel):
    """Service health with credential state."""

    status: str
    version: str
    timestamp: str
    credential: Dict[str, Any]
