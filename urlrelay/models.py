"""
Data Models Module

Pydantic models for the proxy's own HTTP surface:
- Runtime reconfiguration (partial config update, acknowledgment)
- Link helper responses
- Health and error responses
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Reconfiguration Models
# ============================================================================

class ConfigUpdate(BaseModel):
    """
    Partial configuration update carried by a reconfiguration message.

    Field names are accepted in camelCase (as sent by browser clients) or
    snake_case. Unknown fields are rejected so typos do not pass silently.
    """

    model_config = ConfigDict(extra="forbid")

    prefix: Optional[str] = Field(None, description="New interception prefix")
    follow_redirects: Optional[bool] = Field(
        None,
        validation_alias=AliasChoices("followRedirects", "follow_redirects"),
    )
    relay_cookies: Optional[bool] = Field(
        None,
        validation_alias=AliasChoices("relayCookies", "relaySetCookie", "relay_cookies"),
    )
    query_param: Optional[str] = Field(
        None,
        min_length=1,
        validation_alias=AliasChoices("queryParam", "query_param"),
    )
    method_override_header: Optional[str] = Field(
        None,
        min_length=1,
        validation_alias=AliasChoices("methodOverrideHeader", "method_override_header"),
    )

    def changes(self) -> Dict[str, Any]:
        """Only the fields the message actually set."""
        return self.model_dump(exclude_unset=True, exclude_none=True)


class ConfigAck(BaseModel):
    """Acknowledgment returned for a reconfiguration message."""
    ok: bool = Field(..., description="Whether the update was applied")
    error: Optional[str] = Field(None, description="Reason the update was rejected")


# ============================================================================
# Link Helper Models
# ============================================================================

class EncodedLink(BaseModel):
    """Proxy links for one target URL."""
    url: str = Field(..., description="Absolute target URL")
    token: str = Field(..., description="Encoded token")
    path: str = Field(..., description="Path-style proxy link")
    query: str = Field(..., description="Query-style proxy link")


# ============================================================================
# Health Check Models
# ============================================================================

class HealthResponse(BaseModel):
    """Health check response model."""
    status: str = Field(..., description="Service health status")
    service: str = Field(..., description="Service name")
    version: str = Field(..., description="Service version")
    timestamp: datetime = Field(default_factory=_utcnow, description="Check timestamp")


# ============================================================================
# Error Models
# ============================================================================

class ErrorResponse(BaseModel):
    """Standardized error response model."""
    error: str = Field(..., description="Error type or code")
    message: str = Field(..., description="Human-readable error message")
    details: Optional[Dict[str, Any]] = Field(None, description="Additional error details")
    timestamp: datetime = Field(default_factory=_utcnow, description="Error timestamp")
