"""
Data Models Module

Pydantic models for platform payloads and for the service's own responses.

Models are organized by functional area:
- OAuth models (token exchange response)
- Verification models (signed payload, webhook envelope)
- Session models (resolution result, session check, expiry body)
- System models (health, security events, errors)
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# OAuth Models
# ============================================================================

class OAuthUser(BaseModel):
    """User that authorized the install."""
    model_config = ConfigDict(extra="ignore")

    id: int = Field(..., description="Platform user id")
    email: str = Field(default="", description="User email address")
    username: Optional[str] = Field(None, description="Platform username")


class OAuthTokenResponse(BaseModel):
    """Response body of the platform OAuth token endpoint."""
    model_config = ConfigDict(extra="ignore")

    access_token: str = Field(..., description="Tenant-scoped API access token")
    scope: str = Field(default="", description="Granted scopes")
    user: Optional[OAuthUser] = Field(None, description="Installing user (absent for offline-only grants)")
    context: Optional[str] = Field(None, description="Context string, e.g. stores/{id}")
    account_uuid: Optional[str] = Field(None, description="Platform account UUID")


class InstallResult(BaseModel):
    tenant_id: str
    user_id: int
    email: str
    setup_job_id: Optional[str] = None


# ============================================================================
# Verification Models
# ============================================================================

class SignedPayload(BaseModel):
    """Verified contents of a load/uninstall/remove-user JWT."""

    user_id: int = Field(..., description="User currently viewing the admin surface")
    user_email: str = Field(default="")
    owner_id: Optional[int] = Field(None, description="Store owner user id, when supplied")
    owner_email: Optional[str] = None
    tenant_id: str = Field(..., description="Validated tenant identifier")
    issued_at: Optional[int] = Field(None, description="iat claim (epoch seconds)")
    claims: Dict[str, Any] = Field(default_factory=dict, description="Raw decoded claims")

    @property
    def is_owner(self) -> bool:
        return self.owner_id is not None and self.user_id == self.owner_id


class WebhookEnvelope(BaseModel):
    """A webhook delivery as received, before JSON parsing."""

    id: Optional[str] = None
    timestamp: Optional[str] = None
    signature_header: Optional[str] = None
    raw_body: bytes = b""
    producer: Optional[str] = None


class WebhookAck(BaseModel):
    status: str = "ok"
    topic: str
    tenantId: str


# ============================================================================
# Session Models
# ============================================================================

class SessionExpiredResponse(BaseModel):
    """401 body for API-like requests without a resolvable session."""
    error: str = "Session expired"
    message: str = "Your session has expired. Please reload the app from the store control panel."
    needsRefresh: bool = True


class SessionCheckResponse(BaseModel):
    valid: bool
    tenantId: Optional[str] = None
    state: Optional[str] = None


# ============================================================================
# System Models
# ============================================================================

class SecurityEventOut(BaseModel):
    type: str
    severity: str
    tenant_id: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime


class SecurityEventsResponse(BaseModel):
    tenantId: str
    events: List[SecurityEventOut]
    metrics: Dict[str, int]


class HealthResponse(BaseModel):
    """Health check response model."""
    status: str = Field(..., description="Service health status")
    service: str = Field(..., description="Service name")
    platform: str = Field(..., description="Configured platform variant")
    timestamp: datetime = Field(default_factory=_utcnow, description="Check timestamp")


class ErrorResponse(BaseModel):
    """Standardized error response model."""
    error: str = Field(..., description="Error type or code")
    message: str = Field(..., description="Human-readable error message")
    timestamp: datetime = Field(default_factory=_utcnow, description="Error timestamp")
