# app/api/models/session.py
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, Field

from app.access.grants import AccessGrant


def to_iso(value: datetime) -> str:
    """Render a timestamp as UTC ISO-8601 with milliseconds and a Z suffix."""
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


class SessionDetails(BaseModel):
    """
    Wire view of an access grant. Which optional fields are present depends on
    the endpoint (validity label on purchase, remaining time on a successful
    validation, used flag when a onetime pass was rejected).
    """
    id: str = Field(..., description="Opaque session id (the access token).")
    type: str = Field(..., description="Grant tier: '24hour' or 'onetime'.")
    createdAt: str = Field(..., description="Creation time (ISO-8601, UTC).")
    expiresAt: str = Field(..., description="Expiry time (ISO-8601, UTC).")
    validFor: Optional[str] = Field(None, description="Human readable validity window.")
    remainingTime: Optional[int] = Field(None, description="Milliseconds until expiry.")
    used: Optional[bool] = Field(None, description="Whether a onetime pass has been consumed.")
    walletAddress: Optional[str] = None
    transactionHash: Optional[str] = None

    @classmethod
    def from_grant(cls, grant: AccessGrant, **extra) -> "SessionDetails":
        return cls(
            id=grant.id,
            type=grant.tier.value,
            createdAt=to_iso(grant.created_at),
            expiresAt=to_iso(grant.expires_at),
            walletAddress=grant.wallet_address,
            transactionHash=grant.proof_reference,
            **extra
        )


class SessionValidationResponse(BaseModel):
    """Response model for session validation."""
    valid: bool
    session: Optional[SessionDetails] = None
    error: Optional[str] = None


class ActiveSessionsResponse(BaseModel):
    """Response model for the active sessions listing."""
    sessions: List[SessionDetails]
