"""Pydantic schemas for API request/response validation.

Data contracts for the PineGate REST API: grant operations, seller
connections, catalog and maintenance jobs.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from pinegate.db.models import AccessType


# Grant schemas


class AssignRequest(BaseModel):
    """Request body for an assign attempt.

    pine_id and buyer_username must agree with the stored grant; a changed
    buyer_username replaces the stored one (buyer corrected a typo).
    """

    pine_id: str = Field(..., min_length=1)
    buyer_username: str = Field(..., min_length=1, max_length=255)
    access_type: AccessType | None = None
    trial_duration_days: int | None = Field(None, gt=0, le=365)
    subscription_expires_at: datetime | None = None


class RevokeRequest(BaseModel):
    """Request body for a revoke."""

    pine_id: str = Field(..., min_length=1)
    buyer_username: str = Field(..., min_length=1, max_length=255)


class GrantResponse(BaseModel):
    """A grant as stored (no lock fields)."""

    id: str
    seller_id: str
    buyer_id: str
    program_id: str | None
    purchase_id: str | None
    pine_id: str
    script_id: str | None
    buyer_username: str
    access_type: str
    status: str
    attempts: int
    last_attempt_at: str | None
    assigned_at: str | None
    expires_at: str | None
    error_message: str | None
    details: dict | None = None
    created_at: str
    updated_at: str

    model_config = ConfigDict(from_attributes=True)


class AssignmentLogResponse(BaseModel):
    """Response schema for an assignment log entry."""

    id: str
    grant_id: str
    purchase_id: str | None
    timestamp: str
    level: str
    message: str
    details: dict | None

    model_config = ConfigDict(from_attributes=True)


# Connection schemas


class TestConnectionRequest(BaseModel):
    """Cookie pair copied from a logged-in browser."""

    session: str = Field(..., min_length=1, max_length=4096)
    signed_session: str = Field(..., min_length=1, max_length=4096)
    username: str | None = Field(None, max_length=255)


# Error response schema


class ErrorDetail(BaseModel):
    """Error envelope body."""

    code: str
    message: str


class ErrorResponse(BaseModel):
    """Standard error envelope."""

    error: ErrorDetail
