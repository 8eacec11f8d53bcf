"""
Pydantic schemas for invitation requests and responses.
"""
from datetime import datetime
from pydantic import BaseModel, EmailStr, Field

from app.features.invitations.models import InvitationStatus


class InvitationCreate(BaseModel):
    """Invite an email address into the organization."""
    email: EmailStr
    role_id: str | None = Field(None, description="Role granted on acceptance (default member role if omitted)")


class InvitationResponse(BaseModel):
    id: str
    email: str
    organization_id: str
    invited_by_id: str | None = None
    role_id: str | None = None
    status: InvitationStatus
    accepted_at: datetime | None = None
    accepted_by_id: str | None = None
    expiry_at: datetime
    created_at: datetime

    model_config = {"from_attributes": True}


class AcceptResponse(BaseModel):
    """Outcome of accepting an invitation."""
    invitation: InvitationResponse
    organization_id: str
    already_accepted: bool
