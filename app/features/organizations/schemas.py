"""
Pydantic schemas for organization-related requests and responses.
"""
from datetime import datetime
from pydantic import BaseModel, Field


# Organization Schemas
class OrganizationCreate(BaseModel):
    """Schema for creating a new organization."""
    name: str = Field(..., min_length=1, max_length=255)


class OrganizationUpdate(BaseModel):
    """Schema for updating organization information."""
    name: str = Field(..., min_length=1, max_length=255)


class OrganizationResponse(BaseModel):
    """Schema for organization responses."""
    id: str
    name: str
    created_by_id: str | None = None
    updated_by_id: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


# Workspace Schemas
class WorkspaceCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)


class WorkspaceUpdate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)


class WorkspaceResponse(BaseModel):
    id: str
    organization_id: str
    name: str
    created_by_id: str | None = None
    updated_by_id: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


# Member Schemas
class MemberResponse(BaseModel):
    """Roster entry of an organization."""
    organization_id: str
    user_id: str
    invited_by_id: str | None = None
    joined_at: datetime

    model_config = {"from_attributes": True}
