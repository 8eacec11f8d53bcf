"""
Pydantic schemas for permission management.

Request and response models for roles, permission grants, assignments,
teams, permission checks and audit logs.
"""
from datetime import datetime
from typing import Dict, Any, List, Optional
from pydantic import BaseModel, Field, ConfigDict, model_validator

from app.features.permissions.vocabulary import (
    Action,
    PrincipalKind,
    ResourceKind,
    OBJECT_SCOPED_KINDS,
)


# ============================================================================
# Permission Schemas
# ============================================================================

class PermissionGrant(BaseModel):
    """Schema for attaching a permission to a role."""
    resource_kind: ResourceKind = Field(..., description="Resource kind (e.g., 'workspace', 'object_instance')")
    action: Action = Field(..., description="Action (e.g., 'read', 'manage_members')")
    apply_org_wide: bool = Field(False, description="Grant reaches every workspace of the organization")
    apply_workspace_wide: bool = Field(False, description="Grant reaches every instance within a workspace")
    object_type_id: Optional[str] = Field(None, max_length=26, description="Narrow to one object type")

    @model_validator(mode="after")
    def object_type_matches_kind(self) -> "PermissionGrant":
        """object_type_id is required for object-scoped kinds and forbidden otherwise."""
        if self.resource_kind in OBJECT_SCOPED_KINDS and not self.object_type_id:
            raise ValueError(f"object_type_id is required for resource kind '{self.resource_kind.value}'")
        if self.resource_kind not in OBJECT_SCOPED_KINDS and self.object_type_id:
            raise ValueError(f"object_type_id is not allowed for resource kind '{self.resource_kind.value}'")
        return self


class PermissionResponse(BaseModel):
    """Schema for permission response."""
    id: str
    role_id: str
    resource_kind: str
    action: str
    apply_org_wide: bool
    apply_workspace_wide: bool
    object_type_id: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# Role Schemas
# ============================================================================

class RoleBase(BaseModel):
    """Base role schema."""
    name: str = Field(..., min_length=1, max_length=100, description="Role name, unique within its scope")
    description: Optional[str] = Field(None, max_length=1000, description="Role description")


class RoleCreate(RoleBase):
    """Schema for creating a new role."""
    pass


class RoleUpdate(BaseModel):
    """Schema for updating a role."""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)


class RoleResponse(RoleBase):
    """Schema for role response."""
    id: str
    organization_id: Optional[str] = None
    is_system: bool
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class RoleWithPermissions(RoleResponse):
    """Role with its live permissions."""
    permissions: List[PermissionResponse] = []


# ============================================================================
# Assignment Schemas
# ============================================================================

class AssignmentCreate(BaseModel):
    """Give a principal a role at organization or workspace scope."""
    principal_kind: PrincipalKind = Field(..., description="'user' or 'team'")
    principal_id: str = Field(..., description="User ID or team ID")
    role_id: str = Field(..., description="Role ID")
    workspace_id: Optional[str] = Field(None, description="Workspace ID (null for organization scope)")


class AssignmentResponse(BaseModel):
    id: str
    principal_kind: str
    principal_id: str
    organization_id: str
    workspace_id: Optional[str] = None
    role_id: str
    assigned_by_id: Optional[str] = None
    assigned_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# Team Schemas
# ============================================================================

class TeamCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100, description="Team name")
    description: Optional[str] = Field(None, max_length=1000, description="Team description")


class TeamResponse(TeamCreate):
    id: str
    organization_id: str
    created_by_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TeamMemberAdd(BaseModel):
    user_id: str = Field(..., description="User ID")


class TeamMemberResponse(BaseModel):
    team_id: str
    user_id: str
    added_by_id: Optional[str] = None
    added_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# Permission Check Schemas
# ============================================================================

class PermissionCheckRequest(BaseModel):
    """Ask whether the current user may perform an action."""
    resource_kind: ResourceKind = Field(..., description="Resource kind")
    action: Action = Field(..., description="Action")
    organization_id: str = Field(..., description="Organization ID")
    workspace_id: Optional[str] = Field(None, description="Workspace ID (omit for an organization-level check)")
    object_type_id: Optional[str] = Field(None, description="Object type ID for typed resources")


class PermissionCheckResponse(BaseModel):
    """Permission check result."""
    has_permission: bool


# ============================================================================
# Audit Log Schemas
# ============================================================================

class AuditLogResponse(BaseModel):
    """Schema for audit log response."""
    id: str
    user_id: Optional[str] = None
    action: str
    resource_type: str
    resource_id: Optional[str] = None
    organization_id: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AuditLogListResponse(BaseModel):
    """Paginated audit log list."""
    items: List[AuditLogResponse]
    total: int
    page: int
    page_size: int
    pages: int
