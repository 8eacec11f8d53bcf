"""
Permission management API routes.

Provides endpoints for managing roles, permission grants, assignments and
teams inside an organization, system roles for platform admins, permission
checks and the audit log.
"""
from typing import Annotated, List, Optional
from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.errors import NotFoundError
from app.features.organizations.queries import get_organization, get_workspace
from app.features.permissions import assignments, grants, roles, teams
from app.features.permissions.dependencies import authorize, create_audit_log, get_client_info
from app.features.permissions.engine import has_permission, require_permission
from app.features.permissions.models import AuditLog, Role
from app.features.permissions.principals import Principal
from app.features.permissions.schemas import (
    AssignmentCreate,
    AssignmentResponse,
    AuditLogListResponse,
    AuditLogResponse,
    PermissionCheckRequest,
    PermissionCheckResponse,
    PermissionGrant,
    PermissionResponse,
    RoleCreate,
    RoleResponse,
    RoleUpdate,
    RoleWithPermissions,
    TeamCreate,
    TeamMemberAdd,
    TeamMemberResponse,
    TeamResponse,
)
from app.features.permissions.vocabulary import Action, ResourceKind
from app.features.users.dependencies import get_current_user, get_current_admin_user
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter()

ORG = "/organizations/{organization_id}"


async def _role_with_permissions(db: AsyncSession, role: Role) -> RoleWithPermissions:
    permissions = await grants.list_role_permissions(db, role.id)
    return RoleWithPermissions(
        **RoleResponse.model_validate(role).model_dump(),
        permissions=[PermissionResponse.model_validate(p) for p in permissions],
    )


async def _system_role(db: AsyncSession, role_id: str) -> Role:
    role = await roles.get_role(db, role_id)
    if not role.is_system:
        raise NotFoundError("Role not found")
    return role


# ============================================================================
# Organization Role Routes
# ============================================================================

@router.get(ORG + "/roles", response_model=List[RoleResponse])
async def list_organization_roles(
    organization_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(authorize(ResourceKind.ORGANIZATION, Action.READ))]
):
    """Custom roles of the organization plus the system roles."""
    return await roles.list_roles(db, organization_id)


@router.post(ORG + "/roles", response_model=RoleResponse, status_code=status.HTTP_201_CREATED)
async def create_organization_role(
    organization_id: str,
    role_data: RoleCreate,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(authorize(ResourceKind.ORGANIZATION, Action.MANAGE_ROLES))]
):
    role = await roles.create_role(
        db, role_data.name, role_data.description, organization_id, current_user.id
    )
    await create_audit_log(
        db, current_user.id, "create", "role", role.id, organization_id,
        details=role_data.model_dump(), **get_client_info(request),
    )
    return role


@router.get(ORG + "/roles/{role_id}", response_model=RoleWithPermissions)
async def get_organization_role(
    organization_id: str,
    role_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(authorize(ResourceKind.ORGANIZATION, Action.READ))]
):
    role = await roles.get_assignable_role(db, role_id, organization_id)
    return await _role_with_permissions(db, role)


@router.patch(ORG + "/roles/{role_id}", response_model=RoleResponse)
async def update_organization_role(
    organization_id: str,
    role_id: str,
    role_data: RoleUpdate,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(authorize(ResourceKind.ORGANIZATION, Action.MANAGE_ROLES))]
):
    role = await roles.update_role(
        db, role_id, name=role_data.name, description=role_data.description,
        organization_id=organization_id,
    )
    await create_audit_log(
        db, current_user.id, "update", "role", role_id, organization_id,
        details=role_data.model_dump(exclude_unset=True), **get_client_info(request),
    )
    return role


@router.delete(ORG + "/roles/{role_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_organization_role(
    organization_id: str,
    role_id: str,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(authorize(ResourceKind.ORGANIZATION, Action.MANAGE_ROLES))]
):
    await roles.delete_role(db, role_id, organization_id)
    await create_audit_log(
        db, current_user.id, "delete", "role", role_id, organization_id,
        **get_client_info(request),
    )


@router.post(
    ORG + "/roles/{role_id}/permissions",
    response_model=PermissionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def grant_organization_role_permission(
    organization_id: str,
    role_id: str,
    grant: PermissionGrant,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(authorize(ResourceKind.ORGANIZATION, Action.MANAGE_ROLES))]
):
    permission = await grants.grant_permission(
        db, role_id, grant.resource_kind, grant.action,
        apply_org_wide=grant.apply_org_wide,
        apply_workspace_wide=grant.apply_workspace_wide,
        object_type_id=grant.object_type_id,
        created_by_id=current_user.id,
        organization_id=organization_id,
    )
    await create_audit_log(
        db, current_user.id, "grant", "permission", permission.id, organization_id,
        details={"role_id": role_id, **grant.model_dump(mode="json")}, **get_client_info(request),
    )
    return permission


@router.delete(
    ORG + "/roles/{role_id}/permissions/{permission_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def revoke_organization_role_permission(
    organization_id: str,
    role_id: str,
    permission_id: str,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(authorize(ResourceKind.ORGANIZATION, Action.MANAGE_ROLES))]
):
    await roles.load_role(db, role_id, organization_id)
    await grants.revoke_permission(db, permission_id, role_id)
    await create_audit_log(
        db, current_user.id, "revoke", "permission", permission_id, organization_id,
        details={"role_id": role_id}, **get_client_info(request),
    )


# ============================================================================
# Assignment Routes
# ============================================================================

@router.get(ORG + "/assignments", response_model=List[AssignmentResponse])
async def list_organization_assignments(
    organization_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(authorize(ResourceKind.ORGANIZATION, Action.READ))],
    workspace_id: Optional[str] = None
):
    return await assignments.list_assignments(db, organization_id, workspace_id)


async def _require_assignment_manager(
    db: AsyncSession, user: User, organization_id: str, workspace_id: Optional[str]
) -> None:
    """
    Org-level assignments need organization.manage_members. Workspace-level
    ones are also allowed to holders of workspace.manage_members there.
    """
    await get_organization(db, organization_id)
    principal = Principal.user(user.id)
    if await has_permission(db, principal, ResourceKind.ORGANIZATION, Action.MANAGE_MEMBERS, organization_id):
        return
    if workspace_id is not None:
        await get_workspace(db, organization_id, workspace_id)
        await require_permission(
            db, principal, ResourceKind.WORKSPACE, Action.MANAGE_MEMBERS, organization_id, workspace_id
        )
        return
    await require_permission(db, principal, ResourceKind.ORGANIZATION, Action.MANAGE_MEMBERS, organization_id)


@router.post(ORG + "/assignments", response_model=AssignmentResponse, status_code=status.HTTP_201_CREATED)
async def create_assignment(
    organization_id: str,
    assignment_data: AssignmentCreate,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)]
):
    """Assign a role to a user or team."""
    await _require_assignment_manager(db, current_user, organization_id, assignment_data.workspace_id)

    assignment = await assignments.assign_role(
        db,
        Principal(assignment_data.principal_kind, assignment_data.principal_id),
        organization_id,
        assignment_data.workspace_id,
        assignment_data.role_id,
        current_user.id,
    )
    await create_audit_log(
        db, current_user.id, "assign", "role_assignment", assignment.id, organization_id,
        details=assignment_data.model_dump(mode="json"), **get_client_info(request),
    )
    return assignment


@router.delete(ORG + "/assignments/{assignment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_assignment(
    organization_id: str,
    assignment_id: str,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)]
):
    """Remove a role assignment."""
    await get_organization(db, organization_id)
    assignment = await assignments.get_assignment(db, assignment_id, organization_id)
    await _require_assignment_manager(db, current_user, organization_id, assignment.workspace_id)

    await assignments.unassign_role(db, assignment_id, organization_id)
    await create_audit_log(
        db, current_user.id, "unassign", "role_assignment", assignment_id, organization_id,
        **get_client_info(request),
    )


@router.get(
    ORG + "/principals/{principal_kind}/{principal_id}/assignments",
    response_model=List[AssignmentResponse],
)
async def list_principal_assignments(
    organization_id: str,
    principal_kind: str,
    principal_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(authorize(ResourceKind.ORGANIZATION, Action.READ))]
):
    """Direct assignments of one user or team in the organization."""
    return await assignments.list_for_principal(
        db, Principal.parse(principal_kind, principal_id), organization_id
    )


# ============================================================================
# Team Routes
# ============================================================================

@router.get(ORG + "/teams", response_model=List[TeamResponse])
async def list_teams(
    organization_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(authorize(ResourceKind.ORGANIZATION, Action.READ))]
):
    return await teams.list_teams(db, organization_id)


@router.post(ORG + "/teams", response_model=TeamResponse, status_code=status.HTTP_201_CREATED)
async def create_team(
    organization_id: str,
    team_data: TeamCreate,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(authorize(ResourceKind.ORGANIZATION, Action.MANAGE_TEAMS))]
):
    team = await teams.create_team(
        db, organization_id, team_data.name, team_data.description, current_user.id
    )
    await create_audit_log(
        db, current_user.id, "create", "team", team.id, organization_id,
        details=team_data.model_dump(), **get_client_info(request),
    )
    return team


@router.delete(ORG + "/teams/{team_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_team(
    organization_id: str,
    team_id: str,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(authorize(ResourceKind.ORGANIZATION, Action.MANAGE_TEAMS))]
):
    await teams.delete_team(db, team_id, organization_id)
    await create_audit_log(
        db, current_user.id, "delete", "team", team_id, organization_id,
        **get_client_info(request),
    )


@router.get(ORG + "/teams/{team_id}/members", response_model=List[TeamMemberResponse])
async def list_team_members(
    organization_id: str,
    team_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(authorize(ResourceKind.ORGANIZATION, Action.READ))]
):
    await teams.get_team(db, team_id, organization_id)
    return await teams.list_team_members(db, team_id)


@router.post(
    ORG + "/teams/{team_id}/members",
    response_model=TeamMemberResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_team_member(
    organization_id: str,
    team_id: str,
    member: TeamMemberAdd,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(authorize(ResourceKind.ORGANIZATION, Action.MANAGE_TEAMS))]
):
    edge = await teams.add_team_member(
        db, team_id, member.user_id, current_user.id, organization_id
    )
    await create_audit_log(
        db, current_user.id, "add_member", "team", team_id, organization_id,
        details={"user_id": member.user_id}, **get_client_info(request),
    )
    return edge


@router.delete(ORG + "/teams/{team_id}/members/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_team_member(
    organization_id: str,
    team_id: str,
    user_id: str,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(authorize(ResourceKind.ORGANIZATION, Action.MANAGE_TEAMS))]
):
    await teams.remove_team_member(db, team_id, user_id, organization_id)
    await create_audit_log(
        db, current_user.id, "remove_member", "team", team_id, organization_id,
        details={"user_id": user_id}, **get_client_info(request),
    )


# ============================================================================
# System Role Routes (platform admin)
# ============================================================================

@router.get("/roles", response_model=List[RoleResponse])
async def list_system_roles(
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)]
):
    return await roles.list_roles(db)


@router.get("/roles/{role_id}", response_model=RoleWithPermissions)
async def get_system_role(
    role_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)]
):
    role = await roles.get_role(db, role_id)
    if not role.is_system:
        # Custom roles are only readable through their organization
        await require_permission(
            db, Principal.user(current_user.id), ResourceKind.ORGANIZATION, Action.READ, role.organization_id
        )
    return await _role_with_permissions(db, role)


@router.post("/roles", response_model=RoleResponse, status_code=status.HTTP_201_CREATED)
async def create_system_role(
    role_data: RoleCreate,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_admin_user)]
):
    """Create a system role (admin only)."""
    role = await roles.create_role(db, role_data.name, role_data.description, None, current_user.id)
    await create_audit_log(
        db, current_user.id, "create", "role", role.id,
        details=role_data.model_dump(), **get_client_info(request),
    )
    return role


@router.patch("/roles/{role_id}", response_model=RoleResponse)
async def update_system_role(
    role_id: str,
    role_data: RoleUpdate,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_admin_user)]
):
    await _system_role(db, role_id)
    role = await roles.update_role(db, role_id, name=role_data.name, description=role_data.description)
    await create_audit_log(
        db, current_user.id, "update", "role", role_id,
        details=role_data.model_dump(exclude_unset=True), **get_client_info(request),
    )
    return role


@router.delete("/roles/{role_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_system_role(
    role_id: str,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_admin_user)]
):
    await _system_role(db, role_id)
    await roles.delete_role(db, role_id)
    await create_audit_log(
        db, current_user.id, "delete", "role", role_id, **get_client_info(request),
    )


@router.post(
    "/roles/{role_id}/permissions",
    response_model=PermissionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def grant_system_role_permission(
    role_id: str,
    grant: PermissionGrant,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_admin_user)]
):
    await _system_role(db, role_id)
    permission = await grants.grant_permission(
        db, role_id, grant.resource_kind, grant.action,
        apply_org_wide=grant.apply_org_wide,
        apply_workspace_wide=grant.apply_workspace_wide,
        object_type_id=grant.object_type_id,
        created_by_id=current_user.id,
    )
    await create_audit_log(
        db, current_user.id, "grant", "permission", permission.id,
        details={"role_id": role_id, **grant.model_dump(mode="json")}, **get_client_info(request),
    )
    return permission


@router.delete("/roles/{role_id}/permissions/{permission_id}", status_code=status.HTTP_204_NO_CONTENT)
async def revoke_system_role_permission(
    role_id: str,
    permission_id: str,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_admin_user)]
):
    await _system_role(db, role_id)
    await grants.revoke_permission(db, permission_id, role_id)
    await create_audit_log(
        db, current_user.id, "revoke", "permission", permission_id,
        details={"role_id": role_id}, **get_client_info(request),
    )


# ============================================================================
# Permission Check Routes
# ============================================================================

@router.post("/check", response_model=PermissionCheckResponse)
async def check_permission(
    check_request: PermissionCheckRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)]
):
    """Check if the current user has a specific permission."""
    allowed = await has_permission(
        db,
        Principal.user(current_user.id),
        check_request.resource_kind,
        check_request.action,
        check_request.organization_id,
        check_request.workspace_id,
        check_request.object_type_id,
    )
    return PermissionCheckResponse(has_permission=allowed)


# ============================================================================
# Audit Log Routes
# ============================================================================

@router.get("/audit-logs", response_model=AuditLogListResponse)
async def list_audit_logs(
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_admin_user)],
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
    organization_id: Optional[str] = None,
    user_id: Optional[str] = None,
    action: Optional[str] = None,
    resource_type: Optional[str] = None
):
    """List audit logs with optional filtering (admin only)."""
    stmt = select(AuditLog)

    if organization_id:
        stmt = stmt.where(AuditLog.organization_id == organization_id)
    if user_id:
        stmt = stmt.where(AuditLog.user_id == user_id)
    if action:
        stmt = stmt.where(AuditLog.action == action)
    if resource_type:
        stmt = stmt.where(AuditLog.resource_type == resource_type)

    total = await db.scalar(select(func.count()).select_from(stmt.subquery())) or 0

    stmt = stmt.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).offset(skip).limit(limit)
    result = await db.execute(stmt)
    logs = result.scalars().all()

    return AuditLogListResponse(
        items=[AuditLogResponse.model_validate(entry) for entry in logs],
        total=total,
        page=(skip // limit) + 1,
        page_size=limit,
        pages=(total + limit - 1) // limit,
    )
