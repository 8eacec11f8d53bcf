"""
Organization feature routes.
"""
from typing import Annotated
from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.organizations import service
from app.features.organizations.dependencies import get_organization_by_id, get_workspace_by_id
from app.features.organizations.models import Organization, Workspace
from app.features.organizations.schemas import (
    OrganizationCreate,
    OrganizationUpdate,
    OrganizationResponse,
    WorkspaceCreate,
    WorkspaceUpdate,
    WorkspaceResponse,
    MemberResponse,
)
from app.features.permissions.dependencies import authorize, create_audit_log, get_client_info
from app.features.permissions.engine import require_permission
from app.features.permissions.principals import Principal
from app.features.permissions.vocabulary import Action, ResourceKind
from app.features.users.dependencies import get_current_user
from app.features.users.models import User


router = APIRouter(tags=["organizations"])


# Organization CRUD endpoints
@router.post("/", response_model=OrganizationResponse, status_code=status.HTTP_201_CREATED)
async def create_organization(
    org_data: OrganizationCreate,
    request: Request,
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Create a new organization. The caller becomes its owner."""
    organization = await service.create_organization(db, org_data.name, user.id)
    await create_audit_log(
        db, user.id, "create", "organization", organization.id, organization.id,
        details={"name": organization.name}, **get_client_info(request),
    )
    return organization


@router.get("/my", response_model=list[OrganizationResponse])
async def list_my_organizations(
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Organizations the current user is a member of."""
    return await service.list_user_organizations(db, user.id)


@router.get("/{organization_id}", response_model=OrganizationResponse)
async def get_organization(
    organization: Annotated[Organization, Depends(get_organization_by_id)],
    user: Annotated[User, Depends(authorize(ResourceKind.ORGANIZATION, Action.READ))]
):
    return organization


@router.patch("/{organization_id}", response_model=OrganizationResponse)
async def update_organization(
    organization_id: str,
    org_data: OrganizationUpdate,
    request: Request,
    user: Annotated[User, Depends(authorize(ResourceKind.ORGANIZATION, Action.UPDATE))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    organization = await service.update_organization(db, organization_id, org_data.name, user.id)
    await create_audit_log(
        db, user.id, "update", "organization", organization_id, organization_id,
        details={"name": organization.name}, **get_client_info(request),
    )
    return organization


@router.delete("/{organization_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_organization(
    organization_id: str,
    request: Request,
    user: Annotated[User, Depends(authorize(ResourceKind.ORGANIZATION, Action.DELETE))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    await service.delete_organization(db, organization_id)
    await create_audit_log(
        db, user.id, "delete", "organization", organization_id, organization_id,
        **get_client_info(request),
    )


# Workspace endpoints
@router.get("/{organization_id}/workspaces", response_model=list[WorkspaceResponse])
async def list_workspaces(
    organization_id: str,
    user: Annotated[User, Depends(authorize(ResourceKind.ORGANIZATION, Action.READ))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    return await service.list_workspaces(db, organization_id)


@router.post(
    "/{organization_id}/workspaces",
    response_model=WorkspaceResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_workspace(
    organization_id: str,
    workspace_data: WorkspaceCreate,
    request: Request,
    user: Annotated[User, Depends(authorize(ResourceKind.WORKSPACE, Action.CREATE))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    workspace = await service.create_workspace(db, organization_id, workspace_data.name, user.id)
    await create_audit_log(
        db, user.id, "create", "workspace", workspace.id, organization_id,
        details={"name": workspace.name}, **get_client_info(request),
    )
    return workspace


@router.get("/{organization_id}/workspaces/{workspace_id}", response_model=WorkspaceResponse)
async def get_workspace(
    workspace: Annotated[Workspace, Depends(get_workspace_by_id)],
    user: Annotated[User, Depends(authorize(ResourceKind.WORKSPACE, Action.READ))]
):
    return workspace


@router.patch("/{organization_id}/workspaces/{workspace_id}", response_model=WorkspaceResponse)
async def update_workspace(
    organization_id: str,
    workspace_id: str,
    workspace_data: WorkspaceUpdate,
    request: Request,
    user: Annotated[User, Depends(authorize(ResourceKind.WORKSPACE, Action.UPDATE))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    workspace = await service.update_workspace(
        db, organization_id, workspace_id, workspace_data.name, user.id
    )
    await create_audit_log(
        db, user.id, "update", "workspace", workspace_id, organization_id,
        details={"name": workspace.name}, **get_client_info(request),
    )
    return workspace


@router.delete(
    "/{organization_id}/workspaces/{workspace_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def delete_workspace(
    organization_id: str,
    workspace_id: str,
    request: Request,
    user: Annotated[User, Depends(authorize(ResourceKind.WORKSPACE, Action.DELETE))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    await service.delete_workspace(db, organization_id, workspace_id)
    await create_audit_log(
        db, user.id, "delete", "workspace", workspace_id, organization_id,
        **get_client_info(request),
    )


# Member endpoints
@router.get("/{organization_id}/members", response_model=list[MemberResponse])
async def list_members(
    organization_id: str,
    user: Annotated[User, Depends(authorize(ResourceKind.ORGANIZATION, Action.READ))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    return await service.list_members(db, organization_id)


@router.delete(
    "/{organization_id}/members/{user_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def remove_member(
    organization_id: str,
    user_id: str,
    request: Request,
    organization: Annotated[Organization, Depends(get_organization_by_id)],
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """
    Remove a member. Members may always leave; removing someone else
    requires organization.manage_members.
    """
    if user_id != user.id:
        await require_permission(
            db, Principal.user(user.id), ResourceKind.ORGANIZATION, Action.MANAGE_MEMBERS, organization_id
        )

    await service.remove_member(db, organization_id, user_id)
    await create_audit_log(
        db, user.id, "remove_member", "organization_member", user_id, organization_id,
        **get_client_info(request),
    )
