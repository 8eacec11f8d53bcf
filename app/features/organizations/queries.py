"""
Read helpers for organizations, workspaces and membership.

Kept free of permission imports so the permission registries can use them.
"""
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import NotFoundError
from app.features.organizations.models import Organization, Workspace, OrganizationMember


async def get_organization(db: AsyncSession, organization_id: str) -> Organization:
    """
    Load a live organization.

    Raises:
        NotFoundError: unknown or soft-deleted organization
    """
    stmt = select(Organization).where(
        Organization.id == organization_id,
        Organization.deleted_at.is_(None),
    )
    result = await db.execute(stmt)
    organization = result.scalar_one_or_none()
    if not organization:
        raise NotFoundError("Organization not found")
    return organization


async def get_workspace(db: AsyncSession, organization_id: str, workspace_id: str) -> Workspace:
    """
    Load a live workspace that belongs to the given organization.

    A workspace of another organization is reported as missing.
    """
    stmt = select(Workspace).where(
        Workspace.id == workspace_id,
        Workspace.organization_id == organization_id,
        Workspace.deleted_at.is_(None),
    )
    result = await db.execute(stmt)
    workspace = result.scalar_one_or_none()
    if not workspace:
        raise NotFoundError("Workspace not found")
    return workspace


async def get_membership(
    db: AsyncSession, organization_id: str, user_id: str
) -> OrganizationMember | None:
    """Membership row including soft-deleted ones, or None."""
    stmt = select(OrganizationMember).where(
        OrganizationMember.organization_id == organization_id,
        OrganizationMember.user_id == user_id,
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def is_member(db: AsyncSession, organization_id: str, user_id: str) -> bool:
    membership = await get_membership(db, organization_id, user_id)
    return membership is not None and not membership.is_deleted
