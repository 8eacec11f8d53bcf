"""
Organization, workspace and membership operations.

Membership and role assignment are kept consistent here: a user only
holds roles in organizations they are a live member of.
"""
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.database.base import utcnow
from app.core.errors import NotFoundError, ValidationError
from app.features.organizations.models import Organization, Workspace, OrganizationMember
from app.features.organizations.queries import (
    get_organization,
    get_workspace,
    get_membership,
)
from app.features.permissions.assignments import (
    build_assignment,
    check_not_last_owner,
    remove_user_assignments,
)
from app.features.permissions.models import PrincipalRoleAssignment, Team, TeamMember
from app.features.permissions.principals import Principal
from app.features.permissions.roles import get_role_by_name
from app.features.permissions.vocabulary import PrincipalKind
from app.utils import get_logger


log = get_logger(__name__)


def _clean_name(name: str | None, what: str) -> str:
    name = (name or "").strip()
    if not name or len(name) > 255:
        raise ValidationError(f"{what} name must be between 1 and 255 characters")
    return name


# ============================================================================
# Provisioning
# ============================================================================

async def provision_membership(
    db: AsyncSession,
    organization_id: str,
    user_id: str,
    role_id: str,
    workspace_id: str | None = None,
    invited_by_id: str | None = None,
) -> OrganizationMember:
    """
    Make a user a member of an organization holding the given role.

    Creates or reactivates the membership row and creates the assignment
    unless an identical one exists. Does not commit: callers run this inside
    their own transaction so membership and assignment land together.
    """
    membership = await get_membership(db, organization_id, user_id)
    if membership is None:
        membership = OrganizationMember(
            organization_id=organization_id,
            user_id=user_id,
            invited_by_id=invited_by_id,
        )
        db.add(membership)
    elif membership.is_deleted:
        membership.deleted_at = None
        membership.invited_by_id = invited_by_id
        membership.joined_at = utcnow()

    stmt = select(PrincipalRoleAssignment.id).where(
        PrincipalRoleAssignment.principal_kind == PrincipalKind.USER.value,
        PrincipalRoleAssignment.principal_id == user_id,
        PrincipalRoleAssignment.organization_id == organization_id,
        PrincipalRoleAssignment.role_id == role_id,
    )
    if workspace_id is None:
        stmt = stmt.where(PrincipalRoleAssignment.workspace_id.is_(None))
    else:
        stmt = stmt.where(PrincipalRoleAssignment.workspace_id == workspace_id)

    if await db.scalar(stmt) is None:
        db.add(build_assignment(
            Principal.user(user_id), organization_id, workspace_id, role_id, invited_by_id
        ))

    await db.flush()
    log.info(f"Provisioned user {user_id} into org {organization_id} with role {role_id}")
    return membership


# ============================================================================
# Organizations
# ============================================================================

async def create_organization(db: AsyncSession, name: str, creator_id: str) -> Organization:
    """
    Create an organization; the creator becomes a member holding the owner role.
    """
    name = _clean_name(name, "Organization")

    owner_role = await get_role_by_name(db, config.OWNER_ROLE)
    if owner_role is None:
        raise NotFoundError(f"System role '{config.OWNER_ROLE}' is not configured")

    organization = Organization(name=name, created_by_id=creator_id, updated_by_id=creator_id)
    db.add(organization)
    await db.flush()

    await provision_membership(db, organization.id, creator_id, owner_role.id)
    await db.commit()
    await db.refresh(organization)

    log.info(f"Created organization {organization.id} ({name}) by user {creator_id}")
    return organization


async def list_user_organizations(db: AsyncSession, user_id: str) -> list[Organization]:
    stmt = (
        select(Organization)
        .join(OrganizationMember, OrganizationMember.organization_id == Organization.id)
        .where(
            OrganizationMember.user_id == user_id,
            OrganizationMember.deleted_at.is_(None),
            Organization.deleted_at.is_(None),
        )
        .order_by(Organization.name)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def update_organization(
    db: AsyncSession, organization_id: str, name: str, updated_by_id: str | None = None
) -> Organization:
    organization = await get_organization(db, organization_id)
    organization.name = _clean_name(name, "Organization")
    organization.updated_by_id = updated_by_id
    await db.commit()
    await db.refresh(organization)
    log.info(f"Updated organization {organization_id}")
    return organization


async def delete_organization(db: AsyncSession, organization_id: str) -> None:
    """Soft-delete an organization and its workspaces."""
    organization = await get_organization(db, organization_id)
    now = utcnow()
    organization.deleted_at = now
    await db.execute(
        update(Workspace)
        .where(Workspace.organization_id == organization_id, Workspace.deleted_at.is_(None))
        .values(deleted_at=now)
    )
    await db.commit()
    log.info(f"Deleted organization {organization_id}")


# ============================================================================
# Workspaces
# ============================================================================

async def create_workspace(
    db: AsyncSession, organization_id: str, name: str, created_by_id: str | None = None
) -> Workspace:
    """
    Create a workspace; the creator, when given, becomes its owner.
    """
    await get_organization(db, organization_id)
    name = _clean_name(name, "Workspace")

    owner_role = None
    if created_by_id is not None:
        owner_role = await get_role_by_name(db, config.WORKSPACE_OWNER_ROLE)
        if owner_role is None:
            raise NotFoundError(f"System role '{config.WORKSPACE_OWNER_ROLE}' is not configured")

    workspace = Workspace(
        organization_id=organization_id,
        name=name,
        created_by_id=created_by_id,
        updated_by_id=created_by_id,
    )
    db.add(workspace)
    await db.flush()

    if owner_role is not None:
        await provision_membership(
            db, organization_id, created_by_id, owner_role.id, workspace_id=workspace.id
        )
    await db.commit()
    await db.refresh(workspace)
    log.info(f"Created workspace {workspace.id} in org {organization_id}")
    return workspace


async def list_workspaces(db: AsyncSession, organization_id: str) -> list[Workspace]:
    stmt = (
        select(Workspace)
        .where(Workspace.organization_id == organization_id, Workspace.deleted_at.is_(None))
        .order_by(Workspace.name)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def update_workspace(
    db: AsyncSession,
    organization_id: str,
    workspace_id: str,
    name: str,
    updated_by_id: str | None = None,
) -> Workspace:
    workspace = await get_workspace(db, organization_id, workspace_id)
    workspace.name = _clean_name(name, "Workspace")
    workspace.updated_by_id = updated_by_id
    await db.commit()
    await db.refresh(workspace)
    return workspace


async def delete_workspace(db: AsyncSession, organization_id: str, workspace_id: str) -> None:
    """Soft-delete a workspace and drop the assignments scoped to it."""
    workspace = await get_workspace(db, organization_id, workspace_id)
    workspace.soft_delete()
    result = await db.execute(
        select(PrincipalRoleAssignment).where(PrincipalRoleAssignment.workspace_id == workspace_id)
    )
    for assignment in result.scalars().all():
        await db.delete(assignment)
    await db.commit()
    log.info(f"Deleted workspace {workspace_id} in org {organization_id}")


# ============================================================================
# Members
# ============================================================================

async def list_members(db: AsyncSession, organization_id: str) -> list[OrganizationMember]:
    stmt = (
        select(OrganizationMember)
        .where(
            OrganizationMember.organization_id == organization_id,
            OrganizationMember.deleted_at.is_(None),
        )
        .order_by(OrganizationMember.joined_at)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def remove_member(db: AsyncSession, organization_id: str, user_id: str) -> None:
    """
    Remove a user from an organization.

    The user's direct assignments in the organization are deleted and their
    team memberships there are soft-deleted, in the same transaction.

    Raises:
        NotFoundError: the user is not a live member
        ConflictError: the user is the last owner of the organization
    """
    await get_organization(db, organization_id)
    membership = await get_membership(db, organization_id, user_id)
    if membership is None or membership.is_deleted:
        raise NotFoundError("Member not found")

    owner_role = await get_role_by_name(db, config.OWNER_ROLE)
    if owner_role is not None:
        owner_assignment = await db.scalar(
            select(PrincipalRoleAssignment).where(
                PrincipalRoleAssignment.organization_id == organization_id,
                PrincipalRoleAssignment.principal_kind == PrincipalKind.USER.value,
                PrincipalRoleAssignment.principal_id == user_id,
                PrincipalRoleAssignment.workspace_id.is_(None),
                PrincipalRoleAssignment.role_id == owner_role.id,
            )
        )
        if owner_assignment is not None:
            await check_not_last_owner(db, owner_assignment)

    now = utcnow()
    membership.deleted_at = now
    removed = await remove_user_assignments(db, organization_id, user_id)

    team_ids = select(Team.id).where(Team.organization_id == organization_id)
    await db.execute(
        update(TeamMember)
        .where(
            TeamMember.user_id == user_id,
            TeamMember.team_id.in_(team_ids),
            TeamMember.deleted_at.is_(None),
        )
        .values(deleted_at=now)
    )

    await db.commit()
    log.info(f"Removed user {user_id} from org {organization_id} ({removed} assignment(s) dropped)")
