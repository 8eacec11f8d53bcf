"""
Assignment store: which principal holds which role, where.

An assignment with workspace_id null applies to the whole organization;
otherwise it applies to that one workspace only.
"""
from sqlalchemy import select, delete, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.errors import ConflictError, NotFoundError, ValidationError
from app.features.organizations.queries import get_organization, get_workspace, is_member
from app.features.permissions.models import PrincipalRoleAssignment
from app.features.permissions.principals import Principal
from app.features.permissions.roles import get_assignable_role, get_role_by_name
from app.features.permissions.teams import get_team
from app.features.permissions.vocabulary import PrincipalKind
from app.utils import get_logger


log = get_logger(__name__)


async def _check_principal(db: AsyncSession, principal: Principal, organization_id: str) -> None:
    if principal.kind == PrincipalKind.USER:
        if not await is_member(db, organization_id, principal.id):
            raise ValidationError("User must be a member of the organization to hold a role in it")
    else:
        await get_team(db, principal.id, organization_id)


def build_assignment(
    principal: Principal,
    organization_id: str,
    workspace_id: str | None,
    role_id: str,
    assigned_by_id: str | None = None,
) -> PrincipalRoleAssignment:
    return PrincipalRoleAssignment(
        principal_kind=principal.kind.value,
        principal_id=principal.id,
        organization_id=organization_id,
        workspace_id=workspace_id,
        role_id=role_id,
        assigned_by_id=assigned_by_id,
    )


async def assign_role(
    db: AsyncSession,
    principal: Principal,
    organization_id: str,
    workspace_id: str | None,
    role_id: str,
    assigned_by_id: str | None = None,
) -> PrincipalRoleAssignment:
    """
    Give a principal a role at organization scope (workspace_id None) or in a workspace.

    Duplicate detection is left to the unique indexes, so two concurrent
    identical calls produce one row and one ConflictError.

    Raises:
        NotFoundError: organization, workspace, role or team missing
        ValidationError: user principal is not a member of the organization
        ConflictError: the assignment already exists
    """
    await get_organization(db, organization_id)
    if workspace_id is not None:
        await get_workspace(db, organization_id, workspace_id)
    await get_assignable_role(db, role_id, organization_id)
    await _check_principal(db, principal, organization_id)

    assignment = build_assignment(principal, organization_id, workspace_id, role_id, assigned_by_id)
    db.add(assignment)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        log.warning(
            f"Duplicate assignment of role {role_id} to {principal} "
            f"in org {organization_id} workspace {workspace_id}"
        )
        raise ConflictError("Role already assigned")

    await db.refresh(assignment)
    log.info(
        f"Assigned role {role_id} to {principal} in org {organization_id} "
        f"workspace {workspace_id} as {assignment.id}"
    )
    return assignment


async def get_assignment(
    db: AsyncSession, assignment_id: str, organization_id: str | None = None
) -> PrincipalRoleAssignment:
    stmt = select(PrincipalRoleAssignment).where(PrincipalRoleAssignment.id == assignment_id)
    if organization_id is not None:
        stmt = stmt.where(PrincipalRoleAssignment.organization_id == organization_id)
    result = await db.execute(stmt)
    assignment = result.scalar_one_or_none()
    if not assignment:
        raise NotFoundError("Assignment not found")
    return assignment


async def _count_owners(db: AsyncSession, organization_id: str, owner_role_id: str) -> int:
    return await db.scalar(
        select(func.count()).select_from(PrincipalRoleAssignment).where(
            PrincipalRoleAssignment.organization_id == organization_id,
            PrincipalRoleAssignment.principal_kind == PrincipalKind.USER.value,
            PrincipalRoleAssignment.workspace_id.is_(None),
            PrincipalRoleAssignment.role_id == owner_role_id,
        )
    )


async def check_not_last_owner(db: AsyncSession, assignment: PrincipalRoleAssignment) -> None:
    """
    Refuse to drop the only org-level owner assignment held by a user.

    Raises:
        ConflictError: the assignment is the last owner of its organization
    """
    if assignment.principal_kind != PrincipalKind.USER.value or assignment.workspace_id is not None:
        return
    owner_role = await get_role_by_name(db, config.OWNER_ROLE)
    if owner_role is None or assignment.role_id != owner_role.id:
        return
    if await _count_owners(db, assignment.organization_id, owner_role.id) <= 1:
        raise ConflictError("Cannot remove the last owner of the organization")


async def unassign_role(
    db: AsyncSession, assignment_id: str, organization_id: str | None = None
) -> None:
    """Remove an assignment. Assignments are hard-deleted."""
    assignment = await get_assignment(db, assignment_id, organization_id)
    await check_not_last_owner(db, assignment)
    await db.delete(assignment)
    await db.commit()
    log.info(f"Removed assignment {assignment_id}")


async def list_for_principal(
    db: AsyncSession, principal: Principal, organization_id: str
) -> list[PrincipalRoleAssignment]:
    """Direct assignments of one principal in one organization (no team expansion)."""
    stmt = (
        select(PrincipalRoleAssignment)
        .where(
            PrincipalRoleAssignment.principal_kind == principal.kind.value,
            PrincipalRoleAssignment.principal_id == principal.id,
            PrincipalRoleAssignment.organization_id == organization_id,
        )
        .order_by(PrincipalRoleAssignment.assigned_at)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def list_assignments(
    db: AsyncSession, organization_id: str, workspace_id: str | None = None
) -> list[PrincipalRoleAssignment]:
    stmt = select(PrincipalRoleAssignment).where(
        PrincipalRoleAssignment.organization_id == organization_id
    )
    if workspace_id is not None:
        stmt = stmt.where(PrincipalRoleAssignment.workspace_id == workspace_id)
    result = await db.execute(stmt.order_by(PrincipalRoleAssignment.assigned_at))
    return list(result.scalars().all())


async def remove_user_assignments(db: AsyncSession, organization_id: str, user_id: str) -> int:
    """
    Hard-delete every assignment a user holds directly in an organization.

    Does not commit; used by membership removal inside its transaction.
    """
    result = await db.execute(
        delete(PrincipalRoleAssignment).where(
            PrincipalRoleAssignment.principal_kind == PrincipalKind.USER.value,
            PrincipalRoleAssignment.principal_id == user_id,
            PrincipalRoleAssignment.organization_id == organization_id,
        )
    )
    return result.rowcount
