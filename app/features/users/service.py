"""
User account operations.

Removing a user never destroys shared resources: anything the user
authored is handed to a successor first.
"""
from sqlalchemy import select, func, update, delete
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.errors import ConflictError, NotFoundError, ValidationError
from app.features.organizations.models import Organization, Workspace
from app.features.organizations.service import provision_membership
from app.features.permissions.models import PrincipalRoleAssignment, Role, Team
from app.features.permissions.roles import get_role_by_name
from app.features.permissions.vocabulary import PrincipalKind
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)


# (model, column name) pairs that record authorship
AUTHORSHIP_COLUMNS = [
    (Organization, "created_by_id"),
    (Organization, "updated_by_id"),
    (Workspace, "created_by_id"),
    (Workspace, "updated_by_id"),
    (Role, "created_by_id"),
    (Team, "created_by_id"),
]


async def get_user(db: AsyncSession, user_id: str) -> User:
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user is None:
        raise NotFoundError("User not found")
    return user


async def list_users(db: AsyncSession, skip: int = 0, limit: int = 50) -> list[User]:
    result = await db.execute(
        select(User)
        .where(User.is_active.is_(True))
        .order_by(User.name)
        .offset(skip)
        .limit(limit)
    )
    return list(result.scalars().all())


async def toggle_admin(db: AsyncSession, user_id: str, acting_user_id: str) -> User:
    user = await get_user(db, user_id)
    if user.id == acting_user_id:
        raise ValidationError("Cannot modify your own admin status")

    user.is_admin = not user.is_admin
    await db.commit()
    await db.refresh(user)
    log.info(f"User {user_id} admin flag set to {user.is_admin} by {acting_user_id}")
    return user


async def _authored_counts(db: AsyncSession, user_id: str) -> dict[str, int]:
    counts: dict[str, int] = {}
    for model, column in AUTHORSHIP_COLUMNS:
        count = await db.scalar(
            select(func.count()).select_from(model).where(getattr(model, column) == user_id)
        )
        if count:
            counts[f"{model.__tablename__}.{column}"] = count
    return counts


async def _sole_owned_organizations(db: AsyncSession, user_id: str) -> list[str]:
    """Organizations where this user holds the only org-level owner assignment."""
    owner_role = await get_role_by_name(db, config.OWNER_ROLE)
    if owner_role is None:
        return []

    owner_rows = (
        select(PrincipalRoleAssignment.organization_id)
        .where(
            PrincipalRoleAssignment.principal_kind == PrincipalKind.USER.value,
            PrincipalRoleAssignment.workspace_id.is_(None),
            PrincipalRoleAssignment.role_id == owner_role.id,
        )
    )
    mine = owner_rows.where(PrincipalRoleAssignment.principal_id == user_id)
    result = await db.execute(
        owner_rows.where(PrincipalRoleAssignment.organization_id.in_(mine))
        .group_by(PrincipalRoleAssignment.organization_id)
        .having(func.count() == 1)
    )
    return list(result.scalars().all())


async def remove_user(
    db: AsyncSession, user_id: str, successor_id: str | None = None
) -> dict[str, int]:
    """
    Delete a user account.

    Authorship of organizations, workspaces, roles and teams is reassigned
    to the successor, and organizations the user solely owned get the
    successor as owner. Memberships, team edges and the user's assignments
    are removed.

    Returns:
        Number of reassigned rows per "table.column"

    Raises:
        NotFoundError: user or successor missing
        ValidationError: successor is the user, or inactive
        ConflictError: the user authored or solely owns shared resources and no successor was given
    """
    user = await get_user(db, user_id)

    authored = await _authored_counts(db, user.id)
    sole_owned = await _sole_owned_organizations(db, user.id)

    if (authored or sole_owned) and successor_id is None:
        log.warning(f"Refused to remove user {user_id}: owns shared resources {authored} {sole_owned}")
        raise ConflictError("User owns shared resources; a successor is required")

    if successor_id is not None:
        successor = await get_user(db, successor_id)
        if successor.id == user.id:
            raise ValidationError("A user cannot succeed themselves")
        if not successor.is_active:
            raise ValidationError("Successor must be an active user")

        for model, column in AUTHORSHIP_COLUMNS:
            await db.execute(
                update(model)
                .where(getattr(model, column) == user.id)
                .values({column: successor.id})
                .execution_options(synchronize_session=False)
            )

        if sole_owned:
            owner_role = await get_role_by_name(db, config.OWNER_ROLE)
            for organization_id in sole_owned:
                await provision_membership(db, organization_id, successor.id, owner_role.id)

    await db.execute(
        delete(PrincipalRoleAssignment).where(
            PrincipalRoleAssignment.principal_kind == PrincipalKind.USER.value,
            PrincipalRoleAssignment.principal_id == user.id,
        )
    )
    # Memberships and team edges go with the row through ON DELETE CASCADE
    await db.delete(user)
    await db.commit()

    log.info(f"Removed user {user_id}, successor {successor_id}, reassigned {authored}")
    return authored
