"""
Role registry.

Roles are either system roles (organization_id is null, shared by every
organization) or custom roles of one organization.
"""
from sqlalchemy import select, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.base import utcnow
from app.core.errors import ConflictError, NotFoundError, ValidationError
from app.features.organizations.queries import get_organization
from app.features.permissions.models import Role, Permission, PrincipalRoleAssignment
from app.utils import get_logger


log = get_logger(__name__)

MAX_ROLE_NAME_LENGTH = 100


def _clean_name(name: str | None) -> str:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Role name must not be empty")
    if len(name) > MAX_ROLE_NAME_LENGTH:
        raise ValidationError(f"Role name must be at most {MAX_ROLE_NAME_LENGTH} characters")
    return name


async def create_role(
    db: AsyncSession,
    name: str,
    description: str | None = None,
    organization_id: str | None = None,
    created_by_id: str | None = None,
) -> Role:
    """
    Create a system role (no organization) or a custom organization role.

    Raises:
        ValidationError: empty or too long name
        NotFoundError: organization does not exist
        ConflictError: a live role with this name exists in the same scope
    """
    name = _clean_name(name)
    if organization_id is not None:
        await get_organization(db, organization_id)

    role = Role(
        name=name,
        description=description,
        organization_id=organization_id,
        created_by_id=created_by_id,
    )
    db.add(role)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        log.warning(f"Duplicate role name {name!r} in scope {organization_id or 'system'}")
        raise ConflictError(f"Role '{name}' already exists")

    await db.refresh(role)
    log.info(f"Created role {role.id} ({name}) in scope {organization_id or 'system'}")
    return role


async def load_role(
    db: AsyncSession,
    role_id: str,
    organization_id: str | None = None,
    for_update: bool = False,
) -> Role:
    stmt = select(Role).where(Role.id == role_id, Role.deleted_at.is_(None))
    if for_update:
        stmt = stmt.with_for_update()
    result = await db.execute(stmt)
    role = result.scalar_one_or_none()
    if not role:
        raise NotFoundError("Role not found")

    if organization_id is not None:
        # Org-scoped management surface: system roles are read-only there
        # and roles of other organizations are invisible
        if role.is_system:
            raise ConflictError("System roles cannot be modified from an organization")
        if role.organization_id != organization_id:
            raise NotFoundError("Role not found")

    return role


async def get_role(db: AsyncSession, role_id: str) -> Role:
    return await load_role(db, role_id)


async def get_role_by_name(
    db: AsyncSession, name: str, organization_id: str | None = None
) -> Role | None:
    stmt = select(Role).where(Role.name == name, Role.deleted_at.is_(None))
    if organization_id is None:
        stmt = stmt.where(Role.organization_id.is_(None))
    else:
        stmt = stmt.where(Role.organization_id == organization_id)
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def get_assignable_role(db: AsyncSession, role_id: str, organization_id: str) -> Role:
    """A live role usable inside the organization: a system role or one of its own."""
    role = await load_role(db, role_id)
    if not role.is_system and role.organization_id != organization_id:
        raise NotFoundError("Role not found")
    return role


async def list_roles(db: AsyncSession, organization_id: str | None = None) -> list[Role]:
    """
    Roles visible in a scope.

    With an organization: its custom roles plus the system roles.
    Without: system roles only.
    """
    stmt = select(Role).where(Role.deleted_at.is_(None))
    if organization_id is None:
        stmt = stmt.where(Role.organization_id.is_(None))
    else:
        stmt = stmt.where(or_(Role.organization_id.is_(None), Role.organization_id == organization_id))
    result = await db.execute(stmt.order_by(Role.name))
    return list(result.scalars().all())


async def update_role(
    db: AsyncSession,
    role_id: str,
    *,
    name: str | None = None,
    description: str | None = None,
    organization_id: str | None = None,
) -> Role:
    role = await load_role(db, role_id, organization_id)

    if name is not None:
        role.name = _clean_name(name)
    if description is not None:
        role.description = description

    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError(f"Role '{name}' already exists")

    await db.refresh(role)
    log.info(f"Updated role {role.id}")
    return role


async def delete_role(db: AsyncSession, role_id: str, organization_id: str | None = None) -> None:
    """
    Soft-delete a role together with its live permissions.

    The role row is locked first so a concurrent grant cannot attach a
    permission to it after the check.

    Raises:
        ConflictError: the role is still assigned to someone
    """
    role = await load_role(db, role_id, organization_id, for_update=True)

    in_use = await db.scalar(
        select(func.count()).select_from(PrincipalRoleAssignment).where(
            PrincipalRoleAssignment.role_id == role.id
        )
    )
    if in_use:
        await db.rollback()
        log.warning(f"Refused to delete role {role_id}: {in_use} assignment(s) reference it")
        raise ConflictError("Role is in use and cannot be deleted")

    now = utcnow()
    role.deleted_at = now
    result = await db.execute(
        select(Permission).where(Permission.role_id == role.id, Permission.deleted_at.is_(None))
    )
    for permission in result.scalars().all():
        permission.deleted_at = now

    await db.commit()
    log.info(f"Deleted role {role.id} ({role.name})")
