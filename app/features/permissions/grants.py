"""
Permission registry: the (resource kind, action) rows attached to roles.
"""
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import ConflictError, NotFoundError, ValidationError
from app.features.permissions.models import Permission, Role
from app.features.permissions.roles import load_role
from app.features.permissions.vocabulary import (
    Action,
    ResourceKind,
    OBJECT_SCOPED_KINDS,
    parse_action,
    parse_resource_kind,
)
from app.utils import get_logger


log = get_logger(__name__)


def check_object_type_usage(resource_kind: ResourceKind, object_type_id: str | None) -> None:
    """object_type_id is required for object-scoped kinds and forbidden otherwise."""
    if resource_kind in OBJECT_SCOPED_KINDS and not object_type_id:
        raise ValidationError(f"object_type_id is required for resource kind '{resource_kind.value}'")
    if resource_kind not in OBJECT_SCOPED_KINDS and object_type_id:
        raise ValidationError(f"object_type_id is not allowed for resource kind '{resource_kind.value}'")


async def grant_permission(
    db: AsyncSession,
    role_id: str,
    resource_kind: str | ResourceKind,
    action: str | Action,
    *,
    apply_org_wide: bool = False,
    apply_workspace_wide: bool = False,
    object_type_id: str | None = None,
    created_by_id: str | None = None,
    organization_id: str | None = None,
) -> Permission:
    """
    Attach a permission to a role.

    The role row is locked for the duration of the insert, pairing with the
    lock taken by delete_role.

    Args:
        organization_id: when given, the role must belong to this organization

    Raises:
        ValidationError: unknown kind/action or bad object_type_id usage
        NotFoundError: role missing or deleted
        ConflictError: the same grant already exists on the role
    """
    kind = parse_resource_kind(resource_kind)
    act = parse_action(action)
    check_object_type_usage(kind, object_type_id)

    role = await load_role(db, role_id, organization_id, for_update=True)

    permission = Permission(
        role_id=role.id,
        resource_kind=kind.value,
        action=act.value,
        apply_org_wide=apply_org_wide,
        apply_workspace_wide=apply_workspace_wide,
        object_type_id=object_type_id,
        created_by_id=created_by_id,
    )
    db.add(permission)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        log.warning(f"Duplicate grant {kind.value}.{act.value} on role {role_id}")
        raise ConflictError("Permission already granted to this role")

    await db.refresh(permission)
    log.info(
        f"Granted {kind.value}.{act.value} (object_type={object_type_id}) "
        f"to role {role_id} as permission {permission.id}"
    )
    return permission


async def revoke_permission(
    db: AsyncSession, permission_id: str, role_id: str | None = None
) -> None:
    """Soft-delete a permission row."""
    stmt = select(Permission).where(Permission.id == permission_id, Permission.deleted_at.is_(None))
    if role_id is not None:
        stmt = stmt.where(Permission.role_id == role_id)
    result = await db.execute(stmt)
    permission = result.scalar_one_or_none()
    if not permission:
        raise NotFoundError("Permission not found")

    permission.soft_delete()
    await db.commit()
    log.info(f"Revoked permission {permission_id} from role {permission.role_id}")


async def list_role_permissions(db: AsyncSession, role_id: str) -> list[Permission]:
    stmt = (
        select(Permission)
        .join(Role, Role.id == Permission.role_id)
        .where(
            Permission.role_id == role_id,
            Permission.deleted_at.is_(None),
            Role.deleted_at.is_(None),
        )
        .order_by(Permission.resource_kind, Permission.action)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())
