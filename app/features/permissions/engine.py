"""
Authorization engine.

Answers "can principal P perform action A on resource kind K in
organization O, optionally in workspace W, optionally narrowed to object
type T?".

The decision itself is made by the pure functions below over plain rows,
so the same predicate can be mirrored by a storage-level policy and tested
without a database. has_permission only loads candidate rows.

Every call reads from the database; nothing is cached.
"""
from dataclasses import dataclass
from typing import Iterable, Protocol
from sqlalchemy import select, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import PermissionDenied
from app.features.organizations.models import Organization, Workspace
from app.features.permissions.models import Permission, PrincipalRoleAssignment, Role
from app.features.permissions.principals import Principal, expand_principal
from app.features.permissions.vocabulary import Action, ResourceKind
from app.utils import get_logger


log = get_logger(__name__)


@dataclass(frozen=True)
class AccessQuery:
    resource_kind: str
    action: str
    organization_id: str
    workspace_id: str | None = None
    object_type_id: str | None = None

    def describe(self) -> str:
        return (
            f"{self.action} on {self.resource_kind} in org {self.organization_id}"
            f" workspace {self.workspace_id} object_type {self.object_type_id}"
        )


class AssignmentRow(Protocol):
    organization_id: str
    workspace_id: str | None
    role_id: str


class PermissionRow(Protocol):
    resource_kind: str
    action: str
    apply_org_wide: bool
    apply_workspace_wide: bool
    object_type_id: str | None


# ============================================================================
# Pure predicate
# ============================================================================

def assignment_in_scope(assignment: AssignmentRow, query: AccessQuery) -> bool:
    """
    Whether an assignment applies to the queried scope.

    Org-level assignments reach every workspace of their organization.
    Workspace-level assignments only reach their own workspace and never an
    org-level query.
    """
    if assignment.organization_id != query.organization_id:
        return False
    if assignment.workspace_id is None:
        return True
    return assignment.workspace_id == query.workspace_id


def permission_matches(permission: PermissionRow, query: AccessQuery) -> bool:
    """
    Whether a live permission row grants the query.

    A narrowed row (object_type_id set) grants only its own object type,
    regardless of breadth flags or workspace context.
    """
    if permission.resource_kind != query.resource_kind or permission.action != query.action:
        return False

    if permission.object_type_id is not None:
        return permission.object_type_id == query.object_type_id

    # Un-narrowed rows apply to every instance of the kind. The breadth
    # flags only widen a match, so they cannot turn this into a deny.
    return True


def evaluate(
    query: AccessQuery,
    assignments: Iterable[AssignmentRow],
    permissions_by_role: dict[str, list[PermissionRow]],
) -> bool:
    """
    Decide a query from the principal set's assignments and the live
    permissions of the roles they reference.
    """
    role_ids = {a.role_id for a in assignments if assignment_in_scope(a, query)}
    return any(
        permission_matches(permission, query)
        for role_id in role_ids
        for permission in permissions_by_role.get(role_id, ())
    )


# ============================================================================
# Database entry points
# ============================================================================

def _plain(value: str | ResourceKind | Action) -> str:
    return value.value if isinstance(value, (ResourceKind, Action)) else value


async def _scope_is_live(db: AsyncSession, query: AccessQuery) -> bool:
    """The organization is live and, when given, the workspace is a live workspace of it."""
    if query.workspace_id is None:
        stmt = select(Organization.id).where(
            Organization.id == query.organization_id,
            Organization.deleted_at.is_(None),
        )
    else:
        stmt = (
            select(Workspace.id)
            .join(Organization, Organization.id == Workspace.organization_id)
            .where(
                Workspace.id == query.workspace_id,
                Workspace.organization_id == query.organization_id,
                Workspace.deleted_at.is_(None),
                Organization.deleted_at.is_(None),
            )
        )
    return await db.scalar(stmt) is not None


async def _load_assignments(
    db: AsyncSession, principals: frozenset[Principal], query: AccessQuery
) -> list[PrincipalRoleAssignment]:
    workspace_filter = PrincipalRoleAssignment.workspace_id.is_(None)
    if query.workspace_id is not None:
        workspace_filter = or_(workspace_filter, PrincipalRoleAssignment.workspace_id == query.workspace_id)

    principal_filter = or_(*(
        and_(
            PrincipalRoleAssignment.principal_kind == p.kind.value,
            PrincipalRoleAssignment.principal_id == p.id,
        )
        for p in principals
    ))

    stmt = select(PrincipalRoleAssignment).where(
        principal_filter,
        PrincipalRoleAssignment.organization_id == query.organization_id,
        workspace_filter,
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def _load_permissions(
    db: AsyncSession, role_ids: set[str], query: AccessQuery
) -> dict[str, list[Permission]]:
    if not role_ids:
        return {}

    stmt = (
        select(Permission)
        .join(Role, Role.id == Permission.role_id)
        .where(
            Permission.role_id.in_(role_ids),
            Permission.resource_kind == query.resource_kind,
            Permission.action == query.action,
            Permission.deleted_at.is_(None),
            Role.deleted_at.is_(None),
        )
    )
    result = await db.execute(stmt)

    permissions_by_role: dict[str, list[Permission]] = {}
    for permission in result.scalars().all():
        permissions_by_role.setdefault(permission.role_id, []).append(permission)
    return permissions_by_role


async def has_permission(
    db: AsyncSession,
    principal: Principal,
    resource_kind: str | ResourceKind,
    action: str | Action,
    organization_id: str,
    workspace_id: str | None = None,
    object_type_id: str | None = None,
) -> bool:
    """
    Check whether a principal may perform an action.

    A user principal is expanded to the user plus their teams. A principal
    with no assignments, a query naming an unknown object type, and a
    deleted organization or a workspace outside the organization all yield
    False rather than an error.

    Args:
        db: Database session
        principal: User or team principal
        resource_kind: Resource kind (e.g. "workspace", "object_instance")
        action: Action (e.g. "read", "manage_members")
        organization_id: Organization the resource belongs to
        workspace_id: Workspace context, None for an org-level query
        object_type_id: Object type for typed resources

    Returns:
        True if some assignment in scope carries a matching permission
    """
    query = AccessQuery(
        resource_kind=_plain(resource_kind),
        action=_plain(action),
        organization_id=organization_id,
        workspace_id=workspace_id,
        object_type_id=object_type_id,
    )

    if not await _scope_is_live(db, query):
        log.debug(f"Principal {principal} denied {query.describe()}: scope not found")
        return False

    principals = await expand_principal(db, principal)
    assignments = await _load_assignments(db, principals, query)
    role_ids = {a.role_id for a in assignments if assignment_in_scope(a, query)}
    permissions_by_role = await _load_permissions(db, role_ids, query)

    allowed = evaluate(query, assignments, permissions_by_role)
    if allowed:
        log.debug(f"Principal {principal} granted {query.describe()}")
    else:
        log.debug(f"Principal {principal} denied {query.describe()}")
    return allowed


async def require_permission(
    db: AsyncSession,
    principal: Principal,
    resource_kind: str | ResourceKind,
    action: str | Action,
    organization_id: str,
    workspace_id: str | None = None,
    object_type_id: str | None = None,
) -> None:
    """
    Like has_permission, but raises instead of returning False.

    Raises:
        PermissionDenied: with a generic message that does not name the grant
    """
    if not await has_permission(
        db, principal, resource_kind, action, organization_id, workspace_id, object_type_id
    ):
        raise PermissionDenied()
