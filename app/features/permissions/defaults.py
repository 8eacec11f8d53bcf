"""
Default system roles.

These roles have organization_id = null and are available to every
organization. Organization creation assigns OWNER_ROLE to the creator;
invitation acceptance falls back to DEFAULT_MEMBER_ROLE.
"""
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.permissions.models import Permission, Role
from app.features.permissions.vocabulary import Action, ResourceKind
from app.utils import get_logger


log = get_logger(__name__)


ORGANIZATION_ADMIN_ACTIONS = [
    Action.READ, Action.UPDATE, Action.MANAGE_MEMBERS, Action.MANAGE_TEAMS, Action.MANAGE_ROLES,
]
WORKSPACE_ACTIONS = [Action.READ, Action.CREATE, Action.UPDATE, Action.DELETE, Action.MANAGE_MEMBERS]
WORKFLOW_ACTIONS = [Action.READ, Action.CREATE, Action.UPDATE, Action.DELETE, Action.EXECUTE]


DEFAULT_ROLES = {
    "org_owner": {
        "description": "Organization owner with every organization and workspace action",
        "apply_org_wide": True,
        "permissions": [
            *((ResourceKind.ORGANIZATION, a) for a in ORGANIZATION_ADMIN_ACTIONS + [Action.DELETE]),
            *((ResourceKind.WORKSPACE, a) for a in WORKSPACE_ACTIONS),
            *((ResourceKind.WORKFLOW, a) for a in WORKFLOW_ACTIONS),
        ],
    },
    "org_admin": {
        "description": "Organization administrator",
        "apply_org_wide": True,
        "permissions": [
            *((ResourceKind.ORGANIZATION, a) for a in ORGANIZATION_ADMIN_ACTIONS),
            *((ResourceKind.WORKSPACE, a) for a in WORKSPACE_ACTIONS),
            *((ResourceKind.WORKFLOW, a) for a in WORKFLOW_ACTIONS),
        ],
    },
    "org_member": {
        "description": "Organization member with read access to the organization",
        "apply_org_wide": False,
        "permissions": [
            (ResourceKind.ORGANIZATION, Action.READ),
        ],
    },
    "workspace_owner": {
        "description": "Full control of one workspace",
        "apply_workspace_wide": True,
        "permissions": [
            (ResourceKind.WORKSPACE, Action.READ),
            (ResourceKind.WORKSPACE, Action.UPDATE),
            (ResourceKind.WORKSPACE, Action.DELETE),
            (ResourceKind.WORKSPACE, Action.MANAGE_MEMBERS),
            *((ResourceKind.WORKFLOW, a) for a in WORKFLOW_ACTIONS),
        ],
    },
    "workspace_viewer": {
        "description": "Read-only access to one workspace",
        "apply_workspace_wide": True,
        "permissions": [
            (ResourceKind.WORKSPACE, Action.READ),
            (ResourceKind.WORKFLOW, Action.READ),
        ],
    },
}


async def seed_system_roles(db: AsyncSession) -> dict[str, Role]:
    """
    Create the default system roles and their permissions.

    Idempotent: existing roles and grants are left alone, missing ones are added.

    Returns:
        Dictionary mapping role names to Role objects
    """
    roles_map: dict[str, Role] = {}

    for role_name, role_config in DEFAULT_ROLES.items():
        stmt = select(Role).where(
            Role.name == role_name,
            Role.organization_id.is_(None),
            Role.deleted_at.is_(None),
        )
        result = await db.execute(stmt)
        role = result.scalar_one_or_none()

        if role:
            log.debug(f"Role '{role_name}' already exists")
        else:
            role = Role(name=role_name, description=role_config["description"], organization_id=None)
            db.add(role)
            await db.flush()
            log.info(f"Created system role '{role_name}'")
        roles_map[role_name] = role

        result = await db.execute(
            select(Permission.resource_kind, Permission.action).where(
                Permission.role_id == role.id,
                Permission.object_type_id.is_(None),
                Permission.deleted_at.is_(None),
            )
        )
        existing = {(kind, action) for kind, action in result.all()}

        added = 0
        for kind, action in role_config["permissions"]:
            if (kind.value, action.value) in existing:
                continue
            db.add(Permission(
                role_id=role.id,
                resource_kind=kind.value,
                action=action.value,
                apply_org_wide=role_config.get("apply_org_wide", False),
                apply_workspace_wide=role_config.get("apply_workspace_wide", False),
            ))
            added += 1

        if added:
            log.info(f"Granted {added} permission(s) to system role '{role_name}'")

    await db.commit()
    return roles_map
