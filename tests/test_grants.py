"""Permission registry: granting and revoking (kind, action) rows."""
import pytest
import pytest_asyncio

from app.core.errors import ConflictError, NotFoundError, ValidationError
from app.features.permissions import grants, roles
from app.features.permissions.vocabulary import Action, ResourceKind


@pytest_asyncio.fixture
async def role(db_session, org):
    return await roles.create_role(db_session, "Editor", organization_id=org.id)


async def test_grant_permission(db_session, role):
    permission = await grants.grant_permission(
        db_session, role.id, ResourceKind.WORKSPACE, Action.UPDATE, apply_workspace_wide=True
    )

    assert permission.role_id == role.id
    assert permission.resource_kind == "workspace"
    assert permission.action == "update"
    assert permission.apply_workspace_wide is True
    assert permission.apply_org_wide is False
    assert permission.object_type_id is None


@pytest.mark.parametrize("kind,action", [("spaceship", "read"), ("workspace", "launch")])
async def test_unknown_vocabulary_is_rejected(db_session, role, kind, action):
    with pytest.raises(ValidationError):
        await grants.grant_permission(db_session, role.id, kind, action)


async def test_object_scoped_kinds_require_object_type(db_session, role):
    with pytest.raises(ValidationError, match="required"):
        await grants.grant_permission(db_session, role.id, "object_instance", "update")
    with pytest.raises(ValidationError, match="not allowed"):
        await grants.grant_permission(db_session, role.id, "workspace", "read", object_type_id="T1")

    narrowed = await grants.grant_permission(
        db_session, role.id, "object_type", "read", object_type_id="T1"
    )
    assert narrowed.object_type_id == "T1"


async def test_duplicate_grant_conflicts(db_session, role):
    role_id = role.id
    await grants.grant_permission(db_session, role_id, "workflow", "execute")
    with pytest.raises(ConflictError):
        await grants.grant_permission(db_session, role_id, "workflow", "execute", apply_org_wide=True)

    # Same kind and action narrowed to different object types are distinct grants
    await grants.grant_permission(db_session, role_id, "object_instance", "read", object_type_id="T1")
    await grants.grant_permission(db_session, role_id, "object_instance", "read", object_type_id="T2")
    with pytest.raises(ConflictError):
        await grants.grant_permission(db_session, role_id, "object_instance", "read", object_type_id="T1")

    assert len(await grants.list_role_permissions(db_session, role_id)) == 3


async def test_grant_to_deleted_role(db_session, role, org):
    await roles.delete_role(db_session, role.id, organization_id=org.id)
    with pytest.raises(NotFoundError):
        await grants.grant_permission(db_session, role.id, "workspace", "read")


async def test_revoke_permission(db_session, role):
    permission = await grants.grant_permission(db_session, role.id, "workspace", "read")

    await grants.revoke_permission(db_session, permission.id, role_id=role.id)
    assert await grants.list_role_permissions(db_session, role.id) == []

    with pytest.raises(NotFoundError):
        await grants.revoke_permission(db_session, permission.id)

    # Revoked grants can be granted again
    await grants.grant_permission(db_session, role.id, "workspace", "read")


async def test_revoke_through_the_wrong_role(db_session, role, org):
    other_role = await roles.create_role(db_session, "Other", organization_id=org.id)
    permission = await grants.grant_permission(db_session, role.id, "workspace", "read")
    with pytest.raises(NotFoundError):
        await grants.revoke_permission(db_session, permission.id, role_id=other_role.id)
