"""Organizations, workspaces, membership and user removal."""
import pytest
from sqlalchemy import select

from app.core.errors import ConflictError, NotFoundError, ValidationError
from app.features.organizations import service
from app.features.organizations.models import Organization
from app.features.organizations.queries import get_membership, get_workspace, is_member
from app.features.permissions import assignments, grants, roles, teams
from app.features.permissions.engine import has_permission
from app.features.permissions.principals import Principal, resolve_principals
from app.features.users import service as user_service
from tests.factories import add_member, make_user, make_workspace


async def test_creator_becomes_owner(db_session, org, owner):
    owner_role = await roles.get_role_by_name(db_session, "org_owner")

    assert await is_member(db_session, org.id, owner.id)
    held = await assignments.list_for_principal(db_session, Principal.user(owner.id), org.id)
    assert [(a.role_id, a.workspace_id) for a in held] == [(owner_role.id, None)]
    assert await has_permission(db_session, Principal.user(owner.id), "organization", "manage_roles", org.id)
    assert [o.id for o in await service.list_user_organizations(db_session, owner.id)] == [org.id]


async def test_organization_name_validated(db_session, owner):
    with pytest.raises(ValidationError):
        await service.create_organization(db_session, "   ", owner.id)


async def test_update_and_delete_organization(db_session, org, owner):
    ws = await make_workspace(db_session, org.id, "W1")

    updated = await service.update_organization(db_session, org.id, "Acme Corp", owner.id)
    assert updated.name == "Acme Corp"

    await service.delete_organization(db_session, org.id)
    assert await service.list_user_organizations(db_session, owner.id) == []
    with pytest.raises(NotFoundError):
        await get_workspace(db_session, org.id, ws.id)


async def test_workspaces(db_session, org):
    await make_workspace(db_session, org.id, "Beta")
    alpha = await make_workspace(db_session, org.id, "Alpha")

    assert [w.name for w in await service.list_workspaces(db_session, org.id)] == ["Alpha", "Beta"]

    renamed = await service.update_workspace(db_session, org.id, alpha.id, "Alpha 2")
    assert renamed.name == "Alpha 2"

    await service.delete_workspace(db_session, org.id, alpha.id)
    assert [w.name for w in await service.list_workspaces(db_session, org.id)] == ["Beta"]
    with pytest.raises(NotFoundError):
        await service.update_workspace(db_session, org.id, alpha.id, "Gone")


async def test_workspace_creator_becomes_its_owner(db_session, org):
    org_id = org.id
    builder = await make_user(db_session, "builder@example.com")
    await add_member(db_session, org_id, builder.id)
    creator_role = await roles.create_role(db_session, "workspace creator", organization_id=org_id)
    await grants.grant_permission(db_session, creator_role.id, "workspace", "create")
    await assignments.assign_role(db_session, Principal.user(builder.id), org_id, None, creator_role.id)
    other = await make_workspace(db_session, org_id, "Other")
    p = Principal.user(builder.id)

    ws = await service.create_workspace(db_session, org_id, "Mine", created_by_id=builder.id)

    ws_owner = await roles.get_role_by_name(db_session, "workspace_owner")
    held = await assignments.list_for_principal(db_session, p, org_id)
    assert (ws_owner.id, ws.id) in [(a.role_id, a.workspace_id) for a in held]
    assert await has_permission(db_session, p, "workspace", "read", org_id, ws.id)
    assert await has_permission(db_session, p, "workspace", "delete", org_id, ws.id)
    assert not await has_permission(db_session, p, "workspace", "read", org_id, other.id)


async def test_workspace_is_org_scoped(db_session, org, owner):
    other = await service.create_organization(db_session, "Other", owner.id)
    theirs = await make_workspace(db_session, other.id, "Theirs")
    with pytest.raises(NotFoundError):
        await get_workspace(db_session, org.id, theirs.id)


async def test_remove_member_cascades(db_session, org):
    member = await make_user(db_session, "member@example.com")
    await add_member(db_session, org.id, member.id)
    ws = await make_workspace(db_session, org.id, "W1")
    viewer = await roles.get_role_by_name(db_session, "workspace_viewer")
    await assignments.assign_role(db_session, Principal.user(member.id), org.id, ws.id, viewer.id)
    team = await teams.create_team(db_session, org.id, "Writers")
    await teams.add_team_member(db_session, team.id, member.id)

    await service.remove_member(db_session, org.id, member.id)

    assert not await is_member(db_session, org.id, member.id)
    assert (await get_membership(db_session, org.id, member.id)).is_deleted
    assert await assignments.list_for_principal(db_session, Principal.user(member.id), org.id) == []
    assert await resolve_principals(db_session, member.id) == frozenset([Principal.user(member.id)])
    assert not await has_permission(db_session, Principal.user(member.id), "workspace", "read", org.id, ws.id)
    assert member.id not in [m.user_id for m in await service.list_members(db_session, org.id)]

    with pytest.raises(NotFoundError):
        await service.remove_member(db_session, org.id, member.id)


async def test_last_owner_cannot_leave(db_session, org, owner):
    with pytest.raises(ConflictError, match="last owner"):
        await service.remove_member(db_session, org.id, owner.id)

    co_owner = await make_user(db_session, "co@example.com")
    await add_member(db_session, org.id, co_owner.id, role_name="org_owner")
    await service.remove_member(db_session, org.id, owner.id)
    assert not await is_member(db_session, org.id, owner.id)


async def test_provision_membership_is_idempotent(db_session, org):
    member = await make_user(db_session, "member@example.com")
    await add_member(db_session, org.id, member.id)
    await add_member(db_session, org.id, member.id)

    held = await assignments.list_for_principal(db_session, Principal.user(member.id), org.id)
    assert len(held) == 1
    assert len(await service.list_members(db_session, org.id)) == 2


# ============================================================================
# User removal
# ============================================================================

async def test_plain_user_is_removed_outright(db_session, org):
    member = await make_user(db_session, "member@example.com")
    await add_member(db_session, org.id, member.id)

    assert await user_service.remove_user(db_session, member.id) == {}
    with pytest.raises(NotFoundError):
        await user_service.get_user(db_session, member.id)
    assert await get_membership(db_session, org.id, member.id) is None


async def test_author_needs_a_successor(db_session, org, owner):
    with pytest.raises(ConflictError, match="successor"):
        await user_service.remove_user(db_session, owner.id)


async def test_successor_inherits_authorship_and_ownership(db_session, org, owner):
    org_id, owner_id = org.id, owner.id
    ws = await make_workspace(db_session, org_id, "W1")
    successor = await make_user(db_session, "heir@example.com")
    await teams.create_team(db_session, org_id, "Writers", created_by_id=owner_id)

    counts = await user_service.remove_user(db_session, owner_id, successor_id=successor.id)

    assert counts["organizations.created_by_id"] == 1
    assert counts["teams.created_by_id"] == 1
    created_by = await db_session.scalar(select(Organization.created_by_id).where(Organization.id == org_id))
    assert created_by == successor.id
    assert await is_member(db_session, org_id, successor.id)
    assert await has_permission(db_session, Principal.user(successor.id), "workspace", "delete", org_id, ws.id)
    assert await assignments.list_for_principal(db_session, Principal.user(owner_id), org_id) == []


async def test_successor_must_be_someone_else(db_session, org, owner):
    with pytest.raises(ValidationError):
        await user_service.remove_user(db_session, owner.id, successor_id=owner.id)
    with pytest.raises(NotFoundError):
        await user_service.remove_user(db_session, owner.id, successor_id="01HZZZZZZZZZZZZZZZZZZZZZZZ")
