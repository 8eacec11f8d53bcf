"""Role registry and system role seeding."""
import pytest

from app.core.errors import ConflictError, NotFoundError, ValidationError
from app.features.organizations.service import create_organization
from app.features.permissions import assignments, grants, roles
from app.features.permissions.defaults import DEFAULT_ROLES, seed_system_roles
from app.features.permissions.principals import Principal
from tests.factories import add_member, make_user


async def test_system_roles_are_seeded(db_session):
    system_roles = await roles.list_roles(db_session)
    assert {r.name for r in system_roles} == set(DEFAULT_ROLES)
    assert all(r.is_system for r in system_roles)


async def test_seeding_twice_adds_nothing(db_session):
    before = await roles.list_roles(db_session)
    seeded = await seed_system_roles(db_session)
    after = await roles.list_roles(db_session)

    assert {r.id for r in before} == {r.id for r in after}
    assert {name: r.id for name, r in seeded.items()} == {r.name: r.id for r in after}
    owner = seeded["org_owner"]
    perms = await grants.list_role_permissions(db_session, owner.id)
    assert len(perms) == len(DEFAULT_ROLES["org_owner"]["permissions"])


async def test_create_custom_role(db_session, org):
    role = await roles.create_role(db_session, "  Reviewer ", "Reviews things", organization_id=org.id)

    assert role.name == "Reviewer"
    assert role.organization_id == org.id
    assert not role.is_system

    visible = await roles.list_roles(db_session, org.id)
    names = [r.name for r in visible]
    assert "Reviewer" in names
    assert "org_owner" in names
    assert "Reviewer" not in [r.name for r in await roles.list_roles(db_session)]


@pytest.mark.parametrize("name", ["", "   ", "x" * 101])
async def test_role_name_is_validated(db_session, org, name):
    with pytest.raises(ValidationError):
        await roles.create_role(db_session, name, organization_id=org.id)


async def test_role_names_unique_per_scope(db_session, org, owner):
    # A failed insert rolls the session back and expires loaded rows
    org_id, owner_id = org.id, owner.id

    await roles.create_role(db_session, "Reviewer", organization_id=org_id)
    with pytest.raises(ConflictError):
        await roles.create_role(db_session, "Reviewer", organization_id=org_id)

    # Another organization and the system scope are separate namespaces
    other = await create_organization(db_session, "Other", owner_id)
    await roles.create_role(db_session, "Reviewer", organization_id=other.id)
    await roles.create_role(db_session, "Reviewer")

    # A custom role may shadow a system role name
    await roles.create_role(db_session, "org_member", organization_id=org_id)


async def test_create_role_in_unknown_org(db_session):
    with pytest.raises(NotFoundError):
        await roles.create_role(db_session, "Reviewer", organization_id="01HZZZZZZZZZZZZZZZZZZZZZZZ")


async def test_update_role(db_session, org):
    role = await roles.create_role(db_session, "Reviewer", organization_id=org.id)
    await roles.create_role(db_session, "Approver", organization_id=org.id)

    updated = await roles.update_role(db_session, role.id, description="Reads PRs", organization_id=org.id)
    assert updated.description == "Reads PRs"
    assert updated.name == "Reviewer"

    with pytest.raises(ConflictError):
        await roles.update_role(db_session, role.id, name="Approver", organization_id=org.id)


async def test_org_surface_cannot_touch_system_or_foreign_roles(db_session, org, owner):
    system_role = await roles.get_role_by_name(db_session, "org_member")
    with pytest.raises(ConflictError):
        await roles.update_role(db_session, system_role.id, name="renamed", organization_id=org.id)
    with pytest.raises(ConflictError):
        await roles.delete_role(db_session, system_role.id, organization_id=org.id)

    other = await create_organization(db_session, "Other", owner.id)
    foreign = await roles.create_role(db_session, "Foreign", organization_id=other.id)
    with pytest.raises(NotFoundError):
        await roles.delete_role(db_session, foreign.id, organization_id=org.id)


async def test_delete_unused_role_cascades_to_permissions(db_session, org):
    role = await roles.create_role(db_session, "Reviewer", organization_id=org.id)
    await grants.grant_permission(db_session, role.id, "workspace", "read")

    await roles.delete_role(db_session, role.id, organization_id=org.id)

    with pytest.raises(NotFoundError):
        await roles.get_role(db_session, role.id)
    assert await grants.list_role_permissions(db_session, role.id) == []
    # The name is free again
    again = await roles.create_role(db_session, "Reviewer", organization_id=org.id)
    assert again.id != role.id


async def test_delete_role_in_use_is_refused(db_session, org):
    member = await make_user(db_session, "member@example.com")
    await add_member(db_session, org.id, member.id)
    role = await roles.create_role(db_session, "Reviewer", organization_id=org.id)
    role_id, org_id = role.id, org.id
    await grants.grant_permission(db_session, role_id, "workspace", "read")
    await assignments.assign_role(db_session, Principal.user(member.id), org_id, None, role_id)

    with pytest.raises(ConflictError, match="in use"):
        await roles.delete_role(db_session, role_id, organization_id=org_id)

    assert (await roles.get_role(db_session, role_id)).deleted_at is None
    assert len(await grants.list_role_permissions(db_session, role_id)) == 1


async def test_get_assignable_role(db_session, org, owner):
    system_role = await roles.get_role_by_name(db_session, "workspace_viewer")
    assert (await roles.get_assignable_role(db_session, system_role.id, org.id)).id == system_role.id

    other = await create_organization(db_session, "Other", owner.id)
    foreign = await roles.create_role(db_session, "Foreign", organization_id=other.id)
    with pytest.raises(NotFoundError):
        await roles.get_assignable_role(db_session, foreign.id, org.id)
