"""Teams and team membership."""
import pytest

from app.core.errors import ConflictError, NotFoundError, ValidationError
from app.features.permissions import teams
from app.features.permissions.principals import Principal, resolve_principals
from tests.factories import add_member, make_user


async def test_create_and_list_teams(db_session, org):
    await teams.create_team(db_session, org.id, "Writers", "Docs people")
    await teams.create_team(db_session, org.id, "Admins")

    assert [t.name for t in await teams.list_teams(db_session, org.id)] == ["Admins", "Writers"]


async def test_team_names_unique_among_live_teams(db_session, org):
    org_id = org.id
    team = await teams.create_team(db_session, org_id, "Writers")
    team_id = team.id
    with pytest.raises(ConflictError):
        await teams.create_team(db_session, org_id, "Writers")

    await teams.delete_team(db_session, team_id)
    replacement = await teams.create_team(db_session, org_id, "Writers")
    assert replacement.id != team_id


async def test_team_name_validated(db_session, org):
    with pytest.raises(ValidationError):
        await teams.create_team(db_session, org.id, "  ")


async def test_add_and_remove_members(db_session, org):
    alice = await make_user(db_session, "alice@example.com")
    await add_member(db_session, org.id, alice.id)
    team = await teams.create_team(db_session, org.id, "Writers")

    await teams.add_team_member(db_session, team.id, alice.id)
    assert [m.user_id for m in await teams.list_team_members(db_session, team.id)] == [alice.id]
    assert Principal.team(team.id) in await resolve_principals(db_session, alice.id)

    with pytest.raises(ConflictError):
        await teams.add_team_member(db_session, team.id, alice.id)

    await teams.remove_team_member(db_session, team.id, alice.id)
    assert await teams.list_team_members(db_session, team.id) == []
    assert await resolve_principals(db_session, alice.id) == frozenset([Principal.user(alice.id)])

    with pytest.raises(NotFoundError):
        await teams.remove_team_member(db_session, team.id, alice.id)

    # Rejoining reuses the old edge
    await teams.add_team_member(db_session, team.id, alice.id)
    assert len(await teams.list_team_members(db_session, team.id)) == 1


async def test_only_org_members_join_teams(db_session, org):
    outsider = await make_user(db_session, "outsider@example.com")
    team = await teams.create_team(db_session, org.id, "Writers")
    with pytest.raises(ValidationError):
        await teams.add_team_member(db_session, team.id, outsider.id)


async def test_team_lookup_is_org_scoped(db_session, org, owner):
    from app.features.organizations.service import create_organization

    other = await create_organization(db_session, "Other", owner.id)
    team = await teams.create_team(db_session, other.id, "Writers")
    with pytest.raises(NotFoundError):
        await teams.get_team(db_session, team.id, org.id)


async def test_deleted_team_drops_out_of_principals(db_session, org):
    alice = await make_user(db_session, "alice@example.com")
    await add_member(db_session, org.id, alice.id)
    team = await teams.create_team(db_session, org.id, "Writers")
    await teams.add_team_member(db_session, team.id, alice.id)

    await teams.delete_team(db_session, team.id, org.id)

    assert await resolve_principals(db_session, alice.id) == frozenset([Principal.user(alice.id)])
    with pytest.raises(NotFoundError):
        await teams.get_team(db_session, team.id)
