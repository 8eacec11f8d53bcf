"""HTTP flows through the FastAPI app."""
from app.features.permissions import roles
from tests.factories import add_member, auth_headers, make_user, make_workspace


async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


async def test_missing_token_is_401(client):
    response = await client.get("/users/me")
    assert response.status_code == 401
    assert response.headers["www-authenticate"] == "Bearer"
    assert response.json() == {"detail": "Authentication required"}


async def test_garbage_token_is_401(client):
    response = await client.get("/users/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401


def test_missing_jwt_secret_is_warned(monkeypatch, caplog):
    from app.core import config
    from app.features.users.auth import warn_if_signatures_unverified

    assert not warn_if_signatures_unverified()

    monkeypatch.setattr(config, "JWT_SECRET", None)
    with caplog.at_level("WARNING"):
        assert warn_if_signatures_unverified()
    assert "JWT_SECRET is not set" in caplog.text


async def test_me(client, owner):
    response = await client.get("/users/me", headers=auth_headers(owner))
    assert response.status_code == 200
    assert response.json()["email"] == "owner@example.com"


async def test_create_organization_makes_caller_owner(client, db_session):
    founder = await make_user(db_session, "founder@example.com")
    headers = auth_headers(founder)

    response = await client.post("/organizations/", json={"name": "Initech"}, headers=headers)
    assert response.status_code == 201
    org_id = response.json()["id"]

    mine = await client.get("/organizations/my", headers=headers)
    assert [o["id"] for o in mine.json()] == [org_id]

    check = await client.post(
        "/permissions/check",
        json={"resource_kind": "organization", "action": "manage_roles", "organization_id": org_id},
        headers=headers,
    )
    assert check.json() == {"has_permission": True}


async def test_outsider_is_denied_without_detail(client, db_session, org):
    outsider = await make_user(db_session, "outsider@example.com")

    response = await client.get(f"/organizations/{org.id}/members", headers=auth_headers(outsider))
    assert response.status_code == 403
    assert response.json() == {"detail": "You do not have permission to perform this action"}


async def test_unknown_organization_is_404(client, owner):
    response = await client.get("/organizations/01HZZZZZZZZZZZZZZZZZZZZZZZ", headers=auth_headers(owner))
    assert response.status_code == 404
    assert response.json() == {"detail": "Organization not found"}


async def test_check_rejects_unknown_vocabulary(client, owner, org):
    response = await client.post(
        "/permissions/check",
        json={"resource_kind": "spaceship", "action": "read", "organization_id": org.id},
        headers=auth_headers(owner),
    )
    assert response.status_code == 400
    assert "resource_kind" in response.json()


async def test_custom_role_grant_and_workspace_assignment(client, db_session, org, owner):
    member = await make_user(db_session, "member@example.com")
    await add_member(db_session, org.id, member.id)
    ws1 = await make_workspace(db_session, org.id, "W1")
    ws2 = await make_workspace(db_session, org.id, "W2")
    headers = auth_headers(owner)
    base = f"/permissions/organizations/{org.id}"

    role = await client.post(f"{base}/roles", json={"name": "Runner"}, headers=headers)
    assert role.status_code == 201
    role_id = role.json()["id"]
    assert role.json()["is_system"] is False

    grant = await client.post(
        f"{base}/roles/{role_id}/permissions",
        json={"resource_kind": "workflow", "action": "execute", "apply_workspace_wide": True},
        headers=headers,
    )
    assert grant.status_code == 201

    body = {"principal_kind": "user", "principal_id": member.id, "role_id": role_id, "workspace_id": ws1.id}
    assigned = await client.post(f"{base}/assignments", json=body, headers=headers)
    assert assigned.status_code == 201
    assert assigned.json()["workspace_id"] == ws1.id

    duplicate = await client.post(f"{base}/assignments", json=body, headers=headers)
    assert duplicate.status_code == 409
    assert duplicate.json() == {"detail": "Role already assigned"}

    async def can_execute(workspace_id):
        response = await client.post(
            "/permissions/check",
            json={
                "resource_kind": "workflow",
                "action": "execute",
                "organization_id": org.id,
                "workspace_id": workspace_id,
            },
            headers=auth_headers(member),
        )
        return response.json()["has_permission"]

    assert await can_execute(ws1.id)
    assert not await can_execute(ws2.id)

    detail = await client.get(f"{base}/roles/{role_id}", headers=headers)
    assert [(p["resource_kind"], p["action"]) for p in detail.json()["permissions"]] == [("workflow", "execute")]

    in_use = await client.delete(f"{base}/roles/{role_id}", headers=headers)
    assert in_use.status_code == 409

    removed = await client.delete(f"{base}/assignments/{assigned.json()['id']}", headers=headers)
    assert removed.status_code == 204
    assert not await can_execute(ws1.id)

    deleted = await client.delete(f"{base}/roles/{role_id}", headers=headers)
    assert deleted.status_code == 204


async def test_grant_payload_checks_object_type(client, org, owner):
    headers = auth_headers(owner)
    base = f"/permissions/organizations/{org.id}"
    role_id = (await client.post(f"{base}/roles", json={"name": "Typed"}, headers=headers)).json()["id"]

    response = await client.post(
        f"{base}/roles/{role_id}/permissions",
        json={"resource_kind": "object_instance", "action": "update"},
        headers=headers,
    )
    assert response.status_code == 400


async def test_system_roles_are_read_only_inside_an_org(client, db_session, org, owner):
    system_role = await roles.get_role_by_name(db_session, "org_member")
    response = await client.patch(
        f"/permissions/organizations/{org.id}/roles/{system_role.id}",
        json={"name": "renamed"},
        headers=auth_headers(owner),
    )
    assert response.status_code == 409


async def test_system_role_management_is_admin_only(client, db_session, owner):
    admin = await make_user(db_session, "admin@example.com", is_admin=True)

    denied = await client.post("/permissions/roles", json={"name": "auditor"}, headers=auth_headers(owner))
    assert denied.status_code == 403

    created = await client.post("/permissions/roles", json={"name": "auditor"}, headers=auth_headers(admin))
    assert created.status_code == 201
    assert created.json()["is_system"] is True

    listed = await client.get("/permissions/roles", headers=auth_headers(owner))
    assert "auditor" in [r["name"] for r in listed.json()]


async def test_teams_over_http(client, db_session, org, owner):
    member = await make_user(db_session, "member@example.com")
    await add_member(db_session, org.id, member.id)
    headers = auth_headers(owner)
    base = f"/permissions/organizations/{org.id}/teams"

    team = await client.post(base, json={"name": "Writers"}, headers=headers)
    assert team.status_code == 201
    team_id = team.json()["id"]

    added = await client.post(f"{base}/{team_id}/members", json={"user_id": member.id}, headers=headers)
    assert added.status_code == 201
    again = await client.post(f"{base}/{team_id}/members", json={"user_id": member.id}, headers=headers)
    assert again.status_code == 409

    # Plain members may look but not touch
    listed = await client.get(f"{base}/{team_id}/members", headers=auth_headers(member))
    assert [m["user_id"] for m in listed.json()] == [member.id]
    forbidden = await client.delete(f"{base}/{team_id}", headers=auth_headers(member))
    assert forbidden.status_code == 403


async def test_workspace_permissions_over_http(client, db_session, org, owner):
    viewer = await make_user(db_session, "viewer@example.com")
    await add_member(db_session, org.id, viewer.id)
    headers = auth_headers(owner)

    created = await client.post(f"/organizations/{org.id}/workspaces", json={"name": "Docs"}, headers=headers)
    assert created.status_code == 201
    ws_id = created.json()["id"]

    viewer_role = await roles.get_role_by_name(db_session, "workspace_viewer")
    assigned = await client.post(
        f"/permissions/organizations/{org.id}/assignments",
        json={"principal_kind": "user", "principal_id": viewer.id, "role_id": viewer_role.id, "workspace_id": ws_id},
        headers=headers,
    )
    assert assigned.status_code == 201

    seen = await client.get(f"/organizations/{org.id}/workspaces/{ws_id}", headers=auth_headers(viewer))
    assert seen.status_code == 200
    assert seen.json()["name"] == "Docs"

    blocked = await client.delete(f"/organizations/{org.id}/workspaces/{ws_id}", headers=auth_headers(viewer))
    assert blocked.status_code == 403

    gone = await client.delete(f"/organizations/{org.id}/workspaces/{ws_id}", headers=headers)
    assert gone.status_code == 204
    missing = await client.get(f"/organizations/{org.id}/workspaces/{ws_id}", headers=headers)
    assert missing.status_code == 404


async def test_members_leave_but_cannot_remove_others(client, db_session, org, owner):
    alice = await make_user(db_session, "alice@example.com")
    bob = await make_user(db_session, "bob@example.com")
    await add_member(db_session, org.id, alice.id)
    await add_member(db_session, org.id, bob.id)

    response = await client.delete(f"/organizations/{org.id}/members/{bob.id}", headers=auth_headers(alice))
    assert response.status_code == 403

    response = await client.delete(f"/organizations/{org.id}/members/{alice.id}", headers=auth_headers(alice))
    assert response.status_code == 204

    response = await client.delete(f"/organizations/{org.id}/members/{owner.id}", headers=auth_headers(owner))
    assert response.status_code == 409


async def test_invitation_flow(client, db_session, org, owner, notifier):
    invitee = await make_user(db_session, "new@example.com")

    created = await client.post(
        f"/invitations/organizations/{org.id}", json={"email": "New@Example.com"}, headers=auth_headers(owner)
    )
    assert created.status_code == 201
    invitation = created.json()
    assert invitation["status"] == "pending"
    assert notifier.sent == [invitation["id"]]

    mine = await client.get("/invitations/mine", headers=auth_headers(invitee))
    assert [i["id"] for i in mine.json()] == [invitation["id"]]

    accepted = await client.post(f"/invitations/{invitation['id']}/accept", headers=auth_headers(invitee))
    assert accepted.status_code == 200
    assert accepted.json()["already_accepted"] is False
    assert accepted.json()["organization_id"] == org.id

    again = await client.post(f"/invitations/{invitation['id']}/accept", headers=auth_headers(invitee))
    assert again.status_code == 200
    assert again.json()["already_accepted"] is True

    orgs = await client.get("/organizations/my", headers=auth_headers(invitee))
    assert [o["id"] for o in orgs.json()] == [org.id]


async def test_invitation_requires_manage_members(client, db_session, org):
    member = await make_user(db_session, "member@example.com")
    await add_member(db_session, org.id, member.id)

    response = await client.post(
        f"/invitations/organizations/{org.id}", json={"email": "x@example.com"}, headers=auth_headers(member)
    )
    assert response.status_code == 403


async def test_invitation_delivery_failure_is_reported(client, org, owner, notifier):
    notifier.fail = True
    response = await client.post(
        f"/invitations/organizations/{org.id}", json={"email": "new@example.com"}, headers=auth_headers(owner)
    )
    assert response.status_code == 502
    invitation_id = response.json()["invitation_id"]

    listed = await client.get(f"/invitations/organizations/{org.id}", headers=auth_headers(owner))
    assert [i["id"] for i in listed.json()] == [invitation_id]


async def test_invitation_for_someone_else_is_forbidden(client, db_session, org, owner):
    intruder = await make_user(db_session, "intruder@example.com")
    created = await client.post(
        f"/invitations/organizations/{org.id}", json={"email": "new@example.com"}, headers=auth_headers(owner)
    )
    response = await client.post(f"/invitations/{created.json()['id']}/accept", headers=auth_headers(intruder))
    assert response.status_code == 403


async def test_revoke_invitation(client, org, owner):
    created = await client.post(
        f"/invitations/organizations/{org.id}", json={"email": "new@example.com"}, headers=auth_headers(owner)
    )
    revoked = await client.delete(f"/invitations/{created.json()['id']}", headers=auth_headers(owner))
    assert revoked.status_code == 200
    assert revoked.json()["status"] == "revoked"

    twice = await client.delete(f"/invitations/{created.json()['id']}", headers=auth_headers(owner))
    assert twice.status_code == 409


async def test_audit_log_records_mutations(client, db_session, org, owner):
    admin = await make_user(db_session, "admin@example.com", is_admin=True)
    await client.post(f"/organizations/{org.id}/workspaces", json={"name": "Docs"}, headers=auth_headers(owner))

    denied = await client.get("/permissions/audit-logs", headers=auth_headers(owner))
    assert denied.status_code == 403

    response = await client.get(
        "/permissions/audit-logs", params={"organization_id": org.id}, headers=auth_headers(admin)
    )
    assert response.status_code == 200
    page = response.json()
    assert page["total"] == 1
    entry = page["items"][0]
    assert (entry["action"], entry["resource_type"], entry["user_id"]) == ("create", "workspace", owner.id)


async def test_user_removal_needs_successor(client, db_session, org, owner):
    admin = await make_user(db_session, "admin@example.com", is_admin=True)
    heir = await make_user(db_session, "heir@example.com")

    refused = await client.delete(f"/users/{owner.id}", headers=auth_headers(admin))
    assert refused.status_code == 409

    removed = await client.delete(f"/users/{owner.id}", params={"successor_id": heir.id}, headers=auth_headers(admin))
    assert removed.status_code == 200
    assert removed.json()["reassigned"]["organizations.created_by_id"] == 1

    self_delete = await client.delete(f"/users/{admin.id}", headers=auth_headers(admin))
    assert self_delete.status_code == 400
