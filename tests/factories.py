"""Helpers for building test data. Imported after conftest has set the environment."""
from datetime import datetime, timedelta, timezone

import jwt

from app.core import config
from app.features.organizations import service as org_service
from app.features.organizations.models import Workspace
from app.features.permissions.roles import get_role_by_name
from app.features.users.models import User


async def make_user(db, email: str, name: str | None = None, is_admin: bool = False) -> User:
    user = User(
        external_id=f"ext-{email}",
        email=email.lower(),
        name=name or email.split("@")[0],
        is_admin=is_admin,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


async def make_workspace(db, organization_id: str, name: str) -> Workspace:
    return await org_service.create_workspace(db, organization_id, name)


async def add_member(db, organization_id: str, user_id: str, role_name: str = "org_member") -> None:
    """Provision a user into an organization with a system role."""
    role = await get_role_by_name(db, role_name)
    await org_service.provision_membership(db, organization_id, user_id, role.id)
    await db.commit()


def auth_headers(user: User) -> dict:
    """Bearer token the app accepts for this user."""
    token = jwt.encode(
        {"userId": user.external_id, "exp": datetime.now(timezone.utc) + timedelta(hours=1)},
        config.JWT_SECRET,
        algorithm="HS256",
    )
    return {"Authorization": f"Bearer {token}"}
