"""
FastAPI dependencies for authentication.
"""
from typing import Annotated
from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.base import utcnow
from app.core.database.engine import get_db
from app.core.errors import PermissionDenied, Unauthorized
from app.features.users.models import User
from app.features.users.auth import verify_jwt_token, external_id_from_payload, get_appwrite_user
from app.utils import get_logger


log = get_logger(__name__)

security = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    db: Annotated[AsyncSession, Depends(get_db)]
) -> User:
    """
    Get the current authenticated user from JWT token.

    This dependency:
    1. Extracts JWT from Authorization header
    2. Verifies JWT
    3. Looks up the local user by external id, creating it from Appwrite on first sight
    4. Updates last_login_at timestamp

    Usage:
        @router.get("/me")
        async def get_me(user: User = Depends(get_current_user)):
            return user
    """
    if credentials is None:
        raise Unauthorized()

    payload = verify_jwt_token(credentials.credentials)
    external_id = external_id_from_payload(payload)

    result = await db.execute(select(User).where(User.external_id == external_id))
    user = result.scalar_one_or_none()

    if user is None:
        appwrite_user = await get_appwrite_user(external_id)
        email = (appwrite_user.get("email") or "").strip().lower()
        if not email:
            raise Unauthorized("Identity has no email address")

        user = User(
            external_id=external_id,
            email=email,
            name=appwrite_user.get("name") or email,
            last_login_at=utcnow(),
        )
        db.add(user)
        log.info(f"Provisioned local user for external id {external_id}")
    else:
        user.last_login_at = utcnow()

    await db.commit()
    await db.refresh(user)

    if not user.is_active:
        raise PermissionDenied("User account is deactivated")

    return user


async def get_current_admin_user(
    user: Annotated[User, Depends(get_current_user)]
) -> User:
    """
    Require platform admin privileges.

    Usage:
        @router.delete("/users/{user_id}")
        async def delete_user(
            user_id: str,
            admin: User = Depends(get_current_admin_user)
        ):
            ...
    """
    if not user.is_admin:
        raise PermissionDenied("Admin privileges required")
    return user


def get_authorization_header(request: Request) -> str:
    """
    Extract authorization header for rate limiting.
    Used with slowapi Limiter.
    """
    auth = request.headers.get("Authorization", "")
    return auth or "anonymous"
