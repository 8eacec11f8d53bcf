"""
Authentication utilities for Appwrite JWT verification.
"""
import jwt
from typing import Optional
from fastapi.concurrency import run_in_threadpool
from appwrite.client import Client
from appwrite.services.users import Users
from appwrite.exception import AppwriteException

from app.core import config
from app.core.errors import Unauthorized
from app.utils import get_logger


log = get_logger(__name__)


class AppwriteClient:
    """Singleton Appwrite client for server-side operations."""

    _instance: Optional[Client] = None

    @classmethod
    def get_client(cls) -> Client:
        """Get or create Appwrite client instance."""
        if cls._instance is None:
            cls._instance = Client()
            cls._instance.set_endpoint(config.APPWRITE_ENDPOINT)
            cls._instance.set_project(config.APPWRITE_PROJECT_ID)
            cls._instance.set_key(config.APPWRITE_API_KEY)
        return cls._instance


def warn_if_signatures_unverified() -> bool:
    """Log a warning when tokens would be accepted without a signature check."""
    if config.JWT_SECRET:
        return False
    log.warning("JWT_SECRET is not set, bearer token signatures will not be verified")
    return True


def verify_jwt_token(token: str) -> dict:
    """
    Verify an Appwrite JWT and return its payload.

    With JWT_SECRET configured the HS256 signature is checked; otherwise the
    identity provider is trusted and only expiry is enforced.

    Raises:
        Unauthorized: token is malformed or expired
    """
    try:
        if config.JWT_SECRET:
            return jwt.decode(token, config.JWT_SECRET, algorithms=["HS256"])
        return jwt.decode(token, options={"verify_signature": False, "verify_exp": True})

    except jwt.ExpiredSignatureError:
        raise Unauthorized("Token has expired")
    except jwt.InvalidTokenError as e:
        log.debug(f"Rejected bearer token: {e}")
        raise Unauthorized("Invalid token")


def external_id_from_payload(payload: dict) -> str:
    external_id = payload.get("userId")
    if not external_id:
        raise Unauthorized("Invalid token payload")
    return external_id


async def get_appwrite_user(external_id: str) -> dict:
    """
    Get user information from Appwrite.

    Raises:
        Unauthorized: user unknown to Appwrite or API error
    """
    try:
        users = Users(AppwriteClient.get_client())
        return await run_in_threadpool(users.get, external_id)

    except AppwriteException as e:
        log.warning(f"Appwrite lookup failed for {external_id}: {e}")
        raise Unauthorized("Failed to verify user")
