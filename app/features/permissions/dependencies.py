"""
FastAPI dependencies for route protection and audit logging.

Implements:
- authorize(): route dependency that runs the authorization engine against
  the organization/workspace named in the path
- Audit logging helpers
"""
from typing import Annotated, Any, Dict, Optional
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.errors import ValidationError
from app.features.organizations.queries import get_organization, get_workspace
from app.features.permissions.engine import require_permission
from app.features.permissions.models import AuditLog
from app.features.permissions.principals import Principal
from app.features.permissions.vocabulary import Action, ResourceKind
from app.features.users.dependencies import get_current_user
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)


# ============================================================================
# FastAPI Dependencies
# ============================================================================

def authorize(resource_kind: ResourceKind, action: Action, use_workspace: bool = True):
    """
    FastAPI dependency to require a specific permission.

    The organization comes from the `organization_id` path parameter and,
    when present and use_workspace is set, the workspace from `workspace_id`.
    An optional `object_type_id` query parameter narrows the check.

    Usage:
        @router.delete("/organizations/{organization_id}/workspaces/{workspace_id}")
        async def delete_workspace(
            user: User = Depends(authorize(ResourceKind.WORKSPACE, Action.DELETE))
        ):
            pass

    Returns:
        Dependency function that returns the current user if they have permission

    Raises:
        PermissionDenied: the user lacks the permission
        NotFoundError: the organization or workspace does not exist
    """
    async def permission_dependency(
        request: Request,
        db: Annotated[AsyncSession, Depends(get_db)],
        current_user: Annotated[User, Depends(get_current_user)],
    ) -> User:
        organization_id = request.path_params.get("organization_id")
        if not organization_id:
            raise ValidationError("organization_id is required")

        await get_organization(db, organization_id)

        workspace_id = request.path_params.get("workspace_id") if use_workspace else None
        if workspace_id:
            await get_workspace(db, organization_id, workspace_id)

        await require_permission(
            db,
            Principal.user(current_user.id),
            resource_kind,
            action,
            organization_id,
            workspace_id,
            request.query_params.get("object_type_id"),
        )
        return current_user

    return permission_dependency


def get_client_info(request: Request) -> Dict[str, Optional[str]]:
    """IP address and user agent for audit entries."""
    return {
        "ip_address": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent"),
    }


# ============================================================================
# Audit Logging
# ============================================================================

async def create_audit_log(
    db: AsyncSession,
    user_id: Optional[str],
    action: str,
    resource_type: str,
    resource_id: Optional[str] = None,
    organization_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None
) -> AuditLog:
    """
    Create an audit log entry.

    Args:
        db: Database session
        user_id: User performing the action
        action: Action performed (e.g., "create", "update", "delete", "assign")
        resource_type: Type of resource (e.g., "role", "permission", "user")
        resource_id: ID of the resource
        organization_id: Organization context
        details: Additional details
        ip_address: Client IP address
        user_agent: Client user agent

    Returns:
        Created AuditLog object
    """
    audit_log = AuditLog(
        user_id=user_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        organization_id=organization_id,
        details=details,
        ip_address=ip_address,
        user_agent=user_agent
    )

    db.add(audit_log)
    await db.commit()
    await db.refresh(audit_log)

    log.info(
        f"Audit: user={user_id} action={action} resource={resource_type}:{resource_id} org={organization_id}"
    )

    return audit_log
