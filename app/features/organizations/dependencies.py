"""
Organization-related dependency injection functions.
"""
from typing import Annotated
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.organizations.models import Organization, Workspace
from app.features.organizations.queries import get_organization, get_workspace


async def get_organization_by_id(
    organization_id: str,
    db: Annotated[AsyncSession, Depends(get_db)]
) -> Organization:
    """
    Get a live organization by ID.

    Raises:
        NotFoundError: organization missing or soft-deleted
    """
    return await get_organization(db, organization_id)


async def get_workspace_by_id(
    organization_id: str,
    workspace_id: str,
    db: Annotated[AsyncSession, Depends(get_db)]
) -> Workspace:
    """
    Get a live workspace of the organization in the path.

    Raises:
        NotFoundError: workspace missing, soft-deleted or in another organization
    """
    return await get_workspace(db, organization_id, workspace_id)
