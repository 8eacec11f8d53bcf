"""
Invitation feature routes.
"""
from typing import Annotated
from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.database.engine import get_db
from app.core.limiter import limiter
from app.features.invitations import service
from app.features.invitations.notifications import InvitationNotifier, get_notifier
from app.features.invitations.schemas import AcceptResponse, InvitationCreate, InvitationResponse
from app.features.permissions.dependencies import authorize, create_audit_log, get_client_info
from app.features.permissions.engine import require_permission
from app.features.permissions.principals import Principal
from app.features.permissions.vocabulary import Action, ResourceKind
from app.features.users.dependencies import get_current_user
from app.features.users.models import User


router = APIRouter(tags=["invitations"])


@router.post(
    "/organizations/{organization_id}",
    response_model=InvitationResponse,
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit(config.INVITATION_RATE_LIMIT)
async def create_invitation(
    request: Request,
    organization_id: str,
    invitation_data: InvitationCreate,
    user: Annotated[User, Depends(authorize(ResourceKind.ORGANIZATION, Action.MANAGE_MEMBERS))],
    notifier: Annotated[InvitationNotifier, Depends(get_notifier)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Invite an email address into the organization."""
    invitation = await service.create_invitation(
        db, organization_id, invitation_data.email, invitation_data.role_id, user.id, notifier
    )
    await create_audit_log(
        db, user.id, "invite", "invitation", invitation.id, organization_id,
        details={"email": invitation.email, "role_id": invitation.role_id},
        **get_client_info(request),
    )
    return invitation


@router.get("/organizations/{organization_id}", response_model=list[InvitationResponse])
async def list_invitations(
    organization_id: str,
    user: Annotated[User, Depends(authorize(ResourceKind.ORGANIZATION, Action.MANAGE_MEMBERS))],
    db: Annotated[AsyncSession, Depends(get_db)],
    include_inactive: bool = False
):
    return await service.list_invitations(db, organization_id, include_inactive)


@router.get("/mine", response_model=list[InvitationResponse])
async def list_my_invitations(
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Open invitations addressed to the current user's email."""
    return await service.list_invitations_for_email(db, user.email)


@router.delete("/{invitation_id}", response_model=InvitationResponse)
async def revoke_invitation(
    invitation_id: str,
    request: Request,
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Revoke an open invitation. Requires organization.manage_members."""
    invitation = await service.get_invitation(db, invitation_id)
    organization_id = invitation.organization_id
    await require_permission(
        db, Principal.user(user.id), ResourceKind.ORGANIZATION, Action.MANAGE_MEMBERS, organization_id
    )

    invitation = await service.revoke_invitation(db, invitation_id, organization_id)
    await create_audit_log(
        db, user.id, "revoke", "invitation", invitation_id, organization_id,
        **get_client_info(request),
    )
    return invitation


@router.post("/{invitation_id}/accept", response_model=AcceptResponse)
async def accept_invitation(
    invitation_id: str,
    request: Request,
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Accept an invitation addressed to the current user. Safe to repeat."""
    result = await service.accept_invitation(db, invitation_id, user)
    if not result.already_accepted:
        await create_audit_log(
            db, user.id, "accept", "invitation", invitation_id, result.invitation.organization_id,
            **get_client_info(request),
        )
    return AcceptResponse(
        invitation=InvitationResponse.model_validate(result.invitation),
        organization_id=result.invitation.organization_id,
        already_accepted=result.already_accepted,
    )
