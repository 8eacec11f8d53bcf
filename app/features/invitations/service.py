"""
Invitation lifecycle: create, accept, revoke.

Acceptance is one transaction: a conditional update claims the invitation,
then provisioning creates the membership and the role assignment. A second
or concurrent accept loses the claim and writes nothing.
"""
from dataclasses import dataclass
from datetime import timedelta
from sqlalchemy import select, func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.database.base import utcnow
from app.core.errors import (
    ConflictError,
    InvitationDeliveryError,
    NotFoundError,
    PermissionDenied,
    ValidationError,
)
from app.features.invitations.models import Invitation, InvitationStatus
from app.features.invitations.notifications import InvitationNotifier, NotificationError
from app.features.organizations.models import OrganizationMember
from app.features.organizations.queries import get_organization
from app.features.organizations.service import provision_membership
from app.features.permissions.roles import get_assignable_role, get_role_by_name
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)


@dataclass
class AcceptResult:
    invitation: Invitation
    already_accepted: bool = False


def normalize_email(email: str | None) -> str:
    email = (email or "").strip().lower()
    if not email or "@" not in email:
        raise ValidationError("A valid email address is required")
    return email


async def get_invitation(
    db: AsyncSession, invitation_id: str, organization_id: str | None = None
) -> Invitation:
    """Load an invitation in any state."""
    stmt = select(Invitation).where(Invitation.id == invitation_id)
    if organization_id is not None:
        stmt = stmt.where(Invitation.organization_id == organization_id)
    result = await db.execute(stmt)
    invitation = result.scalar_one_or_none()
    if not invitation:
        raise NotFoundError("Invitation not found")
    return invitation


async def _is_live_member(db: AsyncSession, organization_id: str, email: str) -> bool:
    stmt = (
        select(OrganizationMember.user_id)
        .join(User, User.id == OrganizationMember.user_id)
        .where(
            OrganizationMember.organization_id == organization_id,
            OrganizationMember.deleted_at.is_(None),
            func.lower(User.email) == email,
        )
    )
    return await db.scalar(stmt) is not None


async def create_invitation(
    db: AsyncSession,
    organization_id: str,
    email: str,
    role_id: str | None,
    invited_by_id: str | None,
    notifier: InvitationNotifier,
) -> Invitation:
    """
    Store a new invitation and hand it to the notifier.

    The caller must already hold organization.manage_members.

    Raises:
        ValidationError: malformed email
        NotFoundError: organization or role missing
        ConflictError: already a member, or an open invitation exists
        InvitationDeliveryError: the row is stored but the notifier failed
    """
    email = normalize_email(email)
    await get_organization(db, organization_id)
    if role_id is not None:
        await get_assignable_role(db, role_id, organization_id)

    if await _is_live_member(db, organization_id, email):
        raise ConflictError("User is already a member of this organization")

    result = await db.execute(
        select(Invitation).where(
            Invitation.organization_id == organization_id,
            Invitation.email == email,
            Invitation.accepted_at.is_(None),
            Invitation.deleted_at.is_(None),
        )
    )
    existing = result.scalar_one_or_none()
    if existing:
        if existing.status != InvitationStatus.EXPIRED:
            raise ConflictError("An invitation for this email is already pending")
        # Expired offers are replaced by the new one
        existing.soft_delete()
        await db.flush()
        log.info(f"Replaced expired invitation {existing.id} for {email}")

    invitation = Invitation(
        email=email,
        organization_id=organization_id,
        invited_by_id=invited_by_id,
        role_id=role_id,
        expiry_at=utcnow() + timedelta(days=config.INVITATION_EXPIRY_DAYS),
    )
    db.add(invitation)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        log.warning(f"Concurrent invitation for {email} to org {organization_id}")
        raise ConflictError("An invitation for this email is already pending")

    await db.refresh(invitation)
    log.info(f"Created invitation {invitation.id} for {email} to org {organization_id}")

    try:
        await notifier.send(invitation)
    except NotificationError:
        log.warning(f"Invitation {invitation.id} stored but not delivered")
        raise InvitationDeliveryError(invitation.id)

    return invitation


async def _role_for(db: AsyncSession, invitation: Invitation) -> str:
    """Role offered by the invitation, or the default member role."""
    if invitation.role_id is not None:
        try:
            role = await get_assignable_role(db, invitation.role_id, invitation.organization_id)
            return role.id
        except NotFoundError:
            log.warning(
                f"Role {invitation.role_id} of invitation {invitation.id} is gone, "
                f"falling back to '{config.DEFAULT_MEMBER_ROLE}'"
            )

    role = await get_role_by_name(db, config.DEFAULT_MEMBER_ROLE)
    if role is None:
        raise NotFoundError(f"System role '{config.DEFAULT_MEMBER_ROLE}' is not configured")
    return role.id


async def accept_invitation(db: AsyncSession, invitation_id: str, user: User) -> AcceptResult:
    """
    Accept an invitation on behalf of the signed-in user.

    Raises:
        NotFoundError: unknown or revoked invitation, or organization gone
        PermissionDenied: the invitation is addressed to another email
        ConflictError: the invitation has expired, or provisioning conflicted
    """
    invitation = await get_invitation(db, invitation_id)

    if invitation.email != user.email.strip().lower():
        raise PermissionDenied("This invitation was sent to a different email address")

    invitation_status = invitation.status
    if invitation_status == InvitationStatus.ACCEPTED:
        log.info(f"Invitation {invitation_id} already accepted")
        return AcceptResult(invitation, already_accepted=True)
    if invitation_status == InvitationStatus.REVOKED:
        raise NotFoundError("Invitation not found")
    if invitation_status == InvitationStatus.EXPIRED:
        raise ConflictError("Invitation has expired")

    organization_id = invitation.organization_id
    await get_organization(db, organization_id)
    role_id = await _role_for(db, invitation)

    try:
        claim = await db.execute(
            update(Invitation)
            .where(
                Invitation.id == invitation_id,
                Invitation.accepted_at.is_(None),
                Invitation.deleted_at.is_(None),
            )
            .values(accepted_at=utcnow(), accepted_by_id=user.id)
            .execution_options(synchronize_session=False)
        )
        if claim.rowcount == 0:
            # Lost the race to another accept (or a revoke)
            await db.rollback()
            invitation = await get_invitation(db, invitation_id)
            if invitation.status == InvitationStatus.ACCEPTED:
                return AcceptResult(invitation, already_accepted=True)
            raise NotFoundError("Invitation not found")

        await provision_membership(
            db, organization_id, user.id, role_id, invited_by_id=invitation.invited_by_id
        )
        await db.commit()
    except IntegrityError:
        # The rollback also undoes our claim; only a concurrent accept counts
        await db.rollback()
        invitation = await get_invitation(db, invitation_id)
        if invitation.accepted_at is not None:
            log.info(f"Invitation {invitation_id} was accepted concurrently")
            return AcceptResult(invitation, already_accepted=True)
        log.warning(f"Provisioning for invitation {invitation_id} conflicted, nothing was written")
        raise ConflictError("Invitation could not be accepted, please try again")

    await db.refresh(invitation)
    log.info(f"User {user.id} accepted invitation {invitation_id} to org {organization_id}")
    return AcceptResult(invitation)


async def revoke_invitation(
    db: AsyncSession, invitation_id: str, organization_id: str | None = None
) -> Invitation:
    """
    Revoke a pending (or expired) invitation.

    Memberships and assignments created by an earlier acceptance are not touched.

    Raises:
        ConflictError: the invitation is accepted or already revoked
    """
    invitation = await get_invitation(db, invitation_id, organization_id)
    if invitation.accepted_at is not None:
        raise ConflictError("Invitation has already been accepted")
    if invitation.deleted_at is not None:
        raise ConflictError("Invitation has already been revoked")

    invitation.soft_delete()
    await db.commit()
    log.info(f"Revoked invitation {invitation_id}")
    return invitation


async def list_invitations(
    db: AsyncSession, organization_id: str, include_inactive: bool = False
) -> list[Invitation]:
    """Open invitations of an organization (expired ones included), newest first."""
    stmt = select(Invitation).where(Invitation.organization_id == organization_id)
    if not include_inactive:
        stmt = stmt.where(Invitation.accepted_at.is_(None), Invitation.deleted_at.is_(None))
    result = await db.execute(stmt.order_by(Invitation.created_at.desc(), Invitation.id.desc()))
    return list(result.scalars().all())


async def list_invitations_for_email(db: AsyncSession, email: str) -> list[Invitation]:
    """Pending, unexpired invitations addressed to an email."""
    stmt = select(Invitation).where(
        Invitation.email == normalize_email(email),
        Invitation.accepted_at.is_(None),
        Invitation.deleted_at.is_(None),
        Invitation.expiry_at > utcnow(),
    )
    result = await db.execute(stmt.order_by(Invitation.created_at.desc()))
    return list(result.scalars().all())
