"""
Team management.

Teams live inside one organization and only hold members of that
organization.
"""
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.base import utcnow
from app.core.errors import ConflictError, NotFoundError, ValidationError
from app.features.organizations.queries import get_organization, is_member
from app.features.permissions.models import Team, TeamMember, PrincipalRoleAssignment
from app.features.permissions.vocabulary import PrincipalKind
from app.utils import get_logger


log = get_logger(__name__)


async def create_team(
    db: AsyncSession,
    organization_id: str,
    name: str,
    description: str | None = None,
    created_by_id: str | None = None,
) -> Team:
    name = (name or "").strip()
    if not name or len(name) > 100:
        raise ValidationError("Team name must be between 1 and 100 characters")

    await get_organization(db, organization_id)

    team = Team(
        organization_id=organization_id,
        name=name,
        description=description,
        created_by_id=created_by_id,
    )
    db.add(team)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        log.warning(f"Duplicate team name {name!r} in org {organization_id}")
        raise ConflictError(f"Team '{name}' already exists in this organization")

    await db.refresh(team)
    log.info(f"Created team {team.id} ({name}) in org {organization_id}")
    return team


async def get_team(db: AsyncSession, team_id: str, organization_id: str | None = None) -> Team:
    stmt = select(Team).where(Team.id == team_id, Team.deleted_at.is_(None))
    if organization_id is not None:
        stmt = stmt.where(Team.organization_id == organization_id)
    result = await db.execute(stmt)
    team = result.scalar_one_or_none()
    if not team:
        raise NotFoundError("Team not found")
    return team


async def list_teams(db: AsyncSession, organization_id: str) -> list[Team]:
    stmt = (
        select(Team)
        .where(Team.organization_id == organization_id, Team.deleted_at.is_(None))
        .order_by(Team.name)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def delete_team(db: AsyncSession, team_id: str, organization_id: str | None = None) -> None:
    """
    Soft-delete a team.

    Its member edges are soft-deleted and its role assignments are removed,
    so a deleted team never contributes to a decision.
    """
    team = await get_team(db, team_id, organization_id)
    now = utcnow()
    team.deleted_at = now

    result = await db.execute(
        select(TeamMember).where(TeamMember.team_id == team.id, TeamMember.deleted_at.is_(None))
    )
    for edge in result.scalars().all():
        edge.deleted_at = now

    result = await db.execute(
        select(PrincipalRoleAssignment).where(
            PrincipalRoleAssignment.principal_kind == PrincipalKind.TEAM.value,
            PrincipalRoleAssignment.principal_id == team.id,
        )
    )
    for assignment in result.scalars().all():
        await db.delete(assignment)

    await db.commit()
    log.info(f"Deleted team {team.id} in org {team.organization_id}")


async def list_team_members(db: AsyncSession, team_id: str) -> list[TeamMember]:
    stmt = (
        select(TeamMember)
        .where(TeamMember.team_id == team_id, TeamMember.deleted_at.is_(None))
        .order_by(TeamMember.added_at)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def add_team_member(
    db: AsyncSession,
    team_id: str,
    user_id: str,
    added_by_id: str | None = None,
    organization_id: str | None = None,
) -> TeamMember:
    """
    Add a user to a team.

    Raises:
        NotFoundError: team missing
        ValidationError: user is not a live member of the team's organization
        ConflictError: user is already on the team
    """
    team = await get_team(db, team_id, organization_id)

    if not await is_member(db, team.organization_id, user_id):
        raise ValidationError("User must be a member of the organization to join its teams")

    result = await db.execute(
        select(TeamMember).where(TeamMember.team_id == team.id, TeamMember.user_id == user_id)
    )
    edge = result.scalar_one_or_none()

    if edge and not edge.is_deleted:
        raise ConflictError("User is already a member of this team")

    if edge:
        # Reactivate the old edge, the primary key is (team_id, user_id)
        edge.deleted_at = None
        edge.added_by_id = added_by_id
        edge.added_at = utcnow()
    else:
        edge = TeamMember(team_id=team.id, user_id=user_id, added_by_id=added_by_id)
        db.add(edge)

    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("User is already a member of this team")

    log.info(f"Added user {user_id} to team {team.id}")
    return edge


async def remove_team_member(
    db: AsyncSession, team_id: str, user_id: str, organization_id: str | None = None
) -> None:
    team = await get_team(db, team_id, organization_id)

    result = await db.execute(
        select(TeamMember).where(
            TeamMember.team_id == team.id,
            TeamMember.user_id == user_id,
            TeamMember.deleted_at.is_(None),
        )
    )
    edge = result.scalar_one_or_none()
    if not edge:
        raise NotFoundError("Team member not found")

    edge.soft_delete()
    await db.commit()
    log.info(f"Removed user {user_id} from team {team.id}")
