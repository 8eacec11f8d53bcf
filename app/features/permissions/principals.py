"""
Principal directory.

A principal is whoever can hold a role: a user or a team. Checking a user
means checking the user and every team the user currently belongs to.
"""
from dataclasses import dataclass
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.permissions.models import Team, TeamMember
from app.features.permissions.vocabulary import PrincipalKind, parse_principal_kind


@dataclass(frozen=True)
class Principal:
    kind: PrincipalKind
    id: str

    @classmethod
    def user(cls, user_id: str) -> "Principal":
        return cls(PrincipalKind.USER, user_id)

    @classmethod
    def team(cls, team_id: str) -> "Principal":
        return cls(PrincipalKind.TEAM, team_id)

    @classmethod
    def parse(cls, kind: str, principal_id: str) -> "Principal":
        return cls(parse_principal_kind(kind), principal_id)

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.id}"


async def resolve_principals(db: AsyncSession, user_id: str) -> frozenset[Principal]:
    """
    Expand a user into the set of principals whose assignments apply to them.

    Always contains the user principal itself, plus one team principal per
    live team the user is a live member of.
    """
    stmt = (
        select(TeamMember.team_id)
        .join(Team, Team.id == TeamMember.team_id)
        .where(
            TeamMember.user_id == user_id,
            TeamMember.deleted_at.is_(None),
            Team.deleted_at.is_(None),
        )
    )
    result = await db.execute(stmt)
    team_ids = result.scalars().all()

    return frozenset([Principal.user(user_id), *(Principal.team(team_id) for team_id in team_ids)])


async def expand_principal(db: AsyncSession, principal: Principal) -> frozenset[Principal]:
    """A user expands to user + teams; a team stands for itself."""
    if principal.kind == PrincipalKind.USER:
        return await resolve_principals(db, principal.id)
    return frozenset([principal])
