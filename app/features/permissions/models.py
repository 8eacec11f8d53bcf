"""
Role, Permission, Team and Assignment models for organization-scoped RBAC.

This module implements the normalized permission model:
- Roles are system-wide (organization_id is null) or scoped to one organization
- Permissions attach one (resource kind, action) pair to a role, with
  org-wide / workspace-wide breadth flags and optional object-type narrowing
- Principals (users or teams) hold roles at organization or workspace scope
- Teams group users within one organization

Uniqueness invariants live in partial unique indexes so that concurrent
writers are stopped by the database, not by a check-then-insert.
"""
from datetime import datetime
from typing import Any, Dict
from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    JSON,
    String,
    Text,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base, TimestampMixin, SoftDeleteMixin, generate_ulid, utcnow


def _partial_unique(name: str, *columns: str, where: str) -> Index:
    """Unique index honoured by both SQLite and PostgreSQL."""
    return Index(
        name,
        *columns,
        unique=True,
        sqlite_where=text(where),
        postgresql_where=text(where),
    )


# ============================================================================
# Roles and Permissions
# ============================================================================

class Role(Base, TimestampMixin, SoftDeleteMixin):
    """
    Named, reusable bundle of permissions.

    organization_id = null marks a system role available to every organization.
    Names are unique among live roles within their scope.
    """
    __tablename__ = "roles"
    __table_args__ = (
        _partial_unique(
            "uq_role_system_name", "name",
            where="organization_id IS NULL AND deleted_at IS NULL",
        ),
        _partial_unique(
            "uq_role_org_name", "organization_id", "name",
            where="organization_id IS NOT NULL AND deleted_at IS NULL",
        ),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    name: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Optional: Link to specific organization (null = system-wide role)
    organization_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    created_by_id: Mapped[str | None] = mapped_column(
        String(26), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    @property
    def is_system(self) -> bool:
        return self.organization_id is None

    def __repr__(self) -> str:
        return f"<Role(id={self.id}, name={self.name!r}, org_id={self.organization_id})>"


class Permission(Base, TimestampMixin, SoftDeleteMixin):
    """
    A single (resource kind, action) grant attached to a role.

    Examples:
    - resource_kind="workspace", action="read", apply_workspace_wide=True
    - resource_kind="organization", action="manage_members", apply_org_wide=True
    - resource_kind="object_instance", action="update", object_type_id=<task type>
    """
    __tablename__ = "permissions"
    __table_args__ = (
        CheckConstraint(
            "(resource_kind IN ('object_instance', 'object_type') AND object_type_id IS NOT NULL) OR "
            "(resource_kind NOT IN ('object_instance', 'object_type') AND object_type_id IS NULL)",
            name="ck_permission_object_type_usage",
        ),
        _partial_unique(
            "uq_permission_with_object_type", "role_id", "resource_kind", "action", "object_type_id",
            where="object_type_id IS NOT NULL AND deleted_at IS NULL",
        ),
        _partial_unique(
            "uq_permission_without_object_type", "role_id", "resource_kind", "action",
            where="object_type_id IS NULL AND deleted_at IS NULL",
        ),
        Index("idx_permission_role_resource", "role_id", "resource_kind", "action"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    role_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("roles.id", ondelete="CASCADE"), nullable=False, index=True
    )
    resource_kind: Mapped[str] = mapped_column(String(50), nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    apply_org_wide: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    apply_workspace_wide: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    object_type_id: Mapped[str | None] = mapped_column(String(26), nullable=True, index=True)
    created_by_id: Mapped[str | None] = mapped_column(
        String(26), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    def __repr__(self) -> str:
        return (
            f"<Permission(id={self.id}, role_id={self.role_id}, "
            f"{self.resource_kind}.{self.action}, object_type={self.object_type_id})>"
        )


# ============================================================================
# Teams
# ============================================================================

class Team(Base, TimestampMixin, SoftDeleteMixin):
    """
    Named group of users within one organization.

    Teams are principals: roles assigned to a team reach every live member.
    """
    __tablename__ = "teams"
    __table_args__ = (
        _partial_unique(
            "uq_team_org_name", "organization_id", "name",
            where="deleted_at IS NULL",
        ),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    organization_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by_id: Mapped[str | None] = mapped_column(
        String(26), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    def __repr__(self) -> str:
        return f"<Team(id={self.id}, name={self.name!r}, org_id={self.organization_id})>"


class TeamMember(Base, SoftDeleteMixin):
    """Membership edge between a team and a user."""
    __tablename__ = "team_members"
    __table_args__ = (
        Index("idx_team_member_user", "user_id"),
    )

    team_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("teams.id", ondelete="CASCADE"), primary_key=True
    )
    user_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    added_by_id: Mapped[str | None] = mapped_column(
        String(26), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    added_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<TeamMember(team_id={self.team_id}, user_id={self.user_id})>"


# ============================================================================
# Assignments
# ============================================================================

class PrincipalRoleAssignment(Base):
    """
    A principal holds a role at organization scope (workspace_id is null)
    or at one workspace.

    principal_id points at users.id or teams.id depending on principal_kind,
    so it carries no foreign key. Revocation is a hard delete.
    """
    __tablename__ = "principal_role_assignments"
    __table_args__ = (
        _partial_unique(
            "uq_assignment_workspace_level",
            "principal_kind", "principal_id", "organization_id", "workspace_id", "role_id",
            where="workspace_id IS NOT NULL",
        ),
        _partial_unique(
            "uq_assignment_org_level",
            "principal_kind", "principal_id", "organization_id", "role_id",
            where="workspace_id IS NULL",
        ),
        Index("idx_assignment_lookup", "principal_kind", "principal_id", "organization_id"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    principal_kind: Mapped[str] = mapped_column(String(10), nullable=False)
    principal_id: Mapped[str] = mapped_column(String(26), nullable=False)
    organization_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    workspace_id: Mapped[str | None] = mapped_column(
        String(26), ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=True, index=True
    )
    role_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("roles.id", ondelete="CASCADE"), nullable=False, index=True
    )
    assigned_by_id: Mapped[str | None] = mapped_column(
        String(26), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    assigned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return (
            f"<PrincipalRoleAssignment(id={self.id}, {self.principal_kind}:{self.principal_id}, "
            f"org_id={self.organization_id}, ws_id={self.workspace_id}, role_id={self.role_id})>"
        )


# ============================================================================
# Audit
# ============================================================================

class AuditLog(Base, TimestampMixin):
    """
    Audit log for tracking access-control mutations.

    Tracks who did what, when, and from where.
    """
    __tablename__ = "audit_logs"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    # Actor
    user_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    # Action details
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    resource_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    resource_id: Mapped[str | None] = mapped_column(String(26), nullable=True, index=True)

    # Context
    organization_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("organizations.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    details: Mapped[Dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<AuditLog(id={self.id}, user_id={self.user_id}, action={self.action}, resource={self.resource_type})>"


__all__ = ["Role", "Permission", "Team", "TeamMember", "PrincipalRoleAssignment", "AuditLog"]
