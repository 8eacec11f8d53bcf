"""
Organization, workspace and membership models.

Organizations are the top-level tenant boundary. Workspaces belong to exactly
one organization. Membership is the organization's roster and is separate
from role assignments.
"""
from datetime import datetime
from sqlalchemy import String, ForeignKey, DateTime, Index
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base, TimestampMixin, SoftDeleteMixin, generate_ulid, utcnow


class Organization(Base, TimestampMixin, SoftDeleteMixin):
    """
    Tenant boundary. Every permission-scoped object resolves to one organization.

    Authorship columns use SET NULL so deleting a user never destroys the
    organization; user removal reassigns them explicitly.
    """
    __tablename__ = "organizations"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)

    created_by_id: Mapped[str | None] = mapped_column(
        String(26), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    updated_by_id: Mapped[str | None] = mapped_column(
        String(26), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    def __repr__(self) -> str:
        return f"<Organization(id={self.id}, name={self.name!r})>"


class Workspace(Base, TimestampMixin, SoftDeleteMixin):
    """Sub-tenant unit where most protected resources live."""
    __tablename__ = "workspaces"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    organization_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    created_by_id: Mapped[str | None] = mapped_column(
        String(26), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    updated_by_id: Mapped[str | None] = mapped_column(
        String(26), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    def __repr__(self) -> str:
        return f"<Workspace(id={self.id}, org_id={self.organization_id}, name={self.name!r})>"


class OrganizationMember(Base, TimestampMixin, SoftDeleteMixin):
    """
    Roster entry: this user belongs to this organization.

    A user principal may only hold role assignments in an organization while
    a live membership row exists.
    """
    __tablename__ = "organization_members"
    __table_args__ = (
        Index("idx_org_member_user", "user_id"),
    )

    organization_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("organizations.id", ondelete="CASCADE"), primary_key=True
    )
    user_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    invited_by_id: Mapped[str | None] = mapped_column(
        String(26), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<OrganizationMember(org_id={self.organization_id}, user_id={self.user_id})>"


__all__ = ["Organization", "Workspace", "OrganizationMember"]
