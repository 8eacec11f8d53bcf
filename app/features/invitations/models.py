"""
Invitation model.

Stored states are pending, accepted (accepted_at set) and revoked
(deleted_at set). Expired is derived from expiry_at.
"""
import enum
from datetime import datetime
from sqlalchemy import String, ForeignKey, DateTime, Index, text
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base, TimestampMixin, SoftDeleteMixin, generate_ulid, utcnow, as_utc


class InvitationStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REVOKED = "revoked"
    EXPIRED = "expired"


LIVE_PENDING = "accepted_at IS NULL AND deleted_at IS NULL"


class Invitation(Base, TimestampMixin, SoftDeleteMixin):
    """Outstanding offer for an email address to join an organization with a role."""
    __tablename__ = "invitations"
    __table_args__ = (
        # At most one open invitation per address and organization
        Index(
            "uq_invitation_pending_email",
            "organization_id", "email",
            unique=True,
            sqlite_where=text(LIVE_PENDING),
            postgresql_where=text(LIVE_PENDING),
        ),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    organization_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    invited_by_id: Mapped[str | None] = mapped_column(
        String(26), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    # Null means the default member role
    role_id: Mapped[str | None] = mapped_column(
        String(26), ForeignKey("roles.id", ondelete="SET NULL"), nullable=True
    )
    accepted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    accepted_by_id: Mapped[str | None] = mapped_column(
        String(26), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    expiry_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def status_at(self, now: datetime) -> InvitationStatus:
        if self.accepted_at is not None:
            return InvitationStatus.ACCEPTED
        if self.deleted_at is not None:
            return InvitationStatus.REVOKED
        if as_utc(self.expiry_at) < now:
            return InvitationStatus.EXPIRED
        return InvitationStatus.PENDING

    @property
    def status(self) -> InvitationStatus:
        return self.status_at(utcnow())

    def __repr__(self) -> str:
        return f"<Invitation(id={self.id}, email={self.email!r}, org_id={self.organization_id})>"
