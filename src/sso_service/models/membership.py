"""
Organization membership model.

Links a user to an organization with a role and an invitation status.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import DateTime, ForeignKey, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from sso_service.models.base import Base, utc_now


class MemberRole(str, Enum):
    """Role of a user inside an organization."""

    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"


class MemberStatus(str, Enum):
    """Invitation lifecycle of a membership."""

    INVITED = "invited"
    ACCEPTED = "accepted"
    CONFIRMED = "confirmed"
    SUSPENDED = "suspended"


ACTIVE_MEMBER_STATUSES = (MemberStatus.ACCEPTED.value, MemberStatus.CONFIRMED.value)
ADMIN_ROLES = (MemberRole.OWNER.value, MemberRole.ADMIN.value)


class OrganizationMember(Base):
    """
    Membership of a user in an organization.
    """

    __tablename__ = "organization_members"
    __table_args__ = (
        UniqueConstraint("organization_id", "user_id", name="uq_organization_members_org_user"),
    )

    # Primary key
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    # Foreign keys
    organization_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    user_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    role: Mapped[str] = mapped_column(String(20), nullable=False, default=MemberRole.MEMBER.value)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=MemberStatus.INVITED.value)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        onupdate=utc_now,
        nullable=False
    )

    # Relationships
    organization: Mapped["Organization"] = relationship("Organization", back_populates="members")
    user: Mapped["User"] = relationship("User", back_populates="memberships")

    def __repr__(self) -> str:
        return (
            f"<OrganizationMember(org_id={self.organization_id}, user_id={self.user_id}, "
            f"role={self.role}, status={self.status})>"
        )

    @property
    def is_active(self) -> bool:
        """Accepted and confirmed memberships may sign in."""
        return self.status in ACTIVE_MEMBER_STATUSES

    @property
    def is_admin(self) -> bool:
        """Owners and admins manage SSO connections."""
        return self.role in ADMIN_ROLES
