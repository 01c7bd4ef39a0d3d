"""Organization membership table (join entity with role and timeline)."""

from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import CustomFieldsMixin, IdMixin, TimestampMixin

LIVE_MEMBERSHIP = sa.text("deleted_at IS NULL AND left_at IS NULL")


class MembershipRecord(IdMixin, TimestampMixin, CustomFieldsMixin, SQLModel, table=True):
    __tablename__ = "organization_memberships"
    __table_args__ = (
        # One live membership per username per organization.
        sa.Index(
            "uq_memberships_org_username_live",
            "organization_id",
            "username",
            unique=True,
            postgresql_where=LIVE_MEMBERSHIP,
            sqlite_where=LIVE_MEMBERSHIP,
        ),
        sa.CheckConstraint("role_code IN ('owner', 'admin', 'member')", name="chk_role_code"),
    )

    user_id: Optional[str] = Field(default=None, foreign_key="users.id", index=True)  # null for unregistered invitees
    username: str = Field(nullable=False, max_length=255)
    organization_id: str = Field(foreign_key="organizations.id", index=True, nullable=False)
    role_code: str = Field(nullable=False, max_length=50)
    invited_at: Optional[datetime] = Field(default=None, sa_type=sa.DateTime(timezone=True))
    joined_at: Optional[datetime] = Field(default=None, sa_type=sa.DateTime(timezone=True))
    left_at: Optional[datetime] = Field(default=None, sa_type=sa.DateTime(timezone=True))
    deleted_at: Optional[datetime] = Field(default=None, sa_type=sa.DateTime(timezone=True))
