"""
Organization membership schemas.

Covers: the membership record, its derived lifecycle states, the joined
listing row, and member-management request models.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from .common import EntityModel, Pagination, RoleCode
from .organizations import Organization
from .users import User


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class MembershipStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    LEFT = "left"
    REMOVED = "removed"


# ---------------------------------------------------------------------------
# Entity
# ---------------------------------------------------------------------------

class OrganizationMembership(EntityModel):
    id: str = Field(min_length=1)
    user_id: Optional[str] = None  # null until the invited username registers
    username: str = Field(min_length=1, max_length=255)
    organization_id: str = Field(min_length=1)
    role_code: RoleCode
    invited_at: Optional[datetime] = None
    joined_at: Optional[datetime] = None
    left_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class MemberWithUserInfo(OrganizationMembership):
    """A membership row joined with its user and organization."""

    user: User
    organization: Organization


# ---------------------------------------------------------------------------
# Lifecycle transitions
# ---------------------------------------------------------------------------

# Left and Removed come back only through a fresh add, as a member or an invitation.
MEMBERSHIP_TRANSITIONS: dict[MembershipStatus, list[MembershipStatus]] = {
    MembershipStatus.PENDING: [MembershipStatus.ACTIVE, MembershipStatus.REMOVED],
    MembershipStatus.ACTIVE: [MembershipStatus.LEFT, MembershipStatus.REMOVED],
    MembershipStatus.LEFT: [MembershipStatus.ACTIVE, MembershipStatus.PENDING],
    MembershipStatus.REMOVED: [MembershipStatus.ACTIVE, MembershipStatus.PENDING],
}


# ---------------------------------------------------------------------------
# Query options
# ---------------------------------------------------------------------------

class MemberListOptions(BaseModel):
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1)
    include_active: Optional[bool] = None
    include_pending: Optional[bool] = None
    include_removed: Optional[bool] = None

    @property
    def has_status_filter(self) -> bool:
        return bool(self.include_active or self.include_pending or self.include_removed)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size


class MemberListPage(BaseModel):
    items: list[MemberWithUserInfo]
    pagination: Pagination


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class MemberAddRequest(BaseModel):
    """Add a member by username. ``invite`` leaves the membership pending."""

    model_config = ConfigDict(extra="allow")

    username: str = Field(min_length=1, max_length=255)
    role_code: RoleCode = RoleCode.MEMBER
    invite: bool = False


class MemberRoleUpdateRequest(BaseModel):
    role_code: RoleCode


class InvitationAcceptRequest(BaseModel):
    username: str = Field(min_length=1, max_length=255)
