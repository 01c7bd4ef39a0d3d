"""
Membership lifecycle.

A membership's status is never stored. It is derived from four nullable
timestamps (``invited_at``, ``joined_at``, ``left_at``, ``deleted_at``) and
every caller goes through ``membership_status`` instead of re-deriving it.
"""

from __future__ import annotations

from typing import Optional

from orgkit.core.errors import BusinessRuleError
from orgkit_shared.schemas.common import RoleCode
from orgkit_shared.schemas.memberships import (
    MEMBERSHIP_TRANSITIONS,
    MembershipStatus,
    OrganizationMembership,
)
from orgkit_shared.schemas.organizations import Organization
from orgkit_shared.schemas.users import User


def membership_status(m: OrganizationMembership) -> MembershipStatus:
    if m.deleted_at is not None:
        return MembershipStatus.REMOVED
    if m.left_at is not None:
        return MembershipStatus.LEFT
    if m.joined_at is not None:
        return MembershipStatus.ACTIVE
    return MembershipStatus.PENDING


def can_transition(current: MembershipStatus, target: MembershipStatus) -> bool:
    return target in MEMBERSHIP_TRANSITIONS[current]


def transition_error(
    m: OrganizationMembership, target: MembershipStatus, message: Optional[str] = None
) -> Optional[BusinessRuleError]:
    current = membership_status(m)
    if can_transition(current, target):
        return None
    return BusinessRuleError(
        message or f"Membership cannot move from {current.value} to {target.value}",
        {"status": current.value},
    )


# ---------------------------------------------------------------------------
# Predicates
# ---------------------------------------------------------------------------

def is_active_member(m: Optional[OrganizationMembership]) -> bool:
    return m is not None and membership_status(m) is MembershipStatus.ACTIVE


def is_pending(m: Optional[OrganizationMembership]) -> bool:
    return m is not None and membership_status(m) is MembershipStatus.PENDING


def is_live(m: Optional[OrganizationMembership]) -> bool:
    """Pending or active: the row still counts against uniqueness."""
    return m is not None and membership_status(m) in (
        MembershipStatus.PENDING,
        MembershipStatus.ACTIVE,
    )


def is_admin(m: Optional[OrganizationMembership]) -> bool:
    return is_active_member(m) and m.role_code == RoleCode.ADMIN


def is_owner(org: Organization, user: Optional[User]) -> bool:
    return user is not None and org.owner_user_id == user.id


def matches_filter(
    m: OrganizationMembership,
    include_active: bool = False,
    include_pending: bool = False,
    include_removed: bool = False,
) -> bool:
    """Listing filter. With no flag set every row matches.

    "Removed" in a listing covers both left and removed rows.
    """
    if not (include_active or include_pending or include_removed):
        return True
    status = membership_status(m)
    if include_active and status is MembershipStatus.ACTIVE:
        return True
    if include_pending and status is MembershipStatus.PENDING and m.invited_at is not None:
        return True
    if include_removed and status in (MembershipStatus.LEFT, MembershipStatus.REMOVED):
        return True
    return False
