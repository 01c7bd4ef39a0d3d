"""
Role-based authorization for organization operations.

Each use case resolves an ``Access`` for the acting user and then applies
one of the rule functions below. A rule returns ``None`` when access is
granted and an ``UnauthorizedError`` otherwise.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from orgkit.core.errors import UnauthorizedError
from orgkit.repositories.ports import OrganizationMembershipRepository
from orgkit.services.membership_state import is_active_member, is_admin, is_owner
from orgkit_shared.schemas.common import RoleCode
from orgkit_shared.schemas.memberships import MemberListOptions, OrganizationMembership
from orgkit_shared.schemas.organizations import Organization
from orgkit_shared.schemas.users import User


@dataclass(frozen=True)
class Access:
    is_owner: bool
    is_admin: bool
    is_active_member: bool
    membership: Optional[OrganizationMembership] = None

    @property
    def is_owner_or_admin(self) -> bool:
        return self.is_owner or self.is_admin

    @property
    def is_owner_or_member(self) -> bool:
        return self.is_owner or self.is_active_member


async def resolve_access(
    memberships: OrganizationMembershipRepository,
    org: Organization,
    user: User,
) -> Access:
    membership = await memberships.find_by_user_id_and_organization_id(user.id, org.id)
    return Access(
        is_owner=is_owner(org, user),
        is_admin=is_admin(membership),
        is_active_member=is_active_member(membership),
        membership=membership,
    )


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------

def require_owner_or_member(access: Access, action: str) -> Optional[UnauthorizedError]:
    if access.is_owner_or_member:
        return None
    return UnauthorizedError(action, "organization")


def require_owner_or_admin(access: Access, action: str) -> Optional[UnauthorizedError]:
    if access.is_owner_or_admin:
        return None
    return UnauthorizedError(action, "organization")


def require_owner(access: Access, action: str) -> Optional[UnauthorizedError]:
    if access.is_owner:
        return None
    return UnauthorizedError(action, "organization")


def require_member_manager(
    access: Access, action: str, role_code: RoleCode
) -> Optional[UnauthorizedError]:
    """Owners manage any role; admins only manage plain members."""
    if access.is_owner:
        return None
    if access.is_admin and role_code == RoleCode.MEMBER:
        return None
    return UnauthorizedError(action, "organization", {"role_code": RoleCode(role_code).value})


def scoped_list_options(access: Access, requested: MemberListOptions) -> MemberListOptions:
    """Apply the role-gated listing filter.

    Owners and admins see every status unless they ask for a subset. Plain
    members always see active memberships only, whatever they request.
    """
    if access.is_owner_or_admin:
        if requested.has_status_filter:
            return requested
        return requested.model_copy(
            update={"include_active": True, "include_pending": True, "include_removed": True}
        )
    return requested.model_copy(
        update={"include_active": True, "include_pending": False, "include_removed": False}
    )
