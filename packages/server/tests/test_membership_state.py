"""
Tests for the derived membership lifecycle and the listing status filter.
"""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from orgkit.core.errors import BusinessRuleError
from orgkit.services.membership_state import (
    can_transition,
    is_active_member,
    is_admin,
    is_live,
    is_owner,
    is_pending,
    matches_filter,
    membership_status,
    transition_error,
)
from orgkit_shared.schemas.common import RoleCode
from orgkit_shared.schemas.memberships import (
    MEMBERSHIP_TRANSITIONS,
    MembershipStatus,
    OrganizationMembership,
)
from orgkit_shared.schemas.organizations import ORG_TRANSITIONS, Organization, OrgStatus
from orgkit_shared.schemas.users import User

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)


def membership(**overrides) -> OrganizationMembership:
    fields = {
        "id": "m-1",
        "user_id": "u-1",
        "username": "alice",
        "organization_id": "org-1",
        "role_code": RoleCode.MEMBER,
        "created_at": NOW,
        "updated_at": NOW,
    }
    fields.update(overrides)
    return OrganizationMembership(**fields)


PENDING = membership(invited_at=NOW, user_id=None)
ACTIVE = membership(joined_at=NOW)
LEFT = membership(joined_at=NOW, left_at=NOW)
REMOVED = membership(joined_at=NOW, deleted_at=NOW)


class TestMembershipStatus:
    """Status is derived from the four timestamps."""

    @pytest.mark.parametrize(
        "m, expected",
        [
            (PENDING, MembershipStatus.PENDING),
            (ACTIVE, MembershipStatus.ACTIVE),
            (LEFT, MembershipStatus.LEFT),
            (REMOVED, MembershipStatus.REMOVED),
        ],
    )
    def test_derivation(self, m, expected):
        assert membership_status(m) is expected

    def test_deleted_wins_over_left(self):
        m = membership(joined_at=NOW, left_at=NOW, deleted_at=NOW)
        assert membership_status(m) is MembershipStatus.REMOVED

    def test_removed_pending_invitation(self):
        m = membership(invited_at=NOW, deleted_at=NOW)
        assert membership_status(m) is MembershipStatus.REMOVED

    def test_predicates(self):
        assert is_active_member(ACTIVE)
        assert not is_active_member(PENDING)
        assert not is_active_member(None)
        assert is_pending(PENDING)
        assert is_live(PENDING) and is_live(ACTIVE)
        assert not is_live(LEFT) and not is_live(REMOVED)
        assert not is_live(None)

    def test_admin_requires_active(self):
        assert is_admin(membership(joined_at=NOW, role_code=RoleCode.ADMIN))
        assert not is_admin(membership(invited_at=NOW, role_code=RoleCode.ADMIN))
        assert not is_admin(ACTIVE)

    def test_owner_is_read_from_the_organization(self):
        org = Organization(id="org-1", owner_user_id="u-1", created_at=NOW, updated_at=NOW)
        owner = User(id="u-1", external_id="ext-1", username="bob", created_at=NOW, updated_at=NOW)
        other = User(id="u-2", external_id="ext-2", username="eve", created_at=NOW, updated_at=NOW)
        assert is_owner(org, owner)
        assert not is_owner(org, other)
        assert not is_owner(org, None)


class TestTransitions:
    """Allowed lifecycle moves."""

    def test_pending_to_active(self):
        assert can_transition(MembershipStatus.PENDING, MembershipStatus.ACTIVE)

    def test_left_and_removed_only_reactivate(self):
        for status in (MembershipStatus.LEFT, MembershipStatus.REMOVED):
            assert MEMBERSHIP_TRANSITIONS[status] == [MembershipStatus.ACTIVE, MembershipStatus.PENDING]
            assert not can_transition(status, MembershipStatus.LEFT)
            assert not can_transition(status, MembershipStatus.REMOVED)

    def test_transition_error(self):
        err = transition_error(LEFT, MembershipStatus.LEFT)
        assert isinstance(err, BusinessRuleError)
        assert err.details == {"status": "left"}
        assert transition_error(LEFT, MembershipStatus.ACTIVE) is None

    def test_active_cannot_go_back_to_pending(self):
        assert not can_transition(MembershipStatus.ACTIVE, MembershipStatus.PENDING)

    def test_deleted_organization_is_terminal(self):
        assert ORG_TRANSITIONS[OrgStatus.DELETED] == []
        assert OrgStatus.ACTIVE in ORG_TRANSITIONS[OrgStatus.ARCHIVED]

    def test_organization_status_property(self):
        org = Organization(id="org-1", owner_user_id="u-1", created_at=NOW, updated_at=NOW)
        assert org.status is OrgStatus.ACTIVE
        assert org.model_copy(update={"archived_at": NOW}).status is OrgStatus.ARCHIVED
        assert org.model_copy(update={"deleted_at": NOW}).status is OrgStatus.DELETED


class TestMatchesFilter:
    """Listing filter semantics."""

    def test_no_flags_matches_everything(self):
        for m in (PENDING, ACTIVE, LEFT, REMOVED):
            assert matches_filter(m)

    def test_active_only(self):
        assert matches_filter(ACTIVE, include_active=True)
        assert not matches_filter(PENDING, include_active=True)
        assert not matches_filter(REMOVED, include_active=True)

    def test_removed_covers_left(self):
        assert matches_filter(LEFT, include_removed=True)
        assert matches_filter(REMOVED, include_removed=True)
        assert not matches_filter(ACTIVE, include_removed=True)

    def test_pending_needs_invitation(self):
        never_invited = membership()
        assert matches_filter(PENDING, include_pending=True)
        assert not matches_filter(never_invited, include_pending=True)

    def test_flags_are_or_combined(self):
        assert matches_filter(PENDING, include_active=True, include_pending=True)
        assert not matches_filter(LEFT, include_active=True, include_pending=True)
