"""
Use-case tests for membership management, run against both adapters.

Tests cover:
- Add member (active, invited, conflict, reactivation)
- Accept invitation
- Leave / remove
- Role changes
- Ownership transfer and the single-owner invariant
"""

from __future__ import annotations

from conftest import add_member, create_org, ctx, register

from orgkit.core.errors import (
    BusinessRuleError,
    ConflictError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from orgkit.services.membership_state import membership_status
from orgkit_shared.schemas.common import RoleCode
from orgkit_shared.schemas.memberships import MembershipStatus


async def owner_memberships(use_cases, org_id):
    rows = await use_cases.add_organization_member.uow.repositories().organization_memberships.find_by_organization(org_id)
    return [m for m in rows if m.role_code == RoleCode.OWNER]


# ---------------------------------------------------------------------------
# Add
# ---------------------------------------------------------------------------

class TestAddMember:
    """Adding registered users and inviting usernames."""

    async def test_add_registered_user_is_active(self, use_cases):
        await register(use_cases, "bob")
        alice = await register(use_cases, "alice")
        org = await create_org(use_cases, "bob")

        result = await add_member(use_cases, "bob", org.id, "alice", role_code="member")

        assert result.is_success
        m = result.value
        assert m.joined_at is not None
        assert m.invited_at is None
        assert m.role_code == RoleCode.MEMBER
        assert m.user_id == alice.id

    async def test_adding_twice_conflicts(self, use_cases, org_with_members):
        org, _, _ = org_with_members
        again = await add_member(use_cases, "bob", org.id, "alice")
        assert again.is_failure
        assert isinstance(again.error, ConflictError)

    async def test_unregistered_username_is_invited(self, use_cases, org_with_members):
        org, _, _ = org_with_members
        result = await add_member(use_cases, "bob", org.id, "carol")
        assert result.is_success
        assert membership_status(result.value) is MembershipStatus.PENDING
        assert result.value.user_id is None
        assert result.value.invited_at is not None

    async def test_invite_flag_keeps_registered_user_pending(self, use_cases, org_with_members):
        org, _, _ = org_with_members
        await register(use_cases, "dave")
        result = await add_member(use_cases, "bob", org.id, "dave", invite=True)
        assert membership_status(result.value) is MembershipStatus.PENDING

    async def test_missing_organization(self, use_cases):
        await register(use_cases, "bob")
        result = await add_member(use_cases, "bob", "nope", "alice")
        assert isinstance(result.error, NotFoundError)

    async def test_plain_member_cannot_add(self, use_cases, org_with_members):
        org, _, _ = org_with_members
        result = await add_member(use_cases, "alice", org.id, "carol")
        assert isinstance(result.error, UnauthorizedError)

    async def test_admin_cannot_add_admin(self, use_cases, org_with_members):
        org, _, alice = org_with_members
        await use_cases.update_organization_member_role.execute(
            {"organization_id": org.id, "user_id": alice.id, "role_code": "admin"}, ctx("bob")
        )
        result = await add_member(use_cases, "alice", org.id, "carol", role_code="admin")
        assert isinstance(result.error, UnauthorizedError)
        ok = await add_member(use_cases, "alice", org.id, "carol")
        assert ok.is_success

    async def test_owner_role_cannot_be_granted_by_add(self, use_cases, org_with_members):
        org, _, _ = org_with_members
        result = await add_member(use_cases, "bob", org.id, "carol", role_code="owner")
        assert isinstance(result.error, BusinessRuleError)

    async def test_custom_fields_are_kept(self, use_cases, org_with_members):
        org, _, _ = org_with_members
        result = await add_member(use_cases, "bob", org.id, "carol", title="Engineer")
        assert result.value.custom_fields == {"title": "Engineer"}
        stored = await use_cases.add_organization_member.uow.repositories().organization_memberships.find_by_id(
            result.value.id
        )
        assert stored.custom_fields == {"title": "Engineer"}

    async def test_archived_organization_rejects_adds(self, use_cases, org_with_members):
        org, _, _ = org_with_members
        await use_cases.archive_organization.execute({"organization_id": org.id}, ctx("bob"))
        result = await add_member(use_cases, "bob", org.id, "carol")
        assert isinstance(result.error, ValidationError)

    async def test_without_principal(self, use_cases, org_with_members):
        org, _, _ = org_with_members
        result = await use_cases.add_organization_member.execute(
            {"organization_id": org.id, "username": "carol"}, ctx(None)
        )
        assert isinstance(result.error, ValidationError)
        assert result.error.details["field"] == "principal"

    async def test_principal_is_checked_before_the_organization(self, use_cases):
        result = await add_member(use_cases, None, "nope", "carol")
        assert isinstance(result.error, ValidationError)
        assert result.error.details["field"] == "principal"

    async def test_removed_member_is_reactivated(self, use_cases, org_with_members):
        org, _, alice = org_with_members
        removed = await use_cases.remove_organization_member.execute(
            {"organization_id": org.id, "user_id": alice.id}, ctx("bob")
        )
        assert membership_status(removed.value) is MembershipStatus.REMOVED

        back = await add_member(use_cases, "bob", org.id, "alice")

        assert back.is_success
        assert back.value.id == removed.value.id
        assert back.value.deleted_at is None
        assert membership_status(back.value) is MembershipStatus.ACTIVE


# ---------------------------------------------------------------------------
# Accept
# ---------------------------------------------------------------------------

class TestAcceptInvitation:
    """Pending -> Active for the invited caller."""

    async def test_invite_register_accept(self, use_cases, org_with_members):
        org, _, _ = org_with_members
        await add_member(use_cases, "bob", org.id, "carol")
        carol = await register(use_cases, "carol")

        result = await use_cases.accept_organization_invitation.execute(
            {"organization_id": org.id, "username": "carol"}, ctx("carol")
        )

        assert result.is_success
        assert result.value.user_id == carol.id
        assert membership_status(result.value) is MembershipStatus.ACTIVE

    async def test_accept_twice(self, use_cases, org_with_members):
        org, _, _ = org_with_members
        await add_member(use_cases, "bob", org.id, "carol")
        await register(use_cases, "carol")
        payload = {"organization_id": org.id, "username": "carol"}
        await use_cases.accept_organization_invitation.execute(payload, ctx("carol"))
        again = await use_cases.accept_organization_invitation.execute(payload, ctx("carol"))
        assert isinstance(again.error, BusinessRuleError)

    async def test_cannot_accept_for_someone_else(self, use_cases, org_with_members):
        org, _, _ = org_with_members
        await add_member(use_cases, "bob", org.id, "carol")
        result = await use_cases.accept_organization_invitation.execute(
            {"organization_id": org.id, "username": "carol"}, ctx("alice")
        )
        assert isinstance(result.error, ValidationError)

    async def test_no_invitation(self, use_cases, org_with_members):
        org, _, _ = org_with_members
        await register(use_cases, "carol")
        result = await use_cases.accept_organization_invitation.execute(
            {"organization_id": org.id, "username": "carol"}, ctx("carol")
        )
        assert isinstance(result.error, NotFoundError)

    async def test_removed_invitation_cannot_be_accepted(self, use_cases, org_with_members):
        org, _, _ = org_with_members
        await add_member(use_cases, "bob", org.id, "carol")
        await use_cases.remove_organization_member.execute(
            {"organization_id": org.id, "username": "carol"}, ctx("bob")
        )
        await register(use_cases, "carol")

        result = await use_cases.accept_organization_invitation.execute(
            {"organization_id": org.id, "username": "carol"}, ctx("carol")
        )

        assert isinstance(result.error, BusinessRuleError)
        assert result.error.details["status"] == "removed"

    async def test_left_membership_cannot_be_accepted(self, use_cases, org_with_members):
        org, _, _ = org_with_members
        await use_cases.leave_organization.execute({"organization_id": org.id}, ctx("alice"))
        result = await use_cases.accept_organization_invitation.execute(
            {"organization_id": org.id, "username": "alice"}, ctx("alice")
        )
        assert isinstance(result.error, BusinessRuleError)


# ---------------------------------------------------------------------------
# Leave / Remove
# ---------------------------------------------------------------------------

class TestLeave:
    """Members leave; owners cannot."""

    async def test_member_leaves(self, use_cases, org_with_members):
        org, _, _ = org_with_members
        result = await use_cases.leave_organization.execute({"organization_id": org.id}, ctx("alice"))
        assert result.is_success
        assert result.value.left_at is not None

    async def test_owner_cannot_leave(self, use_cases, org_with_members):
        org, _, _ = org_with_members
        result = await use_cases.leave_organization.execute({"organization_id": org.id}, ctx("bob"))
        assert isinstance(result.error, BusinessRuleError)
        assert "owner cannot leave" in result.error.message.lower()

    async def test_leaving_twice(self, use_cases, org_with_members):
        org, _, _ = org_with_members
        await use_cases.leave_organization.execute({"organization_id": org.id}, ctx("alice"))
        again = await use_cases.leave_organization.execute({"organization_id": org.id}, ctx("alice"))
        assert isinstance(again.error, BusinessRuleError)

    async def test_non_member(self, use_cases, org_with_members):
        org, _, _ = org_with_members
        await register(use_cases, "eve")
        result = await use_cases.leave_organization.execute({"organization_id": org.id}, ctx("eve"))
        assert isinstance(result.error, NotFoundError)

    async def test_left_member_can_be_added_back(self, use_cases, org_with_members):
        org, _, _ = org_with_members
        left = await use_cases.leave_organization.execute({"organization_id": org.id}, ctx("alice"))
        back = await add_member(use_cases, "bob", org.id, "alice")
        assert back.is_success
        assert back.value.id == left.value.id
        assert back.value.left_at is None
        assert membership_status(back.value) is MembershipStatus.ACTIVE


class TestRemove:
    """Owner/admin removal sets deleted_at."""

    async def test_owner_removes_member(self, use_cases, org_with_members):
        org, _, alice = org_with_members
        result = await use_cases.remove_organization_member.execute(
            {"organization_id": org.id, "user_id": alice.id}, ctx("bob")
        )
        assert result.is_success
        assert membership_status(result.value) is MembershipStatus.REMOVED

    async def test_remove_pending_invitation_by_username(self, use_cases, org_with_members):
        org, _, _ = org_with_members
        await add_member(use_cases, "bob", org.id, "carol")
        result = await use_cases.remove_organization_member.execute(
            {"organization_id": org.id, "username": "carol"}, ctx("bob")
        )
        assert result.value.deleted_at is not None

    async def test_member_cannot_remove(self, use_cases, org_with_members):
        org, bob, _ = org_with_members
        result = await use_cases.remove_organization_member.execute(
            {"organization_id": org.id, "user_id": bob.id}, ctx("alice")
        )
        assert isinstance(result.error, UnauthorizedError)

    async def test_owner_cannot_be_removed(self, use_cases, org_with_members):
        org, bob, _ = org_with_members
        result = await use_cases.remove_organization_member.execute(
            {"organization_id": org.id, "user_id": bob.id}, ctx("bob")
        )
        assert isinstance(result.error, BusinessRuleError)

    async def test_admin_cannot_remove_admin(self, use_cases, org_with_members):
        org, _, alice = org_with_members
        carol = await register(use_cases, "carol")
        await add_member(use_cases, "bob", org.id, "carol", role_code="admin")
        await use_cases.update_organization_member_role.execute(
            {"organization_id": org.id, "user_id": alice.id, "role_code": "admin"}, ctx("bob")
        )
        result = await use_cases.remove_organization_member.execute(
            {"organization_id": org.id, "user_id": carol.id}, ctx("alice")
        )
        assert isinstance(result.error, UnauthorizedError)

    async def test_removing_twice_is_not_found(self, use_cases, org_with_members):
        org, _, alice = org_with_members
        data = {"organization_id": org.id, "user_id": alice.id}
        first = await use_cases.remove_organization_member.execute(data, ctx("bob"))
        second = await use_cases.remove_organization_member.execute(data, ctx("bob"))
        assert first.is_success
        assert isinstance(second.error, NotFoundError)

    async def test_unknown_target(self, use_cases, org_with_members):
        org, _, _ = org_with_members
        result = await use_cases.remove_organization_member.execute(
            {"organization_id": org.id, "user_id": "ghost"}, ctx("bob")
        )
        assert isinstance(result.error, NotFoundError)

    async def test_target_is_required(self, use_cases, org_with_members):
        org, _, _ = org_with_members
        result = await use_cases.remove_organization_member.execute(
            {"organization_id": org.id}, ctx("bob")
        )
        assert isinstance(result.error, ValidationError)


# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------

class TestUpdateRole:
    """Role changes never touch the owner role."""

    async def test_promote_to_admin(self, use_cases, org_with_members):
        org, _, alice = org_with_members
        result = await use_cases.update_organization_member_role.execute(
            {"organization_id": org.id, "user_id": alice.id, "role_code": "admin"}, ctx("bob")
        )
        assert result.value.role_code == RoleCode.ADMIN

    async def test_cannot_grant_owner(self, use_cases, org_with_members):
        org, _, alice = org_with_members
        result = await use_cases.update_organization_member_role.execute(
            {"organization_id": org.id, "user_id": alice.id, "role_code": "owner"}, ctx("bob")
        )
        assert isinstance(result.error, BusinessRuleError)
        assert len(await owner_memberships(use_cases, org.id)) == 1

    async def test_cannot_demote_owner(self, use_cases, org_with_members):
        org, bob, _ = org_with_members
        result = await use_cases.update_organization_member_role.execute(
            {"organization_id": org.id, "user_id": bob.id, "role_code": "member"}, ctx("bob")
        )
        assert isinstance(result.error, BusinessRuleError)

    async def test_member_cannot_change_roles(self, use_cases, org_with_members):
        org, _, alice = org_with_members
        result = await use_cases.update_organization_member_role.execute(
            {"organization_id": org.id, "user_id": alice.id, "role_code": "member"}, ctx("alice")
        )
        assert isinstance(result.error, UnauthorizedError)

    async def test_admin_cannot_demote_admin(self, use_cases, org_with_members):
        org, _, alice = org_with_members
        carol = await register(use_cases, "carol")
        await add_member(use_cases, "bob", org.id, "carol", role_code="admin")
        await use_cases.update_organization_member_role.execute(
            {"organization_id": org.id, "user_id": alice.id, "role_code": "admin"}, ctx("bob")
        )

        result = await use_cases.update_organization_member_role.execute(
            {"organization_id": org.id, "user_id": carol.id, "role_code": "member"}, ctx("alice")
        )

        assert isinstance(result.error, UnauthorizedError)
        repos = use_cases.update_organization_member_role.uow.repositories()
        kept = await repos.organization_memberships.find_by_user_id_and_organization_id(carol.id, org.id)
        assert kept.role_code == RoleCode.ADMIN

    async def test_invalid_role(self, use_cases, org_with_members):
        org, _, alice = org_with_members
        result = await use_cases.update_organization_member_role.execute(
            {"organization_id": org.id, "user_id": alice.id, "role_code": "superuser"}, ctx("bob")
        )
        assert isinstance(result.error, ValidationError)


# ---------------------------------------------------------------------------
# Transfer ownership
# ---------------------------------------------------------------------------

class TestTransferOwnership:
    """Owner hand-off keeps exactly one owner membership."""

    async def test_transfer(self, use_cases, org_with_members):
        org, bob, alice = org_with_members
        result = await use_cases.transfer_organization_ownership.execute(
            {"organization_id": org.id, "new_owner_id": alice.id}, ctx("bob")
        )
        assert result.is_success
        assert result.value.owner_user_id == alice.id

        owners = await owner_memberships(use_cases, org.id)
        assert [m.user_id for m in owners] == [alice.id]
        repos = use_cases.add_organization_member.uow.repositories()
        old = await repos.organization_memberships.find_by_user_id_and_organization_id(bob.id, org.id)
        assert old.role_code == RoleCode.MEMBER

        # The previous owner may now leave.
        left = await use_cases.leave_organization.execute({"organization_id": org.id}, ctx("bob"))
        assert left.is_success

    async def test_new_owner_without_membership_writes_nothing(self, use_cases):
        await register(use_cases, "bob")
        alice = await register(use_cases, "alice")
        org = await create_org(use_cases, "bob")
        repos = use_cases.add_organization_member.uow.repositories()
        before = await repos.organization_memberships.find_by_organization(org.id)

        result = await use_cases.transfer_organization_ownership.execute(
            {"organization_id": org.id, "new_owner_id": alice.id}, ctx("bob")
        )

        assert isinstance(result.error, ValidationError)
        assert "new owner does not have an active membership" in result.error.message.lower()
        assert (await repos.organizations.find_by_id(org.id)) == org
        assert await repos.organization_memberships.find_by_organization(org.id) == before

    async def test_only_owner_may_transfer(self, use_cases, org_with_members):
        org, bob, _ = org_with_members
        result = await use_cases.transfer_organization_ownership.execute(
            {"organization_id": org.id, "new_owner_id": bob.id}, ctx("alice")
        )
        assert isinstance(result.error, ValidationError)

    async def test_new_owner_must_differ(self, use_cases, org_with_members):
        org, bob, _ = org_with_members
        result = await use_cases.transfer_organization_ownership.execute(
            {"organization_id": org.id, "new_owner_id": bob.id}, ctx("bob")
        )
        assert result.error.details["field"] == "new_owner_id"

    async def test_archived_organization(self, use_cases, org_with_members):
        org, _, alice = org_with_members
        await use_cases.archive_organization.execute({"organization_id": org.id}, ctx("bob"))
        result = await use_cases.transfer_organization_ownership.execute(
            {"organization_id": org.id, "new_owner_id": alice.id}, ctx("bob")
        )
        assert isinstance(result.error, ValidationError)

    async def test_unknown_organization(self, use_cases, org_with_members):
        _, _, alice = org_with_members
        result = await use_cases.transfer_organization_ownership.execute(
            {"organization_id": "nope", "new_owner_id": alice.id}, ctx("bob")
        )
        assert isinstance(result.error, NotFoundError)
