"""
Membership use cases: add, accept invitation, leave, remove, change role,
and transfer ownership.

Each use case loads the organization and the acting user, checks access,
checks the membership state machine, and then writes inside one unit-of-work
transaction tagged with its audit action.
"""

from __future__ import annotations

from typing import Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field, model_validator

from orgkit.core.context import OperationContext
from orgkit.core.errors import (
    BusinessRuleError,
    ConflictError,
    DomainError,
    NotFoundError,
    ValidationError,
)
from orgkit.core.result import Result
from orgkit.core.system import new_id, utcnow
from orgkit.repositories.ports import RepositoryBundle
from orgkit.services.authorization import (
    require_member_manager,
    require_owner_or_admin,
    resolve_access,
)
from orgkit.services.base import UseCase
from orgkit.services.helpers import (
    custom_fields_of,
    evolve,
    find_organization_or_fail,
    get_user_from_external_id,
    validate_custom_fields,
)
from orgkit.services.membership_state import (
    is_active_member,
    is_live,
    membership_status,
    transition_error,
)
from orgkit_shared.schemas.common import AuditAction, RoleCode
from orgkit_shared.schemas.memberships import MembershipStatus, OrganizationMembership
from orgkit_shared.schemas.organizations import Organization

log = structlog.get_logger()


def _writable(org: Organization, action: str) -> Optional[ValidationError]:
    if org.deleted_at is not None:
        return ValidationError(f"Cannot {action} in a deleted organization", "organization_id")
    if org.archived_at is not None:
        return ValidationError(f"Cannot {action} in an archived organization", "organization_id")
    return None


def _is_owner_membership(org: Organization, m: OrganizationMembership) -> bool:
    return m.role_code == RoleCode.OWNER or (
        m.user_id is not None and m.user_id == org.owner_user_id
    )


# ---------------------------------------------------------------------------
# Add member
# ---------------------------------------------------------------------------

class AddMemberInput(BaseModel):
    """Extra fields become custom fields on the membership."""

    model_config = ConfigDict(extra="allow")

    organization_id: str = Field(min_length=1)
    username: str = Field(min_length=1, max_length=255)
    role_code: RoleCode = RoleCode.MEMBER
    invite: bool = False


class AddOrganizationMember(UseCase[AddMemberInput, OrganizationMembership]):
    """Add a member by username, or reactivate a left/removed membership.

    A registered user is added as an active member. An unregistered username
    (or ``invite=True``) produces a pending invitation instead, to be
    completed by ``AcceptOrganizationInvitation``.
    """

    name = "AddOrganizationMember"
    input_model = AddMemberInput
    error_message = "Failed to add organization member"
    custom_fields_entity = "organization_memberships"

    async def authorize(self, data, context, state):
        repos = self.uow.repositories()
        found = await find_organization_or_fail(repos.organizations, data.organization_id)
        if found.is_failure:
            return found.error
        org = found.value
        if (err := _writable(org, "add members")) is not None:
            return err

        actor = await get_user_from_external_id(repos.users, context)
        if actor.is_failure:
            return actor.error

        access = await resolve_access(repos.organization_memberships, org, actor.value)
        if (denied := require_member_manager(access, "add members", data.role_code)) is not None:
            return denied
        state["org"] = org
        return None

    async def run(self, data, context, state) -> Result[OrganizationMembership]:
        org: Organization = state["org"]
        repos = self.uow.repositories()
        custom = custom_fields_of(OrganizationMembership, data)

        if data.role_code == RoleCode.OWNER:
            return Result.fail(
                BusinessRuleError("Ownership can only be assigned by transferring ownership")
            )
        if (err := validate_custom_fields(self.options, "organization_memberships", custom)) is not None:
            return Result.fail(err)

        target_user = await repos.users.find_by_username(data.username)
        if target_user is not None and target_user.deleted_at is not None:
            return Result.fail(BusinessRuleError("Deleted users cannot join organizations"))

        existing = await repos.organization_memberships.find_by_username_and_organization_id(
            data.username, org.id
        )
        if existing is None and target_user is not None:
            existing = await repos.organization_memberships.find_by_user_id_and_organization_id(
                target_user.id, org.id
            )

        if is_live(existing):
            return Result.fail(
                ConflictError(
                    "OrganizationMembership",
                    f"{data.username}:{org.id}",
                    {"reason": "User is already a member of this organization"},
                )
            )

        now = utcnow()
        pending = data.invite or target_user is None
        timeline = {
            "invited_at": now if pending else None,
            "joined_at": None if pending else now,
            "left_at": None,
            "deleted_at": None,
            "updated_at": now,
        }

        if existing is not None:
            membership = evolve(
                existing,
                user_id=target_user.id if target_user else existing.user_id,
                username=data.username,
                role_code=data.role_code,
                **timeline,
                **custom,
            )
        else:
            membership = OrganizationMembership(
                id=new_id(),
                user_id=target_user.id if target_user else None,
                username=data.username,
                organization_id=org.id,
                role_code=data.role_code,
                created_at=now,
                **timeline,
                **custom,
            )

        if existing is not None:
            if (refused := transition_error(existing, membership_status(membership))) is not None:
                return Result.fail(refused)

        audit = context.for_audit(AuditAction.ADD_ORGANIZATION_MEMBER, org.id)

        async def work(tx: RepositoryBundle) -> None:
            if existing is not None:
                await tx.organization_memberships.update(membership, audit)
            else:
                await tx.organization_memberships.insert(membership, audit)

        try:
            await self.uow.transaction(work)
        except ConflictError as exc:
            return Result.fail(exc)

        log.info(
            "membership.added",
            organization_id=org.id,
            username=data.username,
            role=membership.role_code.value,
            status=membership_status(membership).value,
            reactivated=existing is not None,
        )
        return Result.ok(membership)


# ---------------------------------------------------------------------------
# Accept invitation
# ---------------------------------------------------------------------------

class AcceptInvitationInput(BaseModel):
    organization_id: str = Field(min_length=1)
    username: str = Field(min_length=1, max_length=255)


class AcceptOrganizationInvitation(UseCase[AcceptInvitationInput, OrganizationMembership]):
    """Move the caller's pending invitation to active."""

    name = "AcceptOrganizationInvitation"
    input_model = AcceptInvitationInput
    error_message = "Failed to accept organization invitation"
    custom_fields_entity = "organization_memberships"

    async def authorize(self, data, context, state):
        repos = self.uow.repositories()
        actor = await get_user_from_external_id(repos.users, context)
        if actor.is_failure:
            return actor.error
        if actor.value.username != data.username:
            return ValidationError(
                "Username does not match the authenticated user", "username"
            )

        found = await find_organization_or_fail(repos.organizations, data.organization_id)
        if found.is_failure:
            return found.error
        if (err := _writable(found.value, "accept invitations")) is not None:
            return err

        state["org"] = found.value
        state["actor"] = actor.value
        return None

    async def run(self, data, context, state) -> Result[OrganizationMembership]:
        org = state["org"]
        actor = state["actor"]
        repos = self.uow.repositories()

        invitation = await repos.organization_memberships.find_by_username_and_organization_id(
            data.username, org.id
        )
        if invitation is None or (invitation.user_id and invitation.user_id != actor.id):
            return Result.fail(
                NotFoundError("OrganizationInvitation", f"{data.username}:{org.id}")
            )

        status = membership_status(invitation)
        if status is MembershipStatus.ACTIVE:
            return Result.fail(BusinessRuleError("Invitation has already been accepted"))
        if status is not MembershipStatus.PENDING or invitation.invited_at is None:
            return Result.fail(
                BusinessRuleError(
                    "Invitation is no longer valid",
                    {"status": status.value},
                )
            )

        now = utcnow()
        membership = evolve(invitation, user_id=actor.id, joined_at=now, updated_at=now)
        audit = context.for_audit(AuditAction.ACCEPT_ORGANIZATION_INVITATION, org.id)

        async def work(tx: RepositoryBundle) -> None:
            await tx.organization_memberships.update(membership, audit)

        await self.uow.transaction(work)
        log.info("membership.invitation_accepted", organization_id=org.id, user_id=actor.id)
        return Result.ok(membership)


# ---------------------------------------------------------------------------
# Leave
# ---------------------------------------------------------------------------

class LeaveInput(BaseModel):
    organization_id: str = Field(min_length=1)


class LeaveOrganization(UseCase[LeaveInput, OrganizationMembership]):
    """The caller leaves an organization. Owners must transfer ownership first."""

    name = "LeaveOrganization"
    input_model = LeaveInput
    error_message = "Failed to leave organization"

    async def run(self, data, context, state) -> Result[OrganizationMembership]:
        repos = self.uow.repositories()
        found = await find_organization_or_fail(repos.organizations, data.organization_id)
        if found.is_failure:
            return Result.fail(found.error)
        org = found.value

        actor = await get_user_from_external_id(repos.users, context)
        if actor.is_failure:
            return Result.fail(actor.error)
        user = actor.value

        membership = await repos.organization_memberships.find_by_user_id_and_organization_id(
            user.id, org.id
        )
        if membership is None:
            return Result.fail(NotFoundError("OrganizationMembership", f"{user.id}:{org.id}"))
        if org.owner_user_id == user.id:
            return Result.fail(
                BusinessRuleError("Organization owner cannot leave. Transfer ownership first.")
            )
        refused = transition_error(
            membership, MembershipStatus.LEFT, "Only active members can leave an organization"
        )
        if refused is not None:
            return Result.fail(refused)

        now = utcnow()
        left = evolve(membership, left_at=now, updated_at=now)
        audit = context.for_audit(AuditAction.LEAVE_ORGANIZATION, org.id)

        async def work(tx: RepositoryBundle) -> None:
            await tx.organization_memberships.update(left, audit)

        await self.uow.transaction(work)
        log.info("membership.left", organization_id=org.id, user_id=user.id)
        return Result.ok(left)


# ---------------------------------------------------------------------------
# Remove member
# ---------------------------------------------------------------------------

class RemoveMemberInput(BaseModel):
    organization_id: str = Field(min_length=1)
    user_id: Optional[str] = Field(default=None, min_length=1)
    username: Optional[str] = Field(default=None, min_length=1)

    @model_validator(mode="after")
    def _one_target(self) -> "RemoveMemberInput":
        if not self.user_id and not self.username:
            raise ValueError("Either user_id or username is required")
        return self

    @property
    def target(self) -> str:
        return self.user_id or self.username


class RemoveOrganizationMember(UseCase[RemoveMemberInput, OrganizationMembership]):
    """Owner or admin removes a member (sets ``deleted_at``)."""

    name = "RemoveOrganizationMember"
    input_model = RemoveMemberInput
    error_message = "Failed to remove organization member"

    async def authorize(self, data, context, state):
        repos = self.uow.repositories()
        found = await find_organization_or_fail(repos.organizations, data.organization_id)
        if found.is_failure:
            return found.error
        actor = await get_user_from_external_id(repos.users, context)
        if actor.is_failure:
            return actor.error

        access = await resolve_access(repos.organization_memberships, found.value, actor.value)
        if (denied := require_owner_or_admin(access, "remove members")) is not None:
            return denied
        state["org"] = found.value
        state["access"] = access
        return None

    async def run(self, data, context, state) -> Result[OrganizationMembership]:
        org = state["org"]
        repos = self.uow.repositories()

        if data.user_id:
            target = await repos.organization_memberships.find_by_user_id_and_organization_id(
                data.user_id, org.id
            )
        else:
            target = await repos.organization_memberships.find_by_username_and_organization_id(
                data.username, org.id
            )
        if not is_live(target):
            return Result.fail(NotFoundError("OrganizationMembership", f"{data.target}:{org.id}"))

        denied: Optional[DomainError] = require_member_manager(
            state["access"], "remove members", target.role_code
        )
        if denied is not None:
            return Result.fail(denied)
        if _is_owner_membership(org, target):
            return Result.fail(
                BusinessRuleError("Organization owner cannot be removed. Transfer ownership first.")
            )
        if (refused := transition_error(target, MembershipStatus.REMOVED)) is not None:
            return Result.fail(refused)

        now = utcnow()
        removed = evolve(target, deleted_at=now, updated_at=now)
        audit = context.for_audit(AuditAction.REMOVE_ORGANIZATION_MEMBER, org.id)

        async def work(tx: RepositoryBundle) -> None:
            await tx.organization_memberships.update(removed, audit)

        await self.uow.transaction(work)
        log.info("membership.removed", organization_id=org.id, target=data.target)
        return Result.ok(removed)


# ---------------------------------------------------------------------------
# Update role
# ---------------------------------------------------------------------------

class UpdateMemberRoleInput(BaseModel):
    organization_id: str = Field(min_length=1)
    user_id: str = Field(min_length=1)
    role_code: RoleCode


class UpdateOrganizationMemberRole(UseCase[UpdateMemberRoleInput, OrganizationMembership]):
    name = "UpdateOrganizationMemberRole"
    input_model = UpdateMemberRoleInput
    error_message = "Failed to update organization member role"
    custom_fields_entity = "organization_memberships"

    async def authorize(self, data, context, state):
        repos = self.uow.repositories()
        found = await find_organization_or_fail(repos.organizations, data.organization_id)
        if found.is_failure:
            return found.error
        if (err := _writable(found.value, "update member roles")) is not None:
            return err
        actor = await get_user_from_external_id(repos.users, context)
        if actor.is_failure:
            return actor.error

        access = await resolve_access(repos.organization_memberships, found.value, actor.value)
        if (denied := require_member_manager(access, "update member roles", data.role_code)) is not None:
            return denied
        state["org"] = found.value
        state["access"] = access
        return None

    async def run(self, data, context, state) -> Result[OrganizationMembership]:
        org = state["org"]
        repos = self.uow.repositories()

        target = await repos.organization_memberships.find_by_user_id_and_organization_id(
            data.user_id, org.id
        )
        if not is_active_member(target):
            return Result.fail(NotFoundError("OrganizationMembership", f"{data.user_id}:{org.id}"))
        denied = require_member_manager(state["access"], "update member roles", target.role_code)
        if denied is not None:
            return Result.fail(denied)
        if _is_owner_membership(org, target):
            return Result.fail(
                BusinessRuleError(
                    "Cannot change the organization owner's role. Use transfer ownership instead."
                )
            )
        if data.role_code == RoleCode.OWNER:
            return Result.fail(
                BusinessRuleError("Ownership can only be assigned by transferring ownership")
            )
        if target.role_code == data.role_code:
            return Result.ok(target)

        updated = evolve(target, role_code=data.role_code, updated_at=utcnow())
        audit = context.for_audit(
            AuditAction.UPDATE_ORGANIZATION_MEMBER_ROLE,
            org.id,
            previous_role=target.role_code.value,
        )

        async def work(tx: RepositoryBundle) -> None:
            await tx.organization_memberships.update(updated, audit)

        await self.uow.transaction(work)
        log.info(
            "membership.role_updated",
            organization_id=org.id,
            user_id=data.user_id,
            role=data.role_code.value,
        )
        return Result.ok(updated)


# ---------------------------------------------------------------------------
# Transfer ownership
# ---------------------------------------------------------------------------

class TransferOwnershipInput(BaseModel):
    organization_id: str = Field(min_length=1)
    new_owner_id: str = Field(min_length=1)


class TransferOrganizationOwnership(UseCase[TransferOwnershipInput, Organization]):
    """Hand the organization to another active member.

    The organization's owner and both memberships' roles change together in
    one transaction, so there is always exactly one owner membership.
    """

    name = "TransferOrganizationOwnership"
    input_model = TransferOwnershipInput
    error_message = "Failed to transfer organization ownership"
    custom_fields_entity = "organizations"

    async def run(self, data, context, state) -> Result[Organization]:
        repos = self.uow.repositories()

        org = await repos.organizations.find_by_id(data.organization_id)
        if org is None:
            return Result.fail(NotFoundError("Organization", data.organization_id))
        if org.deleted_at is not None:
            return Result.fail(
                ValidationError("Cannot transfer ownership of a deleted organization", "organization_id")
            )
        if org.archived_at is not None:
            return Result.fail(
                ValidationError("Cannot transfer ownership of an archived organization", "organization_id")
            )

        current_owner = await repos.users.find_by_id(org.owner_user_id)
        if current_owner is None or current_owner.deleted_at is not None:
            return Result.fail(ValidationError("Current organization owner is not available"))
        if not context.external_id or current_owner.external_id != context.external_id:
            return Result.fail(
                ValidationError("Only the current organization owner can transfer ownership")
            )
        if data.new_owner_id == current_owner.id:
            return Result.fail(
                ValidationError("New owner must be different from the current owner", "new_owner_id")
            )

        new_owner = await repos.users.find_by_id(data.new_owner_id)
        if new_owner is None or new_owner.deleted_at is not None:
            return Result.fail(ValidationError("New owner is not an active user", "new_owner_id"))

        owner_membership = next(
            (
                m
                for m in await repos.organization_memberships.find_by_user(current_owner.id)
                if m.organization_id == org.id and is_active_member(m)
            ),
            None,
        )
        if owner_membership is None:
            return Result.fail(
                ValidationError("Current owner does not have an active membership in the organization")
            )

        new_owner_membership = await repos.organization_memberships.find_by_user_id_and_organization_id(
            new_owner.id, org.id
        )
        if not is_active_member(new_owner_membership):
            return Result.fail(
                ValidationError(
                    "New owner does not have an active membership in the organization",
                    "new_owner_id",
                )
            )

        now = utcnow()
        transferred = evolve(org, owner_user_id=new_owner.id, updated_at=now)
        demoted = evolve(owner_membership, role_code=RoleCode.MEMBER, updated_at=now)
        promoted = evolve(new_owner_membership, role_code=RoleCode.OWNER, updated_at=now)
        audit = context.for_audit(
            AuditAction.TRANSFER_ORGANIZATION_OWNERSHIP,
            org.id,
            previous_owner_id=current_owner.id,
            new_owner_id=new_owner.id,
        )

        async def work(tx: RepositoryBundle) -> None:
            await tx.organizations.update(transferred, audit)
            await tx.organization_memberships.update(demoted, audit)
            await tx.organization_memberships.update(promoted, audit)

        await self.uow.transaction(work)
        log.info(
            "organization.ownership_transferred",
            organization_id=org.id,
            previous_owner=current_owner.id,
            new_owner=new_owner.id,
        )
        return Result.ok(transferred)
