"""
Organization use cases: create, get, update, lifecycle (archive, delete,
restore) and the paginated member listing.

Archiving and deleting an organization only stamp the organization row.
Membership rows are left exactly as they were so a restore brings the
organization back with its membership state intact.
"""

from __future__ import annotations

from typing import Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field

from orgkit.core.errors import DomainError, NotFoundError, ValidationError
from orgkit.core.result import Result
from orgkit.core.system import new_id, utcnow
from orgkit.repositories.ports import RepositoryBundle
from orgkit.services.authorization import (
    Access,
    require_owner,
    require_owner_or_admin,
    require_owner_or_member,
    resolve_access,
    scoped_list_options,
)
from orgkit.services.base import UseCase
from orgkit.services.helpers import (
    custom_fields_of,
    evolve,
    find_organization_or_fail,
    get_user_from_external_id,
    validate_custom_fields,
)
from orgkit_shared.schemas.common import AuditAction, RoleCode
from orgkit_shared.schemas.memberships import (
    MemberListOptions,
    MemberListPage,
    OrganizationMembership,
)
from orgkit_shared.schemas.organizations import ORG_TRANSITIONS, Organization, OrgStatus

log = structlog.get_logger()


def lifecycle_error(
    org: Organization, target: OrgStatus, refusals: dict[OrgStatus, str]
) -> Optional[ValidationError]:
    """Refuse a lifecycle move that ``ORG_TRANSITIONS`` does not allow."""
    if target in ORG_TRANSITIONS[org.status]:
        return None
    return ValidationError(refusals[org.status], details={"status": org.status.value})


class OrganizationIdInput(BaseModel):
    organization_id: str = Field(min_length=1)


class _OrganizationUseCase(UseCase):
    """Loads the organization, the acting user and their access into ``state``."""

    # Deleted organizations are invisible to reads.
    hide_deleted = False

    async def load(self, data, context, state) -> Optional[DomainError]:
        repos = self.uow.repositories()
        found = await find_organization_or_fail(repos.organizations, data.organization_id)
        if found.is_failure:
            return found.error
        org = found.value
        if self.hide_deleted and org.deleted_at is not None:
            return NotFoundError("Organization", data.organization_id)

        actor = await get_user_from_external_id(repos.users, context)
        if actor.is_failure:
            return actor.error

        state["org"] = org
        state["actor"] = actor.value
        state["access"] = await resolve_access(repos.organization_memberships, org, actor.value)
        return None


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------

class CreateOrganizationInput(BaseModel):
    """Custom fields only; the caller becomes the owner."""

    model_config = ConfigDict(extra="allow")


class CreateOrganization(UseCase[CreateOrganizationInput, Organization]):
    name = "CreateOrganization"
    input_model = CreateOrganizationInput
    error_message = "Failed to create organization"
    custom_fields_entity = "organizations"

    async def run(self, data, context, state) -> Result[Organization]:
        repos = self.uow.repositories()
        actor = await get_user_from_external_id(repos.users, context)
        if actor.is_failure:
            return Result.fail(actor.error)
        owner = actor.value

        custom = custom_fields_of(Organization, data)
        if (err := validate_custom_fields(self.options, "organizations", custom)) is not None:
            return Result.fail(err)

        now = utcnow()
        org = Organization(
            id=new_id(),
            owner_user_id=owner.id,
            created_at=now,
            updated_at=now,
            **custom,
        )
        membership = OrganizationMembership(
            id=new_id(),
            user_id=owner.id,
            username=owner.username,
            organization_id=org.id,
            role_code=RoleCode.OWNER,
            joined_at=now,
            created_at=now,
            updated_at=now,
        )
        audit = context.for_audit(AuditAction.CREATE_ORGANIZATION, org.id)

        async def work(tx: RepositoryBundle) -> None:
            await tx.organizations.insert(org, audit)
            await tx.organization_memberships.insert(membership, audit)

        await self.uow.transaction(work)
        log.info("organization.created", organization_id=org.id, owner=owner.id)
        return Result.ok(org)


# ---------------------------------------------------------------------------
# Get / Update
# ---------------------------------------------------------------------------

class GetOrganization(_OrganizationUseCase):
    name = "GetOrganization"
    input_model = OrganizationIdInput
    error_message = "Failed to get organization"
    custom_fields_entity = "organizations"
    hide_deleted = True

    async def authorize(self, data, context, state):
        if (err := await self.load(data, context, state)) is not None:
            return err
        return require_owner_or_member(state["access"], "view")

    async def run(self, data, context, state) -> Result[Organization]:
        return Result.ok(state["org"])


class UpdateOrganizationInput(BaseModel):
    """Custom fields to merge into the organization."""

    model_config = ConfigDict(extra="allow")

    organization_id: str = Field(min_length=1)


class UpdateOrganization(_OrganizationUseCase):
    name = "UpdateOrganization"
    input_model = UpdateOrganizationInput
    error_message = "Failed to update organization"
    custom_fields_entity = "organizations"

    async def authorize(self, data, context, state):
        if (err := await self.load(data, context, state)) is not None:
            return err
        if state["org"].deleted_at is not None:
            return ValidationError("Cannot update a deleted organization", "organization_id")
        return require_owner_or_admin(state["access"], "update")

    async def run(self, data, context, state) -> Result[Organization]:
        org: Organization = state["org"]
        changes = custom_fields_of(Organization, data)
        merged = {**org.custom_fields, **changes}
        if (err := validate_custom_fields(self.options, "organizations", merged)) is not None:
            return Result.fail(err)

        updated = evolve(org, updated_at=utcnow(), **changes)
        audit = context.for_audit(AuditAction.UPDATE_ORGANIZATION, org.id, fields=sorted(changes))

        async def work(tx: RepositoryBundle) -> None:
            await tx.organizations.update(updated, audit)

        await self.uow.transaction(work)
        log.info("organization.updated", organization_id=org.id, fields=sorted(changes))
        return Result.ok(updated)


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

class ArchiveOrganization(_OrganizationUseCase):
    name = "ArchiveOrganization"
    input_model = OrganizationIdInput
    error_message = "Failed to archive organization"
    custom_fields_entity = "organizations"

    async def authorize(self, data, context, state):
        if (err := await self.load(data, context, state)) is not None:
            return err
        return require_owner_or_admin(state["access"], "archive")

    async def run(self, data, context, state) -> Result[Organization]:
        org: Organization = state["org"]
        refused = lifecycle_error(
            org,
            OrgStatus.ARCHIVED,
            {
                OrgStatus.DELETED: "Cannot archive a deleted organization",
                OrgStatus.ARCHIVED: "Organization is already archived",
            },
        )
        if refused is not None:
            return Result.fail(refused)

        now = utcnow()
        archived = evolve(org, archived_at=now, updated_at=now)
        audit = context.for_audit(AuditAction.ARCHIVE_ORGANIZATION, org.id)

        async def work(tx: RepositoryBundle) -> None:
            await tx.organizations.update(archived, audit)

        await self.uow.transaction(work)
        log.info("organization.archived", organization_id=org.id)
        return Result.ok(archived)


class DeleteOrganization(_OrganizationUseCase):
    name = "DeleteOrganization"
    input_model = OrganizationIdInput
    error_message = "Failed to delete organization"
    custom_fields_entity = "organizations"

    async def authorize(self, data, context, state):
        if (err := await self.load(data, context, state)) is not None:
            return err
        return require_owner(state["access"], "delete")

    async def run(self, data, context, state) -> Result[Organization]:
        org: Organization = state["org"]
        refused = lifecycle_error(
            org, OrgStatus.DELETED, {OrgStatus.DELETED: "Organization is already deleted"}
        )
        if refused is not None:
            return Result.fail(refused)

        now = utcnow()
        deleted = evolve(org, deleted_at=now, updated_at=now)
        audit = context.for_audit(AuditAction.DELETE_ORGANIZATION, org.id)

        async def work(tx: RepositoryBundle) -> None:
            await tx.organizations.update(deleted, audit)

        await self.uow.transaction(work)
        log.info("organization.deleted", organization_id=org.id)
        return Result.ok(deleted)


class RestoreOrganization(_OrganizationUseCase):
    name = "RestoreOrganization"
    input_model = OrganizationIdInput
    error_message = "Failed to restore organization"
    custom_fields_entity = "organizations"

    async def authorize(self, data, context, state):
        if (err := await self.load(data, context, state)) is not None:
            return err
        return require_owner(state["access"], "restore")

    async def run(self, data, context, state) -> Result[Organization]:
        org: Organization = state["org"]
        refused = lifecycle_error(
            org,
            OrgStatus.ACTIVE,
            {
                OrgStatus.DELETED: "Deleted organizations cannot be restored",
                OrgStatus.ACTIVE: "Organization is not archived",
            },
        )
        if refused is not None:
            return Result.fail(refused)

        owner = await self.uow.repositories().users.find_by_id(org.owner_user_id)
        if owner is None or owner.deleted_at is not None:
            return Result.fail(ValidationError("Organization owner is no longer active"))

        restored = evolve(org, archived_at=None, updated_at=utcnow())
        audit = context.for_audit(AuditAction.RESTORE_ORGANIZATION, org.id)

        async def work(tx: RepositoryBundle) -> None:
            await tx.organizations.update(restored, audit)

        await self.uow.transaction(work)
        log.info("organization.restored", organization_id=org.id)
        return Result.ok(restored)


# ---------------------------------------------------------------------------
# Member listing
# ---------------------------------------------------------------------------

class ListMembersInput(BaseModel):
    organization_id: str = Field(min_length=1)
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)
    include_active: Optional[bool] = None
    include_pending: Optional[bool] = None
    include_removed: Optional[bool] = None


class ListOrganizationMembers(_OrganizationUseCase):
    """Page through an organization's memberships, oldest first.

    Owners and admins see every status by default. Plain members only ever
    see active memberships.
    """

    name = "ListOrganizationMembers"
    input_model = ListMembersInput
    error_message = "Failed to list organization members"
    hide_deleted = True

    async def authorize(self, data, context, state):
        if (err := await self.load(data, context, state)) is not None:
            return err
        return require_owner_or_member(state["access"], "list members")

    async def run(self, data, context, state) -> Result[MemberListPage]:
        access: Access = state["access"]
        requested = MemberListOptions(
            page=data.page,
            page_size=data.page_size,
            include_active=data.include_active,
            include_pending=data.include_pending,
            include_removed=data.include_removed,
        )
        options = scoped_list_options(access, requested)

        try:
            page = await self.uow.repositories().organization_memberships.find_by_organization_with_user_info_paginated(
                data.organization_id, options
            )
        except Exception as exc:
            log.warning("membership.list_failed", organization_id=data.organization_id, error=str(exc))
            return Result.fail(
                ValidationError(self.error_message, details={"original_error": exc})
            )

        return Result.ok(MemberListPage(items=page.items, pagination=page.pagination))
