"""
User use cases: registration, profile, deletion and the caller's
organization list.
"""

from __future__ import annotations

from typing import Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field

from orgkit.core.errors import ConflictError
from orgkit.core.result import Result
from orgkit.core.system import new_id, utcnow
from orgkit.repositories.ports import RepositoryBundle
from orgkit.services.base import UseCase
from orgkit.services.helpers import (
    custom_fields_of,
    evolve,
    get_user_from_external_id,
    validate_custom_fields,
)
from orgkit.services.membership_state import is_active_member, is_live
from orgkit_shared.schemas.common import AuditAction
from orgkit_shared.schemas.organizations import Organization
from orgkit_shared.schemas.users import User

log = structlog.get_logger()


class NoInput(BaseModel):
    pass


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------

class CreateUserInput(BaseModel):
    model_config = ConfigDict(extra="allow")

    username: str = Field(min_length=1, max_length=255)
    external_id: Optional[str] = Field(default=None, min_length=1)


class CreateUser(UseCase[CreateUserInput, User]):
    """Register a user and claim any invitations addressed to the username."""

    name = "CreateUser"
    input_model = CreateUserInput
    error_message = "Failed to create user"
    requires_principal = False
    custom_fields_entity = "users"

    async def run(self, data, context, state) -> Result[User]:
        repos = self.uow.repositories()
        custom = custom_fields_of(User, data)
        if (err := validate_custom_fields(self.options, "users", custom)) is not None:
            return Result.fail(err)

        if data.external_id and await repos.users.find_by_external_id(data.external_id):
            return Result.fail(ConflictError("User", data.external_id))
        if await repos.users.find_by_username(data.username):
            return Result.fail(ConflictError("User", data.username))

        now = utcnow()
        user_id = new_id()
        user = User(
            id=user_id,
            external_id=data.external_id or user_id,
            username=data.username,
            created_at=now,
            updated_at=now,
            **custom,
        )
        audit = context.for_audit(AuditAction.CREATE_USER)

        async def work(tx: RepositoryBundle) -> int:
            await tx.users.insert(user, audit)
            return await tx.organization_memberships.link_username_memberships_to_user_id(
                user.username, user.id, audit
            )

        try:
            linked = await self.uow.transaction(work)
        except ConflictError as exc:
            return Result.fail(exc)

        log.info("user.created", user_id=user.id, linked_invitations=linked)
        return Result.ok(user)


# ---------------------------------------------------------------------------
# Get / Update
# ---------------------------------------------------------------------------

class GetUser(UseCase[NoInput, User]):
    name = "GetUser"
    input_model = NoInput
    error_message = "Failed to get user"
    custom_fields_entity = "users"

    async def run(self, data, context, state) -> Result[User]:
        return await get_user_from_external_id(self.uow.repositories().users, context)


class UpdateUserInput(BaseModel):
    model_config = ConfigDict(extra="allow")

    username: Optional[str] = Field(default=None, min_length=1, max_length=255)


class UpdateUser(UseCase[UpdateUserInput, User]):
    """Update the caller's profile.

    A username change is copied onto the caller's live memberships, which
    cache it for listing.
    """

    name = "UpdateUser"
    input_model = UpdateUserInput
    error_message = "Failed to update user"
    custom_fields_entity = "users"

    async def run(self, data, context, state) -> Result[User]:
        repos = self.uow.repositories()
        actor = await get_user_from_external_id(repos.users, context)
        if actor.is_failure:
            return actor
        user = actor.value

        changes = custom_fields_of(User, data)
        if (err := validate_custom_fields(self.options, "users", {**user.custom_fields, **changes})) is not None:
            return Result.fail(err)

        renamed = data.username is not None and data.username != user.username
        if renamed:
            taken = await repos.users.find_by_username(data.username)
            if taken is not None and taken.id != user.id:
                return Result.fail(ConflictError("User", data.username))
            changes["username"] = data.username

        now = utcnow()
        updated = evolve(user, updated_at=now, **changes)
        memberships = await repos.organization_memberships.find_by_user(user.id) if renamed else []
        audit = context.for_audit(AuditAction.UPDATE_USER_PROFILE)

        async def work(tx: RepositoryBundle) -> None:
            await tx.users.update(updated, audit)
            for m in memberships:
                if is_live(m):
                    await tx.organization_memberships.update(
                        evolve(m, username=updated.username, updated_at=now), audit
                    )

        await self.uow.transaction(work)
        log.info("user.updated", user_id=user.id, renamed=renamed)
        return Result.ok(updated)


# ---------------------------------------------------------------------------
# Delete
# ---------------------------------------------------------------------------

class DeleteUser(UseCase[NoInput, User]):
    """Soft-delete the caller, their owned organizations and other memberships."""

    name = "DeleteUser"
    input_model = NoInput
    error_message = "Failed to delete user"
    custom_fields_entity = "users"

    async def run(self, data, context, state) -> Result[User]:
        repos = self.uow.repositories()
        actor = await get_user_from_external_id(repos.users, context)
        if actor.is_failure:
            return actor
        user = actor.value

        now = utcnow()
        owned = [o for o in await repos.organizations.find_by_owner(user.id) if o.deleted_at is None]
        owned_ids = {o.id for o in owned}
        memberships = [
            m
            for m in await repos.organization_memberships.find_by_user(user.id)
            if is_live(m) and m.organization_id not in owned_ids
        ]
        deleted = evolve(user, deleted_at=now, updated_at=now)
        audit = context.for_audit(AuditAction.DELETE_USER)

        async def work(tx: RepositoryBundle) -> None:
            await tx.users.update(deleted, audit)
            for org in owned:
                await tx.organizations.update(evolve(org, deleted_at=now, updated_at=now), audit)
            for m in memberships:
                await tx.organization_memberships.update(
                    evolve(m, left_at=now, deleted_at=now, updated_at=now), audit
                )

        await self.uow.transaction(work)
        log.info(
            "user.deleted",
            user_id=user.id,
            organizations=len(owned),
            memberships=len(memberships),
        )
        return Result.ok(deleted)


# ---------------------------------------------------------------------------
# Organizations of the caller
# ---------------------------------------------------------------------------

class ListUserOrganizations(UseCase[NoInput, list]):
    """Organizations the caller owns or is an active member of."""

    name = "ListUserOrganizations"
    input_model = NoInput
    error_message = "Failed to list user organizations"

    async def run(self, data, context, state) -> Result[list[Organization]]:
        repos = self.uow.repositories()
        actor = await get_user_from_external_id(repos.users, context)
        if actor.is_failure:
            return actor
        user = actor.value

        member_of = [
            m.organization_id
            for m in await repos.organization_memberships.find_by_user(user.id)
            if is_active_member(m)
        ]
        found = await repos.organizations.find_by_ids(member_of) if member_of else []
        owned = await repos.organizations.find_by_owner(user.id)

        by_id: dict[str, Organization] = {}
        for org in [*found, *owned]:
            if org.deleted_at is None:
                by_id.setdefault(org.id, org)
        return Result.ok(sorted(by_id.values(), key=lambda o: o.created_at))
