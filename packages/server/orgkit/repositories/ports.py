"""
Repository port: the storage operations the use cases depend on.

Adapters (JSON file, SQL) implement these protocols. Every write takes the
``OperationContext`` of the call so adapters can record an audit trail.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Protocol, TypeVar

from orgkit.core.context import OperationContext
from orgkit_shared.schemas.common import PaginatedResult
from orgkit_shared.schemas.memberships import (
    MemberListOptions,
    MemberWithUserInfo,
    OrganizationMembership,
)
from orgkit_shared.schemas.organizations import Organization
from orgkit_shared.schemas.users import User

T = TypeVar("T")


class UserRepository(Protocol):
    async def find_by_id(self, user_id: str) -> Optional[User]: ...

    async def find_by_username(self, username: str) -> Optional[User]: ...

    async def find_by_external_id(self, external_id: str) -> Optional[User]: ...

    async def insert(self, user: User, context: Optional[OperationContext] = None) -> None: ...

    async def update(self, user: User, context: Optional[OperationContext] = None) -> None: ...

    async def delete(self, user_id: str, context: Optional[OperationContext] = None) -> None: ...


class OrganizationRepository(Protocol):
    async def find_by_id(self, organization_id: str) -> Optional[Organization]: ...

    async def find_by_owner(self, owner_user_id: str) -> list[Organization]: ...

    async def find_by_ids(self, organization_ids: list[str]) -> list[Organization]: ...

    async def count(self) -> int: ...

    async def insert(
        self, organization: Organization, context: Optional[OperationContext] = None
    ) -> None: ...

    async def update(
        self, organization: Organization, context: Optional[OperationContext] = None
    ) -> None: ...

    async def delete(
        self, organization_id: str, context: Optional[OperationContext] = None
    ) -> None: ...


class OrganizationMembershipRepository(Protocol):
    async def find_by_id(self, membership_id: str) -> Optional[OrganizationMembership]: ...

    async def find_by_user_id_and_organization_id(
        self, user_id: str, organization_id: str
    ) -> Optional[OrganizationMembership]: ...

    async def find_by_username_and_organization_id(
        self, username: str, organization_id: str
    ) -> Optional[OrganizationMembership]: ...

    async def find_by_organization(
        self, organization_id: str, active_only: bool = False
    ) -> list[OrganizationMembership]: ...

    async def find_by_organization_with_user_info_paginated(
        self, organization_id: str, options: MemberListOptions
    ) -> PaginatedResult[MemberWithUserInfo]: ...

    async def find_by_user(self, user_id: str) -> list[OrganizationMembership]: ...

    async def find_all(self) -> list[OrganizationMembership]: ...

    async def link_username_memberships_to_user_id(
        self, username: str, user_id: str, context: Optional[OperationContext] = None
    ) -> int: ...

    async def insert(
        self, membership: OrganizationMembership, context: Optional[OperationContext] = None
    ) -> None: ...

    async def update(
        self, membership: OrganizationMembership, context: Optional[OperationContext] = None
    ) -> None: ...

    async def delete(
        self, membership_id: str, context: Optional[OperationContext] = None
    ) -> None: ...


@dataclass
class RepositoryBundle:
    """The repositories bound to one transaction."""

    users: UserRepository
    organizations: OrganizationRepository
    organization_memberships: OrganizationMembershipRepository


class UnitOfWork(Protocol):
    async def transaction(self, work: Callable[[RepositoryBundle], Awaitable[T]]) -> T:
        """Run ``work`` atomically: commit on return, roll back on exception."""
        ...

    def repositories(self) -> RepositoryBundle:
        """Repositories for reads outside a transaction."""
        ...
