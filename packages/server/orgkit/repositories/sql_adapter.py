"""
SQL persistence (PostgreSQL via asyncpg in production, SQLite via aiosqlite
in tests) on SQLModel tables.

Repositories run against the session of the enclosing transaction. Outside a
transaction each call opens and commits its own short session.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Awaitable, Callable, Optional, TypeVar

import structlog
from sqlalchemy import and_, case, func, or_
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession
from sqlalchemy.orm import sessionmaker
from sqlmodel import SQLModel, select

from orgkit.core.context import OperationContext
from orgkit.core.database import create_session_factory, session_scope
from orgkit.core.errors import ConflictError, InfrastructureError
from orgkit.models import MembershipRecord, OrganizationRecord, UserRecord
from orgkit.repositories.audit import record_write
from orgkit.repositories.json_adapter import placeholder_user
from orgkit.repositories.ports import RepositoryBundle
from orgkit_shared.schemas.common import EntityModel, PaginatedResult
from orgkit_shared.schemas.memberships import (
    MemberListOptions,
    MemberWithUserInfo,
    OrganizationMembership,
)
from orgkit_shared.schemas.organizations import Organization
from orgkit_shared.schemas.users import User

log = structlog.get_logger()

T = TypeVar("T")
E = TypeVar("E", bound=EntityModel)


# ---------------------------------------------------------------------------
# Row <-> entity mapping
# ---------------------------------------------------------------------------

def _aware(value):
    # SQLite drops the offset; everything is stored in UTC.
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def to_entity(entity_cls: type[E], row: SQLModel) -> E:
    data = row.model_dump()
    custom = data.pop("custom_fields", None) or {}
    return entity_cls.model_validate({**custom, **{k: _aware(v) for k, v in data.items()}})


def to_row(row_cls: type[SQLModel], entity: EntityModel) -> SQLModel:
    core = entity.model_dump(exclude=set(entity.custom_fields))
    custom = {
        key: value
        for key, value in entity.model_dump(mode="json").items()
        if key in entity.custom_fields
    }
    if "role_code" in core and hasattr(core["role_code"], "value"):
        core["role_code"] = core["role_code"].value
    return row_cls(**core, custom_fields=custom)


class _SessionSource:
    def __init__(self, session_factory: sessionmaker, session: Optional[AsyncSession] = None):
        self._factory = session_factory
        self._session = session

    @asynccontextmanager
    async def __call__(self) -> AsyncIterator[AsyncSession]:
        if self._session is not None:
            yield self._session
            return
        async with session_scope(self._factory) as session:
            yield session


async def _save(session: AsyncSession, row: SQLModel, resource: str, identifier: str) -> None:
    try:
        await session.merge(row)
        await session.flush()
    except IntegrityError as exc:
        raise ConflictError(resource, identifier, {"constraint": str(exc.orig)}) from exc


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------

class SqlUserRepository:
    def __init__(self, sessions: _SessionSource):
        self.sessions = sessions

    async def _one(self, *where) -> Optional[User]:
        async with self.sessions() as session:
            result = await session.execute(select(UserRecord).where(*where))
            row = result.scalars().first()
            return to_entity(User, row) if row else None

    async def find_by_id(self, user_id: str) -> Optional[User]:
        return await self._one(UserRecord.id == user_id)

    async def find_by_username(self, username: str) -> Optional[User]:
        return await self._one(UserRecord.username == username)

    async def find_by_external_id(self, external_id: str) -> Optional[User]:
        return await self._one(UserRecord.external_id == external_id)

    async def insert(self, user: User, context: Optional[OperationContext] = None) -> None:
        async with self.sessions() as session:
            try:
                session.add(to_row(UserRecord, user))
                await session.flush()
            except IntegrityError as exc:
                raise ConflictError("User", user.username, {"constraint": str(exc.orig)}) from exc
        record_write("insert", "user", user.id, context)

    async def update(self, user: User, context: Optional[OperationContext] = None) -> None:
        async with self.sessions() as session:
            await _save(session, to_row(UserRecord, user), "User", user.username)
        record_write("update", "user", user.id, context)

    async def delete(self, user_id: str, context: Optional[OperationContext] = None) -> None:
        async with self.sessions() as session:
            row = await session.get(UserRecord, user_id)
            if row is not None:
                await session.delete(row)
                await session.flush()
        record_write("delete", "user", user_id, context)


class SqlOrganizationRepository:
    def __init__(self, sessions: _SessionSource):
        self.sessions = sessions

    async def _many(self, *where) -> list[Organization]:
        async with self.sessions() as session:
            result = await session.execute(
                select(OrganizationRecord).where(*where).order_by(OrganizationRecord.created_at)
            )
            return [to_entity(Organization, row) for row in result.scalars().all()]

    async def find_by_id(self, organization_id: str) -> Optional[Organization]:
        found = await self._many(OrganizationRecord.id == organization_id)
        return found[0] if found else None

    async def find_by_owner(self, owner_user_id: str) -> list[Organization]:
        return await self._many(OrganizationRecord.owner_user_id == owner_user_id)

    async def find_by_ids(self, organization_ids: list[str]) -> list[Organization]:
        if not organization_ids:
            return []
        return await self._many(OrganizationRecord.id.in_(organization_ids))

    async def count(self) -> int:
        async with self.sessions() as session:
            result = await session.execute(select(func.count()).select_from(OrganizationRecord))
            return int(result.scalar_one())

    async def insert(
        self, organization: Organization, context: Optional[OperationContext] = None
    ) -> None:
        async with self.sessions() as session:
            try:
                session.add(to_row(OrganizationRecord, organization))
                await session.flush()
            except IntegrityError as exc:
                raise ConflictError("Organization", organization.id, {"constraint": str(exc.orig)}) from exc
        record_write("insert", "organization", organization.id, context)

    async def update(
        self, organization: Organization, context: Optional[OperationContext] = None
    ) -> None:
        async with self.sessions() as session:
            await _save(session, to_row(OrganizationRecord, organization), "Organization", organization.id)
        record_write("update", "organization", organization.id, context)

    async def delete(
        self, organization_id: str, context: Optional[OperationContext] = None
    ) -> None:
        async with self.sessions() as session:
            row = await session.get(OrganizationRecord, organization_id)
            if row is not None:
                await session.delete(row)
                await session.flush()
        record_write("delete", "organization", organization_id, context)


ACTIVE = and_(
    MembershipRecord.joined_at.is_not(None),
    MembershipRecord.left_at.is_(None),
    MembershipRecord.deleted_at.is_(None),
)
PENDING = and_(
    MembershipRecord.invited_at.is_not(None),
    MembershipRecord.joined_at.is_(None),
    MembershipRecord.left_at.is_(None),
    MembershipRecord.deleted_at.is_(None),
)
REMOVED = or_(
    MembershipRecord.left_at.is_not(None),
    MembershipRecord.deleted_at.is_not(None),
)
LIVE = and_(MembershipRecord.left_at.is_(None), MembershipRecord.deleted_at.is_(None))


def status_filter(options: MemberListOptions):
    """SQL counterpart of ``membership_state.matches_filter``."""
    clauses = []
    if options.include_active:
        clauses.append(ACTIVE)
    if options.include_pending:
        clauses.append(PENDING)
    if options.include_removed:
        clauses.append(REMOVED)
    return or_(*clauses) if clauses else None


class SqlOrganizationMembershipRepository:
    def __init__(self, sessions: _SessionSource):
        self.sessions = sessions

    async def _many(self, *where, newest_first: bool = False) -> list[OrganizationMembership]:
        order = MembershipRecord.created_at.desc() if newest_first else MembershipRecord.created_at
        async with self.sessions() as session:
            result = await session.execute(
                select(MembershipRecord).where(*where).order_by(order, MembershipRecord.id)
            )
            return [to_entity(OrganizationMembership, row) for row in result.scalars().all()]

    async def _relevant(self, *where) -> Optional[OrganizationMembership]:
        """Prefer the live row; otherwise the most recently updated one."""
        async with self.sessions() as session:
            result = await session.execute(
                select(MembershipRecord)
                .where(*where)
                .order_by(case((LIVE, 0), else_=1), MembershipRecord.updated_at.desc())
                .limit(1)
            )
            row = result.scalars().first()
            return to_entity(OrganizationMembership, row) if row else None

    async def find_by_id(self, membership_id: str) -> Optional[OrganizationMembership]:
        found = await self._many(MembershipRecord.id == membership_id)
        return found[0] if found else None

    async def find_by_user_id_and_organization_id(
        self, user_id: str, organization_id: str
    ) -> Optional[OrganizationMembership]:
        return await self._relevant(
            MembershipRecord.user_id == user_id,
            MembershipRecord.organization_id == organization_id,
        )

    async def find_by_username_and_organization_id(
        self, username: str, organization_id: str
    ) -> Optional[OrganizationMembership]:
        return await self._relevant(
            MembershipRecord.username == username,
            MembershipRecord.organization_id == organization_id,
        )

    async def find_by_organization(
        self, organization_id: str, active_only: bool = False
    ) -> list[OrganizationMembership]:
        where = [MembershipRecord.organization_id == organization_id]
        if active_only:
            where.append(ACTIVE)
        return await self._many(*where)

    async def find_by_organization_with_user_info_paginated(
        self, organization_id: str, options: MemberListOptions
    ) -> PaginatedResult[MemberWithUserInfo]:
        where = [MembershipRecord.organization_id == organization_id]
        status = status_filter(options)
        if status is not None:
            where.append(status)

        async with self.sessions() as session:
            org_row = await session.get(OrganizationRecord, organization_id)
            if org_row is None:
                raise LookupError(f"Organization {organization_id!r} missing from store")
            organization = to_entity(Organization, org_row)

            total = (
                await session.execute(
                    select(func.count()).select_from(MembershipRecord).where(*where)
                )
            ).scalar_one()

            result = await session.execute(
                select(MembershipRecord, UserRecord)
                .outerjoin(UserRecord, UserRecord.username == MembershipRecord.username)
                .where(*where)
                .order_by(MembershipRecord.created_at, MembershipRecord.id)
                .offset(options.offset)
                .limit(options.page_size)
            )
            rows = result.all()

        items = []
        for membership_row, user_row in rows:
            membership = to_entity(OrganizationMembership, membership_row)
            user = to_entity(User, user_row) if user_row else placeholder_user(membership)
            items.append(
                MemberWithUserInfo.model_validate(
                    {**membership.model_dump(), "user": user, "organization": organization}
                )
            )
        return PaginatedResult[MemberWithUserInfo].build(
            items, total=int(total), page=options.page, page_size=options.page_size
        )

    async def find_by_user(self, user_id: str) -> list[OrganizationMembership]:
        return await self._many(MembershipRecord.user_id == user_id, newest_first=True)

    async def find_all(self) -> list[OrganizationMembership]:
        return await self._many(newest_first=True)

    async def link_username_memberships_to_user_id(
        self, username: str, user_id: str, context: Optional[OperationContext] = None
    ) -> int:
        async with self.sessions() as session:
            result = await session.execute(
                select(MembershipRecord).where(
                    MembershipRecord.username == username,
                    MembershipRecord.user_id.is_(None),
                )
            )
            rows = result.scalars().all()
            for row in rows:
                row.user_id = user_id
                session.add(row)
            await session.flush()
        if rows:
            record_write("link", "organization_membership", username, context)
        return len(rows)

    async def insert(
        self, membership: OrganizationMembership, context: Optional[OperationContext] = None
    ) -> None:
        identifier = f"{membership.username}:{membership.organization_id}"
        async with self.sessions() as session:
            try:
                session.add(to_row(MembershipRecord, membership))
                await session.flush()
            except IntegrityError as exc:
                raise ConflictError("OrganizationMembership", identifier, {"constraint": str(exc.orig)}) from exc
        record_write("insert", "organization_membership", membership.id, context)

    async def update(
        self, membership: OrganizationMembership, context: Optional[OperationContext] = None
    ) -> None:
        async with self.sessions() as session:
            await _save(
                session,
                to_row(MembershipRecord, membership),
                "OrganizationMembership",
                f"{membership.username}:{membership.organization_id}",
            )
        record_write("update", "organization_membership", membership.id, context)

    async def delete(
        self, membership_id: str, context: Optional[OperationContext] = None
    ) -> None:
        async with self.sessions() as session:
            row = await session.get(MembershipRecord, membership_id)
            if row is not None:
                await session.delete(row)
                await session.flush()
        record_write("delete", "organization_membership", membership_id, context)


# ---------------------------------------------------------------------------
# Unit of work
# ---------------------------------------------------------------------------

class SqlUnitOfWork:
    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self.session_factory = create_session_factory(engine)

    def _bundle(self, session: Optional[AsyncSession]) -> RepositoryBundle:
        sessions = _SessionSource(self.session_factory, session)
        return RepositoryBundle(
            users=SqlUserRepository(sessions),
            organizations=SqlOrganizationRepository(sessions),
            organization_memberships=SqlOrganizationMembershipRepository(sessions),
        )

    def repositories(self) -> RepositoryBundle:
        return self._bundle(None)

    async def transaction(self, work: Callable[[RepositoryBundle], Awaitable[T]]) -> T:
        try:
            async with session_scope(self.session_factory) as session:
                return await work(self._bundle(session))
        except IntegrityError:
            raise
        except DBAPIError as exc:
            log.error("sql.transaction_failed", error=str(exc.orig or exc))
            raise InfrastructureError("Database operation failed", {"error": exc}) from exc
