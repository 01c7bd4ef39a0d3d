"""
JSON-file persistence.

Each entity kind lives in one pretty-printed JSON array under ``data_dir``:

    users.json
    organizations.json
    organization-memberships.json

A transaction works on in-memory copies of the three files. When the work
returns, every changed file is first written to a ``.tmp`` sibling and only
then are all of them renamed into place, under a commit lock that readers
also take. Transactions are serialized with an ``asyncio.Lock``; this
adapter is meant for a single process.
"""

from __future__ import annotations

import asyncio
import json
import os
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, TypeVar

import structlog

from orgkit.core.context import OperationContext
from orgkit.core.errors import ConflictError, InfrastructureError
from orgkit.repositories.audit import record_write
from orgkit.repositories.ports import RepositoryBundle
from orgkit.services.membership_state import is_live, matches_filter
from orgkit_shared.schemas.common import PaginatedResult
from orgkit_shared.schemas.memberships import (
    MemberListOptions,
    MemberWithUserInfo,
    OrganizationMembership,
)
from orgkit_shared.schemas.organizations import Organization
from orgkit_shared.schemas.users import User

log = structlog.get_logger()

T = TypeVar("T")
Record = dict[str, Any]
Predicate = Callable[[Record], bool]

USERS_FILE = "users.json"
ORGANIZATIONS_FILE = "organizations.json"
MEMBERSHIPS_FILE = "organization-memberships.json"


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------

class JsonStorage:
    """Async access to one JSON array file. A missing file reads as ``[]``."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    async def read(self) -> list[Record]:
        return await asyncio.to_thread(self._read_sync)

    async def write(self, records: list[Record]) -> None:
        await asyncio.to_thread(self._write_sync, records)

    async def update(self, fn: Callable[[list[Record]], list[Record]]) -> None:
        await self.write(fn(await self.read()))

    async def find_one(self, predicate: Predicate) -> Optional[Record]:
        return next((r for r in await self.read() if predicate(r)), None)

    async def find_many(self, predicate: Optional[Predicate] = None) -> list[Record]:
        records = await self.read()
        return records if predicate is None else [r for r in records if predicate(r)]

    async def exists(self, predicate: Predicate) -> bool:
        return await self.find_one(predicate) is not None

    async def count(self, predicate: Optional[Predicate] = None) -> int:
        return len(await self.find_many(predicate))

    def _read_sync(self) -> list[Record]:
        if not self.path.exists():
            return []
        with open(self.path, encoding="utf-8") as f:
            content = f.read()
        return json.loads(content) if content.strip() else []

    def _write_sync(self, records: list[Record]) -> None:
        os.replace(self.stage_sync(records), self.path)

    def stage_sync(self, records: list[Record]) -> Path:
        """Write ``records`` next to the file and return the temp path."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(records, f, indent=2)
        return tmp


class LockedStorage(JsonStorage):
    """A ``JsonStorage`` whose reads wait for any in-flight commit."""

    def __init__(self, backing: JsonStorage, lock: asyncio.Lock):
        super().__init__(backing.path)
        self._backing = backing
        self._lock = lock

    async def read(self) -> list[Record]:
        async with self._lock:
            return await self._backing.read()

    async def write(self, records: list[Record]) -> None:
        async with self._lock:
            await self._backing.write(records)


class BufferedStorage(JsonStorage):
    """Transaction-local view of a ``JsonStorage``."""

    def __init__(self, backing: JsonStorage):
        super().__init__(backing.path)
        self._backing = backing
        self._records: Optional[list[Record]] = None
        self.dirty = False

    async def read(self) -> list[Record]:
        if self._records is None:
            self._records = await self._backing.read()
        return list(self._records)

    async def write(self, records: list[Record]) -> None:
        self._records = list(records)
        self.dirty = True

    @property
    def backing(self) -> JsonStorage:
        return self._backing

    @property
    def records(self) -> list[Record]:
        return list(self._records or [])


def _commit_sync(buffers: list[BufferedStorage]) -> None:
    """Stage every dirty buffer, then swap all of them into place.

    Nothing is replaced unless every temp file was written; on a staging
    failure the temp files are removed and the originals stay untouched.
    """
    staged: list[tuple[Path, Path]] = []
    try:
        for buffer in buffers:
            if buffer.dirty:
                staged.append((buffer.backing.stage_sync(buffer.records), buffer.path))
    except Exception:
        for tmp, _ in staged:
            tmp.unlink(missing_ok=True)
        raise
    for tmp, path in staged:
        os.replace(tmp, path)


def _dump(entity) -> Record:
    return entity.model_dump(mode="json")


def _replace(records: list[Record], record: Record) -> list[Record]:
    out, found = [], False
    for r in records:
        if r.get("id") == record["id"]:
            out.append(record)
            found = True
        else:
            out.append(r)
    if not found:
        raise KeyError(f"No record with id {record['id']!r} in store")
    return out


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------

class JsonUserRepository:
    def __init__(self, storage: JsonStorage):
        self.storage = storage

    async def find_by_id(self, user_id: str) -> Optional[User]:
        record = await self.storage.find_one(lambda r: r.get("id") == user_id)
        return User.model_validate(record) if record else None

    async def find_by_username(self, username: str) -> Optional[User]:
        record = await self.storage.find_one(lambda r: r.get("username") == username)
        return User.model_validate(record) if record else None

    async def find_by_external_id(self, external_id: str) -> Optional[User]:
        record = await self.storage.find_one(lambda r: r.get("external_id") == external_id)
        return User.model_validate(record) if record else None

    async def insert(self, user: User, context: Optional[OperationContext] = None) -> None:
        records = await self.storage.read()
        if any(r.get("id") == user.id for r in records):
            raise ConflictError("User", user.id)
        if any(r.get("username") == user.username for r in records):
            raise ConflictError("User", user.username)
        if any(r.get("external_id") == user.external_id for r in records):
            raise ConflictError("User", user.external_id)
        await self.storage.write([*records, _dump(user)])
        record_write("insert", "user", user.id, context)

    async def update(self, user: User, context: Optional[OperationContext] = None) -> None:
        await self.storage.update(lambda records: _replace(records, _dump(user)))
        record_write("update", "user", user.id, context)

    async def delete(self, user_id: str, context: Optional[OperationContext] = None) -> None:
        await self.storage.update(lambda records: [r for r in records if r.get("id") != user_id])
        record_write("delete", "user", user_id, context)


class JsonOrganizationRepository:
    def __init__(self, storage: JsonStorage):
        self.storage = storage

    async def find_by_id(self, organization_id: str) -> Optional[Organization]:
        record = await self.storage.find_one(lambda r: r.get("id") == organization_id)
        return Organization.model_validate(record) if record else None

    async def find_by_owner(self, owner_user_id: str) -> list[Organization]:
        records = await self.storage.find_many(lambda r: r.get("owner_user_id") == owner_user_id)
        return [Organization.model_validate(r) for r in records]

    async def find_by_ids(self, organization_ids: list[str]) -> list[Organization]:
        wanted = set(organization_ids)
        records = await self.storage.find_many(lambda r: r.get("id") in wanted)
        return [Organization.model_validate(r) for r in records]

    async def count(self) -> int:
        return await self.storage.count()

    async def insert(
        self, organization: Organization, context: Optional[OperationContext] = None
    ) -> None:
        records = await self.storage.read()
        if any(r.get("id") == organization.id for r in records):
            raise ConflictError("Organization", organization.id)
        await self.storage.write([*records, _dump(organization)])
        record_write("insert", "organization", organization.id, context)

    async def update(
        self, organization: Organization, context: Optional[OperationContext] = None
    ) -> None:
        await self.storage.update(lambda records: _replace(records, _dump(organization)))
        record_write("update", "organization", organization.id, context)

    async def delete(
        self, organization_id: str, context: Optional[OperationContext] = None
    ) -> None:
        await self.storage.update(
            lambda records: [r for r in records if r.get("id") != organization_id]
        )
        record_write("delete", "organization", organization_id, context)


class JsonOrganizationMembershipRepository:
    def __init__(self, storage: JsonStorage, users: JsonStorage, organizations: JsonStorage):
        self.storage = storage
        self.users = users
        self.organizations = organizations

    async def _all(self, predicate: Optional[Predicate] = None) -> list[OrganizationMembership]:
        return [OrganizationMembership.model_validate(r) for r in await self.storage.find_many(predicate)]

    async def find_by_id(self, membership_id: str) -> Optional[OrganizationMembership]:
        record = await self.storage.find_one(lambda r: r.get("id") == membership_id)
        return OrganizationMembership.model_validate(record) if record else None

    async def find_by_user_id_and_organization_id(
        self, user_id: str, organization_id: str
    ) -> Optional[OrganizationMembership]:
        rows = await self._all(
            lambda r: r.get("user_id") == user_id and r.get("organization_id") == organization_id
        )
        return _most_relevant(rows)

    async def find_by_username_and_organization_id(
        self, username: str, organization_id: str
    ) -> Optional[OrganizationMembership]:
        rows = await self._all(
            lambda r: r.get("username") == username and r.get("organization_id") == organization_id
        )
        return _most_relevant(rows)

    async def find_by_organization(
        self, organization_id: str, active_only: bool = False
    ) -> list[OrganizationMembership]:
        rows = await self._all(lambda r: r.get("organization_id") == organization_id)
        if active_only:
            rows = [m for m in rows if matches_filter(m, include_active=True)]
        return sorted(rows, key=lambda m: m.created_at)

    async def find_by_organization_with_user_info_paginated(
        self, organization_id: str, options: MemberListOptions
    ) -> PaginatedResult[MemberWithUserInfo]:
        org_record = await self.organizations.find_one(lambda r: r.get("id") == organization_id)
        if org_record is None:
            raise LookupError(f"Organization {organization_id!r} missing from store")
        organization = Organization.model_validate(org_record)

        rows = [
            m
            for m in await self.find_by_organization(organization_id)
            if matches_filter(
                m,
                include_active=bool(options.include_active),
                include_pending=bool(options.include_pending),
                include_removed=bool(options.include_removed),
            )
        ]
        window = rows[options.offset:options.offset + options.page_size]

        users = await self.users.read()
        by_username = {r.get("username"): r for r in users}
        by_id = {r.get("id"): r for r in users}
        items = []
        for m in window:
            record = by_username.get(m.username) or (by_id.get(m.user_id) if m.user_id else None)
            user = User.model_validate(record) if record else placeholder_user(m)
            items.append(
                MemberWithUserInfo.model_validate(
                    {**m.model_dump(), "user": user, "organization": organization}
                )
            )
        return PaginatedResult[MemberWithUserInfo].build(
            items, total=len(rows), page=options.page, page_size=options.page_size
        )

    async def find_by_user(self, user_id: str) -> list[OrganizationMembership]:
        rows = await self._all(lambda r: r.get("user_id") == user_id)
        return sorted(rows, key=lambda m: m.created_at, reverse=True)

    async def find_all(self) -> list[OrganizationMembership]:
        return sorted(await self._all(), key=lambda m: m.created_at, reverse=True)

    async def link_username_memberships_to_user_id(
        self, username: str, user_id: str, context: Optional[OperationContext] = None
    ) -> int:
        linked = 0

        def link(records: list[Record]) -> list[Record]:
            nonlocal linked
            out = []
            for r in records:
                if r.get("username") == username and not r.get("user_id"):
                    r = {**r, "user_id": user_id}
                    linked += 1
                out.append(r)
            return out

        await self.storage.update(link)
        if linked:
            record_write("link", "organization_membership", username, context)
        return linked

    async def insert(
        self, membership: OrganizationMembership, context: Optional[OperationContext] = None
    ) -> None:
        records = await self.storage.read()
        if any(r.get("id") == membership.id for r in records):
            raise ConflictError("OrganizationMembership", membership.id)
        self._check_unique(records, membership)
        await self.storage.write([*records, _dump(membership)])
        record_write("insert", "organization_membership", membership.id, context)

    async def update(
        self, membership: OrganizationMembership, context: Optional[OperationContext] = None
    ) -> None:
        records = await self.storage.read()
        self._check_unique(records, membership)
        await self.storage.write(_replace(records, _dump(membership)))
        record_write("update", "organization_membership", membership.id, context)

    async def delete(
        self, membership_id: str, context: Optional[OperationContext] = None
    ) -> None:
        await self.storage.update(lambda records: [r for r in records if r.get("id") != membership_id])
        record_write("delete", "organization_membership", membership_id, context)

    @staticmethod
    def _check_unique(records: list[Record], membership: OrganizationMembership) -> None:
        """At most one live membership per (organization, username)."""
        if not is_live(membership):
            return
        for r in records:
            if (
                r.get("id") != membership.id
                and r.get("organization_id") == membership.organization_id
                and r.get("username") == membership.username
                and r.get("left_at") is None
                and r.get("deleted_at") is None
            ):
                raise ConflictError(
                    "OrganizationMembership",
                    f"{membership.username}:{membership.organization_id}",
                )


def _most_relevant(rows: list[OrganizationMembership]) -> Optional[OrganizationMembership]:
    """Prefer the live row; otherwise the most recently updated one."""
    if not rows:
        return None
    live = [m for m in rows if is_live(m)]
    return max(live or rows, key=lambda m: m.updated_at)


def placeholder_user(m: OrganizationMembership) -> User:
    """Stand-in for an invitee who has not registered yet."""
    return User(
        id=m.user_id or "",
        external_id="",
        username=m.username,
        created_at=m.created_at,
        updated_at=m.updated_at,
    )


# ---------------------------------------------------------------------------
# Unit of work
# ---------------------------------------------------------------------------

class JsonUnitOfWork:
    def __init__(self, data_dir: str | Path):
        self.data_dir = Path(data_dir)
        self.users = JsonStorage(self.data_dir / USERS_FILE)
        self.organizations = JsonStorage(self.data_dir / ORGANIZATIONS_FILE)
        self.memberships = JsonStorage(self.data_dir / MEMBERSHIPS_FILE)
        self._lock = asyncio.Lock()
        self._commit_lock = asyncio.Lock()

    def _bundle(self, users: JsonStorage, organizations: JsonStorage, memberships: JsonStorage) -> RepositoryBundle:
        return RepositoryBundle(
            users=JsonUserRepository(users),
            organizations=JsonOrganizationRepository(organizations),
            organization_memberships=JsonOrganizationMembershipRepository(
                memberships, users, organizations
            ),
        )

    def repositories(self) -> RepositoryBundle:
        return self._bundle(
            *(LockedStorage(s, self._commit_lock) for s in (self.users, self.organizations, self.memberships))
        )

    async def transaction(self, work: Callable[[RepositoryBundle], Awaitable[T]]) -> T:
        async with self._lock:
            buffers = [
                BufferedStorage(self.users),
                BufferedStorage(self.organizations),
                BufferedStorage(self.memberships),
            ]
            try:
                result = await work(self._bundle(*buffers))
                try:
                    async with self._commit_lock:
                        await asyncio.to_thread(_commit_sync, buffers)
                except OSError as exc:
                    raise InfrastructureError(
                        "Failed to write the JSON store",
                        {"data_dir": str(self.data_dir), "error": exc},
                    ) from exc
            except Exception:
                log.warning("json.transaction_rolled_back", data_dir=str(self.data_dir))
                raise
            return result
