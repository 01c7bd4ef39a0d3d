"""
Shared fixtures: both persistence adapters, wired use cases, and helpers
for seeding users, organizations and memberships.
"""

from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient

from orgkit.core.auth import create_access_token
from orgkit.core.config import Settings
from orgkit.core.context import OperationContext, Principal
from orgkit.core.database import create_engine, init_db
from orgkit.main import create_app
from orgkit.repositories.json_adapter import JsonUnitOfWork
from orgkit.repositories.sql_adapter import SqlUnitOfWork
from orgkit.services.registry import build_use_cases


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

@pytest.fixture
def json_uow(tmp_path):
    return JsonUnitOfWork(tmp_path / "data")


@pytest.fixture
async def sql_uow(tmp_path):
    """File-backed SQLite so every session sees the same database."""
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'orgkit.db'}")
    await init_db(engine)
    yield SqlUnitOfWork(engine)
    await engine.dispose()


@pytest.fixture(params=["json", "sql"])
async def uow(request, tmp_path):
    """Run the test once per adapter."""
    if request.param == "json":
        yield JsonUnitOfWork(tmp_path / "data")
        return
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'orgkit.db'}")
    await init_db(engine)
    yield SqlUnitOfWork(engine)
    await engine.dispose()


@pytest.fixture
def use_cases(uow):
    return build_use_cases(uow)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def ctx(username: str | None) -> OperationContext:
    """Context for a caller whose external id is ``ext-<username>``."""
    principal = Principal(external_id=f"ext-{username}") if username else None
    return OperationContext.for_principal(principal, request_id=f"test-{username}")


async def register(use_cases, username: str, **custom):
    result = await use_cases.create_user.execute(
        {"username": username, "external_id": f"ext-{username}", **custom}, ctx(username)
    )
    assert result.is_success, result
    return result.value


async def create_org(use_cases, owner: str, **custom):
    result = await use_cases.create_organization.execute(custom, ctx(owner))
    assert result.is_success, result
    return result.value


async def add_member(use_cases, actor: str, org_id: str, username: str, **extra):
    return await use_cases.add_organization_member.execute(
        {"organization_id": org_id, "username": username, **extra}, ctx(actor)
    )


@pytest.fixture
async def org_with_members(use_cases):
    """bob owns the organization; alice is an active member."""
    bob = await register(use_cases, "bob")
    alice = await register(use_cases, "alice")
    org = await create_org(use_cases, "bob", name="Acme")
    added = await add_member(use_cases, "bob", org.id, "alice")
    assert added.is_success, added
    return org, bob, alice


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------

def bearer(username: str) -> dict:
    return {"Authorization": f"Bearer {create_access_token(f'ext-{username}')}"}


@pytest.fixture
def app(json_uow):
    return create_app(
        use_cases=build_use_cases(json_uow),
        settings=Settings(log_json=False, log_level="warning"),
    )


@pytest.fixture
async def client(app):
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
