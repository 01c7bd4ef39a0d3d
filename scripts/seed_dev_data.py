#!/usr/bin/env python3
"""Seed a development store with users, an organization and memberships.

Usage:
    python scripts/seed_dev_data.py

Uses the persistence configured by ORGKIT_PERSISTENCE / ORGKIT_DATA_DIR /
ORGKIT_DATABASE_URL. Prints a Bearer token for each seeded user.
"""

import asyncio

import structlog

from orgkit.core.auth import create_access_token
from orgkit.core.config import get_settings
from orgkit.core.context import OperationContext, Principal
from orgkit.core.database import init_db
from orgkit.core.logging import configure_logging
from orgkit.repositories.factory import build_unit_of_work
from orgkit.repositories.sql_adapter import SqlUnitOfWork
from orgkit.services.registry import build_use_cases

log = structlog.get_logger()

OWNER = "alice"
MEMBERS = [("bob", "admin"), ("carol", "member")]
INVITEES = ["dave"]


def as_user(username: str) -> OperationContext:
    return OperationContext.for_principal(Principal(external_id=f"dev-{username}"), request_id="seed")


async def seed():
    settings = get_settings()
    configure_logging(settings.log_level, json=False)
    uow = build_unit_of_work(settings)
    if isinstance(uow, SqlUnitOfWork):
        await init_db(uow.engine)
    use_cases = build_use_cases(uow)

    for username in [OWNER, *(name for name, _ in MEMBERS)]:
        result = await use_cases.create_user.execute(
            {"username": username, "external_id": f"dev-{username}"}, as_user(username)
        )
        if result.is_failure:
            log.warning("seed.user_skipped", username=username, reason=result.error.message)

    org = await use_cases.create_organization.execute(
        {"name": "Acme Robotics", "plan": "team"}, as_user(OWNER)
    )
    if org.is_failure:
        raise SystemExit(f"Could not create organization: {org.error.message}")
    org_id = org.value.id

    for username, role in MEMBERS:
        await use_cases.add_organization_member.execute(
            {"organization_id": org_id, "username": username, "role_code": role}, as_user(OWNER)
        )
    for username in INVITEES:
        await use_cases.add_organization_member.execute(
            {"organization_id": org_id, "username": username}, as_user(OWNER)
        )

    print(f"Seeded organization {org_id}")
    for username in [OWNER, *(name for name, _ in MEMBERS)]:
        print(f"  {username}: Bearer {create_access_token(f'dev-{username}')}")


if __name__ == "__main__":
    asyncio.run(seed())
