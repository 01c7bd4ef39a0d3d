"""Lookups shared by the use cases."""

from __future__ import annotations

from typing import Optional, TypeVar

import pydantic

from orgkit.core.context import OperationContext
from orgkit.core.errors import NotFoundError, ValidationError
from orgkit.core.result import Result
from orgkit.repositories.ports import OrganizationRepository, UserRepository
from orgkit.services.hooks import ToolkitOptions
from orgkit_shared.schemas.organizations import Organization
from orgkit_shared.schemas.common import EntityModel
from orgkit_shared.schemas.users import User

E = TypeVar("E", bound=EntityModel)


def evolve(entity: E, **changes) -> E:
    """Validated copy of ``entity`` with ``changes`` applied (custom fields kept)."""
    return type(entity).model_validate({**entity.model_dump(), **changes})


async def get_user_from_external_id(
    users: UserRepository, context: OperationContext
) -> Result[User]:
    """Resolve the acting user from the principal's external id."""
    if not context.external_id:
        return Result.fail(
            ValidationError("Authentication is required for this operation", "principal")
        )
    user = await users.find_by_external_id(context.external_id)
    if user is None or user.deleted_at is not None:
        return Result.fail(
            NotFoundError(
                "User",
                context.external_id,
                {"hint": "No registered user matches the provided external id"},
            )
        )
    return Result.ok(user)


async def find_organization_or_fail(
    organizations: OrganizationRepository, organization_id: str
) -> Result[Organization]:
    org = await organizations.find_by_id(organization_id)
    if org is None:
        return Result.fail(NotFoundError("Organization", organization_id))
    return Result.ok(org)


def custom_fields_of(entity_cls: type[EntityModel], data: pydantic.BaseModel) -> dict:
    """Undeclared input fields, minus anything that would shadow a core field."""
    return {
        key: value
        for key, value in (data.model_extra or {}).items()
        if key not in entity_cls.model_fields
    }


def validate_custom_fields(
    options: ToolkitOptions, entity: str, fields: dict
) -> Optional[ValidationError]:
    """Check custom fields against the host-supplied schema, if one is set."""
    schema = options.custom_schema(entity)
    if schema is None:
        return None
    try:
        schema.model_validate(fields)
    except pydantic.ValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ()))
        return ValidationError(first.get("msg", "Invalid custom field"), field or None)
    return None
