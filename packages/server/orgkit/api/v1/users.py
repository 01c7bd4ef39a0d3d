"""
User API endpoints. All operate on the authenticated caller.

POST   /api/v1/users                      - Register the caller
GET    /api/v1/users/me                   - Get the caller's profile
PATCH  /api/v1/users/me                   - Update username or custom fields
DELETE /api/v1/users/me                   - Soft-delete the caller
GET    /api/v1/users/me/organizations     - Organizations the caller owns or belongs to
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from orgkit.api.v1.deps import get_context, get_use_cases
from orgkit.api.v1.responses import error_response, respond
from orgkit.core.context import OperationContext
from orgkit.core.errors import ValidationError
from orgkit.services.registry import UseCases
from orgkit_shared.schemas.users import UserCreateRequest, UserUpdateRequest

router = APIRouter()


@router.post("", status_code=201, tags=["Users"])
async def create_user(
    body: UserCreateRequest,
    context: OperationContext = Depends(get_context),
    use_cases: UseCases = Depends(get_use_cases),
):
    """Register the caller. Pending invitations for the username are claimed."""
    if context.external_id is None:
        return error_response(
            ValidationError("Authentication is required for this operation", "principal"),
            context.request_id,
        )
    data = {**body.model_dump(), "external_id": context.external_id}
    result = await use_cases.create_user.execute(data, context)
    location = f"/api/v1/users/{result.value.id}" if result.is_success else None
    return respond(result, context.request_id, status_code=201, location=location)


@router.get("/me", tags=["Users"])
async def get_me(
    context: OperationContext = Depends(get_context),
    use_cases: UseCases = Depends(get_use_cases),
):
    result = await use_cases.get_user.execute({}, context)
    return respond(result, context.request_id)


@router.patch("/me", tags=["Users"])
async def update_me(
    body: UserUpdateRequest,
    context: OperationContext = Depends(get_context),
    use_cases: UseCases = Depends(get_use_cases),
):
    """Update the caller. A new username is copied onto live memberships."""
    result = await use_cases.update_user.execute(body.model_dump(exclude_none=True), context)
    return respond(result, context.request_id)


@router.delete("/me", tags=["Users"])
async def delete_me(
    context: OperationContext = Depends(get_context),
    use_cases: UseCases = Depends(get_use_cases),
):
    """Soft-delete the caller together with the organizations they own."""
    result = await use_cases.delete_user.execute({}, context)
    return respond(result, context.request_id)


@router.get("/me/organizations", tags=["Users"])
async def list_my_organizations(
    context: OperationContext = Depends(get_context),
    use_cases: UseCases = Depends(get_use_cases),
):
    result = await use_cases.list_user_organizations.execute({}, context)
    return respond(result, context.request_id)
