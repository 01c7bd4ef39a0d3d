"""
Organization membership API endpoints.

POST   /api/v1/organizations/{organization_id}/members                  - Add or invite a member
POST   /api/v1/organizations/{organization_id}/accept                   - Accept an invitation
DELETE /api/v1/organizations/{organization_id}/members/me               - Leave the organization
DELETE /api/v1/organizations/{organization_id}/members/{user_id}        - Remove a member
PUT    /api/v1/organizations/{organization_id}/members/{user_id}/role   - Change a member's role
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from orgkit.api.v1.deps import get_context, get_use_cases
from orgkit.api.v1.responses import respond
from orgkit.core.context import OperationContext
from orgkit.services.registry import UseCases
from orgkit_shared.schemas.memberships import (
    InvitationAcceptRequest,
    MemberAddRequest,
    MemberRoleUpdateRequest,
)

router = APIRouter()


@router.post("/{organization_id}/members", status_code=201, tags=["Members"])
async def add_member(
    organization_id: str,
    body: MemberAddRequest,
    context: OperationContext = Depends(get_context),
    use_cases: UseCases = Depends(get_use_cases),
):
    """Add a registered user, or invite a username (Owner or Admin)."""
    result = await use_cases.add_organization_member.execute(
        {**body.model_dump(), "organization_id": organization_id}, context
    )
    location = None
    if result.is_success:
        member = result.value
        location = f"/api/v1/organizations/{organization_id}/members/{member.user_id or member.username}"
    return respond(result, context.request_id, status_code=201, location=location)


@router.post("/{organization_id}/accept", tags=["Members"])
async def accept_invitation(
    organization_id: str,
    body: InvitationAcceptRequest,
    context: OperationContext = Depends(get_context),
    use_cases: UseCases = Depends(get_use_cases),
):
    """Accept a pending invitation addressed to the caller."""
    result = await use_cases.accept_organization_invitation.execute(
        {"organization_id": organization_id, "username": body.username}, context
    )
    return respond(result, context.request_id)


@router.delete("/{organization_id}/members/me", tags=["Members"])
async def leave_organization(
    organization_id: str,
    context: OperationContext = Depends(get_context),
    use_cases: UseCases = Depends(get_use_cases),
):
    """Leave the organization. The owner cannot leave."""
    result = await use_cases.leave_organization.execute({"organization_id": organization_id}, context)
    return respond(result, context.request_id)


@router.delete("/{organization_id}/members/{user_id}", status_code=204, tags=["Members"])
async def remove_member(
    organization_id: str,
    user_id: str,
    context: OperationContext = Depends(get_context),
    use_cases: UseCases = Depends(get_use_cases),
):
    """Remove a member (Owner, or Admin for plain members)."""
    result = await use_cases.remove_organization_member.execute(
        {"organization_id": organization_id, "user_id": user_id}, context
    )
    return respond(result, context.request_id, status_code=204)


@router.put("/{organization_id}/members/{user_id}/role", tags=["Members"])
async def update_member_role(
    organization_id: str,
    user_id: str,
    body: MemberRoleUpdateRequest,
    context: OperationContext = Depends(get_context),
    use_cases: UseCases = Depends(get_use_cases),
):
    """Change a member's role (Owner, or Admin for plain members)."""
    result = await use_cases.update_organization_member_role.execute(
        {"organization_id": organization_id, "user_id": user_id, "role_code": body.role_code},
        context,
    )
    return respond(result, context.request_id)
