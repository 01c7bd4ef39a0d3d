"""
Organization API endpoints.

POST   /api/v1/organizations                                     - Create an organization (caller becomes owner)
GET    /api/v1/organizations/{organization_id}                   - Get organization details
PATCH  /api/v1/organizations/{organization_id}                   - Update custom fields
DELETE /api/v1/organizations/{organization_id}                   - Soft-delete (Owner only)
POST   /api/v1/organizations/{organization_id}/archive           - Archive (owner or admin)
POST   /api/v1/organizations/{organization_id}/restore           - Restore an archived organization (Owner only)
POST   /api/v1/organizations/{organization_id}/transfer-ownership
GET    /api/v1/organizations/{organization_id}/members           - Paginated member list
"""

from __future__ import annotations

from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Query

from orgkit.api.v1.deps import get_context, get_use_cases
from orgkit.api.v1.responses import error_response, respond, success_response
from orgkit.core.config import get_settings
from orgkit.core.context import OperationContext
from orgkit.services.registry import UseCases
from orgkit_shared.schemas.organizations import (
    OrgCreateRequest,
    OrgUpdateRequest,
    TransferOwnershipRequest,
)

log = structlog.get_logger()

router = APIRouter()


@router.post("", status_code=201, tags=["Organizations"])
async def create_organization(
    body: OrgCreateRequest,
    context: OperationContext = Depends(get_context),
    use_cases: UseCases = Depends(get_use_cases),
):
    """Create an organization. The caller becomes its owner."""
    result = await use_cases.create_organization.execute(body.model_dump(), context)
    location = f"/api/v1/organizations/{result.value.id}" if result.is_success else None
    return respond(result, context.request_id, status_code=201, location=location)


@router.get("/{organization_id}", tags=["Organizations"])
async def get_organization(
    organization_id: str,
    context: OperationContext = Depends(get_context),
    use_cases: UseCases = Depends(get_use_cases),
):
    """Get organization details (Owner or active member)."""
    result = await use_cases.get_organization.execute({"organization_id": organization_id}, context)
    return respond(result, context.request_id)


@router.patch("/{organization_id}", tags=["Organizations"])
async def update_organization(
    organization_id: str,
    body: OrgUpdateRequest,
    context: OperationContext = Depends(get_context),
    use_cases: UseCases = Depends(get_use_cases),
):
    """Merge custom fields into the organization (Owner or Admin)."""
    result = await use_cases.update_organization.execute(
        {**body.model_dump(), "organization_id": organization_id}, context
    )
    return respond(result, context.request_id)


@router.delete("/{organization_id}", tags=["Organizations"])
async def delete_organization(
    organization_id: str,
    context: OperationContext = Depends(get_context),
    use_cases: UseCases = Depends(get_use_cases),
):
    """Soft-delete the organization (Owner only). Memberships are kept."""
    result = await use_cases.delete_organization.execute({"organization_id": organization_id}, context)
    return respond(result, context.request_id)


@router.post("/{organization_id}/archive", tags=["Organizations"])
async def archive_organization(
    organization_id: str,
    context: OperationContext = Depends(get_context),
    use_cases: UseCases = Depends(get_use_cases),
):
    """Archive the organization (owner or admin)."""
    result = await use_cases.archive_organization.execute({"organization_id": organization_id}, context)
    return respond(result, context.request_id)


@router.post("/{organization_id}/restore", tags=["Organizations"])
async def restore_organization(
    organization_id: str,
    context: OperationContext = Depends(get_context),
    use_cases: UseCases = Depends(get_use_cases),
):
    """Restore an archived organization (Owner only)."""
    result = await use_cases.restore_organization.execute({"organization_id": organization_id}, context)
    return respond(result, context.request_id)


@router.post("/{organization_id}/transfer-ownership", tags=["Organizations"])
async def transfer_ownership(
    organization_id: str,
    body: TransferOwnershipRequest,
    context: OperationContext = Depends(get_context),
    use_cases: UseCases = Depends(get_use_cases),
):
    """Hand the organization to another active member (Owner only)."""
    result = await use_cases.transfer_organization_ownership.execute(
        {"organization_id": organization_id, "new_owner_id": body.new_owner_id}, context
    )
    if result.is_success:
        log.info("api.ownership_transferred", organization_id=organization_id)
    return respond(result, context.request_id)


@router.get("/{organization_id}/members", tags=["Members"])
async def list_members(
    organization_id: str,
    page: int = Query(default=1),
    page_size: Optional[int] = Query(default=None),
    include_active: Optional[bool] = Query(default=None),
    include_pending: Optional[bool] = Query(default=None),
    include_removed: Optional[bool] = Query(default=None),
    context: OperationContext = Depends(get_context),
    use_cases: UseCases = Depends(get_use_cases),
):
    """List members, oldest first. Plain members only see active members."""
    data = {
        "organization_id": organization_id,
        "page": page,
        "page_size": page_size if page_size is not None else get_settings().default_page_size,
        "include_active": include_active,
        "include_pending": include_pending,
        "include_removed": include_removed,
    }
    result = await use_cases.list_organization_members.execute(data, context)
    if result.is_failure:
        return error_response(result.error, context.request_id)
    page_result = result.value
    return success_response(
        page_result.items,
        context.request_id,
        pagination=page_result.pagination,
    )
