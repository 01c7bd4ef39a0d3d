"""
API v1 Router

Organization, membership and user endpoints. Every endpoint acts on behalf
of the principal carried by the Bearer token.
"""

from fastapi import APIRouter
from . import memberships, organizations, users

router = APIRouter()

router.include_router(organizations.router, prefix="/organizations")
router.include_router(memberships.router, prefix="/organizations")
router.include_router(users.router, prefix="/users")


@router.get("/", tags=["API"])
async def api_root():
    """API root - returns version and available endpoints."""
    return {
        "api": "v1",
        "version": "1.0",
        "endpoints": [
            "/organizations",
            "/organizations/{organization_id}/members",
            "/users",
            "/users/me",
            "/users/me/organizations",
        ],
    }
