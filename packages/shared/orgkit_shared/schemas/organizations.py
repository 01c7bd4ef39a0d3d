"""
Organization schemas shared between the engine and the HTTP layer.

Covers: the Organization record, its lifecycle states, and request models.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from .common import EntityModel


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class OrgStatus(str, Enum):
    ACTIVE = "active"
    ARCHIVED = "archived"
    DELETED = "deleted"


# ---------------------------------------------------------------------------
# Entity
# ---------------------------------------------------------------------------

class Organization(EntityModel):
    id: str = Field(min_length=1)
    owner_user_id: str = Field(min_length=1)
    created_at: datetime
    updated_at: datetime
    archived_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None

    @property
    def status(self) -> OrgStatus:
        if self.deleted_at is not None:
            return OrgStatus.DELETED
        if self.archived_at is not None:
            return OrgStatus.ARCHIVED
        return OrgStatus.ACTIVE


# ---------------------------------------------------------------------------
# Lifecycle transitions
# ---------------------------------------------------------------------------

# Deleted is terminal; only archived organizations can be restored.
ORG_TRANSITIONS: dict[OrgStatus, list[OrgStatus]] = {
    OrgStatus.ACTIVE: [OrgStatus.ARCHIVED, OrgStatus.DELETED],
    OrgStatus.ARCHIVED: [OrgStatus.ACTIVE, OrgStatus.DELETED],
    OrgStatus.DELETED: [],
}


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class OrgCreateRequest(BaseModel):
    """Custom fields for the new organization; the owner is the caller."""

    model_config = ConfigDict(extra="allow")


class OrgUpdateRequest(BaseModel):
    """Custom fields to merge into the organization."""

    model_config = ConfigDict(extra="allow")


class TransferOwnershipRequest(BaseModel):
    new_owner_id: str = Field(min_length=1)
