"""User schemas shared between the engine and the HTTP layer."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from .common import EntityModel


class User(EntityModel):
    id: str
    external_id: str
    username: str = Field(min_length=1, max_length=255)
    created_at: datetime
    updated_at: datetime
    deleted_at: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class UserCreateRequest(BaseModel):
    """Register a user. Extra fields are stored as custom fields."""

    model_config = ConfigDict(extra="allow")

    username: str = Field(min_length=1, max_length=255)
    external_id: Optional[str] = Field(default=None, min_length=1)


class UserUpdateRequest(BaseModel):
    """Partial profile update. Extra fields are merged into custom fields."""

    model_config = ConfigDict(extra="allow")

    username: Optional[str] = Field(default=None, min_length=1, max_length=255)
