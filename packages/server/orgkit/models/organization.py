"""Organization table."""

from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import CustomFieldsMixin, IdMixin, TimestampMixin


class OrganizationRecord(IdMixin, TimestampMixin, CustomFieldsMixin, SQLModel, table=True):
    __tablename__ = "organizations"

    owner_user_id: str = Field(foreign_key="users.id", index=True, nullable=False)
    archived_at: Optional[datetime] = Field(default=None, sa_type=sa.DateTime(timezone=True))
    deleted_at: Optional[datetime] = Field(default=None, sa_type=sa.DateTime(timezone=True))
