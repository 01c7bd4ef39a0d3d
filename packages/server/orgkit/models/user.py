"""User table."""

from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import CustomFieldsMixin, IdMixin, TimestampMixin


class UserRecord(IdMixin, TimestampMixin, CustomFieldsMixin, SQLModel, table=True):
    __tablename__ = "users"

    external_id: str = Field(unique=True, index=True, nullable=False, max_length=255)
    username: str = Field(unique=True, index=True, nullable=False, max_length=255)
    deleted_at: Optional[datetime] = Field(default=None, sa_type=sa.DateTime(timezone=True))
